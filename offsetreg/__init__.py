"""
offsetreg: offset terms for Poisson regression and tree models.

Engines that cannot take an offset through a model formula receive it as a
separate vector, and the offset column travels with every row through
fitting, prediction and resampling. Offset columns must already be on the
log scale (e.g., log(exposure)).
"""

from offsetreg.core.config import settings
from offsetreg.core.errors import (
    ExternalFitError,
    InvalidModeError,
    MissingOffsetColumnError,
    NonNumericOffsetColumnError,
    OffsetRegError,
    UnsupportedEngineError,
    UnsupportedPredictionTypeError,
)
from offsetreg.core.logging import configure_logging
from offsetreg.models import (
    FittedModel,
    ModelSpec,
    augment,
    boost_tree_offset,
    decision_tree_offset,
    finalize_model,
    fit,
    get_engine,
    list_engines,
    poisson_reg_offset,
    predict,
    set_args,
    set_engine,
    tidy,
    tune,
)
from offsetreg.resampling import (
    ResampleResult,
    Split,
    bootstraps,
    fit_resamples,
    initial_split,
    vfold_cv,
)
from offsetreg.models.comparator import ComparisonReport, compare_models
from offsetreg.models.tuner import TuningResult, tune_grid

__version__ = "0.1.0"

__all__ = [
    "settings",
    "configure_logging",
    # Errors
    "OffsetRegError",
    "InvalidModeError",
    "UnsupportedEngineError",
    "MissingOffsetColumnError",
    "NonNumericOffsetColumnError",
    "ExternalFitError",
    "UnsupportedPredictionTypeError",
    # Specifications
    "ModelSpec",
    "poisson_reg_offset",
    "decision_tree_offset",
    "boost_tree_offset",
    "set_engine",
    "set_args",
    "finalize_model",
    "tune",
    "get_engine",
    "list_engines",
    # Fitting
    "FittedModel",
    "fit",
    "predict",
    "tidy",
    "augment",
    # Resampling
    "Split",
    "initial_split",
    "bootstraps",
    "vfold_cv",
    "fit_resamples",
    "ResampleResult",
    # Tuning
    "tune_grid",
    "TuningResult",
    "compare_models",
    "ComparisonReport",
]
