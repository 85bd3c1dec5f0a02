"""
Models package for offsetreg.

Provides:
- ModelSpec and the constructors poisson_reg_offset, decision_tree_offset, boost_tree_offset
- The engine registry (get_engine, list_engines)
- fit / predict / FittedModel and the tidy helpers
- Grid tuning and model comparison over resamples
"""

from offsetreg.models.spec import (
    ModelSpec,
    TuneParameter,
    boost_tree_offset,
    decision_tree_offset,
    finalize_model,
    poisson_reg_offset,
    set_args,
    set_engine,
    tune,
)
from offsetreg.models.engines import EngineBinding, ENGINE_REGISTRY, get_engine, list_engines
from offsetreg.models.fitted import FittedModel, fit, predict
from offsetreg.models.tidy import augment, tidy
from offsetreg.models.model_config import get_config, ENGINE_CONFIGS

__all__ = [
    # Specifications
    "ModelSpec",
    "TuneParameter",
    "poisson_reg_offset",
    "decision_tree_offset",
    "boost_tree_offset",
    "set_engine",
    "set_args",
    "finalize_model",
    "tune",
    # Engines
    "EngineBinding",
    "ENGINE_REGISTRY",
    "get_engine",
    "list_engines",
    # Fitting
    "FittedModel",
    "fit",
    "predict",
    "tidy",
    "augment",
    # Configuration
    "get_config",
    "ENGINE_CONFIGS",
    # Tuning and comparison (lazy to avoid a cycle with offsetreg.resampling)
    "tune_grid",
    "TuningResult",
    "compare_models",
    "ComparisonReport",
]


def __getattr__(name: str):
    if name in ("tune_grid", "TuningResult"):
        from offsetreg.models import tuner

        return getattr(tuner, name)
    if name in ("compare_models", "ComparisonReport"):
        from offsetreg.models import comparator

        return getattr(comparator, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
