"""
Fitting and prediction for offset-aware model specifications.

fit() validates the offset column, builds the design matrix without it,
hands the offset vector to the engine through the engine's own argument and
wraps the result in a FittedModel. FittedModel.predict() repeats the offset
handling for new rows, so resampled or bootstrapped data always uses each
row's own offset.
"""

import logging
from dataclasses import replace
from pathlib import Path
from typing import Any, Dict, List, Optional

import joblib
import numpy as np
import pandas as pd

from offsetreg.core.errors import ExternalFitError, UnsupportedPredictionTypeError
from offsetreg.models.adapter import (
    ParsedFormula,
    build_prediction_design,
    build_training_design,
    design_frame,
    extract_offset,
    find_formula_offset,
    freeze_levels,
    parse_formula,
    rebuild_design_info,
)
from offsetreg.models.engines import EngineBinding, get_engine, translate_args
from offsetreg.models.spec import ModelSpec
from offsetreg.models.tidy import tidy_predictions

logger = logging.getLogger(__name__)


class FittedModel:
    """
    A model specification fitted to data, with everything needed to predict.

    Holds the engine's own fitted object, the offset column name and the
    formula structure, so callers never resupply the offset separately.
    """

    def __init__(
        self,
        spec: ModelSpec,
        engine_fit: Any,
        parsed: ParsedFormula,
        feature_names: List[str],
        levels: Dict[str, list],
        design_info: Any = None,
        design_data: Optional[pd.DataFrame] = None,
        training_metadata: Optional[Dict[str, Any]] = None,
    ):
        self.spec = spec
        self.engine_fit = engine_fit
        self.parsed = parsed
        self.feature_names = list(feature_names)
        self.levels = levels
        self.design_data = design_data
        if design_info is None and design_data is not None:
            design_info = rebuild_design_info(parsed.rhs, design_data)
        self.design_info = design_info
        self.training_metadata = training_metadata or {}

    @property
    def binding(self) -> EngineBinding:
        return get_engine(self.spec.model_type, self.spec.engine)

    @property
    def offset_col(self) -> str:
        return self.spec.offset_col

    @property
    def formula(self) -> str:
        return self.parsed.formula

    def predict(self, new_data: pd.DataFrame, type: str = "numeric") -> pd.DataFrame:
        """
        Predict on new rows using each row's own offset.

        Args:
            new_data: Rows to predict; must contain the offset column and predictors.
                May be a resample with repeated rows in any order.
            type: "numeric" (response scale) or "raw" (engine scale)

        Returns:
            DataFrame with one ".pred" column and one row per input row

        Raises:
            UnsupportedPredictionTypeError: If type is not supported by the engine
            MissingOffsetColumnError: If the offset column is absent
            ValueError: If predictors are missing or hold unseen levels
        """
        binding = self.binding
        if type not in binding.pred_types:
            raise UnsupportedPredictionTypeError(type, self.spec.engine, binding.pred_types)
        if not isinstance(new_data, pd.DataFrame):
            raise TypeError(
                f"new_data must be a pandas DataFrame, got {new_data.__class__.__name__}"
            )

        if self.design_info is None:
            raise ValueError("FittedModel has no design information; create it with fit()")

        offset = extract_offset(new_data, self.offset_col, stage="prediction")
        X = build_prediction_design(new_data, self.levels, self.feature_names, self.design_info)
        raw = binding.predict(self.engine_fit, X.to_numpy(dtype=float), offset, type)
        return tidy_predictions(raw, len(new_data))

    def save(self, path: str) -> None:
        """
        Save the fitted model with joblib.

        Args:
            path: File path (should end in .joblib)
        """
        save_path = Path(path)
        save_path.parent.mkdir(parents=True, exist_ok=True)
        joblib.dump(self, save_path)

    @classmethod
    def load(cls, path: str) -> "FittedModel":
        """
        Load a fitted model saved with save().

        Raises:
            FileNotFoundError: If the file does not exist
            TypeError: If the file does not hold a FittedModel
        """
        load_path = Path(path)
        if not load_path.exists():
            raise FileNotFoundError(f"Model file not found: {path}")

        obj = joblib.load(load_path)
        if not isinstance(obj, cls):
            raise TypeError(f"{path} does not contain a {cls.__name__}")
        return obj

    def __getstate__(self):
        # patsy design info cannot be pickled; it is rebuilt from the training rows
        state = self.__dict__.copy()
        state["design_info"] = None
        return state

    def __setstate__(self, state):
        self.__dict__.update(state)
        if self.design_data is not None:
            self.design_info = rebuild_design_info(self.parsed.rhs, self.design_data)

    def __repr__(self) -> str:
        return (
            f"FittedModel({self.spec.model_type}, engine={self.spec.engine!r}, "
            f"formula={self.formula!r}, offset_col={self.offset_col!r})"
        )


def _resolve_offset_col(spec: ModelSpec, formula: str, offset_col: Optional[str]) -> str:
    if offset_col:
        return offset_col
    formula_offset = find_formula_offset(formula)
    if formula_offset and not spec.offset_col_set:
        return formula_offset
    return spec.offset_col


def fit(
    spec: ModelSpec,
    data: pd.DataFrame,
    formula: str,
    offset_col: Optional[str] = None,
) -> FittedModel:
    """
    Fit a model specification with an offset.

    Args:
        spec: Model specification (no tune() placeholders left)
        data: Training data holding the response, predictors and offset column
        formula: Model formula, e.g. "deaths ~ year + gender + age_group".
            An "offset(col)" term and a plain term naming the offset column
            are both taken out of the predictors.
        offset_col: Offset column; overrides spec.offset_col

    Returns:
        FittedModel

    Raises:
        MissingOffsetColumnError: If the offset column is absent (the engine is not called)
        NonNumericOffsetColumnError: If the offset column is not numeric
        ExternalFitError: If the engine library fails
        ValueError: If the data, formula or arguments are invalid

    Examples:
        >>> spec = poisson_reg_offset(engine="glmnet_offset", penalty=1e-5, offset_col="log_pop")
        >>> fitted = fit(spec, us_deaths, "deaths ~ year + gender + age_group")
        >>> fitted.predict(us_deaths.head())
    """
    if not isinstance(data, pd.DataFrame):
        raise TypeError(f"data must be a pandas DataFrame, got {type(data).__name__}")
    if data.empty:
        raise ValueError("Training data is empty")

    placeholders = spec.tunable()
    if placeholders:
        raise ValueError(
            f"Arguments {placeholders} are marked for tuning; use finalize_model() before fit()"
        )

    binding = get_engine(spec.model_type, spec.engine)
    missing_args = [name for name in binding.required_args if spec.args.get(name) is None]
    if missing_args:
        raise ValueError(f"Engine '{spec.engine}' requires a value for {missing_args}")

    offset_col = _resolve_offset_col(spec, formula, offset_col)
    if offset_col != spec.offset_col:
        spec = replace(spec, offset_col=offset_col)

    offset = extract_offset(data, offset_col, stage="training")
    parsed = parse_formula(formula, data, offset_col)
    levels = freeze_levels(data, parsed.predictors)
    y, X, design_info = build_training_design(data, parsed, levels, intercept=binding.intercept)
    params = translate_args(binding, spec.args, spec.engine_args)

    logger.info(
        "Fitting %s/%s on %d rows, %d features, offset '%s'",
        spec.model_type,
        spec.engine,
        len(X),
        X.shape[1],
        offset_col,
    )
    try:
        engine_fit = binding.fit(
            X.to_numpy(dtype=float),
            y,
            offset,
            params,
            feature_names=list(X.columns),
        )
    except Exception as exc:
        logger.warning("Engine '%s' failed to fit: %s", spec.engine, exc)
        raise ExternalFitError(spec.engine, exc) from exc

    return FittedModel(
        spec=spec,
        engine_fit=engine_fit,
        parsed=parsed,
        feature_names=list(X.columns),
        levels=levels,
        design_info=design_info,
        design_data=design_frame(data, parsed, levels),
        training_metadata={
            "n_samples": len(X),
            "n_features": X.shape[1],
            "feature_names": list(X.columns),
            "hyperparameters": params,
            "offset_col": offset_col,
            "offset_mean": float(np.mean(offset)),
        },
    )


def predict(fitted: FittedModel, new_data: pd.DataFrame, type: str = "numeric") -> pd.DataFrame:
    """Predict with a fitted model; see FittedModel.predict()."""
    return fitted.predict(new_data, type=type)
