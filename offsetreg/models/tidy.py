"""
Tidy, row-per-observation outputs for fitted offset models.
"""

from typing import TYPE_CHECKING

import numpy as np
import pandas as pd

from offsetreg.core.config import settings

if TYPE_CHECKING:
    from offsetreg.models.fitted import FittedModel


def tidy_predictions(raw, n_rows: int) -> pd.DataFrame:
    """
    Reshape raw engine output into a one-column prediction frame.

    Args:
        raw: Vector, or single-column matrix, of predictions
        n_rows: Number of rows handed to the engine

    Returns:
        DataFrame with a single settings.PREDICTION_COLUMN column, index 0..n-1

    Raises:
        ValueError: If the engine returned the wrong number of values
    """
    values = np.asarray(raw, dtype=float)
    if values.ndim == 2 and values.shape[1] == 1:
        values = values[:, 0]
    if values.ndim != 1 or len(values) != n_rows:
        raise ValueError(
            f"Engine returned predictions of shape {values.shape} for {n_rows} rows"
        )
    return pd.DataFrame({settings.PREDICTION_COLUMN: values})


def tidy(fitted: "FittedModel") -> pd.DataFrame:
    """
    Coefficient table for a fitted linear engine.

    Returns:
        DataFrame with columns ["term", "estimate"], plus "penalty" for
        penalized fits

    Raises:
        ValueError: If the engine has no coefficients (tree engines)

    Examples:
        >>> fitted = fit(poisson_reg_offset(), data, "count ~ group")
        >>> tidy(fitted)
                 term  estimate
        0   Intercept     -2.31
        1  group[T.b]      0.42
    """
    binding = fitted.binding
    if binding.coefs is None:
        raise ValueError(f"Engine '{fitted.spec.engine}' does not provide coefficients")

    table = pd.DataFrame(
        {
            "term": list(fitted.feature_names),
            "estimate": binding.coefs(fitted.engine_fit),
        }
    )
    penalty = fitted.spec.args.get("penalty")
    if "penalty" in binding.arg_map and penalty is not None:
        table["penalty"] = float(penalty)
    return table


def augment(fitted: "FittedModel", new_data: pd.DataFrame, type: str = "numeric") -> pd.DataFrame:
    """Return new_data (reindexed 0..n-1) with the prediction column appended."""
    preds = fitted.predict(new_data, type=type)
    out = new_data.reset_index(drop=True).copy()
    out[settings.PREDICTION_COLUMN] = preds[settings.PREDICTION_COLUMN].to_numpy()
    return out
