"""
Fit a model specification on every resample and score the held-out rows.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from sklearn.metrics import mean_absolute_error, mean_poisson_deviance, mean_squared_error

from offsetreg.core.config import settings
from offsetreg.models.fitted import fit
from offsetreg.models.spec import ModelSpec
from offsetreg.resampling.splits import Split

logger = logging.getLogger(__name__)


def _rmse(y_true, y_pred) -> float:
    return float(np.sqrt(mean_squared_error(y_true, y_pred)))


# name -> (function, higher_is_better)
METRICS: Dict[str, Tuple[Callable[..., float], bool]] = {
    "rmse": (_rmse, False),
    "mae": (mean_absolute_error, False),
    "poisson_deviance": (mean_poisson_deviance, False),
}

DEFAULT_METRICS = ("rmse", "mae", "poisson_deviance")


def _check_metrics(metrics: Sequence[str]) -> List[str]:
    unknown = [m for m in metrics if m not in METRICS]
    if unknown:
        raise ValueError(f"Unknown metrics {unknown}. Valid options: {list(METRICS)}")
    return list(metrics)


@dataclass
class ResampleResult:
    """Per-resample metrics and held-out predictions."""

    spec: ModelSpec
    formula: str
    metrics: pd.DataFrame
    predictions: pd.DataFrame = field(default_factory=pd.DataFrame)

    def collect_metrics(self, summarize: bool = True) -> pd.DataFrame:
        """
        Metrics across resamples.

        Args:
            summarize: If True, one row per metric with mean, n and std_err;
                otherwise one row per (resample, metric)
        """
        if not summarize:
            return self.metrics.copy()

        grouped = self.metrics.groupby(".metric", sort=False)[".estimate"]
        summary = grouped.agg(["mean", "count", "std"]).reset_index()
        summary = summary.rename(columns={"count": "n"})
        summary["std_err"] = summary["std"] / np.sqrt(summary["n"])
        return summary[[".metric", "mean", "n", "std_err"]]

    def collect_predictions(self) -> pd.DataFrame:
        return self.predictions.copy()


def fit_resamples(
    spec: ModelSpec,
    formula: str,
    resamples: Sequence[Split],
    metrics: Optional[Sequence[str]] = None,
    save_pred: bool = False,
) -> ResampleResult:
    """
    Fit on each analysis set and score its assessment set.

    The offset column is read from each assessment set's own rows; a resample
    missing the column fails instead of being scored without it.

    Args:
        spec: Model specification (no tune() placeholders)
        formula: Model formula
        resamples: Splits from bootstraps(), vfold_cv() or initial_split()
        metrics: Metric names (default: rmse, mae, poisson_deviance)
        save_pred: Keep held-out predictions (with original row positions)

    Returns:
        ResampleResult

    Raises:
        ValueError: If resamples is empty, a metric is unknown or an
            assessment set is empty. Fit and prediction errors propagate.
    """
    metric_names = _check_metrics(metrics or DEFAULT_METRICS)
    resamples = list(resamples)
    if not resamples:
        raise ValueError("No resamples given")

    pred_col = settings.PREDICTION_COLUMN
    metric_rows = []
    pred_frames = []
    for split in resamples:
        assessment = split.assessment()
        if assessment.empty:
            raise ValueError(f"Resample {split.id} has no assessment rows")

        fitted = fit(spec, split.analysis(), formula)
        preds = fitted.predict(assessment)[pred_col].to_numpy()
        truth = assessment[fitted.parsed.response].to_numpy(dtype=float)

        for name in metric_names:
            func, _ = METRICS[name]
            metric_rows.append({"id": split.id, ".metric": name, ".estimate": float(func(truth, preds))})
        logger.debug("Resample %s scored on %d rows", split.id, len(assessment))

        if save_pred:
            pred_frames.append(
                pd.DataFrame(
                    {
                        "id": split.id,
                        ".row": split.out_id,
                        pred_col: preds,
                        fitted.parsed.response: truth,
                    }
                )
            )

    logger.info(
        "Fitted %s/%s on %d resamples", spec.model_type, spec.engine, len(resamples)
    )
    return ResampleResult(
        spec=spec,
        formula=formula,
        metrics=pd.DataFrame(metric_rows),
        predictions=pd.concat(pred_frames, ignore_index=True) if pred_frames else pd.DataFrame(),
    )
