"""
Hyperparameter tuning via grid search over resamples.

Iterates over a parameter grid for the tune() placeholders of a model spec,
fits every configuration on every resample, and returns the best
hyperparameters together with all trial results.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from itertools import product
from typing import Any, Dict, List, Optional, Sequence

import pandas as pd

from offsetreg.models.spec import ModelSpec, finalize_model
from offsetreg.resampling.fit_resamples import METRICS, fit_resamples
from offsetreg.resampling.splits import Split

logger = logging.getLogger(__name__)


@dataclass
class TuningTrial:
    """Single hyperparameter trial (metrics averaged over resamples)."""

    hyperparameters: Dict[str, Any]
    metrics: Dict[str, float]


@dataclass
class TuningResult:
    """Outcome of a tuning run."""

    model_type: str
    engine: str
    optimize_metric: str
    higher_is_better: bool
    trials: List[TuningTrial] = field(default_factory=list)

    @property
    def best_trial(self) -> TuningTrial:
        if not self.trials:
            raise ValueError("No trials recorded")
        worst = float("-inf") if self.higher_is_better else float("inf")
        key = lambda t: t.metrics.get(self.optimize_metric, worst)
        return (max if self.higher_is_better else min)(self.trials, key=key)

    def select_best(self) -> Dict[str, Any]:
        """Hyperparameters of the best trial, ready for finalize_model()."""
        return dict(self.best_trial.hyperparameters)

    def to_dataframe(self) -> pd.DataFrame:
        rows = []
        for t in self.trials:
            row = dict(t.hyperparameters)
            row.update(t.metrics)
            rows.append(row)
        return pd.DataFrame(rows)


def _expand_grid(param_grid: Dict[str, List[Any]]) -> List[Dict[str, Any]]:
    """Cartesian product of parameter lists."""
    keys = list(param_grid.keys())
    values = list(param_grid.values())
    return [dict(zip(keys, combo)) for combo in product(*values)]


def tune_grid(
    spec: ModelSpec,
    formula: str,
    resamples: Sequence[Split],
    grid: Dict[str, List[Any]],
    metric: str = "poisson_deviance",
    higher_is_better: Optional[bool] = None,
) -> TuningResult:
    """
    Exhaustive grid search over the tune() placeholders of *spec*.

    Args:
        spec: Model spec with tune() placeholders
        formula: Model formula
        resamples: Splits to evaluate every configuration on
        grid: dict mapping tuning key (tune id or argument name) → list of values
        metric: metric name to optimize
        higher_is_better: direction of improvement (defaults to the metric's own)

    Returns:
        TuningResult containing all trials and the best set of
        hyperparameters.

    Raises:
        ValueError: If the grid does not cover exactly the tunable arguments
    """
    if metric not in METRICS:
        raise ValueError(f"Unknown metric '{metric}'. Valid options: {list(METRICS)}")
    if higher_is_better is None:
        higher_is_better = METRICS[metric][1]

    tunable = set(spec.tunable())
    if not tunable:
        raise ValueError("Spec has no arguments marked with tune()")
    if set(grid) != tunable:
        raise ValueError(
            f"Grid keys {sorted(grid)} must match the tunable arguments {sorted(tunable)}"
        )

    combos = _expand_grid(grid)
    result = TuningResult(
        model_type=spec.model_type,
        engine=spec.engine,
        optimize_metric=metric,
        higher_is_better=higher_is_better,
    )

    for hp in combos:
        candidate = finalize_model(spec, hp)
        summary = fit_resamples(candidate, formula, resamples).collect_metrics()
        metrics = dict(zip(summary[".metric"], summary["mean"]))
        result.trials.append(TuningTrial(hyperparameters=hp, metrics=metrics))
        logger.debug("Trial %s: %s=%.6g", hp, metric, metrics.get(metric, float("nan")))

    logger.info(
        "Tuned %s/%s over %d candidates; best %s",
        spec.model_type,
        spec.engine,
        len(combos),
        result.select_best(),
    )
    return result
