"""
Model comparison framework.

Runs several offset model specifications on identical resamples and produces
a ranked summary table.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

import pandas as pd

from offsetreg.models.spec import ModelSpec
from offsetreg.resampling.fit_resamples import fit_resamples
from offsetreg.resampling.splits import Split


@dataclass
class ComparisonEntry:
    """Result of a single model evaluation."""

    name: str
    model_type: str
    engine: str
    metrics: Dict[str, float]


@dataclass
class ComparisonReport:
    """Aggregated comparison across models."""

    entries: List[ComparisonEntry] = field(default_factory=list)

    # ------- helpers -------
    def to_dataframe(self) -> pd.DataFrame:
        """Flatten entries into a DataFrame for easy inspection."""
        rows = []
        for e in self.entries:
            row: dict[str, object] = {"name": e.name, "model_type": e.model_type, "engine": e.engine}
            row.update(e.metrics)
            rows.append(row)
        return pd.DataFrame(rows)

    def best(self, metric: str, higher_is_better: bool = False) -> ComparisonEntry:
        """Return the entry with the best value for *metric*."""
        if not self.entries:
            raise ValueError("No entries in comparison report")
        worst = float("-inf") if higher_is_better else float("inf")
        return (max if higher_is_better else min)(
            self.entries, key=lambda e: e.metrics.get(metric, worst)
        )


# ---------- public API ----------


def compare_models(
    specs: Dict[str, ModelSpec],
    formula: str,
    resamples: Sequence[Split],
    metrics: Optional[Sequence[str]] = None,
) -> ComparisonReport:
    """
    Fit and score several model specs on the same resamples.

    Args:
        specs: name → model spec, e.g.
            ``{"glm": poisson_reg_offset(), "tree": decision_tree_offset()}``
        formula: model formula shared by every spec
        resamples: splits shared by every spec
        metrics: metric names (default: rmse, mae, poisson_deviance)

    Returns:
        ComparisonReport with one entry per spec
    """
    if not specs:
        raise ValueError("No model specs to compare")

    resamples = list(resamples)
    report = ComparisonReport()
    for name, spec in specs.items():
        summary = fit_resamples(spec, formula, resamples, metrics=metrics).collect_metrics()
        report.entries.append(
            ComparisonEntry(
                name=name,
                model_type=spec.model_type,
                engine=spec.engine,
                metrics=dict(zip(summary[".metric"], summary["mean"])),
            )
        )

    return report
