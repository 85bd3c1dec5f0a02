"""
Resampling for offset models.

Provides:
- Split, initial_split, bootstraps, vfold_cv: row splits that keep every column
- fit_resamples / ResampleResult: fit on analysis rows, score assessment rows
"""

from offsetreg.resampling.splits import Split, bootstraps, initial_split, vfold_cv
from offsetreg.resampling.fit_resamples import METRICS, ResampleResult, fit_resamples

__all__ = [
    "Split",
    "initial_split",
    "bootstraps",
    "vfold_cv",
    "METRICS",
    "ResampleResult",
    "fit_resamples",
]
