"""
Data splitting for offset models.

Every split keeps whole rows: analysis() and assessment() return all columns
of the original data, the offset column included, in the sampled order and
with bootstrap duplicates preserved. Nothing relies on a modeling pipeline to
carry unmodeled columns along.
"""

from dataclasses import dataclass
from typing import List, Optional

import numpy as np
import pandas as pd
from sklearn.model_selection import KFold, train_test_split
from sklearn.utils import check_random_state, resample

from offsetreg.core.config import settings


@dataclass(frozen=True)
class Split:
    """
    One resample: row positions for fitting (analysis) and scoring (assessment).

    Attributes:
        data: The full data frame being resampled
        in_id: Integer positions of analysis rows (may repeat for bootstraps)
        out_id: Integer positions of assessment rows
        id: Resample label, e.g. "Bootstrap03" or "Fold07"
    """

    data: pd.DataFrame
    in_id: np.ndarray
    out_id: np.ndarray
    id: str = ""

    def analysis(self) -> pd.DataFrame:
        return self.data.iloc[self.in_id]

    def assessment(self) -> pd.DataFrame:
        return self.data.iloc[self.out_id]

    def __repr__(self) -> str:
        return f"<Split {self.id}: {len(self.in_id)}/{len(self.out_id)}/{len(self.data)}>"


def _seed(seed: Optional[int]) -> np.random.RandomState:
    return check_random_state(settings.RANDOM_STATE if seed is None else seed)


def _check_data(data: pd.DataFrame, min_rows: int = 2) -> None:
    if not isinstance(data, pd.DataFrame):
        raise TypeError(f"data must be a pandas DataFrame, got {type(data).__name__}")
    if len(data) < min_rows:
        raise ValueError(f"Need at least {min_rows} rows to resample, got {len(data)}")


def initial_split(data: pd.DataFrame, prop: float = 0.75, seed: Optional[int] = None) -> Split:
    """
    Single random training/testing split.

    Args:
        data: Data to split
        prop: Proportion of rows used for training (analysis)
        seed: Random seed (defaults to settings.RANDOM_STATE)
    """
    _check_data(data)
    if not 0 < prop < 1:
        raise ValueError(f"prop must be between 0 and 1, got {prop}")

    positions = np.arange(len(data))
    train, test = train_test_split(positions, train_size=prop, random_state=_seed(seed))
    return Split(data=data, in_id=np.asarray(train), out_id=np.asarray(test), id="Split")


def bootstraps(data: pd.DataFrame, times: int = 25, seed: Optional[int] = None) -> List[Split]:
    """
    Bootstrap resamples: analysis rows drawn with replacement, assessment rows
    are the out-of-bag rows.

    Args:
        data: Data to resample
        times: Number of bootstrap resamples
        seed: Random seed (defaults to settings.RANDOM_STATE)

    Examples:
        >>> splits = bootstraps(us_deaths, times=5)
        >>> splits[0].analysis()["log_pop"]  # offsets of the drawn rows
    """
    _check_data(data)
    if times < 1:
        raise ValueError(f"times must be at least 1, got {times}")

    rng = _seed(seed)
    n = len(data)
    positions = np.arange(n)
    width = len(str(times))
    splits = []
    for i in range(times):
        in_id = resample(positions, replace=True, n_samples=n, random_state=rng)
        out_id = np.setdiff1d(positions, in_id)
        splits.append(
            Split(data=data, in_id=np.asarray(in_id), out_id=out_id, id=f"Bootstrap{i + 1:0{width}d}")
        )
    return splits


def vfold_cv(data: pd.DataFrame, v: int = 10, seed: Optional[int] = None) -> List[Split]:
    """V-fold cross-validation splits (shuffled)."""
    _check_data(data, min_rows=v)
    if v < 2:
        raise ValueError(f"v must be at least 2, got {v}")

    kfold = KFold(n_splits=v, shuffle=True, random_state=_seed(seed))
    width = len(str(v))
    return [
        Split(data=data, in_id=train, out_id=test, id=f"Fold{i + 1:0{width}d}")
        for i, (train, test) in enumerate(kfold.split(np.arange(len(data))))
    ]
