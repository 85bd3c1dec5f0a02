"""
Offset-aware data adapter.

Turns a data frame, a model formula and an offset column name into the pieces
every engine needs: a design matrix without the offset, a response vector and
an offset vector aligned row for row. On prediction, rebuilds the design
matrix for new rows and pulls each row's own offset.

Offsets are taken exactly as stored in the column. They are expected to be on
the log scale already (e.g., log(exposure)); nothing here applies a log.
"""

import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
import patsy

from offsetreg.core.errors import MissingOffsetColumnError, NonNumericOffsetColumnError

_OFFSET_TERM = re.compile(r"^offset\(\s*(.+?)\s*\)$")
_IDENTIFIER = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")
_QUOTED = re.compile(r"""Q\(\s*(['"])(.+?)\1\s*\)""")


def _term_names(term: str) -> set:
    """Names a formula term may refer to: bare identifiers and Q('...') columns."""
    return set(_IDENTIFIER.findall(term)) | {m.group(2) for m in _QUOTED.finditer(term)}


@dataclass(frozen=True)
class ParsedFormula:
    """Formula split into response and predictor parts, offset removed."""

    response: str
    rhs: str
    predictors: Tuple[str, ...]
    formula_offset: Optional[str] = None

    @property
    def formula(self) -> str:
        return f"{self.response} ~ {self.rhs}"


def _split_terms(rhs: str) -> List[str]:
    """Split a right-hand side on top-level '+' (not inside parentheses)."""
    terms, depth, current = [], 0, []
    for char in rhs:
        if char in "([":
            depth += 1
        elif char in ")]":
            depth -= 1
        if char == "+" and depth == 0:
            terms.append("".join(current).strip())
            current = []
        else:
            current.append(char)
    terms.append("".join(current).strip())
    return [t for t in terms if t]


def _check_formula(formula: str) -> Tuple[str, str]:
    if not isinstance(formula, str) or "~" not in formula:
        raise ValueError(f"Formula must be a string of the form 'y ~ x', got {formula!r}")
    lhs, rhs = formula.split("~", 1)
    if not lhs.strip():
        raise ValueError(f"Formula has no response: {formula!r}")
    return lhs.strip(), rhs


def find_formula_offset(formula: str) -> Optional[str]:
    """
    Return the column named by an ``offset(col)`` term, if any.

    Raises:
        ValueError: If the formula is malformed or names more than one offset
    """
    _, rhs = _check_formula(formula)
    found = []
    for term in _split_terms(rhs):
        match = _OFFSET_TERM.match(term)
        if match:
            found.append(match.group(1))
    if len(found) > 1:
        raise ValueError(f"Formula names more than one offset: {found}")
    return found[0] if found else None


def parse_formula(formula: str, data: pd.DataFrame, offset_col: str) -> ParsedFormula:
    """
    Parse a model formula and take the offset out of the predictors.

    - ``offset(col)`` terms are removed; they must name offset_col
    - ``.`` expands to every column except the response and the offset
    - a plain term naming the offset column is removed; any other term using
      it (an interaction or a transform) is an error

    Args:
        formula: Formula such as "deaths ~ year + gender + offset(log_pop)"
        data: Training data (used to expand ".")
        offset_col: Offset column name

    Returns:
        ParsedFormula

    Raises:
        ValueError: If the formula has no "~", no predictors, names another
            offset, or uses the offset column inside a term
    """
    response, rhs = _check_formula(formula)
    formula_offset = find_formula_offset(formula)
    if formula_offset is not None and formula_offset != offset_col:
        raise ValueError(
            f"Formula offset '{formula_offset}' differs from offset column '{offset_col}'"
        )

    expanded = []
    dot_columns = []
    for term in _split_terms(rhs):
        if _OFFSET_TERM.match(term) or term == offset_col:
            continue
        if term == ".":
            for col in data.columns:
                if col in (response, offset_col):
                    continue
                dot_columns.append(col)
                name = str(col)
                expanded.append(name if name.isidentifier() else f"Q('{name}')")
        else:
            if offset_col in _term_names(term):
                raise ValueError(
                    f"Offset column '{offset_col}' cannot be used inside term '{term}'; "
                    "the offset enters with a fixed coefficient of 1 only"
                )
            expanded.append(term)

    if not expanded:
        raise ValueError(f"Formula has no predictors once the offset is removed: {formula!r}")

    names = set()
    for term in expanded:
        names |= _term_names(term)
    predictors = tuple(
        c
        for c in data.columns
        if (c in names or c in dot_columns) and c not in (response, offset_col)
    )
    return ParsedFormula(
        response=response,
        rhs=" + ".join(expanded),
        predictors=predictors,
        formula_offset=formula_offset,
    )


def extract_offset(data: pd.DataFrame, offset_col: str, stage: str = "fit") -> np.ndarray:
    """
    Pull the offset column out of data as a float vector, row for row.

    Raises:
        MissingOffsetColumnError: If the column is absent
        NonNumericOffsetColumnError: If the column is not numeric
        ValueError: If the column holds missing or infinite values
    """
    if offset_col not in data.columns:
        raise MissingOffsetColumnError(offset_col, stage=stage)

    column = data[offset_col]
    if not pd.api.types.is_numeric_dtype(column) or pd.api.types.is_bool_dtype(column):
        raise NonNumericOffsetColumnError(offset_col, column.dtype)

    offset = column.to_numpy(dtype=float)
    if not np.all(np.isfinite(offset)):
        raise ValueError(
            f"Offset column '{offset_col}' contains missing or infinite values "
            f"({int((~np.isfinite(offset)).sum())} rows)"
        )
    return offset


def _is_categorical(column: pd.Series) -> bool:
    return (
        isinstance(column.dtype, pd.CategoricalDtype)
        or pd.api.types.is_object_dtype(column)
        or pd.api.types.is_string_dtype(column)
        or pd.api.types.is_bool_dtype(column)
    )


def freeze_levels(data: pd.DataFrame, predictors: Sequence[str]) -> Dict[str, list]:
    """Record the levels of every categorical predictor seen at fit time."""
    levels = {}
    for col in predictors:
        column = data[col]
        if _is_categorical(column):
            levels[col] = list(pd.Categorical(column.dropna()).categories)
    return levels


def apply_levels(data: pd.DataFrame, levels: Dict[str, list]) -> pd.DataFrame:
    """
    Return a positionally indexed copy of data with categorical predictors
    fixed to the fit-time levels.

    Raises:
        ValueError: If a column holds a level not seen at fit time
    """
    frame = data.reset_index(drop=True)
    for col, cats in levels.items():
        if col not in frame.columns:
            continue
        fixed = pd.Categorical(frame[col], categories=cats)
        unseen = frame[col].notna().to_numpy() & pd.isna(fixed)
        if unseen.any():
            bad = sorted(map(str, frame.loc[unseen, col].unique()))
            raise ValueError(f"Column '{col}' has levels not seen during fit: {bad}")
        frame[col] = fixed
    return frame


def build_training_design(
    data: pd.DataFrame,
    parsed: ParsedFormula,
    levels: Dict[str, list],
    intercept: bool = True,
) -> Tuple[np.ndarray, pd.DataFrame, patsy.DesignInfo]:
    """
    Build the response vector and design matrix for training.

    Args:
        data: Training data
        parsed: Parsed formula (offset already removed)
        levels: Frozen categorical levels
        intercept: Keep the Intercept column

    Returns:
        (y, X, design_info); design_info rebuilds X for new rows

    Raises:
        ValueError: If the formula cannot be evaluated, has missing values,
            or the response is negative
    """
    frame = apply_levels(data, levels)
    try:
        y, X = patsy.dmatrices(parsed.formula, frame, NA_action="raise", return_type="dataframe")
    except patsy.PatsyError as exc:
        raise ValueError(f"Could not build design matrix for '{parsed.formula}': {exc}") from exc

    if y.shape[1] != 1:
        raise ValueError(f"Response '{parsed.response}' must be a single numeric column")
    response = y.iloc[:, 0].to_numpy(dtype=float)
    if np.any(response < 0):
        raise ValueError(f"Response '{parsed.response}' has negative values; counts must be >= 0")

    design_info = X.design_info
    if not intercept and "Intercept" in X.columns:
        X = X.drop(columns="Intercept")
    return response, X, design_info


def design_frame(data: pd.DataFrame, parsed: ParsedFormula, levels: Dict[str, list]) -> pd.DataFrame:
    """
    Training predictor columns, levels applied, kept with a fitted model.

    patsy stateful transforms (center, standardize, splines, C() on numbers)
    memorize their state from these rows, so rebuilding the design from them
    reproduces the fit-time design exactly.
    """
    return apply_levels(data, levels)[list(parsed.predictors)]


def rebuild_design_info(rhs: str, frame: pd.DataFrame) -> patsy.DesignInfo:
    """Recreate the fit-time patsy design info from the training predictor frame."""
    try:
        X = patsy.dmatrix(rhs, frame, NA_action="raise", return_type="dataframe")
    except patsy.PatsyError as exc:
        raise ValueError(f"Could not rebuild design for '{rhs}': {exc}") from exc
    return X.design_info


def build_prediction_design(
    new_data: pd.DataFrame,
    levels: Dict[str, list],
    feature_names: Sequence[str],
    design_info: patsy.DesignInfo,
) -> pd.DataFrame:
    """
    Rebuild the design matrix for new rows with the fit-time structure.

    Transforms and factor codings come from design_info, never from the new
    rows, so any subset or resample of rows gets the training columns.

    Raises:
        ValueError: If the matrix cannot be built or its columns differ from fit time
    """
    frame = apply_levels(new_data, levels)
    try:
        (X,) = patsy.build_design_matrices(
            [design_info], frame, NA_action="raise", return_type="dataframe"
        )
    except patsy.PatsyError as exc:
        raise ValueError(f"Could not build design matrix for new data: {exc}") from exc

    missing = [c for c in feature_names if c not in X.columns]
    if missing:
        raise ValueError(f"New data does not produce the fit-time features: {missing}")
    return X[list(feature_names)]
