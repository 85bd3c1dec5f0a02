"""
Exceptions raised by offsetreg.

Every error derives from OffsetRegError and also from the builtin exception a
caller would naturally catch (ValueError for bad arguments, KeyError for a
missing column, and so on).
"""

from typing import Iterable, Optional


class OffsetRegError(Exception):
    """Base class for all offsetreg errors."""


class InvalidModeError(OffsetRegError, ValueError):
    """Model mode is not supported (only "regression" is)."""

    def __init__(self, mode: str, valid: Iterable[str] = ("regression",)):
        self.mode = mode
        self.valid = tuple(valid)
        super().__init__(
            f"Invalid mode '{mode}'. Valid options: {', '.join(repr(m) for m in self.valid)}"
        )


class UnsupportedEngineError(OffsetRegError, ValueError):
    """No engine binding is registered for a (model type, engine) pair."""

    def __init__(self, model_type: str, engine: str, available: Iterable[str] = ()):
        self.model_type = model_type
        self.engine = engine
        self.available = tuple(available)
        super().__init__(
            f"Engine '{engine}' not found for model spec '{model_type}'. "
            f"Available engines: {list(self.available)}"
        )


class MissingOffsetColumnError(OffsetRegError, KeyError):
    """The offset column is absent from the data handed to fit or predict."""

    def __init__(self, column: str, stage: str = "fit"):
        self.column = column
        self.stage = stage
        super().__init__(column)

    def __str__(self) -> str:
        return (
            f"Offset column '{self.column}' is missing from the {self.stage} data. "
            "The offset must travel with every row; it is never replaced by zero."
        )


class NonNumericOffsetColumnError(OffsetRegError, TypeError):
    """The offset column exists but does not hold numbers."""

    def __init__(self, column: str, dtype: object):
        self.column = column
        self.dtype = dtype
        super().__init__(f"Offset column '{column}' must be numeric, got dtype {dtype}")


class ExternalFitError(OffsetRegError, RuntimeError):
    """The engine library raised while fitting."""

    def __init__(self, engine: str, original: Optional[BaseException] = None):
        self.engine = engine
        self.original = original
        detail = f"{type(original).__name__}: {original}" if original is not None else "unknown error"
        super().__init__(f"Engine '{engine}' failed to fit: {detail}")


class UnsupportedPredictionTypeError(OffsetRegError, ValueError):
    """Requested prediction type is not available for the engine."""

    def __init__(self, pred_type: str, engine: str, valid: Iterable[str] = ()):
        self.pred_type = pred_type
        self.engine = engine
        self.valid = tuple(valid)
        super().__init__(
            f"Prediction type '{pred_type}' is not supported by engine '{engine}'. "
            f"Valid options: {list(self.valid)}"
        )
