"""Tests for the error hierarchy."""

import pytest

from offsetreg.core.errors import (
    ExternalFitError,
    InvalidModeError,
    MissingOffsetColumnError,
    NonNumericOffsetColumnError,
    OffsetRegError,
    UnsupportedEngineError,
    UnsupportedPredictionTypeError,
)


@pytest.mark.parametrize(
    "error, builtin",
    [
        (InvalidModeError("classification"), ValueError),
        (UnsupportedEngineError("poisson_reg_offset", "glmnet"), ValueError),
        (MissingOffsetColumnError("log_pop"), KeyError),
        (NonNumericOffsetColumnError("log_pop", "object"), TypeError),
        (ExternalFitError("glm_offset", ValueError("boom")), RuntimeError),
        (UnsupportedPredictionTypeError("prob", "glm_offset"), ValueError),
    ],
)
def test_hierarchy(error, builtin):
    """Test every error is both an OffsetRegError and a builtin exception."""
    assert isinstance(error, OffsetRegError)
    assert isinstance(error, builtin)


def test_unsupported_engine_message():
    err = UnsupportedEngineError("poisson_reg_offset", "glmnet", ["glm_offset", "glmnet_offset"])
    assert str(err) == (
        "Engine 'glmnet' not found for model spec 'poisson_reg_offset'. "
        "Available engines: ['glm_offset', 'glmnet_offset']"
    )


def test_missing_offset_message():
    """Test the message names the column and stage instead of KeyError quoting."""
    err = MissingOffsetColumnError("log_pop", stage="prediction")
    assert str(err).startswith("Offset column 'log_pop' is missing from the prediction data")
    assert "never replaced by zero" in str(err)


def test_external_fit_error_message():
    err = ExternalFitError("xgboost_offset", ValueError("label must be non-negative"))
    assert str(err) == "Engine 'xgboost_offset' failed to fit: ValueError: label must be non-negative"
    assert isinstance(err.original, ValueError)


def test_external_fit_error_without_original():
    assert "unknown error" in str(ExternalFitError("glm_offset"))
