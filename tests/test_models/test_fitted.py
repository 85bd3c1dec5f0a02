"""Tests for fit / predict with offsets."""

import dataclasses
from pathlib import Path
import tempfile

import lightgbm as lgb
import numpy as np
import pandas as pd
import pytest
import statsmodels.api as sm
import xgboost as xgb
from sklearn.tree import DecisionTreeRegressor

import offsetreg.models.fitted as fitted_module
from offsetreg.core.errors import (
    ExternalFitError,
    MissingOffsetColumnError,
    NonNumericOffsetColumnError,
    UnsupportedPredictionTypeError,
)
from offsetreg.models.engines import get_engine
from offsetreg.models.fitted import FittedModel, fit, predict
from offsetreg.models.spec import (
    boost_tree_offset,
    decision_tree_offset,
    finalize_model,
    poisson_reg_offset,
    set_args,
    set_engine,
    tune,
)
from offsetreg.models.tidy import augment, tidy

FORMULA = "count ~ group + x"


@pytest.fixture
def glm_spec():
    return poisson_reg_offset(offset_col="log_exposure")


@pytest.fixture
def spy_binding(monkeypatch):
    """Replace the engine lookup in fit() with a binding whose calls are recorded."""
    calls = {"fit": [], "predict": []}

    def install(model_type, engine):
        real = get_engine(model_type, engine)

        def fit_spy(X, y, offset, params, feature_names=()):
            calls["fit"].append(offset.copy())
            return real.fit(X, y, offset, params, feature_names=feature_names)

        def predict_spy(obj, X, offset, pred_type="numeric"):
            calls["predict"].append(offset.copy())
            return real.predict(obj, X, offset, pred_type)

        spy = dataclasses.replace(real, fit=fit_spy, predict=predict_spy)
        monkeypatch.setattr(fitted_module, "get_engine", lambda t, e: spy)
        return spy

    return install, calls


# ============================================================================
# Equivalence with direct library calls
# ============================================================================


def test_glm_matches_statsmodels(count_data, count_frame, glm_spec):
    """Test glm_offset reproduces a direct statsmodels fit with the offset vector."""
    X, y, offset = count_frame
    direct = sm.GLM(y, X.to_numpy(), family=sm.families.Poisson(), offset=offset).fit()

    fitted = fit(glm_spec, count_data, FORMULA)

    np.testing.assert_allclose(fitted.engine_fit.params, direct.params, rtol=1e-6)
    preds = fitted.predict(count_data)[".pred"].to_numpy()
    np.testing.assert_allclose(preds, direct.predict(X.to_numpy(), offset=offset), rtol=1e-6)


def test_glm_differs_from_fit_without_offset(count_data, count_frame, glm_spec):
    """Test the offset is actually used rather than dropped."""
    X, y, _ = count_frame
    no_offset = sm.GLM(y, X.to_numpy(), family=sm.families.Poisson()).fit()

    fitted = fit(glm_spec, count_data, FORMULA)

    assert not np.allclose(fitted.engine_fit.params, no_offset.params)


def test_glmnet_matches_statsmodels(count_data, count_frame):
    """Test glmnet_offset reproduces a direct elastic-net fit."""
    X, y, offset = count_frame
    alpha = np.array([0.0, 0.01, 0.01, 0.01])
    direct = sm.GLM(y, X.to_numpy(), family=sm.families.Poisson(), offset=offset).fit_regularized(
        method="elastic_net", alpha=alpha, L1_wt=1.0, maxiter=200
    )

    spec = poisson_reg_offset(engine="glmnet_offset", penalty=0.01, offset_col="log_exposure")
    fitted = fit(spec, count_data, FORMULA)

    np.testing.assert_allclose(fitted.engine_fit.params, direct.params, rtol=1e-6, atol=1e-10)


def test_cart_matches_weighted_rate_tree(count_data, count_frame):
    """Test cart_offset equals a tree on rates weighted by exposure."""
    X, y, offset = count_frame
    X = X.drop(columns="Intercept").to_numpy()
    exposure = np.exp(offset)
    direct = DecisionTreeRegressor(criterion="poisson", max_depth=3, random_state=42)
    direct.fit(X, y / exposure, sample_weight=exposure)

    spec = decision_tree_offset(tree_depth=3, offset_col="log_exposure")
    fitted = fit(spec, count_data, FORMULA)

    preds = fitted.predict(count_data)[".pred"].to_numpy()
    np.testing.assert_allclose(preds, direct.predict(X) * exposure)


def test_xgboost_matches_base_margin(count_data, count_frame):
    """Test xgboost_offset passes the offset as base margin at fit and predict."""
    X, y, offset = count_frame
    X = X.drop(columns="Intercept").to_numpy()
    direct = xgb.XGBRegressor(objective="count:poisson", n_estimators=20, random_state=42)
    direct.fit(X, y, base_margin=offset)

    spec = boost_tree_offset(trees=20, offset_col="log_exposure")
    fitted = fit(spec, count_data, FORMULA)

    preds = fitted.predict(count_data)[".pred"].to_numpy()
    np.testing.assert_allclose(preds, direct.predict(X, base_margin=offset), rtol=1e-5)


def test_lightgbm_matches_init_score(count_data, count_frame):
    """Test lightgbm_offset adds the offset back to the raw score."""
    X, y, offset = count_frame
    X = X.drop(columns="Intercept").to_numpy()
    direct = lgb.LGBMRegressor(
        objective="poisson", n_estimators=20, min_child_samples=5, random_state=42, verbosity=-1
    )
    direct.fit(X, y, init_score=offset)

    spec = boost_tree_offset(
        engine="lightgbm_offset", trees=20, min_n=5, offset_col="log_exposure"
    )
    fitted = fit(spec, count_data, FORMULA)

    preds = fitted.predict(count_data)[".pred"].to_numpy()
    expected = np.exp(direct.predict(X, raw_score=True) + offset)
    np.testing.assert_allclose(preds, expected, rtol=1e-6)


def test_lightgbm_sample_size_bags_rows(count_data):
    """Test sample_size below 1 changes a LightGBM fit."""
    full = boost_tree_offset(engine="lightgbm_offset", trees=30, min_n=5, offset_col="log_exposure")
    bagged = boost_tree_offset(
        engine="lightgbm_offset", trees=30, min_n=5, sample_size=0.5, offset_col="log_exposure"
    )

    full_fit = fit(full, count_data, FORMULA)
    bagged_fit = fit(bagged, count_data, FORMULA)

    assert bagged_fit.engine_fit.get_params()["subsample_freq"] == 1
    assert not np.allclose(
        full_fit.predict(count_data)[".pred"], bagged_fit.predict(count_data)[".pred"]
    )


def test_lightgbm_keeps_given_bagging_frequency(count_data):
    """Test an explicit subsample_freq is not overridden."""
    spec = set_engine(
        boost_tree_offset(trees=5, sample_size=0.5, offset_col="log_exposure"),
        "lightgbm_offset",
        subsample_freq=3,
    )
    assert fit(spec, count_data, FORMULA).engine_fit.get_params()["subsample_freq"] == 3


@pytest.mark.parametrize(
    "spec",
    [
        poisson_reg_offset(offset_col="log_exposure"),
        poisson_reg_offset(engine="glmnet_offset", penalty=0.001, offset_col="log_exposure"),
        decision_tree_offset(tree_depth=3, offset_col="log_exposure"),
        boost_tree_offset(trees=10, offset_col="log_exposure"),
        boost_tree_offset(engine="lightgbm_offset", trees=10, offset_col="log_exposure"),
    ],
)
def test_doubling_exposure_doubles_prediction(count_data, spec):
    """Test predictions scale with exposure for every engine."""
    fitted = fit(spec, count_data, FORMULA)
    base = fitted.predict(count_data)[".pred"].to_numpy()
    doubled = fitted.predict(
        count_data.assign(log_exposure=count_data["log_exposure"] + np.log(2.0))
    )[".pred"].to_numpy()

    np.testing.assert_allclose(doubled, 2.0 * base, rtol=1e-5)


# ============================================================================
# Offset column handling
# ============================================================================


def test_missing_offset_fails_before_engine(count_data, spy_binding):
    """Test a missing offset column is reported before the engine is called."""
    install, calls = spy_binding
    install("poisson_reg_offset", "glm_offset")
    spec = poisson_reg_offset(offset_col="log_pop")

    with pytest.raises(MissingOffsetColumnError, match="log_pop"):
        fit(spec, count_data, FORMULA)
    assert calls["fit"] == []


def test_non_numeric_offset(count_data):
    """Test non-numeric offset column raises."""
    with pytest.raises(NonNumericOffsetColumnError):
        fit(poisson_reg_offset(offset_col="group"), count_data, "count ~ x")


def test_offset_vector_reaches_engine(count_data, spy_binding):
    """Test the engine receives the offset column unchanged."""
    install, calls = spy_binding
    install("poisson_reg_offset", "glm_offset")

    fit(poisson_reg_offset(offset_col="log_exposure"), count_data, FORMULA)

    np.testing.assert_array_equal(calls["fit"][0], count_data["log_exposure"].to_numpy())


def test_bootstrap_rows_use_own_offsets(count_data, glm_spec, spy_binding):
    """Test a resampled frame's own per-row offsets reach the engine's predict."""
    install, calls = spy_binding
    install("poisson_reg_offset", "glm_offset")
    fitted = fit(glm_spec, count_data, FORMULA)

    rng = np.random.RandomState(7)
    rows = rng.choice(len(count_data), size=10, replace=True)
    rows[1] = rows[0]  # force a duplicate
    resample = count_data.iloc[rows]

    preds = fitted.predict(resample)

    assert len(preds) == 10
    np.testing.assert_array_equal(calls["predict"][0], resample["log_exposure"].to_numpy())

    beta = fitted.engine_fit.params
    X = np.column_stack(
        [
            np.ones(10),
            (resample["group"] == "b").to_numpy(float),
            (resample["group"] == "c").to_numpy(float),
            resample["x"].to_numpy(),
        ]
    )
    expected = np.exp(X @ beta + resample["log_exposure"].to_numpy())
    np.testing.assert_allclose(preds[".pred"].to_numpy(), expected, rtol=1e-8)


def test_predict_without_offset_column_fails(count_data, glm_spec):
    """Test prediction never substitutes zero for a missing offset."""
    fitted = fit(glm_spec, count_data, FORMULA)

    with pytest.raises(MissingOffsetColumnError) as excinfo:
        fitted.predict(count_data.drop(columns="log_exposure"))
    assert excinfo.value.stage == "prediction"


def test_formula_offset_term(count_data, glm_spec):
    """Test an offset() term names the offset column when none is set."""
    from_formula = fit(poisson_reg_offset(), count_data, "count ~ group + x + offset(log_exposure)")
    from_spec = fit(glm_spec, count_data, FORMULA)

    assert from_formula.offset_col == "log_exposure"
    np.testing.assert_allclose(from_formula.engine_fit.params, from_spec.engine_fit.params)


def test_offset_column_never_a_predictor(count_data, glm_spec):
    """Test naming the offset column as a predictor has no effect."""
    with_term = fit(glm_spec, count_data, "count ~ group + x + log_exposure")
    without = fit(glm_spec, count_data, FORMULA)

    assert with_term.feature_names == without.feature_names
    np.testing.assert_allclose(with_term.engine_fit.params, without.engine_fit.params)


def test_offset_col_argument_overrides_spec(count_data):
    """Test fit(offset_col=...) overrides the spec's column."""
    fitted = fit(poisson_reg_offset(offset_col="other"), count_data, FORMULA, offset_col="log_exposure")
    assert fitted.offset_col == "log_exposure"
    assert fitted.spec.offset_col == "log_exposure"


def test_explicit_default_name_not_overridden_by_formula(count_data):
    """Test offset_col="offset" set by the caller is not replaced by an offset() term."""
    data = count_data.assign(offset=count_data["log_exposure"])
    spec = poisson_reg_offset(offset_col="offset")

    with pytest.raises(ValueError, match="differs from offset column"):
        fit(spec, data, "count ~ group + x + offset(log_exposure)")


def test_defaulted_offset_col_follows_formula_after_copies(count_data):
    """Test a spec whose offset column was never set still defers to the formula."""
    spec = set_engine(poisson_reg_offset(), "glmnet_offset", maxiter=50)
    spec = finalize_model(set_args(spec, penalty=tune()), {"penalty": 0.01})

    fitted = fit(spec, count_data, "count ~ group + x + offset(log_exposure)")
    assert fitted.offset_col == "log_exposure"


def test_offset_in_interaction_rejected(count_data, glm_spec, spy_binding):
    """Test the offset column cannot enter the design through an interaction."""
    install, calls = spy_binding
    install("poisson_reg_offset", "glm_offset")

    with pytest.raises(ValueError, match="cannot be used inside term"):
        fit(glm_spec, count_data, "count ~ group + x:log_exposure")
    assert calls["fit"] == []


# ============================================================================
# Errors
# ============================================================================


def test_engine_failure_is_wrapped(count_data, monkeypatch):
    """Test exceptions from the engine library become ExternalFitError."""
    real = get_engine("poisson_reg_offset", "glm_offset")

    def broken(*args, **kwargs):
        raise np.linalg.LinAlgError("Singular matrix")

    monkeypatch.setattr(
        fitted_module, "get_engine", lambda t, e: dataclasses.replace(real, fit=broken)
    )

    with pytest.raises(ExternalFitError, match="Singular matrix") as excinfo:
        fit(poisson_reg_offset(offset_col="log_exposure"), count_data, FORMULA)
    assert excinfo.value.engine == "glm_offset"
    assert isinstance(excinfo.value.__cause__, np.linalg.LinAlgError)


def test_bad_engine_argument_is_wrapped(count_data):
    """Test a library rejecting an argument surfaces as ExternalFitError."""
    spec = decision_tree_offset(min_n=-3, offset_col="log_exposure")
    with pytest.raises(ExternalFitError, match="cart_offset"):
        fit(spec, count_data, FORMULA)


def test_glmnet_requires_penalty(count_data):
    """Test glmnet_offset refuses to fit without a penalty."""
    spec = poisson_reg_offset(engine="glmnet_offset", offset_col="log_exposure")
    with pytest.raises(ValueError, match="penalty"):
        fit(spec, count_data, FORMULA)


def test_tune_placeholders_block_fit(count_data):
    """Test a spec with tune() placeholders cannot be fitted."""
    spec = poisson_reg_offset(engine="glmnet_offset", penalty=tune(), offset_col="log_exposure")
    with pytest.raises(ValueError, match="finalize_model"):
        fit(spec, count_data, FORMULA)


def test_empty_training_data(glm_spec):
    """Test training with empty data raises error."""
    with pytest.raises(ValueError, match="Training data is empty"):
        fit(glm_spec, pd.DataFrame(), FORMULA)


def test_unsupported_prediction_type(count_data, glm_spec):
    """Test unknown prediction types raise."""
    fitted = fit(glm_spec, count_data, FORMULA)
    with pytest.raises(UnsupportedPredictionTypeError, match="conf_int"):
        fitted.predict(count_data, type="conf_int")


def test_unseen_level_at_prediction(count_data, glm_spec):
    """Test unseen factor levels raise instead of being dropped."""
    fitted = fit(glm_spec, count_data, FORMULA)
    new = count_data.head(4).assign(group=["a", "b", "d", "c"])
    with pytest.raises(ValueError, match="not seen during fit"):
        fitted.predict(new)


# ============================================================================
# Output shape, tidy, augment, persistence
# ============================================================================


def test_prediction_frame_shape(count_data, glm_spec):
    """Test predictions are one .pred row per input row, index reset."""
    fitted = fit(glm_spec, count_data, FORMULA)
    new = count_data.iloc[[5, 3, 3, 90]]

    preds = predict(fitted, new)

    assert list(preds.columns) == [".pred"]
    assert list(preds.index) == [0, 1, 2, 3]
    assert preds[".pred"].iloc[1] == preds[".pred"].iloc[2]


def test_raw_prediction_is_linear_predictor(count_data, glm_spec):
    """Test type="raw" returns the engine scale."""
    fitted = fit(glm_spec, count_data, FORMULA)
    numeric = fitted.predict(count_data)[".pred"]
    raw = fitted.predict(count_data, type="raw")[".pred"]
    np.testing.assert_allclose(np.exp(raw), numeric)


def test_tidy_glm(count_data, glm_spec):
    """Test coefficient table for glm_offset."""
    table = tidy(fit(glm_spec, count_data, FORMULA))
    assert list(table.columns) == ["term", "estimate"]
    assert list(table["term"]) == ["Intercept", "group[T.b]", "group[T.c]", "x"]


def test_tidy_glmnet_has_penalty(count_data):
    """Test glmnet coefficient table carries the penalty."""
    spec = poisson_reg_offset(engine="glmnet_offset", penalty=1e-5, offset_col="log_exposure")
    table = tidy(fit(spec, count_data, FORMULA))
    assert (table["penalty"] == 1e-5).all()


def test_tidy_tree_unavailable(count_data):
    """Test tree engines have no coefficient table."""
    fitted = fit(decision_tree_offset(offset_col="log_exposure"), count_data, FORMULA)
    with pytest.raises(ValueError, match="does not provide coefficients"):
        tidy(fitted)


def test_augment(count_data, glm_spec):
    """Test augment appends predictions to the data."""
    fitted = fit(glm_spec, count_data, FORMULA)
    out = augment(fitted, count_data.tail(5))
    assert list(out.columns) == list(count_data.columns) + [".pred"]
    assert len(out) == 5


def test_training_metadata(count_data, glm_spec):
    """Test training metadata is recorded."""
    fitted = fit(glm_spec, count_data, FORMULA)
    assert fitted.training_metadata["n_samples"] == 100
    assert fitted.training_metadata["offset_col"] == "log_exposure"
    assert fitted.training_metadata["feature_names"] == fitted.feature_names


@pytest.mark.parametrize(
    "spec",
    [
        poisson_reg_offset(offset_col="log_exposure"),
        decision_tree_offset(tree_depth=3, offset_col="log_exposure"),
        boost_tree_offset(trees=10, offset_col="log_exposure"),
    ],
)
def test_save_load(count_data, spec):
    """Test fitted models survive joblib round trips."""
    fitted = fit(spec, count_data, FORMULA)

    with tempfile.TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / "nested" / "model.joblib"
        fitted.save(str(path))
        loaded = FittedModel.load(str(path))

    assert loaded.design_info is not None
    np.testing.assert_allclose(
        loaded.predict(count_data.head(20))[".pred"],
        fitted.predict(count_data.head(20))[".pred"],
    )


def _round_trip(fitted):
    with tempfile.TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / "model.joblib"
        fitted.save(str(path))
        return FittedModel.load(str(path))


def test_save_load_keeps_stateful_transforms(count_data, glm_spec):
    """Test centering learned at fit time is reused after loading."""
    fitted = fit(glm_spec, count_data, "count ~ group + center(x)")
    loaded = _round_trip(fitted)

    new = count_data.head(5)
    np.testing.assert_allclose(
        loaded.predict(new)[".pred"], fitted.predict(new)[".pred"], rtol=1e-10
    )


def test_save_load_predicts_level_subset(count_data, glm_spec):
    """Test a loaded model predicts rows holding only some levels of a coded number."""
    data = count_data.assign(k=np.arange(len(count_data)) % 3)
    fitted = fit(glm_spec, data, "count ~ C(k) + x")
    loaded = _round_trip(fitted)

    subset = data[data["k"] == 2]
    np.testing.assert_allclose(
        loaded.predict(subset)[".pred"], fitted.predict(subset)[".pred"], rtol=1e-10
    )


def test_load_missing_file():
    """Test loading a missing artifact raises FileNotFoundError."""
    with pytest.raises(FileNotFoundError):
        FittedModel.load("/nonexistent/model.joblib")
