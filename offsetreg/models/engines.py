"""
Engine bindings for the offset-aware model specifications.

Each (model type, engine) pair is bound to concrete fit/predict functions from
statsmodels, scikit-learn, xgboost or lightgbm. Every engine receives the
design matrix, the response and the offset vector separately; the offset never
appears as a regular covariate.

The registry is built once at import and exposed read-only.
"""

import logging
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

import lightgbm as lgb
import numpy as np
import statsmodels.api as sm
import xgboost as xgb
from sklearn.tree import DecisionTreeRegressor

from offsetreg.core.errors import UnsupportedEngineError
from offsetreg.models.model_config import ENGINE_CONFIGS

logger = logging.getLogger(__name__)

PREDICTION_TYPES = ("numeric", "raw")
INTERCEPT = "Intercept"


@dataclass(frozen=True)
class EngineBinding:
    """Static description of how one engine is fitted and queried."""

    model_type: str
    engine: str
    fit: Callable[..., Any]
    predict: Callable[..., np.ndarray]
    arg_map: Mapping[str, str]
    defaults: Mapping[str, Any]
    offset_arg: str
    intercept: bool
    coefs: Optional[Callable[[Any], np.ndarray]] = None
    required_args: Tuple[str, ...] = ()
    pred_types: Tuple[str, ...] = PREDICTION_TYPES
    description: str = ""


# ============================================================================
# statsmodels: Poisson GLM
# ============================================================================


def fit_glm_offset(
    X: np.ndarray,
    y: np.ndarray,
    offset: np.ndarray,
    params: Dict[str, Any],
    feature_names: Sequence[str] = (),
):
    """Fit a Poisson GLM by IRLS with the offset as a fixed-coefficient term."""
    model = sm.GLM(y, X, family=sm.families.Poisson(), offset=offset)
    return model.fit(**params)


def fit_glmnet_offset(
    X: np.ndarray,
    y: np.ndarray,
    offset: np.ndarray,
    params: Dict[str, Any],
    feature_names: Sequence[str] = (),
):
    """
    Fit an elastic-net Poisson GLM by coordinate descent.

    The penalty applies to every coefficient except the intercept column.
    """
    params = dict(params)
    penalty = float(params.pop("alpha"))
    alpha = np.full(X.shape[1], penalty)
    for i, name in enumerate(feature_names):
        if name == INTERCEPT:
            alpha[i] = 0.0
    model = sm.GLM(y, X, family=sm.families.Poisson(), offset=offset)
    return model.fit_regularized(method="elastic_net", alpha=alpha, refit=False, **params)


def predict_glm(result, X: np.ndarray, offset: np.ndarray, pred_type: str = "numeric") -> np.ndarray:
    which = "mean" if pred_type == "numeric" else "linear"
    return np.asarray(result.model.predict(result.params, X, offset=offset, which=which))


def glm_coefs(result) -> np.ndarray:
    return np.asarray(result.params, dtype=float)


# ============================================================================
# scikit-learn: Poisson CART on exposure-weighted rates
# ============================================================================


def fit_cart_offset(
    X: np.ndarray,
    y: np.ndarray,
    offset: np.ndarray,
    params: Dict[str, Any],
    feature_names: Sequence[str] = (),
):
    """
    Fit a Poisson-deviance regression tree.

    A leaf's Poisson MLE with offset log(e) is sum(y) / sum(e), which is the
    e-weighted mean of y / e, so the tree is grown on rates with the exposure
    as sample weight.
    """
    exposure = np.exp(offset)
    tree = DecisionTreeRegressor(**params)
    tree.fit(X, y / exposure, sample_weight=exposure)
    return tree


def predict_cart(tree, X: np.ndarray, offset: np.ndarray, pred_type: str = "numeric") -> np.ndarray:
    rate = tree.predict(X)
    if pred_type == "raw":
        return rate
    return rate * np.exp(offset)


# ============================================================================
# xgboost / lightgbm: boosted Poisson trees
# ============================================================================


def fit_xgboost_offset(
    X: np.ndarray,
    y: np.ndarray,
    offset: np.ndarray,
    params: Dict[str, Any],
    feature_names: Sequence[str] = (),
):
    model = xgb.XGBRegressor(**params)
    model.fit(X, y, base_margin=offset, verbose=False)
    return model


def predict_xgboost(model, X: np.ndarray, offset: np.ndarray, pred_type: str = "numeric") -> np.ndarray:
    return model.predict(X, base_margin=offset, output_margin=(pred_type == "raw"))


def fit_lightgbm_offset(
    X: np.ndarray,
    y: np.ndarray,
    offset: np.ndarray,
    params: Dict[str, Any],
    feature_names: Sequence[str] = (),
):
    """
    Fit LightGBM boosted Poisson trees with the offset as initial score.

    LightGBM only bags rows when subsample_freq > 0, so a subsample below 1
    turns on bagging at every iteration unless a frequency was given.
    """
    params = dict(params)
    freq = params.get("subsample_freq") or params.get("bagging_freq")
    if params.get("subsample", 1.0) < 1.0 and not freq:
        params["subsample_freq"] = 1
    model = lgb.LGBMRegressor(**params)
    model.fit(X, y, init_score=offset)
    return model


def predict_lightgbm(model, X: np.ndarray, offset: np.ndarray, pred_type: str = "numeric") -> np.ndarray:
    # LightGBM never adds init_score back at prediction time
    margin = model.predict(X, raw_score=True) + offset
    if pred_type == "raw":
        return margin
    return np.exp(margin)


# ============================================================================
# Registry
# ============================================================================

_ENGINE_FUNCTIONS: Dict[str, Dict[str, Any]] = {
    "glm_offset": {
        "fit": fit_glm_offset,
        "predict": predict_glm,
        "coefs": glm_coefs,
        "intercept": True,
    },
    "glmnet_offset": {
        "fit": fit_glmnet_offset,
        "predict": predict_glm,
        "coefs": glm_coefs,
        "intercept": True,
        "required_args": ("penalty",),
    },
    "cart_offset": {
        "fit": fit_cart_offset,
        "predict": predict_cart,
        "intercept": False,
    },
    "xgboost_offset": {
        "fit": fit_xgboost_offset,
        "predict": predict_xgboost,
        "intercept": False,
    },
    "lightgbm_offset": {
        "fit": fit_lightgbm_offset,
        "predict": predict_lightgbm,
        "intercept": False,
    },
}


def _build_registry() -> Mapping[Tuple[str, str], EngineBinding]:
    table: Dict[Tuple[str, str], EngineBinding] = {}
    for model_type, engines in ENGINE_CONFIGS.items():
        for engine, config in engines.items():
            funcs = _ENGINE_FUNCTIONS[engine]
            table[(model_type, engine)] = EngineBinding(
                model_type=model_type,
                engine=engine,
                fit=funcs["fit"],
                predict=funcs["predict"],
                arg_map=MappingProxyType(dict(config["arg_map"])),
                defaults=MappingProxyType(dict(config["defaults"])),
                offset_arg=config["offset_arg"],
                intercept=funcs["intercept"],
                coefs=funcs.get("coefs"),
                required_args=funcs.get("required_args", ()),
                description=config["description"],
            )
    return MappingProxyType(table)


ENGINE_REGISTRY: Mapping[Tuple[str, str], EngineBinding] = _build_registry()


def list_engines(model_type: Optional[str] = None) -> List[Tuple[str, str]]:
    """
    List registered (model type, engine) pairs.

    Args:
        model_type: Only return engines for this model type

    Returns:
        Sorted list of (model_type, engine) tuples
    """
    return sorted(k for k in ENGINE_REGISTRY if model_type is None or k[0] == model_type)


def get_engine(model_type: str, engine: str) -> EngineBinding:
    """
    Look up the binding for a (model type, engine) pair.

    Raises:
        UnsupportedEngineError: If the pair is not registered. There is no
            fallback to another engine.
    """
    try:
        return ENGINE_REGISTRY[(model_type, engine)]
    except KeyError:
        available = [e for t, e in list_engines(model_type)]
        raise UnsupportedEngineError(model_type, engine, available) from None


def translate_args(
    binding: EngineBinding,
    args: Mapping[str, Any],
    engine_args: Optional[Mapping[str, Any]] = None,
) -> Dict[str, Any]:
    """
    Map abstract argument values onto the engine's keyword arguments.

    Unset (None) arguments are left out so the library default applies.
    Engine arguments given through set_engine() override everything else.

    Args:
        binding: Engine binding
        args: Main arguments of the model spec (e.g., {"penalty": 0.01})
        engine_args: Extra engine keyword arguments

    Returns:
        Keyword arguments for the engine fit function
    """
    params: Dict[str, Any] = dict(binding.defaults)
    for name, value in args.items():
        if value is None:
            continue
        if name not in binding.arg_map:
            logger.warning(
                "Argument '%s' is not used by engine '%s' and will be ignored",
                name,
                binding.engine,
            )
            continue
        params[binding.arg_map[name]] = value
    params.update(engine_args or {})
    return params
