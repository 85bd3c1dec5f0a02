"""
Engine configurations for the offset-aware model specifications.

Defines, per (model type, engine):
- The mapping from abstract argument names to engine keyword arguments
- Fixed engine defaults handed to the library on every fit
- The keyword that receives the offset
"""

import copy
from typing import Any, Dict, Tuple

from offsetreg.core.config import settings

# ============================================================================
# Model types and their main (tunable) arguments
# ============================================================================

MODEL_ARGS: Dict[str, Tuple[str, ...]] = {
    "poisson_reg_offset": ("penalty", "mixture"),
    "decision_tree_offset": ("cost_complexity", "tree_depth", "min_n"),
    "boost_tree_offset": (
        "trees",
        "tree_depth",
        "learn_rate",
        "min_n",
        "loss_reduction",
        "sample_size",
    ),
}

DEFAULT_ENGINES: Dict[str, str] = {
    "poisson_reg_offset": "glm_offset",
    "decision_tree_offset": "cart_offset",
    "boost_tree_offset": "xgboost_offset",
}

# ============================================================================
# Poisson Regression Configs
# ============================================================================

GLM_OFFSET_CONFIG: Dict[str, Any] = {
    "engine": "glm_offset",
    "model_class": "statsmodels.genmod.generalized_linear_model.GLM",
    "arg_map": {},
    "defaults": {
        "maxiter": settings.GLM_MAX_ITER,
    },
    "offset_arg": "offset",
    "description": "Poisson GLM fitted by IRLS with the offset passed as a vector",
}

GLMNET_OFFSET_CONFIG: Dict[str, Any] = {
    "engine": "glmnet_offset",
    "model_class": "statsmodels.genmod.generalized_linear_model.GLM",
    "arg_map": {
        "penalty": "alpha",
        "mixture": "L1_wt",
    },
    "defaults": {
        "L1_wt": 1.0,  # lasso, as glmnet
        "maxiter": settings.GLMNET_MAX_ITER,
    },
    "offset_arg": "offset",
    "description": "Elastic-net Poisson GLM fitted by coordinate descent",
}

# ============================================================================
# Tree Configs
# ============================================================================

CART_OFFSET_CONFIG: Dict[str, Any] = {
    "engine": "cart_offset",
    "model_class": "sklearn.tree.DecisionTreeRegressor",
    "arg_map": {
        "cost_complexity": "ccp_alpha",
        "tree_depth": "max_depth",
        "min_n": "min_samples_split",
    },
    "defaults": {
        "criterion": "poisson",
        "random_state": settings.RANDOM_STATE,
    },
    # Rate target weighted by exposure = exp(offset)
    "offset_arg": "sample_weight",
    "description": "Poisson-deviance CART fitted on rates weighted by exposure",
}

XGBOOST_OFFSET_CONFIG: Dict[str, Any] = {
    "engine": "xgboost_offset",
    "model_class": "xgboost.XGBRegressor",
    "arg_map": {
        "trees": "n_estimators",
        "tree_depth": "max_depth",
        "learn_rate": "learning_rate",
        "min_n": "min_child_weight",
        "loss_reduction": "gamma",
        "sample_size": "subsample",
    },
    "defaults": {
        "objective": "count:poisson",
        "random_state": settings.RANDOM_STATE,
    },
    "offset_arg": "base_margin",
    "description": "Gradient boosted Poisson trees (XGBoost) with the offset as base margin",
}

LIGHTGBM_OFFSET_CONFIG: Dict[str, Any] = {
    "engine": "lightgbm_offset",
    "model_class": "lightgbm.LGBMRegressor",
    "arg_map": {
        "trees": "n_estimators",
        "tree_depth": "max_depth",
        "learn_rate": "learning_rate",
        "min_n": "min_child_samples",
        "loss_reduction": "min_split_gain",
        "sample_size": "subsample",
    },
    "defaults": {
        "objective": "poisson",
        "random_state": settings.RANDOM_STATE,
        "verbosity": -1,
    },
    "offset_arg": "init_score",
    "description": "Gradient boosted Poisson trees (LightGBM) with the offset as initial score",
}

# ============================================================================
# Configuration Registry
# ============================================================================

ENGINE_CONFIGS: Dict[str, Dict[str, Dict[str, Any]]] = {
    "poisson_reg_offset": {
        "glm_offset": GLM_OFFSET_CONFIG,
        "glmnet_offset": GLMNET_OFFSET_CONFIG,
    },
    "decision_tree_offset": {
        "cart_offset": CART_OFFSET_CONFIG,
    },
    "boost_tree_offset": {
        "xgboost_offset": XGBOOST_OFFSET_CONFIG,
        "lightgbm_offset": LIGHTGBM_OFFSET_CONFIG,
    },
}


def get_config(model_type: str, engine: str) -> Dict[str, Any]:
    """
    Retrieve the configuration for a model type and engine.

    Args:
        model_type: Model type (e.g., "poisson_reg_offset")
        engine: Engine name (e.g., "glmnet_offset")

    Returns:
        Deep copy of the configuration dictionary

    Raises:
        ValueError: If model_type or engine is invalid

    Examples:
        >>> config = get_config("poisson_reg_offset", "glmnet_offset")
        >>> config["arg_map"]["penalty"]
        'alpha'
    """
    if model_type not in ENGINE_CONFIGS:
        raise ValueError(
            f"Invalid model_type '{model_type}'. "
            f"Valid options: {list(ENGINE_CONFIGS.keys())}"
        )
    engines = ENGINE_CONFIGS[model_type]
    if engine not in engines:
        raise ValueError(
            f"Invalid engine '{engine}' for {model_type}. "
            f"Valid options: {list(engines.keys())}"
        )
    return copy.deepcopy(engines[engine])
