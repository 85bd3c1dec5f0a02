"""
Model specifications for offset-aware count models.

A ModelSpec is a pure value: it records the model type, mode, engine, main
arguments and offset column, and is never fitted in place. fit() turns a spec
into a FittedModel; set_engine(), set_args() and finalize_model() return new
specs.
"""

from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional

from offsetreg.core.config import settings
from offsetreg.core.errors import InvalidModeError
from offsetreg.models.engines import get_engine
from offsetreg.models.model_config import DEFAULT_ENGINES, MODEL_ARGS

MODES = ("regression",)


@dataclass(frozen=True)
class TuneParameter:
    """Placeholder for an argument whose value is chosen by tune_grid()."""

    id: str = ""

    def __repr__(self) -> str:
        return f"tune({self.id!r})" if self.id else "tune()"


def tune(id: str = "") -> TuneParameter:
    """
    Mark an argument for tuning.

    Examples:
        >>> spec = poisson_reg_offset(engine="glmnet_offset", penalty=tune())
        >>> spec.tunable()
        ['penalty']
    """
    return TuneParameter(id=id)


@dataclass(frozen=True)
class ModelSpec:
    """
    Declarative description of an offset-aware model.

    Attributes:
        model_type: "poisson_reg_offset", "decision_tree_offset" or "boost_tree_offset"
        mode: Always "regression"
        engine: Registered engine name (e.g., "glmnet_offset")
        args: Main arguments; None defers to the engine default, tune() marks for tuning
        engine_args: Extra keyword arguments handed to the engine as-is
        offset_col: Name of the pre-logged offset column (None: settings.DEFAULT_OFFSET_COL)
        offset_col_set: True when offset_col was given rather than defaulted;
            only a defaulted column gives way to an offset() formula term

    Specs compare and hash by value, so they can key dicts of results; this
    requires hashable argument values.
    """

    model_type: str
    mode: str
    engine: str
    args: Mapping[str, Any] = field(default_factory=dict)
    engine_args: Mapping[str, Any] = field(default_factory=dict)
    offset_col: Optional[str] = None
    offset_col_set: bool = field(default=False, init=False, repr=False, compare=False)

    def __post_init__(self):
        object.__setattr__(self, "offset_col_set", self.offset_col is not None)
        if self.offset_col is None:
            object.__setattr__(self, "offset_col", settings.DEFAULT_OFFSET_COL)

        if self.mode not in MODES:
            raise InvalidModeError(self.mode, MODES)
        binding = get_engine(self.model_type, self.engine)

        unknown = set(self.args) - set(MODEL_ARGS[self.model_type])
        if unknown:
            raise ValueError(
                f"Unknown arguments for {self.model_type}: {sorted(unknown)}. "
                f"Valid options: {list(MODEL_ARGS[self.model_type])}"
            )
        if binding.offset_arg in self.engine_args:
            raise ValueError(
                f"Do not pass '{binding.offset_arg}' to engine '{self.engine}'; "
                f"name the offset column with offset_col instead"
            )
        if not isinstance(self.offset_col, str) or not self.offset_col:
            raise ValueError(f"offset_col must be a non-empty string, got {self.offset_col!r}")

        full_args = {name: None for name in MODEL_ARGS[self.model_type]}
        full_args.update(self.args)
        object.__setattr__(self, "args", MappingProxyType(full_args))
        object.__setattr__(self, "engine_args", MappingProxyType(dict(self.engine_args)))

    def __reduce__(self):
        # mappingproxy cannot be pickled; rebuild from plain dicts
        return (
            self.__class__,
            (
                self.model_type,
                self.mode,
                self.engine,
                dict(self.args),
                dict(self.engine_args),
                _given_offset_col(self),
            ),
        )

    def __hash__(self) -> int:
        return hash(
            (
                self.model_type,
                self.mode,
                self.engine,
                tuple(sorted(self.args.items())),
                tuple(sorted(self.engine_args.items())),
                self.offset_col,
            )
        )

    def tunable(self) -> List[str]:
        """Return the tuning keys (tune id, or argument name) still holding placeholders."""
        return [
            value.id or name
            for name, value in self.args.items()
            if isinstance(value, TuneParameter)
        ]

    def __repr__(self) -> str:
        set_args = {k: v for k, v in self.args.items() if v is not None}
        return (
            f"ModelSpec({self.model_type}, mode={self.mode!r}, engine={self.engine!r}, "
            f"offset_col={self.offset_col!r}, args={set_args})"
        )


def _new_spec(
    model_type: str,
    mode: str,
    engine: Optional[str],
    args: Dict[str, Any],
    offset_col: Optional[str],
) -> ModelSpec:
    return ModelSpec(
        model_type=model_type,
        mode=mode,
        engine=engine or DEFAULT_ENGINES[model_type],
        args=args,
        offset_col=offset_col,
    )


def _given_offset_col(spec: ModelSpec) -> Optional[str]:
    """The offset column to carry into a copy: None keeps it defaulted."""
    return spec.offset_col if spec.offset_col_set else None


def poisson_reg_offset(
    mode: str = "regression",
    engine: Optional[str] = None,
    penalty: Any = None,
    mixture: Any = None,
    offset_col: Optional[str] = None,
) -> ModelSpec:
    """
    Poisson regression with an offset term.

    Args:
        mode: Model mode (only "regression")
        engine: "glm_offset" (default) or "glmnet_offset"
        penalty: Total amount of regularization (glmnet_offset only)
        mixture: Proportion of lasso penalty, 1 = lasso, 0 = ridge (glmnet_offset only)
        offset_col: Column holding the offset, already on the log scale

    Raises:
        InvalidModeError: If mode is not "regression"
        UnsupportedEngineError: If engine is not registered for this model

    Examples:
        >>> spec = poisson_reg_offset(penalty=1e-5, engine="glmnet_offset", offset_col="log_pop")
    """
    return _new_spec(
        "poisson_reg_offset",
        mode,
        engine,
        {"penalty": penalty, "mixture": mixture},
        offset_col,
    )


def decision_tree_offset(
    mode: str = "regression",
    engine: Optional[str] = None,
    cost_complexity: Any = None,
    tree_depth: Any = None,
    min_n: Any = None,
    offset_col: Optional[str] = None,
) -> ModelSpec:
    """
    Poisson decision tree with an offset term.

    Args:
        mode: Model mode (only "regression")
        engine: "cart_offset" (default)
        cost_complexity: Minimal cost-complexity pruning parameter
        tree_depth: Maximum tree depth
        min_n: Minimum number of rows required to split a node
        offset_col: Column holding the offset, already on the log scale
    """
    return _new_spec(
        "decision_tree_offset",
        mode,
        engine,
        {"cost_complexity": cost_complexity, "tree_depth": tree_depth, "min_n": min_n},
        offset_col,
    )


def boost_tree_offset(
    mode: str = "regression",
    engine: Optional[str] = None,
    trees: Any = None,
    tree_depth: Any = None,
    learn_rate: Any = None,
    min_n: Any = None,
    loss_reduction: Any = None,
    sample_size: Any = None,
    offset_col: Optional[str] = None,
) -> ModelSpec:
    """Boosted Poisson trees with an offset term ("xgboost_offset" or "lightgbm_offset")."""
    return _new_spec(
        "boost_tree_offset",
        mode,
        engine,
        {
            "trees": trees,
            "tree_depth": tree_depth,
            "learn_rate": learn_rate,
            "min_n": min_n,
            "loss_reduction": loss_reduction,
            "sample_size": sample_size,
        },
        offset_col,
    )


def set_engine(
    spec: ModelSpec,
    engine: str,
    offset_col: Optional[str] = None,
    **engine_args: Any,
) -> ModelSpec:
    """
    Return a copy of spec bound to another engine.

    Args:
        spec: Model specification
        engine: Engine name
        offset_col: Offset column; keeps the current one when omitted
        **engine_args: Extra keyword arguments for the engine (replace any set before)

    Raises:
        UnsupportedEngineError: If engine is not registered for spec.model_type
    """
    return replace(
        spec,
        engine=engine,
        engine_args=engine_args,
        offset_col=offset_col or _given_offset_col(spec),
        args=dict(spec.args),
    )


def set_args(spec: ModelSpec, **args: Any) -> ModelSpec:
    """Return a copy of spec with some main arguments replaced."""
    new_args = dict(spec.args)
    new_args.update(args)
    return replace(
        spec,
        args=new_args,
        engine_args=dict(spec.engine_args),
        offset_col=_given_offset_col(spec),
    )


def finalize_model(spec: ModelSpec, params: Mapping[str, Any]) -> ModelSpec:
    """
    Substitute values for tune() placeholders.

    Args:
        spec: Model specification with placeholders
        params: Values keyed by tune id, or by argument name when the id is empty

    Raises:
        ValueError: If params names a key that is not tunable in spec
    """
    tunable = set(spec.tunable())
    unknown = set(params) - tunable
    if unknown:
        raise ValueError(
            f"Parameters {sorted(unknown)} are not tunable in this spec. "
            f"Tunable: {sorted(tunable)}"
        )

    new_args = dict(spec.args)
    for name, value in spec.args.items():
        if isinstance(value, TuneParameter):
            key = value.id or name
            if key in params:
                new_args[name] = params[key]
    return replace(
        spec,
        args=new_args,
        engine_args=dict(spec.engine_args),
        offset_col=_given_offset_col(spec),
    )
