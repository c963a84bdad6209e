"""Step and gradient function decorators for kvtrain training.

``@step_fn`` marks a local training step ``(state, batch) -> (state,
metrics)``; ``@grad_fn`` marks a gradient function ``(params, batch) ->
(grads, metrics)`` used when parameters live in a key-value store. The
decorators check call contracts and record compilation metadata; the
:class:`~kvtrain.exec.engine.Engine` does the jit compilation.
"""

import functools
import inspect
from collections.abc import Mapping
from typing import Any, Callable, Dict, Optional, Union

import jax.numpy as jnp

from ..types import BatchData, GradientFunction, StepFunction
from ..exceptions import EngineError

STEP_KIND = "step"
GRAD_KIND = "grad"


def _get_train_state_type() -> type:
    """Return the TrainState type without a circular import."""
    from .engine import TrainState as _TrainState

    return _TrainState


def _validate_train_state(state: Any, func_name: str) -> None:
    if not isinstance(state, _get_train_state_type()):
        raise EngineError(
            f"Step function '{func_name}' must receive a TrainState as its first argument, "
            f"got {type(state).__name__}",
            suggestion=f"Define it as `def {func_name}(state, batch)` and pass the Engine's state",
        )


def _validate_params(params: Any, func_name: str) -> None:
    if not isinstance(params, Mapping):
        raise EngineError(
            f"Gradient function '{func_name}' must receive a parameter mapping, "
            f"got {type(params).__name__}",
            suggestion="Pass the name -> array mapping held in TrainState.params",
        )


def _validate_batch(batch: Any, func_name: str) -> BatchData:
    if not isinstance(batch, Mapping):
        raise EngineError(
            f"'{func_name}' expects batch to be a mapping of arrays, got {type(batch).__name__}",
            suggestion="Yield dict batches from the data source (e.g. {'x': ..., 'y': ...})",
        )
    return batch


def _check_metrics(metrics: Any, func_name: str) -> None:
    if not isinstance(metrics, Mapping):
        raise EngineError(
            f"'{func_name}' must return metrics as a mapping, got {type(metrics).__name__}",
            suggestion="Return a dict like {'loss': loss_value}",
        )
    for key, value in metrics.items():
        size = jnp.size(value)
        if size != 1:
            raise EngineError(
                f"Metric '{key}' returned from '{func_name}' must be a scalar, "
                f"observed shape {jnp.shape(value)}",
                suggestion="Reduce the metric (e.g. jnp.sum or jnp.mean) before returning it",
            )


def metrics_to_host(metrics: Mapping[str, Any], func_name: str) -> Dict[str, float]:
    """Validate scalar metrics and convert them to Python floats."""
    _check_metrics(metrics, func_name)
    return {key: float(jnp.reshape(jnp.asarray(value), ())) for key, value in metrics.items()}


def _positional_names(func: Callable, kind: str) -> tuple:
    names = list(inspect.signature(func).parameters)
    if len(names) < 2:
        expected = "(state, batch)" if kind == STEP_KIND else "(params, batch)"
        raise EngineError(
            f"'{func.__name__}' must accept at least two arguments {expected}",
            suggestion=f"Define it as `def {func.__name__}{expected}`",
        )
    return tuple(names)


def step_fn(
    func: Optional[StepFunction] = None,
) -> Union[StepFunction, Callable[[StepFunction], StepFunction]]:
    """Mark a function as a local training step.

    The decorated function must take ``(state, batch)`` and return
    ``(new_state, metrics)`` where every metric is a scalar. Calling the
    decorated function directly runs it eagerly with validation; the Engine
    compiles the traced body with ``jax.jit``.

    Example:
        ```python
        @step_fn
        def train_step(state, batch):
            def loss_fn(params):
                return softmax_cross_entropy(lenet_apply(params, batch["x"]), batch["y"])

            loss, grads = jax.value_and_grad(loss_fn)(state.params)
            return state.apply_gradients(grads=grads), {"loss": loss}
        ```
    """

    def decorator(fn: StepFunction) -> StepFunction:
        names = _positional_names(fn, STEP_KIND)

        def _traced_body(state, batch):
            _validate_train_state(state, fn.__name__)
            _validate_batch(batch, fn.__name__)
            new_state, metrics = fn(state, batch)
            _validate_train_state(new_state, fn.__name__)
            _check_metrics(metrics, fn.__name__)
            return new_state, metrics

        @functools.wraps(fn)
        def wrapper(state, batch):
            new_state, metrics = _traced_body(state, batch)
            return new_state, metrics_to_host(metrics, fn.__name__)

        wrapper._original_fn = fn  # type: ignore[attr-defined]
        wrapper._validated_fn = _traced_body  # type: ignore[attr-defined]
        wrapper._is_step_fn = True  # type: ignore[attr-defined]
        wrapper._kind = STEP_KIND  # type: ignore[attr-defined]
        wrapper._parameter_names = names  # type: ignore[attr-defined]
        return wrapper

    if func is not None:
        return decorator(func)
    return decorator


def grad_fn(func: Optional[GradientFunction] = None) -> Any:
    """Mark a function as a gradient function for key-value training.

    The decorated function takes ``(params, batch)`` and returns
    ``(grads, metrics)``; ``grads`` must have the same keys as ``params``.
    """

    def decorator(fn: GradientFunction) -> GradientFunction:
        names = _positional_names(fn, GRAD_KIND)

        def _traced_body(params, batch):
            _validate_params(params, fn.__name__)
            _validate_batch(batch, fn.__name__)
            grads, metrics = fn(params, batch)
            if not isinstance(grads, Mapping) or set(grads) != set(params):
                raise EngineError(
                    f"Gradient function '{fn.__name__}' must return one gradient per parameter",
                    suggestion="Differentiate with respect to the whole params mapping",
                )
            _check_metrics(metrics, fn.__name__)
            return grads, metrics

        @functools.wraps(fn)
        def wrapper(params, batch):
            grads, metrics = _traced_body(params, batch)
            return grads, metrics_to_host(metrics, fn.__name__)

        wrapper._original_fn = fn  # type: ignore[attr-defined]
        wrapper._validated_fn = _traced_body  # type: ignore[attr-defined]
        wrapper._is_step_fn = True  # type: ignore[attr-defined]
        wrapper._kind = GRAD_KIND  # type: ignore[attr-defined]
        wrapper._parameter_names = names  # type: ignore[attr-defined]
        return wrapper

    if func is not None:
        return decorator(func)
    return decorator
