"""Common type definitions for kvtrain.

This module provides type aliases and protocols used throughout the package.
"""

from typing import Any, Dict, Mapping, Sequence, Tuple, Union, Protocol, runtime_checkable
import jax

# JAX/PyTree type aliases
PyTree = Any  # JAX PyTree - nested structure of arrays
Array = jax.Array  # JAX array type

# Parameter and gradient types. Models keep parameters as a flat
# name -> array mapping, which is also the key-value store's unit of exchange.
Params = Dict[str, Array]
Grads = Dict[str, Array]
OptState = PyTree
BatchData = Dict[str, Array]

# Key-value store types
KVKey = str
KVKeys = Union[KVKey, Sequence[KVKey]]
KVValues = Union[Array, Sequence[Array]]

# Step function types
StepOutput = Tuple[PyTree, Dict[str, Any]]  # (new_state, metrics)
GradOutput = Tuple[Grads, Dict[str, Any]]  # (grads, metrics)

# Logging types
LogValue = Union[float, int, str]
LogDict = Dict[str, LogValue]


@runtime_checkable
class StepFunction(Protocol):
    """Protocol for local training step functions."""

    def __call__(self, state: PyTree, batch: BatchData) -> StepOutput:
        """Execute one training step.

        Args:
            state: Current training state (TrainState)
            batch: Input batch data

        Returns:
            Tuple of (updated_state, metrics_dict)
        """
        ...


@runtime_checkable
class GradientFunction(Protocol):
    """Protocol for gradient functions used with a key-value store."""

    def __call__(self, params: Params, batch: BatchData) -> GradOutput:
        """Compute gradients and metrics for one batch."""
        ...


@runtime_checkable
class Logger(Protocol):
    """Protocol for metric logger implementations."""

    def log_scalar(self, name: str, value: LogValue, step: int) -> None:
        """Log a scalar value."""
        ...

    def log_dict(self, metrics: Mapping[str, LogValue], step: int) -> None:
        """Log a dictionary of metrics."""
        ...


@runtime_checkable
class CheckpointStrategy(Protocol):
    """Protocol for checkpoint implementations."""

    def save(self, state: PyTree) -> None:
        """Save training state to checkpoint."""
        ...

    def restore(self, step: int | None = None) -> PyTree:
        """Restore training state from checkpoint."""
        ...
