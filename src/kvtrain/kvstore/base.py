"""Key-value store interface shared by the local and distributed backends.

Workers exchange parameters and gradients with the store by name:

- ``init(keys, values)`` registers initial parameter values.
- ``push(keys, grads)`` sums gradients across workers and applies the
  installed optimizer to the stored values (or stores the sum when no
  optimizer is installed).
- ``pull(keys)`` returns the current stored values.
- ``barrier()`` blocks until every worker reaches it.

Backends only decide how values travel between processes: ``_broadcast`` for
initial values and ``_aggregate`` for pushed gradients.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

import jax
import jax.numpy as jnp

from ..exceptions import KVStoreError, unknown_key_error
from ..optim.optax_adapter import OptaxAdapter
from ..runtime.init import get_role
from ..types import Array, KVKeys, KVValues, OptState, Params

logger = logging.getLogger(__name__)


def _normalize(keys: KVKeys, values: Optional[KVValues] = None) -> Tuple[List[str], List[Array]]:
    """Turn single or sequence arguments into parallel lists."""
    if isinstance(keys, str):
        key_list = [keys]
        value_list = [] if values is None else [values]
    else:
        key_list = list(keys)
        if values is None:
            value_list = []
        elif isinstance(values, (list, tuple)):
            value_list = list(values)
        else:
            raise KVStoreError(
                f"Expected a sequence of values for {len(key_list)} keys, got {type(values).__name__}"
            )

    if values is not None and len(key_list) != len(value_list):
        raise KVStoreError(
            f"Got {len(key_list)} keys but {len(value_list)} values",
            "Pass exactly one value per key",
        )
    if len(set(key_list)) != len(key_list):
        raise KVStoreError(f"Duplicate keys in {key_list}")
    return key_list, value_list


class KVStore(ABC):
    """Abstract key-value store.

    Args:
        kv_type: Store type name reported by ``type``
    """

    def __init__(self, kv_type: str):
        self.type = kv_type
        self._values: Dict[str, Array] = {}
        self._optimizer: Optional[OptaxAdapter] = None
        self._opt_states: Dict[str, OptState] = {}
        self._update_fn = None

    # ------------------------------------------------------------------
    # Topology
    # ------------------------------------------------------------------
    @property
    @abstractmethod
    def rank(self) -> int:
        """Rank of this worker."""

    @property
    @abstractmethod
    def num_workers(self) -> int:
        """Number of workers sharing the store."""

    @property
    def role(self) -> str:
        """Role of this process ('worker', 'server' or 'scheduler')."""
        return get_role()

    def is_worker(self) -> bool:
        return self.role == "worker"

    # ------------------------------------------------------------------
    # Transport hooks
    # ------------------------------------------------------------------
    @abstractmethod
    def _broadcast(self, values: List[Array]) -> List[Array]:
        """Return worker 0's ``values`` on every worker."""

    @abstractmethod
    def _aggregate(self, values: List[Array]) -> List[Array]:
        """Return the element-wise sum of ``values`` across workers."""

    @abstractmethod
    def barrier(self) -> None:
        """Block until every worker reaches the barrier."""

    def max_across_workers(self, value: int) -> int:
        """Largest ``value`` passed by any worker."""
        return int(value)

    def run_server(self) -> None:
        """Entry point for processes whose role is not 'worker'."""
        raise KVStoreError(
            f"KVStore type '{self.type}' has no server processes",
            "Run every process as a worker (unset DMLC_ROLE)",
        )

    # ------------------------------------------------------------------
    # Optimizer
    # ------------------------------------------------------------------
    def set_optimizer(self, optimizer: OptaxAdapter) -> None:
        """Install the optimizer applied to pushed gradients."""
        self._optimizer = optimizer
        self._opt_states = {key: optimizer.init(value) for key, value in self._values.items()}
        self._update_fn = jax.jit(
            lambda grad, state, value: optimizer.apply_gradients(grad, state, value)
        )
        logger.info("KVStore optimizer set: %s", optimizer.describe())

    @property
    def optimizer(self) -> Optional[OptaxAdapter]:
        return self._optimizer

    def get_optimizer_states(self, keys: Optional[Sequence[str]] = None) -> Dict[str, OptState]:
        """Optimizer state held for each key (empty without an optimizer)."""
        if self._optimizer is None:
            return {}
        key_list = list(keys) if keys is not None else self.keys()
        self._check_known("get_optimizer_states", key_list)
        return {key: self._opt_states[key] for key in key_list}

    def set_optimizer_states(self, states: Mapping[str, OptState]) -> None:
        """Replace the optimizer state of existing keys, e.g. after a restore."""
        if self._optimizer is None:
            raise KVStoreError(
                "KVStore has no optimizer to restore state into",
                "Call set_optimizer before set_optimizer_states",
            )
        self._check_known("set_optimizer_states", list(states))
        self._opt_states.update(states)

    # ------------------------------------------------------------------
    # Key-value operations
    # ------------------------------------------------------------------
    def init(self, keys: KVKeys, values: KVValues) -> None:
        """Register initial values; worker 0's values are used everywhere."""
        key_list, value_list = _normalize(keys, values)
        for key in key_list:
            if key in self._values:
                raise KVStoreError(
                    f"KVStore init failed: key '{key}' is already initialized",
                    "Initialize each key exactly once",
                )

        value_list = self._broadcast([jnp.asarray(v) for v in value_list])
        for key, value in zip(key_list, value_list):
            value = jnp.asarray(value)
            self._values[key] = value
            if self._optimizer is not None:
                self._opt_states[key] = self._optimizer.init(value)

    def push(self, keys: KVKeys, values: KVValues) -> None:
        """Aggregate gradients across workers and update the stored values."""
        key_list, value_list = _normalize(keys, values)
        self._check_known("push", key_list)

        for key, value in zip(key_list, value_list):
            if jnp.shape(value) != self._values[key].shape:
                raise KVStoreError(
                    f"KVStore push failed: key '{key}' has shape {self._values[key].shape}, "
                    f"pushed {jnp.shape(value)}"
                )

        summed = self._aggregate([jnp.asarray(v) for v in value_list])
        for key, grad in zip(key_list, summed):
            grad = jnp.asarray(grad)
            if self._optimizer is None:
                self._values[key] = grad
                continue
            new_value, new_state = self._update_fn(grad, self._opt_states[key], self._values[key])
            self._values[key] = new_value
            self._opt_states[key] = new_state

    def pull(self, keys: KVKeys) -> List[Array]:
        """Return the current values for ``keys``."""
        key_list, _ = _normalize(keys)
        self._check_known("pull", key_list)
        return [self._values[key] for key in key_list]

    def keys(self) -> List[str]:
        return list(self._values)

    # Mapping conveniences used by the engine

    def init_tree(self, params: Mapping[str, Array]) -> None:
        self.init(list(params), list(params.values()))

    def push_tree(self, grads: Mapping[str, Array]) -> None:
        self.push(list(grads), list(grads.values()))

    def pull_tree(self, keys: Optional[Sequence[str]] = None) -> Params:
        key_list = list(keys) if keys is not None else self.keys()
        return dict(zip(key_list, self.pull(key_list)))

    def _check_known(self, operation: str, key_list: List[str]) -> None:
        for key in key_list:
            if key not in self._values:
                raise unknown_key_error(operation, key, list(self._values))

    def describe(self) -> str:
        return f"KVStore(type={self.type}, rank={self.rank}, num_workers={self.num_workers})"
