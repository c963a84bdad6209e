"""Multi-process key-value store over JAX's distributed runtime.

Every worker keeps a replica of the stored values. Gradients pushed by all
workers are summed with a process all-gather and every replica applies the
same optimizer update, so replicas stay identical without a separate server
process. Coordination (rendezvous, barriers) is handled by the
``jax.distributed`` coordination service, which worker 0 hosts.
"""

from __future__ import annotations

import itertools
import logging
from typing import List

import jax
import jax.numpy as jnp
import numpy as np
from jax.experimental import multihost_utils

from ..exceptions import KVStoreError
from ..runtime.init import auto_initialize
from ..types import Array
from .base import KVStore

logger = logging.getLogger(__name__)

DIST_TYPES = ("dist", "dist_sync", "dist_async")


class DistKVStore(KVStore):
    """Key-value store shared by all JAX processes.

    Args:
        kv_type: One of ``dist``, ``dist_sync`` or ``dist_async``
        initialize: Initialize ``jax.distributed`` from the environment when
            this process is a worker
    """

    def __init__(self, kv_type: str = "dist_sync", initialize: bool = True):
        if kv_type not in DIST_TYPES:
            raise KVStoreError(
                f"Unknown distributed KVStore type '{kv_type}'",
                f"Use one of {DIST_TYPES}",
            )
        super().__init__(kv_type)
        if kv_type == "dist_async":
            logger.warning(
                "dist_async requested; gradients are aggregated synchronously across workers"
            )
        self._barrier_ids = itertools.count()
        if initialize and self.is_worker():
            auto_initialize()

    @property
    def rank(self) -> int:
        return jax.process_index()

    @property
    def num_workers(self) -> int:
        return jax.process_count()

    def _broadcast(self, values: List[Array]) -> List[Array]:
        if self.num_workers == 1:
            return values
        try:
            return list(multihost_utils.broadcast_one_to_all(values))
        except Exception as e:
            raise KVStoreError(
                f"Failed to broadcast initial values from worker 0: {e}",
                "Check that every worker initializes the same keys in the same order",
            ) from e

    def _aggregate(self, values: List[Array]) -> List[Array]:
        if self.num_workers == 1:
            return values
        try:
            gathered = multihost_utils.process_allgather(values)
        except Exception as e:
            raise KVStoreError(
                f"Failed to aggregate gradients across {self.num_workers} workers: {e}",
                "Check that every worker pushes the same keys in the same order",
            ) from e
        return [jnp.sum(jnp.asarray(g), axis=0) for g in gathered]

    def max_across_workers(self, value: int) -> int:
        if self.num_workers == 1:
            return int(value)
        try:
            gathered = multihost_utils.process_allgather(np.asarray(value, dtype=np.int32))
        except Exception as e:
            raise KVStoreError(
                f"Failed to agree on a value across {self.num_workers} workers: {e}"
            ) from e
        return int(np.max(gathered))

    def barrier(self) -> None:
        if self.num_workers == 1:
            return
        name = f"kvtrain_barrier_{next(self._barrier_ids)}"
        try:
            multihost_utils.sync_global_devices(name)
        except Exception as e:
            raise KVStoreError(f"Barrier '{name}' failed: {e}") from e

    def run_server(self) -> None:
        logger.info(
            "Running KVStore server: coordination is hosted by worker 0, "
            "role '%s' has nothing to serve", self.role
        )
