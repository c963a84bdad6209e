"""Single-process key-value store."""

from typing import List

from ..types import Array
from .base import KVStore


class LocalKVStore(KVStore):
    """Store living in the training process; there is exactly one worker."""

    def __init__(self, kv_type: str = "local"):
        super().__init__(kv_type)

    @property
    def rank(self) -> int:
        return 0

    @property
    def num_workers(self) -> int:
        return 1

    def _broadcast(self, values: List[Array]) -> List[Array]:
        return values

    def _aggregate(self, values: List[Array]) -> List[Array]:
        return values

    def barrier(self) -> None:
        pass
