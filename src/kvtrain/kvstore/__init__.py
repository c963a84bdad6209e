"""Key-value parameter stores.

Example:
    ```python
    from kvtrain import kvstore, optim

    kv = kvstore.create("local")
    kv.set_optimizer(optim.ccsgd(learning_rate=0.01))
    kv.init_tree(params)
    kv.push_tree(grads)
    params = kv.pull_tree()
    ```
"""

from ..exceptions import KVStoreError
from .base import KVStore
from .local import LocalKVStore
from .dist import DistKVStore, DIST_TYPES

LOCAL_TYPES = ("local", "device")


def create(name: str = "local", **kwargs) -> KVStore:
    """Create a key-value store by type name."""
    name = name.lower()
    if name in LOCAL_TYPES:
        return LocalKVStore(name)
    if name in DIST_TYPES:
        return DistKVStore(name, **kwargs)
    raise KVStoreError(
        f"Unknown KVStore type '{name}'",
        f"Use one of {LOCAL_TYPES + DIST_TYPES}",
    )


__all__ = [
    "KVStore",
    "LocalKVStore",
    "DistKVStore",
    "create",
]
