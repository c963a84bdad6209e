"""kvtrain runtime components.

This package reads the process environment that drives distributed
coordination and initializes JAX's multi-process runtime.
"""

from .init import (
    WORKER_ROLE,
    detect_distributed_env,
    is_distributed_env,
    get_role,
    init_env,
    initialize_distributed,
    get_device_info,
    auto_initialize,
)

__all__ = [
    "WORKER_ROLE",
    "detect_distributed_env",
    "is_distributed_env",
    "get_role",
    "init_env",
    "initialize_distributed",
    "get_device_info",
    "auto_initialize",
]
