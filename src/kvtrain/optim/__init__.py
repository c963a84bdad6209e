"""kvtrain optimizer adapters."""

from .optax_adapter import OptaxAdapter, sgd, ccsgd

__all__ = [
    "OptaxAdapter",
    "sgd",
    "ccsgd",
]
