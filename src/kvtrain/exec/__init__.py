"""kvtrain execution: training state, engine and step decorators."""

from .engine import Engine, TrainState
from .step_fn import grad_fn, step_fn

__all__ = [
    "Engine",
    "TrainState",
    "step_fn",
    "grad_fn",
]
