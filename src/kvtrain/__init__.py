"""kvtrain: JAX training drivers with a key-value parameter store

kvtrain trains two networks on top of JAX and Optax:

- LeNet on a CSV image table (``kvtrain-lenet``)
- a three-layer ads click-through MLP on binary float32 records, with
  parameters held in a key-value store shared by worker processes
  (``kvtrain-ads``)

Example Usage:
    ```python
    import jax
    import kvtrain as kt

    kv = kt.kvstore.create("local")
    engine = kt.Engine(optimizer=kt.optim.ccsgd(0.01, rescale_grad=1 / 3072), kvstore=kv)

    @kt.grad_fn
    def grad_step(params, batch):
        def loss_fn(p):
            return kt.models.logistic_loss(kt.models.ads_apply(p, batch["x"]), batch["y"])
        loss, grads = jax.value_and_grad(loss_fn)(params)
        return grads, {"loss": loss}

    state = engine.create_state(kt.models.init_ads_params(jax.random.PRNGKey(0)))
    state = engine.fit(grad_step, batches, state=state)
    ```
"""

# Version and metadata
from ._version import (
    __version__,
    __project_description__ as __description__,
)

# Runtime environment
from .runtime import (
    detect_distributed_env,
    is_distributed_env,
    init_env,
    initialize_distributed,
    auto_initialize,
    get_role,
)

# Execution engine
from .exec import (
    Engine,
    TrainState,
    step_fn,
    grad_fn,
)

# Types and exceptions
from .types import (
    Array,
    PyTree,
    Params,
    Logger,
    CheckpointStrategy,
    StepFunction,
    GradientFunction,
)

from .exceptions import (
    KVTrainError,
    ConfigError,
    DataError,
    KVStoreError,
    EngineError,
    OptimizerError,
    CheckpointError,
    DistributedError,
)

# Convenience namespace imports
from . import data
from . import io
from . import kvstore
from . import metrics
from . import models
from . import optim
from . import logging as loggers

from .config import AdsConfig, LenetConfig
from .io import OrbaxCheckpoint

__all__ = [
    "__version__",
    "__description__",
    "detect_distributed_env",
    "is_distributed_env",
    "init_env",
    "initialize_distributed",
    "auto_initialize",
    "get_role",
    "Engine",
    "TrainState",
    "step_fn",
    "grad_fn",
    "Array",
    "PyTree",
    "Params",
    "Logger",
    "CheckpointStrategy",
    "StepFunction",
    "GradientFunction",
    "KVTrainError",
    "ConfigError",
    "DataError",
    "KVStoreError",
    "EngineError",
    "OptimizerError",
    "CheckpointError",
    "DistributedError",
    "data",
    "io",
    "kvstore",
    "metrics",
    "models",
    "optim",
    "loggers",
    "AdsConfig",
    "LenetConfig",
    "OrbaxCheckpoint",
]
