"""kvtrain version information."""

__version__ = "0.1.0"
__version_tuple__ = (0, 1, 0)

# Project metadata
__project_name__ = "kvtrain"
__project_description__ = "LeNet and ads MLP training drivers over JAX with a key-value parameter store"
__license__ = "MIT"

# JAX/Optax compatibility info
__jax_min_version__ = "0.4.30"
__optax_min_version__ = "0.2.2"
__orbax_min_version__ = "0.5.0"
