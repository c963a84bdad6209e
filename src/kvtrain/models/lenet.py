"""LeNet convolutional classifier.

LeCun, Yann, Leon Bottou, Yoshua Bengio, and Patrick Haffner.
"Gradient-based learning applied to document recognition."
Proceedings of the IEEE (1998)
"""

from typing import List, Sequence, Tuple

import jax
import jax.numpy as jnp
from jax import lax

from ..types import Params, Array

# Dimension numbers for NHWC input and HWIO kernel format
CONV_DIMS = ("NHWC", "HWIO", "NHWC")

# (name, kernel, filters) for each conv block; pooling is (window, stride)
CONV_LAYERS: Tuple[Tuple[str, int, int], ...] = (
    ("conv1", 5, 20),
    ("conv2", 5, 50),
    ("conv3", 2, 500),
)
POOL_LAYERS: Tuple[Tuple[int, int], ...] = ((2, 2), (2, 2), (2, 1))
FC1_UNITS = 500


def list_arguments() -> List[str]:
    """Names of the network inputs and parameters, in graph order."""
    names = ["data"]
    for name, _, _ in CONV_LAYERS:
        names += [f"{name}_w", f"{name}_b"]
    names += ["fc1_w", "fc1_b", "fc2_w", "fc2_b", "data_label"]
    return names


def _feature_map_size(size: int) -> int:
    """Spatial size after the three conv/pool blocks."""
    for (_, kernel, _), (window, stride) in zip(CONV_LAYERS, POOL_LAYERS):
        size = size - kernel + 1
        size = (size - window) // stride + 1
    return size


def init_lenet_params(
    rng: Array, image_shape: Sequence[int] = (28, 28), num_classes: int = 10
) -> Params:
    """Initialize LeNet parameters.

    Weights use Glorot-normal scaling and biases start at zero.

    Args:
        rng: JAX random key
        image_shape: (H, W) of the input images
        num_classes: Number of output classes
    """
    rngs = jax.random.split(rng, len(CONV_LAYERS) + 2)

    def xavier_init(key, shape):
        fan_in = 1
        for dim in shape[:-1]:
            fan_in *= dim
        scale = jnp.sqrt(2.0 / (fan_in + shape[-1]))
        return jax.random.normal(key, shape) * scale

    params: Params = {}
    in_channels = 1
    for i, (name, kernel, filters) in enumerate(CONV_LAYERS):
        params[f"{name}_w"] = xavier_init(rngs[i], (kernel, kernel, in_channels, filters))
        params[f"{name}_b"] = jnp.zeros((filters,))
        in_channels = filters

    height = _feature_map_size(image_shape[0])
    width = _feature_map_size(image_shape[1])
    flat = height * width * in_channels

    params["fc1_w"] = xavier_init(rngs[-2], (flat, FC1_UNITS))
    params["fc1_b"] = jnp.zeros((FC1_UNITS,))
    params["fc2_w"] = xavier_init(rngs[-1], (FC1_UNITS, num_classes))
    params["fc2_b"] = jnp.zeros((num_classes,))
    return params


def lenet_apply(params: Params, x: Array) -> Array:
    """LeNet forward pass.

    Args:
        params: Parameter mapping from ``init_lenet_params``
        x: Input batch [batch_size, H, W, 1]

    Returns:
        logits: [batch_size, num_classes]
    """
    for (name, _, _), (window, stride) in zip(CONV_LAYERS, POOL_LAYERS):
        x = lax.conv_general_dilated(
            lhs=x,
            rhs=params[f"{name}_w"],
            window_strides=(1, 1),
            padding="VALID",
            dimension_numbers=CONV_DIMS,
        ) + params[f"{name}_b"].reshape(1, 1, 1, -1)
        x = jnp.tanh(x)
        x = lax.reduce_window(
            x, -jnp.inf, lax.max, (1, window, window, 1), (1, stride, stride, 1), "VALID"
        )

    x = x.reshape(x.shape[0], -1)
    x = jnp.tanh(jnp.dot(x, params["fc1_w"]) + params["fc1_b"])
    return jnp.dot(x, params["fc2_w"]) + params["fc2_b"]


def softmax_output(logits: Array) -> Array:
    """Class probabilities for ``logits``."""
    return jax.nn.softmax(logits, axis=-1)


def softmax_cross_entropy(logits: Array, labels: Array) -> Array:
    """Cross-entropy summed over the batch.

    The per-example gradient with respect to the logits is
    ``softmax(logits) - one_hot(label)``; batch averaging is left to the
    optimizer's ``rescale_grad``.
    """
    log_probs = jax.nn.log_softmax(logits)
    one_hot = jax.nn.one_hot(labels.astype(jnp.int32), num_classes=logits.shape[-1])
    return -jnp.sum(one_hot * log_probs)
