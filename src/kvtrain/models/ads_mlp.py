"""Three-layer perceptron with a logistic output for ads click data."""

from typing import List, Sequence

import jax
import jax.numpy as jnp

from ..types import Params, Array

DEFAULT_INPUT_DIM = 600
DEFAULT_HIDDEN = (2048, 512)


def list_arguments() -> List[str]:
    """Names of the network inputs and parameters, in graph order."""
    return ["data", "w1", "b1", "w2", "b2", "w3", "b3", "label"]


def init_ads_params(
    rng: Array,
    input_dim: int = DEFAULT_INPUT_DIM,
    hidden: Sequence[int] = DEFAULT_HIDDEN,
    stddev: float = 1.0,
) -> Params:
    """Sample every weight and bias from ``N(0, stddev**2)``.

    Args:
        rng: JAX random key
        input_dim: Number of input features
        hidden: Units of the two hidden layers
        stddev: Standard deviation of the Gaussian initializer
    """
    sizes = [input_dim, *hidden, 1]
    keys = jax.random.split(rng, 2 * (len(sizes) - 1))
    params: Params = {}
    for i, (fan_in, fan_out) in enumerate(zip(sizes[:-1], sizes[1:]), start=1):
        params[f"w{i}"] = jax.random.normal(keys[2 * i - 2], (fan_in, fan_out)) * stddev
        params[f"b{i}"] = jax.random.normal(keys[2 * i - 1], (fan_out,)) * stddev
    return params


def ads_apply(params: Params, x: Array) -> Array:
    """Forward pass: fc -> relu -> fc -> relu -> fc.

    Args:
        params: Parameter mapping from ``init_ads_params``
        x: Input batch [batch_size, input_dim]

    Returns:
        logits: [batch_size]
    """
    x = jax.nn.relu(jnp.dot(x, params["w1"]) + params["b1"])
    x = jax.nn.relu(jnp.dot(x, params["w2"]) + params["b2"])
    x = jnp.dot(x, params["w3"]) + params["b3"]
    return x.reshape(x.shape[0])


def logistic_output(logits: Array) -> Array:
    """Click probability for ``logits``."""
    return jax.nn.sigmoid(logits)


def logistic_loss(logits: Array, labels: Array) -> Array:
    """Sigmoid cross-entropy summed over the batch.

    The per-example gradient with respect to the logit is
    ``sigmoid(logit) - label``.
    """
    labels = labels.astype(logits.dtype)
    return jnp.sum(jax.nn.softplus(logits) - labels * logits)
