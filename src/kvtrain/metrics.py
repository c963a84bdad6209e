"""Accuracy metrics for classifier outputs.

Two prediction rules are supported: argmax over class scores (softmax output)
and a threshold on a single probability (logistic output). Each rule comes as
a ``*_matches`` function returning the number of correct predictions, usable
inside jitted code, and a host-side ``*_accuracy`` function returning the
match rate.
"""

from __future__ import annotations

from dataclasses import dataclass

import jax.numpy as jnp
import numpy as np

from .exceptions import DataError
from .types import Array


def argmax_matches(outputs: Array, labels: Array) -> Array:
    """Count rows whose first maximal column equals the label.

    Args:
        outputs: [batch_size, num_classes] scores or probabilities
        labels: [batch_size] class labels (integer valued, any dtype)
    """
    predictions = jnp.argmax(outputs, axis=-1)
    return jnp.sum(predictions == labels.astype(predictions.dtype))


def threshold_matches(outputs: Array, labels: Array, threshold: float = 0.5) -> Array:
    """Count rows where ``output >= threshold`` agrees with a 0/1 label.

    Args:
        outputs: [batch_size] or [batch_size, 1] probabilities
        labels: [batch_size] binary labels
        threshold: Decision threshold
    """
    predictions = (outputs.reshape(labels.shape[0]) >= threshold).astype(jnp.float32)
    return jnp.sum(predictions == labels.astype(jnp.float32))


def _ratio(matches, total: int) -> float:
    if total <= 0:
        raise DataError(
            "Cannot compute accuracy of an empty batch",
            "Check that the data partition holds at least one sample",
        )
    return float(matches) / float(total)


def argmax_accuracy(outputs: Array, labels: Array) -> float:
    """Fraction of rows classified correctly by argmax."""
    return _ratio(argmax_matches(outputs, labels), int(np.shape(labels)[0]))


def threshold_accuracy(outputs: Array, labels: Array, threshold: float = 0.5) -> float:
    """Fraction of rows classified correctly by thresholding."""
    return _ratio(threshold_matches(outputs, labels, threshold), int(np.shape(labels)[0]))


@dataclass
class AccuracyCounter:
    """Accumulate matches over several batches."""

    matches: int = 0
    total: int = 0

    def update(self, matches, total: int) -> None:
        if total < 0 or int(matches) > total:
            raise DataError(f"Invalid accuracy update: {int(matches)} matches out of {total}")
        self.matches += int(matches)
        self.total += int(total)

    def value(self) -> float:
        return _ratio(self.matches, self.total)

    def reset(self) -> None:
        self.matches = 0
        self.total = 0


__all__ = [
    "argmax_matches",
    "threshold_matches",
    "argmax_accuracy",
    "threshold_accuracy",
    "AccuracyCounter",
]
