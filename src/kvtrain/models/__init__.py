"""Network definitions used by the training drivers."""

from .lenet import (
    init_lenet_params,
    lenet_apply,
    softmax_output,
    softmax_cross_entropy,
)
from .ads_mlp import (
    init_ads_params,
    ads_apply,
    logistic_output,
    logistic_loss,
)

__all__ = [
    "init_lenet_params",
    "lenet_apply",
    "softmax_output",
    "softmax_cross_entropy",
    "init_ads_params",
    "ads_apply",
    "logistic_output",
    "logistic_loss",
]
