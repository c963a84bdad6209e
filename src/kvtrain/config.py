"""Run configuration for the kvtrain drivers.

Each driver builds one frozen dataclass from its command-line flags; the
defaults are the values the drivers have always trained with.
"""

import dataclasses
from typing import Optional, Tuple

from .data.csv_images import IMAGE_SHAPE, PIXEL_SCALE
from .data.records import PARTITION_POLICIES
from .exceptions import config_error
from .kvstore import DIST_TYPES, LOCAL_TYPES


def _require_positive(name: str, value) -> None:
    if value <= 0:
        raise config_error(name, f"must be positive, got {value}")


@dataclasses.dataclass(frozen=True)
class LenetConfig:
    """LeNet training on a CSV image table.

    Args:
        data_path: CSV file (any fsspec URL); first row is a header
        image_shape: Height and width of each image
        num_classes: Number of label classes
        val_fold: Tenths of the table held out for validation
        batch_size: Training batch size; validation uses ``batch_size * 10``
        epochs: Number of passes over the training partition
        learning_rate, momentum, weight_decay, rescale_grad, clip_gradient:
            ``ccsgd`` hyperparameters
        seed: PRNG seed for parameter initialization
    """

    data_path: str = "./train.csv"
    image_shape: Tuple[int, int] = IMAGE_SHAPE
    num_classes: int = 10
    val_fold: int = 1
    batch_size: int = 42
    epochs: int = 100000
    learning_rate: float = 1e-4
    momentum: float = 0.9
    weight_decay: float = 1e-4
    rescale_grad: float = 1.0
    clip_gradient: Optional[float] = 10.0
    pixel_scale: float = PIXEL_SCALE
    seed: int = 0

    def __post_init__(self) -> None:
        if not self.data_path:
            raise config_error("data_path", "must not be empty", "Point --data at a CSV file")
        if len(self.image_shape) != 2:
            raise config_error("image_shape", f"must be (height, width), got {self.image_shape}")
        for dim in self.image_shape:
            _require_positive("image_shape", dim)
        _require_positive("num_classes", self.num_classes)
        if not 0 < self.val_fold < 10:
            raise config_error(
                "val_fold", f"must be between 1 and 9, got {self.val_fold}",
                "val_fold counts tenths of the data held out for validation",
            )
        _require_positive("batch_size", self.batch_size)
        _require_positive("epochs", self.epochs)
        _require_positive("learning_rate", self.learning_rate)
        _require_positive("rescale_grad", self.rescale_grad)
        _require_positive("pixel_scale", self.pixel_scale)
        if not 0 <= self.momentum < 1:
            raise config_error("momentum", f"must be in [0, 1), got {self.momentum}")
        if self.weight_decay < 0:
            raise config_error("weight_decay", f"must be non-negative, got {self.weight_decay}")
        if self.clip_gradient is not None:
            _require_positive("clip_gradient", self.clip_gradient)

    @property
    def val_batch_size(self) -> int:
        return self.batch_size * 10


@dataclasses.dataclass(frozen=True)
class AdsConfig:
    """Ads MLP training over a binary record stream.

    ``rescale_grad`` defaults to ``1 / (num_workers * batch_size)`` once the
    worker count is known; see :meth:`resolve_rescale_grad`.
    """

    data_uri: str
    kvstore: str = "dist_async"
    batch_size: int = 3072
    sample_size: int = 601
    hidden: Tuple[int, ...] = (2048, 512)
    epochs: int = 1
    learning_rate: float = 0.01
    weight_decay: float = 1e-5
    momentum: float = 0.9
    rescale_grad: Optional[float] = None
    clip_gradient: Optional[float] = None
    init_stddev: float = 1.0
    threshold: float = 0.5
    partition: str = "contiguous"
    machine_list: str = "scheduler_machine_list"
    seed: int = 0

    def __post_init__(self) -> None:
        if not self.data_uri:
            raise config_error("data_uri", "must not be empty", "Pass the record file path or URL")
        if self.kvstore not in LOCAL_TYPES + DIST_TYPES:
            raise config_error(
                "kvstore", f"unknown type '{self.kvstore}'",
                f"Use one of {list(LOCAL_TYPES + DIST_TYPES)}",
            )
        _require_positive("batch_size", self.batch_size)
        if self.sample_size < 2:
            raise config_error(
                "sample_size", f"must be at least 2 (label plus features), got {self.sample_size}"
            )
        if not self.hidden:
            raise config_error("hidden", "must name at least one hidden layer")
        for units in self.hidden:
            _require_positive("hidden", units)
        _require_positive("epochs", self.epochs)
        _require_positive("learning_rate", self.learning_rate)
        _require_positive("init_stddev", self.init_stddev)
        if not 0 <= self.momentum < 1:
            raise config_error("momentum", f"must be in [0, 1), got {self.momentum}")
        if self.weight_decay < 0:
            raise config_error("weight_decay", f"must be non-negative, got {self.weight_decay}")
        if self.rescale_grad is not None:
            _require_positive("rescale_grad", self.rescale_grad)
        if self.clip_gradient is not None:
            _require_positive("clip_gradient", self.clip_gradient)
        if not 0 < self.threshold < 1:
            raise config_error("threshold", f"must be in (0, 1), got {self.threshold}")
        if self.partition not in PARTITION_POLICIES:
            raise config_error(
                "partition", f"unknown policy '{self.partition}'",
                f"Use one of {list(PARTITION_POLICIES)}",
            )

    @property
    def input_dim(self) -> int:
        return self.sample_size - 1

    def resolve_rescale_grad(self, num_workers: int) -> float:
        """Gradient rescale factor for ``num_workers`` workers."""
        if self.rescale_grad is not None:
            return self.rescale_grad
        return 1.0 / (num_workers * self.batch_size)
