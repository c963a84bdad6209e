"""Input loading for the LeNet (CSV images) and ads (binary records) drivers."""

from .csv_images import (
    PIXEL_SCALE,
    parse_csv_line,
    load_csv_images,
    train_val_split,
    batch_windows,
    ArrayBatcher,
)
from .records import (
    is_local_uri,
    open_stream,
    partition_range,
    split_records,
    RecordReader,
)

__all__ = [
    "PIXEL_SCALE",
    "parse_csv_line",
    "load_csv_images",
    "train_val_split",
    "batch_windows",
    "ArrayBatcher",
    "is_local_uri",
    "open_stream",
    "partition_range",
    "split_records",
    "RecordReader",
]
