"""CSV image table loading and fixed-size batching for the LeNet driver."""

from typing import Dict, Iterator, Sequence, Tuple

import fsspec  # type: ignore
import jax
import numpy as np

from ..exceptions import DataError
from ..types import Array

PIXEL_SCALE = 1.0 / 256.0
IMAGE_SHAPE = (28, 28)


def parse_csv_line(line: str, scale: float = PIXEL_SCALE) -> Tuple[float, np.ndarray]:
    """Parse one ``label,pixel,pixel,...`` row.

    Args:
        line: A comma separated row of numbers
        scale: Factor applied to every feature

    Returns:
        (label, features) where features has ``N - 1`` float32 entries
    """
    fields = line.strip().split(",")
    if not fields or fields == [""]:
        raise DataError("Empty CSV row")
    try:
        values = np.asarray(fields, dtype=np.float32)
    except ValueError as e:
        raise DataError(f"Non-numeric field in CSV row: {e}") from e
    return float(values[0]), values[1:] * np.float32(scale)


def load_csv_images(
    path: str,
    image_shape: Sequence[int] = IMAGE_SHAPE,
    scale: float = PIXEL_SCALE,
) -> Tuple[np.ndarray, np.ndarray]:
    """Load a labelled image table.

    The first line is a header and is skipped. Each remaining non-blank row
    is parsed with :func:`parse_csv_line`: a label followed by ``H * W``
    pixel values.

    Args:
        path: Local path or fsspec URL of the CSV file
        image_shape: (H, W) of every image
        scale: Factor applied to every pixel value

    Returns:
        images: [count, H, W, 1] float32 array
        labels: [count] float32 array
    """
    height, width = image_shape
    expected = height * width
    labels = []
    features = []
    try:
        with fsspec.open(path, "rt") as f:
            next(f, None)
            for row, line in enumerate(f, start=2):
                if not line.strip():
                    continue
                try:
                    label, pixels = parse_csv_line(line, scale)
                except DataError as e:
                    raise DataError(f"Malformed CSV file {path} at row {row}: {e.message}") from e
                if pixels.shape[0] != expected:
                    raise DataError(
                        f"Malformed CSV file {path}: row {row} has {pixels.shape[0]} features, "
                        f"expected {expected}",
                        f"Check that images are {height}x{width} and the label is the first column",
                    )
                labels.append(label)
                features.append(pixels)
    except FileNotFoundError as e:
        raise DataError(
            f"CSV file not found: {path}",
            "Pass the training table with --data or place train.csv in the working directory",
        ) from e

    if not features:
        raise DataError(f"CSV file {path} contains no data rows")

    images = np.stack(features).reshape(-1, height, width, 1)
    return images, np.asarray(labels, dtype=np.float32)


def train_val_split(
    images: np.ndarray, labels: np.ndarray, val_fold: int = 1
) -> Tuple[Tuple[np.ndarray, np.ndarray], Tuple[np.ndarray, np.ndarray]]:
    """Split rows into leading training and trailing validation partitions.

    ``val_fold`` tenths of the rows go to validation.
    """
    if not 0 <= val_fold < 10:
        raise DataError(f"val_fold must be in [0, 10), got {val_fold}")
    count = images.shape[0]
    train_num = int(count * (1 - val_fold / 10.0))
    return (
        (images[:train_num], labels[:train_num]),
        (images[train_num:], labels[train_num:]),
    )


def batch_windows(count: int, batch_size: int) -> Iterator[Tuple[int, int]]:
    """Yield ``(start, end)`` windows of exactly ``batch_size`` rows.

    The final window is moved back to end at ``count`` when it would overrun,
    so it may overlap the previous window.
    """
    if batch_size <= 0:
        raise DataError(f"batch_size must be positive, got {batch_size}")
    if count < batch_size:
        raise DataError(
            f"Partition has {count} rows, fewer than batch_size={batch_size}",
            "Use a smaller batch size or more data",
        )
    start = 0
    while start < count:
        if start + batch_size > count:
            start = count - batch_size
        yield start, start + batch_size
        start += batch_size


class ArrayBatcher:
    """Iterate host arrays as device batches of ``{"x": images, "y": labels}``."""

    def __init__(self, images: np.ndarray, labels: np.ndarray, batch_size: int):
        if images.shape[0] != labels.shape[0]:
            raise DataError(
                f"images ({images.shape[0]}) and labels ({labels.shape[0]}) differ in length"
            )
        self.images = images
        self.labels = labels
        self.batch_size = batch_size
        self._windows = list(batch_windows(images.shape[0], batch_size))

    def __len__(self) -> int:
        return len(self._windows)

    def __iter__(self) -> Iterator[Dict[str, Array]]:
        for start, end in self._windows:
            yield {
                "x": jax.device_put(self.images[start:end]),
                "y": jax.device_put(self.labels[start:end]),
            }
