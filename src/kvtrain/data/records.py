"""Fixed-width binary record streams for the ads driver.

A stream is a flat sequence of records, each ``sample_size`` little-endian
float32 values: one label followed by ``sample_size - 1`` features. Streams
are opened through fsspec so local files and distributed filesystems
(``hdfs://``, ``s3://``, ...) share one code path.
"""

from __future__ import annotations

import logging
from typing import BinaryIO, Iterator, Tuple

import fsspec  # type: ignore
import numpy as np

from ..exceptions import DataError, record_error

logger = logging.getLogger(__name__)

RECORD_DTYPE = np.dtype("<f4")
PARTITION_POLICIES = ("contiguous", "round_robin")


def is_local_uri(uri: str) -> bool:
    """True when ``uri`` names a file on the local filesystem."""
    protocol, _ = fsspec.core.split_protocol(uri)
    return protocol in (None, "file", "local")


def open_stream(uri: str) -> Tuple[BinaryIO, int]:
    """Open ``uri`` for binary reading.

    Returns:
        (stream, size_in_bytes)
    """
    try:
        fs, path = fsspec.core.url_to_fs(uri)
        size = int(fs.size(path))
        stream = fs.open(path, "rb")
    except FileNotFoundError as e:
        raise record_error(f"'{uri}' does not exist") from e
    except (OSError, ValueError, ImportError) as e:
        raise record_error(
            f"failed to open '{uri}': {e}",
            "Check the URI and that the filesystem's fsspec backend is installed",
        ) from e
    logger.info("Opened %s (%d bytes)", uri, size)
    return stream, size


def partition_range(record_count: int, rank: int, num_workers: int) -> Tuple[int, int]:
    """Contiguous ``[start, end)`` slice of ``record_count`` records for ``rank``."""
    if num_workers <= 0:
        raise DataError(f"num_workers must be positive, got {num_workers}")
    if not 0 <= rank < num_workers:
        raise DataError(f"rank {rank} out of range for {num_workers} workers")
    start = record_count * rank // num_workers
    end = record_count * (rank + 1) // num_workers
    return start, end


def split_records(batch: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """Split a ``[k, sample_size]`` block into (features, labels)."""
    return batch[:, 1:], batch[:, 0]


class RecordReader:
    """Read one worker's share of a record stream in batches.

    Args:
        stream: Seekable binary stream
        stream_size: Size of the stream in bytes
        sample_size: Floats per record (label included)
        rank: This worker's rank
        num_workers: Number of workers sharing the stream
        batch_size: Maximum records returned per ``read_batch``
        partition: ``"contiguous"`` gives each worker one slice;
            ``"round_robin"`` gives record ``i`` to worker ``i % num_workers``
    """

    def __init__(
        self,
        stream: BinaryIO,
        stream_size: int,
        sample_size: int,
        rank: int = 0,
        num_workers: int = 1,
        batch_size: int = 3072,
        partition: str = "contiguous",
    ):
        if sample_size < 2:
            raise DataError(f"sample_size must hold a label and features, got {sample_size}")
        if batch_size <= 0:
            raise DataError(f"batch_size must be positive, got {batch_size}")
        if partition not in PARTITION_POLICIES:
            raise DataError(
                f"Unknown partition policy '{partition}'",
                f"Use one of {PARTITION_POLICIES}",
            )

        self.stream = stream
        self.sample_size = sample_size
        self.batch_size = batch_size
        self.partition = partition
        self.record_bytes = sample_size * RECORD_DTYPE.itemsize

        if stream_size % self.record_bytes != 0:
            raise record_error(
                f"size {stream_size} is not a multiple of the record width {self.record_bytes}",
                f"Check that every record holds {sample_size} float32 values",
            )
        self.total_records = stream_size // self.record_bytes

        if partition == "contiguous":
            start, end = partition_range(self.total_records, rank, num_workers)
            self._indices = range(start, end)
        else:
            partition_range(self.total_records, rank, num_workers)  # validates rank
            self._indices = range(rank, self.total_records, num_workers)
        self._cursor = 0

    def record_count(self) -> int:
        """Number of records assigned to this worker."""
        return len(self._indices)

    def num_batches(self) -> int:
        """Number of ``read_batch`` calls needed to drain this worker's share."""
        return -(-len(self._indices) // self.batch_size)

    def eof(self) -> bool:
        return self._cursor >= len(self._indices)

    def _read_exact(self, offset: int, nbytes: int) -> bytes:
        self.stream.seek(offset)
        buf = self.stream.read(nbytes)
        if len(buf) != nbytes:
            raise record_error(
                f"short read at byte {offset}: wanted {nbytes}, got {len(buf)}",
                "The stream may have been truncated while reading",
            )
        return buf

    def read_batch(self) -> np.ndarray:
        """Return the next ``[k, sample_size]`` block, ``k <= batch_size``."""
        if self.eof():
            raise record_error("read_batch called after end of stream")

        count = min(self.batch_size, len(self._indices) - self._cursor)
        batch_indices = self._indices[self._cursor:self._cursor + count]

        if self.partition == "contiguous":
            buf = self._read_exact(batch_indices[0] * self.record_bytes, count * self.record_bytes)
        else:
            buf = b"".join(
                self._read_exact(index * self.record_bytes, self.record_bytes)
                for index in batch_indices
            )

        self._cursor += count
        return np.frombuffer(buf, dtype=RECORD_DTYPE).reshape(count, self.sample_size)

    def __iter__(self) -> Iterator[np.ndarray]:
        while not self.eof():
            yield self.read_batch()
