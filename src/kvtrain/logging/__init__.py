"""kvtrain metric loggers.

Loggers report training metrics (accuracy, loss, throughput) to the console,
CSV files or TensorBoard. ``MetricsMeter`` derives throughput metrics.
"""

from .base import BaseLogger, MultiLogger, NullLogger, format_value
from .basic import Basic
from .csv import CSVLogger
from .meter import MetricsMeter

__all__ = [
    "BaseLogger",
    "MultiLogger",
    "NullLogger",
    "format_value",
    "Basic",
    "CSVLogger",
    "MetricsMeter",
]
