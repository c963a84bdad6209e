"""Command-line plumbing shared by the training drivers."""

import argparse
import logging
from typing import List, Optional

from ..logging import Basic, CSVLogger
from ..logging.tensorboard import TensorBoardLogger
from ..io import OrbaxCheckpoint
from ..types import Logger

LOG_FORMAT = "[%(asctime)s] %(name)s %(levelname)s: %(message)s"


def setup_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=getattr(logging, level.upper()), format=LOG_FORMAT)


def add_common_args(parser: argparse.ArgumentParser) -> None:
    """Logging, metric-logger and checkpoint flags."""
    parser.add_argument("--seed", type=int, default=0, help="PRNG seed for initialization")
    parser.add_argument(
        "--log-level", type=str, default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"], help="Diagnostic log level",
    )
    parser.add_argument(
        "--step-log", action="store_true", help="Print per-step metrics to stdout"
    )
    parser.add_argument("--csv-log", type=str, default=None, help="Write metrics to this CSV file")
    parser.add_argument(
        "--tensorboard-dir", type=str, default=None, help="Write TensorBoard events here"
    )
    parser.add_argument(
        "--checkpoint-dir", type=str, default=None, help="Checkpoint directory (optional)"
    )
    parser.add_argument(
        "--checkpoint-interval", type=int, default=None,
        help="Save a checkpoint every N steps (final checkpoint always saved)",
    )
    parser.add_argument(
        "--resume", action="store_true", help="Resume from the latest checkpoint"
    )


def build_loggers(args: argparse.Namespace) -> List[Logger]:
    loggers: List[Logger] = []
    if args.step_log:
        loggers.append(Basic(exclude_prefixes=("run/",)))
    if args.csv_log:
        loggers.append(CSVLogger(args.csv_log))
    if args.tensorboard_dir:
        loggers.append(TensorBoardLogger(args.tensorboard_dir))
    return loggers


def build_checkpoint(args: argparse.Namespace) -> Optional[OrbaxCheckpoint]:
    if not args.checkpoint_dir:
        return None
    return OrbaxCheckpoint(args.checkpoint_dir)


def close_loggers(loggers: List[Logger]) -> None:
    for metric_logger in loggers:
        if hasattr(metric_logger, "close"):
            metric_logger.close()
