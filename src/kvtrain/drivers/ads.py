#!/usr/bin/env python3
"""Train the ads click-through MLP through a key-value store.

Each worker streams its share of a binary record file (local path or any
fsspec URL such as ``hdfs://``), computes gradients and pushes them to the
store, which sums them across workers and applies the optimizer. Processes
launched with a non-worker ``DMLC_ROLE`` enter the store's server entry point
instead of training.

Usage:
    kvtrain-ads hdfs://namenode/ads/train.bin
    DMLC_ROLE=server kvtrain-ads hdfs://namenode/ads/train.bin
"""

import argparse
import logging
import time
from typing import Dict, List, Optional, Sequence

import fsspec  # type: ignore
import jax

from .. import kvstore as kvstore_lib
from ..config import AdsConfig
from ..data import RecordReader, is_local_uri, open_stream, split_records
from ..exec import Engine, grad_fn
from ..kvstore import KVStore
from ..metrics import threshold_matches
from ..models.ads_mlp import (
    ads_apply,
    init_ads_params,
    list_arguments,
    logistic_loss,
    logistic_output,
)
from ..optim import ccsgd
from ..runtime import init_env
from ..types import Array, Logger, Params
from ._common import add_common_args, build_checkpoint, build_loggers, close_loggers, setup_logging

logger = logging.getLogger(__name__)


def make_grad_step(threshold: float = 0.5):
    """Gradient function reporting threshold matches of the pre-update forward pass."""

    @grad_fn
    def grad_step(params: Params, batch: Dict[str, Array]) -> tuple:
        def loss_fn(p):
            logits = ads_apply(p, batch["x"])
            return logistic_loss(logits, batch["y"]), logits

        (loss, logits), grads = jax.value_and_grad(loss_fn, has_aux=True)(params)
        matches = threshold_matches(logistic_output(logits), batch["y"], threshold)
        return grads, {"loss": loss, "matches": matches}

    return grad_step


def run(
    config: AdsConfig,
    kv: KVStore,
    loggers: Optional[List[Logger]] = None,
    checkpoint=None,
    checkpoint_interval: Optional[int] = None,
    resume: bool = False,
) -> int:
    """Train for ``config.epochs`` passes over this worker's records.

    Returns:
        Number of samples this worker processed
    """
    for name in list_arguments():
        logger.info(name)

    optimizer = ccsgd(
        learning_rate=config.learning_rate,
        momentum=config.momentum,
        weight_decay=config.weight_decay,
        rescale_grad=config.resolve_rescale_grad(kv.num_workers),
        clip_gradient=config.clip_gradient,
    )
    engine = Engine(
        optimizer=optimizer,
        kvstore=kv,
        loggers=loggers,
        checkpoint=checkpoint,
        checkpoint_interval=checkpoint_interval,
    )

    # local files are read whole by every worker
    if is_local_uri(config.data_uri):
        rank, num_parts = 0, 1
    else:
        rank, num_parts = kv.rank, kv.num_workers

    if resume:
        state = engine.load_checkpoint()
    else:
        rng = jax.random.PRNGKey(config.seed)
        params = init_ads_params(rng, config.input_dim, config.hidden, config.init_stddev)
        state = engine.create_state(params)
    engine.register_step_fn(make_grad_step(config.threshold))

    samples_processed = 0
    start = time.perf_counter()
    stream, size = open_stream(config.data_uri)
    with stream:
        for epoch in range(config.epochs):
            reader = RecordReader(
                stream,
                size,
                config.sample_size,
                rank=rank,
                num_workers=num_parts,
                batch_size=config.batch_size,
                partition=config.partition,
            )
            # every worker takes the same number of steps per epoch
            steps = kv.max_across_workers(reader.num_batches())
            total_samples = 0
            for _ in range(steps):
                if reader.eof():
                    state = engine.skip_step(state)
                    logger.debug("Worker %d out of records, pushed zero gradients", kv.rank)
                else:
                    block = reader.read_batch()
                    features, labels = split_records(block)
                    count = block.shape[0]
                    batch = {"x": jax.device_put(features), "y": jax.device_put(labels)}

                    state, metrics = engine.step(state, batch)
                    total_samples += count
                    samples_processed += count

                    accuracy = metrics["matches"] / count
                    speed = samples_processed / max(time.perf_counter() - start, 1e-9)
                    progress = samples_processed * 100.0 / config.epochs / reader.record_count()
                    logger.info(
                        "Iter %d, accuracy: %.6f\t sample/s: %.1f\t Processing: [%.2f%%]",
                        epoch, accuracy, speed, progress,
                    )
                    engine.log_metrics(
                        {
                            "epoch": epoch,
                            "accuracy": accuracy,
                            "loss": metrics["loss"],
                            "samples_per_s": speed,
                            "progress": progress,
                        },
                        state.step,
                    )
                if (
                    checkpoint is not None
                    and checkpoint_interval is not None
                    and state.step % checkpoint_interval == 0
                ):
                    engine.save_checkpoint(state, tag="periodic")

            logger.info("Total samples: %d", total_samples)

    if checkpoint is not None:
        engine.save_checkpoint(state, tag="final")
    kv.barrier()
    return samples_processed


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Ads MLP training through a key-value store")
    parser.add_argument("data", type=str, help="Record file path or URL (e.g. hdfs://...)")
    parser.add_argument(
        "--kvstore", type=str, default="dist_async",
        help="KVStore type: local, device, dist, dist_sync or dist_async",
    )
    parser.add_argument("--batch-size", type=int, default=3072, help="Records per batch")
    parser.add_argument(
        "--sample-size", type=int, default=601, help="Float32 values per record, label included"
    )
    parser.add_argument("--epochs", type=int, default=1, help="Passes over the data")
    parser.add_argument("--learning-rate", type=float, default=0.01, help="Learning rate")
    parser.add_argument(
        "--partition", type=str, default="contiguous", choices=["contiguous", "round_robin"],
        help="How records are split between workers",
    )
    parser.add_argument(
        "--machine-list", type=str, default="scheduler_machine_list",
        help="File holding '<ip> <port>' of the scheduler",
    )
    add_common_args(parser)
    return parser


def main(argv: Optional[Sequence[str]] = None) -> None:
    args = build_parser().parse_args(argv)
    setup_logging(args.log_level)

    config = AdsConfig(
        data_uri=args.data,
        kvstore=args.kvstore,
        batch_size=args.batch_size,
        sample_size=args.sample_size,
        epochs=args.epochs,
        learning_rate=args.learning_rate,
        partition=args.partition,
        machine_list=args.machine_list,
        seed=args.seed,
    )

    protocol, _ = fsspec.core.split_protocol(config.data_uri)
    init_env(use_hdfs=protocol == "hdfs", machine_list=config.machine_list)

    kv = kvstore_lib.create(config.kvstore)
    if not kv.is_worker():
        logger.info("Running KVStore server")
        kv.run_server()
        return

    loggers = build_loggers(args)
    start = time.perf_counter()
    try:
        sample_count = run(
            config,
            kv,
            loggers=loggers,
            checkpoint=build_checkpoint(args),
            checkpoint_interval=args.checkpoint_interval,
            resume=args.resume,
        )
    finally:
        close_loggers(loggers)
    duration = max(time.perf_counter() - start, 1e-9)

    local_speed = sample_count / duration
    logger.info(
        "Training Duration = %.3fs\tlocal machine speed: [%.1f/s]\ttotal speed: [%.1f/s]",
        duration, local_speed, local_speed * kv.num_workers,
    )


if __name__ == "__main__":
    main()
