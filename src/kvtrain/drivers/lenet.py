#!/usr/bin/env python3
"""Train LeNet on a CSV image table.

The first CSV row is a header; every following row is a label and the
flattened 28x28 pixels. The first 90% of rows train the network and the rest
measure validation accuracy after every epoch.

Usage:
    kvtrain-lenet --data ./train.csv --epochs 10
"""

import argparse
import logging
from typing import Dict, List, Optional, Sequence

import jax

from ..config import LenetConfig
from ..data import ArrayBatcher, load_csv_images, train_val_split
from ..exec import Engine, TrainState, step_fn
from ..metrics import argmax_matches
from ..models.lenet import (
    init_lenet_params,
    lenet_apply,
    list_arguments,
    softmax_cross_entropy,
    softmax_output,
)
from ..optim import ccsgd
from ..types import Array, Logger, Params
from ._common import add_common_args, build_checkpoint, build_loggers, close_loggers, setup_logging

logger = logging.getLogger(__name__)


@step_fn
def train_step(state: TrainState, batch: Dict[str, Array]) -> tuple:
    """Forward, backward and optimizer update on one batch."""

    def loss_fn(params):
        logits = lenet_apply(params, batch["x"])
        return softmax_cross_entropy(logits, batch["y"]), logits

    (loss, logits), grads = jax.value_and_grad(loss_fn, has_aux=True)(state.params)
    state = state.apply_gradients(grads=grads)
    matches = argmax_matches(logits, batch["y"])
    return state, {"loss": loss, "accuracy": matches / batch["y"].shape[0]}


def eval_step(params: Params, batch: Dict[str, Array]) -> tuple:
    """Correct predictions and batch size for one validation batch."""
    probs = softmax_output(lenet_apply(params, batch["x"]))
    return argmax_matches(probs, batch["y"]), batch["y"].shape[0]


def run(
    config: LenetConfig,
    loggers: Optional[List[Logger]] = None,
    checkpoint=None,
    checkpoint_interval: Optional[int] = None,
    resume: bool = False,
) -> List[float]:
    """Train for ``config.epochs`` epochs.

    Returns:
        Validation accuracy after each epoch
    """
    for name in list_arguments():
        logger.info(name)

    images, labels = load_csv_images(config.data_path, config.image_shape, config.pixel_scale)
    (train_x, train_y), (val_x, val_y) = train_val_split(images, labels, config.val_fold)
    logger.info("data loaded: %d train, %d validation", train_x.shape[0], val_x.shape[0])

    train_data = ArrayBatcher(train_x, train_y, config.batch_size)
    val_data = ArrayBatcher(val_x, val_y, config.val_batch_size)

    optimizer = ccsgd(
        learning_rate=config.learning_rate,
        momentum=config.momentum,
        weight_decay=config.weight_decay,
        rescale_grad=config.rescale_grad,
        clip_gradient=config.clip_gradient,
    )
    engine = Engine(
        optimizer=optimizer,
        loggers=loggers,
        checkpoint=checkpoint,
        checkpoint_interval=checkpoint_interval,
    )

    if resume:
        state = engine.load_checkpoint()
    else:
        rng = jax.random.PRNGKey(config.seed)
        params = init_lenet_params(rng, config.image_shape, config.num_classes)
        state = engine.create_state(params)

    history = []
    for epoch in range(config.epochs):
        state = engine.fit(
            train_step, train_data, state=state, log_header=epoch == 0, save_final=False
        )
        accuracy = engine.evaluate(eval_step, state.params, val_data)
        history.append(accuracy)
        logger.info("epoch %d, accuracy: %.6f", epoch, accuracy)
        engine.log_metrics({"epoch": epoch, "val/accuracy": accuracy}, state.step)

    if checkpoint is not None:
        engine.save_checkpoint(state, tag="final")
    return history


def build_parser() -> argparse.ArgumentParser:
    defaults = LenetConfig()
    parser = argparse.ArgumentParser(description="LeNet training on a CSV image table")
    parser.add_argument("--data", type=str, default=defaults.data_path, help="CSV file or URL")
    parser.add_argument("--epochs", type=int, default=defaults.epochs, help="Training epochs")
    parser.add_argument(
        "--batch-size", type=int, default=defaults.batch_size, help="Training batch size"
    )
    parser.add_argument(
        "--learning-rate", type=float, default=defaults.learning_rate, help="Learning rate"
    )
    parser.add_argument(
        "--val-fold", type=int, default=defaults.val_fold,
        help="Tenths of the table held out for validation",
    )
    add_common_args(parser)
    return parser


def main(argv: Optional[Sequence[str]] = None) -> None:
    args = build_parser().parse_args(argv)
    setup_logging(args.log_level)

    config = LenetConfig(
        data_path=args.data,
        epochs=args.epochs,
        batch_size=args.batch_size,
        learning_rate=args.learning_rate,
        val_fold=args.val_fold,
        seed=args.seed,
    )
    loggers = build_loggers(args)
    try:
        run(
            config,
            loggers=loggers,
            checkpoint=build_checkpoint(args),
            checkpoint_interval=args.checkpoint_interval,
            resume=args.resume,
        )
    finally:
        close_loggers(loggers)


if __name__ == "__main__":
    main()
