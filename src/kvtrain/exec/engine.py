"""kvtrain execution engine.

This module provides ``TrainState`` and the ``Engine`` that drives training
loops either locally (the optimizer runs inside a compiled step function) or
through a key-value store (gradients are pushed to the store and fresh
parameters pulled back after every batch).
"""

import dataclasses
import logging
import time
from typing import Callable, Dict, Iterable, List, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from ..optim.optax_adapter import OptaxAdapter

import jax
import jax.numpy as jnp
from jax import tree_util

from ..types import (
    PyTree,
    Array,
    BatchData,
    LogDict,
    Logger,
    CheckpointStrategy,
    Params,
    OptState,
)
from ..kvstore.base import KVStore
from ..logging.meter import MetricsMeter
from ..metrics import AccuracyCounter
from ..exceptions import CheckpointError, EngineError, KVTrainError
from .step_fn import GRAD_KIND, STEP_KIND, metrics_to_host
from .._version import __version__ as _kvtrain_version

logger = logging.getLogger(__name__)


@dataclasses.dataclass
class TrainState:
    """Training state: parameters, optimizer state, step count and PRNG keys.

    Args:
        params: Flat mapping of parameter name to array
        opt_state: Optimizer state (None when a key-value store owns the optimizer)
        step: Number of completed training steps
        rngs: Named PRNG keys
        _optimizer: Optimizer reference set by the Engine
    """

    params: Params
    opt_state: OptState
    step: int
    rngs: Dict[str, Array] = dataclasses.field(default_factory=dict)
    _optimizer: Optional["OptaxAdapter"] = None

    def apply_gradients(
        self, *, grads: PyTree, optimizer: Optional["OptaxAdapter"] = None
    ) -> "TrainState":
        """Apply ``grads`` with the optimizer and advance ``step``."""
        if optimizer is None:
            optimizer = self._optimizer

        if optimizer is None:
            raise EngineError(
                "No optimizer provided for apply_gradients",
                suggestion="Pass optimizer= or create the state with Engine.create_state",
            )

        try:
            new_params, new_opt_state = optimizer.apply_gradients(
                grads, self.opt_state, self.params
            )
        except KVTrainError as e:
            raise EngineError(
                f"Failed to apply gradients: {e}",
                suggestion="Check that gradients and parameters have compatible shapes",
            ) from e

        return dataclasses.replace(
            self, params=new_params, opt_state=new_opt_state, step=self.step + 1
        )

    def replace(self, **kwargs) -> "TrainState":
        """Return a copy of the state with the given fields replaced."""
        return dataclasses.replace(self, **kwargs)

    def tree_flatten(self):
        children = (self.params, self.opt_state, self.rngs)
        aux_data = (self.step, self._optimizer)
        return children, aux_data

    @classmethod
    def tree_unflatten(cls, aux_data, children):
        step, optimizer = aux_data
        params, opt_state, rngs = children
        return cls(
            params=params,
            opt_state=opt_state,
            step=step,
            rngs=rngs,
            _optimizer=optimizer,
        )


tree_util.register_pytree_node(
    TrainState, TrainState.tree_flatten, TrainState.tree_unflatten
)


class Engine:
    """Training loop driver.

    Without a ``kvstore`` the Engine runs ``@step_fn`` functions and the
    optimizer state lives in ``TrainState``. With a ``kvstore`` it runs
    ``@grad_fn`` functions: gradients are pushed to the store, which sums them
    across workers and applies the optimizer, and parameters are pulled back.

    Args:
        optimizer: Optimizer adapter (installed into the store in key-value mode)
        kvstore: Optional key-value store
        loggers: Metric loggers receiving step and meter metrics
        checkpoint: Checkpoint strategy for save/load
        checkpoint_interval: Save every N steps during ``fit`` (None disables
            periodic saves; a final checkpoint is still written)
        metrics_meter: Throughput meter (a fresh one by default)
    """

    def __init__(
        self,
        optimizer: Optional["OptaxAdapter"] = None,
        kvstore: Optional[KVStore] = None,
        loggers: Optional[List[Logger]] = None,
        checkpoint: Optional[CheckpointStrategy] = None,
        checkpoint_interval: int | None = None,
        metrics_meter: Optional[MetricsMeter] = None,
    ):
        if optimizer is None and kvstore is None:
            raise EngineError(
                "Engine needs an optimizer or a key-value store",
                suggestion="Pass optimizer=ccsgd(...) or kvstore=kvstore.create(...)",
            )
        if checkpoint_interval is not None and checkpoint_interval <= 0:
            raise EngineError(
                "checkpoint_interval must be positive when provided",
                suggestion="Use checkpoint_interval=None to disable periodic saves",
            )

        self.optimizer = optimizer
        self.kvstore = kvstore
        self.loggers = loggers or []
        self.checkpoint = checkpoint
        self.checkpoint_interval = checkpoint_interval
        self._meter = metrics_meter or MetricsMeter()
        self._compiled: Dict[int, Callable] = {}
        self._step_fn: Optional[Callable] = None

        if kvstore is not None and optimizer is not None:
            kvstore.set_optimizer(optimizer)

    @property
    def uses_kvstore(self) -> bool:
        return self.kvstore is not None

    @property
    def meter(self) -> MetricsMeter:
        return self._meter

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------
    def create_state(
        self, params: Params, rngs: Optional[Dict[str, Array]] = None
    ) -> TrainState:
        """Create the initial training state for ``params``.

        In key-value mode the parameters are registered with the store and
        the state holds the values pulled back from it, so every worker
        starts from worker 0's initialization.
        """
        if self.kvstore is not None:
            try:
                self.kvstore.init_tree(params)
                params = self.kvstore.pull_tree(list(params))
            except KVTrainError as e:
                raise EngineError(
                    f"Failed to register parameters with the key-value store: {e}",
                    suggestion="Create the state once per store",
                ) from e
            return TrainState(params=params, opt_state=None, step=0, rngs=rngs or {})

        try:
            opt_state = self.optimizer.init(params)
        except KVTrainError as e:
            raise EngineError(
                f"Failed to initialize optimizer state: {e}",
                suggestion="Check that parameters are valid JAX PyTrees",
            ) from e

        return TrainState(
            params=params,
            opt_state=opt_state,
            step=0,
            rngs=rngs or {},
            _optimizer=self.optimizer,
        )

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------
    def _compile(self, fn: Callable) -> Callable:
        """Return the jit-compiled form of a decorated step or gradient function."""
        cached = self._compiled.get(id(fn))
        if cached is not None:
            return cached

        if not getattr(fn, "_is_step_fn", False):
            raise EngineError(
                f"'{getattr(fn, '__name__', fn)}' is not a decorated step function",
                suggestion="Decorate it with @step_fn (local) or @grad_fn (key-value store)",
            )

        kind = fn._kind
        expected = GRAD_KIND if self.uses_kvstore else STEP_KIND
        if kind != expected:
            raise EngineError(
                f"Engine in {'key-value' if self.uses_kvstore else 'local'} mode needs a "
                f"@{expected}_fn function, got @{kind}_fn '{fn.__name__}'",
                suggestion="Use @grad_fn with a kvstore and @step_fn without one",
            )

        body = fn._validated_fn
        if kind == GRAD_KIND:
            compiled = jax.jit(body)
        else:
            optimizer = self.optimizer

            # step stays on the host; the traced state carries 0
            def _run(params, opt_state, rngs, batch):
                state = TrainState(params, opt_state, 0, rngs, optimizer)
                new_state, metrics = body(state, batch)
                return new_state.params, new_state.opt_state, new_state.rngs, metrics

            compiled = jax.jit(_run)

        self._compiled[id(fn)] = compiled
        return compiled

    def register_step_fn(self, fn: Callable) -> None:
        """Compile ``fn`` and use it for subsequent ``step`` calls."""
        self._compile(fn)
        self._step_fn = fn

    def step(self, state: TrainState, batch: BatchData) -> tuple[TrainState, LogDict]:
        """Run one training step with the registered function.

        Returns:
            Tuple of (updated_state, metrics)
        """
        fn = self._step_fn
        if fn is None:
            raise EngineError(
                "No step function registered",
                suggestion="Call register_step_fn() or fit() first",
            )
        compiled = self._compile(fn)
        try:
            if self.kvstore is not None:
                grads, metrics = compiled(state.params, batch)
                self.kvstore.push_tree(grads)
                params = self.kvstore.pull_tree(list(state.params))
                new_state = state.replace(params=params, step=state.step + 1)
            else:
                params, opt_state, rngs, metrics = compiled(
                    state.params, state.opt_state, state.rngs, batch
                )
                new_state = state.replace(
                    params=params, opt_state=opt_state, rngs=rngs, step=state.step + 1
                )
            host_metrics = metrics_to_host(metrics, fn.__name__)
        except EngineError:
            raise
        except Exception as e:
            raise EngineError(
                f"Step execution failed at step {state.step}: {e}",
                suggestion="Check the step function implementation and batch shapes",
            ) from e

        if self.optimizer is not None:
            host_metrics["learning_rate"] = self.optimizer.get_learning_rate(new_state.step)
        return new_state, host_metrics

    def skip_step(self, state: TrainState) -> TrainState:
        """Take a key-value step that contributes zero gradients.

        Workers whose data ran out call this so every worker joins the same
        number of gradient aggregations.
        """
        if self.kvstore is None:
            raise EngineError(
                "skip_step needs a key-value store",
                suggestion="Only key-value mode aggregates gradients across workers",
            )
        zeros = tree_util.tree_map(jnp.zeros_like, state.params)
        self.kvstore.push_tree(zeros)
        params = self.kvstore.pull_tree(list(state.params))
        return state.replace(params=params, step=state.step + 1)

    def fit(
        self,
        fn: Callable,
        data: Iterable[BatchData],
        steps: Optional[int] = None,
        state: Optional[TrainState] = None,
        on_step: Optional[Callable[[TrainState, LogDict], None]] = None,
        log_header: bool = True,
        save_final: bool = True,
    ) -> TrainState:
        """Run one pass over ``data`` (or at most ``steps`` batches).

        Args:
            fn: Decorated step (local) or gradient (key-value) function
            data: Iterable of batches
            steps: Maximum number of batches to process (None for all)
            state: Initial state; restored from the latest checkpoint when None
            on_step: Optional callback receiving the new state and combined metrics
            log_header: Log the ``run/*`` header and reset the meter first
            save_final: Write a final checkpoint after the pass

        Returns:
            Final training state
        """
        self.register_step_fn(fn)
        run_state = state if state is not None else self.load_checkpoint()

        if log_header:
            self._meter.reset()
            self._log_run_header(run_state)
        processed = 0
        for batch in data:
            if steps is not None and processed >= steps:
                break

            step_start = time.perf_counter()
            run_state, metrics = self.step(run_state, batch)
            step_time = time.perf_counter() - step_start

            combined = dict(metrics)
            combined.update(
                self._meter.update(
                    step=run_state.step,
                    batch_size=self._infer_batch_size(batch),
                    step_time_s=step_time,
                )
            )
            processed += 1
            self.log_metrics(combined, run_state.step)
            if on_step is not None:
                on_step(run_state, combined)

            if (
                self.checkpoint_interval is not None
                and run_state.step % self.checkpoint_interval == 0
            ):
                self._save_checkpoint(run_state, tag="periodic")

        if save_final and self.checkpoint is not None:
            self._save_checkpoint(run_state, tag="final")
        return run_state

    def evaluate(self, fn: Callable, params: Params, data: Iterable[BatchData]) -> float:
        """Accuracy of ``params`` over ``data``.

        ``fn(params, batch)`` returns ``(matches, total)`` for one batch; the
        result is the summed matches over the summed totals.
        """
        compiled = self._compiled.get(id(fn))
        if compiled is None:
            compiled = jax.jit(fn)
            self._compiled[id(fn)] = compiled

        counter = AccuracyCounter()
        for batch in data:
            matches, total = compiled(params, batch)
            counter.update(int(matches), int(total))
        return counter.value()

    # ------------------------------------------------------------------
    # Checkpointing
    # ------------------------------------------------------------------
    def save_checkpoint(self, state: TrainState, tag: str = "manual") -> None:
        """Persist ``state`` with the configured checkpoint strategy."""
        if self.checkpoint is None:
            raise EngineError(
                "No checkpoint strategy configured",
                suggestion="Pass checkpoint=OrbaxCheckpoint(...) to the Engine",
            )
        self._save_checkpoint(state, tag=tag)

    def _save_checkpoint(self, state: TrainState, *, tag: str) -> None:
        if self.checkpoint is None:
            return
        if self.kvstore is not None:
            state = state.replace(
                opt_state=self.kvstore.get_optimizer_states(list(state.params)) or None
            )
        try:
            self.checkpoint.save(state)
        except CheckpointError as err:
            raise EngineError(
                f"Failed to save checkpoint at step {state.step}: {err}",
                suggestion="Verify checkpoint directory permissions and free space",
            ) from err
        logger.info("Saved %s checkpoint at step %d", tag, state.step)
        self.log_metrics({f"checkpoint/{tag}": state.step}, state.step)

    def _rehydrate_opt_state(self, reference: OptState, saved: PyTree) -> OptState:
        """Map restored optimizer leaves back onto the structure of ``reference``."""
        ref_leaves, ref_treedef = tree_util.tree_flatten(reference)
        saved_leaves, _ = tree_util.tree_flatten(saved)
        if len(ref_leaves) != len(saved_leaves):
            raise EngineError(
                f"Checkpoint optimizer state has {len(saved_leaves)} leaves, "
                f"the optimizer expects {len(ref_leaves)}",
                suggestion="Restore with the optimizer configuration used for training",
            )
        return tree_util.tree_unflatten(ref_treedef, saved_leaves)

    def load_checkpoint(self, step: Optional[int] = None) -> TrainState:
        """Restore a training state (the latest one when ``step`` is None).

        In key-value mode the restored parameters are registered with the
        store, so this replaces ``create_state`` for a resumed run, and the
        saved per-key optimizer state is installed into the store.
        """
        if self.checkpoint is None:
            raise EngineError(
                "No initial state provided and no checkpoint strategy configured",
                suggestion="Pass state= or configure a checkpoint strategy",
            )
        try:
            restored = self.checkpoint.restore(step)
        except CheckpointError as err:
            raise EngineError(
                f"Failed to restore checkpoint: {err}",
                suggestion="Ensure checkpoints exist or provide an explicit initial state",
            ) from err

        params = restored["params"]
        saved_opt_state = restored.get("opt_state")
        if self.kvstore is not None:
            state = self.create_state(params)
            store_optimizer = self.kvstore.optimizer
            if saved_opt_state is not None and store_optimizer is not None:
                reference = {
                    key: store_optimizer.init(value) for key, value in state.params.items()
                }
                self.kvstore.set_optimizer_states(
                    self._rehydrate_opt_state(reference, saved_opt_state)
                )
        else:
            if saved_opt_state is None:
                opt_state = self.optimizer.init(params)
            else:
                opt_state = self._rehydrate_opt_state(self.optimizer.init(params), saved_opt_state)
            state = TrainState(
                params=params, opt_state=opt_state, step=0, _optimizer=self.optimizer
            )

        state = state.replace(step=int(restored["step"]))
        logger.info("Restored checkpoint at step %d", state.step)
        self.log_metrics({"checkpoint/loaded_step": state.step}, state.step)
        return state

    # ------------------------------------------------------------------
    # Logging
    # ------------------------------------------------------------------
    def log_metrics(self, metrics: LogDict, step: int) -> None:
        """Send ``metrics`` to every configured logger."""
        for metric_logger in self.loggers:
            metric_logger.log_dict(metrics, step)

    def _infer_batch_size(self, batch: BatchData) -> Optional[int]:
        for leaf in tree_util.tree_leaves(batch):
            shape = getattr(leaf, "shape", None)
            if shape:
                return int(shape[0])
        return None

    def _log_run_header(self, state: TrainState) -> None:
        header: LogDict = {
            "run/kvtrain_version": _kvtrain_version,
            "run/jax_version": jax.__version__,
            "run/device_count": jax.device_count(),
            "run/start_step": state.step,
        }
        if self.optimizer is not None:
            header["run/optimizer"] = self.optimizer.describe()
        if self.kvstore is not None:
            header["run/kvstore"] = self.kvstore.describe()
        self.log_metrics(header, state.step)

    def describe(self) -> str:
        """Human-readable description of the engine configuration."""
        lines = [
            "kvtrain Engine Configuration:",
            f"  Mode: {'key-value store' if self.uses_kvstore else 'local'}",
            f"  Optimizer: {self.optimizer.describe() if self.optimizer else 'in store'}",
            f"  KVStore: {self.kvstore.describe() if self.kvstore else 'none'}",
            f"  Checkpoint: {'enabled' if self.checkpoint else 'disabled'}",
            f"  Loggers: {len(self.loggers)} configured",
        ]
        return "\n".join(lines)


__all__ = ["TrainState", "Engine"]
