"""Optax optimizer adapters for kvtrain.

This module wraps Optax gradient transformations behind a small adapter that
both the local training loop and the key-value store use to apply updates.
"""

from typing import Callable, Optional, Union

import optax  # type: ignore

from ..types import PyTree, Params, OptState
from ..exceptions import OptimizerError


LearningRate = Union[float, Callable[[int], float]]


class OptaxAdapter:
    """Adapter for Optax optimizers.

    Args:
        optimizer: The underlying Optax gradient transformation
        learning_rate: Learning rate (can be a schedule)
        name: Optional name for the optimizer
        hyperparams: Optional hyperparameters reported by ``describe``
    """

    def __init__(
        self,
        optimizer: optax.GradientTransformation,
        learning_rate: LearningRate,
        name: Optional[str] = None,
        hyperparams: Optional[dict] = None,
    ):
        self.optimizer = optimizer
        self.learning_rate = learning_rate
        self.name = name or "optax_adapter"
        self.hyperparams = dict(hyperparams or {})
        self._lr_is_callable = callable(learning_rate)

    def init(self, params: Params) -> OptState:
        """Initialize optimizer state for ``params``."""
        try:
            return self.optimizer.init(params)
        except Exception as e:
            raise OptimizerError(
                f"Failed to initialize optimizer {self.name}: {e}",
                suggestion="Check that parameters are valid JAX PyTrees"
            ) from e

    def apply_gradients(
        self,
        grads: PyTree,
        opt_state: OptState,
        params: Params,
        **kwargs
    ) -> tuple[Params, OptState]:
        """Apply gradients to parameters.

        Args:
            grads: Gradients to apply
            opt_state: Current optimizer state
            params: Current parameters
            **kwargs: Ignored (accepted for call-site compatibility)

        Returns:
            Tuple of (updated_params, updated_opt_state)
        """
        try:
            updates, new_opt_state = self.optimizer.update(grads, opt_state, params)
            new_params = optax.apply_updates(params, updates)
            return new_params, new_opt_state
        except Exception as e:
            raise OptimizerError(
                f"Failed to apply gradients with optimizer {self.name}: {e}",
                suggestion="Check gradient shapes match parameter shapes"
            ) from e

    def get_learning_rate(self, step: int) -> float:
        """Get the learning rate in effect at ``step``."""
        if self._lr_is_callable:
            return float(self.learning_rate(step))  # type: ignore[operator]
        return float(self.learning_rate)  # type: ignore[arg-type]

    def describe(self) -> str:
        """Return a human-readable description of the optimizer."""
        lr_desc = "scheduled" if self._lr_is_callable else f"{self.learning_rate}"
        extras = "".join(f", {k}={v}" for k, v in self.hyperparams.items())
        return f"{self.name}(lr={lr_desc}{extras})"


def sgd(
    learning_rate: LearningRate = 1e-3,
    momentum: Optional[float] = None,
    nesterov: bool = False,
) -> OptaxAdapter:
    """Create a plain SGD optimizer adapter.

    Example:
        ```python
        optimizer = kvtrain.optim.sgd(learning_rate=1e-3, momentum=0.9)
        ```
    """
    try:
        base_optimizer = optax.sgd(
            learning_rate=learning_rate,
            momentum=momentum,
            nesterov=nesterov,
        )
    except Exception as e:
        raise OptimizerError(
            f"Failed to create SGD optimizer: {e}",
            suggestion="Check optimizer hyperparameters are valid"
        ) from e

    return OptaxAdapter(
        optimizer=base_optimizer,
        learning_rate=learning_rate,
        name="sgd",
        hyperparams={"momentum": momentum} if momentum else None,
    )


def ccsgd(
    learning_rate: LearningRate = 0.01,
    momentum: float = 0.9,
    weight_decay: float = 0.0,
    rescale_grad: float = 1.0,
    clip_gradient: Optional[float] = None,
) -> OptaxAdapter:
    """Create a momentum SGD optimizer with gradient rescaling and clipping.

    Each update rescales the raw gradient by ``rescale_grad``, clips it
    element-wise to ``[-clip_gradient, clip_gradient]``, adds
    ``weight_decay * param`` and then takes a momentum SGD step:

        mom = momentum * mom + grad
        param = param - learning_rate * mom

    Args:
        learning_rate: Learning rate (can be a schedule function)
        momentum: Momentum coefficient
        weight_decay: L2 weight decay coefficient
        rescale_grad: Factor applied to raw gradients, typically
            ``1 / (num_workers * batch_size)`` for summed losses
        clip_gradient: Optional element-wise clipping bound

    Returns:
        OptaxAdapter wrapping the chained transformation
    """
    if rescale_grad <= 0:
        raise OptimizerError(
            f"rescale_grad must be positive, got {rescale_grad}",
            suggestion="Use 1.0 to disable rescaling",
        )
    if clip_gradient is not None and clip_gradient <= 0:
        raise OptimizerError(
            f"clip_gradient must be positive, got {clip_gradient}",
            suggestion="Pass clip_gradient=None to disable clipping",
        )
    if weight_decay < 0:
        raise OptimizerError(
            f"weight_decay must be non-negative, got {weight_decay}",
        )

    transforms = []
    if rescale_grad != 1.0:
        transforms.append(optax.scale(rescale_grad))
    if clip_gradient is not None:
        transforms.append(optax.clip(clip_gradient))
    if weight_decay:
        transforms.append(optax.add_decayed_weights(weight_decay))

    try:
        transforms.append(optax.sgd(learning_rate=learning_rate, momentum=momentum or None))
        base_optimizer = optax.chain(*transforms)
    except Exception as e:
        raise OptimizerError(
            f"Failed to create ccsgd optimizer: {e}",
            suggestion="Check optimizer hyperparameters are valid"
        ) from e

    return OptaxAdapter(
        optimizer=base_optimizer,
        learning_rate=learning_rate,
        name="ccsgd",
        hyperparams={
            "momentum": momentum,
            "wd": weight_decay,
            "rescale_grad": rescale_grad,
            "clip_gradient": clip_gradient,
        },
    )
