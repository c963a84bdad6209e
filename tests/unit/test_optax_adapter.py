"""Unit tests for Optax optimizer adapters."""

import jax.numpy as jnp
import numpy as np
import optax
import pytest

from kvtrain.exceptions import OptimizerError
from kvtrain.optim import OptaxAdapter, ccsgd, sgd


class TestOptaxAdapter:
    """Test OptaxAdapter wrapper functionality."""

    def test_init_basic(self):
        base_opt = optax.sgd(learning_rate=1e-3)
        adapter = OptaxAdapter(base_opt, learning_rate=1e-3)

        assert adapter.optimizer is base_opt
        assert adapter.name == "optax_adapter"
        assert adapter.get_learning_rate(0) == pytest.approx(1e-3)

    def test_schedule_learning_rate(self):
        def schedule(step):
            return 0.1 * (0.5 ** step)

        adapter = OptaxAdapter(optax.sgd(schedule), learning_rate=schedule, name="decay")
        assert adapter.get_learning_rate(2) == pytest.approx(0.025)
        assert "scheduled" in adapter.describe()

    def test_apply_gradients(self):
        adapter = OptaxAdapter(optax.sgd(learning_rate=1.0), learning_rate=1.0)
        params = {"weight": jnp.array([1.0, 2.0])}
        grads = {"weight": jnp.array([0.1, 0.2])}

        new_params, _ = adapter.apply_gradients(grads, adapter.init(params), params)
        np.testing.assert_allclose(np.asarray(new_params["weight"]), [0.9, 1.8], rtol=1e-6)

    def test_apply_gradients_shape_mismatch(self):
        adapter = OptaxAdapter(optax.sgd(learning_rate=1.0), learning_rate=1.0)
        params = {"weight": jnp.ones(2)}
        with pytest.raises(OptimizerError, match="Failed to apply gradients"):
            adapter.apply_gradients({"other": jnp.ones(2)}, adapter.init(params), params)


class TestSgd:
    def test_plain_sgd(self):
        optimizer = sgd(learning_rate=0.5)
        params = {"w": jnp.array([1.0])}
        new_params, _ = optimizer.apply_gradients({"w": jnp.array([1.0])}, optimizer.init(params), params)
        assert float(new_params["w"][0]) == pytest.approx(0.5)
        assert optimizer.name == "sgd"


class TestCcsgd:
    def test_momentum_update_sequence(self):
        optimizer = ccsgd(learning_rate=0.1, momentum=0.9)
        params = {"w": jnp.array([1.0])}
        grads = {"w": jnp.array([1.0])}
        state = optimizer.init(params)

        params, state = optimizer.apply_gradients(grads, state, params)
        assert float(params["w"][0]) == pytest.approx(0.9)
        # mom = 0.9 * 1 + 1 = 1.9
        params, state = optimizer.apply_gradients(grads, state, params)
        assert float(params["w"][0]) == pytest.approx(0.9 - 0.19)

    def test_rescale_then_clip(self):
        optimizer = ccsgd(learning_rate=1.0, momentum=0.0, rescale_grad=0.5, clip_gradient=1.0)
        params = {"w": jnp.array([0.0, 0.0, 0.0])}
        grads = {"w": jnp.array([1.0, 4.0, -10.0])}
        new_params, _ = optimizer.apply_gradients(grads, optimizer.init(params), params)
        np.testing.assert_allclose(np.asarray(new_params["w"]), [-0.5, -1.0, 1.0], rtol=1e-6)

    def test_weight_decay(self):
        optimizer = ccsgd(learning_rate=1.0, momentum=0.0, weight_decay=0.1)
        params = {"w": jnp.array([2.0])}
        new_params, _ = optimizer.apply_gradients({"w": jnp.zeros(1)}, optimizer.init(params), params)
        assert float(new_params["w"][0]) == pytest.approx(1.8)

    def test_describe_lists_hyperparameters(self):
        description = ccsgd(learning_rate=0.01, weight_decay=1e-5, rescale_grad=0.25).describe()
        assert description.startswith("ccsgd(lr=0.01")
        assert "rescale_grad=0.25" in description

    @pytest.mark.parametrize(
        "kwargs, message",
        [
            ({"rescale_grad": 0.0}, "rescale_grad"),
            ({"clip_gradient": -1.0}, "clip_gradient"),
            ({"weight_decay": -1e-4}, "weight_decay"),
        ],
    )
    def test_invalid_hyperparameters(self, kwargs, message):
        with pytest.raises(OptimizerError, match=message):
            ccsgd(learning_rate=0.01, **kwargs)
