"""
test_network.py
~~~~~~~~~~~~~~~

Unit tests for layers, forward evaluation, backpropagation and training.
"""

import os
import sys

import numpy as np
import pytest

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from digit_network import linalg
from digit_network.network import (
    LabeledSample,
    Layer,
    Network,
    ShapeMismatchError,
)


@pytest.fixture
def rng():
    return np.random.default_rng(42)


@pytest.fixture
def small_network(rng):
    """Create a [2, 3, 1] network for gradient checks."""
    return Network([2, 3, 1], rng=rng)


def half_squared_error(network, sample):
    """Cost whose gradient backpropagation computes: 1/2 * sum (a - y)^2."""
    output = network.evaluate(sample.input)
    return 0.5 * float(np.sum((output - sample.expected_output) ** 2))


OR_SAMPLES = [
    LabeledSample(np.array([0.0, 0.0]), np.array([0.0])),
    LabeledSample(np.array([1.0, 0.0]), np.array([1.0])),
    LabeledSample(np.array([0.0, 1.0]), np.array([1.0])),
    LabeledSample(np.array([1.0, 1.0]), np.array([1.0])),
]

XOR_SAMPLES = [
    LabeledSample(np.array([0.0, 0.0]), np.array([0.0])),
    LabeledSample(np.array([1.0, 1.0]), np.array([0.0])),
    LabeledSample(np.array([1.0, 0.0]), np.array([1.0])),
    LabeledSample(np.array([0.0, 1.0]), np.array([1.0])),
]


@pytest.mark.unit
class TestConstruction:
    """Network creation and shape invariants."""

    @pytest.mark.parametrize('sizes', [[2, 1], [3, 4, 2], [784, 64, 16, 10], [5, 5, 5, 5, 5]])
    def test_layer_shapes(self, sizes, rng):
        """Test that every layer matches the adjacent sizes."""
        net = Network(sizes, rng=rng)

        assert net.layer_sizes == sizes
        assert len(net.layers) == len(sizes) - 1
        for i, layer in enumerate(net.layers):
            assert layer.weights.shape == (sizes[i + 1], sizes[i])
            assert layer.biases.shape == (sizes[i + 1],)

    def test_initial_value_ranges(self, rng):
        net = Network([50, 40, 30], rng=rng)
        for layer in net.layers:
            assert np.all(layer.weights >= -1.0) and np.all(layer.weights <= 1.0)
            assert np.all(layer.biases >= 0.0) and np.all(layer.biases <= 1.0)
        # weights should use the negative half of the range too
        assert np.any(net.layers[0].weights < 0.0)

    def test_seeded_construction_is_reproducible(self):
        first = Network([4, 3, 2], rng=np.random.default_rng(7))
        second = Network([4, 3, 2], rng=np.random.default_rng(7))
        for a, b in zip(first.layers, second.layers):
            assert np.array_equal(a.weights, b.weights)
            assert np.array_equal(a.biases, b.biases)

    def test_too_few_layers_rejected(self, rng):
        with pytest.raises(ValueError):
            Network([5], rng=rng)

    def test_non_positive_size_rejected(self, rng):
        with pytest.raises(ValueError):
            Network([3, 0, 2], rng=rng)


@pytest.mark.unit
class TestSnapshot:
    """Conversion to and from the snapshot mapping."""

    def test_round_trip(self, rng):
        net = Network([6, 5, 4, 3], rng=rng)
        restored = Network.from_snapshot(net.to_snapshot())

        assert restored.layer_sizes == net.layer_sizes
        for original, loaded in zip(net.layers, restored.layers):
            assert np.array_equal(original.weights, loaded.weights)
            assert np.array_equal(original.biases, loaded.biases)

    def test_restored_network_is_independent(self, rng):
        net = Network([2, 2], rng=rng)
        restored = Network.from_snapshot(net.to_snapshot())
        restored.layers[0].weights += 1.0
        assert not np.array_equal(net.layers[0].weights, restored.layers[0].weights)

    def test_layer_count_mismatch(self, rng):
        snapshot = Network([3, 4, 2], rng=rng).to_snapshot()
        snapshot['layer_sizes'] = [3, 4, 4, 2]
        with pytest.raises(ShapeMismatchError):
            Network.from_snapshot(snapshot)

    def test_weight_shape_mismatch(self, rng):
        snapshot = Network([3, 4, 2], rng=rng).to_snapshot()
        snapshot['data'][1]['weights'] = np.zeros((2, 3))
        with pytest.raises(ShapeMismatchError):
            Network.from_snapshot(snapshot)

    def test_bias_shape_mismatch(self, rng):
        snapshot = Network([3, 4, 2], rng=rng).to_snapshot()
        snapshot['data'][0]['biases'] = [0.0, 0.0]
        with pytest.raises(ShapeMismatchError):
            Network.from_snapshot(snapshot)

    def test_single_layer_size_rejected(self):
        """Test that a snapshot without any layer is refused."""
        with pytest.raises(ShapeMismatchError):
            Network.from_snapshot({'layer_sizes': [3], 'data': []})

    def test_empty_snapshot_rejected(self):
        with pytest.raises(ShapeMismatchError):
            Network.from_snapshot({'layer_sizes': [], 'data': []})

    def test_non_positive_size_rejected(self):
        snapshot = {
            'layer_sizes': [2, 0],
            'data': [{'weights': np.zeros((0, 2)), 'biases': np.zeros(0)}],
        }
        with pytest.raises(ShapeMismatchError):
            Network.from_snapshot(snapshot)

    @pytest.mark.parametrize('missing', ['layer_sizes', 'data'])
    def test_missing_top_level_field(self, rng, missing):
        snapshot = Network([3, 2], rng=rng).to_snapshot()
        del snapshot[missing]
        with pytest.raises(ShapeMismatchError):
            Network.from_snapshot(snapshot)

    @pytest.mark.parametrize('missing', ['weights', 'biases'])
    def test_missing_layer_field(self, rng, missing):
        snapshot = Network([3, 2], rng=rng).to_snapshot()
        del snapshot['data'][0][missing]
        with pytest.raises(ShapeMismatchError):
            Network.from_snapshot(snapshot)

    def test_prebuilt_layers_are_checked(self):
        with pytest.raises(ShapeMismatchError):
            Network([3, 2], layers=[Layer.zeros(3, 2)])

    def test_prebuilt_layers_are_used(self):
        layer = Layer.zeros(2, 3)
        net = Network([3, 2], layers=[layer])
        assert net.layers == [layer]
        assert np.array_equal(net.evaluate(np.ones(3)), [0.5, 0.5])


@pytest.mark.unit
class TestLayerStep:
    """Averaged gradient descent updates."""

    def test_step_averages_deltas(self):
        layer = Layer(np.ones((2, 3)), np.ones(2))
        deltas = [
            Layer(np.full((2, 3), 1.0), np.full(2, 2.0)),
            Layer(np.full((2, 3), 3.0), np.full(2, 4.0)),
        ]

        layer.step(deltas, eta=0.5)

        # 1 - 0.5 / 2 * (1 + 3) = 0
        assert np.allclose(layer.weights, 0.0)
        # 1 - 0.5 / 2 * (2 + 4) = -0.5
        assert np.allclose(layer.biases, -0.5)

    def test_step_rejects_invalid_layer(self):
        layer = Layer(np.ones((2, 3)), np.ones(3))
        assert not layer.is_valid
        with pytest.raises(ShapeMismatchError):
            layer.step([Layer.zeros(2, 3)], eta=0.1)

    def test_zeros(self):
        layer = Layer.zeros(4, 2)
        assert layer.weights.shape == (4, 2)
        assert layer.biases.shape == (4,)
        assert layer.is_valid


@pytest.mark.unit
class TestEvaluate:
    """Forward evaluation."""

    def test_activation_and_z_shapes(self, rng):
        net = Network([4, 3, 2], rng=rng)
        activations, zs = net.evaluate_pass(np.ones(4))

        assert len(activations) == 3
        assert len(zs) == 2
        assert [a.shape for a in activations] == [(4,), (3,), (2,)]
        assert [z.shape for z in zs] == [(3,), (2,)]

    def test_first_activation_is_input(self, rng):
        net = Network([3, 2], rng=rng)
        input_data = np.array([0.1, 0.2, 0.3])
        activations, _ = net.evaluate_pass(input_data)
        assert activations[0] is input_data

    def test_matches_reference_forward_pass(self, rng):
        net = Network([5, 4, 3], rng=rng)
        input_data = rng.uniform(0, 1, 5)

        expected = input_data
        for layer in net.layers:
            expected = 1 / (1 + np.exp(-(layer.weights @ expected + layer.biases)))

        assert np.allclose(net.evaluate(input_data), expected)

    def test_evaluate_is_deterministic(self, rng):
        net = Network([8, 6, 4], rng=rng)
        input_data = rng.uniform(0, 1, 8)

        first = net.evaluate(input_data)
        for _ in range(5):
            assert np.array_equal(net.evaluate(input_data), first)

    def test_evaluate_does_not_modify_weights(self, rng):
        net = Network([3, 3], rng=rng)
        before = net.layers[0].weights.copy()
        net.evaluate(np.ones(3))
        assert np.array_equal(net.layers[0].weights, before)

    def test_direct_dot_gives_close_results(self, rng):
        net = Network([10, 6, 3], rng=rng)
        direct = Network.from_snapshot(net.to_snapshot(), dot=linalg.direct_dot)
        input_data = rng.uniform(0, 1, 10)
        assert np.allclose(net.evaluate(input_data), direct.evaluate(input_data))


@pytest.mark.unit
class TestBackpropagation:
    """Analytic gradients against central finite differences."""

    @pytest.mark.parametrize('expected', [0.0, 1.0])
    def test_gradients_match_finite_differences(self, small_network, expected):
        net = small_network
        sample = LabeledSample(np.array([0.3, -0.7]), np.array([expected]))
        activations, zs = net.evaluate_pass(sample.input)
        deltas = net.backpropagate(activations, zs, sample.expected_output)

        eps = 1e-6
        for layer, delta in zip(net.layers, deltas):
            assert delta.weights.shape == layer.weights.shape
            assert delta.biases.shape == layer.biases.shape

            for params, grads in ((layer.weights, delta.weights),
                                  (layer.biases, delta.biases)):
                for index in np.ndindex(params.shape):
                    original = params[index]
                    params[index] = original + eps
                    cost_plus = half_squared_error(net, sample)
                    params[index] = original - eps
                    cost_minus = half_squared_error(net, sample)
                    params[index] = original

                    numeric = (cost_plus - cost_minus) / (2 * eps)
                    assert grads[index] == pytest.approx(numeric, rel=1e-4, abs=1e-7)

    def test_deep_network_gradients(self, rng):
        net = Network([3, 4, 3, 2], rng=rng)
        sample = LabeledSample(np.array([0.5, 0.1, 0.9]), np.array([1.0, 0.0]))
        activations, zs = net.evaluate_pass(sample.input)
        deltas = net.backpropagate(activations, zs, sample.expected_output)

        eps = 1e-6
        layer = net.layers[0]
        original = layer.weights[1, 2]
        layer.weights[1, 2] = original + eps
        cost_plus = half_squared_error(net, sample)
        layer.weights[1, 2] = original - eps
        cost_minus = half_squared_error(net, sample)
        layer.weights[1, 2] = original

        numeric = (cost_plus - cost_minus) / (2 * eps)
        assert deltas[0].weights[1, 2] == pytest.approx(numeric, rel=1e-4, abs=1e-7)

    def test_one_gradient_per_layer(self, rng):
        net = Network([4, 3, 3, 2], rng=rng)
        activations, zs = net.evaluate_pass(np.ones(4))
        deltas = net.backpropagate(activations, zs, np.array([0.0, 1.0]))
        assert len(deltas) == 3
        assert all(delta.is_valid for delta in deltas)


@pytest.mark.unit
class TestTrainOnBatch:
    """Batch updates and the reported cost."""

    def test_returns_mean_squared_error(self, rng):
        net = Network([2, 3, 2], rng=rng)
        batch = [
            LabeledSample(np.array([0.2, 0.4]), np.array([1.0, 0.0])),
            LabeledSample(np.array([0.9, 0.1]), np.array([0.0, 1.0])),
        ]
        outputs = [net.evaluate(sample.input) for sample in batch]
        expected = np.mean([
            (output - sample.expected_output) ** 2
            for output, sample in zip(outputs, batch)
        ])

        cost = net.train_on_batch(batch, eta=0.5)

        assert cost == pytest.approx(expected)

    def test_updates_every_layer(self, rng):
        net = Network([2, 3, 2], rng=rng)
        before = [layer.weights.copy() for layer in net.layers]
        net.train_on_batch(
            [LabeledSample(np.array([0.5, 0.5]), np.array([1.0, 0.0]))], eta=1.0
        )
        for original, layer in zip(before, net.layers):
            assert not np.array_equal(original, layer.weights)

    def test_matches_manual_step(self, rng):
        net = Network([2, 2, 1], rng=rng)
        reference = Network.from_snapshot(net.to_snapshot())
        batch = OR_SAMPLES[:3]
        eta = 0.7

        per_sample = []
        for sample in batch:
            activations, zs = reference.evaluate_pass(sample.input)
            per_sample.append(
                reference.backpropagate(activations, zs, sample.expected_output)
            )
        for i, layer in enumerate(reference.layers):
            layer.step([deltas[i] for deltas in per_sample], eta)

        net.train_on_batch(batch, eta)

        for layer, expected in zip(net.layers, reference.layers):
            assert np.allclose(layer.weights, expected.weights)
            assert np.allclose(layer.biases, expected.biases)

    def test_converges_on_or(self, rng):
        """Test that a [2, 4, 1] network learns OR."""
        net = Network([2, 4, 1], rng=rng)

        cost = None
        for _ in range(5000):
            cost = net.train_on_batch(OR_SAMPLES, eta=3.0)
            if cost < 0.05:
                break

        assert cost < 0.05

    def test_converges_on_xor(self):
        """Test that a [2, 4, 1] network learns XOR from some starting point.

        XOR is not linearly separable and a single start can stall in a
        local minimum, so a few seeds are tried.
        """
        costs = []
        for seed in range(5):
            net = Network([2, 4, 1], rng=np.random.default_rng(seed))
            cost = None
            for _ in range(10000):
                cost = net.train_on_batch(XOR_SAMPLES, eta=3.0)
                if cost < 0.05:
                    break
            costs.append(cost)
            if cost < 0.05:
                break

        assert min(costs) < 0.05
