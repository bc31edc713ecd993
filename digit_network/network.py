"""
network.py
~~~~~~~~~~

A fully-connected feed-forward network of sigmoid neurons, trained with
mini-batch stochastic gradient descent. Gradients are computed with
backpropagation against a squared-error cost.

All products go through :mod:`digit_network.linalg`; the dot product used
can be swapped per network through the ``dot`` argument.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np

from digit_network import linalg

logger = logging.getLogger(__name__)


class ShapeMismatchError(ValueError):
    """Raised when layer sizes and weight/bias shapes disagree."""


@dataclass
class LabeledSample:
    """An input vector paired with the output the network should produce."""

    input: np.ndarray
    expected_output: np.ndarray


class Layer:
    """
    Weights and biases connecting one layer of neurons to the previous one.

    ``weights`` has shape (current_size, previous_size) and ``biases`` has
    length current_size. The same type holds per-sample gradients.
    """

    def __init__(self, weights: np.ndarray, biases: np.ndarray):
        self.weights = weights
        self.biases = biases

    @classmethod
    def zeros(cls, current_size: int, previous_size: int) -> 'Layer':
        return cls(np.zeros((current_size, previous_size)),
                   np.zeros(current_size))

    @property
    def is_valid(self) -> bool:
        return (self.weights.ndim == 2 and self.biases.ndim == 1
                and self.weights.shape[0] == self.biases.shape[0])

    def step(self, deltas: Sequence['Layer'], eta: float) -> None:
        """
        Apply one gradient descent update averaged over a batch.

        Args:
            deltas: One gradient layer per sample in the batch
            eta: Learning rate

        Raises:
            ShapeMismatchError: If this layer's weights and biases disagree
        """
        if not self.is_valid:
            raise ShapeMismatchError(
                f"Layer not valid: weights {self.weights.shape}, "
                f"biases {self.biases.shape}"
            )

        scale = eta / len(deltas)
        for delta in deltas:
            self.biases -= delta.biases * scale
            self.weights -= delta.weights * scale

    def to_dict(self) -> Dict[str, Any]:
        return {'weights': self.weights, 'biases': self.biases}


def _check_layers(layer_sizes: List[int], layers: Sequence[Layer]) -> None:
    """Raise ShapeMismatchError unless ``layers`` fit ``layer_sizes``."""
    if len(layer_sizes) != len(layers) + 1:
        raise ShapeMismatchError(
            f"Layer count mismatch: {len(layer_sizes)} layer sizes "
            f"but {len(layers)} layer records"
        )

    for i, layer in enumerate(layers):
        expected_shape = (layer_sizes[i + 1], layer_sizes[i])
        if layer.weights.shape != expected_shape:
            raise ShapeMismatchError(
                f"Layer {i} weights have shape {layer.weights.shape}, "
                f"expected {expected_shape}"
            )
        if layer.biases.shape != (layer_sizes[i + 1],):
            raise ShapeMismatchError(
                f"Layer {i} biases have shape {layer.biases.shape}, "
                f"expected ({layer_sizes[i + 1]},)"
            )


class Network:
    """
    Feed-forward network described by a list of layer sizes.

    ``layer_sizes[0]`` is the input width and ``layer_sizes[-1]`` the output
    width. There is one :class:`Layer` per adjacent pair of sizes.
    """

    def __init__(self, layer_sizes: Sequence[int],
                 rng: Optional[np.random.Generator] = None,
                 dot: linalg.DotProduct = linalg.dot,
                 layers: Optional[List[Layer]] = None):
        """
        Create a network, randomly initialized unless ``layers`` is given.

        Weights are drawn uniformly from [-1, 1] and biases from [0, 1].

        Args:
            layer_sizes: Neuron count per layer, input first
            rng: Random source; a fresh unseeded generator when omitted
            dot: Inner product used by every matrix product
            layers: Prebuilt layers matching ``layer_sizes``; ``rng`` is
                unused when given

        Raises:
            ShapeMismatchError: If there are fewer than 2 sizes, a size is
                not positive, or ``layers`` doesn't match the sizes
        """
        layer_sizes = [int(size) for size in layer_sizes]
        if len(layer_sizes) < 2:
            raise ShapeMismatchError(
                f"A network needs at least 2 layers, got {layer_sizes}"
            )
        if any(size <= 0 for size in layer_sizes):
            raise ShapeMismatchError(
                f"Layer sizes must be positive, got {layer_sizes}"
            )

        if layers is None:
            if rng is None:
                rng = np.random.default_rng()
            layers = [
                Layer(rng.uniform(-1.0, 1.0, size=(current_size, previous_size)),
                      rng.uniform(0.0, 1.0, size=current_size))
                for previous_size, current_size
                in zip(layer_sizes[:-1], layer_sizes[1:])
            ]
        else:
            _check_layers(layer_sizes, layers)

        self.layer_sizes = layer_sizes
        self.dot = dot
        self.layers: List[Layer] = list(layers)

    @classmethod
    def from_snapshot(cls, snapshot: Dict[str, Any],
                      dot: linalg.DotProduct = linalg.dot) -> 'Network':
        """
        Rebuild a network from a snapshot produced by :meth:`to_snapshot`.

        Raises:
            ShapeMismatchError: If a field is missing, the number of layer
                records does not match the layer sizes, or a record has the
                wrong shape
        """
        try:
            layer_sizes = [int(size) for size in snapshot['layer_sizes']]
            layers = [
                Layer(np.array(record['weights'], dtype=float),
                      np.array(record['biases'], dtype=float))
                for record in snapshot['data']
            ]
        except (KeyError, TypeError, ValueError) as e:
            raise ShapeMismatchError(f"Malformed snapshot: {e!r}") from e

        network = cls(layer_sizes, dot=dot, layers=layers)
        logger.debug(f"Rebuilt network {layer_sizes} from snapshot")
        return network

    def to_snapshot(self) -> Dict[str, Any]:
        """Layer sizes plus a weights/biases record per layer."""
        return {
            'layer_sizes': list(self.layer_sizes),
            'data': [layer.to_dict() for layer in self.layers],
        }

    def evaluate_pass(self, input_data: np.ndarray
                      ) -> Tuple[List[np.ndarray], List[np.ndarray]]:
        """
        Run a forward pass, keeping every intermediate vector.

        Returns:
            (activations, zs): ``activations`` has one entry per layer size,
            starting with the input itself; ``zs`` holds the weighted inputs
            of each layer before the sigmoid is applied
        """
        activations = [input_data]
        zs = []
        for layer in self.layers:
            z = linalg.mat_vec(layer.weights, activations[-1], dot=self.dot)
            z = z + layer.biases
            zs.append(z)
            activations.append(linalg.sigmoid(z))
        return activations, zs

    def evaluate(self, input_data: np.ndarray) -> np.ndarray:
        """Return the output activations for ``input_data``."""
        activations, _ = self.evaluate_pass(input_data)
        return activations[-1]

    def backpropagate(self, activations: List[np.ndarray],
                      zs: List[np.ndarray],
                      expected: np.ndarray) -> List[Layer]:
        """
        Gradient of the cost for one sample, as one layer per network layer.

        Args:
            activations: Activations from :meth:`evaluate_pass`
            zs: Weighted inputs from :meth:`evaluate_pass`
            expected: Desired output activations
        """
        deltas: List[Optional[Layer]] = [None] * len(self.layers)

        delta = (linalg.cost_derivative(activations[-1], expected)
                 * linalg.sigmoid_prime(zs[-1]))
        deltas[-1] = Layer(
            linalg.outer(delta, linalg.as_row(activations[-2])),
            delta,
        )

        # l counts back from the output: l = 2 is the second-last layer
        for l in range(2, len(self.layer_sizes)):
            weights_t = linalg.transpose(self.layers[-l + 1].weights)
            delta = (linalg.mat_vec(weights_t, delta, dot=self.dot)
                     * linalg.sigmoid_prime(zs[-l]))
            deltas[-l] = Layer(
                linalg.outer(delta, linalg.as_row(activations[-l - 1])),
                delta,
            )

        return deltas

    def train_on_batch(self, batch: Sequence[LabeledSample], eta: float) -> float:
        """
        Update weights and biases from one mini-batch.

        Args:
            batch: Samples whose gradients are averaged into a single step
            eta: Learning rate

        Returns:
            Mean squared error over every sample and output unit of the
            batch, measured before the update
        """
        batch_size = len(batch)
        per_layer_deltas: List[List[Layer]] = [[] for _ in self.layers]

        total_cost = 0.0
        for sample in batch:
            activations, zs = self.evaluate_pass(sample.input)
            total_cost += float(np.sum(np.abs(
                linalg.cost(activations[-1], sample.expected_output)
            )))

            for layer_deltas, delta in zip(
                    per_layer_deltas,
                    self.backpropagate(activations, zs, sample.expected_output)):
                layer_deltas.append(delta)

        for layer, layer_deltas in zip(self.layers, per_layer_deltas):
            layer.step(layer_deltas, eta)

        return total_cost / (batch_size * self.layer_sizes[-1])
