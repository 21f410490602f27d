"""
network.py
~~~~~~~~~~

Fully-connected feed-forward network of sigmoid nodes, trained one example
at a time by backpropagation.

The input layer is never stored: its width only shows up as the length of
the weight vectors held by the first real layer. Every other layer (hidden
layers and the output layer) owns its nodes, and every node owns its bias
and the weights of its connections to the previous layer.
"""

import math
import numbers
import logging
from typing import List, Optional, Sequence, Tuple

import numpy as np

# Configure module logger
logger = logging.getLogger(__name__)

# Process-wide generator used whenever no generator is injected
_default_rng = np.random.default_rng()


class ShapeMismatchError(ValueError):
    """A vector or weight row does not match the width it is paired with."""


def sigmoid(z: float) -> float:
    """Logistic function, written to avoid overflow for large |z|."""
    if z >= 0:
        return 1.0 / (1.0 + math.exp(-z))
    e = math.exp(z)
    return e / (1.0 + e)


def squared_error(output: Sequence[float], target: Sequence[float]) -> float:
    """Sum of componentwise squared differences."""
    return sum((o - t) ** 2 for o, t in zip(output, target))


def within_margin(
    output: Sequence[float],
    target: Sequence[float],
    margin: float
) -> bool:
    """
    True iff every output is within ``margin`` of its target.

    Raises:
        ShapeMismatchError: If the output and target widths differ
    """
    if len(output) != len(target):
        raise ShapeMismatchError(
            f"Output width {len(output)} differs from target width {len(target)}"
        )
    limit = margin ** 2
    return all((t - o) ** 2 <= limit for o, t in zip(output, target))


def argmax_with_ties(values: Sequence[float]) -> Tuple[float, List[int]]:
    """
    Find the largest value and every position holding it.

    Args:
        values: Output vector to scan

    Returns:
        (max_value, positions); (-inf, []) for an empty vector

    Example:
        >>> argmax_with_ties([0.2, 0.9, 0.9, 0.1])
        (0.9, [1, 2])
    """
    biggest = -math.inf
    positions: List[int] = []
    for index, value in enumerate(values):
        if value > biggest:
            biggest = value
            positions = [index]
        elif value == biggest:
            positions.append(index)
    return biggest, positions


class Node:
    """
    A single neuron: a bias plus one weight per node of the previous layer.

    ``position`` is the node's index inside its own layer. It is fixed at
    construction and used during the backward pass to pick out the weight
    each next-layer node attaches to this node's output.
    """

    def __init__(self, weights: Sequence[float], bias: float, position: int):
        if position < 0:
            raise ValueError(f"Node position must be non-negative, got {position}")
        self.weights: List[float] = [float(w) for w in weights]
        self.bias = float(bias)
        self._position = position

    @classmethod
    def random(
        cls,
        input_width: int,
        position: int,
        rng: Optional[np.random.Generator] = None
    ) -> 'Node':
        """
        Create a node with bias and weights drawn uniformly from [-1, 1).

        Args:
            input_width: Width of the previous layer
            position: Index of the node inside its layer
            rng: Source of randomness; the process-wide generator if None

        Returns:
            Node: The freshly initialized node
        """
        rng = _default_rng if rng is None else rng
        weights = rng.uniform(-1.0, 1.0, size=input_width).tolist()
        bias = float(rng.uniform(-1.0, 1.0))
        return cls(weights, bias, position)

    @property
    def position(self) -> int:
        return self._position

    @property
    def input_width(self) -> int:
        return len(self.weights)

    def activate(self, previous_activations: Sequence[float]) -> float:
        """
        Compute this node's activation from the previous layer's outputs.

        Raises:
            ShapeMismatchError: If the input width differs from the number
                of weights
        """
        if len(previous_activations) != len(self.weights):
            raise ShapeMismatchError(
                f"Node {self._position} has {len(self.weights)} weights but "
                f"received {len(previous_activations)} values"
            )
        z = self.bias
        for weight, value in zip(self.weights, previous_activations):
            z += weight * value
        return sigmoid(z)

    def error_delta(
        self,
        own_activation: float,
        downstream_values: Sequence[float],
        next_layer: Optional['Layer'] = None
    ) -> float:
        """
        Backpropagated error signal for this node.

        With no next layer the node is an output node and
        ``downstream_values`` holds the target vector. Otherwise it holds
        the deltas already computed for ``next_layer``.

        Args:
            own_activation: This node's activation from the forward pass
            downstream_values: Targets (output mode) or next-layer deltas
            next_layer: The following layer, or None for the output layer

        Returns:
            float: The node's delta
        """
        slope = own_activation * (1.0 - own_activation)
        if next_layer is None:
            return (own_activation - downstream_values[self._position]) * slope

        total = 0.0
        for delta, node in zip(downstream_values, next_layer.nodes):
            total += delta * node.weights[self._position]
        return total * slope

    def __repr__(self) -> str:
        return (
            f"Node(position={self._position}, bias={self.bias!r}, "
            f"input_width={len(self.weights)})"
        )


class Layer:
    """
    An ordered group of nodes that share an input width and a learning rate.
    """

    def __init__(self, nodes: Sequence[Node], learning_rate: float):
        nodes = list(nodes)
        if not nodes:
            raise ShapeMismatchError("A layer needs at least one node")

        input_width = nodes[0].input_width
        for index, node in enumerate(nodes):
            if node.position != index:
                raise ShapeMismatchError(
                    f"Node at index {index} reports position {node.position}"
                )
            if node.input_width != input_width:
                raise ShapeMismatchError(
                    f"Node {index} has {node.input_width} weights, "
                    f"expected {input_width}"
                )

        self.nodes: List[Node] = nodes
        self.learning_rate = float(learning_rate)

    @classmethod
    def random(
        cls,
        previous_width: int,
        width: int,
        learning_rate: float,
        rng: Optional[np.random.Generator] = None
    ) -> 'Layer':
        """Build ``width`` random nodes, each with ``previous_width`` weights."""
        nodes = [
            Node.random(previous_width, position, rng)
            for position in range(width)
        ]
        return cls(nodes, learning_rate)

    @property
    def node_count(self) -> int:
        return len(self.nodes)

    @property
    def input_width(self) -> int:
        return self.nodes[0].input_width

    def activate(self, previous_activations: Sequence[float]) -> List[float]:
        """Activations of every node, in node order."""
        return [node.activate(previous_activations) for node in self.nodes]

    def compute_deltas(
        self,
        activations: Sequence[float],
        targets: Optional[Sequence[float]] = None,
        next_layer: Optional['Layer'] = None,
        next_layer_deltas: Optional[Sequence[float]] = None
    ) -> List[float]:
        """
        Deltas for every node of this layer.

        Output mode is selected by leaving ``next_layer`` as None, in which
        case ``targets`` is required. Otherwise ``next_layer_deltas`` must
        hold one delta per node of ``next_layer``.

        Raises:
            ShapeMismatchError: If any vector has the wrong length
        """
        if len(activations) != self.node_count:
            raise ShapeMismatchError(
                f"Expected {self.node_count} activations, got {len(activations)}"
            )

        if next_layer is None:
            if targets is None or len(targets) != self.node_count:
                raise ShapeMismatchError(
                    f"Output layer of width {self.node_count} needs a target "
                    f"vector of the same width"
                )
            downstream = targets
        else:
            if next_layer.input_width != self.node_count:
                raise ShapeMismatchError(
                    f"Next layer expects {next_layer.input_width} inputs, "
                    f"this layer has {self.node_count} nodes"
                )
            if (next_layer_deltas is None
                    or len(next_layer_deltas) != next_layer.node_count):
                raise ShapeMismatchError(
                    f"Hidden layer needs {next_layer.node_count} next-layer deltas"
                )
            downstream = next_layer_deltas

        return [
            node.error_delta(activation, downstream, next_layer)
            for node, activation in zip(self.nodes, activations)
        ]

    def apply_update(
        self,
        deltas: Sequence[float],
        previous_activations: Sequence[float]
    ) -> None:
        """
        Gradient step on every weight and bias of the layer.

        New weight rows are computed for all nodes before any node is
        modified, so the layer changes in a single step.
        """
        if len(deltas) != self.node_count:
            raise ShapeMismatchError(
                f"Expected {self.node_count} deltas, got {len(deltas)}"
            )
        if len(previous_activations) != self.input_width:
            raise ShapeMismatchError(
                f"Expected {self.input_width} previous activations, "
                f"got {len(previous_activations)}"
            )

        rate = self.learning_rate
        new_weights = []
        new_biases = []
        for node, delta in zip(self.nodes, deltas):
            step = delta * rate
            new_weights.append([
                weight - step * value
                for weight, value in zip(node.weights, previous_activations)
            ])
            new_biases.append(node.bias - step)

        for node, weights, bias in zip(self.nodes, new_weights, new_biases):
            node.weights = weights
            node.bias = bias

    def __repr__(self) -> str:
        return (
            f"Layer(input_width={self.input_width}, node_count={self.node_count}, "
            f"learning_rate={self.learning_rate!r})"
        )


class Network:
    """
    The hidden layers and the output layer of a feed-forward network.

    Example:
        >>> net = Network([784, 30, 10], learning_rate=0.1)
        >>> outputs = net.predict(image)
    """

    def __init__(
        self,
        layer_widths: Sequence[int],
        learning_rate: float = 0.1,
        rng: Optional[np.random.Generator] = None
    ):
        """
        Build a randomly initialized network.

        Args:
            layer_widths: Topology [input_width, hidden..., output_width]
            learning_rate: Rate given to every layer
            rng: Source of randomness; the process-wide generator if None

        Raises:
            ValueError: If fewer than two widths are given or any width is
                not a positive integer
        """
        layer_widths = list(layer_widths)
        if len(layer_widths) < 2:
            raise ValueError(
                f"A network needs at least an input and an output width, "
                f"got {layer_widths}"
            )
        for width in layer_widths:
            if (isinstance(width, bool)
                    or not isinstance(width, numbers.Integral) or width < 1):
                raise ValueError(
                    f"Layer widths must be positive integers, got {layer_widths}"
                )
        layer_widths = [int(width) for width in layer_widths]

        self.layers: List[Layer] = [
            Layer.random(previous, width, learning_rate, rng)
            for previous, width in zip(layer_widths, layer_widths[1:])
        ]
        logger.debug(f"Initialized network with topology {layer_widths}")

    @classmethod
    def from_layers(cls, layers: Sequence[Layer]) -> 'Network':
        """
        Wrap already-built layers, checking that consecutive widths chain.

        Raises:
            ShapeMismatchError: If a layer's input width differs from the
                previous layer's node count
        """
        layers = list(layers)
        if not layers:
            raise ValueError("A network needs at least one layer")
        for index in range(1, len(layers)):
            if layers[index].input_width != layers[index - 1].node_count:
                raise ShapeMismatchError(
                    f"Layer {index} expects {layers[index].input_width} inputs "
                    f"but layer {index - 1} has {layers[index - 1].node_count} nodes"
                )

        network = cls.__new__(cls)
        network.layers = layers
        return network

    @property
    def layer_count(self) -> int:
        return len(self.layers)

    @property
    def input_width(self) -> int:
        return self.layers[0].input_width

    @property
    def output_width(self) -> int:
        return self.layers[-1].node_count

    @property
    def layer_widths(self) -> List[int]:
        """Full topology, input width first."""
        return [self.input_width] + [layer.node_count for layer in self.layers]

    @property
    def learning_rates(self) -> List[float]:
        return [layer.learning_rate for layer in self.layers]

    def forward(self, inputs: Sequence[float]) -> List[List[float]]:
        """
        Activations of every layer for one input vector.

        Returns:
            list: One activation vector per layer; the last one is the
            network's output
        """
        activations = [self.layers[0].activate(inputs)]
        for layer in self.layers[1:]:
            activations.append(layer.activate(activations[-1]))
        return activations

    def predict(self, inputs: Sequence[float]) -> List[float]:
        """Output layer activations for one input vector."""
        return self.forward(inputs)[-1]

    def train_one(self, inputs: Sequence[float], target: Sequence[float]) -> List[float]:
        """
        One step of stochastic gradient descent on a single example.

        Every delta is computed against the current weights before any
        layer is updated.

        Returns:
            The output activations from before the update
        """
        activations = self.forward(inputs)
        last = self.layer_count - 1

        deltas: List[List[float]] = [[] for _ in self.layers]
        deltas[last] = self.layers[last].compute_deltas(
            activations[last], targets=target
        )
        # Reverse order: each hidden layer reads the next layer's deltas
        for index in range(last - 1, -1, -1):
            deltas[index] = self.layers[index].compute_deltas(
                activations[index],
                next_layer=self.layers[index + 1],
                next_layer_deltas=deltas[index + 1]
            )

        self.layers[0].apply_update(deltas[0], inputs)
        for index in range(1, self.layer_count):
            self.layers[index].apply_update(deltas[index], activations[index - 1])
        return activations[last]

    def score_within_margin(
        self,
        inputs: Sequence[float],
        target: Sequence[float],
        margin: float
    ) -> bool:
        """True iff every output is within ``margin`` of its target."""
        return within_margin(self.predict(inputs), target, margin)

    def __repr__(self) -> str:
        return f"Network(layer_widths={self.layer_widths})"
