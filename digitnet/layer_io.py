"""
layer_io.py
~~~~~~~~~~~

Per-layer table persistence for networks.

Each layer becomes one table with one row per node, in position order:
``(bias, weight_0, ..., weight_{k-1})``. Values are written as the
16-digit hexadecimal IEEE-754 binary64 bit pattern, so a saved network
reloads to exactly the same floats.
"""

import os
import re
import csv
import struct
import logging
from typing import List, Optional, Sequence

import numpy as np

from digitnet.network import Layer, Network, Node

# Configure module logger
logger = logging.getLogger(__name__)

Table = List[List[str]]

HEX_FLOAT_PATTERN = re.compile(r'[0-9a-fA-F]{16}')


class LayerLoadError(ValueError):
    """A persisted layer does not match the declared topology."""

    def __init__(self, message: str, layer_index: Optional[int] = None):
        super().__init__(message)
        self.layer_index = layer_index


def encode_float(value: float) -> str:
    """Hex form of the value's binary64 bit pattern."""
    return struct.pack('>d', value).hex()


def decode_float(text: str) -> float:
    """
    Inverse of encode_float.

    Raises:
        LayerLoadError: If the text is not exactly 16 hex digits
    """
    if not isinstance(text, str):
        raise LayerLoadError(f"Expected hex text, got {type(text).__name__}")
    text = text.strip()
    if not HEX_FLOAT_PATTERN.fullmatch(text):
        raise LayerLoadError(f"Expected 16 hex digits, got '{text}'")
    try:
        return struct.unpack('>d', bytes.fromhex(text))[0]
    except (ValueError, struct.error) as e:
        raise LayerLoadError(f"Invalid hex float '{text}': {e}") from e


def layer_to_table(layer: Layer) -> Table:
    """Rows of encoded bias and weights, one per node."""
    return [
        [encode_float(node.bias)] + [encode_float(w) for w in node.weights]
        for node in layer.nodes
    ]


def layer_from_table(
    table: Sequence[Sequence[str]],
    width: int,
    previous_width: int,
    learning_rate: float,
    layer_index: int = 0
) -> Layer:
    """
    Rebuild a layer and check it against the expected shape.

    Args:
        table: Encoded rows, one per node
        width: Expected number of nodes
        previous_width: Expected number of weights per node
        learning_rate: Rate for the rebuilt layer
        layer_index: Index used in error messages

    Returns:
        Layer: The decoded layer

    Raises:
        LayerLoadError: If the node count, a weight count or a value is wrong
    """
    if len(table) != width:
        raise LayerLoadError(
            f"Layer {layer_index} has {len(table)} nodes, expected {width}",
            layer_index
        )

    nodes = []
    for position, row in enumerate(table):
        if len(row) - 1 != previous_width:
            raise LayerLoadError(
                f"Node {position} of layer {layer_index} has "
                f"{max(len(row) - 1, 0)} weights, expected {previous_width}",
                layer_index
            )
        try:
            values = [decode_float(cell) for cell in row]
        except LayerLoadError as e:
            raise LayerLoadError(
                f"Layer {layer_index}, node {position}: {e}", layer_index
            ) from e
        nodes.append(Node(values[1:], values[0], position))

    return Layer(nodes, learning_rate)


def network_to_tables(network: Network) -> List[Table]:
    """One table per layer, input side first."""
    return [layer_to_table(layer) for layer in network.layers]


def network_from_tables(
    tables: Sequence[Sequence[Sequence[str]]],
    layer_widths: Sequence[int],
    learning_rates: Sequence[float]
) -> Network:
    """
    Rebuild a network from its tables.

    Raises:
        LayerLoadError: If the tables do not match ``layer_widths``
    """
    layer_count = len(layer_widths) - 1
    if len(tables) != layer_count:
        raise LayerLoadError(
            f"Got {len(tables)} layer tables for topology {list(layer_widths)}"
        )
    if len(learning_rates) != layer_count:
        raise ValueError(
            f"Got {len(learning_rates)} learning rates for {layer_count} layers"
        )

    layers = [
        layer_from_table(table, layer_widths[i + 1], layer_widths[i],
                         learning_rates[i], layer_index=i)
        for i, table in enumerate(tables)
    ]
    return Network.from_layers(layers)


def layer_file_paths(directory: str, layer_count: int) -> List[str]:
    """Conventional file names: layer_0.csv, layer_1.csv, ..."""
    return [
        os.path.join(directory, f'layer_{index}.csv')
        for index in range(layer_count)
    ]


def write_layer(layer: Layer, file_path: str) -> None:
    """Write one layer as a header-less CSV file."""
    directory = os.path.dirname(file_path)
    if directory and not os.path.exists(directory):
        os.makedirs(directory)
    with open(file_path, 'w', newline='') as f:
        csv.writer(f).writerows(layer_to_table(layer))


def read_layer(
    file_path: str,
    width: int,
    previous_width: int,
    learning_rate: float,
    layer_index: int = 0
) -> Layer:
    """
    Read one layer from CSV.

    Raises:
        LayerLoadError: If the file is missing or malformed
    """
    try:
        with open(file_path, newline='') as f:
            table = [row for row in csv.reader(f) if row]
    except OSError as e:
        raise LayerLoadError(
            f"Could not read layer {layer_index} from {file_path}: {e}",
            layer_index
        ) from e
    return layer_from_table(table, width, previous_width, learning_rate,
                            layer_index)


def write_network(network: Network, file_paths: Sequence[str]) -> None:
    """
    Write every layer of ``network`` to its own CSV file.

    Raises:
        ValueError: If the number of paths differs from the layer count
    """
    if len(file_paths) != network.layer_count:
        raise ValueError(
            f"Got {len(file_paths)} file paths for {network.layer_count} layers"
        )
    for layer, file_path in zip(network.layers, file_paths):
        write_layer(layer, file_path)
    logger.info(
        f"Wrote network {network.layer_widths} to {len(file_paths)} file(s)"
    )


def read_network(
    file_paths: Sequence[str],
    layer_widths: Sequence[int],
    learning_rate: float
) -> Network:
    """
    Read a network written by write_network.

    Raises:
        ValueError: If the number of paths differs from the layer count
        LayerLoadError: If any layer is missing or malformed
    """
    if len(file_paths) != len(layer_widths) - 1:
        raise ValueError(
            f"Got {len(file_paths)} file paths for topology {list(layer_widths)}"
        )
    layers = [
        read_layer(path, layer_widths[i + 1], layer_widths[i],
                   learning_rate, layer_index=i)
        for i, path in enumerate(file_paths)
    ]
    logger.info(f"Read network {list(layer_widths)} from {len(file_paths)} file(s)")
    return Network.from_layers(layers)


def read_network_or_initialize(
    file_paths: Sequence[str],
    layer_widths: Sequence[int],
    learning_rate: float,
    rng: Optional[np.random.Generator] = None
) -> Network:
    """
    Read a network, replacing every unreadable layer with a random one.

    Used when training should continue from whatever was saved, and start
    fresh for the layers that were not.
    """
    if len(file_paths) != len(layer_widths) - 1:
        raise ValueError(
            f"Got {len(file_paths)} file paths for topology {list(layer_widths)}"
        )

    layers = []
    for i, path in enumerate(file_paths):
        try:
            layer = read_layer(path, layer_widths[i + 1], layer_widths[i],
                               learning_rate, layer_index=i)
        except LayerLoadError as e:
            logger.warning(f"Initializing layer {i} randomly: {e}")
            layer = Layer.random(layer_widths[i], layer_widths[i + 1],
                                 learning_rate, rng)
        layers.append(layer)
    return Network.from_layers(layers)
