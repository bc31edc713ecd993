"""
model_persistence.py
~~~~~~~~~~~~~~~~~~~~

JSON persistence for network snapshots and evaluation results.

A snapshot file holds the layer sizes and, per layer, the weight matrix and
bias vector::

    {
      "layer_sizes": [784, 64, 16, 10],
      "data": [{"weights": [[...], ...], "biases": [...]}, ...]
    }

Floats are written with ``repr`` precision, so reading a snapshot back gives
bit-identical parameters for every finite value.
"""

import dataclasses
import json
import logging
import os
from typing import Any, Dict

import numpy as np

from digit_network.network import Network

# Configure module logger
logger = logging.getLogger(__name__)


class NetworkEncoder(json.JSONEncoder):
    """Custom JSON encoder that handles numpy values and result records."""

    def default(self, obj: Any) -> Any:
        """
        Convert numpy arrays and scalars, and dataclasses, to plain values.

        Args:
            obj: Object to serialize

        Returns:
            JSON-serializable representation
        """
        if isinstance(obj, np.ndarray):
            return obj.tolist()
        if isinstance(obj, np.generic):
            return obj.item()
        if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
            return dataclasses.asdict(obj)
        return super().default(obj)


def _ensure_directory(path: str) -> None:
    """Create the parent directory of ``path`` if it doesn't exist."""
    directory = os.path.dirname(path)
    if directory and not os.path.exists(directory):
        os.makedirs(directory)


def _write_json(payload: Any, path: str) -> None:
    """Write ``payload`` to ``path`` through a temporary file."""
    _ensure_directory(path)
    temp_path = f'{path}.tmp'
    with open(temp_path, 'w', encoding='utf-8') as f:
        json.dump(payload, f, cls=NetworkEncoder, indent=2)
    os.replace(temp_path, path)


def save_network(network: Network, path: str) -> None:
    """
    Write a network snapshot to ``path``.

    Args:
        network: The network to save
        path: Destination file, replaced if it exists

    Example:
        >>> net = Network([784, 64, 16, 10])
        >>> save_network(net, "network.json")
    """
    logger.info(f"Serializing network {network.layer_sizes} to '{path}'...")
    _write_json(network.to_snapshot(), path)
    logger.info("Finished serializing")


def load_snapshot(path: str) -> Dict[str, Any]:
    """Read the raw snapshot mapping stored at ``path``."""
    with open(path, 'r', encoding='utf-8') as f:
        return json.load(f)


def load_network(path: str) -> Network:
    """
    Rebuild a network from the snapshot stored at ``path``.

    Raises:
        OSError: If the file can't be read
        json.JSONDecodeError: If the file isn't JSON
        ShapeMismatchError: If the stored shapes are inconsistent
    """
    network = Network.from_snapshot(load_snapshot(path))
    logger.info(f"Loaded network {network.layer_sizes} from '{path}'")
    return network


def save_results(results: Any, path: str) -> None:
    """
    Write an evaluation report to ``path``.

    Args:
        results: A result table (dataclass) or plain mapping
        path: Destination file, replaced if it exists
    """
    _write_json(results, path)
    logger.info(f"Wrote evaluation results to '{path}'")
