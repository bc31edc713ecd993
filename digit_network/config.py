"""
config.py
~~~~~~~~~

Logging setup, fixed file locations and training defaults.
"""

import logging
import os
from dataclasses import dataclass, field
from typing import List, Optional

# Dataset locations are fixed relative to the working directory
IMAGES_PATH = os.path.join('data', 'images')
LABELS_PATH = os.path.join('data', 'labels')

DEFAULT_NETWORK_PATH = 'network.json'
RESULTS_PATH = 'results.json'

# Exit status after a checkpoint triggered by SIGINT/SIGTERM
INTERRUPTED_EXIT_CODE = 130


@dataclass
class TrainingConfig:
    """Hyperparameters for a training run."""

    batch_size: int = 100
    learning_rate: float = 0.1
    # None disables early stopping
    break_threshold: Optional[float] = None
    hidden_layer_sizes: List[int] = field(default_factory=lambda: [64, 16])
    output_size: int = 10

    def layer_sizes(self, input_size: int) -> List[int]:
        """Layer sizes for a fresh network taking ``input_size`` inputs."""
        return [input_size, *self.hidden_layer_sizes, self.output_size]


def configure_logging() -> None:
    """
    Set up logging from the environment.

    ``LOG_LEVEL`` selects the level (default INFO). Per-batch and per-image
    progress lines are logged at INFO, so WARNING gives a quiet run.
    """
    log_level_str = os.getenv('LOG_LEVEL', 'INFO').upper()
    log_level = getattr(logging, log_level_str, logging.INFO)

    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
