"""
training.py
~~~~~~~~~~~

Training and evaluation runs over an IDX dataset.

Both loops poll a :class:`CheckpointRequest` between units of work. A signal
handler only flips the request; the loop itself writes the checkpoint once
the current batch (or image) is finished, so the network is never touched
from two places at once.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence

import numpy as np

from digit_network.config import TrainingConfig
from digit_network.idx_format import get_input_data, one_hot
from digit_network.network import LabeledSample, Network

logger = logging.getLogger(__name__)


class CheckpointRequest:
    """
    Request/acknowledge handshake between a signal handler and a run loop.

    ``request()`` only assigns a flag, so it is safe to call from a signal
    handler; nothing here takes a lock. The loop checks ``pending`` at its
    own boundaries, saves, and calls ``acknowledge()``.
    """

    def __init__(self):
        self.requested = False
        self.acknowledged = False

    def request(self, *_) -> None:
        """Ask the running loop to checkpoint and stop.

        Extra positional arguments are ignored so this can be installed
        directly with ``signal.signal``.
        """
        self.requested = True

    @property
    def pending(self) -> bool:
        return self.requested and not self.acknowledged

    def acknowledge(self) -> None:
        self.acknowledged = True

    def handle(self, save: Optional[Callable[[], None]]) -> bool:
        """
        Save and acknowledge if a checkpoint was requested.

        Returns:
            True if the caller should stop
        """
        if not self.pending:
            return False
        logger.info("Interrupt received, writing checkpoint")
        if save is not None:
            save()
        self.acknowledge()
        return True


@dataclass
class TrainingSummary:
    """What a training run did before it stopped."""

    epochs: int = 0
    batches: int = 0
    last_cost: Optional[float] = None
    converged: bool = False
    interrupted: bool = False


@dataclass
class ValueConfidence:
    value: int
    confidence: float


@dataclass
class ImageResult:
    image_number: int
    value: int
    confidence: List[ValueConfidence]
    time_elapsed: float


@dataclass
class ResultTable:
    image_results: List[ImageResult] = field(default_factory=list)
    layer_sizes: List[int] = field(default_factory=list)


def shuffle(items: Sequence, rng: np.random.Generator) -> list:
    """Return the items in a uniformly random order."""
    return [items[i] for i in rng.permutation(len(items))]


def make_batches(count: int, batch_size: int,
                 rng: np.random.Generator) -> List[List[int]]:
    """
    Shuffle sample indices and split them into whole batches.

    Only the first ``batch_size * (count // batch_size)`` indices take part;
    the remainder is dropped for the epoch.
    """
    batch_count = count // batch_size
    indices = shuffle(range(batch_size * batch_count), rng)
    return [
        indices[i * batch_size:(i + 1) * batch_size]
        for i in range(batch_count)
    ]


def build_batch(images: np.ndarray, labels: np.ndarray,
                indices: Sequence[int], output_size: int) -> List[LabeledSample]:
    """Turn dataset indices into labeled samples with one-hot targets."""
    return [
        LabeledSample(
            input=get_input_data(images, index),
            expected_output=one_hot(int(labels[index]), output_size),
        )
        for index in indices
    ]


def train(
    network: Network,
    images: np.ndarray,
    labels: np.ndarray,
    config: TrainingConfig,
    rng: np.random.Generator,
    checkpoint: Optional[CheckpointRequest] = None,
    save: Optional[Callable[[], None]] = None,
    max_epochs: Optional[int] = None,
    on_batch: Optional[Callable[[int, int, float], None]] = None,
) -> TrainingSummary:
    """
    Train ``network`` with mini-batch SGD until told to stop.

    Epochs repeat until the mean squared error of a batch falls below
    ``config.break_threshold``, a checkpoint is requested, or ``max_epochs``
    epochs have run. Without any of these the loop never returns.

    Args:
        network: Network to train in place
        images: Images as returned by ``read_image_data``
        labels: Class index per image
        config: Batch size, learning rate and break threshold
        rng: Random source used to shuffle each epoch
        checkpoint: Polled between batches for an interrupt request
        save: Called to write the checkpoint when an interrupt is handled
        max_epochs: Stop after this many epochs
        on_batch: Called with (epoch, batch, cost) after every batch

    Returns:
        TrainingSummary describing how the run ended
    """
    count = len(images)
    batch_count = count // config.batch_size
    output_size = network.layer_sizes[-1]
    summary = TrainingSummary()

    logger.info(f"Image count: {count}")
    logger.info(f"Batch size: {config.batch_size}")
    logger.info(f"Batch count: {batch_count} (rounded down)")

    if batch_count == 0:
        logger.warning("Not enough images for a single batch, nothing to train")
        return summary

    while max_epochs is None or summary.epochs < max_epochs:
        logger.debug("Creating and shuffling index list...")
        batches = make_batches(count, config.batch_size, rng)

        logger.info(f"Training on batches (epoch {summary.epochs + 1})...")
        for i, indices in enumerate(batches):
            if checkpoint is not None and checkpoint.handle(save):
                summary.interrupted = True
                return summary

            batch = build_batch(images, labels, indices, output_size)
            cost = network.train_on_batch(batch, config.learning_rate)
            summary.batches += 1
            summary.last_cost = cost

            # The value is a mean squared error; the wording is historical
            logger.info(f"Batch {i + 1}: average absolute cost: {cost}")
            if on_batch is not None:
                on_batch(summary.epochs + 1, i + 1, cost)

            if config.break_threshold is not None and cost < config.break_threshold:
                logger.info(
                    f"Average is less than {config.break_threshold} - breaking"
                )
                summary.epochs += 1
                summary.converged = True
                return summary

        summary.epochs += 1

    return summary


def evaluate_dataset(
    network: Network,
    images: np.ndarray,
    labels: np.ndarray,
    checkpoint: Optional[CheckpointRequest] = None,
    save: Optional[Callable[[], None]] = None,
) -> ResultTable:
    """
    Evaluate every image and record per-class confidences.

    The loop stops early, after writing a checkpoint through ``save``, when
    ``checkpoint`` is requested; results gathered so far are returned.
    """
    results = ResultTable(layer_sizes=list(network.layer_sizes))
    output_size = network.layer_sizes[-1]
    total = 0.0

    for i in range(len(images)):
        if checkpoint is not None and checkpoint.handle(save):
            break

        logger.info(f"Image {i + 1}")
        input_data = get_input_data(images, i)
        label = int(labels[i])

        begin = time.perf_counter()
        confidence = network.evaluate(input_data)
        elapsed = time.perf_counter() - begin

        expected = one_hot(label, output_size)
        for j in range(output_size):
            logger.info(
                f"{j}: {confidence[j] * 100.0}% "
                f"(expected: {expected[j] * 100.0}%)"
            )

        total += elapsed
        logger.info(
            f"Time elapsed: {elapsed:.5f} seconds ({total:.5f} seconds total)"
        )

        results.image_results.append(ImageResult(
            image_number=i + 1,
            value=label,
            confidence=[
                ValueConfidence(value=j, confidence=float(confidence[j]))
                for j in range(output_size)
            ],
            time_elapsed=elapsed,
        ))

    return results
