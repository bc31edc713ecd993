"""
cli.py
~~~~~~

Command line entry point.

Usage:
    python -m digit_network [--train] [--break-threshold COST] [network_path]

Reads the dataset from ``data/images`` and ``data/labels``. The network is
loaded from ``network_path`` (``network.json`` by default) or created fresh
when that file doesn't exist. Without ``--train`` every image is evaluated
and the confidences are written to ``results.json``. The network is saved
back to ``network_path`` when the run ends or is interrupted.
"""

import argparse
import logging
import os
import signal
import sys
from typing import Any, Dict, List, Optional

import numpy as np

from digit_network import config
from digit_network.idx_format import load_dataset
from digit_network.model_persistence import load_network, save_network, save_results
from digit_network.network import Network
from digit_network.training import CheckpointRequest, evaluate_dataset, train

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='digit-network',
        description='Train or evaluate a digit recognition network.'
    )
    parser.add_argument(
        '--train', action='store_true',
        help='train on the dataset instead of evaluating it'
    )
    parser.add_argument(
        '--break-threshold', type=float, default=None, metavar='COST',
        help='stop training once a batch cost falls below COST'
    )
    parser.add_argument(
        'network_path', nargs='?', default=config.DEFAULT_NETWORK_PATH,
        help=f'network snapshot file (default: {config.DEFAULT_NETWORK_PATH})'
    )
    return parser


INTERRUPT_SIGNALS = (signal.SIGINT, signal.SIGTERM)


def install_signal_handlers(checkpoint: CheckpointRequest) -> Dict[int, Any]:
    """
    Route SIGINT and SIGTERM to ``checkpoint.request``.

    Returns:
        The previous handler for each signal, for :func:`restore_signal_handlers`
    """
    return {
        signum: signal.signal(signum, checkpoint.request)
        for signum in INTERRUPT_SIGNALS
    }


def restore_signal_handlers(previous: Dict[int, Any]) -> None:
    for signum, handler in previous.items():
        signal.signal(signum, handler)


def main(argv: Optional[List[str]] = None,
         rng: Optional[np.random.Generator] = None,
         checkpoint: Optional[CheckpointRequest] = None) -> int:
    """
    Run one training or evaluation session.

    Returns:
        Process exit status: 0 on completion, 130 after an interrupt

    Raises:
        DatasetFormatError, DatasetMismatchError, ShapeMismatchError: On bad
            input files; nothing is retried
    """
    args = build_parser().parse_args(argv)
    if rng is None:
        rng = np.random.default_rng()
    if checkpoint is not None:
        return run_session(args, rng, checkpoint)

    checkpoint = CheckpointRequest()
    previous_handlers = install_signal_handlers(checkpoint)
    try:
        return run_session(args, rng, checkpoint)
    finally:
        restore_signal_handlers(previous_handlers)


def run_session(args: argparse.Namespace, rng: np.random.Generator,
                checkpoint: CheckpointRequest) -> int:
    """Load the dataset and network, then train or evaluate."""
    training_config = config.TrainingConfig(break_threshold=args.break_threshold)

    images, labels = load_dataset(config.IMAGES_PATH, config.LABELS_PATH)
    width, height = images.shape[1], images.shape[2]

    if os.path.exists(args.network_path):
        network = load_network(args.network_path)
    else:
        layer_sizes = training_config.layer_sizes(width * height)
        logger.info(f"No network at '{args.network_path}', creating {layer_sizes}")
        network = Network(layer_sizes, rng=rng)

    def checkpoint_network() -> None:
        save_network(network, args.network_path)

    if args.train:
        summary = train(
            network, images, labels, training_config, rng,
            checkpoint=checkpoint, save=checkpoint_network,
        )
        logger.info(
            f"Training stopped after {summary.batches} batch(es), "
            f"last cost {summary.last_cost}"
        )
    else:
        results = evaluate_dataset(
            network, images, labels,
            checkpoint=checkpoint, save=checkpoint_network,
        )
        if not checkpoint.acknowledged:
            save_results(results, config.RESULTS_PATH)

    if checkpoint.acknowledged:
        return config.INTERRUPTED_EXIT_CODE

    checkpoint_network()
    return 0


def run() -> None:
    """Console script entry point."""
    config.configure_logging()
    try:
        status = main()
    except (OSError, ValueError) as e:
        logger.error(f"{type(e).__name__}: {e}")
        sys.exit(1)
    sys.exit(status)
