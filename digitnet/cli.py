"""
cli.py
~~~~~~

Command-line driver with two modes:

    train   load (or initialize) layers, train, evaluate, save layers
    test    load saved layers and report accuracy on the test split
"""

import sys
import argparse
import logging
from typing import List, Optional

import numpy as np

from digitnet import config, layer_io, mnist_loader, trainer
from digitnet.logging_setup import configure_logging

logger = logging.getLogger(__name__)


def parse_layer_sizes(text: str) -> List[int]:
    """Parse '784,30,10' into [784, 30, 10]."""
    try:
        sizes = [int(part) for part in text.split(',') if part.strip()]
    except ValueError:
        raise argparse.ArgumentTypeError(f"Invalid layer sizes: '{text}'")
    if len(sizes) < 2 or any(size < 1 for size in sizes):
        raise argparse.ArgumentTypeError(
            f"Need at least two positive layer sizes, got '{text}'"
        )
    return sizes


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Train or test a digit-recognition network"
    )
    parser.add_argument('mode', choices=['train', 'test'])
    parser.add_argument('--data-dir', default=config.DATA_DIR,
                        help='Directory holding the MNIST ubyte files')
    parser.add_argument('--weights-dir', default=config.WEIGHTS_DIR,
                        help='Directory holding layer_<i>.csv files')
    parser.add_argument('--layers', type=parse_layer_sizes,
                        default=config.DEFAULT_LAYER_SIZES,
                        help='Comma-separated topology, input width first')
    parser.add_argument('--learning-rate', type=float,
                        default=config.DEFAULT_LEARNING_RATE)
    parser.add_argument('--epochs', type=int, default=config.DEFAULT_EPOCHS)
    parser.add_argument('--limit', type=int, default=None,
                        help='Only use the first N examples of each split')
    parser.add_argument('--seed', type=int, default=None)
    parser.add_argument('--margin', type=float, default=config.DEFAULT_MARGIN,
                        help='Margin for the within-margin score')
    parser.add_argument('--log-level', default=None)
    return parser


def run_train(args: argparse.Namespace) -> int:
    rng = np.random.default_rng(args.seed)
    paths = layer_io.layer_file_paths(args.weights_dir, len(args.layers) - 1)
    network = layer_io.read_network_or_initialize(
        paths, args.layers, args.learning_rate, rng
    )

    training_data, test_data = mnist_loader.load_data_wrapper(args.data_dir)
    result = trainer.train(
        network,
        training_data.subset(args.limit),
        args.epochs,
        test_data=test_data.subset(args.limit),
        rng=rng
    )
    layer_io.write_network(network, paths)

    print(f"Accuracy: {result.correct}/{result.total} ({result.accuracy:.2%})")
    return 0


def run_test(args: argparse.Namespace) -> int:
    paths = layer_io.layer_file_paths(args.weights_dir, len(args.layers) - 1)
    try:
        network = layer_io.read_network(paths, args.layers, args.learning_rate)
    except layer_io.LayerLoadError as e:
        logger.error(f"Cannot test: {e}")
        return 1

    test_data = mnist_loader.load_dataset(args.data_dir, 't10k').subset(args.limit)
    result = trainer.evaluate(network, test_data, margin=args.margin)

    print(f"Accuracy: {result.correct}/{result.total} ({result.accuracy:.2%})")
    print(f"Within margin {args.margin}: {result.within_margin}/{result.total}")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(level=args.log_level)

    if args.epochs < 1:
        logger.error("--epochs must be a positive integer")
        return 2

    if args.mode == 'train':
        return run_train(args)
    return run_test(args)


if __name__ == '__main__':
    sys.exit(main())
