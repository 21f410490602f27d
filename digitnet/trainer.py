"""
trainer.py
~~~~~~~~~~

Epoch loop and accuracy scoring around Network.train_one.
"""

import time
import logging
from typing import Any, Callable, Dict, NamedTuple, Optional

import numpy as np

from digitnet.mnist_loader import Dataset
from digitnet.network import (
    Network,
    argmax_with_ties,
    squared_error,
    within_margin
)

# Configure module logger
logger = logging.getLogger(__name__)


class EvaluationResult(NamedTuple):
    correct: int
    total: int
    within_margin: Optional[int] = None

    @property
    def accuracy(self) -> float:
        return self.correct / self.total if self.total else 0.0


def is_correct(output, target) -> bool:
    """
    True iff the output has a single largest value at the target's index.

    A tie for the largest output never counts as a correct answer.
    """
    _, predicted = argmax_with_ties(output)
    _, expected = argmax_with_ties(target)
    return len(predicted) == 1 and predicted == expected


def evaluate(
    network: Network,
    dataset: Dataset,
    margin: Optional[float] = None
) -> EvaluationResult:
    """
    Score a network on a dataset without training it.

    Args:
        network: Network to score
        dataset: Examples to score on
        margin: If given, also count outputs within this margin of target

    Returns:
        EvaluationResult: correct classifications, total, within-margin count
    """
    correct = 0
    within = 0 if margin is not None else None
    for image, target in dataset:
        output = network.predict(image)
        if is_correct(output, target):
            correct += 1
        if margin is not None and within_margin(output, target, margin):
            within += 1
    return EvaluationResult(correct, len(dataset), within)


def train_epoch(
    network: Network,
    dataset: Dataset,
    rng: Optional[np.random.Generator] = None,
    shuffle: bool = True,
    yield_func: Optional[Callable[[], None]] = None,
    yield_every: int = 100
) -> float:
    """
    Run train_one over every example once.

    Args:
        network: Network to train in place
        dataset: Training examples
        rng: Generator used to shuffle the example order
        shuffle: Visit examples in random order if True
        yield_func: Called every ``yield_every`` examples so cooperative
            schedulers can run other work
        yield_every: Examples between yield_func calls

    Returns:
        float: Mean squared error of the outputs seen before each update
    """
    if shuffle:
        rng = np.random.default_rng() if rng is None else rng
        order = rng.permutation(len(dataset)).tolist()
    else:
        order = range(len(dataset))

    total_cost = 0.0
    for count, index in enumerate(order, start=1):
        image, target = dataset[index]
        output = network.train_one(image, target)
        total_cost += squared_error(output, target)
        if yield_func is not None and count % yield_every == 0:
            yield_func()

    return total_cost / len(dataset) if len(dataset) else 0.0


def train(
    network: Network,
    training_data: Dataset,
    epochs: int,
    test_data: Optional[Dataset] = None,
    callback: Optional[Callable[[Dict[str, Any]], None]] = None,
    yield_func: Optional[Callable[[], None]] = None,
    rng: Optional[np.random.Generator] = None,
    shuffle: bool = True
) -> Optional[EvaluationResult]:
    """
    Train for several epochs, reporting progress after each one.

    The callback receives a dict with epoch, total_epochs, accuracy,
    elapsed_time, correct, total and cost. Accuracy fields are None when
    no test data is given.

    Returns:
        EvaluationResult of the final epoch, or None without test data
    """
    if epochs < 1:
        raise ValueError(f"epochs must be a positive integer, got {epochs}")

    result = None
    start = time.time()
    for epoch in range(1, epochs + 1):
        cost = train_epoch(network, training_data, rng=rng, shuffle=shuffle,
                           yield_func=yield_func)

        if test_data is not None:
            result = evaluate(network, test_data)
            logger.info(
                f"Epoch {epoch}/{epochs}: {result.correct}/{result.total} "
                f"correct, cost {cost:.4f}"
            )
        else:
            logger.info(f"Epoch {epoch}/{epochs} complete, cost {cost:.4f}")

        if callback is not None:
            callback({
                'epoch': epoch,
                'total_epochs': epochs,
                'accuracy': result.accuracy if result else None,
                'elapsed_time': time.time() - start,
                'correct': result.correct if result else None,
                'total': result.total if result else None,
                'cost': cost
            })

    return result
