"""
conftest.py
~~~~~~~~~~~

Shared fixtures: tiny MNIST-format files written to a temporary directory.
"""

import os
import sys

import pytest

# Make the digitnet package importable without installing it
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

IMAGE_SIZE = 28 * 28


def digit_pixels(digit):
    """A 784-byte image that lights every pixel whose index ends in ``digit``."""
    return bytes(255 if i % 10 == digit else 0 for i in range(IMAGE_SIZE))


def write_images(path, images):
    header = (2051).to_bytes(4, 'big') + len(images).to_bytes(4, 'big') \
        + (28).to_bytes(4, 'big') + (28).to_bytes(4, 'big')
    with open(path, 'wb') as f:
        f.write(header + b''.join(images))


def write_labels(path, labels):
    header = (2049).to_bytes(4, 'big') + len(labels).to_bytes(4, 'big')
    with open(path, 'wb') as f:
        f.write(header + bytes(labels))


@pytest.fixture
def mnist_dir(tmp_path):
    """Directory with small train and t10k splits in ubyte format."""
    data_dir = tmp_path / "data"
    data_dir.mkdir()

    train_labels = [0, 1, 2, 3, 0, 1]
    test_labels = [0, 1, 2, 3]

    write_images(str(data_dir / 'train-images-idx3-ubyte'),
                 [digit_pixels(d) for d in train_labels])
    write_labels(str(data_dir / 'train-labels-idx1-ubyte'), train_labels)
    write_images(str(data_dir / 't10k-images-idx3-ubyte'),
                 [digit_pixels(d) for d in test_labels])
    write_labels(str(data_dir / 't10k-labels-idx1-ubyte'), test_labels)

    return str(data_dir)
