"""
mnist_loader.py
~~~~~~~~~~~~~~~

Decoder for the MNIST ubyte files.

Image files carry a 16-byte header followed by one unsigned byte per pixel;
label files carry an 8-byte header followed by one byte per label. Pixels
are scaled to [0, 1] and labels are turned into one-hot target vectors so
both can be fed straight to a Network.
"""

import os
import gzip
import logging
from typing import Iterator, List, Optional, Sequence, Tuple

import numpy as np

# Configure module logger
logger = logging.getLogger(__name__)

IMAGE_HEADER_BYTES = 16
LABEL_HEADER_BYTES = 8
IMAGE_SIZE = 28 * 28
DIGIT_CLASSES = 10

# Canonical file names, keyed by dataset kind
DATASET_FILES = {
    'train': ('train-images-idx3-ubyte', 'train-labels-idx1-ubyte'),
    't10k': ('t10k-images-idx3-ubyte', 't10k-labels-idx1-ubyte'),
}


def _read_bytes(path: str) -> bytes:
    """Read a file, gunzipping it first if the name ends in .gz."""
    opener = gzip.open if path.endswith('.gz') else open
    with opener(path, 'rb') as f:
        return f.read()


def load_images(path: str, image_size: int = IMAGE_SIZE) -> List[List[float]]:
    """
    Decode an image file into normalized pixel vectors.

    Args:
        path: Path to an idx3-ubyte file (optionally gzipped)
        image_size: Number of pixels per image

    Returns:
        list: One list of floats in [0, 1] per image

    Raises:
        ValueError: If the payload does not split into whole images
    """
    raw = _read_bytes(path)
    if len(raw) < IMAGE_HEADER_BYTES:
        raise ValueError(f"Image file {path} is shorter than its header")

    pixels = np.frombuffer(raw, dtype=np.uint8, offset=IMAGE_HEADER_BYTES)
    remainder = pixels.size % image_size
    if remainder:
        raise ValueError(
            f"An image in {path} was only partially formed: it had "
            f"{remainder} pixels, expected {image_size}"
        )

    images = (pixels.astype(np.float64) / 255.0).reshape(-1, image_size)
    logger.debug(f"Decoded {len(images)} images from {path}")
    return images.tolist()


def load_labels(path: str) -> List[int]:
    """Decode a label file into a list of digit values."""
    raw = _read_bytes(path)
    if len(raw) < LABEL_HEADER_BYTES:
        raise ValueError(f"Label file {path} is shorter than its header")
    labels = np.frombuffer(raw, dtype=np.uint8, offset=LABEL_HEADER_BYTES)
    return labels.tolist()


def one_hot(labels: Sequence[int], width: int = DIGIT_CLASSES) -> List[List[float]]:
    """
    Turn digit labels into target vectors.

    Raises:
        ValueError: If a label falls outside [0, width)
    """
    targets = []
    for label in labels:
        if not 0 <= label < width:
            raise ValueError(f"Label {label} is outside [0, {width})")
        vector = [0.0] * width
        vector[label] = 1.0
        targets.append(vector)
    return targets


class Dataset:
    """
    Index-aligned images and one-hot targets.
    """

    def __init__(self, images: Sequence[Sequence[float]],
                 labels: Sequence[Sequence[float]]):
        if len(images) != len(labels):
            raise ValueError(
                f"Got {len(images)} images but {len(labels)} labels"
            )
        self.images = list(images)
        self.labels = list(labels)

    def __len__(self) -> int:
        return len(self.images)

    def __iter__(self) -> Iterator[Tuple[Sequence[float], Sequence[float]]]:
        return zip(self.images, self.labels)

    def __getitem__(self, index: int) -> Tuple[Sequence[float], Sequence[float]]:
        return self.images[index], self.labels[index]

    def subset(self, limit: Optional[int]) -> 'Dataset':
        """The first ``limit`` examples (all of them if limit is None)."""
        if limit is None:
            return self
        return Dataset(self.images[:limit], self.labels[:limit])

    def label_of(self, index: int) -> int:
        """Digit encoded by the one-hot target at ``index``."""
        return max(range(len(self.labels[index])),
                   key=self.labels[index].__getitem__)


def _resolve(data_dir: str, name: str) -> str:
    """Locate a data file, accepting a gzipped variant."""
    path = os.path.join(data_dir, name)
    if os.path.exists(path):
        return path
    gz_path = path + '.gz'
    if os.path.exists(gz_path):
        return gz_path
    raise FileNotFoundError(f"Neither {path} nor {gz_path} exists")


def load_dataset(data_dir: str, kind: str = 'train') -> Dataset:
    """
    Load one of the MNIST splits from ``data_dir``.

    Args:
        data_dir: Directory holding the ubyte files
        kind: 'train' or 't10k'

    Returns:
        Dataset: Normalized images with one-hot labels
    """
    if kind not in DATASET_FILES:
        raise ValueError(
            f"Unknown dataset kind '{kind}', expected one of "
            f"{sorted(DATASET_FILES)}"
        )
    image_name, label_name = DATASET_FILES[kind]
    images = load_images(_resolve(data_dir, image_name))
    labels = one_hot(load_labels(_resolve(data_dir, label_name)))
    logger.info(f"Loaded {len(images)} '{kind}' examples from {data_dir}")
    return Dataset(images, labels)


def load_data_wrapper(data_dir: str) -> Tuple[Dataset, Dataset]:
    """Return (training_data, test_data)."""
    return load_dataset(data_dir, 'train'), load_dataset(data_dir, 't10k')
