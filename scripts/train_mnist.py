#!/usr/bin/env python3
"""
Train or test a digit-recognition network on the MNIST ubyte files.

Usage:
    python scripts/train_mnist.py train --data-dir data --epochs 3
    python scripts/train_mnist.py test --data-dir data

Layers are read from and written to <weights-dir>/layer_<i>.csv.
"""

import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(os.path.abspath(__file__)), '..'))

from digitnet.cli import main


if __name__ == '__main__':
    sys.exit(main())
