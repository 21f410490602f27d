"""
config.py
~~~~~~~~~

Settings read from the environment, with the defaults used by the API
server and the training script.
"""

import os

DATA_DIR = os.getenv('MNIST_DATA_DIR', 'data')
MODEL_DIR = os.getenv('MODEL_DIR', 'models')
WEIGHTS_DIR = os.getenv('WEIGHTS_DIR', os.path.join(MODEL_DIR, 'layers'))

PORT = int(os.getenv('PORT', 8000))
IS_PRODUCTION = os.getenv('FLASK_ENV') == 'production'
LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO').upper()

DEFAULT_LAYER_SIZES = [784, 30, 10]
DEFAULT_LEARNING_RATE = 0.1
DEFAULT_EPOCHS = 1

# Outputs within this distance of their target count as a match
DEFAULT_MARGIN = 0.5
