"""
digitnet package
~~~~~~~~~~~~~~~~

Feed-forward sigmoid network trained by per-example backpropagation for
MNIST digit recognition. Contains the network engine, the ubyte data
loader, layer persistence, the model store, the training driver and the
API server.
"""

__version__ = "1.0.0"
