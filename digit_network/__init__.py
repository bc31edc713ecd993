"""
digit_network package
~~~~~~~~~~~~~~~~~~~~~

Fully-connected sigmoid network trained with mini-batch stochastic gradient
descent on IDX-framed handwritten digit data. Contains the linear-algebra
primitives, the network implementation, dataset loading, model persistence
and the command line entry point.
"""

__version__ = "1.0.0"
