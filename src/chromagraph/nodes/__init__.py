"""Built-in node library. Importing this package registers every kind."""

from chromagraph.nodes import basic, dynamics, spectral

__all__ = ["basic", "dynamics", "spectral"]
