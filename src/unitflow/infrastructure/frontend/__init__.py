"""
Graph-building front end.
"""

from ._model import Model, SymbolicTensor

__all__ = ["Model", "SymbolicTensor"]
