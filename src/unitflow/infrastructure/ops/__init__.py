"""
CPU tensor primitives used by the units.
"""

from . import im2col_cpu, matrix_cpu

__all__ = ["im2col_cpu", "matrix_cpu"]
