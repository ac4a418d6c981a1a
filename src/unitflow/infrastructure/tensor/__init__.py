"""
Tensor storage for the NumPy CPU backend.

Exports
-------
- Tensor:
    Batch-major tensor with a flat buffer, addressed by flat offsets.
"""

from ._tensor import Tensor

__all__ = [
    Tensor.__name__,
]
