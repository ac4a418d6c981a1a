"""
Initializer public API.

Importing this package registers the built-in initializers (``zeros``,
``ones``, ``xavier``, ``xavier_uniform``, ``kaiming``, ``kaiming_uniform``)
with `WeightInitializer`.
"""

from ._base import WeightInitializer, resolve_initializer
from ._constants import ArrayInitializer, ConstantInitializer
from ._xavier import *
from ._kaiming import *

__all__ = [
    WeightInitializer.__name__,
    resolve_initializer.__name__,
    ArrayInitializer.__name__,
    ConstantInitializer.__name__,
]
