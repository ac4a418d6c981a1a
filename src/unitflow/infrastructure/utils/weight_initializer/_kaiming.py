"""
Kaiming (He) initializers for ReLU-family units.

- ``kaiming``:         normal, ``std = sqrt(2 / fan_in)``
- ``kaiming_uniform``: ``U(-b, b)``, ``b = sqrt(6 / fan_in)``
"""

import math

import numpy as np

from ._base import WeightInitializer, _fill, _sample_shape
from ...tensor._tensor import Tensor
from ....domain.utils._weight_initialization import _calculate_fan_in


def _fan_in(tensor: Tensor) -> int:
    return max(1, int(_calculate_fan_in(tensor.shape.as_tuple())))


@WeightInitializer.register_initializer("kaiming")
def kaiming(tensor: Tensor) -> Tensor:
    """
    Kaiming normal initialization.

    Parameters
    ----------
    tensor:
        The tensor to initialize in place.

    Returns
    -------
    Tensor
        The same tensor.
    """
    std = math.sqrt(2.0 / float(_fan_in(tensor)))
    return _fill(tensor, np.random.randn(*_sample_shape(tensor)) * std)


@WeightInitializer.register_initializer("kaiming_uniform")
def kaiming_uniform(tensor: Tensor) -> Tensor:
    bound = math.sqrt(6.0 / float(_fan_in(tensor)))
    return _fill(tensor, np.random.uniform(-bound, bound, size=_sample_shape(tensor)))
