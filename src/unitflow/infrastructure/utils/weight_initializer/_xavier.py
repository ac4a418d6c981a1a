"""
Xavier (Glorot) initializers.

- ``xavier``:         normal, ``std = sqrt(2 / (fan_in + fan_out))``
- ``xavier_uniform``: ``U(-b, b)``, ``b = sqrt(6 / (fan_in + fan_out))``

Fans are computed from the per-sample shape via
``_calculate_fan_in_and_fan_out``.
"""

import math

import numpy as np

from ._base import WeightInitializer, _fill, _sample_shape
from ...tensor._tensor import Tensor
from ....domain.utils._weight_initialization import _calculate_fan_in_and_fan_out


def _fans(tensor: Tensor) -> tuple[int, int]:
    fan_in, fan_out = _calculate_fan_in_and_fan_out(tensor.shape.as_tuple())
    return max(1, int(fan_in)), max(1, int(fan_out))


@WeightInitializer.register_initializer("xavier")
def xavier(tensor: Tensor) -> Tensor:
    """
    Xavier normal initialization.

    Parameters
    ----------
    tensor:
        The tensor to initialize in place.

    Returns
    -------
    Tensor
        The same tensor.
    """
    fan_in, fan_out = _fans(tensor)
    std = math.sqrt(2.0 / float(fan_in + fan_out))
    return _fill(tensor, np.random.randn(*_sample_shape(tensor)) * std)


@WeightInitializer.register_initializer("xavier_uniform")
def xavier_uniform(tensor: Tensor) -> Tensor:
    """Xavier uniform initialization."""
    fan_in, fan_out = _fans(tensor)
    bound = math.sqrt(6.0 / float(fan_in + fan_out))
    return _fill(tensor, np.random.uniform(-bound, bound, size=_sample_shape(tensor)))
