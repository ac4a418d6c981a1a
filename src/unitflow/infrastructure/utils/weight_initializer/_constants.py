"""
Constant initializers.

- ``zeros`` / ``ones``: registered names, typically used for biases.
- `ConstantInitializer`: fills every element with one value.
- `ArrayInitializer`: copies explicit data, broadcast over the batch when it
  holds a single sample.
"""

from __future__ import annotations

from typing import Any

import numpy as np

from ._base import WeightInitializer, _fill, _sample_shape
from ....domain._errors import ConfigurationError
from ...tensor._tensor import Tensor


@WeightInitializer.register_initializer("zeros")
def zeros(tensor: Tensor) -> Tensor:
    """Set every element of `tensor` to zero and return it."""
    tensor.zero_()
    return tensor


@WeightInitializer.register_initializer("ones")
def ones(tensor: Tensor) -> Tensor:
    """Set every element of `tensor` to one and return it."""
    tensor.fill(1.0)
    return tensor


class ConstantInitializer:
    """Fill a tensor with `value`."""

    def __init__(self, value: float) -> None:
        self.value = float(value)

    def __call__(self, tensor: Tensor) -> Tensor:
        tensor.fill(self.value)
        return tensor

    def __repr__(self) -> str:
        return f"ConstantInitializer({self.value!r})"


class ArrayInitializer:
    """
    Fill a tensor with explicit data.

    `data` must hold either one sample (``shape.size`` elements, repeated
    for every sample of the target) or the whole batch.

    Raises
    ------
    ConfigurationError
        (on call) If the element count matches neither.
    """

    def __init__(self, data: Any) -> None:
        self.data = np.array(data, dtype=np.float64)

    def __call__(self, tensor: Tensor) -> Tensor:
        size = self.data.size
        if size == tensor.shape.size:
            values = np.broadcast_to(
                self.data.reshape(tensor.shape.as_tuple()), _sample_shape(tensor)
            )
            return _fill(tensor, np.ascontiguousarray(values))
        if size == tensor.shape.size * tensor.batch_size:
            return _fill(tensor, self.data)
        raise ConfigurationError(
            f"initializer data has {size} elements, tensor needs "
            f"{tensor.shape.size} per sample x {tensor.batch_size} samples"
        )

    def __repr__(self) -> str:
        return f"ArrayInitializer(shape={self.data.shape})"
