"""
Initializer contract and fan computations.

Initializers fill a trainable or constant tensor in place when a unit is
constructed. The concrete registry lives in the infrastructure layer; this
module only states the contract and the shape arithmetic shared by the
variance-scaling strategies.

Weight layouts used by the units:

- Dense weight: ``(in_features, out_features)``
- Convolution filter: ``(out_channels, in_channels, k_row, k_col)``
"""

from typing import Callable, Dict, TypeVar
from abc import ABC

from .._errors import ConfigurationError


T = TypeVar("T", bound=Callable[..., object])


class _WeightInitializer(ABC):
    """
    Abstract base class for registry-based initializer dispatchers.

    Design notes
    ------------
    - Initializers are identified by string names.
    - Each initializer is a callable that mutates a tensor in place and
      returns it.
    """

    INITIALIZERS: Dict[str, Callable] = {}

    def __init__(self, initializer_name: str) -> None: ...

    @classmethod
    def register_initializer(
        cls, name: str, *, overwrite: bool = False
    ) -> Callable[[T], T]:
        """Return a decorator registering a callable under `name`."""
        ...

    @classmethod
    def available(cls) -> tuple[str, ...]:
        """Return the sorted names of all registered initializers."""
        ...

    def __call__(self, tensor, *args, **kwargs):
        """Apply the initializer to `tensor` in place and return it."""
        ...


def _calculate_fan_in_and_fan_out(shape: tuple[int, ...]) -> tuple[int, int]:
    """
    Compute fan-in and fan-out for a trainable tensor shape.

    Parameters
    ----------
    shape:
        Per-sample shape of the tensor.

    Returns
    -------
    tuple[int, int]
        ``(fan_in, fan_out)``.

    Raises
    ------
    ConfigurationError
        If the shape has rank 3, which no unit uses for trainable tensors.
    """
    if len(shape) == 0:
        return 1, 1
    if len(shape) == 1:
        return shape[0], shape[0]
    if len(shape) == 2:
        # Dense: (in_features, out_features)
        fan_in, fan_out = shape
        return int(fan_in), int(fan_out)
    if len(shape) == 3:
        raise ConfigurationError(f"cannot compute fan for rank-3 shape {shape}")

    # Filter: (out_channels, in_channels, k1, k2, ...)
    receptive_field = 1
    for d in shape[2:]:
        receptive_field *= int(d)
    return int(shape[1]) * receptive_field, int(shape[0]) * receptive_field


def _calculate_fan_in(shape: tuple[int, ...]) -> int:
    """Return the fan-in of `shape` (see `_calculate_fan_in_and_fan_out`)."""
    return _calculate_fan_in_and_fan_out(shape)[0]
