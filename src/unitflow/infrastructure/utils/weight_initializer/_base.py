"""
Initializer registry and dispatch.

Units receive their initializers through `UnitMetaData.initializers`, keyed by
internal variable name ("weight", "filter", "bias", "value"). Any callable
``f(tensor) -> tensor`` that fills `tensor` in place is accepted there; this
module provides the named, registry-backed ones.

Usage
-----
Registering:

    @WeightInitializer.register_initializer("kaiming")
    def kaiming(tensor: Tensor) -> Tensor:
        ...

Applying:

    init = WeightInitializer("kaiming")
    init(filter_tensor)

Initializers fill every sample of the tensor; trainable tensors hold a single
sample, constants may hold a full batch.
"""

from __future__ import annotations

from typing import Any, Callable, ClassVar, Dict, TypeVar

import numpy as np

from ....domain._errors import ConfigurationError
from ....domain.utils._weight_initialization import _WeightInitializer
from ...tensor._tensor import Tensor

T = TypeVar("T", bound=Callable[..., Tensor])


class WeightInitializer(_WeightInitializer):
    """
    Registry-backed initializer dispatcher.

    Raises
    ------
    ConfigurationError
        If `initializer_name` is not registered.
    """

    INITIALIZERS: ClassVar[Dict[str, Callable[..., Tensor]]] = {}

    def __init__(self, initializer_name: str) -> None:
        try:
            self._initializer: Callable[..., Tensor] = self.INITIALIZERS[
                initializer_name
            ]
        except KeyError as e:
            available = ", ".join(sorted(self.INITIALIZERS)) or "<none>"
            raise ConfigurationError(
                f"Unsupported initializer name: {initializer_name!r}. "
                f"Available: {available}"
            ) from e
        self.name = initializer_name

    @classmethod
    def register_initializer(
        cls, name: str, *, overwrite: bool = False
    ) -> Callable[[T], T]:
        """
        Decorator to register an initializer under `name`.

        Parameters
        ----------
        name:
            Registry key.
        overwrite:
            If False (default), raises if `name` is already registered.
        """
        if not isinstance(name, str) or not name:
            raise ValueError("Initializer name must be a non-empty string")

        def decorator(func: T) -> T:
            if not overwrite and name in cls.INITIALIZERS:
                raise ValueError(f"Initializer already registered: {name!r}")
            cls.INITIALIZERS[name] = func
            return func

        return decorator

    @classmethod
    def available(cls) -> tuple[str, ...]:
        return tuple(sorted(cls.INITIALIZERS))

    @classmethod
    def get(cls, name: str) -> Callable[..., Tensor]:
        return cls.INITIALIZERS[name]

    def __call__(self, tensor: Tensor, *args: Any, **kwargs: Any) -> Tensor:
        return self._initializer(tensor, *args, **kwargs)

    def __repr__(self) -> str:
        return f"WeightInitializer({self.name!r})"


def resolve_initializer(initializer: Any) -> Callable[[Tensor], Tensor]:
    """
    Turn an initializer spec into a callable.

    Strings are looked up in the registry; callables pass through.
    """
    if isinstance(initializer, str):
        return WeightInitializer(initializer)
    if callable(initializer):
        return initializer
    raise ConfigurationError(f"Not an initializer: {initializer!r}")


def _fill(tensor: Tensor, values: np.ndarray) -> Tensor:
    tensor.copy_from_numpy(values.astype(tensor.dtype, copy=False))
    return tensor


def _sample_shape(tensor: Tensor) -> tuple[int, ...]:
    return (tensor.batch_size,) + tensor.shape.as_tuple()
