"""
Construction-time description of a unit.

`UnitMetaData` is produced by the front end and consumed exactly once, by the
unit factory, when the graph is compiled. It carries everything a unit needs
to allocate and initialise its tensors; nothing keeps it afterwards.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Callable, Dict, Mapping, Optional

from ...domain._errors import ConfigurationError
from ...domain._shape import Shape
from ...domain._unit_id import UnitId
from ...domain.device._device import Device


def _freeze(mapping: Optional[Mapping[str, Any]]) -> Mapping[str, Any]:
    return MappingProxyType(dict(mapping or {}))


@dataclass(frozen=True)
class UnitMetaData:
    """
    Immutable bundle describing one unit.

    Attributes
    ----------
    unit_id : UnitId
        Identity of the unit to build.
    batch_size : int
        Number of samples per sweep.
    internal_variable_shapes : Mapping[str, Shape]
        Shapes of trainable/internal tensors by name (e.g. "weight").
    initializers : Mapping[str, Callable]
        Initializer per internal variable name.
    input_shapes : Mapping[str, Shape]
        Per-sample shape of every input, keyed by input name (e.g. "input").
    output_shape : Shape
        Per-sample shape of the forward output.
    input_units : Mapping[str, UnitId]
        Producer of every input, keyed by input name.
    device : Device
        Device affinity of every tensor of the unit.
    params : Mapping[str, Any]
        Hyperparameters (stride, padding, ...).
    """

    unit_id: UnitId
    batch_size: int
    output_shape: Shape
    internal_variable_shapes: Mapping[str, Shape] = field(default_factory=dict)
    initializers: Mapping[str, Callable] = field(default_factory=dict)
    input_shapes: Mapping[str, Shape] = field(default_factory=dict)
    input_units: Mapping[str, UnitId] = field(default_factory=dict)
    device: Device = field(default_factory=Device)
    params: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if int(self.batch_size) != self.batch_size or self.batch_size <= 0:
            raise ConfigurationError(
                f"batch_size must be a positive integer, got {self.batch_size!r}",
                self.unit_id.name,
            )
        if set(self.input_shapes) != set(self.input_units):
            raise ConfigurationError(
                f"input shapes {sorted(self.input_shapes)} and input units "
                f"{sorted(self.input_units)} name different inputs",
                self.unit_id.name,
            )
        object.__setattr__(self, "device", Device.coerce(self.device))
        for name in (
            "internal_variable_shapes",
            "initializers",
            "input_shapes",
            "input_units",
            "params",
        ):
            object.__setattr__(self, name, _freeze(getattr(self, name)))

    @property
    def name(self) -> str:
        return self.unit_id.name

    def _lookup(self, table: Mapping[str, Any], kind: str, key: str) -> Any:
        try:
            return table[key]
        except KeyError:
            raise ConfigurationError(
                f"missing {kind} {key!r} (known: {sorted(table)})", self.name
            ) from None

    def internal_variable_shape(self, key: str) -> Shape:
        return self._lookup(self.internal_variable_shapes, "internal variable", key)

    def initializer(self, key: str) -> Callable:
        return self._lookup(self.initializers, "initializer", key)

    def input_shape(self, key: str) -> Shape:
        return self._lookup(self.input_shapes, "input shape", key)

    def input_unit_id(self, key: str) -> UnitId:
        return self._lookup(self.input_units, "input unit", key)

    def param(self, key: str, default: Any = ...) -> Any:
        if default is not ... and key not in self.params:
            return default
        return self._lookup(self.params, "parameter", key)

    def integer_param(self, key: str, default: Any = ...) -> int:
        value = self.param(key, default)
        try:
            valid = not isinstance(value, bool) and int(value) == value
        except (TypeError, ValueError):
            valid = False
        if not valid:
            raise ConfigurationError(
                f"parameter {key!r} must be an integer, got {value!r}", self.name
            )
        return int(value)
