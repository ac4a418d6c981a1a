"""
Unit factory registry.

Unit kinds are a closed set: every concrete unit class registers itself under
its `UnitType` name when the `units` package is imported. At compile time the
graph looks up the class for each metadata record and calls its
`create_unit`.
"""

from __future__ import annotations

from typing import Callable, Dict, Iterable, Optional, Type, TypeVar

from ...domain._errors import ConfigurationError
from ...domain._optimizers import IOptimizer
from ...domain._unit_id import UnitId, UnitType
from ._base import ComputableUnit
from ._metadata import UnitMetaData

U = TypeVar("U", bound=Type[ComputableUnit])

_UNIT_REGISTRY: Dict[str, Type[ComputableUnit]] = {}


def register_unit(unit_type: UnitType) -> Callable[[U], U]:
    """
    Decorator registering a unit class as the factory for `unit_type`.

    Raises
    ------
    ValueError
        If another class is already registered under the same name.
    """

    def deco(cls: U) -> U:
        existing = _UNIT_REGISTRY.get(unit_type.name)
        if existing is not None and existing is not cls:
            raise ValueError(f"Unit type already registered: {unit_type.name!r}")
        cls.UNIT_TYPE = unit_type
        _UNIT_REGISTRY[unit_type.name] = cls
        return cls

    return deco


def registered_unit_types() -> tuple[str, ...]:
    """Return the sorted names of registered unit kinds."""
    return tuple(sorted(_UNIT_REGISTRY))


def unit_class(unit_type: UnitType) -> Type[ComputableUnit]:
    try:
        cls = _UNIT_REGISTRY[unit_type.name]
    except KeyError:
        raise ConfigurationError(
            f"no unit implementation registered for type {unit_type.name!r}"
        ) from None
    if cls.UNIT_TYPE != unit_type:
        raise ConfigurationError(
            f"type {unit_type.name!r} is registered with base type "
            f"{cls.UNIT_TYPE.base_type.value}, got {unit_type.base_type.value}"
        )
    return cls


def create_unit(
    metadata: UnitMetaData,
    output_unit_ids: Iterable[UnitId],
    optimizer: Optional[IOptimizer] = None,
) -> ComputableUnit:
    """Build the unit described by `metadata` through its registered class."""
    cls = unit_class(metadata.unit_id.type)
    return cls.create_unit(metadata, list(output_unit_ids), optimizer)
