"""
Identity and taxonomy of graph units.

`UnitType` names the kind of a unit and tags it with one of four base roles
(`UnitBaseType`). A type may point to a single parent type through
`base_unit`, forming an "is-a" chain used for capability checks such as
"is this an activation?". It is not used for method dispatch.

`UnitId` identifies one node of one graph. It is hashable and used as the key
of every adjacency and tensor map.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class UnitBaseType(Enum):
    """Role of a unit in the graph."""

    SOURCE = "source"
    HIDDEN = "hidden"
    SINK = "sink"
    COPY = "copy"


@dataclass(frozen=True)
class UnitType:
    """
    Unit kind descriptor.

    Parameters
    ----------
    base_type : UnitBaseType
        Graph role of units of this kind.
    name : str
        Kind name, also the key of the unit factory registry.
    base_unit : Optional[UnitType]
        Parent kind, if this kind specialises another one.

    Notes
    -----
    Equality compares `name` and `base_type` only; two descriptors built
    independently for the same kind compare equal.
    """

    base_type: UnitBaseType
    name: str
    base_unit: Optional["UnitType"] = field(default=None, compare=False)

    @staticmethod
    def is_base_of_type(base: "UnitType", derived: "UnitType") -> bool:
        """
        Return True if `derived` equals `base` or descends from it through
        the `base_unit` chain.
        """
        current: Optional[UnitType] = derived
        while current is not None:
            if current == base:
                return True
            current = current.base_unit
        return False

    def is_base_of(self, derived: "UnitType") -> bool:
        return UnitType.is_base_of_type(self, derived)

    def is_derived_from(self, base: "UnitType") -> bool:
        return UnitType.is_base_of_type(base, self)


@dataclass(frozen=True)
class UnitId:
    """
    Identifier of a unit inside one graph.

    Equality requires identical type, numeric id and name: two units sharing
    a name but not an id are distinct nodes.
    """

    type: UnitType
    id: int
    name: str

    def __hash__(self) -> int:
        return hash(self.name) ^ (hash(self.id) << 1)

    def __str__(self) -> str:
        return f"{self.type.name}:{self.name}#{self.id}"


PLACEHOLDER_TYPE = UnitType(UnitBaseType.SOURCE, "PlaceHolder")
CONSTANT_TYPE = UnitType(UnitBaseType.SOURCE, "Constant")

DENSE_TYPE = UnitType(UnitBaseType.HIDDEN, "Dense")
CONVOLUTION2D_TYPE = UnitType(UnitBaseType.HIDDEN, "Convolution2D")
ADD_TYPE = UnitType(UnitBaseType.HIDDEN, "Add")

ACTIVATION_TYPE = UnitType(UnitBaseType.HIDDEN, "Activation")
RELU_TYPE = UnitType(UnitBaseType.HIDDEN, "ReLU", ACTIVATION_TYPE)
SIGMOID_TYPE = UnitType(UnitBaseType.HIDDEN, "Sigmoid", ACTIVATION_TYPE)

MSE_TYPE = UnitType(UnitBaseType.SINK, "MSE")
