"""
Source units: units without producers.

`PlaceHolderUnit` publishes whatever was last fed to it; `ConstantUnit`
publishes a tensor fixed at construction time by its initializer. Neither
computes a gradient: their `backward` only consumes the gradients they were
sent.
"""

from __future__ import annotations

from typing import Iterable, Optional

import numpy as np

from ...domain._errors import ConfigurationError
from ...domain._optimizers import IOptimizer
from ...domain._unit_id import CONSTANT_TYPE, PLACEHOLDER_TYPE, UnitId
from ..tensor._tensor import Tensor
from ._base import ComputableUnit, allocate, backward_input_slots, initialized
from ._metadata import UnitMetaData
from ._registry import register_unit


class _SourceUnit(ComputableUnit):
    """Common wiring of source units: no producers, one stored value."""

    VALUE_KEY = "value"

    @classmethod
    def _build(
        cls, metadata: UnitMetaData, output_unit_ids: Iterable[UnitId], value: Tensor
    ) -> "_SourceUnit":
        if metadata.input_units:
            raise ConfigurationError(
                f"source units take no inputs, got {sorted(metadata.input_units)}",
                metadata.name,
            )
        return cls(
            metadata.unit_id,
            forward_input_map={},
            forward_output=allocate(metadata, metadata.output_shape),
            backward_input_map=backward_input_slots(metadata, output_unit_ids),
            backward_output_map={},
            internal_tensor_map={cls.VALUE_KEY: value},
            batch_size=metadata.batch_size,
        )

    @property
    def value(self) -> Tensor:
        return self.internal_tensor_map[self.VALUE_KEY]

    def forward(self) -> None:
        self.forward_output.copy_from(self.value)

    def backward(self) -> None:
        # Nothing upstream to send gradients to.
        return None


@register_unit(PLACEHOLDER_TYPE)
class PlaceHolderUnit(_SourceUnit):
    """
    Graph input. Call `feed` before a forward sweep to set the value the unit
    publishes; until then it publishes zeros.
    """

    @classmethod
    def create_unit(
        cls,
        metadata: UnitMetaData,
        output_unit_ids: Iterable[UnitId],
        optimizer: Optional[IOptimizer] = None,
    ) -> "PlaceHolderUnit":
        return cls._build(
            metadata, output_unit_ids, allocate(metadata, metadata.output_shape)
        )

    def feed(self, data) -> None:
        """
        Copy `data` into the placeholder.

        Accepts a `Tensor` with the same layout or any array-like with
        `batch_size * shape.size` elements.

        Raises
        ------
        ValueError
            If the number of elements or the layout does not match.
        """
        if isinstance(data, Tensor):
            self.value.copy_from(data)
            return
        self.value.copy_from_numpy(np.asarray(data))


@register_unit(CONSTANT_TYPE)
class ConstantUnit(_SourceUnit):
    """Publishes a fixed tensor, set once by the `"value"` initializer."""

    @classmethod
    def create_unit(
        cls,
        metadata: UnitMetaData,
        output_unit_ids: Iterable[UnitId],
        optimizer: Optional[IOptimizer] = None,
    ) -> "ConstantUnit":
        value = initialized(
            metadata, cls.VALUE_KEY, allocate(metadata, metadata.output_shape)
        )
        return cls._build(metadata, output_unit_ids, value)
