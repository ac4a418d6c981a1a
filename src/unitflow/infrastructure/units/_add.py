"""
Elementwise sum of two producers.
"""

from __future__ import annotations

from typing import Iterable, Optional

from ...domain._errors import ConfigurationError
from ...domain._optimizers import IOptimizer
from ...domain._unit_id import ADD_TYPE, UnitId
from ..ops import matrix_cpu
from ._base import ComputableUnit, allocate, backward_input_slots
from ._metadata import UnitMetaData
from ._registry import register_unit


@register_unit(ADD_TYPE)
class AddUnit(ComputableUnit):
    """``y = lhs + rhs``; both operands receive the summed gradient unchanged."""

    LHS_KEY = "lhs"
    RHS_KEY = "rhs"

    @classmethod
    def create_unit(
        cls,
        metadata: UnitMetaData,
        output_unit_ids: Iterable[UnitId],
        optimizer: Optional[IOptimizer] = None,
    ) -> "AddUnit":
        shape = metadata.output_shape
        for key in (cls.LHS_KEY, cls.RHS_KEY):
            if metadata.input_shape(key) != shape:
                raise ConfigurationError(
                    f"operand {key!r} has shape {metadata.input_shape(key)}, "
                    f"expected {shape}",
                    metadata.name,
                )
        lhs = metadata.input_unit_id(cls.LHS_KEY)
        rhs = metadata.input_unit_id(cls.RHS_KEY)
        if lhs == rhs:
            raise ConfigurationError(
                f"both operands are bound to {lhs}", metadata.name
            )
        return cls(
            metadata.unit_id,
            forward_input_map={lhs: allocate(metadata, shape), rhs: allocate(metadata, shape)},
            forward_output=allocate(metadata, shape),
            backward_input_map=backward_input_slots(metadata, output_unit_ids),
            backward_output_map={lhs: allocate(metadata, shape), rhs: allocate(metadata, shape)},
            internal_tensor_map={"delta": allocate(metadata, shape)},
            batch_size=metadata.batch_size,
        )

    def forward(self) -> None:
        lhs, rhs = self.input_unit_ids
        matrix_cpu.add(
            self.forward_input_map[lhs], self.forward_input_map[rhs], self.forward_output
        )

    def backward(self) -> None:
        delta = self._sum_backward_inputs(self.internal_tensor_map["delta"])
        for source in self.input_unit_ids:
            self.backward_output_map[source].copy_from(delta)
