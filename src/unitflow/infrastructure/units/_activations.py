"""
Elementwise activation units.
"""

from __future__ import annotations

from typing import Iterable, Optional

from ...domain._errors import ConfigurationError
from ...domain._optimizers import IOptimizer
from ...domain._unit_id import RELU_TYPE, SIGMOID_TYPE, UnitId
from ..ops import matrix_cpu
from ._base import ComputableUnit, allocate, backward_input_slots
from ._metadata import UnitMetaData
from ._registry import register_unit


class ActivationUnit(ComputableUnit):
    """
    Shared wiring of single-input activations whose output has the input's
    shape. Subclasses implement `forward` and `backward`.
    """

    INPUT_KEY = "input"

    @classmethod
    def create_unit(
        cls,
        metadata: UnitMetaData,
        output_unit_ids: Iterable[UnitId],
        optimizer: Optional[IOptimizer] = None,
    ) -> "ActivationUnit":
        input_shape = metadata.input_shape(cls.INPUT_KEY)
        if input_shape != metadata.output_shape:
            raise ConfigurationError(
                f"output shape {metadata.output_shape} must equal input shape "
                f"{input_shape}",
                metadata.name,
            )
        source = metadata.input_unit_id(cls.INPUT_KEY)
        return cls(
            metadata.unit_id,
            forward_input_map={source: allocate(metadata, input_shape)},
            forward_output=allocate(metadata, input_shape),
            backward_input_map=backward_input_slots(metadata, output_unit_ids),
            backward_output_map={source: allocate(metadata, input_shape)},
            internal_tensor_map={"delta": allocate(metadata, input_shape)},
            batch_size=metadata.batch_size,
        )

    @property
    def _source(self) -> UnitId:
        return self.input_unit_ids[0]


@register_unit(RELU_TYPE)
class ReLUUnit(ActivationUnit):
    def forward(self) -> None:
        matrix_cpu.relu(self.forward_input_map[self._source], self.forward_output)

    def backward(self) -> None:
        delta = self._sum_backward_inputs(self.internal_tensor_map["delta"])
        matrix_cpu.relu_backward(
            self.forward_input_map[self._source],
            delta,
            self.backward_output_map[self._source],
        )


@register_unit(SIGMOID_TYPE)
class SigmoidUnit(ActivationUnit):
    def forward(self) -> None:
        matrix_cpu.sigmoid(self.forward_input_map[self._source], self.forward_output)

    def backward(self) -> None:
        delta = self._sum_backward_inputs(self.internal_tensor_map["delta"])
        matrix_cpu.sigmoid_backward(
            self.forward_output, delta, self.backward_output_map[self._source]
        )
