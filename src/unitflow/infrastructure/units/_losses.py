"""
Loss units (graph sinks).
"""

from __future__ import annotations

from typing import Iterable, Optional

from ...domain._errors import ConfigurationError
from ...domain._optimizers import IOptimizer
from ...domain._shape import Shape
from ...domain._unit_id import MSE_TYPE, UnitId
from ..ops import matrix_cpu
from ..tensor._tensor import Tensor
from ._base import ComputableUnit, allocate
from ._metadata import UnitMetaData
from ._registry import register_unit


@register_unit(MSE_TYPE)
class MSELossUnit(ComputableUnit):
    """
    Mean squared error between a prediction and a label.

    The output holds one value per sample, shape ``(1,)``. The unit is a
    sink: its backward pass seeds the gradient chain with

        d/dprediction = 2 * (prediction - label) / n
        d/dlabel      = -2 * (prediction - label) / n

    where `n` is the number of elements per sample.
    """

    PREDICTION_KEY = "prediction"
    LABEL_KEY = "label"

    @classmethod
    def create_unit(
        cls,
        metadata: UnitMetaData,
        output_unit_ids: Iterable[UnitId],
        optimizer: Optional[IOptimizer] = None,
    ) -> "MSELossUnit":
        output_unit_ids = list(output_unit_ids)
        if output_unit_ids:
            raise ConfigurationError(
                f"loss units are sinks, but have consumers {[str(u) for u in output_unit_ids]}",
                metadata.name,
            )
        prediction_shape = metadata.input_shape(cls.PREDICTION_KEY)
        label_shape = metadata.input_shape(cls.LABEL_KEY)
        if prediction_shape != label_shape:
            raise ConfigurationError(
                f"prediction {prediction_shape} and label {label_shape} differ",
                metadata.name,
            )
        if metadata.output_shape != (1,):
            raise ConfigurationError(
                f"output must be (1,), got {metadata.output_shape}", metadata.name
            )
        prediction = metadata.input_unit_id(cls.PREDICTION_KEY)
        label = metadata.input_unit_id(cls.LABEL_KEY)
        if prediction == label:
            raise ConfigurationError(
                f"prediction and label are both bound to {prediction}", metadata.name
            )
        return cls(
            metadata.unit_id,
            forward_input_map={
                prediction: allocate(metadata, prediction_shape),
                label: allocate(metadata, label_shape),
            },
            forward_output=allocate(metadata, Shape((1,))),
            backward_input_map={},
            backward_output_map={
                prediction: allocate(metadata, prediction_shape),
                label: allocate(metadata, label_shape),
            },
            internal_tensor_map={"difference": allocate(metadata, prediction_shape)},
            batch_size=metadata.batch_size,
        )

    def _difference(self) -> Tensor:
        prediction, label = self.input_unit_ids
        difference = self.internal_tensor_map["difference"]
        matrix_cpu.subtract(
            self.forward_input_map[prediction], self.forward_input_map[label], difference
        )
        return difference

    def forward(self) -> None:
        matrix_cpu.mean_of_squares(self._difference(), self.forward_output)

    def backward(self) -> None:
        prediction, label = self.input_unit_ids
        difference = self._difference()
        n = difference.shape.size
        matrix_cpu.scale(difference, 2.0 / n, self.backward_output_map[prediction])
        matrix_cpu.scale(difference, -2.0 / n, self.backward_output_map[label])
