"""
Fully connected unit.

Per sample, with input `x` of shape `(rows, in)`:

    y = x @ W + b            W: (in, out), b: (1, out), y: (rows, out)

Backward, with `d` the sum of the consumers' gradients:

    dx = d @ W^T
    dW = sum over batch of x^T @ d
    db = sum over batch and rows of d
"""

from __future__ import annotations

from typing import Iterable, Optional

from ...domain._errors import ConfigurationError
from ...domain._optimizers import IOptimizer
from ...domain._shape import Shape
from ...domain._unit_id import DENSE_TYPE, UnitId
from ..ops import matrix_cpu
from ._base import TrainableUnit, allocate, backward_input_slots, initialized
from ._metadata import UnitMetaData
from ._registry import register_unit


@register_unit(DENSE_TYPE)
class DenseUnit(TrainableUnit):
    INPUT_KEY = "input"
    WEIGHT_KEY = "weight"
    BIAS_KEY = "bias"

    @staticmethod
    def check_shapes(
        input_shape: Shape,
        weight_shape: Shape,
        bias_shape: Shape,
        output_shape: Shape,
        unit_name: Optional[str] = None,
    ) -> None:
        """
        Validate the shape contract of a dense unit.

        Raises
        ------
        ConfigurationError
            If any shape disagrees with the others.
        """
        if input_shape.dim != 2:
            raise ConfigurationError(
                f"input must be (rows, in), got {input_shape}", unit_name
            )
        if weight_shape.dim != 2:
            raise ConfigurationError(
                f"weight must be (in, out), got {weight_shape}", unit_name
            )
        if weight_shape.num_row != input_shape.num_col:
            raise ConfigurationError(
                f"weight expects {weight_shape.num_row} input features, "
                f"input has {input_shape.num_col}",
                unit_name,
            )
        if bias_shape != (1, weight_shape.num_col):
            raise ConfigurationError(
                f"bias must be (1, {weight_shape.num_col}), got {bias_shape}",
                unit_name,
            )
        expected = (input_shape.num_row, weight_shape.num_col)
        if output_shape != expected:
            raise ConfigurationError(
                f"output must be {expected}, got {output_shape}", unit_name
            )

    @classmethod
    def create_unit(
        cls,
        metadata: UnitMetaData,
        output_unit_ids: Iterable[UnitId],
        optimizer: Optional[IOptimizer] = None,
    ) -> "DenseUnit":
        input_shape = metadata.input_shape(cls.INPUT_KEY)
        weight_shape = metadata.internal_variable_shape(cls.WEIGHT_KEY)
        bias_shape = metadata.internal_variable_shape(cls.BIAS_KEY)
        output_shape = metadata.output_shape
        cls.check_shapes(
            input_shape, weight_shape, bias_shape, output_shape, metadata.name
        )

        source = metadata.input_unit_id(cls.INPUT_KEY)
        weight = initialized(
            metadata, cls.WEIGHT_KEY, allocate(metadata, weight_shape, batched=False)
        )
        bias = initialized(
            metadata, cls.BIAS_KEY, allocate(metadata, bias_shape, batched=False)
        )
        internal = {
            "delta": allocate(metadata, output_shape),
            "weight_transpose": allocate(
                metadata, weight_shape.transposed(), batched=False
            ),
            "input_transpose": allocate(metadata, input_shape.transposed()),
            "weight_gradient_batch": allocate(metadata, weight_shape),
        }
        return cls(
            metadata.unit_id,
            forward_input_map={source: allocate(metadata, input_shape)},
            forward_output=allocate(metadata, output_shape),
            backward_input_map=backward_input_slots(metadata, output_unit_ids),
            backward_output_map={source: allocate(metadata, input_shape)},
            trainable_tensor_map={cls.WEIGHT_KEY: weight, cls.BIAS_KEY: bias},
            internal_tensor_map=internal,
            optimizer=optimizer,
            batch_size=metadata.batch_size,
        )

    @property
    def _source(self) -> UnitId:
        return self.input_unit_ids[0]

    def forward(self) -> None:
        x = self.forward_input_map[self._source]
        weight = self.trainable_tensor_map[self.WEIGHT_KEY]
        bias = self.trainable_tensor_map[self.BIAS_KEY]
        matrix_cpu.multiply(x, weight, self.forward_output)
        matrix_cpu.add(self.forward_output, bias, self.forward_output)

    def backward(self) -> None:
        internal = self.internal_tensor_map
        delta = self._sum_backward_inputs(internal["delta"])
        x = self.forward_input_map[self._source]
        weight = self.trainable_tensor_map[self.WEIGHT_KEY]

        matrix_cpu.transpose(weight, internal["weight_transpose"])
        matrix_cpu.multiply(
            delta, internal["weight_transpose"], self.backward_output_map[self._source]
        )

        matrix_cpu.transpose(x, internal["input_transpose"])
        matrix_cpu.multiply(
            internal["input_transpose"], delta, internal["weight_gradient_batch"]
        )
        matrix_cpu.reduce_batch(
            internal["weight_gradient_batch"], self.gradient_tensor_map[self.WEIGHT_KEY]
        )
        matrix_cpu.reduce_batch(
            delta, self.gradient_tensor_map[self.BIAS_KEY], axes=(0,)
        )
        self.apply_gradients()
