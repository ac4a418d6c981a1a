"""
2D convolution unit, computed as matrix multiplication over im2col layouts.

Shapes (per sample)
-------------------
- input  (C, H, W)
- filter (Co, C, Kh, Kw)       trainable, single sample
- bias   (Co,)                 trainable, single sample
- output (Co, Ho, Wo)

with, per axis, ``Ho = (H + 2 * padding - eff) // stride + 1`` and
``eff = K + (K - 1) * dilation`` (dilation 0 is a dense filter).

Forward
-------
pad -> input matrix (Ho*Wo, C*Kh*Kw) -> @ filter matrix (C*Kh*Kw, Co)
-> transpose (Co, Ho*Wo) -> + bias matrix -> output.

Backward
--------
- input gradient: filter matrix @ delta matrix, transposed back to the input
  matrix layout, folded (accumulating) into the padded input, then cropped.
- filter gradient: input matrix^T @ delta matrix^T, summed over the batch.
- bias gradient: delta matrix summed over positions and batch.
"""

from __future__ import annotations

from typing import Iterable, Mapping, Optional, Tuple

from ...domain._errors import ConfigurationError
from ...domain._optimizers import IOptimizer
from ...domain._shape import Shape
from ...domain._unit_id import CONVOLUTION2D_TYPE, UnitId
from ..ops import im2col_cpu, matrix_cpu
from ..tensor._tensor import Tensor
from ._base import TrainableUnit, allocate, backward_input_slots, initialized
from ._metadata import UnitMetaData
from ._registry import register_unit


@register_unit(CONVOLUTION2D_TYPE)
class Convolution2DUnit(TrainableUnit):
    INPUT_KEY = "input"
    FILTER_KEY = "filter"
    BIAS_KEY = "bias"

    def __init__(
        self,
        unit_id: UnitId,
        forward_input_map: Mapping[UnitId, Tensor],
        forward_output: Tensor,
        backward_input_map: Mapping[UnitId, Tensor],
        backward_output_map: Mapping[UnitId, Tensor],
        trainable_tensor_map: Mapping[str, Tensor],
        internal_tensor_map: Optional[Mapping[str, Tensor]] = None,
        optimizer: Optional[IOptimizer] = None,
        batch_size: int = 1,
        stride: Tuple[int, int] = (1, 1),
        dilation: Tuple[int, int] = (0, 0),
        padding: Tuple[int, int] = (0, 0),
    ) -> None:
        super().__init__(
            unit_id,
            forward_input_map,
            forward_output,
            backward_input_map,
            backward_output_map,
            trainable_tensor_map,
            internal_tensor_map,
            optimizer,
            batch_size,
        )
        self.stride_row, self.stride_col = stride
        self.dilation_row, self.dilation_col = dilation
        self.padding_row, self.padding_col = padding

    @staticmethod
    def check_shapes(
        input_shape: Shape,
        filter_shape: Shape,
        bias_shape: Shape,
        output_shape: Shape,
        stride: tuple = (1, 1),
        dilation: tuple = (0, 0),
        padding: tuple = (0, 0),
        unit_name: Optional[str] = None,
    ) -> None:
        """
        Validate the shape contract of a convolution.

        Raises
        ------
        ConfigurationError
            On any rank, channel, hyperparameter or output-size mismatch,
            or when the dilated filter does not fit the padded input.
        """
        if input_shape.dim != 3:
            raise ConfigurationError(
                f"input must be (C, H, W), got {input_shape}", unit_name
            )
        if filter_shape.dim != 4:
            raise ConfigurationError(
                f"filter must be (Co, C, Kh, Kw), got {filter_shape}", unit_name
            )
        if bias_shape.dim != 1:
            raise ConfigurationError(f"bias must be (Co,), got {bias_shape}", unit_name)
        if output_shape.dim != 3:
            raise ConfigurationError(
                f"output must be (Co, Ho, Wo), got {output_shape}", unit_name
            )
        if any(s < 1 for s in stride):
            raise ConfigurationError(f"stride must be >= 1, got {stride}", unit_name)
        if any(d < 0 for d in dilation):
            raise ConfigurationError(f"dilation must be >= 0, got {dilation}", unit_name)
        if any(p < 0 for p in padding):
            raise ConfigurationError(f"padding must be >= 0, got {padding}", unit_name)

        out_channel, in_channel, k_row, k_col = filter_shape.as_tuple()
        if in_channel != input_shape[0]:
            raise ConfigurationError(
                f"filter expects {in_channel} input channels, input has {input_shape[0]}",
                unit_name,
            )
        if bias_shape[0] != out_channel:
            raise ConfigurationError(
                f"bias must have {out_channel} entries, got {bias_shape[0]}", unit_name
            )

        eff_row = im2col_cpu.effective_extent(k_row, dilation[0])
        eff_col = im2col_cpu.effective_extent(k_col, dilation[1])
        padded_row = input_shape[1] + 2 * padding[0]
        padded_col = input_shape[2] + 2 * padding[1]
        if eff_row > padded_row or eff_col > padded_col:
            raise ConfigurationError(
                f"dilated filter {eff_row}x{eff_col} does not fit the padded input "
                f"{padded_row}x{padded_col}",
                unit_name,
            )

        expected = (
            out_channel,
            im2col_cpu.output_extent(input_shape[1], k_row, stride[0], dilation[0], padding[0]),
            im2col_cpu.output_extent(input_shape[2], k_col, stride[1], dilation[1], padding[1]),
        )
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
    ) -> "Convolution2DUnit":
        input_shape = metadata.input_shape(cls.INPUT_KEY)
        filter_shape = metadata.internal_variable_shape(cls.FILTER_KEY)
        bias_shape = metadata.internal_variable_shape(cls.BIAS_KEY)
        output_shape = metadata.output_shape
        stride = (
            metadata.integer_param("stride_row", 1),
            metadata.integer_param("stride_col", 1),
        )
        dilation = (
            metadata.integer_param("dilation_row", 0),
            metadata.integer_param("dilation_col", 0),
        )
        padding = (
            metadata.integer_param("padding_row", 0),
            metadata.integer_param("padding_col", 0),
        )
        cls.check_shapes(
            input_shape, filter_shape, bias_shape, output_shape,
            stride, dilation, padding, metadata.name,
        )

        out_channel = filter_shape[0]
        map_size = output_shape[1] * output_shape[2]
        filter_size = filter_shape[1] * filter_shape[2] * filter_shape[3]

        padded_shape = input_shape.copy()
        padded_shape.set_num_rows(input_shape.num_row + 2 * padding[0])
        padded_shape.set_num_cols(input_shape.num_col + 2 * padding[1])

        input_matrix = Shape((map_size, filter_size))
        filter_matrix = Shape((filter_size, out_channel))
        output_matrix = Shape((out_channel, map_size))

        internal = {
            "padded_input": allocate(metadata, padded_shape),
            "input_matrix": allocate(metadata, input_matrix),
            "filter_matrix": allocate(metadata, filter_matrix, batched=False),
            "product_matrix": allocate(metadata, output_matrix.transposed()),
            "output_matrix": allocate(metadata, output_matrix),
            "bias_matrix": allocate(metadata, output_matrix),
            "delta": allocate(metadata, output_shape),
            "delta_matrix": allocate(metadata, output_matrix),
            "delta_matrix_transpose": allocate(metadata, output_matrix.transposed()),
            "input_gradient_matrix_transpose": allocate(metadata, input_matrix.transposed()),
            "input_gradient_matrix": allocate(metadata, input_matrix),
            "padded_input_gradient": allocate(metadata, padded_shape),
            "input_matrix_transpose": allocate(metadata, input_matrix.transposed()),
            "filter_gradient_matrix_batch": allocate(metadata, filter_matrix),
            "filter_gradient_matrix": allocate(metadata, filter_matrix, batched=False),
        }

        source = metadata.input_unit_id(cls.INPUT_KEY)
        trainable = {
            cls.FILTER_KEY: initialized(
                metadata, cls.FILTER_KEY, allocate(metadata, filter_shape, batched=False)
            ),
            cls.BIAS_KEY: initialized(
                metadata, cls.BIAS_KEY, allocate(metadata, bias_shape, batched=False)
            ),
        }
        return cls(
            metadata.unit_id,
            forward_input_map={source: allocate(metadata, input_shape)},
            forward_output=allocate(metadata, output_shape),
            backward_input_map=backward_input_slots(metadata, output_unit_ids),
            backward_output_map={source: allocate(metadata, input_shape)},
            trainable_tensor_map=trainable,
            internal_tensor_map=internal,
            optimizer=optimizer,
            batch_size=metadata.batch_size,
            stride=stride,
            dilation=dilation,
            padding=padding,
        )

    # ------------------------------------------------------------------
    @property
    def _source(self) -> UnitId:
        return self.input_unit_ids[0]

    def _layout_args(self) -> dict:
        return dict(
            dilation_row=self.dilation_row,
            dilation_col=self.dilation_col,
            stride_row=self.stride_row,
            stride_col=self.stride_col,
        )

    def forward(self) -> None:
        internal = self.internal_tensor_map
        filter_ = self.trainable_tensor_map[self.FILTER_KEY]

        # Trainable tensors may have changed since the last sweep.
        im2col_cpu.filter_to_filter_matrix(filter_, internal["filter_matrix"])
        im2col_cpu.bias_to_bias_matrix(
            self.trainable_tensor_map[self.BIAS_KEY], internal["bias_matrix"]
        )

        im2col_cpu.pad_input(
            self.forward_input_map[self._source],
            internal["padded_input"],
            self.padding_row,
            self.padding_col,
        )
        im2col_cpu.input_to_input_matrix(
            internal["padded_input"],
            internal["input_matrix"],
            filter_.shape,
            self.forward_output.shape,
            **self._layout_args(),
        )
        matrix_cpu.multiply(
            internal["input_matrix"], internal["filter_matrix"], internal["product_matrix"]
        )
        matrix_cpu.transpose(internal["product_matrix"], internal["output_matrix"])
        matrix_cpu.add(
            internal["output_matrix"], internal["bias_matrix"], internal["output_matrix"]
        )
        im2col_cpu.output_matrix_to_output(internal["output_matrix"], self.forward_output)

    def backward(self) -> None:
        internal = self.internal_tensor_map
        filter_ = self.trainable_tensor_map[self.FILTER_KEY]

        delta = self._sum_backward_inputs(internal["delta"])
        im2col_cpu.output_to_output_matrix(delta, internal["delta_matrix"])

        # input gradient
        matrix_cpu.multiply(
            internal["filter_matrix"],
            internal["delta_matrix"],
            internal["input_gradient_matrix_transpose"],
        )
        matrix_cpu.transpose(
            internal["input_gradient_matrix_transpose"], internal["input_gradient_matrix"]
        )
        im2col_cpu.input_matrix_to_input(
            internal["input_gradient_matrix"],
            internal["padded_input_gradient"],
            filter_.shape,
            self.forward_output.shape,
            **self._layout_args(),
        )
        im2col_cpu.crop_input(
            internal["padded_input_gradient"],
            self.backward_output_map[self._source],
            self.padding_row,
            self.padding_col,
        )

        # filter gradient
        matrix_cpu.transpose(internal["input_matrix"], internal["input_matrix_transpose"])
        matrix_cpu.transpose(internal["delta_matrix"], internal["delta_matrix_transpose"])
        matrix_cpu.multiply(
            internal["input_matrix_transpose"],
            internal["delta_matrix_transpose"],
            internal["filter_gradient_matrix_batch"],
        )
        matrix_cpu.reduce_batch(
            internal["filter_gradient_matrix_batch"], internal["filter_gradient_matrix"]
        )
        im2col_cpu.filter_matrix_to_filter(
            internal["filter_gradient_matrix"], self.gradient_tensor_map[self.FILTER_KEY]
        )

        # bias gradient
        im2col_cpu.bias_matrix_to_bias(
            internal["delta_matrix"], self.gradient_tensor_map[self.BIAS_KEY]
        )
        self.apply_gradients()
