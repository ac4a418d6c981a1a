"""
Graph-building front end.

`Model` is a thin builder over `UnitManager`: each layer call allocates a
`UnitId`, derives the output shape, packs a `UnitMetaData` and appends it.
Layer calls return `SymbolicTensor` handles that name a unit and the
per-sample shape of its output; they carry no data.

Example
-------
    model = Model(batch_size=4)
    x = model.placeholder((1, 3))
    y = model.placeholder((1, 1))
    h = model.relu(model.dense(x, 8))
    p = model.dense(h, 1)
    loss = model.mse(p, y)
    model.compile("sgd", lr=0.1)
    logs = model.train_step({x: xb, y: yb}, loss)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

import numpy as np

from ...domain._errors import ConfigurationError
from ...domain._shape import Shape
from ...domain._unit_id import (
    ADD_TYPE,
    CONSTANT_TYPE,
    CONVOLUTION2D_TYPE,
    DENSE_TYPE,
    MSE_TYPE,
    PLACEHOLDER_TYPE,
    RELU_TYPE,
    SIGMOID_TYPE,
    UnitId,
    UnitType,
)
from ...domain.device._device import Device
from ..graph import SchedulerConfig, UnitManager
from ..ops.im2col_cpu import effective_extent, output_extent
from ..units import UnitMetaData
from ..utils.weight_initializer import (
    ArrayInitializer,
    ConstantInitializer,
    resolve_initializer,
)

logger = logging.getLogger(__name__)

IntPair = Union[int, Tuple[int, int]]


def _pair(value: IntPair, name: str) -> Tuple[int, int]:
    if isinstance(value, (tuple, list)):
        if len(value) != 2:
            raise ConfigurationError(f"{name} must be an int or a pair, got {value!r}")
        return int(value[0]), int(value[1])
    return int(value), int(value)


@dataclass(frozen=True)
class SymbolicTensor:
    """Handle on the output of one unit of a `Model`."""

    shape: Tuple[int, ...]
    unit_id: UnitId

    @property
    def name(self) -> str:
        return self.unit_id.name


class Model:
    """
    Builder and runner of a unit graph.

    Parameters
    ----------
    batch_size : int
        Number of samples per sweep, shared by every unit.
    config : SchedulerConfig, optional
        Scheduler settings.
    device : Device or str
        Device affinity of every unit.
    """

    def __init__(
        self,
        batch_size: int = 1,
        config: Optional[SchedulerConfig] = None,
        device: Union[Device, str] = "cpu",
    ) -> None:
        if isinstance(batch_size, bool) or int(batch_size) != batch_size or batch_size < 1:
            raise ConfigurationError(f"batch_size must be a positive integer, got {batch_size!r}")
        self.batch_size = int(batch_size)
        self.device = Device.coerce(device)
        self.manager = UnitManager(config)
        self._next_id = 0

    # ------------------------------------------------------------------
    def _new_id(self, unit_type: UnitType, name: Optional[str]) -> UnitId:
        uid = self._next_id
        self._next_id += 1
        return UnitId(unit_type, uid, name or f"{unit_type.name.lower()}_{uid}")

    def _append(
        self,
        unit_type: UnitType,
        name: Optional[str],
        output_shape: Iterable[int],
        inputs: Optional[Mapping[str, SymbolicTensor]] = None,
        variables: Optional[Mapping[str, Tuple[Iterable[int], Any]]] = None,
        params: Optional[Mapping[str, Any]] = None,
    ) -> SymbolicTensor:
        inputs = dict(inputs or {})
        variables = dict(variables or {})
        metadata = UnitMetaData(
            unit_id=self._new_id(unit_type, name),
            batch_size=self.batch_size,
            output_shape=Shape(output_shape),
            internal_variable_shapes={k: Shape(s) for k, (s, _) in variables.items()},
            initializers={k: resolve_initializer(i) for k, (_, i) in variables.items()},
            input_shapes={k: Shape(t.shape) for k, t in inputs.items()},
            input_units={k: t.unit_id for k, t in inputs.items()},
            device=self.device,
            params=dict(params or {}),
        )
        unit_id = self.manager.append_unit(metadata)
        logger.debug("appended %s with output shape %s", unit_id, metadata.output_shape)
        return SymbolicTensor(metadata.output_shape.as_tuple(), unit_id)

    # ------------------------------------------------------------------
    # layers
    # ------------------------------------------------------------------
    def placeholder(self, shape: Iterable[int], name: Optional[str] = None) -> SymbolicTensor:
        """Graph input of per-sample `shape`; set its value with `feed`."""
        return self._append(PLACEHOLDER_TYPE, name, tuple(shape))

    def constant(
        self,
        value: Any,
        shape: Optional[Iterable[int]] = None,
        name: Optional[str] = None,
    ) -> SymbolicTensor:
        """
        Fixed graph input.

        `value` is either a scalar (then `shape` is required) or an array
        holding one sample, whose shape is used when `shape` is omitted.
        """
        if np.ndim(value) == 0:
            if shape is None:
                raise ConfigurationError("a scalar constant needs an explicit shape", name)
            initializer = ConstantInitializer(float(value))
        else:
            data = np.asarray(value)
            if shape is None:
                shape = data.shape
            initializer = ArrayInitializer(data)
        shape = tuple(shape)
        return self._append(
            CONSTANT_TYPE, name, shape, variables={"value": (shape, initializer)}
        )

    def dense(
        self,
        x: SymbolicTensor,
        units: int,
        weight_initializer: Any = "xavier",
        bias_initializer: Any = "zeros",
        name: Optional[str] = None,
    ) -> SymbolicTensor:
        """Fully connected layer on a `(rows, in)` input, output `(rows, units)`."""
        if len(x.shape) != 2:
            raise ConfigurationError(
                f"dense expects a (rows, features) input, got {x.shape}", name
            )
        rows, features = x.shape
        return self._append(
            DENSE_TYPE,
            name,
            (rows, units),
            inputs={"input": x},
            variables={
                "weight": ((features, units), weight_initializer),
                "bias": ((1, units), bias_initializer),
            },
        )

    def conv2d(
        self,
        x: SymbolicTensor,
        filters: int,
        kernel_size: IntPair,
        stride: IntPair = 1,
        padding: IntPair = 0,
        dilation: IntPair = 0,
        filter_initializer: Any = "kaiming",
        bias_initializer: Any = "zeros",
        name: Optional[str] = None,
    ) -> SymbolicTensor:
        """
        2D convolution on a `(C, H, W)` input.

        `dilation` counts the gaps between filter taps (0 is a dense filter).
        """
        if len(x.shape) != 3:
            raise ConfigurationError(f"conv2d expects a (C, H, W) input, got {x.shape}", name)
        channels, rows, cols = x.shape
        k_row, k_col = _pair(kernel_size, "kernel_size")
        stride_row, stride_col = _pair(stride, "stride")
        pad_row, pad_col = _pair(padding, "padding")
        dil_row, dil_col = _pair(dilation, "dilation")
        if min(stride_row, stride_col) < 1 or min(pad_row, pad_col, dil_row, dil_col) < 0:
            raise ConfigurationError(
                f"invalid stride {stride}, padding {padding} or dilation {dilation}", name
            )
        if (
            effective_extent(k_row, dil_row) > rows + 2 * pad_row
            or effective_extent(k_col, dil_col) > cols + 2 * pad_col
        ):
            raise ConfigurationError(
                f"kernel {k_row}x{k_col} with dilation ({dil_row}, {dil_col}) does not "
                f"fit the padded input {x.shape}",
                name,
            )
        out_rows = output_extent(rows, k_row, stride_row, dil_row, pad_row)
        out_cols = output_extent(cols, k_col, stride_col, dil_col, pad_col)
        return self._append(
            CONVOLUTION2D_TYPE,
            name,
            (filters, out_rows, out_cols),
            inputs={"input": x},
            variables={
                "filter": ((filters, channels, k_row, k_col), filter_initializer),
                "bias": ((filters,), bias_initializer),
            },
            params={
                "stride_row": stride_row,
                "stride_col": stride_col,
                "padding_row": pad_row,
                "padding_col": pad_col,
                "dilation_row": dil_row,
                "dilation_col": dil_col,
            },
        )

    def relu(self, x: SymbolicTensor, name: Optional[str] = None) -> SymbolicTensor:
        return self._append(RELU_TYPE, name, x.shape, inputs={"input": x})

    def sigmoid(self, x: SymbolicTensor, name: Optional[str] = None) -> SymbolicTensor:
        return self._append(SIGMOID_TYPE, name, x.shape, inputs={"input": x})

    def add(
        self, lhs: SymbolicTensor, rhs: SymbolicTensor, name: Optional[str] = None
    ) -> SymbolicTensor:
        if lhs.shape != rhs.shape:
            raise ConfigurationError(
                f"cannot add shapes {lhs.shape} and {rhs.shape}", name
            )
        return self._append(ADD_TYPE, name, lhs.shape, inputs={"lhs": lhs, "rhs": rhs})

    def mse(
        self, prediction: SymbolicTensor, label: SymbolicTensor, name: Optional[str] = None
    ) -> SymbolicTensor:
        """Mean squared error sink; output shape `(1,)` per sample."""
        if prediction.shape != label.shape:
            raise ConfigurationError(
                f"prediction {prediction.shape} and label {label.shape} differ", name
            )
        return self._append(
            MSE_TYPE, name, (1,), inputs={"prediction": prediction, "label": label}
        )

    # ------------------------------------------------------------------
    # execution
    # ------------------------------------------------------------------
    def compile(self, optimizer: Any = None, **optimizer_params: Any) -> None:
        """Build every unit; see `UnitManager.compile`."""
        self.manager.compile(optimizer, optimizer_params)

    def feed(self, tensor: SymbolicTensor, data: Any) -> None:
        self.manager.feed(tensor.unit_id, data)

    def forward(self) -> None:
        self.manager.forward()

    def backward(self) -> None:
        self.manager.backward()

    def resynchronize(self) -> None:
        """Level the unit generations after an interrupted sweep, keeping the weights."""
        self.manager.resynchronize()

    def output(self, tensor: SymbolicTensor) -> np.ndarray:
        """Copy of the last forward output of `tensor`, shaped `(batch, *shape)`."""
        return self.manager.output(tensor.unit_id)

    def predict(
        self, feeds: Mapping[SymbolicTensor, Any], target: SymbolicTensor
    ) -> np.ndarray:
        """Feed, run one forward sweep and return the output of `target`."""
        for tensor, data in feeds.items():
            self.feed(tensor, data)
        self.forward()
        return self.output(target)

    def train_step(
        self, feeds: Mapping[SymbolicTensor, Any], loss: SymbolicTensor
    ) -> Dict[str, float]:
        """
        Run one training step: feed, forward, backward.

        Trainable units apply their optimizer at the end of their backward
        step, so parameters are updated when this returns.

        Returns
        -------
        Dict[str, float]
            ``{"loss": mean loss over the batch}`` measured during forward.
        """
        loss_value = float(self.predict(feeds, loss).mean())
        self.backward()
        return {"loss": loss_value}

    def fit(
        self,
        batches: Iterable[Mapping[SymbolicTensor, Any]],
        loss: SymbolicTensor,
        epochs: int = 1,
    ) -> List[Dict[str, float]]:
        """
        Run `train_step` over `batches` for `epochs` epochs.

        `batches` is re-iterated every epoch, so pass a sequence rather than
        a generator when `epochs > 1`.

        Returns
        -------
        List[Dict[str, float]]
            One ``{"loss": ...}`` entry per epoch, averaged over its batches.
        """
        if epochs < 1:
            raise ValueError(f"epochs must be >= 1, got {epochs}")
        history: List[Dict[str, float]] = []
        for epoch in range(epochs):
            losses = [self.train_step(feeds, loss)["loss"] for feeds in batches]
            if not losses:
                raise ValueError("fit() received no batches")
            logs = {"loss": float(np.mean(losses))}
            logger.info("epoch %d/%d: loss=%.6f", epoch + 1, epochs, logs["loss"])
            history.append(logs)
        return history
