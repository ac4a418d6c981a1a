"""
Matrix and elementwise primitives (CPU, NumPy).

These are the backend calls the units issue against their tensors. Every
primitive first checks device affinity: all operands must live on the same
device and that device must be the CPU. Everything else is NumPy on
`(batch_size, *shape)` views of the flat buffers.

Batch broadcasting
------------------
An operand with `batch_size == 1` is broadcast across the batch of the other
operand. This is how trainable tensors (weights, filters, biases), which are
allocated with a single sample, meet batched activations.

All primitives write into a caller-provided `out` tensor; none allocates a
tensor the caller did not declare.
"""

from __future__ import annotations

from typing import Iterable, Sequence

import numpy as np

from ...domain._errors import DeviceMismatchError, DeviceNotSupportedError
from ..tensor._tensor import Tensor


def _check_device(op: str, *tensors: Tensor) -> None:
    """
    Verify that every operand is a CPU tensor on one device.

    Raises
    ------
    DeviceMismatchError
        If two operands carry different device tags.
    DeviceNotSupportedError
        If the shared device is not the CPU.
    """
    first = tensors[0].device
    for t in tensors[1:]:
        if t.device != first:
            raise DeviceMismatchError(str(first), str(t.device))
    if not first.is_cpu():
        raise DeviceNotSupportedError(op, str(first))


def _write(op: str, out: Tensor, value: np.ndarray) -> None:
    expected = (out.batch_size,) + out.shape.as_tuple()
    if value.shape != expected:
        raise ValueError(f"{op}: result shape {value.shape} does not match out {expected}")
    np.copyto(out.to_numpy(), value, casting="unsafe")


def multiply(a: Tensor, b: Tensor, out: Tensor) -> None:
    """
    Batched matrix product over the two trailing dimensions: ``out = a @ b``.

    Raises
    ------
    ValueError
        If the inner dimensions disagree or the result does not fit `out`.
    """
    _check_device("multiply", a, b, out)
    if a.shape.dim < 2 or b.shape.dim < 2:
        raise ValueError(
            f"multiply requires rank >= 2 operands, got {a.shape} and {b.shape}"
        )
    if a.shape.num_col != b.shape.num_row:
        raise ValueError(
            f"multiply: inner dimensions differ ({a.shape} @ {b.shape})"
        )
    _write("multiply", out, np.matmul(a.to_numpy(), b.to_numpy()))


def add(a: Tensor, b: Tensor, out: Tensor) -> None:
    """Elementwise ``out = a + b`` with NumPy broadcasting."""
    _check_device("add", a, b, out)
    _write("add", out, np.add(a.to_numpy(), b.to_numpy()))


def subtract(a: Tensor, b: Tensor, out: Tensor) -> None:
    """Elementwise ``out = a - b`` with NumPy broadcasting."""
    _check_device("subtract", a, b, out)
    _write("subtract", out, np.subtract(a.to_numpy(), b.to_numpy()))


def scale(a: Tensor, factor: float, out: Tensor) -> None:
    """Elementwise ``out = factor * a``."""
    _check_device("scale", a, out)
    _write("scale", out, a.to_numpy() * factor)


def transpose(a: Tensor, out: Tensor) -> None:
    """Swap the two trailing dimensions of every sample of `a` into `out`."""
    _check_device("transpose", a, out)
    if a.shape.dim < 2:
        raise ValueError(f"transpose requires rank >= 2, got {a.shape}")
    if out.shape != a.shape.transposed():
        raise ValueError(
            f"transpose: out shape {out.shape} is not the transpose of {a.shape}"
        )
    _write("transpose", out, np.swapaxes(a.to_numpy(), -1, -2))


def accumulate(tensors: Sequence[Tensor], out: Tensor) -> None:
    """
    Write the elementwise sum of `tensors` into `out`.

    An empty sequence zeroes `out`.
    """
    if not tensors:
        _check_device("accumulate", out)
        out.zero_()
        return
    _check_device("accumulate", *tensors, out)
    total = np.zeros_like(out.to_numpy())
    for t in tensors:
        total = total + t.to_numpy()
    _write("accumulate", out, total)


def reduce_batch(a: Tensor, out: Tensor, axes: Iterable[int] = ()) -> None:
    """
    Sum `a` over its batch axis (and over the extra per-sample `axes`,
    counted from the first per-sample dimension) into the single-sample
    tensor `out`.
    """
    _check_device("reduce_batch", a, out)
    sample_axes = tuple(1 + int(ax) for ax in axes)
    value = a.to_numpy().sum(axis=(0,) + sample_axes, keepdims=True)
    value = value.reshape((1,) + out.shape.as_tuple())
    _write("reduce_batch", out, value)


def relu(a: Tensor, out: Tensor) -> None:
    _check_device("relu", a, out)
    _write("relu", out, np.maximum(a.to_numpy(), 0))


def relu_backward(x: Tensor, grad: Tensor, out: Tensor) -> None:
    """``out = grad * (x > 0)``."""
    _check_device("relu_backward", x, grad, out)
    _write("relu_backward", out, grad.to_numpy() * (x.to_numpy() > 0))


def sigmoid(a: Tensor, out: Tensor) -> None:
    _check_device("sigmoid", a, out)
    _write("sigmoid", out, 1.0 / (1.0 + np.exp(-a.to_numpy())))


def sigmoid_backward(y: Tensor, grad: Tensor, out: Tensor) -> None:
    """``out = grad * y * (1 - y)`` where `y` is the forward sigmoid output."""
    _check_device("sigmoid_backward", y, grad, out)
    yv = y.to_numpy()
    _write("sigmoid_backward", out, grad.to_numpy() * yv * (1.0 - yv))


def mean_of_squares(a: Tensor, out: Tensor) -> None:
    """Per-sample mean of ``a ** 2`` into the `(1,)`-shaped tensor `out`."""
    _check_device("mean_of_squares", a, out)
    av = a.to_numpy().reshape(a.batch_size, -1).astype(np.float64)
    _write("mean_of_squares", out, np.mean(av * av, axis=1).reshape(a.batch_size, 1))


def all_finite(a: Tensor) -> bool:
    """Return True if no element of `a` is NaN or infinite."""
    _check_device("all_finite", a)
    return bool(np.isfinite(a.data).all())
