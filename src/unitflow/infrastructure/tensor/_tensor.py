"""
Dense batch-major tensor storage (NumPy CPU backend).

A `Tensor` owns one contiguous flat NumPy buffer holding `batch_size` samples
of a per-sample `Shape`. Element `i` of sample `b` lives at flat offset
`b * shape.size + i`. Everything the graph engine does to a tensor goes
through that flat addressing: the layout transforms compute flat index maps,
and the matrix primitives reshape the buffer into `(batch_size, *shape)`
views without copying.

Design notes
------------
- The buffer length always equals `shape.size * batch_size`; every writer
  checks it.
- A tensor is exclusively owned by the unit that declared it. Data moves
  between units only through `copy_from` into the receiving unit's own slot.
- The device tag is carried, not acted upon; primitives in
  `infrastructure.ops` reject tensors whose device they do not implement.
"""

from __future__ import annotations

from typing import Any, Iterable, Optional, Union

import numpy as np

from ...domain._shape import Shape
from ...domain.device._device import Device

ShapeLike = Union[Shape, Iterable[int]]


def _as_shape(shape: ShapeLike) -> Shape:
    return shape.copy() if isinstance(shape, Shape) else Shape(shape)


class Tensor:
    """
    Batch-major tensor with a flat buffer.

    Parameters
    ----------
    shape : Shape or Iterable[int]
        Per-sample shape.
    batch_size : int, optional
        Number of samples. Defaults to 1.
    device : Device or str, optional
        Device affinity tag. Defaults to CPU.
    dtype : numpy dtype, optional
        Element type. Defaults to float32.

    Raises
    ------
    ValueError
        If `batch_size` is not a positive integer.
    """

    __slots__ = ("_shape", "_batch_size", "_device", "_data")

    def __init__(
        self,
        shape: ShapeLike,
        batch_size: int = 1,
        device: Union[Device, str, None] = None,
        dtype: Any = np.float32,
    ) -> None:
        if int(batch_size) != batch_size or int(batch_size) <= 0:
            raise ValueError(f"batch_size must be a positive integer, got {batch_size!r}")
        self._shape = _as_shape(shape)
        self._batch_size = int(batch_size)
        self._device = Device.coerce(device)
        self._data = np.zeros(self._shape.size * self._batch_size, dtype=dtype)

    # ------------------------------------------------------------------
    # factories
    # ------------------------------------------------------------------
    @classmethod
    def zeros(
        cls,
        shape: ShapeLike,
        batch_size: int = 1,
        device: Union[Device, str, None] = None,
        dtype: Any = np.float32,
    ) -> "Tensor":
        return cls(shape, batch_size, device, dtype)

    @classmethod
    def ones(
        cls,
        shape: ShapeLike,
        batch_size: int = 1,
        device: Union[Device, str, None] = None,
        dtype: Any = np.float32,
    ) -> "Tensor":
        t = cls(shape, batch_size, device, dtype)
        t.fill(1.0)
        return t

    @classmethod
    def from_numpy(
        cls,
        arr: Any,
        shape: Optional[ShapeLike] = None,
        batch_size: Optional[int] = None,
        device: Union[Device, str, None] = None,
    ) -> "Tensor":
        """
        Build a tensor from array data.

        If `shape` is omitted, the first axis of `arr` is the batch axis and
        the remaining axes form the per-sample shape. If `shape` is given and
        `batch_size` is omitted, the batch size is inferred from the element
        count.
        """
        a = np.asarray(arr)
        if shape is None:
            if a.ndim == 0:
                raise ValueError("Cannot infer a per-sample shape from a scalar")
            batch = a.shape[0] if batch_size is None else batch_size
            shape = a.shape[1:] or (1,)
        else:
            per_sample = _as_shape(shape).size
            batch = batch_size if batch_size is not None else max(1, a.size // per_sample)
        dtype = a.dtype if np.issubdtype(a.dtype, np.floating) else np.float32
        t = cls(shape, batch, device, dtype)
        t.copy_from_numpy(a)
        return t

    # ------------------------------------------------------------------
    # metadata
    # ------------------------------------------------------------------
    @property
    def shape(self) -> Shape:
        return self._shape

    @property
    def batch_size(self) -> int:
        return self._batch_size

    @property
    def device(self) -> Device:
        return self._device

    @property
    def dtype(self) -> np.dtype:
        return self._data.dtype

    @property
    def data(self) -> np.ndarray:
        """The flat buffer itself (not a copy)."""
        return self._data

    def __len__(self) -> int:
        return self._data.shape[0]

    # ------------------------------------------------------------------
    # element access
    # ------------------------------------------------------------------
    def at(self, index: int) -> float:
        """Read the element at flat offset `index`."""
        return self._data[index].item()

    def set_at(self, index: int, value: float) -> None:
        """Write the element at flat offset `index`."""
        self._data[index] = value

    def to_numpy(self) -> np.ndarray:
        """Return a `(batch_size, *shape)` view of the buffer."""
        return self._data.reshape((self._batch_size,) + self._shape.as_tuple())

    def batch(self, batch_idx: int) -> np.ndarray:
        """Return a `shape`-shaped view of one sample."""
        if not 0 <= batch_idx < self._batch_size:
            raise IndexError(
                f"batch index {batch_idx} out of range for batch_size {self._batch_size}"
            )
        size = self._shape.size
        return self._data[batch_idx * size : (batch_idx + 1) * size].reshape(
            self._shape.as_tuple()
        )

    # ------------------------------------------------------------------
    # writers
    # ------------------------------------------------------------------
    def copy_from_numpy(self, arr: Any) -> None:
        """
        Copy array data into the buffer.

        Raises
        ------
        ValueError
            If the element count of `arr` differs from the buffer length.
        """
        a = np.asarray(arr)
        if a.size != self._data.shape[0]:
            raise ValueError(
                f"Cannot copy {a.size} elements into tensor of shape "
                f"{self._shape.as_tuple()} x batch {self._batch_size} "
                f"({self._data.shape[0]} elements)"
            )
        np.copyto(self._data, a.reshape(-1), casting="unsafe")

    def copy_from(self, other: "Tensor") -> None:
        """Value-copy another tensor of identical layout into this one."""
        if other.shape != self._shape or other.batch_size != self._batch_size:
            raise ValueError(
                f"copy_from layout mismatch: {other.shape} x {other.batch_size} "
                f"-> {self._shape} x {self._batch_size}"
            )
        np.copyto(self._data, other.data, casting="unsafe")

    def fill(self, value: float) -> None:
        self._data.fill(value)

    def zero_(self) -> None:
        self._data.fill(0)

    def clone(self) -> "Tensor":
        t = Tensor(self._shape, self._batch_size, self._device, self._data.dtype)
        np.copyto(t._data, self._data)
        return t

    def __repr__(self) -> str:
        return (
            f"Tensor(shape={self._shape.as_tuple()}, batch_size={self._batch_size}, "
            f"device={self._device}, dtype={self._data.dtype})"
        )
