"""
Shape descriptor for unit tensors.

A `Shape` is the per-sample extent list of a tensor; the batch dimension is
carried separately by the tensor. Trailing dimensions have matrix meaning:

- the last extent is the number of columns,
- the second-to-last extent is the number of rows,
- the third-to-last extent is the number of channels.

Missing leading dimensions read as 1, so a rank-1 shape `(n,)` behaves like a
single row of `n` columns.
"""

from __future__ import annotations

from typing import Iterable, Iterator, Tuple


class Shape:
    """
    Ordered sequence of positive dimension extents.

    Parameters
    ----------
    dims : Iterable[int]
        Extents, outermost first. Every extent must be a positive integer.

    Raises
    ------
    ValueError
        If any extent is not a positive integer.

    Notes
    -----
    The rank (`dim`) is fixed at construction. The only mutators are
    `set_num_rows` and `set_num_cols`, which exist for deriving padded shapes.
    """

    __slots__ = ("_dims",)

    def __init__(self, dims: Iterable[int] = ()) -> None:
        extents = []
        for d in dims:
            if isinstance(d, bool) or int(d) != d or int(d) <= 0:
                raise ValueError(f"Shape extents must be positive integers, got {d!r}")
            extents.append(int(d))
        self._dims = extents

    @property
    def dim(self) -> int:
        """Number of dimensions."""
        return len(self._dims)

    @property
    def size(self) -> int:
        """Number of elements per sample (product of extents)."""
        total = 1
        for d in self._dims:
            total *= d
        return total

    @property
    def num_row(self) -> int:
        return self._dims[-2] if len(self._dims) >= 2 else 1

    @property
    def num_col(self) -> int:
        return self._dims[-1] if len(self._dims) >= 1 else 1

    @property
    def num_channel(self) -> int:
        return self._dims[-3] if len(self._dims) >= 3 else 1

    def set_num_rows(self, value: int) -> None:
        """Replace the row extent. Requires rank >= 2."""
        if len(self._dims) < 2:
            raise ValueError(f"Cannot set rows on a shape of rank {len(self._dims)}")
        if value <= 0:
            raise ValueError(f"Row extent must be positive, got {value}")
        self._dims[-2] = int(value)

    def set_num_cols(self, value: int) -> None:
        """Replace the column extent. Requires rank >= 1."""
        if len(self._dims) < 1:
            raise ValueError("Cannot set columns on a rank-0 shape")
        if value <= 0:
            raise ValueError(f"Column extent must be positive, got {value}")
        self._dims[-1] = int(value)

    def transposed(self) -> "Shape":
        """
        Return a new shape with the two trailing extents swapped.

        Rank-0 and rank-1 shapes are first read as a `(1, n)` row.
        """
        dims = list(self._dims)
        if len(dims) < 2:
            dims = [1] * (2 - len(dims)) + dims
        dims[-1], dims[-2] = dims[-2], dims[-1]
        return Shape(dims)

    def copy(self) -> "Shape":
        return Shape(self._dims)

    def as_tuple(self) -> Tuple[int, ...]:
        return tuple(self._dims)

    def __getitem__(self, index: int) -> int:
        return self._dims[index]

    def __len__(self) -> int:
        return len(self._dims)

    def __iter__(self) -> Iterator[int]:
        return iter(tuple(self._dims))

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Shape):
            return self._dims == other._dims
        if isinstance(other, tuple):
            return tuple(self._dims) == other
        return NotImplemented

    __hash__ = None  # mutable

    def __repr__(self) -> str:
        return f"Shape({tuple(self._dims)})"
