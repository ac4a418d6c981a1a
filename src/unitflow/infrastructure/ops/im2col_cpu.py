"""
Convolution layout transforms (im2col family, CPU, NumPy).

These functions turn the structured tensors of a 2D convolution into plain
matrices so that convolution reduces to matrix multiplication, and turn
matrices back into structured tensors for the backward pass. They never do
arithmetic on values other than copying, replicating, or summing.

Every transform works on the batch-major flat buffers of `Tensor`. For each
shape configuration a flat *index map* is computed once (and cached): entry
`m` of the map is the flat offset, within one sample of the structured tensor,
of the element that lands at flat offset `m` of one sample of the matrix.
Applying a transform is then a single gather (structured -> matrix) or a
scatter-add with `np.add.at` (matrix -> structured, when several matrix
entries share a source element).

Transforms and layouts
----------------------
- input  (C, H, W)           <-> input matrix  (Ho*Wo, C*Kh*Kw)
- output (Co, Ho, Wo)        <-> output matrix (Co, Ho*Wo)
- filter (Co, C, Kh, Kw)     <-> filter matrix (C*Kh*Kw, Co)
- bias   (Co,)               <-> bias matrix   (Co, Ho*Wo)

Dilation follows the "gap" convention: a dilation of 0 is a dense filter,
and filter offset `k` reads input offset `k * (1 + dilation)`. The effective
extent of a filter of extent `K` is therefore `K + (K - 1) * dilation`.

`input_matrix_to_input` and `bias_matrix_to_bias` zero their destination and
then accumulate, so that with stride smaller than the effective filter extent
each input element receives the sum of every matrix entry that read it.
"""

from __future__ import annotations

from functools import lru_cache

import numpy as np

from ...domain._shape import Shape
from ..tensor._tensor import Tensor
from .matrix_cpu import _check_device


def effective_extent(filter_extent: int, dilation: int) -> int:
    """Extent covered by a dilated filter along one axis."""
    return filter_extent + (filter_extent - 1) * dilation


def output_extent(
    input_extent: int, filter_extent: int, stride: int, dilation: int, padding: int
) -> int:
    """
    Number of filter placements along one axis.

    Returns 0 when the dilated filter does not fit the padded input.
    """
    eff = effective_extent(filter_extent, dilation)
    span = input_extent + 2 * padding - eff
    if span < 0:
        return 0
    return span // stride + 1


# ----------------------------------------------------------------------
# index maps
# ----------------------------------------------------------------------
def _frozen(index: np.ndarray) -> np.ndarray:
    index = np.ascontiguousarray(index.reshape(-1), dtype=np.intp)
    index.setflags(write=False)
    return index


@lru_cache(maxsize=128)
def _input_matrix_index(
    in_channel: int,
    in_row: int,
    in_col: int,
    filter_row: int,
    filter_col: int,
    out_row: int,
    out_col: int,
    dilation_row: int,
    dilation_col: int,
    stride_row: int,
    stride_col: int,
) -> np.ndarray:
    filter_map_size = filter_row * filter_col

    positions = np.arange(out_row * out_col)
    map_row, map_col = np.divmod(positions, out_col)

    offsets = np.arange(in_channel * filter_map_size)
    channel, internal = np.divmod(offsets, filter_map_size)
    k_row, k_col = np.divmod(internal, filter_col)

    rows = map_row[:, None] * stride_row + k_row[None, :] * (1 + dilation_row)
    cols = map_col[:, None] * stride_col + k_col[None, :] * (1 + dilation_col)
    if rows.size and (rows.max() >= in_row or cols.max() >= in_col):
        raise ValueError(
            "receptive field exceeds the input: "
            f"needs rows < {rows.max() + 1} and cols < {cols.max() + 1}, "
            f"input is {in_row}x{in_col}"
        )

    index = channel[None, :] * (in_row * in_col) + rows * in_col + cols
    return _frozen(index)


@lru_cache(maxsize=128)
def _output_matrix_index(channels: int, out_row: int, out_col: int) -> np.ndarray:
    map_size = out_row * out_col
    m = np.arange(channels * map_size)
    channel, spatial = np.divmod(m, map_size)
    row, col = np.divmod(spatial, out_col)
    return _frozen(channel * map_size + row * out_col + col)


@lru_cache(maxsize=128)
def _filter_matrix_index(
    out_channel: int, in_channel: int, filter_row: int, filter_col: int
) -> np.ndarray:
    filter_map_size = filter_row * filter_col
    filter_size = in_channel * filter_map_size
    m = np.arange(filter_size * out_channel)
    matrix_row, matrix_col = np.divmod(m, out_channel)
    channel, internal = np.divmod(matrix_row, filter_map_size)
    k_row, k_col = np.divmod(internal, filter_col)
    return _frozen(
        matrix_col * filter_size + channel * filter_map_size + k_row * filter_col + k_col
    )


@lru_cache(maxsize=128)
def _bias_matrix_index(channels: int, map_size: int) -> np.ndarray:
    return _frozen(np.arange(channels * map_size) // map_size)


# ----------------------------------------------------------------------
# gather / scatter
# ----------------------------------------------------------------------
def _gather(src: Tensor, dst: Tensor, index: np.ndarray) -> None:
    """dst[b, m] = src[b', index[m]] where b' = b, or 0 for a 1-sample src."""
    src_flat = src.data.reshape(src.batch_size, -1)
    dst_flat = dst.data.reshape(dst.batch_size, -1)
    if src.batch_size not in (1, dst.batch_size):
        raise ValueError(
            f"batch mismatch: {src.batch_size} samples cannot fill {dst.batch_size}"
        )
    np.copyto(dst_flat, src_flat[:, index], casting="unsafe")


def _scatter_add(src: Tensor, dst: Tensor, index: np.ndarray) -> None:
    """
    dst[b', index[m]] += src[b, m], with b' = b, or 0 for a 1-sample dst.
    `dst` is zeroed first.
    """
    if dst.batch_size not in (1, src.batch_size):
        raise ValueError(
            f"batch mismatch: {src.batch_size} samples cannot reduce into {dst.batch_size}"
        )
    src_flat = src.data.reshape(src.batch_size, -1)
    acc = np.zeros((src.batch_size, dst.shape.size), dtype=np.float64)
    np.add.at(acc, (slice(None), index), src_flat)
    if dst.batch_size == 1:
        acc = acc.sum(axis=0, keepdims=True)
    np.copyto(dst.data.reshape(dst.batch_size, -1), acc, casting="unsafe")


def _scatter(src: Tensor, dst: Tensor, index: np.ndarray) -> None:
    """dst[b, index[m]] = src[b, m] for a bijective `index`."""
    if src.batch_size != dst.batch_size:
        raise ValueError(
            f"batch mismatch: {src.batch_size} vs {dst.batch_size} samples"
        )
    dst_flat = dst.data.reshape(dst.batch_size, -1)
    dst_flat[:, index] = src.data.reshape(src.batch_size, -1)


# ----------------------------------------------------------------------
# shape checks
# ----------------------------------------------------------------------
def _require(condition: bool, message: str) -> None:
    if not condition:
        raise ValueError(message)


def _check_input_matrix(
    input: Tensor, input_matrix: Tensor, filter_shape: Shape, output_shape: Shape
) -> None:
    _require(input.shape.dim == 3, f"input must be (C, H, W), got {input.shape}")
    _require(filter_shape.dim == 4, f"filter must be (Co, C, Kh, Kw), got {filter_shape}")
    _require(output_shape.dim == 3, f"output must be (Co, Ho, Wo), got {output_shape}")
    _require(
        filter_shape[1] == input.shape[0],
        f"filter expects {filter_shape[1]} input channels, input has {input.shape[0]}",
    )
    expected = Shape(
        (output_shape[1] * output_shape[2], input.shape[0] * filter_shape[2] * filter_shape[3])
    )
    _require(
        input_matrix.shape == expected,
        f"input matrix must be {expected.as_tuple()}, got {input_matrix.shape}",
    )
    _require(
        input.batch_size == input_matrix.batch_size,
        f"batch mismatch: input {input.batch_size} vs matrix {input_matrix.batch_size}",
    )


# ----------------------------------------------------------------------
# public transforms
# ----------------------------------------------------------------------
def input_to_input_matrix(
    input: Tensor,
    input_matrix: Tensor,
    filter_shape: Shape,
    output_shape: Shape,
    dilation_row: int = 0,
    dilation_col: int = 0,
    stride_row: int = 1,
    stride_col: int = 1,
) -> None:
    """
    Expand a (padded) input into its im2col matrix.

    Row `r` of the matrix is output position `(r // Wo, r % Wo)`; column `k`
    is filter offset `(c, ky, kx)` with `k = (c * Kh + ky) * Kw + kx`. The
    entry is the input element under that filter offset at that position.

    Raises
    ------
    ValueError
        If the shapes are inconsistent or a receptive field leaves the input.
    """
    _check_device("input_to_input_matrix", input, input_matrix)
    _check_input_matrix(input, input_matrix, filter_shape, output_shape)
    index = _input_matrix_index(
        input.shape[0], input.shape[1], input.shape[2],
        filter_shape[2], filter_shape[3],
        output_shape[1], output_shape[2],
        dilation_row, dilation_col, stride_row, stride_col,
    )
    _gather(input, input_matrix, index)


def input_matrix_to_input(
    input_matrix: Tensor,
    input: Tensor,
    filter_shape: Shape,
    output_shape: Shape,
    dilation_row: int = 0,
    dilation_col: int = 0,
    stride_row: int = 1,
    stride_col: int = 1,
) -> None:
    """
    Fold an im2col matrix back into an input-shaped tensor.

    `input` is zeroed, then every matrix entry is *added* to the input
    element it was read from. Elements read by several output positions
    receive the sum; elements never read stay zero.
    """
    _check_device("input_matrix_to_input", input_matrix, input)
    _check_input_matrix(input, input_matrix, filter_shape, output_shape)
    index = _input_matrix_index(
        input.shape[0], input.shape[1], input.shape[2],
        filter_shape[2], filter_shape[3],
        output_shape[1], output_shape[2],
        dilation_row, dilation_col, stride_row, stride_col,
    )
    _scatter_add(input_matrix, input, index)


def _check_output_matrix(output: Tensor, output_matrix: Tensor) -> None:
    _require(output.shape.dim == 3, f"output must be (Co, Ho, Wo), got {output.shape}")
    expected = Shape((output.shape[0], output.shape[1] * output.shape[2]))
    _require(
        output_matrix.shape == expected,
        f"output matrix must be {expected.as_tuple()}, got {output_matrix.shape}",
    )


def output_to_output_matrix(output: Tensor, output_matrix: Tensor) -> None:
    """Reshape (Co, Ho, Wo) into (Co, Ho*Wo)."""
    _check_device("output_to_output_matrix", output, output_matrix)
    _check_output_matrix(output, output_matrix)
    index = _output_matrix_index(*output.shape.as_tuple())
    _require(
        output.batch_size == output_matrix.batch_size,
        f"batch mismatch: {output.batch_size} vs {output_matrix.batch_size}",
    )
    _gather(output, output_matrix, index)


def output_matrix_to_output(output_matrix: Tensor, output: Tensor) -> None:
    """Reshape (Co, Ho*Wo) back into (Co, Ho, Wo)."""
    _check_device("output_matrix_to_output", output_matrix, output)
    _check_output_matrix(output, output_matrix)
    index = _output_matrix_index(*output.shape.as_tuple())
    _scatter(output_matrix, output, index)


def _check_filter_matrix(filter: Tensor, filter_matrix: Tensor) -> None:
    _require(filter.shape.dim == 4, f"filter must be (Co, C, Kh, Kw), got {filter.shape}")
    out_channel, in_channel, k_row, k_col = filter.shape.as_tuple()
    expected = Shape((in_channel * k_row * k_col, out_channel))
    _require(
        filter_matrix.shape == expected,
        f"filter matrix must be {expected.as_tuple()}, got {filter_matrix.shape}",
    )
    _require(
        filter.batch_size == filter_matrix.batch_size,
        f"batch mismatch: {filter.batch_size} vs {filter_matrix.batch_size}",
    )


def filter_to_filter_matrix(filter: Tensor, filter_matrix: Tensor) -> None:
    """
    Reshape (Co, C, Kh, Kw) into (C*Kh*Kw, Co).

    Column `o` of the matrix is filter `o` flattened in (c, ky, kx) order,
    matching the column order of the input matrix.
    """
    _check_device("filter_to_filter_matrix", filter, filter_matrix)
    _check_filter_matrix(filter, filter_matrix)
    _gather(filter, filter_matrix, _filter_matrix_index(*filter.shape.as_tuple()))


def filter_matrix_to_filter(filter_matrix: Tensor, filter: Tensor) -> None:
    """Inverse of `filter_to_filter_matrix`."""
    _check_device("filter_matrix_to_filter", filter_matrix, filter)
    _check_filter_matrix(filter, filter_matrix)
    _scatter(filter_matrix, filter, _filter_matrix_index(*filter.shape.as_tuple()))


def _check_bias_matrix(bias: Tensor, bias_matrix: Tensor) -> None:
    _require(bias.shape.dim == 1, f"bias must be (Co,), got {bias.shape}")
    _require(bias_matrix.shape.dim == 2, f"bias matrix must be (Co, M), got {bias_matrix.shape}")
    _require(
        bias_matrix.shape[0] == bias.shape[0],
        f"bias matrix rows {bias_matrix.shape[0]} != bias channels {bias.shape[0]}",
    )


def bias_to_bias_matrix(bias: Tensor, bias_matrix: Tensor) -> None:
    """
    Broadcast a per-channel bias over every position (and every sample) of
    the (Co, Ho*Wo) bias matrix.
    """
    _check_device("bias_to_bias_matrix", bias, bias_matrix)
    _check_bias_matrix(bias, bias_matrix)
    _gather(bias, bias_matrix, _bias_matrix_index(*bias_matrix.shape.as_tuple()))


def bias_matrix_to_bias(bias_matrix: Tensor, bias: Tensor) -> None:
    """
    Reduce a (Co, Ho*Wo) matrix into a per-channel vector by summing every
    position, and every sample when `bias` holds a single sample.
    """
    _check_device("bias_matrix_to_bias", bias_matrix, bias)
    _check_bias_matrix(bias, bias_matrix)
    _scatter_add(bias_matrix, bias, _bias_matrix_index(*bias_matrix.shape.as_tuple()))


def pad_input(input: Tensor, padded: Tensor, pad_row: int, pad_col: int) -> None:
    """Copy `input` (C, H, W) into the centre of the zeroed `padded` tensor."""
    _check_device("pad_input", input, padded)
    channels, rows, cols = input.shape.as_tuple()
    _require(
        padded.shape == (channels, rows + 2 * pad_row, cols + 2 * pad_col),
        f"padded shape {padded.shape} does not match {input.shape} padded by "
        f"({pad_row}, {pad_col})",
    )
    dst = padded.to_numpy()
    dst.fill(0)
    dst[:, :, pad_row : pad_row + rows, pad_col : pad_col + cols] = input.to_numpy()


def crop_input(padded: Tensor, input: Tensor, pad_row: int, pad_col: int) -> None:
    """Inverse of `pad_input`: copy the centre of `padded` into `input`."""
    _check_device("crop_input", padded, input)
    channels, rows, cols = input.shape.as_tuple()
    _require(
        padded.shape == (channels, rows + 2 * pad_row, cols + 2 * pad_col),
        f"padded shape {padded.shape} does not match {input.shape} padded by "
        f"({pad_row}, {pad_col})",
    )
    src = padded.to_numpy()
    np.copyto(
        input.to_numpy(),
        src[:, :, pad_row : pad_row + rows, pad_col : pad_col + cols],
        casting="unsafe",
    )
