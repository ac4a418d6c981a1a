import unittest

import numpy as np

from unitflow.domain._errors import ConfigurationError
from unitflow.domain._shape import Shape
from unitflow.domain._unit_id import CONVOLUTION2D_TYPE, MSE_TYPE, PLACEHOLDER_TYPE, UnitId
from unitflow.infrastructure.ops import im2col_cpu, matrix_cpu
from unitflow.infrastructure.tensor import Tensor
from unitflow.infrastructure.units import Convolution2DUnit, UnitMetaData
from unitflow.infrastructure.utils.weight_initializer import ArrayInitializer

X = UnitId(PLACEHOLDER_TYPE, 0, "x")
SINK = UnitId(MSE_TYPE, 9, "loss")


def _reference_forward(x, w, b, stride, dilation, padding):
    batch, channels, _, _ = x.shape
    out_channels, _, k_row, k_col = w.shape
    xp = np.pad(x, ((0, 0), (0, 0), (padding[0],) * 2, (padding[1],) * 2))
    out_row = (xp.shape[2] - (k_row + (k_row - 1) * dilation[0])) // stride[0] + 1
    out_col = (xp.shape[3] - (k_col + (k_col - 1) * dilation[1])) // stride[1] + 1
    y = np.zeros((batch, out_channels, out_row, out_col))
    for oy in range(out_row):
        for ox in range(out_col):
            rows = oy * stride[0] + np.arange(k_row) * (1 + dilation[0])
            cols = ox * stride[1] + np.arange(k_col) * (1 + dilation[1])
            patch = xp[:, :, rows][:, :, :, cols]
            y[:, :, oy, ox] = np.einsum("bckl,ockl->bo", patch, w) + b
    return y


def _reference_backward(x, w, g, stride, dilation, padding):
    out_channels, _, k_row, k_col = w.shape
    xp = np.pad(x, ((0, 0), (0, 0), (padding[0],) * 2, (padding[1],) * 2))
    dxp = np.zeros_like(xp)
    dw = np.zeros_like(w)
    for oy in range(g.shape[2]):
        for ox in range(g.shape[3]):
            rows = oy * stride[0] + np.arange(k_row) * (1 + dilation[0])
            cols = ox * stride[1] + np.arange(k_col) * (1 + dilation[1])
            patch = xp[:, :, rows][:, :, :, cols]
            dw += np.einsum("bo,bckl->ockl", g[:, :, oy, ox], patch)
            dxp[:, :, rows[:, None], cols[None, :]] += np.einsum(
                "bo,ockl->bckl", g[:, :, oy, ox], w
            )
    h, wd = x.shape[2], x.shape[3]
    dx = dxp[:, :, padding[0] : padding[0] + h, padding[1] : padding[1] + wd]
    db = g.sum(axis=(0, 2, 3))
    return dx, dw, db


def _metadata(input_shape, filter_data, bias_data, output_shape, batch_size=1, **params):
    return UnitMetaData(
        unit_id=UnitId(CONVOLUTION2D_TYPE, 1, "conv"),
        batch_size=batch_size,
        output_shape=Shape(output_shape),
        internal_variable_shapes={
            "filter": Shape(np.shape(filter_data)),
            "bias": Shape(np.shape(bias_data)),
        },
        initializers={
            "filter": ArrayInitializer(filter_data),
            "bias": ArrayInitializer(bias_data),
        },
        input_shapes={"input": Shape(input_shape)},
        input_units={"input": X},
        params=params,
    )


class TestConvolutionScenario(unittest.TestCase):
    def test_sequential_input_all_ones_filter(self):
        x = Tensor.from_numpy(np.arange(16, dtype=np.float32).reshape(1, 1, 4, 4))
        f = Tensor.from_numpy(np.ones((1, 1, 1, 3, 3), dtype=np.float32))
        out_row = im2col_cpu.output_extent(4, 3, 1, 0, 0)
        out_col = im2col_cpu.output_extent(4, 3, 1, 0, 0)
        self.assertEqual((out_row, out_col), (2, 2))

        input_matrix = Tensor((4, 9))
        filter_matrix = Tensor((9, 1))
        product = Tensor((4, 1))
        im2col_cpu.input_to_input_matrix(x, input_matrix, f.shape, Shape((1, 2, 2)))
        im2col_cpu.filter_to_filter_matrix(f, filter_matrix)
        matrix_cpu.multiply(input_matrix, filter_matrix, product)

        grid = np.arange(16).reshape(4, 4)
        expected = [grid[r : r + 3, c : c + 3].sum() for r in range(2) for c in range(2)]
        np.testing.assert_array_equal(product.data, expected)
        self.assertEqual(expected, [45, 54, 81, 90])

    def test_unit_produces_window_sums(self):
        md = _metadata((1, 4, 4), np.ones((1, 1, 3, 3)), np.zeros(1), (1, 2, 2))
        unit = Convolution2DUnit.create_unit(md, [SINK])
        unit.forward_input_map[X].copy_from_numpy(np.arange(16))
        unit.forward()
        np.testing.assert_array_equal(unit.forward_output.batch(0), [[[45, 54], [81, 90]]])


class TestConvolutionShapeValidation(unittest.TestCase):
    def test_matching_shapes_succeed(self):
        md = _metadata((2, 7, 6), np.zeros((3, 2, 3, 2)), np.zeros(3), (3, 3, 3),
                       stride_row=2, stride_col=2, padding_row=0, padding_col=0)
        unit = Convolution2DUnit.create_unit(md, [])
        self.assertEqual(unit.output_shape, (3, 3, 3))

    def test_hyperparameters_reach_the_unit(self):
        md = _metadata((2, 7, 7), np.zeros((2, 2, 3, 2)), np.zeros(2), (2, 3, 5),
                       stride_row=1, stride_col=2, dilation_row=1, dilation_col=0,
                       padding_row=0, padding_col=2)
        unit = Convolution2DUnit.create_unit(md, [])
        self.assertEqual((unit.stride_row, unit.stride_col), (1, 2))
        self.assertEqual((unit.dilation_row, unit.dilation_col), (1, 0))
        self.assertEqual((unit.padding_row, unit.padding_col), (0, 2))

    def test_wrong_output_rows_fail(self):
        for out in ((1, 3, 2), (1, 2, 3), (2, 2, 2)):
            with self.subTest(output=out):
                md = _metadata((1, 4, 4), np.zeros((1, 1, 3, 3)), np.zeros(1), out)
                with self.assertRaises(ConfigurationError):
                    Convolution2DUnit.create_unit(md, [])

    def test_channel_and_rank_mismatch_fail(self):
        cases = [
            ((2, 4, 4), np.zeros((1, 1, 3, 3)), np.zeros(1), (1, 2, 2)),
            ((1, 4, 4), np.zeros((1, 1, 3, 3)), np.zeros(2), (1, 2, 2)),
            ((4, 4), np.zeros((1, 1, 3, 3)), np.zeros(1), (1, 2, 2)),
        ]
        for case in cases:
            with self.subTest(input=case[0], bias=case[2].shape):
                with self.assertRaises(ConfigurationError):
                    Convolution2DUnit.create_unit(_metadata(*case), [])

    def test_filter_larger_than_input_fails(self):
        md = _metadata((1, 2, 2), np.zeros((1, 1, 3, 3)), np.zeros(1), (1, 1, 1))
        with self.assertRaises(ConfigurationError):
            Convolution2DUnit.create_unit(md, [])

    def test_invalid_hyperparameters_fail(self):
        for params in ({"stride_row": 0}, {"dilation_col": -1}, {"padding_row": -1}):
            with self.subTest(params=params):
                md = _metadata((1, 4, 4), np.zeros((1, 1, 3, 3)), np.zeros(1), (1, 2, 2), **params)
                with self.assertRaises(ConfigurationError):
                    Convolution2DUnit.create_unit(md, [])


class TestConvolutionNumerics(unittest.TestCase):
    CASES = [
        # input, filter, stride, dilation, padding
        ((2, 5, 5), (3, 2, 3, 3), (1, 1), (0, 0), (0, 0)),
        ((1, 6, 7), (2, 1, 2, 3), (2, 1), (0, 0), (1, 1)),
        ((2, 7, 7), (2, 2, 3, 2), (1, 2), (1, 0), (0, 2)),
    ]

    def test_forward_and_backward_match_reference(self):
        rng = np.random.default_rng(3)
        batch = 2
        for input_shape, filter_shape, stride, dilation, padding in self.CASES:
            with self.subTest(input=input_shape, filter=filter_shape, stride=stride,
                              dilation=dilation, padding=padding):
                x = rng.standard_normal((batch,) + input_shape)
                w = rng.standard_normal(filter_shape)
                b = rng.standard_normal(filter_shape[0])
                y = _reference_forward(x, w, b, stride, dilation, padding)
                g = rng.standard_normal(y.shape)

                md = _metadata(
                    input_shape, w, b, y.shape[1:], batch_size=batch,
                    stride_row=stride[0], stride_col=stride[1],
                    dilation_row=dilation[0], dilation_col=dilation[1],
                    padding_row=padding[0], padding_col=padding[1],
                )
                unit = Convolution2DUnit.create_unit(md, [SINK])
                unit.forward_input_map[X].copy_from_numpy(x)
                unit.forward()
                np.testing.assert_allclose(unit.forward_output.to_numpy(), y, rtol=1e-4, atol=1e-4)

                unit.backward_input_map[SINK].copy_from_numpy(g)
                unit.backward()
                dx, dw, db = _reference_backward(x, w, g, stride, dilation, padding)
                np.testing.assert_allclose(
                    unit.backward_output_map[X].to_numpy(), dx, rtol=1e-4, atol=1e-4
                )
                np.testing.assert_allclose(
                    unit.gradient_tensor_map["filter"].batch(0), dw, rtol=1e-4, atol=1e-4
                )
                np.testing.assert_allclose(
                    unit.gradient_tensor_map["bias"].batch(0), db, rtol=1e-4, atol=1e-4
                )


if __name__ == "__main__":
    unittest.main()
