import unittest

import numpy as np

from unitflow.domain._errors import DeviceMismatchError, DeviceNotSupportedError
from unitflow.infrastructure.ops import matrix_cpu
from unitflow.infrastructure.tensor import Tensor


def _t(arr, batch=True):
    a = np.asarray(arr, dtype=np.float32)
    if not batch:
        a = a[None]
    return Tensor.from_numpy(a)


class TestMatrixOps(unittest.TestCase):
    def test_multiply_batched_with_broadcast_weight(self):
        x = _t(np.arange(12).reshape(2, 2, 3))
        w = _t(np.arange(6).reshape(3, 2), batch=False)
        out = Tensor((2, 2), batch_size=2)
        matrix_cpu.multiply(x, w, out)
        np.testing.assert_allclose(out.to_numpy(), x.to_numpy() @ w.to_numpy())

    def test_multiply_inner_dimension_mismatch(self):
        with self.assertRaises(ValueError):
            matrix_cpu.multiply(Tensor((2, 3)), Tensor((2, 3)), Tensor((2, 3)))

    def test_multiply_out_shape_mismatch(self):
        with self.assertRaises(ValueError):
            matrix_cpu.multiply(Tensor((2, 3)), Tensor((3, 4)), Tensor((2, 3)))

    def test_transpose(self):
        a = _t(np.arange(6).reshape(1, 2, 3))
        out = Tensor((3, 2))
        matrix_cpu.transpose(a, out)
        np.testing.assert_array_equal(out.batch(0), a.batch(0).T)
        with self.assertRaises(ValueError):
            matrix_cpu.transpose(a, Tensor((2, 3)))

    def test_accumulate(self):
        a = _t([[1.0, 2.0]])
        b = _t([[10.0, 20.0]])
        out = Tensor((2,))
        matrix_cpu.accumulate([a, b], out)
        np.testing.assert_array_equal(out.data, [11.0, 22.0])
        matrix_cpu.accumulate([], out)
        np.testing.assert_array_equal(out.data, [0.0, 0.0])

    def test_reduce_batch(self):
        a = _t(np.ones((3, 2, 4)))
        out = Tensor((2, 4))
        matrix_cpu.reduce_batch(a, out)
        np.testing.assert_array_equal(out.batch(0), np.full((2, 4), 3.0))
        rows = Tensor((1, 4))
        matrix_cpu.reduce_batch(a, rows, axes=(0,))
        np.testing.assert_array_equal(rows.batch(0), np.full((1, 4), 6.0))

    def test_relu_and_backward(self):
        x = _t([[-1.0, 0.0, 2.0]])
        y = Tensor((3,))
        matrix_cpu.relu(x, y)
        np.testing.assert_array_equal(y.data, [0.0, 0.0, 2.0])
        g = _t([[5.0, 5.0, 5.0]])
        dx = Tensor((3,))
        matrix_cpu.relu_backward(x, g, dx)
        np.testing.assert_array_equal(dx.data, [0.0, 0.0, 5.0])

    def test_sigmoid_and_backward(self):
        x = _t([[0.0, 2.0]])
        y = Tensor((2,))
        matrix_cpu.sigmoid(x, y)
        expected = 1.0 / (1.0 + np.exp(-np.array([0.0, 2.0])))
        np.testing.assert_allclose(y.data, expected, rtol=1e-6)
        dx = Tensor((2,))
        matrix_cpu.sigmoid_backward(y, _t([[1.0, 1.0]]), dx)
        np.testing.assert_allclose(dx.data, expected * (1 - expected), rtol=1e-5)

    def test_mean_of_squares(self):
        a = _t([[1.0, -3.0], [2.0, 2.0]])
        out = Tensor((1,), batch_size=2)
        matrix_cpu.mean_of_squares(a, out)
        np.testing.assert_allclose(out.data, [5.0, 4.0])

    def test_all_finite(self):
        self.assertTrue(matrix_cpu.all_finite(_t([[1.0]])))
        self.assertFalse(matrix_cpu.all_finite(_t([[np.nan]])))

    def test_device_checks(self):
        cpu = Tensor((2,))
        cuda = Tensor((2,), device="cuda:0")
        with self.assertRaises(DeviceMismatchError):
            matrix_cpu.add(cpu, cuda, cpu)
        with self.assertRaises(DeviceNotSupportedError):
            matrix_cpu.add(cuda, cuda, cuda)


if __name__ == "__main__":
    unittest.main()
