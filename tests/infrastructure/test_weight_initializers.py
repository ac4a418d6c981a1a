import unittest

import numpy as np

from unitflow.domain._errors import ConfigurationError
from unitflow.infrastructure.tensor import Tensor
from unitflow.infrastructure.utils.weight_initializer import (
    ArrayInitializer,
    ConstantInitializer,
    WeightInitializer,
    resolve_initializer,
)


class TestRegistry(unittest.TestCase):
    def test_builtins_are_registered(self):
        for name in ("zeros", "ones", "xavier", "xavier_uniform", "kaiming", "kaiming_uniform"):
            self.assertIn(name, WeightInitializer.available())

    def test_unknown_name(self):
        with self.assertRaises(ConfigurationError):
            WeightInitializer("does_not_exist")
        with self.assertRaises(ConfigurationError):
            resolve_initializer(42)

    def test_duplicate_registration(self):
        with self.assertRaises(ValueError):
            WeightInitializer.register_initializer("zeros")(lambda t: t)

    def test_resolve(self):
        init = resolve_initializer("ones")
        self.assertIsInstance(init, WeightInitializer)
        self.assertEqual(repr(init), "WeightInitializer('ones')")
        custom = lambda t: t  # noqa: E731
        self.assertIs(resolve_initializer(custom), custom)


class TestVarianceScaling(unittest.TestCase):
    def setUp(self):
        np.random.seed(0)

    def test_xavier_std(self):
        t = Tensor((200, 300))
        WeightInitializer("xavier")(t)
        self.assertAlmostEqual(float(t.data.std()), np.sqrt(2.0 / 500), delta=0.005)
        self.assertAlmostEqual(float(t.data.mean()), 0.0, delta=0.005)

    def test_kaiming_std_uses_filter_fan_in(self):
        t = Tensor((64, 8, 3, 3))
        WeightInitializer("kaiming")(t)
        self.assertAlmostEqual(float(t.data.std()), np.sqrt(2.0 / 72), delta=0.01)

    def test_uniform_bounds(self):
        t = Tensor((50, 70))
        WeightInitializer("xavier_uniform")(t)
        self.assertLessEqual(float(np.abs(t.data).max()), np.sqrt(6.0 / 120) + 1e-6)
        t = Tensor((4, 2, 3, 3))
        WeightInitializer("kaiming_uniform")(t)
        self.assertLessEqual(float(np.abs(t.data).max()), np.sqrt(6.0 / 18) + 1e-6)

    def test_rank_three_is_rejected(self):
        with self.assertRaises(ConfigurationError):
            WeightInitializer("xavier")(Tensor((2, 3, 4)))


class TestExplicitInitializers(unittest.TestCase):
    def test_zeros_ones_constant(self):
        t = Tensor((2, 2), batch_size=3)
        WeightInitializer("ones")(t)
        self.assertTrue(np.all(t.data == 1.0))
        WeightInitializer("zeros")(t)
        self.assertTrue(np.all(t.data == 0.0))
        ConstantInitializer(2.5)(t)
        self.assertTrue(np.all(t.data == 2.5))

    def test_array_single_sample_is_broadcast(self):
        t = Tensor((2,), batch_size=3)
        ArrayInitializer([1.0, 2.0])(t)
        np.testing.assert_array_equal(t.to_numpy(), [[1, 2], [1, 2], [1, 2]])

    def test_array_full_batch(self):
        t = Tensor((2,), batch_size=2)
        ArrayInitializer([[1.0, 2.0], [3.0, 4.0]])(t)
        np.testing.assert_array_equal(t.to_numpy(), [[1, 2], [3, 4]])

    def test_array_size_mismatch(self):
        with self.assertRaises(ConfigurationError):
            ArrayInitializer([1.0, 2.0, 3.0])(Tensor((2,), batch_size=2))


if __name__ == "__main__":
    unittest.main()
