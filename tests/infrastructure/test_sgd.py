import unittest

import numpy as np

from unitflow.domain._errors import ConfigurationError
from unitflow.domain._optimizers import IOptimizer
from unitflow.infrastructure.optimizers import SGD, create_optimizer
from unitflow.infrastructure.tensor import Tensor


def _tensor(values):
    return Tensor.from_numpy(np.asarray([values], dtype=np.float32))


class TestSGD(unittest.TestCase):
    def test_update(self):
        p = _tensor([1.0, -2.0, 3.0])
        g = _tensor([0.5, 0.5, -1.0])
        SGD(lr=0.1).optimize({"w": p}, {"w": g})
        np.testing.assert_allclose(p.data, [0.95, -2.05, 3.1], rtol=1e-6)
        np.testing.assert_array_equal(g.data, [0.5, 0.5, -1.0])

    def test_weight_decay(self):
        p = _tensor([1.0, -2.0])
        g = _tensor([0.0, 1.0])
        SGD(lr=0.5, weight_decay=0.1).optimize({"w": p}, {"w": g})
        # g + wd * p = [0.1, 0.8]
        np.testing.assert_allclose(p.data, [0.95, -2.4], rtol=1e-6)
        np.testing.assert_array_equal(g.data, [0.0, 1.0])

    def test_missing_gradient_is_skipped(self):
        p = _tensor([1.0])
        q = _tensor([2.0])
        SGD(lr=1.0).optimize({"p": p, "q": q}, {"q": _tensor([1.0])})
        np.testing.assert_array_equal(p.data, [1.0])
        np.testing.assert_array_equal(q.data, [1.0])

    def test_layout_mismatch(self):
        with self.assertRaises(ValueError):
            SGD().optimize({"w": _tensor([1.0, 2.0])}, {"w": _tensor([1.0])})

    def test_invalid_hyperparameters(self):
        with self.assertRaises(ValueError):
            SGD(lr=0.0)
        with self.assertRaises(ValueError):
            SGD(weight_decay=-1.0)

    def test_implements_protocol(self):
        self.assertIsInstance(SGD(), IOptimizer)


class TestCreateOptimizer(unittest.TestCase):
    def test_none(self):
        self.assertIsNone(create_optimizer(None))

    def test_by_name(self):
        opt = create_optimizer("SGD", {"lr": 0.2})
        self.assertIsInstance(opt, SGD)
        self.assertEqual(opt.lr, 0.2)
        self.assertIsNot(create_optimizer("sgd"), create_optimizer("sgd"))

    def test_factory(self):
        opt = create_optimizer(lambda: SGD(lr=0.3))
        self.assertEqual(opt.lr, 0.3)

    def test_errors(self):
        with self.assertRaises(ConfigurationError):
            create_optimizer("adamw")
        with self.assertRaises(ConfigurationError):
            create_optimizer("sgd", {"lr": -1.0})
        with self.assertRaises(ConfigurationError):
            create_optimizer("sgd", {"momentum": 0.9})
        with self.assertRaises(ConfigurationError):
            create_optimizer(lambda: object())
        with self.assertRaises(ConfigurationError):
            create_optimizer(3)


if __name__ == "__main__":
    unittest.main()
