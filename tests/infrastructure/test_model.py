import unittest

import numpy as np

from unitflow.domain._errors import ConfigurationError, StateViolation
from unitflow.infrastructure.frontend import Model, SymbolicTensor
from unitflow.infrastructure.graph import SchedulerConfig
from unitflow.infrastructure.utils.weight_initializer import ArrayInitializer


def _regression_batches(rng, count, batch_size):
    true_w = np.array([[1.0], [-2.0], [0.5]])
    batches = []
    for _ in range(count):
        xb = rng.standard_normal((batch_size, 1, 3))
        yb = xb @ true_w + 0.3
        batches.append((xb, yb))
    return batches


class TestModelBuilding(unittest.TestCase):
    def setUp(self):
        self.model = Model(batch_size=2)

    def test_symbolic_shapes_and_names(self):
        x = self.model.placeholder((3, 6, 6))
        c = self.model.conv2d(x, 4, 3, stride=1, padding=1, name="conv")
        self.assertIsInstance(c, SymbolicTensor)
        self.assertEqual(c.shape, (4, 6, 6))
        self.assertEqual(c.name, "conv")
        self.assertEqual(x.name, "placeholder_0")

        d = self.model.conv2d(x, 2, (3, 2), stride=(2, 1), dilation=(1, 0))
        self.assertEqual(d.shape, (2, 1, 5))

    def test_layer_errors(self):
        x = self.model.placeholder((1, 3))
        img = self.model.placeholder((1, 4, 4))
        cases = [
            lambda: self.model.dense(img, 2),
            lambda: self.model.conv2d(x, 2, 3),
            lambda: self.model.conv2d(img, 2, 5),
            lambda: self.model.conv2d(img, 2, 3, stride=0),
            lambda: self.model.conv2d(img, 2, (1, 2, 3)),
            lambda: self.model.add(x, img),
            lambda: self.model.mse(x, img),
            lambda: self.model.constant(1.0),
            lambda: self.model.placeholder((1, 3), name="placeholder_0"),
        ]
        for i, case in enumerate(cases):
            with self.subTest(case=i):
                with self.assertRaises(ConfigurationError):
                    case()

    def test_invalid_batch_size(self):
        for batch_size in (0, -1, 1.5, True):
            with self.subTest(batch_size=batch_size):
                with self.assertRaises(ConfigurationError):
                    Model(batch_size=batch_size)

    def test_output_before_compile(self):
        x = self.model.placeholder((2,))
        with self.assertRaises(StateViolation):
            self.model.output(x)


class TestModelExecution(unittest.TestCase):
    def test_predict_with_constant(self):
        model = Model(batch_size=2)
        x = model.placeholder((2,))
        c = model.constant([1.0, 2.0])
        scalar = model.constant(0.5, shape=(2,))
        out = model.add(model.add(x, c), scalar)
        model.compile()
        result = model.predict({x: [[10.0, 20.0], [30.0, 40.0]]}, out)
        np.testing.assert_allclose(result, [[11.5, 22.5], [31.5, 42.5]])

    def test_train_step_without_optimizer_keeps_weights(self):
        model = Model(batch_size=2)
        x = model.placeholder((1, 2))
        y = model.placeholder((1, 1))
        p = model.dense(x, 1, weight_initializer=ArrayInitializer([[1.0], [1.0]]))
        loss = model.mse(p, y)
        model.compile()
        feeds = {x: np.ones((2, 1, 2)), y: np.zeros((2, 1, 1))}
        first = model.train_step(feeds, loss)["loss"]
        second = model.train_step(feeds, loss)["loss"]
        self.assertAlmostEqual(first, 4.0, places=5)
        self.assertAlmostEqual(second, 4.0, places=5)

    def test_interrupted_sweep_keeps_trained_weights(self):
        model = Model(batch_size=2)
        self.addCleanup(model.manager.close)
        x = model.placeholder((1, 2))
        y = model.placeholder((1, 1))
        p = model.dense(x, 1, weight_initializer=ArrayInitializer([[1.0], [1.0]]))
        loss = model.mse(p, y)
        model.compile("sgd", lr=0.1)
        feeds = {x: np.ones((2, 1, 2)), y: np.zeros((2, 1, 1))}
        model.train_step(feeds, loss)
        weight = model.manager.unit(p.unit_id).trainable_tensor_map["weight"]
        trained = weight.to_numpy().copy()
        self.assertFalse(np.allclose(trained, 1.0))

        model.manager.submit_unit(x.unit_id, "forward").result(timeout=5)
        with self.assertRaises(StateViolation):
            model.predict(feeds, loss)
        model.resynchronize()
        np.testing.assert_array_equal(weight.to_numpy(), trained)

        after = model.train_step(feeds, loss)["loss"]
        self.assertLess(after, 4.0)
        self.assertEqual(len(set(model.manager.generations().values())), 1)

    def test_linear_regression_converges(self):
        rng = np.random.default_rng(0)
        np.random.seed(0)
        model = Model(batch_size=8)
        x = model.placeholder((1, 3), name="x")
        y = model.placeholder((1, 1), name="y")
        p = model.dense(x, 1, name="linear")
        loss = model.mse(p, y)
        model.compile("sgd", lr=0.02)

        batches = [{x: xb, y: yb} for xb, yb in _regression_batches(rng, 10, 8)]
        history = model.fit(batches, loss, epochs=6)
        self.assertEqual(len(history), 6)
        self.assertLess(history[-1]["loss"], 0.05 * history[0]["loss"])

        weight = model.manager.unit(p.unit_id).trainable_tensor_map["weight"].batch(0)
        np.testing.assert_allclose(weight[:, 0], [1.0, -2.0, 0.5], atol=0.05)

    def test_multi_worker_training(self):
        rng = np.random.default_rng(1)
        np.random.seed(1)
        model = Model(batch_size=8, config=SchedulerConfig(num_workers=3))
        self.addCleanup(model.manager.close)
        x = model.placeholder((1, 3))
        y = model.placeholder((1, 1))
        h = model.sigmoid(model.dense(x, 6))
        p = model.dense(h, 1)
        loss = model.mse(p, y)
        model.compile("sgd", lr=0.01)

        batches = [{x: xb, y: yb} for xb, yb in _regression_batches(rng, 8, 8)]
        history = model.fit(batches, loss, epochs=15)
        self.assertLess(history[-1]["loss"], history[0]["loss"])

    def test_convolution_fits_target_filter(self):
        rng = np.random.default_rng(2)
        np.random.seed(2)
        target = rng.standard_normal((1, 1, 3, 3))
        xb = rng.standard_normal((4, 1, 4, 4))

        reference = Model(batch_size=4)
        tx = reference.placeholder((1, 4, 4))
        tc = reference.conv2d(tx, 1, 3, filter_initializer=ArrayInitializer(target))
        reference.compile()
        yb = reference.predict({tx: xb}, tc)

        model = Model(batch_size=4)
        x = model.placeholder((1, 4, 4))
        y = model.placeholder((1, 2, 2))
        c = model.conv2d(x, 1, 3)
        loss = model.mse(c, y)
        model.compile("sgd", lr=0.01)
        losses = [model.train_step({x: xb, y: yb}, loss)["loss"] for _ in range(30)]
        self.assertLess(losses[-1], losses[0])

    def test_fit_arguments(self):
        model = Model()
        x = model.placeholder((1,))
        y = model.placeholder((1,))
        loss = model.mse(x, y)
        model.compile()
        with self.assertRaises(ValueError):
            model.fit([{x: [1.0], y: [0.0]}], loss, epochs=0)
        with self.assertRaises(ValueError):
            model.fit([], loss)
        history = model.fit([{x: [[1.0]], y: [[0.0]]}], loss, epochs=2)
        self.assertEqual(history, [{"loss": 1.0}, {"loss": 1.0}])


if __name__ == "__main__":
    unittest.main()
