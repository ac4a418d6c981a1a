import unittest

from unitflow.domain._shape import Shape


class TestShape(unittest.TestCase):
    def test_size_is_product_of_extents(self):
        self.assertEqual(Shape((2, 3, 4)).size, 24)
        self.assertEqual(Shape(()).size, 1)

    def test_matrix_accessors(self):
        s = Shape((5, 3, 4))
        self.assertEqual(s.dim, 3)
        self.assertEqual(s.num_channel, 5)
        self.assertEqual(s.num_row, 3)
        self.assertEqual(s.num_col, 4)

    def test_missing_leading_dimensions_read_as_one(self):
        s = Shape((7,))
        self.assertEqual(s.num_row, 1)
        self.assertEqual(s.num_col, 7)
        self.assertEqual(s.num_channel, 1)

    def test_transposed_swaps_trailing_extents(self):
        self.assertEqual(Shape((2, 3, 4)).transposed(), (2, 4, 3))
        self.assertEqual(Shape((5,)).transposed(), (5, 1))

    def test_set_rows_and_cols(self):
        s = Shape((1, 4, 4))
        s.set_num_rows(6)
        s.set_num_cols(8)
        self.assertEqual(s, (1, 6, 8))

    def test_set_rows_on_rank_one_raises(self):
        with self.assertRaises(ValueError):
            Shape((3,)).set_num_rows(2)

    def test_copy_is_independent(self):
        a = Shape((2, 2))
        b = a.copy()
        b.set_num_cols(5)
        self.assertEqual(a, (2, 2))
        self.assertEqual(b, (2, 5))

    def test_rejects_non_positive_extents(self):
        for dims in ((0, 2), (2, -1), (1.5,), (True,)):
            with self.subTest(dims=dims):
                with self.assertRaises(ValueError):
                    Shape(dims)

    def test_equality(self):
        self.assertEqual(Shape((1, 2)), Shape((1, 2)))
        self.assertNotEqual(Shape((1, 2)), Shape((2, 1)))
        self.assertEqual(Shape((1, 2)), (1, 2))
        self.assertEqual(Shape((3, 4))[-1], 4)
        self.assertEqual(list(Shape((3, 4))), [3, 4])


if __name__ == "__main__":
    unittest.main()
