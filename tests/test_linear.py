import unittest

import numpy as np

from fgqp.blocks.aux import StructuralError
from fgqp.linear import (
    EqualityFactorGraph,
    GaussianFactorGraph,
    InequalityFactorGraph,
    JacobianFactor,
    LinearEquality,
    LinearInequality,
    VectorValues,
)


class TestVectorValues(unittest.TestCase):
    def test_arithmetic_keeps_structure(self):
        x = VectorValues({"a": [1.0, 2.0], "b": 3.0})
        p = VectorValues({"a": [0.5, -1.0], "b": -1.0})
        y = x + 2.0 * p
        np.testing.assert_allclose(y["a"], [2.0, 0.0])
        np.testing.assert_allclose(y["b"], [1.0])
        self.assertAlmostEqual(x.dot(p), 0.5 - 2.0 - 3.0)
        self.assertAlmostEqual((x - x).norm(), 0.0)

    def test_structure_mismatch_raises(self):
        x = VectorValues({"a": [1.0, 2.0]})
        with self.assertRaises(StructuralError):
            x + VectorValues({"a": [1.0]})
        with self.assertRaises(StructuralError):
            x - VectorValues({"b": [1.0, 2.0]})

    def test_equals_ignores_insertion_order(self):
        x = VectorValues({"a": [1.0], "b": [2.0]})
        y = VectorValues({"b": [2.0], "a": [1.0 + 1e-12]})
        self.assertTrue(x.equals(y, tol=1e-9))
        self.assertFalse(x.equals(VectorValues({"a": [1.0]})))

    def test_at_missing_key_is_structural(self):
        with self.assertRaises(StructuralError):
            VectorValues().at("missing")

    def test_from_vector_round_trip_layout(self):
        v = VectorValues.from_vector(["a", "b"], [2, 1], np.array([1.0, 2.0, 3.0]))
        np.testing.assert_allclose(v["a"], [1.0, 2.0])
        np.testing.assert_allclose(v.vector(["b", "a"]), [3.0, 1.0, 2.0])

    def test_copy_is_independent(self):
        x = VectorValues({"a": [1.0]})
        y = x.copy()
        y.update({"a": [5.0]})
        np.testing.assert_allclose(x["a"], [1.0])


class TestFactors(unittest.TestCase):
    def test_gradient_of_least_squares_term(self):
        f = JacobianFactor({"x": np.eye(2)}, [2.0, 2.0])
        x = VectorValues({"x": [1.0, 2.0]})
        np.testing.assert_allclose(f.error_vector(x), [-1.0, 0.0])
        np.testing.assert_allclose(f.gradient("x", x), [-1.0, 0.0])
        self.assertAlmostEqual(f.error(x), 0.5)

    def test_one_dimensional_block_is_one_row(self):
        f = LinearInequality({"x": [1.0, 0.0]}, 5.0, dual_key="l")
        self.assertEqual(f.rows, 1)
        self.assertEqual(f.bound, 5.0)
        self.assertAlmostEqual(f.dot_product_row(VectorValues({"x": [4.0, 7.0]})), 4.0)
        self.assertAlmostEqual(f.violation(VectorValues({"x": [6.0, 0.0]})), 1.0)

    def test_inequality_must_be_scalar(self):
        with self.assertRaises(StructuralError):
            LinearInequality({"x": np.eye(2)}, [1.0, 1.0], dual_key="l")

    def test_row_mismatch_between_blocks(self):
        with self.assertRaises(StructuralError):
            JacobianFactor([("a", np.ones((2, 1))), ("b", np.ones((1, 1)))], [0.0, 0.0])

    def test_duplicate_key_in_factor(self):
        with self.assertRaises(StructuralError):
            JacobianFactor([("a", [1.0]), ("a", [2.0])], 0.0)

    def test_get_A_for_unknown_key(self):
        f = JacobianFactor({"a": [[1.0]]}, [0.0])
        with self.assertRaises(StructuralError):
            f.get_A("b")

    def test_constraint_flags(self):
        self.assertFalse(JacobianFactor({"a": [[1.0]]}).constrained)
        self.assertTrue(JacobianFactor({"a": [[1.0]]}, constrained=True).constrained)
        self.assertTrue(LinearEquality({"a": [[1.0]]}, [0.0], "e").constrained)

    def test_value_size_mismatch(self):
        f = JacobianFactor({"a": np.eye(2)})
        with self.assertRaises(StructuralError):
            f.error_vector(VectorValues({"a": [1.0]}))


class TestGraphs(unittest.TestCase):
    def test_keys_in_first_encounter_order(self):
        g = GaussianFactorGraph([
            JacobianFactor([("b", [[1.0]]), ("a", [[1.0]])]),
            JacobianFactor([("c", [[1.0]]), ("a", [[1.0]])]),
        ])
        self.assertEqual(g.keys(), ["b", "a", "c"])

    def test_inconsistent_dimensions(self):
        g = GaussianFactorGraph([JacobianFactor({"a": np.eye(2)}), JacobianFactor({"a": np.eye(3)})])
        with self.assertRaises(StructuralError):
            g.key_dims()

    def test_typed_graphs_reject_other_factors(self):
        with self.assertRaises(StructuralError):
            InequalityFactorGraph([JacobianFactor({"a": [[1.0]]})])
        with self.assertRaises(StructuralError):
            EqualityFactorGraph([LinearInequality({"a": [1.0]}, 0.0, "l")])

    def test_concatenation_is_plain_graph(self):
        ineq = InequalityFactorGraph([LinearInequality({"a": [1.0]}, 0.0, "l")])
        g = GaussianFactorGraph([JacobianFactor({"a": [[1.0]]})]) + ineq
        self.assertIsInstance(g, GaussianFactorGraph)
        self.assertEqual(len(g), 2)

    def test_violations(self):
        ineq = InequalityFactorGraph([
            LinearInequality({"a": [1.0]}, 1.0, "l0"),
            LinearInequality({"a": [-1.0]}, 1.0, "l1"),
        ])
        np.testing.assert_allclose(ineq.violations(VectorValues({"a": [2.0]})), [1.0, -3.0])


if __name__ == "__main__":
    unittest.main()
