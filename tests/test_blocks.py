import unittest

import numpy as np

from fgqp.blocks.aux import ActiveSetConfig, QPInfeasibleError, SingularSystemError
from fgqp.blocks.elimination import GaussianSolver
from fgqp.blocks.feasibility import find_feasible_initial_values
from fgqp.blocks.index import VariableIndex, constrained_keys
from fgqp.blocks.working_set import WorkingSet
from fgqp.linear import (
    EqualityFactorGraph,
    GaussianFactorGraph,
    InequalityFactorGraph,
    JacobianFactor,
    LinearEquality,
    LinearInequality,
    VectorValues,
)


class TestVariableIndex(unittest.TestCase):
    def make_graph(self):
        return GaussianFactorGraph([
            JacobianFactor([("x", [[1.0]]), ("y", [[1.0]])]),
            JacobianFactor([], [1.0]),
            JacobianFactor([("y", [[2.0]])]),
            JacobianFactor([("x", [[3.0]])]),
        ])

    def test_positions_in_encounter_order(self):
        index = VariableIndex(self.make_graph())
        self.assertEqual(index["x"], (0, 3))
        self.assertEqual(index.lookup("y"), (0, 2))
        self.assertEqual(index.n_factors, 4)
        self.assertEqual(len(index), 2)

    def test_unknown_key_is_empty(self):
        index = VariableIndex(self.make_graph())
        self.assertEqual(index["z"], ())
        self.assertNotIn("z", index)

    def test_empty_index(self):
        self.assertEqual(VariableIndex()["x"], ())

    def test_constrained_keys_order(self):
        eq = EqualityFactorGraph([LinearEquality({"b": [[1.0]]}, [0.0], "e")])
        ineq = InequalityFactorGraph([
            LinearInequality([("a", [1.0]), ("b", [1.0])], 0.0, "l0"),
        ])
        self.assertEqual(constrained_keys(eq, ineq), ["b", "a"])


class TestWorkingSet(unittest.TestCase):
    def make_inequalities(self, n=3):
        return InequalityFactorGraph(
            LinearInequality({"x": [1.0]}, float(i), f"l{i}") for i in range(n)
        )

    def test_toggle_and_copy(self):
        ws = WorkingSet(self.make_inequalities())
        ws.activate(2)
        ws.activate(0)
        self.assertEqual(ws.active_indices(), [0, 2])
        self.assertEqual(ws.inactive_indices(), [1])
        snapshot = ws.copy()
        ws.deactivate(0)
        self.assertEqual(ws.active_indices(), [2])
        self.assertEqual(snapshot.active_indices(), [0, 2])
        self.assertIs(snapshot.inequalities, ws.inequalities)

    def test_initial_flags(self):
        ws = WorkingSet(self.make_inequalities(), [False, True, False])
        self.assertTrue(ws.is_active(1))
        self.assertEqual(ws.number_of_active(), 1)
        with self.assertRaises(ValueError):
            WorkingSet(self.make_inequalities(), [True])

    def test_out_of_range(self):
        ws = WorkingSet(self.make_inequalities())
        with self.assertRaises(IndexError):
            ws.activate(3)

    def test_flags_are_read_only(self):
        ws = WorkingSet(self.make_inequalities())
        with self.assertRaises(ValueError):
            ws.flags[0] = True

    def test_active_graph(self):
        ws = WorkingSet(self.make_inequalities(), [True, False, True])
        g = ws.active_graph()
        self.assertEqual([f.dual_key for f in g], ["l0", "l2"])


class TestGaussianSolver(unittest.TestCase):
    def setUp(self):
        self.solver = GaussianSolver()

    def test_soft_only(self):
        g = GaussianFactorGraph([
            JacobianFactor({"x": np.eye(2)}, [1.0, 2.0]),
            JacobianFactor({"y": [[2.0]]}, [4.0]),
        ])
        sol = self.solver.solve(g)
        np.testing.assert_allclose(sol["x"], [1.0, 2.0])
        np.testing.assert_allclose(sol["y"], [2.0])

    def test_soft_and_hard(self):
        g = GaussianFactorGraph([
            JacobianFactor({"x": np.eye(2)}, [2.0, 2.0]),
            LinearEquality({"x": [[1.0, 1.0]]}, [1.0], "e"),
        ])
        np.testing.assert_allclose(self.solver.solve(g)["x"], [0.5, 0.5], atol=1e-12)

    def test_chain_over_two_keys(self):
        # minimize (a-1)^2 + (b-a)^2 with b = 3
        g = GaussianFactorGraph([
            JacobianFactor({"a": [[1.0]]}, [1.0]),
            JacobianFactor([("a", [[-1.0]]), ("b", [[1.0]])], [0.0]),
            LinearEquality({"b": [[1.0]]}, [3.0], "e"),
        ])
        sol = self.solver.solve(g)
        np.testing.assert_allclose(sol["a"], [2.0], atol=1e-12)
        np.testing.assert_allclose(sol["b"], [3.0], atol=1e-12)

    def test_underdetermined(self):
        g = GaussianFactorGraph([JacobianFactor({"x": [[1.0, 0.0]]}, [1.0])])
        with self.assertRaises(SingularSystemError):
            self.solver.solve(g)

    def test_redundant_hard_rows(self):
        g = GaussianFactorGraph([
            JacobianFactor({"x": np.eye(2)}, [0.0, 0.0]),
            LinearEquality({"x": [[1.0, 0.0]]}, [1.0], "e0"),
            LinearEquality({"x": [[1.0, 0.0]]}, [1.0], "e1"),
        ])
        with self.assertRaises(SingularSystemError):
            self.solver.solve(g)

    def test_hard_only_overdetermined_consistent(self):
        g = GaussianFactorGraph([JacobianFactor({"l": [[1.0], [2.0]]}, [1.0, 2.0], constrained=True)])
        np.testing.assert_allclose(self.solver.solve(g)["l"], [1.0])

    def test_hard_only_inconsistent(self):
        g = GaussianFactorGraph([JacobianFactor({"l": [[1.0], [1.0]]}, [1.0, 2.0], constrained=True)])
        with self.assertRaises(SingularSystemError):
            self.solver.solve(g)

    def test_empty_graph(self):
        self.assertEqual(len(self.solver.solve(GaussianFactorGraph())), 0)


class TestFeasibility(unittest.TestCase):
    def test_interior_point_when_possible(self):
        ineq = InequalityFactorGraph([
            LinearInequality({"x": [1.0, 0.0]}, 1.0, "l0"),
            LinearInequality({"x": [-1.0, 0.0]}, 1.0, "l1"),
        ])
        x = find_feasible_initial_values({"x": 2, "y": 1}, GaussianFactorGraph(), ineq)
        self.assertEqual(set(x.keys()), {"x", "y"})
        self.assertTrue(np.all(ineq.violations(x) < 0.0))

    def test_equalities_respected(self):
        eq = EqualityFactorGraph([LinearEquality([("a", [[1.0]]), ("b", [[-1.0]])], [2.0], "e")])
        ineq = InequalityFactorGraph([LinearInequality({"a": [1.0]}, 5.0, "l")])
        x = find_feasible_initial_values({"a": 1, "b": 1}, eq, ineq)
        self.assertAlmostEqual(float(x["a"][0] - x["b"][0]), 2.0, places=7)
        self.assertLessEqual(float(x["a"][0]), 5.0 + 1e-9)

    def test_infeasible_inequalities(self):
        ineq = InequalityFactorGraph([
            LinearInequality({"x": [1.0]}, 0.0, "l0"),
            LinearInequality({"x": [-1.0]}, -1.0, "l1"),
        ])
        with self.assertRaises(QPInfeasibleError):
            find_feasible_initial_values({"x": 1}, GaussianFactorGraph(), ineq)

    def test_inconsistent_equalities(self):
        eq = EqualityFactorGraph([
            LinearEquality({"x": [[1.0]]}, [1.0], "e0"),
            LinearEquality({"x": [[1.0]]}, [2.0], "e1"),
        ])
        with self.assertRaises(QPInfeasibleError):
            find_feasible_initial_values({"x": 1}, eq, InequalityFactorGraph())

    def test_unconstrained_is_zero(self):
        x = find_feasible_initial_values({"x": 2}, GaussianFactorGraph(), InequalityFactorGraph())
        np.testing.assert_allclose(x["x"], [0.0, 0.0])


class TestConfig(unittest.TestCase):
    def test_validation(self):
        with self.assertRaises(ValueError):
            ActiveSetConfig(max_iterations=0)
        with self.assertRaises(ValueError):
            ActiveSetConfig(step_tol=-1.0)
        self.assertEqual(ActiveSetConfig(max_iterations=5.0).max_iterations, 5)


if __name__ == "__main__":
    unittest.main()
