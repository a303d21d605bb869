"""
Quadratic programs over linear factor graphs.

    minimize    Σ_i ½‖A_i x - b_i‖²           (cost: GaussianFactorGraph of soft factors)
    subject to  A_j x = b_j                    (equalities: LinearEquality)
                a_k x ≤ b_k                    (inequalities: LinearInequality)

`QP` validates the three graphs and fixes the dual-key map once. `QPSolver` is the
concrete `ActiveSetSolver` for this problem family: its dual factor for a key gathers
the transposed blocks of the equalities and active inequalities touching the key and
uses the cost gradient at the current point as right-hand side.
"""

from __future__ import annotations

from typing import Dict, Hashable, Iterable, Optional, Tuple

import numpy as np

from .active_set import ActiveSetResult, ActiveSetSolver
from .blocks.aux import ActiveSetConfig, FactorKind, StructuralError
from .blocks.elimination import GaussianSolver
from .blocks.index import VariableIndex, constrained_keys
from .blocks.working_set import WorkingSet
from .linear import (
    EqualityFactorGraph,
    GaussianFactorGraph,
    InequalityFactorGraph,
    JacobianFactor,
    VectorValues,
)

Key = Hashable


def _as_graph(factors, graph_type):
    if factors is None:
        return graph_type()
    if isinstance(factors, graph_type):
        return factors
    return graph_type(factors)


class QP:
    """
    Cost, equality and inequality graphs of one QP subproblem.

    Parameters
    ----------
    cost : GaussianFactorGraph or iterable of JacobianFactor
        Soft factors only.
    equalities : EqualityFactorGraph or iterable of LinearEquality
    inequalities : InequalityFactorGraph or iterable of LinearInequality

    Attributes
    ----------
    dual_keys : dict
        dual_key → (FactorKind, position). Built once; a collision raises.

    Raises
    ------
    StructuralError
        Hard rows in the cost, duplicated dual keys, or inconsistent key dimensions.
    """

    def __init__(self, cost: Optional[Iterable[JacobianFactor]] = None,
                 equalities: Optional[Iterable] = None,
                 inequalities: Optional[Iterable] = None):
        self.cost = _as_graph(cost, GaussianFactorGraph)
        self.equalities = _as_graph(equalities, EqualityFactorGraph)
        self.inequalities = _as_graph(inequalities, InequalityFactorGraph)

        for i, f in enumerate(self.cost):
            if f.constrained:
                raise StructuralError(f"cost factor {i} is a hard constraint: {f!r}")

        self.dual_keys: Dict[Key, Tuple[FactorKind, int]] = {}
        for kind, graph in ((FactorKind.EQUALITY, self.equalities),
                            (FactorKind.INEQUALITY, self.inequalities)):
            for position, factor in enumerate(graph):
                if factor.dual_key in self.dual_keys:
                    other_kind, other_pos = self.dual_keys[factor.dual_key]
                    raise StructuralError(
                        f"dual key {factor.dual_key!r} used by {kind.value} {position} "
                        f"and {other_kind.value} {other_pos}"
                    )
                self.dual_keys[factor.dual_key] = (kind, position)

        self._key_dims = (self.cost + self.equalities + self.inequalities).key_dims()

    def __repr__(self) -> str:
        return (f"QP(cost={len(self.cost)}, equalities={len(self.equalities)}, "
                f"inequalities={len(self.inequalities)}, keys={len(self._key_dims)})")

    def key_dims(self) -> Dict[Key, int]:
        return dict(self._key_dims)

    def keys(self):
        return list(self._key_dims)

    def error(self, values: VectorValues) -> float:
        """Cost ``Σ ½‖A_i x - b_i‖²`` at ``values``."""
        return self.cost.error(values)

    def constraint_for(self, dual_key: Key):
        kind, position = self.dual_keys[dual_key]
        graph = self.equalities if kind is FactorKind.EQUALITY else self.inequalities
        return graph[position]

    def is_feasible(self, values: VectorValues, tol: float = 1e-7) -> bool:
        for f in self.equalities:
            if np.max(np.abs(f.error_vector(values)), initial=0.0) > tol:
                return False
        return all(f.violation(values) <= tol for f in self.inequalities)


class QPSolver(ActiveSetSolver):
    """
    Active-set solver for `QP`.

    Variable indices and the constrained-key set are built once here; the QP graphs
    must not change afterwards.
    """

    def __init__(self, qp: QP, config: Optional[ActiveSetConfig] = None,
                 linear_solver: Optional[GaussianSolver] = None):
        super().__init__(config, linear_solver)
        self.qp = qp
        self.base_graph = qp.cost + qp.equalities
        self.inequalities = qp.inequalities
        self.cost_variable_index = VariableIndex(qp.cost)
        self.equality_variable_index = VariableIndex(qp.equalities)
        self.inequality_variable_index = VariableIndex(qp.inequalities)
        self.constrained_keys = constrained_keys(qp.equalities, qp.inequalities)

    def key_dims(self):
        return self.qp.key_dims()

    def create_dual_factor(self, key: Key, working_set: WorkingSet,
                           delta: VectorValues) -> Optional[JacobianFactor]:
        terms = self.collect_dual_jacobians(key, self.qp.equalities, self.equality_variable_index)
        terms += self.collect_dual_jacobians(
            key, working_set.inequalities, self.inequality_variable_index, working_set
        )
        if not terms:
            return None

        b = np.zeros(delta.at(key).size)
        for factor_ix in self.cost_variable_index[key]:
            b += self.qp.cost[factor_ix].gradient(key, delta)
        return JacobianFactor(terms, b, constrained=True)


def solve_qp(qp: QP, initial_values: Optional[VectorValues] = None,
             config: Optional[ActiveSetConfig] = None) -> ActiveSetResult:
    """Solve ``qp`` with a fresh `QPSolver` and raise on any non-optimal outcome."""
    return QPSolver(qp, config).optimize(initial_values).raise_for_status()
