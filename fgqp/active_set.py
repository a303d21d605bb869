"""
Active-set method over linear factor graphs.

`ActiveSetSolver` holds the problem-independent machinery of a primal active-set
method (Nocedal & Wright, 2nd ed., §16.5) whose subproblems are factor graphs:

  - ratio test (`compute_step_size`): the first inactive inequality hit along p,
  - dual graph (`collect_dual_jacobians`, `build_dual_graph`): one hard factor per
    constrained key whose solution is the vector of Lagrange multipliers,
  - leaving rule (`identify_leaving_constraint`): the active inequality with the
    largest positive multiplier,
  - driver (`iterate`, `optimize`).

Subclasses supply `create_dual_factor`, the single problem-specific extension point,
and fill in the graphs and variable indices the base machinery reads.

Sign convention
---------------
Multipliers solve  Σ_i a_iᵀ λ_i = ∇f(x)  for the active constraints. At the boundary of
``a x ≤ b`` the gradient a points out of the feasible side, so a correctly active
inequality has λ ≤ 0. A positive λ means the constraint holds x away from a lower-cost
feasible point, and that constraint should leave the working set.

Tie-breaks
----------
Both scans run in constraint-position order with strict comparisons, so the first
constraint reaching the extreme value wins. This is a deterministic convention, not an
anti-cycling rule; ``ActiveSetConfig.max_iterations`` is the guard against cycling.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Hashable, List, NamedTuple, Optional, Sequence, Tuple, Union

import numpy as np

from .blocks.aux import (
    ActiveSetConfig,
    DegenerateDualError,
    InfeasibleStartError,
    IterationLimitExceeded,
    QPInfeasibleError,
    SingularSystemError,
    SolverStatus,
)
from .blocks.elimination import GaussianSolver, _assemble
from .blocks.feasibility import find_feasible_initial_values
from .blocks.index import VariableIndex
from .blocks.working_set import WorkingSet
from .linear import GaussianFactorGraph, InequalityFactorGraph, JacobianFactor, VectorValues

Key = Hashable
TermsContainer = List[Tuple[Key, np.ndarray]]


# =============================================================================
# State / result
# =============================================================================
class ActiveSetState(NamedTuple):
    values: VectorValues
    duals: VectorValues
    working_set: WorkingSet
    iterations: int = 0
    n_activations: int = 0
    n_deactivations: int = 0
    status: SolverStatus = SolverStatus.ITERATING

    @property
    def converged(self) -> bool:
        return self.status is not SolverStatus.ITERATING


@dataclass
class ActiveSetResult:
    """
    Outcome of `ActiveSetSolver.optimize`.

    ``values`` is the last feasible iterate whatever the status; ``duals`` holds the
    multipliers of the last successful dual solve (empty if there was none).
    """

    values: VectorValues
    duals: VectorValues
    working_set: WorkingSet
    status: SolverStatus
    iterations: int
    n_activations: int
    n_deactivations: int

    @property
    def optimal(self) -> bool:
        return self.status is SolverStatus.OPTIMAL

    def raise_for_status(self) -> "ActiveSetResult":
        if self.status is SolverStatus.INFEASIBLE:
            raise QPInfeasibleError(f"working-set subproblem singular after {self.iterations} iterations")
        if self.status is SolverStatus.DEGENERATE:
            raise DegenerateDualError(f"multiplier system singular after {self.iterations} iterations")
        if self.status is SolverStatus.ITERATION_LIMIT:
            raise IterationLimitExceeded(f"no convergence within {self.iterations} iterations")
        return self


# =============================================================================
# Solver
# =============================================================================
class ActiveSetSolver(ABC):
    """
    Abstract active-set solver.

    Subclasses must set, before calling `optimize`:

    base_graph : GaussianFactorGraph
        Cost factors and equality constraints; active inequalities are appended to it
        to form the working graph of each subproblem.
    inequalities : InequalityFactorGraph
        All inequality constraints; positions are the working-set indices.
    constrained_keys : list
        Keys touched by any equality or inequality; one dual factor per key.
    cost_variable_index, equality_variable_index, inequality_variable_index : VariableIndex
        Indices into the corresponding graphs, used to build dual factors.

    Parameters
    ----------
    config : ActiveSetConfig, optional
    linear_solver : GaussianSolver, optional
        Used for both the primal subproblem and the dual graph.
    """

    def __init__(self, config: Optional[ActiveSetConfig] = None,
                 linear_solver: Optional[GaussianSolver] = None):
        self.cfg = config if config is not None else ActiveSetConfig()
        self.linear_solver = (
            linear_solver if linear_solver is not None
            else GaussianSolver(consistency_tol=self.cfg.consistency_tol)
        )
        self.constrained_keys: List[Key] = []
        self.base_graph = GaussianFactorGraph()
        self.inequalities = InequalityFactorGraph()
        self.cost_variable_index = VariableIndex()
        self.equality_variable_index = VariableIndex()
        self.inequality_variable_index = VariableIndex()

    # ------------------------------------------------------------------ #
    # Extension point
    # ------------------------------------------------------------------ #
    @abstractmethod
    def create_dual_factor(self, key: Key, working_set: WorkingSet,
                           delta: VectorValues) -> Optional[JacobianFactor]:
        """
        Dual factor for ``key``: hard rows ``Σ_i A_i,keyᵀ λ_i = ∇_key f(delta)`` over the
        dual keys of the active constraints touching ``key``. Return ``None`` (or an
        empty factor) when no active constraint touches ``key``.
        """

    # ------------------------------------------------------------------ #
    # Ratio test
    # ------------------------------------------------------------------ #
    def compute_step_size(self, working_set: WorkingSet, xk: VectorValues,
                          p: VectorValues, start_alpha: float = 1.0) -> Tuple[float, Optional[int]]:
        """
        Largest alpha ≤ ``start_alpha`` keeping ``xk + alpha p`` feasible for every
        inactive inequality.

        Returns
        -------
        alpha : float
        blocking_index : int or None
            Position of the inequality that becomes tight at ``alpha`` (to be
            activated), or None when no inactive constraint blocks the step.
        """
        min_alpha = float(start_alpha)
        blocking_index = None
        for index, factor, active in working_set:
            if active:
                continue
            aTp = factor.dot_product_row(p)
            # moving along p does not approach this constraint
            if aTp <= 0:
                continue
            aTx = factor.dot_product_row(xk)
            alpha = (factor.bound - aTx) / aTp
            if alpha < min_alpha:
                min_alpha = alpha
                blocking_index = index
        return min_alpha, blocking_index

    # ------------------------------------------------------------------ #
    # Dual graph
    # ------------------------------------------------------------------ #
    @staticmethod
    def collect_dual_jacobians(key: Key, graph: GaussianFactorGraph, variable_index: VariableIndex,
                               working_set: Optional[WorkingSet] = None) -> TermsContainer:
        """
        ``(dual_key, A_keyᵀ)`` for each active factor of ``graph`` touching ``key``.

        Without ``working_set`` every factor counts as active (equalities); with it, only
        the positions flagged active are collected.
        """
        terms: TermsContainer = []
        for factor_ix in variable_index[key]:
            if working_set is not None and not working_set.is_active(factor_ix):
                continue
            factor = graph[factor_ix]
            terms.append((factor.dual_key, factor.get_A(key).T))
        return terms

    def build_dual_graph(self, working_set: WorkingSet, delta: VectorValues) -> GaussianFactorGraph:
        dual_graph = GaussianFactorGraph()
        for key in self.constrained_keys:
            dual_factor = self.create_dual_factor(key, working_set, delta)
            if dual_factor is not None and not dual_factor.empty():
                dual_graph.push_back(dual_factor)
        return dual_graph

    # ------------------------------------------------------------------ #
    # Leaving constraint
    # ------------------------------------------------------------------ #
    def identify_leaving_constraint(self, working_set: WorkingSet,
                                    lambdas: VectorValues) -> Optional[int]:
        """
        Active inequality whose multiplier is the largest positive one, or None.

        Multipliers ≤ 0 belong to correctly active constraints and are ignored.
        """
        worst_index = None
        max_lambda = 0.0
        for index, factor, active in working_set:
            if not active:
                continue
            lam = float(lambdas.at(factor.dual_key)[0])
            if lam > max_lambda:
                worst_index = index
                max_lambda = lam
        return worst_index

    # ------------------------------------------------------------------ #
    # Setup helpers
    # ------------------------------------------------------------------ #
    def key_dims(self):
        dims = dict(self.base_graph.key_dims())
        for k, d in self.inequalities.key_dims().items():
            dims.setdefault(k, d)
        return dims

    def build_working_graph(self, working_set: WorkingSet) -> GaussianFactorGraph:
        """Cost and equalities plus the active inequalities as equalities."""
        return self.base_graph + working_set.active_graph()

    def find_initial_values(self) -> VectorValues:
        return find_feasible_initial_values(
            self.key_dims(), self.base_graph, self.inequalities, tol=self.cfg.feasibility_tol
        )

    def identify_active_constraints(self, values: VectorValues,
                                    duals: Optional[VectorValues] = None) -> WorkingSet:
        """
        Working set of the inequalities tight at ``values``.

        With warm-start ``duals``, a tight inequality whose multiplier is positive is
        left inactive since it would be dropped on the first multiplier check anyway.
        Tight rows are taken in position order and a row linearly dependent on the
        equalities and the rows already taken is skipped, so the working-set
        subproblem stays nonsingular at a degenerate vertex.
        """
        working_set = WorkingSet(self.inequalities)
        dims = self.key_dims()
        offsets, n = {}, 0
        for k, d in dims.items():
            offsets[k] = n
            n += d
        hard = [f for f in self.base_graph if f.constrained]
        rank = self._rank(hard, offsets, n)
        for index, factor, _ in working_set:
            if factor.empty():
                continue
            if abs(factor.violation(values)) > self.cfg.active_tol:
                continue
            if duals is not None and factor.dual_key in duals and duals[factor.dual_key][0] > 0:
                continue
            new_rank = self._rank(hard + [factor], offsets, n)
            if new_rank == rank:
                logging.debug(f"[ActiveSet] tight inequality {index} is dependent, left inactive")
                continue
            hard.append(factor)
            rank = new_rank
            working_set.activate(index)
        return working_set

    @staticmethod
    def _rank(factors, offsets, n) -> int:
        if not factors:
            return 0
        M, _ = _assemble(factors, offsets, n)
        return int(np.linalg.matrix_rank(M.toarray()))

    def _check_working_set(self, values: VectorValues, working_set: WorkingSet) -> None:
        for index, factor, active in working_set:
            if not active or factor.empty():
                continue
            v = factor.violation(values)
            if abs(v) > self.cfg.active_tol:
                raise InfeasibleStartError(
                    f"active inequality {index} is not tight at the initial point (residual {v:.3e})"
                )

    def _complete_values(self, values: VectorValues) -> VectorValues:
        out = values.copy()
        for k, d in self.key_dims().items():
            if k not in out:
                logging.debug(f"[ActiveSet] no initial value for key {k!r}, using zeros")
                out.insert(k, np.zeros(d))
        return out

    def _check_feasible_start(self, values: VectorValues) -> None:
        for factor in self.base_graph:
            if not factor.constrained or factor.empty():
                continue
            r = float(np.max(np.abs(factor.error_vector(values)), initial=0.0))
            if r > self.cfg.feasibility_tol:
                raise InfeasibleStartError(
                    f"initial point violates equality {factor.dual_key!r} by {r:.3e}"
                )
        for index, factor in enumerate(self.inequalities):
            if factor.empty():
                continue
            v = factor.violation(values)
            if v > self.cfg.feasibility_tol:
                raise InfeasibleStartError(
                    f"initial point violates inequality {index} by {v:.3e}"
                )

    # ------------------------------------------------------------------ #
    # Driver
    # ------------------------------------------------------------------ #
    def iterate(self, state: ActiveSetState) -> ActiveSetState:
        """One outer iteration; ``state`` is not modified."""
        x = state.values
        iterations = state.iterations + 1

        # 1) equality-constrained subproblem over the current working set
        try:
            solution = self.linear_solver.solve(self.build_working_graph(state.working_set))
        except SingularSystemError as e:
            logging.warning(f"[ActiveSet] working-set subproblem singular: {e}")
            return state._replace(iterations=iterations, status=SolverStatus.INFEASIBLE)

        # keys absent from the working graph keep their value
        target = x.copy()
        target.update({k: v for k, v in solution.items() if k in target})
        p = target - x
        if p.norm() <= self.cfg.step_tol:
            p = x.zero_like()

        # 2) ratio test
        alpha, blocking_index = self.compute_step_size(state.working_set, x, p, 1.0)
        if blocking_index is not None:
            working_set = state.working_set.copy()
            working_set.activate(blocking_index)
            logging.debug(f"[ActiveSet] it={iterations}: activate {blocking_index} at alpha={alpha:.3e}")
            return state._replace(
                values=x + max(alpha, 0.0) * p,
                working_set=working_set,
                iterations=iterations,
                n_activations=state.n_activations + 1,
            )

        # 3) full step to the subproblem solution, then check multipliers
        x = target
        try:
            duals = self.linear_solver.solve(self.build_dual_graph(state.working_set, x))
        except SingularSystemError as e:
            logging.warning(f"[ActiveSet] dual system singular: {e}")
            return state._replace(values=x, iterations=iterations, status=SolverStatus.DEGENERATE)

        leaving_index = self.identify_leaving_constraint(state.working_set, duals)
        if leaving_index is None:
            logging.debug(f"[ActiveSet] it={iterations}: optimal")
            return state._replace(values=x, duals=duals, iterations=iterations,
                                  status=SolverStatus.OPTIMAL)

        working_set = state.working_set.copy()
        working_set.deactivate(leaving_index)
        logging.debug(f"[ActiveSet] it={iterations}: deactivate {leaving_index}")
        return state._replace(
            values=x,
            duals=duals,
            working_set=working_set,
            iterations=iterations,
            n_deactivations=state.n_deactivations + 1,
        )

    def optimize(self, initial_values: Optional[VectorValues] = None,
                 working_set: Optional[Union[WorkingSet, Sequence[bool]]] = None,
                 duals: Optional[VectorValues] = None) -> ActiveSetResult:
        """
        Solve the QP from ``initial_values`` (or a phase-I point when omitted).

        Parameters
        ----------
        initial_values : VectorValues, optional
            Feasible starting point; keys missing from it start at zero.
        working_set : WorkingSet or sequence of bool, optional
            Initial activity flags. Identified from the starting point when omitted.
        duals : VectorValues, optional
            Warm-start multipliers used only to identify the initial working set.

        Raises
        ------
        QPInfeasibleError
            No feasible starting point exists (phase I).
        InfeasibleStartError
            ``initial_values`` violates a constraint, or ``working_set`` flags an
            inequality that is not tight there.
        """
        if initial_values is None:
            initial_values = self.find_initial_values()
        values = self._complete_values(initial_values)
        self._check_feasible_start(values)

        if working_set is None:
            working_set = self.identify_active_constraints(values, duals)
        elif isinstance(working_set, WorkingSet):
            if working_set.inequalities is not self.inequalities:
                working_set = WorkingSet(self.inequalities, working_set.flags)
            else:
                working_set = working_set.copy()
        else:
            working_set = WorkingSet(self.inequalities, working_set)
        self._check_working_set(values, working_set)

        state = ActiveSetState(values=values, duals=VectorValues(), working_set=working_set)
        while not state.converged:
            if state.iterations >= self.cfg.max_iterations:
                logging.warning(f"[ActiveSet] iteration limit {self.cfg.max_iterations} reached")
                state = state._replace(status=SolverStatus.ITERATION_LIMIT)
                break
            state = self.iterate(state)
            if self.cfg.verbose:
                logging.info(
                    f"[ActiveSet] it={state.iterations} active={state.working_set.number_of_active()} "
                    f"status={state.status.value}"
                )

        logging.debug(
            f"[ActiveSet] finished: status={state.status.value}, iterations={state.iterations}, "
            f"activations={state.n_activations}, deactivations={state.n_deactivations}"
        )
        return ActiveSetResult(
            values=state.values,
            duals=state.duals,
            working_set=state.working_set,
            status=state.status,
            iterations=state.iterations,
            n_activations=state.n_activations,
            n_deactivations=state.n_deactivations,
        )
