"""
Phase-I search for a feasible starting point.

The active-set driver needs a point satisfying every equality and inequality. We solve
the linear program

    maximize_{x, t}   t
    subject to        A_eq x = b_eq
                      a_k x + t ≤ b_k      for every inequality k
                      t ≤ MAX_SLACK

with HiGHS. The optimum pushes x away from the inequality boundaries where the feasible
set has an interior, so the driver starts with an empty working set whenever it can.
An optimal ``t < -tol`` proves the QP infeasible.
"""

from __future__ import annotations

import logging
from typing import Dict, Hashable

import numpy as np
import scipy.sparse as sp
from scipy.optimize import linprog

from ..linear import GaussianFactorGraph, InequalityFactorGraph, VectorValues
from .aux import FactorGraphQPError, QPInfeasibleError
from .elimination import _assemble

Key = Hashable

MAX_SLACK_DEFAULT = 1.0


def find_feasible_initial_values(
    key_dims: Dict[Key, int],
    equalities: GaussianFactorGraph,
    inequalities: InequalityFactorGraph,
    *,
    tol: float = 1e-7,
    max_slack: float = MAX_SLACK_DEFAULT,
) -> VectorValues:
    """
    Return a point satisfying ``equalities`` and ``inequalities``.

    Parameters
    ----------
    key_dims : dict
        Every key the returned values must cover, with its dimension. Keys not touched
        by any constraint are set to zero.
    equalities : GaussianFactorGraph
        Hard rows ``A x = b`` (soft factors in the graph are ignored).
    inequalities : InequalityFactorGraph
        Rows ``a x ≤ b``.
    tol : float
        Largest violation accepted before declaring infeasibility.

    Raises
    ------
    QPInfeasibleError
        If no point satisfies all constraints.
    FactorGraphQPError
        If HiGHS stops for any other reason (iteration limit, numerical trouble).
    """
    keys = list(key_dims)
    dims = [key_dims[k] for k in keys]
    offsets, pos = {}, 0
    for k, d in zip(keys, dims):
        offsets[k] = pos
        pos += d
    n = pos

    hard = [f for f in equalities if f.constrained]
    A_eq, b_eq = _assemble(hard, offsets, n)
    A_in, b_in = _assemble(list(inequalities), offsets, n)
    if A_eq.shape[0] == 0 and A_in.shape[0] == 0:
        return VectorValues.zero(key_dims)

    # decision vector [x; t]
    c = np.zeros(n + 1)
    c[-1] = -1.0
    bounds = [(None, None)] * n + [(None, float(max_slack))]

    A_ub = b_ub = None
    if A_in.shape[0] > 0:
        A_ub = sp.hstack([A_in, sp.csc_matrix(np.ones((A_in.shape[0], 1)))], format="csc")
        b_ub = b_in
    A_eq_t = b_eq_t = None
    if A_eq.shape[0] > 0:
        A_eq_t = sp.hstack([A_eq, sp.csc_matrix((A_eq.shape[0], 1))], format="csc")
        b_eq_t = b_eq

    res = linprog(c, A_ub=A_ub, b_ub=b_ub, A_eq=A_eq_t, b_eq=b_eq_t, bounds=bounds, method="highs")
    if res.status == 2:
        raise QPInfeasibleError(f"equality constraints are inconsistent: {res.message}")
    if not res.success or res.x is None:
        raise FactorGraphQPError(f"phase-I linear program failed: {res.message}")

    slack = float(res.x[-1])
    if A_in.shape[0] > 0 and slack < -tol:
        raise QPInfeasibleError(f"inequalities cannot be satisfied (best slack {slack:.3e})")

    logging.debug(f"[Feasibility] phase-I slack t={slack:.3e} over {n} variables")
    return VectorValues.from_vector(keys, dims, res.x[:n])
