"""
Sparse direct solver for linear factor graphs.

Given a graph of soft rows (least-squares terms ‖M_s x - r_s‖²) and hard rows
(M_h x = r_h), `GaussianSolver.solve` returns the exact minimiser as `VectorValues`:

    soft + hard   →  KKT system   [ M_sᵀM_s  M_hᵀ ] [x]   [M_sᵀ r_s]
                                  [ M_h      0    ] [ν] = [  r_h   ]

    soft only     →  normal equations   M_sᵀM_s x = M_sᵀ r_s
    hard only     →  normal equations   M_hᵀM_h x = M_hᵀ r_h, followed by a
                     consistency check ‖M_h x - r_h‖ ≤ tol (1 + ‖r_h‖)

Matrices are assembled once per call in COO form and factorised with SuperLU
(`scipy.sparse.linalg.splu`). A system without a unique solution raises
`SingularSystemError`:
  - SuperLU reports an exactly singular factor,
  - a pivot of U falls below ``pivot_tol`` relative to the largest pivot,
  - the solution is not finite,
  - a hard-only system is inconsistent.

Columns are ordered by first appearance of each key in the graph.
"""

from __future__ import annotations

import logging
from typing import Dict, Hashable, List, Tuple

import numpy as np
import scipy.sparse as sp
import scipy.sparse.linalg as spla

from ..linear import GaussianFactorGraph, VectorValues
from .aux import SingularSystemError

Key = Hashable

PIVOT_TOL_DEFAULT = 1e-12
CONSISTENCY_TOL_DEFAULT = 1e-8


# =============================================================================
# Helpers
# =============================================================================
def _ordering(graph: GaussianFactorGraph) -> Tuple[List[Key], List[int], Dict[Key, int]]:
    dims = graph.key_dims()
    keys = graph.keys()
    offsets, pos = {}, 0
    for k in keys:
        offsets[k] = pos
        pos += dims[k]
    return keys, [dims[k] for k in keys], offsets


def _assemble(factors, offsets: Dict[Key, int], n: int) -> Tuple[sp.csc_matrix, np.ndarray]:
    """Stack ``factors`` into one sparse matrix over the global column ordering."""
    rows, cols, vals, rhs = [], [], [], []
    row0 = 0
    for f in factors:
        for key, A in f.blocks():
            r, c = np.nonzero(A)
            rows.append(r + row0)
            cols.append(c + offsets[key])
            vals.append(A[r, c])
        rhs.append(f.b)
        row0 += f.rows
    if row0 == 0:
        return sp.csc_matrix((0, n)), np.zeros(0)
    M = sp.coo_matrix(
        (np.concatenate(vals) if vals else np.zeros(0),
         (np.concatenate(rows) if rows else np.zeros(0, int),
          np.concatenate(cols) if cols else np.zeros(0, int))),
        shape=(row0, n),
    )
    return M.tocsc(), np.concatenate(rhs)


# =============================================================================
# Solver
# =============================================================================
class GaussianSolver:
    """
    Exact solver for graphs of soft and hard linear rows.

    Parameters
    ----------
    pivot_tol : float
        Relative threshold on |diag(U)| below which the system is declared singular.
    consistency_tol : float
        Residual allowed on hard-only systems (scaled by 1 + ‖r‖).
    """

    def __init__(self, pivot_tol: float = PIVOT_TOL_DEFAULT,
                 consistency_tol: float = CONSISTENCY_TOL_DEFAULT):
        self.pivot_tol = float(pivot_tol)
        self.consistency_tol = float(consistency_tol)

    # ------------------------------ internals ------------------------------
    def _factor_and_solve(self, K: sp.spmatrix, rhs: np.ndarray) -> np.ndarray:
        try:
            lu = spla.splu(sp.csc_matrix(K))
        except RuntimeError as e:  # SuperLU: "Factor is exactly singular"
            raise SingularSystemError(f"singular system of size {K.shape[0]}: {e}") from e

        piv = np.abs(lu.U.diagonal())
        scale = float(piv.max()) if piv.size else 0.0
        if piv.size and (scale == 0.0 or float(piv.min()) <= self.pivot_tol * scale):
            raise SingularSystemError(
                f"rank-deficient system of size {K.shape[0]} "
                f"(min pivot {piv.min():.3e}, max pivot {scale:.3e})"
            )

        sol = lu.solve(np.asarray(rhs, dtype=float))
        if not np.all(np.isfinite(sol)):
            raise SingularSystemError("non-finite solution")
        return sol

    # ------------------------------ public ------------------------------
    def solve(self, graph: GaussianFactorGraph) -> VectorValues:
        """Return the exact solution of ``graph`` (see module docstring)."""
        keys, dims, offsets = _ordering(graph)
        n = int(sum(dims))
        if n == 0:
            return VectorValues()

        soft = [f for f in graph if not f.constrained]
        hard = [f for f in graph if f.constrained]
        Ms, rs = _assemble(soft, offsets, n)
        Mh, rh = _assemble(hard, offsets, n)
        ms, mh = Ms.shape[0], Mh.shape[0]

        if ms > 0 and mh > 0:
            H = (Ms.T @ Ms).tocsc()
            K = sp.bmat([[H, Mh.T], [Mh, None]], format="csc")
            rhs = np.concatenate([Ms.T @ rs, rh])
            x = self._factor_and_solve(K, rhs)[:n]
        else:
            M, r = (Ms, rs) if ms > 0 else (Mh, rh)
            x = self._factor_and_solve((M.T @ M).tocsc(), M.T @ r)
            if mh > 0:
                res = float(np.linalg.norm(M @ x - r))
                if res > self.consistency_tol * (1.0 + float(np.linalg.norm(r))):
                    raise SingularSystemError(f"inconsistent hard constraints (residual {res:.3e})")

        logging.debug(f"[GaussianSolver] solved n={n}, soft rows={ms}, hard rows={mh}")
        return VectorValues.from_vector(keys, dims, x)
