"""
Linear factor-graph primitives consumed by the active-set solver.

A QP over a factor graph is described by three collections of linear factors:

    cost           Σ_i ‖A_i x - b_i‖²          (soft rows, `JacobianFactor`)
    equalities     A_j x = b_j                 (hard rows, `LinearEquality`)
    inequalities   a_k x ≤ b_k, one row each   (`LinearInequality`)

Every factor stores one dense block per key it touches. Keys are arbitrary hashable
identifiers; the dimension of a key is the column count of its blocks and must agree
across all factors of a problem.

`VectorValues` is the assignment Key → 1-D vector used for primal points, search
directions, and Lagrange multipliers (indexed by dual keys).

Notes
-----
- Factors are immutable after construction. In particular an inequality does NOT
  carry an activity flag; activity lives in `fgqp.blocks.working_set.WorkingSet`.
- Hard rows (`constrained=True`) are enforced exactly by the linear solver; soft rows
  are least-squares terms.
"""

from __future__ import annotations

from typing import Dict, Hashable, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np

from .blocks.aux import StructuralError

Key = Hashable
Terms = Union[Mapping[Key, np.ndarray], Iterable[Tuple[Key, np.ndarray]]]


def _as_vector(value) -> np.ndarray:
    return np.atleast_1d(np.asarray(value, dtype=float)).ravel().copy()


# =============================================================================
# VectorValues
# =============================================================================
class VectorValues:
    """Mapping Key → vector with the few vector-space operations the solver needs."""

    def __init__(self, values: Optional[Mapping[Key, np.ndarray]] = None):
        self._values: Dict[Key, np.ndarray] = {}
        if values is not None:
            for key, value in dict(values).items():
                self._values[key] = _as_vector(value)

    # ------------------------------ mapping ------------------------------
    def __getitem__(self, key: Key) -> np.ndarray:
        return self._values[key]

    def __contains__(self, key: Key) -> bool:
        return key in self._values

    def __iter__(self) -> Iterator[Key]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self) -> str:
        body = ", ".join(f"{k!r}: {v.tolist()}" for k, v in self._values.items())
        return f"VectorValues({{{body}}})"

    def keys(self):
        return self._values.keys()

    def items(self):
        return self._values.items()

    def at(self, key: Key) -> np.ndarray:
        """Like ``self[key]`` but raises `StructuralError` for a missing key."""
        try:
            return self._values[key]
        except KeyError:
            raise StructuralError(f"no value for key {key!r}") from None

    def get(self, key: Key, default=None):
        return self._values.get(key, default)

    def insert(self, key: Key, value) -> None:
        if key in self._values:
            raise StructuralError(f"key {key!r} already present")
        self._values[key] = _as_vector(value)

    def update(self, other: Mapping[Key, np.ndarray]) -> None:
        for key, value in other.items():
            self._values[key] = _as_vector(value)

    def dims(self) -> Dict[Key, int]:
        return {k: v.size for k, v in self._values.items()}

    # ------------------------------ algebra ------------------------------
    def _check_same_structure(self, other: "VectorValues") -> None:
        if self.dims() != other.dims():
            raise StructuralError(
                f"VectorValues structure mismatch: {self.dims()} vs {other.dims()}"
            )

    def __add__(self, other: "VectorValues") -> "VectorValues":
        self._check_same_structure(other)
        return VectorValues({k: v + other._values[k] for k, v in self._values.items()})

    def __sub__(self, other: "VectorValues") -> "VectorValues":
        self._check_same_structure(other)
        return VectorValues({k: v - other._values[k] for k, v in self._values.items()})

    def __mul__(self, alpha: float) -> "VectorValues":
        return VectorValues({k: float(alpha) * v for k, v in self._values.items()})

    __rmul__ = __mul__

    def __neg__(self) -> "VectorValues":
        return self * -1.0

    def dot(self, other: "VectorValues") -> float:
        self._check_same_structure(other)
        return float(sum(np.dot(v, other._values[k]) for k, v in self._values.items()))

    def norm(self) -> float:
        return float(np.sqrt(sum(np.dot(v, v) for v in self._values.values())))

    def equals(self, other: "VectorValues", tol: float = 1e-9) -> bool:
        if self.dims() != other.dims():
            return False
        return all(np.allclose(v, other._values[k], rtol=0.0, atol=tol) for k, v in self._values.items())

    def zero_like(self) -> "VectorValues":
        return VectorValues({k: np.zeros_like(v) for k, v in self._values.items()})

    def copy(self) -> "VectorValues":
        return VectorValues(self._values)

    # --------------------------- dense packing ---------------------------
    def vector(self, keys: Optional[Sequence[Key]] = None) -> np.ndarray:
        keys = list(self._values) if keys is None else keys
        if not keys:
            return np.zeros(0)
        return np.concatenate([self.at(k) for k in keys])

    @staticmethod
    def from_vector(keys: Sequence[Key], dims: Sequence[int], vec: np.ndarray) -> "VectorValues":
        vec = np.asarray(vec, dtype=float).ravel()
        if int(np.sum(dims)) != vec.size:
            raise StructuralError(f"vector of size {vec.size} does not match dims {list(dims)}")
        out, pos = VectorValues(), 0
        for key, d in zip(keys, dims):
            out._values[key] = vec[pos:pos + d].copy()
            pos += d
        return out

    @staticmethod
    def zero(dims: Mapping[Key, int]) -> "VectorValues":
        return VectorValues({k: np.zeros(d) for k, d in dims.items()})


# =============================================================================
# Factors
# =============================================================================
class JacobianFactor:
    """
    Linear factor ``Σ_k A_k x_k - b`` over an ordered set of keys.

    Parameters
    ----------
    terms : mapping or iterable of (key, A)
        One block per key; all blocks must have the same number of rows. 1-D blocks
        are read as a single row.
    b : array-like, optional
        Right-hand side (defaults to zeros).
    constrained : bool
        When True the rows are hard constraints for the linear solver.
    """

    constrained: bool = False

    def __init__(self, terms: Terms = (), b=None, constrained: Optional[bool] = None):
        items = list(terms.items()) if isinstance(terms, Mapping) else list(terms)
        keys: List[Key] = []
        blocks: List[np.ndarray] = []
        rows: Optional[int] = None
        for key, A in items:
            if key in keys:
                raise StructuralError(f"key {key!r} appears twice in one factor")
            A = np.asarray(A, dtype=float)
            if A.ndim == 1:
                A = A.reshape(1, -1)
            if A.ndim != 2:
                raise StructuralError(f"block for key {key!r} must be 2-D, got shape {A.shape}")
            if rows is None:
                rows = A.shape[0]
            elif A.shape[0] != rows:
                raise StructuralError(
                    f"block for key {key!r} has {A.shape[0]} rows, expected {rows}"
                )
            keys.append(key)
            blocks.append(A.copy())

        if b is None:
            b = np.zeros(rows or 0)
        b = _as_vector(b)
        if rows is not None and b.size != rows:
            raise StructuralError(f"b has {b.size} entries, expected {rows}")

        self._keys: Tuple[Key, ...] = tuple(keys)
        self._blocks: Tuple[np.ndarray, ...] = tuple(blocks)
        self._b = b
        if constrained is not None:
            self.constrained = bool(constrained)

    def __repr__(self) -> str:
        kind = "hard" if self.constrained else "soft"
        return f"{type(self).__name__}(keys={list(self._keys)}, rows={self.rows}, {kind})"

    # ------------------------------ access ------------------------------
    def keys(self) -> Tuple[Key, ...]:
        return self._keys

    @property
    def rows(self) -> int:
        return self._b.size

    @property
    def b(self) -> np.ndarray:
        return self._b.copy()

    def empty(self) -> bool:
        return len(self._keys) == 0

    def find(self, key: Key) -> int:
        try:
            return self._keys.index(key)
        except ValueError:
            raise StructuralError(f"key {key!r} not involved in {self!r}") from None

    def get_A(self, key: Key) -> np.ndarray:
        return self._blocks[self.find(key)].copy()

    def dims(self) -> Dict[Key, int]:
        return {k: A.shape[1] for k, A in zip(self._keys, self._blocks)}

    def blocks(self) -> Iterator[Tuple[Key, np.ndarray]]:
        return iter(zip(self._keys, self._blocks))

    # ----------------------------- evaluation -----------------------------
    def _product(self, values: VectorValues) -> np.ndarray:
        out = np.zeros(self.rows)
        for key, A in zip(self._keys, self._blocks):
            x = values.at(key)
            if x.size != A.shape[1]:
                raise StructuralError(
                    f"value for key {key!r} has size {x.size}, factor expects {A.shape[1]}"
                )
            out += A @ x
        return out

    def error_vector(self, values: VectorValues) -> np.ndarray:
        """Residual ``A x - b``."""
        return self._product(values) - self._b

    def error(self, values: VectorValues) -> float:
        r = self.error_vector(values)
        return 0.5 * float(r @ r)

    def gradient(self, key: Key, values: VectorValues) -> np.ndarray:
        """Gradient of ``½‖A x - b‖²`` with respect to ``key``: ``A_kᵀ (A x - b)``."""
        return self._blocks[self.find(key)].T @ self.error_vector(values)


class LinearEquality(JacobianFactor):
    """Hard constraint ``A x = b`` with its Lagrange-multiplier key."""

    constrained = True

    def __init__(self, terms: Terms, b, dual_key: Key):
        super().__init__(terms, b)
        self.dual_key = dual_key

    def __repr__(self) -> str:
        return f"LinearEquality(keys={list(self.keys())}, rows={self.rows}, dual_key={self.dual_key!r})"


class LinearInequality(JacobianFactor):
    """Single-row constraint ``a x ≤ b`` with its Lagrange-multiplier key."""

    constrained = True

    def __init__(self, terms: Terms, b, dual_key: Key):
        super().__init__(terms, b)
        if self.rows != 1:
            raise StructuralError(f"an inequality must have exactly one row, got {self.rows}")
        self.dual_key = dual_key

    def __repr__(self) -> str:
        return f"LinearInequality(keys={list(self.keys())}, b={self.bound}, dual_key={self.dual_key!r})"

    @property
    def bound(self) -> float:
        return float(self._b[0])

    def dot_product_row(self, values: VectorValues) -> float:
        """``a · x`` for the single row."""
        return float(self._product(values)[0])

    def violation(self, values: VectorValues) -> float:
        """``a · x - b``; positive means the constraint is violated."""
        return self.dot_product_row(values) - self.bound


# =============================================================================
# Graphs
# =============================================================================
class GaussianFactorGraph:
    """Ordered collection of linear factors; positions are stable indices."""

    factor_type = JacobianFactor

    def __init__(self, factors: Iterable[JacobianFactor] = ()):
        self._factors: List[JacobianFactor] = []
        for f in factors:
            self.push_back(f)

    def push_back(self, factor: JacobianFactor) -> None:
        if not isinstance(factor, self.factor_type):
            raise StructuralError(
                f"{type(self).__name__} only holds {self.factor_type.__name__}, got {type(factor).__name__}"
            )
        self._factors.append(factor)

    def __getitem__(self, index: int) -> JacobianFactor:
        return self._factors[index]

    def at(self, index: int) -> JacobianFactor:
        return self._factors[index]

    def __iter__(self) -> Iterator[JacobianFactor]:
        return iter(self._factors)

    def __len__(self) -> int:
        return len(self._factors)

    def __add__(self, other: "GaussianFactorGraph") -> "GaussianFactorGraph":
        return GaussianFactorGraph(list(self._factors) + list(other))

    def __repr__(self) -> str:
        return f"{type(self).__name__}({len(self._factors)} factors)"

    def keys(self) -> List[Key]:
        """Keys in first-encounter order."""
        seen: Dict[Key, None] = {}
        for f in self._factors:
            for k in f.keys():
                seen.setdefault(k, None)
        return list(seen)

    def key_dims(self) -> Dict[Key, int]:
        dims: Dict[Key, int] = {}
        for f in self._factors:
            for k, d in f.dims().items():
                if dims.setdefault(k, d) != d:
                    raise StructuralError(f"key {k!r} used with dimensions {dims[k]} and {d}")
        return dims

    def error(self, values: VectorValues) -> float:
        return float(sum(f.error(values) for f in self._factors))


class EqualityFactorGraph(GaussianFactorGraph):
    factor_type = LinearEquality


class InequalityFactorGraph(GaussianFactorGraph):
    factor_type = LinearInequality

    def violations(self, values: VectorValues) -> np.ndarray:
        return np.array([f.violation(values) for f in self], dtype=float)
