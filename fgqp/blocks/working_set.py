"""
Working set of inequality constraints.

The working set is the full inequality graph plus a parallel boolean array of activity
flags indexed by constraint position. The factors themselves stay immutable, so a
working set can be copied cheaply to restart or branch a solve.
"""

from __future__ import annotations

import logging
from typing import Iterable, Iterator, List, Optional, Tuple

import numpy as np

from ..linear import GaussianFactorGraph, InequalityFactorGraph, LinearInequality


class WorkingSet:
    """
    Inequality constraints with per-position activity flags.

    Parameters
    ----------
    inequalities : InequalityFactorGraph
        Shared, read-only; never copied.
    active : iterable of bool, optional
        Initial flags (defaults to all inactive).

    Attributes
    ----------
    inequalities : InequalityFactorGraph
        The constraint arena indexed by position.
    """

    def __init__(self, inequalities: InequalityFactorGraph, active: Optional[Iterable[bool]] = None):
        self.inequalities = inequalities
        n = len(inequalities)
        if active is None:
            self._active_flags = np.zeros(n, dtype=bool)
        else:
            flags = np.asarray(list(active), dtype=bool)
            if flags.shape != (n,):
                raise ValueError(f"expected {n} activity flags, got {flags.size}")
            self._active_flags = flags.copy()

    # ------------------------------ access ------------------------------
    def __len__(self) -> int:
        return self._active_flags.size

    def __getitem__(self, index: int) -> LinearInequality:
        return self.inequalities[index]

    def __iter__(self) -> Iterator[Tuple[int, LinearInequality, bool]]:
        for i, factor in enumerate(self.inequalities):
            yield i, factor, bool(self._active_flags[i])

    def __repr__(self) -> str:
        return f"WorkingSet(active={self.active_indices()}, size={len(self)})"

    def __eq__(self, other) -> bool:
        if not isinstance(other, WorkingSet):
            return NotImplemented
        return self.inequalities is other.inequalities and np.array_equal(
            self._active_flags, other._active_flags
        )

    def _check_bounds(self, index: int) -> None:
        if not 0 <= index < self._active_flags.size:
            raise IndexError(f"constraint index {index} out of range for {len(self)} inequalities")

    def is_active(self, index: int) -> bool:
        self._check_bounds(index)
        return bool(self._active_flags[index])

    @property
    def flags(self) -> np.ndarray:
        """Read-only copy of the activity mask."""
        out = self._active_flags.copy()
        out.setflags(write=False)
        return out

    def active_indices(self) -> List[int]:
        return [int(i) for i in np.flatnonzero(self._active_flags)]

    def inactive_indices(self) -> List[int]:
        return [int(i) for i in np.flatnonzero(~self._active_flags)]

    def number_of_active(self) -> int:
        return int(np.count_nonzero(self._active_flags))

    # ----------------------------- mutation -----------------------------
    def activate(self, index: int) -> None:
        self._check_bounds(index)
        if self._active_flags[index]:
            logging.debug(f"[WorkingSet] constraint {index} already active")
        self._active_flags[index] = True

    def deactivate(self, index: int) -> None:
        self._check_bounds(index)
        if not self._active_flags[index]:
            logging.debug(f"[WorkingSet] constraint {index} already inactive")
        self._active_flags[index] = False

    def copy(self) -> "WorkingSet":
        return WorkingSet(self.inequalities, self._active_flags)

    # ------------------------------ graphs ------------------------------
    def active_graph(self) -> GaussianFactorGraph:
        """Active inequalities as a graph of hard rows (``a x = b``)."""
        return GaussianFactorGraph(self.inequalities[i] for i in self.active_indices())
