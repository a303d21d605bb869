# aux.py
# Shared configuration, status codes and exceptions for the active-set blocks.

from __future__ import annotations

# =========================
# Standard library
# =========================
from dataclasses import dataclass
from enum import Enum


# ======================================
# Enums
# ======================================
class SolverStatus(Enum):
    """Terminal (and running) states of the active-set driver."""

    ITERATING = "iterating"
    OPTIMAL = "optimal"
    INFEASIBLE = "infeasible"
    DEGENERATE = "degenerate"
    ITERATION_LIMIT = "iteration_limit"


class FactorKind(Enum):
    """Which graph of a QP a dual key belongs to."""

    EQUALITY = "equality"
    INEQUALITY = "inequality"


# ======================================
# Exceptions
# ======================================
class FactorGraphQPError(Exception):
    """Base class for every error raised by fgqp."""


class StructuralError(FactorGraphQPError):
    """Malformed problem: dual-key collision, missing key, bad block shapes."""


class SingularSystemError(FactorGraphQPError):
    """A linear system has no unique (or no consistent) solution."""


class QPInfeasibleError(FactorGraphQPError):
    """No point satisfies the equalities and inequalities together."""


class InfeasibleStartError(QPInfeasibleError):
    """A caller-supplied starting point or working set is inconsistent with the constraints."""


class DegenerateDualError(FactorGraphQPError):
    """The multiplier system for the current working set is singular."""


class IterationLimitExceeded(FactorGraphQPError):
    """The outer loop hit ``max_iterations`` before reaching optimality."""


# ======================================
# Global configuration
# ======================================
@dataclass
class ActiveSetConfig:
    """
    Configuration for the active-set driver and its linear solves.

    Notes
    -----
    • ``max_iterations`` is the only guard against cycling on degenerate
      problems; hitting it is reported, never treated as infeasibility.
    • Tolerances are absolute.
    """

    # ---------------- Core toggles ----------------
    max_iterations: int = 1000
    verbose: bool = False

    # ---------------- Tolerances ----------------
    step_tol: float = 1e-7          # |p| below this counts as a zero step
    active_tol: float = 1e-7        # |a·x - b| below this is tight at start
    feasibility_tol: float = 1e-7   # allowed a·x - b > 0 at start
    consistency_tol: float = 1e-8   # residual allowed on hard-only systems

    def __post_init__(self):
        if int(self.max_iterations) < 1:
            raise ValueError(f"max_iterations must be positive, got {self.max_iterations}")
        self.max_iterations = int(self.max_iterations)
        for name in ("step_tol", "active_tol", "feasibility_tol", "consistency_tol"):
            value = float(getattr(self, name))
            if value < 0.0:
                raise ValueError(f"{name} must be non-negative, got {value}")
            setattr(self, name, value)
