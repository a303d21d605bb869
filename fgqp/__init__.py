from importlib.metadata import PackageNotFoundError, version

# Re-export the public API at the package root
from .active_set import ActiveSetResult, ActiveSetSolver, ActiveSetState
from .blocks.aux import (
    ActiveSetConfig,
    DegenerateDualError,
    FactorGraphQPError,
    InfeasibleStartError,
    IterationLimitExceeded,
    QPInfeasibleError,
    SingularSystemError,
    SolverStatus,
    StructuralError,
)
from .blocks.elimination import GaussianSolver
from .blocks.index import VariableIndex
from .blocks.working_set import WorkingSet
from .linear import (
    EqualityFactorGraph,
    GaussianFactorGraph,
    InequalityFactorGraph,
    JacobianFactor,
    LinearEquality,
    LinearInequality,
    VectorValues,
)
from .qp import QP, QPSolver, solve_qp

try:
    __version__ = version("fgqp")
except PackageNotFoundError:  # during dev / editable installs
    __version__ = "0.0.0"

# Public surface
__all__ = [
    "ActiveSetConfig",
    "ActiveSetResult",
    "ActiveSetSolver",
    "ActiveSetState",
    "DegenerateDualError",
    "EqualityFactorGraph",
    "FactorGraphQPError",
    "GaussianFactorGraph",
    "GaussianSolver",
    "InequalityFactorGraph",
    "InfeasibleStartError",
    "IterationLimitExceeded",
    "JacobianFactor",
    "LinearEquality",
    "LinearInequality",
    "QP",
    "QPInfeasibleError",
    "QPSolver",
    "SingularSystemError",
    "SolverStatus",
    "StructuralError",
    "VariableIndex",
    "VectorValues",
    "WorkingSet",
    "solve_qp",
    "__version__",
]
