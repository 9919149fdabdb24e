"""
placement_core/solver.py
────────────────────────
A narrow linear-programming interface and its default implementation.

The relaxation in lp_relaxation.py only needs one capability:

    (objective c, equality rows A_eq·x = b_eq, inequality rows A_ub·x ≤ b_ub,
     variable bounds)  →  solution vector x  |  "infeasible"

LinearProgram bundles the inputs, LPSolution the outputs, and LPSolver is
the seam: anything with a `solve(problem) -> LPSolution` method can be
plugged into solve_relaxation(). HighsSolver wraps scipy's HiGHS backend,
which is dual simplex / interior point and far more than adequate for the
services × devices sizes this engine handles.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Tuple

import numpy as np
from numpy.typing import NDArray
from scipy.optimize import linprog


@dataclass
class LinearProgram:
    """
    minimise  c·x
    s.t.      A_ub·x ≤ b_ub
              A_eq·x = b_eq
              lo_i ≤ x_i ≤ hi_i

    Any constraint block may be None. `bounds` is one (lo, hi) pair per
    variable; None in either slot means unbounded on that side.
    """

    c: NDArray[np.float64]
    A_ub: Optional[NDArray[np.float64]] = None
    b_ub: Optional[NDArray[np.float64]] = None
    A_eq: Optional[NDArray[np.float64]] = None
    b_eq: Optional[NDArray[np.float64]] = None
    bounds: List[Tuple[Optional[float], Optional[float]]] = field(default_factory=list)

    @property
    def n_vars(self) -> int:
        return int(self.c.shape[0])


@dataclass
class LPSolution:
    """
    success  → True when x is an optimal feasible point.
    x        → Solution vector (None when success is False).
    status   → Short machine-readable status: "optimal", "infeasible",
               "unbounded" or "error".
    message  → Solver's own description, for logs.
    """

    success: bool
    x: Optional[NDArray[np.float64]]
    objective: float = float("nan")
    status: str = "optimal"
    message: str = ""


class LPSolver:
    """Interface: turn a LinearProgram into an LPSolution. Never raises on infeasibility."""

    def solve(self, problem: LinearProgram) -> LPSolution:  # pragma: no cover - interface
        raise NotImplementedError


# scipy.optimize.linprog status codes
_STATUS_NAMES = {
    0: "optimal",
    1: "error",        # iteration limit
    2: "infeasible",
    3: "unbounded",
    4: "error",        # numerical difficulties
}


class HighsSolver(LPSolver):
    """LPSolver backed by scipy.optimize.linprog(method="highs")."""

    def __init__(self, method: str = "highs") -> None:
        self.method = method

    def solve(self, problem: LinearProgram) -> LPSolution:
        result = linprog(
            problem.c,
            A_ub=problem.A_ub,
            b_ub=problem.b_ub,
            A_eq=problem.A_eq,
            b_eq=problem.b_eq,
            bounds=problem.bounds or None,
            method=self.method,
        )
        status = _STATUS_NAMES.get(result.status, "error")
        if not result.success:
            return LPSolution(
                success=False,
                x=None,
                status=status,
                message=str(result.message),
            )
        return LPSolution(
            success=True,
            x=np.asarray(result.x, dtype=np.float64),
            objective=float(result.fun),
            status=status,
            message=str(result.message),
        )
