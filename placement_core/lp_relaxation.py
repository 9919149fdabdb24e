"""
placement_core/lp_relaxation.py
───────────────────────────────
The LP relaxation of the 0/1 service-to-device assignment problem.

What is being relaxed?
──────────────────────
The real decision is binary: service s either runs on device b or it does
not. Solving that integer program exactly is NP-hard. The relaxation lets
each x[s][b] take any value in [0, 1]; the result reads as "how much of
service s the optimiser would like on device b", and the rounding engine
later treats each row as a probability distribution.

Formulation
───────────
  Variables : x[s][b] ∈ [0, 1], flattened row-major to x[s * n_devices + b].

  Objective : minimise Σ x[s][b] · cost(s, b)
              cost(s, b) = storage_req(s) / max(1, storage_cap(b))
                         + compute_req(s) / max(1, compute_cap(b))
                         + cloud_penalty            (CLOUD devices only)

  Assignment: Σ_b x[s][b] = 1                              one row per service
  Capacity  : Σ_s x[s][b] · req_r(s) ≤ remaining_r(b)      one row per (r, b)
              remaining_r(b) = max(0, capacity_r(b) − usage_r(b))

Matrix layout
─────────────
Both constraint blocks are built with np.kron so no Python loop touches the
(services × devices)-wide rows:

  A_eq = kron(I_S, 1_D)        shape (S, S·D)
  A_ub = kron(req_r, I_D)      shape (D, S·D) per resource, stacked → (4D, S·D)

Output
──────
An (S, D) float64 matrix, clipped into [0, 1]. Clipping is numerical
hygiene (HiGHS can return −1e-12 or 1 + 1e-12); it is not a constraint,
so row sums are only 1 up to solver tolerance.
"""

from __future__ import annotations

import logging
from typing import List, Optional

import numpy as np
from numpy.typing import NDArray

from edge_orchestrator.shared.models import (
    CLOUD_PENALTY,
    Device,
    ServiceModule,
)
from placement_core.solver import HighsSolver, LinearProgram, LPSolver

logger = logging.getLogger(__name__)

COST_FLOOR: float = 1.0
"""Lower bound on the capacity denominator in cost(s, b).

Keeps the ratio finite for zero-capacity devices and stops tiny devices
from producing huge per-unit costs that swamp the cloud penalty.
"""

ROW_SUM_TOLERANCE: float = 1e-6
"""How far a feasible row may drift from 1.0 after solving and clipping."""


class LPInfeasibleError(Exception):
    """
    Raised when the relaxation has no feasible point.

    When is this raised?
        • Total demand on some resource exceeds total remaining capacity,
          so Σ_b x[s][b] = 1 cannot hold for every service.
        • Services exist but there are no devices at all.
        • The solver reports an error status (treated the same way: the
          caller must not round an undefined matrix).

    Caller contract:
        PlacementManager catches this and reports an LP_INFEASIBLE outcome.
        It is not retried here; the caller may relax inputs and rerun.

    Attributes:
        n_services: Number of services in the problem.
        n_devices:  Number of candidate devices.
        status:     Solver status string ("infeasible", "unbounded", "error").
    """

    def __init__(
        self,
        n_services: int,
        n_devices: int,
        status: str = "infeasible",
        message: str = "",
    ) -> None:
        self.n_services = n_services
        self.n_devices = n_devices
        self.status = status
        default_msg = (
            f"LP relaxation {status} for {n_services} service(s) on "
            f"{n_devices} device(s). Capacities cannot absorb total demand."
        )
        super().__init__(message or default_msg)


def requirement_matrix(services: List[ServiceModule]) -> NDArray[np.float64]:
    """(S, 4) matrix of service requirements, columns in RESOURCE_ORDER."""
    if not services:
        return np.zeros((0, 4), dtype=np.float64)
    return np.vstack([s.demand.as_array() for s in services])


def capacity_matrix(devices: List[Device]) -> NDArray[np.float64]:
    """(D, 4) matrix of device capacities, columns in RESOURCE_ORDER."""
    if not devices:
        return np.zeros((0, 4), dtype=np.float64)
    return np.vstack([d.capacity.as_array() for d in devices])


def cost_matrix(
    devices: List[Device],
    services: List[ServiceModule],
    cloud_penalty: float = CLOUD_PENALTY,
) -> NDArray[np.float64]:
    """
    (S, D) matrix of per-assignment costs.

    storage and compute are the only dimensions in the objective; uplink
    and downlink enter through the capacity constraints alone.
    """
    req = requirement_matrix(services)
    cap = capacity_matrix(devices)
    penalty = np.array(
        [cloud_penalty if d.is_cloud else 0.0 for d in devices],
        dtype=np.float64,
    )
    storage = req[:, 0:1] / np.maximum(COST_FLOOR, cap[:, 0])[None, :]
    compute = req[:, 1:2] / np.maximum(COST_FLOOR, cap[:, 1])[None, :]
    return storage + compute + penalty[None, :]


def build_relaxation(
    devices: List[Device],
    services: List[ServiceModule],
    cloud_penalty: float = CLOUD_PENALTY,
) -> LinearProgram:
    """Assemble the LinearProgram described in the module docstring."""
    n_s, n_d = len(services), len(devices)
    req = requirement_matrix(services)
    remaining = (
        np.vstack([d.remaining() for d in devices])
        if devices else np.zeros((0, 4), dtype=np.float64)
    )

    c = cost_matrix(devices, services, cloud_penalty).ravel()

    A_eq = np.kron(np.eye(n_s), np.ones((1, n_d)))
    b_eq = np.ones(n_s, dtype=np.float64)

    eye_d = np.eye(n_d)
    A_ub = np.vstack([np.kron(req[:, r][None, :], eye_d) for r in range(4)])
    # rows are resource-major: (storage, b0..bD), (compute, b0..bD), ...
    b_ub = remaining.T.ravel()

    return LinearProgram(
        c=c,
        A_ub=A_ub,
        b_ub=b_ub,
        A_eq=A_eq,
        b_eq=b_eq,
        bounds=[(0.0, 1.0)] * (n_s * n_d),
    )


def solve_relaxation(
    devices: List[Device],
    services: List[ServiceModule],
    cloud_penalty: float = CLOUD_PENALTY,
    solver: Optional[LPSolver] = None,
) -> NDArray[np.float64]:
    """
    Solve the relaxation and return the (S, D) fractional matrix.

    Args:
        devices:       Candidate devices; column order of the result.
        services:      Services to place; row order of the result.
        cloud_penalty: Objective penalty for CLOUD devices.
        solver:        Any LPSolver; defaults to HighsSolver.

    Returns:
        float64 array of shape (len(services), len(devices)), every entry
        in [0, 1].

    Raises:
        LPInfeasibleError: if the solver finds no feasible point.
    """
    n_s, n_d = len(services), len(devices)
    if n_s == 0:
        return np.zeros((0, n_d), dtype=np.float64)
    if n_d == 0:
        raise LPInfeasibleError(n_s, 0)

    problem = build_relaxation(devices, services, cloud_penalty)
    solution = (solver or HighsSolver()).solve(problem)

    if not solution.success or solution.x is None:
        raise LPInfeasibleError(
            n_s, n_d,
            status=solution.status,
            message=(
                f"LP relaxation {solution.status} for {n_s} service(s) on "
                f"{n_d} device(s): {solution.message}"
            ),
        )

    x = np.clip(solution.x.reshape(n_s, n_d), 0.0, 1.0)
    logger.info(
        "LP relaxation solved: %d services × %d devices, objective=%.4f",
        n_s, n_d, solution.objective,
    )
    return x
