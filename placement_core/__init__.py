"""
placement_core — LP-relaxation placement and bandwidth routing engine.

Public API:
    solve_relaxation     — fractional services × devices matrix
    LPInfeasibleError    — raised when the relaxation has no feasible point
    LPSolver, HighsSolver, LinearProgram, LPSolution — solver seam
    RandomizedRounding   — fractional matrix → committed PlacementResult
    RoutingManager       — reserves link bandwidth for demands

Usage:
    from placement_core import solve_relaxation, RandomizedRounding, RoutingManager

    x = solve_relaxation(devices, services)
    placement = RandomizedRounding(x, devices, services, rng=np.random.default_rng(7)).run()
    ok = RoutingManager(topology).route_all(placement, demands, devices, probs, services)
"""

from placement_core.solver import HighsSolver, LinearProgram, LPSolution, LPSolver
from placement_core.lp_relaxation import LPInfeasibleError, solve_relaxation
from placement_core.rounding import RandomizedRounding
from placement_core.routing import Reservation, RoutingManager

__all__ = [
    "HighsSolver",
    "LinearProgram",
    "LPSolution",
    "LPSolver",
    "LPInfeasibleError",
    "solve_relaxation",
    "RandomizedRounding",
    "Reservation",
    "RoutingManager",
]
