"""
edge_orchestrator/control_plane/placement_service.py
─────────────────────────────────────────────────────
PlacementManager: the end-to-end placement pipeline for one scenario.

Pipeline
────────
  1. solve_relaxation()         → fractional (S, D) matrix
  2. RandomizedRounding.run()   → committed PlacementResult, device usage set
  3. allocated_fraction          → each service records the LP probability
                                   of the device it landed on
  4. RoutingManager.route_all() → link reservations, possible reassignments

Error handling contract
────────────────────────
  LPInfeasibleError:  caught here. The outcome has status LP_INFEASIBLE,
                      no fractional matrix, and every service unassigned.
                      Devices and links are left exactly as they were.

  Deploy inconsistency: reported by the rounding engine; surfaced in
                      outcome.inconsistencies. Not fatal.

  Routing failure:    outcome.status = ROUTING_FAILED, outcome.routed =
                      False, outcome.failed_demand names the demand that
                      stopped the pass. Placement and earlier reservations
                      are kept so the caller can report partial results.

Nothing in run() raises for a scheduling outcome; only programmer errors
(mismatched inputs) propagate.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

import numpy as np
from numpy.typing import NDArray

from edge_orchestrator.shared.models import (
    CommDemand,
    Device,
    PlacementConfig,
    PlacementResult,
    ServiceModule,
)
from edge_orchestrator.shared.topology import Topology
from placement_core import (
    LPInfeasibleError,
    LPSolver,
    RandomizedRounding,
    RoutingManager,
    solve_relaxation,
)

logger = logging.getLogger(__name__)


class PlacementStatus(str, Enum):
    PLACED = "placed"
    ROUTING_FAILED = "routing-failed"
    LP_INFEASIBLE = "lp-infeasible"


@dataclass
class PlacementOutcome:
    """
    Everything a reporting layer needs from one run.

    fractional is None only when the LP was infeasible.
    """

    status: PlacementStatus
    placement: PlacementResult
    fractional: Optional[NDArray[np.float64]] = None
    routed: bool = False
    inconsistencies: List[str] = field(default_factory=list)
    failed_demand: Optional[CommDemand] = None
    reassignments: List[tuple] = field(default_factory=list)
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.status == PlacementStatus.PLACED


class PlacementManager:
    """
    Wires LP → rounding → routing for one set of inputs.

    Usage:
        manager = PlacementManager(devices, services, demands, topology,
                                   PlacementConfig(seed=7))
        outcome = manager.run()
    """

    def __init__(
        self,
        devices: List[Device],
        services: List[ServiceModule],
        demands: List[CommDemand],
        topology: Topology,
        config: Optional[PlacementConfig] = None,
        solver: Optional[LPSolver] = None,
    ) -> None:
        self.devices = devices
        self.services = services
        self.demands = demands
        self.topology = topology
        self.config = config or PlacementConfig()
        self._solver = solver

    def _make_rng(self) -> np.random.Generator:
        return np.random.default_rng(self.config.seed)

    def probability_map(
        self, fractional: NDArray[np.float64]
    ) -> Dict[str, NDArray[np.float64]]:
        """service_id → copy of its LP row (not renormalised)."""
        return {
            svc.service_id: fractional[i].copy()
            for i, svc in enumerate(self.services)
        }

    def _record_allocated_fractions(
        self, fractional: NDArray[np.float64], placement: PlacementResult
    ) -> None:
        column = {d.device_id: j for j, d in enumerate(self.devices)}
        for i, svc in enumerate(self.services):
            device_id = placement.device_of(svc.service_id)
            if device_id is None:
                svc.set_allocated_fraction(0.0)
            else:
                svc.set_allocated_fraction(fractional[i, column[device_id]])

    def run(self, rng: Optional[np.random.Generator] = None) -> PlacementOutcome:
        """
        Execute the full pipeline.

        Args:
            rng: Optional generator. When None, one is built from
                 config.seed (OS entropy if the seed is None too).

        Returns:
            PlacementOutcome. Never raises for infeasible or unroutable input.
        """
        rng = rng if rng is not None else self._make_rng()

        # ── Step 1: LP relaxation ────────────────────────────────────────────
        try:
            fractional = solve_relaxation(
                self.devices,
                self.services,
                cloud_penalty=self.config.cloud_penalty,
                solver=self._solver,
            )
        except LPInfeasibleError as exc:
            logger.error("placement aborted: %s", exc)
            placement = PlacementResult()
            for svc in self.services:
                placement.assign(svc.service_id, None)
            return PlacementOutcome(
                status=PlacementStatus.LP_INFEASIBLE,
                placement=placement,
                message=str(exc),
            )

        for svc, row in zip(self.services, fractional):
            logger.debug("LP row %s: %s", svc.service_id, np.round(row, 4).tolist())

        # ── Step 2: randomized rounding + commit ─────────────────────────────
        rounding = RandomizedRounding(
            fractional,
            self.devices,
            self.services,
            rng=rng,
            max_trials=self.config.max_trials,
        )
        placement = rounding.run()
        self._record_allocated_fractions(fractional, placement)

        # ── Step 3: routing ──────────────────────────────────────────────────
        router = RoutingManager(
            self.topology,
            reassignment_enabled=self.config.reassignment_enabled,
        )
        routed = router.route_all(
            placement,
            self.demands,
            self.devices,
            self.probability_map(fractional),
            services=self.services,
        )
        if router.reassignments:
            self._record_allocated_fractions(fractional, placement)

        if routed:
            logger.info("placement complete: %d demand(s) routed", len(self.demands))
            status = PlacementStatus.PLACED
            message = ""
        else:
            failed = router.failed_demand
            message = (
                f"failed to route demand {failed.source_service}→{failed.dest_service}"
                if failed is not None else "failed to route all demands"
            )
            logger.warning("placement incomplete: %s", message)
            status = PlacementStatus.ROUTING_FAILED

        return PlacementOutcome(
            status=status,
            placement=placement,
            fractional=fractional,
            routed=routed,
            inconsistencies=list(rounding.inconsistencies),
            failed_demand=router.failed_demand,
            reassignments=list(router.reassignments),
            message=message,
        )
