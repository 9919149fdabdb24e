"""
placement_core/routing.py
─────────────────────────
Bandwidth reservation for communication demands between placed services.

How routing works
─────────────────
Demands are handled strictly in list order. For each one:

  1. Either endpoint unassigned      → the whole pass fails immediately.
  2. Both endpoints on one device    → nothing to reserve.
  3. Shortest-latency path exists and every link on it has residual
     bandwidth ≥ demand              → reserve the full bandwidth on every
                                        link, in path order.
  4. Otherwise try reassignment:
       a. move the SOURCE service to another device, candidates ordered by
          descending LP probability from its fractional row;
       b. if no source move works, the same for the DESTINATION service.
     Services pinned by an earlier routed demand are not moved. A
     candidate is tried only if the service fits on it right now. The
     move is kept only if the new path can be reserved; otherwise the
     placement entry is reverted and the next candidate is tried.
  5. Nothing worked                  → the pass fails; later demands are
                                        not attempted.

Bandwidth is all-or-nothing: a demand never holds a partial reservation.

Path reservation is transactional
─────────────────────────────────
reserve_path() pre-checks every link, then reserves one by one. If a link
refuses after earlier links in the same path succeeded, the earlier ones
are freed before False is returned. Under the single-threaded pipeline the
pre-check makes that branch unreachable; it exists so the reservation
stays correct if link state is ever shared.

Reassignment and device usage
─────────────────────────────
A kept reassignment releases the service's resources on the old device and
commits them on the new one, so device counters keep matching the
placement and the usage ≤ capacity invariant holds after routing.

A service that is an endpoint of a demand already routed in this pass is
never moved, so every reservation lies on the path between the current
devices of its two endpoints.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Set

import numpy as np
from numpy.typing import NDArray

from edge_orchestrator.shared.models import (
    CommDemand,
    Device,
    Link,
    PlacementResult,
    ServiceModule,
)
from edge_orchestrator.shared.topology import Topology

logger = logging.getLogger(__name__)


def _service_model(services_by_id: Dict[str, ServiceModule],
                   service_id: str) -> ServiceModule:
    try:
        return services_by_id[service_id]
    except KeyError:
        raise ValueError(
            f"No service model for {service_id!r}; reassignment needs one "
            f"for every demand endpoint"
        ) from None


@dataclass
class Reservation:
    """One routed demand and the links it holds bandwidth on ([] if co-located)."""

    demand: CommDemand
    links: List[Link]

    @property
    def link_ids(self) -> List[str]:
        return [link.link_id for link in self.links]


class RoutingManager:
    """
    Reserves link bandwidth for every demand, reassigning services if needed.

    Usage:
        rm = RoutingManager(topology)
        ok = rm.route_all(placement, demands, devices, probabilities, services)

    After route_all():
        rm.reservations   → Reservation per routed demand, in order.
        rm.failed_demand  → the demand that stopped the pass (None on success).
        rm.reassignments  → (service_id, old_device, new_device) per kept move.
    """

    def __init__(self, topology: Topology, reassignment_enabled: bool = True) -> None:
        self._topology = topology
        self._reassignment_enabled = reassignment_enabled
        self.reservations: List[Reservation] = []
        self.failed_demand: Optional[CommDemand] = None
        self.reassignments: List[tuple] = []
        self._pinned: Set[str] = set()

    # ── Path reservation ──────────────────────────────────────────────────────

    @staticmethod
    def can_reserve_path(path: List[Link], bandwidth: float) -> bool:
        return all(link.can_reserve(bandwidth) for link in path)

    @staticmethod
    def reserve_path(path: List[Link], bandwidth: float) -> bool:
        """
        Reserve `bandwidth` on every link of `path`, or on none of them.

        Returns:
            True if every link accepted. False if any refused, in which case
            the links reserved earlier in this call have been freed again.
        """
        reserved: List[Link] = []
        for link in path:
            if not link.reserve(bandwidth):
                logger.warning(
                    "routing: link %s refused %.3f after pre-check; "
                    "rolling back %d link(s)",
                    link.link_id, bandwidth, len(reserved),
                )
                for done in reversed(reserved):
                    done.free(bandwidth)
                return False
            reserved.append(link)
        return True

    def _try_route(self, src_device: str, dst_device: str,
                   demand: CommDemand) -> Optional[List[Link]]:
        """Shortest path + reservation. Returns the reserved path or None."""
        path = self._topology.shortest_path(src_device, dst_device)
        if path is None:
            return None
        if not self.can_reserve_path(path, demand.bandwidth):
            return None
        if not self.reserve_path(path, demand.bandwidth):
            return None
        return path

    # ── Reassignment ──────────────────────────────────────────────────────────

    @staticmethod
    def _candidates_by_probability(
        devices: List[Device],
        row: Optional[NDArray[np.float64]],
    ) -> List[Device]:
        """Devices sorted by descending LP probability; stable on ties."""
        if row is None or len(row) != len(devices):
            return list(devices)
        order = np.argsort(-np.asarray(row, dtype=np.float64), kind="stable")
        return [devices[int(i)] for i in order]

    def _try_reassign(
        self,
        moving: ServiceModule,
        anchor_device: str,
        moving_is_source: bool,
        demand: CommDemand,
        placement: PlacementResult,
        devices: List[Device],
        devices_by_id: Dict[str, Device],
        probabilities: Dict[str, NDArray[np.float64]],
    ) -> Optional[List[Link]]:
        """
        Move `moving` to the best-ranked device from which the demand routes.

        anchor_device is where the other endpoint stays. On success the
        placement and device usage reflect the move and the path is reserved.
        """
        if moving.service_id in self._pinned:
            logger.debug(
                "routing: %s already carries a routed demand; not moving it",
                moving.service_id,
            )
            return None

        current = placement.device_of(moving.service_id)
        row = probabilities.get(moving.service_id)

        for candidate in self._candidates_by_probability(devices, row):
            if candidate.device_id == current:
                continue
            if not candidate.can_host(moving):
                continue

            placement.assign(moving.service_id, candidate.device_id)
            if moving_is_source:
                path = self._try_route(candidate.device_id, anchor_device, demand)
            else:
                path = self._try_route(anchor_device, candidate.device_id, demand)

            if path is not None:
                if current is not None:
                    devices_by_id[current].release(moving)
                candidate.commit(moving)
                self.reassignments.append(
                    (moving.service_id, current, candidate.device_id)
                )
                logger.warning(
                    "routing: reassigned %s from %s to %s to route %s→%s",
                    moving.service_id, current, candidate.device_id,
                    demand.source_service, demand.dest_service,
                )
                return path

            placement.assign(moving.service_id, current)
        return None

    # ── Public API ────────────────────────────────────────────────────────────

    def route_all(
        self,
        placement: PlacementResult,
        demands: List[CommDemand],
        devices: List[Device],
        probabilities: Dict[str, NDArray[np.float64]],
        services: List[ServiceModule],
    ) -> bool:
        """
        Route every demand in order. Fail-fast on the first unroutable one.

        Args:
            placement:     Committed placement; may be amended by reassignment.
            demands:       Demands in the order they must be served.
            devices:       All devices (candidate order for reassignment ties).
            probabilities: service_id → LP row over `devices`, used as-is
                           (not renormalised) to rank reassignment candidates.
            services:      Service models for every demand endpoint, used to
                           check node fit when reassigning.

        Returns:
            True if every demand holds its full bandwidth; False otherwise.
            Reservations made for earlier demands are kept on failure.

        Raises:
            ValueError: if reassignment is needed for a service missing
                        from `services`.
        """
        self.reservations = []
        self.failed_demand = None
        self.reassignments = []
        self._pinned = set()

        services_by_id = {s.service_id: s for s in services}
        devices_by_id = {d.device_id: d for d in devices}

        for demand in demands:
            src_dev = placement.device_of(demand.source_service)
            dst_dev = placement.device_of(demand.dest_service)

            if src_dev is None or dst_dev is None:
                logger.warning(
                    "routing: demand %s→%s has an unassigned endpoint",
                    demand.source_service, demand.dest_service,
                )
                self.failed_demand = demand
                return False

            if src_dev == dst_dev:
                self.reservations.append(Reservation(demand, []))
                self._pinned.update((demand.source_service, demand.dest_service))
                continue

            path = self._try_route(src_dev, dst_dev, demand)

            if path is None and self._reassignment_enabled:
                path = self._try_reassign(
                    _service_model(services_by_id, demand.source_service),
                    dst_dev, True, demand, placement,
                    devices, devices_by_id, probabilities,
                )
                if path is None:
                    path = self._try_reassign(
                        _service_model(services_by_id, demand.dest_service),
                        placement.device_of(demand.source_service), False,
                        demand, placement, devices, devices_by_id, probabilities,
                    )

            if path is None:
                logger.warning(
                    "routing: could not route %s→%s (%.3f) even after reassignment",
                    demand.source_service, demand.dest_service, demand.bandwidth,
                )
                self.failed_demand = demand
                return False

            logger.debug(
                "routing: %s→%s reserved %.3f on %s",
                demand.source_service, demand.dest_service, demand.bandwidth,
                [link.link_id for link in path],
            )
            self.reservations.append(Reservation(demand, path))
            self._pinned.update((demand.source_service, demand.dest_service))

        return True
