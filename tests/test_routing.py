"""
tests/test_routing.py
─────────────────────
RoutingManager tests: reservation, rollback, fail-fast and reassignment.

Reading guide
─────────────
Group 1 — Path reservation
    All-or-nothing reserve_path(), rollback when a link refuses mid-path.

Group 2 — route_all() basics
    Multi-hop reservation, co-located demands, unassigned endpoints,
    fail-fast ordering.

Group 3 — Reassignment
    A service moves when its current device cannot reach the peer;
    device usage follows the move; nothing moves when disabled or full.
"""

from __future__ import annotations

from typing import Dict, List

import numpy as np
import pytest

from edge_orchestrator.shared.models import (
    CommDemand,
    Device,
    Link,
    PlacementResult,
    ResourceVector,
    ServiceModule,
)
from edge_orchestrator.shared.topology import Topology
from placement_core.routing import RoutingManager


# ─────────────────────────────────────────────────────────────────────────────
# HELPERS
# ─────────────────────────────────────────────────────────────────────────────

def _make_device(device_id: str, cap: float = 10.0) -> Device:
    return Device(
        device_id=device_id,
        capacity=ResourceVector(storage=cap, compute=cap, uplink=cap, downlink=cap),
    )


def _make_service(service_id: str, size: float = 5.0) -> ServiceModule:
    return ServiceModule(
        service_id=service_id,
        demand=ResourceVector(storage=size, compute=size, uplink=1.0, downlink=1.0),
    )


def _make_link(link_id: str, a: str, b: str, capacity: float,
               latency: float = 1.0) -> Link:
    return Link(link_id=link_id, endpoint_a=a, endpoint_b=b,
                capacity=capacity, latency_ms=latency)


def _topology(devices: List[Device], links: List[Link]) -> Topology:
    topo = Topology()
    for d in devices:
        topo.add_node(d)
    for l in links:
        topo.add_link(l)
    return topo


def _place(placement: PlacementResult, devices: Dict[str, Device],
           service: ServiceModule, device_id: str) -> None:
    """Assign and commit, as the rounding engine would have."""
    placement.assign(service.service_id, device_id)
    assert devices[device_id].commit(service)


class _RefusingLink(Link):
    """Passes the pre-check but refuses the actual reservation."""

    def reserve(self, bandwidth: float) -> bool:
        return False


# ─────────────────────────────────────────────────────────────────────────────
# GROUP 1 — Path reservation
# ─────────────────────────────────────────────────────────────────────────────

class TestReservePath:

    def test_reserves_every_link(self):
        path = [_make_link("l1", "a", "b", 10.0), _make_link("l2", "b", "c", 10.0)]
        assert RoutingManager.reserve_path(path, 4.0)
        assert [l.used_bandwidth for l in path] == [4.0, 4.0]

    def test_rollback_when_a_later_link_refuses(self):
        good = _make_link("l1", "a", "b", 10.0)
        bad = _RefusingLink(link_id="l2", endpoint_a="b", endpoint_b="c",
                            capacity=10.0, latency_ms=1.0)
        assert RoutingManager.can_reserve_path([good, bad], 3.0)
        assert not RoutingManager.reserve_path([good, bad], 3.0)
        assert good.used_bandwidth == 0.0
        assert bad.used_bandwidth == 0.0

    def test_can_reserve_path_checks_bottleneck(self):
        path = [_make_link("l1", "a", "b", 10.0), _make_link("l2", "b", "c", 2.0)]
        assert RoutingManager.can_reserve_path(path, 2.0)
        assert not RoutingManager.can_reserve_path(path, 2.5)


# ─────────────────────────────────────────────────────────────────────────────
# GROUP 2 — route_all() basics
# ─────────────────────────────────────────────────────────────────────────────

class TestRouteAll:

    def _chain(self):
        devices = [_make_device("A"), _make_device("B"), _make_device("C")]
        links = [_make_link("ab", "A", "B", 10.0), _make_link("bc", "B", "C", 10.0)]
        return devices, links, _topology(devices, links)

    def test_multi_hop_demand_reserves_every_link(self):
        devices, links, topo = self._chain()
        by_id = {d.device_id: d for d in devices}
        s1, s2 = _make_service("s1"), _make_service("s2")
        placement = PlacementResult()
        _place(placement, by_id, s1, "A")
        _place(placement, by_id, s2, "C")

        rm = RoutingManager(topo)
        demand = CommDemand(source_service="s1", dest_service="s2", bandwidth=4.0)
        assert rm.route_all(placement, [demand], devices, {}, [s1, s2])
        assert [l.used_bandwidth for l in links] == [4.0, 4.0]
        assert rm.reservations[0].link_ids == ["ab", "bc"]
        assert rm.failed_demand is None

    def test_co_located_demand_reserves_nothing(self):
        devices, links, topo = self._chain()
        by_id = {d.device_id: d for d in devices}
        s1, s2 = _make_service("s1"), _make_service("s2")
        placement = PlacementResult()
        _place(placement, by_id, s1, "B")
        _place(placement, by_id, s2, "B")

        rm = RoutingManager(topo)
        demand = CommDemand(source_service="s1", dest_service="s2", bandwidth=50.0)
        assert rm.route_all(placement, [demand], devices, {}, [s1, s2])
        assert rm.reservations[0].links == []
        assert all(l.used_bandwidth == 0.0 for l in links)

    def test_unassigned_endpoint_fails_immediately(self):
        devices, links, topo = self._chain()
        by_id = {d.device_id: d for d in devices}
        s1, s2, s3 = _make_service("s1"), _make_service("s2"), _make_service("s3")
        placement = PlacementResult()
        _place(placement, by_id, s1, "A")
        placement.assign("s2", None)
        _place(placement, by_id, s3, "C")

        demands = [
            CommDemand(source_service="s1", dest_service="s2", bandwidth=1.0),
            CommDemand(source_service="s1", dest_service="s3", bandwidth=1.0),
        ]
        rm = RoutingManager(topo)
        assert not rm.route_all(placement, demands, devices, {}, [s1, s2, s3])
        assert rm.failed_demand is demands[0]
        assert rm.reservations == []
        assert all(l.used_bandwidth == 0.0 for l in links)

    def test_fail_fast_keeps_earlier_reservations(self):
        devices, links, topo = self._chain()
        by_id = {d.device_id: d for d in devices}
        s1, s2 = _make_service("s1"), _make_service("s2")
        placement = PlacementResult()
        _place(placement, by_id, s1, "A")
        _place(placement, by_id, s2, "B")

        demands = [
            CommDemand(source_service="s1", dest_service="s2", bandwidth=6.0),
            CommDemand(source_service="s1", dest_service="s2", bandwidth=6.0),
            CommDemand(source_service="s1", dest_service="s2", bandwidth=1.0),
        ]
        rm = RoutingManager(topo, reassignment_enabled=False)
        assert not rm.route_all(placement, demands, devices, {}, [s1, s2])
        assert rm.failed_demand is demands[1]
        assert len(rm.reservations) == 1
        assert links[0].used_bandwidth == pytest.approx(6.0)

    def test_disconnected_devices_fail(self):
        devices = [_make_device("A", 5.0), _make_device("B", 5.0)]
        by_id = {d.device_id: d for d in devices}
        s1, s2 = _make_service("s1"), _make_service("s2")
        placement = PlacementResult()
        _place(placement, by_id, s1, "A")
        _place(placement, by_id, s2, "B")

        rm = RoutingManager(_topology(devices, []))
        demand = CommDemand(source_service="s1", dest_service="s2", bandwidth=1.0)
        assert not rm.route_all(placement, [demand], devices, {}, [s1, s2])


# ─────────────────────────────────────────────────────────────────────────────
# GROUP 3 — Reassignment
# ─────────────────────────────────────────────────────────────────────────────

class TestReassignment:

    def test_link_too_small_and_no_room_to_move(self):
        """Link capacity 15, demand 20, both devices full → False, link at 0."""
        devices = [_make_device("d1", 5.0), _make_device("d2", 5.0)]
        by_id = {d.device_id: d for d in devices}
        link = _make_link("l12", "d1", "d2", 15.0)
        s1, s2 = _make_service("s1", 5.0), _make_service("s2", 5.0)
        placement = PlacementResult()
        _place(placement, by_id, s1, "d1")
        _place(placement, by_id, s2, "d2")

        rm = RoutingManager(_topology(devices, [link]))
        demand = CommDemand(source_service="s1", dest_service="s2", bandwidth=20.0)
        probs = {"s1": np.array([0.5, 0.5]), "s2": np.array([0.5, 0.5])}
        assert not rm.route_all(placement, [demand], devices, probs, [s1, s2])
        assert link.used_bandwidth == 0.0
        assert rm.reassignments == []
        assert placement.device_of("s1") == "d1"
        assert placement.device_of("s2") == "d2"

    def _triangle(self):
        """A–C is too thin for 10; B–C is wide. A and B are not linked."""
        devices = [_make_device("A"), _make_device("B"), _make_device("C")]
        links = [_make_link("ac", "A", "C", 5.0), _make_link("bc", "B", "C", 20.0)]
        return devices, links, _topology(devices, links)

    def test_source_moves_to_reachable_device(self):
        devices, links, topo = self._triangle()
        by_id = {d.device_id: d for d in devices}
        s1, s2 = _make_service("s1"), _make_service("s2")
        placement = PlacementResult()
        _place(placement, by_id, s1, "A")
        _place(placement, by_id, s2, "C")

        probs = {"s1": np.array([0.5, 0.4, 0.1]), "s2": np.array([0.0, 0.0, 1.0])}
        demand = CommDemand(source_service="s1", dest_service="s2", bandwidth=10.0)
        rm = RoutingManager(topo)
        assert rm.route_all(placement, [demand], devices, probs, [s1, s2])

        assert placement.device_of("s1") == "B"
        assert rm.reassignments == [("s1", "A", "B")]
        assert rm.reservations[0].link_ids == ["bc"]
        assert links[1].used_bandwidth == pytest.approx(10.0)
        assert links[0].used_bandwidth == 0.0
        # device usage follows the service
        assert np.allclose(by_id["A"].usage.as_array(), 0.0)
        assert np.allclose(by_id["B"].usage.as_array(), s1.demand.as_array())

    def test_destination_moves_when_source_cannot(self):
        """s1 on C, s2 on full A. s1 cannot reach A from B; s2 moves to B."""
        devices, links, topo = self._triangle()
        by_id = {d.device_id: d for d in devices}
        s1, s2 = _make_service("s1"), _make_service("s2")
        by_id["A"].capacity.storage = by_id["A"].capacity.compute = 5.0
        placement = PlacementResult()
        _place(placement, by_id, s1, "C")
        _place(placement, by_id, s2, "A")

        probs = {"s1": np.array([0.0, 0.0, 1.0]), "s2": np.array([0.6, 0.4, 0.0])}
        demand = CommDemand(source_service="s1", dest_service="s2", bandwidth=10.0)
        rm = RoutingManager(topo)
        assert rm.route_all(placement, [demand], devices, probs, [s1, s2])

        assert placement.device_of("s1") == "C"
        assert placement.device_of("s2") == "B"
        assert rm.reassignments == [("s2", "A", "B")]
        assert rm.reservations[0].link_ids == ["bc"]
        assert np.allclose(by_id["A"].usage.as_array(), 0.0)

    def test_disabled_reassignment_fails(self):
        devices, links, topo = self._triangle()
        by_id = {d.device_id: d for d in devices}
        s1, s2 = _make_service("s1"), _make_service("s2")
        placement = PlacementResult()
        _place(placement, by_id, s1, "A")
        _place(placement, by_id, s2, "C")

        probs = {"s1": np.array([0.5, 0.4, 0.1])}
        demand = CommDemand(source_service="s1", dest_service="s2", bandwidth=10.0)
        rm = RoutingManager(topo, reassignment_enabled=False)
        assert not rm.route_all(placement, [demand], devices, probs, [s1, s2])
        assert placement.device_of("s1") == "A"
        assert all(l.used_bandwidth == 0.0 for l in links)

    def test_failed_candidate_is_reverted(self):
        """B cannot route either (B–C too thin), so s1 stays on A."""
        devices = [_make_device("A"), _make_device("B"), _make_device("C")]
        links = [_make_link("ac", "A", "C", 5.0), _make_link("bc", "B", "C", 5.0)]
        by_id = {d.device_id: d for d in devices}
        s1, s2 = _make_service("s1"), _make_service("s2")
        placement = PlacementResult()
        _place(placement, by_id, s1, "A")
        _place(placement, by_id, s2, "C")
        # neither endpoint has room for the other, so no co-location
        by_id["A"].capacity.storage = 5.0
        by_id["C"].capacity.storage = 5.0

        probs = {"s1": np.array([0.2, 0.8, 0.0]), "s2": np.array([0.0, 0.0, 1.0])}
        demand = CommDemand(source_service="s1", dest_service="s2", bandwidth=10.0)
        rm = RoutingManager(_topology(devices, links))
        assert not rm.route_all(placement, [demand], devices, probs, [s1, s2])
        assert placement.device_of("s1") == "A"
        assert np.allclose(by_id["B"].usage.as_array(), 0.0)
        assert np.allclose(by_id["A"].usage.as_array(), s1.demand.as_array())

    def test_missing_service_model_raises_when_reassignment_needed(self):
        devices, links, topo = self._triangle()
        by_id = {d.device_id: d for d in devices}
        s1, s2 = _make_service("s1"), _make_service("s2")
        placement = PlacementResult()
        _place(placement, by_id, s1, "A")
        _place(placement, by_id, s2, "C")

        demand = CommDemand(source_service="s1", dest_service="s2", bandwidth=10.0)
        rm = RoutingManager(topo)
        with pytest.raises(ValueError, match="s1"):
            rm.route_all(placement, [demand], devices, {}, [s2])
        assert placement.device_of("s1") == "A"

    def test_service_models_unused_when_path_fits(self):
        devices, links, topo = self._triangle()
        by_id = {d.device_id: d for d in devices}
        s1, s2 = _make_service("s1"), _make_service("s2")
        placement = PlacementResult()
        _place(placement, by_id, s1, "B")
        _place(placement, by_id, s2, "C")

        demand = CommDemand(source_service="s1", dest_service="s2", bandwidth=10.0)
        assert RoutingManager(topo).route_all(placement, [demand], devices, {}, [])

    def test_service_with_routed_demand_is_not_moved(self):
        """s1 already carries s0→s1 on A–B; moving it to C would strand that bandwidth."""
        devices = [_make_device("A", 5.0), _make_device("B", 5.0), _make_device("C")]
        links = [
            _make_link("ab", "A", "B", 20.0),
            _make_link("bc", "B", "C", 5.0),
            _make_link("ac", "A", "C", 20.0),
        ]
        by_id = {d.device_id: d for d in devices}
        s0, s1, s2 = _make_service("s0"), _make_service("s1"), _make_service("s2")
        placement = PlacementResult()
        _place(placement, by_id, s0, "A")
        _place(placement, by_id, s1, "B")
        _place(placement, by_id, s2, "C")

        demands = [
            CommDemand(source_service="s0", dest_service="s1", bandwidth=10.0),
            CommDemand(source_service="s1", dest_service="s2", bandwidth=10.0),
        ]
        probs = {
            "s0": np.array([1.0, 0.0, 0.0]),
            "s1": np.array([0.0, 0.0, 1.0]),
            "s2": np.array([0.5, 0.5, 0.0]),
        }
        rm = RoutingManager(_topology(devices, links))
        assert not rm.route_all(placement, demands, devices, probs, [s0, s1, s2])

        assert rm.failed_demand is demands[1]
        assert rm.reassignments == []
        assert placement.device_of("s1") == "B"
        assert {l.link_id: l.used_bandwidth for l in links} == {
            "ab": 10.0, "bc": 0.0, "ac": 0.0,
        }
        assert np.allclose(by_id["C"].usage.as_array(), s2.demand.as_array())

    def test_unpinned_endpoint_may_still_move(self):
        """s1 is pinned by the first demand, but s2 is free to move next to it."""
        devices = [_make_device("A", 5.0), _make_device("B"), _make_device("C")]
        links = [
            _make_link("ab", "A", "B", 20.0),
            _make_link("bc", "B", "C", 5.0),
        ]
        by_id = {d.device_id: d for d in devices}
        s0, s1, s2 = _make_service("s0"), _make_service("s1"), _make_service("s2")
        placement = PlacementResult()
        _place(placement, by_id, s0, "A")
        _place(placement, by_id, s1, "B")
        _place(placement, by_id, s2, "C")

        demands = [
            CommDemand(source_service="s0", dest_service="s1", bandwidth=10.0),
            CommDemand(source_service="s1", dest_service="s2", bandwidth=10.0),
        ]
        probs = {"s1": np.array([0.0, 0.0, 1.0]), "s2": np.array([0.0, 1.0, 0.0])}
        rm = RoutingManager(_topology(devices, links))
        assert rm.route_all(placement, demands, devices, probs, [s0, s1, s2])
        assert placement.device_of("s1") == "B"
        assert placement.device_of("s2") == "B"
        assert rm.reassignments == [("s2", "C", "B")]
        assert rm.reservations[1].links == []
