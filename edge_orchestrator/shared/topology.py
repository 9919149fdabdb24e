"""
edge_orchestrator/shared/topology.py
────────────────────────────────────
The network graph: devices as nodes, links as undirected latency-weighted edges.

Graph representation
────────────────────
Backed by a networkx MultiGraph keyed by device_id:

  • Node   = device_id (str). The Device object is stored as node attribute
             "device" so callers can get from an ID back to the model.
  • Edge   = one Link. Parallel links between the same pair of devices are
             allowed (MultiGraph); each is stored under key=link_id with
             attributes "latency_ms" and "link".

Shortest paths
──────────────
shortest_path() runs Dijkstra (networkx's binary-heap implementation,
O((V+E) log V)) with link latency as the weight. Between parallel links the
lowest-latency one wins, first-added on ties. networkx breaks heap ties with
an insertion counter and walks adjacency in insertion order, so the same
topology built in the same order always yields the same path.

Return contract:
    src == dst        → []          (no links needed)
    reachable         → [Link, ...] in travel order from src to dst
    unreachable       → None
"""

from __future__ import annotations

from typing import Dict, List, Optional

import networkx as nx

from edge_orchestrator.shared.models import Device, Link


class UnknownDeviceError(ValueError):
    """
    Raised when a link or path query names a device that is not a node.

    Attributes:
        device_id: The ID that failed to resolve.
    """

    def __init__(self, device_id: str, context: str = "") -> None:
        self.device_id = device_id
        msg = f"Device {device_id!r} is not a node in the topology"
        if context:
            msg = f"{msg} ({context})"
        super().__init__(msg)


class Topology:
    """
    Devices and the links between them.

    Usage:
        topo = Topology()
        for d in devices:
            topo.add_node(d)
        for l in links:
            topo.add_link(l)          # endpoints must already be nodes
        path = topo.shortest_path("bs-1", "cloud")
    """

    def __init__(self) -> None:
        self._graph: nx.MultiGraph = nx.MultiGraph()
        self._links: Dict[str, Link] = {}

    # ── Construction ──────────────────────────────────────────────────────────

    def add_node(self, device: Device) -> None:
        """
        Register a device as a node.

        Raises:
            ValueError: if a device with the same ID is already present.
        """
        if device.device_id in self._graph:
            raise ValueError(f"Duplicate device id {device.device_id!r}")
        self._graph.add_node(device.device_id, device=device)

    def add_link(self, link: Link) -> None:
        """
        Register an undirected link.

        Raises:
            UnknownDeviceError: if either endpoint has not been added as a node.
            ValueError:         if a link with the same ID is already present.
        """
        for endpoint in (link.endpoint_a, link.endpoint_b):
            if endpoint not in self._graph:
                raise UnknownDeviceError(endpoint, f"endpoint of link {link.link_id!r}")
        if link.link_id in self._links:
            raise ValueError(f"Duplicate link id {link.link_id!r}")

        self._links[link.link_id] = link
        self._graph.add_edge(
            link.endpoint_a,
            link.endpoint_b,
            key=link.link_id,
            latency_ms=link.latency_ms,
            link=link,
        )

    # ── Queries ───────────────────────────────────────────────────────────────

    @property
    def nodes(self) -> List[Device]:
        return [data["device"] for _, data in self._graph.nodes(data=True)]

    @property
    def links(self) -> List[Link]:
        return list(self._links.values())

    def device(self, device_id: str) -> Device:
        if device_id not in self._graph:
            raise UnknownDeviceError(device_id)
        return self._graph.nodes[device_id]["device"]

    def link(self, link_id: str) -> Link:
        return self._links[link_id]

    def __contains__(self, device_id: object) -> bool:
        return device_id in self._graph

    def shortest_path(self, src: str, dst: str) -> Optional[List[Link]]:
        """
        Minimum total-latency sequence of links from src to dst.

        Args:
            src: Device ID where the traffic originates.
            dst: Device ID where the traffic terminates.

        Returns:
            [] when src == dst, the link sequence when dst is reachable,
            None when it is not.

        Raises:
            UnknownDeviceError: if src or dst is not a node.
        """
        for device_id in (src, dst):
            if device_id not in self._graph:
                raise UnknownDeviceError(device_id, "shortest_path endpoint")
        if src == dst:
            return []

        try:
            hops = nx.dijkstra_path(self._graph, src, dst, weight="latency_ms")
        except nx.NetworkXNoPath:
            return None

        return [self._cheapest_link(u, v) for u, v in zip(hops, hops[1:])]

    def _cheapest_link(self, u: str, v: str) -> Link:
        # min() keeps the first of equal-latency parallel links
        parallel = self._graph[u][v]
        best_key = min(parallel, key=lambda k: parallel[k]["latency_ms"])
        return parallel[best_key]["link"]

    @staticmethod
    def path_latency(path: List[Link]) -> float:
        return sum(link.latency_ms for link in path)

    def __repr__(self) -> str:
        return (
            f"Topology(nodes={self._graph.number_of_nodes()}, "
            f"links={len(self._links)})"
        )
