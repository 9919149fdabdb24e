"""
edge_orchestrator/control_plane/loader.py
─────────────────────────────────────────
Scenario loading: four CSV files → validated models + topology.

The loader is the only gate for malformed input. Everything downstream
(LP, rounding, routing) assumes referential integrity, so every check that
involves IDs happens here.

File layout (one header row each)
─────────────────────────────────
  base_stations.csv  id, storage, compute, uplink, downlink, is_cloud, cloud_latency
  links.csv          id, from, to, capacity, latency
  services.csv       id, storage, compute, uplink, downlink
  demands.csv        source, destination, bandwidth

What it checks
───────────────
  1. Required columns present in every file.
  2. Per-record schema (pydantic): non-negative numbers, required fields.
  3. Unique device, link and service IDs.
  4. Link endpoints resolve to devices.
  5. Demand endpoints resolve to services.

Any failure raises ScenarioValidationError with a reason naming the file
and the offending record.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Union

import pandas as pd
from pydantic import ValidationError

from edge_orchestrator.shared.models import (
    CommDemand,
    Device,
    DeviceKind,
    Link,
    ResourceVector,
    ServiceModule,
)
from edge_orchestrator.shared.topology import Topology

DEVICES_FILE = "base_stations.csv"
LINKS_FILE = "links.csv"
SERVICES_FILE = "services.csv"
DEMANDS_FILE = "demands.csv"

_DEVICE_COLUMNS = ("id", "storage", "compute", "uplink", "downlink", "is_cloud", "cloud_latency")
_LINK_COLUMNS = ("id", "from", "to", "capacity", "latency")
_SERVICE_COLUMNS = ("id", "storage", "compute", "uplink", "downlink")
_DEMAND_COLUMNS = ("source", "destination", "bandwidth")

_TRUE_STRINGS = {"true", "1", "yes", "y", "t"}


class ScenarioValidationError(Exception):
    """
    Raised when scenario input is malformed.

    Attributes:
        reason: Human-readable explanation of what was rejected.
    """

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(reason)


@dataclass
class Scenario:
    devices: List[Device]
    links: List[Link]
    services: List[ServiceModule]
    demands: List[CommDemand]
    topology: Topology


# ── Frame helpers ────────────────────────────────────────────────────────────

def _read_frame(path: Path, columns: Iterable[str]) -> pd.DataFrame:
    if not path.is_file():
        raise ScenarioValidationError(f"{path.name}: file not found in {path.parent}")
    frame = pd.read_csv(path, skipinitialspace=True, dtype=str)
    frame.columns = [str(c).strip() for c in frame.columns]
    missing = [c for c in columns if c not in frame.columns]
    if missing:
        raise ScenarioValidationError(f"{path.name}: missing column(s) {missing}")
    return frame


def _check_unique(ids: List[str], what: str, filename: str) -> None:
    seen = set()
    for item in ids:
        if item in seen:
            raise ScenarioValidationError(f"{filename}: duplicate {what} id {item!r}")
        seen.add(item)


def _parse_bool(value: object) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in _TRUE_STRINGS


# ── Record builders ──────────────────────────────────────────────────────────

def build_devices(frame: pd.DataFrame) -> List[Device]:
    devices: List[Device] = []
    for record in frame.to_dict(orient="records"):
        is_cloud = _parse_bool(record["is_cloud"])
        latency = record.get("cloud_latency")
        try:
            devices.append(Device(
                device_id=str(record["id"]).strip(),
                kind=DeviceKind.CLOUD if is_cloud else DeviceKind.EDGE,
                capacity=ResourceVector(
                    storage=record["storage"],
                    compute=record["compute"],
                    uplink=record["uplink"],
                    downlink=record["downlink"],
                ),
                extra_latency_ms=float(latency) if is_cloud and pd.notna(latency) else 0.0,
            ))
        except (ValidationError, ValueError, TypeError) as exc:
            raise ScenarioValidationError(
                f"{DEVICES_FILE}: invalid device {record.get('id')!r}: {exc}"
            ) from exc
    _check_unique([d.device_id for d in devices], "device", DEVICES_FILE)
    return devices


def build_services(frame: pd.DataFrame) -> List[ServiceModule]:
    services: List[ServiceModule] = []
    for record in frame.to_dict(orient="records"):
        try:
            services.append(ServiceModule(
                service_id=str(record["id"]).strip(),
                demand=ResourceVector(
                    storage=record["storage"],
                    compute=record["compute"],
                    uplink=record["uplink"],
                    downlink=record["downlink"],
                ),
            ))
        except (ValidationError, ValueError, TypeError) as exc:
            raise ScenarioValidationError(
                f"{SERVICES_FILE}: invalid service {record.get('id')!r}: {exc}"
            ) from exc
    _check_unique([s.service_id for s in services], "service", SERVICES_FILE)
    return services


def build_links(frame: pd.DataFrame, device_ids: set) -> List[Link]:
    links: List[Link] = []
    for record in frame.to_dict(orient="records"):
        link_id = str(record["id"]).strip()
        a, b = str(record["from"]).strip(), str(record["to"]).strip()
        for endpoint in (a, b):
            if endpoint not in device_ids:
                raise ScenarioValidationError(
                    f"{LINKS_FILE}: link {link_id!r} references unknown device {endpoint!r}"
                )
        try:
            links.append(Link(
                link_id=link_id,
                endpoint_a=a,
                endpoint_b=b,
                capacity=record["capacity"],
                latency_ms=record["latency"],
            ))
        except (ValidationError, ValueError, TypeError) as exc:
            raise ScenarioValidationError(
                f"{LINKS_FILE}: invalid link {link_id!r}: {exc}"
            ) from exc
    _check_unique([l.link_id for l in links], "link", LINKS_FILE)
    return links


def build_demands(frame: pd.DataFrame, service_ids: set) -> List[CommDemand]:
    demands: List[CommDemand] = []
    for record in frame.to_dict(orient="records"):
        src, dst = str(record["source"]).strip(), str(record["destination"]).strip()
        for endpoint in (src, dst):
            if endpoint not in service_ids:
                raise ScenarioValidationError(
                    f"{DEMANDS_FILE}: demand {src!r}→{dst!r} references "
                    f"unknown service {endpoint!r}"
                )
        try:
            demands.append(CommDemand(
                source_service=src,
                dest_service=dst,
                bandwidth=record["bandwidth"],
            ))
        except (ValidationError, ValueError, TypeError) as exc:
            raise ScenarioValidationError(
                f"{DEMANDS_FILE}: invalid demand {src!r}→{dst!r}: {exc}"
            ) from exc
    return demands


def build_topology(devices: List[Device], links: List[Link]) -> Topology:
    topology = Topology()
    for device in devices:
        topology.add_node(device)
    for link in links:
        topology.add_link(link)
    return topology


# ── Public API ───────────────────────────────────────────────────────────────

def load_scenario(directory: Union[str, Path]) -> Scenario:
    """
    Read and validate all four CSV files from `directory`.

    Raises:
        ScenarioValidationError: on any missing file, column, bad value or
                                 dangling reference.
    """
    root = Path(directory)
    devices = build_devices(_read_frame(root / DEVICES_FILE, _DEVICE_COLUMNS))
    services = build_services(_read_frame(root / SERVICES_FILE, _SERVICE_COLUMNS))
    links = build_links(
        _read_frame(root / LINKS_FILE, _LINK_COLUMNS),
        {d.device_id for d in devices},
    )
    demands = build_demands(
        _read_frame(root / DEMANDS_FILE, _DEMAND_COLUMNS),
        {s.service_id for s in services},
    )
    return Scenario(
        devices=devices,
        links=links,
        services=services,
        demands=demands,
        topology=build_topology(devices, links),
    )
