"""
edge_orchestrator/control_plane/metrics.py
──────────────────────────────────────────
Post-run evaluation: where services landed and how full everything is.

evaluate() reads final device/link counters and the placement; it never
mutates them. format_report() renders the console summary the CLI prints.

Reported figures
────────────────
  edge_count / cloud_count / unplaced_count
  success_rate_pct   = 100 × placed / total  (0.0 with no services)
  cloud_penalty      = cloud_count × cloud penalty used by the LP
  device utilisation = usage / capacity per resource, in %
  link utilisation   = used_bandwidth / capacity, in %
"""

from __future__ import annotations

from typing import Dict, List

from pydantic import BaseModel, Field

from edge_orchestrator.shared.models import (
    CLOUD_PENALTY,
    RESOURCE_ORDER,
    Device,
    Link,
    PlacementResult,
)


class DeviceUtilisation(BaseModel):
    device_id: str
    is_cloud: bool
    storage_pct: float
    compute_pct: float
    uplink_pct: float
    downlink_pct: float


class LinkUtilisation(BaseModel):
    link_id: str
    endpoint_a: str
    endpoint_b: str
    used: float
    capacity: float
    utilisation_pct: float


class MetricsReport(BaseModel):
    edge_count: int = Field(0, ge=0)
    cloud_count: int = Field(0, ge=0)
    unplaced_count: int = Field(0, ge=0)
    success_rate_pct: float = Field(0.0, ge=0.0, le=100.0)
    cloud_penalty: float = Field(0.0, ge=0.0)
    devices: List[DeviceUtilisation] = Field(default_factory=list)
    links: List[LinkUtilisation] = Field(default_factory=list)


def evaluate(
    devices: List[Device],
    links: List[Link],
    placement: PlacementResult,
    cloud_penalty: float = CLOUD_PENALTY,
) -> MetricsReport:
    """Summarise one finished run. Pure read of its inputs."""
    by_id: Dict[str, Device] = {d.device_id: d for d in devices}

    edge = cloud = unplaced = 0
    for _, device_id in placement.items():
        if device_id is None:
            unplaced += 1
        elif by_id[device_id].is_cloud:
            cloud += 1
        else:
            edge += 1

    total = len(placement)
    success = 100.0 * (edge + cloud) / total if total else 0.0

    device_rows = []
    for d in devices:
        pct = [d.utilisation_pct(r) for r in RESOURCE_ORDER]
        device_rows.append(DeviceUtilisation(
            device_id=d.device_id,
            is_cloud=d.is_cloud,
            storage_pct=pct[0],
            compute_pct=pct[1],
            uplink_pct=pct[2],
            downlink_pct=pct[3],
        ))

    link_rows = [
        LinkUtilisation(
            link_id=l.link_id,
            endpoint_a=l.endpoint_a,
            endpoint_b=l.endpoint_b,
            used=l.used_bandwidth,
            capacity=l.capacity,
            utilisation_pct=100.0 * l.used_bandwidth / l.capacity if l.capacity else 0.0,
        )
        for l in links
    ]

    return MetricsReport(
        edge_count=edge,
        cloud_count=cloud,
        unplaced_count=unplaced,
        success_rate_pct=success,
        cloud_penalty=cloud * cloud_penalty,
        devices=device_rows,
        links=link_rows,
    )


def format_report(report: MetricsReport) -> str:
    lines = [
        "=== Evaluation Metrics ===",
        f"Services placed on Edge: {report.edge_count}",
        f"Services placed on Cloud: {report.cloud_count}",
        f"Services not placed: {report.unplaced_count}",
        "",
        "Resource utilisation per device:",
    ]
    for d in report.devices:
        lines.append(
            f"{d.device_id}: Storage {d.storage_pct:.1f}%, Compute {d.compute_pct:.1f}%, "
            f"Uplink {d.uplink_pct:.1f}%, Downlink {d.downlink_pct:.1f}%"
        )
    lines += ["", "Link utilisation:"]
    for l in report.links:
        lines.append(
            f"{l.link_id} ({l.endpoint_a}-{l.endpoint_b}): "
            f"used {l.used:.2f} / cap {l.capacity:.2f} ({l.utilisation_pct:.1f}%)"
        )
    lines += [
        "",
        f"Total cloud penalty: {report.cloud_penalty:.1f}",
        f"Service placement success rate: {report.success_rate_pct:.1f}%",
    ]
    return "\n".join(lines)
