"""
edge_orchestrator/shared/models.py
──────────────────────────────────
The single source of truth for every data structure in the placement engine.

Design philosophy
-----------------
Every model answers one question: "What does the engine *need to know*
about this thing in order to place services and route their traffic?"

Records arrive from the scenario loader, are validated once by pydantic
(negative capacities and requirements are rejected at construction), and
then live for exactly one placement run. The only mutable state is the
usage bookkeeping on devices and links:

  Device.usage           → grown by deploy()/reserve_runtime(), shrunk by
                           release(), zeroed by reset_usage().
  Link.used_bandwidth    → grown by reserve(), shrunk by free().

Everything else is read-only after construction.

Reading guide
-------------
Read top-to-bottom. Each model builds on the ones above it.
"""

from __future__ import annotations

from enum import Enum
from typing import Dict, Iterator, List, Optional, Tuple

import numpy as np
from numpy.typing import NDArray
from pydantic import BaseModel, Field


# ─────────────────────────────────────────────────────────────────────────────
# SECTION 1: ENUMERATIONS
# ─────────────────────────────────────────────────────────────────────────────

class DeviceKind(str, Enum):
    """
    Where a compute node lives in the edge/cloud hierarchy.

    EDGE  → Base station or micro data centre close to the users.
            Scarce capacity, no extra latency.
    CLOUD → Remote data centre. Ample capacity, but every request pays
            `extra_latency_ms` on top of the network path, and the LP
            objective adds a fixed penalty to steer services away from it.
    """
    EDGE = "edge"
    CLOUD = "cloud"


class Resource(str, Enum):
    """
    The four node resource dimensions, in array order.

    The integer position of each member (see RESOURCE_ORDER) is the column
    index used by every numpy usage/capacity array in the engine.
    """
    STORAGE = "storage"
    COMPUTE = "compute"
    UPLINK = "uplink"
    DOWNLINK = "downlink"


RESOURCE_ORDER: Tuple[Resource, ...] = (
    Resource.STORAGE,
    Resource.COMPUTE,
    Resource.UPLINK,
    Resource.DOWNLINK,
)


# ─────────────────────────────────────────────────────────────────────────────
# SECTION 2: RESOURCE VECTOR
# Shared shape for capacities, usage counters and service requirements.
# ─────────────────────────────────────────────────────────────────────────────

class ResourceVector(BaseModel):
    """
    Four non-negative amounts, one per resource dimension.

    Used three ways:
        Device.capacity      → what the node owns.
        Device.usage         → what has been committed to placed services.
        ServiceModule.demand → what one service needs.

    Units are whatever the scenario uses (the engine only compares and
    adds them), but must be consistent per dimension across all records.
    """
    storage: float = Field(0.0, ge=0.0, description="Storage units")
    compute: float = Field(0.0, ge=0.0, description="Compute units")
    uplink: float = Field(0.0, ge=0.0, description="Uplink bandwidth units")
    downlink: float = Field(0.0, ge=0.0, description="Downlink bandwidth units")

    def as_array(self) -> NDArray[np.float64]:
        """Return [storage, compute, uplink, downlink] as a float64 array."""
        return np.array(
            [self.storage, self.compute, self.uplink, self.downlink],
            dtype=np.float64,
        )

    def get(self, resource: Resource) -> float:
        return getattr(self, resource.value)


# ─────────────────────────────────────────────────────────────────────────────
# SECTION 3: SERVICES AND DEMANDS
# ─────────────────────────────────────────────────────────────────────────────

class ServiceModule(BaseModel):
    """
    A unit of work to be placed on exactly one device.

    Fields:
        service_id         → Unique name, e.g. "svc-video-analytics".
        demand             → Storage / compute / uplink / downlink needs.
        allocated_fraction → Diagnostic only. After a pipeline run this holds
                             the LP probability of the device the service was
                             committed to (0.0 when unassigned). Clamped to
                             [0, 1] by set_allocated_fraction().
    """
    service_id: str = Field(..., description="Unique service identifier")
    demand: ResourceVector = Field(default_factory=ResourceVector)
    allocated_fraction: float = Field(0.0, ge=0.0, le=1.0)

    def set_allocated_fraction(self, fraction: float) -> None:
        self.allocated_fraction = max(0.0, min(1.0, float(fraction)))


class CommDemand(BaseModel):
    """
    Required bandwidth from one service to another.

    Demands reference services by ID. The loader guarantees both IDs
    resolve; the core does not re-validate them.
    """
    source_service: str = Field(..., description="Sending service ID")
    dest_service: str = Field(..., description="Receiving service ID")
    bandwidth: float = Field(..., ge=0.0, description="Bandwidth to reserve end-to-end")


# ─────────────────────────────────────────────────────────────────────────────
# SECTION 4: DEVICE
# A compute node at the edge or in the cloud.
# ─────────────────────────────────────────────────────────────────────────────

class Device(BaseModel):
    """
    A compute node with four capacities and four usage counters.

    Kind is a tag, not a subclass: every device shares the same capacity and
    usage record, and CLOUD devices additionally carry `extra_latency_ms`.
    Code that cares about the kind checks `device.kind` (or `is_cloud`)
    explicitly.

    Invariant at every committed state:
        0 ≤ usage[r] ≤ capacity[r]  for all four resources r.

    deploy() and reserve_runtime() check capacity before mutating, so a
    refused request leaves the counters untouched.
    """
    device_id: str = Field(..., description="Unique identifier for this device")
    kind: DeviceKind = Field(DeviceKind.EDGE, description="Edge or cloud")
    capacity: ResourceVector = Field(..., description="Total resources owned")
    usage: ResourceVector = Field(
        default_factory=ResourceVector,
        description="Resources committed to placed services",
    )
    extra_latency_ms: float = Field(
        0.0, ge=0.0,
        description="Added access latency. Only meaningful for CLOUD devices."
    )

    # ── Derived properties ───────────────────────────────────────────────────

    @property
    def is_cloud(self) -> bool:
        return self.kind == DeviceKind.CLOUD

    def remaining(self) -> NDArray[np.float64]:
        """Capacity minus usage per dimension, floored at 0."""
        return np.maximum(self.capacity.as_array() - self.usage.as_array(), 0.0)

    def can_host(self, service: ServiceModule) -> bool:
        """
        True if all four of the service's requirements fit on top of the
        current usage.
        """
        return bool(np.all(
            self.usage.as_array() + service.demand.as_array()
            <= self.capacity.as_array()
        ))

    # ── Mutation ─────────────────────────────────────────────────────────────

    def deploy(self, service: ServiceModule) -> bool:
        """
        Claim the service's storage. Returns False (and changes nothing) if
        the storage would overflow.
        """
        needed = self.usage.storage + service.demand.storage
        if needed > self.capacity.storage:
            return False
        self.usage.storage = needed
        return True

    def reserve_runtime(self, service: ServiceModule) -> bool:
        """
        Claim compute, uplink and downlink together.

        All-or-nothing: if any of the three would overflow, none is applied.
        """
        compute = self.usage.compute + service.demand.compute
        uplink = self.usage.uplink + service.demand.uplink
        downlink = self.usage.downlink + service.demand.downlink
        if (
            compute > self.capacity.compute
            or uplink > self.capacity.uplink
            or downlink > self.capacity.downlink
        ):
            return False
        self.usage.compute = compute
        self.usage.uplink = uplink
        self.usage.downlink = downlink
        return True

    def commit(self, service: ServiceModule) -> bool:
        """deploy() + reserve_runtime(), rolling storage back if the second fails."""
        if not self.deploy(service):
            return False
        if not self.reserve_runtime(service):
            self.usage.storage = max(0.0, self.usage.storage - service.demand.storage)
            return False
        return True

    def release(self, service: ServiceModule) -> None:
        """Give back all four of the service's resources. Never goes below 0."""
        self.usage.storage = max(0.0, self.usage.storage - service.demand.storage)
        self.usage.compute = max(0.0, self.usage.compute - service.demand.compute)
        self.usage.uplink = max(0.0, self.usage.uplink - service.demand.uplink)
        self.usage.downlink = max(0.0, self.usage.downlink - service.demand.downlink)

    def reset_usage(self) -> None:
        self.usage = ResourceVector()

    def utilisation_pct(self, resource: Resource) -> float:
        """Usage as a percentage of capacity. 0.0 for a zero-capacity dimension."""
        cap = self.capacity.get(resource)
        if cap == 0:
            return 0.0
        return 100.0 * self.usage.get(resource) / cap


# ─────────────────────────────────────────────────────────────────────────────
# SECTION 5: LINK
# ─────────────────────────────────────────────────────────────────────────────

class Link(BaseModel):
    """
    An undirected, bandwidth- and latency-bearing edge between two devices.

    Invariant: 0 ≤ used_bandwidth ≤ capacity.

    reserve() and free() must be paired by the caller: every successful
    reserve(bw) is eventually matched by free(bw) if the reservation is
    abandoned.
    """
    link_id: str = Field(..., description="Unique link identifier")
    endpoint_a: str = Field(..., description="Device ID of one end")
    endpoint_b: str = Field(..., description="Device ID of the other end")
    capacity: float = Field(..., ge=0.0, description="Total bandwidth")
    latency_ms: float = Field(..., ge=0.0, description="Propagation latency")
    used_bandwidth: float = Field(0.0, ge=0.0)

    def can_reserve(self, bandwidth: float) -> bool:
        return self.used_bandwidth + bandwidth <= self.capacity

    def reserve(self, bandwidth: float) -> bool:
        """Add `bandwidth` to the usage if it fits; otherwise leave usage unchanged."""
        if not self.can_reserve(bandwidth):
            return False
        self.used_bandwidth += bandwidth
        return True

    def free(self, bandwidth: float) -> None:
        self.used_bandwidth = max(0.0, self.used_bandwidth - bandwidth)

    @property
    def residual(self) -> float:
        return max(0.0, self.capacity - self.used_bandwidth)

    @property
    def available_fraction(self) -> float:
        """Share of capacity still free, in [0, 1]. 0.0 for a zero-capacity link."""
        if self.capacity == 0:
            return 0.0
        return self.residual / self.capacity

    def other_end(self, device_id: str) -> str:
        return self.endpoint_b if device_id == self.endpoint_a else self.endpoint_a


# ─────────────────────────────────────────────────────────────────────────────
# SECTION 6: PLACEMENT RESULT
# ─────────────────────────────────────────────────────────────────────────────

class PlacementResult(BaseModel):
    """
    service_id → device_id (or None when the service could not be placed).

    Insertion order follows the order in which the rounding engine decided
    each service, which is the service list order.
    """
    assignment: Dict[str, Optional[str]] = Field(default_factory=dict)

    def assign(self, service_id: str, device_id: Optional[str]) -> None:
        self.assignment[service_id] = device_id

    def device_of(self, service_id: str) -> Optional[str]:
        return self.assignment.get(service_id)

    def is_assigned(self, service_id: str) -> bool:
        return self.assignment.get(service_id) is not None

    def unassigned(self) -> List[str]:
        return [s for s, d in self.assignment.items() if d is None]

    def items(self) -> Iterator[Tuple[str, Optional[str]]]:
        return iter(self.assignment.items())

    def __len__(self) -> int:
        return len(self.assignment)

    def __str__(self) -> str:
        return "\n".join(
            f"{svc} -> {dev if dev is not None else 'NOT PLACED'}"
            for svc, dev in self.assignment.items()
        )


# ─────────────────────────────────────────────────────────────────────────────
# SECTION 7: RUN CONFIGURATION
# ─────────────────────────────────────────────────────────────────────────────

CLOUD_PENALTY: float = 5.0
"""Flat cost added to every (service, CLOUD device) pair in the LP objective.

The per-resource cost terms are ratios in roughly [0, 1], so a penalty of
5.0 outweighs them; the optimiser only uses cloud capacity when the edge
cannot absorb a service.
"""

MAX_ROUNDING_TRIALS: int = 5
"""Sampling attempts per service before the rounding engine falls back to
the greedy max-slack choice."""


class PlacementConfig(BaseModel):
    """
    Tunables for one placement run.

    Defaults match the module-level constants above. The CLI maps its flags
    onto this model; tests construct it directly.

    seed: when set, the pipeline builds `np.random.default_rng(seed)` so two
          runs over identical inputs produce identical placements. When None,
          the generator is seeded from OS entropy.
    """
    cloud_penalty: float = Field(CLOUD_PENALTY, ge=0.0)
    max_trials: int = Field(MAX_ROUNDING_TRIALS, ge=1)
    seed: Optional[int] = Field(None, ge=0)
    reassignment_enabled: bool = Field(
        True,
        description="Let the routing manager move services when a path is congested",
    )
