"""
placement_core/rounding.py
──────────────────────────
Randomized rounding: fractional LP rows → one device per service.

What does the rounding engine do?
──────────────────────────────────
The LP hands back, for every service, a row of fractions over the devices.
The engine treats each row as a probability distribution and samples a
device from it. Sampling (rather than taking the argmax) is what gives
randomized rounding its approximation guarantee: in expectation, the load
each device receives matches what the LP planned for it.

Sampling alone can overload a device, so every draw is checked against
capacity before it is accepted.

Per-service procedure (services in list order)
───────────────────────────────────────────────
  1. Copy the LP row. If it carries no mass → go straight to fallback.
  2. Normalise to sum 1. Up to `max_trials` draws:
       • roulette-wheel draw (cumsum + searchsorted).
       • fits on the tentative usage?  → accept, done.
       • otherwise zero that device, renormalise, draw again.
         No mass left → stop drawing.
  3. Fallback:
       • among devices the service fits on, the one with the most
         storage + compute slack left after placing it (first on ties);
       • else any CLOUD device it fits on;
       • else unassigned.

Tentative vs committed usage
────────────────────────────
While deciding, usage is tracked in a private (n_devices, 4) array that
starts at zero. Devices are not touched until commit():

  1. every device.reset_usage()
  2. replay every decision in service order through Device.commit()
  3. compare the replayed usage against the tentative array

A replay refusal means tentative and real bookkeeping disagree. That is a
defect, never an expected outcome: it is logged at ERROR, the service is
set to unassigned, and the event is recorded in `inconsistencies` so the
caller can surface it.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional

import numpy as np
from numpy.typing import NDArray

from edge_orchestrator.shared.models import (
    MAX_ROUNDING_TRIALS,
    Device,
    PlacementResult,
    ServiceModule,
)

logger = logging.getLogger(__name__)

USAGE_TOLERANCE: float = 1e-9
"""Absolute tolerance when comparing replayed device usage to tentative usage."""


class RandomizedRounding:
    """
    Converts a fractional (S, D) matrix into a committed PlacementResult.

    Lifecycle:
        1. __init__()  → snapshot capacities, zero the tentative usage.
        2. round()     → decide every service; devices untouched.
        3. commit()    → reset devices and replay the decisions onto them.

    `run()` does 2 + 3. Single-use: build a new engine per placement run.

    Attributes:
        placement       : PlacementResult  — populated by round().
        inconsistencies : List[str]         — service IDs whose replay failed.
        tentative_usage : (D, 4) ndarray    — bookkeeping used by round().
    """

    def __init__(
        self,
        fractional: NDArray[np.float64],
        devices: List[Device],
        services: List[ServiceModule],
        rng: np.random.Generator,
        max_trials: int = MAX_ROUNDING_TRIALS,
    ) -> None:
        """
        Args:
            fractional: (len(services), len(devices)) LP matrix. Rows need not
                        sum exactly to 1.
            devices:    Candidate devices; column order of `fractional`.
            services:   Services to place; row order of `fractional`.
            rng:        The only source of randomness. Pass
                        np.random.default_rng(seed) for reproducible runs.
            max_trials: Draws per service before falling back.

        Raises:
            ValueError: if the matrix shape does not match the lists.
        """
        expected = (len(services), len(devices))
        if fractional.shape != expected:
            raise ValueError(
                f"Fractional matrix has shape {fractional.shape}, "
                f"expected {expected} (services × devices)"
            )

        self._x = fractional
        self._devices = devices
        self._services = services
        self._rng = rng
        self._max_trials = max_trials
        self._n_devices = len(devices)

        self._capacity: NDArray[np.float64] = (
            np.vstack([d.capacity.as_array() for d in devices])
            if devices else np.zeros((0, 4), dtype=np.float64)
        )
        self.tentative_usage: NDArray[np.float64] = np.zeros_like(self._capacity)

        self._device_index: Dict[str, int] = {
            d.device_id: i for i, d in enumerate(devices)
        }

        self.placement = PlacementResult()
        self.inconsistencies: List[str] = []

    # ── Feasibility bookkeeping ────────────────────────────────────────────────

    def _fits(self, device_idx: int, requirement: NDArray[np.float64]) -> bool:
        return bool(np.all(
            self.tentative_usage[device_idx] + requirement
            <= self._capacity[device_idx]
        ))

    def _assign(self, service: ServiceModule, device_idx: int,
                requirement: NDArray[np.float64]) -> None:
        self.tentative_usage[device_idx] += requirement
        self.placement.assign(service.service_id, self._devices[device_idx].device_id)

    # ── Sampling ───────────────────────────────────────────────────────────────

    def _sample_index(self, probs: NDArray[np.float64]) -> Optional[int]:
        """
        Roulette-wheel draw over an already-normalised row.

        cumsum = [0.2, 0.2, 0.7, 1.0], r = 0.45 → first cumsum ≥ r is index 2.

        Edge cases:
            • Floating-point drift can leave cumsum[-1] slightly below r;
              searchsorted then returns n. Take the last index with mass.
            • r landing exactly on a plateau (a zeroed device) would pick a
              zero-probability index; step forward to the next one with mass.

        Returns:
            int index, or None when the row has no mass at all.
        """
        positive = np.flatnonzero(probs > 0.0)
        if positive.size == 0:
            return None

        cumsum = np.cumsum(probs)
        r = self._rng.random()
        chosen = int(np.searchsorted(cumsum, r, side="left"))

        if chosen >= self._n_devices:
            return int(positive[-1])
        if probs[chosen] <= 0.0:
            later = positive[positive > chosen]
            return int(later[0]) if later.size else int(positive[-1])
        return chosen

    def _attempt_randomized(self, service: ServiceModule,
                            probs: NDArray[np.float64],
                            requirement: NDArray[np.float64]) -> bool:
        working = probs.copy()
        for trial in range(self._max_trials):
            chosen = self._sample_index(working)
            if chosen is None:
                break
            if self._fits(chosen, requirement):
                self._assign(service, chosen, requirement)
                return True

            logger.debug(
                "rounding: trial %d for %s rejected %s (capacity)",
                trial + 1, service.service_id, self._devices[chosen].device_id,
            )
            working[chosen] = 0.0
            remaining = float(working.sum())
            if remaining <= 0.0:
                break
            working /= remaining
        return False

    # ── Fallback ───────────────────────────────────────────────────────────────

    def _fallback(self, service: ServiceModule,
                  requirement: NDArray[np.float64]) -> None:
        """
        Greedy max-slack choice, then any cloud, then unassigned.

        slack(b) = (storage_cap − storage_used − storage_req)
                 + (compute_cap − compute_used − compute_req)
        """
        best_idx: Optional[int] = None
        best_slack = -np.inf
        for idx in range(self._n_devices):
            if not self._fits(idx, requirement):
                continue
            after = self._capacity[idx] - self.tentative_usage[idx] - requirement
            slack = float(after[0] + after[1])
            if slack > best_slack:
                best_slack = slack
                best_idx = idx

        if best_idx is not None:
            logger.debug(
                "rounding: fallback placed %s on %s (slack=%.3f)",
                service.service_id, self._devices[best_idx].device_id, best_slack,
            )
            self._assign(service, best_idx, requirement)
            return

        for idx, device in enumerate(self._devices):
            if device.is_cloud and self._fits(idx, requirement):
                self._assign(service, idx, requirement)
                return

        logger.warning(
            "rounding: service %s fits on no device; leaving it unassigned",
            service.service_id,
        )
        self.placement.assign(service.service_id, None)

    # ── Public API ─────────────────────────────────────────────────────────────

    def round(self) -> PlacementResult:
        """
        Decide a device (or None) for every service, in list order.

        Devices are not modified. Call commit() to apply the decisions.
        """
        for s_idx, service in enumerate(self._services):
            requirement = service.demand.as_array()
            probs = np.array(self._x[s_idx], dtype=np.float64, copy=True)
            total = float(probs.sum())

            if total <= 0.0:
                self._fallback(service, requirement)
                continue

            probs /= total
            if not self._attempt_randomized(service, probs, requirement):
                self._fallback(service, requirement)

        return self.placement

    def commit(self) -> PlacementResult:
        """
        Reset every device and replay the decisions onto the real counters.

        Returns the (possibly amended) placement. Any service whose replay
        is refused becomes unassigned and is listed in self.inconsistencies.
        """
        for device in self._devices:
            device.reset_usage()

        services_by_id = {s.service_id: s for s in self._services}
        for service_id, device_id in list(self.placement.items()):
            if device_id is None:
                continue
            device = self._devices[self._device_index[device_id]]
            if not device.commit(services_by_id[service_id]):
                logger.error(
                    "rounding: replay of %s onto %s refused although the "
                    "tentative check accepted it; marking unassigned",
                    service_id, device_id,
                )
                self.placement.assign(service_id, None)
                self.inconsistencies.append(service_id)

        if not self.inconsistencies and self._devices:
            committed = np.vstack([d.usage.as_array() for d in self._devices])
            if not np.allclose(committed, self.tentative_usage, atol=USAGE_TOLERANCE):
                logger.error(
                    "rounding: committed device usage diverges from tentative usage"
                )

        placed = sum(1 for _, d in self.placement.items() if d is not None)
        logger.info(
            "rounding: committed %d/%d services (%d unassigned, %d inconsistent)",
            placed, len(self._services),
            len(self._services) - placed, len(self.inconsistencies),
        )
        return self.placement

    def run(self) -> PlacementResult:
        self.round()
        return self.commit()

    def __repr__(self) -> str:
        placed = sum(1 for _, d in self.placement.items() if d is not None)
        return (
            f"RandomizedRounding(services={len(self._services)}, "
            f"devices={self._n_devices}, placed={placed})"
        )
