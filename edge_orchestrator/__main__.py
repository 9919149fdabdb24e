"""
python -m edge_orchestrator <scenario-dir> [options]

Loads the four scenario CSVs, runs the placement pipeline and prints the
fractional LP matrix, the final placement, link usage and the metrics report.

Exit codes:
    0  placement committed and every demand routed
    1  routing failed for at least one demand
    2  invalid input or LP infeasible
"""

from __future__ import annotations

import argparse
import logging
import sys
from typing import List, Optional

import numpy as np

from edge_orchestrator.control_plane import (
    PlacementManager,
    PlacementStatus,
    ScenarioValidationError,
    evaluate,
    format_report,
    load_scenario,
)
from edge_orchestrator.shared.models import (
    CLOUD_PENALTY,
    MAX_ROUNDING_TRIALS,
    PlacementConfig,
)

logger = logging.getLogger("edge_orchestrator")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="edge_orchestrator",
        description="Joint service placement and bandwidth routing for edge/cloud devices.",
    )
    parser.add_argument("scenario", help="Directory holding base_stations.csv, links.csv, "
                                         "services.csv and demands.csv")
    parser.add_argument("--seed", type=int, default=None,
                        help="Seed for randomized rounding (reproducible placement)")
    parser.add_argument("--cloud-penalty", type=float, default=CLOUD_PENALTY,
                        help="LP objective penalty for cloud devices (default: %(default)s)")
    parser.add_argument("--max-trials", type=int, default=MAX_ROUNDING_TRIALS,
                        help="Sampling trials per service before fallback (default: %(default)s)")
    parser.add_argument("--no-reassignment", action="store_true",
                        help="Fail routing instead of moving services to other devices")
    parser.add_argument("--log-level", default="WARNING",
                        choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        scenario = load_scenario(args.scenario)
        config = PlacementConfig(
            cloud_penalty=args.cloud_penalty,
            max_trials=args.max_trials,
            seed=args.seed,
            reassignment_enabled=not args.no_reassignment,
        )
    except (ScenarioValidationError, ValueError) as exc:
        logger.error("invalid input: %s", exc)
        return 2

    outcome = PlacementManager(
        scenario.devices,
        scenario.services,
        scenario.demands,
        scenario.topology,
        config,
    ).run()

    if outcome.status == PlacementStatus.LP_INFEASIBLE:
        print(f"LP relaxation infeasible: {outcome.message}")
        return 2

    print("LP fractional solution:")
    for svc, row in zip(scenario.services, outcome.fractional):
        print(f"{svc.service_id}: {np.round(row, 4).tolist()}")

    print("\nFinal placement:")
    print(outcome.placement)

    if outcome.inconsistencies:
        print(f"\nInconsistent deployments: {', '.join(outcome.inconsistencies)}")
    if not outcome.routed:
        print(f"\nRouting failed: {outcome.message}")

    print()
    print(format_report(evaluate(
        scenario.devices,
        scenario.links,
        outcome.placement,
        cloud_penalty=config.cloud_penalty,
    )))
    return 0 if outcome.ok else 1


if __name__ == "__main__":
    sys.exit(main())
