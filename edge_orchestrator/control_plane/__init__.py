"""
edge_orchestrator/control_plane — everything around the placement engine.

Public API:

    Loading:
        load_scenario()          — four CSV files → Scenario
        ScenarioValidationError  — raised on malformed input

    Pipeline:
        PlacementManager         — LP → rounding → routing for one scenario
        PlacementOutcome         — result bundle returned by run()
        PlacementStatus          — PLACED / ROUTING_FAILED / LP_INFEASIBLE

    Reporting:
        evaluate()               — counts and utilisation after a run
        format_report()          — console rendering of a MetricsReport
"""

from edge_orchestrator.control_plane.loader import (
    Scenario,
    ScenarioValidationError,
    load_scenario,
)
from edge_orchestrator.control_plane.placement_service import (
    PlacementManager,
    PlacementOutcome,
    PlacementStatus,
)
from edge_orchestrator.control_plane.metrics import (
    MetricsReport,
    evaluate,
    format_report,
)

__all__ = [
    "Scenario",
    "ScenarioValidationError",
    "load_scenario",
    "PlacementManager",
    "PlacementOutcome",
    "PlacementStatus",
    "MetricsReport",
    "evaluate",
    "format_report",
]
