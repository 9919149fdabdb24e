"""
edge_orchestrator — models, topology and control plane around placement_core.

    shared/         — pydantic resource models and the network topology
    control_plane/  — scenario loading, the placement pipeline, metrics

Must stay import-free: placement_core imports edge_orchestrator.shared.
"""
