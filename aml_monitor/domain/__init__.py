"""
Domain package for the AML velocity monitor.

Exports the core domain models used across the detector, stores, orchestrator,
and monitor. Keep this package focused on data definitions.
"""

from aml_monitor.domain.models import (
    EPOCH,
    AlertRecord,
    AlertSummaryRow,
    Checkpoint,
    CheckpointStatus,
    DecisionKind,
    Observation,
    PassReason,
    PassResult,
    Priority,
    TransactionRecord,
    TriggerDecision,
    derive_entity_id,
)

__all__ = [
    "EPOCH",
    "AlertRecord",
    "AlertSummaryRow",
    "Checkpoint",
    "CheckpointStatus",
    "DecisionKind",
    "Observation",
    "PassReason",
    "PassResult",
    "Priority",
    "TransactionRecord",
    "TriggerDecision",
    "derive_entity_id",
]
