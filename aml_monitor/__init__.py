"""
AML velocity monitor - checkpointed incremental detection of rapid transactions.

This package watches an append-mostly PostgreSQL table of card transactions and
turns bursts of rapid-succession transactions into scored alerts without
reprocessing rows already seen:

- A change monitor polls the table size and decides when a pass is warranted
- A processing orchestrator runs one pass at a time under a durable checkpoint
- A velocity detector turns new records into ranked, scored alerts
- PostgreSQL adapters implement the record source, checkpoint, and alert stores
"""

from __future__ import annotations

__version__ = "0.1.0"
__license__ = "MIT"

# Public API exports
from aml_monitor.config import Settings, get_settings
from aml_monitor.detection import VelocityConfig, VelocityDetector
from aml_monitor.domain.models import (
    AlertRecord,
    Checkpoint,
    CheckpointStatus,
    PassReason,
    PassResult,
    TransactionRecord,
    TriggerDecision,
)
from aml_monitor.errors import (
    AlreadyRunning,
    Conflict,
    DetectionFailure,
    PipelineError,
    SourceUnavailable,
)
from aml_monitor.monitor import ChangeMonitor
from aml_monitor.orchestrator import ProcessingOrchestrator
from aml_monitor.utils.logging import configure_logging, get_logger

__all__ = [
    # Version info
    "__version__",
    "__license__",
    # Configuration
    "Settings",
    "get_settings",
    # Pipeline
    "ChangeMonitor",
    "ProcessingOrchestrator",
    "VelocityConfig",
    "VelocityDetector",
    # Domain
    "AlertRecord",
    "Checkpoint",
    "CheckpointStatus",
    "PassReason",
    "PassResult",
    "TransactionRecord",
    "TriggerDecision",
    # Errors
    "AlreadyRunning",
    "Conflict",
    "DetectionFailure",
    "PipelineError",
    "SourceUnavailable",
    # Logging
    "configure_logging",
    "get_logger",
]
