"""
Stores package for the AML velocity monitor.

Re-exports the store protocols and the PostgreSQL adapters.
"""

from aml_monitor.stores.abstract import AlertSink, CheckpointStore, RecordSource
from aml_monitor.stores.postgres import (
    PostgresAlertStore,
    PostgresCheckpointStore,
    PostgresRecordSource,
)

__all__ = [
    # Protocols
    "AlertSink",
    "CheckpointStore",
    "RecordSource",
    # PostgreSQL adapters
    "PostgresAlertStore",
    "PostgresCheckpointStore",
    "PostgresRecordSource",
]
