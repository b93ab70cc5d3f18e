"""
Store interfaces consumed by the orchestrator and the change monitor.

Concrete adapters (PostgreSQL in `aml_monitor.stores.postgres`, in-memory fakes
in the test suite) implement these protocols. Every mutation is a single
atomic, conditionally-applied operation; callers never read and then blindly
write.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Collection, List, Mapping, Optional, Protocol, Sequence, runtime_checkable

from aml_monitor.domain.models import (
    AlertRecord,
    AlertSummaryRow,
    Checkpoint,
    CheckpointStatus,
    TransactionRecord,
)

CHECKPOINT_FIELDS = frozenset(
    {
        "last_processed_timestamp",
        "total_records_processed",
        "alerts_generated",
        "processing_duration_seconds",
        "last_run_date",
        "last_error",
        "status",
    }
)


@runtime_checkable
class RecordSource(Protocol):
    """Read-only access to the append-only transactions table."""

    def count(self) -> int:
        """Total number of transaction records. Raises SourceUnavailable."""
        ...

    def query_new_since(self, timestamp: datetime) -> List[TransactionRecord]:
        """Records with event_timestamp strictly after `timestamp`, oldest first."""
        ...

    def query_entity_history(
        self, entity_ids: Collection[str], start: datetime, end: datetime
    ) -> List[TransactionRecord]:
        """Records of `entity_ids` with start <= event_timestamp <= end, oldest first."""
        ...


@runtime_checkable
class CheckpointStore(Protocol):
    """Durable single-row progress state per process name."""

    def read(self, process_name: str) -> Optional[Checkpoint]:
        ...

    def upsert(
        self,
        process_name: str,
        fields: Mapping[str, Any],
        expected_prior_status: Collection[CheckpointStatus],
        stale_before: Optional[datetime] = None,
    ) -> Checkpoint:
        """
        Insert the row if absent, else update it when its status is one of
        `expected_prior_status` (or it is PROCESSING and was last updated before
        `stale_before`). Returns the resulting checkpoint; raises Conflict when
        the guard does not match.
        """
        ...


@runtime_checkable
class AlertSink(Protocol):
    """Alert table holding one alert per type, entity and day."""

    def max_alert_id(self) -> int:
        """Highest alert identifier ever written, 0 when empty."""
        ...

    def insert_all(self, alerts: Sequence[AlertRecord]) -> int:
        """
        Write alerts atomically and return how many rows were inserted or replaced.

        There is at most one alert per (alert_type, entity_id, alert_date). An
        alert for an existing key replaces the stored one in place, keeping its
        identifier, when its rapid_count is higher; otherwise it is skipped.
        Raises Conflict when the first identifier to insert is not above the
        current maximum.
        """
        ...

    def summary_for(self, day: date) -> List[AlertSummaryRow]:
        """Alert counts created on `day`, grouped by type and priority."""
        ...


def validate_fields(fields: Mapping[str, Any]) -> None:
    unknown = set(fields) - CHECKPOINT_FIELDS
    if unknown:
        raise ValueError(f"Unknown checkpoint fields: {', '.join(sorted(unknown))}")


__all__ = [
    "AlertSink",
    "CHECKPOINT_FIELDS",
    "CheckpointStore",
    "RecordSource",
    "validate_fields",
]
