"""
In-memory stand-ins for the record source, checkpoint store, and alert sink.

They follow the PostgreSQL adapters' contracts: conditional checkpoint upserts
raise Conflict, alert inserts keep one alert per (type, entity, day), replacing a stored
alert only with a higher rapid count, and refuse new identifiers at or below
the current maximum.
"""

from __future__ import annotations

import threading
from collections import Counter
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Callable, Collection, List, Mapping, Optional, Sequence

from aml_monitor.domain.models import (
    AlertRecord,
    AlertSummaryRow,
    Checkpoint,
    CheckpointStatus,
    TransactionRecord,
)
from aml_monitor.errors import Conflict, SourceUnavailable
from aml_monitor.stores.abstract import validate_fields

BASE_TIME = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


class FrozenClock:
    def __init__(self, now: datetime = BASE_TIME) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class InMemoryRecordSource:
    """
    Record source backed by a list. `base_count` models rows loaded before the
    test started that are all older than any watermark used in the test.
    """

    def __init__(self, records: Sequence[TransactionRecord] = (), base_count: int = 0) -> None:
        self.records: List[TransactionRecord] = list(records)
        self.base_count = base_count
        self.fail_count = False
        self.fail_query = False
        self.queries: List[datetime] = []
        self.history_queries: List[tuple] = []
        self.before_query: Optional[Callable[[], None]] = None

    def add(self, *records: TransactionRecord) -> None:
        self.records.extend(records)

    def count(self) -> int:
        if self.fail_count:
            raise SourceUnavailable("count query failed")
        return self.base_count + len(self.records)

    def query_new_since(self, timestamp: datetime) -> List[TransactionRecord]:
        if self.before_query is not None:
            self.before_query()
        if self.fail_query:
            raise SourceUnavailable("transactions query failed")
        self.queries.append(timestamp)
        return sorted(
            (r for r in self.records if r.event_timestamp > timestamp),
            key=lambda r: (r.event_timestamp, r.transaction_id),
        )

    def query_entity_history(
        self, entity_ids: Collection[str], start: datetime, end: datetime
    ) -> List[TransactionRecord]:
        if self.fail_query:
            raise SourceUnavailable("transactions query failed")
        self.history_queries.append((frozenset(entity_ids), start, end))
        return sorted(
            (
                r for r in self.records
                if r.entity_id in entity_ids and start <= r.event_timestamp <= end
            ),
            key=lambda r: (r.event_timestamp, r.transaction_id),
        )


class InMemoryCheckpointStore:
    def __init__(self, clock: Callable[[], datetime]) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self.rows: dict = {}
        self.history: List[Checkpoint] = []
        self.fail_read = False
        self.fail_status: Optional[CheckpointStatus] = None

    def read(self, process_name: str) -> Optional[Checkpoint]:
        if self.fail_read:
            raise SourceUnavailable("checkpoint read failed")
        return self.rows.get(process_name)

    def upsert(
        self,
        process_name: str,
        fields: Mapping[str, Any],
        expected_prior_status: Collection[CheckpointStatus],
        stale_before: Optional[datetime] = None,
    ) -> Checkpoint:
        validate_fields(fields)
        if self.fail_status is not None and fields.get("status") == self.fail_status:
            raise SourceUnavailable(f"could not write {self.fail_status.value}")
        with self._lock:
            current = self.rows.get(process_name)
            if current is None:
                data = {"process_name": process_name, **fields}
            else:
                stale = (
                    stale_before is not None
                    and current.status == CheckpointStatus.PROCESSING
                    and current.updated_at < stale_before
                )
                if current.status not in expected_prior_status and not stale:
                    raise Conflict(f"checkpoint is {current.status.value}")
                data = {**current.model_dump(), **fields}
            data["updated_at"] = self._clock()
            checkpoint = Checkpoint(**data)
            self.rows[process_name] = checkpoint
            self.history.append(checkpoint)
            return checkpoint


class InMemoryAlertStore:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.alerts: List[AlertRecord] = []
        self.insert_calls = 0
        self.race_once = False
        self.fail_insert = False

    def max_alert_id(self) -> int:
        return max((a.alert_id for a in self.alerts), default=0)

    def insert_all(self, alerts: Sequence[AlertRecord]) -> int:
        self.insert_calls += 1
        if self.fail_insert:
            raise SourceUnavailable("alert insert failed")
        with self._lock:
            if self.race_once:
                # A concurrent writer grabs identifiers between our read and write.
                self.race_once = False
                self.alerts.append(
                    alerts[0].model_copy(
                        update={
                            "alert_id": self.max_alert_id() + len(alerts),
                            "entity_id": "other_writer",
                        }
                    )
                )
            stored = {_key(a): index for index, a in enumerate(self.alerts)}
            fresh = [a for a in alerts if _key(a) not in stored]
            grown = [
                a for a in alerts
                if _key(a) in stored and a.rapid_count > self.alerts[stored[_key(a)]].rapid_count
            ]
            if fresh:
                current_max = self.max_alert_id()
                if min(a.alert_id for a in fresh) <= current_max:
                    raise Conflict(f"alert ids overlap existing maximum {current_max}")
            for alert in grown:
                index = stored[_key(alert)]
                previous = self.alerts[index]
                self.alerts[index] = alert.model_copy(
                    update={
                        "alert_id": previous.alert_id,
                        "status": previous.status,
                        "created_at": previous.created_at,
                    }
                )
            self.alerts.extend(fresh)
            return len(fresh) + len(grown)

    def summary_for(self, day: date) -> List[AlertSummaryRow]:
        counts = Counter(
            (a.alert_type, a.priority) for a in self.alerts if a.created_at.date() == day
        )
        return [
            AlertSummaryRow(alert_type=alert_type, priority=priority, count=count)
            for (alert_type, priority), count in sorted(counts.items(), key=lambda kv: (kv[0][0], kv[0][1].value))
        ]


def _key(alert: AlertRecord) -> tuple:
    return (alert.alert_type, alert.entity_id, alert.alert_date)


def make_txn(
    transaction_id: int,
    entity_id: str,
    when: datetime,
    amount: str = "100.00",
) -> TransactionRecord:
    return TransactionRecord(
        transaction_id=transaction_id,
        entity_id=entity_id,
        event_timestamp=when,
        amount=Decimal(amount),
        merchant="fraud_Kirlin",
        category="misc_pos",
    )


def burst(
    entity_id: str,
    start: datetime,
    offsets_minutes: Sequence[float],
    first_id: int,
    amount: str = "100.00",
) -> List[TransactionRecord]:
    return [
        make_txn(first_id + i, entity_id, start + timedelta(minutes=offset), amount)
        for i, offset in enumerate(offsets_minutes)
    ]

