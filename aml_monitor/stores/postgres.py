"""
PostgreSQL adapters for the record source, checkpoint store, and alert store.

All three share the pooled connections managed by PoolManager. Driver errors are
translated into the pipeline's error taxonomy:

- unique violations -> Conflict
- every other driver error (connection loss, pool timeouts, a missing table,
  bad data) -> SourceUnavailable

Rows that do not convert into a TransactionRecord raise DetectionFailure.
"""

from __future__ import annotations

from contextlib import contextmanager
from datetime import date, datetime
from typing import Any, Collection, Dict, Generator, Iterator, List, Mapping, Optional, Sequence

import psycopg
from psycopg import sql
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool
from pydantic import ValidationError

from aml_monitor.config import Settings, get_settings
from aml_monitor.domain.models import (
    EPOCH,
    AlertRecord,
    AlertSummaryRow,
    Checkpoint,
    CheckpointStatus,
    TransactionRecord,
)
from aml_monitor.errors import Conflict, DetectionFailure, PartialFailure, SourceUnavailable
from aml_monitor.infrastructure.db_factory import get_pool
from aml_monitor.stores.abstract import validate_fields
from aml_monitor.utils.logging import get_logger

log = get_logger(__name__)


@contextmanager
def _db_errors(action: str) -> Generator[None, None, None]:
    try:
        yield
    except psycopg.errors.UniqueViolation as exc:
        raise Conflict(f"{action}: {exc}") from exc
    except psycopg.Error as exc:
        raise SourceUnavailable(f"{action}: {exc}") from exc


def _to_record(row: Sequence[Any]) -> TransactionRecord:
    try:
        return TransactionRecord(
            transaction_id=row[0],
            entity_id=row[1],
            event_timestamp=row[2],
            amount=row[3],
            merchant=row[4] or "",
            category=row[5] or "",
            latitude=row[6],
            longitude=row[7],
        )
    except ValidationError as exc:
        raise DetectionFailure(f"Malformed transaction row {row[0]!r}: {exc}") from exc


def _batched_fetch(cursor: psycopg.Cursor, batch_size: int) -> Iterator[list]:
    """
    Yield batches from a cursor using fetchmany.
    """
    while True:
        batch = cursor.fetchmany(batch_size)
        if not batch:
            break
        yield batch


class _PostgresStore:
    def __init__(
        self,
        settings: Optional[Settings] = None,
        pool: Optional[ConnectionPool] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self._pool = pool

    @property
    def pool(self) -> ConnectionPool:
        if self._pool is None:
            self._pool = get_pool()
        return self._pool

    def _table(self, name: str) -> sql.Composable:
        return sql.Identifier(self.settings.db_schema, name)


class PostgresRecordSource(_PostgresStore):
    """
    Reads new transactions with a server-side cursor and fetchmany batching.
    """

    def count(self) -> int:
        query = sql.SQL("SELECT COUNT(*) FROM {}").format(
            self._table(self.settings.transactions_table)
        )
        with _db_errors("count transactions"), self.pool.connection() as conn:
            row = conn.execute(query).fetchone()
        return int(row[0])

    def query_new_since(self, timestamp: datetime) -> List[TransactionRecord]:
        records = self._fetch(
            "aml_new_transactions",
            sql.SQL("trans_date_trans_time > %s"),
            (timestamp,),
            action="query new transactions",
        )
        log.debug("Fetched new transactions", extra={"rows": len(records), "since": str(timestamp)})
        return records

    def query_entity_history(
        self, entity_ids: Collection[str], start: datetime, end: datetime
    ) -> List[TransactionRecord]:
        if not entity_ids:
            return []
        records = self._fetch(
            "aml_entity_history",
            sql.SQL(
                """
                "first" || '_' || "last" = ANY(%s)
                AND trans_date_trans_time >= %s
                AND trans_date_trans_time <= %s
                """
            ),
            (sorted(entity_ids), start, end),
            action="query entity history",
        )
        log.debug(
            "Fetched entity history",
            extra={"rows": len(records), "entities": len(entity_ids), "start": str(start)},
        )
        return records

    def _fetch(
        self, cursor_name: str, where: sql.Composable, params: Sequence[Any], action: str
    ) -> List[TransactionRecord]:
        query = sql.SQL(
            """
            SELECT id, "first" || '_' || "last", trans_date_trans_time, amt,
                   merchant, category, lat, long
            FROM {table}
            WHERE {where}
            ORDER BY trans_date_trans_time, id
            """
        ).format(table=self._table(self.settings.transactions_table), where=where)

        records: List[TransactionRecord] = []
        with _db_errors(action), self.pool.connection() as conn:
            # Named cursor keeps the result set on the server between batches.
            with conn.cursor(name=cursor_name) as cur:
                cur.execute(query, params)
                for batch in _batched_fetch(cur, self.settings.fetch_batch_size):
                    records.extend(_to_record(row) for row in batch)
        return records


class PostgresCheckpointStore(_PostgresStore):
    """
    Checkpoint rows mutated through a single guarded INSERT ... ON CONFLICT.
    """

    def read(self, process_name: str) -> Optional[Checkpoint]:
        query = sql.SQL("SELECT * FROM {} WHERE process_name = %s").format(
            self._table(self.settings.checkpoint_table)
        )
        with _db_errors("read checkpoint"), self.pool.connection() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                row = cur.execute(query, (process_name,)).fetchone()
        return Checkpoint.model_validate(row) if row else None

    def upsert(
        self,
        process_name: str,
        fields: Mapping[str, Any],
        expected_prior_status: Collection[CheckpointStatus],
        stale_before: Optional[datetime] = None,
    ) -> Checkpoint:
        validate_fields(fields)
        columns = list(fields)
        values = {
            name: value.value if isinstance(value, CheckpointStatus) else value
            for name, value in fields.items()
        }
        table = self._table(self.settings.checkpoint_table)

        query = sql.SQL(
            """
            INSERT INTO {table} AS cp (process_name, updated_at{extra_columns})
            VALUES (%(process_name)s, now(){extra_values})
            ON CONFLICT (process_name) DO UPDATE
            SET updated_at = EXCLUDED.updated_at{assignments}
            WHERE cp.status = ANY(%(expected)s)
               OR (cp.status = 'PROCESSING' AND cp.updated_at < %(stale_before)s)
            RETURNING *
            """
        ).format(
            table=table,
            extra_columns=sql.SQL("").join(
                sql.SQL(", {}").format(sql.Identifier(c)) for c in columns
            ),
            extra_values=sql.SQL("").join(
                sql.SQL(", {}").format(sql.Placeholder(c)) for c in columns
            ),
            assignments=sql.SQL("").join(
                sql.SQL(", {col} = EXCLUDED.{col}").format(col=sql.Identifier(c))
                for c in columns
            ),
        )
        params = {
            **values,
            "process_name": process_name,
            "expected": [status.value for status in expected_prior_status],
            "stale_before": stale_before,
        }

        with _db_errors("upsert checkpoint"), self.pool.connection() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                row = cur.execute(query, params).fetchone()
        if row is None:
            raise Conflict(
                f"Checkpoint '{process_name}' is not in any of "
                f"{sorted(s.value for s in expected_prior_status)}"
            )
        return Checkpoint.model_validate(row)


class PostgresAlertStore(_PostgresStore):
    """
    Alert sink keyed by (type, entity, day) with guarded identifier allocation.
    A later pass that sees more of a day's burst replaces the stored alert.
    """

    def max_alert_id(self) -> int:
        query = sql.SQL("SELECT COALESCE(MAX(alert_id), 0) FROM {}").format(
            self._table(self.settings.alerts_table)
        )
        with _db_errors("read max alert id"), self.pool.connection() as conn:
            row = conn.execute(query).fetchone()
        return int(row[0])

    def insert_all(self, alerts: Sequence[AlertRecord]) -> int:
        if not alerts:
            return 0
        table = self._table(self.settings.alerts_table)

        with _db_errors("insert alerts"), self.pool.connection() as conn:
            # Serialises allocation across writers until commit.
            conn.execute(
                "SELECT pg_advisory_xact_lock(hashtext(%s))", (self.settings.alerts_table,)
            )
            current_max = conn.execute(
                sql.SQL("SELECT COALESCE(MAX(alert_id), 0) FROM {}").format(table)
            ).fetchone()[0]

            stored = self._stored_counts(conn, alerts)
            fresh = [a for a in alerts if _dedup_key(a) not in stored]
            grown = [
                a for a in alerts
                if _dedup_key(a) in stored and a.rapid_count > stored[_dedup_key(a)]
            ]
            if not fresh and not grown:
                return 0

            inserted = self._insert(conn, fresh, current_max) if fresh else 0
            replaced = self._supersede(conn, grown) if grown else 0

        skipped = len(alerts) - len(fresh) - len(grown)
        if skipped or replaced:
            log.info(
                "Merged alerts with already-written entity days",
                extra={"skipped": skipped, "replaced": replaced},
            )
        return inserted + replaced

    def _insert(self, conn: psycopg.Connection, alerts: Sequence[AlertRecord], current_max: int) -> int:
        first_id = min(a.alert_id for a in alerts)
        if first_id <= current_max:
            raise Conflict(f"Alert id {first_id} is not above the current maximum {current_max}")

        insert = sql.SQL(
            """
            INSERT INTO {} (
                alert_id, customer_id, alert_date, alert_type, risk_score,
                description, priority, total_amount, status, detection_date,
                created_at, rapid_count, source_watermark
            ) VALUES (
                %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s
            )
            """
        ).format(self._table(self.settings.alerts_table))
        with conn.cursor() as cur:
            cur.executemany(insert, [_alert_params(a) for a in alerts])
            written = cur.rowcount
        if written != len(alerts):
            raise PartialFailure(expected=len(alerts), written=written)
        return written

    def _supersede(self, conn: psycopg.Connection, alerts: Sequence[AlertRecord]) -> int:
        """Replace lower-count alerts in place; the stored identifier and status stay."""
        update = sql.SQL(
            """
            UPDATE {} SET
                risk_score = %s, description = %s, priority = %s, total_amount = %s,
                detection_date = %s, rapid_count = %s, source_watermark = %s
            WHERE alert_type = %s AND customer_id = %s AND alert_date = %s
              AND rapid_count < %s
            """
        ).format(self._table(self.settings.alerts_table))
        params = [
            (
                a.risk_score,
                a.description,
                a.priority.value,
                a.total_amount,
                a.detection_date,
                a.rapid_count,
                a.source_watermark or EPOCH,
                a.alert_type,
                a.entity_id,
                a.alert_date,
                a.rapid_count,
            )
            for a in alerts
        ]
        with conn.cursor() as cur:
            cur.executemany(update, params)
            written = cur.rowcount
        if written != len(alerts):
            raise PartialFailure(expected=len(alerts), written=written)
        return written

    def _stored_counts(self, conn: psycopg.Connection, alerts: Sequence[AlertRecord]) -> Dict[tuple, int]:
        query = sql.SQL(
            """
            SELECT alert_type, customer_id, alert_date, rapid_count
            FROM {}
            WHERE customer_id = ANY(%s) AND alert_date = ANY(%s)
            """
        ).format(self._table(self.settings.alerts_table))
        entities = sorted({a.entity_id for a in alerts})
        days = sorted({a.alert_date for a in alerts})
        rows = conn.execute(query, (entities, days)).fetchall()
        return {(row[0], row[1], row[2]): row[3] for row in rows}

    def summary_for(self, day: date) -> List[AlertSummaryRow]:
        query = sql.SQL(
            """
            SELECT alert_type, priority, COUNT(*) AS count
            FROM {}
            WHERE (created_at AT TIME ZONE 'UTC')::date = %s
            GROUP BY alert_type, priority
            ORDER BY alert_type, priority
            """
        ).format(self._table(self.settings.alerts_table))
        with _db_errors("summarise alerts"), self.pool.connection() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                rows = cur.execute(query, (day,)).fetchall()
        return [AlertSummaryRow.model_validate(row) for row in rows]


def _dedup_key(alert: AlertRecord) -> tuple:
    return (alert.alert_type, alert.entity_id, alert.alert_date)


def _alert_params(alert: AlertRecord) -> tuple:
    return (
        alert.alert_id,
        alert.entity_id,
        alert.alert_date,
        alert.alert_type,
        alert.risk_score,
        alert.description,
        alert.priority.value,
        alert.total_amount,
        alert.status,
        alert.detection_date,
        alert.created_at,
        alert.rapid_count,
        alert.source_watermark or EPOCH,
    )


__all__ = [
    "PostgresAlertStore",
    "PostgresCheckpointStore",
    "PostgresRecordSource",
]
