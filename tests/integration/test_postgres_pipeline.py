"""
Integration tests for the PostgreSQL store adapters and a full detection pass.

These tests run against a real PostgreSQL instance and verify that:
1. The record source counts transactions and reads them after a watermark
   or for a set of entities inside a time range
2. Checkpoint upserts honour the expected prior status
3. Alert inserts keep one alert per entity day, replace it with a higher
   rapid count, and reject overlapping identifiers
4. A pass through the orchestrator writes alerts and advances the checkpoint

Run with: RUN_INTEGRATION_TESTS=1 pytest tests/integration/
"""

from __future__ import annotations

import os
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Generator, Sequence

import psycopg
import pytest
from psycopg_pool import ConnectionPool

from aml_monitor.config import Settings
from aml_monitor.detection import VelocityDetector
from aml_monitor.domain.models import CheckpointStatus, PassReason
from aml_monitor.errors import AlreadyRunning, Conflict
from aml_monitor.orchestrator import ACQUIRABLE, ProcessingOrchestrator
from aml_monitor.stores.postgres import (
    PostgresAlertStore,
    PostgresCheckpointStore,
    PostgresRecordSource,
)

pytestmark = pytest.mark.skipif(
    os.getenv("RUN_INTEGRATION_TESTS") != "1",
    reason="Set RUN_INTEGRATION_TESTS=1 to run against a live PostgreSQL",
)

NOW = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)
BURST_START = NOW - timedelta(hours=2)
BURST_OFFSETS = [0, 2, 4, 5, 7, 9]
SCENARIO_SCORE = 90


@pytest.fixture
def pool(test_dsn: str, clean_tables) -> Generator[ConnectionPool, None, None]:
    pool = ConnectionPool(conninfo=test_dsn, min_size=1, max_size=4, open=True)
    try:
        yield pool
    finally:
        pool.close()


def _insert_transactions(
    conn: psycopg.Connection, holder: Sequence[str], times: Sequence[datetime], amount: str = "120.50"
) -> None:
    first, last = holder
    with conn.cursor() as cur:
        cur.executemany(
            """
            INSERT INTO public.credit_card_transactions
                (trans_date_trans_time, cc_num, first, last, merchant, category, amt, lat, long)
            VALUES (%s, '4000000000000001', %s, %s, 'fraud_Kirlin', 'misc_pos', %s, 40.1, -75.2)
            """,
            [(when, first, last, Decimal(amount)) for when in times],
        )
    conn.commit()


def _burst_times(start: datetime) -> list:
    return [start + timedelta(minutes=m) for m in BURST_OFFSETS]


def test_record_source_reads_rows_after_watermark(
    db_connection: psycopg.Connection, pool: ConnectionPool, test_settings: Settings
) -> None:
    times = _burst_times(BURST_START)
    _insert_transactions(db_connection, ("Jennifer", "Banks"), times)
    source = PostgresRecordSource(test_settings, pool=pool)

    assert source.count() == len(times)
    records = source.query_new_since(times[2])

    assert [r.event_timestamp for r in records] == times[3:]
    assert {r.entity_id for r in records} == {"Jennifer_Banks"}
    assert records[0].amount == Decimal("120.50")


def test_record_source_reads_entity_history_in_range(
    db_connection: psycopg.Connection, pool: ConnectionPool, test_settings: Settings
) -> None:
    times = _burst_times(BURST_START)
    _insert_transactions(db_connection, ("Jennifer", "Banks"), times)
    _insert_transactions(db_connection, ("Someone", "Else"), times)
    source = PostgresRecordSource(test_settings, pool=pool)

    records = source.query_entity_history({"Jennifer_Banks"}, times[1], times[3])

    assert [r.event_timestamp for r in records] == times[1:4]
    assert {r.entity_id for r in records} == {"Jennifer_Banks"}


def test_checkpoint_upsert_guards_processing_status(
    pool: ConnectionPool, test_settings: Settings
) -> None:
    store = PostgresCheckpointStore(test_settings, pool=pool)

    assert store.read("aml_integration") is None
    acquired = store.upsert(
        "aml_integration", {"status": CheckpointStatus.PROCESSING}, expected_prior_status=ACQUIRABLE
    )
    assert acquired.status == CheckpointStatus.PROCESSING

    with pytest.raises(Conflict):
        store.upsert(
            "aml_integration", {"status": CheckpointStatus.PROCESSING}, expected_prior_status=ACQUIRABLE
        )

    # A far-future stale cutoff treats the current holder as abandoned.
    taken_over = store.upsert(
        "aml_integration",
        {"status": CheckpointStatus.PROCESSING},
        expected_prior_status=ACQUIRABLE,
        stale_before=datetime.now(timezone.utc) + timedelta(days=1),
    )
    assert taken_over.status == CheckpointStatus.PROCESSING


def test_alert_store_merges_entity_days_and_rejects_overlapping_ids(
    db_connection: psycopg.Connection, pool: ConnectionPool, test_settings: Settings
) -> None:
    _insert_transactions(db_connection, ("Jennifer", "Banks"), _burst_times(BURST_START))
    source = PostgresRecordSource(test_settings, pool=pool)
    alerts_store = PostgresAlertStore(test_settings, pool=pool)
    detector = VelocityDetector()
    epoch = datetime(1970, 1, 1, tzinfo=timezone.utc)

    alerts = [
        a.model_copy(update={"source_watermark": epoch})
        for a in detector.detect(source.query_new_since(epoch), max_alert_id=0, now=NOW)
    ]
    assert alerts_store.insert_all(alerts) == 1
    assert alerts_store.max_alert_id() == 1

    # Same entity day with the same count, renumbered: skipped.
    again = [a.model_copy(update={"alert_id": 2}) for a in alerts]
    assert alerts_store.insert_all(again) == 0

    other = [a.model_copy(update={"entity_id": "Someone_Else"}) for a in alerts]
    with pytest.raises(Conflict):
        alerts_store.insert_all(other)

    # More of the same day's burst: replaces the stored alert, keeping its id.
    grown = [
        a.model_copy(update={"alert_id": 7, "rapid_count": 10, "risk_score": 100})
        for a in alerts
    ]
    assert alerts_store.insert_all(grown) == 1
    assert alerts_store.max_alert_id() == 1
    with db_connection.cursor() as cur:
        cur.execute("SELECT alert_id, rapid_count, risk_score FROM public.aml_alerts_level1")
        assert cur.fetchall() == [(1, 10, 100)]
    db_connection.commit()

    rows = alerts_store.summary_for(NOW.date())
    assert [(r.alert_type, r.count) for r in rows] == [("VELOCITY", 1)]


def test_orchestrated_pass_writes_alert_and_checkpoint(
    db_connection: psycopg.Connection, pool: ConnectionPool, test_settings: Settings
) -> None:
    times = _burst_times(BURST_START)
    _insert_transactions(db_connection, ("Jennifer", "Banks"), times)
    orchestrator = ProcessingOrchestrator(
        source=PostgresRecordSource(test_settings, pool=pool),
        checkpoints=PostgresCheckpointStore(test_settings, pool=pool),
        alerts=PostgresAlertStore(test_settings, pool=pool),
        settings=test_settings,
        clock=lambda: NOW,
    )

    result = orchestrator.run_pass(PassReason.MANUAL)

    assert result.records_processed == len(times)
    assert result.alerts_generated == 1
    assert result.new_watermark == times[-1]

    with db_connection.cursor() as cur:
        cur.execute(
            "SELECT customer_id, rapid_count, risk_score, priority FROM public.aml_alerts_level1"
        )
        assert cur.fetchall() == [("Jennifer_Banks", len(times), SCENARIO_SCORE, "LOW")]
        cur.execute(
            "SELECT status, total_records_processed FROM public.processing_metadata "
            "WHERE process_name = %s",
            ("aml_integration",),
        )
        assert cur.fetchone() == ("COMPLETED", len(times))
    db_connection.commit()

    noop = orchestrator.run_pass(PassReason.MANUAL)
    assert noop.records_processed == 0


def test_orchestrator_rejects_pass_while_checkpoint_is_held(
    pool: ConnectionPool, test_settings: Settings
) -> None:
    checkpoints = PostgresCheckpointStore(test_settings, pool=pool)
    checkpoints.upsert(
        "aml_integration", {"status": CheckpointStatus.PROCESSING}, expected_prior_status=ACQUIRABLE
    )
    orchestrator = ProcessingOrchestrator(
        source=PostgresRecordSource(test_settings, pool=pool),
        checkpoints=checkpoints,
        alerts=PostgresAlertStore(test_settings, pool=pool),
        settings=test_settings,
    )

    with pytest.raises(AlreadyRunning):
        orchestrator.run_pass(PassReason.GROWTH)
