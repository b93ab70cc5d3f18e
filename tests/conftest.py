"""
Pytest configuration for the AML velocity monitor.

Provides fixtures for:
- In-memory record source, checkpoint store, and alert store (unit tests)
- A controllable clock and test settings
- Database connection management and schema bootstrap (integration tests)
"""

from __future__ import annotations

import os
from typing import Generator

import psycopg
import pytest

from aml_monitor.config import Settings
from aml_monitor.infrastructure.db_factory import SCHEMA_PATH
from aml_monitor.orchestrator import ProcessingOrchestrator
from tests.fakes import (
    FrozenClock,
    InMemoryAlertStore,
    InMemoryCheckpointStore,
    InMemoryRecordSource,
)


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        process_name="aml_test",
        monitor_interval_seconds=0.01,
        summary_every_ticks=2,
        stale_processing_after_seconds=3600,
        rapid_window_minutes=5,
        min_rapid_count=5,
        lookback_hours=24,
    )


@pytest.fixture
def source() -> InMemoryRecordSource:
    return InMemoryRecordSource()


@pytest.fixture
def checkpoints(clock: FrozenClock) -> InMemoryCheckpointStore:
    return InMemoryCheckpointStore(clock)


@pytest.fixture
def alert_store() -> InMemoryAlertStore:
    return InMemoryAlertStore()


@pytest.fixture
def orchestrator(
    source: InMemoryRecordSource,
    checkpoints: InMemoryCheckpointStore,
    alert_store: InMemoryAlertStore,
    settings: Settings,
    clock: FrozenClock,
) -> ProcessingOrchestrator:
    return ProcessingOrchestrator(
        source=source,
        checkpoints=checkpoints,
        alerts=alert_store,
        settings=settings,
        clock=clock,
    )


@pytest.fixture(scope="session")
def test_settings() -> Settings:
    """
    Settings fixture with test-specific overrides.

    Can be overridden via environment variables in CI or local testing.
    """
    return Settings(
        db_host=os.getenv("DB_HOST", "localhost"),
        db_port=int(os.getenv("DB_PORT", "5432")),
        db_user=os.getenv("DB_USER", "postgres"),
        db_password=os.getenv("DB_PASSWORD", "postgres"),
        db_name=os.getenv("DB_NAME", "aml_data"),
        process_name="aml_integration",
        lookback_hours=0,
        log_level="DEBUG",
    )


@pytest.fixture(scope="session")
def test_dsn(test_settings: Settings) -> str:
    """
    Database connection string for tests.
    """
    return test_settings.dsn


@pytest.fixture(scope="session")
def db_connection_available(test_dsn: str) -> bool:
    """
    Check if database is reachable.

    Used to conditionally skip integration tests when DB is not available.
    """
    try:
        with psycopg.connect(test_dsn, connect_timeout=5) as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT 1;")
                cur.fetchone()
        return True
    except psycopg.Error:
        return False


@pytest.fixture(scope="session")
def db_connection(
    test_dsn: str, db_connection_available: bool
) -> Generator[psycopg.Connection, None, None]:
    """
    Provide a session-scoped database connection for integration tests.

    Skips tests if database is not available.
    """
    if not db_connection_available:
        pytest.skip("Database not available for integration tests")

    conn = psycopg.connect(test_dsn)
    try:
        yield conn
    finally:
        conn.close()


@pytest.fixture(scope="session")
def db_schema_initialized(db_connection: psycopg.Connection) -> bool:
    """
    Ensure the transactions, checkpoint, and alerts tables exist.
    """
    with db_connection.cursor() as cur:
        cur.execute(SCHEMA_PATH.read_text(encoding="utf-8"))
    db_connection.commit()
    return True


@pytest.fixture(scope="function")
def clean_tables(db_connection: psycopg.Connection, db_schema_initialized: bool):
    """
    Empty all pipeline tables before and after each test function.
    """
    truncate = (
        "TRUNCATE TABLE public.credit_card_transactions, public.processing_metadata, "
        "public.aml_alerts_level1 RESTART IDENTITY;"
    )
    with db_connection.cursor() as cur:
        cur.execute(truncate)
    db_connection.commit()
    yield
    with db_connection.cursor() as cur:
        cur.execute(truncate)
    db_connection.commit()
