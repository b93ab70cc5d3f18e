"""
Database connection factory utilities for the AML velocity monitor.

Provides centralized management of the PostgreSQL connection pool shared by
the record source, checkpoint store, and alert store. The PoolManager
singleton ensures the pool is closed on application exit.

Includes retry logic for transient connection failures using tenacity.
"""

from __future__ import annotations

import atexit
import threading
from pathlib import Path
from typing import Optional

import psycopg
from psycopg import Connection
from psycopg_pool import ConnectionPool
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from aml_monitor.config import get_settings

SCHEMA_PATH = Path(__file__).with_name("schema.sql")


def build_dsn() -> str:
    """Compose a DSN string from settings."""
    return get_settings().dsn


class PoolManager:
    """
    Thread-safe singleton for managing the database connection pool.

    Handles lifecycle management with automatic cleanup via atexit hook.
    """

    _instance: Optional["PoolManager"] = None
    _lock = threading.Lock()

    def __new__(cls) -> "PoolManager":
        """Create or return the singleton instance."""
        with cls._lock:
            if cls._instance is None:
                cls._instance = super().__new__(cls)
                cls._instance._pool = None
                atexit.register(cls._instance.close_all)
            return cls._instance

    def get_pool(self, min_size: Optional[int] = None, max_size: Optional[int] = None) -> ConnectionPool:
        """
        Get or create the connection pool.

        Parameters
        ----------
        min_size : int | None
            Minimum number of idle connections to keep (default from settings).
        max_size : int | None
            Maximum total connections in the pool (default from settings).
        """
        with self._lock:
            if self._pool is None:
                settings = get_settings()
                self._pool = ConnectionPool(
                    conninfo=build_dsn(),
                    min_size=min_size or settings.pool_min_size,
                    max_size=max_size or settings.pool_max_size,
                    open=True,
                )
            return self._pool

    def close_all(self) -> None:
        """
        Close the managed pool and release resources.

        This is called automatically on exit via atexit hook.
        """
        with self._lock:
            if self._pool is not None:
                try:
                    self._pool.close()
                finally:
                    self._pool = None


@retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception_type((psycopg.OperationalError, psycopg.InterfaceError)),
    reraise=True,
)
def get_sync_connection(dsn: Optional[str] = None) -> Connection:
    """
    Acquire a dedicated synchronous connection with automatic retry.

    Retries up to 3 times with exponential backoff for transient connection errors.
    Use this for one-off administrative operations. Prefer the pool for repeated use.
    """
    return psycopg.connect(dsn or build_dsn())


def get_pool() -> ConnectionPool:
    """Get or create the shared connection pool via PoolManager."""
    return PoolManager().get_pool()


def apply_schema(dsn: Optional[str] = None) -> None:
    """
    Create the transactions, checkpoint, and alerts tables if they do not exist.

    Table names are the defaults from schema.sql; deployments that rename tables
    through settings are expected to manage their own DDL.
    """
    ddl = SCHEMA_PATH.read_text(encoding="utf-8")
    with get_sync_connection(dsn) as conn:
        with conn.cursor() as cur:
            cur.execute(ddl)
        conn.commit()


__all__ = [
    "PoolManager",
    "SCHEMA_PATH",
    "apply_schema",
    "build_dsn",
    "get_pool",
    "get_sync_connection",
]
