"""
Infrastructure package for the AML velocity monitor.

Centralizes database connectivity concerns (pool management, retrying
connections, schema bootstrap). Keep this layer focused on I/O and resource
management, decoupled from detection and orchestration logic.
"""

from aml_monitor.infrastructure.db_factory import (
    PoolManager,
    apply_schema,
    build_dsn,
    get_pool,
    get_sync_connection,
)

__all__ = [
    "PoolManager",
    "apply_schema",
    "build_dsn",
    "get_pool",
    "get_sync_connection",
]
