"""
Utilities package for the AML velocity monitor.

Exports shared helpers for logging and profiling. Keep this package
lightweight and free of domain-specific logic.
"""

from aml_monitor.utils.logging import configure_logging, get_logger
from aml_monitor.utils.profiler import ProfileStats, profile_block

__all__ = [
    "configure_logging",
    "get_logger",
    "ProfileStats",
    "profile_block",
]
