"""
Utilities package for the work-unit history store.

Exports shared helpers for logging and profiling. Keep this package
lightweight and free of domain-specific logic.
"""

from wuhistory.utils.logging import bind_logger, configure_logging, get_logger
from wuhistory.utils.profiler import ProfileStats, profile_block

__all__ = [
    "bind_logger",
    "configure_logging",
    "get_logger",
    "ProfileStats",
    "profile_block",
]
