"""
Database connection factory utilities for the work-unit history store.

Centralizes how SQLite connections are opened so the repository, the schema
manager, the CLI and the data generator all agree on pragmas, transaction mode
and registered SQL functions.
"""

from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Optional, Union

from wuhistory.config import get_settings
from wuhistory.domain.models import SlotType
from wuhistory.utils.logging import get_logger

logger = get_logger(__name__)

PathLike = Union[str, Path]

MEMORY_PATH = ":memory:"


def _slot_type(core: Optional[str]) -> str:
    return SlotType.from_core_name(core).value


def register_functions(conn: sqlite3.Connection) -> None:
    """Register the Python-backed SQL functions used by the fetch view."""
    conn.create_function("slot_type", 1, _slot_type, deterministic=True)


def open_connection(
    path: PathLike,
    *,
    timeout: Optional[float] = None,
    journal_mode: Optional[str] = None,
) -> sqlite3.Connection:
    """
    Open a SQLite connection configured for the history store.

    The connection runs in autocommit mode (`isolation_level=None`); callers
    manage transactions explicitly with BEGIN IMMEDIATE / COMMIT / ROLLBACK.
    It may be shared across threads, so callers must serialize access.

    Parameters
    ----------
    path : str | Path
        Database file, created if missing. `":memory:"` is accepted.
    timeout : float, optional
        Busy timeout in seconds. Defaults to settings.
    journal_mode : str, optional
        SQLite journal mode (e.g. "WAL", "DELETE"). Defaults to settings.

    Raises
    ------
    sqlite3.Error
        If the file cannot be opened or is not a SQLite database.
    """
    settings = get_settings()
    timeout = settings.db_timeout_seconds if timeout is None else timeout
    journal_mode = (journal_mode or settings.journal_mode).upper()

    target = str(path)
    if target != MEMORY_PATH:
        Path(target).parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(
        target,
        timeout=timeout,
        isolation_level=None,
        check_same_thread=False,
    )
    try:
        # Forces a header read; corrupt files fail here.
        conn.execute("SELECT COUNT(*) FROM sqlite_master").fetchone()
        if target != MEMORY_PATH:
            conn.execute(f"PRAGMA journal_mode={journal_mode}").fetchone()
            conn.execute("PRAGMA synchronous=NORMAL")
        register_functions(conn)
    except sqlite3.Error:
        conn.close()
        raise

    logger.debug(
        "SQLite connection opened",
        extra={"path": target, "journal_mode": journal_mode, "timeout": timeout},
    )
    return conn


def backup_database(conn: sqlite3.Connection, destination: PathLike) -> Path:
    """
    Copy the live database behind `conn` to `destination` with the online backup API.

    Returns the destination path.
    """
    dest = Path(destination)
    dest.parent.mkdir(parents=True, exist_ok=True)
    target = sqlite3.connect(str(dest))
    try:
        conn.backup(target)
    finally:
        target.close()
    logger.info("Store backed up", extra={"backup_path": str(dest)})
    return dest


def backup_path_for(path: PathLike) -> Path:
    """Return the `<file>.bak` sibling used for pre-upgrade backups."""
    p = Path(path)
    return p.with_suffix(p.suffix + ".bak")


__all__ = ["backup_database", "backup_path_for", "open_connection", "register_functions"]
