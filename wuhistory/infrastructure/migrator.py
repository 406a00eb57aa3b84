"""
Schema manager for the work-unit history store.

Detects the on-disk version and table shape and performs the single
legacy -> current migration as a rebuild inside one transaction:

    CREATE WuHistory__new
    INSERT rows (ID included) from WuHistory
    DELETE duplicate natural keys, keeping the lowest ID
    DROP WuHistory; RENAME WuHistory__new; carry the AUTOINCREMENT counter
    CREATE UNIQUE INDEX
    stamp the current version

Any failure rolls the whole transaction back, leaving the store exactly as it
was. The manager does not lock; callers serialize access to the connection.
"""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, Tuple

from wuhistory.errors import HistoryMigrationError, HistoryOpenError
from wuhistory.infrastructure.db_factory import backup_database
from wuhistory.infrastructure.schema import (
    CURRENT_SCHEMA,
    CURRENT_VERSION,
    LEGACY_COLUMN_NAMES,
    NATURAL_KEY_COLUMNS,
    TABLE_NAME,
    VERSION_TABLE_NAME,
    VERSION_TABLE_SQL,
    ColumnShape,
    TableSchema,
    parse_version,
)
from wuhistory.utils.logging import get_logger

logger = get_logger(__name__)

ProgressCallback = Callable[[int, str], None]


@dataclass(frozen=True)
class MigrationResult:
    changed: bool
    from_version: Optional[str]
    to_version: Optional[str]
    rows_copied: int = 0
    duplicates_removed: int = 0


def _version_tuple(version: str) -> Optional[Tuple[int, ...]]:
    try:
        return parse_version(version)
    except ValueError:
        return None


def _noop_progress(percent: int, message: str) -> None:
    return None


class SchemaManager:
    """
    Version detection and migration over an open connection.

    Parameters
    ----------
    conn : sqlite3.Connection
        Autocommit connection from `open_connection`.
    schema : TableSchema
        Target shape, the current schema unless a test overrides it.
    """

    def __init__(self, conn: sqlite3.Connection, schema: TableSchema = CURRENT_SCHEMA) -> None:
        self._conn = conn
        self._schema = schema

    # -- inspection ---------------------------------------------------------

    def table_exists(self, name: str) -> bool:
        row = self._conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name=?", (name,)
        ).fetchone()
        return row is not None

    def table_shape(self, table: str = TABLE_NAME) -> list[ColumnShape]:
        # table_info: cid, name, type, notnull, dflt_value, pk
        rows = self._conn.execute(f"PRAGMA table_info({table})").fetchall()
        return [
            (str(r[1]), str(r[2]).upper(), bool(r[3]), r[4], bool(r[5]))
            for r in rows
        ]

    def is_current_shape(self) -> bool:
        return self.table_shape(self._schema.name) == self._schema.shape()

    def get_version(self) -> Optional[str]:
        """Return the latest stamped version, or None for an unstamped (legacy) store."""
        if not self.table_exists(VERSION_TABLE_NAME):
            return None
        row = self._conn.execute(
            f"SELECT Version FROM {VERSION_TABLE_NAME} ORDER BY ID DESC LIMIT 1"
        ).fetchone()
        return str(row[0]) if row else None

    def requires_upgrade(self) -> bool:
        if not self.is_current_shape():
            return True
        version = self.get_version()
        if version is None:
            return True
        current = _version_tuple(version)
        if current is None:
            logger.warning("Unparseable store version", extra={"version": version})
            return True
        return current < parse_version(CURRENT_VERSION)

    # -- lifecycle ----------------------------------------------------------

    def ensure_schema(self) -> bool:
        """
        Create the current schema in an empty store, or validate an existing one.

        Returns True when the schema was created. Raises HistoryOpenError when
        an existing table lacks any legacy column.
        """
        if self.table_exists(self._schema.name):
            names = {shape[0] for shape in self.table_shape(self._schema.name)}
            missing = sorted(LEGACY_COLUMN_NAMES - names)
            if missing:
                raise HistoryOpenError(
                    f"Unsupported {self._schema.name} table shape",
                    metadata={"missing_columns": missing},
                )
            return False

        self._conn.execute("BEGIN IMMEDIATE")
        try:
            self._create_table(self._schema)
            self._conn.execute(VERSION_TABLE_SQL)
            self.stamp_version(CURRENT_VERSION)
            self._conn.execute("COMMIT")
        except sqlite3.Error:
            self._conn.execute("ROLLBACK")
            raise
        logger.info("History schema created", extra={"version": CURRENT_VERSION})
        return True

    def stamp_version(self, version: str) -> bool:
        """
        Append `version` to the version table unless the store is already at or past it.

        Runs inside the caller's transaction. Returns True if a row was written.
        """
        self._conn.execute(VERSION_TABLE_SQL)
        current = self.get_version()
        current_key = _version_tuple(current) if current is not None else None
        if current_key is not None and current_key >= parse_version(version):
            return False
        self._conn.execute(
            f"INSERT INTO {VERSION_TABLE_NAME} (Version) VALUES (?)", (version,)
        )
        return True

    def upgrade(
        self,
        progress: Optional[ProgressCallback] = None,
        backup_path: Optional[Path] = None,
    ) -> MigrationResult:
        """
        Migrate the store to the current shape and version.

        No-op when `requires_upgrade()` is false. When `backup_path` is given the
        store is copied there before the transaction starts.

        Raises
        ------
        HistoryMigrationError
            If any step fails; the transaction is rolled back.
        """
        report = progress or _noop_progress
        from_version = self.get_version()
        if not self.requires_upgrade():
            return MigrationResult(changed=False, from_version=from_version, to_version=from_version)

        if backup_path is not None:
            try:
                backup_database(self._conn, backup_path)
            except sqlite3.Error as exc:
                raise HistoryMigrationError(
                    "Pre-upgrade backup failed", metadata={"backup_path": str(backup_path)}
                ) from exc

        logger.info(
            "History upgrade started",
            extra={"from_version": from_version, "to_version": CURRENT_VERSION},
        )
        self._conn.execute("BEGIN IMMEDIATE")
        try:
            report(0, "Creating new table")
            tmp = f"{self._schema.name}__new"
            self._conn.execute(f"DROP TABLE IF EXISTS {tmp}")
            self._create_table(self._schema, name_override=tmp)

            report(20, "Copying history rows")
            copied = self._copy_rows(tmp)

            report(50, "Removing duplicate work units")
            removed = self._remove_duplicates(tmp)

            report(80, "Replacing history table")
            last_issued = self._sequence_value(self._schema.name)
            self._conn.execute(f"DROP TABLE {self._schema.name}")
            self._conn.execute(f"ALTER TABLE {tmp} RENAME TO {self._schema.name}")
            self._carry_sequence(self._schema.name, last_issued)
            for idx in self._schema.indexes:
                self._conn.execute(idx)

            self.stamp_version(CURRENT_VERSION)
            self._conn.execute("COMMIT")
        except Exception as exc:
            self._conn.execute("ROLLBACK")
            logger.error(
                "History upgrade failed; rolled back",
                extra={"from_version": from_version, "error": str(exc)},
            )
            if isinstance(exc, HistoryMigrationError):
                raise
            raise HistoryMigrationError(
                f"Upgrade to {CURRENT_VERSION} failed: {exc}",
                metadata={"from_version": from_version},
            ) from exc

        report(100, "Upgrade complete")
        logger.info(
            "History upgrade finished",
            extra={
                "from_version": from_version,
                "to_version": CURRENT_VERSION,
                "rows_copied": copied,
                "duplicates_removed": removed,
            },
        )
        return MigrationResult(
            changed=True,
            from_version=from_version,
            to_version=CURRENT_VERSION,
            rows_copied=copied,
            duplicates_removed=removed,
        )

    # -- rebuild steps ------------------------------------------------------

    def _create_table(self, schema: TableSchema, *, name_override: Optional[str] = None) -> None:
        self._conn.execute(schema.create_table_sql(name_override=name_override))
        if name_override is None:
            for idx in schema.indexes:
                self._conn.execute(idx)

    def _copy_rows(self, tmp: str) -> int:
        existing = {shape[0] for shape in self.table_shape(self._schema.name)}
        common = [name for name in self._schema.column_names if name in existing]
        cols_sql = ", ".join(common)
        cur = self._conn.execute(
            f"INSERT INTO {tmp} ({cols_sql}) SELECT {cols_sql} FROM {self._schema.name} ORDER BY ID"
        )
        return cur.rowcount

    def _remove_duplicates(self, tmp: str) -> int:
        key_sql = ", ".join(NATURAL_KEY_COLUMNS)
        cur = self._conn.execute(
            f"DELETE FROM {tmp} WHERE ID NOT IN (SELECT MIN(ID) FROM {tmp} GROUP BY {key_sql})"
        )
        return cur.rowcount

    def _sequence_value(self, table: str) -> int:
        if not self.table_exists("sqlite_sequence"):
            return 0
        row = self._conn.execute(
            "SELECT seq FROM sqlite_sequence WHERE name=?", (table,)
        ).fetchone()
        return int(row[0]) if row else 0

    def _carry_sequence(self, table: str, last_issued: int) -> None:
        # The copied table's counter only reaches the highest surviving ID;
        # IDs issued before the rebuild must stay retired.
        if last_issued <= 0:
            return
        cur = self._conn.execute(
            "UPDATE sqlite_sequence SET seq = MAX(seq, ?) WHERE name=?", (last_issued, table)
        )
        if cur.rowcount == 0:
            self._conn.execute(
                "INSERT INTO sqlite_sequence (name, seq) VALUES (?, ?)", (table, last_issued)
            )


__all__ = ["MigrationResult", "ProgressCallback", "SchemaManager"]
