"""
SQLite schema definitions for the work-unit history store.

Two shapes of the `WuHistory` table exist on disk:
- the legacy shape: 15 columns, no version stamp, duplicates allowed
- the current shape: 23 columns, all NOT NULL, ID the only primary key,
  DEFAULTs on every column after the first 15, unique natural key

Shapes are compared through `PRAGMA table_info`, so column definitions here
are written exactly as SQLite reports them back.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Sequence, Tuple

from wuhistory.domain.models import normalize_timestamp

CURRENT_VERSION = "0.9.2"

TABLE_NAME = "WuHistory"
VERSION_TABLE_NAME = "DbVersion"
NATURAL_KEY_INDEX = "IX_WuHistory_NaturalKey"

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"

# (name, type, notnull, dflt_value, pk) as reported by PRAGMA table_info
ColumnShape = Tuple[str, str, bool, Optional[str], bool]


@dataclass(frozen=True)
class ColumnDef:
    name: str
    col_type: str
    not_null: bool = True
    # Raw SQL default (e.g. "0", "''").
    default_sql: Optional[str] = None
    primary_key: bool = False

    def ddl(self) -> str:
        s = f"{self.name} {self.col_type}"
        if self.not_null:
            s += " NOT NULL"
        if self.primary_key:
            s += " PRIMARY KEY AUTOINCREMENT"
        if self.default_sql is not None:
            s += f" DEFAULT {self.default_sql}"
        return s

    def shape(self) -> ColumnShape:
        return (self.name, self.col_type.upper(), self.not_null, self.default_sql, self.primary_key)


@dataclass(frozen=True)
class TableSchema:
    name: str
    columns: Sequence[ColumnDef]
    indexes: Sequence[str] = ()

    @property
    def column_names(self) -> list[str]:
        return [c.name for c in self.columns]

    def create_table_sql(self, name_override: Optional[str] = None) -> str:
        tn = name_override or self.name
        return f"CREATE TABLE {tn} ({', '.join(c.ddl() for c in self.columns)})"

    def shape(self) -> list[ColumnShape]:
        return [c.shape() for c in self.columns]


NATURAL_KEY_COLUMNS = ("ProjectID", "ProjectRun", "ProjectClone", "ProjectGen", "DownloadDateTime")

NATURAL_KEY_INDEX_SQL = (
    f"CREATE UNIQUE INDEX IF NOT EXISTS {NATURAL_KEY_INDEX} "
    f"ON {TABLE_NAME} ({', '.join(NATURAL_KEY_COLUMNS)})"
)

VERSION_TABLE_SQL = (
    f"CREATE TABLE IF NOT EXISTS {VERSION_TABLE_NAME} "
    "(ID INTEGER PRIMARY KEY AUTOINCREMENT, Version VARCHAR(20) NOT NULL)"
)


LEGACY_SCHEMA = TableSchema(
    name=TABLE_NAME,
    columns=(
        ColumnDef("ID", "INTEGER", not_null=False, primary_key=True),
        ColumnDef("ProjectID", "INT"),
        ColumnDef("ProjectRun", "INT"),
        ColumnDef("ProjectClone", "INT"),
        ColumnDef("ProjectGen", "INT"),
        ColumnDef("InstanceName", "VARCHAR(30)"),
        ColumnDef("InstancePath", "VARCHAR(120)"),
        ColumnDef("Username", "VARCHAR(30)"),
        ColumnDef("Team", "INT"),
        ColumnDef("CoreVersion", "FLOAT"),
        ColumnDef("FramesCompleted", "INT"),
        ColumnDef("FrameTime", "INT"),
        ColumnDef("Result", "INT"),
        ColumnDef("DownloadDateTime", "DATETIME"),
        ColumnDef("CompletionDateTime", "DATETIME"),
    ),
)

CURRENT_SCHEMA = TableSchema(
    name=TABLE_NAME,
    columns=(
        ColumnDef("ID", "INTEGER", primary_key=True),
        *LEGACY_SCHEMA.columns[1:5],
        ColumnDef("InstanceName", "VARCHAR(60)"),
        ColumnDef("InstancePath", "VARCHAR(260)"),
        ColumnDef("Username", "VARCHAR(60)"),
        *LEGACY_SCHEMA.columns[8:],
        ColumnDef("WorkUnitName", "VARCHAR(30)", default_sql="''"),
        ColumnDef("KFactor", "FLOAT", default_sql="0"),
        ColumnDef("Core", "VARCHAR(20)", default_sql="''"),
        ColumnDef("Frames", "INT", default_sql="0"),
        ColumnDef("Atoms", "INT", default_sql="0"),
        ColumnDef("Credit", "FLOAT", default_sql="0"),
        ColumnDef("PreferredDays", "FLOAT", default_sql="0"),
        ColumnDef("MaximumDays", "FLOAT", default_sql="0"),
    ),
    indexes=(NATURAL_KEY_INDEX_SQL,),
)

LEGACY_COLUMN_NAMES = frozenset(LEGACY_SCHEMA.column_names)


def parse_version(value: str) -> Tuple[int, ...]:
    """
    Parse a dotted version string into a comparable tuple.

    Raises ValueError for empty or non-numeric components.
    """
    parts = value.strip().split(".")
    return tuple(int(p) for p in parts)


def format_timestamp(value: datetime) -> str:
    """Render a timestamp the way the store persists it (UTC, second precision)."""
    return normalize_timestamp(value).strftime(TIMESTAMP_FORMAT)


__all__ = [
    "CURRENT_SCHEMA",
    "CURRENT_VERSION",
    "ColumnDef",
    "ColumnShape",
    "LEGACY_COLUMN_NAMES",
    "LEGACY_SCHEMA",
    "NATURAL_KEY_COLUMNS",
    "NATURAL_KEY_INDEX",
    "NATURAL_KEY_INDEX_SQL",
    "TABLE_NAME",
    "TIMESTAMP_FORMAT",
    "TableSchema",
    "VERSION_TABLE_NAME",
    "VERSION_TABLE_SQL",
    "format_timestamp",
    "parse_version",
]
