"""
Work-unit history repository.

The façade over one SQLite store: open/create, detect and upgrade the schema,
deduplicating inserts, deletes by ID, and filtered reads enriched with the
production view (credit, PPD).

Concurrency model: one connection per repository, guarded by a single
re-entrant lock. Every statement (reads included) runs under the lock, so the
natural-key check and the insert happen in one BEGIN IMMEDIATE transaction and
readers never see a half-committed write.
"""

from __future__ import annotations

import math
import sqlite3
import threading
from pathlib import Path
from typing import Any, List, Optional, Sequence, Tuple, Union

from pydantic import BaseModel, Field

from wuhistory.config import Settings, get_settings
from wuhistory.domain.mapping import map_event
from wuhistory.domain.models import BonusCalculation, CompletionEvent, HistoryRecord
from wuhistory.domain.production import (
    ProductionCalculator,
    ProteinService,
    StandardProductionCalculator,
)
from wuhistory.domain.query import Query
from wuhistory.errors import (
    HistoryOpenError,
    RepositoryClosedError,
    RepositoryNotConnectedError,
    UpgradeRequiredError,
)
from wuhistory.infrastructure.db_factory import MEMORY_PATH, backup_path_for, open_connection
from wuhistory.infrastructure.migrator import MigrationResult, ProgressCallback, SchemaManager
from wuhistory.infrastructure.query_translator import translate
from wuhistory.infrastructure.schema import (
    CURRENT_SCHEMA,
    NATURAL_KEY_COLUMNS,
    TABLE_NAME,
    format_timestamp,
)
from wuhistory.utils.logging import ContextAdapter, bind_logger, get_logger

logger = get_logger(__name__)

# Stored column -> fetch view column
_VIEW_COLUMNS: Tuple[Tuple[str, str], ...] = (
    ("ID", "ID"),
    ("ProjectID", "ProjectID"),
    ("ProjectRun", "ProjectRun"),
    ("ProjectClone", "ProjectClone"),
    ("ProjectGen", "ProjectGen"),
    ("InstanceName", "Name"),
    ("InstancePath", "Path"),
    ("Username", "Username"),
    ("Team", "Team"),
    ("CoreVersion", "CoreVersion"),
    ("FramesCompleted", "FramesCompleted"),
    ("FrameTime", "FrameTime"),
    ("Result", "Result"),
    ("DownloadDateTime", "Assigned"),
    ("CompletionDateTime", "Finished"),
    ("WorkUnitName", "WorkUnitName"),
    ("KFactor", "KFactor"),
    ("Core", "Core"),
    ("Frames", "Frames"),
    ("Atoms", "Atoms"),
    ("Credit", "BaseCredit"),
    ("PreferredDays", "PreferredDays"),
    ("MaximumDays", "MaximumDays"),
    ("slot_type(Core)", "SlotType"),
)

_VIEW_SQL = (
    "SELECT "
    + ", ".join(f"{src} AS {alias}" for src, alias in _VIEW_COLUMNS)
    + f" FROM {TABLE_NAME}"
)

_INSERT_COLUMNS = CURRENT_SCHEMA.column_names[1:]
_INSERT_SQL = (
    f"INSERT INTO {TABLE_NAME} ({', '.join(_INSERT_COLUMNS)}) "
    f"VALUES ({', '.join('?' for _ in _INSERT_COLUMNS)})"
)

_EXISTS_SQL = (
    f"SELECT ID FROM {TABLE_NAME} WHERE "
    + " AND ".join(f"{col} = ?" for col in NATURAL_KEY_COLUMNS)
    + " LIMIT 1"
)


class HistoryPage(BaseModel):
    """One page of a fetch, with 1-based page numbering."""

    page: int
    items_per_page: int
    total_items: int
    total_pages: int
    records: List[HistoryRecord] = Field(default_factory=list)

    model_config = {"frozen": True}


def _insert_params(record: HistoryRecord) -> Tuple[Any, ...]:
    return (
        record.project_id,
        record.project_run,
        record.project_clone,
        record.project_gen,
        record.name,
        record.path,
        record.username,
        record.team,
        record.core_version,
        record.frames_completed,
        record.frame_time_value,
        record.result_value,
        format_timestamp(record.assigned),
        format_timestamp(record.finished),
        record.work_unit_name,
        record.k_factor,
        record.core,
        record.frames,
        record.atoms,
        record.base_credit,
        record.preferred_days,
        record.maximum_days,
    )


def _row_to_record(row: sqlite3.Row) -> HistoryRecord:
    return HistoryRecord(
        id=row["ID"],
        project_id=row["ProjectID"],
        project_run=row["ProjectRun"],
        project_clone=row["ProjectClone"],
        project_gen=row["ProjectGen"],
        name=row["Name"],
        path=row["Path"],
        username=row["Username"],
        team=row["Team"],
        core_version=row["CoreVersion"],
        frames_completed=row["FramesCompleted"],
        frame_time_value=row["FrameTime"],
        result_value=row["Result"],
        assigned=row["Assigned"],
        finished=row["Finished"],
        work_unit_name=row["WorkUnitName"],
        k_factor=row["KFactor"],
        core=row["Core"],
        frames=row["Frames"],
        atoms=row["Atoms"],
        base_credit=row["BaseCredit"],
        preferred_days=row["PreferredDays"],
        maximum_days=row["MaximumDays"],
        slot_type=row["SlotType"],
    )


class WorkUnitRepository:
    """
    Durable, deduplicated work-unit history.

    Parameters
    ----------
    protein_service : ProteinService, optional
        Fills in project metadata for events that arrive without it.
    calculator : ProductionCalculator, optional
        Computes credit/PPD at fetch time. Defaults to StandardProductionCalculator.
    settings : Settings, optional
        Defaults to the cached application settings.

    Usage
    -----
        with WorkUnitRepository() as repo:
            repo.initialize("WuHistory.db3")
            if repo.requires_upgrade():
                repo.upgrade()
            repo.insert(event)
            records = repo.fetch(Query.select_all(), BonusCalculation.DOWNLOAD_TIME)
    """

    def __init__(
        self,
        protein_service: Optional[ProteinService] = None,
        calculator: Optional[ProductionCalculator] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._protein_service = protein_service
        self._calculator: ProductionCalculator = calculator or StandardProductionCalculator()
        self._settings = settings or get_settings()
        self._lock = threading.RLock()
        self._conn: Optional[sqlite3.Connection] = None
        self._schema: Optional[SchemaManager] = None
        self._path: Optional[str] = None
        self._legacy_shape = False
        self._closed = False
        self._log: ContextAdapter = bind_logger(logger)

    # -- lifecycle ----------------------------------------------------------

    @property
    def connected(self) -> bool:
        return self._conn is not None

    @property
    def path(self) -> Optional[str]:
        return self._path

    def initialize(self, path: Union[str, Path, None] = None) -> None:
        """
        Open (or create) the store at `path`, defaulting to settings.

        Raises
        ------
        HistoryOpenError
            If the file is corrupt, locked or has an unsupported table shape.
            The repository is left disconnected.
        """
        target = str(path if path is not None else self._settings.db_path)
        with self._lock:
            self._disconnect()
            self._closed = False
            try:
                conn = open_connection(
                    target,
                    timeout=self._settings.db_timeout_seconds,
                    journal_mode=self._settings.journal_mode,
                )
            except sqlite3.Error as exc:
                logger.error("Failed to open history store", extra={"store": target, "error": str(exc)})
                raise HistoryOpenError(
                    f"Cannot open history store {target}: {exc}", metadata={"path": target}
                ) from exc

            conn.row_factory = sqlite3.Row
            schema = SchemaManager(conn)
            try:
                created = schema.ensure_schema()
                legacy = not schema.is_current_shape()
            except HistoryOpenError as exc:
                conn.close()
                exc.metadata.setdefault("path", target)
                raise
            except sqlite3.Error as exc:
                conn.close()
                raise HistoryOpenError(
                    f"Cannot open history store {target}: {exc}", metadata={"path": target}
                ) from exc

            self._conn = conn
            self._schema = schema
            self._path = target
            self._legacy_shape = legacy
            self._log = bind_logger(logger, store=target)
            self._log.info(
                "History store opened",
                extra={"schema_created": created, "legacy_shape": legacy},
            )

    def close(self) -> None:
        with self._lock:
            self._disconnect()
            self._closed = True

    def _disconnect(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._log.debug("History store closed")
        self._conn = None
        self._schema = None

    def __enter__(self) -> "WorkUnitRepository":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _require_open(self) -> Tuple[sqlite3.Connection, SchemaManager]:
        if self._closed:
            raise RepositoryClosedError("Repository is closed")
        if self._conn is None or self._schema is None:
            raise RepositoryNotConnectedError("Repository is not initialized")
        return self._conn, self._schema

    def _require_current_shape(self, operation: str) -> None:
        if self._legacy_shape:
            raise UpgradeRequiredError(
                f"Store must be upgraded before {operation}", metadata={"path": self._path}
            )

    # -- schema -------------------------------------------------------------

    def get_database_version(self) -> Optional[str]:
        with self._lock:
            _, schema = self._require_open()
            return schema.get_version()

    def requires_upgrade(self) -> bool:
        with self._lock:
            _, schema = self._require_open()
            return schema.requires_upgrade()

    def upgrade(self, progress: Optional[ProgressCallback] = None) -> MigrationResult:
        """
        Migrate the store to the current schema; no-op if already current.

        A `<file>.bak` copy is taken first when `backup_on_upgrade` is enabled.
        """
        with self._lock:
            _, schema = self._require_open()
            backup = None
            if self._settings.backup_on_upgrade and self._path not in (None, MEMORY_PATH):
                backup = backup_path_for(self._path)
            result = schema.upgrade(progress=progress, backup_path=backup)
            self._legacy_shape = not schema.is_current_shape()
            return result

    # -- writes -------------------------------------------------------------

    def _with_metadata(self, event: CompletionEvent) -> CompletionEvent:
        if event.metadata is not None or self._protein_service is None:
            return event
        metadata = self._protein_service.get(event.project_id)
        if metadata is None:
            return event
        return event.model_copy(update={"metadata": metadata})

    def insert(self, event: CompletionEvent) -> int:
        """
        Persist `event` unless its natural key is already stored.

        Returns 1 when a row was written, 0 for a duplicate.
        """
        record = map_event(self._with_metadata(event))
        key = record.natural_key
        key_params = (
            key.project_id,
            key.project_run,
            key.project_clone,
            key.project_gen,
            format_timestamp(key.assigned),
        )
        with self._lock:
            conn, _ = self._require_open()
            self._require_current_shape("insert")
            conn.execute("BEGIN IMMEDIATE")
            try:
                if conn.execute(_EXISTS_SQL, key_params).fetchone() is not None:
                    conn.execute("COMMIT")
                    self._log.debug("Duplicate work unit skipped", extra={"natural_key": key_params})
                    return 0
                conn.execute(_INSERT_SQL, _insert_params(record))
                conn.execute("COMMIT")
            except sqlite3.IntegrityError:
                # Another process won the race on the unique index.
                conn.execute("ROLLBACK")
                self._log.debug("Duplicate work unit rejected by index", extra={"natural_key": key_params})
                return 0
            except Exception:
                conn.execute("ROLLBACK")
                raise
        return 1

    def delete(self, record_or_id: Union[HistoryRecord, int]) -> int:
        """Delete by surrogate ID. Returns the number of rows removed (0 or 1)."""
        row_id = record_or_id.id if isinstance(record_or_id, HistoryRecord) else record_or_id
        if row_id is None:
            return 0
        with self._lock:
            conn, _ = self._require_open()
            conn.execute("BEGIN IMMEDIATE")
            try:
                cur = conn.execute(f"DELETE FROM {TABLE_NAME} WHERE ID = ?", (int(row_id),))
                conn.execute("COMMIT")
            except Exception:
                conn.execute("ROLLBACK")
                raise
        deleted = max(cur.rowcount, 0)
        self._log.debug("Delete by ID", extra={"row_id": row_id, "deleted": deleted})
        return deleted

    # -- reads --------------------------------------------------------------

    def _select(self, query: Query, tail: str = "", tail_params: Sequence[Any] = ()) -> Tuple[str, Tuple[Any, ...]]:
        translated = translate(query)
        sql = f"SELECT * FROM ({_VIEW_SQL})"
        if translated.where:
            sql += f" WHERE {translated.where}"
        return sql + tail, translated.params + tuple(tail_params)

    def _with_production(self, record: HistoryRecord, bonus: BonusCalculation) -> HistoryRecord:
        metadata = record.metadata
        unit_time = record.finished - record.assigned
        credit = self._calculator.compute_credit(metadata, record.frame_time, unit_time, bonus)
        ppd = self._calculator.compute_ppd(metadata, record.frame_time, unit_time, bonus)
        return record.model_copy(update={"credit": max(credit, 0.0), "ppd": max(ppd, 0.0)})

    def fetch(
        self, query: Optional[Query] = None, bonus: Optional[BonusCalculation] = None
    ) -> List[HistoryRecord]:
        """
        Return the records matching `query` ordered by ID, with credit and PPD
        computed for `bonus` (defaults to settings).

        Raises QueryTranslationError before touching the store when the query
        is invalid.
        """
        query = query or Query.select_all()
        bonus = self._settings.bonus_calculation if bonus is None else bonus
        sql, params = self._select(query, " ORDER BY ID")
        with self._lock:
            conn, _ = self._require_open()
            self._require_current_shape("fetch")
            rows = conn.execute(sql, params).fetchall()
        return [self._with_production(_row_to_record(row), bonus) for row in rows]

    def count(self, query: Optional[Query] = None) -> int:
        query = query or Query.select_all()
        if query.is_select_all:
            sql, params = f"SELECT COUNT(*) FROM {TABLE_NAME}", ()
        else:
            inner, params = self._select(query)
            sql = f"SELECT COUNT(*) FROM ({inner})"
        with self._lock:
            conn, _ = self._require_open()
            if not query.is_select_all:
                self._require_current_shape("count")
            return int(conn.execute(sql, params).fetchone()[0])

    def fetch_page(
        self,
        query: Optional[Query] = None,
        bonus: Optional[BonusCalculation] = None,
        page: int = 1,
        items_per_page: int = 50,
    ) -> HistoryPage:
        """
        Return one page of `fetch` results. Pages are 1-based; a page past the
        end returns no records.
        """
        if page < 1:
            raise ValueError("page must be >= 1")
        if items_per_page < 1:
            raise ValueError("items_per_page must be >= 1")
        query = query or Query.select_all()
        bonus = self._settings.bonus_calculation if bonus is None else bonus
        offset = (page - 1) * items_per_page
        sql, params = self._select(query, " ORDER BY ID LIMIT ? OFFSET ?", (items_per_page, offset))
        with self._lock:
            conn, _ = self._require_open()
            self._require_current_shape("fetch")
            total = self.count(query)
            rows = conn.execute(sql, params).fetchall()
        return HistoryPage(
            page=page,
            items_per_page=items_per_page,
            total_items=total,
            total_pages=math.ceil(total / items_per_page) if total else 0,
            records=[self._with_production(_row_to_record(row), bonus) for row in rows],
        )


__all__ = ["HistoryPage", "WorkUnitRepository"]
