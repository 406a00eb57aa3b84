"""
Schema upgrade tests against generated legacy stores.

Verifies that:
1. A legacy store is detected and upgraded to the current shape and version
2. Rows sharing a natural key collapse to the lowest ID
3. A failed upgrade leaves the store exactly as it was
4. Upgrading a current store is a no-op
"""

from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import List, Tuple

import pytest

from scripts.generate_history import create_legacy_store
from wuhistory.domain.models import BonusCalculation
from wuhistory.errors import HistoryMigrationError
from wuhistory.infrastructure.repository import WorkUnitRepository
from wuhistory.infrastructure.schema import CURRENT_VERSION

# Test expectation constants
LEGACY_COLUMN_COUNT = 15
CURRENT_COLUMN_COUNT = 23
LEGACY_ROWS = 44


def _table_info(path: Path) -> List[Tuple]:
    conn = sqlite3.connect(path)
    try:
        return conn.execute("PRAGMA table_info(WuHistory)").fetchall()
    finally:
        conn.close()


def _row_count(path: Path) -> int:
    conn = sqlite3.connect(path)
    try:
        return conn.execute("SELECT COUNT(*) FROM WuHistory").fetchone()[0]
    finally:
        conn.close()


def _ids(path: Path) -> List[int]:
    conn = sqlite3.connect(path)
    try:
        return [row[0] for row in conn.execute("SELECT ID FROM WuHistory ORDER BY ID")]
    finally:
        conn.close()


class TestLegacyDetection:
    def test_legacy_store_shape_and_version(self, legacy_repository: WorkUnitRepository, legacy_store: Path):
        """Legacy stores have 15 columns and no version stamp."""
        assert len(_table_info(legacy_store)) == LEGACY_COLUMN_COUNT
        assert legacy_repository.get_database_version() is None
        assert legacy_repository.requires_upgrade() is True

    def test_delete_works_before_upgrade(self, legacy_repository: WorkUnitRepository):
        """Deletes by ID do not need the current shape."""
        assert legacy_repository.delete(100) == 0
        assert legacy_repository.delete(1) == 1
        assert legacy_repository.count() == LEGACY_ROWS - 1


class TestUpgrade:
    def test_upgrade_produces_current_shape(self, legacy_repository: WorkUnitRepository, legacy_store: Path):
        """Upgraded table has every column NOT NULL, defaults on the added ones, PK on ID only."""
        result = legacy_repository.upgrade()

        assert result.changed is True
        assert result.from_version is None
        assert result.to_version == CURRENT_VERSION
        info = _table_info(legacy_store)
        assert len(info) == CURRENT_COLUMN_COUNT
        assert [row[5] for row in info] == [1] + [0] * (CURRENT_COLUMN_COUNT - 1)
        assert all(row[3] == 1 for row in info)
        assert all(row[4] is not None for row in info[LEGACY_COLUMN_COUNT:])
        assert legacy_repository.get_database_version() == CURRENT_VERSION
        assert legacy_repository.requires_upgrade() is False

    def test_upgrade_keeps_distinct_rows(self, legacy_repository: WorkUnitRepository, legacy_store: Path):
        """A legacy store without duplicates keeps every row and ID."""
        ids_before = _ids(legacy_store)

        result = legacy_repository.upgrade()

        assert result.rows_copied == LEGACY_ROWS
        assert result.duplicates_removed == 0
        assert [r.id for r in legacy_repository.fetch()] == ids_before

    def test_added_columns_take_their_defaults(self, legacy_repository: WorkUnitRepository):
        """Columns missing from the legacy shape are filled with defaults, not computed."""
        legacy_repository.upgrade()

        records = legacy_repository.fetch(bonus=BonusCalculation.NONE)

        assert len(records) == LEGACY_ROWS
        for record in records:
            assert record.work_unit_name == ""
            assert record.core == ""
            assert record.k_factor == 0.0
            assert record.frames == 0
            assert record.atoms == 0
            assert record.base_credit == 0.0
            assert record.preferred_days == 0.0
            assert record.maximum_days == 0.0
            assert record.credit == 0.0
            assert record.ppd == 0.0

    def test_upgrade_does_not_reissue_deleted_ids(self, test_settings, tmp_path: Path, make_work_unit):
        """IDs deleted before the upgrade stay retired afterwards."""
        path = tmp_path / "retired" / "WuHistory.db3"
        create_legacy_store(path, rows=5)
        conn = sqlite3.connect(path)
        try:
            conn.execute("DELETE FROM WuHistory WHERE ID = 5")
            conn.commit()
        finally:
            conn.close()

        with WorkUnitRepository(settings=test_settings) as repo:
            repo.initialize(path)
            repo.upgrade()
            assert repo.insert(make_work_unit(1)) == 1

        assert _ids(path) == [1, 2, 3, 4, 6]

    def test_upgrade_removes_duplicates(self, test_settings, legacy_store_with_duplicates):
        """Rows repeating a natural key are dropped; the lowest ID survives."""
        path, total, duplicates = legacy_store_with_duplicates
        with WorkUnitRepository(settings=test_settings) as repo:
            repo.initialize(path)
            assert repo.count() == total

            result = repo.upgrade()

            assert result.rows_copied == total
            assert result.duplicates_removed == duplicates
            records = repo.fetch()
        assert len(records) == total - duplicates
        assert len({r.natural_key for r in records}) == len(records)

    def test_upgrade_reports_progress_and_writes_backup(
        self, legacy_repository: WorkUnitRepository, legacy_store: Path
    ):
        """Progress callback sees 0..100 and a <file>.bak copy is taken first."""
        seen: List[int] = []

        legacy_repository.upgrade(progress=lambda percent, message: seen.append(percent))

        assert seen[0] == 0
        assert seen[-1] == 100
        assert seen == sorted(seen)
        backup = legacy_store.with_name(legacy_store.name + ".bak")
        assert backup.exists()
        assert len(_table_info(backup)) == LEGACY_COLUMN_COUNT

    def test_failed_upgrade_rolls_back(self, test_settings, legacy_store_with_duplicates):
        """An error mid-upgrade leaves the legacy shape and every row in place."""
        path, total, _ = legacy_store_with_duplicates

        def _fail_halfway(percent: int, message: str) -> None:
            if percent >= 50:
                raise RuntimeError("simulated failure")

        with WorkUnitRepository(settings=test_settings) as repo:
            repo.initialize(path)
            with pytest.raises(HistoryMigrationError):
                repo.upgrade(progress=_fail_halfway)
            assert repo.requires_upgrade() is True
            assert repo.get_database_version() is None

        assert len(_table_info(path)) == LEGACY_COLUMN_COUNT
        assert _row_count(path) == total

    def test_upgrade_is_noop_when_current(self, repository: WorkUnitRepository, make_work_unit):
        """A store created at the current version is left untouched."""
        repository.insert(make_work_unit(1))

        result = repository.upgrade()

        assert result.changed is False
        assert result.to_version == CURRENT_VERSION
        assert repository.count() == 1

    def test_upgraded_store_accepts_inserts_and_deletes(
        self, legacy_repository: WorkUnitRepository, make_work_unit
    ):
        """After the upgrade the store behaves like a fresh one."""
        legacy_repository.upgrade()
        first = legacy_repository.fetch()[0]

        assert legacy_repository.delete(first) == 1
        assert legacy_repository.count() == LEGACY_ROWS - 1
        assert legacy_repository.insert(make_work_unit(1)) == 1
        assert legacy_repository.insert(make_work_unit(1)) == 0

    def test_version_never_goes_backwards(self, legacy_repository: WorkUnitRepository, legacy_store: Path):
        """Upgrading twice stamps the version once."""
        legacy_repository.upgrade()
        legacy_repository.upgrade()

        conn = sqlite3.connect(legacy_store)
        try:
            versions = [row[0] for row in conn.execute("SELECT Version FROM DbVersion ORDER BY ID")]
        finally:
            conn.close()
        assert versions == [CURRENT_VERSION]
