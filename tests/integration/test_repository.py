from __future__ import annotations

import sqlite3
from datetime import datetime, timezone
from pathlib import Path

import pytest

from wuhistory.domain.models import BonusCalculation, SlotType, WorkUnitResult
from wuhistory.domain.query import HistoryColumn, Predicate, Query, QueryOperator
from wuhistory.errors import (
    HistoryOpenError,
    QueryTranslationError,
    RepositoryClosedError,
    RepositoryNotConnectedError,
    UpgradeRequiredError,
)
from wuhistory.infrastructure.repository import WorkUnitRepository
from wuhistory.infrastructure.schema import CURRENT_VERSION


def _by_project(project_id: int) -> Query:
    return Query(
        name="by project",
        predicates=[Predicate(column=HistoryColumn.PROJECT_ID, operator=QueryOperator.EQUAL, value=project_id)],
    )


def _insert_reference_units(repo: WorkUnitRepository, make_work_unit) -> None:
    for number in (1, 2, 3, 4):
        assert repo.insert(make_work_unit(number)) == 1


def test_initialize_creates_current_store(repository: WorkUnitRepository, test_settings):
    assert repository.connected
    assert repository.path == test_settings.db_path
    assert Path(test_settings.db_path).exists()
    assert repository.get_database_version() == CURRENT_VERSION
    assert repository.requires_upgrade() is False
    assert repository.count() == 0


def test_insert_and_fetch_round_trips_every_field(repository: WorkUnitRepository, make_work_unit):
    _insert_reference_units(repository, make_work_unit)

    (record,) = repository.fetch(_by_project(2669), BonusCalculation.NONE)

    assert record.id is not None
    assert (record.project_run, record.project_clone, record.project_gen) == (1, 2, 3)
    assert record.name == "Owner"
    assert record.path == "Path"
    assert record.username == "harlam357"
    assert record.team == 32
    assert record.core_version == pytest.approx(2.09)
    assert record.frames_completed == 100
    assert record.frame_time_value == 600
    assert record.result is WorkUnitResult.FINISHED_UNIT
    assert record.assigned == datetime(2010, 1, 1, tzinfo=timezone.utc)
    assert record.finished == datetime(2010, 1, 2, tzinfo=timezone.utc)
    assert record.work_unit_name == "TestUnit1"
    assert record.k_factor == 1.0
    assert record.core == "GRO-A3"
    assert (record.frames, record.atoms) == (100, 1000)
    assert record.base_credit == 100.0
    assert (record.preferred_days, record.maximum_days) == (3.0, 5.0)
    assert record.slot_type is SlotType.CPU
    assert record.credit == 100.0


def test_slot_name_and_frame_time_for_gpu_unit(repository: WorkUnitRepository, make_work_unit):
    _insert_reference_units(repository, make_work_unit)

    (record,) = repository.fetch(_by_project(6903))

    assert record.name == "Owner2 Slot 02"
    assert record.path == "Path2"
    assert record.frame_time_value == 0
    assert record.slot_type is SlotType.GPU
    assert record.assigned == datetime(2012, 1, 2, tzinfo=timezone.utc)
    assert record.ppd == 0.0


def test_duplicate_natural_key_is_skipped(repository: WorkUnitRepository, make_work_unit):
    assert repository.insert(make_work_unit(1)) == 1
    assert repository.insert(make_work_unit(1)) == 0
    assert repository.insert(make_work_unit(1, run=2)) == 1

    assert repository.count() == 2


def test_missing_metadata_is_filled_from_protein_service(test_settings, protein_catalog, make_work_unit):
    with WorkUnitRepository(protein_service=protein_catalog, settings=test_settings) as repo:
        repo.initialize(test_settings.db_path)
        assert repo.insert(make_work_unit(2, with_metadata=False)) == 1

        (record,) = repo.fetch(_by_project(6900))

    assert record.work_unit_name == "TestUnit2"
    assert record.core == "GRO-A4"
    assert record.base_credit == 200.0


def test_missing_metadata_without_service_stores_zeroes(repository: WorkUnitRepository, make_work_unit):
    assert repository.insert(make_work_unit(3, with_metadata=False)) == 1

    (record,) = repository.fetch()

    assert record.work_unit_name == ""
    assert record.k_factor == 0.0
    assert record.slot_type is SlotType.UNKNOWN
    assert record.credit == 0.0
    assert record.ppd == 0.0


def test_production_view_is_non_negative(repository: WorkUnitRepository, make_work_unit):
    _insert_reference_units(repository, make_work_unit)

    for bonus in BonusCalculation:
        for record in repository.fetch(bonus=bonus):
            assert record.credit >= 0.0
            assert record.ppd >= 0.0

    (unit1,) = repository.fetch(_by_project(2669), BonusCalculation.DOWNLOAD_TIME)
    assert unit1.credit > unit1.base_credit
    assert unit1.ppd > 0.0


def test_delete_by_record_and_id(repository: WorkUnitRepository, make_work_unit):
    _insert_reference_units(repository, make_work_unit)
    first, second = repository.fetch()[:2]

    assert repository.delete(first) == 1
    assert repository.delete(second.id) == 1
    assert repository.delete(second.id) == 0
    assert repository.count() == 2


def test_fetch_with_predicates(repository: WorkUnitRepository, make_work_unit):
    _insert_reference_units(repository, make_work_unit)

    gpu = Query(
        name="GPU",
        predicates=[Predicate(column=HistoryColumn.SLOT_TYPE, operator=QueryOperator.EQUAL, value=SlotType.GPU)],
    )
    owners = Query(name="owners", predicates=[Predicate.parse("Name like Owner%")])
    early = Query(
        name="early",
        predicates=[
            Predicate(column=HistoryColumn.RESULT, operator=QueryOperator.EQUAL, value=WorkUnitResult.EARLY_UNIT_END),
            Predicate.parse("Assigned >= 2010-01-01 00:00:00"),
        ],
    )

    assert [r.project_id for r in repository.fetch(gpu)] == [6903]
    assert len(repository.fetch(owners)) == 4
    assert [r.project_id for r in repository.fetch(early)] == [2670]
    assert repository.count(gpu) == 1


def test_invalid_query_is_rejected(repository: WorkUnitRepository):
    bad = Query(name="bad", predicates=[Predicate.parse("ProjectID like 26%")])

    with pytest.raises(QueryTranslationError):
        repository.fetch(bad)


def test_fetch_page(repository: WorkUnitRepository, make_work_unit):
    _insert_reference_units(repository, make_work_unit)

    page = repository.fetch_page(page=2, items_per_page=3)

    assert page.total_items == 4
    assert page.total_pages == 2
    assert [r.project_id for r in page.records] == [6903]
    assert repository.fetch_page(page=3, items_per_page=3).records == []
    with pytest.raises(ValueError):
        repository.fetch_page(page=0)


def test_operations_before_initialize_raise(test_settings, make_work_unit):
    repo = WorkUnitRepository(settings=test_settings)

    assert not repo.connected
    with pytest.raises(RepositoryNotConnectedError):
        repo.insert(make_work_unit(1))
    with pytest.raises(RepositoryNotConnectedError):
        repo.fetch()


def test_operations_after_close_raise(repository: WorkUnitRepository, make_work_unit):
    repository.close()

    assert not repository.connected
    with pytest.raises(RepositoryClosedError):
        repository.insert(make_work_unit(1))
    with pytest.raises(RepositoryClosedError):
        repository.count()


def test_corrupt_file_raises_open_error(tmp_path: Path, test_settings):
    path = tmp_path / "corrupt.db3"
    path.write_bytes(b"this is not a sqlite database" * 64)
    repo = WorkUnitRepository(settings=test_settings)

    with pytest.raises(HistoryOpenError):
        repo.initialize(path)
    assert not repo.connected


def test_unsupported_table_shape_raises_open_error(tmp_path: Path, test_settings):
    path = tmp_path / "foreign.db3"
    conn = sqlite3.connect(path)
    conn.execute("CREATE TABLE WuHistory (ID INTEGER PRIMARY KEY, Something TEXT)")
    conn.commit()
    conn.close()
    repo = WorkUnitRepository(settings=test_settings)

    with pytest.raises(HistoryOpenError) as excinfo:
        repo.initialize(path)
    assert "ProjectID" in excinfo.value.metadata["missing_columns"]
    assert not repo.connected


def test_legacy_store_requires_upgrade_for_writes(legacy_repository: WorkUnitRepository, make_work_unit):
    assert legacy_repository.get_database_version() is None
    assert legacy_repository.requires_upgrade() is True
    assert legacy_repository.count() == 44

    with pytest.raises(UpgradeRequiredError):
        legacy_repository.insert(make_work_unit(1))
    with pytest.raises(UpgradeRequiredError):
        legacy_repository.fetch()
