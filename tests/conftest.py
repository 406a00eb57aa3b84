"""
Pytest configuration for the work-unit history store.

Provides fixtures for:
- Settings pointed at a per-test temporary directory
- Completion events and protein metadata matching the reference work units
- Fresh, legacy (44 rows) and legacy-with-duplicates (285 rows) stores
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Dict, Generator, Tuple

import pytest

from scripts.generate_history import create_legacy_store
from wuhistory.config import Settings
from wuhistory.domain.models import (
    NO_SLOT_ID,
    ClientIdentity,
    CompletionEvent,
    FrameSample,
    ProjectMetadata,
    WorkUnitResult,
)
from wuhistory.domain.production import ProteinCatalog
from wuhistory.infrastructure.repository import WorkUnitRepository

LEGACY_ROWS = 44
LEGACY_DUPLICATE_ROWS = 285
LEGACY_DUPLICATES = 32


def _utc(*args: int) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


def build_protein(number: int) -> ProjectMetadata:
    catalog = {
        1: dict(work_unit_name="TestUnit1", k_factor=1.0, core="GRO-A3", frames=100, atoms=1000,
                base_credit=100.0, preferred_days=3.0, maximum_days=5.0),
        2: dict(work_unit_name="TestUnit2", k_factor=2.0, core="GRO-A4", frames=200, atoms=2000,
                base_credit=200.0, preferred_days=6.0, maximum_days=10.0),
        3: dict(work_unit_name="TestUnit3", k_factor=3.0, core="GRO-A5", frames=300, atoms=3000,
                base_credit=300.0, preferred_days=7.0, maximum_days=12.0),
        4: dict(work_unit_name="TestUnit4", k_factor=4.0, core="OPENMMGPU", frames=400, atoms=4000,
                base_credit=400.0, preferred_days=2.0, maximum_days=5.0),
    }
    projects = {1: 2669, 2: 6900, 3: 2670, 4: 6903}
    return ProjectMetadata(project_number=projects[number], **catalog[number])


def build_work_unit(number: int, run: int = 1, with_metadata: bool = True) -> CompletionEvent:
    """Reference work units 1-4, optionally without their metadata snapshot."""
    ten_minutes = FrameSample(id=100, duration=timedelta(minutes=10))
    units: Dict[int, dict] = {
        1: dict(
            project_id=2669, project_run=run, project_clone=2, project_gen=3,
            client=ClientIdentity(name="Owner", server="Path"), slot_id=NO_SLOT_ID,
            folding_id="harlam357", team=32, core_version=2.09,
            result=WorkUnitResult.FINISHED_UNIT,
            assigned=_utc(2010, 1, 1), finished=_utc(2010, 1, 2),
            frames_observed=1, frames={100: ten_minutes},
        ),
        2: dict(
            project_id=6900, project_run=4, project_clone=5, project_gen=6,
            client=ClientIdentity(name="Owner's", server="The Path's"), slot_id=NO_SLOT_ID,
            folding_id="harlam357's", team=100, core_version=2.27,
            result=WorkUnitResult.EARLY_UNIT_END,
            assigned=_utc(2009, 5, 5), finished=_utc(2009, 5, 6),
            frames_observed=1, frames={56: FrameSample(id=56, duration=timedelta(seconds=1000))},
        ),
        3: dict(
            project_id=2670, project_run=2, project_clone=3, project_gen=4,
            client=ClientIdentity(name="Owner", server="Path"), slot_id=NO_SLOT_ID,
            folding_id="harlam357", team=32, core_version=2.09,
            result=WorkUnitResult.EARLY_UNIT_END,
            assigned=_utc(2010, 2, 2), finished=_utc(2010, 2, 3),
            frames_observed=0, frames={100: ten_minutes},
        ),
        4: dict(
            project_id=6903, project_run=2, project_clone=3, project_gen=4,
            client=ClientIdentity(name="Owner2", server="Path2"), slot_id=2,
            folding_id="harlam357", team=32, core_version=2.27,
            result=WorkUnitResult.FINISHED_UNIT,
            # naive timestamps are taken as UTC
            assigned=datetime(2012, 1, 2), finished=datetime(2012, 1, 5),
            frames_observed=0, frames={100: ten_minutes},
        ),
    }
    metadata = build_protein(number) if with_metadata else None
    return CompletionEvent(metadata=metadata, **units[number])


@pytest.fixture
def make_work_unit() -> Callable[..., CompletionEvent]:
    return build_work_unit


@pytest.fixture
def make_protein() -> Callable[[int], ProjectMetadata]:
    return build_protein


@pytest.fixture
def protein_catalog() -> ProteinCatalog:
    return ProteinCatalog(build_protein(n) for n in (1, 2, 3, 4))


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    """
    Settings fixture with every file location inside the test's tmp_path.
    """
    return Settings(
        db_path=str(tmp_path / "WuHistory.db3"),
        queries_path=str(tmp_path / "WuHistoryQuery.json"),
        results_dir=str(tmp_path / "results"),
        backup_on_upgrade=True,
        db_timeout_seconds=10.0,
        log_level="DEBUG",
    )


@pytest.fixture
def repository(test_settings: Settings) -> Generator[WorkUnitRepository, None, None]:
    """
    Repository over a freshly created store.
    """
    repo = WorkUnitRepository(settings=test_settings)
    repo.initialize(test_settings.db_path)
    try:
        yield repo
    finally:
        repo.close()


@pytest.fixture
def legacy_store(tmp_path: Path) -> Path:
    """A legacy-shape store with 44 distinct rows."""
    path = tmp_path / "legacy" / "WuHistory.db3"
    create_legacy_store(path, rows=LEGACY_ROWS, duplicates=0, seed=7)
    return path


@pytest.fixture
def legacy_store_with_duplicates(tmp_path: Path) -> Tuple[Path, int, int]:
    """A legacy-shape store with 285 rows, 32 of which repeat a natural key."""
    path = tmp_path / "legacy-dups" / "WuHistory.db3"
    create_legacy_store(path, rows=LEGACY_DUPLICATE_ROWS, duplicates=LEGACY_DUPLICATES, seed=42)
    return path, LEGACY_DUPLICATE_ROWS, LEGACY_DUPLICATES


@pytest.fixture
def legacy_repository(
    test_settings: Settings, legacy_store: Path
) -> Generator[WorkUnitRepository, None, None]:
    repo = WorkUnitRepository(settings=test_settings)
    repo.initialize(legacy_store)
    try:
        yield repo
    finally:
        repo.close()
