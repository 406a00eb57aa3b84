"""
Production view collaborators: project metadata lookup and credit/PPD arithmetic.

The history store only decides *when* these run (at fetch time, never persisted)
and hands them the record's frozen metadata snapshot. The protocols below are
the seams; StandardProductionCalculator and ProteinCatalog are the default
implementations used by the CLI and tests.
"""

from __future__ import annotations

import math
from datetime import timedelta
from pathlib import Path
from typing import Dict, Iterable, Optional, Protocol, runtime_checkable

from pydantic import TypeAdapter

from wuhistory.domain.models import BonusCalculation, ProjectMetadata

SECONDS_PER_DAY = 86400.0


@runtime_checkable
class ProductionCalculator(Protocol):
    """
    Computes credit and points-per-day for one work unit.

    Implementations must be pure and return non-negative values.
    """

    def compute_credit(
        self,
        metadata: ProjectMetadata,
        frame_time: timedelta,
        unit_time: timedelta,
        bonus: BonusCalculation,
    ) -> float:
        ...

    def compute_ppd(
        self,
        metadata: ProjectMetadata,
        frame_time: timedelta,
        unit_time: timedelta,
        bonus: BonusCalculation,
    ) -> float:
        ...


@runtime_checkable
class ProteinService(Protocol):
    """Looks up project constants by project number."""

    def get(self, project_number: int) -> Optional[ProjectMetadata]:
        ...


def bonus_multiplier(metadata: ProjectMetadata, unit_time: timedelta) -> float:
    """
    Quick-return bonus multiplier for a unit completed in `unit_time`.

    1.0 when the project has no k-factor, the unit time is unknown, or the unit
    finished after the preferred deadline.
    """
    unit_days = unit_time.total_seconds() / SECONDS_PER_DAY
    if metadata.k_factor <= 0 or unit_days <= 0:
        return 1.0
    if metadata.preferred_days > 0 and unit_days > metadata.preferred_days:
        return 1.0
    multiplier = math.sqrt(metadata.maximum_days * metadata.k_factor / unit_days)
    return max(multiplier, 1.0)


class StandardProductionCalculator:
    """
    Default ProductionCalculator using the quick-return bonus formula.

    The unit time used for the bonus depends on the mode:
    - FRAME_TIME: frame time multiplied by the project's frame count
    - DOWNLOAD_TIME: the supplied unit time (finished - assigned), falling back
      to the frame-time estimate when it is not positive
    - NONE: no bonus, base credit only
    """

    def _bonus_unit_time(
        self,
        metadata: ProjectMetadata,
        frame_time: timedelta,
        unit_time: timedelta,
        bonus: BonusCalculation,
    ) -> timedelta:
        estimated = frame_time * metadata.frames
        if bonus is BonusCalculation.DOWNLOAD_TIME and unit_time > timedelta(0):
            return unit_time
        return estimated

    def compute_credit(
        self,
        metadata: ProjectMetadata,
        frame_time: timedelta,
        unit_time: timedelta,
        bonus: BonusCalculation,
    ) -> float:
        if bonus is BonusCalculation.NONE:
            return metadata.base_credit
        effective = self._bonus_unit_time(metadata, frame_time, unit_time, bonus)
        return metadata.base_credit * bonus_multiplier(metadata, effective)

    def compute_ppd(
        self,
        metadata: ProjectMetadata,
        frame_time: timedelta,
        unit_time: timedelta,
        bonus: BonusCalculation,
    ) -> float:
        seconds_per_unit = frame_time.total_seconds() * metadata.frames
        if seconds_per_unit <= 0:
            return 0.0
        units_per_day = SECONDS_PER_DAY / seconds_per_unit
        return self.compute_credit(metadata, frame_time, unit_time, bonus) * units_per_day


class ProteinCatalog:
    """
    In-memory ProteinService keyed by project number.

    Can be loaded from a JSON array of ProjectMetadata objects.
    """

    _adapter = TypeAdapter(list[ProjectMetadata])

    def __init__(self, proteins: Iterable[ProjectMetadata] = ()) -> None:
        self._proteins: Dict[int, ProjectMetadata] = {p.project_number: p for p in proteins}

    @classmethod
    def from_json_file(cls, path: Path | str) -> "ProteinCatalog":
        raw = Path(path).read_text(encoding="utf-8")
        return cls(cls._adapter.validate_json(raw))

    def get(self, project_number: int) -> Optional[ProjectMetadata]:
        return self._proteins.get(project_number)

    def __len__(self) -> int:
        return len(self._proteins)


__all__ = [
    "ProductionCalculator",
    "ProteinCatalog",
    "ProteinService",
    "StandardProductionCalculator",
    "bonus_multiplier",
]
