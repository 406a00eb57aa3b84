"""
Domain models for the work-unit history store.

Defines the inbound completion event produced by client telemetry, the project
metadata snapshot supplied by the protein service, and the persisted
HistoryRecord row shape. Models are immutable pydantic models so they can be
shared across writer threads without copying.
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from enum import Enum, IntEnum
from typing import Any, Dict, NamedTuple, Optional

from pydantic import BaseModel, Field, field_validator

NO_SLOT_ID = -1

_GPU_CORES = frozenset(
    {
        "GROGPU2",
        "GROGPU2-MT",
        "GROGPU3",
        "OPENMM_21",
        "OPENMM_22",
        "OPENMMGPU",
        "OPENMM_OPENCL",
        "ATI-DEV",
        "NVIDIA-DEV",
        "ZETA",
        "ZETA_DEV",
        "0X15",
        "0X16",
        "0X17",
        "0X18",
        "0X21",
        "0X22",
        "0X23",
    }
)

_CPU_CORES = frozenset(
    {
        "GROMACS",
        "DGROMACS",
        "GBGROMACS",
        "AMBER",
        "GROMACS33",
        "GROST",
        "GROSIMT",
        "DGROMACSB",
        "DGROMACSC",
        "GRO-SMP",
        "GROCVS",
        "GRO-A3",
        "GRO-A4",
        "GRO-A5",
        "GRO-A6",
        "GRO-A7",
        "GRO_A8",
        "PROTOMOL",
        "0XA3",
        "0XA4",
        "0XA5",
        "0XA7",
        "0XA8",
        "0XA9",
    }
)


class WorkUnitResult(IntEnum):
    """Result code reported by the client when a work unit ends."""

    NONE = 0
    FINISHED_UNIT = 1
    EARLY_UNIT_END = 2
    UNSTABLE_MACHINE = 3
    INTERRUPTED = 4
    BAD_WORK_UNIT = 5
    CORE_OUTDATED = 6
    GPU_MEMTEST_ERROR = 7
    UNKNOWN_ENUM = 8


class SlotType(str, Enum):
    """Kind of execution slot a work unit ran on."""

    UNKNOWN = "Unknown"
    CPU = "CPU"
    GPU = "GPU"

    @classmethod
    def from_core_name(cls, core: Optional[str]) -> "SlotType":
        name = (core or "").strip().upper()
        if name in _GPU_CORES:
            return cls.GPU
        if name in _CPU_CORES:
            return cls.CPU
        return cls.UNKNOWN


class BonusCalculation(str, Enum):
    """How the production view derives bonus credit for a record."""

    NONE = "None"
    FRAME_TIME = "FrameTime"
    DOWNLOAD_TIME = "DownloadTime"


def normalize_timestamp(value: datetime) -> datetime:
    """
    Return `value` as an aware UTC datetime truncated to whole seconds.

    Naive values are taken to already be UTC.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    else:
        value = value.astimezone(timezone.utc)
    return value.replace(microsecond=0)


class NaturalKey(NamedTuple):
    """Fields that identify one physical work-unit attempt."""

    project_id: int
    project_run: int
    project_clone: int
    project_gen: int
    assigned: datetime


class ClientIdentity(BaseModel):
    """The client a work unit was processed by."""

    name: str
    server: str = ""
    port: Optional[int] = None

    model_config = {"frozen": True}

    def to_server_port_string(self) -> str:
        if self.port is not None and 0 < self.port <= 65535:
            return f"{self.server}:{self.port}"
        return self.server


class FrameSample(BaseModel):
    """One observed frame (progress step) of a work unit."""

    id: int = Field(..., ge=0)
    duration: timedelta = Field(default_factory=timedelta)

    model_config = {"frozen": True}


class ProjectMetadata(BaseModel):
    """
    Project constants supplied by the protein service.

    A snapshot of these values is frozen into every history record at insert
    time; production figures are computed from the snapshot, not from live data.
    """

    project_number: int = 0
    work_unit_name: str = ""
    k_factor: float = Field(0.0, ge=0)
    core: str = ""
    frames: int = Field(0, ge=0)
    atoms: int = Field(0, ge=0)
    base_credit: float = Field(0.0, ge=0)
    preferred_days: float = Field(0.0, ge=0)
    maximum_days: float = Field(0.0, ge=0)

    model_config = {"frozen": True}


class CompletionEvent(BaseModel):
    """
    A finished or failed work unit as reported by client telemetry.
    """

    project_id: int = Field(..., ge=0)
    project_run: int = Field(..., ge=0)
    project_clone: int = Field(..., ge=0)
    project_gen: int = Field(..., ge=0)
    client: ClientIdentity
    slot_id: int = NO_SLOT_ID
    folding_id: str = ""
    team: int = 0
    core_version: float = 0.0
    result: WorkUnitResult = WorkUnitResult.NONE
    assigned: datetime
    finished: datetime
    frames_observed: int = Field(0, ge=0)
    frames: Dict[int, FrameSample] = Field(default_factory=dict)
    metadata: Optional[ProjectMetadata] = None

    model_config = {"frozen": True}

    @property
    def slot_name(self) -> str:
        if self.slot_id >= 0:
            return f"{self.client.name} Slot {self.slot_id:02d}"
        return self.client.name

    @property
    def natural_key(self) -> NaturalKey:
        return NaturalKey(
            self.project_id,
            self.project_run,
            self.project_clone,
            self.project_gen,
            normalize_timestamp(self.assigned),
        )


class HistoryRecord(BaseModel):
    """
    Representation of a single row in the `WuHistory` table.

    `ppd` and `credit` are the production view; they are computed when the
    record is fetched and are never written to the store.
    """

    id: Optional[int] = Field(None, description="Surrogate key (AUTOINCREMENT).")
    project_id: int
    project_run: int
    project_clone: int
    project_gen: int
    name: str = Field(..., description="Slot name the unit ran on.")
    path: str = Field(..., description="Client host[:port].")
    username: str
    team: int
    core_version: float
    frames_completed: int = 0
    frame_time_value: int = Field(0, description="Per-frame duration in seconds.")
    result_value: int = Field(0, description="WorkUnitResult code.")
    assigned: datetime
    finished: datetime
    work_unit_name: str = ""
    k_factor: float = 0.0
    core: str = ""
    frames: int = 0
    atoms: int = 0
    base_credit: float = 0.0
    preferred_days: float = 0.0
    maximum_days: float = 0.0
    slot_type: SlotType = SlotType.UNKNOWN
    ppd: float = 0.0
    credit: float = 0.0

    model_config = {"frozen": True}

    @field_validator("assigned", "finished", mode="before")
    @classmethod
    def _parse_stored_timestamp(cls, value: Any) -> Any:
        if isinstance(value, str):
            return datetime.fromisoformat(value)
        return value

    @field_validator("assigned", "finished", mode="after")
    @classmethod
    def _as_utc(cls, value: datetime) -> datetime:
        return normalize_timestamp(value)

    @property
    def frame_time(self) -> timedelta:
        return timedelta(seconds=self.frame_time_value)

    @property
    def result(self) -> WorkUnitResult:
        try:
            return WorkUnitResult(self.result_value)
        except ValueError:
            return WorkUnitResult.UNKNOWN_ENUM

    @property
    def natural_key(self) -> NaturalKey:
        return NaturalKey(
            self.project_id, self.project_run, self.project_clone, self.project_gen, self.assigned
        )

    @property
    def metadata(self) -> ProjectMetadata:
        return ProjectMetadata(
            project_number=self.project_id,
            work_unit_name=self.work_unit_name,
            k_factor=self.k_factor,
            core=self.core,
            frames=self.frames,
            atoms=self.atoms,
            base_credit=self.base_credit,
            preferred_days=self.preferred_days,
            maximum_days=self.maximum_days,
        )


__all__ = [
    "NO_SLOT_ID",
    "BonusCalculation",
    "ClientIdentity",
    "CompletionEvent",
    "FrameSample",
    "HistoryRecord",
    "NaturalKey",
    "ProjectMetadata",
    "SlotType",
    "WorkUnitResult",
    "normalize_timestamp",
]
