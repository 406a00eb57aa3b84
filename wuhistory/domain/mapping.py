"""
Row mapping: CompletionEvent -> HistoryRecord.

A closed, explicit projection of the telemetry event onto the persisted row
shape. No I/O and no failure modes of its own: missing project metadata maps
to zero values and missing frame samples map to zero frames / zero frame time.
"""

from __future__ import annotations

from wuhistory.domain.models import (
    CompletionEvent,
    HistoryRecord,
    ProjectMetadata,
    SlotType,
    normalize_timestamp,
)

_EMPTY_METADATA = ProjectMetadata()


def _last_frame(event: CompletionEvent) -> tuple[int, int]:
    """
    Return (frames_completed, frame_time_seconds) from the event's frame samples.

    The highest sample index is the completed frame count. Its duration is the
    frame time, and is zero unless the client observed at least one frame.
    """
    if not event.frames:
        return 0, 0
    last_id = max(event.frames)
    if event.frames_observed <= 0:
        return last_id, 0
    duration = event.frames[last_id].duration
    return last_id, int(duration.total_seconds())


def map_event(event: CompletionEvent) -> HistoryRecord:
    """
    Project a completion event onto a HistoryRecord without a surrogate ID.
    """
    metadata = event.metadata or _EMPTY_METADATA
    frames_completed, frame_time = _last_frame(event)
    return HistoryRecord(
        id=None,
        project_id=event.project_id,
        project_run=event.project_run,
        project_clone=event.project_clone,
        project_gen=event.project_gen,
        name=event.slot_name,
        path=event.client.to_server_port_string(),
        username=event.folding_id,
        team=event.team,
        core_version=event.core_version,
        frames_completed=frames_completed,
        frame_time_value=frame_time,
        result_value=int(event.result),
        assigned=normalize_timestamp(event.assigned),
        finished=normalize_timestamp(event.finished),
        work_unit_name=metadata.work_unit_name,
        k_factor=metadata.k_factor,
        core=metadata.core,
        frames=metadata.frames,
        atoms=metadata.atoms,
        base_credit=metadata.base_credit,
        preferred_days=metadata.preferred_days,
        maximum_days=metadata.maximum_days,
        slot_type=SlotType.from_core_name(metadata.core),
    )


__all__ = ["map_event"]
