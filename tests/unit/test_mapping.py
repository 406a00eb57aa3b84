from __future__ import annotations

from datetime import datetime, timedelta, timezone

from wuhistory.domain.mapping import map_event
from wuhistory.domain.models import (
    ClientIdentity,
    CompletionEvent,
    FrameSample,
    SlotType,
    WorkUnitResult,
)


def test_map_event_projects_every_field(make_work_unit):
    record = map_event(make_work_unit(1))

    assert record.id is None
    assert (record.project_id, record.project_run, record.project_clone, record.project_gen) == (
        2669,
        1,
        2,
        3,
    )
    assert record.name == "Owner"
    assert record.path == "Path"
    assert record.username == "harlam357"
    assert record.team == 32
    assert record.core_version == 2.09
    assert record.frames_completed == 100
    assert record.frame_time == timedelta(seconds=600)
    assert record.result is WorkUnitResult.FINISHED_UNIT
    assert record.assigned == datetime(2010, 1, 1, tzinfo=timezone.utc)
    assert record.finished == datetime(2010, 1, 2, tzinfo=timezone.utc)
    assert record.work_unit_name == "TestUnit1"
    assert record.k_factor == 1.0
    assert record.core == "GRO-A3"
    assert record.frames == 100
    assert record.atoms == 1000
    assert record.base_credit == 100.0
    assert record.preferred_days == 3.0
    assert record.maximum_days == 5.0
    assert record.slot_type is SlotType.CPU


def test_frame_time_is_zero_when_no_frames_observed(make_work_unit):
    record = map_event(make_work_unit(3))

    assert record.frames_completed == 100
    assert record.frame_time == timedelta(0)


def test_slot_name_and_gpu_slot_type(make_work_unit):
    record = map_event(make_work_unit(4))

    assert record.name == "Owner2 Slot 02"
    assert record.path == "Path2"
    assert record.slot_type is SlotType.GPU
    # naive input is treated as UTC
    assert record.assigned == datetime(2012, 1, 2, tzinfo=timezone.utc)


def test_missing_metadata_maps_to_zero_values(make_work_unit):
    record = map_event(make_work_unit(1, with_metadata=False))

    assert record.work_unit_name == ""
    assert record.core == ""
    assert record.k_factor == 0.0
    assert record.frames == 0
    assert record.base_credit == 0.0
    assert record.slot_type is SlotType.UNKNOWN


def test_no_frame_samples_maps_to_zero_frames():
    event = CompletionEvent(
        project_id=1,
        project_run=0,
        project_clone=0,
        project_gen=0,
        client=ClientIdentity(name="c"),
        assigned=datetime(2020, 1, 1),
        finished=datetime(2020, 1, 2),
        frames_observed=5,
    )
    record = map_event(event)

    assert record.frames_completed == 0
    assert record.frame_time_value == 0


def test_path_includes_valid_port_and_timestamps_drop_microseconds():
    event = CompletionEvent(
        project_id=1,
        project_run=0,
        project_clone=0,
        project_gen=0,
        client=ClientIdentity(name="c", server="host", port=36330),
        assigned=datetime(2020, 1, 1, 12, 0, 0, 999_999, tzinfo=timezone(timedelta(hours=2))),
        finished=datetime(2020, 1, 2),
        frames_observed=1,
        frames={
            3: FrameSample(id=3, duration=timedelta(seconds=30)),
            7: FrameSample(id=7, duration=timedelta(seconds=45.8)),
        },
    )
    record = map_event(event)

    assert record.path == "host:36330"
    assert record.assigned == datetime(2020, 1, 1, 10, 0, 0, tzinfo=timezone.utc)
    assert record.frames_completed == 7
    assert record.frame_time_value == 45


def test_out_of_range_port_is_omitted():
    assert ClientIdentity(name="c", server="host", port=0).to_server_port_string() == "host"
    assert ClientIdentity(name="c", server="host", port=70000).to_server_port_string() == "host"
