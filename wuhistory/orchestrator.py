"""
Orchestrator for concurrent insert workloads against the history store.

Each workload opens a fresh store, fires completion events at it from a
thread pool, profiles the run and checks the dedup outcome:
- `distinct`: every event has its own natural key, so N events -> N rows
- `duplicate`: every thread inserts the same event, so exactly one insert wins

Usage (example from CLI):
    from wuhistory.orchestrator import run_workloads

    results = run_workloads(["distinct", "duplicate"], events=100, threads=8)

Outputs are saved to `results/` by default:
- `results/latest.json` (last run)
- `results/run-<timestamp>.json` (timestamped archive)
"""

from __future__ import annotations

import json
import tempfile
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, TypedDict

from wuhistory.config import get_settings
from wuhistory.domain.models import (
    ClientIdentity,
    CompletionEvent,
    FrameSample,
    ProjectMetadata,
    WorkUnitResult,
)
from wuhistory.infrastructure.repository import WorkUnitRepository
from wuhistory.utils.logging import get_logger
from wuhistory.utils.profiler import ProfileStats, profile_block

log = get_logger(__name__)

_BASE_TIME = datetime(2020, 1, 1, tzinfo=timezone.utc)

_STRESS_METADATA = ProjectMetadata(
    project_number=2669,
    work_unit_name="StressUnit",
    k_factor=1.0,
    core="GRO-A3",
    frames=100,
    atoms=1000,
    base_credit=100.0,
    preferred_days=3.0,
    maximum_days=5.0,
)


class WorkloadResult(TypedDict, total=False):
    workload: str
    events: int
    threads: int
    inserted: int
    duplicates: int
    expected_rows: int
    rows: int
    ok: bool
    duration_seconds: float
    throughput_events_per_sec: float
    peak_rss_bytes: Optional[int]
    cpu_percent: Optional[float]
    error: Optional[str]


def synthetic_event(index: int, *, run: int = 0) -> CompletionEvent:
    """Deterministic completion event whose natural key is unique per `index`."""
    assigned = _BASE_TIME + timedelta(minutes=index)
    return CompletionEvent(
        project_id=_STRESS_METADATA.project_number,
        project_run=run,
        project_clone=index % 100,
        project_gen=index // 100,
        client=ClientIdentity(name=f"Stress{index % 8}", server="stress.local", port=36330),
        slot_id=index % 4,
        folding_id="stress",
        team=32,
        core_version=2.27,
        result=WorkUnitResult.FINISHED_UNIT,
        assigned=assigned,
        finished=assigned + timedelta(hours=6),
        frames_observed=1,
        frames={100: FrameSample(id=100, duration=timedelta(minutes=3))},
        metadata=_STRESS_METADATA,
    )


def _round_float(value: float, decimals: int = 2) -> float:
    return round(value, decimals)


def _insert_all(repo: WorkUnitRepository, events: List[CompletionEvent], threads: int) -> int:
    with ThreadPoolExecutor(max_workers=threads, thread_name_prefix="wu-insert") as pool:
        return sum(pool.map(repo.insert, events))


def _distinct(repo: WorkUnitRepository, events: int, threads: int) -> WorkloadResult:
    inserted = _insert_all(repo, [synthetic_event(i) for i in range(events)], threads)
    return WorkloadResult(inserted=inserted, expected_rows=events)


def _duplicate(repo: WorkUnitRepository, events: int, threads: int) -> WorkloadResult:
    event = synthetic_event(0)
    inserted = _insert_all(repo, [event] * events, threads)
    return WorkloadResult(inserted=inserted, expected_rows=1 if events else 0)


Workload = Callable[[WorkUnitRepository, int, int], WorkloadResult]


def _workload_registry() -> Dict[str, Workload]:
    """Registry of available workloads."""
    return {
        "distinct": _distinct,
        "duplicate": _duplicate,
    }


def available_workloads() -> List[str]:
    return sorted(_workload_registry().keys())


def _resolve_workload(name: str) -> Workload:
    registry = _workload_registry()
    if name not in registry:
        raise ValueError(f"Unknown workload '{name}'. Available: {', '.join(sorted(registry))}")
    return registry[name]


def _persist_results(payload: dict, results_dir: Path) -> Path:
    results_dir.mkdir(parents=True, exist_ok=True)
    latest_path = results_dir / "latest.json"
    timestamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
    archive_path = results_dir / f"run-{timestamp}.json"

    for path in (latest_path, archive_path):
        with path.open("w", encoding="utf-8") as f:
            json.dump(payload, f, indent=2, sort_keys=True)

    log.info("Results persisted", extra={"latest": str(latest_path), "archive": str(archive_path)})
    return latest_path


def _merge_result(result: WorkloadResult, stats: ProfileStats) -> WorkloadResult:
    """Merge a workload outcome with profiler stats, rounding floats for readability."""
    merged: WorkloadResult = WorkloadResult(**result)
    merged.setdefault("inserted", 0)
    merged.setdefault("events", 0)
    merged["duplicates"] = max(merged["events"] - merged["inserted"], 0)
    merged["duration_seconds"] = _round_float(stats.duration_seconds)
    merged["throughput_events_per_sec"] = _round_float(stats.rate(merged["events"]))
    merged["peak_rss_bytes"] = stats.peak_rss_bytes
    merged["cpu_percent"] = _round_float(stats.cpu_percent, 1) if stats.cpu_percent else None
    if "rows" in merged and "expected_rows" in merged:
        merged["ok"] = (
            merged.get("error") is None
            and merged["rows"] == merged["expected_rows"]
            and merged["inserted"] == merged["expected_rows"]
        )
    else:
        merged["ok"] = False
    return merged


def _profiled_execute(name: str, events: int, threads: int, store_dir: Path) -> WorkloadResult:
    workload = _resolve_workload(name)
    log.info(f"[WORKLOAD START] {name}", extra={"workload": name, "events": events, "threads": threads})
    base = WorkloadResult(workload=name, events=events, threads=threads)
    with profile_block(name) as stats:
        try:
            with WorkUnitRepository() as repo:
                repo.initialize(store_dir / f"stress-{name}.db3")
                outcome = workload(repo, events, threads)
                outcome["rows"] = repo.count()
            base.update(outcome)
            log.info(
                f"[WORKLOAD SUCCESS] {name}",
                extra={"workload": name, "inserted": outcome["inserted"], "rows": outcome["rows"]},
            )
        except Exception as exc:  # noqa: BLE001 - failures are recorded in the result
            log.exception(f"[WORKLOAD FAILED] {name}", extra={"workload": name})
            base["error"] = str(exc)
    return _merge_result(base, stats)


def run_workloads(
    workload_names: Optional[Iterable[str]] = None,
    events: Optional[int] = None,
    threads: Optional[int] = None,
    results_dir: Path | str | None = None,
    persist: bool = True,
) -> List[WorkloadResult]:
    """
    Run one or more insert workloads and optionally persist the results.

    Parameters
    ----------
    workload_names : iterable[str] | None
        Workloads to run. None or ["all"] runs all available.
    events : int | None
        Events per workload. Defaults to settings.stress_events.
    threads : int | None
        Writer threads. Defaults to settings.stress_threads.
    results_dir : Path | str | None
        Directory for JSON artifacts. Defaults to settings.results_dir.
    persist : bool
        Whether to write results to disk.
    """
    settings = get_settings()
    effective_events = settings.stress_events if events is None else events
    effective_threads = threads or settings.stress_threads

    names = list(workload_names) if workload_names is not None else ["all"]
    if len(names) == 1 and names[0] == "all":
        names = available_workloads()
    for name in names:
        _resolve_workload(name)

    results: List[WorkloadResult] = []
    with tempfile.TemporaryDirectory(prefix="wuhistory_stress_") as tmp:
        for name in names:
            result = _profiled_execute(name, effective_events, effective_threads, Path(tmp))
            results.append(result)
            log.info(
                f"[WORKLOAD COMPLETE] {name}",
                extra={
                    "workload": name,
                    "ok": result.get("ok"),
                    "duration": result.get("duration_seconds"),
                    "throughput_eps": result.get("throughput_events_per_sec"),
                },
            )

    if persist:
        payload = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "events": effective_events,
            "threads": effective_threads,
            "workloads": names,
            "results": results,
        }
        _persist_results(payload, Path(results_dir or settings.results_dir))

    return results


__all__ = [
    "WorkloadResult",
    "available_workloads",
    "run_workloads",
    "synthetic_event",
]
