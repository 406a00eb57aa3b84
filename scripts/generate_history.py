"""
Synthetic data generation for the work-unit history store.

Builds deterministic legacy (pre-upgrade) stores, optionally seeded with
duplicate natural keys, and JSON-lines files of completion events for the
`import` command.
"""

from __future__ import annotations

import random
import time
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Iterable, List

import typer

from wuhistory.domain.models import (
    ClientIdentity,
    CompletionEvent,
    FrameSample,
    ProjectMetadata,
    WorkUnitResult,
)
from wuhistory.infrastructure.db_factory import open_connection
from wuhistory.infrastructure.schema import LEGACY_SCHEMA, format_timestamp

app = typer.Typer(help="Generate synthetic work-unit history data.")

_BASE_TIME = datetime(2010, 1, 1, tzinfo=timezone.utc)
_PROJECTS = (2669, 2670, 6900, 6903, 10412)
_CORES = ("GRO-A3", "GRO-A4", "GRO-A5", "OPENMMGPU", "0x22")
_CLIENTS = ("Owner", "Owner2", "Rig01", "Rig02")


def _legacy_row(rng: random.Random, index: int) -> tuple:
    assigned = _BASE_TIME + timedelta(hours=index)
    finished = assigned + timedelta(hours=rng.randint(2, 72))
    client = rng.choice(_CLIENTS)
    return (
        rng.choice(_PROJECTS),
        rng.randint(0, 20),
        index,
        rng.randint(0, 200),
        f"{client} Slot {rng.randint(0, 3):02d}",
        f"{client.lower()}.local:36330",
        "harlam357",
        32,
        rng.choice((2.09, 2.27, 0.0)),
        100,
        rng.randint(60, 3600),
        int(rng.choice(list(WorkUnitResult))),
        format_timestamp(assigned),
        format_timestamp(finished),
    )


def _duplicate_of(rng: random.Random, row: tuple) -> tuple:
    # Same natural key (project, run, clone, gen, assigned), different payload.
    dup = list(row)
    dup[4] = f"{rng.choice(_CLIENTS)} Slot {rng.randint(0, 3):02d}"
    dup[10] = rng.randint(60, 3600)
    return tuple(dup)


def create_legacy_store(path: Path, rows: int, duplicates: int = 0, seed: int = 42) -> int:
    """
    Create a legacy-shape store at `path` with `rows` rows, `duplicates` of
    which repeat the natural key of an earlier row.

    Returns the number of rows written.
    """
    if not 0 <= duplicates <= rows:
        raise ValueError("duplicates must be between 0 and rows")
    if duplicates and rows == duplicates:
        raise ValueError("duplicates need at least one distinct row to copy")
    rng = random.Random(seed)
    distinct = [_legacy_row(rng, i) for i in range(rows - duplicates)]
    copies = [_duplicate_of(rng, rng.choice(distinct)) for _ in range(duplicates)]
    data = distinct + copies

    columns = LEGACY_SCHEMA.column_names[1:]
    insert_sql = (
        f"INSERT INTO {LEGACY_SCHEMA.name} ({', '.join(columns)}) "
        f"VALUES ({', '.join('?' for _ in columns)})"
    )
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = open_connection(path)
    try:
        conn.execute("BEGIN IMMEDIATE")
        conn.execute(LEGACY_SCHEMA.create_table_sql())
        conn.executemany(insert_sql, data)
        conn.execute("COMMIT")
    finally:
        conn.close()
    return len(data)


def build_event(rng: random.Random, index: int) -> CompletionEvent:
    """Random but reproducible completion event; `index` keeps the natural key unique."""
    project = rng.choice(_PROJECTS)
    core = rng.choice(_CORES)
    frames = rng.choice((100, 200, 400))
    assigned = _BASE_TIME + timedelta(hours=index)
    frame_time = timedelta(seconds=rng.randint(60, 1200))
    return CompletionEvent(
        project_id=project,
        project_run=rng.randint(0, 20),
        project_clone=index,
        project_gen=rng.randint(0, 200),
        client=ClientIdentity(name=rng.choice(_CLIENTS), server="localhost", port=36330),
        slot_id=rng.randint(-1, 3),
        folding_id="harlam357",
        team=32,
        core_version=rng.choice((2.09, 2.27)),
        result=WorkUnitResult.FINISHED_UNIT,
        assigned=assigned,
        finished=assigned + frame_time * frames,
        frames_observed=rng.randint(0, frames),
        frames={frames: FrameSample(id=frames, duration=frame_time)},
        metadata=ProjectMetadata(
            project_number=project,
            work_unit_name=f"p{project}",
            k_factor=rng.choice((0.0, 0.75, 2.0)),
            core=core,
            frames=frames,
            atoms=rng.randint(1000, 500_000),
            base_credit=float(rng.choice((100, 500, 9000))),
            preferred_days=3.0,
            maximum_days=6.0,
        ),
    )


def write_events_jsonl(path: Path, events: Iterable[CompletionEvent]) -> int:
    path.parent.mkdir(parents=True, exist_ok=True)
    count = 0
    with path.open("w", encoding="utf-8") as f:
        for event in events:
            f.write(event.model_dump_json())
            f.write("\n")
            count += 1
    return count


def generate_events(count: int, seed: int = 42) -> List[CompletionEvent]:
    rng = random.Random(seed)
    return [build_event(rng, i) for i in range(count)]


@app.command()
def legacy(
    output: Path = typer.Option(Path("WuHistory.legacy.db3"), "--output", "-o", help="Store to create."),
    rows: int = typer.Option(285, "--rows", "-r", help="Total rows, duplicates included."),
    duplicates: int = typer.Option(32, "--duplicates", "-d", help="Rows repeating an earlier natural key."),
    seed: int = typer.Option(42, "--seed", help="Deterministic RNG seed."),
) -> None:
    """
    Create a legacy (pre-upgrade) store.
    """
    if output.exists():
        typer.echo(f"{output} already exists; refusing to overwrite.", err=True)
        raise typer.Exit(code=1)
    start = time.perf_counter()
    written = create_legacy_store(output, rows=rows, duplicates=duplicates, seed=seed)
    typer.echo(
        f"Wrote {written:,} legacy rows ({duplicates} duplicates) -> {output} "
        f"in {time.perf_counter() - start:.2f}s"
    )


@app.command()
def events(
    output: Path = typer.Option(Path("events.jsonl"), "--output", "-o"),
    count: int = typer.Option(100, "--count", "-c", help="Number of events."),
    seed: int = typer.Option(42, "--seed", help="Deterministic RNG seed."),
) -> None:
    """
    Write completion events as JSON lines.
    """
    written = write_events_jsonl(output, generate_events(count, seed=seed))
    typer.echo(f"Wrote {written:,} events -> {output}")


if __name__ == "__main__":
    app()
