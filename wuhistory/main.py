from __future__ import annotations

import json
import sqlite3
import sys
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Optional

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.progress import BarColumn, Progress, TextColumn, TimeElapsedColumn
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from wuhistory.config import get_settings
from wuhistory.domain.models import BonusCalculation, CompletionEvent
from wuhistory.domain.production import ProteinCatalog
from wuhistory.domain.query import Predicate, Query
from wuhistory.errors import HistoryError, HistoryOpenError
from wuhistory.infrastructure.repository import WorkUnitRepository
from wuhistory.orchestrator import available_workloads, run_workloads
from wuhistory.query_library import QueryLibrary
from wuhistory.reporter import print_page, print_records, print_workload_results
from wuhistory.utils.logging import configure_logging, get_logger

app = typer.Typer(help="Work-unit history store CLI.")
log = get_logger(__name__)


def _is_locked(exc: BaseException) -> bool:
    cause = exc.__cause__
    return (
        isinstance(exc, HistoryOpenError)
        and isinstance(cause, sqlite3.OperationalError)
        and "locked" in str(cause).lower()
    )


@retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=0.5, min=0.5, max=5),
    retry=retry_if_exception(_is_locked),
    reraise=True,
)
def _open_repository(db: Optional[Path]) -> WorkUnitRepository:
    """
    Open the store, retrying while another process holds the write lock.
    """
    settings = get_settings()
    proteins = ProteinCatalog.from_json_file(settings.proteins_path) if settings.proteins_path else None
    repo = WorkUnitRepository(protein_service=proteins)
    repo.initialize(db if db is not None else settings.db_path)
    return repo


@contextmanager
def _cli_errors() -> Iterator[None]:
    try:
        yield
    except HistoryError as exc:
        log.error(str(exc), extra={"category": exc.category, "error_metadata": exc.metadata})
        typer.echo(f"Error ({exc.category}): {exc}", err=True)
        raise typer.Exit(code=1) from exc


def _build_query(name: Optional[str], where: List[str], queries_path: Path) -> Query:
    if name and where:
        raise typer.BadParameter("Use either --name or --where, not both.")
    if name:
        query = QueryLibrary.load(queries_path).get(name)
        if query is None:
            raise typer.BadParameter(f"No saved query named {name!r}.")
        return query
    if where:
        return Query(name="ad hoc", predicates=[Predicate.parse(w) for w in where])
    return Query.select_all()


DbOption = typer.Option(None, "--db", help="History database file (default from settings).")


@app.callback()
def _configure(
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Override LOG_LEVEL."),
) -> None:
    settings = get_settings()
    configure_logging(level=log_level or settings.log_level, json_logs=settings.log_json)


@app.command()
def info(db: Optional[Path] = DbOption) -> None:
    """
    Show effective configuration and the store's version and size.
    """
    settings = get_settings()
    with _cli_errors():
        with _open_repository(db) as repo:
            needs_upgrade = repo.requires_upgrade()
            typer.echo(
                f"DB={repo.path} | version={repo.get_database_version() or 'legacy'} | "
                f"requires_upgrade={needs_upgrade} | rows={repo.count()} | "
                f"bonus={settings.bonus_calculation.value} queries={settings.queries_path}"
            )


@app.command()
def upgrade(db: Optional[Path] = DbOption) -> None:
    """
    Migrate a legacy store to the current schema.
    """
    with _cli_errors():
        with _open_repository(db) as repo:
            if not repo.requires_upgrade():
                typer.echo(f"Store is current (version {repo.get_database_version()}).")
                return
            with Progress(
                TextColumn("[progress.description]{task.description}"),
                BarColumn(),
                TextColumn("{task.percentage:>3.0f}%"),
                TimeElapsedColumn(),
                console=Console(stderr=True),
            ) as progress:
                task = progress.add_task("Upgrading", total=100)

                def _report(percent: int, message: str) -> None:
                    progress.update(task, completed=percent, description=message)

                result = repo.upgrade(progress=_report)
            typer.echo(
                f"Upgraded {result.from_version or 'legacy'} -> {result.to_version}: "
                f"{result.rows_copied} rows copied, {result.duplicates_removed} duplicates removed."
            )


@app.command("import")
def import_events(
    events_file: Path = typer.Argument(..., exists=True, dir_okay=False, help="JSON-lines file of completion events."),
    db: Optional[Path] = DbOption,
) -> None:
    """
    Insert completion events from a JSON-lines file; duplicates are skipped.
    """
    inserted = duplicates = 0
    with _cli_errors():
        with _open_repository(db) as repo:
            with events_file.open("r", encoding="utf-8") as f:
                for line_no, line in enumerate(f, start=1):
                    if not line.strip():
                        continue
                    try:
                        event = CompletionEvent.model_validate_json(line)
                    except ValidationError as exc:
                        typer.echo(f"Line {line_no}: invalid event: {exc}", err=True)
                        raise typer.Exit(code=2) from exc
                    if repo.insert(event):
                        inserted += 1
                    else:
                        duplicates += 1
    typer.echo(f"Imported {inserted} work units ({duplicates} duplicates skipped).")


@app.command()
def query(
    name: Optional[str] = typer.Option(None, "--name", "-n", help="Saved query to run."),
    where: List[str] = typer.Option([], "--where", "-w", help='Predicate such as "ProjectID >= 2669".'),
    bonus: Optional[BonusCalculation] = typer.Option(None, "--bonus", help="Bonus calculation mode."),
    page: Optional[int] = typer.Option(None, "--page", min=1, help="1-based page to show."),
    per_page: int = typer.Option(50, "--per-page", min=1),
    as_json: bool = typer.Option(False, "--json", help="Emit JSON instead of a table."),
    db: Optional[Path] = DbOption,
) -> None:
    """
    Run a saved or ad-hoc query and show the matching work units.
    """
    settings = get_settings()
    with _cli_errors():
        selected = _build_query(name, where, Path(settings.queries_path))
        with _open_repository(db) as repo:
            if page is not None:
                result = repo.fetch_page(selected, bonus, page=page, items_per_page=per_page)
                records = result.records
            else:
                result = None
                records = repo.fetch(selected, bonus)
    if as_json:
        typer.echo(json.dumps([r.model_dump(mode="json") for r in records], indent=2))
    elif result is not None:
        print_page(result, title=selected.name)
    else:
        print_records(records, title=selected.name)


@app.command()
def delete(
    record_id: int = typer.Argument(..., help="Surrogate ID of the work unit."),
    db: Optional[Path] = DbOption,
) -> None:
    """
    Delete one work unit by ID.
    """
    with _cli_errors():
        with _open_repository(db) as repo:
            deleted = repo.delete(record_id)
    typer.echo(f"Deleted {deleted} work unit(s).")


@app.command("save-query")
def save_query(
    name: str = typer.Argument(..., help="Query name."),
    where: List[str] = typer.Option([], "--where", "-w", help='Predicate such as "ProjectID >= 2669".'),
    remove: bool = typer.Option(False, "--remove", help="Remove the named query instead."),
) -> None:
    """
    Add, replace or remove a saved query.
    """
    settings = get_settings()
    with _cli_errors():
        library = QueryLibrary.load(settings.queries_path)
        try:
            if remove:
                if not library.remove(name):
                    typer.echo(f"No saved query named {name!r}.")
                    return
            else:
                library.upsert(Query(name=name, predicates=[Predicate.parse(w) for w in where]))
        except ValueError as exc:
            raise typer.BadParameter(str(exc)) from exc
        library.save()
    typer.echo(f"Saved queries: {', '.join(library.names())}")


@app.command()
def stress(
    workload: str = typer.Option(
        "all",
        "--workload",
        "-w",
        help=f"Workload to run ({', '.join(available_workloads())}, all, list).",
    ),
    events: Optional[int] = typer.Option(None, "--events", "-e", min=0),
    threads: Optional[int] = typer.Option(None, "--threads", "-t", min=1),
    persist: bool = typer.Option(True, "--persist/--no-persist"),
) -> None:
    """
    Run concurrent insert workloads against throwaway stores and report timings.
    """
    if workload == "list":
        typer.echo("Available workloads: " + ", ".join(available_workloads()))
        return
    try:
        results = run_workloads([workload], events=events, threads=threads, persist=persist)
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc
    print_workload_results(results)
    if not all(r.get("ok") for r in results):
        raise typer.Exit(code=1)


def main() -> None:
    try:
        app()
    except KeyboardInterrupt:
        typer.echo("Cancelled by user.", err=True)
        sys.exit(130)


if __name__ == "__main__":
    main()
