"""
``spine-batch batch``: run, resume, inspect, and purge batches.

``worker`` is the command the supervisor spawns; it prints the result
envelope as one JSON line on stdout and is not meant to be run by hand.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone

import typer

from spine_batch.batch.builder import BatchBuilder, load_definition
from spine_batch.batch.finalizer import purge_stale_batches
from spine_batch.batch.progress import progress_percentage
from spine_batch.batch.registry import KINDS, get_default_registry, load_extra_module
from spine_batch.batch.spawn import InProcessSpawner, Spawner, SubprocessSpawner
from spine_batch.batch.supervisor import BatchSupervisor, SupervisorResult
from spine_batch.cli.utils import (
    BatchRuntime,
    console,
    err_console,
    fail,
    make_runtime,
    print_dict,
    print_json,
    print_table,
)
from spine_batch.core.errors import BatchEngineError

app = typer.Typer(no_args_is_help=True)

_DB_OPTION = typer.Option(None, "--database-url", "--db", help="Batch database URL")
_IN_PROCESS_HELP = (
    "Run workers in this process. Memory usage is the process peak RSS, which never "
    "falls, so once the memory limit trips every later worker stops after one operation."
)


def _spawner(runtime: BatchRuntime, in_process: bool, memory_limit: str | None) -> Spawner:
    if in_process:
        return InProcessSpawner(lambda _options: runtime.worker(memory_limit))
    return SubprocessSpawner(python=runtime.settings.worker_python)


def _report(result: SupervisorResult, as_json: bool) -> None:
    if as_json:
        print_json(result.to_dict())
    else:
        for entry in result.log:
            if entry.level == "error":
                err_console.print(f"[red]{entry.message}[/red]")
        if result.finished:
            console.print(
                f"[bold green]Batch {result.batch_id} finished[/bold green] "
                f"after {result.spawns} worker(s)"
            )
        elif result.error:
            err_console.print(
                f"[bold red]Batch {result.batch_id} stopped:[/bold red] {result.message}"
            )
        else:
            console.print(f"[yellow]Batch {result.batch_id}:[/yellow] {result.message}")
    if result.error:
        raise typer.Exit(code=1)


@app.command("run")
def run(
    definition: str = typer.Argument(..., help="YAML/JSON file or module:callable"),
    database_url: str | None = _DB_OPTION,  # noqa: UP007
    memory_limit: str | None = typer.Option(  # noqa: UP007
        None, "--memory-limit", "-m", help="Worker memory ceiling, e.g. 512M"
    ),
    max_spawns: int | None = typer.Option(  # noqa: UP007
        None, "--max-spawns", help="Stop after this many workers (0 = no limit)"
    ),
    extra_module: list[str] = typer.Option(
        [], "--extra-module", "-e", help="Module to import before building (registers handlers)"
    ),
    in_process: bool = typer.Option(
        False, "--in-process", "--inline", help=_IN_PROCESS_HELP
    ),
    as_json: bool = typer.Option(False, "--json", help="Print the result as JSON"),
) -> None:
    """Build a batch from a definition and run it to completion.

    Example::

        spine-batch batch run jobs/reindex.yaml --memory-limit 512M
        spine-batch batch run myapp.jobs:nightly --in-process
    """
    try:
        for module in extra_module:
            load_extra_module(module)
        runtime = make_runtime(database_url)
        batch = BatchBuilder().build_populated(load_definition(definition), runtime.queue_factory)
        supervisor = BatchSupervisor(
            runtime.store,
            _spawner(runtime, in_process, memory_limit),
            worker_options=runtime.worker_options(memory_limit, extra_module),
            max_spawns=runtime.settings.max_spawns if max_spawns is None else max_spawns,
        )
        if not as_json:
            console.print(
                f"[bold]Running batch[/bold] ({len(batch.sets)} set(s), "
                f"{batch.remaining_operations} operation(s))"
            )
        result = supervisor.process(batch)
    except BatchEngineError as exc:
        fail(exc)
        return
    _report(result, as_json)


@app.command("resume")
def resume(
    batch_id: str = typer.Argument(..., help="Batch id"),
    database_url: str | None = _DB_OPTION,  # noqa: UP007
    memory_limit: str | None = typer.Option(None, "--memory-limit", "-m"),  # noqa: UP007
    max_spawns: int | None = typer.Option(None, "--max-spawns"),  # noqa: UP007
    in_process: bool = typer.Option(
        False, "--in-process", "--inline", help=_IN_PROCESS_HELP
    ),
    as_json: bool = typer.Option(False, "--json", help="Print the result as JSON"),
) -> None:
    """Continue a batch left behind by an interrupted run."""
    try:
        runtime = make_runtime(database_url)
        supervisor = BatchSupervisor(
            runtime.store,
            _spawner(runtime, in_process, memory_limit),
            worker_options=runtime.worker_options(memory_limit),
            max_spawns=runtime.settings.max_spawns if max_spawns is None else max_spawns,
        )
        result = supervisor.resume(batch_id)
    except BatchEngineError as exc:
        fail(exc)
        return
    _report(result, as_json)


@app.command("worker", hidden=True)
def worker(
    batch_id: str = typer.Argument(..., help="Batch id"),
    database_url: str | None = _DB_OPTION,  # noqa: UP007
) -> None:
    """Process part of a batch and print the result envelope."""
    runtime = make_runtime(database_url)
    for module in runtime.settings.extra_module_list:
        load_extra_module(module)
    result = runtime.worker().run(batch_id)
    # stdout carries only the envelope; logs go to stderr.
    typer.echo(json.dumps(result.to_envelope(), default=str))
    if result.error:
        raise typer.Exit(code=1)


@app.command("status")
def status(
    batch_id: str | None = typer.Argument(None, help="Show one batch in detail"),  # noqa: UP007
    database_url: str | None = _DB_OPTION,  # noqa: UP007
    as_json: bool = typer.Option(False, "--json", help="Print as JSON"),
) -> None:
    """List stored batches, or show one in detail."""
    runtime = make_runtime(database_url)
    if batch_id is not None:
        try:
            batch = runtime.store.load(batch_id)
        except BatchEngineError as exc:
            fail(exc)
            return
        if as_json:
            print_json(batch.to_dict())
            return
        print_dict(
            {
                "id": batch.id,
                "running": batch.running,
                "active_set": batch.active_set_index,
                "remaining": batch.remaining_operations,
            },
            title="Batch",
        )
        print_table(
            [
                {
                    "#": i,
                    "title": s.title,
                    "done": f"{s.total_count - s.remaining_count}/{s.total_count}",
                    "success": s.success,
                    "finisher": s.finished or "",
                }
                for i, s in enumerate(batch.sets)
            ],
            title="Sets",
        )
        return

    rows = []
    for info in runtime.store.list_snapshots():
        sets = info.snapshot.get("sets", [])
        index = info.snapshot.get("active_set_index", 0)
        active = sets[index] if index < len(sets) else {}
        percentage = progress_percentage(
            active.get("total_count", 0), active.get("remaining_count", 0), 0.0
        )
        rows.append(
            {
                "id": info.batch_id,
                "sets": len(sets),
                "active_set": index,
                "progress": f"{percentage:.0f}%",
                "updated": datetime.fromtimestamp(info.updated_at, tz=timezone.utc).isoformat(
                    timespec="seconds"
                ),
            }
        )
    if as_json:
        print_json(rows)
    else:
        print_table(rows, title="Batches")


@app.command("purge")
def purge(
    days: int | None = typer.Option(  # noqa: UP007
        None,
        "--days",
        "--older-than-days",
        help="Age in days (default: SPINE_BATCH_STALE_BATCH_DAYS)",
    ),
    database_url: str | None = _DB_OPTION,  # noqa: UP007
) -> None:
    """Delete batches that have not been updated for a while."""
    runtime = make_runtime(database_url)
    age_days = runtime.settings.stale_batch_days if days is None else days
    purged = purge_stale_batches(runtime.store, runtime.queue_factory, age_days * 86400)
    console.print(f"Purged {len(purged)} batch(es) older than {age_days} day(s)")


@app.command("handlers")
def handlers(
    kind: str | None = typer.Option(None, "--kind", "-k", help=f"One of {', '.join(KINDS)}"),  # noqa: UP007
    extra_module: list[str] = typer.Option([], "--extra-module", "-e"),
    as_json: bool = typer.Option(False, "--json", help="Print as JSON"),
) -> None:
    """List registered handlers."""
    try:
        for module in extra_module:
            load_extra_module(module)
    except BatchEngineError as exc:
        fail(exc)
        return
    rows = get_default_registry().list_with_metadata(kind)
    if as_json:
        print_json(rows)
    else:
        print_table(rows, title="Handlers")
