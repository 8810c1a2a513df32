"""
CLI utility helpers: output formatting and runtime wiring.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

import typer
from rich.console import Console
from rich.table import Table
from sqlalchemy import Engine
from sqlalchemy.orm import Session, sessionmaker

from spine_batch.batch.log import BatchLog
from spine_batch.batch.memory import MemoryCeiling
from spine_batch.batch.queue import QueueFactory, queue_factory_for
from spine_batch.batch.registry import HandlerRegistry, get_default_registry
from spine_batch.batch.store import BatchStore
from spine_batch.batch.worker import BatchWorker
from spine_batch.core.errors import BatchEngineError
from spine_batch.core.options import RuntimeOptions
from spine_batch.core.orm import batch_session_factory, create_batch_engine, init_schema
from spine_batch.core.settings import BatchSettings, get_settings

console = Console()
err_console = Console(stderr=True)


# ── Runtime wiring ───────────────────────────────────────────────────────


@dataclass
class BatchRuntime:
    """Everything a command needs to talk to one batch database."""

    settings: BatchSettings
    database_url: str
    engine: Engine
    sessions: sessionmaker[Session]
    store: BatchStore
    queue_factory: QueueFactory
    registry: HandlerRegistry = field(default_factory=get_default_registry)

    def options(self) -> RuntimeOptions:
        return RuntimeOptions.from_settings(self.settings)

    def memory_ceiling(self, memory_limit: str | None = None) -> MemoryCeiling:
        return MemoryCeiling.from_setting(
            memory_limit if memory_limit is not None else self.settings.memory_limit
        )

    def worker(self, memory_limit: str | None = None) -> BatchWorker:
        options = self.options()
        return BatchWorker(
            self.store,
            self.queue_factory,
            registry=self.registry,
            options=options,
            log=BatchLog(options),
            memory_ceiling=self.memory_ceiling(memory_limit),
        )

    def worker_options(
        self, memory_limit: str | None = None, extra_modules: list[str] | None = None
    ) -> dict[str, Any]:
        """Options forwarded to spawned workers as ``SPINE_BATCH_*`` variables."""
        modules = [*self.settings.extra_module_list, *(extra_modules or [])]
        return {
            "extra_modules": ",".join(dict.fromkeys(modules)),
            "database_url": self.database_url,
            "memory_limit": memory_limit if memory_limit is not None else self.settings.memory_limit,
            "halt_on_error": self.settings.halt_on_error,
            "log_level": self.settings.log_level,
            "log_format": self.settings.log_format,
        }


def make_runtime(database_url: str | None = None) -> BatchRuntime:
    """Open the batch database, creating its tables if needed."""
    settings = get_settings()
    url = database_url or settings.resolved_database_url
    engine = create_batch_engine(url)
    init_schema(engine)
    sessions = batch_session_factory(engine)
    return BatchRuntime(
        settings=settings,
        database_url=url,
        engine=engine,
        sessions=sessions,
        store=BatchStore(sessions),
        queue_factory=queue_factory_for(sessions),
    )


# ── Output helpers ───────────────────────────────────────────────────────


def fail(exc: BatchEngineError | str, code: int = 1) -> None:
    """Print an error and exit."""
    if isinstance(exc, BatchEngineError):
        err_console.print(f"[bold red]Error[/bold red] ({exc.category.value}): {exc.message}")
    else:
        err_console.print(f"[bold red]Error[/bold red]: {exc}")
    raise typer.Exit(code=code)


def print_json(payload: Any) -> None:
    console.print_json(json.dumps(payload, default=str))


def print_table(rows: list[dict[str, Any]], *, title: str = "") -> None:
    """Render a list of dicts as a Rich table."""
    if not rows:
        console.print("[dim]No items.[/dim]")
        return
    table = Table(title=title or None, show_lines=False, pad_edge=False)
    for col in rows[0]:
        table.add_column(col, overflow="fold")
    for row in rows:
        table.add_row(*(str(v) for v in row.values()))
    console.print(table)


def print_dict(data: dict[str, Any], *, title: str = "") -> None:
    """Render a single dict as key-value pairs."""
    if title:
        console.print(f"[bold]{title}[/bold]")
    for k, v in data.items():
        console.print(f"  [cyan]{k}[/cyan]: {v}")
