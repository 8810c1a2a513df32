"""
Root Typer application for the spine-batch CLI.
"""

from __future__ import annotations

import typer
from typer import Typer

from spine_batch.core.logging import configure_logging
from spine_batch.core.settings import get_settings

app = Typer(
    name="spine-batch",
    help="spine-batch: resumable, multi-process batch processing.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        from spine_batch import __version__

        typer.echo(f"spine-batch {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(  # noqa: UP007
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """spine-batch CLI: run, resume, inspect, and purge batches."""
    settings = get_settings()
    configure_logging(level=settings.log_level, json_format=settings.json_logs)


# ── Sub-command registration ─────────────────────────────────────────────

from spine_batch.cli.batch import app as batch_app  # noqa: E402

app.add_typer(batch_app, name="batch", help="Batch processing.")
