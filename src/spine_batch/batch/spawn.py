"""Worker spawning.

The supervisor never runs operations itself.  It asks a :class:`Spawner` to
run the ``worker`` command for a batch id and reads back the worker's
result envelope::

    {"context": {"batch_process_finished": false, ...},
     "error": false,
     "log": [...]}

Two spawners ship:

    SubprocessSpawner  fresh Python process per invocation; memory a worker
                       accumulated is returned to the OS when it exits
    InProcessSpawner   calls a worker in the current process (tests, and
                       ``batch run --in-process``)

A subprocess worker writes its envelope as the last line of stdout; its
structlog output goes to stderr.  Options reach the child as
``SPINE_BATCH_*`` environment variables, which
:class:`~spine_batch.core.settings.BatchSettings` reads on startup.
"""

from __future__ import annotations

import json
import os
import subprocess
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol

from spine_batch.batch.log import LogEntry
from spine_batch.core.errors import SpawnError
from spine_batch.core.logging import get_logger
from spine_batch.core.settings import get_settings

logger = get_logger(__name__)

WORKER_COMMAND = "worker"


@dataclass
class SpawnResult:
    """What a spawned worker reported."""

    context: dict[str, Any] = field(default_factory=dict)
    error: bool = False
    log: list[LogEntry] = field(default_factory=list)
    output: str = ""
    returncode: int | None = None

    @classmethod
    def from_envelope(cls, envelope: Mapping[str, Any], **kwargs: Any) -> SpawnResult:
        return cls(
            context=dict(envelope.get("context") or {}),
            error=bool(envelope.get("error", False)),
            log=[LogEntry.from_dict(e) for e in envelope.get("log") or []],
            **kwargs,
        )


class Spawner(Protocol):
    def spawn(
        self,
        command: str,
        args: Sequence[str],
        options: Mapping[str, Any] | None = None,
    ) -> SpawnResult | None:
        """Run *command* and return its result, or None if it produced none."""
        ...


def parse_envelope(stdout: str) -> dict[str, Any] | None:
    """Find the result envelope: the last stdout line that is a JSON object."""
    for line in reversed(stdout.strip().splitlines()):
        line = line.strip()
        if not line.startswith("{"):
            continue
        try:
            data = json.loads(line)
        except ValueError:
            continue
        if isinstance(data, dict) and "context" in data:
            return data
    return None


def options_to_env(options: Mapping[str, Any]) -> dict[str, str]:
    """``{"memory_limit": "512M"}`` → ``{"SPINE_BATCH_MEMORY_LIMIT": "512M"}``."""
    env = {}
    for name, value in options.items():
        if value is None:
            continue
        if isinstance(value, bool):
            value = "true" if value else "false"
        env[f"SPINE_BATCH_{name.upper()}"] = str(value)
    return env


class SubprocessSpawner:
    """Runs ``python -m spine_batch batch <command> <args>`` in a child process."""

    def __init__(
        self,
        python: str | None = None,
        timeout_seconds: float | None = None,
        inherit_env: bool = True,
    ) -> None:
        self._python = python or get_settings().worker_python
        self._timeout = timeout_seconds
        self._inherit_env = inherit_env

    def build_command(self, command: str, args: Sequence[str]) -> list[str]:
        return [self._python, "-m", "spine_batch", "batch", command, *map(str, args)]

    def _build_env(self, options: Mapping[str, Any]) -> dict[str, str]:
        env = dict(os.environ) if self._inherit_env else {}
        env.update(options_to_env(options))
        return env

    def spawn(
        self,
        command: str,
        args: Sequence[str],
        options: Mapping[str, Any] | None = None,
    ) -> SpawnResult | None:
        argv = self.build_command(command, args)
        logger.debug("batch.spawn.starting", argv=argv)
        try:
            completed = subprocess.run(
                argv,
                env=self._build_env(options or {}),
                capture_output=True,
                text=True,
                timeout=self._timeout,
                check=False,
            )
        except (OSError, subprocess.TimeoutExpired) as exc:
            error = SpawnError(f"Could not run worker: {exc}", cause=exc).with_context(argv=argv)
            logger.error("batch.spawn.failed", **error.to_dict())
            return SpawnResult(error=True, output=error.message)

        if completed.stderr:
            logger.debug("batch.spawn.stderr", output=completed.stderr[-4000:])

        envelope = parse_envelope(completed.stdout)
        if envelope is None:
            logger.error(
                "batch.spawn.no_result",
                returncode=completed.returncode,
                stdout=completed.stdout[-2000:],
                stderr=completed.stderr[-2000:],
            )
            return None
        return SpawnResult.from_envelope(
            envelope, output=completed.stdout, returncode=completed.returncode
        )


class InProcessSpawner:
    """Runs workers in the current process.

    *worker_factory* receives the spawn options and must return a fresh
    object with a ``run(batch_id)`` method returning a
    :class:`~spine_batch.batch.worker.WorkerResult`.
    """

    def __init__(self, worker_factory: Callable[[Mapping[str, Any]], Any]) -> None:
        self._worker_factory = worker_factory
        self.invocations = 0

    def spawn(
        self,
        command: str,
        args: Sequence[str],
        options: Mapping[str, Any] | None = None,
    ) -> SpawnResult | None:
        if command != WORKER_COMMAND:
            raise ValueError(f"InProcessSpawner only runs {WORKER_COMMAND!r}, got {command!r}")
        self.invocations += 1
        worker = self._worker_factory(options or {})
        result = worker.run(str(args[0]))
        # Round-trip through JSON exactly as a subprocess would.
        envelope = json.loads(json.dumps(result.to_envelope()))
        return SpawnResult.from_envelope(envelope, returncode=0)
