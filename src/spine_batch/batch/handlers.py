"""Built-in handlers.

Small, dependency-free handlers registered on the default registry.  They
make it possible to drive the engine end to end from a YAML definition and
serve as worked examples of each handler kind:

    operation  echo, sleep, count_to, fail
    finished   log_summary
    control    append_sets
"""

from __future__ import annotations

import time
from typing import Any

from spine_batch.batch.context import OperationContext
from spine_batch.batch.models import OperationRef
from spine_batch.batch.registry import CONTROL, FINISHED, OPERATION, HandlerRegistry
from spine_batch.core.errors import BatchDefinitionError
from spine_batch.core.logging import get_logger

logger = get_logger(__name__)


# ── Operations ───────────────────────────────────────────────────────────


def echo(message: str, context: OperationContext) -> str:
    """Append *message* to the set's results and return it."""
    context.results.append(message)
    return message


def sleep(seconds: float, context: OperationContext) -> None:
    """Sleep for *seconds*; useful for exercising resume and memory limits."""
    time.sleep(float(seconds))
    context.results.append(seconds)


def count_to(target: int, step: int, context: OperationContext) -> None:
    """Count to *target* in increments of *step*, one increment per call.

    Progress lives in the sandbox, so the count resumes in the next worker
    process if this one exits mid-way.
    """
    target, step = int(target), int(step)
    if step <= 0:
        raise BatchDefinitionError(f"count_to step must be positive, got {step}")
    current = min(context.sandbox.get("count", 0) + step, target)
    context.sandbox["count"] = current
    if current >= target:
        context.results.append(current)
        context.set_finished(1.0)
    else:
        context.set_finished(current / target)
    context.set_message(f"Counted to {current} of {target}")


def fail(message: str, context: OperationContext) -> None:
    """Raise, to exercise error handling."""
    raise RuntimeError(message)


# ── Finishers ────────────────────────────────────────────────────────────


def log_summary(
    success: bool, results: list[Any], operations: list[OperationRef], elapsed: str
) -> None:
    """Log a one-line summary of a finished set."""
    logger.info(
        "batch.set.summary",
        success=success,
        results=len(results),
        operations=len(operations),
        elapsed=elapsed,
    )


# ── Control ──────────────────────────────────────────────────────────────


def append_sets(definitions: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Return *definitions* unchanged so they run next."""
    return list(definitions)


def register_builtins(registry: HandlerRegistry) -> None:
    """Register every built-in handler on *registry*."""
    for name, func in (("echo", echo), ("sleep", sleep), ("count_to", count_to), ("fail", fail)):
        registry.register(OPERATION, name, func)
    registry.register(FINISHED, "log_summary", log_summary)
    registry.register(CONTROL, "append_sets", append_sets)
