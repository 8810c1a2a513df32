"""Operation context.

A fresh :class:`OperationContext` is built for every operation invocation
and handed to the operation as its last argument::

    @register_operation("reindex")
    def reindex(start, stop, context):
        cursor = context.sandbox.setdefault("cursor", start)
        ...
        context.results.append(cursor)
        context.set_message(f"Reindexed up to {cursor}")
        context.finished = (cursor - start) / (stop - start)

The context holds its own copies of the set's sandbox and results for the
duration of the call.  The worker writes them back with :meth:`fold_into`
when the invocation returns, so nothing outside the call observes partial
writes through aliasing.

Writing the message or the error message is an observable action: both
setters forward to the :class:`~spine_batch.batch.log.BatchLog`.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Any

from spine_batch.batch.log import BatchLog
from spine_batch.batch.models import BatchSet


@dataclass
class OperationContext:
    """Mutable record passed into each operation invocation."""

    log: BatchLog = field(repr=False)
    sandbox: dict[str, Any] = field(default_factory=dict)
    results: list[Any] = field(default_factory=list)
    finished: float = 1.0
    message: str = ""
    error_message: str = ""

    @classmethod
    def for_set(cls, batch_set: BatchSet, log: BatchLog) -> OperationContext:
        """Build a context over copies of *batch_set*'s sandbox and results."""
        return cls(
            log=log,
            sandbox=copy.deepcopy(batch_set.sandbox),
            results=copy.deepcopy(batch_set.results),
        )

    def set_message(self, message: str) -> None:
        """Set the human-readable status message and log it."""
        self.message = message
        if message:
            self.log.log("info", message)

    def set_error_message(self, message: str, code: str = "BATCH_OPERATION_ERROR") -> None:
        """Set an error message and record it through the error channel."""
        self.error_message = message
        self.log.record_error(code, message)

    def set_finished(self, fraction: float) -> None:
        """Report completion: ``>= 1`` means done, ``< 1`` asks to be re-invoked."""
        if isinstance(fraction, bool) or not isinstance(fraction, (int, float)):
            raise TypeError(f"Completion fraction must be a number, got {fraction!r}")
        self.finished = float(fraction)

    @property
    def is_complete(self) -> bool:
        return self.finished >= 1

    def fold_into(self, batch_set: BatchSet) -> None:
        """Write sandbox and results back into the owning set."""
        batch_set.sandbox = self.sandbox
        batch_set.results = self.results
