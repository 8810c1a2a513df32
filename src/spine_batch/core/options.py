"""Runtime option context.

Settings are read once per process and are immutable.  Some options must be
changed while the process runs: the worker forces ``halt_on_error`` off
around every operation invocation and puts it back afterwards.
``RuntimeOptions`` is the small mutable layer that holds those values,
seeded from :class:`~spine_batch.core.settings.BatchSettings`.

Usage::

    options = RuntimeOptions.from_settings(get_settings())
    with options.override("halt_on_error", False):
        run_operation()
    assert options.halt_on_error  # restored
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from spine_batch.core.settings import BatchSettings

_MISSING = object()


class RuntimeOptions:
    """Mutable name → value option store for one process."""

    def __init__(self, values: dict[str, Any] | None = None) -> None:
        self._values: dict[str, Any] = {"halt_on_error": True}
        if values:
            self._values.update(values)

    @classmethod
    def from_settings(cls, settings: BatchSettings) -> RuntimeOptions:
        return cls({"halt_on_error": settings.halt_on_error})

    def get(self, name: str, default: Any = None) -> Any:
        return self._values.get(name, default)

    def set(self, name: str, value: Any) -> None:
        self._values[name] = value

    @property
    def halt_on_error(self) -> bool:
        return bool(self._values.get("halt_on_error", True))

    @halt_on_error.setter
    def halt_on_error(self, value: bool) -> None:
        self._values["halt_on_error"] = bool(value)

    @contextmanager
    def override(self, name: str, value: Any) -> Iterator[None]:
        """Set *name* for the duration of the block, restoring it on exit."""
        previous = self._values.get(name, _MISSING)
        self._values[name] = value
        try:
            yield
        finally:
            if previous is _MISSING:
                self._values.pop(name, None)
            else:
                self._values[name] = previous

    def as_dict(self) -> dict[str, Any]:
        return dict(self._values)

    def __repr__(self) -> str:
        return f"RuntimeOptions({self._values!r})"
