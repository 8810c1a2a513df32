"""Handler Registry: name → callable lookup for batch handlers.

Manifesto:
Queued operations cross process boundaries as names, never as live code.
The registry decouples registration (at import time) from resolution (in
whichever worker process claims the operation).  A module named as a set's
``extra_module`` is imported before the set runs; its decorators populate
the default registry in that fresh process.

ARCHITECTURE
────────────
::

    HandlerRegistry
      ├── .register(kind, name, handler)  ─ store handler
      ├── .get(kind, name)                ─ lookup by key
      ├── .has(kind, name)                ─ existence check
      ├── .is_callable(kind, name)        ─ registered and invocable
      └── .list_handlers()                ─ all registered keys

    Kinds:
      operation  handler(*args, context) -> str | None
      finished   handler(success, results, operations, elapsed)
      control    handler(*args) -> list[set definition]

    Convenience decorators (use global registry):
      register_operation(name)
      register_finished(name)
      register_control(name)

    get_default_registry()     ─ module-level singleton
    reset_default_registry()   ─ clear for testing
    load_extra_module(path)    ─ import an extra-code reference once

BEST PRACTICES
──────────────
- Use the decorators in production code; pass an explicit
  ``HandlerRegistry`` in tests.
- Call ``reset_default_registry()`` in test fixtures.

Tags:
    spine-batch, registry, handler-registry, lookup

Doc-Types:
    api-reference
"""

from __future__ import annotations

import importlib
from collections.abc import Callable
from typing import Any

from spine_batch.core.errors import ConfigError, HandlerNotFoundError
from spine_batch.core.logging import get_logger

logger = get_logger(__name__)

OPERATION = "operation"
FINISHED = "finished"
CONTROL = "control"
KINDS = (OPERATION, FINISHED, CONTROL)


class HandlerRegistry:
    """Injectable handler registry.

    Example:
        >>> registry = HandlerRegistry()
        >>>
        >>> @register_operation("rebuild_index", registry=registry)
        ... def rebuild_index(shard, context):
        ...     context.results.append(shard)
        >>>
        >>> handler = registry.get("operation", "rebuild_index")
    """

    def __init__(self):
        self._handlers: dict[str, Callable] = {}
        self._metadata: dict[str, dict[str, Any]] = {}

    def register(
        self,
        kind: str,
        name: str,
        handler: Callable,
        description: str | None = None,
    ) -> None:
        """Register a handler.

        Args:
            kind: Handler kind (operation, finished, control)
            name: Handler name
            handler: Callable to execute
            description: Optional description for listings
        """
        if kind not in KINDS:
            raise ValueError(f"Unknown handler kind {kind!r}; expected one of {KINDS}")
        key = f"{kind}:{name}"
        self._handlers[key] = handler
        self._metadata[key] = {
            "kind": kind,
            "name": name,
            "description": description or (handler.__doc__ or "").strip().split("\n")[0],
        }

    def get(self, kind: str, name: str) -> Callable:
        """Get a handler.

        Raises:
            HandlerNotFoundError: If handler not found
        """
        key = f"{kind}:{name}"
        if key not in self._handlers:
            available = [n for k, n in self.list_handlers(kind)]
            raise HandlerNotFoundError(kind, name, available)
        return self._handlers[key]

    def has(self, kind: str, name: str) -> bool:
        """Check if handler exists."""
        return f"{kind}:{name}" in self._handlers

    def is_callable(self, kind: str, name: str | None) -> bool:
        """True if *name* is registered under *kind* and can be invoked."""
        if not name:
            return False
        return callable(self._handlers.get(f"{kind}:{name}"))

    def get_metadata(self, kind: str, name: str) -> dict[str, Any] | None:
        return self._metadata.get(f"{kind}:{name}")

    def list_handlers(self, kind: str | None = None) -> list[tuple[str, str]]:
        """List all registered handlers as (kind, name) tuples."""
        handlers = []
        for key in self._handlers:
            k, n = key.split(":", 1)
            if kind is None or k == kind:
                handlers.append((k, n))
        return sorted(handlers)

    def list_with_metadata(self, kind: str | None = None) -> list[dict[str, Any]]:
        result = [
            meta.copy()
            for meta in self._metadata.values()
            if kind is None or meta["kind"] == kind
        ]
        return sorted(result, key=lambda x: (x["kind"], x["name"]))

    def unregister(self, kind: str, name: str) -> bool:
        key = f"{kind}:{name}"
        if key in self._handlers:
            del self._handlers[key]
            del self._metadata[key]
            return True
        return False

    def clear(self) -> None:
        """Clear all handlers (for testing)."""
        self._handlers.clear()
        self._metadata.clear()


# === GLOBAL DEFAULT REGISTRY ===

_default_registry: HandlerRegistry | None = None


def get_default_registry() -> HandlerRegistry:
    """Get the global default registry, creating it lazily."""
    global _default_registry
    if _default_registry is None:
        _default_registry = HandlerRegistry()
        from spine_batch.batch.handlers import register_builtins

        register_builtins(_default_registry)
    return _default_registry


def reset_default_registry() -> None:
    """Drop the global registry (for testing)."""
    global _default_registry
    _default_registry = None


def _decorator(kind: str, name: str, registry: HandlerRegistry | None, description: str | None):
    def wrap(func: Callable) -> Callable:
        (registry or get_default_registry()).register(kind, name, func, description)
        return func

    return wrap


def register_operation(
    name: str, *, registry: HandlerRegistry | None = None, description: str | None = None
) -> Callable[[Callable], Callable]:
    """Decorator registering an operation handler."""
    return _decorator(OPERATION, name, registry, description)


def register_finished(
    name: str, *, registry: HandlerRegistry | None = None, description: str | None = None
) -> Callable[[Callable], Callable]:
    """Decorator registering a set finisher."""
    return _decorator(FINISHED, name, registry, description)


def register_control(
    name: str, *, registry: HandlerRegistry | None = None, description: str | None = None
) -> Callable[[Callable], Callable]:
    """Decorator registering a control operation."""
    return _decorator(CONTROL, name, registry, description)


# === EXTRA CODE ===

_loaded_modules: set[str] = set()


def load_extra_module(path: str | None) -> None:
    """Import *path* once per process so its registrations take effect."""
    if not path or path in _loaded_modules:
        return
    try:
        importlib.import_module(path)
    except ImportError as exc:
        raise ConfigError(f"Cannot load extra module {path!r}: {exc}", cause=exc) from exc
    _loaded_modules.add(path)
    logger.debug("batch.registry.extra_module_loaded", module=path)
