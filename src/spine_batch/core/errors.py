"""
Structured error types for spine-batch.

Every failure the engine can observe falls into one of four kinds, and the
kind decides how far the error is allowed to travel:

- **Operation-local failures** are tolerated.  The worker records them
  through the batch log and moves on to the next operation.
- **Storage failures** (missing or corrupt snapshot) end the current worker
  invocation with a "no batch" result.  The supervisor treats that as
  terminal.
- **Spawn failures** are terminal for the supervisor loop.
- **Finisher lookups** that fail are skipped; they are not errors at all.

Architecture:
    ::

        ┌─────────────────────────────────────────────────────────────┐
        │                      BatchEngineError                        │
        │        (category, retryable, context, cause)                 │
        ├─────────────────────────────────────────────────────────────┤
        │  StorageError        SpawnError          OperationError      │
        │  (STORAGE)           (SPAWN)             (OPERATION)         │
        │      │                                       │               │
        │  BatchNotFoundError                      HaltOnErrorError    │
        │  CorruptBatchError                                           │
        │                                                              │
        │  RegistryError       ConfigError         BatchDefinitionError│
        │  (REGISTRY)          (CONFIG)            (VALIDATION)        │
        │      │                                                       │
        │  HandlerNotFoundError                                        │
        └─────────────────────────────────────────────────────────────┘

Examples:
    >>> error = BatchNotFoundError("01HXABC")
    >>> error.category
    <ErrorCategory.STORAGE: 'STORAGE'>
    >>> error.context.batch_id
    '01HXABC'

    >>> try:
    ...     raise KeyError("sandbox")
    ... except KeyError as e:
    ...     raise OperationError("Operation crashed", cause=e)
    Traceback (most recent call last):
    ...
    OperationError: Operation crashed

Guardrails:
    ❌ DON'T: Raise bare Exception from engine code
    ✅ DO: Use the BatchEngineError subclass for the failure kind

    ❌ DON'T: Swallow the original exception
    ✅ DO: Pass it as cause= for error chaining

Tags:
    error-handling, exception-hierarchy, spine-batch

Doc-Types:
    - API Reference
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Standard error categories for classification and routing."""

    STORAGE = "STORAGE"
    SPAWN = "SPAWN"
    OPERATION = "OPERATION"
    REGISTRY = "REGISTRY"
    CONFIG = "CONFIG"
    VALIDATION = "VALIDATION"
    INTERNAL = "INTERNAL"
    UNKNOWN = "UNKNOWN"


@dataclass
class ErrorContext:
    """Structured context attached to an error.

    Attributes:
        batch_id: Batch the error belongs to
        set_index: Index of the active set when the error occurred
        operation: Registered name of the operation being invoked
        queue_name: Queue involved in the failure
        metadata: Additional key-value pairs
    """

    batch_id: str | None = None
    set_index: int | None = None
    operation: str | None = None
    queue_name: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result: dict[str, Any] = {}
        for key in ["batch_id", "set_index", "operation", "queue_name"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class BatchEngineError(Exception):
    """Base class for all spine-batch errors.

    Subclasses override ``default_category`` and ``default_retryable``.
    A retryable error is one the supervisor may recover from by spawning
    again; nothing in the engine retries automatically.
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.context = context or ErrorContext()
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> BatchEngineError:
        """Add context to this error (fluent API).

        Usage:
            raise OperationError("Failed").with_context(batch_id=bid, set_index=2)
        """
        for key, value in kwargs.items():
            if hasattr(self.context, key) and key != "metadata":
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result: dict[str, Any] = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# STORAGE
# =============================================================================


class StorageError(BatchEngineError):
    """Persisted batch state could not be read or written."""

    default_category = ErrorCategory.STORAGE


class BatchNotFoundError(StorageError):
    """No snapshot exists for the requested batch id ("no batch")."""

    def __init__(self, batch_id: str, message: str | None = None):
        super().__init__(
            message or f"No batch found for id {batch_id}",
            context=ErrorContext(batch_id=batch_id),
        )
        self.batch_id = batch_id


class CorruptBatchError(StorageError):
    """A snapshot exists but cannot be decoded."""

    def __init__(self, batch_id: str, message: str | None = None, cause: Exception | None = None):
        super().__init__(
            message or f"Persisted batch {batch_id} is unreadable",
            context=ErrorContext(batch_id=batch_id),
            cause=cause,
        )
        self.batch_id = batch_id


# =============================================================================
# SPAWN / OPERATION
# =============================================================================


class SpawnError(BatchEngineError):
    """A worker process could not be launched or reported an error."""

    default_category = ErrorCategory.SPAWN
    default_retryable = True


class OperationError(BatchEngineError):
    """An operation raised during invocation."""

    default_category = ErrorCategory.OPERATION


class HaltOnErrorError(OperationError):
    """An error was recorded while errors are configured to be fatal."""

    def __init__(self, code: str, message: str):
        super().__init__(f"[{code}] {message}")
        self.code = code


# =============================================================================
# REGISTRY / CONFIG / DEFINITION
# =============================================================================


class RegistryError(BatchEngineError):
    """Handler registration or lookup failed."""

    default_category = ErrorCategory.REGISTRY


class HandlerNotFoundError(RegistryError):
    """No handler is registered under the requested kind and name."""

    def __init__(self, kind: str, name: str, available: list[str] | None = None):
        listing = ", ".join(available) if available else "none"
        super().__init__(
            f"No handler registered for {kind}:{name}. Available {kind} handlers: {listing}",
            context=ErrorContext(operation=name),
        )
        self.kind = kind
        self.name = name


class ConfigError(BatchEngineError):
    """Invalid or missing configuration."""

    default_category = ErrorCategory.CONFIG


class BatchDefinitionError(BatchEngineError):
    """A batch or set definition is malformed."""

    default_category = ErrorCategory.VALIDATION


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================


def categorize_error(error: Exception) -> ErrorCategory:
    """Get the category of an error."""
    if isinstance(error, BatchEngineError):
        return error.category
    if isinstance(error, OSError):
        return ErrorCategory.STORAGE
    if isinstance(error, (ValueError, TypeError)):
        return ErrorCategory.VALIDATION
    return ErrorCategory.UNKNOWN


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "BatchEngineError",
    "StorageError",
    "BatchNotFoundError",
    "CorruptBatchError",
    "SpawnError",
    "OperationError",
    "HaltOnErrorError",
    "RegistryError",
    "HandlerNotFoundError",
    "ConfigError",
    "BatchDefinitionError",
    "categorize_error",
]
