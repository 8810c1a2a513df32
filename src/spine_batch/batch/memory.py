"""Advisory memory ceiling for worker processes.

A worker stops claiming operations once twice its resident memory exceeds
the configured limit, persists the batch, and exits so the supervisor can
start a fresh process.  The doubling leaves headroom for the next
operation's growth.  This is a heuristic, not a hard limit: an operation
that allocates past the limit mid-call is not interrupted.
"""

from __future__ import annotations

import re
import resource
import sys
from collections.abc import Callable

from spine_batch.core.errors import ConfigError

_SIZE_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*([kmgt]?)b?\s*$", re.IGNORECASE)
_MULTIPLIERS = {"": 1, "k": 1024, "m": 1024**2, "g": 1024**3, "t": 1024**4}


def parse_size(value: str | int | None) -> int | None:
    """Parse ``"512M"``-style sizes to bytes.

    ``None``, ``""``, and negative values mean "no limit" and return None.
    """
    if value is None:
        return None
    if isinstance(value, int):
        return value if value > 0 else None
    text = value.strip()
    if not text or text.startswith("-"):
        return None
    match = _SIZE_RE.match(text)
    if not match:
        raise ConfigError(f"Invalid memory size {value!r}; expected e.g. 512M or 2G")
    number, unit = match.groups()
    size = int(float(number) * _MULTIPLIERS[unit.lower()])
    return size or None


def memory_usage_bytes() -> int:
    """Resident memory of this process, in bytes.

    ``ru_maxrss`` is the peak RSS, which errs on the side of stopping early.
    It never falls, so workers sharing one process all see the same peak.
    It is reported in KB on Linux and in bytes on macOS.
    """
    usage = resource.getrusage(resource.RUSAGE_SELF)
    if sys.platform == "darwin":
        return int(usage.ru_maxrss)
    return int(usage.ru_maxrss) * 1024


class MemoryCeiling:
    """Decides when a worker has grown too large to keep going."""

    def __init__(
        self,
        limit_bytes: int | None,
        probe: Callable[[], int] = memory_usage_bytes,
        safety_factor: int = 2,
    ) -> None:
        self._limit = limit_bytes
        self._probe = probe
        self._factor = safety_factor

    @classmethod
    def from_setting(cls, value: str | int | None, **kwargs) -> MemoryCeiling:
        return cls(parse_size(value), **kwargs)

    @property
    def limit_bytes(self) -> int | None:
        return self._limit

    @property
    def configured(self) -> bool:
        return self._limit is not None

    def usage(self) -> int:
        return self._probe()

    def exceeded(self) -> bool:
        if self._limit is None:
            return False
        return self._probe() * self._factor > self._limit

    def __repr__(self) -> str:
        return f"MemoryCeiling(limit_bytes={self._limit})"
