"""Progress computation and progress-message rendering.

``progress_percentage`` is the number the worker and supervisor reason
about; ``format_percentage`` is what humans read.  The display form gains
decimal places as the total grows so a nearly finished set never reads
"100" before its last operation completes.

Progress-message templates accept these placeholders:

    @current     operations completed so far (partial progress floored)
    @remaining   operations not yet completed
    @total       operations in the set
    @percentage  display percentage
    @elapsed     human-readable elapsed time for the set
"""

from __future__ import annotations

import math
from decimal import ROUND_HALF_UP, Decimal

from spine_batch.batch.models import BatchSet

_INTERVAL_UNITS = (
    ("1 year", "{count} years", 31536000),
    ("1 month", "{count} months", 2592000),
    ("1 week", "{count} weeks", 604800),
    ("1 day", "{count} days", 86400),
    ("1 hour", "{count} hours", 3600),
    ("1 min", "{count} min", 60),
    ("1 sec", "{count} sec", 1),
)


def current_progress(total: int, remaining: int, fraction: float) -> float:
    return total - remaining + fraction


def progress_percentage(total: int, remaining: int, fraction: float) -> float:
    """Percentage complete for a set; an empty set counts as complete."""
    if total <= 0:
        return 100.0
    return current_progress(total, remaining, fraction) / total * 100


def format_percentage(total: int, current: float) -> str:
    """Display percentage with enough precision never to show a false 100."""
    if not total or total == current:
        return "100"

    decimal_places = max(0, math.floor(math.log10(total / 2.0)) - 1)
    exact = Decimal(str(current)) / Decimal(total) * 100
    while True:
        quantum = Decimal(1).scaleb(-decimal_places)
        percentage = str(exact.quantize(quantum, rounding=ROUND_HALF_UP))
        decimal_places += 1
        if Decimal(percentage) != 100:
            return percentage


def format_interval(seconds: float, granularity: int = 2) -> str:
    """Human-readable duration, e.g. ``"1 hour 5 min"``."""
    interval = int(seconds)
    parts: list[str] = []
    for singular, plural, unit in _INTERVAL_UNITS:
        if interval >= unit:
            count = interval // unit
            parts.append(singular if count == 1 else plural.format(count=count))
            interval %= unit
            granularity -= 1
        elif parts:
            # No skipped levels: "1 year 1 sec" is never produced.
            break
        if granularity == 0:
            break
    return " ".join(parts) if parts else "0 sec"


def render_progress_message(template: str, batch_set: BatchSet, fraction: float) -> str:
    """Fill a progress-message template for *batch_set*."""
    total = batch_set.total_count
    remaining = batch_set.remaining_count
    current = current_progress(total, remaining, fraction)
    values = {
        "@current": str(math.floor(current)),
        "@remaining": str(remaining),
        "@total": str(total),
        "@percentage": format_percentage(total, current),
        "@elapsed": format_interval(batch_set.elapsed),
    }
    message = template
    # Longest placeholders first so none is a prefix of another's match.
    for key in sorted(values, key=len, reverse=True):
        message = message.replace(key, values[key])
    return message
