"""
ULID generation and timestamp utilities (stdlib-only).

Batch ids are ULIDs: time-sortable, 26 characters, Crockford base32.  They
sort by creation time, which keeps ``batch status`` listings in the order
batches were started.

Tags:
    timestamps, ulid, spine-batch
"""

from __future__ import annotations

import random
import time

# ULID base32 alphabet (Crockford's)
_ENCODING = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"
_ENCODING_LEN = len(_ENCODING)


def epoch_now() -> float:
    """Seconds since the epoch as a float (wall clock)."""
    return time.time()


def generate_ulid() -> str:
    """Generate a ULID-like identifier.

    Format: 26 characters, base32 encoded, time-sortable.
    """
    timestamp_ms = int(time.time() * 1000)
    timestamp_chars = _encode_base32(timestamp_ms, 10)
    random_part = "".join(random.choices(_ENCODING, k=16))
    return timestamp_chars + random_part


def _encode_base32(value: int, length: int) -> str:
    """Encode integer to base32 string of fixed length."""
    result = []
    for _ in range(length):
        result.append(_ENCODING[value % _ENCODING_LEN])
        value //= _ENCODING_LEN
    return "".join(reversed(result))
