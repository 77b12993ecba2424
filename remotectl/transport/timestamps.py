"""Millisecond timestamp helpers enforcing the clock-skew policy."""

from __future__ import annotations

import re
import time

_TIME_PATTERN = re.compile(r"^[+-]?[0-9]+$")
_INT64_MIN = -(2**63)
_INT64_MAX = 2**63 - 1


class TimestampError(ValueError):
    """Raised when timestamps are malformed or outside the permitted skew."""


def now_ms() -> int:
    return int(time.time() * 1000)


def parse_time_ms(value: str) -> int:
    if not value:
        raise TimestampError("timestamp missing")
    if not _TIME_PATTERN.match(value):
        raise TimestampError(f"timestamp {value!r} is not an integer")
    parsed = int(value)
    if not _INT64_MIN <= parsed <= _INT64_MAX:
        raise TimestampError(f"timestamp {value!r} is out of range")
    return parsed


def assert_within_skew(time_ms: int, *, max_skew_ms: int, now: int | None = None) -> int:
    """Ensure ``time_ms`` is no further than ``max_skew_ms`` from the local clock."""
    ref = now_ms() if now is None else now
    delta_ms = abs(ref - time_ms)
    if delta_ms > max_skew_ms:
        raise TimestampError(f"timestamp skew {delta_ms}ms exceeds max {max_skew_ms}ms")
    return time_ms
