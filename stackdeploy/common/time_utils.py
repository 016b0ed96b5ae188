"""UTC and duration helpers for run metadata."""

from __future__ import annotations

import time
from datetime import datetime, timezone


def utc_timestamp_iso() -> str:
    return datetime.now(tz=timezone.utc).isoformat(timespec="milliseconds")


def monotonic_ms() -> int:
    return int(time.monotonic() * 1000)


def elapsed_ms(started_ms: int) -> int:
    return monotonic_ms() - started_ms
