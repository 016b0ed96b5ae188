"""Run and handle identifier helpers."""

from __future__ import annotations

import secrets
from datetime import datetime, timezone


def generate_run_id() -> str:
    now = datetime.now(tz=timezone.utc)
    return now.strftime("deploy-%Y%m%dT%H%M%S%fZ")


def generate_handle_id() -> str:
    return f"secret-{secrets.token_hex(8)}"
