"""Utility functions for the engine."""

from __future__ import annotations

import datetime
import math
import time
from collections.abc import Iterable
from typing import Any


def now_ms() -> int:
    """Return the current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def to_int(value: Any, fallback: Any = 0) -> Any:
    """Parse an integer the lenient way stored documents need."""
    if value is None or isinstance(value, bool):
        return fallback
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if math.isfinite(value) else fallback
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        try:
            parsed = float(str(value).strip())
        except (TypeError, ValueError):
            return fallback
        return int(parsed) if math.isfinite(parsed) else fallback


def to_millis(value: Any, fallback: Any = None) -> Any:
    """Convert a timestamp-ish value (ms, ISO string, datetime) to epoch ms."""
    if value is None or isinstance(value, bool):
        return fallback
    if isinstance(value, (int, float)):
        return int(value) if math.isfinite(value) else fallback
    if isinstance(value, datetime.datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=datetime.timezone.utc)
        return int(value.timestamp() * 1000)
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return fallback
        if text.lstrip("-").isdigit():
            return int(text)
        try:
            parsed = datetime.datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            return fallback
        return to_millis(parsed, fallback)
    return fallback


def normalize_map_pool(
    pool: Iterable[Any] | None, default: Iterable[str] = ()
) -> list[str]:
    """Strip and de-duplicate map names, falling back when fewer than two."""
    seen: list[str] = []
    for name in pool or []:
        text = str(name or "").strip()
        if text and text not in seen:
            seen.append(text)
    if len(seen) < 2:
        return list(default)
    return seen


def normalize_uid_list(values: Iterable[Any] | None) -> list[str]:
    """Return unique, non-empty uid strings in their original order."""
    result: list[str] = []
    for value in values or []:
        uid = str(value or "").strip()
        if uid and uid not in result:
            result.append(uid)
    return result
