"""Utility helpers for coercing loosely typed provider payloads."""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Iterable


def coerce_int(value: Any) -> int | None:
    """Return ``value`` as an int, accepting numeric strings and blanks."""

    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            return None
        try:
            return int(float(stripped))
        except ValueError:
            return None
    return None


def coerce_float(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            return None
        try:
            return float(stripped)
        except ValueError:
            return None
    return None


def coerce_str(value: Any) -> str | None:
    """Return a stripped string or ``None`` for blank values."""

    if value is None:
        return None
    text = str(value).strip()
    return text or None


def parse_id_list(value: Any) -> list[str]:
    """Normalise category id collections (lists or JSON strings) to strings."""

    if value is None:
        return []
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            return []
        try:
            value = json.loads(stripped)
        except json.JSONDecodeError:
            value = stripped.split(",")
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        value = [value]
    if not isinstance(value, Iterable):
        return []
    cleaned: list[str] = []
    for entry in value:
        normalised = coerce_str(entry)
        if normalised is None:
            continue
        if normalised.endswith(".0"):
            normalised = normalised[:-2]
        if normalised not in cleaned:
            cleaned.append(normalised)
    return cleaned


def parse_unix_timestamp(value: Any) -> datetime | None:
    """Parse provider ``added``/``last_modified`` epoch values."""

    seconds = coerce_int(value)
    if seconds is None or seconds <= 0:
        return None
    try:
        return datetime.utcfromtimestamp(seconds)
    except (OverflowError, OSError, ValueError):
        return None


def hours_between(earlier: datetime, later: datetime) -> float:
    return (later - earlier).total_seconds() / 3600
