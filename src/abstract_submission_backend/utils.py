"""
Utility functions for input sanitization and value parsing.

This module provides helper functions for:
- Stripping query-operator keys from user-provided payloads
- Parsing submission identifiers received as strings or numbers
- Parsing the editing deadline into an aware UTC instant
- Ensuring directory creation for file-backed stores
"""

from __future__ import annotations

import re
from datetime import date, datetime, time, timedelta, timezone
from pathlib import Path
from typing import Any

from .errors import ValidationError

# Integers only, optionally surrounded by whitespace; no signs, no decimals
UNIQUE_ID_PATTERN = re.compile(r"^\s*(\d+)\s*$")


def _is_operator_key(key: Any) -> bool:
    return isinstance(key, str) and (key.startswith("$") or "." in key)


def sanitize_query_operators(value: Any) -> Any:
    """
    Remove keys that a document store could interpret as query operators.

    Keys starting with ``$`` or containing ``.`` are dropped at every
    nesting level of dicts and lists. Other values are returned unchanged,
    so the result is safe to merge into stored documents.

    Args:
        value: A decoded JSON value (dict, list, or scalar)

    Returns:
        A sanitized copy of the value

    Example:
        >>> sanitize_query_operators({"theme": {"$ne": ""}, "company": "C"})
        {'theme': {}, 'company': 'C'}
    """
    if isinstance(value, dict):
        return {
            key: sanitize_query_operators(item)
            for key, item in value.items()
            if not _is_operator_key(key)
        }
    if isinstance(value, list):
        return [sanitize_query_operators(item) for item in value]
    return value


def parse_unique_id(raw: Any) -> int:
    """
    Convert a client-supplied identifier into a submission ID.

    Accepts ints and digit-only strings. Booleans are rejected even though
    they are ints in Python.

    Raises:
        ValidationError: If the value is missing or not a non-negative integer
    """
    if raw is None or raw == "":
        raise ValidationError("Unique ID is required.")
    if isinstance(raw, bool):
        raise ValidationError("Unique ID must be an integer.")
    if isinstance(raw, int):
        if raw < 0:
            raise ValidationError("Unique ID must be an integer.")
        return raw
    if isinstance(raw, str):
        match = UNIQUE_ID_PATTERN.match(raw)
        if match:
            return int(match.group(1))
    raise ValidationError("Unique ID must be an integer.")


def parse_deadline(value: str) -> datetime:
    """
    Parse the editing deadline into the instant at which editing closes.

    A bare date (``2024-12-31``) covers that whole day in UTC, so the
    returned instant is the following midnight. A datetime closes editing
    exactly at that moment; naive datetimes are read as UTC.

    Raises:
        ValueError: If the value is not an ISO date or datetime
    """
    text = value.strip()
    try:
        day = date.fromisoformat(text)
    except ValueError:
        moment = datetime.fromisoformat(text)
        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=timezone.utc)
        return moment
    return datetime.combine(day + timedelta(days=1), time.min, tzinfo=timezone.utc)


def ensure_directory(path: Path) -> Path:
    """
    Create a directory if it doesn't exist, including parent directories.

    Args:
        path: The directory path to create

    Returns:
        The same path object for chaining

    Raises:
        OSError: If directory creation fails due to permissions or other I/O errors
    """
    path.mkdir(parents=True, exist_ok=True)
    return path
