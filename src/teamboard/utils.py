"""Provide utility helpers for timestamps and identifiers."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Optional


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _now_iso() -> str:
    return _now().isoformat()


def _to_iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _parse_iso(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        if not isinstance(value, str):
            value = str(value)
        if value.endswith("Z"):
            value = value[:-1] + "+00:00"
        dt = datetime.fromisoformat(value)
        # If a naive timestamp slips in, assume UTC to avoid crashes.
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return dt
    except ValueError:
        return None


def _generate_id(prefix: str) -> str:
    """Short human-friendly ID: ``<prefix>-<8hex>``."""
    return f"{prefix}-{uuid.uuid4().hex[:8]}"
