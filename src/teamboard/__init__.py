"""Provide the public `teamboard` package exports."""

from __future__ import annotations

from .errors import (
    BoardError,
    Conflict,
    DuplicateMapping,
    ExternalUnavailable,
    Forbidden,
    MalformedPayload,
    NotFound,
    PreconditionFailed,
)

__all__ = [
    "BoardError",
    "Conflict",
    "DuplicateMapping",
    "ExternalUnavailable",
    "Forbidden",
    "MalformedPayload",
    "NotFound",
    "PreconditionFailed",
]
