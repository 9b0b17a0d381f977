"""Database foundation: declarative base, mixins and the generic repository."""

from __future__ import annotations

from .base import (
    AuditColumnsMixin,
    Base,
    SoftDeleteMixin,
    TimestampMixin,
    UUIDv7PKMixin,
    generate_uuid7,
)
from .repository import BaseRepository, SearchResult

__all__ = [
    "AuditColumnsMixin",
    "Base",
    "BaseRepository",
    "SearchResult",
    "SoftDeleteMixin",
    "TimestampMixin",
    "UUIDv7PKMixin",
    "generate_uuid7",
]
