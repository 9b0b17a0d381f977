"""Declarative base and column mixins shared by the flag and schedule models.

Models compose the capabilities they need:

    class FeatureFlag(Base, UUIDv7PKMixin, TimestampMixin, SoftDeleteMixin):
        __tablename__ = "feature_flags"
        key: Mapped[str] = mapped_column(String(100))
"""

from __future__ import annotations

import os
import time
import uuid
from datetime import UTC, datetime

from sqlalchemy import DateTime, MetaData, String
from sqlalchemy.orm import DeclarativeBase, Mapped, declared_attr, mapped_column
from sqlalchemy.sql import func

# Predictable constraint names for create_all and any later migration tooling
NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}


class Base(DeclarativeBase):
    """Declarative base with constraint naming and lowercase table names.

    Models normally set ``__tablename__`` explicitly; the derived name is
    only a fallback.
    """

    metadata = MetaData(naming_convention=NAMING_CONVENTION)

    @declared_attr.directive
    def __tablename__(cls) -> str:
        return cls.__name__.lower()


def generate_uuid7() -> uuid.UUID:
    """Generate a time-ordered UUID v7.

    The first 48 bits carry the Unix timestamp in milliseconds so ids sort
    by creation time, which keeps "latest schedule for a flag" queries cheap.
    """
    timestamp_ms = int(time.time() * 1000)
    random_bytes = os.urandom(10)

    uuid_bytes = bytearray(16)
    uuid_bytes[0:6] = timestamp_ms.to_bytes(6, byteorder="big")
    uuid_bytes[6] = (random_bytes[0] & 0x0F) | 0x70  # Version 7
    uuid_bytes[7] = random_bytes[1]
    uuid_bytes[8] = (random_bytes[2] & 0x3F) | 0x80  # Variant
    uuid_bytes[9:16] = random_bytes[3:10]

    return uuid.UUID(bytes=bytes(uuid_bytes))


class UUIDv7PKMixin:
    """UUID v7 primary key (time-sortable)."""

    __allow_unmapped__ = True

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True,
        default=generate_uuid7,
        comment="UUID v7 primary key (time-sortable)",
    )


class TimestampMixin:
    """Timezone-aware ``created_at``/``updated_at`` columns.

    Python-side defaults keep SQLite test databases consistent with the
    server defaults used on PostgreSQL.
    """

    __allow_unmapped__ = True

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        server_default=func.now(),
        nullable=False,
        comment="Timestamp of record creation",
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        server_default=func.now(),
        onupdate=lambda: datetime.now(UTC),
        nullable=False,
        comment="Timestamp of last update",
    )


class AuditColumnsMixin:
    """Records which operator created a row. Nullable for system writes."""

    __allow_unmapped__ = True

    created_by: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
        comment="User who created this record",
    )


class SoftDeleteMixin:
    """Logical deletion through a ``deleted_at`` timestamp.

    Queries must filter with ``Model.deleted_at.is_(None)`` themselves.
    """

    __allow_unmapped__ = True

    deleted_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        default=None,
        comment="Timestamp of soft deletion",
    )

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None


__all__ = [
    "NAMING_CONVENTION",
    "AuditColumnsMixin",
    "Base",
    "SoftDeleteMixin",
    "TimestampMixin",
    "UUIDv7PKMixin",
    "generate_uuid7",
]
