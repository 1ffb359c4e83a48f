"""Declarative base for the Field Observatory tables, plus the timestamp mixin."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import func
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    # uuid.UUID annotations map to native PostgreSQL UUID columns.
    type_annotation_map = {uuid.UUID: UUID(as_uuid=True)}


class TimestampMixin:
    """``created_at`` / ``updated_at``; ``updated_at`` moves on every UPDATE issued through SQLAlchemy."""

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )
