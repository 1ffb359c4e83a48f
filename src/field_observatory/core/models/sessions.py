"""Observation session and answer ORM models.

- ``ObservationSession`` (table ``sessions``): one timed unit of field work.
  ``end_time`` is NULL while the session is active and is set exactly once
  when it is finished.
- ``Observation`` (table ``observations``): one answer to one question within
  one session.  The ``(session_id, project_observation_option_id)`` pair is
  unique, so answers are upserted rather than appended.

Observations reference their session with ``ON DELETE CASCADE``; the session
service still deletes them explicitly before the session row.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from field_observatory.core.models.base import Base, TimestampMixin


class ObservationSession(Base, TimestampMixin):
    """A timed observation session opened by one user under one project."""

    __tablename__ = "sessions"
    __table_args__ = (
        sa.CheckConstraint(
            "end_time IS NULL OR end_time >= start_time",
            name="ck_sessions_end_after_start",
        ),
        sa.Index("ix_sessions_project_start", "project_id", "start_time"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        server_default=sa.text("gen_random_uuid()"),
    )
    project_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    agency: Mapped[Optional[str]] = mapped_column(
        sa.String(200),
        nullable=True,
    )
    alias: Mapped[Optional[str]] = mapped_column(
        sa.String(200),
        nullable=True,
    )
    start_time: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
    )
    end_time: Mapped[Optional[datetime]] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=True,
    )

    observations: Mapped[list[Observation]] = relationship(
        "Observation",
        back_populates="session",
        passive_deletes=True,
    )

    @property
    def is_active(self) -> bool:
        return self.end_time is None

    def __repr__(self) -> str:
        return (
            f"<ObservationSession id={self.id} project_id={self.project_id} "
            f"agency={self.agency!r} end_time={self.end_time}>"
        )


class Observation(Base, TimestampMixin):
    """One stored answer.  ``response`` is NULL until the question is answered."""

    __tablename__ = "observations"
    __table_args__ = (
        sa.UniqueConstraint(
            "session_id",
            "project_observation_option_id",
            name="uq_observations_session_option",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        server_default=sa.text("gen_random_uuid()"),
    )
    session_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("sessions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    project_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
    )
    project_observation_option_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("project_observation_options.id", ondelete="CASCADE"),
        nullable=False,
    )
    response: Mapped[Optional[str]] = mapped_column(
        sa.Text,
        nullable=True,
    )

    session: Mapped[ObservationSession] = relationship(
        "ObservationSession",
        back_populates="observations",
    )

    def __repr__(self) -> str:
        return (
            f"<Observation id={self.id} session_id={self.session_id} "
            f"option_id={self.project_observation_option_id}>"
        )
