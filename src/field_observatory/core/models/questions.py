"""Question definition ORM model (``project_observation_options``).

Each row is one configurable question of a project.  ``question_type``
decides how the answer string stored in ``observations.response`` is encoded;
see :mod:`field_observatory.core.response_formatter`.
"""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING, Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import ARRAY, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from field_observatory.core.models.base import Base, TimestampMixin

if TYPE_CHECKING:
    from field_observatory.core.models.project import Project


class ObservationOption(Base, TimestampMixin):
    """A question configured on a project.

    Only visible questions are offered to data-entry users and receive
    placeholder answers when a session is opened.  ``sort_order`` is unique
    per project and drives both the data-entry form and export column order.
    """

    __tablename__ = "project_observation_options"
    __table_args__ = (
        sa.UniqueConstraint(
            "project_id",
            "sort_order",
            name="uq_observation_options_project_order",
            deferrable=True,
            initially="DEFERRED",
        ),
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
        index=True,
    )
    name: Mapped[str] = mapped_column(
        sa.String(500),
        nullable=False,
    )
    description: Mapped[Optional[str]] = mapped_column(
        sa.Text,
        nullable=True,
    )
    question_type: Mapped[str] = mapped_column(
        sa.String(20),
        nullable=False,
        server_default=sa.text("'string'"),
    )
    options: Mapped[Optional[list[str]]] = mapped_column(
        ARRAY(sa.Text),
        nullable=True,
    )
    is_visible: Mapped[bool] = mapped_column(
        sa.Boolean,
        nullable=False,
        default=True,
        server_default=sa.text("true"),
    )
    is_mandatory: Mapped[bool] = mapped_column(
        sa.Boolean,
        nullable=False,
        default=False,
        server_default=sa.text("false"),
    )
    sort_order: Mapped[int] = mapped_column(
        sa.Integer,
        nullable=False,
    )

    project: Mapped[Project] = relationship(
        "Project",
        back_populates="observation_options",
    )

    def __repr__(self) -> str:
        return (
            f"<ObservationOption id={self.id} name={self.name!r} "
            f"type={self.question_type!r} order={self.sort_order}>"
        )
