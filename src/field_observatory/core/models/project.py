"""Project and project membership ORM models.

A project is the unit of authorization: every session, observation and
question belongs to exactly one project.

- ``Project.created_by`` names the single creator.  It is set at creation and
  never changed; the creator's role is derived from it, never stored.
- ``ProjectUser`` rows hold the admin/editor/viewer role of every other
  member.  Users without a row see the project as viewers.

Deleting a project cascades (``ON DELETE CASCADE``) to memberships, questions,
sessions and observations.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import TYPE_CHECKING, Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import ARRAY, TIMESTAMP, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from field_observatory.core.models.base import Base, TimestampMixin

if TYPE_CHECKING:
    from field_observatory.core.models.questions import ObservationOption


class Project(Base, TimestampMixin):
    """A data-collection project.

    Attributes:
        id: Unique identifier.
        name: Human-readable project name.
        description: Optional free-text description.
        created_by: The user who created the project (implicit creator role).
        agencies: Agency names sessions may be tagged with.
        is_finished: Terminal flag; once set, no sessions or answers are accepted.
    """

    __tablename__ = "projects"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        server_default=sa.text("gen_random_uuid()"),
    )
    name: Mapped[str] = mapped_column(
        sa.String(200),
        nullable=False,
    )
    description: Mapped[Optional[str]] = mapped_column(
        sa.Text,
        nullable=True,
    )
    created_by: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    agencies: Mapped[list[str]] = mapped_column(
        ARRAY(sa.String(200)),
        nullable=False,
        default=list,
        server_default=sa.text("'{}'"),
    )
    is_finished: Mapped[bool] = mapped_column(
        sa.Boolean,
        nullable=False,
        default=False,
        server_default=sa.text("false"),
    )

    members: Mapped[list[ProjectUser]] = relationship(
        "ProjectUser",
        back_populates="project",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    observation_options: Mapped[list[ObservationOption]] = relationship(
        "ObservationOption",
        back_populates="project",
        order_by="ObservationOption.sort_order",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __repr__(self) -> str:
        return (
            f"<Project id={self.id} name={self.name!r} "
            f"created_by={self.created_by} finished={self.is_finished}>"
        )


class ProjectUser(Base):
    """A stored (non-creator) role assignment for one user on one project."""

    __tablename__ = "project_users"
    __table_args__ = (
        sa.UniqueConstraint("project_id", "user_id", name="uq_project_users_member"),
        sa.CheckConstraint(
            "role IN ('admin', 'editor', 'viewer')",
            name="ck_project_users_role",
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
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    role: Mapped[str] = mapped_column(
        sa.String(20),
        nullable=False,
        server_default=sa.text("'viewer'"),
    )
    added_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=sa.text("NOW()"),
    )

    project: Mapped[Project] = relationship("Project", back_populates="members")

    def __repr__(self) -> str:
        return (
            f"<ProjectUser project_id={self.project_id} "
            f"user_id={self.user_id} role={self.role!r}>"
        )
