"""Initial schema: users, projects, memberships, questions, sessions, observations.

Creates the Field Observatory schema in FK-dependency order:

1. users                        identity and auth
2. projects                     unit of authorization (FK users)
3. project_users                stored admin/editor/viewer roles (FK projects, users)
4. project_observation_options  questions (FK projects)
5. sessions                     timed observation sessions (FK projects, users)
6. observations                 one answer per (session, question) (FK sessions, options)

The ``(project_id, sort_order)`` unique constraint on questions is
DEFERRABLE INITIALLY DEFERRED so a reorder can renumber every row in one
transaction.

Revision ID: 001
Revises:
Create Date: 2026-10-19
"""

from __future__ import annotations

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import ARRAY

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _uuid_pk() -> sa.Column:
    return sa.Column("id", sa.UUID(), primary_key=True, server_default=sa.text("gen_random_uuid()"))


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.text("NOW()")),
        sa.Column("updated_at", sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.text("NOW()")),
    ]


# ---------------------------------------------------------------------------
# upgrade
# ---------------------------------------------------------------------------

def upgrade() -> None:
    """Create all tables and indexes."""

    # ------------------------------------------------------------------
    # 1. users
    # ------------------------------------------------------------------
    op.create_table(
        "users",
        _uuid_pk(),
        sa.Column("email", sa.String(320), nullable=False),
        sa.Column("hashed_password", sa.String(1024), nullable=True),
        sa.Column("full_name", sa.String(200), nullable=True),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.text("NOW()")),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    # ------------------------------------------------------------------
    # 2. projects
    # ------------------------------------------------------------------
    op.create_table(
        "projects",
        _uuid_pk(),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("created_by", sa.UUID(), sa.ForeignKey("users.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("agencies", ARRAY(sa.String(200)), nullable=False, server_default=sa.text("'{}'")),
        sa.Column("is_finished", sa.Boolean, nullable=False, server_default=sa.text("false")),
        *_timestamps(),
    )
    op.create_index("ix_projects_created_by", "projects", ["created_by"])

    # ------------------------------------------------------------------
    # 3. project_users
    # ------------------------------------------------------------------
    op.create_table(
        "project_users",
        _uuid_pk(),
        sa.Column("project_id", sa.UUID(), sa.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False),
        sa.Column("user_id", sa.UUID(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("role", sa.String(20), nullable=False, server_default=sa.text("'viewer'")),
        sa.Column("added_by", sa.UUID(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.text("NOW()")),
        sa.UniqueConstraint("project_id", "user_id", name="uq_project_users_member"),
        sa.CheckConstraint("role IN ('admin', 'editor', 'viewer')", name="ck_project_users_role"),
    )
    op.create_index("ix_project_users_project_id", "project_users", ["project_id"])
    op.create_index("ix_project_users_user_id", "project_users", ["user_id"])

    # ------------------------------------------------------------------
    # 4. project_observation_options
    # ------------------------------------------------------------------
    op.create_table(
        "project_observation_options",
        _uuid_pk(),
        sa.Column("project_id", sa.UUID(), sa.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.String(500), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("question_type", sa.String(20), nullable=False, server_default=sa.text("'string'")),
        sa.Column("options", ARRAY(sa.Text), nullable=True),
        sa.Column("is_visible", sa.Boolean, nullable=False, server_default=sa.text("true")),
        sa.Column("is_mandatory", sa.Boolean, nullable=False, server_default=sa.text("false")),
        sa.Column("sort_order", sa.Integer, nullable=False),
        *_timestamps(),
        sa.UniqueConstraint(
            "project_id",
            "sort_order",
            name="uq_observation_options_project_order",
            deferrable=True,
            initially="DEFERRED",
        ),
    )
    op.create_index(
        "ix_project_observation_options_project_id",
        "project_observation_options",
        ["project_id"],
    )

    # ------------------------------------------------------------------
    # 5. sessions
    # ------------------------------------------------------------------
    op.create_table(
        "sessions",
        _uuid_pk(),
        sa.Column("project_id", sa.UUID(), sa.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False),
        sa.Column("user_id", sa.UUID(), sa.ForeignKey("users.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("agency", sa.String(200), nullable=True),
        sa.Column("alias", sa.String(200), nullable=True),
        sa.Column("start_time", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("end_time", sa.TIMESTAMP(timezone=True), nullable=True),
        *_timestamps(),
        sa.CheckConstraint(
            "end_time IS NULL OR end_time >= start_time",
            name="ck_sessions_end_after_start",
        ),
    )
    op.create_index("ix_sessions_project_start", "sessions", ["project_id", "start_time"])
    op.create_index("ix_sessions_user_id", "sessions", ["user_id"])

    # ------------------------------------------------------------------
    # 6. observations
    # ------------------------------------------------------------------
    op.create_table(
        "observations",
        _uuid_pk(),
        sa.Column("session_id", sa.UUID(), sa.ForeignKey("sessions.id", ondelete="CASCADE"), nullable=False),
        sa.Column("project_id", sa.UUID(), sa.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False),
        sa.Column("user_id", sa.UUID(), sa.ForeignKey("users.id", ondelete="RESTRICT"), nullable=False),
        sa.Column(
            "project_observation_option_id",
            sa.UUID(),
            sa.ForeignKey("project_observation_options.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("response", sa.Text, nullable=True),
        *_timestamps(),
        sa.UniqueConstraint(
            "session_id",
            "project_observation_option_id",
            name="uq_observations_session_option",
        ),
    )
    op.create_index("ix_observations_session_id", "observations", ["session_id"])
    op.create_index("ix_observations_project_id", "observations", ["project_id"])


# ---------------------------------------------------------------------------
# downgrade
# ---------------------------------------------------------------------------

def downgrade() -> None:
    """Drop all tables created by this migration in reverse dependency order."""
    op.drop_table("observations")
    op.drop_table("sessions")
    op.drop_table("project_observation_options")
    op.drop_table("project_users")
    op.drop_table("projects")
    op.drop_table("users")
