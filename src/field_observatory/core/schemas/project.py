"""Pydantic request/response schemas for projects and their members.

A project's caller-specific view (``ProjectWithRole``) carries the resolved
role and the full capability map so that clients never re-derive permissions.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, model_validator

# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------


class ProjectCreate(BaseModel):
    """Payload for creating a new project.

    Attributes:
        name: Human-readable project name. Max 200 characters.
        description: Optional free-text description.
        agencies: Initial agency names.  Blank and duplicate names are dropped.
    """

    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = Field(default=None)
    agencies: list[str] = Field(default_factory=list)


class ProjectUpdate(BaseModel):
    """Partial project update.  Omitted fields are left unchanged."""

    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = Field(default=None)


class AgencyCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)


class MemberCreate(BaseModel):
    """Payload for adding a member.  Identify the user by id or by email.

    Attributes:
        user_id: Existing user's id.
        email: Existing user's email (case-insensitive).
        role: ``admin``, ``editor`` or ``viewer``.  Defaults to ``viewer``.
    """

    user_id: Optional[uuid.UUID] = None
    email: Optional[EmailStr] = None
    role: str = Field(default="viewer", pattern="^(admin|editor|viewer)$")

    @model_validator(mode="after")
    def _require_identity(self) -> MemberCreate:
        if self.user_id is None and self.email is None:
            raise ValueError("Provide either user_id or email")
        return self


class MemberRoleUpdate(BaseModel):
    role: str = Field(..., pattern="^(admin|editor|viewer)$")


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------


class ProjectRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    description: Optional[str]
    created_by: uuid.UUID
    agencies: list[str]
    is_finished: bool
    created_at: datetime
    updated_at: datetime


class ProjectWithRole(BaseModel):
    """A project together with the caller's role on it.

    Attributes:
        project: The project.
        role: The caller's effective role.
        role_label: Display label of the role.
        role_description: One-line summary of what the role may do.
        capabilities: Capability name to allowed flag.
        session_count: Number of sessions in the project.
    """

    project: ProjectRead
    role: str
    role_label: str
    role_description: str = ""
    capabilities: dict[str, bool] = Field(default_factory=dict)
    session_count: int = 0


class ProjectListResponse(BaseModel):
    projects: list[ProjectWithRole]
    total: int


class MemberRead(BaseModel):
    user_id: uuid.UUID
    email: Optional[str]
    role: str
    role_label: str
    role_description: str = ""
    added_by: Optional[uuid.UUID]
    created_at: datetime


class ProjectStats(BaseModel):
    session_count: int
    active_session_count: int
    finished_session_count: int
    observation_count: int
    answered_count: int
    question_count: int
    visible_question_count: int
    member_count: int
