"""Project routes: CRUD, agencies, members and statistics.

Routes:
    GET    /                                  - projects the caller created or belongs to
    POST   /                                  - create a project (caller becomes creator)
    GET    /{project_id}                      - project with the caller's role and capabilities
    PATCH  /{project_id}                      - update name/description (creator, admin)
    POST   /{project_id}/finish               - mark finished (creator, admin)
    DELETE /{project_id}                      - delete with everything in it (creator)
    POST   /{project_id}/agencies             - add an agency (non-viewers)
    GET    /{project_id}/members              - list stored members (non-viewers)
    POST   /{project_id}/members              - add a member (creator, admin)
    PATCH  /{project_id}/members/{user_id}    - change a member's role (creator, admin)
    DELETE /{project_id}/members/{user_id}    - remove a member (creator, admin)
    GET    /{project_id}/stats                - dashboard counts

Domain errors raised by the services are mapped to HTTP statuses by the
handlers registered in ``api/main.py``.
"""

from __future__ import annotations

import uuid
from typing import Annotated

import structlog
from fastapi import APIRouter, Depends, Response, status

from field_observatory.api.dependencies import get_current_active_user, get_project_for_user
from field_observatory.core.models.project import Project
from field_observatory.core.models.users import User
from field_observatory.core.project_service import Member, ProjectService, get_project_service
from field_observatory.core.roles import (
    Role,
    capabilities_for,
    get_role_description,
    get_role_label,
)
from field_observatory.core.schemas.project import (
    AgencyCreate,
    MemberCreate,
    MemberRead,
    MemberRoleUpdate,
    ProjectCreate,
    ProjectListResponse,
    ProjectRead,
    ProjectStats,
    ProjectUpdate,
    ProjectWithRole,
)

logger = structlog.get_logger(__name__)

router = APIRouter()


def _with_role(project: Project, role: Role, session_count: int = 0) -> ProjectWithRole:
    return ProjectWithRole(
        project=ProjectRead.model_validate(project),
        role=role.value,
        role_label=get_role_label(role),
        role_description=get_role_description(role),
        capabilities=capabilities_for(role),
        session_count=session_count,
    )


def _member_read(member: Member) -> MemberRead:
    membership = member.membership
    return MemberRead(
        user_id=membership.user_id,
        email=member.email,
        role=membership.role,
        role_label=get_role_label(membership.role),
        role_description=get_role_description(membership.role),
        added_by=membership.added_by,
        created_at=membership.created_at,
    )


# ---------------------------------------------------------------------------
# Projects
# ---------------------------------------------------------------------------


@router.get("/", response_model=ProjectListResponse)
async def list_projects(
    projects: Annotated[ProjectService, Depends(get_project_service)],
    current_user: Annotated[User, Depends(get_current_active_user)],
) -> ProjectListResponse:
    accessible = await projects.list_accessible(current_user.id)
    items = [_with_role(a.project, a.role, a.session_count) for a in accessible]
    return ProjectListResponse(projects=items, total=len(items))


@router.post("/", response_model=ProjectWithRole, status_code=status.HTTP_201_CREATED)
async def create_project(
    body: ProjectCreate,
    projects: Annotated[ProjectService, Depends(get_project_service)],
    current_user: Annotated[User, Depends(get_current_active_user)],
) -> ProjectWithRole:
    project = await projects.create_project(
        current_user.id, body.name, body.description, body.agencies
    )
    return _with_role(project, Role.CREATOR)


@router.get("/{project_id}", response_model=ProjectWithRole)
async def get_project(
    project: Annotated[Project, Depends(get_project_for_user)],
    projects: Annotated[ProjectService, Depends(get_project_service)],
    current_user: Annotated[User, Depends(get_current_active_user)],
) -> ProjectWithRole:
    """Return the project with the caller's effective role.

    When the role lookup fails the caller is shown as a viewer; the failure
    is logged by the resolver.
    """
    resolution = await projects.resolve_role(project, current_user.id)
    return _with_role(project, resolution.role)


@router.patch("/{project_id}", response_model=ProjectRead)
async def update_project(
    body: ProjectUpdate,
    project: Annotated[Project, Depends(get_project_for_user)],
    projects: Annotated[ProjectService, Depends(get_project_service)],
    current_user: Annotated[User, Depends(get_current_active_user)],
) -> ProjectRead:
    updated = await projects.update_project(
        project, current_user.id, name=body.name, description=body.description
    )
    return ProjectRead.model_validate(updated)


@router.post("/{project_id}/finish", response_model=ProjectRead)
async def finish_project(
    project: Annotated[Project, Depends(get_project_for_user)],
    projects: Annotated[ProjectService, Depends(get_project_service)],
    current_user: Annotated[User, Depends(get_current_active_user)],
) -> ProjectRead:
    finished = await projects.finish_project(project, current_user.id)
    return ProjectRead.model_validate(finished)


@router.delete("/{project_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_project(
    project: Annotated[Project, Depends(get_project_for_user)],
    projects: Annotated[ProjectService, Depends(get_project_service)],
    current_user: Annotated[User, Depends(get_current_active_user)],
) -> Response:
    await projects.delete_project(project, current_user.id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{project_id}/agencies", response_model=ProjectRead)
async def add_agency(
    body: AgencyCreate,
    project: Annotated[Project, Depends(get_project_for_user)],
    projects: Annotated[ProjectService, Depends(get_project_service)],
    current_user: Annotated[User, Depends(get_current_active_user)],
) -> ProjectRead:
    updated = await projects.add_agency(project, current_user.id, body.name)
    return ProjectRead.model_validate(updated)


# ---------------------------------------------------------------------------
# Members
# ---------------------------------------------------------------------------


@router.get("/{project_id}/members", response_model=list[MemberRead])
async def list_members(
    project: Annotated[Project, Depends(get_project_for_user)],
    projects: Annotated[ProjectService, Depends(get_project_service)],
    current_user: Annotated[User, Depends(get_current_active_user)],
) -> list[MemberRead]:
    members = await projects.list_members(project, current_user.id)
    return [_member_read(m) for m in members]


@router.post(
    "/{project_id}/members",
    response_model=MemberRead,
    status_code=status.HTTP_201_CREATED,
)
async def add_member(
    body: MemberCreate,
    project: Annotated[Project, Depends(get_project_for_user)],
    projects: Annotated[ProjectService, Depends(get_project_service)],
    current_user: Annotated[User, Depends(get_current_active_user)],
) -> MemberRead:
    member = await projects.add_member(
        project,
        current_user.id,
        role=body.role,
        user_id=body.user_id,
        email=body.email,
    )
    return _member_read(member)


@router.patch("/{project_id}/members/{user_id}", response_model=MemberRead)
async def update_member_role(
    user_id: uuid.UUID,
    body: MemberRoleUpdate,
    project: Annotated[Project, Depends(get_project_for_user)],
    projects: Annotated[ProjectService, Depends(get_project_service)],
    current_user: Annotated[User, Depends(get_current_active_user)],
) -> MemberRead:
    membership = await projects.update_member_role(project, current_user.id, user_id, body.role)
    emails = await projects.get_user_emails([user_id])
    return _member_read(Member(membership=membership, email=emails.get(user_id)))


@router.delete("/{project_id}/members/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_member(
    user_id: uuid.UUID,
    project: Annotated[Project, Depends(get_project_for_user)],
    projects: Annotated[ProjectService, Depends(get_project_service)],
    current_user: Annotated[User, Depends(get_current_active_user)],
) -> Response:
    await projects.remove_member(project, current_user.id, user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ---------------------------------------------------------------------------
# Statistics
# ---------------------------------------------------------------------------


@router.get("/{project_id}/stats", response_model=ProjectStats)
async def project_stats(
    project: Annotated[Project, Depends(get_project_for_user)],
    projects: Annotated[ProjectService, Depends(get_project_service)],
    current_user: Annotated[User, Depends(get_current_active_user)],
) -> ProjectStats:
    return ProjectStats(**await projects.get_stats(project, current_user.id))
