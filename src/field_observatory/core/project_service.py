"""Project management: projects, agencies, members and statistics.

Every mutating method takes the acting user and checks the matching
capability from :mod:`field_observatory.core.roles` before writing.  The
creator is derived from ``projects.created_by`` and is never stored as a
``project_users`` row, so member management refuses to touch the creator.

All write methods commit immediately.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable
from typing import Annotated
from dataclasses import dataclass
from typing import Optional

import structlog
from fastapi import Depends
from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from field_observatory.config.settings import get_settings
from field_observatory.core.blob_store import (
    DEFAULT_VOICE_BUCKET,
    BlobStore,
    delete_recordings,
    get_blob_store,
)
from field_observatory.core.database import get_db
from field_observatory.core.exceptions import (
    InvalidAgencyError,
    InvalidMemberError,
    NotFoundError,
)
from field_observatory.core.models.project import Project, ProjectUser
from field_observatory.core.models.questions import ObservationOption
from field_observatory.core.models.sessions import Observation, ObservationSession
from field_observatory.core.models.users import User
from field_observatory.core.response_formatter import VOICE_PREFIX, extract_voice_url
from field_observatory.core.roles import (
    ASSIGNABLE_ROLES,
    Role,
    RoleLike,
    RoleResolution,
    can_access_settings,
    can_add_agencies,
    can_delete_project,
    can_edit_project,
    can_finish_project,
    can_manage_users,
    can_view_sessions,
    coerce_role,
    require_capability,
    resolve_role,
)
from field_observatory.core.session_cache import SessionListCache, get_session_cache

logger = structlog.get_logger(__name__)


@dataclass
class ProjectAccess:
    """A project as seen by one user."""

    project: Project
    role: Role
    session_count: int = 0


@dataclass
class Member:
    membership: ProjectUser
    email: Optional[str]


# ---------------------------------------------------------------------------
# ProjectService
# ---------------------------------------------------------------------------


class ProjectService:
    """Project CRUD, agencies, membership and statistics.

    Args:
        session: An open :class:`sqlalchemy.ext.asyncio.AsyncSession`.
        blob_store: Where voice recordings live; deleting a project removes
            its recordings from there.  ``None`` skips the cleanup.
        cache: Session listing cache, dropped for a deleted project.
        voice_bucket: Bucket that voice recordings are uploaded to.
    """

    def __init__(
        self,
        session: AsyncSession,
        blob_store: Optional[BlobStore] = None,
        cache: Optional[SessionListCache] = None,
        voice_bucket: str = DEFAULT_VOICE_BUCKET,
    ) -> None:
        self.session = session
        self.blob_store = blob_store
        self.cache = cache
        self.voice_bucket = voice_bucket

    # ------------------------------------------------------------------
    # Roles
    # ------------------------------------------------------------------

    async def get_role_assignment(
        self, project_id: uuid.UUID, user_id: uuid.UUID
    ) -> Optional[str]:
        result = await self.session.execute(
            select(ProjectUser.role).where(
                ProjectUser.project_id == project_id,
                ProjectUser.user_id == user_id,
            )
        )
        return result.scalar_one_or_none()

    async def resolve_role(self, project: Project, user_id: uuid.UUID) -> RoleResolution:
        return await resolve_role(project, user_id, self.get_role_assignment)

    async def _require(
        self,
        project: Project,
        user_id: uuid.UUID,
        predicate: Callable[[RoleLike], bool],
        action: str,
        message: str,
    ) -> Role:
        return await require_capability(
            project, user_id, self.get_role_assignment, predicate, action, message
        )

    # ------------------------------------------------------------------
    # Projects
    # ------------------------------------------------------------------

    async def get_project(self, project_id: uuid.UUID) -> Project:
        project = await self.session.get(Project, project_id)
        if project is None:
            raise NotFoundError("project", str(project_id))
        return project

    async def list_accessible(self, user_id: uuid.UUID) -> list[ProjectAccess]:
        """Projects the user created or is a member of, newest first.

        Each entry carries the user's role and the project's session count.
        """
        member_rows = await self.session.execute(
            select(ProjectUser.project_id, ProjectUser.role).where(ProjectUser.user_id == user_id)
        )
        stored_roles: dict[uuid.UUID, str] = {pid: role for pid, role in member_rows.all()}

        access = Project.created_by == user_id
        if stored_roles:
            access = or_(access, Project.id.in_(list(stored_roles)))

        session_counts = (
            select(
                ObservationSession.project_id,
                func.count(ObservationSession.id).label("session_count"),
            )
            .group_by(ObservationSession.project_id)
            .subquery()
        )
        stmt = (
            select(Project, func.coalesce(session_counts.c.session_count, 0))
            .outerjoin(session_counts, session_counts.c.project_id == Project.id)
            .where(access)
            .order_by(Project.created_at.desc())
        )
        result = await self.session.execute(stmt)

        accessible: list[ProjectAccess] = []
        for project, count in result.all():
            if project.created_by == user_id:
                role = Role.CREATOR
            else:
                role = coerce_role(stored_roles.get(project.id)) or Role.VIEWER
                if role not in ASSIGNABLE_ROLES:
                    role = Role.VIEWER
            accessible.append(ProjectAccess(project=project, role=role, session_count=int(count)))
        return accessible

    async def create_project(
        self,
        user_id: uuid.UUID,
        name: str,
        description: Optional[str] = None,
        agencies: Optional[list[str]] = None,
    ) -> Project:
        """Create a project owned by *user_id*.  Any authenticated user may."""
        project = Project(
            name=name.strip(),
            description=description,
            created_by=user_id,
            agencies=_dedupe_agencies(agencies or []),
            is_finished=False,
        )
        self.session.add(project)
        await self.session.commit()
        await self.session.refresh(project)
        logger.info("project.created", project_id=str(project.id), user_id=str(user_id))
        return project

    async def update_project(
        self,
        project: Project,
        user_id: uuid.UUID,
        name: Optional[str] = None,
        description: Optional[str] = None,
    ) -> Project:
        await self._require(
            project, user_id, can_edit_project, "edit_project", "You cannot edit this project"
        )
        if name is not None:
            project.name = name.strip()
        if description is not None:
            project.description = description
        await self.session.commit()
        await self.session.refresh(project)
        logger.info("project.updated", project_id=str(project.id), user_id=str(user_id))
        return project

    async def finish_project(self, project: Project, user_id: uuid.UUID) -> Project:
        """Mark the project finished.  Terminal and idempotent."""
        await self._require(
            project,
            user_id,
            can_finish_project,
            "finish_project",
            "Only the project creator or an administrator can finish the project",
        )
        if not project.is_finished:
            project.is_finished = True
            await self.session.commit()
            await self.session.refresh(project)
            logger.info("project.finished", project_id=str(project.id), user_id=str(user_id))
        return project

    async def delete_project(self, project: Project, user_id: uuid.UUID) -> None:
        """Delete the project.  Sessions, answers, questions and members cascade.

        Voice recordings referenced by the project's answers are removed
        best-effort first; a failed blob delete does not stop the deletion.
        """
        await self._require(
            project,
            user_id,
            can_delete_project,
            "delete_project",
            "Only the project creator can delete the project",
        )
        project_id = project.id
        recordings = await self.session.execute(
            select(Observation.response).where(
                Observation.project_id == project_id,
                Observation.response.startswith(VOICE_PREFIX),
            )
        )
        removed = await delete_recordings(
            self.blob_store,
            self.voice_bucket,
            (extract_voice_url(raw) for raw in recordings.scalars()),
        )

        await self.session.delete(project)
        await self.session.commit()
        if self.cache is not None:
            self.cache.invalidate(project_id)
        logger.info(
            "project.deleted",
            project_id=str(project_id),
            user_id=str(user_id),
            recordings_removed=removed,
        )

    async def add_agency(self, project: Project, user_id: uuid.UUID, agency: str) -> Project:
        """Append *agency* to the project's list.  Adding an existing name is a no-op."""
        await self._require(
            project, user_id, can_add_agencies, "add_agency", "You cannot add agencies"
        )
        cleaned = agency.strip()
        if not cleaned:
            raise InvalidAgencyError(agency, project.agencies)
        current = list(project.agencies or [])
        if cleaned not in current:
            # Reassign so SQLAlchemy notices the ARRAY change.
            project.agencies = current + [cleaned]
            await self.session.commit()
            await self.session.refresh(project)
            logger.info("project.agency_added", project_id=str(project.id), agency=cleaned)
        return project

    # ------------------------------------------------------------------
    # Members
    # ------------------------------------------------------------------

    async def list_members(self, project: Project, user_id: uuid.UUID) -> list[Member]:
        await self._require(
            project,
            user_id,
            can_access_settings,
            "list_members",
            "You cannot view the project members",
        )
        result = await self.session.execute(
            select(ProjectUser, User.email)
            .outerjoin(User, User.id == ProjectUser.user_id)
            .where(ProjectUser.project_id == project.id)
            .order_by(ProjectUser.created_at)
        )
        return [Member(membership=pu, email=email) for pu, email in result.all()]

    async def _resolve_user(self, user_id: Optional[uuid.UUID], email: Optional[str]) -> User:
        if user_id is not None:
            user = await self.session.get(User, user_id)
            if user is None:
                raise NotFoundError("user", str(user_id))
            return user
        if email:
            result = await self.session.execute(
                select(User).where(func.lower(User.email) == email.strip().lower())
            )
            user = result.scalar_one_or_none()
            if user is None:
                raise NotFoundError("user", email)
            return user
        raise InvalidMemberError("Either user_id or email is required", field="user_id")

    @staticmethod
    def _assignable(role: RoleLike) -> Role:
        resolved = coerce_role(role)
        if resolved is None or resolved not in ASSIGNABLE_ROLES:
            raise InvalidMemberError(
                f"Role '{role}' cannot be assigned; use admin, editor or viewer",
                field="role",
            )
        return resolved

    async def add_member(
        self,
        project: Project,
        acting_user_id: uuid.UUID,
        role: RoleLike,
        user_id: Optional[uuid.UUID] = None,
        email: Optional[str] = None,
    ) -> Member:
        await self._require(
            project,
            acting_user_id,
            can_manage_users,
            "add_member",
            "Only the project creator or an administrator can manage members",
        )
        assigned = self._assignable(role)
        user = await self._resolve_user(user_id, email)
        if user.id == project.created_by:
            raise InvalidMemberError("The project creator already has full access", field="user_id")

        membership = ProjectUser(
            project_id=project.id,
            user_id=user.id,
            role=assigned.value,
            added_by=acting_user_id,
        )
        self.session.add(membership)
        try:
            await self.session.commit()
        except IntegrityError as exc:
            await self.session.rollback()
            logger.warning(
                "project.member_duplicate",
                project_id=str(project.id),
                user_id=str(user.id),
            )
            raise InvalidMemberError(
                f"{user.email} is already a member of this project", field="user_id"
            ) from exc
        await self.session.refresh(membership)
        logger.info(
            "project.member_added",
            project_id=str(project.id),
            user_id=str(user.id),
            role=assigned.value,
            added_by=str(acting_user_id),
        )
        return Member(membership=membership, email=user.email)

    async def _get_membership(self, project: Project, user_id: uuid.UUID) -> ProjectUser:
        result = await self.session.execute(
            select(ProjectUser).where(
                ProjectUser.project_id == project.id,
                ProjectUser.user_id == user_id,
            )
        )
        membership = result.scalar_one_or_none()
        if membership is None:
            raise NotFoundError("member", str(user_id))
        return membership

    async def update_member_role(
        self,
        project: Project,
        acting_user_id: uuid.UUID,
        user_id: uuid.UUID,
        role: RoleLike,
    ) -> ProjectUser:
        await self._require(
            project,
            acting_user_id,
            can_manage_users,
            "update_member",
            "Only the project creator or an administrator can manage members",
        )
        assigned = self._assignable(role)
        membership = await self._get_membership(project, user_id)
        membership.role = assigned.value
        await self.session.commit()
        await self.session.refresh(membership)
        logger.info(
            "project.member_role_updated",
            project_id=str(project.id),
            user_id=str(user_id),
            role=assigned.value,
        )
        return membership

    async def remove_member(
        self, project: Project, acting_user_id: uuid.UUID, user_id: uuid.UUID
    ) -> None:
        await self._require(
            project,
            acting_user_id,
            can_manage_users,
            "remove_member",
            "Only the project creator or an administrator can manage members",
        )
        membership = await self._get_membership(project, user_id)
        await self.session.delete(membership)
        await self.session.commit()
        logger.info("project.member_removed", project_id=str(project.id), user_id=str(user_id))

    async def get_user_emails(self, user_ids: list[uuid.UUID]) -> dict[uuid.UUID, str]:
        if not user_ids:
            return {}
        result = await self.session.execute(
            select(User.id, User.email).where(User.id.in_(user_ids))
        )
        return {uid: email for uid, email in result.all()}

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------

    async def get_stats(self, project: Project, user_id: uuid.UUID) -> dict[str, int]:
        """Return counts for the project dashboard.

        Returns:
            Dict with keys: session_count, active_session_count,
            finished_session_count, observation_count, answered_count,
            question_count, visible_question_count, member_count.
        """
        await self._require(
            project, user_id, can_view_sessions, "view_stats", "You cannot view this project"
        )

        sessions_row = (
            await self.session.execute(
                select(
                    func.count(ObservationSession.id),
                    func.count(ObservationSession.end_time),
                ).where(ObservationSession.project_id == project.id)
            )
        ).one()
        observations_row = (
            await self.session.execute(
                select(
                    func.count(Observation.id),
                    func.count(Observation.response),
                ).where(Observation.project_id == project.id)
            )
        ).one()
        questions_row = (
            await self.session.execute(
                select(
                    func.count(ObservationOption.id),
                    func.count(ObservationOption.id).filter(ObservationOption.is_visible.is_(True)),
                ).where(ObservationOption.project_id == project.id)
            )
        ).one()
        member_count = (
            await self.session.execute(
                select(func.count(ProjectUser.id)).where(ProjectUser.project_id == project.id)
            )
        ).scalar_one()

        session_count, finished_count = int(sessions_row[0]), int(sessions_row[1])
        return {
            "session_count": session_count,
            "active_session_count": session_count - finished_count,
            "finished_session_count": finished_count,
            "observation_count": int(observations_row[0]),
            "answered_count": int(observations_row[1]),
            "question_count": int(questions_row[0]),
            "visible_question_count": int(questions_row[1]),
            "member_count": int(member_count),
        }


def _dedupe_agencies(agencies: list[str]) -> list[str]:
    seen: list[str] = []
    for agency in agencies:
        cleaned = agency.strip()
        if cleaned and cleaned not in seen:
            seen.append(cleaned)
    return seen


async def get_project_service(
    session: Annotated[AsyncSession, Depends(get_db)],
    blob_store: Annotated[BlobStore, Depends(get_blob_store)],
    cache: Annotated[SessionListCache, Depends(get_session_cache)],
) -> ProjectService:
    """FastAPI dependency: a :class:`ProjectService` on the request's database session."""
    return ProjectService(
        session=session,
        blob_store=blob_store,
        cache=cache,
        voice_bucket=get_settings().voice_recordings_bucket,
    )
