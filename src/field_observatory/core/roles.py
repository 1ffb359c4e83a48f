"""Project roles, role resolution and capability predicates.

Every project has four roles:

- ``creator``: the user named by ``projects.created_by``.  Derived, never
  stored, and it overrides any ``project_users`` row the creator may have.
- ``admin``: full management except deleting the project.
- ``editor``: may open sessions, answer and manage questions.
- ``viewer``: read only.  Also the default for members without a stored row.

The capability predicates are pure and total: they accept a :class:`Role`, a
role string or ``None``, and any value that is not one of the four roles
yields ``False`` for every predicate.

:func:`resolve_role` is the single place where the creator override and the
viewer fallback are applied.  The stored-role lookup is injected so the rule
can be exercised without a database.
"""

from __future__ import annotations

import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Protocol, Union

import structlog

from field_observatory.core.exceptions import PermissionDeniedError, StoreUnavailableError

logger = structlog.get_logger(__name__)


class Role(str, Enum):
    """Per-project role of a user."""

    CREATOR = "creator"
    ADMIN = "admin"
    EDITOR = "editor"
    VIEWER = "viewer"


ROLE_LABELS: dict[Role, str] = {
    Role.CREATOR: "Creator",
    Role.ADMIN: "Administrator",
    Role.EDITOR: "Editor",
    Role.VIEWER: "Viewer",
}

ROLE_DESCRIPTIONS: dict[Role, str] = {
    Role.CREATOR: "Full control of the project (single owner)",
    Role.ADMIN: "Full management except deleting the project",
    Role.EDITOR: "Can open sessions and record observations",
    Role.VIEWER: "Read only",
}

#: Roles that may be stored in ``project_users``.  ``creator`` is never stored.
ASSIGNABLE_ROLES: frozenset[Role] = frozenset({Role.ADMIN, Role.EDITOR, Role.VIEWER})

RoleLike = Union[Role, str, None]


def coerce_role(value: RoleLike) -> Optional[Role]:
    """Return the :class:`Role` for *value*, or ``None`` if it is not a known role."""
    if isinstance(value, Role):
        return value
    if isinstance(value, str):
        try:
            return Role(value.strip().lower())
        except ValueError:
            return None
    return None


def _is_one_of(role: RoleLike, allowed: frozenset[Role]) -> bool:
    resolved = coerce_role(role)
    return resolved is not None and resolved in allowed


_MANAGERS = frozenset({Role.CREATOR, Role.ADMIN})
_CONTRIBUTORS = frozenset({Role.CREATOR, Role.ADMIN, Role.EDITOR})
_ALL_ROLES = frozenset(Role)


# ---------------------------------------------------------------------------
# Capability predicates
# ---------------------------------------------------------------------------


def can_manage_users(role: RoleLike) -> bool:
    return _is_one_of(role, _MANAGERS)


def can_edit_project(role: RoleLike) -> bool:
    return _is_one_of(role, _MANAGERS)


def can_finish_project(role: RoleLike) -> bool:
    return _is_one_of(role, _MANAGERS)


def can_delete_project(role: RoleLike) -> bool:
    """Only the creator may delete a project."""
    return _is_one_of(role, frozenset({Role.CREATOR}))


def can_create_sessions(role: RoleLike) -> bool:
    return _is_one_of(role, _CONTRIBUTORS)


def can_edit_observations(role: RoleLike) -> bool:
    return _is_one_of(role, _CONTRIBUTORS)


def can_add_agencies(role: RoleLike) -> bool:
    return _is_one_of(role, _CONTRIBUTORS)


def can_manage_questions(role: RoleLike) -> bool:
    return _is_one_of(role, _CONTRIBUTORS)


def can_edit_question_details(role: RoleLike) -> bool:
    return _is_one_of(role, _CONTRIBUTORS)


def can_access_settings(role: RoleLike) -> bool:
    return _is_one_of(role, _CONTRIBUTORS)


def can_export(role: RoleLike) -> bool:
    return _is_one_of(role, _MANAGERS)


def can_finish_sessions(role: RoleLike) -> bool:
    """Finishing a session is reserved to the project creator and admins."""
    return _is_one_of(role, _MANAGERS)


def can_delete_sessions(role: RoleLike) -> bool:
    """Deleting a session is creator-only, stricter than finishing it."""
    return _is_one_of(role, frozenset({Role.CREATOR}))


def can_view_sessions(role: RoleLike) -> bool:
    return _is_one_of(role, _ALL_ROLES)


CAPABILITIES: dict[str, Callable[[RoleLike], bool]] = {
    "can_manage_users": can_manage_users,
    "can_edit_project": can_edit_project,
    "can_finish_project": can_finish_project,
    "can_delete_project": can_delete_project,
    "can_create_sessions": can_create_sessions,
    "can_edit_observations": can_edit_observations,
    "can_add_agencies": can_add_agencies,
    "can_manage_questions": can_manage_questions,
    "can_edit_question_details": can_edit_question_details,
    "can_access_settings": can_access_settings,
    "can_export": can_export,
    "can_finish_sessions": can_finish_sessions,
    "can_delete_sessions": can_delete_sessions,
    "can_view_sessions": can_view_sessions,
}
"""Name → predicate map, used to serialize a role's capabilities for clients."""


def capabilities_for(role: RoleLike) -> dict[str, bool]:
    """Evaluate every capability predicate for *role*."""
    return {name: predicate(role) for name, predicate in CAPABILITIES.items()}


def get_role_label(role: RoleLike) -> str:
    resolved = coerce_role(role)
    if resolved is None:
        return str(role) if role is not None else ""
    return ROLE_LABELS[resolved]


def get_role_description(role: RoleLike) -> str:
    resolved = coerce_role(role)
    return ROLE_DESCRIPTIONS[resolved] if resolved is not None else ""


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------


class ProjectLike(Protocol):
    id: uuid.UUID
    created_by: uuid.UUID


RoleLookup = Callable[[uuid.UUID, uuid.UUID], Awaitable[Optional[str]]]
"""``async (project_id, user_id) -> stored role string or None``."""


@dataclass(frozen=True)
class RoleResolution:
    """Outcome of :func:`resolve_role`.

    Attributes:
        role: The effective role.  Always one of the four known roles.
        lookup_error: The error raised by the stored-role lookup, if any.  When
            set, ``role`` is :attr:`Role.VIEWER`.
    """

    role: Role
    lookup_error: Optional[Exception] = None

    @property
    def degraded(self) -> bool:
        return self.lookup_error is not None


async def resolve_role(
    project: ProjectLike,
    user_id: uuid.UUID,
    lookup: RoleLookup,
) -> RoleResolution:
    """Resolve the effective role of *user_id* on *project*.

    1. The project creator is always :attr:`Role.CREATOR`; the lookup is not
       consulted.
    2. Otherwise the stored role is used.  A missing row, or a stored value
       that is not a known non-creator role, resolves to :attr:`Role.VIEWER`.
    3. If the lookup raises :class:`StoreUnavailableError` the result degrades
       to :attr:`Role.VIEWER` and the error is returned on the resolution so
       the caller can log or surface it.

    Args:
        project: Any object exposing ``id`` and ``created_by``.
        user_id: The acting user.
        lookup: Coroutine function returning the stored role string.

    Returns:
        A :class:`RoleResolution`.
    """
    if user_id == project.created_by:
        return RoleResolution(role=Role.CREATOR)

    try:
        stored = await lookup(project.id, user_id)
    except StoreUnavailableError as exc:
        logger.warning(
            "role.lookup_failed",
            project_id=str(project.id),
            user_id=str(user_id),
            error=str(exc),
        )
        return RoleResolution(role=Role.VIEWER, lookup_error=exc)

    role = coerce_role(stored)
    if role is None or role not in ASSIGNABLE_ROLES:
        if stored is not None:
            logger.warning(
                "role.unrecognized_stored_role",
                project_id=str(project.id),
                user_id=str(user_id),
                stored_role=stored,
            )
        return RoleResolution(role=Role.VIEWER)
    return RoleResolution(role=role)


async def require_capability(
    project: ProjectLike,
    user_id: uuid.UUID,
    lookup: RoleLookup,
    predicate: Callable[[RoleLike], bool],
    action: str,
    message: str,
) -> Role:
    """Resolve the user's role and raise unless *predicate* allows the action.

    Lookup failures resolve to viewer first, so this fails closed.

    Returns:
        The resolved role.

    Raises:
        PermissionDeniedError: If *predicate* is false for the resolved role.
    """
    resolution = await resolve_role(project, user_id, lookup)
    if not predicate(resolution.role):
        logger.warning(
            "role.permission_denied",
            action=action,
            project_id=str(project.id),
            user_id=str(user_id),
            role=resolution.role.value,
            degraded=resolution.degraded,
        )
        raise PermissionDeniedError(
            f"{message} (your role: {get_role_label(resolution.role)})",
            action=action,
            role=resolution.role.value,
        )
    return resolution.role
