"""Application-wide exception hierarchy for Field Observatory.

All custom exceptions subclass ``FieldObservatoryError`` so callers can catch
the whole family with one ``except`` clause.  The API layer maps each class to
an HTTP status in ``api/main.py``.

Hierarchy::

    FieldObservatoryError
    ├── PermissionDeniedError     (403)
    ├── ProjectFinishedError      (409)
    ├── SessionFinishedError      (409)
    ├── InvalidAgencyError        (422)
    ├── InvalidQuestionError      (422)
    ├── InvalidMemberError        (422)
    ├── NotFoundError             (404)
    └── StoreUnavailableError     (503)
"""

from __future__ import annotations


class FieldObservatoryError(Exception):
    """Base class for all Field Observatory exceptions."""


class PermissionDeniedError(FieldObservatoryError):
    """Raised when the acting user's project role does not allow an action.

    Never retried.  The message is shown to the user as-is, so it should say
    what is missing.

    Args:
        message: Human-readable description of the refused action.
        action: Short action name (e.g. ``"finish_session"``).
        role: The role the user holds on the project, if resolved.
    """

    def __init__(
        self,
        message: str,
        action: str | None = None,
        role: str | None = None,
    ) -> None:
        super().__init__(message)
        self.action = action
        self.role = role


class ProjectFinishedError(FieldObservatoryError):
    """Raised when a mutation targets a project that has been marked finished.

    Args:
        project_id: String form of the finished project's id.
    """

    def __init__(self, project_id: str | None = None) -> None:
        msg = "This project is finished; new sessions and answers are not accepted"
        super().__init__(msg)
        self.project_id = project_id


class SessionFinishedError(FieldObservatoryError):
    """Raised when an answer is written to a session that has ended.

    Args:
        session_id: String form of the finished session's id.
    """

    def __init__(self, session_id: str | None = None) -> None:
        super().__init__("This session is finished; its answers can no longer change")
        self.session_id = session_id


class InvalidAgencyError(FieldObservatoryError):
    """Raised when a session names an agency the project does not configure.

    Args:
        agency: The rejected agency value.
        allowed: The agencies configured on the project.
    """

    def __init__(self, agency: str, allowed: list[str] | None = None) -> None:
        super().__init__(f"Agency '{agency}' is not configured for this project")
        self.agency = agency
        self.allowed = list(allowed or [])
        self.field = "agency"


class InvalidQuestionError(FieldObservatoryError):
    """Raised when an answer or question definition fails validation.

    Args:
        message: Description of the problem.
        field: Name of the offending input field.
    """

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field


class InvalidMemberError(FieldObservatoryError):
    """Raised when a membership change is refused, e.g. storing a role for
    the project creator.

    Args:
        message: Description of the problem.
        field: Name of the offending input field.
    """

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field


class NotFoundError(FieldObservatoryError):
    """Raised when a project, session or question no longer exists.

    Args:
        resource: Resource kind (``"project"``, ``"session"``, ...).
        resource_id: String form of the missing id.
    """

    def __init__(self, resource: str, resource_id: str | None = None) -> None:
        msg = f"{resource.capitalize()} not found"
        if resource_id:
            msg = f"{resource.capitalize()} '{resource_id}' not found"
        super().__init__(msg)
        self.resource = resource
        self.resource_id = resource_id


class StoreUnavailableError(FieldObservatoryError):
    """Raised when the database or object storage cannot be reached.

    Primary operations surface this to the caller; best-effort side-channel
    cleanup (voice blob deletion) logs and swallows it.

    Args:
        message: Description of the failure.
        operation: Store operation that failed (e.g. ``"delete_blob"``).
    """

    def __init__(self, message: str, operation: str | None = None) -> None:
        super().__init__(message)
        self.operation = operation
