"""Question (observation option) management for a project.

Questions are ordered by ``sort_order``, which is unique per project and runs
1..N after a reorder.  The unique constraint is deferred to commit time, so
a reorder can renumber every row inside one transaction.

New and duplicated questions go to the end (``max(sort_order) + 1``).
"""

from __future__ import annotations

import uuid
from collections.abc import Callable, Sequence
from typing import Any, Optional

import structlog
from fastapi import Depends
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from field_observatory.core.database import get_db
from field_observatory.core.exceptions import InvalidQuestionError, NotFoundError
from field_observatory.core.models.project import Project, ProjectUser
from field_observatory.core.models.questions import ObservationOption
from field_observatory.core.response_formatter import (
    CHOICE_TYPES,
    CREATABLE_TYPES,
    QuestionType,
    coerce_question_type,
)
from field_observatory.core.roles import (
    Role,
    RoleLike,
    can_edit_question_details,
    can_manage_questions,
    can_view_sessions,
    require_capability,
)

logger = structlog.get_logger(__name__)

_UPDATABLE_FIELDS = frozenset(
    {"name", "description", "question_type", "options", "is_visible", "is_mandatory"}
)


def _validate_definition(
    name: Optional[str],
    question_type: Any,
    options: Optional[Sequence[str]],
    allow_legacy: bool = False,
) -> tuple[QuestionType, Optional[list[str]]]:
    """Check a question definition and normalize its option labels.

    Returns:
        ``(question_type, options)`` with options stripped, de-duplicated and
        set to ``None`` for types that take no options.

    Raises:
        InvalidQuestionError: On an empty name, an unsupported type, or a
            radio/checkbox question without options.
    """
    if name is not None and not name.strip():
        raise InvalidQuestionError("Question name must not be empty", field="name")

    qtype = coerce_question_type(question_type)
    if qtype is None or (qtype not in CREATABLE_TYPES and not allow_legacy):
        allowed = ", ".join(sorted(t.value for t in CREATABLE_TYPES))
        raise InvalidQuestionError(
            f"Unsupported question type '{question_type}'; expected one of {allowed}",
            field="question_type",
        )

    if qtype not in CHOICE_TYPES:
        return qtype, None

    labels: list[str] = []
    for label in options or []:
        cleaned = str(label).strip()
        if cleaned and cleaned not in labels:
            labels.append(cleaned)
    if not labels:
        raise InvalidQuestionError(
            f"A {qtype.value} question needs at least one option", field="options"
        )
    return qtype, labels


class QuestionService:
    """CRUD, visibility, ordering and duplication of project questions.

    Args:
        session: An open :class:`sqlalchemy.ext.asyncio.AsyncSession`.
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def _lookup_role(self, project_id: uuid.UUID, user_id: uuid.UUID) -> Optional[str]:
        result = await self.session.execute(
            select(ProjectUser.role).where(
                ProjectUser.project_id == project_id,
                ProjectUser.user_id == user_id,
            )
        )
        return result.scalar_one_or_none()

    async def _require(
        self,
        project: Project,
        user_id: uuid.UUID,
        predicate: Callable[[RoleLike], bool],
        action: str,
        message: str,
    ) -> Role:
        return await require_capability(
            project, user_id, self._lookup_role, predicate, action, message
        )

    async def _require_manager(self, project: Project, user_id: uuid.UUID, action: str) -> Role:
        return await self._require(
            project, user_id, can_manage_questions, action, "You cannot manage questions"
        )

    async def get_question(self, project: Project, question_id: uuid.UUID) -> ObservationOption:
        question = await self.session.get(ObservationOption, question_id)
        if question is None or question.project_id != project.id:
            raise NotFoundError("question", str(question_id))
        return question

    async def _next_sort_order(self, project_id: uuid.UUID) -> int:
        result = await self.session.execute(
            select(func.coalesce(func.max(ObservationOption.sort_order), 0)).where(
                ObservationOption.project_id == project_id
            )
        )
        return int(result.scalar_one()) + 1

    async def list_questions(
        self,
        project: Project,
        user_id: uuid.UUID,
        include_hidden: bool = False,
    ) -> list[ObservationOption]:
        """Return the project's questions in order.

        Hidden questions are included only when asked for and only for users
        who may manage questions; everyone else gets the data-entry view.
        """
        role = await self._require(
            project, user_id, can_view_sessions, "list_questions", "You cannot view this project"
        )
        stmt = select(ObservationOption).where(ObservationOption.project_id == project.id)
        if not (include_hidden and can_manage_questions(role)):
            stmt = stmt.where(ObservationOption.is_visible.is_(True))
        stmt = stmt.order_by(ObservationOption.sort_order)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def create_question(
        self,
        project: Project,
        user_id: uuid.UUID,
        name: str,
        question_type: Any,
        options: Optional[Sequence[str]] = None,
        description: Optional[str] = None,
        is_visible: bool = True,
        is_mandatory: bool = False,
    ) -> ObservationOption:
        await self._require_manager(project, user_id, "create_question")
        qtype, labels = _validate_definition(name, question_type, options)

        question = ObservationOption(
            project_id=project.id,
            name=name.strip(),
            description=description,
            question_type=qtype.value,
            options=labels,
            is_visible=is_visible,
            is_mandatory=is_mandatory,
            sort_order=await self._next_sort_order(project.id),
        )
        self.session.add(question)
        await self.session.commit()
        await self.session.refresh(question)
        logger.info(
            "question.created",
            project_id=str(project.id),
            question_id=str(question.id),
            question_type=qtype.value,
        )
        return question

    async def update_question(
        self,
        project: Project,
        user_id: uuid.UUID,
        question_id: uuid.UUID,
        changes: dict[str, Any],
    ) -> ObservationOption:
        """Apply a partial update.  Unknown keys are rejected."""
        await self._require(
            project,
            user_id,
            can_edit_question_details,
            "update_question",
            "You cannot edit questions",
        )
        unknown = set(changes) - _UPDATABLE_FIELDS
        if unknown:
            raise InvalidQuestionError(
                f"Cannot update field(s): {', '.join(sorted(unknown))}",
                field=sorted(unknown)[0],
            )

        question = await self.get_question(project, question_id)
        qtype, labels = _validate_definition(
            changes.get("name"),
            changes.get("question_type", question.question_type),
            changes.get("options", question.options),
            allow_legacy="question_type" not in changes,
        )
        for key in ("name", "description", "is_visible", "is_mandatory"):
            if key in changes and changes[key] is not None:
                value = changes[key]
                setattr(question, key, value.strip() if key == "name" else value)
        question.question_type = qtype.value
        question.options = labels

        await self.session.commit()
        await self.session.refresh(question)
        logger.info(
            "question.updated",
            project_id=str(project.id),
            question_id=str(question.id),
            fields=sorted(changes),
        )
        return question

    async def delete_question(
        self, project: Project, user_id: uuid.UUID, question_id: uuid.UUID
    ) -> None:
        """Delete a question.  Its stored answers cascade with it."""
        await self._require_manager(project, user_id, "delete_question")
        question = await self.get_question(project, question_id)
        await self.session.delete(question)
        await self.session.commit()
        logger.info("question.deleted", project_id=str(project.id), question_id=str(question_id))

    async def toggle_visibility(
        self,
        project: Project,
        user_id: uuid.UUID,
        question_id: uuid.UUID,
        is_visible: Optional[bool] = None,
    ) -> ObservationOption:
        """Set visibility, or flip it when *is_visible* is ``None``."""
        await self._require_manager(project, user_id, "toggle_question")
        question = await self.get_question(project, question_id)
        question.is_visible = (not question.is_visible) if is_visible is None else is_visible
        await self.session.commit()
        await self.session.refresh(question)
        logger.info(
            "question.visibility_changed",
            question_id=str(question.id),
            is_visible=question.is_visible,
        )
        return question

    async def reorder_questions(
        self,
        project: Project,
        user_id: uuid.UUID,
        question_ids: Sequence[uuid.UUID],
    ) -> list[ObservationOption]:
        """Renumber questions so that ``question_ids[i]`` gets ``sort_order = i + 1``.

        *question_ids* must list every question of the project exactly once.
        """
        await self._require_manager(project, user_id, "reorder_questions")

        result = await self.session.execute(
            select(ObservationOption).where(ObservationOption.project_id == project.id)
        )
        by_id = {q.id: q for q in result.scalars().all()}
        if len(set(question_ids)) != len(question_ids) or set(question_ids) != set(by_id):
            raise InvalidQuestionError(
                "The new order must list every question of the project exactly once",
                field="question_ids",
            )

        for index, question_id in enumerate(question_ids):
            by_id[question_id].sort_order = index + 1
        await self.session.commit()

        ordered = [by_id[qid] for qid in question_ids]
        for question in ordered:
            await self.session.refresh(question)
        logger.info("question.reordered", project_id=str(project.id), count=len(ordered))
        return ordered

    async def duplicate_question(
        self, project: Project, user_id: uuid.UUID, question_id: uuid.UUID
    ) -> ObservationOption:
        """Copy a question to the end of the list, named ``"<name> (copy)"``."""
        await self._require_manager(project, user_id, "duplicate_question")
        original = await self.get_question(project, question_id)
        copy = ObservationOption(
            project_id=project.id,
            name=f"{original.name} (copy)",
            description=original.description,
            question_type=original.question_type,
            options=list(original.options) if original.options is not None else None,
            is_visible=original.is_visible,
            is_mandatory=original.is_mandatory,
            sort_order=await self._next_sort_order(project.id),
        )
        self.session.add(copy)
        await self.session.commit()
        await self.session.refresh(copy)
        logger.info(
            "question.duplicated",
            project_id=str(project.id),
            source_id=str(question_id),
            question_id=str(copy.id),
        )
        return copy


async def get_question_service(
    session: AsyncSession = Depends(get_db),
) -> QuestionService:
    """FastAPI dependency that yields a :class:`QuestionService` bound to the
    current request's database session."""
    return QuestionService(session=session)
