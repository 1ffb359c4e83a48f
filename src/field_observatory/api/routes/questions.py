"""Question routes, mounted under ``/projects/{project_id}/questions``.

Routes:
    GET    /                          - questions in order (hidden ones with ?include_hidden=true)
    POST   /                          - create a question at the end of the list
    PATCH  /{question_id}             - partial update
    DELETE /{question_id}             - delete (answers cascade)
    POST   /{question_id}/visibility  - set or flip visibility
    PUT    /order                     - renumber from a full list of ids
    POST   /{question_id}/duplicate   - copy to the end of the list
"""

from __future__ import annotations

import uuid
from typing import Annotated

from fastapi import APIRouter, Depends, Query, Response, status

from field_observatory.api.dependencies import get_current_active_user, get_project_for_user
from field_observatory.core.models.project import Project
from field_observatory.core.models.users import User
from field_observatory.core.question_service import QuestionService, get_question_service
from field_observatory.core.schemas.question import (
    QuestionCreate,
    QuestionRead,
    QuestionReorder,
    QuestionUpdate,
    QuestionVisibility,
)

router = APIRouter()

Questions = Annotated[QuestionService, Depends(get_question_service)]
CurrentProject = Annotated[Project, Depends(get_project_for_user)]
CurrentUser = Annotated[User, Depends(get_current_active_user)]


@router.get("/", response_model=list[QuestionRead])
async def list_questions(
    project: CurrentProject,
    questions: Questions,
    current_user: CurrentUser,
    include_hidden: Annotated[bool, Query()] = False,
) -> list[QuestionRead]:
    items = await questions.list_questions(project, current_user.id, include_hidden)
    return [QuestionRead.model_validate(q) for q in items]


@router.post("/", response_model=QuestionRead, status_code=status.HTTP_201_CREATED)
async def create_question(
    body: QuestionCreate,
    project: CurrentProject,
    questions: Questions,
    current_user: CurrentUser,
) -> QuestionRead:
    question = await questions.create_question(
        project,
        current_user.id,
        name=body.name,
        question_type=body.question_type,
        options=body.options,
        description=body.description,
        is_visible=body.is_visible,
        is_mandatory=body.is_mandatory,
    )
    return QuestionRead.model_validate(question)


@router.put("/order", response_model=list[QuestionRead])
async def reorder_questions(
    body: QuestionReorder,
    project: CurrentProject,
    questions: Questions,
    current_user: CurrentUser,
) -> list[QuestionRead]:
    ordered = await questions.reorder_questions(project, current_user.id, body.question_ids)
    return [QuestionRead.model_validate(q) for q in ordered]


@router.patch("/{question_id}", response_model=QuestionRead)
async def update_question(
    question_id: uuid.UUID,
    body: QuestionUpdate,
    project: CurrentProject,
    questions: Questions,
    current_user: CurrentUser,
) -> QuestionRead:
    changes = body.model_dump(exclude_unset=True)
    question = await questions.update_question(project, current_user.id, question_id, changes)
    return QuestionRead.model_validate(question)


@router.delete("/{question_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_question(
    question_id: uuid.UUID,
    project: CurrentProject,
    questions: Questions,
    current_user: CurrentUser,
) -> Response:
    await questions.delete_question(project, current_user.id, question_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{question_id}/visibility", response_model=QuestionRead)
async def toggle_question_visibility(
    question_id: uuid.UUID,
    body: QuestionVisibility,
    project: CurrentProject,
    questions: Questions,
    current_user: CurrentUser,
) -> QuestionRead:
    question = await questions.toggle_visibility(
        project, current_user.id, question_id, body.is_visible
    )
    return QuestionRead.model_validate(question)


@router.post(
    "/{question_id}/duplicate",
    response_model=QuestionRead,
    status_code=status.HTTP_201_CREATED,
)
async def duplicate_question(
    question_id: uuid.UUID,
    project: CurrentProject,
    questions: Questions,
    current_user: CurrentUser,
) -> QuestionRead:
    copy = await questions.duplicate_question(project, current_user.id, question_id)
    return QuestionRead.model_validate(copy)
