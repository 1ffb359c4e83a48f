"""Pydantic request/response schemas for project questions."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class QuestionCreate(BaseModel):
    """Payload for creating a question.

    Attributes:
        name: Question text shown to field workers.
        question_type: One of string, boolean, radio, checkbox, counter,
            timer, voice.
        options: Choice labels; required for radio and checkbox, ignored
            otherwise.
        description: Optional help text.
        is_visible: Whether data-entry users see the question.
        is_mandatory: Whether the client should require an answer.
    """

    name: str = Field(..., min_length=1, max_length=500)
    question_type: str = Field(default="string")
    options: Optional[list[str]] = None
    description: Optional[str] = None
    is_visible: bool = True
    is_mandatory: bool = False


class QuestionUpdate(BaseModel):
    """Partial question update.  Only fields present in the body are applied."""

    name: Optional[str] = Field(default=None, min_length=1, max_length=500)
    question_type: Optional[str] = None
    options: Optional[list[str]] = None
    description: Optional[str] = None
    is_visible: Optional[bool] = None
    is_mandatory: Optional[bool] = None


class QuestionVisibility(BaseModel):
    """Explicit visibility; omit ``is_visible`` to flip the current value."""

    is_visible: Optional[bool] = None


class QuestionReorder(BaseModel):
    question_ids: list[uuid.UUID] = Field(..., min_length=1)


class QuestionRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    project_id: uuid.UUID
    name: str
    description: Optional[str]
    question_type: str
    options: Optional[list[str]]
    is_visible: bool
    is_mandatory: bool
    sort_order: int
    created_at: datetime
    updated_at: datetime
