"""Pydantic schemas for request/response validation.

Sub-modules:
    project  - ProjectCreate/Update/Read, AgencyCreate, MemberCreate/Read, ProjectStats
    question - QuestionCreate/Update/Read, QuestionReorder
    session  - SessionCreate/Read/Detail, ObservationUpsert/Read, SessionListResponse
"""

from __future__ import annotations
