"""Unit tests for the session lifecycle service.

All tests run against the in-memory ``FakeSessionStore`` and ``FakeBlobStore``
from ``tests/conftest.py``; no database or object storage is needed.
"""

from __future__ import annotations

import json
import uuid
from datetime import date, timedelta, timezone
from unittest.mock import MagicMock

import pytest
from minio.error import ServerError

from field_observatory.core.blob_store import MinioBlobStore
from field_observatory.core.exceptions import (
    InvalidAgencyError,
    InvalidQuestionError,
    NotFoundError,
    PermissionDeniedError,
    ProjectFinishedError,
    SessionFinishedError,
)
from field_observatory.core.session_service import SessionService, day_bounds
from tests.factories import ObservationFactory, QuestionFactory, SessionFactory
from tests.factories.sessions import T0

VOICE_OLD = "https://storage.example.com/voice-recordings/old.webm"
VOICE_NEW = "https://storage.example.com/voice-recordings/new.webm"


@pytest.fixture
def questions(store, project):
    """Three questions; the second one is hidden."""
    return [
        store.add_option(QuestionFactory.build(project_id=project.id, name="Crowd", sort_order=1)),
        store.add_option(
            QuestionFactory.build(
                project_id=project.id, name="Internal", sort_order=2, is_visible=False
            )
        ),
        store.add_option(
            QuestionFactory.build(
                project_id=project.id, name="Recording", question_type="voice", sort_order=3
            )
        ),
    ]


def _member(store, project, role: str) -> uuid.UUID:
    user_id = uuid.uuid4()
    store.set_role(project, user_id, role)
    return user_id


# ---------------------------------------------------------------------------
# day_bounds
# ---------------------------------------------------------------------------


def test_day_bounds_cover_the_whole_day() -> None:
    start, end = day_bounds(date(2026, 3, 14))
    assert start.isoformat() == "2026-03-14T00:00:00+00:00"
    assert end.isoformat() == "2026-03-14T23:59:59.999000+00:00"


def test_day_bounds_in_other_timezone() -> None:
    lima = timezone(timedelta(hours=-5))
    start, _ = day_bounds(date(2026, 3, 14), lima)
    assert start.astimezone(timezone.utc).hour == 5


# ---------------------------------------------------------------------------
# create_session
# ---------------------------------------------------------------------------


class TestCreateSession:
    async def test_creates_active_session_with_placeholders(
        self, service, store, project, creator_id, questions
    ) -> None:
        session = await service.create_session(project, "North", creator_id, alias=" Gate A ")

        assert session.end_time is None
        assert session.start_time == T0
        assert session.agency == "North"
        assert session.alias == "Gate A"

        placeholders = store.observations_of(session.id)
        visible_ids = {questions[0].id, questions[2].id}
        assert {o.project_observation_option_id for o in placeholders} == visible_ids
        assert all(o.response is None for o in placeholders)

    async def test_blank_agency_becomes_none(self, service, project, creator_id) -> None:
        session = await service.create_session(project, "   ", creator_id)
        assert session.agency is None

    async def test_unknown_agency_rejected(self, service, store, project, creator_id) -> None:
        with pytest.raises(InvalidAgencyError) as exc_info:
            await service.create_session(project, "East", creator_id)
        assert exc_info.value.field == "agency"
        assert store.sessions == {}

    async def test_finished_project_rejected_without_writes(
        self, service, store, project, creator_id, questions
    ) -> None:
        project.is_finished = True

        with pytest.raises(ProjectFinishedError):
            await service.create_session(project, "North", creator_id)

        assert store.sessions == {}
        assert store.observations == {}

    async def test_viewer_cannot_create(self, service, store, project) -> None:
        viewer = _member(store, project, "viewer")
        with pytest.raises(PermissionDeniedError):
            await service.create_session(project, None, viewer)

    async def test_non_member_is_viewer(self, service, project) -> None:
        with pytest.raises(PermissionDeniedError):
            await service.create_session(project, None, uuid.uuid4())

    async def test_permission_checked_before_finished_state(
        self, service, store, project
    ) -> None:
        project.is_finished = True
        viewer = _member(store, project, "viewer")
        with pytest.raises(PermissionDeniedError):
            await service.create_session(project, None, viewer)

    async def test_editor_can_create(self, service, store, project) -> None:
        editor = _member(store, project, "editor")
        session = await service.create_session(project, "South", editor)
        assert session.user_id == editor

    async def test_role_lookup_failure_fails_closed(self, service, store, project) -> None:
        editor = _member(store, project, "editor")
        store.fail_role_lookup = True
        with pytest.raises(PermissionDeniedError):
            await service.create_session(project, None, editor)


# ---------------------------------------------------------------------------
# finish_session
# ---------------------------------------------------------------------------


class TestFinishSession:
    async def test_sets_end_time(self, service, store, project, creator_id, clock) -> None:
        session = await service.create_session(project, None, creator_id)
        clock.advance(minutes=42)

        finished = await service.finish_session(session, creator_id)

        assert finished.end_time == T0 + timedelta(minutes=42)
        assert store.sessions[session.id].end_time == finished.end_time

    async def test_idempotent(self, service, store, project, creator_id, clock) -> None:
        session = await service.create_session(project, None, creator_id)
        await service.finish_session(session, creator_id)
        first_end = session.end_time
        clock.advance(hours=1)
        store.calls.clear()

        again = await service.finish_session(session, creator_id)

        assert again.end_time == first_end
        assert "update_session_end_time" not in store.calls

    async def test_already_finished_needs_no_role(self, service, store, project) -> None:
        session = store.add_session(
            SessionFactory.build(project_id=project.id, end_time=T0 + timedelta(minutes=5))
        )
        result = await service.finish_session(session, uuid.uuid4())
        assert result is session

    async def test_editor_cannot_finish(self, service, store, project, creator_id) -> None:
        session = await service.create_session(project, None, creator_id)
        editor = _member(store, project, "editor")
        with pytest.raises(PermissionDeniedError):
            await service.finish_session(session, editor)
        assert session.end_time is None

    async def test_admin_can_finish(self, service, store, project, creator_id) -> None:
        session = await service.create_session(project, None, creator_id)
        admin = _member(store, project, "admin")
        await service.finish_session(session, admin)
        assert session.end_time is not None

    async def test_end_time_never_before_start(self, service, store, project, creator_id, clock):
        session = await service.create_session(project, None, creator_id)
        clock.advance(minutes=-10)
        await service.finish_session(session, creator_id)
        assert session.end_time == session.start_time


# ---------------------------------------------------------------------------
# delete_session
# ---------------------------------------------------------------------------


class TestDeleteSession:
    async def test_deletes_session_and_observations(
        self, service, store, project, creator_id, questions
    ) -> None:
        session = await service.create_session(project, None, creator_id)
        await service.finish_session(session, creator_id)

        await service.delete_session(session, creator_id)

        assert session.id not in store.sessions
        assert store.observations_of(session.id) == []
        assert store.calls.index("delete_observations") < store.calls.index("delete_session")

    async def test_active_session_is_finished_first(
        self, service, store, project, creator_id
    ) -> None:
        session = await service.create_session(project, None, creator_id)

        await service.delete_session(session, creator_id)

        assert session.end_time is not None
        assert store.calls.index("update_session_end_time") < store.calls.index(
            "delete_observations"
        )

    async def test_admin_cannot_delete(self, service, store, project, creator_id) -> None:
        session = await service.create_session(project, None, creator_id)
        admin = _member(store, project, "admin")

        with pytest.raises(PermissionDeniedError):
            await service.delete_session(session, admin)

        assert session.id in store.sessions

    async def test_removes_voice_recordings(
        self, service, store, blob_store, project, creator_id, questions
    ) -> None:
        session = await service.create_session(project, None, creator_id)
        await service.upsert_observation(session, questions[2].id, creator_id, VOICE_OLD)

        await service.delete_session(session, creator_id)

        assert blob_store.deleted == [("voice-recordings", "old.webm")]

    async def test_blob_failure_does_not_block_delete(
        self, service, store, blob_store, project, creator_id, questions
    ) -> None:
        session = await service.create_session(project, None, creator_id)
        await service.upsert_observation(session, questions[2].id, creator_id, VOICE_OLD)
        blob_store.fail = True

        await service.delete_session(session, creator_id)

        assert session.id not in store.sessions
        assert store.observations_of(session.id) == []

    async def test_minio_server_error_does_not_block_delete(
        self, store, project, creator_id, clock, questions
    ) -> None:
        client = MagicMock()
        client.remove_object.side_effect = ServerError("bad gateway", 502)
        service = SessionService(store=store, blob_store=MinioBlobStore(client), clock=clock)
        session = await service.create_session(project, None, creator_id)
        await service.upsert_observation(session, questions[2].id, creator_id, VOICE_OLD)

        await service.delete_session(session, creator_id)

        client.remove_object.assert_called_once_with("voice-recordings", "old.webm")
        assert session.id not in store.sessions
        assert store.observations_of(session.id) == []


# ---------------------------------------------------------------------------
# upsert_observation
# ---------------------------------------------------------------------------


class TestUpsertObservation:
    async def test_overwrites_placeholder(
        self, service, store, project, creator_id, questions
    ) -> None:
        session = await service.create_session(project, None, creator_id)

        observation = await service.upsert_observation(
            session, questions[0].id, creator_id, "Very crowded"
        )

        assert observation.response == "Very crowded"
        answers = [
            o
            for o in store.observations_of(session.id)
            if o.project_observation_option_id == questions[0].id
        ]
        assert len(answers) == 1

    async def test_last_write_wins(self, service, store, project, creator_id, questions) -> None:
        session = await service.create_session(project, None, creator_id)
        editor = _member(store, project, "editor")

        await service.upsert_observation(session, questions[0].id, creator_id, "first")
        await service.upsert_observation(session, questions[0].id, editor, "second")

        stored = await store.get_observation(session.id, questions[0].id)
        assert stored.response == "second"
        assert stored.user_id == editor

    async def test_creates_answer_for_question_added_later(
        self, service, store, project, creator_id
    ) -> None:
        session = await service.create_session(project, None, creator_id)
        late = store.add_option(
            QuestionFactory.build(project_id=project.id, question_type="counter", sort_order=9)
        )

        observation = await service.upsert_observation(session, late.id, creator_id, 3)

        assert observation.response == "3"

    async def test_viewer_cannot_write(self, service, store, project, creator_id, questions):
        session = await service.create_session(project, None, creator_id)
        viewer = _member(store, project, "viewer")
        with pytest.raises(PermissionDeniedError):
            await service.upsert_observation(session, questions[0].id, viewer, "x")

    async def test_finished_project_rejects_writes(
        self, service, project, creator_id, questions
    ) -> None:
        session = await service.create_session(project, None, creator_id)
        project.is_finished = True
        with pytest.raises(ProjectFinishedError):
            await service.upsert_observation(session, questions[0].id, creator_id, "x")

    async def test_finished_session_rejects_writes(
        self, service, store, project, creator_id, questions
    ) -> None:
        session = await service.create_session(project, None, creator_id)
        await service.finish_session(session, creator_id)

        with pytest.raises(SessionFinishedError):
            await service.upsert_observation(session, questions[0].id, creator_id, "late")

        stored = await store.get_observation(session.id, questions[0].id)
        assert stored.response is None

    async def test_question_from_other_project(self, service, store, project, creator_id):
        session = await service.create_session(project, None, creator_id)
        foreign = store.add_option(QuestionFactory.build())
        with pytest.raises(NotFoundError):
            await service.upsert_observation(session, foreign.id, creator_id, "x")

    async def test_invalid_value_rejected(self, service, store, project, creator_id) -> None:
        radio = store.add_option(
            QuestionFactory.build(
                project_id=project.id, question_type="radio", options=["Bus", "Taxi"]
            )
        )
        session = await service.create_session(project, None, creator_id)
        with pytest.raises(InvalidQuestionError):
            await service.upsert_observation(session, radio.id, creator_id, "Train")

    async def test_replacing_voice_deletes_previous_recording(
        self, service, blob_store, project, creator_id, questions
    ) -> None:
        session = await service.create_session(project, None, creator_id)
        await service.upsert_observation(session, questions[2].id, creator_id, VOICE_OLD)

        observation = await service.upsert_observation(
            session, questions[2].id, creator_id, VOICE_NEW
        )

        assert observation.response == f"[Audio: {VOICE_NEW}]"
        assert blob_store.deleted == [("voice-recordings", "old.webm")]

    async def test_minio_server_error_keeps_replaced_answer(
        self, store, project, creator_id, clock, questions
    ) -> None:
        client = MagicMock()
        service = SessionService(store=store, blob_store=MinioBlobStore(client), clock=clock)
        session = await service.create_session(project, None, creator_id)
        await service.upsert_observation(session, questions[2].id, creator_id, VOICE_OLD)
        client.remove_object.side_effect = ServerError("bad gateway", 502)

        observation = await service.upsert_observation(
            session, questions[2].id, creator_id, VOICE_NEW
        )

        assert observation.response == f"[Audio: {VOICE_NEW}]"

    async def test_same_voice_url_keeps_recording(
        self, service, blob_store, project, creator_id, questions
    ) -> None:
        session = await service.create_session(project, None, creator_id)
        await service.upsert_observation(session, questions[2].id, creator_id, VOICE_OLD)
        await service.upsert_observation(session, questions[2].id, creator_id, VOICE_OLD)
        assert blob_store.deleted == []

    async def test_timer_answer_stored_as_json(
        self, service, store, project, creator_id
    ) -> None:
        timer = store.add_option(QuestionFactory.build(project_id=project.id, question_type="timer"))
        session = await service.create_session(project, None, creator_id)

        observation = await service.upsert_observation(
            session, timer.id, creator_id, [{"alias": "Queue", "seconds": 90}]
        )

        assert json.loads(observation.response) == [{"alias": "Queue", "seconds": 90}]


# ---------------------------------------------------------------------------
# Listing and cache
# ---------------------------------------------------------------------------


class TestListing:
    async def test_lists_sessions_of_the_day_newest_first(
        self, service, store, project, creator_id
    ) -> None:
        early = store.add_session(
            SessionFactory.build(project_id=project.id, start_time=T0 - timedelta(hours=2))
        )
        late = store.add_session(SessionFactory.build(project_id=project.id, start_time=T0))
        store.add_session(
            SessionFactory.build(project_id=project.id, start_time=T0 - timedelta(days=1))
        )

        sessions = await service.list_sessions_for_date(project, creator_id, T0.date())

        assert [s.id for s in sessions] == [late.id, early.id]

    async def test_boundary_instants_are_included(self, service, store, project, creator_id):
        start, end = day_bounds(T0.date())
        first = store.add_session(SessionFactory.build(project_id=project.id, start_time=start))
        last = store.add_session(SessionFactory.build(project_id=project.id, start_time=end))

        sessions = await service.list_sessions_for_date(project, creator_id, T0.date())

        assert {s.id for s in sessions} == {first.id, last.id}

    async def test_agency_filter(self, service, store, project, creator_id) -> None:
        north = store.add_session(SessionFactory.build(project_id=project.id, agency="North"))
        store.add_session(SessionFactory.build(project_id=project.id, agency="South"))

        sessions = await service.list_sessions_for_date(
            project, creator_id, T0.date(), agency="North"
        )

        assert [s.id for s in sessions] == [north.id]

    async def test_cached_until_mutation(self, service, store, project, creator_id) -> None:
        await service.list_sessions_for_date(project, creator_id, T0.date())
        await service.list_sessions_for_date(project, creator_id, T0.date())
        assert store.calls.count("list_sessions") == 1

        await service.create_session(project, None, creator_id)
        sessions = await service.list_sessions_for_date(project, creator_id, T0.date())

        assert store.calls.count("list_sessions") == 2
        assert len(sessions) == 1

    async def test_viewer_can_list(self, service, store, project) -> None:
        viewer = _member(store, project, "viewer")
        assert await service.list_sessions_for_date(project, viewer, T0.date()) == []


class TestDetailAndExport:
    async def test_detail_includes_hidden_questions(
        self, service, store, project, creator_id, questions
    ) -> None:
        session = await service.create_session(project, None, creator_id)

        found, observations, options = await service.get_session_detail(
            project, session.id, creator_id
        )

        assert found is session
        assert len(observations) == 2
        assert {o.id for o in options} == {q.id for q in questions}

    async def test_detail_of_session_in_other_project(self, service, store, project, creator_id):
        other = store.add_session(SessionFactory.build())
        with pytest.raises(NotFoundError):
            await service.get_session_detail(project, other.id, creator_id)

    async def test_gather_export_requires_export_capability(
        self, service, store, project
    ) -> None:
        editor = _member(store, project, "editor")
        with pytest.raises(PermissionDeniedError):
            await service.gather_export(project, editor)

    async def test_gather_export(self, service, store, project, creator_id, questions) -> None:
        session = store.add_session(SessionFactory.build(project_id=project.id))
        store.add_observation(
            ObservationFactory.build(
                session_id=session.id,
                project_id=project.id,
                project_observation_option_id=questions[0].id,
                response="busy",
            )
        )

        sessions, observations, options = await service.gather_export(project, creator_id)

        assert [s.id for s in sessions] == [session.id]
        assert [o.response for o in observations] == ["busy"]
        assert len(options) == 3


async def test_service_without_blob_store_skips_cleanup(store, project, creator_id) -> None:
    service = SessionService(store=store)
    voice = store.add_option(QuestionFactory.build(project_id=project.id, question_type="voice"))
    session = await service.create_session(project, None, creator_id)
    await service.upsert_observation(session, voice.id, creator_id, VOICE_OLD)

    await service.delete_session(session, creator_id)

    assert session.id not in store.sessions
