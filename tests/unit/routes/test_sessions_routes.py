"""HTTP-level tests for the session routes.

Requests run through the real FastAPI app with the session service wired to
the in-memory store (see the ``app_client`` fixture).  They check status
codes, the domain-error mapping and response shapes; the lifecycle rules
themselves are covered in ``test_session_service.py``.
"""

from __future__ import annotations

import csv
import io
import uuid
from datetime import timedelta

import pytest

from tests.factories import ObservationFactory, QuestionFactory, SessionFactory
from tests.factories.sessions import T0


def _base(project) -> str:
    return f"/projects/{project.id}/sessions"


@pytest.fixture
def crowd(store, project):
    return store.add_option(
        QuestionFactory.build(project_id=project.id, name="Crowd", question_type="counter")
    )


# ---------------------------------------------------------------------------
# Create / finish / delete
# ---------------------------------------------------------------------------


class TestLifecycle:
    async def test_create_returns_active_session(self, app_client, store, project, crowd):
        resp = await app_client.post(f"{_base(project)}/", json={"agency": "North"})

        assert resp.status_code == 201
        body = resp.json()
        assert body["status"] == "Active"
        assert body["duration"] == "Active session"
        assert body["end_time"] is None
        assert len(store.observations_of(uuid.UUID(body["id"]))) == 1

    async def test_unknown_agency_is_422_with_field(self, app_client, project) -> None:
        resp = await app_client.post(f"{_base(project)}/", json={"agency": "East"})

        assert resp.status_code == 422
        assert resp.json()["field"] == "agency"

    async def test_finished_project_is_409(self, app_client, project) -> None:
        project.is_finished = True
        resp = await app_client.post(f"{_base(project)}/", json={})
        assert resp.status_code == 409

    async def test_viewer_gets_403_with_action(
        self, app_client, store, project, acting_user
    ) -> None:
        acting_user.id = uuid.uuid4()
        store.set_role(project, acting_user.id, "viewer")

        resp = await app_client.post(f"{_base(project)}/", json={})

        assert resp.status_code == 403
        body = resp.json()
        assert body["action"] == "create_session"
        assert "Viewer" in body["detail"]

    async def test_unknown_project_is_404(self, app_client) -> None:
        resp = await app_client.post(f"/projects/{uuid.uuid4()}/sessions/", json={})
        assert resp.status_code == 404

    async def test_finish_twice(self, app_client, store, project) -> None:
        session = store.add_session(SessionFactory.build(project_id=project.id))

        first = await app_client.post(f"{_base(project)}/{session.id}/finish")
        second = await app_client.post(f"{_base(project)}/{session.id}/finish")

        assert first.status_code == 200
        assert first.json()["status"] == "Finished"
        assert second.json()["end_time"] == first.json()["end_time"]

    async def test_session_of_other_project_is_404(self, app_client, store, project) -> None:
        foreign = store.add_session(SessionFactory.build())
        resp = await app_client.post(f"{_base(project)}/{foreign.id}/finish")
        assert resp.status_code == 404

    async def test_delete(self, app_client, store, project) -> None:
        session = store.add_session(SessionFactory.build(project_id=project.id))

        resp = await app_client.delete(f"{_base(project)}/{session.id}")

        assert resp.status_code == 204
        assert session.id not in store.sessions

    async def test_response_carries_request_id(self, app_client, project) -> None:
        resp = await app_client.get(f"{_base(project)}/", params={"date": "2026-03-14"})
        assert resp.headers.get("X-Request-ID")


# ---------------------------------------------------------------------------
# Listing
# ---------------------------------------------------------------------------


class TestListing:
    async def test_list_for_date_with_auto_selection(self, app_client, store, project):
        finished = store.add_session(
            SessionFactory.build(
                project_id=project.id,
                start_time=T0 + timedelta(hours=1),
                end_time=T0 + timedelta(hours=2),
            )
        )
        active = store.add_session(SessionFactory.build(project_id=project.id))

        resp = await app_client.get(f"{_base(project)}/", params={"date": "2026-03-14"})

        assert resp.status_code == 200
        body = resp.json()
        assert [s["id"] for s in body["sessions"]] == [str(finished.id), str(active.id)]
        assert body["unfinished_count"] == 1
        assert body["auto_selected_session_id"] == str(active.id)

    async def test_context_session_wins(self, app_client, store, project) -> None:
        finished = store.add_session(
            SessionFactory.build(project_id=project.id, end_time=T0 + timedelta(minutes=5))
        )
        store.add_session(SessionFactory.build(project_id=project.id))

        resp = await app_client.get(
            f"{_base(project)}/",
            params={"date": "2026-03-14", "session_id": str(finished.id)},
        )

        assert resp.json()["auto_selected_session_id"] == str(finished.id)

    async def test_reload_after_auto_selection_suggests_nothing(
        self, app_client, store, project
    ) -> None:
        store.add_session(SessionFactory.build(project_id=project.id))

        resp = await app_client.get(
            f"{_base(project)}/", params={"date": "2026-03-14", "auto_selected": "true"}
        )

        body = resp.json()
        assert body["unfinished_count"] == 1
        assert body["auto_selected_session_id"] is None

    async def test_sessions_carry_display_alias(self, app_client, store, project) -> None:
        unnamed = store.add_session(SessionFactory.build(project_id=project.id))

        resp = await app_client.get(f"{_base(project)}/", params={"date": "2026-03-14"})

        assert resp.json()["sessions"][0]["display_alias"] == f"Session {str(unnamed.id)[:8]}"

    async def test_search(self, app_client, store, project) -> None:
        store.add_session(SessionFactory.build(project_id=project.id, alias="Gate", agency="North"))
        store.add_session(
            SessionFactory.build(
                project_id=project.id, agency="South", start_time=T0 - timedelta(days=1)
            )
        )

        resp = await app_client.get(f"{_base(project)}/search", params={"q": "gate"})

        body = resp.json()
        assert body["total"] == 1
        assert body["agencies"] == ["North", "South"]
        assert body["dates"] == ["2026-03-13", "2026-03-14"]


# ---------------------------------------------------------------------------
# Answers
# ---------------------------------------------------------------------------


class TestAnswers:
    async def test_upsert_returns_rendered_answer(self, app_client, store, project, crowd):
        session = store.add_session(SessionFactory.build(project_id=project.id))

        resp = await app_client.put(
            f"{_base(project)}/{session.id}/observations/{crowd.id}", json={"response": 12}
        )

        assert resp.status_code == 200
        body = resp.json()
        assert body["response"] == "12"
        assert body["display"]["text"] == "12"
        assert body["question_name"] == "Crowd"

    async def test_invalid_answer_is_422(self, app_client, store, project, crowd) -> None:
        session = store.add_session(SessionFactory.build(project_id=project.id))

        resp = await app_client.put(
            f"{_base(project)}/{session.id}/observations/{crowd.id}",
            json={"response": "lots"},
        )

        assert resp.status_code == 422
        assert resp.json()["field"] == "response"

    async def test_finished_session_is_409(self, app_client, store, project, crowd) -> None:
        session = store.add_session(
            SessionFactory.build(project_id=project.id, end_time=T0 + timedelta(minutes=20))
        )

        resp = await app_client.put(
            f"{_base(project)}/{session.id}/observations/{crowd.id}", json={"response": 3}
        )

        assert resp.status_code == 409
        assert await store.get_observation(session.id, crowd.id) is None

    async def test_detail_orders_answers_by_question(self, app_client, store, project) -> None:
        second = store.add_option(QuestionFactory.build(project_id=project.id, sort_order=2))
        first = store.add_option(
            QuestionFactory.build(project_id=project.id, sort_order=1, question_type="boolean")
        )
        session = store.add_session(SessionFactory.build(project_id=project.id))
        for option, response in ((second, None), (first, "true")):
            store.add_observation(
                ObservationFactory.build(
                    session_id=session.id,
                    project_id=project.id,
                    project_observation_option_id=option.id,
                    response=response,
                )
            )

        resp = await app_client.get(f"{_base(project)}/{session.id}")

        displays = [o["display"]["text"] for o in resp.json()["observations"]]
        assert displays == ["Yes", "No response"]


# ---------------------------------------------------------------------------
# Export
# ---------------------------------------------------------------------------


class TestExport:
    async def test_csv_download(self, app_client, store, project, crowd) -> None:
        session = store.add_session(SessionFactory.build(project_id=project.id, agency="North"))
        store.add_observation(
            ObservationFactory.build(
                session_id=session.id,
                project_id=project.id,
                project_observation_option_id=crowd.id,
                response="7",
            )
        )

        resp = await app_client.get(f"{_base(project)}/export")

        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/csv")
        assert f'filename="sessions_{project.id}_' in resp.headers["content-disposition"]
        rows = list(csv.reader(io.StringIO(resp.content.decode("utf-8-sig"))))
        assert rows[0] == ["Session ID", "Date", "Agency", "Crowd"]
        assert rows[1] == [str(session.id), "14/03/2026", "North", "7"]

    async def test_xlsx_with_details_looks_up_emails(
        self, app_client, store, project, project_service_mock
    ) -> None:
        store.add_session(SessionFactory.build(project_id=project.id))

        resp = await app_client.get(
            f"{_base(project)}/export", params={"format": "xlsx", "details": "true"}
        )

        assert resp.status_code == 200
        assert resp.content[:2] == b"PK"
        project_service_mock.get_user_emails.assert_awaited_once()

    async def test_editor_cannot_export(self, app_client, store, project, acting_user) -> None:
        acting_user.id = uuid.uuid4()
        store.set_role(project, acting_user.id, "editor")

        resp = await app_client.get(f"{_base(project)}/export")

        assert resp.status_code == 403

    async def test_unknown_format_is_rejected(self, app_client, project) -> None:
        resp = await app_client.get(f"{_base(project)}/export", params={"format": "pdf"})
        assert resp.status_code == 422


class TestSessionExport:
    async def test_single_row_with_details(
        self, app_client, store, project, crowd, project_service_mock
    ) -> None:
        session = store.add_session(SessionFactory.build(project_id=project.id, agency="North"))
        other = store.add_session(SessionFactory.build(project_id=project.id))
        for owner, response in ((session, "7"), (other, "2")):
            store.add_observation(
                ObservationFactory.build(
                    session_id=owner.id,
                    project_id=project.id,
                    project_observation_option_id=crowd.id,
                    response=response,
                )
            )
        project_service_mock.get_user_emails.return_value = {session.user_id: "ana@example.com"}

        resp = await app_client.get(f"{_base(project)}/{session.id}/export")

        assert resp.status_code == 200
        assert f'filename="session_{session.id}_' in resp.headers["content-disposition"]
        rows = list(csv.reader(io.StringIO(resp.content.decode("utf-8-sig"))))
        assert rows == [
            ["Session ID", "Date", "Agency", "Alias", "User", "Start", "End", "Duration", "Crowd"],
            [
                str(session.id),
                "14/03/2026",
                "North",
                "No alias",
                "ana",
                "14/03/2026 09:30:00",
                "Active session",
                "Active session",
                "7",
            ],
        ]
        project_service_mock.get_user_emails.assert_awaited_once_with([session.user_id])

    async def test_xlsx(self, app_client, store, project) -> None:
        session = store.add_session(SessionFactory.build(project_id=project.id))

        resp = await app_client.get(
            f"{_base(project)}/{session.id}/export", params={"format": "xlsx"}
        )

        assert resp.status_code == 200
        assert resp.content[:2] == b"PK"

    async def test_editor_cannot_export(self, app_client, store, project, acting_user) -> None:
        session = store.add_session(SessionFactory.build(project_id=project.id))
        acting_user.id = uuid.uuid4()
        store.set_role(project, acting_user.id, "editor")

        resp = await app_client.get(f"{_base(project)}/{session.id}/export")

        assert resp.status_code == 403
        assert resp.json()["action"] == "export_sessions"

    async def test_session_of_other_project_is_404(self, app_client, store, project) -> None:
        foreign = store.add_session(SessionFactory.build())
        resp = await app_client.get(f"{_base(project)}/{foreign.id}/export")
        assert resp.status_code == 404
