"""Unit tests for ProjectService against a mocked AsyncSession."""

from __future__ import annotations

import uuid
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.exc import IntegrityError

from field_observatory.core.exceptions import (
    InvalidAgencyError,
    InvalidMemberError,
    NotFoundError,
    PermissionDeniedError,
)
from field_observatory.core.models.project import ProjectUser
from field_observatory.core.project_service import ProjectService
from tests.factories import ProjectFactory, UserFactory
from tests.factories.sessions import T0

VOICE_URL = "https://storage.example.com/voice-recordings/{}.webm"


def _db_session() -> MagicMock:
    session = MagicMock()
    session.get = AsyncMock()
    session.execute = AsyncMock()
    session.commit = AsyncMock()
    session.rollback = AsyncMock()
    session.refresh = AsyncMock()
    session.delete = AsyncMock()
    return session


def _role(value) -> MagicMock:
    result = MagicMock()
    result.scalar_one_or_none.return_value = value
    return result


def _one(*values) -> MagicMock:
    result = MagicMock()
    result.one.return_value = values
    return result


def _responses(*values) -> MagicMock:
    result = MagicMock()
    result.scalars.return_value = list(values)
    return result


@pytest.fixture
def creator():
    return uuid.uuid4()


@pytest.fixture
def project(creator):
    return ProjectFactory.build(created_by=creator)


class TestProjects:
    async def test_create_dedupes_agencies(self, creator) -> None:
        db = _db_session()

        project = await ProjectService(db).create_project(
            creator, " Survey ", agencies=["North", " North", "", "South"]
        )

        assert project.name == "Survey"
        assert project.agencies == ["North", "South"]
        assert project.created_by == creator
        assert project.is_finished is False
        db.commit.assert_awaited_once()

    async def test_viewer_cannot_edit(self, project) -> None:
        db = _db_session()
        db.execute.return_value = _role("viewer")

        with pytest.raises(PermissionDeniedError):
            await ProjectService(db).update_project(project, uuid.uuid4(), name="New")

        assert project.name != "New"

    async def test_finish_is_idempotent(self, project, creator) -> None:
        db = _db_session()
        service = ProjectService(db)

        await service.finish_project(project, creator)
        await service.finish_project(project, creator)

        assert project.is_finished is True
        db.commit.assert_awaited_once()

    async def test_admin_cannot_delete(self, project) -> None:
        db = _db_session()
        db.execute.return_value = _role("admin")

        with pytest.raises(PermissionDeniedError):
            await ProjectService(db).delete_project(project, uuid.uuid4())

        db.delete.assert_not_awaited()

    async def test_get_missing_project(self) -> None:
        db = _db_session()
        db.get.return_value = None
        with pytest.raises(NotFoundError):
            await ProjectService(db).get_project(uuid.uuid4())


class TestAgencies:
    async def test_adds_new_agency(self, project, creator) -> None:
        db = _db_session()
        await ProjectService(db).add_agency(project, creator, " East ")
        assert project.agencies == ["North", "South", "East"]

    async def test_existing_agency_is_noop(self, project, creator) -> None:
        db = _db_session()
        await ProjectService(db).add_agency(project, creator, "North")
        db.commit.assert_not_awaited()

    async def test_blank_agency_rejected(self, project, creator) -> None:
        with pytest.raises(InvalidAgencyError):
            await ProjectService(_db_session()).add_agency(project, creator, "   ")


class TestMembers:
    async def test_add_member_by_id(self, project, creator) -> None:
        user = UserFactory.build()
        db = _db_session()
        db.get.return_value = user

        member = await ProjectService(db).add_member(project, creator, "editor", user_id=user.id)

        assert member.email == user.email
        assert member.membership.role == "editor"
        assert member.membership.added_by == creator

    async def test_creator_cannot_be_added(self, project, creator) -> None:
        db = _db_session()
        db.get.return_value = UserFactory.build(id=creator)

        with pytest.raises(InvalidMemberError):
            await ProjectService(db).add_member(project, creator, "admin", user_id=creator)

    @pytest.mark.parametrize("role", ["creator", "owner", ""])
    async def test_only_assignable_roles(self, project, creator, role) -> None:
        with pytest.raises(InvalidMemberError) as exc_info:
            await ProjectService(_db_session()).add_member(
                project, creator, role, user_id=uuid.uuid4()
            )
        assert exc_info.value.field == "role"

    async def test_needs_user_id_or_email(self, project, creator) -> None:
        with pytest.raises(InvalidMemberError):
            await ProjectService(_db_session()).add_member(project, creator, "viewer")

    async def test_unknown_email(self, project, creator) -> None:
        db = _db_session()
        db.execute.return_value = _role(None)
        with pytest.raises(NotFoundError):
            await ProjectService(db).add_member(project, creator, "viewer", email="x@example.com")

    async def test_duplicate_member(self, project, creator) -> None:
        db = _db_session()
        db.get.return_value = UserFactory.build()
        db.commit.side_effect = IntegrityError("INSERT", {}, Exception("duplicate"))

        with pytest.raises(InvalidMemberError, match="already a member"):
            await ProjectService(db).add_member(project, creator, "viewer", user_id=uuid.uuid4())

        db.rollback.assert_awaited_once()

    async def test_editor_cannot_manage_members(self, project) -> None:
        db = _db_session()
        db.execute.return_value = _role("editor")
        with pytest.raises(PermissionDeniedError):
            await ProjectService(db).remove_member(project, uuid.uuid4(), uuid.uuid4())

    async def test_update_member_role(self, project, creator) -> None:
        membership = ProjectUser(project_id=project.id, user_id=uuid.uuid4(), role="viewer")
        db = _db_session()
        db.execute.return_value = _role(membership)

        updated = await ProjectService(db).update_member_role(
            project, creator, membership.user_id, "admin"
        )

        assert updated.role == "admin"

    async def test_remove_unknown_member(self, project, creator) -> None:
        db = _db_session()
        db.execute.return_value = _role(None)
        with pytest.raises(NotFoundError):
            await ProjectService(db).remove_member(project, creator, uuid.uuid4())

    async def test_user_emails_without_ids(self) -> None:
        db = _db_session()
        assert await ProjectService(db).get_user_emails([]) == {}
        db.execute.assert_not_awaited()


async def test_stats(project, creator) -> None:
    db = _db_session()
    members = MagicMock()
    members.scalar_one.return_value = 2
    db.execute.side_effect = [_one(5, 3), _one(20, 12), _one(4, 3), members]

    stats = await ProjectService(db).get_stats(project, creator)

    assert stats == {
        "session_count": 5,
        "active_session_count": 2,
        "finished_session_count": 3,
        "observation_count": 20,
        "answered_count": 12,
        "question_count": 4,
        "visible_question_count": 3,
        "member_count": 2,
    }


class TestDeleteProject:
    async def test_removes_voice_recordings_and_cached_listings(
        self, project, creator, blob_store, cache
    ) -> None:
        db = _db_session()
        db.execute.return_value = _responses(
            f"[Audio: {VOICE_URL.format('a')}]", f"[Audio: {VOICE_URL.format('b')}]"
        )
        cache.put(project.id, T0.date(), None, ["listing"])

        await ProjectService(db, blob_store=blob_store, cache=cache).delete_project(
            project, creator
        )

        assert blob_store.deleted == [
            ("voice-recordings", "a.webm"),
            ("voice-recordings", "b.webm"),
        ]
        assert cache.get(project.id, T0.date(), None) is None
        db.delete.assert_awaited_once_with(project)
        db.commit.assert_awaited_once()

    async def test_blob_failure_does_not_block_delete(self, project, creator, blob_store):
        db = _db_session()
        db.execute.return_value = _responses(f"[Audio: {VOICE_URL.format('a')}]")
        blob_store.fail = True

        await ProjectService(db, blob_store=blob_store).delete_project(project, creator)

        db.delete.assert_awaited_once_with(project)
        db.commit.assert_awaited_once()

    async def test_uses_configured_bucket(self, project, creator, blob_store) -> None:
        db = _db_session()
        db.execute.return_value = _responses(f"[Audio: {VOICE_URL.format('a')}]")

        await ProjectService(
            db, blob_store=blob_store, voice_bucket="field-audio"
        ).delete_project(project, creator)

        assert blob_store.deleted == [("field-audio", "a.webm")]
