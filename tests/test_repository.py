"""Tests for the tip and user repositories (local-first behaviour end to end)."""

import pytest

from tipsync.errors import ErrorKind, LocalStorageError
from tipsync.repository import TipRepository, UserRepository
from tipsync.sync import SyncEngine, SyncReport
from tipsync.types import MAX_TITLE_LENGTH, User

from conftest import make_tip


@pytest.fixture
def users(user_store, engine, tip_store):
    return UserRepository(user_store, engine, tip_store)


@pytest.fixture
def tips(tip_store, engine, users):
    return TipRepository(tip_store, engine, users)


@pytest.fixture
def logged_in(users, ana):
    assert users.login(ana.id, ana.name, ana.email).ok
    return users


# -----------------------------------------------------------------------------
# Create
# -----------------------------------------------------------------------------

class TestCreateTip:
    def test_offline_create_is_durable(self, tips, tip_store, remote, logged_in):
        remote.online = False

        result = tips.create_tip("Study daily", "Short sessions beat cramming.")

        assert result.ok
        tip = tip_store.get(result.value)
        assert tip.title == "Study daily"
        assert tip.is_synced is False

    def test_online_create_is_pushed(self, tips, tip_store, remote, logged_in):
        result = tips.create_tip("Study daily", "Short sessions beat cramming.")

        tip = tip_store.get(result.value)
        assert tip.is_synced is True
        assert tip.author_id == "u1"
        assert tip.author_name == "Ana"
        assert result.value in remote.tips()

    def test_author_from_current_user(self, tips, users, logged_in):
        users.update_profile(photo_ref="https://img.example.com/ana.png")
        tip = tips.get_tip(tips.create_tip("T", "D").value)
        assert tip.author_photo_ref == "https://img.example.com/ana.png"

    def test_explicit_author_wins(self, tips, logged_in):
        tip_id = tips.create_tip("T", "D", author_id="u9", author_name="Zed").value
        assert tips.get_tip(tip_id).author_id == "u9"

    def test_without_user_left_for_repair(self, tips, tip_store, remote):
        result = tips.create_tip("T", "D")

        assert result.ok
        tip = tip_store.get(result.value)
        assert tip.author_id == ""
        assert tip.is_synced is False
        assert remote.count("put") == 0

    def test_ids_are_unique(self, tips):
        first = tips.create_tip("T", "D").value
        second = tips.create_tip("T", "D").value
        assert first != second

    @pytest.mark.parametrize("title,description", [
        ("", "D"),
        ("   ", "D"),
        ("T", ""),
        ("x" * (MAX_TITLE_LENGTH + 1), "D"),
    ])
    def test_validation(self, tips, tip_store, title, description):
        result = tips.create_tip(title, description)
        assert result.kind is ErrorKind.VALIDATION
        assert tip_store.count_active() == 0

    def test_local_storage_failure_reported(self, tips, tip_store, monkeypatch):
        def broken(tip):
            raise LocalStorageError("disk full")
        monkeypatch.setattr(tip_store, "upsert", broken)

        result = tips.create_tip("T", "D")
        assert result.kind is ErrorKind.LOCAL_STORAGE


# -----------------------------------------------------------------------------
# Update / delete
# -----------------------------------------------------------------------------

class TestUpdateTip:
    def test_update_marks_dirty_then_pushes(self, tips, tip_store, remote, logged_in):
        tip_id = tips.create_tip("T", "D").value
        remote.online = False

        assert tips.update_tip(tip_id, title="New title").ok

        tip = tip_store.get(tip_id)
        assert tip.title == "New title"
        assert tip.description == "D"
        assert tip.is_synced is False

    def test_update_pushes_when_online(self, tips, remote, logged_in):
        tip_id = tips.create_tip("T", "D").value
        tips.update_tip(tip_id, description="Better")
        assert remote.tips()[tip_id]["description"] == "Better"
        assert tips.get_tip(tip_id).is_synced is True

    def test_image_ref_set_and_cleared(self, tips):
        tip_id = tips.create_tip("T", "D", image_ref="/tmp/a.png").value

        tips.update_tip(tip_id, title="Keep image")
        assert tips.get_tip(tip_id).image_ref == "/tmp/a.png"

        tips.update_tip(tip_id, image_ref=None)
        assert tips.get_tip(tip_id).image_ref is None

    def test_missing_tip(self, tips):
        assert tips.update_tip("nope", title="x").kind is ErrorKind.NOT_FOUND

    def test_deleted_tip(self, tips):
        tip_id = tips.create_tip("T", "D").value
        tips.delete_tip(tip_id)
        assert tips.update_tip(tip_id, title="x").kind is ErrorKind.NOT_FOUND

    def test_blank_title_rejected(self, tips):
        tip_id = tips.create_tip("T", "D").value
        assert tips.update_tip(tip_id, title=" ").kind is ErrorKind.VALIDATION
        assert tips.get_tip(tip_id).title == "T"


class TestDeleteTip:
    def test_delete_hides_and_deletes_remotely(self, tips, tip_store, remote, logged_in):
        tip_id = tips.create_tip("T", "D").value

        assert tips.delete_tip(tip_id).ok

        assert tips.get_tip(tip_id) is None
        assert tips.observe_active().value == []
        assert tip_id not in remote.tips()
        assert tip_store.list_pending_deletes() == []

    def test_offline_delete_retried_by_sync(self, tips, tip_store, remote, logged_in):
        tip_id = tips.create_tip("T", "D").value
        remote.online = False

        assert tips.delete_tip(tip_id).ok
        assert tip_id in remote.tips()

        remote.online = True
        report = tips.trigger_sync().value
        assert report.deleted == 1
        assert tip_id not in remote.tips()
        assert tips.get_tip(tip_id) is None

    def test_delete_unknown_tip_succeeds(self, tips):
        assert tips.delete_tip("nope").ok

    def test_purge(self, tips, tip_store):
        tip_id = tips.create_tip("T", "D").value
        tips.delete_tip(tip_id)

        assert tips.purge_deleted().value == 1
        assert tip_store.get(tip_id) is None

    def test_purge_sends_pending_deletes_first(self, tips, tip_store, remote, logged_in):
        tip_id = tips.create_tip("T", "D").value
        remote.online = False
        tips.delete_tip(tip_id)
        remote.online = True

        assert tips.purge_deleted().value == 1
        assert tip_id not in remote.tips()
        assert tip_store.get(tip_id) is None

    def test_offline_purge_keeps_pending_delete(self, tips, tip_store, remote, logged_in):
        tip_id = tips.create_tip("T", "D").value
        assert tip_id in remote.tips()
        remote.online = False
        tips.delete_tip(tip_id)

        assert tips.purge_deleted().value == 0
        assert tip_store.get(tip_id).is_deleted is True

        remote.online = True
        assert tips.trigger_sync().value.deleted == 1
        assert tip_id not in remote.tips()
        assert tips.get_tip(tip_id) is None
        assert tips.purge_deleted().value == 1


# -----------------------------------------------------------------------------
# Reads
# -----------------------------------------------------------------------------

class TestReads:
    def test_list_authors(self, tips, tip_store):
        tip_store.upsert(make_tip("a", author_id="u2", author_name="bea"))
        tip_store.upsert(make_tip("b", author_id="u1", author_name="Ana"))
        tip_store.upsert(make_tip("c", author_id="u1", author_name="Ana"))
        tip_store.upsert(make_tip("d", author_id="", author_name=""))

        assert [(a.id, a.name) for a in tips.list_authors()] == [("u1", "Ana"), ("u2", "bea")]

    def test_observe_active_pushes_changes(self, tips):
        seen = []
        live = tips.observe_active()
        unsubscribe = live.subscribe(lambda value: seen.append([t.title for t in value]))

        tips.create_tip("First", "D")
        unsubscribe()
        tips.create_tip("Second", "D")

        assert seen == [[], ["First"]]
        assert {t.title for t in live.value} == {"First", "Second"}

    def test_observe_by_author(self, tips, tip_store):
        tip_store.upsert(make_tip("a", author_id="u1"))
        tip_store.upsert(make_tip("b", author_id="u2", author_name="Bea"))
        assert [t.id for t in tips.observe_by_author("u2").value] == ["b"]


# -----------------------------------------------------------------------------
# Sync
# -----------------------------------------------------------------------------

class TestTriggerSync:
    def test_full_cycle(self, tips, tip_store, remote, logged_in):
        remote.put_tip("r1", createdAt=5000)
        remote.online = False
        local_id = tips.create_tip("Local", "D").value
        remote.online = True

        result = tips.trigger_sync()

        assert result.ok
        report = result.value
        assert isinstance(report, SyncReport)
        assert report.pulled == 1
        assert report.push.pushed == 1
        assert local_id in remote.tips()
        assert tip_store.list_unsynced_active() == []

    def test_pull_failure_ends_cycle(self, tips, remote):
        remote.online = False
        assert tips.trigger_sync().kind is ErrorKind.REMOTE_UNAVAILABLE

    def test_repairs_before_push(self, tips, tip_store, remote, users, ana):
        tip_id = tips.create_tip("Orphan", "D").value
        users.login(ana.id, ana.name)

        report = tips.trigger_sync().value

        assert report.repaired == 1
        assert report.push.pushed == 1
        assert remote.tips()[tip_id]["authorId"] == "u1"

    def test_repair_disabled(self, tip_store, engine, users, ana):
        tips = TipRepository(tip_store, engine, users, repair_after_pull=False)
        tips.create_tip("Orphan", "D")
        users.login(ana.id, ana.name)

        report = tips.trigger_sync().value
        assert report.repaired == 0
        assert report.push.skipped == 1

    def test_push_on_write_disabled(self, tip_store, engine, users, remote, ana):
        users.login(ana.id, ana.name)
        tips = TipRepository(tip_store, engine, users, push_on_write=False)

        tip_id = tips.create_tip("T", "D").value

        assert tip_id not in remote.tips()
        tips.trigger_sync()
        assert tip_id in remote.tips()

    def test_offline_then_login_then_push(self, tip_store, user_store, remote):
        engine = SyncEngine(tip_store, remote)
        users = UserRepository(user_store, engine, tip_store)
        tips = TipRepository(tip_store, engine, users)
        remote.online = False

        tip_id = tips.create_tip("Study daily", "Short sessions beat cramming.").value
        stored = tip_store.get(tip_id)
        assert (stored.author_id, stored.author_name, stored.is_synced) == ("", "", False)

        remote.online = True
        assert users.login("u1", "Ann").ok
        repaired = tips.repair_author_data()

        assert repaired.value == 1
        stored = tip_store.get(tip_id)
        assert (stored.author_id, stored.author_name) == ("u1", "Ann")
        assert stored.is_synced is True


class TestNoRemote:
    def test_everything_works_locally(self, tip_store, user_store):
        engine = SyncEngine(tip_store, None)
        users = UserRepository(user_store, engine, tip_store)
        tips = TipRepository(tip_store, engine, users)

        assert users.login("u1", "Ana").ok
        tip_id = tips.create_tip("T", "D").value

        assert tips.get_tip(tip_id).is_synced is False
        assert tips.delete_tip(tip_id).ok
        assert tips.trigger_sync().kind is ErrorKind.REMOTE_UNAVAILABLE


# -----------------------------------------------------------------------------
# Users
# -----------------------------------------------------------------------------

class TestUserRepository:
    def test_login_new_profile_is_pushed(self, users, remote):
        result = users.login("u1", "Ana", "ana@example.com")

        assert result.ok
        assert result.value.last_synced_at > 0
        assert remote.collections["users"]["u1"]["email"] == "ana@example.com"
        assert users.get_current_user_id() == "u1"

    def test_login_prefers_remote_profile(self, users, remote):
        remote.collections["users"] = {"u1": {"name": "Ana Remote", "bio": "hi"}}

        user = users.login("u1", "Ignored").value

        assert user.name == "Ana Remote"
        assert user.bio == "hi"

    def test_login_new_profile_needs_name(self, users):
        assert users.login("u1").kind is ErrorKind.VALIDATION

    def test_login_offline_with_name(self, users, remote):
        remote.online = False
        user = users.login("u1", "Ana").value
        assert user.name == "Ana"
        assert user.last_synced_at == 0

    def test_login_offline_without_name(self, users, remote):
        remote.online = False
        assert users.login("u1").kind is ErrorKind.REMOTE_UNAVAILABLE

    def test_login_replaces_previous_user(self, users):
        users.login("u1", "Ana")
        users.login("u2", "Bea")
        assert users.get_current_user_profile().id == "u2"

    def test_login_counts_cached_tips(self, users, tip_store):
        tip_store.upsert(make_tip("a", author_id="u1"))
        assert users.login("u1", "Ana").value.tips_count == 1

    def test_logout(self, users):
        users.login("u1", "Ana")
        assert users.logout().ok
        assert users.get_current_user_profile() is None
        assert users.get_current_user_id() is None

    def test_update_profile(self, users, remote):
        users.login("u1", "Ana")

        assert users.update_profile(name="Ana B", bio="Learner").ok

        profile = users.get_current_user_profile()
        assert (profile.name, profile.bio) == ("Ana B", "Learner")
        assert remote.collections["users"]["u1"]["name"] == "Ana B"

    def test_update_profile_requires_user(self, users):
        assert users.update_profile(name="x").kind is ErrorKind.NOT_FOUND

    def test_update_profile_rejects_blank_name(self, users):
        users.login("u1", "Ana")
        assert users.update_profile(name="").kind is ErrorKind.VALIDATION

    def test_refresh_tips_count(self, users, tip_store, remote):
        users.login("u1", "Ana")
        tip_store.upsert(make_tip("a", author_id="u1"))
        tip_store.upsert(make_tip("b", author_id="u1"))

        assert users.refresh_tips_count().value == 2
        assert users.get_current_user_profile().tips_count == 2
        assert remote.collections["users"]["u1"]["tipsCount"] == 2

    def test_observe_current(self, users):
        seen = []
        users.observe_current().subscribe(seen.append)
        users.login("u1", "Ana")
        users.logout()

        assert seen[0] is None
        assert isinstance(seen[1], User)
        assert seen[-1] is None
