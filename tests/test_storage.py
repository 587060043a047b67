"""Tests for geosim.storage: session files, listing and share links."""

import json
import time

import pytest

from geosim.storage import SessionStore

from tests.helpers import make_state


@pytest.fixture
def store(tmp_path) -> SessionStore:
    return SessionStore(tmp_path)


class TestSessions:
    def test_create_writes_snapshot_and_metadata(self, store: SessionStore, tmp_path) -> None:
        summary = store.create_session("owner-1", "Baltic Standoff - Turn 3", make_state())

        assert summary.owner_id == "owner-1"
        assert summary.scenario_id == "scn-1"
        assert summary.scenario_title == "Baltic Standoff"
        assert summary.player_actor_name == "United States"
        assert summary.current_turn == 3
        assert summary.is_completed is False

        on_disk = json.loads((tmp_path / "sessions" / f"{summary.id}.json").read_text())
        assert on_disk["ownerId"] == "owner-1"
        assert on_disk["gameState"]["playerActorId"] == "us"

    def test_get_session(self, store: SessionStore) -> None:
        summary = store.create_session("owner-1", "t", make_state())
        session = store.get_session(summary.id)
        assert session.game_state == make_state()
        assert store.get_session("missing") is None

    def test_update_replaces_snapshot(self, store: SessionStore) -> None:
        summary = store.create_session("owner-1", "t", make_state())
        updated = store.update_session(summary.id, make_state(current_turn=9, phase="ended"), "New title")

        assert updated.title == "New title"
        assert updated.current_turn == 9
        assert updated.is_completed is True
        assert updated.created_at == summary.created_at
        assert updated.updated_at >= summary.updated_at
        assert store.get_session(summary.id).game_state.current_turn == 9

    def test_update_keeps_title_when_omitted(self, store: SessionStore) -> None:
        summary = store.create_session("owner-1", "Original", make_state())
        assert store.update_session(summary.id, make_state()).title == "Original"

    def test_update_unknown(self, store: SessionStore) -> None:
        assert store.update_session("missing", make_state()) is None

    def test_list_by_owner_newest_first(self, store: SessionStore) -> None:
        first = store.create_session("owner-1", "first", make_state())
        store.create_session("owner-2", "other", make_state())
        time.sleep(0.01)
        second = store.create_session("owner-1", "second", make_state())

        listed = store.get_sessions("owner-1")
        assert [s.id for s in listed] == [second.id, first.id]
        assert store.get_sessions("nobody") == []

    def test_delete(self, store: SessionStore) -> None:
        summary = store.create_session("owner-1", "t", make_state())
        assert store.delete_session(summary.id) is True
        assert store.get_session(summary.id) is None
        assert store.delete_session(summary.id) is False


class TestShareLinks:
    def test_share_is_idempotent(self, store: SessionStore) -> None:
        summary = store.create_session("owner-1", "t", make_state())
        token = store.create_share_link(summary.id)
        assert len(token) == 12
        assert store.create_share_link(summary.id) == token

    def test_share_unknown_session(self, store: SessionStore) -> None:
        assert store.create_share_link("missing") is None

    def test_shared_session_view(self, store: SessionStore) -> None:
        summary = store.create_session("owner-1", "Read only", make_state())
        token = store.create_share_link(summary.id)

        shared = store.get_shared_session(token)
        assert shared.session_id == summary.id
        assert shared.title == "Read only"
        assert shared.player_actor_name == "United States"
        assert shared.game_state.current_turn == 3
        assert store.get_shared_session("bogus") is None

    def test_delete_session_revokes_share(self, store: SessionStore) -> None:
        summary = store.create_session("owner-1", "t", make_state())
        token = store.create_share_link(summary.id)
        store.delete_session(summary.id)
        assert store.get_shared_session(token) is None

    def test_delete_share_link(self, store: SessionStore) -> None:
        summary = store.create_session("owner-1", "t", make_state())
        token = store.create_share_link(summary.id)
        store.delete_share_link(summary.id)
        assert store.get_shared_session(token) is None
        assert store.create_share_link(summary.id) != token
