"""Tests for geosim.autosave: debounce, create-then-update, failure handling."""

import asyncio
from datetime import datetime, timezone
from unittest.mock import AsyncMock

from geosim.autosave import Autosaver, session_title
from geosim.models import SessionSummary
from geosim.store import GameStore

from tests.helpers import make_state

DELAY = 0.02


def _summary(session_id: str = "sess-1") -> SessionSummary:
    now = datetime.now(timezone.utc)
    return SessionSummary(id=session_id, owner_id="me", title="t", created_at=now, updated_at=now)


def _writer() -> AsyncMock:
    writer = AsyncMock()
    writer.create_session.return_value = _summary()
    writer.update_session.return_value = _summary()
    return writer


def _saver(store: GameStore, writer: AsyncMock, user_id: str | None = "me", **kwargs) -> Autosaver:
    saver = Autosaver(
        store, writer, user_id=user_id, delay=DELAY,
        saved_display=kwargs.pop("saved_display", DELAY),
        error_display=kwargs.pop("error_display", DELAY),
        **kwargs,
    )
    saver.start()
    return saver


async def _settle(factor: float = 4) -> None:
    await asyncio.sleep(DELAY * factor)


class TestAutosave:
    async def test_first_save_creates_then_updates(self) -> None:
        store = GameStore(make_state())
        writer = _writer()
        saver = _saver(store, writer)

        store.next_turn()
        await _settle()
        writer.create_session.assert_awaited_once()
        owner, title, state = writer.create_session.await_args.args
        assert owner == "me"
        assert title == "Baltic Standoff - Turn 4"
        assert state.current_turn == 4
        assert store.cloud_session_id == "sess-1"
        assert store.is_dirty is False

        store.next_turn()
        await _settle()
        writer.update_session.assert_awaited_once()
        assert writer.update_session.await_args.args[0] == "sess-1"
        assert writer.create_session.await_count == 1
        saver.stop()

    async def test_debounce_collapses_bursts(self) -> None:
        store = GameStore(make_state())
        writer = _writer()
        saver = _saver(store, writer)

        for _ in range(5):
            store.next_turn()
            await asyncio.sleep(DELAY / 4)
        await _settle()

        assert writer.create_session.await_count == 1
        assert writer.create_session.await_args.args[2].current_turn == 8
        saver.stop()

    async def test_no_save_without_user(self) -> None:
        store = GameStore(make_state())
        writer = _writer()
        saver = _saver(store, writer, user_id=None)
        store.next_turn()
        await _settle()
        writer.create_session.assert_not_awaited()
        assert store.is_dirty
        saver.stop()

    async def test_no_save_outside_playing(self) -> None:
        store = GameStore(make_state(phase="goal-select"))
        writer = _writer()
        saver = _saver(store, writer)
        store.next_turn()
        await _settle()
        writer.create_session.assert_not_awaited()
        saver.stop()

    async def test_presentation_changes_do_not_save(self) -> None:
        store = GameStore(make_state())
        writer = _writer()
        saver = _saver(store, writer)
        store.set_view_mode("social")
        await _settle()
        writer.create_session.assert_not_awaited()
        saver.stop()

    async def test_failure_keeps_dirty_and_shows_error(self) -> None:
        store = GameStore(make_state())
        writer = _writer()
        writer.create_session.side_effect = RuntimeError("network down")
        statuses = []
        saver = _saver(
            store, writer, error_display=1.0,
            on_status=lambda status, error: statuses.append((status, error)),
        )

        store.next_turn()
        await _settle()

        assert store.is_dirty is True
        assert store.cloud_session_id is None
        assert saver.status == "error"
        assert saver.error == "network down"
        assert ("saving", None) in statuses
        saver.stop()

    async def test_error_clears_and_retries(self) -> None:
        store = GameStore(make_state())
        writer = _writer()
        writer.create_session.side_effect = [RuntimeError("flaky"), _summary("sess-2")]
        saver = _saver(store, writer)

        store.next_turn()
        await _settle(10)

        assert writer.create_session.await_count == 2
        assert store.cloud_session_id == "sess-2"
        assert store.is_dirty is False
        saver.stop()

    async def test_saved_status_returns_to_idle(self) -> None:
        store = GameStore(make_state())
        saver = _saver(store, _writer())
        store.next_turn()
        await asyncio.sleep(DELAY * 1.5)
        assert saver.status in ("saved", "saving")
        await _settle(4)
        assert saver.status == "idle"
        saver.stop()

    async def test_single_flight_guard(self) -> None:
        store = GameStore(make_state())
        release = asyncio.Event()
        writer = _writer()

        async def slow_create(*args):
            await release.wait()
            return _summary()

        writer.create_session.side_effect = slow_create
        saver = Autosaver(store, writer, user_id="me", delay=DELAY)
        store.next_turn()

        first = asyncio.create_task(saver.save())
        await asyncio.sleep(0)
        assert await saver.save() is False
        release.set()
        assert await first is True
        assert writer.create_session.await_count == 1
        saver.stop()

    async def test_mutation_during_save_stays_dirty(self) -> None:
        store = GameStore(make_state())
        writer = _writer()

        async def create_while_mutating(*args):
            store.next_turn()
            return _summary()

        writer.create_session.side_effect = create_while_mutating
        saver = Autosaver(store, writer, user_id="me", delay=10)
        store.next_turn()

        assert await saver.save() is True
        assert store.is_dirty is True
        saver.stop()

    def test_session_title(self) -> None:
        assert session_title(make_state(current_turn=7)) == "Baltic Standoff - Turn 7"
