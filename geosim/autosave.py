"""Debounced autosave of a GameStore to a session writer.

Every store change restarts a debounce timer. When it fires, the current
snapshot is written: the first save creates a session and records its id on
the store, later saves update that session. At most one save is in flight.

A successful write calls ``store.mark_synced(revision)`` with the revision
that was captured before the write, so a mutation that raced with the save
keeps the store dirty and schedules another save.

Status moves idle -> saving -> saved (for 2 s) -> idle, or
idle -> saving -> error (for 5 s) -> idle, after which the save is retried.
Autosaver must be started from inside a running event loop.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Literal, Protocol

from geosim.models import GameState, SessionSummary
from geosim.store import GameStore

logger = logging.getLogger(__name__)

SaveStatus = Literal["idle", "saving", "saved", "error"]

DEBOUNCE_SECONDS = 3.0
SAVED_DISPLAY_SECONDS = 2.0
ERROR_DISPLAY_SECONDS = 5.0


class SessionWriter(Protocol):
    async def create_session(
        self, owner_id: str, title: str, state: GameState,
    ) -> SessionSummary: ...

    async def update_session(
        self, session_id: str, state: GameState, title: str | None = None,
    ) -> SessionSummary: ...


def session_title(state: GameState) -> str:
    return f"{state.scenario.title} - Turn {state.current_turn}"


class Autosaver:
    def __init__(
        self,
        store: GameStore,
        writer: SessionWriter,
        user_id: str | None = None,
        delay: float = DEBOUNCE_SECONDS,
        saved_display: float = SAVED_DISPLAY_SECONDS,
        error_display: float = ERROR_DISPLAY_SECONDS,
        on_status: Callable[[SaveStatus, str | None], None] | None = None,
    ) -> None:
        self.store = store
        self.writer = writer
        self.user_id = user_id
        self.delay = delay
        self.saved_display = saved_display
        self.error_display = error_display
        self.on_status = on_status
        self.status: SaveStatus = "idle"
        self.error: str | None = None
        self._saving = False
        self._debounce: asyncio.Task | None = None
        self._status_timer: asyncio.Task | None = None
        self._unsubscribe: Callable[[], None] | None = None

    def start(self) -> None:
        if self._unsubscribe is None:
            self._unsubscribe = self.store.subscribe(self._on_change)

    def stop(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        for task in (self._debounce, self._status_timer):
            if task is not None:
                task.cancel()
        self._debounce = self._status_timer = None

    def can_save(self) -> bool:
        state = self.store.state
        return bool(self.user_id) and state.phase == "playing" and state.scenario is not None

    def _on_change(self, store: GameStore) -> None:
        if store.is_dirty and self.can_save():
            self.schedule()

    def schedule(self) -> None:
        """(Re)start the debounce timer."""
        if self._debounce is not None:
            self._debounce.cancel()
        self._debounce = asyncio.get_running_loop().create_task(self._debounced())

    async def _debounced(self) -> None:
        await asyncio.sleep(self.delay)
        self._debounce = None
        await self.save()

    def _set_status(self, status: SaveStatus, error: str | None = None) -> None:
        self.status = status
        self.error = error
        if self.on_status is not None:
            self.on_status(status, error)

    def _show(self, status: SaveStatus, seconds: float, error: str | None = None, retry: bool = False) -> None:
        self._set_status(status, error)
        if self._status_timer is not None:
            self._status_timer.cancel()

        async def clear() -> None:
            await asyncio.sleep(seconds)
            self._status_timer = None
            self._set_status("idle")
            if retry and self.store.is_dirty and self.can_save():
                self.schedule()

        self._status_timer = asyncio.get_running_loop().create_task(clear())

    async def save(self) -> bool:
        """Write the current snapshot now. Returns whether a write succeeded."""
        if self._saving or not self.can_save() or not self.store.is_dirty:
            return False

        self._saving = True
        self._set_status("saving")
        revision = self.store.revision
        state = self.store.get_game_state()
        title = session_title(state)
        try:
            session_id = self.store.cloud_session_id
            if session_id is None:
                session = await self.writer.create_session(self.user_id, title, state)
                self.store.set_cloud_session(session.id)
                logger.info("Created session %s", session.id)
            else:
                await self.writer.update_session(session_id, state, title=title)
        except Exception as e:
            logger.warning("Autosave failed: %s", e)
            self._show("error", self.error_display, error=str(e), retry=True)
            return False
        finally:
            self._saving = False

        if not self.store.mark_synced(revision):
            logger.debug("Store changed during save (revision %d), rescheduling", revision)
            self.schedule()
        self._show("saved", self.saved_display)
        return True
