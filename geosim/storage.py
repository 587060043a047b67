"""JSON file storage for game sessions.

Each session is one JSON file holding its metadata and the whole GameState
snapshot. There is no database; reads and writes go through plain helper
methods that load and dump JSON.

Directory layout:

    {base}/
      sessions/
        {id}.json       <- StoredSession (metadata + gameState)
      shares.json       <- {token: session_id}
"""

from __future__ import annotations

import json
import secrets
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from geosim.models import GameState, SessionSummary, SharedSession, StoredSession

SHARE_TOKEN_BYTES = 9  # 12 URL-safe characters


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _metadata(state: GameState) -> dict[str, Any]:
    """Denormalized columns derived from a snapshot."""
    scenario = state.scenario
    player = scenario.find_actor(state.player_actor_id) if scenario else None
    return {
        "scenario_id": scenario.id if scenario else None,
        "scenario_title": scenario.title if scenario else None,
        "player_actor_name": player.name if player else None,
        "current_turn": state.current_turn,
        "is_completed": state.phase == "ended",
    }


class SessionStore:
    def __init__(self, base_path: Path) -> None:
        self._base = base_path
        self._sessions_dir = base_path / "sessions"
        self._sessions_dir.mkdir(parents=True, exist_ok=True)
        self._shares_file = base_path / "shares.json"

    # ------------------------------------------------------------------
    # Internal path helpers
    # ------------------------------------------------------------------

    def _session_file(self, session_id: str) -> Path:
        return self._sessions_dir / f"{session_id}.json"

    def _read_json(self, path: Path) -> Any:
        return json.loads(path.read_text())

    def _write_json(self, path: Path, data: Any) -> None:
        path.write_text(json.dumps(data, indent=2))

    def _write_session(self, session: StoredSession) -> None:
        self._session_file(session.id).write_text(
            session.model_dump_json(indent=2, by_alias=True)
        )

    def _read_shares(self) -> dict[str, str]:
        if not self._shares_file.exists():
            return {}
        return self._read_json(self._shares_file)

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def create_session(self, owner_id: str, title: str, state: GameState) -> SessionSummary:
        now = _now()
        session = StoredSession(
            id=str(uuid.uuid4()),
            owner_id=owner_id,
            title=title,
            created_at=now,
            updated_at=now,
            game_state=state,
            **_metadata(state),
        )
        self._write_session(session)
        return SessionSummary.model_validate(session.model_dump(exclude={"game_state"}))

    def get_session(self, session_id: str) -> StoredSession | None:
        path = self._session_file(session_id)
        if not path.exists():
            return None
        return StoredSession.model_validate_json(path.read_text())

    def update_session(
        self, session_id: str, state: GameState, title: str | None = None,
    ) -> SessionSummary | None:
        """Replace the stored snapshot. Returns None for an unknown session."""
        session = self.get_session(session_id)
        if session is None:
            return None
        session = session.model_copy(update={
            "game_state": state,
            "title": title or session.title,
            "updated_at": _now(),
            **_metadata(state),
        })
        self._write_session(session)
        return SessionSummary.model_validate(session.model_dump(exclude={"game_state"}))

    def get_sessions(self, owner_id: str) -> list[SessionSummary]:
        """All sessions of one owner, most recently updated first."""
        sessions = []
        for path in self._sessions_dir.glob("*.json"):
            data = self._read_json(path)
            if data.get("ownerId") != owner_id:
                continue
            data.pop("gameState", None)
            sessions.append(SessionSummary.model_validate(data))
        sessions.sort(key=lambda s: s.updated_at, reverse=True)
        return sessions

    def delete_session(self, session_id: str) -> bool:
        path = self._session_file(session_id)
        if not path.exists():
            return False
        path.unlink()
        self.delete_share_link(session_id)
        return True

    # ------------------------------------------------------------------
    # Share links
    # ------------------------------------------------------------------

    def create_share_link(self, session_id: str) -> str | None:
        """Return the session's share token, creating it on first use."""
        if not self._session_file(session_id).exists():
            return None
        shares = self._read_shares()
        for token, shared_id in shares.items():
            if shared_id == session_id:
                return token
        token = secrets.token_urlsafe(SHARE_TOKEN_BYTES)
        shares[token] = session_id
        self._write_json(self._shares_file, shares)
        return token

    def get_shared_session(self, token: str) -> SharedSession | None:
        session_id = self._read_shares().get(token)
        if session_id is None:
            return None
        session = self.get_session(session_id)
        if session is None:
            return None
        return SharedSession(
            session_id=session.id,
            title=session.title,
            scenario_title=session.scenario_title,
            player_actor_name=session.player_actor_name,
            game_state=session.game_state,
            current_turn=session.current_turn,
            is_completed=session.is_completed,
            created_at=session.created_at,
        )

    def delete_share_link(self, session_id: str) -> None:
        shares = self._read_shares()
        remaining = {t: s for t, s in shares.items() if s != session_id}
        if remaining != shares:
            self._write_json(self._shares_file, remaining)
