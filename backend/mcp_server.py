"""FastMCP server exposing stored game sessions as read-only MCP tools.

Tools:
  - list_sessions(owner_id)        : {"sessions": [...]}, newest first
  - get_session_state(session_id)  : full game state of one session
  - get_shared_session(token)      : shared session behind a share token

The session store is replaced via set_session_store() for tests, or opened on
data/ (or DATA_DIR) when run as __main__.

Usage:
    python -m backend.mcp_server
"""

from mcp.server.fastmcp import FastMCP

from geosim.storage import SessionStore

mcp = FastMCP("geosim-sessions")

_store: SessionStore | None = None


def set_session_store(store: SessionStore) -> None:
    """Replace the active session store (used in tests)."""
    global _store
    _store = store


def get_session_store() -> SessionStore:
    assert _store is not None, "Call set_session_store() before using the MCP tools"
    return _store


@mcp.tool()
def list_sessions(owner_id: str) -> dict:
    """List the saved sessions of one owner, most recently updated first."""
    sessions = get_session_store().get_sessions(owner_id)
    return {"sessions": [s.model_dump(mode="json", by_alias=True) for s in sessions]}


@mcp.tool()
def get_session_state(session_id: str) -> dict:
    """Return the full game state of a session, or an error if it does not exist."""
    session = get_session_store().get_session(session_id)
    if session is None:
        return {"error": f"Session '{session_id}' not found"}
    return session.game_state.model_dump(mode="json", by_alias=True)


@mcp.tool()
def get_shared_session(token: str) -> dict:
    """Resolve a share token to its read-only session view."""
    shared = get_session_store().get_shared_session(token)
    if shared is None:
        return {"error": "Shared session not found"}
    return shared.model_dump(mode="json", by_alias=True)


if __name__ == "__main__":
    import os
    from pathlib import Path

    data_path = Path(os.getenv("DATA_DIR", Path(__file__).parent.parent / "data"))
    set_session_store(SessionStore(data_path))
    mcp.run()
