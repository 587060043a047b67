"""Saved session CRUD and share-link endpoints."""

from fastapi import APIRouter, HTTPException, Query

from backend import storage

from .models import CreateSession, UpdateSession

router = APIRouter()


def _dump(model):
    return model.model_dump(mode="json", by_alias=True)


@router.post("/sessions")
async def create_session(body: CreateSession):
    """Save a new session for an owner."""
    session = storage.sessions().create_session(body.owner_id, body.title, body.game_state)
    return _dump(session)


@router.get("/sessions")
async def list_sessions(owner_id: str = Query(alias="ownerId")):
    """List an owner's sessions, most recently updated first."""
    return [_dump(s) for s in storage.sessions().get_sessions(owner_id)]


@router.get("/sessions/{session_id}")
async def get_session(session_id: str):
    """Get a session including its full game state."""
    session = storage.sessions().get_session(session_id)
    if not session:
        raise HTTPException(404, "Session not found")
    return _dump(session)


@router.put("/sessions/{session_id}")
async def update_session(session_id: str, body: UpdateSession):
    """Replace a session's game state (and optionally its title)."""
    session = storage.sessions().update_session(session_id, body.game_state, title=body.title)
    if not session:
        raise HTTPException(404, "Session not found")
    return _dump(session)


@router.delete("/sessions/{session_id}")
async def delete_session(session_id: str):
    """Delete a session and its share link."""
    if not storage.sessions().delete_session(session_id):
        raise HTTPException(404, "Session not found")
    return {"ok": True}


@router.post("/sessions/{session_id}/share")
async def share_session(session_id: str):
    """Get (or create) the read-only share token for a session."""
    token = storage.sessions().create_share_link(session_id)
    if not token:
        raise HTTPException(404, "Session not found")
    return {"token": token}


@router.get("/shared/{token}")
async def get_shared_session(token: str):
    """Read-only view of a shared session."""
    shared = storage.sessions().get_shared_session(token)
    if not shared:
        raise HTTPException(404, "Shared session not found")
    return _dump(shared)
