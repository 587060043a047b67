"""Turn simulation endpoints (player action and skip turn)."""

import logging

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import StreamingResponse

from backend.llm import get_llm
from geosim import engine, stream
from geosim.llm import LLM
from geosim.models import GameState

from .models import SimulateBody, SkipBody

logger = logging.getLogger(__name__)

router = APIRouter()


def _require_state(game_state: GameState | None) -> GameState:
    if game_state is None:
        raise HTTPException(400, "Missing game state")
    try:
        engine.require_player_actor(game_state)
    except engine.MissingFieldError as e:
        raise HTTPException(400, str(e))
    return game_state


def _require_llm() -> LLM:
    llm = get_llm("simulation")
    if llm is None:
        raise HTTPException(500, "LLM connection is not configured")
    return llm


@router.post("/simulate")
async def simulate(body: SimulateBody):
    """Simulate the world's reaction to a player action."""
    if not body.player_action.strip():
        raise HTTPException(400, "Missing player action")
    state = _require_state(body.game_state)
    llm = _require_llm()
    try:
        response = await engine.simulate_action(state, body.player_action, llm)
    except engine.MissingFieldError as e:
        raise HTTPException(400, str(e))
    except engine.SimulationError:
        logger.exception("Simulation failed")
        raise HTTPException(500, "Failed to simulate turn")
    return response.model_dump(mode="json", by_alias=True, exclude_none=True)


@router.post("/simulate/skip")
async def simulate_skip(body: SkipBody, request: Request):
    """Simulate a turn without a player action.

    With `Accept: text/event-stream` the result is streamed as SSE progress
    frames followed by one complete or error frame.
    """
    state = _require_state(body.game_state)
    llm = _require_llm()

    if "text/event-stream" in request.headers.get("accept", ""):
        return StreamingResponse(
            stream.skip_turn_events(state, llm),
            media_type="text/event-stream",
            headers=stream.SSE_HEADERS,
        )

    try:
        response = await engine.simulate_skip(state, llm)
    except engine.SimulationError:
        logger.exception("Skip turn failed")
        raise HTTPException(500, "Failed to simulate skip turn")
    return response.model_dump(mode="json", by_alias=True, exclude_none=True)
