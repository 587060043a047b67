"""Scenario discovery, action validation and end-of-game summary endpoints."""

import logging

from fastapi import APIRouter, HTTPException

from backend import storage
from backend.llm import get_llm
from geosim import summary, validator
from geosim.discovery import DiscoveryError, ExtractionError, ScenarioDiscovery

from .models import DiscoverBody, SummaryBody, ValidateBody

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/scenario/discover")
async def discover_scenario(body: DiscoverBody):
    """Build a scenario from a free-text query or a source URL."""
    if not body.query and not body.source_url:
        raise HTTPException(400, "Either query or sourceUrl is required")
    llm = get_llm("discovery")
    if llm is None:
        raise HTTPException(500, "LLM connection is not configured")

    config = storage.get_config()
    discovery = ScenarioDiscovery(
        llm,
        search_api_key=config["search_api_key"],
        reader_url=config["reader_url"],
    )
    try:
        scenario = await discovery.discover(
            query=body.query, source_url=body.source_url, timeframe=body.timeframe,
        )
    except ExtractionError as e:
        raise HTTPException(400, e.user_message)
    except DiscoveryError:
        logger.exception("Scenario discovery failed")
        raise HTTPException(500, "Failed to discover scenario")
    return {"scenario": scenario.model_dump(mode="json", by_alias=True)}


@router.post("/action/validate")
async def validate_action(body: ValidateBody):
    """Advisory plausibility check. Never blocks the action."""
    if body.scenario is None or not body.player_actor_id or not body.action:
        raise HTTPException(400, "Missing required fields")
    if body.scenario.find_actor(body.player_actor_id) is None:
        raise HTTPException(400, "Player actor not found")
    llm = get_llm("advisor")
    if llm is None:
        return {
            **validator.permissive().model_dump(by_alias=True),
            "error": "LLM connection is not configured",
            "fallback": True,
        }
    result = await validator.validate_action(
        body.scenario, body.player_actor_id, body.action, body.current_world_state, llm,
    )
    return result.model_dump(by_alias=True)


@router.post("/summary")
async def generate_summary(body: SummaryBody):
    """End-of-game bulletin for a finished (or abandoned) game."""
    state = body.game_state
    if state is None:
        raise HTTPException(400, "Missing game state")
    if state.scenario is None:
        raise HTTPException(400, "No scenario loaded")
    if not state.events:
        raise HTTPException(400, "No events to summarize")

    llm = get_llm("advisor")
    if llm is None:
        return {
            "summary": summary.fallback_bulletin(state).model_dump(by_alias=True),
            "error": "LLM connection is not configured",
            "fallback": True,
        }
    bulletin = await summary.summarize(state, llm)
    return {"summary": bulletin.model_dump(by_alias=True)}
