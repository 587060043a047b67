"""End-of-game bulletin.

Renders the whole event log into the summary prompt and decodes the model's
front page. A malformed answer falls back to a bulletin built from the state
itself, so a finished game always gets a summary.
"""

from __future__ import annotations

import json
import logging

from pydantic import ValidationError

from geosim import prompts
from geosim.engine import MissingFieldError, strip_code_fences
from geosim.llm import LLM, LLMError
from geosim.models import BulletinStats, BulletinSummary, GameEvent, GameState

logger = logging.getLogger(__name__)

STARTING_TENSION = 50
FALLBACK_VERDICT = "The simulation has concluded. The world watches what happens next."


def format_event_log(events: list[GameEvent]) -> str:
    lines = []
    for e in events:
        player_tag = " [PLAYER ACTION]" if e.is_player_action else ""
        lines.append(
            f"[Turn {e.turn}] [{e.type.upper()}]{player_tag} {e.actor_name or 'Unknown'}: {e.content}"
        )
    return "\n\n".join(lines)


def build_summary_prompt(state: GameState) -> str:
    scenario = state.scenario
    player = scenario.find_actor(state.player_actor_id)
    world = state.world_state

    actor_lines = []
    for a in scenario.actors:
        tag = " [PLAYER]" if a.id == state.player_actor_id else ""
        objectives = ", ".join(a.objectives) if a.objectives else "Unknown"
        actor_lines.append(
            f"- {a.name}{tag} ({a.type}): {a.description or 'No description'}\n"
            f"  Objectives: {objectives}"
        )

    return prompts.render("generate-summary", {
        "SCENARIO_TITLE": scenario.title or "Untitled Scenario",
        "SCENARIO_CONTEXT": scenario.background_context or "No background context available",
        "REGION": scenario.region or "Unknown region",
        "PLAYER_NAME": player.name if player else "Unknown Player",
        "PLAYER_TYPE": player.type if player else "unknown",
        "PLAYER_OBJECTIVES": ", ".join(player.objectives) if player and player.objectives else "Unknown objectives",
        "TOTAL_TURNS": state.current_turn or 1,
        "STARTING_TENSION": STARTING_TENSION,
        "TENSION_LEVEL": world.tension_level,
        "GLOBAL_SENTIMENT": world.global_sentiment or "Neutral",
        "DIPLOMATIC_STATUS": world.diplomatic_status or "Stable",
        "ACTORS_LIST": "\n\n".join(actor_lines) or "No actors defined",
        "EVENTS_LIST": format_event_log(state.events) or "No events yet",
    })


def fallback_bulletin(state: GameState) -> BulletinSummary:
    scenario = state.scenario
    player = scenario.find_actor(state.player_actor_id) if scenario else None
    world = state.world_state
    tension = world.tension_level
    delta = tension - STARTING_TENSION
    sentiment = world.global_sentiment or "Neutral"
    return BulletinSummary(
        headline=scenario.title.upper() if scenario and scenario.title else "SIMULATION COMPLETE",
        subheadline="A geopolitical simulation just concluded",
        stats=BulletinStats(
            turns=state.current_turn or 1,
            tension_start=STARTING_TENSION,
            tension_end=tension,
            tension_delta=f"+{delta}" if delta >= 0 else str(delta),
            outcome=world.diplomatic_status or "Stable",
        ),
        highlights=[
            f"{player.name if player else 'Player'} navigated {state.current_turn} turns of complex diplomacy",
            f"Tension levels shifted from {STARTING_TENSION}% to {tension}%",
            f"Global sentiment: {sentiment}",
        ],
        verdict=FALLBACK_VERDICT,
    )


def decode_bulletin(text: str) -> BulletinSummary | None:
    try:
        data = json.loads(strip_code_fences(text))
        bulletin = BulletinSummary.model_validate(data)
    except (json.JSONDecodeError, ValidationError) as e:
        logger.warning("Summary output unusable: %s", e)
        return None
    if not bulletin.headline or not bulletin.verdict or not bulletin.highlights:
        logger.warning("Summary output is missing headline, verdict or highlights")
        return None
    return bulletin


async def summarize(state: GameState, llm: LLM) -> BulletinSummary:
    if state.scenario is None:
        raise MissingFieldError("scenario", "No scenario loaded")
    if not state.events:
        raise MissingFieldError("events", "No events to summarize")

    try:
        text = await llm("summary", build_summary_prompt(state))
    except LLMError as e:
        logger.warning("Summary model call failed, using fallback bulletin: %s", e)
        return fallback_bulletin(state)
    return decode_bulletin(text) or fallback_bulletin(state)
