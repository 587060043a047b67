"""Turn simulation engine.

One call simulates one turn:

  1. Check preconditions (scenario loaded, player actor resolves, action text).
  2. Build the prompt from game state (a pure function of its inputs).
  3. Call the model (atomic here; the skip turn may instead be streamed by
     geosim.stream, which reuses steps 2 and 4).
  4. Decode the JSON text into a RawSimulation and reconcile it:
       - stamp events (id, timestamp, submission turn, default sentiment)
       - drop player-authored events on skip turns
       - tension: |d| <= 20 is a delta, |d| > 20 an absolute value, clamped
       - goal progress: absolute, clamped
       - actor updates: kept only when they name a known actor and still
         validate, so applying the response cannot fail halfway

Only recent history is sent to the model (the last 5 events). Any failure
raises a typed error; nothing is returned partially applied.
"""

from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from pydantic import ValidationError

from geosim import prompts
from geosim.llm import LLM, LLMError
from geosim.models import (
    Actor,
    GameEvent,
    GameState,
    RawSimulation,
    SimulationResponse,
    clamp,
)

logger = logging.getLogger(__name__)

RECENT_EVENT_LIMIT = 5
RELATIVE_TENSION_LIMIT = 20
DEFAULT_TENSION = 50
PLAYER_EXCLUSION_TAG = " [PLAYER - DO NOT GENERATE EVENTS FOR]"


class MissingFieldError(ValueError):
    """A required input is absent. Always a 400-class failure."""

    def __init__(self, field: str, message: str) -> None:
        super().__init__(message)
        self.field = field


class SimulationError(RuntimeError):
    """The model call or its output failed. Fatal to the current turn."""

    code = "SIMULATION_FAILED"


# ---------------------------------------------------------------------------
# Preconditions
# ---------------------------------------------------------------------------

def require_player_actor(state: GameState) -> Actor:
    if state.scenario is None:
        raise MissingFieldError("scenario", "No scenario loaded")
    actor = state.scenario.find_actor(state.player_actor_id)
    if actor is None:
        raise MissingFieldError("playerActorId", "Player actor not found")
    return actor


# ---------------------------------------------------------------------------
# Prompt assembly
# ---------------------------------------------------------------------------

def format_actors(actors: list[Actor], exclude_actor_id: str | None = None) -> str:
    """Render the roster. The excluded actor is tagged so the model skips it."""
    lines = []
    for actor in actors:
        objectives = ", ".join(actor.objectives) if actor.objectives else "Unknown"
        tag = PLAYER_EXCLUSION_TAG if exclude_actor_id and actor.id == exclude_actor_id else ""
        lines.append(
            f"- {actor.name} ({actor.type}){tag}: {actor.description or 'No description'}\n"
            f"  Objectives: {objectives}\n"
            f"  Personality: {actor.personality or 'Unknown'}"
        )
    return "\n\n".join(lines)


def format_recent_events(events: list[GameEvent], limit: int = RECENT_EVENT_LIMIT) -> str:
    return "\n".join(
        f"[Turn {e.turn}] {e.actor_name or 'Unknown'}: {e.content}"
        for e in events[-limit:]
    )


def _turn_fields(state: GameState, player: Actor) -> dict[str, object]:
    scenario = state.scenario
    world = state.world_state
    goal = state.player_goal
    conflicts = world.active_conflicts if isinstance(world.active_conflicts, list) else []
    return {
        "SCENARIO_TITLE": scenario.title or "Untitled Scenario",
        "SCENARIO_CONTEXT": scenario.background_context or "No background context available",
        "TURN_NUMBER": state.current_turn or 1,
        "TENSION_LEVEL": world.tension_level if world.tension_level is not None else DEFAULT_TENSION,
        "GLOBAL_SENTIMENT": world.global_sentiment or "Neutral",
        "ACTIVE_CONFLICTS": ", ".join(conflicts) if conflicts else "None",
        "DIPLOMATIC_STATUS": world.diplomatic_status or "Stable",
        "PLAYER_ACTOR_NAME": player.name or "Player",
        "PLAYER_ACTOR_ID": player.id or "unknown",
        "PLAYER_GOAL": goal.description if goal and goal.description else "No specific goal set",
        "GOAL_PROGRESS": goal.progress if goal else 0,
        "RECENT_EVENTS": format_recent_events(state.events) or "Game just started",
    }


def build_turn_prompt(state: GameState, action: str, player: Actor) -> str:
    fields = _turn_fields(state, player)
    fields["ACTORS_LIST"] = format_actors(state.scenario.actors) or "No actors defined"
    fields["PLAYER_ACTION"] = action
    system_prompt = prompts.render("simulate-turn", fields)
    user_message = (
        f"The player ({player.name}) takes the following action:\n\n\"{action}\"\n\n"
        "Simulate the world's response. IMPORTANT: Return ONLY valid JSON, no markdown code blocks."
    )
    return f"{system_prompt}\n\n{user_message}"


def build_skip_prompt(state: GameState, player: Actor) -> str:
    fields = _turn_fields(state, player)
    fields["ACTORS_LIST"] = (
        format_actors(state.scenario.actors, exclude_actor_id=player.id) or "No actors defined"
    )
    system_prompt = prompts.render("skip-turn", fields)
    user_message = (
        f"The player ({player.name}) has chosen to observe this turn without taking action. "
        "Simulate what happens in the world while they watch. "
        "Return ONLY the raw JSON object, without markdown code fences."
    )
    return f"{system_prompt}\n\n{user_message}"


# ---------------------------------------------------------------------------
# Decoding
# ---------------------------------------------------------------------------

def strip_code_fences(text: str) -> str:
    """Remove a leading ```json / ``` marker and a trailing ``` marker.

    Only fences that wrap the whole payload are handled.
    """
    cleaned = text.strip()
    if cleaned.startswith("```json"):
        cleaned = cleaned[7:]
    elif cleaned.startswith("```"):
        cleaned = cleaned[3:]
    if cleaned.endswith("```"):
        cleaned = cleaned[:-3]
    return cleaned.strip()


@dataclass
class Decoded:
    """Result of decoding model output: either a response or a reason."""

    response: RawSimulation | None = None
    reason: str | None = None

    @property
    def ok(self) -> bool:
        return self.response is not None


def decode_simulation(text: str) -> Decoded:
    cleaned = strip_code_fences(text)
    if not cleaned:
        return Decoded(reason="Model returned an empty response")
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError as e:
        return Decoded(reason=f"Model returned invalid JSON: {e}")
    if not isinstance(data, dict):
        return Decoded(reason=f"Expected a JSON object, got {type(data).__name__}")
    try:
        return Decoded(response=RawSimulation.model_validate(data))
    except ValidationError as e:
        return Decoded(reason=f"Model output does not match the response schema: {e}")


# ---------------------------------------------------------------------------
# Reconciliation
# ---------------------------------------------------------------------------

def resolve_tension(current: float | None, change: float) -> int:
    """Apply the dual delta/absolute rule to a model-reported tension value."""
    base = DEFAULT_TENSION if current is None else current
    if abs(change) <= RELATIVE_TENSION_LIMIT:
        return clamp(base + change)
    return clamp(change)


def reconcile_actor_updates(
    updates: list[dict[str, Any]] | None, actors: list[Actor],
) -> list[dict[str, Any]] | None:
    """Keep only the updates that name a known actor and still validate once merged."""
    if updates is None:
        return None
    by_id = {a.id: a for a in actors}
    valid = []
    for update in updates:
        actor = by_id.get(update.get("id"))
        if actor is None:
            logger.warning("Dropped update for unknown actor %r", update.get("id"))
            continue
        try:
            Actor.model_validate({**actor.model_dump(by_alias=True), **update, "id": actor.id})
        except ValidationError as e:
            logger.warning("Dropped invalid update for actor %r: %s", actor.id, e)
            continue
        valid.append(update)
    return valid


def reconcile(
    raw: RawSimulation,
    state: GameState,
    exclude_actor_id: str | None = None,
    now: datetime | None = None,
) -> SimulationResponse:
    now = now or datetime.now(timezone.utc)
    names = {a.id: a.name for a in state.scenario.actors} if state.scenario else {}

    events: list[GameEvent] = []
    for raw_event in raw.events:
        if exclude_actor_id and raw_event.actor_id == exclude_actor_id:
            logger.warning("Dropped player-authored event from skip turn: %r", raw_event.content[:80])
            continue
        fields = raw_event.model_dump()
        fields["sentiment"] = raw_event.sentiment or "neutral"
        if not raw_event.actor_name:
            fields["actor_name"] = names.get(raw_event.actor_id, "")
        events.append(GameEvent(
            **fields,
            id=str(uuid.uuid4()),
            timestamp=now,
            turn=state.current_turn,
        ))

    update = raw.world_state_update.model_copy()
    if update.tension_level is not None:
        update.tension_level = resolve_tension(state.world_state.tension_level, update.tension_level)

    goal_update = raw.goal_progress_update
    if goal_update is not None:
        goal_update = goal_update.model_copy(update={"progress": clamp(goal_update.progress)})

    return SimulationResponse(
        events=events,
        world_state_update=update,
        actor_updates=reconcile_actor_updates(
            raw.actor_updates, state.scenario.actors if state.scenario else [],
        ),
        goal_progress_update=goal_update,
    )


def finalize(text: str, state: GameState, exclude_actor_id: str | None = None) -> SimulationResponse:
    """Decode model text and reconcile it, or raise SimulationError."""
    decoded = decode_simulation(text)
    if not decoded.ok:
        logger.warning("Simulation decode failed: %s", decoded.reason)
        raise SimulationError(decoded.reason)
    return reconcile(decoded.response, state, exclude_actor_id=exclude_actor_id)


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------

async def simulate_action(state: GameState, action: str, llm: LLM) -> SimulationResponse:
    """Simulate the world's reaction to a player action."""
    if not action or not action.strip():
        raise MissingFieldError("playerAction", "Missing player action")
    player = require_player_actor(state)
    prompt = build_turn_prompt(state, action, player)
    try:
        text = await llm("simulate_turn", prompt)
    except LLMError as e:
        raise SimulationError(str(e)) from e
    return finalize(text, state)


async def simulate_skip(state: GameState, llm: LLM) -> SimulationResponse:
    """Simulate a turn in which the player only observes."""
    player = require_player_actor(state)
    prompt = build_skip_prompt(state, player)
    try:
        text = await llm("skip_turn", prompt)
    except LLMError as e:
        raise SimulationError(str(e)) from e
    return finalize(text, state, exclude_actor_id=player.id)
