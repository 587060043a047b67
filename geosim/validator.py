"""Advisory plausibility check for a player action.

The check never blocks play. Missing inputs are caller errors; every other
failure (model unreachable, bad JSON, wrong shape) fails open with a permissive
result.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from pydantic import ValidationError

from geosim import prompts
from geosim.engine import MissingFieldError, strip_code_fences
from geosim.llm import LLM, LLMError
from geosim.models import ActionValidation, Scenario, WorldState

logger = logging.getLogger(__name__)

DEFAULT_GAUGE = 50


def permissive() -> ActionValidation:
    return ActionValidation(is_valid=True, warnings=[], suggestions=[])


def _gauge(value: int | None) -> int:
    return DEFAULT_GAUGE if value is None else value


def build_validation_prompt(
    scenario: Scenario, actor_id: str, action: str, world_state: WorldState | dict[str, Any] | None,
) -> str:
    actor = scenario.find_actor(actor_id)
    if actor is None:
        raise MissingFieldError("playerActorId", "Player actor not found")
    if isinstance(world_state, WorldState):
        world_state = world_state.model_dump(mode="json", by_alias=True)
    resources = actor.resources
    system_prompt = prompts.render("action-validation", {
        "SCENARIO_TITLE": scenario.title,
        "PLAYER_ACTOR_NAME": actor.name,
        "PLAYER_ACTOR_TYPE": actor.type,
        "MILITARY_SCORE": _gauge(resources.military),
        "ECONOMIC_SCORE": _gauge(resources.economic),
        "DIPLOMATIC_SCORE": _gauge(resources.diplomatic),
        "POPULAR_SCORE": _gauge(resources.popular),
        "WORLD_STATE": json.dumps(world_state, indent=2),
        "PLAYER_ACTION": action,
    })
    return f'{system_prompt}\n\nValidate this action: "{action}"'


async def validate_action(
    scenario: Scenario | None,
    actor_id: str | None,
    action: str | None,
    world_state: WorldState | dict[str, Any] | None,
    llm: LLM,
) -> ActionValidation:
    if scenario is None or not actor_id or not action:
        raise MissingFieldError("action", "Missing required fields")
    prompt = build_validation_prompt(scenario, actor_id, action, world_state)

    try:
        text = await llm("action_validation", prompt)
        data = json.loads(strip_code_fences(text))
        return ActionValidation.model_validate(data)
    except (LLMError, json.JSONDecodeError, ValidationError) as e:
        logger.warning("Action validation failed open: %s", e)
        return permissive()
