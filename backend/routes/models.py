"""Pydantic request models for API endpoints.

Bodies arrive camelCase from the browser; the shared alias generator maps
them onto snake_case attributes.
"""

from typing import Any

from pydantic import BaseModel

from geosim.models import GameState, Model, Scenario


class SimulateBody(Model):
    game_state: GameState | None = None
    player_action: str = ""


class SkipBody(Model):
    game_state: GameState | None = None


class DiscoverBody(Model):
    query: str | None = None
    source_url: str | None = None
    timeframe: str | None = None


class ValidateBody(Model):
    scenario: Scenario | None = None
    player_actor_id: str | None = None
    action: str | None = None
    current_world_state: dict[str, Any] | None = None


class SummaryBody(Model):
    game_state: GameState | None = None


class CreateSession(Model):
    owner_id: str
    title: str
    game_state: GameState


class UpdateSession(Model):
    game_state: GameState
    title: str | None = None


class CheckConnectionBody(BaseModel):
    provider_url: str
    api_key: str = ""
    provider_format: str = "koboldcpp"
