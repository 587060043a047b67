"""Core domain models.

Every engine stage, the game store and the session store operate on these
types. Pydantic validates at each data boundary: model output, request bodies
and persisted snapshots.

Attributes are snake_case in Python; the JSON form is camelCase
(``tensionLevel``, ``actorId``) because that is what the LLM is prompted to
emit and what the browser sends. Dump with ``by_alias=True`` when writing JSON.
"""

from __future__ import annotations

import math
from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

ActorType = Literal["leader", "organization", "country", "entity", "group"]
Relationship = Literal["ally", "enemy", "neutral", "complicated"]
Significance = Literal["minor", "major", "critical"]
EventType = Literal["action", "reaction", "autonomous", "news", "system"]
Sentiment = Literal["positive", "negative", "neutral", "escalation", "deescalation"]
MediaType = Literal[
    "tweet", "article", "pressRelease", "tvBroadcast", "leak", "speech", "statement",
]
ActionType = Literal[
    "diplomatic", "military", "economic", "social_media", "press_release", "covert", "personal",
]
Phase = Literal[
    "setup", "character-select", "milestone-select", "goal-select", "playing", "ended",
]
ViewMode = Literal["graphics", "chat", "social"]

_SENTIMENTS = {"positive", "negative", "neutral", "escalation", "deescalation"}
_EVENT_TYPES = {"action", "reaction", "autonomous", "news", "system"}

ACTOR_COLORS = (
    "#6366f1",  # indigo
    "#ef4444",  # red
    "#22c55e",  # green
    "#f59e0b",  # amber
    "#3b82f6",  # blue
    "#ec4899",  # pink
    "#8b5cf6",  # violet
    "#14b8a6",  # teal
    "#f97316",  # orange
    "#06b6d4",  # cyan
)


def actor_color(index: int) -> str:
    return ACTOR_COLORS[index % len(ACTOR_COLORS)]


def clamp(value: float, low: int = 0, high: int = 100) -> int:
    """Round and clamp a gauge value into [low, high]."""
    if not math.isfinite(value):
        raise ValueError(f"gauge value must be finite, got {value}")
    return max(low, min(high, round(value)))


def _finite(value: Any) -> Any:
    if isinstance(value, float) and not math.isfinite(value):
        raise ValueError("must be a finite number")
    return value


class Model(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Scenario
# ---------------------------------------------------------------------------

class Resources(Model):
    """Four independent gauges. None means "not tracked"."""

    military: int | None = None
    economic: int | None = None
    diplomatic: int | None = None
    popular: int | None = None

    @field_validator("military", "economic", "diplomatic", "popular", mode="before")
    @classmethod
    def _clamp_gauge(cls, value: Any) -> Any:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return clamp(value)
        return value


class Actor(Model):
    id: str = ""
    name: str
    type: ActorType = "entity"
    description: str = ""
    personality: str = ""
    objectives: list[str] = Field(default_factory=list)
    relationships: dict[str, Relationship] = Field(default_factory=dict)
    resources: Resources = Field(default_factory=Resources)
    avatar: str | None = None
    color: str = ""
    is_player: bool = False
    persona: dict[str, Any] | None = None

    @field_validator("objectives", mode="before")
    @classmethod
    def _objectives_list(cls, value: Any) -> Any:
        return value if isinstance(value, list) else []

    @field_validator("relationships", mode="before")
    @classmethod
    def _known_relationships(cls, value: Any) -> Any:
        if not isinstance(value, dict):
            return {}
        return {k: v for k, v in value.items() if v in ("ally", "enemy", "neutral", "complicated")}


class Milestone(Model):
    id: str = ""
    date: str = ""
    title: str
    description: str = ""
    significance: Significance = "major"
    actors_involved: list[str] = Field(default_factory=list)
    world_state_changes: dict[str, Any] | None = None


class Timeframe(Model):
    start: str = ""
    end: str | None = None


class Scenario(Model):
    id: str = ""
    title: str
    description: str = ""
    region: str = ""
    timeframe: Timeframe = Field(default_factory=Timeframe)
    actors: list[Actor] = Field(default_factory=list)
    milestones: list[Milestone] = Field(default_factory=list)
    background_context: str = ""
    current_status: str = ""
    key_issues: list[str] = Field(default_factory=list)

    def find_actor(self, actor_id: str | None) -> Actor | None:
        for actor in self.actors:
            if actor.id == actor_id:
                return actor
        return None

    def find_milestone(self, milestone_id: str | None) -> Milestone | None:
        for milestone in self.milestones:
            if milestone.id == milestone_id:
                return milestone
        return None


# ---------------------------------------------------------------------------
# World state
# ---------------------------------------------------------------------------

class TrendingTopic(Model):
    hashtag: str
    sentiment: str = "mixed"
    volume: int = 0
    associated_actors: list[str] = Field(default_factory=list)


class PublicOpinion(Model):
    by_region: dict[str, float] = Field(default_factory=dict)
    trending: list[TrendingTopic] = Field(default_factory=list)
    narrative_control: dict[str, float] = Field(default_factory=dict)
    media_coverage: Literal["heavy", "moderate", "light"] | None = None


class WorldState(Model):
    tension_level: int = 50
    global_sentiment: str = "Uncertain"
    active_conflicts: list[str] = Field(default_factory=list)
    economic_impact: str = "Moderate disruption"
    humanitarian_situation: str = "Concerning"
    diplomatic_status: str = "Strained"
    key_metrics: dict[str, Any] = Field(default_factory=dict)
    public_opinion: PublicOpinion | None = None

    @field_validator("tension_level", mode="before")
    @classmethod
    def _clamp_tension(cls, value: Any) -> Any:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return clamp(value)
        return value


class WorldStateUpdate(Model):
    """Partial world state as returned by the model.

    ``tension_level`` is kept as a raw number here; the engine decides
    whether it is a delta or an absolute value.
    """

    tension_level: int | float | None = None
    global_sentiment: str | None = None
    active_conflicts: list[str] | None = None
    economic_impact: str | None = None
    humanitarian_situation: str | None = None
    diplomatic_status: str | None = None
    key_metrics: dict[str, Any] | None = None
    public_opinion: PublicOpinion | None = None

    @field_validator("tension_level")
    @classmethod
    def _finite_tension(cls, value: Any) -> Any:
        return _finite(value)


# ---------------------------------------------------------------------------
# Goals and events
# ---------------------------------------------------------------------------

class PlayerGoal(Model):
    type: Literal["suggested", "custom"] = "suggested"
    objective_id: str | None = None
    custom_text: str | None = None
    description: str
    progress: int = 0
    last_evaluation: str | None = None
    evaluated_at: int | None = None

    @field_validator("progress", mode="before")
    @classmethod
    def _clamp_progress(cls, value: Any) -> Any:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return clamp(value)
        return value


class EventImpact(Model):
    description: str = ""
    affected_actors: list[str] = Field(default_factory=list)
    world_state_changes: dict[str, Any] | None = None


class _EventFields(Model):
    type: EventType = "reaction"
    actor_id: str = ""
    actor_name: str = ""
    content: str = ""
    sentiment: Sentiment | None = None
    impact: EventImpact | None = None
    media_type: MediaType | None = None
    media: dict[str, Any] | None = None

    @field_validator("type", mode="before")
    @classmethod
    def _known_type(cls, value: Any) -> Any:
        return value if isinstance(value, str) and value in _EVENT_TYPES else "reaction"

    @field_validator("actor_id", "actor_name", "content", mode="before")
    @classmethod
    def _text_or_empty(cls, value: Any) -> Any:
        return "" if value is None else value

    @field_validator("sentiment", mode="before")
    @classmethod
    def _known_sentiment(cls, value: Any) -> Any:
        return value if isinstance(value, str) and value in _SENTIMENTS else None

    @field_validator("media_type", mode="before")
    @classmethod
    def _known_media_type(cls, value: Any) -> Any:
        known = ("tweet", "article", "pressRelease", "tvBroadcast", "leak", "speech", "statement")
        return value if value in known else None


class RawEvent(_EventFields):
    """An event as the model returned it, before stamping."""


class GameEvent(_EventFields):
    """A stamped entry in the append-only event log."""

    id: str
    timestamp: datetime
    turn: int
    is_player_action: bool = False


# ---------------------------------------------------------------------------
# Engine input / output
# ---------------------------------------------------------------------------

class GameState(Model):
    scenario: Scenario | None = None
    player_id: str | None = None
    player_actor_id: str | None = None
    starting_milestone_id: str | None = None
    player_goal: PlayerGoal | None = None
    current_turn: int = 0
    events: list[GameEvent] = Field(default_factory=list)
    world_state: WorldState = Field(default_factory=WorldState)
    phase: Phase = "setup"
    view_mode: ViewMode = "graphics"
    is_processing: bool = False
    selected_action_type: ActionType | None = None


class GoalProgressUpdate(Model):
    progress: int | float
    evaluation: str = ""

    @field_validator("progress")
    @classmethod
    def _finite_progress(cls, value: Any) -> Any:
        return _finite(value)


class RawSimulation(Model):
    """Schema the model output is decoded into."""

    events: list[RawEvent] = Field(default_factory=list)
    world_state_update: WorldStateUpdate = Field(default_factory=WorldStateUpdate)
    actor_updates: list[dict[str, Any]] | None = None
    goal_progress_update: GoalProgressUpdate | None = None

    @field_validator("events", mode="before")
    @classmethod
    def _events_list(cls, value: Any) -> Any:
        return value if isinstance(value, list) else []

    @field_validator("world_state_update", mode="before")
    @classmethod
    def _update_object(cls, value: Any) -> Any:
        return value if isinstance(value, dict) else {}


class SimulationResponse(Model):
    events: list[GameEvent] = Field(default_factory=list)
    world_state_update: WorldStateUpdate = Field(default_factory=WorldStateUpdate)
    actor_updates: list[dict[str, Any]] | None = None
    goal_progress_update: GoalProgressUpdate | None = None


class ActionValidation(Model):
    is_valid: bool = True
    warnings: list[str] = Field(default_factory=list)
    suggestions: list[str] = Field(default_factory=list)


class BulletinStats(Model):
    turns: int
    tension_start: int
    tension_end: int
    tension_delta: str
    outcome: str


class BulletinSummary(Model):
    headline: str
    subheadline: str = ""
    stats: BulletinStats
    highlights: list[str]
    verdict: str


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------

class SessionSummary(Model):
    id: str
    owner_id: str
    title: str
    scenario_id: str | None = None
    scenario_title: str | None = None
    player_actor_name: str | None = None
    current_turn: int = 0
    is_completed: bool = False
    created_at: datetime
    updated_at: datetime


class StoredSession(SessionSummary):
    game_state: GameState


class SharedSession(Model):
    session_id: str
    title: str
    scenario_title: str | None = None
    player_actor_name: str | None = None
    game_state: GameState
    current_turn: int = 0
    is_completed: bool = False
    created_at: datetime
