"""Shared test doubles and game-state builders."""

import json
from collections.abc import AsyncIterator
from datetime import datetime, timezone

from geosim.models import Actor, GameEvent, GameState, Milestone, PlayerGoal, Resources, Scenario


class StubLLM:
    """Scripted LLM: returns queued responses in order and records every call.

    stream() yields the next response in `chunk_size` pieces. `error` is raised
    from every call; `stream_error` is raised after the first streamed chunk.
    """

    def __init__(
        self,
        responses: list[str] | None = None,
        chunk_size: int = 8,
        error: Exception | None = None,
        stream_error: Exception | None = None,
    ) -> None:
        self.responses = list(responses or [])
        self.chunk_size = chunk_size
        self.error = error
        self.stream_error = stream_error
        self.calls: list[tuple[str, str]] = []

    def _next(self, stage: str, prompt: str) -> str:
        self.calls.append((stage, prompt))
        if self.error is not None:
            raise self.error
        if not self.responses:
            raise AssertionError(f"StubLLM has no response left for stage {stage!r}")
        return self.responses.pop(0)

    async def __call__(self, stage: str, prompt: str) -> str:
        return self._next(stage, prompt)

    async def stream(self, stage: str, prompt: str) -> AsyncIterator[str]:
        text = self._next(stage, prompt)
        for i in range(0, len(text), self.chunk_size):
            yield text[i:i + self.chunk_size]
            if self.stream_error is not None:
                raise self.stream_error


def simulation_json(
    events: list[dict] | None = None,
    tension: float | None = None,
    progress: float | None = None,
    **world: object,
) -> str:
    update: dict = dict(world)
    if tension is not None:
        update["tensionLevel"] = tension
    body: dict = {
        "events": events if events is not None else [{
            "type": "reaction",
            "actorId": "eu",
            "actorName": "European Union",
            "content": "The EU condemns the move.",
            "sentiment": "negative",
        }],
        "worldStateUpdate": update,
    }
    if progress is not None:
        body["goalProgressUpdate"] = {"progress": progress, "evaluation": "Some headway."}
    return json.dumps(body)


def make_scenario() -> Scenario:
    return Scenario(
        id="scn-1",
        title="Baltic Standoff",
        description="Naval tensions in the Baltic Sea.",
        region="Northern Europe",
        background_context="A series of incidents near shipping lanes.",
        actors=[
            Actor(
                id="us", name="United States", type="country",
                description="Superpower", personality="Assertive",
                objectives=["Contain escalation"],
                resources=Resources(military=90, economic=85),
                color="#6366f1",
            ),
            Actor(
                id="eu", name="European Union", type="organization",
                description="Political union", personality="Cautious",
                objectives=["Protect trade", "Keep unity"],
                color="#ef4444",
            ),
            Actor(
                id="ru", name="Russia", type="country",
                objectives=[], color="#22c55e",
            ),
        ],
        milestones=[
            Milestone(id="m1", date="2024-03-01", title="Cable Cut", description="A subsea cable is severed."),
        ],
    )


def make_event(turn: int, actor_name: str, content: str, **fields: object) -> GameEvent:
    return GameEvent(
        id=f"evt-{turn}-{actor_name}",
        timestamp=datetime(2024, 1, 1, tzinfo=timezone.utc),
        turn=turn,
        type=fields.pop("type", "reaction"),
        actor_id=fields.pop("actor_id", actor_name.lower()),
        actor_name=actor_name,
        content=content,
        **fields,
    )


def make_state(**overrides: object) -> GameState:
    """A game in progress: player is the US, turn 3, tension 50."""
    fields: dict = {
        "scenario": make_scenario(),
        "player_actor_id": "us",
        "starting_milestone_id": "m1",
        "player_goal": PlayerGoal(description="De-escalate the standoff", progress=20),
        "current_turn": 3,
        "phase": "playing",
    }
    fields.update(overrides)
    return GameState(**fields)
