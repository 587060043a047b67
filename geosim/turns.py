"""Turn controller: drives one turn from submission to applied result.

    submit_action(text) / skip_turn(on_progress)
      -> set is_processing
      -> append the player's action event (or an "observes" system event)
      -> engine call (LocalEngine in-process, or ApiClient over HTTP)
      -> apply events, world-state merge, goal progress, actor updates
      -> next_turn
      finally: clear is_processing

A failed turn appends a negative system event and leaves the turn counter
where it was.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Protocol

from geosim import engine, stream
from geosim.llm import LLM
from geosim.models import ActionType, GameEvent, GameState, MediaType, SimulationResponse
from geosim.store import GameStore, TransitionError
from geosim.stream import ProgressCallback

logger = logging.getLogger(__name__)

ACTION_MEDIA_TYPES: dict[ActionType, MediaType] = {
    "social_media": "tweet",
    "press_release": "pressRelease",
    "personal": "statement",
}

ACTION_FAILED_MESSAGE = "An error occurred while processing your action. Please try again."
SKIP_FAILED_MESSAGE = "An error occurred while skipping the turn. Please try again."


class Engine(Protocol):
    async def simulate_action(self, state: GameState, action: str) -> SimulationResponse: ...

    async def simulate_skip(
        self, state: GameState, on_progress: ProgressCallback | None = None,
    ) -> SimulationResponse: ...


class LocalEngine:
    """Runs the simulation engine in-process against an LLM."""

    def __init__(self, llm: LLM) -> None:
        self._llm = llm

    async def simulate_action(self, state: GameState, action: str) -> SimulationResponse:
        return await engine.simulate_action(state, action, self._llm)

    async def simulate_skip(
        self, state: GameState, on_progress: ProgressCallback | None = None,
    ) -> SimulationResponse:
        if on_progress is None:
            return await engine.simulate_skip(state, self._llm)
        engine.require_player_actor(state)
        payloads = stream.skip_turn_payloads(state, self._llm)
        return await stream.collect_skip_result(payloads, on_progress)


def _system_event(turn: int, content: str, sentiment: str = "neutral") -> GameEvent:
    return GameEvent(
        id=str(uuid.uuid4()),
        timestamp=datetime.now(timezone.utc),
        turn=turn,
        type="system",
        actor_id="system",
        actor_name="System",
        content=content,
        sentiment=sentiment,
    )


class TurnController:
    def __init__(self, store: GameStore, engine: Engine) -> None:
        self.store = store
        self.engine = engine

    def _begin(self) -> GameState:
        state = self.store.state
        if state.phase != "playing":
            raise TransitionError(f"Cannot play a turn in phase '{state.phase}'")
        if state.is_processing:
            raise TransitionError("A turn is already being processed")
        if state.scenario is None or state.scenario.find_actor(state.player_actor_id) is None:
            raise TransitionError("No player actor selected")
        self.store.set_processing(True)
        return state

    async def submit_action(self, text: str) -> SimulationResponse | None:
        """Submit a player action. Returns the applied response, or None on failure."""
        text = text.strip()
        if not text:
            raise engine.MissingFieldError("playerAction", "Missing player action")
        state = self._begin()
        try:
            player = state.scenario.find_actor(state.player_actor_id)
            action_type = state.selected_action_type
            self.store.add_event(GameEvent(
                id=str(uuid.uuid4()),
                timestamp=datetime.now(timezone.utc),
                turn=state.current_turn,
                type="action",
                actor_id=player.id,
                actor_name=player.name,
                content=text,
                is_player_action=True,
                media_type=ACTION_MEDIA_TYPES.get(action_type) if action_type else None,
            ))
            return await self._run(
                self.engine.simulate_action(self.store.state, text), state.current_turn,
                ACTION_FAILED_MESSAGE,
            )
        finally:
            self.store.set_processing(False)

    async def skip_turn(self, on_progress: ProgressCallback | None = None) -> SimulationResponse | None:
        """Let the world move without a player action."""
        state = self._begin()
        try:
            player = state.scenario.find_actor(state.player_actor_id)
            self.store.add_event(_system_event(
                state.current_turn, f"{player.name} observes the situation without taking action.",
            ))
            return await self._run(
                self.engine.simulate_skip(self.store.state, on_progress), state.current_turn,
                SKIP_FAILED_MESSAGE,
            )
        finally:
            self.store.set_processing(False)

    async def _run(self, call, turn: int, failure_message: str) -> SimulationResponse | None:
        try:
            response = await call
        except (engine.SimulationError, engine.MissingFieldError) as e:
            logger.error("Turn %d failed: %s", turn, e)
            self.store.add_event(_system_event(turn, failure_message, sentiment="negative"))
            return None
        self.apply(response, turn)
        return response

    def apply(self, response: SimulationResponse, turn: int) -> None:
        """Apply an engine response to the store and advance the turn."""
        self.store.add_events(response.events)
        self.store.update_world_state(response.world_state_update)
        goal_update = response.goal_progress_update
        if goal_update is not None and self.store.state.player_goal is not None:
            self.store.update_goal_progress(goal_update.progress, goal_update.evaluation, turn)
        for actor_update in response.actor_updates or []:
            actor_id = actor_update.get("id")
            if actor_id:
                fields = {k: v for k, v in actor_update.items() if k != "id"}
                self.store.update_actor(actor_id, fields)
        self.store.next_turn()
