"""Game state store: the single authoritative state machine of a session.

Phases:

    setup --set_scenario--> character-select --select_character-->
    milestone-select --select_milestone--> goal-select --start_game--> playing
    playing --end_game--> ended
    any --reset_game--> setup
    any (with scenario) --reset_to_setup--> character-select
    any (with actor)    --reset_to_milestone--> milestone-select

A GameStore is owned by whoever runs the session and passed explicitly to the
turn controller and the autosaver. Every mutating action sets `is_dirty` and
bumps `revision`; only `mark_synced()` clears the flag, and only when nothing
changed since the revision that was saved. View mode, action-type hint and
`is_processing` are presentation state and never dirty the store.

Subscribers are plain callables invoked with the store after every change.
"""

from __future__ import annotations

import json
import logging
import uuid
from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from geosim.models import (
    ActionType,
    GameEvent,
    GameState,
    Phase,
    PlayerGoal,
    Scenario,
    ViewMode,
    WorldState,
    WorldStateUpdate,
    clamp,
)

logger = logging.getLogger(__name__)

STORAGE_NAMESPACE = "geopolitical-simulator-storage"
SCENARIO_START_TENSION = 60

# Fields mirrored into local storage; transient flags are left out.
PARTIALIZED_FIELDS = (
    "scenario",
    "player_actor_id",
    "starting_milestone_id",
    "player_goal",
    "events",
    "world_state",
    "current_turn",
    "phase",
    "view_mode",
)

Listener = Callable[["GameStore"], None]


class TransitionError(ValueError):
    """Raised when an action is not allowed in the current phase."""


class GameStore:
    def __init__(self, state: GameState | None = None) -> None:
        self.state = state or GameState()
        self.is_dirty = False
        self.revision = 0
        self.cloud_session_id: str | None = None
        self.last_synced_at: datetime | None = None
        self._listeners: list[Listener] = []

    # ------------------------------------------------------------------
    # Subscription
    # ------------------------------------------------------------------

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a change listener. Returns a function that removes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        for listener in list(self._listeners):
            listener(self)

    def _set(self, dirty: bool = True, **changes: Any) -> None:
        self.state = self.state.model_copy(update=changes)
        if dirty:
            self.is_dirty = True
            self.revision += 1
        self._notify()

    def _require_phase(self, action: str, *phases: Phase) -> None:
        if self.state.phase not in phases:
            raise TransitionError(
                f"{action} is not allowed in phase '{self.state.phase}'"
            )

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    def set_scenario(self, scenario: Scenario) -> None:
        self._require_phase("set_scenario", "setup")
        self._set(
            scenario=scenario,
            phase="character-select",
            world_state=WorldState(
                tension_level=SCENARIO_START_TENSION,
                active_conflicts=[scenario.title],
            ),
        )

    def select_character(self, actor_id: str) -> None:
        """Make `actor_id` the player's actor; every other actor loses the flag."""
        self._require_phase("select_character", "character-select")
        scenario = self.state.scenario
        if scenario.find_actor(actor_id) is None:
            raise TransitionError(f"Unknown actor '{actor_id}'")
        actors = [
            actor.model_copy(update={"is_player": actor.id == actor_id})
            for actor in scenario.actors
        ]
        self._set(
            player_actor_id=actor_id,
            scenario=scenario.model_copy(update={"actors": actors}),
            phase="milestone-select",
        )

    def select_milestone(self, milestone_id: str | None) -> None:
        self._require_phase("select_milestone", "milestone-select")
        if milestone_id is not None and self.state.scenario.find_milestone(milestone_id) is None:
            raise TransitionError(f"Unknown milestone '{milestone_id}'")
        self._set(starting_milestone_id=milestone_id, phase="goal-select")

    def set_player_goal(self, goal: PlayerGoal | None) -> None:
        self._require_phase("set_player_goal", "goal-select", "playing")
        self._set(player_goal=goal)

    def start_game(self) -> None:
        self._require_phase("start_game", "goal-select")
        state = self.state
        player = state.scenario.find_actor(state.player_actor_id)
        milestone = state.scenario.find_milestone(state.starting_milestone_id)
        player_name = player.name if player else "Unknown"
        goal_text = (
            f"\n\nYour objective: {state.player_goal.description}" if state.player_goal else ""
        )
        if milestone:
            content = (
                f"The game begins at: {milestone.title} ({milestone.date})\n\n"
                f"{milestone.description}\n\n"
                f"You are playing as {player_name}.{goal_text} What will you do?"
            )
        else:
            content = (
                f"The simulation begins. You are playing as {player_name}.{goal_text} "
                "The world awaits your decisions."
            )
        opening = GameEvent(
            id=str(uuid.uuid4()),
            timestamp=datetime.now(timezone.utc),
            turn=0,
            type="system",
            actor_id="system",
            actor_name="Game Master",
            content=content,
            sentiment="neutral",
        )
        self._set(phase="playing", current_turn=1, events=[opening])

    # ------------------------------------------------------------------
    # Play
    # ------------------------------------------------------------------

    def add_event(self, event: GameEvent) -> None:
        self.add_events([event])

    def add_events(self, events: list[GameEvent]) -> None:
        if not events:
            return
        self._set(events=[*self.state.events, *events])

    def update_world_state(self, update: WorldStateUpdate | dict[str, Any]) -> None:
        """Shallow-merge the keys present in `update` into the world state."""
        if isinstance(update, WorldStateUpdate):
            update = update.model_dump(by_alias=True, exclude_none=True)
        merged = {**self.state.world_state.model_dump(by_alias=True), **update}
        self._set(world_state=WorldState.model_validate(merged))

    def update_goal_progress(self, progress: float, evaluation: str, turn: int) -> None:
        goal = self.state.player_goal
        if goal is None:
            return
        self._set(player_goal=goal.model_copy(update={
            "progress": clamp(progress),
            "last_evaluation": evaluation,
            "evaluated_at": turn,
        }))

    def update_actor(self, actor_id: str, update: dict[str, Any]) -> None:
        scenario = self.state.scenario
        if scenario is None or scenario.find_actor(actor_id) is None:
            logger.warning("Ignoring update for unknown actor %r", actor_id)
            return
        actors = []
        for actor in scenario.actors:
            if actor.id == actor_id:
                merged = {**actor.model_dump(by_alias=True), **update, "id": actor.id}
                actor = type(actor).model_validate(merged)
            actors.append(actor)
        self._set(scenario=scenario.model_copy(update={"actors": actors}))

    def next_turn(self) -> None:
        self._set(current_turn=self.state.current_turn + 1)

    def end_game(self) -> None:
        self._require_phase("end_game", "playing")
        self._set(phase="ended")

    def set_processing(self, is_processing: bool) -> None:
        self._set(dirty=False, is_processing=is_processing)

    def set_view_mode(self, mode: ViewMode) -> None:
        self._set(dirty=False, view_mode=mode)

    def set_action_type(self, action_type: ActionType | None) -> None:
        self._set(dirty=False, selected_action_type=action_type)

    # ------------------------------------------------------------------
    # Reset
    # ------------------------------------------------------------------

    def _reset(self, state: GameState) -> None:
        self.state = state
        self.is_dirty = False
        self.revision += 1
        self.cloud_session_id = None
        self._notify()

    def reset_game(self) -> None:
        self._reset(GameState())

    def reset_to_setup(self) -> None:
        """Back to character selection, keeping only the scenario."""
        scenario = self.state.scenario
        if scenario is None:
            raise TransitionError("reset_to_setup needs a scenario")
        actors = [a.model_copy(update={"is_player": False}) for a in scenario.actors]
        self._reset(GameState(
            scenario=scenario.model_copy(update={"actors": actors}),
            phase="character-select",
        ))

    def reset_to_milestone(self) -> None:
        """Back to milestone selection, keeping the scenario and chosen actor."""
        if self.state.scenario is None or self.state.player_actor_id is None:
            raise TransitionError("reset_to_milestone needs a scenario and an actor")
        self._reset(GameState(
            scenario=self.state.scenario,
            player_actor_id=self.state.player_actor_id,
            phase="milestone-select",
        ))

    # ------------------------------------------------------------------
    # Sync
    # ------------------------------------------------------------------

    def get_game_state(self) -> GameState:
        """Snapshot for persistence. Detached from the live state."""
        return self.state.model_copy(deep=True)

    def set_cloud_session(self, session_id: str | None) -> None:
        self.cloud_session_id = session_id
        self._notify()

    def mark_synced(self, revision: int | None = None) -> bool:
        """Clear the dirty flag after a confirmed remote write.

        With a revision, the flag is only cleared if the store has not changed
        since that revision. Returns whether the flag was cleared.
        """
        if revision is not None and revision != self.revision:
            return False
        self.is_dirty = False
        self.last_synced_at = datetime.now(timezone.utc)
        self._notify()
        return True

    def load_from_cloud(self, state: GameState | dict[str, Any], session_id: str) -> None:
        """Replace the live state with a persisted snapshot."""
        if isinstance(state, dict):
            state = GameState.model_validate(state)
        self.state = state.model_copy(update={"is_processing": False}, deep=True)
        self.cloud_session_id = session_id
        self.is_dirty = False
        self.revision += 1
        self.last_synced_at = datetime.now(timezone.utc)
        self._notify()

    # ------------------------------------------------------------------
    # Local snapshot
    # ------------------------------------------------------------------

    def partialize(self) -> dict[str, Any]:
        """The subset of state mirrored to local storage, in JSON form."""
        dumped = self.state.model_dump(
            mode="json", by_alias=True, include=set(PARTIALIZED_FIELDS),
        )
        dumped["cloudSessionId"] = self.cloud_session_id
        return dumped

    def hydrate(self, snapshot: dict[str, Any]) -> None:
        """Restore a partialized snapshot. Transient flags start cleared."""
        snapshot = dict(snapshot)
        session_id = snapshot.pop("cloudSessionId", None)
        self.state = GameState.model_validate(snapshot)
        self.cloud_session_id = session_id
        self.is_dirty = False
        self._notify()


class LocalSnapshot:
    """Mirrors a store's partialized state to `<directory>/<namespace>.json`."""

    def __init__(self, directory: Path, namespace: str = STORAGE_NAMESPACE) -> None:
        self._path = directory / f"{namespace}.json"

    def save(self, store: GameStore) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(json.dumps(store.partialize(), indent=2))

    def restore(self, store: GameStore) -> bool:
        """Load the snapshot into `store`. Returns False when none exists."""
        if not self._path.is_file():
            return False
        store.hydrate(json.loads(self._path.read_text()))
        return True

    def attach(self, store: GameStore) -> Callable[[], None]:
        """Save after every store change. Returns the unsubscribe function."""
        return store.subscribe(self.save)
