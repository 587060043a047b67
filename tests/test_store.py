"""Tests for geosim.store: phase machine, dirty tracking and snapshots."""

import pytest

from geosim.models import GameState, PlayerGoal, WorldStateUpdate
from geosim.store import STORAGE_NAMESPACE, GameStore, LocalSnapshot, TransitionError

from tests.helpers import make_event, make_scenario, make_state


def _playing_store(goal: bool = True, milestone: str | None = "m1") -> GameStore:
    store = GameStore()
    store.set_scenario(make_scenario())
    store.select_character("us")
    store.select_milestone(milestone)
    if goal:
        store.set_player_goal(PlayerGoal(description="De-escalate the standoff"))
    store.start_game()
    return store


class TestTransitions:
    def test_initial_state(self) -> None:
        store = GameStore()
        assert store.state.phase == "setup"
        assert store.state.world_state.tension_level == 50
        assert store.state.world_state.global_sentiment == "Uncertain"
        assert store.is_dirty is False

    def test_set_scenario_seeds_world_state(self) -> None:
        store = GameStore()
        store.set_scenario(make_scenario())
        assert store.state.phase == "character-select"
        assert store.state.world_state.tension_level == 60
        assert store.state.world_state.active_conflicts == ["Baltic Standoff"]

    def test_select_character_sets_exactly_one_player(self) -> None:
        store = GameStore()
        store.set_scenario(make_scenario())
        store.select_character("eu")
        flags = {a.id: a.is_player for a in store.state.scenario.actors}
        assert flags == {"us": False, "eu": True, "ru": False}
        assert store.state.phase == "milestone-select"

    def test_unknown_character_rejected(self) -> None:
        store = GameStore()
        store.set_scenario(make_scenario())
        with pytest.raises(TransitionError):
            store.select_character("atlantis")

    def test_wrong_phase_rejected(self) -> None:
        store = GameStore()
        with pytest.raises(TransitionError):
            store.select_character("us")
        with pytest.raises(TransitionError):
            store.start_game()
        with pytest.raises(TransitionError):
            store.end_game()

    def test_start_game_with_milestone_and_goal(self) -> None:
        store = _playing_store()
        state = store.state
        assert state.phase == "playing"
        assert state.current_turn == 1
        assert len(state.events) == 1
        opening = state.events[0]
        assert opening.type == "system"
        assert opening.actor_name == "Game Master"
        assert opening.turn == 0
        assert opening.content.startswith("The game begins at: Cable Cut (2024-03-01)")
        assert "You are playing as United States." in opening.content
        assert "Your objective: De-escalate the standoff" in opening.content
        assert opening.content.endswith("What will you do?")

    def test_start_game_generic_opening(self) -> None:
        store = _playing_store(goal=False, milestone=None)
        content = store.state.events[0].content
        assert content == (
            "The simulation begins. You are playing as United States. "
            "The world awaits your decisions."
        )

    def test_end_game(self) -> None:
        store = _playing_store()
        store.end_game()
        assert store.state.phase == "ended"

    def test_reset_game(self) -> None:
        store = _playing_store()
        store.set_cloud_session("sess-1")
        store.reset_game()
        assert store.state == GameState()
        assert store.cloud_session_id is None
        assert store.is_dirty is False

    def test_reset_to_setup_keeps_scenario(self) -> None:
        store = _playing_store()
        store.reset_to_setup()
        assert store.state.phase == "character-select"
        assert store.state.scenario.title == "Baltic Standoff"
        assert store.state.player_actor_id is None
        assert store.state.events == []
        assert not any(a.is_player for a in store.state.scenario.actors)

    def test_reset_to_milestone_keeps_actor(self) -> None:
        store = _playing_store()
        store.reset_to_milestone()
        assert store.state.phase == "milestone-select"
        assert store.state.player_actor_id == "us"
        assert store.state.player_goal is None
        assert store.state.current_turn == 0

    def test_reset_to_milestone_needs_actor(self) -> None:
        store = GameStore()
        store.set_scenario(make_scenario())
        with pytest.raises(TransitionError):
            store.reset_to_milestone()


class TestMutations:
    def test_world_state_shallow_merge(self) -> None:
        store = _playing_store()
        store.update_world_state(WorldStateUpdate(tension_level=72, global_sentiment="Tense"))
        world = store.state.world_state
        assert world.tension_level == 72
        assert world.global_sentiment == "Tense"
        assert world.diplomatic_status == "Strained"
        assert world.active_conflicts == ["Baltic Standoff"]

    def test_goal_progress(self) -> None:
        store = _playing_store()
        store.update_goal_progress(130, "Nearly there", 4)
        goal = store.state.player_goal
        assert goal.progress == 100
        assert goal.last_evaluation == "Nearly there"
        assert goal.evaluated_at == 4

    def test_goal_progress_without_goal_is_ignored(self) -> None:
        store = _playing_store(goal=False)
        revision = store.revision
        store.update_goal_progress(50, "x", 1)
        assert store.state.player_goal is None
        assert store.revision == revision

    def test_update_actor_merges_camel_case_fields(self) -> None:
        store = _playing_store()
        store.update_actor("ru", {"description": "Resurgent power", "resources": {"military": 120}})
        russia = store.state.scenario.find_actor("ru")
        assert russia.description == "Resurgent power"
        assert russia.resources.military == 100
        assert russia.color == "#22c55e"

    def test_events_are_append_only(self) -> None:
        store = _playing_store()
        store.add_events([make_event(1, "Russia", "a"), make_event(1, "Russia", "b", actor_id="ru2")])
        assert [e.content for e in store.state.events][1:] == ["a", "b"]


class TestDirtyFlag:
    def test_mutations_mark_dirty(self) -> None:
        store = GameStore()
        store.set_scenario(make_scenario())
        assert store.is_dirty
        assert store.revision == 1

    def test_presentation_state_does_not_mark_dirty(self) -> None:
        store = _playing_store()
        store.mark_synced()
        store.set_view_mode("chat")
        store.set_action_type("covert")
        store.set_processing(True)
        assert store.is_dirty is False
        assert store.state.view_mode == "chat"

    def test_mark_synced_at_current_revision(self) -> None:
        store = _playing_store()
        assert store.mark_synced(store.revision) is True
        assert store.is_dirty is False
        assert store.last_synced_at is not None

    def test_mutation_during_save_keeps_dirty(self) -> None:
        store = _playing_store()
        saved_revision = store.revision
        store.next_turn()
        assert store.mark_synced(saved_revision) is False
        assert store.is_dirty is True

    def test_subscribers_notified_and_unsubscribed(self) -> None:
        store = GameStore()
        seen = []
        unsubscribe = store.subscribe(lambda s: seen.append(s.state.phase))
        store.set_scenario(make_scenario())
        unsubscribe()
        store.select_character("us")
        assert seen == ["character-select"]


class TestSnapshots:
    def test_load_from_cloud_round_trip(self) -> None:
        source = _playing_store()
        source.set_processing(True)
        snapshot = source.get_game_state()

        target = GameStore()
        target.load_from_cloud(snapshot.model_dump(mode="json", by_alias=True), "sess-9")

        assert target.is_dirty is False
        assert target.state.is_processing is False
        assert target.cloud_session_id == "sess-9"
        assert target.state.events == source.state.events
        assert target.state.scenario == source.state.scenario
        assert target.state.current_turn == source.state.current_turn

    def test_get_game_state_is_detached(self) -> None:
        store = _playing_store()
        snapshot = store.get_game_state()
        snapshot.world_state.tension_level = 99
        assert store.state.world_state.tension_level == 60

    def test_partialize_excludes_transient_fields(self) -> None:
        store = GameStore(make_state(is_processing=True, selected_action_type="military"))
        store.set_cloud_session("sess-2")
        snapshot = store.partialize()
        assert "isProcessing" not in snapshot
        assert "selectedActionType" not in snapshot
        assert "isDirty" not in snapshot
        assert snapshot["cloudSessionId"] == "sess-2"
        assert snapshot["currentTurn"] == 3
        assert snapshot["playerActorId"] == "us"

    def test_local_snapshot_save_and_restore(self, tmp_path) -> None:
        store = _playing_store()
        store.set_cloud_session("sess-3")
        local = LocalSnapshot(tmp_path)
        local.save(store)
        assert (tmp_path / f"{STORAGE_NAMESPACE}.json").is_file()

        restored = GameStore()
        assert local.restore(restored) is True
        assert restored.state.phase == "playing"
        assert restored.cloud_session_id == "sess-3"
        assert restored.is_dirty is False

    def test_local_snapshot_attach(self, tmp_path) -> None:
        store = GameStore()
        local = LocalSnapshot(tmp_path)
        local.attach(store)
        store.set_scenario(make_scenario())
        restored = GameStore()
        local.restore(restored)
        assert restored.state.phase == "character-select"

    def test_restore_without_snapshot(self, tmp_path) -> None:
        assert LocalSnapshot(tmp_path).restore(GameStore()) is False
