import json

import httpx
import pytest

from geosim.engine import MissingFieldError
from geosim.llm import HttpLLM, LLMError
from geosim.models import WorldState
from geosim.summary import (
    FALLBACK_VERDICT,
    build_summary_prompt,
    decode_bulletin,
    fallback_bulletin,
    format_event_log,
    summarize,
)

from tests.helpers import StubLLM, make_event, make_state

BULLETIN = {
    "headline": "BALTIC CALM RESTORED",
    "subheadline": "Talks hold after tense week",
    "stats": {
        "turns": 3, "tensionStart": 50, "tensionEnd": 35,
        "tensionDelta": "-15", "outcome": "Cooperative",
    },
    "highlights": ["Frigates withdrawn", "Cable repaired"],
    "verdict": "Diplomacy prevailed.",
}


def _finished_state(**overrides):
    events = [
        make_event(1, "United States", "Deploy frigates", actor_id="us", type="action", is_player_action=True),
        make_event(1, "Russia", "Drills announced", actor_id="ru"),
    ]
    return make_state(events=events, **overrides)


class TestPrompt:
    def test_event_log_tags_player_actions(self) -> None:
        log = format_event_log(_finished_state().events)
        assert log == (
            "[Turn 1] [ACTION] [PLAYER ACTION] United States: Deploy frigates\n\n"
            "[Turn 1] [REACTION] Russia: Drills announced"
        )

    def test_prompt_includes_actors_and_outcome(self) -> None:
        prompt = build_summary_prompt(_finished_state(world_state=WorldState(tension_level=70)))
        assert "- United States [PLAYER] (country): Superpower" in prompt
        assert "- Russia (country): No description\n  Objectives: Unknown" in prompt
        assert "Deploy frigates" in prompt
        assert "{{" not in prompt


class TestFallback:
    def test_fallback_from_state(self) -> None:
        bulletin = fallback_bulletin(_finished_state(world_state=WorldState(tension_level=65)))
        assert bulletin.headline == "BALTIC STANDOFF"
        assert bulletin.stats.turns == 3
        assert bulletin.stats.tension_delta == "+15"
        assert bulletin.stats.outcome == "Strained"
        assert bulletin.highlights[0] == "United States navigated 3 turns of complex diplomacy"
        assert bulletin.verdict == FALLBACK_VERDICT

    def test_negative_delta(self) -> None:
        bulletin = fallback_bulletin(_finished_state(world_state=WorldState(tension_level=30)))
        assert bulletin.stats.tension_delta == "-20"

    def test_decode_rejects_missing_fields(self) -> None:
        body = dict(BULLETIN, highlights=[])
        assert decode_bulletin(json.dumps(body)) is None
        assert decode_bulletin("garbage") is None


class TestSummarize:
    async def test_model_bulletin(self) -> None:
        llm = StubLLM([json.dumps(BULLETIN)])
        bulletin = await summarize(_finished_state(), llm)
        assert bulletin.headline == "BALTIC CALM RESTORED"
        assert bulletin.stats.tension_end == 35
        assert llm.calls[0][0] == "summary"

    async def test_malformed_output_falls_back(self) -> None:
        bulletin = await summarize(_finished_state(), StubLLM(["{ not json"]))
        assert bulletin.verdict == FALLBACK_VERDICT

    async def test_model_failure_falls_back(self) -> None:
        bulletin = await summarize(_finished_state(), StubLLM(error=LLMError("down")))
        assert bulletin.headline == "BALTIC STANDOFF"

    async def test_transport_failure_falls_back(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadError("connection reset", request=request)

        llm = HttpLLM(provider_url="http://localhost:5001", transport=httpx.MockTransport(handler))
        bulletin = await summarize(_finished_state(), llm)
        assert bulletin.headline == "BALTIC STANDOFF"
        assert bulletin.verdict == FALLBACK_VERDICT

    async def test_requires_events(self) -> None:
        with pytest.raises(MissingFieldError):
            await summarize(make_state(), StubLLM())

    async def test_requires_scenario(self) -> None:
        with pytest.raises(MissingFieldError):
            await summarize(make_state(scenario=None, events=_finished_state().events), StubLLM())
