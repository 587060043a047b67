"""Server-Sent-Events adapter for streamed skip turns.

Wraps the model's token stream in `data: {json}\\n\\n` frames. Three frame
types share the channel:

  progress  {"type": "progress", "step", "stepIndex", "totalSteps",
             "message", "progress"}
  complete  {"type": "complete", "data": <SimulationResponse>}
  error     {"type": "error", "message": "..."}

Progress is synthetic: it is derived from the number of chunks received, not
from anything the model reports, and never decreases. A progress frame goes
out every PROGRESS_EVERY chunks. The stream always ends with exactly one
complete or error frame; exceptions raised while accumulating or decoding
become an error frame.
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator, Callable
from typing import Any

from geosim.engine import SimulationError, build_skip_prompt, finalize, require_player_actor
from geosim.llm import LLM
from geosim.models import GameState, SimulationResponse

logger = logging.getLogger(__name__)

SKIP_STEPS = (
    ("observing", "Observing world events..."),
    ("events", "Events unfolding..."),
    ("worldstate", "Updating world state..."),
)
PROGRESS_EVERY = 3
INITIAL_PROGRESS = 10
MAX_STREAM_PROGRESS = 90
SKIP_FAILED_MESSAGE = "Failed to simulate skip turn"

ProgressCallback = Callable[[dict[str, Any]], None]

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
}


def sse_frame(payload: dict[str, Any]) -> str:
    return f"data: {json.dumps(payload)}\n\n"


def progress_payload(progress: int) -> dict[str, Any]:
    """Map a progress percentage onto the three skip-turn stages."""
    if progress <= 30:
        index = 0
    elif progress <= 60:
        index = 1
    else:
        index = 2
    step, message = SKIP_STEPS[index]
    return {
        "type": "progress",
        "step": step,
        "stepIndex": index,
        "totalSteps": len(SKIP_STEPS),
        "message": message,
        "progress": progress,
    }


def chunk_progress(chunk_count: int) -> int:
    return min(MAX_STREAM_PROGRESS, INITIAL_PROGRESS + chunk_count * 4)


async def skip_turn_payloads(state: GameState, llm: LLM) -> AsyncIterator[dict[str, Any]]:
    """Yield the progress/complete/error payloads of one streamed skip turn."""
    yield progress_payload(INITIAL_PROGRESS)
    try:
        player = require_player_actor(state)
        prompt = build_skip_prompt(state, player)

        text = ""
        chunk_count = 0
        async for chunk in llm.stream("skip_turn", prompt):
            text += chunk
            chunk_count += 1
            if chunk_count % PROGRESS_EVERY == 0:
                yield progress_payload(chunk_progress(chunk_count))

        response = finalize(text, state, exclude_actor_id=player.id)
    except Exception:
        logger.exception("Streaming skip turn failed")
        yield {"type": "error", "message": SKIP_FAILED_MESSAGE}
        return

    yield {
        "type": "complete",
        "data": response.model_dump(mode="json", by_alias=True, exclude_none=True),
    }


async def skip_turn_events(state: GameState, llm: LLM) -> AsyncIterator[str]:
    """Yield SSE frames for one streamed skip turn."""
    async for payload in skip_turn_payloads(state, llm):
        yield sse_frame(payload)


# ---------------------------------------------------------------------------
# Consumer side: parse frames back into payloads
# ---------------------------------------------------------------------------

async def iter_sse_payloads(lines: AsyncIterator[str]) -> AsyncIterator[dict[str, Any]]:
    """Decode `data:` lines from an SSE body. Malformed frames are skipped."""
    async for line in lines:
        if not line.startswith("data: "):
            continue
        try:
            yield json.loads(line[6:])
        except json.JSONDecodeError:
            logger.warning("Failed to parse SSE frame: %r", line[:120])


async def collect_skip_result(
    payloads: AsyncIterator[dict[str, Any]],
    on_progress: ProgressCallback | None = None,
) -> SimulationResponse:
    """Drive a payload stream to its terminal frame.

    Progress payloads go to `on_progress`. A complete frame returns the
    response; an error frame, or a stream that ends without a terminal frame,
    raises SimulationError.
    """
    async for payload in payloads:
        kind = payload.get("type")
        if kind == "progress":
            if on_progress is not None:
                on_progress(payload)
        elif kind == "complete":
            return SimulationResponse.model_validate(payload.get("data") or {})
        elif kind == "error":
            raise SimulationError(payload.get("message") or SKIP_FAILED_MESSAGE)
    raise SimulationError("Stream ended without a result")
