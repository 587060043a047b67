"""Async client for the simulator HTTP service.

ApiClient satisfies both the turn controller's Engine protocol and the
autosaver's SessionWriter protocol, so a GameStore can be driven entirely
against a remote service:

    async with ApiClient("http://localhost:8000") as api:
        controller = TurnController(store, api)
        saver = Autosaver(store, api, user_id="me")
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from geosim.engine import SimulationError
from geosim.models import (
    ActionValidation,
    BulletinSummary,
    GameState,
    Scenario,
    SessionSummary,
    SharedSession,
    SimulationResponse,
    StoredSession,
    WorldState,
)
from geosim.stream import ProgressCallback, collect_skip_result, iter_sse_payloads
from geosim.validator import permissive

logger = logging.getLogger(__name__)


class ApiError(RuntimeError):
    """The service answered with an error status."""

    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(message)
        self.status_code = status_code


def _dump(model: Any) -> Any:
    return model.model_dump(mode="json", by_alias=True)


def _error_message(resp: httpx.Response) -> str:
    try:
        data = resp.json()
    except ValueError:
        return resp.text or f"HTTP {resp.status_code}"
    if isinstance(data, dict):
        return str(data.get("detail") or data.get("error") or data)
    return str(data)


class ApiClient:
    """Args:
        base_url:  Service root, e.g. "http://localhost:8000".
        timeout:   HTTP timeout in seconds. Turns can take a while.
        transport: Optional httpx transport (e.g. httpx.ASGITransport in tests).
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 180.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._http = httpx.AsyncClient(
            base_url=f"{base_url.rstrip('/')}/api", timeout=timeout, transport=transport,
        )

    async def __aenter__(self) -> ApiClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        resp = await self._http.request(method, path, **kwargs)
        if resp.is_error:
            raise ApiError(resp.status_code, _error_message(resp))
        return resp.json()

    # ------------------------------------------------------------------
    # Engine
    # ------------------------------------------------------------------

    async def simulate_action(self, state: GameState, action: str) -> SimulationResponse:
        try:
            data = await self._request("POST", "/simulate", json={
                "gameState": _dump(state), "playerAction": action,
            })
        except (ApiError, httpx.HTTPError) as e:
            raise SimulationError(str(e)) from e
        return SimulationResponse.model_validate(data)

    async def simulate_skip(
        self, state: GameState, on_progress: ProgressCallback | None = None,
    ) -> SimulationResponse:
        body = {"gameState": _dump(state)}
        if on_progress is None:
            try:
                data = await self._request("POST", "/simulate/skip", json=body)
            except (ApiError, httpx.HTTPError) as e:
                raise SimulationError(str(e)) from e
            return SimulationResponse.model_validate(data)

        try:
            async with self._http.stream(
                "POST", "/simulate/skip", json=body, headers={"Accept": "text/event-stream"},
            ) as resp:
                if resp.is_error:
                    await resp.aread()
                    raise SimulationError(_error_message(resp))
                return await collect_skip_result(iter_sse_payloads(resp.aiter_lines()), on_progress)
        except httpx.HTTPError as e:
            raise SimulationError(str(e)) from e

    # ------------------------------------------------------------------
    # Advisory features
    # ------------------------------------------------------------------

    async def discover(
        self, query: str | None = None, source_url: str | None = None, timeframe: str | None = None,
    ) -> Scenario:
        data = await self._request("POST", "/scenario/discover", json={
            "query": query, "sourceUrl": source_url, "timeframe": timeframe,
        })
        return Scenario.model_validate(data["scenario"])

    async def validate_action(
        self, scenario: Scenario, actor_id: str, action: str, world_state: WorldState,
    ) -> ActionValidation:
        try:
            data = await self._request("POST", "/action/validate", json={
                "scenario": _dump(scenario),
                "playerActorId": actor_id,
                "action": action,
                "currentWorldState": _dump(world_state),
            })
            return ActionValidation.model_validate(data)
        except (ApiError, httpx.HTTPError, ValueError) as e:
            logger.warning("Action validation unavailable, allowing action: %s", e)
            return permissive()

    async def summarize(self, state: GameState) -> BulletinSummary:
        data = await self._request("POST", "/summary", json={"gameState": _dump(state)})
        return BulletinSummary.model_validate(data["summary"])

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    async def create_session(self, owner_id: str, title: str, state: GameState) -> SessionSummary:
        data = await self._request("POST", "/sessions", json={
            "ownerId": owner_id, "title": title, "gameState": _dump(state),
        })
        return SessionSummary.model_validate(data)

    async def update_session(
        self, session_id: str, state: GameState, title: str | None = None,
    ) -> SessionSummary:
        data = await self._request("PUT", f"/sessions/{session_id}", json={
            "gameState": _dump(state), "title": title,
        })
        return SessionSummary.model_validate(data)

    async def get_sessions(self, owner_id: str) -> list[SessionSummary]:
        data = await self._request("GET", "/sessions", params={"ownerId": owner_id})
        return [SessionSummary.model_validate(s) for s in data]

    async def get_session(self, session_id: str) -> StoredSession:
        return StoredSession.model_validate(await self._request("GET", f"/sessions/{session_id}"))

    async def delete_session(self, session_id: str) -> None:
        await self._request("DELETE", f"/sessions/{session_id}")

    async def create_share_link(self, session_id: str) -> str:
        data = await self._request("POST", f"/sessions/{session_id}/share")
        return data["token"]

    async def get_shared_session(self, token: str) -> SharedSession:
        return SharedSession.model_validate(await self._request("GET", f"/shared/{token}"))
