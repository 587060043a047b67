"""LLM client: HTTP connection to a text-completion backend.

The engine injects an LLM object matching the protocol:

    async def __call__(self, stage: str, prompt: str) -> str: ...
    def stream(self, stage: str, prompt: str) -> AsyncIterator[str]: ...

`stage` identifies which step is calling (e.g. "simulate_turn",
"skip_turn", "scenario_discovery"). The implementation may use it for logging
or routing; the simplest implementation ignores it. Concatenating everything
`stream()` yields must give the same text `__call__` would have returned.

HttpLLM is the only production implementation. Tests use StubLLM (defined in
the test helpers) instead.
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from typing import Any, Literal, Protocol

import httpx

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Protocol: every LLM implementation must match this signature
# ---------------------------------------------------------------------------

class LLM(Protocol):
    async def __call__(self, stage: str, prompt: str) -> str: ...

    def stream(self, stage: str, prompt: str) -> AsyncIterator[str]: ...


# ---------------------------------------------------------------------------
# HttpLLM: connects to a real backend
# ---------------------------------------------------------------------------

ProviderFormat = Literal["koboldcpp", "openai"]


class HttpLLM:
    """Async HTTP client for text-completion backends.

    Supported formats:
      "koboldcpp" : POST /api/v1/generate  {"prompt": ...}
                     Response: {"results": [{"text": "..."}]}
                     Streaming: POST /api/extra/generate/stream,
                     SSE lines `data: {"token": "..."}`
      "openai"    : POST /v1/completions   {"model": ..., "prompt": ...}
                     Response: {"choices": [{"text": "..."}]}
                     Streaming: same URL with "stream": true,
                     SSE lines `data: {"choices": [{"text": "..."}]}`,
                     terminated by `data: [DONE]`

    Args:
        provider_url:    Base URL of the backend, e.g. "http://localhost:5001".
        api_key:         Bearer token, or empty string if not required.
        provider_format: Wire format to use. Defaults to "koboldcpp".
        model:           Model identifier, used only by the openai format.
        max_tokens:      Completion length limit sent with every request.
        timeout:         HTTP timeout in seconds. Defaults to 120.
        transport:       Optional httpx transport, for tests.
    """

    def __init__(
        self,
        provider_url: str,
        api_key: str = "",
        provider_format: ProviderFormat = "koboldcpp",
        model: str = "",
        max_tokens: int = 4096,
        timeout: float = 120.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = provider_url.rstrip("/")
        self._api_key = api_key
        self._format = provider_format
        self._model = model
        self._max_tokens = max_tokens
        self._timeout = timeout
        self._transport = transport

    @classmethod
    def from_connection(cls, connection: dict[str, Any]) -> HttpLLM:
        """Build a client from a stored connection record (see backend.config)."""
        return cls(
            provider_url=connection["provider_url"],
            api_key=connection.get("api_key", ""),
            provider_format=connection.get("provider_format", "koboldcpp"),
            model=connection.get("model", ""),
            max_tokens=connection.get("max_tokens", 4096),
        )

    def _headers(self) -> dict[str, str]:
        headers: dict[str, str] = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    def _build_request(self, prompt: str, stream: bool = False) -> tuple[str, dict]:
        """Return (url, body) for the configured format."""
        if self._format == "openai":
            url = f"{self._base_url}/v1/completions"
            body: dict = {"prompt": prompt, "max_tokens": self._max_tokens}
            if self._model:
                body["model"] = self._model
            if stream:
                body["stream"] = True
            return url, body

        # koboldcpp (default)
        path = "/api/extra/generate/stream" if stream else "/api/v1/generate"
        return f"{self._base_url}{path}", {"prompt": prompt, "max_length": self._max_tokens}

    def _parse_response(self, data: Any) -> str:
        """Extract the completion text from the response body."""
        if self._format == "openai":
            key, backend = "choices", "OpenAI-compatible"
        else:
            key, backend = "results", "KoboldCpp"
        items = data.get(key) if isinstance(data, dict) else None
        first = items[0] if isinstance(items, list) and items else None
        if not isinstance(first, dict) or not isinstance(first.get("text"), str):
            raise LLMError(f"Unexpected response format from {backend} backend")
        return first["text"]

    def _parse_stream_line(self, line: str) -> str | None:
        """Return the text carried by one SSE line, or None for non-data lines."""
        if not line.startswith("data:"):
            return None
        payload = line[5:].strip()
        if not payload or payload == "[DONE]":
            return None
        try:
            data = json.loads(payload)
        except json.JSONDecodeError as e:
            raise LLMError(f"Malformed stream chunk from LLM backend: {payload[:80]!r}") from e
        if not isinstance(data, dict):
            raise LLMError(f"Malformed stream chunk from LLM backend: {payload[:80]!r}")
        if self._format == "openai":
            choices = data.get("choices")
            first = choices[0] if isinstance(choices, list) and choices else {}
            text = first.get("text") if isinstance(first, dict) else None
        else:
            text = data.get("token")
        return text if isinstance(text, str) and text else None

    async def __call__(self, stage: str, prompt: str) -> str:
        url, body = self._build_request(prompt)
        logger.debug("llm call stage=%s url=%s prompt_len=%d", stage, url, len(prompt))

        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                resp = await client.post(url, json=body, headers=self._headers())
                resp.raise_for_status()
        except httpx.ConnectError as e:
            raise LLMError(f"Cannot connect to LLM backend at {self._base_url}") from e
        except httpx.HTTPStatusError as e:
            raise LLMError(
                f"LLM backend returned HTTP {e.response.status_code}"
            ) from e
        except httpx.TimeoutException as e:
            raise LLMError(f"LLM backend timed out after {self._timeout}s") from e
        except httpx.HTTPError as e:
            raise LLMError(f"LLM backend request failed: {e!r}") from e

        try:
            data = resp.json()
        except ValueError as e:
            raise LLMError("LLM backend returned a non-JSON body") from e
        text = self._parse_response(data)
        logger.debug("llm response stage=%s len=%d", stage, len(text))
        return text

    async def stream(self, stage: str, prompt: str) -> AsyncIterator[str]:
        url, body = self._build_request(prompt, stream=True)
        logger.debug("llm stream stage=%s url=%s prompt_len=%d", stage, url, len(prompt))

        received = 0
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                async with client.stream("POST", url, json=body, headers=self._headers()) as resp:
                    resp.raise_for_status()
                    async for line in resp.aiter_lines():
                        text = self._parse_stream_line(line)
                        if text:
                            received += len(text)
                            yield text
        except httpx.ConnectError as e:
            raise LLMError(f"Cannot connect to LLM backend at {self._base_url}") from e
        except httpx.HTTPStatusError as e:
            raise LLMError(
                f"LLM backend returned HTTP {e.response.status_code}"
            ) from e
        except httpx.TimeoutException as e:
            raise LLMError(f"LLM backend timed out after {self._timeout}s") from e
        except httpx.HTTPError as e:
            raise LLMError(f"LLM backend request failed: {e!r}") from e

        logger.debug("llm stream done stage=%s len=%d", stage, received)


# ---------------------------------------------------------------------------
# LLMError: raised by HttpLLM for all connection and protocol failures
# ---------------------------------------------------------------------------

class LLMError(RuntimeError):
    """Raised when the LLM backend cannot be reached or returns an error."""
