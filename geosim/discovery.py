"""Scenario discovery: turn a free-text query or a source URL into a Scenario.

    URL flow:    extract -> (search) -> generate
    Query flow:  (search) -> generate

Extraction tries three strategies in order and returns the first that yields
enough text:

  1. reader proxy      GET https://r.jina.ai/<url>        > 100 chars
  2. search extract    POST https://api.tavily.com/extract > 100 chars
                       (only with a search API key)
  3. direct fetch      browser-like GET, HTML stripped    > 200 chars

When all three fail, ExtractionError carries a code chosen from what went
wrong (page not found, domain blocked, timeout, generic failure).

Search runs only when a search API key is configured. A dedicated model call
derives up to 3 queries, the queries fan out in parallel, and the results are
folded into a bounded context block. Search is best-effort: a failing query
derivation or a failing individual search never fails discovery.
"""

from __future__ import annotations

import asyncio
import html as html_lib
import json
import logging
import re
import uuid
from dataclasses import dataclass, field
from typing import Any

import httpx
from pydantic import ValidationError

from geosim import prompts
from geosim.engine import strip_code_fences
from geosim.llm import LLM, LLMError
from geosim.models import Scenario, actor_color

logger = logging.getLogger(__name__)

READER_URL = "https://r.jina.ai/"
TAVILY_EXTRACT_URL = "https://api.tavily.com/extract"
TAVILY_SEARCH_URL = "https://api.tavily.com/search"

FETCH_TIMEOUT = 15.0
MIN_EXTRACTED_CHARS = 100
MIN_DIRECT_CHARS = 200
MAX_SEARCH_QUERIES = 3
MAX_SEARCH_CONTEXT = 6000
MAX_CONTENT_CHARS = 8000
QUERY_SOURCE_CHARS = 2000

READER_ERROR_SIGNATURES = ("SecurityCompromiseError", '"code":4')
DOMAIN_BLOCKED = "Domain temporarily blocked"

BROWSER_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    ),
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.5",
    "DNT": "1",
    "Upgrade-Insecure-Requests": "1",
}


class ExtractionError(Exception):
    """Every extraction strategy failed for a URL."""

    MESSAGES = {
        "PAGE_NOT_FOUND": (
            'The URL returned a "Page Not Found" error. '
            "Please check that the URL is complete and valid."
        ),
        "DOMAIN_BLOCKED": (
            "This website is temporarily unavailable for content extraction. "
            "Please try a different URL or try again later."
        ),
        "TIMEOUT": (
            "The request timed out. The website may be slow or unavailable. "
            "Please try again."
        ),
        "EXTRACTION_FAILED": (
            "Failed to extract content from the provided URL. "
            "Please check the URL and try again."
        ),
    }

    def __init__(self, code: str, errors: list[str] | None = None) -> None:
        super().__init__(code)
        self.code = code
        self.errors = errors or []

    @property
    def user_message(self) -> str:
        return self.MESSAGES.get(self.code, self.MESSAGES["EXTRACTION_FAILED"])


class DiscoveryError(RuntimeError):
    """Scenario generation failed (model call, JSON parse or validation)."""

    code = "DISCOVERY_FAILED"


@dataclass
class Extracted:
    content: str
    source: str
    title: str | None = None


@dataclass
class _Attempts:
    errors: list[str] = field(default_factory=list)
    direct_status: int | None = None
    page_title: str | None = None

    def failure_code(self) -> str:
        title = (self.page_title or "").lower()
        if self.direct_status == 404 or "not found" in title or "404" in title:
            return "PAGE_NOT_FOUND"
        if any(DOMAIN_BLOCKED in e for e in self.errors):
            return "DOMAIN_BLOCKED"
        if any("timeout" in e.lower() or "abort" in e.lower() for e in self.errors):
            return "TIMEOUT"
        return "EXTRACTION_FAILED"


# ---------------------------------------------------------------------------
# HTML to text
# ---------------------------------------------------------------------------

_TITLE_RE = re.compile(r"<title[^>]*>([^<]+)</title>", re.IGNORECASE)
_DROP_RES = [
    re.compile(rf"<{tag}[^>]*>[\s\S]*?</{tag}>", re.IGNORECASE)
    for tag in ("script", "style", "nav", "footer", "header")
]
_ARTICLE_RE = re.compile(r"<article[^>]*>([\s\S]*?)</article>", re.IGNORECASE)
_MAIN_RE = re.compile(r"<main[^>]*>([\s\S]*?)</main>", re.IGNORECASE)
_TAG_RE = re.compile(r"<[^>]+>")
_SPACE_RE = re.compile(r"\s+")


def extract_text_from_html(html: str) -> tuple[str, str | None]:
    """Return (text, title) for an HTML page.

    Drops script/style/nav/footer/header blocks, narrows to <article> or
    <main> when present, strips tags, decodes entities, collapses whitespace.
    """
    title_match = _TITLE_RE.search(html)
    title = title_match.group(1).strip() if title_match else None

    content = html
    for pattern in _DROP_RES:
        content = pattern.sub("", content)

    narrowed = _ARTICLE_RE.search(content) or _MAIN_RE.search(content)
    if narrowed:
        content = narrowed.group(1)

    content = _TAG_RE.sub(" ", content)
    content = html_lib.unescape(content).replace("\xa0", " ")
    return _SPACE_RE.sub(" ", content).strip(), title


# ---------------------------------------------------------------------------
# Scenario post-processing
# ---------------------------------------------------------------------------

def normalize_scenario(data: Any) -> Scenario:
    """Validate model output and backfill ids and colors.

    Raises DiscoveryError when the output is not a valid scenario.
    """
    if not isinstance(data, dict):
        raise DiscoveryError("Scenario output is not a JSON object")
    try:
        scenario = Scenario.model_validate(data)
    except ValidationError as e:
        raise DiscoveryError(f"Scenario output failed validation: {e}") from e

    actors = [
        actor.model_copy(update={
            "id": actor.id or f"actor-{i}",
            "color": actor.color or actor_color(i),
        })
        for i, actor in enumerate(scenario.actors)
    ]
    milestones = [
        m.model_copy(update={"id": m.id or f"milestone-{i}"})
        for i, m in enumerate(scenario.milestones)
    ]
    return scenario.model_copy(update={
        "id": scenario.id or str(uuid.uuid4()),
        "actors": actors,
        "milestones": milestones,
    })


def parse_queries(text: str) -> list[str]:
    """Read `{"queries": [...]}` where items are strings or `{"query": ...}`."""
    data = json.loads(strip_code_fences(text) or "{}")
    if not isinstance(data, dict):
        return []
    queries = []
    for item in data.get("queries") or []:
        if isinstance(item, str):
            queries.append(item)
        elif isinstance(item, dict) and isinstance(item.get("query"), str):
            queries.append(item["query"])
    return [q for q in queries if q.strip()][:MAX_SEARCH_QUERIES]


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------

class ScenarioDiscovery:
    """Discovery pipeline bound to an LLM and optional search credentials.

    Args:
        llm:            Model used for query derivation and scenario generation.
        search_api_key: Tavily API key. Empty disables search and search-extract.
        reader_url:     Prefix of the reader proxy.
        timeout:        Per-fetch timeout in seconds.
        transport:      Optional httpx transport, for tests.
    """

    def __init__(
        self,
        llm: LLM,
        search_api_key: str = "",
        reader_url: str = READER_URL,
        timeout: float = FETCH_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._llm = llm
        self._search_api_key = search_api_key
        self._reader_url = reader_url
        self._timeout = timeout
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self._timeout, transport=self._transport, follow_redirects=True,
        )

    # -- extraction ------------------------------------------------------

    async def _try_reader(self, client: httpx.AsyncClient, url: str, attempts: _Attempts) -> Extracted | None:
        try:
            resp = await client.get(
                f"{self._reader_url}{url}",
                headers={"Accept": "text/plain", "X-No-Cache": "true"},
            )
        except httpx.TimeoutException:
            attempts.errors.append("Reader: timeout")
            return None
        except httpx.HTTPError as e:
            attempts.errors.append(f"Reader: {e}")
            return None

        if not resp.is_success:
            attempts.errors.append(f"Reader: HTTP {resp.status_code}")
            return None
        content = resp.text
        if any(sig in content for sig in READER_ERROR_SIGNATURES):
            attempts.errors.append(f"Reader: {DOMAIN_BLOCKED}")
            return None
        if len(content) <= MIN_EXTRACTED_CHARS:
            attempts.errors.append("Reader: Content too short")
            return None
        return Extracted(content=content, source="reader")

    async def _try_search_extract(self, client: httpx.AsyncClient, url: str, attempts: _Attempts) -> Extracted | None:
        try:
            resp = await client.post(
                TAVILY_EXTRACT_URL, json={"api_key": self._search_api_key, "urls": [url]},
            )
        except httpx.TimeoutException:
            attempts.errors.append("Search extract: timeout")
            return None
        except httpx.HTTPError as e:
            attempts.errors.append(f"Search extract: {e}")
            return None

        if not resp.is_success:
            attempts.errors.append(f"Search extract: HTTP {resp.status_code}")
            return None
        try:
            results = resp.json().get("results") or []
        except (ValueError, AttributeError):
            results = []
        if results:
            result = results[0]
            content = result.get("raw_content") or result.get("content") or ""
            if len(content) > MIN_EXTRACTED_CHARS:
                return Extracted(content=content, source="search", title=result.get("title"))
        attempts.errors.append("Search extract: Empty content returned")
        return None

    async def _try_direct(self, client: httpx.AsyncClient, url: str, attempts: _Attempts) -> Extracted | None:
        try:
            resp = await client.get(url, headers=BROWSER_HEADERS)
        except httpx.TimeoutException:
            attempts.errors.append("Direct: timeout")
            return None
        except httpx.HTTPError as e:
            attempts.errors.append(f"Direct: {e}")
            return None

        attempts.direct_status = resp.status_code
        if not resp.is_success:
            attempts.errors.append(f"Direct: HTTP {resp.status_code}")
            return None

        content, title = extract_text_from_html(resp.text)
        attempts.page_title = title
        lowered = (title or "").lower()
        if "not found" in lowered or "404" in lowered or "error" in lowered:
            attempts.errors.append("Direct: Page not found (404)")
            return None
        if len(content) <= MIN_DIRECT_CHARS:
            attempts.errors.append("Direct: Content too short after extraction")
            return None
        return Extracted(content=content, source="direct", title=title)

    async def extract(self, url: str) -> Extracted:
        """Extract readable text from `url`, or raise ExtractionError."""
        attempts = _Attempts()
        async with self._client() as client:
            extracted = await self._try_reader(client, url, attempts)
            if extracted is None and self._search_api_key:
                extracted = await self._try_search_extract(client, url, attempts)
            if extracted is None:
                extracted = await self._try_direct(client, url, attempts)

        if extracted is None:
            code = attempts.failure_code()
            logger.error("All extraction methods failed for %s (%s): %s", url, code, attempts.errors)
            raise ExtractionError(code, attempts.errors)
        logger.info("Extracted %d chars from %s via %s", len(extracted.content), url, extracted.source)
        return extracted

    # -- search ----------------------------------------------------------

    async def derive_queries(self, query: str | None = None, content: str | None = None) -> list[str]:
        """Ask the model for search queries. Returns [] on any failure."""
        if content:
            prompt = prompts.render("content-search-queries", {"CONTENT": content[:QUERY_SOURCE_CHARS]})
        else:
            template = prompts.render("web-search-query", {"USER_QUERY": query or ""})
            prompt = f"{template}\n\nGenerate search queries for: {query}"
        try:
            return parse_queries(await self._llm("search_queries", prompt))
        except (LLMError, ValueError) as e:
            logger.warning("Search query derivation failed, skipping search: %s", e)
            return []

    async def _search_one(self, client: httpx.AsyncClient, query: str) -> dict | None:
        try:
            resp = await client.post(TAVILY_SEARCH_URL, json={
                "api_key": self._search_api_key,
                "query": query,
                "search_depth": "basic",
                "max_results": 3,
            })
            resp.raise_for_status()
            return resp.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("Search failed for %r: %s", query, e)
            return None

    async def search(self, queries: list[str]) -> str:
        """Run up to 3 searches in parallel and fold them into one context block."""
        queries = queries[:MAX_SEARCH_QUERIES]
        if not queries or not self._search_api_key:
            return ""
        async with self._client() as client:
            results = await asyncio.gather(*(self._search_one(client, q) for q in queries))

        blocks = []
        for result in results:
            if not isinstance(result, dict):
                continue
            lines = [
                f"{r.get('title', '')}: {r.get('content', '')}"
                for r in result.get("results") or []
                if isinstance(r, dict)
            ]
            if lines:
                blocks.append("\n".join(lines))
        return "\n\n".join(blocks)[:MAX_SEARCH_CONTEXT]

    # -- generation ------------------------------------------------------

    async def discover(
        self,
        query: str | None = None,
        source_url: str | None = None,
        timeframe: str | None = None,
    ) -> Scenario:
        """Run the full pipeline.

        Raises ValueError when neither input is given, ExtractionError when a
        URL cannot be read, DiscoveryError when generation fails.
        """
        if not query and not source_url:
            raise ValueError("Either query or sourceUrl is required")

        content = ""
        if source_url:
            content = (await self.extract(source_url)).content

        search_context = ""
        if self._search_api_key:
            queries = await self.derive_queries(query=query, content=content or None)
            search_context = await self.search(queries)

        if source_url:
            template = prompts.resolve("url-scenario-discovery")
            parts = [f"## EXTRACTED CONTENT FROM URL\nSource URL: {source_url}\n\n{content[:MAX_CONTENT_CHARS]}"]
            if search_context:
                parts.append(f"## ADDITIONAL CONTEXT FROM WEB SEARCH\n{search_context}")
            if timeframe:
                parts.append(f"Timeframe: {timeframe}")
            parts.append(
                "Based on the above URL content and additional context, "
                "create a comprehensive geopolitical scenario."
            )
            user_message = "\n\n".join(parts)
        else:
            template = prompts.resolve("scenario-discovery")
            suffix = f" (timeframe: {timeframe})" if timeframe else ""
            user_message = f'Analyze this scenario: "{query}"{suffix}'
            if search_context:
                user_message += f"\n\nHere is current information from web search:\n{search_context}"

        try:
            text = await self._llm("scenario_discovery", f"{template}\n\n{user_message}")
        except LLMError as e:
            raise DiscoveryError(str(e)) from e

        cleaned = strip_code_fences(text)
        if not cleaned:
            raise DiscoveryError("Model returned an empty response")
        try:
            data = json.loads(cleaned)
        except json.JSONDecodeError as e:
            raise DiscoveryError(f"Model returned invalid JSON: {e}") from e
        scenario = normalize_scenario(data)
        logger.info("Discovered scenario %r with %d actors", scenario.title, len(scenario.actors))
        return scenario
