"""Resolve the LLM used for each kind of model call.

Each role (simulation, discovery, advisor) can be assigned a named connection
in Settings. An unassigned role uses the connection named "default", and if
there is none, the first configured connection.

set_llm() replaces resolution with a fixed LLM (used in tests).
"""

from typing import Any

from backend import storage
from geosim.llm import LLM, HttpLLM

_override: LLM | None = None


def set_llm(llm: LLM | None) -> None:
    """Use `llm` for every role instead of the configured connections."""
    global _override
    _override = llm


def resolve_connection(config: dict[str, Any], role: str) -> dict[str, Any] | None:
    connections = config.get("llm_connections") or []
    if not connections:
        return None
    wanted = config.get("roles", {}).get(role) or storage.DEFAULT_CONNECTION_NAME
    for conn in connections:
        if conn.get("name") == wanted:
            return conn
    if wanted != storage.DEFAULT_CONNECTION_NAME:
        return None
    return connections[0]


def get_llm(role: str) -> LLM | None:
    """Return the LLM for `role`, or None when nothing is configured."""
    if _override is not None:
        return _override
    conn = resolve_connection(storage.get_config(), role)
    if not conn or not conn.get("provider_url"):
        return None
    return HttpLLM.from_connection(conn)
