"""File-based JSON storage for the service.

Data layout:
  data/
    sessions/
      <id>.json        Stored session (metadata + full game state)
    shares.json        Share tokens -> session id
    config.json        App settings (LLM connections, role assignments, search key)

Sessions: sessions() returns the SessionStore rooted at the data directory;
routes and the MCP server go through it.

Config: get_config() returns defaults merged with stored values; defaults
come from the environment (LLM_PROVIDER_URL, LLM_API_KEY, LLM_PROVIDER_FORMAT,
LLM_MODEL, TAVILY_API_KEY). update_config() applies partial updates:
llm_connections replaced wholesale, roles merged key-by-key, scalars
overwritten.
"""

# Re-export all public symbols so `from backend import storage` keeps working.

from .core import (  # noqa: F401
    data_dir,
    init_storage,
    sessions,
)

from .config import (  # noqa: F401
    DEFAULT_CONNECTION_NAME,
    ROLES,
    get_config,
    update_config,
)
