"""Named prompt templates and ``{{PLACEHOLDER}}`` substitution.

Templates live as plain text files in ``geosim/templates/<name>.txt``.
Substitution is a literal find/replace: every ``{{KEY}}`` occurrence of each
supplied field is replaced, and placeholders without a field are left
verbatim. The resolver does no defaulting; each call site passes a value for
every field it wants filled.
"""

from collections.abc import Mapping
from pathlib import Path

TEMPLATES_DIR = Path(__file__).parent / "templates"

_cache: dict[Path, str] = {}


class TemplateNotFound(Exception):
    """Raised when a named prompt template does not exist."""


def resolve(name: str, templates_dir: Path | None = None) -> str:
    """Load a template by name. Files are cached after the first read."""
    path = (templates_dir or TEMPLATES_DIR) / f"{name}.txt"
    text = _cache.get(path)
    if text is None:
        if not path.is_file():
            raise TemplateNotFound(f"Prompt template '{name}' not found")
        text = path.read_text(encoding="utf-8")
        _cache[path] = text
    return text


def substitute(template: str, fields: Mapping[str, object]) -> str:
    for key, value in fields.items():
        template = template.replace("{{" + key + "}}", str(value))
    return template


def render(name: str, fields: Mapping[str, object]) -> str:
    """resolve() + substitute() in one call."""
    return substitute(resolve(name), fields)
