"""Tests for prompt templates: resolution, caching and placeholder substitution."""

import pytest

from geosim import prompts
from geosim.prompts import TemplateNotFound, render, resolve, substitute


# ── substitute ───────────────────────────────────────────────


def test_substitute_replaces_every_occurrence():
    result = substitute("{{NAME}} meets {{NAME}}", {"NAME": "Ada"})
    assert result == "Ada meets Ada"


def test_substitute_leaves_unknown_placeholders():
    result = substitute("{{A}} and {{B}}", {"A": "x"})
    assert result == "x and {{B}}"


def test_substitute_stringifies_values():
    assert substitute("Turn {{N}}", {"N": 4}) == "Turn 4"


def test_substitute_is_literal():
    assert substitute("{{A}}", {"A": "{{B}}", "B": "no"}) == "no"
    assert substitute("{{A}}", {"B": "no", "A": "{{B}}"}) == "{{B}}"


# ── resolve / render ─────────────────────────────────────────


def test_resolve_bundled_templates():
    for name in (
        "simulate-turn", "skip-turn", "scenario-discovery", "url-scenario-discovery",
        "web-search-query", "content-search-queries", "action-validation", "generate-summary",
    ):
        assert resolve(name).strip()


def test_resolve_unknown_template():
    with pytest.raises(TemplateNotFound):
        resolve("does-not-exist")


def test_resolve_from_custom_dir(tmp_path):
    (tmp_path / "greeting.txt").write_text("Hello {{WHO}}", encoding="utf-8")
    assert resolve("greeting", tmp_path) == "Hello {{WHO}}"


def test_resolve_caches(tmp_path):
    path = tmp_path / "cached.txt"
    path.write_text("first", encoding="utf-8")
    assert resolve("cached", tmp_path) == "first"
    path.write_text("second", encoding="utf-8")
    assert resolve("cached", tmp_path) == "first"
    prompts._cache.pop(path)


def test_render_fills_template():
    result = render("web-search-query", {"USER_QUERY": "strait crisis"})
    assert "strait crisis" in result
    assert "{{USER_QUERY}}" not in result
