# tests/test_registry.py

from __future__ import annotations

import logging

import pytest

from sitewatch.errors import ConfigError
from sitewatch.tasks.registry import BUILTIN_TASKS, TaskRegistry, default_registry
from sitewatch.tasks.task_models import TaskDescriptor


def _factory(slug: str):
    def make() -> TaskDescriptor:
        return TaskDescriptor(slug=slug, name=slug.title())

    return make


def _registry(*slugs: str) -> TaskRegistry:
    return TaskRegistry({s: _factory(s) for s in slugs})


def test_load_splits_by_config_and_keeps_order() -> None:
    reg = _registry("a", "b", "c", "d")

    loaded = reg.load(None, ["d", "b"])

    assert [t.slug for t in loaded.with_config] == ["b", "d"]
    assert [t.slug for t in loaded.without_config] == ["a", "c"]


def test_load_respects_task_sources_and_warns_on_unknown(caplog: pytest.LogCaptureFixture) -> None:
    reg = _registry("a", "b")

    with caplog.at_level(logging.WARNING, logger="sitewatch.tasks.registry"):
        loaded = reg.load(["b", "ghost", "a"], ["a", "b", "orphan"])

    assert [t.slug for t in loaded.with_config] == ["b", "a"]
    assert loaded.without_config == ()
    messages = " ".join(r.getMessage() for r in caplog.records)
    assert "'ghost'" in messages
    assert "'orphan'" in messages


def test_only_restricts_to_one_configured_task() -> None:
    loaded = _registry("a", "b").load(None, ["a", "b"])

    single = loaded.only("b")

    assert [t.slug for t in single.with_config] == ["b"]
    assert single.without_config == loaded.without_config


def test_only_unknown_or_unconfigured_slug_is_config_error() -> None:
    loaded = _registry("a", "b").load(None, ["a"])

    with pytest.raises(ConfigError):
        loaded.only("b")
    with pytest.raises(ConfigError):
        loaded.only("zzz")


def test_register_rejects_duplicates_and_build_is_cached() -> None:
    calls = []

    def make() -> TaskDescriptor:
        calls.append(1)
        return TaskDescriptor(slug="a")

    reg = TaskRegistry()
    reg.register("a", make)
    with pytest.raises(ValueError):
        reg.register("a", make)

    assert reg.build("a") is reg.build("a")
    assert len(calls) == 1
    assert reg.get("missing") is None


def test_factory_slug_must_match_registration() -> None:
    reg = TaskRegistry({"a": _factory("b")})
    with pytest.raises(ValueError):
        reg.build("a")


def test_default_registry_has_builtin_templates() -> None:
    reg = default_registry()

    assert reg.slugs() == list(BUILTIN_TASKS)
    templates = reg.config_templates()
    assert "pagewatch" in templates
    assert templates["pagewatch"]["urls"] == []
