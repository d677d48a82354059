# tests/conftest.py

from __future__ import annotations

import logging
from pathlib import Path

import pytest

from sitewatch.cli.bootstrap import create_initial_state
from sitewatch.config import DEFAULT_USER_AGENT, Settings, TaskFileConfig
from sitewatch.core.state import AppState
from sitewatch.fetch.request_queue import RequestQueue
from sitewatch.store.cache_store import CacheStore
from sitewatch.store.dedup_cache import DedupCache
from sitewatch.tasks.task_models import TaskContext

from .fakes import FakeFetcher, FakeNotifier


@pytest.fixture()
def settings(tmp_path: Path) -> Settings:
    """
    Settings with every path under tmp_path.

    Built directly rather than from the environment, to keep unit tests
    isolated and deterministic.
    """
    return Settings(
        app_name="sitewatch-test",
        log_level="DEBUG",
        console_enabled=False,
        matrix_enabled=False,
        data_dir=tmp_path,
        log_dir=tmp_path / "logs",
        cache_db_path=tmp_path / "cache" / "db.sqlite",
        config_path=tmp_path / "config.json",
        cookie_file=None,
        request_retries=3,
        request_poll_interval=0.0,
        request_queue_size=16,
        request_timeout=5.0,
        user_agent=DEFAULT_USER_AGENT,
        matrix_homeserver="",
        matrix_user_id="",
        matrix_password="",
        matrix_store_path=tmp_path / "matrix_store",
        matrix_rooms=[],
    )


@pytest.fixture()
def store(tmp_path: Path) -> CacheStore:
    return CacheStore(tmp_path / "cache" / "db.sqlite")


@pytest.fixture()
def cache(store: CacheStore) -> DedupCache:
    return DedupCache(store)


@pytest.fixture()
def fetcher() -> FakeFetcher:
    return FakeFetcher()


@pytest.fixture()
def notifier() -> FakeNotifier:
    return FakeNotifier()


@pytest.fixture()
def task_config() -> TaskFileConfig:
    return TaskFileConfig.model_validate(
        {
            "system": {"log_channels": [], "default_targets": ["!default:example.org"]},
            "tasks": {"pagewatch": {"urls": ["https://example.org/a"], "targets": ["!room:example.org"]}},
        }
    )


@pytest.fixture()
def make_context(cache: DedupCache, fetcher: FakeFetcher, notifier: FakeNotifier):
    """
    Factory for TaskContext wired to the fake fetcher/notifier and a real
    SQLite-backed cache. The request queue needs a running loop, so build
    contexts inside the test coroutine.
    """

    def _make(slug: str = "pagewatch", task_config: dict | None = None) -> TaskContext:
        requests = RequestQueue(fetcher, retries=2, poll_interval=0.0)
        return TaskContext(
            slug=slug,
            task_config=dict(task_config or {}),
            requests=requests,
            cache=cache,
            notifier=notifier,
            default_targets=["!default:example.org"],
            logger=logging.getLogger(f"sitewatch.tasks.{slug}"),
        )

    return _make


@pytest.fixture()
def state(settings: Settings, task_config: TaskFileConfig, fetcher: FakeFetcher) -> AppState:
    """AppState from the real composition root, with a fake fetcher and no Matrix."""
    return create_initial_state(settings=settings, task_config=task_config, fetcher=fetcher, run_on_start=False)
