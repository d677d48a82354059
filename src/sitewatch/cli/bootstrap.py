# src/sitewatch/cli/bootstrap.py

"""
CLI bootstrap helpers.

This module is the "composition root":
- loads settings and the task config file,
- opens the cache store and builds the request queue,
- wires the registry, scheduler and notifiers into AppState,
- records the shutdown time so the next boot can report time since last run.

ConfigError and StoreOpenError propagate to cli.main, which exits with status 1.
"""

from __future__ import annotations

import logging
import time

from ..config import Settings, TaskFileConfig, get_settings, load_task_config
from ..connectors.console_connector import ConsoleNotifier
from ..connectors.notifier import RoutingNotifier
from ..core.ports import Fetcher
from ..core.state import AppState
from ..fetch.http_fetcher import HttpFetcher, try_load_cookie_file
from ..fetch.request_queue import RequestQueue
from ..store.cache_store import CacheStore
from ..store.dedup_cache import DedupCache
from ..tasks.registry import TaskRegistry, default_registry
from ..tasks.task_models import TaskContext, TaskDescriptor
from ..tasks.task_scheduler import TaskScheduler
from .commands import format_duration

logger = logging.getLogger(__name__)

SYSTEM_SETTINGS_ID = "_system"


def _ensure_local_dirs(settings: Settings) -> None:
    settings.data_dir.mkdir(parents=True, exist_ok=True)


def create_initial_state(
    *,
    settings: Settings | None = None,
    task_config: TaskFileConfig | None = None,
    registry: TaskRegistry | None = None,
    fetcher: Fetcher | None = None,
    only_task: str | None = None,
    run_on_start: bool = True,
) -> AppState:
    """
    Build AppState. Everything is injectable so tests can swap the fetcher,
    the registry or the config without touching the environment.
    """
    if settings is None:
        settings = get_settings()

    _ensure_local_dirs(settings)

    if task_config is None:
        task_config = load_task_config(settings.config_path)

    store = CacheStore(settings.cache_db_path)
    cache = DedupCache(store)

    if fetcher is None:
        fetcher = HttpFetcher(
            timeout_seconds=settings.request_timeout,
            user_agent=settings.user_agent,
            cookies=try_load_cookie_file(settings.cookie_file),
        )
    requests = RequestQueue(
        fetcher,
        retries=settings.request_retries,
        poll_interval=settings.request_poll_interval,
        max_pending=settings.request_queue_size,
    )

    if registry is None:
        registry = default_registry()
    loaded = registry.load(None, task_config.tasks.keys())
    if only_task:
        loaded = loaded.only(only_task)

    notifier = RoutingNotifier(ConsoleNotifier())
    default_targets = list(task_config.system.default_targets)

    def make_context(task: TaskDescriptor) -> TaskContext:
        return TaskContext(
            slug=task.slug,
            task_config=dict(task_config.task_config(task.slug) or {}),
            requests=requests,
            cache=cache,
            notifier=notifier,
            default_targets=default_targets,
            logger=logging.getLogger(f"sitewatch.tasks.{task.slug}"),
        )

    scheduler = TaskScheduler(loaded.with_config, make_context, run_on_start=run_on_start)

    return AppState(
        settings=settings,
        task_config=task_config,
        store=store,
        cache=cache,
        requests=requests,
        notifier=notifier,
        registry=registry,
        tasks=loaded,
        scheduler=scheduler,
    )


async def load_last_shutdown(state: AppState) -> float | None:
    data = await state.cache.get_settings(SYSTEM_SETTINGS_ID)
    raw = data.get("shutdown_time")
    state.last_shutdown_at = float(raw) if isinstance(raw, (int, float)) else None
    return state.last_shutdown_at


async def record_shutdown(state: AppState) -> None:
    data = await state.cache.get_settings(SYSTEM_SETTINGS_ID)
    data["shutdown_time"] = time.time()
    await state.cache.save_settings(SYSTEM_SETTINGS_ID, data)


async def notify_log_channels(state: AppState, text: str) -> None:
    for channel in state.task_config.system.log_channels:
        await state.notifier.deliver(channel, text)


def log_boot_summary(state: AppState) -> str:
    """Log (and return) the boot report: loaded tasks, ignored tasks, time since last run."""
    loaded = ", ".join(t.slug for t in state.tasks.with_config) or "none"
    logger.info("Loaded %d task(s): %s", len(state.tasks.with_config), loaded)

    if state.tasks.without_config:
        logger.warning(
            "Ignored %d task(s) without a config section: %s",
            len(state.tasks.without_config),
            ", ".join(t.slug for t in state.tasks.without_config),
        )

    if state.last_shutdown_at is None:
        since = "first run"
        note = since
    else:
        since = format_duration(state.started_at - state.last_shutdown_at)
        note = f"{since} since last run"
    logger.info("Time since last run: %s", since)

    return f"{state.settings.app_name} started with {len(state.tasks.with_config)} task(s) ({note})."


async def start_services(state: AppState) -> None:
    """Start Matrix (if enabled), the request queue and the scheduler."""
    await load_last_shutdown(state)
    summary = log_boot_summary(state)

    if state.settings.matrix_enabled:
        from ..connectors.matrix_connector import MatrixConnector

        connector = MatrixConnector(state)
        if await connector.start():
            state.matrix = connector
            state.notifier.attach_matrix(connector)

    state.requests.start()
    state.scheduler.start()
    await notify_log_channels(state, summary)


async def shutdown(state: AppState) -> None:
    """Stop everything in reverse order. Each step runs even if an earlier one failed."""
    await state.scheduler.stop()

    try:
        uptime = format_duration(time.time() - state.started_at)
        await notify_log_channels(state, f"{state.settings.app_name} is shutting down after {uptime} uptime.")
        await record_shutdown(state)
    except Exception:
        logger.exception("Failed to record shutdown time.")

    try:
        await state.requests.aclose()
    except Exception:
        logger.exception("Failed to close the request queue.")

    if state.matrix is not None:
        state.notifier.attach_matrix(None)
        try:
            await state.matrix.aclose()
        except Exception:
            logger.exception("Failed to close the Matrix connector.")
        state.matrix = None

    state.store.close()
