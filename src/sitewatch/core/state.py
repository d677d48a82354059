# src/sitewatch/core/state.py

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ..config import Settings, TaskFileConfig
    from ..connectors.matrix_connector import MatrixConnector
    from ..connectors.notifier import RoutingNotifier
    from ..fetch.request_queue import RequestQueue
    from ..store.cache_store import CacheStore
    from ..store.dedup_cache import DedupCache
    from ..tasks.registry import LoadedTasks, TaskRegistry
    from ..tasks.task_scheduler import TaskScheduler


@dataclass
class AppState:
    """Everything the running process owns. Built once by cli.bootstrap."""

    settings: Settings
    task_config: TaskFileConfig

    store: CacheStore
    cache: DedupCache
    requests: RequestQueue
    notifier: RoutingNotifier

    registry: TaskRegistry
    tasks: LoadedTasks
    scheduler: TaskScheduler

    matrix: MatrixConnector | None = None

    started_at: float = field(default_factory=time.time)
    # Read from the "_system" settings record at boot.
    last_shutdown_at: float | None = None
