# src/sitewatch/tasks/task_models.py

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from ..core.ports import Notifier
    from ..fetch.request_queue import RequestQueue
    from ..store.dedup_cache import DedupCache


@dataclass(slots=True)
class TaskContext:
    """
    Everything an action may touch. Network goes through `requests`,
    persistence through `cache`; actions never open sockets or the DB directly.
    """

    slug: str
    task_config: dict[str, Any]
    requests: RequestQueue
    cache: DedupCache
    notifier: Notifier
    default_targets: list[str] = field(default_factory=list)
    logger: logging.Logger = field(default_factory=lambda: logging.getLogger("sitewatch.tasks"))

    def targets(self) -> list[str]:
        """Destinations from the task config, falling back to the system defaults."""
        raw = self.task_config.get("targets") or self.default_targets
        return [str(t) for t in raw if str(t).strip()]


ScheduledFn = Callable[[TaskContext], Awaitable[Any]]
TriggerFn = Callable[[TaskContext, Any], Awaitable[Any]]


@dataclass(slots=True, frozen=True)
class ScheduledAction:
    interval_seconds: float
    description: str
    action: ScheduledFn

    def __post_init__(self) -> None:
        if self.interval_seconds <= 0:
            raise ValueError(f"interval_seconds must be > 0 ({self.description})")


@dataclass(slots=True, frozen=True)
class TriggerAction:
    event_kind: str
    handler: TriggerFn


@dataclass(slots=True, frozen=True)
class TaskDescriptor:
    slug: str
    name: str = ""
    version: str = "1.0.0"
    scheduled_actions: tuple[ScheduledAction, ...] = ()
    trigger_actions: tuple[TriggerAction, ...] = ()
    # Section written into a freshly generated config file.
    config_template: dict[str, Any] = field(default_factory=dict)

    @property
    def display_name(self) -> str:
        return self.name or self.slug


TaskFactory = Callable[[], TaskDescriptor]


class EntryState(StrEnum):
    IDLE = "idle"
    RUNNING = "running"
    STOPPED = "stopped"


@dataclass(slots=True)
class ScheduleEntry:
    """One scheduled action of one task, with its own repeating timer."""

    task: TaskDescriptor
    action: ScheduledAction
    state: EntryState = EntryState.IDLE
    runs: int = 0
    failures: int = 0
    last_started_at: float | None = None
    last_error: str | None = None
    # Set from the task's config section; None keeps the action's own interval.
    interval_override: float | None = None

    @property
    def key(self) -> str:
        return f"{self.task.slug}:{self.action.description}"

    @property
    def interval_seconds(self) -> float:
        if self.interval_override is not None:
            return self.interval_override
        return float(self.action.interval_seconds)


@dataclass(slots=True, frozen=True)
class MessageEvent:
    """Payload of the "message" trigger event, emitted by chat connectors."""

    body: str
    sender: str = ""
    room_id: str = ""
    source: str = "console"
