# src/sitewatch/tasks/task_scheduler.py

from __future__ import annotations

"""
Task scheduler / action runner.

- every scheduled action of every configured task gets its own repeating
  timer (ScheduleEntry), started once and never restarted;
- trigger actions run whenever a matching event is dispatched;
- every invocation runs inside a failure boundary: an exception is logged with
  the task slug and traceback, and the next tick/event still fires.

There is no backoff on the schedule itself. Retries of individual fetches are
the request queue's business.

To stop the scheduler, await stop().
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Sequence
from typing import Any

from ..errors import TaskActionError
from .task_models import (
    EntryState,
    ScheduledAction,
    ScheduleEntry,
    TaskContext,
    TaskDescriptor,
    TriggerAction,
)

logger = logging.getLogger(__name__)

ContextFactory = Callable[[TaskDescriptor], TaskContext]


def install_fallback_handler(loop: asyncio.AbstractEventLoop) -> None:
    """
    Process-wide last line of defence: anything that escapes an action's own
    boundary (e.g. an exception in a fire-and-forget task) is logged, and the
    process keeps running.
    """

    def _handler(loop: asyncio.AbstractEventLoop, context: dict[str, Any]) -> None:
        exc = context.get("exception")
        message = context.get("message") or "Unhandled exception"
        if exc is not None:
            logger.error("Unhandled exception: %s", message, exc_info=exc)
        else:
            logger.error("Unhandled condition: %s", message)

    loop.set_exception_handler(_handler)


class TaskScheduler:
    def __init__(
        self,
        tasks: Sequence[TaskDescriptor],
        context_factory: ContextFactory,
        *,
        run_on_start: bool = False,
    ) -> None:
        self._tasks = tuple(tasks)
        self._context_factory = context_factory
        self._run_on_start = run_on_start

        self._contexts: dict[str, TaskContext] = {}
        self._entries: list[ScheduleEntry] = []
        self._timers: list[asyncio.Task[None]] = []
        self._background: set[asyncio.Task[Any]] = set()
        self._triggers: dict[str, list[tuple[TaskDescriptor, TriggerAction]]] = {}

        for task in self._tasks:
            for trigger in task.trigger_actions:
                self._triggers.setdefault(trigger.event_kind, []).append((task, trigger))

    @property
    def tasks(self) -> tuple[TaskDescriptor, ...]:
        return self._tasks

    @property
    def entries(self) -> list[ScheduleEntry]:
        return list(self._entries)

    @property
    def running(self) -> bool:
        return bool(self._timers)

    def context_for(self, task: TaskDescriptor) -> TaskContext:
        ctx = self._contexts.get(task.slug)
        if ctx is None:
            ctx = self._context_factory(task)
            self._contexts[task.slug] = ctx
        return ctx

    # ---- lifecycle ----

    def start(self) -> None:
        if self._timers:
            raise RuntimeError("Scheduler already started.")

        loop = asyncio.get_running_loop()
        for task in self._tasks:
            for action in task.scheduled_actions:
                entry = ScheduleEntry(task=task, action=action, interval_override=self._interval_override(task))
                self._entries.append(entry)
                self._timers.append(loop.create_task(self._run_entry(entry), name=f"schedule:{entry.key}"))
                logger.info(
                    "Scheduled %s: %s (every %gs)",
                    task.slug,
                    action.description,
                    entry.interval_seconds,
                )

        for kind, handlers in self._triggers.items():
            logger.info("Trigger %r -> %s", kind, ", ".join(t.slug for t, _ in handlers))

    async def stop(self) -> None:
        timers = self._timers + list(self._background)
        self._timers = []
        for t in timers:
            t.cancel()
        await asyncio.gather(*timers, return_exceptions=True)
        self._background.clear()
        for entry in self._entries:
            entry.state = EntryState.STOPPED

    def _interval_override(self, task: TaskDescriptor) -> float | None:
        """A task section may set "interval_seconds" for all of its scheduled actions."""
        raw = self.context_for(task).task_config.get("interval_seconds")
        if raw is None:
            return None
        try:
            value = float(raw)
        except (TypeError, ValueError):
            value = 0.0
        if value <= 0:
            logger.warning("%s: ignoring invalid interval_seconds=%r", task.slug, raw)
            return None
        return value

    # ---- failure boundary ----

    async def run_guarded(
        self,
        task: TaskDescriptor,
        description: str,
        invoke: Callable[[], Awaitable[Any]],
    ) -> TaskActionError | None:
        """
        Run one action invocation. An exception escaping it is logged and
        returned wrapped in TaskActionError (cause in __cause__); None on success.
        """
        try:
            await invoke()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            err = TaskActionError(task.slug, description, e)
            logger.error("%s", err, exc_info=e)
            return err
        return None

    # ---- scheduled actions ----

    async def _run_entry(self, entry: ScheduleEntry) -> None:
        loop = asyncio.get_running_loop()
        interval = entry.interval_seconds

        if not self._run_on_start:
            await asyncio.sleep(interval)

        while True:
            started = loop.time()
            await self.run_scheduled(entry)
            # Fixed rate: a slow run shortens the pause but never overlaps itself.
            await asyncio.sleep(max(0.0, interval - (loop.time() - started)))

    async def run_scheduled(self, entry: ScheduleEntry) -> bool:
        """Run one tick of a schedule entry inside the failure boundary."""
        action: ScheduledAction = entry.action

        entry.state = EntryState.RUNNING
        entry.runs += 1
        entry.last_started_at = time.time()
        logger.debug("Running %s: %s (run #%d)", entry.task.slug, action.description, entry.runs)
        try:
            error = await self.run_guarded(
                entry.task,
                action.description,
                lambda: action.action(self.context_for(entry.task)),
            )
        finally:
            if entry.state == EntryState.RUNNING:
                entry.state = EntryState.IDLE

        if error is None:
            entry.last_error = None
            return True
        entry.failures += 1
        cause = error.__cause__
        entry.last_error = f"{cause.__class__.__name__}: {cause}"
        return False

    # ---- trigger actions ----

    def has_trigger(self, event_kind: str) -> bool:
        return event_kind in self._triggers

    async def dispatch_event(self, event_kind: str, payload: Any = None) -> int:
        """
        Run every trigger handler registered for event_kind, each in its own
        failure boundary. Returns how many handlers completed without error.
        """
        handlers = self._triggers.get(event_kind, [])
        if not handlers:
            return 0

        async def _one(task: TaskDescriptor, trigger: TriggerAction) -> TaskActionError | None:
            return await self.run_guarded(
                task,
                f"trigger {event_kind!r}",
                lambda: trigger.handler(self.context_for(task), payload),
            )

        results = await asyncio.gather(*(_one(t, tr) for t, tr in handlers))
        return sum(1 for r in results if r is None)

    def emit(self, event_kind: str, payload: Any = None) -> asyncio.Task[int] | None:
        """Fire-and-forget dispatch_event(); used by connector callbacks."""
        if not self.has_trigger(event_kind):
            return None
        t = asyncio.get_running_loop().create_task(
            self.dispatch_event(event_kind, payload), name=f"trigger:{event_kind}"
        )
        self._background.add(t)
        t.add_done_callback(self._background.discard)
        return t

    # ---- introspection ----

    def snapshot(self) -> list[dict[str, Any]]:
        out: list[dict[str, Any]] = []
        for entry in self._entries:
            out.append(
                {
                    "task": entry.task.slug,
                    "description": entry.action.description,
                    "interval_seconds": entry.interval_seconds,
                    "state": entry.state.value,
                    "runs": entry.runs,
                    "failures": entry.failures,
                    "last_started_at": entry.last_started_at,
                    "last_error": entry.last_error,
                }
            )
        return out
