# src/sitewatch/cli/commands.py

from __future__ import annotations

import logging
import time
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ..core.state import AppState

CommandHandler = Callable[["AppState", list[str], str | None, str | None], Awaitable[str]]

logger = logging.getLogger(__name__)


class CommandRegistry:
    """Simple slash-command registry used by connectors (/help, /status, ...)."""

    def __init__(self) -> None:
        self._handlers: dict[str, CommandHandler] = {}
        self._help: dict[str, str] = {}

    def register(
        self,
        name: str,
        handler: CommandHandler,
        help_text: str,
        aliases: list[str] | None = None,
    ) -> None:
        key = name.lower()
        self._handlers[key] = handler
        self._help[key] = help_text
        for alias in aliases or []:
            self._handlers[alias.lower()] = handler

    async def handle(
        self,
        state: AppState,
        line: str,
        user_id: str | None = None,
        room_id: str | None = None,
    ) -> str | None:
        """
        Handle a string like "/command args".
        Returns a reply string or None if not a command.
        """
        if not line.startswith("/"):
            return None

        parts = line[1:].split()
        if not parts:
            return "Empty command. Use /help to list available commands."

        name = parts[0].lower()
        handler = self._handlers.get(name)
        if not handler:
            return f"Unknown command: /{name}. Use /help to list available commands."

        logger.debug("Command /%s (user_id=%s room_id=%s)", name, user_id, room_id)
        return await handler(state, parts[1:], user_id, room_id)

    def build_help(self) -> str:
        lines = ["Available commands:"]
        for name, help_text in self._help.items():
            lines.append(f"  /{name} - {help_text}")
        return "\n".join(lines)


registry = CommandRegistry()


def format_duration(seconds: float) -> str:
    """Human-readable duration, e.g. "2d 3h", "5m 12s"."""
    total = max(0, int(seconds))
    days, rem = divmod(total, 86400)
    hours, rem = divmod(rem, 3600)
    minutes, secs = divmod(rem, 60)
    if days:
        return f"{days}d {hours}h"
    if hours:
        return f"{hours}h {minutes}m"
    if minutes:
        return f"{minutes}m {secs}s"
    return f"{secs}s"


def _fmt_ts(ts: float | None) -> str:
    if ts is None:
        return "never"
    return datetime.fromtimestamp(ts).astimezone().strftime("%Y-%m-%d %H:%M:%S")


async def cmd_help(state: AppState, args: list[str], user_id: str | None, room_id: str | None) -> str:
    return registry.build_help()


async def cmd_status(state: AppState, args: list[str], user_id: str | None, room_id: str | None) -> str:
    uptime = format_duration(time.time() - state.started_at)
    lines = [
        "Status:",
        f"  Uptime: {uptime}",
        f"  Requests: {state.requests.pending} pending, {state.requests.in_flight} in flight",
        f"  Cached items: {await state.cache.count()}",
    ]
    snapshot = state.scheduler.snapshot()
    if not snapshot:
        lines.append("  No scheduled actions.")
    for row in snapshot:
        line = (
            f"  {row['task']}: {row['description']} [{row['state']}] "
            f"every {row['interval_seconds']:g}s, runs={row['runs']} failures={row['failures']}, "
            f"last run {_fmt_ts(row['last_started_at'])}"
        )
        if row["last_error"]:
            line += f"\n    last error: {row['last_error']}"
        lines.append(line)
    return "\n".join(lines)


async def cmd_tasks(state: AppState, args: list[str], user_id: str | None, room_id: str | None) -> str:
    lines = ["Tasks:"]
    for task in state.tasks.with_config:
        lines.append(f"  {task.slug} - {task.display_name} v{task.version}")
    if not state.tasks.with_config:
        lines.append("  (none configured)")
    if state.tasks.without_config:
        ignored = ", ".join(t.slug for t in state.tasks.without_config)
        lines.append(f"Ignored (no config section): {ignored}")
    return "\n".join(lines)


registry.register("help", cmd_help, help_text="Show available commands.", aliases=["h", "?"])
registry.register("status", cmd_status, help_text="Show scheduler, queue and cache status.")
registry.register("tasks", cmd_tasks, help_text="List loaded and ignored tasks.")
