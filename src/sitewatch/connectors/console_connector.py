# src/sitewatch/connectors/console_connector.py

from __future__ import annotations

import asyncio
import logging
import sys
import threading
from datetime import datetime
from typing import TYPE_CHECKING, TextIO

from ..cli.commands import registry as command_registry
from ..tasks.task_models import MessageEvent

if TYPE_CHECKING:
    from ..core.state import AppState

logger = logging.getLogger(__name__)


def _ts_local() -> str:
    return datetime.now().astimezone().strftime("%Y-%m-%d %H:%M:%S")


class ConsoleNotifier:
    """Prints notifications to stdout. Destination is shown as a prefix."""

    def __init__(self, stream: TextIO | None = None) -> None:
        self._stream = stream

    async def deliver(self, destination: str, content: str) -> bool:
        prefix = f"[{_ts_local()}]"
        if destination:
            prefix += f" [{destination}]"
        try:
            print(f"{prefix} {content}", file=self._stream or sys.stdout, flush=True)
        except (OSError, ValueError) as e:
            logger.warning("Console delivery failed: %r", e)
            return False
        return True


async def _handle_line(state: AppState, line: str) -> str | None:
    reply = await command_registry.handle(state, line)
    state.scheduler.emit("message", MessageEvent(body=line, source="console"))
    return reply


def run_console_loop(state: AppState, loop: asyncio.AbstractEventLoop, stop: asyncio.Event) -> None:
    """
    Blocking stdin reader; run it in a daemon thread.

    Each line is handed to the event loop: slash-commands are answered by the
    command registry, and every line is dispatched as a "message" event.
    """
    logger.info("Console connector started.")
    print(f"[{_ts_local()}] [CONSOLE] Use /help for commands. Use /exit to quit.", flush=True)

    while not stop.is_set():
        try:
            line = input().strip()
        except EOFError:
            logger.info("Console EOF received, exiting.")
            break
        except KeyboardInterrupt:
            break

        if not line:
            continue

        if line.lower() in ("/exit", "/quit"):
            logger.info("Console exit command received.")
            break

        fut = asyncio.run_coroutine_threadsafe(_handle_line(state, line), loop)
        try:
            reply = fut.result()
        except Exception:
            logger.exception("Console command handler crashed.")
            reply = "Internal error while handling a command."

        if reply is not None:
            print(f"[{_ts_local()}] {reply}", flush=True)

    if loop.is_running():
        loop.call_soon_threadsafe(stop.set)
    logger.info("Console connector finished.")


def start_console_in_background(
    state: AppState, loop: asyncio.AbstractEventLoop, stop: asyncio.Event
) -> threading.Thread:
    t = threading.Thread(target=run_console_loop, args=(state, loop, stop), name="console", daemon=True)
    t.start()
    return t
