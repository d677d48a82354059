# src/sitewatch/connectors/matrix_connector.py

from __future__ import annotations

"""
Matrix connector.

- Notifier: task notifications are sent to rooms with room_send().
- Chat: messages in joined rooms (optionally an allowlist) that start with "/"
  are answered by the command registry; every message is also dispatched to
  the scheduler as a "message" event, so tasks with trigger actions see it.

init -> initial sync -> sync loop (background task) -> aclose()
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING

from nio import AsyncClient, MatrixRoom, RoomMessageText, RoomSendResponse, SyncResponse

from ..cli.commands import registry as command_registry
from ..config import Settings
from ..tasks.task_models import MessageEvent
from .matrix_client import create_matrix_client

if TYPE_CHECKING:
    from ..core.state import AppState

logger = logging.getLogger(__name__)

SYNC_TIMEOUT_MS = 30000
SYNC_RETRY_SECONDS = 15.0

ClientFactory = Callable[[Settings], Awaitable[AsyncClient | None]]


def _ms_now() -> int:
    return int(time.time() * 1000)


def _room_allowlist(settings_rooms: list[str]) -> set[str] | None:
    rooms = [r.strip() for r in (settings_rooms or []) if str(r).strip()]
    return set(rooms) if rooms else None


class MatrixConnector:
    def __init__(self, state: AppState, *, client_factory: ClientFactory = create_matrix_client) -> None:
        self._state = state
        self._client_factory = client_factory
        self._client: AsyncClient | None = None
        self._sync_task: asyncio.Task[None] | None = None
        self._startup_ts = 0
        self._allowed_rooms = _room_allowlist(state.settings.matrix_rooms)

    @property
    def connected(self) -> bool:
        return self._client is not None

    async def start(self) -> bool:
        """Log in and start syncing. Returns False (after logging why) if Matrix is unavailable."""
        settings = self._state.settings
        client = await self._client_factory(settings)
        if client is None:
            logger.error("Matrix client creation failed; notifications stay on the console.")
            return False

        self._startup_ts = _ms_now()
        logger.info("Matrix allowed_rooms=%s", self._allowed_rooms if self._allowed_rooms is not None else "ALL")
        client.add_event_callback(self._on_message, RoomMessageText)

        logger.info("Matrix initial sync...")
        resp = await client.sync(timeout=SYNC_TIMEOUT_MS, full_state=True)
        if not isinstance(resp, SyncResponse):
            logger.error("Matrix initial sync failed: %r", resp)
            await client.close()
            return False
        logger.info("Matrix initial sync done. Joined rooms: %d", len(client.rooms))

        self._client = client
        self._sync_task = asyncio.get_running_loop().create_task(self._sync_loop(), name="matrix-sync")
        return True

    async def aclose(self) -> None:
        if self._sync_task is not None:
            self._sync_task.cancel()
            await asyncio.gather(self._sync_task, return_exceptions=True)
            self._sync_task = None
        if self._client is not None:
            await self._client.close()
            self._client = None
        logger.info("Matrix connector stopped.")

    async def _sync_loop(self) -> None:
        assert self._client is not None
        logger.info("Matrix sync loop started.")
        while True:
            try:
                resp = await self._client.sync(timeout=SYNC_TIMEOUT_MS, full_state=False)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Matrix sync failed; retrying in %gs.", SYNC_RETRY_SECONDS)
                await asyncio.sleep(SYNC_RETRY_SECONDS)
                continue
            if not isinstance(resp, SyncResponse):
                logger.warning("Matrix sync error: %r; retrying in %gs.", resp, SYNC_RETRY_SECONDS)
                await asyncio.sleep(SYNC_RETRY_SECONDS)

    # ---- Notifier ----

    async def _send_text(self, room_id: str, text: str, *, msgtype: str = "m.notice") -> bool:
        if self._client is None:
            logger.warning("Matrix is not connected; dropping message for %s", room_id)
            return False
        try:
            resp = await self._client.room_send(
                room_id=room_id,
                message_type="m.room.message",
                content={"msgtype": msgtype, "body": text},
                ignore_unverified_devices=True,
            )
        except Exception:
            logger.exception("Failed to send a message to room %s.", room_id)
            return False
        if not isinstance(resp, RoomSendResponse):
            logger.error("Matrix refused a message for room %s: %r", room_id, resp)
            return False
        return True

    async def deliver(self, destination: str, content: str) -> bool:
        room_id = destination.strip()
        if not room_id:
            logger.warning("Matrix delivery without a room id skipped.")
            return False
        return await self._send_text(room_id, content)

    # ---- inbound ----

    async def _on_message(self, room: MatrixRoom, event: RoomMessageText) -> None:
        # Ignore history delivered by the initial sync.
        ts = getattr(event, "server_timestamp", None)
        if ts is not None and ts <= self._startup_ts:
            return
        if self._client is not None and event.sender == self._client.user_id:
            return
        if self._allowed_rooms is not None and room.room_id not in self._allowed_rooms:
            return

        body = (event.body or "").strip()
        if not body:
            return

        logger.info("Matrix <%s> %s: %r", room.display_name, event.sender, body)

        if body.startswith("/"):
            try:
                resp = await command_registry.handle(self._state, body, user_id=event.sender, room_id=room.room_id)
            except Exception:
                logger.exception("Command handler crashed.")
                resp = "Internal error while handling a command."
            if resp:
                await self._send_text(room.room_id, resp, msgtype="m.text")

        self._state.scheduler.emit(
            "message",
            MessageEvent(body=body, sender=event.sender, room_id=room.room_id, source="matrix"),
        )
