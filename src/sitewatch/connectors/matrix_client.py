# src/sitewatch/connectors/matrix_client.py

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any

from nio import AsyncClient, AsyncClientConfig, LoginResponse

from ..config import Settings

logger = logging.getLogger(__name__)


def session_path(store_dir: Path) -> Path:
    return store_dir / "session.json"


def _load_json(path: Path) -> dict[str, Any]:
    val = json.loads(path.read_text("utf-8"))
    if isinstance(val, dict):
        return val
    raise ValueError("Expected JSON object")


def _atomic_write_json(path: Path, data: dict[str, Any]) -> None:
    tmp = path.with_suffix(".tmp")
    tmp.write_text(json.dumps(data, ensure_ascii=False), "utf-8")
    os.replace(tmp, path)
    try:
        os.chmod(path, 0o600)
    except OSError:
        # Not critical on Windows or restricted filesystems.
        logger.debug("chmod failed for %s", path, exc_info=True)


def restore_session(client: AsyncClient, session_file: Path) -> bool:
    """Apply a saved access token / device id to the client. Returns False if there is none usable."""
    if not session_file.exists():
        return False
    try:
        data = _load_json(session_file)
    except (OSError, ValueError) as e:
        logger.warning("Failed to read Matrix session file %s: %r", session_file, e)
        return False

    access_token = data.get("access_token")
    user_id = data.get("user_id")
    device_id = data.get("device_id")
    if not access_token or not user_id or not device_id:
        logger.warning("Matrix session file %s is missing required fields", session_file)
        return False

    client.access_token = str(access_token)
    client.user_id = str(user_id)
    client.device_id = str(device_id)
    return True


async def create_matrix_client(settings: Settings) -> AsyncClient | None:
    """
    Create a logged-in Matrix AsyncClient, or None if Matrix is not usable.

    session.json (under matrix_store_path) keeps the access token across
    restarts, so the password is only needed once. Rooms are unencrypted.
    """
    homeserver = settings.matrix_homeserver.strip()
    user_id = settings.matrix_user_id.strip()
    password = settings.matrix_password.strip()
    store_dir = Path(settings.matrix_store_path)

    if not homeserver or not user_id:
        logger.error("Matrix is not configured: set SITEWATCH_MATRIX_HOMESERVER and SITEWATCH_MATRIX_USER_ID")
        return None

    try:
        store_dir.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        logger.warning("Failed to create directory %s: %r", store_dir, e)
    session_file = session_path(store_dir)

    client = AsyncClient(
        homeserver,
        user_id,
        config=AsyncClientConfig(encryption_enabled=False, store_sync_tokens=False),
    )

    if restore_session(client, session_file):
        logger.info("Matrix session restored for %s", client.user_id)
        return client

    if not password:
        logger.error(
            "Matrix session.json not found and password is not set. "
            "Set SITEWATCH_MATRIX_PASSWORD once to bootstrap a session."
        )
        await client.close()
        return None

    device_name = f"{settings.app_name} (Python)"
    logger.info("Logging in to Matrix to bootstrap a new session (device_name=%r)...", device_name)
    resp = await client.login(password=password, device_name=device_name)
    if not isinstance(resp, LoginResponse):
        logger.error("Matrix login failed: %r", resp)
        await client.close()
        return None

    try:
        _atomic_write_json(
            session_file,
            {"access_token": resp.access_token, "user_id": resp.user_id, "device_id": resp.device_id},
        )
        logger.info("Matrix session saved to %s (user=%s)", session_file, resp.user_id)
    except OSError as e:
        # The client is logged in; only the next restart will need the password again.
        logger.error("Failed to write Matrix session.json (%s): %r", session_file, e)

    return client
