# src/sitewatch/fetch/models.py

from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass, field
from enum import StrEnum
from http.cookiejar import CookieJar
from urllib.parse import urlparse


class RequestState(StrEnum):
    WAITING = "waiting"
    READY = "ready"
    IN_FLIGHT = "in_flight"
    DONE = "done"
    FAILED = "failed"


@dataclass(slots=True, frozen=True)
class FetchTarget:
    """What to fetch and how. The session (cookie jar) is shared, not copied."""

    url: str
    headers: dict[str, str] = field(default_factory=dict)
    use_compression: bool = True
    session: CookieJar | None = None

    def __post_init__(self) -> None:
        parsed = urlparse(self.url or "")
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError(f"Not a fetchable URL: {self.url!r}")


@dataclass(slots=True)
class FetchResult:
    url: str
    status_code: int
    body: str
    content_type: str = ""


@dataclass(slots=True)
class QueuedRequest:
    target: FetchTarget
    attempts_remaining: int
    poll_interval: float
    future: asyncio.Future[FetchResult]
    request_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    state: RequestState = RequestState.WAITING
    attempts: int = 0
