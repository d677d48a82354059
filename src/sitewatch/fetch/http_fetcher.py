# src/sitewatch/fetch/http_fetcher.py

"""Browser-like async HTTP fetcher (httpx) used behind the request queue."""

from __future__ import annotations

import logging
from collections import OrderedDict
from http.cookiejar import CookieJar, LoadError, MozillaCookieJar
from pathlib import Path

import httpx

from ..config import DEFAULT_USER_AGENT
from ..errors import TransientFetchError
from .models import FetchResult, FetchTarget

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_MAX_CLIENTS = 8

BROWSER_HEADERS = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.7",
    "Cache-Control": "no-cache",
}


def load_cookie_file(path: str | Path) -> MozillaCookieJar:
    """
    Load a Netscape/Mozilla cookies.txt file (as exported by browser extensions).
    Raises OSError/LoadError if the file can't be read.
    """
    jar = MozillaCookieJar(str(path))
    jar.load(ignore_discard=True, ignore_expires=True)
    logger.info("Loaded %d cookie(s) from %s", len(jar), path)
    return jar


def try_load_cookie_file(path: str | Path | None) -> CookieJar:
    """Best-effort variant for startup: a broken cookie file only costs a warning."""
    if path is None:
        return CookieJar()
    try:
        return load_cookie_file(path)
    except (OSError, LoadError) as e:
        logger.warning("Could not load cookie file %s: %s", path, e)
        return CookieJar()


class HttpFetcher:
    """
    One httpx.AsyncClient per cookie jar (session context), at most max_clients
    of them. The least recently used client is closed to make room.

    Raises TransientFetchError on transport errors and non-2xx responses;
    retrying is the request queue's job, so the transport does not retry.
    """

    def __init__(
        self,
        *,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        user_agent: str = DEFAULT_USER_AGENT,
        headers: dict[str, str] | None = None,
        cookies: CookieJar | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        max_clients: int = DEFAULT_MAX_CLIENTS,
    ) -> None:
        if max_clients < 1:
            raise ValueError("max_clients must be >= 1")
        self._timeout = httpx.Timeout(timeout_seconds, connect=10.0)
        base_headers = {"User-Agent": user_agent, **BROWSER_HEADERS}
        if headers:
            base_headers.update(headers)
        self._headers = base_headers
        self._default_jar = cookies if cookies is not None else CookieJar()
        # id(jar) -> (jar, client); holding the jar keeps its id from being reused.
        self._clients: OrderedDict[int, tuple[CookieJar, httpx.AsyncClient]] = OrderedDict()
        self._max_clients = max_clients
        self._transport = transport

    @property
    def cookies(self) -> CookieJar:
        return self._default_jar

    @property
    def client_count(self) -> int:
        return len(self._clients)

    async def _client_for(self, jar: CookieJar | None) -> httpx.AsyncClient:
        jar = jar if jar is not None else self._default_jar
        key = id(jar)
        entry = self._clients.get(key)
        if entry is not None:
            self._clients.move_to_end(key)
            return entry[1]

        client = httpx.AsyncClient(
            timeout=self._timeout,
            headers=self._headers,
            cookies=jar,
            follow_redirects=True,
            transport=self._transport,
        )
        self._clients[key] = (jar, client)
        while len(self._clients) > self._max_clients:
            _, (_, stale) = self._clients.popitem(last=False)
            logger.debug("Closing least recently used HTTP client (%d open)", len(self._clients))
            await stale.aclose()
        return client

    async def fetch(self, target: FetchTarget) -> FetchResult:
        headers = dict(target.headers)
        if not target.use_compression:
            headers.setdefault("Accept-Encoding", "identity")

        client = await self._client_for(target.session)
        try:
            response = await client.get(target.url, headers=headers)
        except httpx.TimeoutException as e:
            raise TransientFetchError(target.url, "timeout") from e
        except httpx.HTTPError as e:
            raise TransientFetchError(target.url, f"{e.__class__.__name__}: {e}") from e

        if not response.is_success:
            raise TransientFetchError(
                target.url,
                f"HTTP {response.status_code}",
                status_code=response.status_code,
            )

        return FetchResult(
            url=str(response.url),
            status_code=response.status_code,
            body=response.text,
            content_type=response.headers.get("content-type", ""),
        )

    async def aclose(self) -> None:
        clients = [client for _, client in self._clients.values()]
        self._clients.clear()
        for client in clients:
            await client.aclose()
