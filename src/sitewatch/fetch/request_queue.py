# src/sitewatch/fetch/request_queue.py

from __future__ import annotations

"""
Outbound request queue.

All network fetches made by task actions go through one RequestQueue:
- requests run strictly in the order they were enqueued (FIFO),
- only one request performs network I/O at a time, process-wide,
- a failing request is retried in place; the requests behind it wait
  until it settles (success or retry budget exhausted).

Single-flight holds process-wide; do not add a second worker.

One worker coroutine drains a bounded asyncio.Queue. When the queue is full,
enqueue() blocks the producer until a slot frees; try_enqueue() raises
QueueFullError instead.
"""

import asyncio
import logging
from collections.abc import Callable
from http.cookiejar import CookieJar

from ..core.ports import Fetcher
from ..errors import ExhaustedRetriesError, QueueClosedError, QueueFullError
from .models import FetchResult, FetchTarget, QueuedRequest, RequestState

logger = logging.getLogger(__name__)

DEFAULT_RETRIES = 5
DEFAULT_POLL_INTERVAL = 1.0
DEFAULT_MAX_PENDING = 256

AttemptHook = Callable[[QueuedRequest], None]


class RequestQueue:
    def __init__(
        self,
        fetcher: Fetcher,
        *,
        retries: int = DEFAULT_RETRIES,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        max_pending: int = DEFAULT_MAX_PENDING,
        on_attempt: AttemptHook | None = None,
    ) -> None:
        if retries < 1:
            raise ValueError("retries must be >= 1")
        if max_pending < 1:
            raise ValueError("max_pending must be >= 1")

        self._fetcher = fetcher
        self._retries = int(retries)
        self._poll_interval = max(0.0, float(poll_interval))
        self._queue: asyncio.Queue[QueuedRequest] = asyncio.Queue(maxsize=int(max_pending))
        self._pending: dict[str, QueuedRequest] = {}
        self._current: QueuedRequest | None = None
        self._worker: asyncio.Task[None] | None = None
        self._closed = False
        self._in_flight = 0
        self._on_attempt = on_attempt

    # ---- introspection ----

    @property
    def in_flight(self) -> int:
        """Number of requests currently doing network I/O (0 or 1)."""
        return self._in_flight

    @property
    def pending(self) -> int:
        """Requests accepted but not yet settled (including the running one)."""
        return len(self._pending)

    @property
    def closed(self) -> bool:
        return self._closed

    # ---- lifecycle ----

    def start(self) -> None:
        if self._closed:
            raise QueueClosedError("Request queue is closed.")
        if self._worker is None or self._worker.done():
            self._worker = asyncio.get_running_loop().create_task(self._run(), name="request-queue")

    async def aclose(self) -> None:
        """
        Stop the worker. Requests that have not settled fail with QueueClosedError.
        """
        if self._closed:
            return
        self._closed = True

        if self._worker is not None:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None

        while True:
            try:
                req = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                break
            self._settle_closed(req)
            self._queue.task_done()

        for req in list(self._pending.values()):
            self._settle_closed(req)
        self._pending.clear()

        await self._fetcher.aclose()

    # ---- producer API ----

    def _make_request(
        self,
        target: FetchTarget,
        retries: int | None,
        poll_interval: float | None,
    ) -> QueuedRequest:
        if self._closed:
            raise QueueClosedError("Request queue is closed.")
        budget = self._retries if retries is None else int(retries)
        if budget < 1:
            raise ValueError("retries must be >= 1")
        return QueuedRequest(
            target=target,
            attempts_remaining=budget,
            poll_interval=self._poll_interval if poll_interval is None else max(0.0, float(poll_interval)),
            future=asyncio.get_running_loop().create_future(),
        )

    async def enqueue(
        self,
        target: FetchTarget,
        *,
        retries: int | None = None,
        poll_interval: float | None = None,
    ) -> FetchResult:
        """
        Queue a fetch and wait for its result.

        Blocks while the queue is at capacity. Raises ExhaustedRetriesError
        (with .last_error) once every attempt has failed.
        """
        req = self._make_request(target, retries, poll_interval)
        self.start()
        await self._queue.put(req)
        if self._closed:
            self._settle_closed(req)
        else:
            self._pending[req.request_id] = req
        logger.debug("Request queued id=%s url=%s pending=%d", req.request_id, target.url, self.pending)
        return await req.future

    async def try_enqueue(
        self,
        target: FetchTarget,
        *,
        retries: int | None = None,
        poll_interval: float | None = None,
    ) -> FetchResult:
        """Like enqueue(), but raise QueueFullError instead of waiting for capacity."""
        req = self._make_request(target, retries, poll_interval)
        self.start()
        try:
            self._queue.put_nowait(req)
        except asyncio.QueueFull:
            raise QueueFullError(
                f"Request queue is full ({self._queue.maxsize} pending): {target.url}"
            ) from None
        self._pending[req.request_id] = req
        return await req.future

    async def request_url(
        self,
        url: str,
        headers: dict[str, str] | None = None,
        gzip: bool = True,
        session: CookieJar | None = None,
    ) -> str:
        """Fetch a URL through the queue and return the response body."""
        target = FetchTarget(url=url, headers=dict(headers or {}), use_compression=gzip, session=session)
        result = await self.enqueue(target)
        return result.body

    # ---- worker ----

    async def _run(self) -> None:
        while True:
            req = await self._queue.get()
            self._current = req
            try:
                if req.future.done():
                    # The caller gave up (cancelled) while waiting for its turn.
                    continue
                await self._perform(req)
            except asyncio.CancelledError:
                self._settle_closed(req)
                raise
            except Exception as e:
                logger.exception("Request queue worker failed on %s", req.target.url)
                req.state = RequestState.FAILED
                if not req.future.done():
                    req.future.set_exception(ExhaustedRetriesError(req.target.url, req.attempts, e))
            finally:
                self._current = None
                self._pending.pop(req.request_id, None)
                self._queue.task_done()

    async def _perform(self, req: QueuedRequest) -> None:
        url = req.target.url
        req.state = RequestState.READY
        last_error: BaseException | None = None

        while req.attempts_remaining > 0:
            if req.attempts > 0:
                logger.warning("Request failed: %s - retry #%d: %s", last_error, req.attempts, url)
                if req.poll_interval > 0:
                    await asyncio.sleep(req.poll_interval)

            req.attempts += 1
            req.attempts_remaining -= 1
            req.state = RequestState.IN_FLIGHT
            self._in_flight += 1
            try:
                if self._on_attempt is not None:
                    self._on_attempt(req)
                result = await self._fetcher.fetch(req.target)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                last_error = e
                req.state = RequestState.READY
                continue
            finally:
                self._in_flight -= 1

            req.state = RequestState.DONE
            if not req.future.done():
                req.future.set_result(result)
            return

        req.state = RequestState.FAILED
        logger.warning("Request gave up after %d attempt(s): %s", req.attempts, url)
        if not req.future.done():
            req.future.set_exception(ExhaustedRetriesError(url, req.attempts, last_error))

    @staticmethod
    def _settle_closed(req: QueuedRequest) -> None:
        if req.future.done():
            return
        req.state = RequestState.FAILED
        req.future.set_exception(QueueClosedError(f"Request queue closed before completing: {req.target.url}"))
