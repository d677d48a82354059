# tests/test_request_queue.py

from __future__ import annotations

import asyncio
import logging

import pytest

from sitewatch.errors import ExhaustedRetriesError, QueueClosedError, QueueFullError
from sitewatch.fetch.models import FetchTarget, QueuedRequest, RequestState
from sitewatch.fetch.request_queue import RequestQueue

from .fakes import FakeFetcher, fetch_error

A = "https://a.example/"
B = "https://b.example/"
C = "https://c.example/"


@pytest.mark.asyncio
async def test_single_request_resolves_with_body() -> None:
    fetcher = FakeFetcher({A: ["hello"]})
    queue = RequestQueue(fetcher, poll_interval=0.0)

    try:
        assert await queue.request_url(A) == "hello"
    finally:
        await queue.aclose()

    assert fetcher.calls == [A]
    assert fetcher.closed


@pytest.mark.asyncio
async def test_never_more_than_one_request_in_flight() -> None:
    fetcher = FakeFetcher(delay=0.01)
    observed: list[int] = []
    queue = RequestQueue(fetcher, poll_interval=0.0, on_attempt=lambda _req: observed.append(queue.in_flight))

    urls = [f"https://site.example/{i}" for i in range(20)]
    try:
        results = await asyncio.gather(*(queue.enqueue(FetchTarget(url=u)) for u in urls))
    finally:
        await queue.aclose()

    assert [r.body for r in results] == [f"ok:{u}" for u in urls]
    assert fetcher.max_active == 1
    assert observed and set(observed) == {1}
    assert queue.in_flight == 0


@pytest.mark.asyncio
async def test_fifo_with_retry_in_place() -> None:
    # B fails twice then succeeds; C must wait until B settles.
    fetcher = FakeFetcher({B: [fetch_error(B), fetch_error(B), "b-body"]})
    queue = RequestQueue(fetcher, retries=5, poll_interval=0.0)

    try:
        results = await asyncio.gather(
            queue.request_url(A),
            queue.request_url(B),
            queue.request_url(C),
        )
    finally:
        await queue.aclose()

    assert results == [f"ok:{A}", "b-body", f"ok:{C}"]
    assert fetcher.calls == [A, B, B, B, C]


@pytest.mark.asyncio
async def test_exhausted_retries_carry_last_error(caplog: pytest.LogCaptureFixture) -> None:
    errors = [fetch_error(A, 500), fetch_error(A, 502), fetch_error(A, 503)]
    fetcher = FakeFetcher({A: list(errors)})
    queue = RequestQueue(fetcher, retries=3, poll_interval=0.0)

    with caplog.at_level(logging.WARNING, logger="sitewatch.fetch.request_queue"):
        try:
            with pytest.raises(ExhaustedRetriesError) as ei:
                await queue.enqueue(FetchTarget(url=A))
            assert queue.pending == 0
            # Ready for new work right away.
            assert await queue.request_url(B) == f"ok:{B}"
        finally:
            await queue.aclose()

    err = ei.value
    assert err.url == A
    assert err.attempts == 3
    assert err.last_error is errors[-1]
    assert err.last_error.status_code == 503
    assert fetcher.calls == [A, A, A, B]

    retry_lines = [r.getMessage() for r in caplog.records if "retry #" in r.getMessage()]
    assert len(retry_lines) == 2
    assert "retry #1" in retry_lines[0] and A in retry_lines[0]


@pytest.mark.asyncio
async def test_failed_request_does_not_block_the_next_one() -> None:
    fetcher = FakeFetcher({A: [fetch_error(A)] * 2})
    queue = RequestQueue(fetcher, retries=2, poll_interval=0.0)

    try:
        results = await asyncio.gather(
            queue.request_url(A),
            queue.request_url(B),
            return_exceptions=True,
        )
    finally:
        await queue.aclose()

    assert isinstance(results[0], ExhaustedRetriesError)
    assert results[1] == f"ok:{B}"
    assert queue.pending == 0


@pytest.mark.asyncio
async def test_per_request_retry_budget_overrides_default() -> None:
    fetcher = FakeFetcher({A: [fetch_error(A)] * 10})
    queue = RequestQueue(fetcher, retries=5, poll_interval=0.0)

    try:
        with pytest.raises(ExhaustedRetriesError):
            await queue.enqueue(FetchTarget(url=A), retries=1)
    finally:
        await queue.aclose()

    assert fetcher.calls == [A]


@pytest.mark.asyncio
async def test_retry_waits_poll_interval_between_attempts() -> None:
    fetcher = FakeFetcher({A: [fetch_error(A), "ok"]})
    queue = RequestQueue(fetcher, retries=2, poll_interval=0.05)
    loop = asyncio.get_running_loop()

    started = loop.time()
    try:
        assert await queue.request_url(A) == "ok"
    finally:
        await queue.aclose()

    assert loop.time() - started >= 0.05


@pytest.mark.asyncio
async def test_attempt_hook_sees_request_state() -> None:
    seen: list[tuple[str, RequestState, int]] = []

    def hook(req: QueuedRequest) -> None:
        seen.append((req.target.url, req.state, req.attempts))

    fetcher = FakeFetcher({A: [fetch_error(A), "ok"]})
    queue = RequestQueue(fetcher, retries=3, poll_interval=0.0, on_attempt=hook)
    try:
        await queue.request_url(A)
    finally:
        await queue.aclose()

    assert seen == [(A, RequestState.IN_FLIGHT, 1), (A, RequestState.IN_FLIGHT, 2)]


@pytest.mark.asyncio
async def test_try_enqueue_raises_when_full() -> None:
    fetcher = FakeFetcher(delay=0.05)
    queue = RequestQueue(fetcher, poll_interval=0.0, max_pending=1)

    try:
        first = asyncio.create_task(queue.try_enqueue(FetchTarget(url=A)))
        await asyncio.sleep(0)  # worker takes A off the queue
        await asyncio.sleep(0)
        second = asyncio.create_task(queue.try_enqueue(FetchTarget(url=B)))
        await asyncio.sleep(0)  # B now occupies the only slot

        with pytest.raises(QueueFullError):
            await queue.try_enqueue(FetchTarget(url=C))

        assert (await first).body == f"ok:{A}"
        assert (await second).body == f"ok:{B}"
    finally:
        await queue.aclose()


@pytest.mark.asyncio
async def test_enqueue_blocks_producer_until_capacity_frees() -> None:
    fetcher = FakeFetcher(delay=0.01)
    queue = RequestQueue(fetcher, poll_interval=0.0, max_pending=1)

    urls = [f"https://site.example/{i}" for i in range(5)]
    try:
        results = await asyncio.gather(*(queue.request_url(u) for u in urls))
    finally:
        await queue.aclose()

    assert results == [f"ok:{u}" for u in urls]
    assert fetcher.calls == urls


@pytest.mark.asyncio
async def test_close_fails_waiting_requests_and_rejects_new_ones() -> None:
    fetcher = FakeFetcher(delay=10.0)
    queue = RequestQueue(fetcher, poll_interval=0.0)

    running = asyncio.create_task(queue.request_url(A))
    waiting = asyncio.create_task(queue.request_url(B))
    await asyncio.sleep(0.01)

    await queue.aclose()

    with pytest.raises(QueueClosedError):
        await running
    with pytest.raises(QueueClosedError):
        await waiting
    with pytest.raises(QueueClosedError):
        await queue.request_url(C)

    assert queue.closed
    assert fetcher.closed
    assert queue.pending == 0


def test_invalid_retry_budget_is_rejected() -> None:
    with pytest.raises(ValueError):
        RequestQueue(FakeFetcher(), retries=0)


def test_fetch_target_requires_http_url() -> None:
    with pytest.raises(ValueError):
        FetchTarget(url="ftp://example.org/file")
    with pytest.raises(ValueError):
        FetchTarget(url="not a url")
