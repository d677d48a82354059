# tests/test_pagewatch.py

from __future__ import annotations

import pytest

from sitewatch.store.dedup_cache import DedupCache, namespace
from sitewatch.tasks.builtin import pagewatch
from sitewatch.tasks.task_api import report_new_items
from sitewatch.tasks.task_models import MessageEvent

from .fakes import FakeFetcher, FakeNotifier, fetch_error

URL = "https://example.org/news"


def _render(item) -> str:
    return f"new: {item['title']}"


@pytest.mark.asyncio
async def test_report_new_items_delivers_then_commits(make_context, notifier: FakeNotifier, cache: DedupCache) -> None:
    ctx = make_context(task_config={"targets": ["!one:x", "!two:x"]})
    items = [{"id": "1", "title": "first"}, {"id": "2", "title": "second"}]

    reported = await report_new_items(ctx, "feed", items, _render)

    assert reported == items
    assert [(d.destination, d.content) for d in notifier.delivered] == [
        ("!one:x", "new: first"),
        ("!two:x", "new: first"),
        ("!one:x", "new: second"),
        ("!two:x", "new: second"),
    ]
    assert await cache.filter_new("feed", items) == []

    # Second run: nothing new, nothing delivered.
    notifier.delivered.clear()
    assert await report_new_items(ctx, "feed", items, _render) == []
    assert notifier.delivered == []


@pytest.mark.asyncio
async def test_report_new_items_falls_back_to_default_targets(make_context, notifier: FakeNotifier) -> None:
    ctx = make_context()

    await report_new_items(ctx, "feed", [{"id": "1", "title": "t"}], _render)

    assert [d.destination for d in notifier.delivered] == ["!default:example.org"]


@pytest.mark.asyncio
async def test_undelivered_item_is_not_committed(make_context, notifier: FakeNotifier, cache: DedupCache) -> None:
    notifier.failing = {"!down:x"}
    ctx = make_context(task_config={"targets": ["!down:x"]})
    items = [{"id": "1", "title": "t"}]

    assert await report_new_items(ctx, "feed", items, _render) == items
    assert await cache.filter_new("feed", items) == items

    # Delivery works again: the item is reported on the next run.
    notifier.failing = set()
    assert await report_new_items(ctx, "feed", items, _render) == items
    assert await cache.filter_new("feed", items) == []


@pytest.mark.asyncio
async def test_partial_delivery_still_commits(make_context, notifier: FakeNotifier, cache: DedupCache) -> None:
    notifier.failing = {"!down:x"}
    ctx = make_context(task_config={"targets": ["!down:x", "!up:x"]})
    items = [{"id": "1", "title": "t"}]

    await report_new_items(ctx, "feed", items, _render)

    assert [d.destination for d in notifier.delivered] == ["!up:x"]
    assert await cache.filter_new("feed", items) == []


@pytest.mark.asyncio
async def test_no_targets_commits_silently(make_context, notifier: FakeNotifier, cache: DedupCache) -> None:
    ctx = make_context(task_config={"targets": []})
    ctx.default_targets = []
    items = [{"id": "1"}]

    assert await report_new_items(ctx, "feed", items, _render) == items
    assert notifier.delivered == []
    assert await cache.filter_new("feed", items) == []


@pytest.mark.asyncio
async def test_pagewatch_reports_only_changes(
    make_context, fetcher: FakeFetcher, notifier: FakeNotifier, cache: DedupCache
) -> None:
    fetcher.script[URL] = ["v1", "v1", "v2", "v1"]
    ctx = make_context(task_config={"urls": [URL], "targets": ["!room:x"]})

    try:
        await pagewatch.check_pages(ctx)  # first sight: cached silently
        assert notifier.delivered == []
        assert await cache.count(namespace("pagewatch", URL)) == 1

        await pagewatch.check_pages(ctx)  # unchanged
        assert notifier.delivered == []

        await pagewatch.check_pages(ctx)  # changed
        assert [(d.destination, d.content) for d in notifier.delivered] == [("!room:x", f"Page changed: {URL}")]

        await pagewatch.check_pages(ctx)  # back to a version already seen
        assert len(notifier.delivered) == 1
    finally:
        await ctx.requests.aclose()


@pytest.mark.asyncio
async def test_pagewatch_skips_failing_and_invalid_urls(make_context, fetcher: FakeFetcher, cache: DedupCache) -> None:
    bad = "https://down.example/"
    fetcher.script[bad] = [fetch_error(bad), fetch_error(bad)]
    ctx = make_context(task_config={"urls": ["not a url", bad, URL]})

    try:
        await pagewatch.check_pages(ctx)
    finally:
        await ctx.requests.aclose()

    assert fetcher.calls == [bad, bad, URL]
    assert await cache.count(namespace("pagewatch", URL)) == 1
    assert await cache.count(namespace("pagewatch", bad)) == 0


@pytest.mark.asyncio
async def test_pagewatch_list_command(make_context, notifier: FakeNotifier) -> None:
    ctx = make_context(task_config={"urls": [URL]})

    await pagewatch.answer_list(ctx, MessageEvent(body="hello", room_id="!r:x"))
    assert notifier.delivered == []

    await pagewatch.answer_list(ctx, MessageEvent(body="!pagewatch list", room_id="!r:x"))
    assert notifier.delivered[0].destination == "!r:x"
    assert URL in notifier.delivered[0].content


def test_page_item_is_content_addressed() -> None:
    a = pagewatch.page_item(URL, "body")
    b = pagewatch.page_item("https://other.example/", "body")
    c = pagewatch.page_item(URL, "body changed")

    assert a["id"] == b["id"]
    assert a["id"] != c["id"]
    assert a["title"] == URL


def test_descriptor_shape() -> None:
    task = pagewatch.create_task()

    assert task.slug == "pagewatch"
    assert task.scheduled_actions[0].interval_seconds == pagewatch.DEFAULT_INTERVAL_SECONDS
    assert [t.event_kind for t in task.trigger_actions] == ["message"]
    assert set(task.config_template) == {"urls", "interval_seconds", "targets"}
