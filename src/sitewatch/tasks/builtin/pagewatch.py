# src/sitewatch/tasks/builtin/pagewatch.py

from __future__ import annotations

"""
pagewatch: report when a watched page changes.

Config section:
    {"urls": ["https://..."], "interval_seconds": 900, "targets": ["!room:server"]}

There is no parsing: each distinct body of a page is one item (id = SHA-256 of
the body), so every change is reported once. The first version ever seen of a
URL is cached silently.
"""

import hashlib
from typing import Any

from ...errors import ExhaustedRetriesError
from ...store.dedup_cache import namespace
from ..task_api import report_new_items
from ..task_models import MessageEvent, ScheduledAction, TaskContext, TaskDescriptor, TriggerAction

SLUG = "pagewatch"
DEFAULT_INTERVAL_SECONDS = 900.0
LIST_COMMAND = "!pagewatch list"


def watched_urls(ctx: TaskContext) -> list[str]:
    raw = ctx.task_config.get("urls") or []
    if isinstance(raw, str):
        raw = [raw]
    return [str(u).strip() for u in raw if str(u).strip()]


def page_item(url: str, body: str) -> dict[str, Any]:
    digest = hashlib.sha256(body.encode("utf-8")).hexdigest()
    return {"id": digest, "title": url}


def render_change(item: dict[str, Any]) -> str:
    return f"Page changed: {item['title']}"


async def check_pages(ctx: TaskContext) -> None:
    urls = watched_urls(ctx)
    if not urls:
        ctx.logger.warning("%s: no urls configured", ctx.slug)
        return

    for url in urls:
        try:
            body = await ctx.requests.request_url(url)
        except ValueError as e:
            ctx.logger.warning("%s: skipping %s", ctx.slug, e)
            continue
        except ExhaustedRetriesError as e:
            ctx.logger.warning("%s: giving up on %s this run (%r)", ctx.slug, url, e.last_error)
            continue

        ns = namespace(SLUG, url)
        item = page_item(url, body)
        if await ctx.cache.count(ns) == 0:
            ctx.logger.info("%s: now watching %s", ctx.slug, url)
            await ctx.cache.commit(ns, [item])
            continue

        await report_new_items(ctx, ns, [item], render_change)


async def answer_list(ctx: TaskContext, event: Any) -> None:
    if not isinstance(event, MessageEvent):
        return
    if event.body.strip().lower() != LIST_COMMAND:
        return

    urls = watched_urls(ctx)
    if urls:
        text = "Watched pages:\n" + "\n".join(f"  {u}" for u in urls)
    else:
        text = "No pages are watched."
    await ctx.notifier.deliver(event.room_id, text)


def create_task() -> TaskDescriptor:
    return TaskDescriptor(
        slug=SLUG,
        name="Page watcher",
        version="1.0.0",
        scheduled_actions=(
            ScheduledAction(DEFAULT_INTERVAL_SECONDS, "check watched pages", check_pages),
        ),
        trigger_actions=(TriggerAction("message", answer_list),),
        config_template={
            "urls": [],
            "interval_seconds": DEFAULT_INTERVAL_SECONDS,
            "targets": [],
        },
    )
