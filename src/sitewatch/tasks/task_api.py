# src/sitewatch/tasks/task_api.py

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from typing import TypeVar

from ..core.ports import Item
from .task_models import TaskContext

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=Item)


async def report_new_items(
    ctx: TaskContext,
    task_namespace: str,
    items: Sequence[T],
    render: Callable[[T], str],
    *,
    targets: Sequence[str] | None = None,
) -> list[T]:
    """
    Standard tail of a scraping action: drop items seen before, deliver the
    rest to every target, then commit them.

    An item whose every delivery failed is not committed, so the next run
    reports it again. With no targets configured, new items are committed
    silently (nothing could ever deliver them).

    Returns the new items.
    """
    new_items = await ctx.cache.filter_new(task_namespace, items)
    if not new_items:
        logger.debug("%s: no new items in %s", ctx.slug, task_namespace)
        return []

    dests = list(targets) if targets is not None else ctx.targets()
    logger.info("%s: %d new item(s) in %s", ctx.slug, len(new_items), task_namespace)

    if not dests:
        logger.warning("%s: no targets configured; caching %d item(s) unreported", ctx.slug, len(new_items))
        await ctx.cache.commit(task_namespace, new_items)
        return new_items

    delivered: list[T] = []
    for item in new_items:
        content = render(item)
        ok_any = False
        for dest in dests:
            if await ctx.notifier.deliver(dest, content):
                ok_any = True
        if ok_any:
            delivered.append(item)
        else:
            logger.warning("%s: item %r was not delivered anywhere; will retry next run", ctx.slug, item.get("id"))

    await ctx.cache.commit(task_namespace, delivered)
    return new_items
