# src/sitewatch/store/dedup_cache.py

from __future__ import annotations

"""
Dedup cache and per-task settings.

Typical task flow:
    new_items = await cache.filter_new(ns, scraped)
    ... deliver new_items ...
    await cache.commit(ns, new_items)

filter_new() is a pure read. commit() must only receive items that came out
of filter_new() for the same namespace: the store does not guard against
committing an id twice.

Store I/O runs in a worker thread so the event loop keeps serving other tasks.
"""

import asyncio
import json
import logging
from collections.abc import Sequence
from typing import Any, TypeVar

from ..core.ports import CacheRepo, Item
from ..errors import InvalidItemError, StoreError

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=Item)

NAMESPACE_SEPARATOR = "$"


def namespace(slug: str, *parts: str) -> str:
    """Sub-namespace for a task that tracks several feeds, e.g. namespace("tasvideos", "movies")."""
    return NAMESPACE_SEPARATOR.join([slug, *[str(p) for p in parts if str(p)]])


def item_id(item: Item) -> str:
    """Return the item's id as a string, or raise InvalidItemError."""
    try:
        raw = item.get("id")
    except AttributeError:
        raise InvalidItemError(item) from None
    if raw is None:
        raise InvalidItemError(item)
    value = str(raw).strip()
    if not value:
        raise InvalidItemError(item)
    return value


def _item_title(item: Item) -> str | None:
    title = item.get("title")
    return None if title is None else str(title)


class DedupCache:
    def __init__(self, store: CacheRepo) -> None:
        self._store = store

    @property
    def store(self) -> CacheRepo:
        return self._store

    async def filter_new(self, task_namespace: str, items: Sequence[T]) -> list[T]:
        """
        Return the items whose id was never committed under task_namespace,
        in input order. Every item must carry a non-empty id.
        """
        ids = [item_id(i) for i in items]
        if not ids:
            return []

        seen = await asyncio.to_thread(self._store.seen_ids, ids, task_namespace)
        return [item for item, iid in zip(items, ids) if iid not in seen]

    async def commit(self, task_namespace: str, items: Sequence[Item]) -> int:
        """Persist (id, title) of each item under task_namespace. Returns rows written."""
        if not items:
            return 0
        rows: dict[str, str | None] = {}
        for i in items:
            # A page can list the same item twice; keep the first.
            rows.setdefault(item_id(i), _item_title(i))
        return await asyncio.to_thread(self._store.insert_items, task_namespace, list(rows.items()))

    async def filter_and_commit(self, task_namespace: str, items: Sequence[T]) -> list[T]:
        """filter_new() followed by commit() of the result. Returns the new items."""
        new_items = await self.filter_new(task_namespace, items)
        await self.commit(task_namespace, new_items)
        return new_items

    async def count(self, task_namespace: str | None = None) -> int:
        return await asyncio.to_thread(self._store.count_items, task_namespace)

    async def get_settings(self, identifier: str) -> dict[str, Any]:
        """
        Return the stored settings blob. The first read of an unknown
        identifier stores and returns an empty one.
        """
        raw = await asyncio.to_thread(self._store.get_settings_row, identifier)
        if raw is None:
            await self.save_settings(identifier, {})
            return {}

        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise StoreError(f"settings for {identifier} are not valid JSON: {e}") from e
        if not isinstance(data, dict):
            raise StoreError(f"settings for {identifier} are not a JSON object")
        return data

    async def save_settings(self, identifier: str, data: dict[str, Any]) -> None:
        """Replace the stored settings blob wholesale."""
        payload = json.dumps(data, ensure_ascii=False)
        await asyncio.to_thread(self._store.upsert_settings, identifier, payload)
        logger.debug("Saved settings identifier=%s", identifier)
