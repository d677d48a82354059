# src/sitewatch/core/ports.py

from __future__ import annotations

"""
Ports (interfaces) used by the core.

The engine depends on Protocols instead of concrete implementations,
so the fetcher, the store and the notification sink stay swappable
and tests can run against fakes.
"""

from typing import Any, Awaitable, Iterable, Mapping, Protocol

from ..fetch.models import FetchResult, FetchTarget

Item = Mapping[str, Any]
# Scraped item: any mapping with at least a non-empty "id" (and usually "title").


class Fetcher(Protocol):
    """
    Performs one network fetch. Raises TransientFetchError (or any exception)
    on failure; the request queue treats every failure as retryable.
    """

    def fetch(self, target: FetchTarget) -> Awaitable[FetchResult]: ...

    def aclose(self) -> Awaitable[None]: ...


class Notifier(Protocol):
    """
    Notification sink: delivers rendered content to a destination
    (Matrix room id, console, ...). Returns False on a logged failure.
    """

    def deliver(self, destination: str, content: str) -> Awaitable[bool]: ...


class CacheRepo(Protocol):
    """Synchronous durable store used by DedupCache."""

    def seen_ids(self, ids: Iterable[str], task: str) -> set[str]: ...
    def insert_items(self, task: str, rows: Iterable[tuple[str, str | None]]) -> int: ...
    def get_settings_row(self, identifier: str) -> str | None: ...
    def upsert_settings(self, identifier: str, data: str) -> None: ...
    def count_items(self, task: str | None = None) -> int: ...
    def close(self) -> None: ...
