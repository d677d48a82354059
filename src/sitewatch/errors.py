# src/sitewatch/errors.py

"""
Exception hierarchy.

Runtime failures (fetch, item, action) are contained to the fetch or action
that raised them. Store and config failures are fatal only during startup.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any


class SitewatchError(Exception):
    """Base class for all sitewatch errors."""


class TransientFetchError(SitewatchError):
    """A single fetch attempt failed (transport error or non-success status). Retryable."""

    def __init__(self, url: str, message: str, *, status_code: int | None = None) -> None:
        super().__init__(f"{message}: {url}")
        self.url = url
        self.status_code = status_code


class ExhaustedRetriesError(SitewatchError):
    """All attempts for one queued request failed."""

    def __init__(self, url: str, attempts: int, last_error: BaseException | None) -> None:
        super().__init__(f"Request failed after {attempts} attempt(s): {url} ({last_error!r})")
        self.url = url
        self.attempts = attempts
        self.last_error = last_error


class QueueFullError(SitewatchError):
    """The request queue is at capacity and the caller asked not to wait."""


class QueueClosedError(SitewatchError):
    """The request queue was shut down before the request could run."""


class InvalidItemError(SitewatchError):
    """An item handed to the dedup cache has no usable id."""

    def __init__(self, item: Any) -> None:
        super().__init__(f"Item has no id: {item!r}")
        self.item = item


class StoreError(SitewatchError):
    """A cache/settings store operation failed."""


class StoreOpenError(StoreError):
    def __init__(self, path: str | Path, reason: str = "") -> None:
        msg = f"Could not open the cache database: {path}"
        if reason:
            msg = f"{msg} ({reason})"
        super().__init__(msg)
        self.path = Path(path)


class TaskActionError(SitewatchError):
    """Wraps an exception that escaped a scheduled or triggered action."""

    def __init__(self, slug: str, description: str, cause: BaseException) -> None:
        super().__init__(f"{slug}: {description} failed: {cause!r}")
        self.slug = slug
        self.description = description
        self.__cause__ = cause


class ConfigError(SitewatchError):
    def __init__(self, message: str, *, path: str | Path | None = None, details: list[str] | None = None) -> None:
        super().__init__(message)
        self.path = Path(path) if path is not None else None
        self.details = list(details or [])
