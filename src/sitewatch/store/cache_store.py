# src/sitewatch/store/cache_store.py

from __future__ import annotations

import contextlib
import logging
import sqlite3
from collections.abc import Iterable
from datetime import datetime, timezone
from pathlib import Path

from ..errors import StoreError, StoreOpenError

logger = logging.getLogger(__name__)

# Stay well under SQLITE_MAX_VARIABLE_NUMBER (999 on older builds).
_IN_CHUNK = 500


class CacheStore:
    """
    SQLite cache store.

    Two tables:
    - cached_items: every item id ever reported, per task namespace.
      Append-only; primary key (id, task).
    - settings: one JSON blob per identifier.

    Tables are created only when cached_items is missing (new database file).

    Thread-safety:
    - each method opens its own SQLite connection, so calls may run in worker threads
    """

    def __init__(self, db_path: str | Path = "db.sqlite") -> None:
        self._db_path = Path(db_path)
        try:
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StoreOpenError(self._db_path, str(e)) from e

        self._closed = False
        try:
            self._ensure_schema()
            total = self.count_items()
        except StoreOpenError:
            raise
        except (sqlite3.Error, StoreError) as e:
            raise StoreOpenError(self._db_path, str(e)) from e
        logger.info("CacheStore ready db=%s cached_items=%s", self._db_path, total)

    @property
    def path(self) -> Path:
        return self._db_path

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        """Refuse further calls. Connections are per call, so nothing stays open."""
        if not self._closed:
            self._closed = True
            logger.info("CacheStore closed db=%s", self._db_path)

    # ---- low-level helpers ----

    def _get_conn(self) -> sqlite3.Connection:
        if self._closed:
            raise StoreError(f"cache store {self._db_path} is closed")
        try:
            conn = sqlite3.connect(str(self._db_path), timeout=30.0)
        except sqlite3.Error as e:
            raise StoreOpenError(self._db_path, str(e)) from e
        conn.row_factory = sqlite3.Row
        self._configure_conn(conn)
        return conn

    @staticmethod
    def _configure_conn(conn: sqlite3.Connection) -> None:
        with contextlib.suppress(Exception):
            conn.execute("PRAGMA journal_mode=WAL")

    def has_table(self, name: str) -> bool:
        conn = self._get_conn()
        try:
            row = conn.execute(
                "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = ?",
                (name,),
            ).fetchone()
            return row is not None
        except sqlite3.Error as e:
            raise StoreError(f"table lookup failed for {name}: {e}") from e
        finally:
            conn.close()

    def _ensure_schema(self) -> None:
        if self.has_table("cached_items"):
            return

        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS cached_items (
                    id VARCHAR(127),
                    task TEXT,
                    title TEXT,
                    added DATETIME DEFAULT CURRENT_TIMESTAMP,
                    PRIMARY KEY (id, task)
                )
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS settings (
                    identifier VARCHAR(127) PRIMARY KEY,
                    data TEXT
                )
                """
            )
            conn.commit()
            logger.info("CacheStore: created tables in new database %s", self._db_path)
        finally:
            conn.close()

    # ---- public API ----

    def count_items(self, task: str | None = None) -> int:
        conn = self._get_conn()
        try:
            if task is None:
                (n,) = conn.execute("SELECT COUNT(*) FROM cached_items").fetchone()
            else:
                (n,) = conn.execute(
                    "SELECT COUNT(*) FROM cached_items WHERE task = ?", (task,)
                ).fetchone()
            return int(n)
        except sqlite3.Error as e:
            raise StoreError(f"cache count failed for task={task}: {e}") from e
        finally:
            conn.close()

    def seen_ids(self, ids: Iterable[str], task: str) -> set[str]:
        """Return the subset of ids already cached for this task."""
        id_list = list(dict.fromkeys(ids))
        if not id_list:
            return set()

        seen: set[str] = set()
        conn = self._get_conn()
        try:
            for start in range(0, len(id_list), _IN_CHUNK):
                chunk = id_list[start : start + _IN_CHUNK]
                placeholders = ", ".join("?" for _ in chunk)
                rows = conn.execute(
                    f"""
                    SELECT id
                    FROM cached_items
                    WHERE id IN ({placeholders})
                      AND task = ?
                    """,
                    (*chunk, task),
                ).fetchall()
                seen.update(str(r["id"]) for r in rows)
            return seen
        except sqlite3.Error as e:
            raise StoreError(f"cache lookup failed for task={task}: {e}") from e
        finally:
            conn.close()

    def insert_items(self, task: str, rows: Iterable[tuple[str, str | None]]) -> int:
        """
        Insert (id, title) rows for a task in one transaction.

        Inserting an id that is already cached for the task is a caller error
        (filter first); it raises StoreError and nothing from the batch is kept.
        """
        now = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")
        params = [(str(item_id), task, title, now) for item_id, title in rows]
        if not params:
            return 0

        conn = self._get_conn()
        try:
            with conn:
                conn.executemany(
                    "INSERT INTO cached_items (id, task, title, added) VALUES (?, ?, ?, ?)",
                    params,
                )
            logger.debug("Cached %d item(s) for task=%s", len(params), task)
            return len(params)
        except sqlite3.Error as e:
            raise StoreError(f"cache insert failed for task={task}: {e}") from e
        finally:
            conn.close()

    def get_settings_row(self, identifier: str) -> str | None:
        conn = self._get_conn()
        try:
            row = conn.execute(
                "SELECT data FROM settings WHERE identifier = ?",
                (identifier,),
            ).fetchone()
            return None if row is None else row["data"]
        except sqlite3.Error as e:
            raise StoreError(f"settings read failed for {identifier}: {e}") from e
        finally:
            conn.close()

    def upsert_settings(self, identifier: str, data: str) -> None:
        conn = self._get_conn()
        try:
            with conn:
                conn.execute(
                    """
                    INSERT INTO settings (identifier, data)
                    VALUES (?, ?)
                    ON CONFLICT(identifier) DO UPDATE SET data = excluded.data
                    """,
                    (identifier, data),
                )
        except sqlite3.Error as e:
            raise StoreError(f"settings write failed for {identifier}: {e}") from e
        finally:
            conn.close()
