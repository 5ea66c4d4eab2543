"""Reachability cache for URL checks.

Uses SQLite for persistence across restarts. Entries carry their creation
time; readers pass the maximum age they accept, so the same row can serve a
strict caller and a lenient one. Old entries are purged periodically.

A missing cache (``None``) is always acceptable to callers and simply means
every lookup misses.
"""

import json
import sqlite3
import time
from dataclasses import asdict
from pathlib import Path
from typing import Protocol

from loguru import logger

from relink_mcp.models import URLCheckResult

_DEFAULT_MAX_AGE = 3600  # seconds

# Purge expired entries every N writes
_PURGE_INTERVAL = 50


class ResultCache(Protocol):
    def get(self, url: str, max_age: float | None = None) -> URLCheckResult | None: ...

    def put(self, url: str, result: URLCheckResult) -> None: ...


class URLResultCache:
    """SQLite-backed cache of ``URLCheckResult`` keyed by URL."""

    def __init__(self, db_path: Path, max_age: float = _DEFAULT_MAX_AGE):
        self._db_path = db_path
        self._max_age = max_age
        self._op_count = 0

        db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(db_path), check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode = WAL")
        self._conn.execute("PRAGMA synchronous = NORMAL")
        self._conn.execute("PRAGMA busy_timeout = 5000")

        self._create_tables()
        logger.debug(f"URLResultCache initialized at {db_path}")

    def _create_tables(self) -> None:
        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS url_results (
                url TEXT PRIMARY KEY,
                status INTEGER NOT NULL,
                result TEXT NOT NULL,
                created_at REAL NOT NULL,
                hit_count INTEGER NOT NULL DEFAULT 0
            )
        """)
        self._conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_url_results_created
            ON url_results(created_at)
        """)
        self._conn.commit()

    def get(self, url: str, max_age: float | None = None) -> URLCheckResult | None:
        """Cached result for *url* if younger than *max_age* seconds."""
        max_age = self._max_age if max_age is None else max_age
        cutoff = time.time() - max_age

        row = self._conn.execute(
            "SELECT result FROM url_results WHERE url = ? AND created_at > ?",
            (url, cutoff),
        ).fetchone()

        if row is None:
            logger.debug(f"Cache MISS: {url}")
            return None

        self._conn.execute(
            "UPDATE url_results SET hit_count = hit_count + 1 WHERE url = ?",
            (url,),
        )
        self._conn.commit()
        logger.debug(f"Cache HIT: {url}")

        data = json.loads(row["result"])
        data["from_cache"] = True
        return URLCheckResult(**data)

    def put(self, url: str, result: URLCheckResult) -> None:
        """Store *result*; transport errors (status 0) are never cached."""
        if result.status == 0:
            return

        data = asdict(result)
        data["from_cache"] = False
        self._conn.execute(
            """INSERT OR REPLACE INTO url_results
               (url, status, result, created_at, hit_count)
               VALUES (?, ?, ?, ?, 0)""",
            (url, result.status, json.dumps(data, ensure_ascii=False), time.time()),
        )
        self._conn.commit()
        logger.debug(f"Cache SET: {url} ({result.status})")

        self._op_count += 1
        if self._op_count >= _PURGE_INTERVAL:
            self._purge_expired()
            self._op_count = 0

    def _purge_expired(self) -> None:
        cursor = self._conn.execute(
            "DELETE FROM url_results WHERE created_at <= ?",
            (time.time() - self._max_age,),
        )
        if cursor.rowcount > 0:
            self._conn.commit()
            logger.debug(f"Purged {cursor.rowcount} expired cache entries")

    def clear(self) -> int:
        """Remove every entry. Returns the number of rows deleted."""
        cursor = self._conn.execute("DELETE FROM url_results")
        self._conn.commit()
        return cursor.rowcount

    def stats(self) -> dict:
        """Get cache statistics."""
        cutoff = time.time() - self._max_age
        row = self._conn.execute(
            """
            SELECT COUNT(*) as total,
                   SUM(CASE WHEN created_at > ? THEN 1 ELSE 0 END) as active,
                   SUM(hit_count) as total_hits
            FROM url_results
        """,
            (cutoff,),
        ).fetchone()
        return {
            "total": row["total"],
            "active": row["active"] or 0,
            "hits": row["total_hits"] or 0,
        }

    def close(self) -> None:
        """Close database connection."""
        try:
            self._conn.close()
        except sqlite3.Error as e:
            logger.debug(f"Error closing cache: {e}")
