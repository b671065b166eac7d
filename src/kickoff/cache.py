"""
Prediction cache.

Computed predictions are cached under `match_prediction:<match_id>` with a
TTL. Backends:
- SqliteCache: file-based, no server needed (default)
- RedisCache: shared across processes
- NullCache: caching disabled

The cache is best-effort: every backend failure is logged and reported as a
miss, so callers never have to handle cache errors.
"""

from __future__ import annotations
import asyncio
import json
import logging
import sqlite3
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Optional

import redis

from kickoff.config import Settings

logger = logging.getLogger(__name__)


def prediction_key(match_id: int) -> str:
    return f"match_prediction:{match_id}"


class PredictionCache:
    """Async facade; subclasses implement the blocking _get/_set/_delete."""

    name = "base"

    async def get(self, key: str) -> Optional[dict]:
        try:
            raw = await asyncio.to_thread(self._get, key)
        except Exception as e:
            logger.warning(f"[cache:{self.name}] get {key} failed: {e}")
            return None
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            logger.warning(f"[cache:{self.name}] dropping unreadable entry {key}")
            return None

    async def set(self, key: str, value: dict, ttl_seconds: int) -> bool:
        try:
            await asyncio.to_thread(self._set, key, json.dumps(value, default=str), ttl_seconds)
        except Exception as e:
            logger.warning(f"[cache:{self.name}] set {key} failed: {e}")
            return False
        return True

    async def delete(self, key: str) -> bool:
        try:
            await asyncio.to_thread(self._delete, key)
        except Exception as e:
            logger.warning(f"[cache:{self.name}] delete {key} failed: {e}")
            return False
        return True

    def _get(self, key: str) -> Optional[str]:
        raise NotImplementedError

    def _set(self, key: str, value: str, ttl_seconds: int) -> None:
        raise NotImplementedError

    def _delete(self, key: str) -> None:
        raise NotImplementedError


class NullCache(PredictionCache):
    name = "none"

    def _get(self, key: str) -> Optional[str]:
        return None

    def _set(self, key: str, value: str, ttl_seconds: int) -> None:
        pass

    def _delete(self, key: str) -> None:
        pass


class SqliteCache(PredictionCache):
    """File-backed cache; one short-lived connection per call."""

    name = "sqlite"

    def __init__(self, db_path: str = "data/cache.db"):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(str(self.db_path))

    def _init_schema(self) -> None:
        con = self._connect()
        con.execute("PRAGMA journal_mode=WAL")
        con.execute("""
            CREATE TABLE IF NOT EXISTS prediction_cache (
                key VARCHAR PRIMARY KEY,
                value VARCHAR NOT NULL,
                cached_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                expires_at TIMESTAMP
            );
        """)
        con.execute("CREATE INDEX IF NOT EXISTS idx_pred_expires ON prediction_cache(expires_at);")
        con.commit()
        con.close()

    def _get(self, key: str) -> Optional[str]:
        con = self._connect()
        row = con.execute(
            "SELECT value, expires_at FROM prediction_cache WHERE key = ?", [key]
        ).fetchone()
        con.close()
        if not row:
            return None
        value, expires_at = row
        if expires_at and datetime.now() > datetime.fromisoformat(expires_at):
            return None
        return value

    def _set(self, key: str, value: str, ttl_seconds: int) -> None:
        expires_at = datetime.now() + timedelta(seconds=ttl_seconds)
        con = self._connect()
        con.execute(
            "INSERT OR REPLACE INTO prediction_cache (key, value, expires_at) VALUES (?, ?, ?)",
            [key, value, expires_at.isoformat()],
        )
        con.commit()
        con.close()
        logger.debug(f"[cache] cached {key}, ttl={ttl_seconds}s")

    def _delete(self, key: str) -> None:
        con = self._connect()
        con.execute("DELETE FROM prediction_cache WHERE key = ?", [key])
        con.commit()
        con.close()

    def cleanup_expired(self) -> int:
        """Remove expired entries. Returns number deleted."""
        con = self._connect()
        cur = con.execute("DELETE FROM prediction_cache WHERE expires_at < ?", [datetime.now().isoformat()])
        deleted = cur.rowcount
        con.commit()
        con.close()
        if deleted:
            logger.info(f"[cache] cleaned up {deleted} expired entries")
        return deleted


class RedisCache(PredictionCache):
    name = "redis"

    def __init__(self, url: str, client: Any = None):
        self.redis_client = client or redis.Redis.from_url(url, decode_responses=True)

    def _get(self, key: str) -> Optional[str]:
        return self.redis_client.get(key)

    def _set(self, key: str, value: str, ttl_seconds: int) -> None:
        self.redis_client.set(key, value, ex=ttl_seconds)

    def _delete(self, key: str) -> None:
        self.redis_client.delete(key)


def build_cache(s: Settings) -> PredictionCache:
    if not s.cache_enabled or s.cache_backend == "none":
        return NullCache()
    if s.cache_backend == "redis":
        return RedisCache(s.redis_url)
    return SqliteCache(s.cache_path)
