"""Short-TTL key/value stores backing the coherence caches.

Both caches the proxy keeps (branch -> SHA, file -> last seen SHA) go through
the small ``KeyValueStore`` interface so request handling never touches a
global cache object. Stores are best-effort: a failing backend reads as a
miss and a failed write is dropped, which degrades to always re-resolving.
"""

from __future__ import annotations

import logging
import threading
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Protocol

from supabase import create_client

from server.config import ProxyConfig

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_iso8601_z(dt: datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt = dt.astimezone(timezone.utc)
    return dt.isoformat().replace("+00:00", "Z")


def parse_iso8601(dt_str: str | None) -> datetime | None:
    if not dt_str:
        return None
    s = dt_str.strip()
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(s)
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


class KeyValueStore(Protocol):
    def get(self, key: str) -> Any | None: ...

    def put(self, key: str, value: Any, ttl: int) -> None: ...


class MemoryStore:
    """Per-process store. Entries expire ``ttl`` seconds after being written."""

    # Seconds between sweeps of expired entries
    sweep_interval = 60

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._entries: dict[str, tuple[float, Any]] = {}
        self._lock = threading.Lock()
        self._last_sweep = clock()

    def get(self, key: str) -> Any | None:
        with self._lock:
            item = self._entries.get(key)
            if item is None:
                return None
            expires_at, value = item
            if self._clock() >= expires_at:
                del self._entries[key]
                return None
            return value

    def put(self, key: str, value: Any, ttl: int) -> None:
        with self._lock:
            now = self._clock()
            self._entries[key] = (now + ttl, value)
            # Keys nobody reads again would otherwise never be dropped
            if now - self._last_sweep >= self.sweep_interval:
                self._last_sweep = now
                for k in [k for k, (exp, _) in self._entries.items() if exp <= now]:
                    del self._entries[k]

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class SupabaseStore:
    """Store shared by all workers, kept in a Supabase table.

    Expected columns: ``key`` (text, primary key), ``value`` (jsonb) and
    ``expires_at`` (timestamptz).
    """

    def __init__(self, client, table: str = "edge_kv"):
        self.client = client
        self.table = table

    def get(self, key: str) -> Any | None:
        try:
            resp = (
                self.client.table(self.table)
                .select("*")
                .eq("key", key)
                .limit(1)
                .execute()
            )
        except Exception as e:
            logger.warning(f"Coherence store read failed for {key}: {e}")
            return None
        data = getattr(resp, "data", None) or []
        if not data:
            return None
        row = data[0]
        expires_at = parse_iso8601(row.get("expires_at"))
        if not expires_at or utcnow() >= expires_at:
            return None
        return row.get("value")

    def put(self, key: str, value: Any, ttl: int) -> None:
        row = {
            "key": key,
            "value": value,
            "expires_at": to_iso8601_z(utcnow() + timedelta(seconds=ttl)),
        }
        try:
            self.client.table(self.table).upsert(row).execute()
        except Exception as e:
            logger.warning(f"Coherence store write failed for {key}: {e}")


def create_store(config: ProxyConfig) -> KeyValueStore:
    """Pick the Supabase store when credentials are configured, else memory."""
    if config.supabase_url and config.supabase_key:
        try:
            client = create_client(config.supabase_url, config.supabase_key)
        except Exception as e:
            logger.error(f"Supabase client setup failed, using in-memory store: {e}")
        else:
            logger.info(f"Using Supabase coherence store (table {config.coherence_table})")
            return SupabaseStore(client, config.coherence_table)
    return MemoryStore()
