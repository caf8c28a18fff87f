"""
Bounded in-process response cache with per-entry TTL and durable snapshots.

- Entries expire `ttl_seconds` after they are written; expired entries are
  deleted when they are looked up.
- At capacity, the entry with the smallest `created_at` is evicted
  (insertion order, not LRU). `access_count` is kept for reporting only.
- Lookups and writes are in-memory and never wait on I/O. Every mutation bumps
  a generation counter; `await flush()` writes a JSON-compatible snapshot of
  the latest generation to a SnapshotStore outside the lock, and
  `await restore()` merges a stored snapshot back in. Unreadable or malformed
  snapshots leave the cache empty.
"""
import asyncio
import hashlib
import inspect
import json
import os
import tempfile
import time
from dataclasses import asdict, dataclass
from pathlib import Path
from threading import Lock
from typing import Any, Callable, Dict, Iterable, Optional, Protocol, Tuple

from redis.asyncio import Redis

from wizard_ai.core.logging import get_logger
from wizard_ai.core.metrics import record_cache_eviction

logger = get_logger(__name__)

SNAPSHOT_VERSION = 1


@dataclass
class CacheEntry:
    """Single cached value. Owned by BoundedCache, never handed out."""

    value: Any
    created_at: float
    expires_at: float
    access_count: int = 0

    def is_expired(self, now: float) -> bool:
        return now > self.expires_at


class SnapshotStore(Protocol):
    """
    Durable slot holding one cache snapshot.

    Methods may be plain functions or coroutines. Plain (blocking) stores are
    run in a worker thread so they never stall the event loop.
    """

    def load(self) -> Optional[Dict[str, Any]]:
        ...

    def save(self, snapshot: Dict[str, Any]) -> None:
        ...


async def _call_store(method: Callable[..., Any], *args: Any) -> Any:
    if inspect.iscoroutinefunction(method):
        return await method(*args)
    return await asyncio.to_thread(method, *args)


class MemorySnapshotStore:
    """Snapshot store kept in memory (tests, or sharing between instances)."""

    def __init__(self, snapshot: Optional[Dict[str, Any]] = None):
        self.snapshot = snapshot
        self.save_count = 0

    def load(self) -> Optional[Dict[str, Any]]:
        return self.snapshot

    def save(self, snapshot: Dict[str, Any]) -> None:
        self.snapshot = json.loads(json.dumps(snapshot))
        self.save_count += 1


class FileSnapshotStore:
    """Snapshot store backed by a JSON file, replaced atomically on save."""

    def __init__(self, path: str):
        self.path = Path(path)

    def load(self) -> Optional[Dict[str, Any]]:
        if not self.path.exists():
            return None
        with open(self.path, "r", encoding="utf-8") as f:
            return json.load(f)

    def save(self, snapshot: Dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=str(self.path.parent), suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(snapshot, f)
            os.replace(tmp_path, self.path)
        except Exception:
            Path(tmp_path).unlink(missing_ok=True)
            raise


class RedisSnapshotStore:
    """
    Snapshot store backed by a single Redis key.

    Takes an async `redis.asyncio.Redis` client so that connection pooling
    stays with the host application; `from_url()` builds one.
    """

    def __init__(self, client: Redis, key: str = "wizard_ai:cache_snapshot"):
        self.client = client
        self.key = key

    @classmethod
    def from_url(cls, url: str, key: str = "wizard_ai:cache_snapshot") -> "RedisSnapshotStore":
        client = Redis.from_url(
            url,
            socket_connect_timeout=5,
            socket_timeout=5,
            decode_responses=True,
        )
        return cls(client, key=key)

    async def load(self) -> Optional[Dict[str, Any]]:
        raw = await self.client.get(self.key)
        if raw is None:
            return None
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        return json.loads(raw)

    async def save(self, snapshot: Dict[str, Any]) -> None:
        await self.client.set(self.key, json.dumps(snapshot))


class BoundedCache:
    """
    Thread-safe TTL cache with a fixed capacity.

    Contract:
    - get(key) -> (value, found)
    - set(key, value)
    - clear()
    - await flush() / await restore() for the snapshot store
    """

    def __init__(
        self,
        max_size: int = 100,
        ttl_seconds: float = 3600.0,
        store: Optional[SnapshotStore] = None,
        clock: Callable[[], float] = time.time,
    ):
        if max_size <= 0:
            raise ValueError("max_size must be > 0")
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be > 0")

        self.max_size = max_size
        self.ttl_seconds = ttl_seconds
        self._store = store
        self._clock = clock
        self._lock = Lock()
        self._entries: Dict[str, CacheEntry] = {}
        self._hits = 0
        self._misses = 0
        self._generation = 0
        self._saved_generation = 0
        self._restored = store is None
        self._save_lock: Optional[asyncio.Lock] = None

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    @property
    def dirty(self) -> bool:
        """True when entries changed since the last successful flush."""
        with self._lock:
            return self._store is not None and self._generation != self._saved_generation

    def get(
        self,
        key: str,
        decode: Optional[Callable[[Any], Any]] = None,
    ) -> Tuple[Optional[Any], bool]:
        """
        Look up a key.

        Args:
            key: Cache key
            decode: Optional conversion of the stored value. An entry it
                rejects (TypeError/ValueError) is deleted and counted as a miss.

        Returns:
            (value, True) on a hit, (None, False) when absent, expired or undecodable.
        """
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None, False

            if entry.is_expired(self._clock()):
                del self._entries[key]
                self._misses += 1
                self._generation += 1
                return None, False

            value = entry.value
            if decode is not None:
                try:
                    value = decode(entry.value)
                except (TypeError, ValueError) as e:
                    del self._entries[key]
                    self._misses += 1
                    self._generation += 1
                    logger.warning(
                        "cache_entry_undecodable",
                        key=key,
                        error=str(e),
                        error_type=type(e).__name__,
                    )
                    return None, False

            entry.access_count += 1
            self._hits += 1
            return value, True

    def has(self, key: str) -> bool:
        """Check presence without touching hit/miss counters."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return False
            if entry.is_expired(self._clock()):
                del self._entries[key]
                self._generation += 1
                return False
            return True

    def set(self, key: str, value: Any) -> None:
        """Insert or overwrite an entry, evicting the oldest one at capacity."""
        with self._lock:
            if key not in self._entries and len(self._entries) >= self.max_size:
                self._evict_oldest()

            now = self._clock()
            self._entries[key] = CacheEntry(
                value=value,
                created_at=now,
                expires_at=now + self.ttl_seconds,
            )
            self._generation += 1

    def warm(self, entries: Iterable[Tuple[str, Any]]) -> int:
        """
        Pre-populate keys that are not already cached.

        Returns:
            Number of entries written.
        """
        written = 0
        for key, value in entries:
            if not self.has(key):
                self.set(key, value)
                written += 1
        logger.info("cache_warmed", written=written, size=len(self))
        return written

    def clear(self) -> None:
        """Drop every entry and reset counters. The next flush stores an empty snapshot."""
        with self._lock:
            self._entries.clear()
            self._hits = 0
            self._misses = 0
            self._generation += 1

    def stats(self) -> Dict[str, Any]:
        """Size, hit/miss counters and the oldest entry's creation time."""
        with self._lock:
            total = self._hits + self._misses
            oldest = min((e.created_at for e in self._entries.values()), default=None)
            return {
                "size": len(self._entries),
                "max_size": self.max_size,
                "hits": self._hits,
                "misses": self._misses,
                "hit_rate": self._hits / total if total > 0 else 0.0,
                "oldest_created_at": oldest,
            }

    async def flush(self) -> bool:
        """
        Write the current snapshot to the store if anything changed.

        The snapshot is taken under the lock; the store write happens outside
        it. Concurrent flushes are serialised so an older snapshot never
        overwrites a newer one. Failures are logged and leave the cache dirty.

        Returns:
            True if a snapshot was written.
        """
        if self._store is None:
            return False
        if self._save_lock is None:
            self._save_lock = asyncio.Lock()

        async with self._save_lock:
            with self._lock:
                if self._generation == self._saved_generation:
                    return False
                generation = self._generation
                snapshot = self._snapshot()
            try:
                await _call_store(self._store.save, snapshot)
            except Exception as e:
                logger.warning(
                    "cache_snapshot_save_failed",
                    error=str(e),
                    error_type=type(e).__name__,
                )
                return False
            with self._lock:
                self._saved_generation = max(self._saved_generation, generation)
            return True

    async def restore(self) -> int:
        """
        Merge the stored snapshot into the cache. Runs once per instance.

        Keys already present in memory win over the snapshot; expired entries
        are dropped. Load or parse failures are logged and leave the cache as is.

        Returns:
            Number of entries restored.
        """
        if self._restored:
            return 0
        self._restored = True

        try:
            snapshot = await _call_store(self._store.load)
        except Exception as e:
            logger.warning(
                "cache_snapshot_load_failed",
                error=str(e),
                error_type=type(e).__name__,
            )
            return 0

        if snapshot is None:
            return 0

        try:
            entries = _parse_snapshot(snapshot)
        except (TypeError, ValueError, KeyError) as e:
            logger.warning(
                "cache_snapshot_invalid",
                error=str(e),
                error_type=type(e).__name__,
            )
            return 0

        with self._lock:
            now = self._clock()
            live = {k: e for k, e in entries.items() if not e.is_expired(now)}
            restored = 0
            # Newest first, so the newest entries win when capacity runs out.
            for key, entry in sorted(live.items(), key=lambda kv: kv[1].created_at, reverse=True):
                if key in self._entries or len(self._entries) >= self.max_size:
                    continue
                self._entries[key] = entry
                restored += 1
            if restored != len(entries) or len(self._entries) != restored:
                self._generation += 1

        logger.info(
            "cache_snapshot_restored",
            restored=restored,
            expired=len(entries) - len(live),
        )
        return restored

    def _evict_oldest(self) -> None:
        # Caller holds the lock.
        oldest_key = min(self._entries, key=lambda k: self._entries[k].created_at)
        del self._entries[oldest_key]
        record_cache_eviction()
        logger.debug("cache_evicted", key=oldest_key)

    def _snapshot(self) -> Dict[str, Any]:
        return {
            "version": SNAPSHOT_VERSION,
            "entries": {key: asdict(entry) for key, entry in self._entries.items()},
        }


def _parse_snapshot(snapshot: Any) -> Dict[str, CacheEntry]:
    """Validate snapshot structure; raise ValueError/TypeError/KeyError on bad data."""
    if not isinstance(snapshot, dict):
        raise TypeError("snapshot must be a mapping")
    raw_entries = snapshot["entries"]
    if not isinstance(raw_entries, dict):
        raise TypeError("snapshot entries must be a mapping")

    entries: Dict[str, CacheEntry] = {}
    for key, raw in raw_entries.items():
        if not isinstance(key, str) or not isinstance(raw, dict):
            raise TypeError(f"invalid entry for key {key!r}")
        created_at = float(raw["created_at"])
        expires_at = float(raw["expires_at"])
        access_count = int(raw.get("access_count", 0))
        if expires_at < created_at or access_count < 0:
            raise ValueError(f"inconsistent entry for key {key!r}")
        entries[key] = CacheEntry(
            value=raw["value"],
            created_at=created_at,
            expires_at=expires_at,
            access_count=access_count,
        )
    return entries


def hash_key(text: str) -> str:
    """Generate a stable hash for long free-text cache keys."""
    return hashlib.md5(text.encode()).hexdigest()
