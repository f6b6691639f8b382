"""
Answer cache: at most one generation per (source text, questions) per day.

=== KEYS ===

    faq-cache-<h(source_text)>-<h("|||".join(questions))>

h is a truncated SHA-256. The key is deterministic across processes and
ORDER-SENSITIVE in the questions: the prompt numbers the questions, so
[q1, q2] and [q2, q1] are different requests.

=== TWO TTLs ===

- fresh TTL (24h): get() only returns entries younger than this; older ones
  are deleted when read (lazy expiry) and reported as a miss.
- GC TTL (7 days): gc() deletes everything older than this whether or not it
  is ever read again. It runs at startup (init()) and when the store reports
  it is full.

=== BEST EFFORT ===

Caching is an optimization. A corrupt entry is deleted and treated as a miss;
a write that still does not fit after one GC pass is logged and dropped. No
cache failure ever reaches the caller.

Concurrent writers of the same key race and the last write wins. Equal keys
mean equal inputs, so either payload is an acceptable answer.
"""

import hashlib
import json
import logging
import time
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Union

from pydantic import ValidationError

from faq_assistant.core.errors import CacheWriteFailure, StorageQuotaExceeded
from faq_assistant.models.cache import CacheEntry, CacheStats
from faq_assistant.models.faq import GeneratedAnswer

logger = logging.getLogger(__name__)

CACHE_PREFIX = "faq-cache-"
QUESTION_SEPARATOR = "|||"


# ---------------------------------------------------------------------------
# Persistence surface
# ---------------------------------------------------------------------------

class KeyValueStore(ABC):
    """
    Minimal string key/value store the cache persists into.

    set() raises StorageQuotaExceeded when the value does not fit.
    """

    @abstractmethod
    def get(self, key: str) -> Optional[str]: ...

    @abstractmethod
    def set(self, key: str, value: str) -> None: ...

    @abstractmethod
    def remove(self, key: str) -> None: ...

    @abstractmethod
    def list_keys(self) -> List[str]: ...


class InMemoryKeyValueStore(KeyValueStore):

    def __init__(self, max_bytes: Optional[int] = None):
        self.max_bytes = max_bytes
        self._data: Dict[str, str] = {}

    def _size_without(self, key: str) -> int:
        return sum(len(v.encode("utf-8")) for k, v in self._data.items() if k != key)

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        if self.max_bytes is not None:
            needed = self._size_without(key) + len(value.encode("utf-8"))
            if needed > self.max_bytes:
                raise StorageQuotaExceeded(
                    f"Store quota exceeded: {needed} > {self.max_bytes} bytes"
                )
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def list_keys(self) -> List[str]:
        return list(self._data.keys())


class FileKeyValueStore(KeyValueStore):
    """
    One file per key under a directory.

    Keys are hashed into file names (keys may contain characters that are not
    valid in paths); the original key is kept inside the file so list_keys()
    can return it.
    """

    SUFFIX = ".json"

    def __init__(self, directory: Union[str, Path], max_bytes: Optional[int] = None):
        self.directory = Path(directory)
        self.max_bytes = max_bytes

    def _path(self, key: str) -> Path:
        name = hashlib.sha256(key.encode("utf-8")).hexdigest()[:32]
        return self.directory / f"{name}{self.SUFFIX}"

    def _files(self) -> List[Path]:
        if not self.directory.is_dir():
            return []
        return sorted(self.directory.glob(f"*{self.SUFFIX}"))

    def _read(self, path: Path) -> Optional[dict]:
        try:
            with open(path, "r", encoding="utf-8") as f:
                record = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Unreadable cache file {path.name}: {e}")
            return None
        return record if isinstance(record, dict) else None

    def get(self, key: str) -> Optional[str]:
        path = self._path(key)
        if not path.exists():
            return None
        record = self._read(path)
        if record is None or record.get("key") != key:
            return None
        return record.get("value")

    def set(self, key: str, value: str) -> None:
        path = self._path(key)
        serialized = json.dumps({"key": key, "value": value}, ensure_ascii=False)

        if self.max_bytes is not None:
            used = sum(p.stat().st_size for p in self._files() if p != path)
            needed = used + len(serialized.encode("utf-8"))
            if needed > self.max_bytes:
                raise StorageQuotaExceeded(
                    f"Cache directory quota exceeded: {needed} > {self.max_bytes} bytes"
                )

        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            with open(path, "w", encoding="utf-8") as f:
                f.write(serialized)
        except OSError as exc:
            raise StorageQuotaExceeded(f"Could not write cache file {path.name}: {exc}") from exc

    def remove(self, key: str) -> None:
        try:
            self._path(key).unlink()
        except FileNotFoundError:
            pass

    def list_keys(self) -> List[str]:
        keys = []
        for path in self._files():
            record = self._read(path)
            if record and isinstance(record.get("key"), str):
                keys.append(record["key"])
        return keys


# ---------------------------------------------------------------------------
# Cache
# ---------------------------------------------------------------------------

def _hash(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()[:16]


class AnswerCache:

    def __init__(
        self,
        store: KeyValueStore,
        fresh_ttl_seconds: float = 24 * 60 * 60,
        gc_ttl_seconds: float = 7 * 24 * 60 * 60,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.fresh_ttl_seconds = fresh_ttl_seconds
        self.gc_ttl_seconds = gc_ttl_seconds
        self.clock = clock

    @staticmethod
    def key(source_text: str, questions: Sequence[str]) -> str:
        return f"{CACHE_PREFIX}{_hash(source_text)}-{_hash(QUESTION_SEPARATOR.join(questions))}"

    def _own_keys(self) -> List[str]:
        return [k for k in self.store.list_keys() if k.startswith(CACHE_PREFIX)]

    def _read_entry(self, key: str) -> Optional[CacheEntry]:
        raw = self.store.get(key)
        if raw is None:
            return None
        try:
            return CacheEntry.model_validate_json(raw)
        except ValidationError as e:
            logger.warning(f"Removing corrupt cache entry {key}: {e.error_count()} validation errors")
            self.store.remove(key)
            return None

    def get(self, key: str) -> Optional[List[GeneratedAnswer]]:
        """Cached payload if present and fresh, else None."""
        entry = self._read_entry(key)
        if entry is None:
            logger.info(f"Cache miss: {key}")
            return None

        age = self.clock() - entry.created_at
        if age > self.fresh_ttl_seconds:
            logger.info(f"Cache expired (age: {age / 3600:.1f}h): {key}")
            self.store.remove(key)
            return None

        logger.info(f"Cache hit (age: {age / 60:.1f}m): {key}, {len(entry.payload)} answers")
        return entry.payload

    def has(self, source_text: str, questions: Sequence[str]) -> bool:
        return self.get(self.key(source_text, questions)) is not None

    def _write(self, key: str, payload: List[GeneratedAnswer]):
        entry = CacheEntry(key=key, payload=payload, created_at=self.clock())
        serialized = entry.model_dump_json()
        try:
            self.store.set(key, serialized)
        except StorageQuotaExceeded:
            logger.info("Cache storage full, clearing old entries and retrying once")
            self.gc()
            try:
                self.store.set(key, serialized)
            except StorageQuotaExceeded as exc:
                raise CacheWriteFailure(f"Still no room for {key} after cleanup") from exc
        logger.info(f"Cached {len(payload)} answers ({len(serialized) / 1024:.1f}KB)")

    def put(self, key: str, payload: List[GeneratedAnswer]) -> bool:
        """
        Store payload under key. Returns False when the write was dropped. Never raises for
        storage problems.
        """
        try:
            self._write(key, payload)
            return True
        except (CacheWriteFailure, OSError) as e:
            logger.error(f"Dropping cache write: {e}")
            return False

    def gc(self) -> int:
        """Delete entries older than the GC TTL (and unreadable ones). Returns count removed."""
        now = self.clock()
        removed = 0
        freed = 0
        for key in self._own_keys():
            raw = self.store.get(key)
            if raw is None:
                continue
            try:
                entry = CacheEntry.model_validate_json(raw)
                stale = now - entry.created_at > self.gc_ttl_seconds
            except ValidationError:
                stale = True
            if stale:
                self.store.remove(key)
                removed += 1
                freed += len(raw)

        if removed:
            logger.info(f"Cleared {removed} old cache entries (freed {freed / 1024:.1f}KB)")
        else:
            logger.info("No old cache entries to clear")
        return removed

    def clear_all(self) -> int:
        keys = self._own_keys()
        for key in keys:
            self.store.remove(key)
        logger.info(f"Cleared all {len(keys)} cache entries")
        return len(keys)

    def stats(self) -> CacheStats:
        total = 0
        total_bytes = 0
        oldest = None
        newest = None
        for key in self._own_keys():
            raw = self.store.get(key)
            if raw is None:
                continue
            total += 1
            total_bytes += len(raw.encode("utf-8"))
            try:
                created = CacheEntry.model_validate_json(raw).created_at
            except ValidationError:
                continue
            oldest = created if oldest is None else min(oldest, created)
            newest = created if newest is None else max(newest, created)

        return CacheStats(
            total_entries=total,
            total_bytes=total_bytes,
            oldest=datetime.fromtimestamp(oldest) if oldest is not None else None,
            newest=datetime.fromtimestamp(newest) if newest is not None else None,
        )

    def init(self) -> CacheStats:
        """Startup hook: log cache stats and collect garbage if anything is past the GC TTL."""
        stats = self.stats()
        logger.info(
            f"Answer cache: {stats.total_entries} entries, {stats.total_bytes / 1024:.1f}KB"
        )
        if stats.oldest is not None:
            age = self.clock() - stats.oldest.timestamp()
            logger.info(f"Oldest cache entry: {age / 86400:.1f} days old")
            if age > self.gc_ttl_seconds:
                self.gc()
                stats = self.stats()
        return stats
