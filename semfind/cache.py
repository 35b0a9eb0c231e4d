"""Two-tier embedding cache: an in-memory LRU backed by SQLite on disk."""

from __future__ import annotations

import logging
import os
import sqlite3
import time
from collections import OrderedDict
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass
from pathlib import Path
from threading import Lock
from typing import Callable, Iterable, Sequence

import numpy as np

from .config import (
    DEFAULT_CACHE_TTL_HOURS,
    DEFAULT_MAX_DISK_ENTRIES,
    DEFAULT_MAX_MEMORY_ENTRIES,
)

logger = logging.getLogger(__name__)

DEFAULT_CACHE_DIR = Path(os.path.expanduser("~")) / ".semfind"
CACHE_DIR = DEFAULT_CACHE_DIR
ENV_CACHE_DIR = "SEMFIND_CACHE_DIR"
_CACHE_DIR_OVERRIDE: ContextVar[Path | None] = ContextVar(
    "semfind_cache_dir_override",
    default=None,
)
CACHE_VERSION = 2
DB_FILENAME = "embeddings.db"
_SQL_CHUNK = 900


def cache_key(fingerprint: str, path: str | os.PathLike[str] | None = None) -> str:
    """Return the cache key for *fingerprint*, scoped to *path* when given."""

    if path is None or str(path) == "":
        return fingerprint
    return f"{path}:{fingerprint}"


@dataclass(slots=True)
class CacheEntry:
    key: str
    vector: np.ndarray
    created_at: float
    accessed_at: float


@dataclass(frozen=True, slots=True)
class CacheStats:
    hits: int
    misses: int
    hit_rate: float
    fast_tier_entries: int
    evictions: int = 0
    disk_reads: int = 0
    disk_writes: int = 0
    memory_bytes: int = 0


@dataclass(frozen=True, slots=True)
class DiskUsage:
    entries: int
    size_bytes: int


def _resolve_cache_dir() -> Path:
    override = _CACHE_DIR_OVERRIDE.get()
    if override is not None:
        return override
    env_dir = (os.getenv(ENV_CACHE_DIR) or "").strip()
    if env_dir:
        return Path(env_dir).expanduser().resolve()
    return CACHE_DIR


@contextmanager
def cache_dir_context(path: Path | str | None):
    """Temporarily override the cache directory for the current context."""

    if path is None:
        yield
        return
    dir_path = Path(path).expanduser().resolve()
    if dir_path.exists() and not dir_path.is_dir():
        raise NotADirectoryError(f"Path is not a directory: {dir_path}")
    token = _CACHE_DIR_OVERRIDE.set(dir_path)
    try:
        yield
    finally:
        _CACHE_DIR_OVERRIDE.reset(token)


def current_cache_dir() -> Path:
    return _resolve_cache_dir()


def _connect(db_path: Path, *, readonly: bool = False) -> sqlite3.Connection:
    if readonly:
        conn = sqlite3.connect(f"file:{db_path.as_posix()}?mode=ro", uri=True)
    else:
        conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    try:
        conn.execute("PRAGMA journal_mode = WAL;")
    except sqlite3.OperationalError as exc:
        if "readonly" not in str(exc).lower():
            raise
    conn.execute("PRAGMA synchronous = NORMAL;")
    conn.execute("PRAGMA busy_timeout = 5000;")
    if readonly:
        conn.execute("PRAGMA query_only = ON;")
    return conn


def _ensure_schema(conn: sqlite3.Connection) -> None:
    version = conn.execute("PRAGMA user_version;").fetchone()[0]
    if version != CACHE_VERSION:
        conn.execute("DROP TABLE IF EXISTS embedding_cache;")
        conn.execute(f"PRAGMA user_version = {CACHE_VERSION};")
    conn.executescript(
        """
        CREATE TABLE IF NOT EXISTS embedding_cache (
            cache_key TEXT PRIMARY KEY,
            vector_blob BLOB NOT NULL,
            dimension INTEGER NOT NULL,
            created_at REAL NOT NULL,
            accessed_at REAL NOT NULL
        );

        CREATE INDEX IF NOT EXISTS idx_embedding_cache_created
            ON embedding_cache(created_at);
        CREATE INDEX IF NOT EXISTS idx_embedding_cache_accessed
            ON embedding_cache(accessed_at);
        """
    )


def _chunk_values(values: Sequence[str], size: int) -> Iterable[Sequence[str]]:
    for idx in range(0, len(values), size):
        yield values[idx : idx + size]


def _frozen_vector(vector: object) -> np.ndarray:
    array = np.array(vector, dtype=np.float32).reshape(-1)
    array.setflags(write=False)
    return array


class ContentCache:
    """Fingerprint keyed vector cache with a fast in-memory tier and a SQLite tier.

    Entries older than ``ttl_seconds`` are treated as absent and purged when
    they are next looked up. The fast tier holds at most ``max_memory_entries``
    vectors and evicts the least recently used one first; the SQLite tier is
    pruned by age and by ``max_disk_entries``.

    Any failure of the SQLite tier is logged and treated as a miss, so a broken
    or unwritable cache directory never fails a lookup.
    """

    def __init__(
        self,
        *,
        cache_dir: Path | str | None = None,
        ttl_seconds: float = DEFAULT_CACHE_TTL_HOURS * 3600.0,
        max_memory_entries: int = DEFAULT_MAX_MEMORY_ENTRIES,
        max_disk_entries: int = DEFAULT_MAX_DISK_ENTRIES,
        persistent: bool = True,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._cache_dir = Path(cache_dir).expanduser() if cache_dir is not None else None
        self.ttl_seconds = float(ttl_seconds)
        self.max_memory_entries = max(int(max_memory_entries), 1)
        self.max_disk_entries = max(int(max_disk_entries), 0)
        self.persistent = persistent
        self._clock = clock
        self._memory: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._lock = Lock()
        self._reset_counters()

    @property
    def cache_dir(self) -> Path:
        return self._cache_dir if self._cache_dir is not None else _resolve_cache_dir()

    @property
    def db_path(self) -> Path:
        return self.cache_dir / DB_FILENAME

    def _reset_counters(self) -> None:
        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._disk_reads = 0
        self._disk_writes = 0

    def _is_expired(self, created_at: float, now: float) -> bool:
        return self.ttl_seconds > 0 and now - created_at > self.ttl_seconds

    def get(self, fingerprint: str, path: str | None = None) -> np.ndarray | None:
        """Return the cached vector for *fingerprint* (scoped to *path*) or None."""

        found = self._lookup([cache_key(fingerprint, path)])
        return next(iter(found.values()), None)

    def get_batch(
        self, items: Sequence[tuple[str, str | None]]
    ) -> dict[str, np.ndarray]:
        """Look up many ``(fingerprint, path)`` pairs in one pass.

        Returns a mapping of cache key to vector for the keys that were found;
        missing keys are simply absent from the result.
        """

        keys = [cache_key(fingerprint, path) for fingerprint, path in items]
        return self._lookup(list(dict.fromkeys(keys)))

    def _lookup(self, keys: Sequence[str]) -> dict[str, np.ndarray]:
        if not keys:
            return {}
        now = self._clock()
        results: dict[str, np.ndarray] = {}
        missing: list[str] = []
        with self._lock:
            for key in keys:
                entry = self._memory.get(key)
                if entry is not None and self._is_expired(entry.created_at, now):
                    del self._memory[key]
                    entry = None
                if entry is None:
                    missing.append(key)
                    continue
                entry.accessed_at = now
                self._memory.move_to_end(key)
                results[key] = entry.vector
            self._hits += len(results)
        if not missing:
            return results

        disk_rows = self._load_disk(missing)
        expired = [
            key for key, (_, created_at) in disk_rows.items() if self._is_expired(created_at, now)
        ]
        if expired:
            self._delete_disk(expired)
        touched = [key for key in disk_rows if key not in expired]
        if touched:
            self._touch_disk(touched, now)
        with self._lock:
            for key in missing:
                row = disk_rows.get(key)
                if row is None or key in expired:
                    self._misses += 1
                    continue
                vector, created_at = row
                self._insert_memory(CacheEntry(key, vector, created_at, now))
                self._disk_reads += 1
                self._hits += 1
                results[key] = vector
        return results

    def set(self, fingerprint: str, path: str | None, vector: object) -> None:
        """Store *vector* under *fingerprint* (scoped to *path*) in both tiers."""

        key = cache_key(fingerprint, path)
        array = _frozen_vector(vector)
        now = self._clock()
        with self._lock:
            self._insert_memory(CacheEntry(key, array, now, now))
        self._store_disk(key, array, now)

    def delete(self, fingerprint: str, path: str | None = None) -> None:
        key = cache_key(fingerprint, path)
        with self._lock:
            self._memory.pop(key, None)
        self._delete_disk([key])

    def clear(self, purge_persistent: bool = False) -> None:
        """Empty the fast tier and reset counters; optionally purge the SQLite tier."""

        with self._lock:
            self._memory.clear()
            self._reset_counters()
        if not purge_persistent or not self.persistent:
            return
        db_path = self.db_path
        if not db_path.exists():
            return
        try:
            conn = _connect(db_path)
            try:
                _ensure_schema(conn)
                with conn:
                    conn.execute("DELETE FROM embedding_cache")
            finally:
                conn.close()
        except (sqlite3.Error, OSError) as exc:
            logger.debug("Failed to purge embedding cache at %s: %s", db_path, exc)

    def stats(self) -> CacheStats:
        with self._lock:
            total = self._hits + self._misses
            return CacheStats(
                hits=self._hits,
                misses=self._misses,
                hit_rate=(self._hits / total) if total else 0.0,
                fast_tier_entries=len(self._memory),
                evictions=self._evictions,
                disk_reads=self._disk_reads,
                disk_writes=self._disk_writes,
                memory_bytes=sum(entry.vector.nbytes for entry in self._memory.values()),
            )

    def disk_usage(self) -> DiskUsage:
        """Row count and file size of the SQLite tier, read from disk."""

        db_path = self.db_path
        if not self.persistent or not db_path.exists():
            return DiskUsage(entries=0, size_bytes=0)
        try:
            size = sum(
                candidate.stat().st_size
                for candidate in (db_path, db_path.with_name(f"{DB_FILENAME}-wal"))
                if candidate.exists()
            )
            conn = _connect(db_path, readonly=True)
            try:
                row = conn.execute("SELECT COUNT(*) AS total FROM embedding_cache").fetchone()
            finally:
                conn.close()
        except (sqlite3.Error, OSError) as exc:
            logger.debug("Failed to inspect embedding cache at %s: %s", db_path, exc)
            return DiskUsage(entries=0, size_bytes=0)
        return DiskUsage(entries=int(row["total"] if row is not None else 0), size_bytes=size)

    def __len__(self) -> int:
        with self._lock:
            return len(self._memory)

    def prune(self) -> None:
        """Drop expired and overflowing rows from the SQLite tier."""

        if not self.persistent or not self.db_path.exists():
            return
        try:
            conn = _connect(self.db_path)
            try:
                _ensure_schema(conn)
                with conn:
                    self._prune_disk(conn, self._clock())
            finally:
                conn.close()
        except (sqlite3.Error, OSError) as exc:
            logger.debug("Failed to prune embedding cache: %s", exc)

    # caller must hold self._lock
    def _insert_memory(self, entry: CacheEntry) -> None:
        if entry.key in self._memory:
            self._memory.pop(entry.key)
        while len(self._memory) >= self.max_memory_entries:
            self._memory.popitem(last=False)
            self._evictions += 1
        self._memory[entry.key] = entry

    def _load_disk(self, keys: Sequence[str]) -> dict[str, tuple[np.ndarray, float]]:
        if not self.persistent or not keys:
            return {}
        db_path = self.db_path
        if not db_path.exists():
            return {}
        rows: dict[str, tuple[np.ndarray, float]] = {}
        try:
            conn = _connect(db_path, readonly=True)
            try:
                for chunk in _chunk_values(keys, _SQL_CHUNK):
                    placeholders = ", ".join("?" for _ in chunk)
                    cursor = conn.execute(
                        f"""
                        SELECT cache_key, vector_blob, dimension, created_at
                        FROM embedding_cache
                        WHERE cache_key IN ({placeholders})
                        """,
                        tuple(chunk),
                    )
                    for row in cursor:
                        blob = row["vector_blob"]
                        if not blob:
                            continue
                        vector = np.frombuffer(blob, dtype=np.float32)
                        if vector.size == 0 or vector.size != int(row["dimension"]):
                            continue
                        rows[row["cache_key"]] = (vector, float(row["created_at"]))
            finally:
                conn.close()
        except (sqlite3.Error, OSError) as exc:
            logger.debug("Embedding cache read failed, treating as miss: %s", exc)
            return {}
        return rows

    def _store_disk(self, key: str, vector: np.ndarray, created_at: float) -> None:
        if not self.persistent:
            return
        try:
            db_path = self.db_path
            db_path.parent.mkdir(parents=True, exist_ok=True)
            conn = _connect(db_path)
            try:
                _ensure_schema(conn)
                with conn:
                    conn.execute(
                        """
                        INSERT OR REPLACE INTO embedding_cache (
                            cache_key,
                            vector_blob,
                            dimension,
                            created_at,
                            accessed_at
                        ) VALUES (?, ?, ?, ?, ?)
                        """,
                        (key, vector.tobytes(), int(vector.size), created_at, created_at),
                    )
                    self._prune_disk(conn, created_at)
            finally:
                conn.close()
        except (sqlite3.Error, OSError) as exc:
            logger.debug("Embedding cache write failed for %s: %s", key, exc)
            return
        with self._lock:
            self._disk_writes += 1

    def _touch_disk(self, keys: Sequence[str], now: float) -> None:
        if not self.persistent or not keys:
            return
        try:
            conn = _connect(self.db_path)
            try:
                with conn:
                    for chunk in _chunk_values(list(keys), _SQL_CHUNK):
                        placeholders = ", ".join("?" for _ in chunk)
                        conn.execute(
                            f"UPDATE embedding_cache SET accessed_at = ? "
                            f"WHERE cache_key IN ({placeholders})",
                            (now, *chunk),
                        )
            finally:
                conn.close()
        except (sqlite3.Error, OSError) as exc:
            logger.debug("Embedding cache access update failed: %s", exc)

    def _delete_disk(self, keys: Sequence[str]) -> None:
        if not self.persistent or not keys or not self.db_path.exists():
            return
        try:
            conn = _connect(self.db_path)
            try:
                _ensure_schema(conn)
                with conn:
                    for chunk in _chunk_values(list(keys), _SQL_CHUNK):
                        placeholders = ", ".join("?" for _ in chunk)
                        conn.execute(
                            f"DELETE FROM embedding_cache WHERE cache_key IN ({placeholders})",
                            tuple(chunk),
                        )
            finally:
                conn.close()
        except (sqlite3.Error, OSError) as exc:
            logger.debug("Embedding cache delete failed: %s", exc)

    def _prune_disk(self, conn: sqlite3.Connection, now: float) -> None:
        if self.ttl_seconds > 0:
            conn.execute(
                "DELETE FROM embedding_cache WHERE created_at < ?",
                (now - self.ttl_seconds,),
            )
        if self.max_disk_entries > 0:
            row = conn.execute("SELECT COUNT(*) AS total FROM embedding_cache").fetchone()
            total = int(row["total"] if row is not None else 0)
            overflow = total - self.max_disk_entries
            if overflow > 0:
                conn.execute(
                    """
                    DELETE FROM embedding_cache
                    WHERE cache_key IN (
                        SELECT cache_key FROM embedding_cache
                        ORDER BY accessed_at ASC
                        LIMIT ?
                    )
                    """,
                    (overflow,),
                )
