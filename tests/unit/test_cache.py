import sqlite3

import numpy as np
import pytest

import semfind.cache as cache
from semfind.utils import content_fingerprint


class FakeClock:
    def __init__(self, now: float = 1_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def _cache(tmp_path, **kwargs) -> cache.ContentCache:
    kwargs.setdefault("cache_dir", tmp_path / "cache")
    return cache.ContentCache(**kwargs)


def test_cache_key_scopes_fingerprint_by_path():
    assert cache.cache_key("abc") == "abc"
    assert cache.cache_key("abc", None) == "abc"
    assert cache.cache_key("abc", "src/a.py") == "src/a.py:abc"


def test_set_then_get_is_a_hit(tmp_path):
    store = _cache(tmp_path)
    fingerprint = content_fingerprint("hello")

    assert store.get(fingerprint, "a.txt") is None
    store.set(fingerprint, "a.txt", [1.0, 2.0, 3.0])
    vector = store.get(fingerprint, "a.txt")

    assert vector is not None
    assert vector.dtype == np.float32
    assert vector.tolist() == [1.0, 2.0, 3.0]
    stats = store.stats()
    assert stats.hits == 1
    assert stats.misses == 1
    assert stats.hit_rate == pytest.approx(0.5)
    assert stats.fast_tier_entries == 1
    assert stats.disk_writes == 1


def test_cached_vectors_are_read_only(tmp_path):
    store = _cache(tmp_path, persistent=False)
    store.set("fp", None, [1.0, 2.0])

    vector = store.get("fp")

    with pytest.raises(ValueError):
        vector[0] = 5.0


def test_same_content_under_another_path_is_a_miss(tmp_path):
    store = _cache(tmp_path)
    fingerprint = content_fingerprint("shared content")
    store.set(fingerprint, "old/name.py", [1.0, 0.0])

    assert store.get(fingerprint, "new/name.py") is None
    assert store.get(fingerprint, "old/name.py") is not None


def test_lru_evicts_least_recently_used_entry(tmp_path):
    store = _cache(tmp_path, persistent=False, max_memory_entries=2)
    store.set("a", None, [1.0])
    store.set("b", None, [2.0])
    assert store.get("a") is not None

    store.set("c", None, [3.0])

    assert store.get("b") is None
    assert store.get("a") is not None
    assert store.get("c") is not None
    stats = store.stats()
    assert stats.evictions == 1
    assert stats.fast_tier_entries == 2
    assert len(store) == 2


def test_expired_memory_entry_is_a_miss(tmp_path):
    clock = FakeClock()
    store = _cache(tmp_path, persistent=False, ttl_seconds=10, clock=clock)
    store.set("fp", None, [1.0])

    clock.now += 5
    assert store.get("fp") is not None
    clock.now += 6
    assert store.get("fp") is None
    assert len(store) == 0


def test_expired_disk_entry_is_purged(tmp_path):
    clock = FakeClock()
    first = _cache(tmp_path, ttl_seconds=60, clock=clock)
    first.set("fp", "a.txt", [1.0, 1.0])

    clock.now += 120
    second = _cache(tmp_path, ttl_seconds=60, clock=clock)
    assert second.get("fp", "a.txt") is None

    conn = sqlite3.connect(second.db_path)
    try:
        remaining = conn.execute("SELECT COUNT(*) FROM embedding_cache").fetchone()[0]
    finally:
        conn.close()
    assert remaining == 0


def test_disk_hit_is_promoted_to_memory(tmp_path):
    first = _cache(tmp_path)
    first.set("fp", "a.txt", [0.5, 0.25])

    second = _cache(tmp_path)
    assert len(second) == 0
    vector = second.get("fp", "a.txt")

    assert vector is not None
    assert vector.tolist() == [0.5, 0.25]
    stats = second.stats()
    assert stats.disk_reads == 1
    assert stats.hits == 1
    assert stats.fast_tier_entries == 1


def test_unusable_cache_directory_degrades_to_miss(tmp_path):
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("x")
    store = cache.ContentCache(cache_dir=blocker / "nested")

    store.set("fp", None, [1.0])
    assert store.stats().disk_writes == 0
    assert store.get("fp") is not None

    other = cache.ContentCache(cache_dir=blocker / "nested")
    assert other.get("fp") is None
    assert other.stats().misses == 1


def test_get_batch_returns_only_found_keys(tmp_path):
    store = _cache(tmp_path)
    store.set("one", "a.txt", [1.0])
    store.set("two", None, [2.0])

    found = store.get_batch([("one", "a.txt"), ("two", None), ("three", "c.txt"), ("one", "a.txt")])

    assert set(found) == {"a.txt:one", "two"}
    assert found["two"].tolist() == [2.0]
    assert store.stats().misses == 1


def test_clear_keeps_disk_unless_purged(tmp_path):
    store = _cache(tmp_path)
    store.set("fp", None, [1.0])
    store.get("fp")

    store.clear()
    assert len(store) == 0
    assert store.stats().hits == 0
    assert _cache(tmp_path).get("fp") is not None

    store.clear(purge_persistent=True)
    assert _cache(tmp_path).get("fp") is None


def test_delete_removes_both_tiers(tmp_path):
    store = _cache(tmp_path)
    store.set("fp", "a.txt", [1.0])

    store.delete("fp", "a.txt")

    assert store.get("fp", "a.txt") is None
    assert _cache(tmp_path).get("fp", "a.txt") is None


def test_disk_tier_is_capped_oldest_first(tmp_path):
    clock = FakeClock()
    store = _cache(tmp_path, max_disk_entries=2, clock=clock)
    for name in ("a", "b", "c"):
        store.set(name, None, [1.0])
        clock.now += 1

    fresh = _cache(tmp_path, max_disk_entries=2, clock=clock)
    assert fresh.get("a") is None
    assert fresh.get("b") is not None
    assert fresh.get("c") is not None


def test_cache_dir_context_and_env_override(tmp_path, monkeypatch):
    monkeypatch.setenv(cache.ENV_CACHE_DIR, str(tmp_path / "from-env"))
    assert cache.current_cache_dir() == (tmp_path / "from-env").resolve()

    with cache.cache_dir_context(tmp_path / "scoped"):
        assert cache.current_cache_dir() == (tmp_path / "scoped").resolve()
        store = cache.ContentCache()
        assert store.db_path == (tmp_path / "scoped").resolve() / cache.DB_FILENAME

    assert cache.current_cache_dir() == (tmp_path / "from-env").resolve()


def test_schema_version_change_resets_table(tmp_path):
    store = _cache(tmp_path)
    store.set("fp", None, [1.0])
    conn = sqlite3.connect(store.db_path)
    try:
        conn.execute("PRAGMA user_version = 99")
        conn.commit()
    finally:
        conn.close()

    reopened = _cache(tmp_path)
    reopened.set("other", None, [2.0])

    assert _cache(tmp_path).get("fp") is None
    assert _cache(tmp_path).get("other") is not None


def test_disk_hit_refreshes_accessed_at(tmp_path):
    clock = FakeClock()
    _cache(tmp_path, clock=clock).set("fp", None, [1.0])

    clock.now += 30
    assert _cache(tmp_path, clock=clock).get("fp") is not None

    conn = sqlite3.connect(_cache(tmp_path).db_path)
    try:
        created, accessed = conn.execute(
            "SELECT created_at, accessed_at FROM embedding_cache"
        ).fetchone()
    finally:
        conn.close()
    assert (created, accessed) == (1_000.0, 1_030.0)


def test_disk_cap_keeps_recently_read_rows(tmp_path):
    clock = FakeClock()
    store = _cache(tmp_path, max_disk_entries=2, clock=clock)
    for name in ("a", "b"):
        store.set(name, None, [1.0])
        clock.now += 1
    assert _cache(tmp_path, clock=clock).get("a") is not None
    clock.now += 1

    store.set("c", None, [1.0])

    fresh = _cache(tmp_path, max_disk_entries=2, clock=clock)
    assert fresh.get("a") is not None
    assert fresh.get("b") is None
    assert fresh.get("c") is not None


def test_disk_usage_reads_the_database(tmp_path):
    assert _cache(tmp_path).disk_usage() == cache.DiskUsage(entries=0, size_bytes=0)
    writer = _cache(tmp_path)
    writer.set("one", None, [1.0, 2.0])
    writer.set("two", "b.txt", [3.0, 4.0])

    usage = _cache(tmp_path).disk_usage()

    assert usage.entries == 2
    assert usage.size_bytes > 0
    assert _cache(tmp_path, persistent=False).disk_usage().entries == 0
