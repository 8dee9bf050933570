import threading
import time

import pytest

from fincompare.web_cache import DocumentStore, WebDataCache
from tests.helpers.fake_llm import FakeClock


def _cache(**kwargs):
    clock = kwargs.pop("clock", FakeClock())
    return WebDataCache(clock=clock, start_sweeper=False, **kwargs), clock


def test_set_then_get_returns_data():
    cache, _ = _cache()
    cache.set("Apple stock price", "payload")
    assert cache.get("Apple stock price") == "payload"


def test_query_key_is_normalized():
    cache, _ = _cache()
    cache.set("  Apple   STOCK price ", "payload")
    assert cache.get("apple stock price") == "payload"
    assert cache.normalize_query("  A \n B ") == "a b"


def test_entries_expire_after_ttl():
    cache, clock = _cache(ttl_minutes=15)
    cache.set("q", "payload")
    clock.advance(15 * 60 - 1)
    assert cache.get("q") == "payload"
    clock.advance(1)
    assert cache.get("q") is None
    assert len(cache) == 0


def test_least_recently_accessed_entry_is_evicted():
    cache, clock = _cache(max_size=2)
    cache.set("a", "A")
    cache.set("b", "B")
    assert cache.get("a") == "A"
    cache.set("c", "C")
    assert cache.get("b") is None
    assert cache.get("a") == "A"
    assert cache.get("c") == "C"


def test_resetting_existing_key_does_not_evict():
    cache, _ = _cache(max_size=2)
    cache.set("a", "A")
    cache.set("b", "B")
    cache.set("a", "A2")
    assert cache.get("a") == "A2"
    assert cache.get("b") == "B"


def test_none_is_never_cached():
    cache, _ = _cache()
    cache.set("q", None)
    assert len(cache) == 0


def test_get_or_fetch_caches_only_successful_payloads():
    cache, _ = _cache()
    calls = {"count": 0}

    def missing():
        calls["count"] += 1
        return None

    assert cache.get_or_fetch("q", missing) is None
    assert cache.get_or_fetch("q", missing) is None
    assert calls["count"] == 2

    assert cache.get_or_fetch("q", lambda: "fresh") == "fresh"
    assert cache.get_or_fetch("q", lambda: "other") == "fresh"


def test_get_or_fetch_propagates_errors_without_caching():
    cache, _ = _cache()

    def broken():
        raise RuntimeError("rate limited")

    with pytest.raises(RuntimeError, match="rate limited"):
        cache.get_or_fetch("q", broken)
    assert cache.get("q") is None


def test_delete_and_clear():
    cache, _ = _cache()
    cache.set("a", "A")
    cache.set("b", "B")
    assert cache.delete("a") is True
    assert cache.delete("a") is False
    cache.clear()
    assert cache.get("b") is None
    assert cache.get_stats()["total_entries"] == 0


def test_cleanup_expired_removes_only_stale_entries():
    cache, clock = _cache(ttl_minutes=1)
    cache.set("old", "1")
    clock.advance(45)
    cache.set("new", "2")
    clock.advance(30)
    assert cache.cleanup_expired() == 1
    assert cache.get("new") == "2"


def test_stats_report_rounded_ages():
    cache, clock = _cache(ttl_minutes=60, max_size=10)
    assert cache.get_stats() == {
        "total_entries": 0,
        "max_size": 10,
        "ttl_minutes": 60,
        "oldest_entry_age_minutes": 0,
        "newest_entry_age_minutes": 0,
    }
    cache.set("a", "A")
    clock.advance(10 * 60)
    cache.set("b", "B")
    clock.advance(20)
    stats = cache.get_stats()
    assert stats["total_entries"] == 2
    assert stats["oldest_entry_age_minutes"] == 10
    assert stats["newest_entry_age_minutes"] == 0


def test_background_sweep_removes_expired_entries():
    clock = FakeClock()
    cache = WebDataCache(ttl_minutes=1, sweep_interval_seconds=0.01, clock=clock)
    try:
        cache.set("q", "payload")
        clock.advance(120)
        deadline = time.time() + 2
        while len(cache) and time.time() < deadline:
            time.sleep(0.01)
        assert len(cache) == 0
    finally:
        cache.close()


def test_concurrent_writers_respect_capacity():
    cache, _ = _cache(max_size=50)

    def writer(prefix):
        for i in range(200):
            cache.set(f"{prefix}-{i}", "x")
            cache.get(f"{prefix}-{i // 2}")

    threads = [threading.Thread(target=writer, args=(p,)) for p in "abcd"]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert len(cache) <= 50


def test_invalid_configuration_is_rejected():
    with pytest.raises(ValueError):
        WebDataCache(max_size=0, start_sweeper=False)
    with pytest.raises(TypeError):
        WebDataCache(start_sweeper=False).get(None)


def test_document_store_is_keyed_by_raw_id():
    clock = FakeClock()
    store = DocumentStore(ttl_minutes=60, max_size=2, clock=clock, start_sweeper=False)
    store.set("Doc-1", {"text": "hello"})
    assert store.get("Doc-1") == {"text": "hello"}
    assert store.get("doc-1") is None
    clock.advance(3600)
    assert store.get("Doc-1") is None
    with pytest.raises(TypeError):
        store.get("")
