import pytest

from shortlinks.utils.cache import LRUTTLCache


class Timer:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


@pytest.fixture
def timer():
    return Timer()


def test_get_and_set(timer):
    cache = LRUTTLCache(max_size=2, ttl=10, timer=timer)
    cache.set("a", 1)

    assert cache.get("a") == 1
    assert cache.get("missing", "default") == "default"
    assert "a" in cache
    assert len(cache) == 1


def test_lru_eviction(timer):
    cache = LRUTTLCache(max_size=2, ttl=10, timer=timer)
    cache.set("a", 1)
    cache.set("b", 2)
    cache.get("a")
    cache.set("c", 3)

    assert "b" not in cache
    assert cache.get("a") == 1
    assert cache.get("c") == 3


def test_entries_expire(timer):
    cache = LRUTTLCache(max_size=2, ttl=10, timer=timer)
    cache.set("a", 1)

    timer.now = 9.9
    assert cache.get("a") == 1

    timer.now = 10
    assert cache.get("a") is None
    assert len(cache) == 0


def test_update_age_on_get(timer):
    cache = LRUTTLCache(max_size=2, ttl=10, timer=timer, update_age_on_get=True)
    cache.set("a", 1)

    timer.now = 8
    assert cache.get("a") == 1
    timer.now = 16
    assert cache.get("a") == 1


def test_has_does_not_refresh_age(timer):
    cache = LRUTTLCache(max_size=2, ttl=10, timer=timer, update_age_on_get=True)
    cache.set("a", 1)

    timer.now = 8
    assert cache.has("a")
    timer.now = 10
    assert not cache.has("a")


def test_full_cache_prefers_dropping_stale_entries(timer):
    cache = LRUTTLCache(max_size=2, ttl=10, timer=timer)
    cache.set("old", 1)
    timer.now = 5
    cache.set("fresh", 2)
    cache.get("old")

    timer.now = 11
    cache.set("new", 3)

    assert "fresh" in cache
    assert "new" in cache
    assert "old" not in cache


def test_purge_stale(timer):
    cache = LRUTTLCache(max_size=5, ttl=10, timer=timer)
    cache.set("a", 1)
    cache.set("b", 2)
    timer.now = 5
    cache.set("c", 3)

    timer.now = 12
    assert cache.purge_stale() == 2
    assert cache.values() == [3]


def test_delete_and_clear(timer):
    cache = LRUTTLCache(max_size=5, ttl=10, timer=timer)
    cache.set("a", 1)

    assert cache.delete("a") is True
    assert cache.delete("a") is False

    cache.set("b", 2)
    cache.clear()
    assert len(cache) == 0


@pytest.mark.parametrize("max_size,ttl", [(0, 10), (5, 0), (-1, 10)])
def test_rejects_bad_bounds(max_size, ttl):
    with pytest.raises(ValueError):
        LRUTTLCache(max_size=max_size, ttl=ttl)
