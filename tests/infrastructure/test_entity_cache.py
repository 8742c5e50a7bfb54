import pytest

from mpx_sync.infrastructure.cache.entity_cache import EntityCache


class TestEntityCache:
    def test_get_put_and_stats(self):
        cache = EntityCache()

        assert cache.get(1) is None
        cache.put(1, "record-1")

        assert cache.get(1) == "record-1"
        assert 1 in cache
        assert cache.get_stats() == {
            "hits": 1,
            "misses": 1,
            "invalidations": 0,
            "size": 1,
            "max_size": 1024,
        }

    def test_least_recently_used_entry_is_evicted(self):
        cache = EntityCache(max_size=2)
        cache.put(1, "a")
        cache.put(2, "b")
        cache.get(1)

        cache.put(3, "c")

        assert 1 in cache
        assert 2 not in cache
        assert len(cache) == 2

    def test_invalidate_counts_only_cached_ids(self):
        cache = EntityCache()
        cache.put(1, "a")
        cache.put(2, "b")

        assert cache.invalidate([1, 3, None]) == 1
        assert 1 not in cache
        assert cache.stats["invalidations"] == 1

    def test_clear(self):
        cache = EntityCache()
        cache.put(1, "a")

        cache.clear()

        assert len(cache) == 0

    def test_max_size_must_be_positive(self):
        with pytest.raises(ValueError):
            EntityCache(max_size=0)
