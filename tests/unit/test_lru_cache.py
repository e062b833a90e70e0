import unittest

from ratingo.utils.lru_cache import LRUCache


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


class TestLRUCache(unittest.TestCase):
    def test_evicts_least_recently_used(self):
        cache = LRUCache(max_size=2)
        cache.set("a", 1)
        cache.set("b", 2)
        self.assertEqual(cache.get("a"), 1)  # touch a, b becomes oldest
        cache.set("c", 3)
        self.assertIn("a", cache)
        self.assertNotIn("b", cache)
        self.assertEqual(len(cache), 2)

    def test_entries_expire_after_ttl(self):
        clock = FakeClock()
        cache = LRUCache(max_size=10, ttl_seconds=5, clock=clock)
        cache.set("k", "v")
        clock.now = 4.9
        self.assertEqual(cache.get("k"), "v")
        clock.now = 5.0
        self.assertIsNone(cache.get("k"))
        self.assertEqual(len(cache), 0)

    def test_per_entry_ttl_overrides_default(self):
        clock = FakeClock()
        cache = LRUCache(max_size=10, ttl_seconds=100, clock=clock)
        cache.set("short", 1, ttl_seconds=1)
        cache.set("long", 2)
        clock.now = 2
        self.assertNotIn("short", cache)
        self.assertIn("long", cache)

    def test_cached_none_is_a_hit(self):
        cache = LRUCache(max_size=2)
        cache.set("missing-details", None)
        self.assertIn("missing-details", cache)
        self.assertEqual(cache.get("missing-details", "default"), None)

    def test_rejects_non_positive_size(self):
        with self.assertRaises(ValueError):
            LRUCache(max_size=0)

    def test_delete_and_clear(self):
        cache = LRUCache(max_size=3)
        cache.set(1, "a")
        cache.set(2, "b")
        cache.delete(1)
        self.assertNotIn(1, cache)
        cache.clear()
        self.assertEqual(len(cache), 0)


if __name__ == "__main__":
    unittest.main()
