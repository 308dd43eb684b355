"""
Tests for the in-memory LLM response cache
"""
from unittest.mock import patch

from infinite_pages.services.llm_cache import LLMResponseCache


class TestCacheKey:
    """Test cache key generation"""

    def test_key_is_short_hex(self):
        key = LLMResponseCache.get_cache_key("Write a story", "model-a", 1000, 0.7)
        assert len(key) == 16
        int(key, 16)

    def test_prompt_is_normalized(self):
        a = LLMResponseCache.get_cache_key("  Write A Story ", "model-a", 1000, 0.7)
        b = LLMResponseCache.get_cache_key("write a story", "model-a", 1000, 0.7)
        assert a == b

    def test_parameters_change_the_key(self):
        base = LLMResponseCache.get_cache_key("prompt", "model-a", 1000, 0.7, operation="chapter")
        assert base != LLMResponseCache.get_cache_key("prompt", "model-b", 1000, 0.7, operation="chapter")
        assert base != LLMResponseCache.get_cache_key("prompt", "model-a", 2000, 0.7, operation="chapter")
        assert base != LLMResponseCache.get_cache_key("prompt", "model-a", 1000, 0.7, operation="foundation")


class TestCacheBehaviour:
    """Test get/set, expiry and eviction"""

    def test_miss_then_hit(self):
        cache = LLMResponseCache()
        assert cache.get("k") is None

        cache.set("k", "content", input_tokens=10, output_tokens=20, cost_usd=0.5, operation="chapter")
        entry = cache.get("k")

        assert entry["content"] == "content"
        assert entry["output_tokens"] == 20
        stats = cache.get_stats()
        assert stats["hits"] == 1
        assert stats["misses"] == 1
        assert stats["hit_rate"] == 0.5
        assert stats["total_cost_saved"] == 0.5

    def test_returned_entry_is_a_copy(self):
        cache = LLMResponseCache()
        cache.set("k", "content")
        cache.get("k")["content"] = "mutated"
        assert cache.get("k")["content"] == "content"

    def test_expired_entry_is_a_miss(self):
        cache = LLMResponseCache(default_ttl=60)
        with patch("infinite_pages.services.llm_cache.time") as mock_time:
            mock_time.time.return_value = 1000.0
            cache.set("k", "content")
            mock_time.time.return_value = 1061.0
            assert cache.get("k") is None
        assert cache.get_stats()["size"] == 0

    def test_lru_eviction(self):
        cache = LLMResponseCache(max_size=2)
        with patch("infinite_pages.services.llm_cache.time") as mock_time:
            mock_time.time.return_value = 1.0
            cache.set("a", "A")
            mock_time.time.return_value = 2.0
            cache.set("b", "B")
            mock_time.time.return_value = 3.0
            cache.get("a")
            mock_time.time.return_value = 4.0
            cache.set("c", "C")

            assert cache.get("b") is None
            assert cache.get("a")["content"] == "A"
            assert cache.get("c")["content"] == "C"

    def test_cleanup_expired(self):
        cache = LLMResponseCache()
        with patch("infinite_pages.services.llm_cache.time") as mock_time:
            mock_time.time.return_value = 100.0
            cache.set("short", "x", ttl=10)
            cache.set("long", "y", ttl=1000)
            mock_time.time.return_value = 200.0
            assert cache.cleanup_expired() == 1
        assert list(cache.cache) == ["long"]

    def test_clear_resets_counters(self):
        cache = LLMResponseCache()
        cache.set("k", "v", cost_usd=1.0)
        cache.get("k")
        cache.clear()

        stats = cache.get_stats()
        assert stats["size"] == 0
        assert stats["hits"] == 0
        assert stats["total_cost_saved"] == 0.0

    def test_top_entries_sorted_by_cost(self):
        cache = LLMResponseCache()
        cache.set("cheap", "x", cost_usd=0.01, operation="analysis")
        cache.set("pricey", "y", cost_usd=0.2, operation="chapter")

        top = cache.get_stats()["top_entries"]
        assert [entry["key"] for entry in top] == ["pricey", "cheap"]
        assert top[0]["operation"] == "chapter"
