"""
LLM response cache
Keeps recent AI responses in memory so identical prompts are not billed twice
"""
import hashlib
import json
import time
import threading
from typing import Optional, Dict, Any


class LLMResponseCache:
    """In-memory TTL cache for AI responses with least-recently-used eviction"""

    def __init__(self, default_ttl: int = 3600, max_size: int = 1000):
        """
        Initialize LLM response cache

        Args:
            default_ttl: Default time-to-live in seconds (default: 1 hour)
            max_size: Maximum number of entries kept
        """
        self.cache: Dict[str, Dict[str, Any]] = {}
        self.default_ttl = default_ttl
        self.max_size = max_size
        self.hits = 0
        self.misses = 0
        self.total_cost_saved = 0.0
        self._lock = threading.Lock()

    @staticmethod
    def get_cache_key(
        prompt: str,
        model: str,
        max_tokens: int,
        temperature: float,
        system_prompt: Optional[str] = None,
        operation: Optional[str] = None,
    ) -> str:
        """
        Generate cache key from the request parameters

        Returns:
            First 16 hex chars of the SHA256 of the normalized parameters
        """
        payload = {
            "prompt": prompt.lower().strip(),
            "model": model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "system_prompt": system_prompt or "",
            "operation": operation or "",
        }
        canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:16]

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        """
        Get cached response

        Returns:
            Entry dict with 'content', 'input_tokens', 'output_tokens', 'cost_usd'
            or None if not found or expired
        """
        with self._lock:
            entry = self.cache.get(key)
            if entry is None:
                self.misses += 1
                return None

            now = time.time()
            if now > entry["expires_at"]:
                del self.cache[key]
                self.misses += 1
                return None

            entry["last_accessed"] = now
            entry["hits"] += 1
            self.hits += 1
            self.total_cost_saved += entry["cost_usd"]
            return dict(entry)

    def set(
        self,
        key: str,
        content: str,
        input_tokens: int = 0,
        output_tokens: int = 0,
        cost_usd: float = 0.0,
        operation: Optional[str] = None,
        ttl: Optional[int] = None,
    ):
        """Cache a response, evicting least recently used entries when full"""
        now = time.time()
        ttl = ttl or self.default_ttl
        with self._lock:
            if key not in self.cache:
                while len(self.cache) >= self.max_size:
                    oldest = min(self.cache, key=lambda k: self.cache[k]["last_accessed"])
                    del self.cache[oldest]

            self.cache[key] = {
                "key": key,
                "content": content,
                "input_tokens": input_tokens,
                "output_tokens": output_tokens,
                "cost_usd": cost_usd,
                "operation": operation,
                "created_at": now,
                "last_accessed": now,
                "expires_at": now + ttl,
                "hits": 0,
            }

    def clear(self):
        """Drop every entry and reset counters"""
        with self._lock:
            self.cache.clear()
            self.hits = 0
            self.misses = 0
            self.total_cost_saved = 0.0

    def cleanup_expired(self) -> int:
        """Remove all expired entries from cache"""
        now = time.time()
        with self._lock:
            expired_keys = [key for key, value in self.cache.items() if now > value["expires_at"]]
            for key in expired_keys:
                del self.cache[key]
        return len(expired_keys)

    def get_stats(self) -> Dict[str, Any]:
        """Cache statistics for the admin dashboard"""
        with self._lock:
            lookups = self.hits + self.misses
            top_entries = sorted(self.cache.values(), key=lambda e: e["cost_usd"], reverse=True)[:10]
            return {
                "size": len(self.cache),
                "max_size": self.max_size,
                "hits": self.hits,
                "misses": self.misses,
                "hit_rate": round(self.hits / lookups, 4) if lookups else 0.0,
                "total_cost_saved": round(self.total_cost_saved, 6),
                "top_entries": [
                    {
                        "key": entry["key"],
                        "operation": entry["operation"],
                        "cost_usd": entry["cost_usd"],
                        "hits": entry["hits"],
                    }
                    for entry in top_entries
                ],
            }


# Global cache instance
_cache_instance: Optional[LLMResponseCache] = None


def get_llm_cache() -> LLMResponseCache:
    """Get or create global LLM cache instance"""
    global _cache_instance
    if _cache_instance is None:
        from ..config import config
        _cache_instance = LLMResponseCache(
            default_ttl=config.LLM_CACHE_TTL,
            max_size=config.LLM_CACHE_MAX_SIZE,
        )
    return _cache_instance
