"""
TTL key/value storage for ephemeral checkout state.

In-memory by default; set REDIS_URL to share checkout sessions between
API instances (and to survive a restart of one of them).
"""
from typing import Optional, Any
from datetime import datetime, timedelta
import json
import logging

from app.core.config import settings

logger = logging.getLogger(__name__)


class SimpleCache:
    """In-memory cache with TTL support and size limit."""

    MAX_ENTRIES = 10000  # Prevent unbounded memory growth

    def __init__(self):
        self._cache: dict = {}
        self._expiry: dict = {}

    def _evict_expired(self):
        """Remove expired entries to reclaim memory."""
        now = datetime.now()
        expired = [k for k, exp in self._expiry.items() if exp <= now]
        for k in expired:
            self._cache.pop(k, None)
            self._expiry.pop(k, None)
        return len(expired)

    def get(self, key: str) -> Optional[Any]:
        """Get value from cache if not expired."""
        if key in self._cache:
            if datetime.now() < self._expiry.get(key, datetime.min):
                return self._cache[key]
            del self._cache[key]
            del self._expiry[key]
        return None

    def set(self, key: str, value: Any, ttl_seconds: int = 300):
        """Set value in cache with TTL."""
        if len(self._cache) >= self.MAX_ENTRIES:
            self._evict_expired()
        if len(self._cache) >= self.MAX_ENTRIES:
            oldest_keys = sorted(self._expiry, key=self._expiry.get)[:100]
            for k in oldest_keys:
                self._cache.pop(k, None)
                self._expiry.pop(k, None)
        self._cache[key] = value
        self._expiry[key] = datetime.now() + timedelta(seconds=ttl_seconds)

    def delete(self, key: str):
        """Delete key from cache."""
        self._cache.pop(key, None)
        self._expiry.pop(key, None)


class RedisCacheClient:
    """Redis-backed cache with in-memory fallback."""

    def __init__(self, fallback: Optional[SimpleCache] = None):
        self._redis = None
        self._fallback = fallback or SimpleCache()

    def initialize(self, redis_url: str | None = None):
        if redis_url:
            try:
                import redis
                self._redis = redis.from_url(
                    redis_url, socket_connect_timeout=2, decode_responses=True,
                )
                self._redis.ping()
                logger.info("Redis cache connected")
            except Exception as e:
                logger.warning(f"Redis unavailable, using memory cache: {e}")
                self._redis = None

    @property
    def backend(self) -> str:
        return "redis" if self._redis else "memory"

    def get(self, key: str) -> Any | None:
        if self._redis:
            try:
                val = self._redis.get(key)
                return json.loads(val) if val else None
            except Exception as e:
                logger.warning(f"Redis get failed for {key}, using memory cache: {e}")
        return self._fallback.get(key)

    def set(self, key: str, value: Any, ttl_seconds: int = 300):
        if self._redis:
            try:
                self._redis.setex(key, ttl_seconds, json.dumps(value, default=str))
                return
            except Exception as e:
                logger.warning(f"Redis set failed for {key}, using memory cache: {e}")
        self._fallback.set(key, value, ttl_seconds)

    def delete(self, key: str):
        if self._redis:
            try:
                self._redis.delete(key)
            except Exception as e:
                logger.warning(f"Redis delete failed for {key}: {e}")
        self._fallback.delete(key)


class CheckoutSessionStore:
    """Ephemeral per-transaction checkout data keyed by gateway transaction id.

    Holds what fulfillment needs besides the database row (buyer identity,
    priced lines, totals) until the transaction resolves or the TTL passes.
    """

    PREFIX = "checkout_session:"

    def __init__(self, backend: RedisCacheClient, ttl_minutes: int = 30):
        self._backend = backend
        self.ttl_seconds = ttl_minutes * 60

    def save(self, transaction_id: str, data: dict) -> None:
        self._backend.set(f"{self.PREFIX}{transaction_id}", data, self.ttl_seconds)

    def load(self, transaction_id: str) -> Optional[dict]:
        return self._backend.get(f"{self.PREFIX}{transaction_id}")

    def discard(self, transaction_id: str) -> None:
        self._backend.delete(f"{self.PREFIX}{transaction_id}")


# Global instances
redis_cache = RedisCacheClient()
checkout_sessions = CheckoutSessionStore(redis_cache, settings.checkout_session_ttl_minutes)
