# payrpc/services/cache.py
"""
Best-effort key/value cache with TTL.

Backed by Redis when a URL is configured, otherwise by an in-process
dictionary. The cache is never authoritative: every backend failure is
logged and treated as a miss, and after a Redis failure the cache falls
back to the in-process store for the life of the instance.
"""
import json
import logging
import threading
import time
from typing import Any, Dict, Optional, Tuple

import redis

logger = logging.getLogger(__name__)

# Sweep expired in-memory entries once the store grows past this size
MEMORY_CACHE_SWEEP_SIZE = 1000


class PaymentCache:
    """JSON value cache in front of the durable payment store."""

    def __init__(self, redis_url: Optional[str] = None, client: Optional[Any] = None):
        """
        Args:
            redis_url: Redis connection URL; None selects the memory cache.
            client: Pre-built Redis client (takes precedence over redis_url).
        """
        self._redis = client
        if self._redis is None and redis_url:
            try:
                self._redis = redis.from_url(redis_url, socket_timeout=1.0)
            except (redis.RedisError, ValueError) as e:
                logger.error(f"Failed to configure Redis cache, using memory cache: {e}")
                self._redis = None
        elif self._redis is None:
            logger.warning("Redis not configured, using in-memory cache fallback")

        self._memory: Dict[str, Tuple[Any, float]] = {}
        self._lock = threading.Lock()

    @property
    def backend(self) -> str:
        return "redis" if self._redis is not None else "memory"

    def _disable_redis(self, operation: str, error: Exception) -> None:
        logger.error(f"Redis {operation} error, falling back to memory cache: {error}")
        self._redis = None

    def get(self, key: str) -> Optional[Any]:
        """Return the cached value for ``key``, or None on miss or failure."""
        if self._redis is not None:
            try:
                data = self._redis.get(key)
                return json.loads(data) if data else None
            except redis.RedisError as e:
                self._disable_redis("get", e)
                return None
            except ValueError as e:
                logger.warning(f"Discarding undecodable cache entry {key}: {e}")
                return None

        now = time.time()
        with self._lock:
            cached = self._memory.get(key)
            if cached is None:
                return None
            value, expires = cached
            if expires <= now:
                del self._memory[key]
                return None
            return value

    def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        """Store ``value`` under ``key`` for ``ttl_seconds``; failures are ignored."""
        if self._redis is not None:
            try:
                self._redis.setex(key, ttl_seconds, json.dumps(value))
                return
            except redis.RedisError as e:
                self._disable_redis("set", e)

        now = time.time()
        with self._lock:
            self._memory[key] = (value, now + ttl_seconds)
            if len(self._memory) > MEMORY_CACHE_SWEEP_SIZE:
                expired = [k for k, (_, expires) in self._memory.items() if expires <= now]
                for k in expired:
                    del self._memory[k]

    def delete(self, key: str) -> None:
        """Remove ``key`` from the cache."""
        if self._redis is not None:
            try:
                self._redis.delete(key)
                return
            except redis.RedisError as e:
                self._disable_redis("delete", e)

        with self._lock:
            self._memory.pop(key, None)

    def clear(self) -> None:
        """Clear the in-memory store (useful for testing)."""
        with self._lock:
            self._memory.clear()
