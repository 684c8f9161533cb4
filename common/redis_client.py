"""
Redis client utilities for request counters and rate limiting
"""
import logging
import redis
from typing import Optional, Dict, Any
from .error_handling import DependencyUnavailable

logger = logging.getLogger(__name__)

class RedisClient:
    """Redis client wrapper with counter helpers.

    Every failure to reach redis surfaces as DependencyUnavailable; callers
    never get a silent "allow" when the counter store is down.
    """

    def __init__(self, client: redis.Redis):
        self.client = client

    @classmethod
    def from_url(cls, url: str, timeout_seconds: Optional[float] = None) -> "RedisClient":
        return cls(redis.Redis.from_url(
            url,
            decode_responses=True,
            socket_timeout=timeout_seconds,
            socket_connect_timeout=timeout_seconds,
        ))

    def ping(self) -> bool:
        """Check Redis connectivity"""
        try:
            return bool(self.client.ping())
        except redis.RedisError as e:
            logger.warning(f"Redis ping failed: {e}")
            return False

    # Counters
    def hit(self, key: str, window_seconds: int) -> int:
        """Increment a windowed counter; the first hit starts the window"""
        try:
            count = int(self.client.incr(key))
            if count == 1:
                self.client.expire(key, window_seconds)
            return count
        except redis.RedisError as e:
            logger.error(f"🚨 Counter increment failed for {key.split(':', 1)[0]}: {e}")
            raise DependencyUnavailable(e)

    def count(self, key: str) -> int:
        try:
            value = self.client.get(key)
            return int(value) if value else 0
        except redis.RedisError as e:
            logger.error(f"🚨 Counter read failed for {key.split(':', 1)[0]}: {e}")
            raise DependencyUnavailable(e)

    def retry_after(self, key: str, window_seconds: int) -> int:
        try:
            ttl = self.client.ttl(key)
        except redis.RedisError:
            return window_seconds
        return ttl if ttl and ttl > 0 else window_seconds

    # Rate Limiting
    def check_rate_limit(self, namespace: str, identity: str, max_requests: int, window_seconds: int) -> Dict[str, Any]:
        """Count this request against namespace:identity and report whether it is allowed"""
        key = f"{namespace}:{identity}"
        current = self.hit(key, window_seconds)
        allowed = current <= max_requests

        return {
            "allowed": allowed,
            "count": current,
            "remaining": max(0, max_requests - current),
            "retry_after": 0 if allowed else self.retry_after(key, window_seconds),
        }
