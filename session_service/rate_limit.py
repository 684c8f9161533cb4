import logging
from dataclasses import dataclass
from typing import Dict

from fastapi import Request

from common.circuit_breaker import CircuitBreaker
from common.error_handling import RateLimitExceeded
from common.redis_client import RedisClient
from common.settings import Settings

logger = logging.getLogger(__name__)

@dataclass(frozen=True)
class RatePolicy:
    namespace: str
    max_requests: int
    window_seconds: int

def build_policies(settings: Settings) -> Dict[str, RatePolicy]:
    window = settings.rate_limit_window_seconds
    return {
        "create_order": RatePolicy("payment_rate", settings.order_rate_limit, window),
        "verify_payment": RatePolicy("verify_rate", settings.verify_rate_limit, window),
        "load_session": RatePolicy("session_load_rate", settings.load_rate_limit, window),
        "save_reply": RatePolicy("reply_rate", settings.reply_rate_limit, window),
        "founder_fail": RatePolicy("founder_fail", settings.founder_fail_limit,
                                   settings.founder_fail_window_seconds),
    }

def client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded and forwarded.split(",")[0].strip():
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    if request.client and request.client.host:
        return request.client.host
    return "unknown"

class RateLimiter:
    """Per-IP windowed counters in redis. Counter store errors propagate as 503."""

    def __init__(self, redis_client: RedisClient, breaker: CircuitBreaker, policies: Dict[str, RatePolicy]):
        self.redis = redis_client
        self.breaker = breaker
        self.policies = policies

    async def check(self, policy_name: str, ip: str):
        policy = self.policies[policy_name]
        result = await self.breaker.call(
            self.redis.check_rate_limit, policy.namespace, ip, policy.max_requests, policy.window_seconds
        )
        if not result["allowed"]:
            logger.warning(f"Rate limit hit: {policy.namespace} count={result['count']}")
            raise RateLimitExceeded(retry_after=result["retry_after"])

    # Failure throttle: counts only failed attempts, checked before each attempt
    async def failures_exceeded(self, policy_name: str, ip: str) -> bool:
        policy = self.policies[policy_name]
        count = await self.breaker.call(self.redis.count, f"{policy.namespace}:{ip}")
        return count > policy.max_requests

    async def record_failure(self, policy_name: str, ip: str) -> bool:
        """Count a failed attempt; True once the ceiling is exceeded."""
        policy = self.policies[policy_name]
        count = await self.breaker.call(self.redis.hit, f"{policy.namespace}:{ip}", policy.window_seconds)
        return count > policy.max_requests

def rate_limited(policy_name: str):
    """Route dependency applying a named policy to the caller's IP."""
    async def dependency(request: Request):
        limiter: RateLimiter = request.app.state.container.rate_limiter
        await limiter.check(policy_name, client_ip(request))
    return dependency
