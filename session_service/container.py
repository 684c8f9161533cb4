"""
Explicit wiring of clients and components, built once at startup.

Everything a request handler needs hangs off one ``ServiceContainer``
stored on ``app.state``; tests build their own with in-memory doubles.
"""
import logging
from dataclasses import dataclass, replace
from typing import Optional

from sqlalchemy.engine import Engine

from common.circuit_breaker import (
    CircuitBreaker, STORE_CB_CONFIG, REDIS_CB_CONFIG, GATEWAY_CB_CONFIG,
)
from common.redis_client import RedisClient
from common.settings import Settings
from .db import make_engine
from .gateway import RazorpayClient
from .payments import PaymentOrchestrator
from .rate_limit import RateLimiter, build_policies
from .redeemer import AccessCodeRedeemer
from .session_keys import SessionKeyGenerator
from .sessions import SessionReader
from .store import DocumentStore, DuplicateCommit, TokenConsumed

logger = logging.getLogger(__name__)

@dataclass
class ServiceContainer:
    settings: Settings
    store: DocumentStore
    redis: RedisClient
    gateway: RazorpayClient
    store_breaker: CircuitBreaker
    redis_breaker: CircuitBreaker
    gateway_breaker: CircuitBreaker
    rate_limiter: RateLimiter
    redeemer: AccessCodeRedeemer
    key_generator: SessionKeyGenerator
    payments: PaymentOrchestrator
    sessions: SessionReader

    def startup(self):
        self.store.create_schema()
        logger.info("✅ Session store schema ready")

    def shutdown(self):
        self.store.dispose()

    def health(self) -> dict:
        return {
            "redis": "ok" if self.redis.ping() else "unavailable",
            "gateway_configured": self.gateway.configured,
            "breakers": [b.get_state() for b in (self.store_breaker, self.redis_breaker, self.gateway_breaker)],
        }

def build_container(
    settings: Settings,
    redis: Optional[RedisClient] = None,
    gateway: Optional[RazorpayClient] = None,
    engine: Optional[Engine] = None,
) -> ServiceContainer:
    store = DocumentStore(engine or make_engine(settings.database_url), settings.cas_max_attempts)
    redis = redis or RedisClient.from_url(settings.redis_url, settings.redis_timeout_seconds)
    gateway = gateway or RazorpayClient(
        settings.razorpay_key_id,
        settings.razorpay_key_secret,
        settings.razorpay_api_url,
        settings.gateway_timeout_seconds,
    )

    store_breaker = CircuitBreaker("store", replace(
        STORE_CB_CONFIG,
        timeout=settings.store_timeout_seconds,
        ignored_exceptions=(DuplicateCommit, TokenConsumed),
    ))
    redis_breaker = CircuitBreaker("redis", replace(REDIS_CB_CONFIG, timeout=settings.redis_timeout_seconds))
    # The HTTP client enforces its own timeout; the breaker allows a little more.
    gateway_breaker = CircuitBreaker("gateway", replace(
        GATEWAY_CB_CONFIG, timeout=settings.gateway_timeout_seconds + 1
    ))

    rate_limiter = RateLimiter(redis, redis_breaker, build_policies(settings))
    redeemer = AccessCodeRedeemer(store, store_breaker, rate_limiter)
    key_generator = SessionKeyGenerator(store, store_breaker, settings.session_key_length,
                                        settings.session_key_attempts)
    payments = PaymentOrchestrator(settings, store, store_breaker, gateway, gateway_breaker,
                                   redeemer, key_generator)

    return ServiceContainer(
        settings=settings,
        store=store,
        redis=redis,
        gateway=gateway,
        store_breaker=store_breaker,
        redis_breaker=redis_breaker,
        gateway_breaker=gateway_breaker,
        rate_limiter=rate_limiter,
        redeemer=redeemer,
        key_generator=key_generator,
        payments=payments,
        sessions=SessionReader(store, store_breaker),
    )
