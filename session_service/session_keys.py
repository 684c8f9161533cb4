import logging
from typing import Callable, Optional

from common.circuit_breaker import CircuitBreaker
from common.error_handling import ServiceError, ErrorCodes
from common.security import random_key
from .store import DocumentStore

logger = logging.getLogger(__name__)

class SessionKeyExhausted(ServiceError):
    def __init__(self, attempts: int):
        super().__init__(ErrorCodes.SESSION_KEY_EXHAUSTED, "Could not allocate a session. Please try again.")
        self.attempts = attempts

class SessionKeyGenerator:
    """Draws short opaque session keys and checks each against the store before use."""

    def __init__(self, store: DocumentStore, breaker: CircuitBreaker, length: int = 8,
                 max_attempts: int = 5, source: Optional[Callable[[int], str]] = None):
        self.store = store
        self.breaker = breaker
        self.length = length
        self.max_attempts = max_attempts
        self.source = source or random_key

    async def generate(self) -> str:
        for attempt in range(1, self.max_attempts + 1):
            candidate = self.source(self.length)
            if not await self.breaker.call(self.store.session_exists, candidate):
                return candidate
            logger.warning(f"⚠️ Session key collision, attempt {attempt}/{self.max_attempts}")

        logger.error(f"❌ No free session key after {self.max_attempts} attempts")
        raise SessionKeyExhausted(self.max_attempts)
