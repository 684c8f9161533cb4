"""
Founder code redemption.

A code moves active -> (partially used)* -> exhausted | expired | inactive,
and only ever through ``DocumentStore.transaction``: the transform below is
re-run against the fresh record whenever another redeemer commits first, so
``used`` cannot pass ``max_uses`` however many requests race on one code.
The exchange token is inserted in the same database transaction as the use it
pays for.

Every way a redemption can fail (unknown, inactive, exhausted, expired,
malformed) produces the same error and status, and counts against the
caller's failure budget.
"""
import logging
import time
from typing import Any, Callable, Dict, Optional

from common.circuit_breaker import CircuitBreaker
from common.error_handling import BusinessLogicError, ErrorCodes, RateLimitExceeded, GENERIC_CODE_ERROR
from common.security import mint_access_token
from .models import AccessCode, AccessToken
from .rate_limit import RateLimiter
from .store import DocumentStore

logger = logging.getLogger(__name__)

MAX_CODE_LENGTH = 50
FAILURE_POLICY = "founder_fail"
THROTTLED_MESSAGE = "Too many invalid founder code attempts."

class InvalidAccessCode(BusinessLogicError):
    def __init__(self):
        super().__init__(ErrorCodes.INVALID_ACCESS_CODE, GENERIC_CODE_ERROR)

def now_ms() -> int:
    return int(time.time() * 1000)

def normalize_code(raw: Any) -> Optional[str]:
    if not isinstance(raw, str):
        return None
    code = raw.strip().upper()
    if not code or len(code) > MAX_CODE_LENGTH:
        return None
    return code

def redemption_transform(at_ms: int) -> Callable[[Dict[str, Any]], Optional[Dict[str, Any]]]:
    """Consume one use of the code as of at_ms, or None when it cannot be used."""
    def transform(current: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        if not current.get("active"):
            return None
        if current["used"] >= current["max_uses"]:
            return None
        if current.get("expires_at") and at_ms > current["expires_at"]:
            return None

        used = current["used"] + 1
        return {
            "used": used,
            "redeemed_at": at_ms,
            "active": used < current["max_uses"],
        }
    return transform

class AccessCodeRedeemer:
    def __init__(self, store: DocumentStore, breaker: CircuitBreaker, limiter: RateLimiter,
                 token_source: Callable[[], str] = mint_access_token, clock: Callable[[], int] = now_ms):
        self.store = store
        self.breaker = breaker
        self.limiter = limiter
        self.token_source = token_source
        self.clock = clock

    async def redeem(self, raw_code: Any, ip: str) -> Dict[str, Any]:
        if await self.limiter.failures_exceeded(FAILURE_POLICY, ip):
            raise RateLimitExceeded(THROTTLED_MESSAGE)

        code = normalize_code(raw_code)
        if code is None:
            await self._reject(ip)

        at = self.clock()
        token = self.token_source()

        def mint(snapshot: Dict[str, Any]):
            tier = snapshot.get("tier") or "reply"
            return [AccessToken(token=token, tier=tier, created_at=at, consumed=False)]

        result = await self.breaker.call(self.store.transaction, AccessCode, code, redemption_transform(at), mint)
        if not result.committed:
            await self._reject(ip)

        tier = result.snapshot.get("tier") or "reply"
        logger.info(f"✅ Founder code {code[:4]}… redeemed ({result.snapshot['used']}/{result.snapshot['max_uses']})")
        return {"founderApproved": True, "tier": tier, "founderToken": token}

    async def _reject(self, ip: str):
        if await self.limiter.record_failure(FAILURE_POLICY, ip):
            raise RateLimitExceeded(THROTTLED_MESSAGE)
        raise InvalidAccessCode()
