"""
Orchestration for order creation, payment verification and founder-token
exchange. Each public method sequences the components for one endpoint.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

from common.circuit_breaker import CircuitBreaker
from common.error_handling import BusinessLogicError, ServiceError, ErrorCodes
from common.retry import RetryConfig, retry_async
from common.schemas import CreateOrderRequest, VerifyPaymentRequest
from common.security import verify_payment_signature
from common.settings import Settings
from .gateway import RazorpayClient, GATEWAY_RETRY_CONFIG
from .redeemer import AccessCodeRedeemer
from .sanitizer import sanitize_couple_data, share_slug
from .session_keys import SessionKeyGenerator
from .store import DocumentStore, DuplicateCommit, SessionBatch, TokenConsumed

logger = logging.getLogger(__name__)

REPLY_TIER = "reply"

class VerificationFailed(BusinessLogicError):
    def __init__(self):
        super().__init__(ErrorCodes.VERIFICATION_FAILED, "Verification failed.")

class InvalidAccessToken(BusinessLogicError):
    def __init__(self):
        super().__init__(ErrorCodes.INVALID_ACCESS_TOKEN, "Invalid or expired access token.")

def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()

class PaymentOrchestrator:
    def __init__(
        self,
        settings: Settings,
        store: DocumentStore,
        store_breaker: CircuitBreaker,
        gateway: RazorpayClient,
        gateway_breaker: CircuitBreaker,
        redeemer: AccessCodeRedeemer,
        key_generator: SessionKeyGenerator,
        gateway_retry: RetryConfig = GATEWAY_RETRY_CONFIG,
    ):
        self.settings = settings
        self.store = store
        self.store_breaker = store_breaker
        self.gateway = gateway
        self.gateway_breaker = gateway_breaker
        self.redeemer = redeemer
        self.key_generator = key_generator
        self.gateway_retry = gateway_retry

    async def _db(self, func, *args):
        return await self.store_breaker.call(func, *args)

    def resolve_tier(self, requested: Optional[str]) -> str:
        if requested in self.settings.tier_prices:
            return requested
        return self.settings.default_tier

    # /create-order
    async def create_order(self, request: CreateOrderRequest, ip: str) -> Dict[str, Any]:
        if request.founder_code:
            return await self.redeemer.redeem(request.founder_code, ip)

        tier = self.resolve_tier(request.tier)
        amount = self.settings.tier_prices[tier]
        currency = self.settings.currency
        notes = {"product": self.settings.tier_products.get(tier, tier), "tier": tier}

        order = await retry_async(self._create_gateway_order, self.gateway_retry, amount, currency, notes)

        try:
            await self._db(self.store.put_order, order["id"], amount, tier, currency)
        except ServiceError as e:
            # verify-payment falls back to the price table for this order
            logger.error(f"❌ Failed to persist order {order['id']}: {e.code}")

        logger.info(f"💳 Order {order['id']} created: tier={tier} amount={amount}")
        return {
            "orderId": order["id"],
            "amount": order["amount"],
            "currency": order["currency"],
            "keyId": self.gateway.key_id,
        }

    async def _create_gateway_order(self, amount: int, currency: str, notes: Dict[str, str]) -> Dict[str, Any]:
        return await self.gateway_breaker.call(self.gateway.create_order, amount, currency, notes)

    # /verify-payment
    async def verify_payment(self, request: VerifyPaymentRequest) -> Dict[str, Any]:
        if request.payment_mode == "founder":
            return await self._exchange_founder_token(request)

        order_id = request.razorpay_order_id
        payment_id = request.razorpay_payment_id

        if not self.settings.razorpay_key_secret:
            logger.error("❌ Missing Razorpay key secret")
            raise ServiceError(ErrorCodes.CONFIGURATION_ERROR, "Verification configuration error.")

        if not verify_payment_signature(order_id, payment_id, request.razorpay_signature,
                                        self.settings.razorpay_key_secret):
            logger.warning(f"⚠️ Signature mismatch for order {order_id}")
            raise VerificationFailed()

        replay = await self._find_replay(payment_id)
        if replay is not None:
            return replay

        tier, amount, price_source = await self._resolve_price(order_id, request.tier)
        payload = sanitize_couple_data(request.couple_data)
        session_key = await self.key_generator.generate()
        slug = share_slug(payload.get("senderName"), payload.get("recipientName"), session_key)

        batch = SessionBatch(
            session_key=session_key,
            payload=payload,
            tier=tier,
            reply_enabled=tier == REPLY_TIER,
            share_slug=slug,
            sealed_at=_utc_now(),
            payment_id=payment_id,
            order_id=order_id,
            amount=amount,
            currency=self.settings.currency,
            price_source=price_source,
        )

        try:
            await self._db(self.store.commit_session, batch)
        except DuplicateCommit:
            # a concurrent or unacknowledged earlier attempt for this payment committed first
            replay = await self._find_replay(payment_id)
            if replay is not None:
                return replay
            raise ServiceError(ErrorCodes.CONCURRENCY_CONFLICT, "Could not allocate a session. Please try again.")

        logger.info(f"✅ Payment {payment_id} verified, session sealed ({tier})")
        return {
            "verified": True,
            "sessionKey": session_key,
            "shareSlug": slug,
            "replyEnabled": batch.reply_enabled,
            "paymentId": payment_id,
        }

    async def _find_replay(self, payment_id: str) -> Optional[Dict[str, Any]]:
        """Idempotency guard: the stored result for an already processed payment."""
        try:
            record = await self._db(self.store.get_payment, payment_id)
        except ServiceError as e:
            logger.warning(f"⚠️ Replay lookup failed for {payment_id} ({e.code}); treating as first attempt")
            return None

        if not record or not record.get("session_key"):
            return None

        logger.info(f"↩️ Replay of payment {payment_id}")
        return {
            "verified": True,
            "sessionKey": record["session_key"],
            "shareSlug": record["share_slug"],
            "replyEnabled": record["tier"] == REPLY_TIER,
            "paymentId": payment_id,
            "replay": True,
        }

    async def _resolve_price(self, order_id: str, requested_tier: Optional[str]) -> Tuple[str, int, str]:
        """(tier, amount, source) from the order ledger; the price table only when the ledger has nothing."""
        try:
            order = await self._db(self.store.get_order, order_id)
        except ServiceError as e:
            logger.error(f"❌ Order ledger unreadable for {order_id}: {e.code}")
            order = None

        if order is not None:
            return order["tier"], order["amount"], "ledger"

        tier = self.resolve_tier(requested_tier)
        logger.warning(f"⚠️ DEGRADED: no ledger entry for order {order_id}, pricing tier '{tier}' from table")
        return tier, self.settings.tier_prices[tier], "fallback"

    async def _exchange_founder_token(self, request: VerifyPaymentRequest) -> Dict[str, Any]:
        token = request.founder_token
        record = await self._db(self.store.get_access_token, token)
        if not record or record["consumed"]:
            raise InvalidAccessToken()

        # tier comes from the redeemed code, not from the request
        tier = record["tier"]
        payload = sanitize_couple_data(request.couple_data)
        session_key = await self.key_generator.generate()
        slug = share_slug(payload.get("senderName"), payload.get("recipientName"), session_key)

        batch = SessionBatch(
            session_key=session_key,
            payload=payload,
            tier=tier,
            reply_enabled=tier == REPLY_TIER,
            share_slug=slug,
            sealed_at=_utc_now(),
            founder_token=token,
        )

        try:
            await self._db(self.store.commit_session, batch)
        except TokenConsumed:
            raise InvalidAccessToken()
        except DuplicateCommit:
            raise ServiceError(ErrorCodes.CONCURRENCY_CONFLICT, "Could not allocate a session. Please try again.")

        logger.info(f"✅ Founder token exchanged, session sealed ({tier})")
        return {
            "verified": True,
            "sessionKey": session_key,
            "shareSlug": slug,
            "replyEnabled": batch.reply_enabled,
        }
