import logging
import time
from typing import Dict, Optional

import requests

from common.error_handling import ServiceError, ErrorCodes
from common.retry import RetryConfig

logger = logging.getLogger(__name__)

class GatewayUnavailable(ServiceError):
    """Connection-level failure talking to the gateway; safe to retry order creation."""
    def __init__(self, original_error: Exception = None):
        super().__init__(ErrorCodes.EXTERNAL_SERVICE_ERROR, "Failed to create payment order.", original_error)

GATEWAY_RETRY_CONFIG = RetryConfig(
    max_attempts=3,
    base_delay=0.5,
    max_delay=4.0,
    retryable_exceptions=[GatewayUnavailable],
)

class RazorpayClient:
    """Minimal Razorpay Orders API client"""

    def __init__(self, key_id: str, key_secret: str, api_url: str = "https://api.razorpay.com/v1",
                 timeout: float = 10.0, session: Optional[requests.Session] = None):
        self.key_id = key_id
        self.key_secret = key_secret
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self.http = session or requests.Session()

    @property
    def configured(self) -> bool:
        return bool(self.key_id and self.key_secret)

    def create_order(self, amount: int, currency: str, notes: Dict[str, str]) -> Dict:
        """Create a gateway order; returns the gateway's order document (id, amount, currency)"""
        if not self.configured:
            logger.error("❌ Razorpay credentials missing")
            raise ServiceError(ErrorCodes.CONFIGURATION_ERROR, "Payment configuration error.")

        try:
            response = self.http.post(
                f"{self.api_url}/orders",
                json={
                    "amount": amount,
                    "currency": currency,
                    "receipt": f"rcpt_{int(time.time() * 1000)}",
                    "notes": notes,
                },
                auth=(self.key_id, self.key_secret),
                timeout=self.timeout,
            )
        except (requests.ConnectionError, requests.Timeout) as e:
            logger.warning(f"Razorpay unreachable: {e}")
            raise GatewayUnavailable(e)
        except requests.RequestException as e:
            raise ServiceError(ErrorCodes.EXTERNAL_SERVICE_ERROR, "Failed to create payment order.", e)

        if not response.ok:
            logger.error(f"❌ Razorpay order creation failed: HTTP {response.status_code}")
            raise ServiceError(ErrorCodes.EXTERNAL_SERVICE_ERROR, "Failed to create payment order.")

        try:
            order = response.json()
            return {"id": order["id"], "amount": order["amount"], "currency": order["currency"]}
        except (ValueError, KeyError) as e:
            raise ServiceError(ErrorCodes.EXTERNAL_SERVICE_ERROR, "Failed to create payment order.", e)
