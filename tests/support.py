"""
Shared fixtures for the session service tests: in-memory redis doubles,
a scripted gateway and a container over a throwaway SQLite file.
"""
import os
import shutil
import tempfile
import time

import redis

from common.redis_client import RedisClient
from common.security import sign_payment
from common.settings import load_settings
from session_service.container import build_container
from session_service.gateway import RazorpayClient
from session_service.models import SharedSession, PaymentRecord, AccessToken

TEST_KEY_ID = "rzp_test_key"
TEST_KEY_SECRET = "rzp_test_secret"

COUPLE_DATA = {
    "senderName": "Ajmal",
    "recipientName": "Saniya",
    "theme": "obsidian",
    "occasion": "valentine",
    "finalLetter": "Hello <script>alert(1)</script>there",
    "myth": "Two lanterns over the river",
}

class FakeRedis:
    """The slice of redis.Redis the counters use"""

    def __init__(self):
        self.values = {}
        self.expiry = {}

    def incr(self, key):
        self.values[key] = int(self.values.get(key, 0)) + 1
        return self.values[key]

    def expire(self, key, seconds):
        self.expiry[key] = time.time() + seconds
        return True

    def get(self, key):
        value = self.values.get(key)
        return None if value is None else str(value)

    def ttl(self, key):
        if key not in self.expiry:
            return -1
        return max(0, int(self.expiry[key] - time.time()))

    def ping(self):
        return True

class FailingRedis:
    """Every call fails the way an unreachable server does"""

    def _fail(self, *args, **kwargs):
        raise redis.ConnectionError("Connection refused")

    incr = expire = get = ttl = ping = _fail

class StubGateway(RazorpayClient):
    """Gateway double; `failures` is a list of exceptions raised before succeeding"""

    def __init__(self, failures=None):
        super().__init__(TEST_KEY_ID, TEST_KEY_SECRET, "https://gateway.invalid/v1")
        self.failures = list(failures or [])
        self.orders = []

    def create_order(self, amount, currency, notes):
        if self.failures:
            raise self.failures.pop(0)
        order = {"id": f"order_test{len(self.orders) + 1:04d}", "amount": amount, "currency": currency}
        self.orders.append({**order, "notes": notes})
        return order

class ContainerFixture:
    """Builds a service container over a fresh SQLite file"""

    def __init__(self, redis_backend=None, gateway=None, **overrides):
        self.directory = tempfile.mkdtemp(prefix="sealed-sessions-")
        settings = load_settings(
            database_url=f"sqlite:///{os.path.join(self.directory, 'store.db')}",
            razorpay_key_id=TEST_KEY_ID,
            razorpay_key_secret=TEST_KEY_SECRET,
            **overrides,
        )
        self.redis_backend = redis_backend if redis_backend is not None else FakeRedis()
        self.gateway = gateway or StubGateway()
        self.container = build_container(settings, redis=RedisClient(self.redis_backend), gateway=self.gateway)
        self.container.startup()

    @property
    def store(self):
        return self.container.store

    def count(self, model) -> int:
        with self.store.session_factory() as db:
            return db.query(model).count()

    def sessions(self) -> int:
        return self.count(SharedSession)

    def payments(self) -> int:
        return self.count(PaymentRecord)

    def tokens(self) -> int:
        return self.count(AccessToken)

    def close(self):
        self.container.shutdown()
        shutil.rmtree(self.directory, ignore_errors=True)

def signed_verification(order_id, payment_id, couple_data=None, **extra):
    body = {
        "razorpay_order_id": order_id,
        "razorpay_payment_id": payment_id,
        "razorpay_signature": sign_payment(order_id, payment_id, TEST_KEY_SECRET),
        "coupleData": dict(couple_data or COUPLE_DATA),
    }
    body.update(extra)
    return body
