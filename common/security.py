import hashlib, hmac, secrets
from typing import Optional

ALGO = hashlib.sha256
SESSION_KEY_ALPHABET = "abcdefghijklmnopqrstuvwxyz0123456789"

def constant_time_equals(a: Optional[str], b: Optional[str]) -> bool:
    """Compare two secrets without leaking the mismatch position."""
    if not isinstance(a, str) or not isinstance(b, str):
        return False
    return hmac.compare_digest(a.encode("utf-8"), b.encode("utf-8"))

def sign_payment(order_id: str, payment_id: str, secret: str) -> str:
    """Gateway checkout signature: hex HMAC-SHA256 of "order_id|payment_id"."""
    body = f"{order_id}|{payment_id}".encode("utf-8")
    return hmac.new(secret.encode("utf-8"), body, ALGO).hexdigest()

def verify_payment_signature(order_id: str, payment_id: str, signature: str, secret: str) -> bool:
    if not secret or not signature:
        return False
    expected = sign_payment(order_id, payment_id, secret)
    return constant_time_equals(expected, signature.lower())

def mint_access_token() -> str:
    """One-time exchange token handed out after a founder code redemption."""
    return secrets.token_hex(16)

def random_key(length: int, alphabet: str = SESSION_KEY_ALPHABET) -> str:
    return "".join(secrets.choice(alphabet) for _ in range(length))
