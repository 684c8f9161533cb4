import os
from typing import Dict, List
from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    razorpay_key_id: str = os.getenv("RAZORPAY_KEY_ID", "")
    razorpay_key_secret: str = os.getenv("RAZORPAY_KEY_SECRET", "")
    razorpay_api_url: str = os.getenv("RAZORPAY_API_URL", "https://api.razorpay.com/v1")
    gateway_timeout_seconds: float = float(os.getenv("GATEWAY_TIMEOUT_SECONDS", "10"))

    database_url: str = os.getenv("DATABASE_URL", "sqlite:///./sealed_sessions.db")
    store_timeout_seconds: float = float(os.getenv("STORE_TIMEOUT_SECONDS", "5"))

    redis_url: str = os.getenv("REDIS_URL", "redis://redis:6379/0")
    redis_timeout_seconds: float = float(os.getenv("REDIS_TIMEOUT_SECONDS", "2"))

    allowed_origins: List[str] = [
        "https://www.sealedvow.com",
        "https://sealedvow.com",
        "https://sealedvow.vercel.app",
    ]

    currency: str = os.getenv("CURRENCY", "INR")
    default_tier: str = "standard"
    tier_prices: Dict[str, int] = {"standard": 9900, "reply": 14900}
    tier_products: Dict[str, str] = {
        "standard": "sealedvow_standard",
        "reply": "sealedvow_reply",
    }

    # (ceiling, window seconds) per counter namespace
    order_rate_limit: int = int(os.getenv("ORDER_RATE_LIMIT", "5"))
    verify_rate_limit: int = int(os.getenv("VERIFY_RATE_LIMIT", "10"))
    load_rate_limit: int = int(os.getenv("LOAD_RATE_LIMIT", "10"))
    reply_rate_limit: int = int(os.getenv("REPLY_RATE_LIMIT", "8"))
    rate_limit_window_seconds: int = int(os.getenv("RATE_LIMIT_WINDOW_SECONDS", "60"))
    founder_fail_limit: int = int(os.getenv("FOUNDER_FAIL_LIMIT", "10"))
    founder_fail_window_seconds: int = int(os.getenv("FOUNDER_FAIL_WINDOW_SECONDS", "3600"))

    session_key_length: int = 8
    session_key_attempts: int = int(os.getenv("SESSION_KEY_ATTEMPTS", "5"))
    cas_max_attempts: int = int(os.getenv("CAS_MAX_ATTEMPTS", "5"))
    max_body_bytes: int = int(os.getenv("MAX_BODY_BYTES", "262144"))

def load_settings(**overrides) -> Settings:
    """Build settings from the environment; keyword overrides win."""
    return Settings(**overrides)
