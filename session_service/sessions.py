import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from common.circuit_breaker import CircuitBreaker
from common.error_handling import BusinessLogicError, ErrorCodes
from .models import SharedSession
from .sanitizer import public_view, sanitize_string
from .store import DocumentStore

logger = logging.getLogger(__name__)

class SessionNotFound(BusinessLogicError):
    def __init__(self):
        super().__init__(ErrorCodes.SESSION_NOT_FOUND, "Session not found.")

class ReplyUnavailable(BusinessLogicError):
    def __init__(self):
        super().__init__(ErrorCodes.REPLY_UNAVAILABLE, "Reply is unavailable for this session.")

def reply_transform(text: str, at: str):
    """Write the reply once; the sealed payload fields are never touched."""
    def transform(current: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        if not current.get("reply_enabled") or current.get("reply_text"):
            return None
        return {"reply_text": text, "reply_sealed_at": at}
    return transform

class SessionReader:
    """Recipient-side access to sealed sessions: load and the one-time reply."""

    def __init__(self, store: DocumentStore, breaker: CircuitBreaker):
        self.store = store
        self.breaker = breaker

    async def load(self, session_key: str) -> Dict[str, Any]:
        record = await self.breaker.call(self.store.get_session, session_key)
        if record is None:
            raise SessionNotFound()

        view = public_view(record["payload"])
        view["replyEnabled"] = bool(record["reply_enabled"])
        view["sealedAt"] = record["sealed_at"]
        if record.get("reply_text"):
            view["reply"] = {"text": record["reply_text"], "sealedAt": record["reply_sealed_at"]}
        return view

    async def save_reply(self, session_key: str, text: str) -> Dict[str, Any]:
        cleaned = sanitize_string(text)
        if not cleaned:
            raise BusinessLogicError(ErrorCodes.VALIDATION_ERROR, "Invalid field 'replyText'.", field="replyText")

        at = datetime.now(timezone.utc).isoformat()
        result = await self.breaker.call(self.store.transaction, SharedSession, session_key,
                                         reply_transform(cleaned, at))
        if not result.committed:
            raise ReplyUnavailable()

        logger.info(f"✅ Reply sealed for session {session_key[:4]}…")
        return {"saved": True}
