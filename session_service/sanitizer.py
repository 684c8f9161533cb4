"""
Bounds and cleans the client-submitted session payload (``coupleData``).

Unknown fields are dropped, so nothing the client adds (amounts, status
flags, payment markers) reaches the stored session.
"""
import re
from typing import Annotated, Any, Dict, List, Literal, Optional
from urllib.parse import urlparse

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, StringConstraints, ValidationError

from common.error_handling import BusinessLogicError, ErrorCodes

MAX_TEXT_LENGTH = 10_000
MAX_NAME_LENGTH = 100
MAX_CAPTION_LENGTH = 200
MAX_COUPONS = 10
MAX_MEMORY_PHOTOS = 10

ALLOWED_MEDIA_HOSTS = (
    "firebasestorage.googleapis.com",
    "storage.googleapis.com",
    "googleapis.com",
    "archive.org",
    "youtube.com",
    "youtu.be",
    "google.com",
)

_SCRIPT_BLOCK = re.compile(r"<script\b[^<]*(?:(?!</script>)<[^<]*)*</script>", re.IGNORECASE)
_JS_SCHEME = re.compile(r"javascript:", re.IGNORECASE)
_EVENT_HANDLER = re.compile(r"on\w+\s*=", re.IGNORECASE)

def sanitize_string(value: str) -> str:
    """Strip script blocks, javascript: URLs and inline event handlers."""
    value = _SCRIPT_BLOCK.sub("", value)
    value = _JS_SCHEME.sub("", value)
    value = _EVENT_HANDLER.sub("", value)
    return value.strip()

def _check_media_url(value: str) -> str:
    parsed = urlparse(value)
    host = (parsed.hostname or "").lower()
    if parsed.scheme != "https" or not any(host == h or host.endswith("." + h) for h in ALLOWED_MEDIA_HOSTS):
        raise ValueError("URL host is not allowed")
    return value

def BoundedText(max_length: int, min_length: int = 0):
    return Annotated[str, StringConstraints(min_length=min_length, max_length=max_length),
                     AfterValidator(sanitize_string)]

MediaUrl = Annotated[str, StringConstraints(max_length=500), AfterValidator(_check_media_url)]

class _Payload(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

class Coupon(_Payload):
    id: Annotated[str, StringConstraints(max_length=50)]
    title: BoundedText(200)
    description: BoundedText(500)
    icon: Annotated[str, StringConstraints(max_length=10)]
    is_open: bool = Field(alias="isOpen")
    is_claimed: Optional[bool] = Field(None, alias="isClaimed")
    is_special: Optional[bool] = Field(None, alias="isSpecial")

class SacredLocation(_Payload):
    place_name: BoundedText(200) = Field(alias="placeName")
    description: BoundedText(500)
    google_maps_uri: MediaUrl = Field(alias="googleMapsUri")

class MemoryPhoto(_Payload):
    url: MediaUrl
    caption: BoundedText(MAX_CAPTION_LENGTH)
    angle: float = Field(ge=-30, le=30)
    x_offset: float = Field(alias="xOffset", ge=-100, le=100)
    y_offset: float = Field(alias="yOffset", ge=-100, le=100)

class VideoData(_Payload):
    url: MediaUrl
    source: Literal["user", "ai"]
    duration: Optional[float] = Field(None, ge=0, le=600)

class AudioData(_Payload):
    url: MediaUrl
    source: Literal["user", "ai"]
    duration: Optional[float] = Field(None, ge=0, le=300)

class CoupleData(_Payload):
    recipient_name: BoundedText(MAX_NAME_LENGTH, min_length=1) = Field(alias="recipientName")
    sender_name: BoundedText(MAX_NAME_LENGTH, min_length=1) = Field(alias="senderName")

    theme: Literal["obsidian", "velvet", "crimson", "midnight", "evergreen", "pearl"]
    occasion: Literal["valentine", "anniversary", "apology", "just-because", "long-distance", "thank-you"]

    time_shared: Optional[BoundedText(200)] = Field(None, alias="timeShared")
    relationship_intent: Optional[BoundedText(500)] = Field(None, alias="relationshipIntent")
    shared_moment: Optional[BoundedText(2000)] = Field(None, alias="sharedMoment")
    final_letter: Optional[BoundedText(MAX_TEXT_LENGTH)] = Field(None, alias="finalLetter")
    writing_mode: Optional[Literal["self", "assisted"]] = Field(None, alias="writingMode")
    myth: Optional[BoundedText(1000)] = None

    user_image_url: Optional[MediaUrl] = Field(None, alias="userImageUrl")
    ai_image_url: Optional[MediaUrl] = Field(None, alias="aiImageUrl")
    video: Optional[VideoData] = None
    audio: Optional[AudioData] = None

    music_type: Optional[Literal["preset", "youtube"]] = Field(None, alias="musicType")
    music_url: Optional[MediaUrl] = Field(None, alias="musicUrl")

    reveal_method: Optional[Literal["vigil", "remote", "sync", "immediate"]] = Field(None, alias="revealMethod")
    unlock_date: Optional[Annotated[str, StringConstraints(max_length=40)]] = Field(None, alias="unlockDate")

    has_gift: Optional[bool] = Field(None, alias="hasGift")
    gift_type: Optional[Literal["voyage", "gastronomy", "spectacle", "treasure", "other"]] = Field(None, alias="giftType")
    gift_title: Optional[BoundedText(200)] = Field(None, alias="giftTitle")
    gift_note: Optional[BoundedText(500)] = Field(None, alias="giftNote")
    gift_link: Optional[MediaUrl] = Field(None, alias="giftLink")

    coupons: Optional[List[Coupon]] = Field(None, max_length=MAX_COUPONS)
    sacred_location: Optional[SacredLocation] = Field(None, alias="sacredLocation")
    memory_board: Optional[List[MemoryPhoto]] = Field(None, alias="memoryBoard", max_length=MAX_MEMORY_PHOTOS)

# Fields /load-session hands back to the recipient.
PUBLIC_SESSION_FIELDS = (
    "senderName", "recipientName", "finalLetter", "myth", "timeShared", "occasion", "theme",
    "revealMethod", "unlockDate", "userImageUrl", "aiImageUrl", "video", "audio", "musicUrl",
    "musicType", "memoryBoard", "sacredLocation", "coupons", "hasGift", "giftTitle", "giftNote",
    "giftLink",
)

def sanitize_couple_data(raw: Dict[str, Any]) -> Dict[str, Any]:
    """Validate and clean coupleData; returns the stored (camelCase) form."""
    try:
        data = CoupleData.model_validate(raw)
    except ValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(loc) for loc in first.get("loc", ()))
        raise BusinessLogicError(ErrorCodes.VALIDATION_ERROR, f"Invalid field 'coupleData.{field}'.", field=field)
    return data.model_dump(by_alias=True, exclude_none=True)

def public_view(payload: Dict[str, Any]) -> Dict[str, Any]:
    return {name: payload[name] for name in PUBLIC_SESSION_FIELDS if name in payload}

_SLUG_UNSAFE = re.compile(r"[^a-z0-9]+")

def _slug_part(name: Optional[str]) -> str:
    return _SLUG_UNSAFE.sub("-", (name or "").lower()).strip("-")[:20].strip("-")

def share_slug(sender_name: Optional[str], recipient_name: Optional[str], session_key: str) -> str:
    """sender-recipient-key, e.g. "ajmal-saniya-k8f2x9m1"; the loader reads the key back from the tail."""
    parts = [p for p in (_slug_part(sender_name), _slug_part(recipient_name)) if p]
    return "-".join(parts + [session_key])
