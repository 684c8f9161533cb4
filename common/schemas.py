from pydantic import BaseModel, ConfigDict, Field, StringConstraints, model_validator
from typing import Annotated, Any, Dict, Literal, Optional

SessionKey = Annotated[str, StringConstraints(pattern=r"^[a-z0-9]{8}$")]
GatewayId = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=100)]

class _Request(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

class CreateOrderRequest(_Request):
    # Only a tier name is accepted from the client, never a price.
    tier: Optional[str] = "standard"
    # Any type: malformed codes are rejected by the redeemer with the generic failure.
    founder_code: Any = Field(None, alias="founderCode")

class VerifyPaymentRequest(_Request):
    payment_mode: Literal["razorpay", "founder"] = Field("razorpay", alias="paymentMode")
    razorpay_order_id: Optional[GatewayId] = None
    razorpay_payment_id: Optional[GatewayId] = None
    razorpay_signature: Optional[GatewayId] = None
    founder_token: Optional[Annotated[str, StringConstraints(pattern=r"^[a-f0-9]{32}$")]] = Field(
        None, alias="founderToken"
    )
    # Sanitized later, after the payment itself has been authenticated.
    couple_data: Dict[str, Any] = Field(alias="coupleData")
    tier: Optional[str] = None

    @model_validator(mode="after")
    def _require_mode_fields(self):
        if self.payment_mode == "founder":
            if not self.founder_token:
                raise ValueError("founderToken is required")
        elif not (self.razorpay_order_id and self.razorpay_payment_id and self.razorpay_signature):
            raise ValueError("Missing verification fields")
        return self

class LoadSessionRequest(_Request):
    session_key: SessionKey = Field(alias="sessionKey")

class SaveReplyRequest(_Request):
    session_key: SessionKey = Field(alias="sessionKey")
    reply_text: Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=500)] = Field(
        alias="replyText"
    )
