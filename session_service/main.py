import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Depends, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from pydantic import ValidationError

from common.error_handling import BusinessLogicError, ErrorCodes, add_error_handlers
from common.schemas import CreateOrderRequest, VerifyPaymentRequest, LoadSessionRequest, SaveReplyRequest
from common.settings import load_settings
from .container import ServiceContainer, build_container
from .rate_limit import client_ip, rate_limited

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

def get_container(request: Request) -> ServiceContainer:
    return request.app.state.container

async def json_body(request: Request):
    """Reject non-JSON and oversized bodies before anything else runs."""
    if "application/json" not in request.headers.get("content-type", ""):
        raise BusinessLogicError(ErrorCodes.UNSUPPORTED_MEDIA_TYPE, "Unsupported Media Type")

    limit = request.app.state.container.settings.max_body_bytes
    declared = request.headers.get("content-length")
    if declared and declared.isdigit() and int(declared) > limit:
        raise BusinessLogicError(ErrorCodes.PAYLOAD_TOO_LARGE, "Payload too large.")
    if len(await request.body()) > limit:
        raise BusinessLogicError(ErrorCodes.PAYLOAD_TOO_LARGE, "Payload too large.")

def decoded(model, policy_name: str):
    """Body dependency: hygiene checks, then the rate limit, then JSON decoding.

    The request counts against the limit even when its body is unusable.
    """
    async def dependency(request: Request, _hygiene=Depends(json_body), _limit=Depends(rate_limited(policy_name))):
        try:
            return model.model_validate_json(await request.body())
        except ValidationError as e:
            raise RequestValidationError(e.errors())
    return dependency

def create_app(container: Optional[ServiceContainer] = None) -> FastAPI:
    container = container or build_container(load_settings())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        container.startup()
        logger.info("🚀 Session service started")
        yield
        container.shutdown()

    app = FastAPI(title="Sealed Session Service", lifespan=lifespan)
    app.state.container = container

    app.add_middleware(
        CORSMiddleware,
        allow_origins=container.settings.allowed_origins,
        allow_methods=["POST", "OPTIONS"],
        allow_headers=["Content-Type"],
    )
    add_error_handlers(app)

    @app.post("/create-order")
    async def create_order(request: Request,
                           body: CreateOrderRequest = Depends(decoded(CreateOrderRequest, "create_order")),
                           services: ServiceContainer = Depends(get_container)):
        return await services.payments.create_order(body, client_ip(request))

    @app.post("/verify-payment")
    async def verify_payment(body: VerifyPaymentRequest = Depends(decoded(VerifyPaymentRequest, "verify_payment")),
                             services: ServiceContainer = Depends(get_container)):
        return await services.payments.verify_payment(body)

    @app.post("/load-session")
    async def load_session(body: LoadSessionRequest = Depends(decoded(LoadSessionRequest, "load_session")),
                           services: ServiceContainer = Depends(get_container)):
        return await services.sessions.load(body.session_key)

    @app.post("/save-reply")
    async def save_reply(body: SaveReplyRequest = Depends(decoded(SaveReplyRequest, "save_reply")),
                         services: ServiceContainer = Depends(get_container)):
        return await services.sessions.save_reply(body.session_key, body.reply_text)

    @app.get("/health")
    def health(services: ServiceContainer = Depends(get_container)):
        return {"ok": True, **services.health()}

    return app

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("session_service.main:create_app", factory=True, host="0.0.0.0", port=8000)
