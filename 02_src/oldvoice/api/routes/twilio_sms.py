"""Twilio SMS webhook."""

from fastapi import APIRouter, HTTPException, Request, Response
from twilio.request_validator import RequestValidator

from ...app import Application
from ...channels import twiml_message
from ...logging_config import get_logger
from ...orchestrator.replies import APOLOGY

logger = get_logger(__name__)

TWIML_MEDIA_TYPE = "application/xml"


def _signature_valid(app: Application, request: Request, params: dict[str, str]) -> bool:
    settings = app.settings
    if not settings.twilio_validate_signature:
        return True

    if not settings.twilio_auth_token:
        logger.error("Twilio signature validation enabled but no auth token configured")
        return False

    signature = request.headers.get("X-Twilio-Signature", "")
    if not signature:
        logger.warning("SMS webhook without X-Twilio-Signature")
        return False

    # Twilio signs the public URL, not the one behind the proxy.
    url = f"{settings.app_url.rstrip('/')}{request.url.path}"
    return RequestValidator(settings.twilio_auth_token).validate(url, params, signature)


def create_twilio_router(app: Application) -> APIRouter:
    """Create Twilio router."""
    router = APIRouter(prefix="/api/twilio", tags=["twilio"])

    @router.post("/sms")
    async def sms_webhook(request: Request) -> Response:
        """Receive an SMS and answer with TwiML."""
        form = await request.form()
        params = {key: str(value) for key, value in form.items()}

        if not _signature_valid(app, request, params):
            raise HTTPException(status_code=403, detail="Invalid Twilio signature")

        sender = params.get("From")
        body = params.get("Body", "")
        if not sender:
            raise HTTPException(status_code=400, detail="Missing From")

        try:
            reply = await app.orchestrator.handle_incoming(sender, body)
        except Exception as e:
            logger.error("SMS webhook error for %s: %s", sender, e, exc_info=True)
            reply = APOLOGY

        return Response(content=twiml_message(reply), media_type=TWIML_MEDIA_TYPE)

    @router.post("/sms/status")
    async def sms_status(request: Request) -> Response:
        """Delivery status callback; logged only."""
        form = await request.form()
        logger.info(
            "SMS status %s for %s (error %s)",
            form.get("MessageStatus"),
            form.get("MessageSid"),
            form.get("ErrorCode"),
        )
        return Response(status_code=200)

    return router
