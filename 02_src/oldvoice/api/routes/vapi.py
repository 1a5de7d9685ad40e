"""Call-service status callbacks."""

from typing import Any

from fastapi import APIRouter, Body, HTTPException

from ...app import Application
from ...logging_config import get_logger

logger = get_logger(__name__)


def create_vapi_router(app: Application) -> APIRouter:
    """Create Vapi router."""
    router = APIRouter(prefix="/api/vapi", tags=["vapi"])

    @router.post("/webhook")
    async def vapi_webhook(event: dict[str, Any] = Body(...)) -> dict:
        """Apply a call status event to its work item."""
        try:
            await app.dispatcher.handle_call_event(event)
        except Exception as e:
            logger.error("Vapi webhook error: %s", e, exc_info=True)
            raise HTTPException(status_code=500, detail="Internal server error")
        return {"success": True}

    return router
