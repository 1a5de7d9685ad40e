"""Telegram webhook."""

from typing import Any

from fastapi import APIRouter, Body, HTTPException

from ...app import Application
from ...channels import telegram_identity
from ...logging_config import get_logger

logger = get_logger(__name__)


def create_telegram_router(app: Application) -> APIRouter:
    """Create Telegram router."""
    router = APIRouter(prefix="/api/telegram", tags=["telegram"])

    @router.post("/webhook")
    async def telegram_webhook(update: dict[str, Any] = Body(...)) -> dict:
        """Handle a bot update. Always 200 so Telegram does not retry."""
        message = update.get("message") or {}
        text = message.get("text")
        chat = message.get("chat") or {}
        if not text or "id" not in chat:
            return {"ok": True}

        identity = telegram_identity(chat["id"])
        username = (message.get("from") or {}).get("username")
        logger.info("Telegram message from %s (%s): %s", identity, username, text[:100])

        try:
            reply = await app.orchestrator.handle_incoming(identity, text)
            if not await app.notifier.send(identity, reply):
                logger.warning("Telegram reply to %s was not delivered", identity)
        except Exception as e:
            logger.error("Telegram webhook error for %s: %s", identity, e, exc_info=True)

        return {"ok": True}

    @router.post("/set-webhook")
    async def set_webhook() -> dict:
        """Point the bot at this server's webhook URL."""
        if app.telegram is None or not app.telegram.configured:
            raise HTTPException(status_code=404, detail="Telegram not configured")

        url = f"{app.settings.app_url.rstrip('/')}/api/telegram/webhook"
        if not await app.telegram.set_webhook(url):
            raise HTTPException(status_code=502, detail="Telegram rejected the webhook")
        return {"success": True, "webhook_url": url}

    return router
