"""
Telegram webhook endpoint.

Always answers 200: Telegram resends any update that gets a non-2xx
response, so a failing update would otherwise be retried indefinitely.
"""

import hmac
import json

import structlog
from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import PlainTextResponse

from relaybot.config import settings
from relaybot.infrastructure.observability.logging import get_logger
from relaybot.services.relay import relay_orchestrator

logger = get_logger(__name__)

router = APIRouter()
SECRET_HEADER = "x-telegram-bot-api-secret-token"


def verify_secret_token(token: str | None) -> None:
    if not settings.WEBHOOK_SECRET:
        return
    if not token or not hmac.compare_digest(token, settings.WEBHOOK_SECRET):
        raise HTTPException(status_code=401, detail="Invalid secret token")


@router.post("/", response_class=PlainTextResponse)
async def telegram_webhook(request: Request):
    verify_secret_token(request.headers.get(SECRET_HEADER))

    raw = await request.body()
    try:
        update = json.loads(raw or b"{}")
    except ValueError as e:
        logger.warning("Unparseable update body", error=str(e), body_size=len(raw))
        return "OK"

    if not isinstance(update, dict):
        return "OK"

    with structlog.contextvars.bound_contextvars(update_id=update.get("update_id")):
        try:
            await relay_orchestrator.handle_update(update)
        except Exception as e:
            logger.error(
                "Webhook processing failed", error=str(e), error_type=type(e).__name__
            )

    return "OK"
