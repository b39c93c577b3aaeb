"""
Verification page routes.

GET serves the Turnstile challenge page for a ticket, POST redeems the
ticket with the token the widget produced. /turnstile-verify?vid&uid is
kept as an alias for links issued before the rename.
"""

from functools import lru_cache
from html import escape
from pathlib import Path
from string import Template

from fastapi import APIRouter, Request
from fastapi.responses import HTMLResponse, JSONResponse

from relaybot.config import settings
from relaybot.infrastructure.observability.logging import get_logger
from relaybot.models.api.verify_request import VerifySubmitRequest
from relaybot.models.api.verify_response import VerifySubmitResponse
from relaybot.services.relay import relay_orchestrator
from relaybot.services.verification import verification_manager

logger = get_logger(__name__)

router = APIRouter()

_STATIC_DIR = Path(__file__).resolve().parents[1] / "static"
_NO_CACHE = {"Cache-Control": "no-cache"}
SUCCESS_MESSAGE = "Verification successful, returning to Telegram"


@lru_cache(maxsize=None)
def _load_template(name: str) -> Template:
    return Template((_STATIC_DIR / name).read_text(encoding="utf-8"))


def _expired_page(title: str, description: str) -> HTMLResponse:
    html = _load_template("expired.html").safe_substitute(
        title=escape(title), description=escape(description)
    )
    return HTMLResponse(html, status_code=400, headers=_NO_CACHE)


def _ticket_params(request: Request) -> tuple[str | None, int | None]:
    params = request.query_params
    ticket_id = params.get("ticket") or params.get("vid")
    raw_user = params.get("user") or params.get("uid")
    try:
        user_id = int(raw_user) if raw_user else None
    except ValueError:
        user_id = None
    return ticket_id, user_id


def _client_ip(request: Request) -> str | None:
    forwarded = request.headers.get("cf-connecting-ip")
    if forwarded:
        return forwarded
    return request.client.host if request.client else None


@router.get("/verify", response_class=HTMLResponse)
@router.get("/turnstile-verify", response_class=HTMLResponse, include_in_schema=False)
async def verify_page(request: Request):
    ticket_id, user_id = _ticket_params(request)
    if not ticket_id or user_id is None:
        return _expired_page("Invalid verification link", "The link is malformed or no longer valid")

    ticket = await verification_manager.get_ticket(ticket_id)
    if ticket is None or ticket.user_id != user_id:
        return _expired_page(
            "Verification link expired", "Send the bot a new message to get a fresh link"
        )

    html = _load_template("verify.html").safe_substitute(
        site_key=escape(settings.TURNSTILE_SITE_KEY or ""),
    )
    return HTMLResponse(html, headers=_NO_CACHE)


@router.post("/verify", response_model=VerifySubmitResponse)
@router.post("/turnstile-verify", response_model=VerifySubmitResponse, include_in_schema=False)
async def verify_submit(request: Request):
    ticket_id, user_id = _ticket_params(request)
    if not ticket_id or user_id is None:
        return JSONResponse(
            VerifySubmitResponse(success=False, error="Invalid verification link").model_dump(),
            status_code=400,
        )

    try:
        payload = VerifySubmitRequest.model_validate(await request.json())
    except ValueError:
        return JSONResponse(
            VerifySubmitResponse(success=False, error="Missing verification token").model_dump(),
            status_code=400,
        )

    try:
        outcome = await verification_manager.redeem(
            ticket_id,
            user_id,
            payload.token,
            remote_ip=_client_ip(request),
            on_verified=relay_orchestrator.replay_pending,
        )
    except Exception as e:
        logger.error(
            "Verification processing failed",
            user_id=user_id,
            error=str(e),
            error_type=type(e).__name__,
        )
        return VerifySubmitResponse(success=False, error="Server error, please retry")

    if outcome.expired:
        return JSONResponse(
            VerifySubmitResponse(success=False, error=outcome.reason).model_dump(),
            status_code=400,
        )
    if not outcome.success:
        return VerifySubmitResponse(success=False, error=outcome.reason)

    return VerifySubmitResponse(success=True, message=SUCCESS_MESSAGE)
