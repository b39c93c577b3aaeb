"""
Verification Ticket Service for gating first contact behind a Turnstile challenge.
Handles ticket issuance, per-user deduplication, redemption and refresh.
"""

import secrets
from collections.abc import Awaitable, Callable
from urllib.parse import urlencode

import httpx

from relaybot.config import settings
from relaybot.infrastructure.observability.logging import get_logger
from relaybot.models.domain.relay_domain import VerificationOutcome, VerificationTicket
from relaybot.services.infrastructure.redis_client import fast_redis
from relaybot.services.kv_store import TICKET_PREFIX, get_json, put_json, ticket_key
from relaybot.services.telegram.client import telegram_client
from relaybot.services.user_state import user_state

logger = get_logger(__name__)

TICKET_ID_BYTES = 12
VERIFIER_TIMEOUT_S = 10
REFRESH_CALLBACK_PREFIX = "refresh_verify:"

CHALLENGE_TEXT = "🛡️ Security check\n\nPlease complete the human verification before sending messages:"
VERIFIED_TEXT = "✅ Verification successful! You can now send messages."
EXPIRED_REASON = "Verification link expired, send a new message to get a fresh one"
GENERIC_REJECTION = "Verification failed, please retry"


class VerificationError(Exception):
    """Raised when the challenge verifier cannot be consulted."""

    def __init__(self, message: str, error_code: str | None = None):
        super().__init__(message)
        self.error_code = error_code


class TurnstileVerifier:
    """Client for the external challenge/response verifier."""

    def __init__(self, secret: str | None = None, verify_url: str | None = None, transport=None):
        self.secret = secret
        self.verify_url = verify_url or settings.TURNSTILE_VERIFY_URL
        self._transport = transport

    async def verify(self, proof_token: str, remote_ip: str | None = None) -> tuple[bool, list[str]]:
        """
        Check a client-submitted proof token.

        Returns:
            tuple: (passed, error codes reported by the verifier)

        Raises:
            VerificationError: if the verifier is unconfigured or unreachable
        """
        secret = self.secret or settings.TURNSTILE_SECRET_KEY
        if not secret:
            raise VerificationError("TURNSTILE_SECRET_KEY not configured", "config_error")

        payload = {"secret": secret, "response": proof_token}
        if remote_ip:
            payload["remoteip"] = remote_ip

        try:
            async with httpx.AsyncClient(
                timeout=VERIFIER_TIMEOUT_S, transport=self._transport
            ) as client:
                response = await client.post(self.verify_url, json=payload)
                data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise VerificationError(f"Verifier request failed: {e}", "network_error") from e

        return bool(data.get("success")), list(data.get("error-codes") or [])


class VerificationTicketManager:
    """
    Issues and redeems short-lived challenge tickets stored under ticket:<id>.

    At most one ticket per user is kept alive by deleting the user's existing
    tickets before a new one is issued. The store offers no uniqueness
    constraint, so this is a scan-and-delete convention.
    """

    def __init__(
        self,
        store=None,
        telegram=None,
        users=None,
        verifier: TurnstileVerifier | None = None,
        ticket_ttl_s: int | None = None,
        scan_limit: int | None = None,
    ):
        self.store = store or fast_redis
        self.telegram = telegram or telegram_client
        self.users = users or user_state
        self.verifier = verifier or TurnstileVerifier()
        self.ticket_ttl_s = ticket_ttl_s if ticket_ttl_s is not None else settings.TICKET_TTL_S
        self.scan_limit = scan_limit if scan_limit is not None else settings.TICKET_SCAN_LIMIT

    async def get_ticket(self, ticket_id: str) -> VerificationTicket | None:
        if not ticket_id:
            return None
        data = await get_json(self.store, ticket_key(ticket_id))
        if not isinstance(data, dict):
            return None
        return VerificationTicket.from_store(ticket_id, data)

    async def _tickets_for(self, user_id: int) -> list[VerificationTicket]:
        owned = []
        for key in await self.store.list_keys(TICKET_PREFIX, self.scan_limit):
            ticket = await self.get_ticket(key[len(TICKET_PREFIX):])
            if ticket is not None and ticket.user_id == user_id:
                owned.append(ticket)
        return owned

    async def has_active_ticket(self, user_id: int) -> bool:
        return bool(await self._tickets_for(user_id))

    async def revoke_all(self, user_id: int) -> int:
        """Delete every ticket owned by the user; returns how many were found."""
        owned = await self._tickets_for(user_id)
        for ticket in owned:
            await self.store.delete(ticket_key(ticket.ticket_id))
        return len(owned)

    def challenge_url(self, ticket: VerificationTicket) -> str:
        query = urlencode({"ticket": ticket.ticket_id, "user": ticket.user_id})
        return f"{settings.verify_base_url()}?{query}"

    async def ensure_ticket(
        self, user_id: int, pending_message_id: int | None = None
    ) -> VerificationTicket | None:
        """
        Replace any outstanding ticket for the user and present a fresh challenge link.

        Returns:
            VerificationTicket | None: the new ticket, None if it could not be stored
        """
        revoked = await self.revoke_all(user_id)

        ticket = VerificationTicket(
            ticket_id=secrets.token_urlsafe(TICKET_ID_BYTES),
            user_id=user_id,
            pending_message_id=pending_message_id,
        )
        stored = await put_json(
            self.store, ticket_key(ticket.ticket_id), ticket.to_store(), self.ticket_ttl_s
        )
        if not stored:
            logger.error("Failed to store verification ticket", user_id=user_id)
            return None

        logger.info(
            "Verification ticket issued",
            user_id=user_id,
            ticket_preview=ticket.ticket_id[:6] + "...",
            revoked=revoked,
            has_pending_message=pending_message_id is not None,
            ttl_seconds=self.ticket_ttl_s,
        )

        await self.telegram.send_message(
            user_id,
            CHALLENGE_TEXT,
            reply_to_message_id=pending_message_id,
            disable_web_page_preview=True,
            reply_markup={
                "inline_keyboard": [
                    [{"text": "✅ Verify now", "url": self.challenge_url(ticket)}],
                    [
                        {
                            "text": "🔄 Get a new link",
                            "callback_data": f"{REFRESH_CALLBACK_PREFIX}{ticket.ticket_id}",
                        }
                    ],
                ]
            },
        )
        return ticket

    async def refresh(self, ticket_id: str, user_id: int) -> VerificationTicket | None:
        """User-initiated replacement of a ticket."""
        await self.store.delete(ticket_key(ticket_id))
        return await self.ensure_ticket(user_id)

    async def redeem(
        self,
        ticket_id: str,
        user_id: int,
        proof_token: str,
        remote_ip: str | None = None,
        on_verified: Callable[[int, int], Awaitable[object]] | None = None,
    ) -> VerificationOutcome:
        """
        Redeem a ticket with a proof token from the challenge page.

        On success the user is marked verified, all of their tickets are
        deleted, and the message that triggered the challenge is handed to
        on_verified(user_id, message_id) for relaying. A rejected proof
        leaves the ticket usable until it expires.
        """
        ticket = await self.get_ticket(ticket_id)
        if ticket is None or ticket.user_id != user_id:
            logger.info("Redemption of unknown ticket", user_id=user_id)
            return VerificationOutcome(success=False, expired=True, reason=EXPIRED_REASON)

        if await self.users.is_banned(user_id):
            await self.revoke_all(user_id)
            await self.store.delete(ticket_key(ticket_id))
            logger.info("Redemption by banned user refused", user_id=user_id)
            return VerificationOutcome(success=False, expired=True, reason=EXPIRED_REASON)

        if not proof_token:
            return VerificationOutcome(success=False, reason=GENERIC_REJECTION)

        try:
            passed, error_codes = await self.verifier.verify(proof_token, remote_ip)
        except VerificationError as e:
            logger.error(
                "Challenge verifier unavailable", user_id=user_id, error=str(e), error_code=e.error_code
            )
            return VerificationOutcome(success=False, reason=GENERIC_REJECTION)

        if not passed:
            logger.info("Challenge proof rejected", user_id=user_id, error_codes=error_codes)
            return VerificationOutcome(
                success=False, reason=", ".join(error_codes) or GENERIC_REJECTION
            )

        await self.users.mark_verified(user_id)
        await self.revoke_all(user_id)
        # The redeemed ticket may sit beyond the scan limit
        await self.store.delete(ticket_key(ticket_id))

        replayed = None
        if ticket.pending_message_id is not None and on_verified is not None:
            try:
                await on_verified(user_id, ticket.pending_message_id)
                replayed = ticket.pending_message_id
            except Exception as e:
                logger.error(
                    "Replay of pending message failed",
                    user_id=user_id,
                    message_id=ticket.pending_message_id,
                    error=str(e),
                    error_type=type(e).__name__,
                )

        await self.telegram.send_message(user_id, VERIFIED_TEXT)

        logger.info("User verified", user_id=user_id, replayed_message_id=replayed)
        return VerificationOutcome(success=True, replayed_message_id=replayed)

    async def reset(self, user_id: int) -> int:
        """Admin reset: forget the verification and every outstanding ticket."""
        await self.users.clear_verified(user_id)
        return await self.revoke_all(user_id)


verification_manager = VerificationTicketManager()
