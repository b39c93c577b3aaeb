"""
Acknowledgment State Machine.

Every relayed message gets a visible reaction on both copies:
    new message:    NONE -> CONFIRMED
    edited message: NONE -> PLACEHOLDER -> (1 second later) CONFIRMED

The reaction is cleared before each change so emojis never stack. The
delayed upgrade runs as a deferred task, so the webhook returns at once.
Acknowledgment is best-effort: failures are logged and never raised.
"""

import asyncio

from relaybot.config import settings
from relaybot.infrastructure.observability.logging import get_logger
from relaybot.models.domain.relay_domain import AckState, ReactionTarget
from relaybot.services.infrastructure.deferred_tasks import deferred_tasks
from relaybot.services.telegram.client import telegram_client

logger = get_logger(__name__)

PLACEHOLDER_EMOJI = "🦄"
CONFIRMED_EMOJI = "🕊"


class AcknowledgmentService:
    def __init__(
        self,
        telegram=None,
        runner=None,
        confirm_delay_s: float | None = None,
        max_retries: int | None = None,
        backoff_s: float | None = None,
    ):
        self.telegram = telegram or telegram_client
        self.runner = runner or deferred_tasks
        self.confirm_delay_s = (
            confirm_delay_s if confirm_delay_s is not None else settings.EDIT_CONFIRM_DELAY_S
        )
        self.max_retries = max_retries if max_retries is not None else settings.REACTION_MAX_RETRIES
        self.backoff_s = backoff_s if backoff_s is not None else settings.REACTION_BACKOFF_S

    async def acknowledge(
        self,
        chat_id: int,
        message_id: int,
        thread_id: int | None = None,
        is_edit: bool = False,
    ) -> AckState:
        """
        Mark a message as relayed.

        Returns:
            AckState: the state reached before returning (the edit upgrade
            to CONFIRMED happens later in the background)
        """
        target = ReactionTarget(chat_id=chat_id, message_id=message_id, thread_id=thread_id)
        try:
            await self._apply(target, None)

            if not is_edit:
                applied = await self._apply(target, CONFIRMED_EMOJI)
                return AckState.CONFIRMED if applied else AckState.NONE

            applied = await self._apply(target, PLACEHOLDER_EMOJI)
            if not applied:
                return AckState.NONE

            self.runner.schedule(
                self._confirm,
                target,
                delay_s=self.confirm_delay_s,
                name=f"ack-confirm:{chat_id}:{message_id}",
            )
            return AckState.PLACEHOLDER

        except Exception as e:
            logger.error(
                "Acknowledgment failed",
                chat_id=chat_id,
                message_id=message_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            return AckState.NONE

    async def _confirm(self, target: ReactionTarget) -> None:
        await self._apply(target, None)
        await self._apply(target, CONFIRMED_EMOJI)

    async def _apply(self, target: ReactionTarget, emoji: str | None) -> bool:
        """Set (or clear, for emoji=None) the reaction with linear-backoff retries."""
        for attempt in range(1, self.max_retries + 1):
            result = await self.telegram.set_reaction(
                target.chat_id, target.message_id, emoji, thread_id=target.thread_id
            )
            if result.ok:
                return True

            if result.thread_missing():
                # Recreation is the thread directory's job on the next message
                logger.error(
                    "Reaction target thread no longer exists",
                    chat_id=target.chat_id,
                    thread_id=target.thread_id,
                    message_id=target.message_id,
                )
                return False

            if attempt < self.max_retries:
                await asyncio.sleep(self.backoff_s * attempt)

        logger.error(
            "Reaction retries exhausted",
            chat_id=target.chat_id,
            message_id=target.message_id,
            emoji=emoji or "<clear>",
            attempts=self.max_retries,
        )
        return False


acknowledgment_service = AcknowledgmentService()
