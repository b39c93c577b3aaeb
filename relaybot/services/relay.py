"""
Relay Orchestrator.

Classifies an inbound Telegram update and runs the relay in order:
gatekeeping -> thread resolution -> delivery (single or batched) ->
acknowledgment on both copies.
"""

from typing import Any

from relaybot.config import settings
from relaybot.infrastructure.observability.logging import get_logger
from relaybot.models.domain.relay_domain import (
    BatchDestination,
    ReactionTarget,
    media_item_from_message,
)
from relaybot.services.acknowledgment import acknowledgment_service
from relaybot.services.admin_commands import THREAD_UNBOUND_TEXT, admin_command_handler
from relaybot.services.attachments import attachment_aggregator
from relaybot.services.telegram.client import telegram_client
from relaybot.services.thread_directory import UNKNOWN_NAME, thread_directory
from relaybot.services.user_state import user_state
from relaybot.services.verification import REFRESH_CALLBACK_PREFIX, verification_manager

logger = get_logger(__name__)

CLOSED_TEXT = "🚫 This conversation has been closed by the admins"
THREAD_FAILED_TEXT = "⚠️ Could not open a conversation thread, please try again later"
RELAY_FAILED_TEXT = "🚫 Message could not be delivered, please try again later"
REFRESHED_TEXT = "A new verification link has been generated!"
WELCOME_TEXT = """Welcome! This bot relays your messages to the admins.

📝 How it works:
• Messages you send are forwarded to the admin group
• Edited text messages show 🦄 briefly, then 🕊
• 🕊 means your message was delivered

⚠️ Notes:
• Only text messages can be edited
• You need to pass a quick security check before sending messages"""

# Service messages carry one of these fields and are never relayed
SERVICE_FIELDS = (
    "forum_topic_created",
    "forum_topic_edited",
    "forum_topic_closed",
    "forum_topic_reopened",
    "new_chat_members",
    "left_chat_member",
    "pinned_message",
)


def sender_identity(sender: dict[str, Any] | None) -> tuple[str, str | None]:
    """(display name, "@handle" or None) for a Telegram user object."""
    sender = sender or {}
    username = sender.get("username")
    display_name = sender.get("first_name") or username or UNKNOWN_NAME
    return display_name, f"@{username}" if username else None


def is_service_message(message: dict[str, Any]) -> bool:
    return any(field in message for field in SERVICE_FIELDS)


class RelayOrchestrator:
    def __init__(
        self,
        telegram=None,
        directory=None,
        acknowledger=None,
        aggregator=None,
        verification=None,
        users=None,
        admin_commands=None,
        group_id: int | None = None,
    ):
        self.telegram = telegram or telegram_client
        self.directory = directory or thread_directory
        self.acknowledger = acknowledger or acknowledgment_service
        self.aggregator = aggregator or attachment_aggregator
        self.verification = verification or verification_manager
        self.users = users or user_state
        self.admin_commands = admin_commands or admin_command_handler
        self._group_id = group_id

    @property
    def group_id(self) -> int | None:
        return self._group_id if self._group_id is not None else settings.SUPERGROUP_ID

    async def handle_update(self, update: dict[str, Any]) -> None:
        """Dispatch one webhook update. Unknown shapes are ignored."""
        if "callback_query" in update:
            await self.handle_callback(update["callback_query"])
            return

        is_edit = "edited_message" in update
        message = update.get("message") or update.get("edited_message")
        if not isinstance(message, dict) or is_service_message(message):
            return

        chat = message.get("chat") or {}
        chat_type = chat.get("type")

        if chat_type == "supergroup" and message.get("message_thread_id"):
            if self.group_id is not None and chat.get("id") != self.group_id:
                logger.warning("Ignoring message from foreign group", chat_id=chat.get("id"))
                return
            await self.handle_group_message(message, is_edit)
            return

        if chat_type == "private":
            await self.handle_private_message(message, is_edit)

    # =================================================================
    # USER SIDE
    # =================================================================

    async def handle_private_message(self, message: dict[str, Any], is_edit: bool = False) -> None:
        user_id = message["chat"]["id"]

        if await self.users.is_banned(user_id):
            return

        if await self.users.is_closed(user_id):
            await self.telegram.send_message(user_id, CLOSED_TEXT)
            return

        if (message.get("text") or "").strip() == "/start":
            await self._welcome(user_id)
            if not await self.users.is_verified(user_id):
                await self._challenge_if_needed(user_id, message["message_id"])
            return

        if await self.users.is_verified(user_id):
            await self.relay_user_message(message, is_edit)
            return

        await self._challenge_if_needed(user_id, message["message_id"])

    async def _welcome(self, user_id: int) -> None:
        result = await self.telegram.send_message(user_id, WELCOME_TEXT)
        if result.message_id:
            await self.acknowledger.acknowledge(user_id, result.message_id)

    async def _challenge_if_needed(self, user_id: int, message_id: int) -> None:
        if await self.verification.has_active_ticket(user_id):
            return
        await self.verification.ensure_ticket(user_id, message_id)

    async def relay_user_message(self, message: dict[str, Any], is_edit: bool = False) -> None:
        """Deliver a verified user's message into their thread."""
        chat_id = message["chat"]["id"]
        message_id = message["message_id"]

        try:
            if is_edit and not message.get("text"):
                logger.info("Ignoring edit of non-text message", user_id=chat_id, message_id=message_id)
                return

            sender = message.get("from") or {"id": chat_id}
            user_id = sender.get("id", chat_id)
            display_name, handle = sender_identity(sender)

            thread_id = await self.directory.resolve_thread(user_id, display_name, handle)
            if thread_id is None:
                await self.telegram.send_message(chat_id, THREAD_FAILED_TEXT)
                return

            group_id = message.get("media_group_id")
            item = media_item_from_message(message) if group_id and not is_edit else None
            if item is not None:
                await self.aggregator.absorb(
                    str(group_id),
                    item,
                    BatchDestination(
                        chat_id=self.group_id,
                        thread_id=thread_id,
                        source=ReactionTarget(chat_id=chat_id, message_id=message_id),
                    ),
                )
                return

            if is_edit:
                # Forwarding shows the original text, copying shows the edit
                result = await self.telegram.copy_message(
                    self.group_id, chat_id, message_id, thread_id=thread_id
                )
            else:
                result = await self.telegram.forward_message(
                    self.group_id, chat_id, message_id, thread_id=thread_id
                )
                if not result.ok:
                    result = await self.telegram.copy_message(
                        self.group_id, chat_id, message_id, thread_id=thread_id
                    )

            if not result.message_id:
                logger.error(
                    "Relay to thread failed",
                    user_id=user_id,
                    message_id=message_id,
                    thread_id=thread_id,
                    description=result.description,
                )
                return

            await self.acknowledger.acknowledge(self.group_id, result.message_id, thread_id, is_edit)
            await self.acknowledger.acknowledge(chat_id, message_id, None, is_edit)

        except Exception as e:
            logger.error(
                "Unexpected error relaying user message",
                user_id=chat_id,
                message_id=message_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            await self.telegram.send_message(chat_id, RELAY_FAILED_TEXT)

    async def replay_pending(self, user_id: int, message_id: int) -> None:
        """Relay the message that was held back while the user was unverified."""
        if await self.users.is_banned(user_id) or await self.users.is_closed(user_id):
            logger.info(
                "Skipping replay for banned or closed user", user_id=user_id, message_id=message_id
            )
            return

        profile = await self.telegram.get_chat(user_id)
        sender: dict[str, Any] = {"id": user_id}
        if profile.ok and isinstance(profile.result, dict):
            sender["first_name"] = profile.result.get("first_name")
            sender["username"] = profile.result.get("username")

        await self.relay_user_message(
            {
                "message_id": message_id,
                "chat": {"id": user_id, "type": "private"},
                "from": sender,
            }
        )

    # =================================================================
    # GROUP SIDE
    # =================================================================

    async def handle_group_message(self, message: dict[str, Any], is_edit: bool = False) -> None:
        thread_id = message["message_thread_id"]
        user_id = await self.directory.lookup_user(thread_id)
        text = (message.get("text") or "").strip()

        if text.startswith("/"):
            await self.admin_commands.handle(text, user_id, thread_id)
            return

        if user_id is None:
            await self.telegram.send_message(self.group_id, THREAD_UNBOUND_TEXT, thread_id=thread_id)
            return

        message_id = message["message_id"]
        group_id = message.get("media_group_id")
        item = media_item_from_message(message) if group_id else None
        if item is not None:
            await self.aggregator.absorb(
                str(group_id),
                item,
                BatchDestination(
                    chat_id=user_id,
                    source=ReactionTarget(
                        chat_id=self.group_id, message_id=message_id, thread_id=thread_id
                    ),
                    is_edit=is_edit,
                ),
            )
            return

        result = await self.telegram.copy_message(user_id, self.group_id, message_id)
        if not result.message_id:
            logger.error(
                "Relay of admin reply failed",
                user_id=user_id,
                thread_id=thread_id,
                description=result.description,
            )
            return

        await self.acknowledger.acknowledge(self.group_id, message_id, thread_id, is_edit)
        await self.acknowledger.acknowledge(user_id, result.message_id, None, is_edit)

    # =================================================================
    # CALLBACKS
    # =================================================================

    async def handle_callback(self, query: dict[str, Any]) -> None:
        data = query.get("data") or ""
        if not data.startswith(REFRESH_CALLBACK_PREFIX):
            await self.telegram.answer_callback_query(query["id"])
            return

        user_id = query["from"]["id"]
        if await self.users.is_banned(user_id):
            await self.telegram.answer_callback_query(query["id"])
            return

        old_ticket_id = data[len(REFRESH_CALLBACK_PREFIX):]

        await self.verification.refresh(old_ticket_id, user_id)
        await self.telegram.answer_callback_query(query["id"], REFRESHED_TEXT)

        old_message = query.get("message") or {}
        if old_message.get("message_id"):
            result = await self.telegram.delete_message(user_id, old_message["message_id"])
            if not result.ok:
                logger.warning("Failed to delete old verification message", user_id=user_id)

        logger.info("Verification link refreshed", user_id=user_id)


relay_orchestrator = RelayOrchestrator()
