"""Slash commands typed by admins inside a user's thread."""

from relaybot.config import settings
from relaybot.infrastructure.observability.logging import get_logger
from relaybot.services.telegram.client import telegram_client
from relaybot.services.user_state import VERIFY_TTL_CHOICES, user_state
from relaybot.services.verification import verification_manager

logger = get_logger(__name__)

THREAD_UNBOUND_TEXT = "❌ This thread is not bound to a user"
VERIFY_TTL_USAGE = "❌ Usage: /verify_ttl 7d|30d|1y|permanent"
VERIFY_TTL_CHOICES_TEXT = "❌ Supported lifetimes: 7d, 30d, 1y, permanent"
UNKNOWN_COMMAND_TEXT = (
    "Available commands: /userinfo /reset_verify /close /open /ban /unban /verify_ttl"
)


def parse_command(text: str) -> tuple[str, list[str]]:
    """Split "/cmd@BotName arg1 arg2" into ("/cmd", ["arg1", "arg2"])."""
    parts = text.strip().split()
    if not parts:
        return "", []
    return parts[0].split("@", 1)[0].lower(), parts[1:]


class AdminCommandHandler:
    def __init__(self, telegram=None, users=None, verification=None, group_id: int | None = None):
        self.telegram = telegram or telegram_client
        self.users = users or user_state
        self.verification = verification or verification_manager
        self._group_id = group_id

    @property
    def group_id(self) -> int | None:
        return self._group_id if self._group_id is not None else settings.SUPERGROUP_ID

    async def _reply(self, thread_id: int, text: str) -> None:
        await self.telegram.send_message(self.group_id, text, thread_id=thread_id)

    async def handle(self, text: str, user_id: int | None, thread_id: int) -> str:
        """
        Execute one admin command.

        Returns:
            str: the normalized command name (for logging and tests)
        """
        command, args = parse_command(text)

        if user_id is None:
            await self._reply(thread_id, THREAD_UNBOUND_TEXT)
            return command

        logger.info("Admin command", command=command, user_id=user_id, thread_id=thread_id)

        if command == "/userinfo":
            await self._reply(thread_id, await self._user_info(user_id))
        elif command == "/reset_verify":
            revoked = await self.verification.reset(user_id)
            logger.info("Verification reset", user_id=user_id, revoked_tickets=revoked)
            await self._reply(thread_id, f"✅ Verification for user {user_id} has been reset")
        elif command == "/close":
            await self.users.set_closed(user_id, True)
            await self._reply(thread_id, f"✅ Conversation with user {user_id} closed")
        elif command == "/open":
            await self.users.set_closed(user_id, False)
            await self._reply(thread_id, f"✅ Conversation with user {user_id} reopened")
        elif command == "/ban":
            await self.users.set_banned(user_id, True)
            await self.verification.revoke_all(user_id)
            await self._reply(thread_id, f"✅ User {user_id} banned")
        elif command == "/unban":
            await self.users.set_banned(user_id, False)
            await self._reply(thread_id, f"✅ User {user_id} unbanned")
        elif command == "/verify_ttl":
            await self._verify_ttl(user_id, thread_id, args)
        else:
            await self._reply(thread_id, UNKNOWN_COMMAND_TEXT)

        return command

    async def _user_info(self, user_id: int) -> str:
        verified = await self.users.is_verified(user_id)
        status = "✅ verified" if verified else "❌ not verified"

        result = await self.telegram.get_chat(user_id)
        if not result.ok or not isinstance(result.result, dict):
            return f"📋 User ID: {user_id}\n❌ Could not load profile details\n└─ Verification: {status}"

        profile = result.result
        username = f"@{profile['username']}" if profile.get("username") else "none"
        return (
            "📋 User info\n"
            f"├─ ID: {user_id}\n"
            f"├─ Name: {profile.get('first_name') or 'none'}\n"
            f"├─ Username: {username}\n"
            f"└─ Verification: {status}"
        )

    async def _verify_ttl(self, user_id: int, thread_id: int, args: list[str]) -> None:
        if not args:
            await self._reply(thread_id, VERIFY_TTL_USAGE)
            return

        choice = args[0].lower()
        ttl_s = VERIFY_TTL_CHOICES.get(choice)
        if ttl_s is None:
            await self._reply(thread_id, VERIFY_TTL_CHOICES_TEXT)
            return

        await self.users.set_verified_ttl(user_id, ttl_s)
        await self.users.mark_verified(user_id, ttl_s)
        await self._reply(thread_id, f"✅ Verification lifetime for user {user_id} set to {choice}")


admin_command_handler = AdminCommandHandler()
