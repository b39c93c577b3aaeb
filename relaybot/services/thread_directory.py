"""
Thread Directory: the user <-> forum thread binding.

A binding is two store entries that must agree:
    thread:user:<uid>  -> thread id   (forward)
    thread:topic:<tid> -> user id     (reverse)

Lifecycle: ABSENT -> ACTIVE -> (thread deleted in the group) -> STALE -> ABSENT -> ACTIVE.
STALE is never stored; it is inferred from a failed probe and collapsed
straight back to ABSENT before a new thread is created.
"""

from relaybot.config import settings
from relaybot.infrastructure.observability.logging import get_logger
from relaybot.services.infrastructure.redis_client import fast_redis
from relaybot.services.kv_store import FORWARD_PREFIX, forward_key, reverse_key
from relaybot.services.telegram.client import ThreadProbe, telegram_client

logger = get_logger(__name__)

UNKNOWN_NAME = "Unknown user"
NO_HANDLE = "none"


def _parse_id(raw: str | None) -> int | None:
    if raw is None:
        return None
    try:
        value = int(raw)
    except (TypeError, ValueError):
        return None
    return value or None


def thread_title(user_id: int, display_name: str | None, handle: str | None) -> str:
    """Deterministic thread name: handle preferred, display name otherwise, then the id."""
    label = handle or display_name or UNKNOWN_NAME
    return f"{label}({user_id})"


class ThreadDirectory:
    def __init__(self, store=None, telegram=None, group_id: int | None = None):
        self.store = store or fast_redis
        self.telegram = telegram or telegram_client
        self._group_id = group_id

    @property
    def group_id(self) -> int | None:
        return self._group_id if self._group_id is not None else settings.SUPERGROUP_ID

    async def resolve_thread(
        self, user_id: int, display_name: str | None = None, handle: str | None = None
    ) -> int | None:
        """
        Return the live thread for a user, creating or recreating it as needed.

        Args:
            user_id: Telegram user id
            display_name: first name (fetched from the profile when missing)
            handle: "@username" or None

        Returns:
            int | None: thread id, or None when no thread could be created
        """
        cached = _parse_id(await self.store.get(forward_key(user_id)))

        if cached is not None:
            probe = await self.telegram.probe_thread(self.group_id, cached)

            if probe == ThreadProbe.EXISTS:
                return cached

            if probe == ThreadProbe.UNKNOWN:
                # Transport trouble is not evidence of deletion; keep the binding
                logger.warning(
                    "Thread probe inconclusive, keeping binding", user_id=user_id, thread_id=cached
                )
                return cached

            logger.warning("Thread was deleted, recreating", user_id=user_id, stale_thread_id=cached)
            await self._drop_binding(user_id, cached)

        return await self._create_binding(user_id, display_name, handle)

    async def _drop_binding(self, user_id: int, thread_id: int) -> None:
        await self.store.delete(forward_key(user_id))
        await self.store.delete(reverse_key(thread_id))

    async def _create_binding(
        self, user_id: int, display_name: str | None, handle: str | None
    ) -> int | None:
        if not display_name:
            display_name = await self.fetch_display_name(user_id)

        result = await self.telegram.create_forum_topic(
            self.group_id, thread_title(user_id, display_name, handle), settings.THREAD_ICON_COLOR
        )
        thread_id = result.result.get("message_thread_id") if result.ok and result.result else None

        if not thread_id:
            logger.error(
                "Failed to create thread",
                user_id=user_id,
                error_code=result.error_code,
                description=result.description,
            )
            return None

        await self.store.set_with_ttl(forward_key(user_id), str(thread_id))
        await self.store.set_with_ttl(reverse_key(thread_id), str(user_id))

        await self.telegram.send_message(
            self.group_id,
            "📋 New conversation\n"
            f"├─ Name: {display_name}\n"
            f"├─ Username: {handle or NO_HANDLE}\n"
            f"└─ User ID: {user_id}",
            thread_id=thread_id,
        )

        logger.info("Thread created", user_id=user_id, thread_id=thread_id)
        return thread_id

    async def lookup_user(self, thread_id: int) -> int | None:
        """
        Map a thread back to its user.

        The reverse index is authoritative when present. Bindings written
        before the reverse index existed are found by scanning forward
        entries, and the missing reverse entry is backfilled on the way out.
        """
        direct = _parse_id(await self.store.get(reverse_key(thread_id)))
        if direct is not None:
            return direct

        for key in await self.store.list_keys(FORWARD_PREFIX):
            if _parse_id(await self.store.get(key)) != thread_id:
                continue
            user_id = _parse_id(key[len(FORWARD_PREFIX):])
            if user_id is None:
                continue
            await self.store.set_with_ttl(reverse_key(thread_id), str(user_id))
            logger.info("Backfilled reverse thread entry", user_id=user_id, thread_id=thread_id)
            return user_id

        return None

    async def fetch_display_name(self, user_id: int) -> str:
        result = await self.telegram.get_chat(user_id)
        if result.ok and isinstance(result.result, dict):
            return result.result.get("first_name") or result.result.get("username") or UNKNOWN_NAME
        return UNKNOWN_NAME


thread_directory = ThreadDirectory()
