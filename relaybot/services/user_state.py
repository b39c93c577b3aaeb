"""Per-user flags: verified (expiring), banned (sticky) and closed (toggle)."""

from relaybot.config import settings
from relaybot.infrastructure.observability.logging import get_logger
from relaybot.services.infrastructure.redis_client import fast_redis
from relaybot.services.kv_store import user_flag_key

logger = get_logger(__name__)

FLAG_SET = "1"

# Accepted /verify_ttl arguments; 0 means the verification never expires
VERIFY_TTL_CHOICES = {
    "7d": 604800,
    "30d": 2592000,
    "1y": 31536000,
    "permanent": 0,
    "永久": 0,
}


class UserStateStore:
    def __init__(self, store=None, default_verified_ttl_s: int | None = None):
        self.store = store or fast_redis
        self.default_verified_ttl_s = (
            default_verified_ttl_s
            if default_verified_ttl_s is not None
            else settings.VERIFIED_TTL_S
        )

    async def _flag(self, user_id: int, flag: str) -> bool:
        return await self.store.get(user_flag_key(user_id, flag)) == FLAG_SET

    async def is_banned(self, user_id: int) -> bool:
        return await self._flag(user_id, "banned")

    async def is_closed(self, user_id: int) -> bool:
        return await self._flag(user_id, "closed")

    async def is_verified(self, user_id: int) -> bool:
        return await self._flag(user_id, "verified")

    async def set_banned(self, user_id: int, banned: bool) -> bool:
        key = user_flag_key(user_id, "banned")
        if banned:
            return await self.store.set_with_ttl(key, FLAG_SET)
        return await self.store.delete(key)

    async def set_closed(self, user_id: int, closed: bool) -> bool:
        key = user_flag_key(user_id, "closed")
        if closed:
            return await self.store.set_with_ttl(key, FLAG_SET)
        return await self.store.delete(key)

    async def verified_ttl(self, user_id: int) -> int:
        """Admin-configured verification lifetime for this user, else the default."""
        raw = await self.store.get(user_flag_key(user_id, "verify_ttl"))
        if raw is None:
            return self.default_verified_ttl_s
        try:
            return int(raw)
        except ValueError:
            logger.warning("Invalid verify_ttl value", user_id=user_id, value=raw)
            return self.default_verified_ttl_s

    async def set_verified_ttl(self, user_id: int, ttl_s: int) -> bool:
        return await self.store.set_with_ttl(user_flag_key(user_id, "verify_ttl"), str(ttl_s))

    async def mark_verified(self, user_id: int, ttl_s: int | None = None) -> bool:
        if ttl_s is None:
            ttl_s = await self.verified_ttl(user_id)
        # ttl_s == 0 stores without expiry
        success = await self.store.set_with_ttl(
            user_flag_key(user_id, "verified"), FLAG_SET, ttl_s or None
        )
        logger.info("User marked verified", user_id=user_id, ttl_s=ttl_s, stored=success)
        return success

    async def clear_verified(self, user_id: int) -> bool:
        return await self.store.delete(user_flag_key(user_id, "verified"))


user_state = UserStateStore()
