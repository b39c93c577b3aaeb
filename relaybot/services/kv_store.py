# relaybot/services/kv_store.py - Key conventions over the pooled Redis client
"""
Key-value conventions for relay state.

Redis is rented as a plain key-value store: no transactions and no
compare-and-swap. Every caller reconciles (read, validate, repair, write)
instead of assuming exclusive access.
"""

import json
from typing import Any

from relaybot.infrastructure.observability.logging import get_logger
from relaybot.services.infrastructure.redis_client import fast_redis

logger = get_logger(__name__)

# Key prefixes, all range-scannable
USER_PREFIX = "user"
FORWARD_PREFIX = "thread:user:"
REVERSE_PREFIX = "thread:topic:"
TICKET_PREFIX = "ticket:"
BATCH_PREFIX = "batch:"


def user_flag_key(user_id: int, flag: str) -> str:
    return f"{USER_PREFIX}:{user_id}:{flag}"


def forward_key(user_id: int) -> str:
    return f"{FORWARD_PREFIX}{user_id}"


def reverse_key(thread_id: int) -> str:
    return f"{REVERSE_PREFIX}{thread_id}"


def ticket_key(ticket_id: str) -> str:
    return f"{TICKET_PREFIX}{ticket_id}"


def batch_key(group_id: str) -> str:
    return f"{BATCH_PREFIX}{group_id}"


async def get_json(store, key: str) -> Any | None:
    """Read a JSON value; unparseable values read as absent."""
    raw = await store.get(key)
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except (TypeError, ValueError):
        logger.warning("Invalid JSON value in store", key=key[:40])
        return None


async def put_json(store, key: str, value: Any, ttl_s: int | None = None) -> bool:
    return await store.set_with_ttl(key, json.dumps(value, ensure_ascii=False), ttl_s)


async def ping() -> bool:
    return await fast_redis.ping()

