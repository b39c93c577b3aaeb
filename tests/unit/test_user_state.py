import pytest

from relaybot.services.kv_store import get_json, put_json, user_flag_key


@pytest.mark.asyncio
async def test_flags_default_to_false(users):
    assert await users.is_banned(1) is False
    assert await users.is_closed(1) is False
    assert await users.is_verified(1) is False


@pytest.mark.asyncio
async def test_verification_expires_with_store_ttl(users, fake_redis):
    await users.mark_verified(1)
    assert await users.is_verified(1) is True
    assert fake_redis.ttls[user_flag_key(1, "verified")] == 604800

    fake_redis.expire(user_flag_key(1, "verified"))

    assert await users.is_verified(1) is False


@pytest.mark.asyncio
async def test_invalid_verify_ttl_falls_back_to_default(users, fake_redis):
    fake_redis.store[user_flag_key(1, "verify_ttl")] = "soon"

    assert await users.verified_ttl(1) == 604800


@pytest.mark.asyncio
async def test_json_helpers(fake_redis):
    await put_json(fake_redis, "ticket:x", {"uid": "1", "msg_id": None}, 300)

    assert await get_json(fake_redis, "ticket:x") == {"uid": "1", "msg_id": None}
    assert fake_redis.ttls["ticket:x"] == 300

    fake_redis.store["ticket:y"] = "{not json"
    assert await get_json(fake_redis, "ticket:y") is None
