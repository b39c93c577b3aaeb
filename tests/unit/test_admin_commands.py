import pytest

from relaybot.services.admin_commands import (
    THREAD_UNBOUND_TEXT,
    UNKNOWN_COMMAND_TEXT,
    VERIFY_TTL_CHOICES_TEXT,
    VERIFY_TTL_USAGE,
    parse_command,
)
from relaybot.services.kv_store import user_flag_key
from tests.conftest import GROUP_ID, USER_ID


def _last_reply(fake_telegram) -> dict:
    return fake_telegram.calls_to("sendMessage")[-1]


def test_parse_command_strips_bot_name():
    assert parse_command("/Ban@RelayBot now") == ("/ban", ["now"])
    assert parse_command("  ") == ("", [])


@pytest.mark.asyncio
async def test_unbound_thread_gets_notice(admin_commands, fake_telegram):
    await admin_commands.handle("/ban", None, 31)

    reply = _last_reply(fake_telegram)
    assert reply == {"chat_id": GROUP_ID, "text": THREAD_UNBOUND_TEXT, "message_thread_id": 31}


@pytest.mark.asyncio
async def test_ban_and_unban(admin_commands, users):
    await admin_commands.handle("/ban", USER_ID, 31)
    assert await users.is_banned(USER_ID) is True

    await admin_commands.handle("/unban", USER_ID, 31)
    assert await users.is_banned(USER_ID) is False


@pytest.mark.asyncio
async def test_close_and_open(admin_commands, users):
    await admin_commands.handle("/close", USER_ID, 31)
    assert await users.is_closed(USER_ID) is True

    await admin_commands.handle("/open", USER_ID, 31)
    assert await users.is_closed(USER_ID) is False


@pytest.mark.asyncio
async def test_reset_verify(admin_commands, users):
    await users.mark_verified(USER_ID)

    await admin_commands.handle("/reset_verify", USER_ID, 31)

    assert await users.is_verified(USER_ID) is False


@pytest.mark.asyncio
async def test_userinfo_reports_profile(admin_commands, users, fake_telegram):
    await users.mark_verified(USER_ID)

    await admin_commands.handle("/userinfo", USER_ID, 31)

    text = _last_reply(fake_telegram)["text"]
    assert f"ID: {USER_ID}" in text
    assert "@alice" in text
    assert "✅ verified" in text


@pytest.mark.asyncio
async def test_verify_ttl_sets_lifetime(admin_commands, users, fake_redis):
    await admin_commands.handle("/verify_ttl 30d", USER_ID, 31)

    assert await users.verified_ttl(USER_ID) == 2592000
    assert fake_redis.ttls[user_flag_key(USER_ID, "verified")] == 2592000


@pytest.mark.asyncio
async def test_verify_ttl_permanent_has_no_expiry(admin_commands, fake_redis):
    await admin_commands.handle("/verify_ttl permanent", USER_ID, 31)

    assert fake_redis.ttls[user_flag_key(USER_ID, "verified")] is None


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "text, expected", [("/verify_ttl", VERIFY_TTL_USAGE), ("/verify_ttl 2w", VERIFY_TTL_CHOICES_TEXT)]
)
async def test_verify_ttl_rejects_bad_arguments(admin_commands, fake_telegram, fake_redis, text, expected):
    await admin_commands.handle(text, USER_ID, 31)

    assert _last_reply(fake_telegram)["text"] == expected
    assert user_flag_key(USER_ID, "verify_ttl") not in fake_redis.store


@pytest.mark.asyncio
async def test_unknown_command_lists_commands(admin_commands, fake_telegram):
    assert await admin_commands.handle("/frobnicate", USER_ID, 31) == "/frobnicate"
    assert _last_reply(fake_telegram)["text"] == UNKNOWN_COMMAND_TEXT


@pytest.mark.asyncio
async def test_ban_revokes_outstanding_tickets(admin_commands, verification):
    await verification.ensure_ticket(USER_ID, 5)

    await admin_commands.handle("/ban", USER_ID, 31)

    assert await verification.has_active_ticket(USER_ID) is False
