import itertools

import pytest

from relaybot.models.domain.relay_domain import ApiResult
from relaybot.services.acknowledgment import AcknowledgmentService
from relaybot.services.admin_commands import AdminCommandHandler
from relaybot.services.attachments import AttachmentAggregator
from relaybot.services.infrastructure.deferred_tasks import DeferredTaskRunner
from relaybot.services.relay import RelayOrchestrator
from relaybot.services.telegram.client import TelegramClient
from relaybot.services.thread_directory import ThreadDirectory
from relaybot.services.user_state import UserStateStore
from relaybot.services.verification import VerificationTicketManager

GROUP_ID = -1001234567890
USER_ID = 4242


class FakeRedis:
    def __init__(self):
        self.store: dict[str, str] = {}
        self.ttls: dict[str, int | None] = {}
        self.writes: list[str] = []

    async def set_with_ttl(self, key: str, value: str, ttl_s: int | None = None) -> bool:
        self.store[key] = value
        self.ttls[key] = ttl_s
        self.writes.append(key)
        return True

    async def get(self, key: str) -> str | None:
        return self.store.get(key)

    async def delete(self, key: str) -> bool:
        self.ttls.pop(key, None)
        return self.store.pop(key, None) is not None

    async def list_keys(self, prefix: str, limit: int | None = None) -> list[str]:
        keys = [key for key in self.store if key.startswith(prefix)]
        return keys[:limit] if limit is not None else keys

    def expire(self, key: str) -> None:
        """Simulate natural TTL expiry."""
        self.store.pop(key, None)
        self.ttls.pop(key, None)


class FakeTelegram(TelegramClient):
    """TelegramClient whose transport is a call recorder with scripted results."""

    def __init__(self):
        super().__init__(token="test-token")
        self.calls: list[tuple[str, dict]] = []
        self.responses: dict[str, list] = {}
        self._message_ids = itertools.count(1000)
        self._thread_ids = itertools.count(500)

    def script(self, method: str, *results) -> None:
        """Queue results for a method; the last one repeats."""
        self.responses[method] = list(results)

    def calls_to(self, method: str) -> list[dict]:
        return [params for name, params in self.calls if name == method]

    def reactions(self, chat_id: int, message_id: int) -> list[str | None]:
        """Emoji sequence applied to one message; None marks a clear."""
        applied = []
        for params in self.calls_to("setMessageReaction"):
            if params["chat_id"] == chat_id and params["message_id"] == message_id:
                reaction = params["reaction"]
                applied.append(reaction[0]["emoji"] if reaction else None)
        return applied

    async def invoke(self, method: str, params: dict | None = None) -> ApiResult:
        params = {k: v for k, v in (params or {}).items() if v is not None}
        self.calls.append((method, params))

        queued = self.responses.get(method)
        if queued:
            result = queued.pop(0) if len(queued) > 1 else queued[0]
            return result(params) if callable(result) else result

        return self._default(method, params)

    def _default(self, method: str, params: dict) -> ApiResult:
        if method in ("sendMessage", "copyMessage", "forwardMessage"):
            return ApiResult(ok=True, result={"message_id": next(self._message_ids)})
        if method == "createForumTopic":
            return ApiResult(
                ok=True,
                result={"message_thread_id": next(self._thread_ids), "name": params["name"]},
            )
        if method == "sendMediaGroup":
            return ApiResult(
                ok=True,
                result=[{"message_id": next(self._message_ids)} for _ in params["media"]],
            )
        if method == "getChat":
            return ApiResult(
                ok=True,
                result={"id": params["chat_id"], "first_name": "Alice", "username": "alice"},
            )
        return ApiResult(ok=True, result=True)


THREAD_NOT_FOUND = ApiResult(
    ok=False, error_code=400, description="Bad Request: message thread not found"
)
TOO_MANY_REQUESTS = ApiResult(
    ok=False, error_code=429, description="Too Many Requests: retry after 1"
)


class FakeVerifier:
    def __init__(self, passed: bool = True, error_codes: list[str] | None = None):
        self.passed = passed
        self.error_codes = error_codes or []
        self.tokens: list[str] = []

    async def verify(self, proof_token: str, remote_ip: str | None = None):
        self.tokens.append(proof_token)
        return self.passed, self.error_codes


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def fake_telegram():
    return FakeTelegram()


@pytest.fixture
def runner():
    return DeferredTaskRunner()


@pytest.fixture
def fake_verifier():
    return FakeVerifier()


@pytest.fixture
def users(fake_redis):
    return UserStateStore(store=fake_redis, default_verified_ttl_s=604800)


@pytest.fixture
def directory(fake_redis, fake_telegram):
    return ThreadDirectory(store=fake_redis, telegram=fake_telegram, group_id=GROUP_ID)


@pytest.fixture
def acknowledger(fake_telegram, runner):
    return AcknowledgmentService(
        telegram=fake_telegram, runner=runner, confirm_delay_s=0.01, max_retries=3, backoff_s=0
    )


@pytest.fixture
def aggregator(fake_redis, fake_telegram, acknowledger, runner):
    return AttachmentAggregator(
        store=fake_redis,
        telegram=fake_telegram,
        acknowledger=acknowledger,
        runner=runner,
        flush_delay_s=0.01,
        buffer_ttl_s=60,
    )


@pytest.fixture
def verification(fake_redis, fake_telegram, users, fake_verifier):
    return VerificationTicketManager(
        store=fake_redis,
        telegram=fake_telegram,
        users=users,
        verifier=fake_verifier,
        ticket_ttl_s=300,
        scan_limit=100,
    )


@pytest.fixture
def admin_commands(fake_telegram, users, verification):
    return AdminCommandHandler(
        telegram=fake_telegram, users=users, verification=verification, group_id=GROUP_ID
    )


@pytest.fixture
def orchestrator(
    fake_telegram, directory, acknowledger, aggregator, verification, users, admin_commands
):
    return RelayOrchestrator(
        telegram=fake_telegram,
        directory=directory,
        acknowledger=acknowledger,
        aggregator=aggregator,
        verification=verification,
        users=users,
        admin_commands=admin_commands,
        group_id=GROUP_ID,
    )


def private_message(text: str | None = "hello", message_id: int = 1, user_id: int = USER_ID, **extra):
    message = {
        "message_id": message_id,
        "chat": {"id": user_id, "type": "private"},
        "from": {"id": user_id, "first_name": "Alice", "username": "alice"},
        **extra,
    }
    if text is not None:
        message["text"] = text
    return message


def group_message(text: str | None, thread_id: int, message_id: int = 77, **extra):
    message = {
        "message_id": message_id,
        "message_thread_id": thread_id,
        "chat": {"id": GROUP_ID, "type": "supergroup"},
        "from": {"id": 1, "first_name": "Admin"},
        **extra,
    }
    if text is not None:
        message["text"] = text
    return message
