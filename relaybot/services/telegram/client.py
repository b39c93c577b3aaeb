"""
Telegram Bot API client.
Every platform call goes through invoke(), which applies a fixed timeout and
folds transport failures and platform rejections into one ApiResult shape.
No retries happen here; retry policy belongs to the caller.
"""

from enum import Enum
from typing import Any

import httpx

from relaybot.config import settings
from relaybot.infrastructure.observability.logging import get_logger
from relaybot.models.domain.relay_domain import ApiResult

logger = get_logger(__name__)

TRANSPORT_ERROR_CODE = 500


class TelegramApiError(Exception):
    """Raised when a Bot API response cannot be interpreted."""

    def __init__(self, message: str, method: str | None = None, status_code: int | None = None):
        super().__init__(message)
        self.method = method
        self.status_code = status_code


class ThreadProbe(str, Enum):
    EXISTS = "exists"
    MISSING = "missing"
    UNKNOWN = "unknown"


class TelegramClient:
    """Thin async wrapper over the Bot API with a uniform result contract."""

    def __init__(
        self,
        token: str | None = None,
        base_url: str | None = None,
        timeout_s: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.token = token
        self.base_url = (base_url or settings.TELEGRAM_API_BASE_URL).rstrip("/")
        self.timeout_s = timeout_s or settings.TELEGRAM_TIMEOUT_S
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    def _create_client(self) -> httpx.AsyncClient:
        timeout = httpx.Timeout(self.timeout_s)
        limits = httpx.Limits(max_keepalive_connections=20, max_connections=50)
        return httpx.AsyncClient(timeout=timeout, limits=limits, transport=self._transport)

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = self._create_client()
        return self._client

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def _method_url(self, method: str) -> str:
        token = self.token or settings.BOT_TOKEN
        return f"{self.base_url}/bot{token}/{method}"

    def _handle_api_response(self, response: httpx.Response, method: str) -> ApiResult:
        try:
            data = response.json()
        except ValueError as e:
            raise TelegramApiError(
                f"Invalid response format (HTTP {response.status_code})",
                method=method,
                status_code=response.status_code,
            ) from e

        if not isinstance(data, dict) or "ok" not in data:
            raise TelegramApiError(
                "Response is missing the ok field", method=method, status_code=response.status_code
            )

        return ApiResult.model_validate(data)

    async def invoke(self, method: str, params: dict[str, Any] | None = None) -> ApiResult:
        """
        Call a Bot API method.

        Args:
            method: Bot API method name, e.g. "sendMessage"
            params: JSON body; None values are dropped

        Returns:
            ApiResult: never raises for transport or platform failures
        """
        if not (self.token or settings.BOT_TOKEN):
            logger.error("Telegram call skipped, BOT_TOKEN not configured", method=method)
            return ApiResult.failure("BOT_TOKEN not configured", TRANSPORT_ERROR_CODE)

        body = {k: v for k, v in (params or {}).items() if v is not None}

        try:
            response = await self.client.post(self._method_url(method), json=body)
            result = self._handle_api_response(response, method)
        except httpx.TimeoutException as e:
            logger.error("Telegram API call timed out", method=method, timeout_s=self.timeout_s)
            return ApiResult.failure(f"timeout: {e}" if str(e) else "timeout", TRANSPORT_ERROR_CODE)
        except httpx.HTTPError as e:
            logger.error(
                "Telegram API call failed", method=method, error=str(e), error_type=type(e).__name__
            )
            return ApiResult.failure(str(e) or type(e).__name__, TRANSPORT_ERROR_CODE)
        except TelegramApiError as e:
            logger.error("Telegram API response unreadable", method=method, error=str(e))
            return ApiResult.failure(str(e), e.status_code or TRANSPORT_ERROR_CODE)

        if not result.ok:
            logger.warning(
                "Telegram API error",
                method=method,
                error_code=result.error_code,
                description=result.description,
            )
        return result

    # =================================================================
    # Typed operations
    # =================================================================

    async def send_message(
        self,
        chat_id: int,
        text: str,
        thread_id: int | None = None,
        reply_to_message_id: int | None = None,
        reply_markup: dict | None = None,
        disable_web_page_preview: bool | None = None,
    ) -> ApiResult:
        params: dict[str, Any] = {
            "chat_id": chat_id,
            "text": text,
            "message_thread_id": thread_id,
            "reply_markup": reply_markup,
            "disable_web_page_preview": disable_web_page_preview,
        }
        if reply_to_message_id is not None:
            params["reply_parameters"] = {
                "message_id": reply_to_message_id,
                "allow_sending_without_reply": True,
            }
        return await self.invoke("sendMessage", params)

    async def copy_message(
        self, chat_id: int, from_chat_id: int, message_id: int, thread_id: int | None = None
    ) -> ApiResult:
        return await self.invoke(
            "copyMessage",
            {
                "chat_id": chat_id,
                "from_chat_id": from_chat_id,
                "message_id": message_id,
                "message_thread_id": thread_id,
            },
        )

    async def forward_message(
        self, chat_id: int, from_chat_id: int, message_id: int, thread_id: int | None = None
    ) -> ApiResult:
        return await self.invoke(
            "forwardMessage",
            {
                "chat_id": chat_id,
                "from_chat_id": from_chat_id,
                "message_id": message_id,
                "message_thread_id": thread_id,
            },
        )

    async def create_forum_topic(self, chat_id: int, name: str, icon_color: int) -> ApiResult:
        return await self.invoke(
            "createForumTopic", {"chat_id": chat_id, "name": name, "icon_color": icon_color}
        )

    async def probe_thread(self, chat_id: int, thread_id: int) -> ThreadProbe:
        """
        Check whether a forum thread still exists.

        The Bot API has no topic lookup, so a harmless chat action addressed
        to the thread is used: it succeeds for live threads and is rejected
        with "message thread not found" once the thread is deleted.
        """
        result = await self.invoke(
            "sendChatAction",
            {"chat_id": chat_id, "message_thread_id": thread_id, "action": "typing"},
        )
        if result.ok:
            return ThreadProbe.EXISTS
        if result.thread_missing():
            return ThreadProbe.MISSING
        if result.error_code == 400 and "topic_closed" in (result.description or "").lower():
            return ThreadProbe.EXISTS
        return ThreadProbe.UNKNOWN

    async def set_reaction(
        self, chat_id: int, message_id: int, emoji: str | None, thread_id: int | None = None
    ) -> ApiResult:
        """Set a single emoji reaction; emoji=None clears the reaction."""
        reaction = [{"type": "emoji", "emoji": emoji}] if emoji else []
        return await self.invoke(
            "setMessageReaction",
            {
                "chat_id": chat_id,
                "message_id": message_id,
                "message_thread_id": thread_id,
                "reaction": reaction,
                "is_big": False,
            },
        )

    async def send_media_group(
        self, chat_id: int, media: list[dict[str, Any]], thread_id: int | None = None
    ) -> ApiResult:
        return await self.invoke(
            "sendMediaGroup", {"chat_id": chat_id, "media": media, "message_thread_id": thread_id}
        )

    async def get_chat(self, chat_id: int) -> ApiResult:
        return await self.invoke("getChat", {"chat_id": chat_id})

    async def answer_callback_query(self, callback_query_id: str, text: str | None = None) -> ApiResult:
        return await self.invoke(
            "answerCallbackQuery", {"callback_query_id": callback_query_id, "text": text}
        )

    async def delete_message(self, chat_id: int, message_id: int) -> ApiResult:
        return await self.invoke("deleteMessage", {"chat_id": chat_id, "message_id": message_id})


# Global instance
telegram_client = TelegramClient()
