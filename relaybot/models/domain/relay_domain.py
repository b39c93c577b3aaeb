"""
Domain models for relaying messages between private chats and forum threads.
"""

from enum import Enum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

THREAD_MISSING_MARKERS = (
    "message thread not found",
    "message_thread_id",
    "topic_id_invalid",
    "topic_deleted",
)


class ApiResult(BaseModel):
    """Uniform outcome of a platform call: ok plus result, or an error code and description."""

    model_config = ConfigDict(extra="ignore")

    ok: bool
    result: Any = None
    error_code: int | None = None
    description: str | None = None

    @classmethod
    def failure(cls, description: str, error_code: int = 500) -> "ApiResult":
        return cls(ok=False, error_code=error_code, description=description)

    @property
    def message_id(self) -> int | None:
        if self.ok and isinstance(self.result, dict):
            return self.result.get("message_id")
        return None

    def thread_missing(self) -> bool:
        """True when the platform says the addressed thread no longer exists."""
        if self.ok or self.error_code != 400:
            return False
        description = (self.description or "").lower()
        return any(marker in description for marker in THREAD_MISSING_MARKERS)


class AckState(str, Enum):
    NONE = "none"
    PLACEHOLDER = "placeholder"
    CONFIRMED = "confirmed"


class ReactionTarget(BaseModel):
    """A message to acknowledge; never persisted."""

    chat_id: int
    message_id: int
    thread_id: int | None = None


# =================================================================
# MEDIA ITEMS - closed tagged variant, one case per kind
# =================================================================


class _MediaBase(BaseModel):
    media: str
    caption: str | None = None

    def to_input_media(self) -> dict[str, Any]:
        return {"type": self.kind, "media": self.media, "caption": self.caption or ""}


class PhotoItem(_MediaBase):
    kind: Literal["photo"] = "photo"


class VideoItem(_MediaBase):
    kind: Literal["video"] = "video"


class DocumentItem(_MediaBase):
    kind: Literal["document"] = "document"


MediaItem = Annotated[PhotoItem | VideoItem | DocumentItem, Field(discriminator="kind")]

media_list_adapter = TypeAdapter(list[MediaItem])


def media_item_from_message(message: dict[str, Any]) -> PhotoItem | VideoItem | DocumentItem | None:
    """Extract the single media item carried by a batch fragment, if any."""
    caption = message.get("caption")
    if message.get("photo"):
        # Sizes are ordered smallest to largest
        return PhotoItem(media=message["photo"][-1]["file_id"], caption=caption)
    if message.get("video"):
        return VideoItem(media=message["video"]["file_id"], caption=caption)
    if message.get("document"):
        return DocumentItem(media=message["document"]["file_id"], caption=caption)
    return None


class BatchDestination(BaseModel):
    """Where a flushed batch goes, and which source message to acknowledge afterwards."""

    chat_id: int
    thread_id: int | None = None
    source: ReactionTarget
    is_edit: bool = False


# =================================================================
# VERIFICATION
# =================================================================


class VerificationTicket(BaseModel):
    ticket_id: str
    user_id: int
    pending_message_id: int | None = None

    def to_store(self) -> dict[str, Any]:
        return {"uid": str(self.user_id), "msg_id": self.pending_message_id}

    @classmethod
    def from_store(cls, ticket_id: str, data: dict[str, Any]) -> "VerificationTicket | None":
        try:
            return cls(
                ticket_id=ticket_id,
                user_id=int(data["uid"]),
                pending_message_id=data.get("msg_id"),
            )
        except (KeyError, TypeError, ValueError):
            return None


class VerificationOutcome(BaseModel):
    success: bool
    expired: bool = False
    reason: str | None = None
    replayed_message_id: int | None = None
