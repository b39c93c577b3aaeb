"""
Attachment Aggregator.

Telegram delivers an album as separate updates sharing a media_group_id.
Each fragment is appended to batch:<group_id> and schedules its own flush.
The first flush to fire sends everything buffered and deletes the buffer;
later flushes find nothing and do nothing. A fragment arriving after the
flush starts a new buffer and goes out as a separate batch.
"""

from relaybot.config import settings
from relaybot.infrastructure.observability.logging import get_logger
from relaybot.models.domain.relay_domain import (
    BatchDestination,
    DocumentItem,
    PhotoItem,
    VideoItem,
    media_list_adapter,
)
from relaybot.services.acknowledgment import acknowledgment_service
from relaybot.services.infrastructure.deferred_tasks import deferred_tasks
from relaybot.services.infrastructure.redis_client import fast_redis
from relaybot.services.kv_store import batch_key, get_json, put_json
from relaybot.services.telegram.client import telegram_client

logger = get_logger(__name__)


class AttachmentAggregator:
    def __init__(
        self,
        store=None,
        telegram=None,
        acknowledger=None,
        runner=None,
        flush_delay_s: float | None = None,
        buffer_ttl_s: int | None = None,
    ):
        self.store = store or fast_redis
        self.telegram = telegram or telegram_client
        self.acknowledger = acknowledger or acknowledgment_service
        self.runner = runner or deferred_tasks
        self.flush_delay_s = (
            flush_delay_s if flush_delay_s is not None else settings.BATCH_FLUSH_DELAY_S
        )
        self.buffer_ttl_s = buffer_ttl_s if buffer_ttl_s is not None else settings.BATCH_TTL_S

    async def _read_buffer(self, group_id: str) -> list[PhotoItem | VideoItem | DocumentItem]:
        raw = await get_json(self.store, batch_key(group_id))
        if not raw:
            return []
        try:
            return media_list_adapter.validate_python(raw)
        except ValueError as e:
            logger.warning("Discarding unreadable batch buffer", group_id=group_id, error=str(e))
            return []

    async def absorb(
        self,
        group_id: str,
        item: PhotoItem | VideoItem | DocumentItem,
        destination: BatchDestination,
    ) -> int:
        """
        Buffer one fragment and schedule a flush.

        Returns:
            int: buffer size after appending
        """
        items = await self._read_buffer(group_id)
        items.append(item)
        await put_json(
            self.store,
            batch_key(group_id),
            media_list_adapter.dump_python(items, mode="json"),
            self.buffer_ttl_s,
        )

        self.runner.schedule(
            self.flush,
            group_id,
            destination,
            delay_s=self.flush_delay_s,
            name=f"batch-flush:{group_id}",
        )

        logger.debug("Batch fragment buffered", group_id=group_id, buffered=len(items))
        return len(items)

    async def flush(self, group_id: str, destination: BatchDestination) -> bool:
        """
        Send whatever is buffered as one media group.

        Returns:
            bool: True when this call performed the send
        """
        items = await self._read_buffer(group_id)
        if not items:
            return False

        result = await self.telegram.send_media_group(
            destination.chat_id,
            [item.to_input_media() for item in items],
            thread_id=destination.thread_id,
        )
        # Consumed whether or not the send succeeded; the buffer would only expire otherwise
        await self.store.delete(batch_key(group_id))

        if not result.ok:
            logger.error(
                "Batch send failed",
                group_id=group_id,
                items=len(items),
                error_code=result.error_code,
                description=result.description,
            )
            return True

        logger.info("Batch sent", group_id=group_id, items=len(items), chat_id=destination.chat_id)

        source = destination.source
        await self.acknowledger.acknowledge(
            source.chat_id, source.message_id, source.thread_id, destination.is_edit
        )
        for sent in result.result or []:
            await self.acknowledger.acknowledge(
                destination.chat_id, sent["message_id"], destination.thread_id, destination.is_edit
            )
        return True


attachment_aggregator = AttachmentAggregator()
