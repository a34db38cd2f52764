"""
Batch selection.

Picks the next run's messages for a stream: PENDING messages newer than the
watermark, oldest first, plus a window of earlier messages shown to the
classifier as context.
"""

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Optional

from sqlalchemy.orm import Session

from docflow.config import settings
from docflow.db.repositories import MessageRepository
from docflow.models.db import Message
from docflow.processing.watermark import WatermarkService
from docflow.utils.time import as_utc

logger = logging.getLogger(__name__)


@dataclass
class MessageBatch:
    """Messages selected for one pipeline run of a stream."""

    stream_id: str
    messages: list[Message]
    context_messages: list[Message] = field(default_factory=list)

    @property
    def batch_id(self) -> str:
        """``{stream_id[:10]}_{epoch ms of the first message}``."""
        first = as_utc(self.messages[0].timestamp)
        return f"{self.stream_id[:10]}_{int(first.timestamp() * 1000)}"

    def __len__(self) -> int:
        return len(self.messages)


class BatchSelector:
    """Selects watermark-bounded batches of pending messages."""

    def __init__(
        self,
        session: Session,
        max_size: Optional[int] = None,
        context_window_hours: Optional[int] = None,
        context_max_messages: Optional[int] = None,
    ):
        self.messages = MessageRepository(session)
        self.watermarks = WatermarkService(session)
        self.max_size = max_size or settings.batch_max_size
        self.context_window = timedelta(
            hours=context_window_hours or settings.context_window_hours
        )
        self.context_max_messages = context_max_messages or settings.context_max_messages

    def select_batch(self, stream_id: str, max_size: Optional[int] = None) -> list[Message]:
        """PENDING messages at or after the stream watermark, oldest first, capped."""
        watermark = self.watermarks.get(stream_id)
        return self.messages.get_pending_after(stream_id, watermark, max_size or self.max_size)

    def context_for(self, stream_id: str, messages: list[Message]) -> list[Message]:
        """Up to ``context_max_messages`` of any status in the window before the batch."""
        if not messages:
            return []
        first = messages[0].timestamp
        return self.messages.get_context(
            stream_id, first - self.context_window, first, self.context_max_messages
        )

    def next_batch(self, stream_id: str) -> Optional[MessageBatch]:
        messages = self.select_batch(stream_id)
        if not messages:
            logger.debug(f"No pending messages after watermark for {stream_id}")
            return None
        context = self.context_for(stream_id, messages)
        logger.info(
            f"Selected {len(messages)} messages for {stream_id} "
            f"with {len(context)} context messages"
        )
        return MessageBatch(stream_id=stream_id, messages=messages, context_messages=context)
