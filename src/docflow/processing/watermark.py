"""
Processing watermark service.

Each stream keeps the timestamp of the newest message consumed by a completed
run. Selection only looks at messages strictly newer than the watermark, and
the watermark never moves backwards except through an explicit reset.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from docflow.db.repositories import MessageRepository, WatermarkRepository
from docflow.utils.time import as_utc, utc_now

logger = logging.getLogger(__name__)

EMPTY_STREAM_LOOKBACK = timedelta(days=7)
BEFORE_EARLIEST = timedelta(milliseconds=1)


class WatermarkService:
    """Reads and moves per-stream processing watermarks."""

    def __init__(self, session: Session):
        self.session = session
        self.watermarks = WatermarkRepository(session)
        self.messages = MessageRepository(session)

    def _initial_time(self, stream_id: str) -> datetime:
        earliest = self.messages.get_earliest_timestamp(stream_id)
        if earliest is None:
            return utc_now() - EMPTY_STREAM_LOOKBACK
        return as_utc(earliest) - BEFORE_EARLIEST

    def get(self, stream_id: str) -> datetime:
        """
        Current watermark of a stream, initializing it on first access.

        A new watermark sits just before the stream's earliest message, or
        seven days back when the stream has no messages yet.
        """
        row = self.watermarks.get_by_stream(stream_id)
        if row is None:
            initial = self._initial_time(stream_id)
            row = self.watermarks.upsert(stream_id, initial)
            logger.info(f"Initialized watermark for {stream_id} at {initial.isoformat()}")
        return as_utc(row.watermark_time)

    def advance(
        self, stream_id: str, new_time: datetime, batch_id: Optional[str] = None
    ) -> datetime:
        """
        Move the watermark forward to ``new_time``.

        Returns:
            The resulting watermark, ``max(current, new_time)``
        """
        current = self.get(stream_id)
        new_time = as_utc(new_time)
        if new_time <= current:
            logger.debug(
                f"Watermark for {stream_id} stays at {current.isoformat()} "
                f"(requested {new_time.isoformat()})"
            )
            if batch_id:
                self.watermarks.upsert(stream_id, current, batch_id)
            return current

        self.watermarks.upsert(stream_id, new_time, batch_id)
        logger.info(f"Advanced watermark for {stream_id} to {new_time.isoformat()}")
        return new_time

    def reset(self, stream_id: str) -> datetime:
        """Move the watermark back to just before the stream's earliest message."""
        initial = self._initial_time(stream_id)
        self.watermarks.upsert(stream_id, initial)
        logger.info(f"Reset watermark for {stream_id} to {initial.isoformat()}")
        return initial
