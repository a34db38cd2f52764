"""
Message repository.
"""

from datetime import datetime
from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from docflow.db.repositories.base import BaseRepository
from docflow.models.db import Message, ProcessingStatus


class MessageRepository(BaseRepository[Message]):
    """Repository for imported stream messages."""

    def __init__(self, session: Session):
        super().__init__(Message, session)

    def get_many(self, ids: List[int]) -> List[Message]:
        """Get messages by id, oldest first."""
        if not ids:
            return []
        return (
            self.session.query(Message)
            .filter(Message.id.in_(ids))
            .order_by(Message.timestamp.asc(), Message.id.asc())
            .all()
        )

    def get_streams_with_pending(
        self,
        stream_id: Optional[str] = None,
        exclude_stream_id: Optional[str] = None,
    ) -> List[str]:
        """
        Get distinct stream ids that still have PENDING messages.

        Args:
            stream_id: Restrict to this stream
            exclude_stream_id: Skip this stream (ignored when stream_id is given)

        Returns:
            Sorted list of stream ids
        """
        query = self.session.query(Message.stream_id).filter(
            Message.processing_status == ProcessingStatus.PENDING
        )
        if stream_id:
            query = query.filter(Message.stream_id == stream_id)
        elif exclude_stream_id:
            query = query.filter(Message.stream_id != exclude_stream_id)
        return sorted(row[0] for row in query.distinct().all())

    def get_pending_after(
        self, stream_id: str, after: datetime, limit: int
    ) -> List[Message]:
        """
        Get PENDING messages at or after a point in time, oldest first.

        The bound is inclusive so messages sharing the watermark timestamp
        that a size cap left out are picked up by the next batch.

        Args:
            stream_id: Stream to read from
            after: Inclusive lower bound on message timestamp
            limit: Maximum number of messages

        Returns:
            List of messages
        """
        return (
            self.session.query(Message)
            .filter(
                Message.stream_id == stream_id,
                Message.processing_status == ProcessingStatus.PENDING,
                Message.timestamp >= after,
            )
            .order_by(Message.timestamp.asc(), Message.id.asc())
            .limit(limit)
            .all()
        )

    def get_context(
        self, stream_id: str, start: datetime, end: datetime, limit: int
    ) -> List[Message]:
        """Get messages of any status in [start, end), oldest first."""
        return (
            self.session.query(Message)
            .filter(
                Message.stream_id == stream_id,
                Message.timestamp >= start,
                Message.timestamp < end,
            )
            .order_by(Message.timestamp.asc(), Message.id.asc())
            .limit(limit)
            .all()
        )

    def get_earliest_timestamp(self, stream_id: str) -> Optional[datetime]:
        """Get the timestamp of the oldest message in a stream."""
        return (
            self.session.query(func.min(Message.timestamp))
            .filter(Message.stream_id == stream_id)
            .scalar()
        )

    def get_ids_by_status(
        self, status: ProcessingStatus, stream_id: Optional[str] = None
    ) -> List[int]:
        """Get ids of messages in a processing status."""
        query = self.session.query(Message.id).filter(
            Message.processing_status == status
        )
        if stream_id:
            query = query.filter(Message.stream_id == stream_id)
        return [row[0] for row in query.all()]

    def get_stream_ids(self) -> List[str]:
        """Get every distinct stream id."""
        return sorted(
            row[0] for row in self.session.query(Message.stream_id).distinct().all()
        )

    def set_status(self, ids: List[int], status: ProcessingStatus) -> int:
        """
        Bulk update processing status.

        Returns:
            Number of rows updated
        """
        if not ids:
            return 0
        updated = (
            self.session.query(Message)
            .filter(Message.id.in_(ids))
            .update({Message.processing_status: status}, synchronize_session=False)
        )
        self.session.flush()
        return updated

    def count_by_status(self, stream_id: Optional[str] = None) -> dict[str, int]:
        """Count messages per processing status."""
        query = self.session.query(Message.processing_status, func.count(Message.id))
        if stream_id:
            query = query.filter(Message.stream_id == stream_id)
        rows = query.group_by(Message.processing_status).all()
        counts = {status.value: 0 for status in ProcessingStatus}
        for status, count in rows:
            counts[ProcessingStatus(status).value] = count
        return counts
