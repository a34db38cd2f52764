"""
Processing watermark repository.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from docflow.db.repositories.base import BaseRepository
from docflow.models.db import ProcessingWatermark


class WatermarkRepository(BaseRepository[ProcessingWatermark]):
    """Repository for per-stream processing watermarks."""

    def __init__(self, session: Session):
        super().__init__(ProcessingWatermark, session)

    def get_by_stream(self, stream_id: str) -> Optional[ProcessingWatermark]:
        return (
            self.session.query(ProcessingWatermark)
            .filter(ProcessingWatermark.stream_id == stream_id)
            .first()
        )

    def upsert(
        self,
        stream_id: str,
        watermark_time: datetime,
        last_processed_batch_id: Optional[str] = None,
    ) -> ProcessingWatermark:
        """Write the watermark row for a stream, creating it if needed."""
        existing = self.get_by_stream(stream_id)
        if existing is None:
            return self.create(
                stream_id=stream_id,
                watermark_time=watermark_time,
                last_processed_batch_id=last_processed_batch_id,
            )
        existing.watermark_time = watermark_time
        if last_processed_batch_id is not None:
            existing.last_processed_batch_id = last_processed_batch_id
        self.session.flush()
        return existing
