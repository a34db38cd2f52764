"""
Classification and retrieval-context repositories.
"""

from typing import List, Optional

from sqlalchemy.orm import Session

from docflow.db.repositories.base import BaseRepository
from docflow.models.db import ConversationRagContext, MessageClassification


class ClassificationRepository(BaseRepository[MessageClassification]):
    """Repository for per-message classifier output."""

    def __init__(self, session: Session):
        super().__init__(MessageClassification, session)

    def get_by_message(self, message_id: int) -> Optional[MessageClassification]:
        return (
            self.session.query(MessageClassification)
            .filter(MessageClassification.message_id == message_id)
            .first()
        )

    def upsert(self, message_id: int, **fields) -> MessageClassification:
        """
        Create or replace the classification for a message.

        A message has at most one live classification, so reprocessing
        overwrites the previous row.
        """
        existing = self.get_by_message(message_id)
        if existing is None:
            return self.create(message_id=message_id, **fields)
        for key, value in fields.items():
            setattr(existing, key, value)
        self.session.flush()
        return existing

    def get_conversation_ids(self, message_ids: List[int]) -> List[str]:
        """Get distinct non-null conversation ids for a set of messages."""
        if not message_ids:
            return []
        rows = (
            self.session.query(MessageClassification.conversation_id)
            .filter(
                MessageClassification.message_id.in_(message_ids),
                MessageClassification.conversation_id.isnot(None),
            )
            .distinct()
            .all()
        )
        return [row[0] for row in rows]

    def get_batch_ids(self, message_ids: List[int]) -> List[str]:
        """Get distinct pipeline batch ids that classified the given messages."""
        if not message_ids:
            return []
        rows = (
            self.session.query(MessageClassification.batch_id)
            .filter(
                MessageClassification.message_id.in_(message_ids),
                MessageClassification.batch_id.isnot(None),
            )
            .distinct()
            .all()
        )
        return [row[0] for row in rows]

    def get_by_conversation(self, conversation_id: str) -> List[MessageClassification]:
        return (
            self.session.query(MessageClassification)
            .filter(MessageClassification.conversation_id == conversation_id)
            .all()
        )

    def delete_for_messages(self, message_ids: List[int]) -> int:
        """Delete classifications of the given messages."""
        if not message_ids:
            return 0
        deleted = (
            self.session.query(MessageClassification)
            .filter(MessageClassification.message_id.in_(message_ids))
            .delete(synchronize_session=False)
        )
        self.session.flush()
        return deleted


class RagContextRepository(BaseRepository[ConversationRagContext]):
    """Repository for per-conversation retrieval context."""

    def __init__(self, session: Session):
        super().__init__(ConversationRagContext, session)

    def get_by_conversation(self, conversation_id: str) -> Optional[ConversationRagContext]:
        return (
            self.session.query(ConversationRagContext)
            .filter(ConversationRagContext.conversation_id == conversation_id)
            .first()
        )

    def upsert(self, conversation_id: str, **fields) -> ConversationRagContext:
        """Create or replace the RAG context of a conversation."""
        existing = self.get_by_conversation(conversation_id)
        if existing is None:
            return self.create(conversation_id=conversation_id, **fields)
        for key, value in fields.items():
            setattr(existing, key, value)
        self.session.flush()
        return existing

    def delete_for_conversations(self, conversation_ids: List[str]) -> int:
        if not conversation_ids:
            return 0
        deleted = (
            self.session.query(ConversationRagContext)
            .filter(ConversationRagContext.conversation_id.in_(conversation_ids))
            .delete(synchronize_session=False)
        )
        self.session.flush()
        return deleted

    def delete_for_batches(self, batch_ids: List[str]) -> int:
        """Delete contexts written by the given pipeline batches."""
        if not batch_ids:
            return 0
        deleted = (
            self.session.query(ConversationRagContext)
            .filter(ConversationRagContext.batch_id.in_(batch_ids))
            .delete(synchronize_session=False)
        )
        self.session.flush()
        return deleted
