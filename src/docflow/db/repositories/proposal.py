"""
Documentation proposal repository.
"""

from typing import List, Optional

from sqlalchemy import and_, or_, select
from sqlalchemy.orm import Session

from docflow.db.repositories.base import BaseRepository
from docflow.models.db import (
    BatchProposal,
    BatchStatus,
    ChangesetBatch,
    DocProposal,
    ProposalStatus,
)


def _not_graduated():
    """Filter clause: proposal is unbatched or its batch is still a draft."""
    return or_(
        DocProposal.pr_batch_id.is_(None),
        ChangesetBatch.status == BatchStatus.DRAFT,
    )


class ProposalRepository(BaseRepository[DocProposal]):
    """Repository for DocProposal model."""

    def __init__(self, session: Session):
        super().__init__(DocProposal, session)

    def _visible_query(self):
        return self.session.query(DocProposal).outerjoin(
            ChangesetBatch, DocProposal.pr_batch_id == ChangesetBatch.id
        )

    def get_many(self, ids: List[int]) -> List[DocProposal]:
        """Get proposals by id, ordered by id."""
        if not ids:
            return []
        return (
            self.session.query(DocProposal)
            .filter(DocProposal.id.in_(ids))
            .order_by(DocProposal.id.asc())
            .all()
        )

    def get_by_conversation(
        self, conversation_id: str, include_graduated: bool = False
    ) -> List[DocProposal]:
        """
        Get proposals generated for a conversation.

        Args:
            conversation_id: Conversation thread id
            include_graduated: Include proposals whose batch was submitted

        Returns:
            List of proposals ordered by id
        """
        query = self._visible_query().filter(
            DocProposal.conversation_id == conversation_id
        )
        if not include_graduated:
            query = query.filter(_not_graduated())
        return query.order_by(DocProposal.id.asc()).all()

    def list_by_status(
        self,
        status: ProposalStatus,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[DocProposal]:
        """List visible (non-graduated) proposals in a review state."""
        query = (
            self._visible_query()
            .filter(DocProposal.status == status, _not_graduated())
            .order_by(DocProposal.created_at.desc(), DocProposal.id.desc())
            .offset(offset)
        )
        if limit:
            query = query.limit(limit)
        return query.all()

    def get_pending_for_page(
        self, page: str, exclude_conversation_id: Optional[str] = None
    ) -> List[DocProposal]:
        """Get pending, non-graduated proposals targeting a page."""
        query = self._visible_query().filter(
            DocProposal.page == page,
            DocProposal.status == ProposalStatus.PENDING,
            _not_graduated(),
        )
        if exclude_conversation_id:
            query = query.filter(DocProposal.conversation_id != exclude_conversation_id)
        return query.all()

    def get_with_raw_text(self) -> List[DocProposal]:
        """Get proposals that retain the unmodified generated text."""
        return (
            self.session.query(DocProposal)
            .filter(
                and_(
                    DocProposal.raw_suggested_text.isnot(None),
                    DocProposal.raw_suggested_text != "",
                )
            )
            .order_by(DocProposal.id.asc())
            .all()
        )

    def delete_for_conversations(self, conversation_ids: List[str]) -> int:
        """
        Delete proposals of the given conversations.

        Proposals attached to any changeset batch are kept so batch history
        stays intact: draft batches link proposals through ``batch_proposals``
        and submitted ones also set ``pr_batch_id``.
        """
        if not conversation_ids:
            return 0
        linked = select(BatchProposal.proposal_id)
        deleted = (
            self.session.query(DocProposal)
            .filter(
                DocProposal.conversation_id.in_(conversation_ids),
                DocProposal.pr_batch_id.is_(None),
                DocProposal.id.not_in(linked),
            )
            .delete(synchronize_session="fetch")
        )
        self.session.flush()
        return deleted
