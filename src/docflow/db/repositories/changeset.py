"""
Changeset batch repository.
"""

from typing import List, Optional

from sqlalchemy import desc
from sqlalchemy.orm import Session

from docflow.db.repositories.base import BaseRepository
from docflow.models.db import (
    BatchProposal,
    BatchStatus,
    ChangesetBatch,
    ProposalFailure,
)


class ChangesetBatchRepository(BaseRepository[ChangesetBatch]):
    """Repository for ChangesetBatch model and its link/failure rows."""

    def __init__(self, session: Session):
        super().__init__(ChangesetBatch, session)

    def get_by_batch_id(self, batch_id: str) -> Optional[ChangesetBatch]:
        return (
            self.session.query(ChangesetBatch)
            .filter(ChangesetBatch.batch_id == batch_id)
            .first()
        )

    def list_batches(self, status: Optional[BatchStatus] = None) -> List[ChangesetBatch]:
        """List batches, newest first, optionally filtered by status."""
        query = self.session.query(ChangesetBatch)
        if status is not None:
            query = query.filter(ChangesetBatch.status == status)
        return query.order_by(desc(ChangesetBatch.created_at), desc(ChangesetBatch.id)).all()

    def add_proposals(self, batch: ChangesetBatch, proposal_ids: List[int]) -> None:
        """Link proposals to a batch, preserving the given order."""
        for index, proposal_id in enumerate(proposal_ids):
            self.session.add(
                BatchProposal(
                    batch_id=batch.id,
                    proposal_id=proposal_id,
                    order_index=index,
                )
            )
        self.session.flush()
        self.session.refresh(batch)

    def is_any_batched(self, proposal_ids: List[int]) -> List[int]:
        """Return those proposal ids already linked to any batch."""
        if not proposal_ids:
            return []
        rows = (
            self.session.query(BatchProposal.proposal_id)
            .filter(BatchProposal.proposal_id.in_(proposal_ids))
            .distinct()
            .all()
        )
        return [row[0] for row in rows]

    def add_failure(
        self,
        batch: ChangesetBatch,
        proposal_id: int,
        failure_type: str,
        error_message: str,
        file_path: Optional[str] = None,
    ) -> ProposalFailure:
        failure = ProposalFailure(
            batch_id=batch.id,
            proposal_id=proposal_id,
            failure_type=failure_type,
            error_message=error_message,
            file_path=file_path,
        )
        self.session.add(failure)
        self.session.flush()
        return failure
