"""
Proposal review state machine.

Reviewers move proposals between pending, approved and ignored. Proposals
whose changeset batch has been submitted are frozen.
"""

import enum
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Iterable, Optional, Union

from sqlalchemy.orm import Session

from docflow.db.repositories import ProposalRepository
from docflow.exceptions import ConflictError, InvalidTransitionError, NotFoundError
from docflow.models.db import DocProposal, ProposalStatus
from docflow.utils.time import utc_now

if TYPE_CHECKING:
    from docflow.schemas import ProposalStatusUpdate, ProposalTextEdit

logger = logging.getLogger(__name__)


class ConversationStatus(str, enum.Enum):
    """Review state of a conversation, derived from its proposals."""

    PENDING = "pending"
    CHANGESET = "changeset"
    DISCARDED = "discarded"


ALLOWED_TRANSITIONS: dict[ProposalStatus, set[ProposalStatus]] = {
    ProposalStatus.PENDING: {ProposalStatus.APPROVED, ProposalStatus.IGNORED},
    ProposalStatus.APPROVED: {ProposalStatus.PENDING},
    ProposalStatus.IGNORED: {ProposalStatus.PENDING},
}


def derive_conversation_status(statuses: Iterable[ProposalStatus]) -> ConversationStatus:
    """
    Conversation status from the statuses of its non-graduated proposals.

    Any pending proposal keeps the conversation pending; otherwise any
    approved proposal puts it in the changeset; otherwise it is discarded.
    """
    statuses = {ProposalStatus(s) for s in statuses}
    if ProposalStatus.PENDING in statuses:
        return ConversationStatus.PENDING
    if ProposalStatus.APPROVED in statuses:
        return ConversationStatus.CHANGESET
    return ConversationStatus.DISCARDED


@dataclass
class TransitionResult:
    proposal: DocProposal
    conversation_status: ConversationStatus


class ProposalService:
    """Review operations on stored proposals."""

    def __init__(self, session: Session):
        self.session = session
        self.repo = ProposalRepository(session)

    def get(self, proposal_id: int) -> DocProposal:
        proposal = self.repo.get(proposal_id)
        if proposal is None:
            raise NotFoundError("Proposal", proposal_id)
        return proposal

    def _get_editable(self, proposal_id: int) -> DocProposal:
        proposal = self.get(proposal_id)
        if proposal.is_graduated:
            raise ConflictError(
                f"Proposal {proposal_id} belongs to a submitted changeset and cannot be changed"
            )
        return proposal

    def conversation_status(self, conversation_id: str) -> ConversationStatus:
        proposals = self.repo.get_by_conversation(conversation_id)
        return derive_conversation_status(p.status for p in proposals)

    def transition(
        self,
        proposal_id: int,
        status: Union[ProposalStatus, str, "ProposalStatusUpdate"],
        reviewed_by: Optional[str] = None,
    ) -> TransitionResult:
        """
        Move a proposal to a new review status.

        Raises:
            NotFoundError: If the proposal does not exist
            ConflictError: If the proposal is part of a submitted changeset
            InvalidTransitionError: For a same-state or disallowed transition
        """
        if not isinstance(status, (ProposalStatus, str)):
            reviewed_by = status.reviewed_by
            status = status.status
        requested = ProposalStatus(status)
        if not reviewed_by:
            raise ValueError("reviewed_by is required")

        proposal = self._get_editable(proposal_id)
        current = ProposalStatus(proposal.status)
        if requested not in ALLOWED_TRANSITIONS[current]:
            raise InvalidTransitionError(current.value, requested.value)

        proposal.status = requested
        proposal.reviewed_by = reviewed_by
        proposal.reviewed_at = utc_now()
        proposal.admin_approved = requested == ProposalStatus.APPROVED
        self.session.flush()
        logger.info(
            f"Proposal {proposal_id}: {current.value} -> {requested.value} by {reviewed_by}"
        )
        return TransitionResult(
            proposal=proposal,
            conversation_status=self.conversation_status(proposal.conversation_id),
        )

    def edit_text(
        self,
        proposal_id: int,
        edited_text: Union[str, "ProposalTextEdit"],
        edited_by: Optional[str] = None,
    ) -> DocProposal:
        """Store a reviewer's edit; the review status is unchanged."""
        if not isinstance(edited_text, str):
            edited_by = edited_text.edited_by
            edited_text = edited_text.edited_text
        proposal = self._get_editable(proposal_id)
        proposal.edited_text = edited_text
        proposal.edited_by = edited_by
        proposal.edited_at = utc_now()
        self.session.flush()
        return proposal

    def list_by_status(
        self, status: Union[ProposalStatus, str], limit: Optional[int] = None, offset: int = 0
    ) -> list[DocProposal]:
        return self.repo.list_by_status(ProposalStatus(status), limit=limit, offset=offset)
