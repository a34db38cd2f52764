"""
Request schemas for docflow.

Pydantic models validating operator input to the review, changeset and
maintenance operations.
"""

from typing import Literal, Optional, Union

from pydantic import BaseModel, Field

from docflow.llm.cache import CachePurpose
from docflow.models.db import ProposalStatus
from docflow.services.changesets import PROptions

# ===== Proposal Review =====


class ProposalStatusUpdate(BaseModel):
    """Change a proposal's review status."""

    status: ProposalStatus
    reviewed_by: str = Field(min_length=1)


class ProposalTextEdit(BaseModel):
    """Replace a proposal's suggested text with a reviewer edit."""

    edited_text: str
    edited_by: str = Field(min_length=1)


# ===== Changesets =====


class BatchCreateRequest(BaseModel):
    """Create a draft changeset batch."""

    proposal_ids: list[int] = Field(min_length=1)


class PRGenerateRequest(BaseModel):
    """Create a draft batch and open its pull request."""

    proposal_ids: list[int] = Field(min_length=1)
    target_repo: str = Field(min_length=1)  # owner/name
    source_repo: str = Field(min_length=1)
    base_branch: str = "main"
    pr_title: str = Field(min_length=1)
    pr_body: str = ""
    submitted_by: str = Field(min_length=1)

    def to_options(self) -> PROptions:
        return PROptions(
            target_repo=self.target_repo,
            source_repo=self.source_repo,
            base_branch=self.base_branch,
            pr_title=self.pr_title,
            pr_body=self.pr_body,
            submitted_by=self.submitted_by,
        )


# ===== Maintenance =====


class CachePurgeRequest(BaseModel):
    """Purge LLM cache entries by purpose, age, or all of them."""

    purpose: Optional[Union[CachePurpose, Literal["all"]]] = None
    older_than_days: Optional[int] = Field(default=None, ge=0)

    @property
    def purpose_filter(self) -> Optional[CachePurpose]:
        """Purpose to purge, None meaning every purpose."""
        if self.purpose is None or self.purpose == "all":
            return None
        return CachePurpose(self.purpose)


class ProcessRequest(BaseModel):
    """Run the batch processor once."""

    stream_id: Optional[str] = None
