"""
Changeset batch service.

Groups approved proposals into a draft batch and materializes the batch as a
draft pull request: proposals are applied file by file through the git
hosting client, failures are recorded per proposal and the batch becomes
``submitted`` once the PR is open.
"""

import logging
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Optional

from sqlalchemy.orm import Session

from docflow.config import settings
from docflow.db.repositories import ChangesetBatchRepository, ProposalRepository
from docflow.exceptions import (
    ConfigurationError,
    ConflictError,
    GitHostingError,
    NotEligibleError,
    NotFoundError,
)
from docflow.models.db import BatchStatus, ChangesetBatch, DocProposal, ProposalStatus
from docflow.services.file_modification import (
    ApplyError,
    FileNotFoundInRepoError,
    apply_proposal,
    sort_bottom_to_top,
)
from docflow.services.git_hosting import GitHostingClient, GitHubClient, PullRequest
from docflow.utils.time import utc_now

if TYPE_CHECKING:
    from docflow.schemas import PRGenerateRequest

logger = logging.getLogger(__name__)


@dataclass
class PROptions:
    target_repo: str
    source_repo: str
    pr_title: str
    pr_body: str
    submitted_by: str
    base_branch: str = "main"


@dataclass
class FailedProposal:
    proposal_id: int
    failure_type: str
    error: str
    file_path: Optional[str] = None


@dataclass
class PRResult:
    batch: ChangesetBatch
    pr: PullRequest
    applied: list[int] = field(default_factory=list)
    failed: list[FailedProposal] = field(default_factory=list)


@dataclass
class _FileChange:
    path: str
    content: str
    sha: Optional[str]
    applied: list[int]


def classify_error(error: Exception) -> str:
    """Map an apply or git error to a failure type."""
    if isinstance(error, ApplyError):
        return error.failure_type
    if isinstance(error, GitHostingError):
        return "git_error"
    message = str(error).lower()
    if "file not found" in message:
        return "file_not_found"
    if "section not found" in message:
        return "section_not_found"
    if "git" in message:
        return "git_error"
    return "parse_error"


def commit_message(batch: ChangesetBatch, applied_count: int, project_name: str) -> str:
    return (
        f"docs: Apply {applied_count} documentation updates from {project_name}\n"
        f"\n"
        f"Batch ID: {batch.batch_id}\n"
        f"Total proposals: {batch.total_proposals}\n"
        f"Successfully applied: {applied_count}\n"
        f"\n"
        f"Generated by {project_name} automated documentation system"
    )


def pr_body(
    user_body: str,
    applied_count: int,
    failed_count: int,
    project_name: str,
    project_url: str = "",
) -> str:
    body = f"{user_body}\n\n---\n\n"
    body += "**Batch Statistics:**\n"
    body += f"- Successfully applied: {applied_count} proposals\n"
    if failed_count > 0:
        body += f"- Failed to apply: {failed_count} proposals\n"
        body += (
            "\n**Warning:** Some proposals could not be applied. "
            "Review the changeset history for details.\n"
        )
    if project_url:
        body += f"\nGenerated by [{project_name}]({project_url})"
    else:
        body += f"\nGenerated by {project_name}"
    return body


class ChangesetService:
    """Draft batch lifecycle and PR materialization."""

    def __init__(
        self,
        session: Session,
        git: Optional[GitHostingClient] = None,
        project_name: Optional[str] = None,
        project_short_name: Optional[str] = None,
        project_url: Optional[str] = None,
    ):
        self.session = session
        self.git = git
        self.project_name = project_name or settings.project_name
        self.project_short_name = project_short_name or settings.project_short_name
        self.project_url = project_url if project_url is not None else settings.project_url
        self.batches = ChangesetBatchRepository(session)
        self.proposals = ProposalRepository(session)

    def _git(self) -> GitHostingClient:
        if self.git is None:
            if not settings.github_token:
                raise ConfigurationError("GitHub token is not configured")
            self.git = GitHubClient.from_settings()
        return self.git

    def _new_batch_id(self) -> str:
        ms = int(time.time() * 1000)
        while self.batches.get_by_batch_id(f"batch-{ms}") is not None:
            ms += 1
        return f"batch-{ms}"

    def get_batch(self, batch_id: str) -> ChangesetBatch:
        batch = self.batches.get_by_batch_id(batch_id)
        if batch is None:
            raise NotFoundError("Changeset batch", batch_id)
        return batch

    def list_batches(self, status: Optional[BatchStatus] = None) -> list[ChangesetBatch]:
        return self.batches.list_batches(status)

    def create_draft_batch(self, proposal_ids: list[int]) -> ChangesetBatch:
        """
        Create a draft batch from approved, unbatched proposals.

        Raises:
            NotEligibleError: If any id is missing, not approved or already batched
        """
        if not proposal_ids:
            raise NotEligibleError([], "no proposals given")
        ids = list(dict.fromkeys(proposal_ids))
        proposals = {p.id: p for p in self.proposals.get_many(ids)}

        missing = [i for i in ids if i not in proposals]
        if missing:
            raise NotEligibleError(missing, "not found")
        not_approved = [i for i in ids if proposals[i].status != ProposalStatus.APPROVED]
        if not_approved:
            raise NotEligibleError(not_approved, "not approved")
        batched = self.batches.is_any_batched(ids)
        if batched:
            raise NotEligibleError(sorted(batched), "already in a batch")

        affected_files = list(dict.fromkeys(proposals[i].page for i in ids))
        batch = self.batches.create(
            batch_id=self._new_batch_id(),
            status=BatchStatus.DRAFT,
            total_proposals=len(ids),
            affected_files=affected_files,
        )
        self.batches.add_proposals(batch, ids)
        logger.info(
            f"Created draft batch {batch.batch_id} with {len(ids)} proposals "
            f"over {len(affected_files)} files"
        )
        return batch

    def delete_draft_batch(self, batch_id: str) -> None:
        batch = self.get_batch(batch_id)
        if batch.status != BatchStatus.DRAFT:
            raise ConflictError(
                f"Batch {batch_id} is {batch.status.value}; only draft batches can be deleted"
            )
        self.session.delete(batch)
        self.session.flush()
        logger.info(f"Deleted draft batch {batch_id}")

    def _apply_file(
        self,
        path: str,
        proposals: list[DocProposal],
        options: PROptions,
        failed: list[FailedProposal],
    ) -> Optional[_FileChange]:
        git = self._git()
        try:
            repo_file = git.get_file_content(options.target_repo, path, options.base_branch)
        except GitHostingError as e:
            error: Exception = e
            repo_file = None
        else:
            error = FileNotFoundInRepoError(path)

        if repo_file is None:
            logger.warning(f"Cannot apply {len(proposals)} proposals to {path}: {error}")
            for proposal in proposals:
                failed.append(
                    FailedProposal(proposal.id, classify_error(error), str(error), path)
                )
            return None

        lines = repo_file.content.split("\n")
        applied: list[int] = []
        for proposal in sort_bottom_to_top(proposals):
            try:
                lines = apply_proposal(lines, proposal)
            except Exception as e:
                logger.warning(f"Failed to apply proposal {proposal.id} to {path}: {e}")
                failed.append(FailedProposal(proposal.id, classify_error(e), str(e), path))
                continue
            applied.append(proposal.id)

        if not applied:
            return None
        return _FileChange(path, "\n".join(lines), repo_file.sha, applied)

    def generate_pr(self, batch_id: str, options: PROptions) -> PRResult:
        """
        Apply a draft batch's proposals and open a draft pull request.

        Nothing is written to the database unless the PR was opened.

        Raises:
            NotFoundError: If the batch does not exist
            ConflictError: If the batch is not a draft, or no proposal applied
            GitHostingError: If creating the branch, committing or opening the PR fails
        """
        batch = self.get_batch(batch_id)
        if batch.status != BatchStatus.DRAFT:
            raise ConflictError(f"Batch {batch_id} is {batch.status.value}, not draft")

        by_file: "OrderedDict[str, list[DocProposal]]" = OrderedDict()
        for link in batch.batch_proposals:
            by_file.setdefault(link.proposal.page, []).append(link.proposal)

        failed: list[FailedProposal] = []
        changes: list[_FileChange] = []
        for path, proposals in by_file.items():
            change = self._apply_file(path, proposals, options, failed)
            if change is not None:
                changes.append(change)

        applied = [pid for change in changes for pid in change.applied]
        if not applied:
            summary = "; ".join(f"{f.failure_type}: {f.error}" for f in failed[:3])
            raise ConflictError(
                f"No proposals could be applied. All failed. Errors: {summary}"
            )

        git = self._git()
        branch = f"{self.project_short_name}-updates-{batch.batch_id}"
        git.create_branch(options.target_repo, branch, options.base_branch)
        message = commit_message(batch, len(applied), self.project_name)
        for change in changes:
            git.commit_file(
                options.target_repo, branch, change.path, change.content, message, sha=change.sha
            )
        body = pr_body(
            options.pr_body, len(applied), len(failed), self.project_name, self.project_url
        )
        pr = git.create_pull_request(
            options.target_repo, options.pr_title, body, head=branch, base=options.base_branch
        )

        for failure in failed:
            self.batches.add_failure(
                batch, failure.proposal_id, failure.failure_type, failure.error, failure.file_path
            )
        errors = {f.proposal_id: f.error for f in failed}
        for proposal in self.proposals.get_many(applied + list(errors)):
            proposal.pr_batch_id = batch.id
            if proposal.id in errors:
                proposal.pr_application_status = "failed"
                proposal.pr_application_error = errors[proposal.id]
            else:
                proposal.pr_application_status = "success"
                proposal.pr_application_error = None

        batch.status = BatchStatus.SUBMITTED
        batch.pr_title = options.pr_title
        batch.pr_body = body
        batch.pr_url = pr.url
        batch.pr_number = pr.number
        batch.branch_name = branch
        batch.target_repo = options.target_repo
        batch.source_repo = options.source_repo
        batch.base_branch = options.base_branch
        batch.submitted_by = options.submitted_by
        batch.submitted_at = utc_now()
        self.session.flush()
        self.session.refresh(batch)

        logger.info(
            f"Submitted batch {batch.batch_id} as PR #{pr.number}: "
            f"{len(applied)} applied, {len(failed)} failed"
        )
        return PRResult(batch=batch, pr=pr, applied=applied, failed=failed)

    def submit(self, request: "PRGenerateRequest") -> PRResult:
        """Create a draft batch from the request's proposals and open its PR."""
        batch = self.create_draft_batch(request.proposal_ids)
        return self.generate_pr(batch.batch_id, request.to_options())
