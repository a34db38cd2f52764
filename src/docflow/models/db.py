"""
SQLAlchemy database models for docflow.

These models represent the persisted side of the pipeline: imported messages,
their classifications, per-conversation retrieval context, documentation
proposals, changeset batches and the per-stream processing watermark.
"""

import enum
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.sql import func


class Base(DeclarativeBase):
    """Base class for all database models."""

    pass


class ProcessingStatus(str, enum.Enum):
    """Pipeline processing state of an imported message."""

    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class UpdateType(str, enum.Enum):
    """Kind of documentation change a proposal makes."""

    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    NONE = "NONE"


class ProposalStatus(str, enum.Enum):
    """Review state of a proposal."""

    PENDING = "pending"
    APPROVED = "approved"
    IGNORED = "ignored"


class BatchStatus(str, enum.Enum):
    """Lifecycle state of a changeset batch."""

    DRAFT = "draft"
    SUBMITTED = "submitted"
    MERGED = "merged"
    CLOSED = "closed"


def _enum_values(enum_cls: type[enum.Enum]) -> list[str]:
    return [member.value for member in enum_cls]


class Message(Base):
    """A message imported from a community stream."""

    __tablename__ = "messages"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    stream_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    message_id: Mapped[str] = mapped_column(
        String(255), nullable=False
    )  # Identifier within the source stream
    author: Mapped[str] = mapped_column(String(255), nullable=False)
    channel: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, index=True
    )
    processing_status: Mapped[ProcessingStatus] = mapped_column(
        Enum(
            ProcessingStatus,
            name="processing_status",
            values_callable=_enum_values,
        ),
        nullable=False,
        default=ProcessingStatus.PENDING,
        index=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    classification: Mapped[Optional["MessageClassification"]] = relationship(
        back_populates="message", uselist=False, cascade="all, delete-orphan"
    )

    __table_args__ = (
        UniqueConstraint("stream_id", "message_id", name="uq_stream_message"),
        Index("ix_messages_stream_status_ts", "stream_id", "processing_status", "timestamp"),
    )

    def __repr__(self) -> str:
        return f"<Message(id={self.id}, stream={self.stream_id!r}, status={self.processing_status})>"


class MessageClassification(Base):
    """Classifier output for one processed message."""

    __tablename__ = "message_classifications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    message_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("messages.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    batch_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, index=True)
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    conversation_id: Mapped[Optional[str]] = mapped_column(
        String(150), nullable=True, index=True
    )  # NULL means no documentation value
    doc_value_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    rag_search_criteria: Mapped[Optional[dict]] = mapped_column(JSONB, nullable=True)
    model_used: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    message: Mapped["Message"] = relationship(back_populates="classification")


class ConversationRagContext(Base):
    """Documents retrieved for a conversation and the generation verdict."""

    __tablename__ = "conversation_rag_contexts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    conversation_id: Mapped[str] = mapped_column(String(150), nullable=False, unique=True)
    batch_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    retrieved_docs: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)
    total_tokens: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    summary: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    proposals_rejected: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )


class DocProposal(Base):
    """A candidate documentation edit tied to one conversation."""

    __tablename__ = "doc_proposals"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    conversation_id: Mapped[str] = mapped_column(String(150), nullable=False, index=True)
    batch_id: Mapped[Optional[str]] = mapped_column(
        String(100), nullable=True
    )  # Pipeline batch that generated it
    page: Mapped[str] = mapped_column(String(500), nullable=False)
    section: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    location: Mapped[Optional[dict]] = mapped_column(
        JSONB, nullable=True
    )  # {line_start, line_end, section_name}
    update_type: Mapped[UpdateType] = mapped_column(
        Enum(UpdateType, name="update_type", values_callable=_enum_values),
        nullable=False,
    )
    raw_suggested_text: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    suggested_text: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    edited_text: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    edited_by: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    edited_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    reasoning: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    source_messages: Mapped[Optional[list]] = mapped_column(JSONB, nullable=True)
    warnings: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)

    status: Mapped[ProposalStatus] = mapped_column(
        Enum(ProposalStatus, name="proposal_status", values_callable=_enum_values),
        nullable=False,
        default=ProposalStatus.PENDING,
        index=True,
    )
    admin_approved: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    reviewed_by: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    reviewed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    discard_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    model_used: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    # Changeset linkage
    pr_batch_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        ForeignKey("changeset_batches.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    pr_application_status: Mapped[Optional[str]] = mapped_column(
        String(20), nullable=True
    )  # 'success' or 'failed'
    pr_application_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    pr_batch: Mapped[Optional["ChangesetBatch"]] = relationship(
        foreign_keys=[pr_batch_id]
    )

    @property
    def effective_text(self) -> str:
        """Text that would be applied: reviewer edit first, then suggestion."""
        return self.edited_text or self.suggested_text or ""

    @property
    def is_graduated(self) -> bool:
        """True once the proposal's changeset batch has been submitted."""
        return (
            self.pr_batch is not None
            and self.pr_batch.status != BatchStatus.DRAFT
        )

    def __repr__(self) -> str:
        return (
            f"<DocProposal(id={self.id}, page={self.page!r}, "
            f"type={self.update_type}, status={self.status})>"
        )


class ChangesetBatch(Base):
    """A named group of approved proposals submitted as one pull request."""

    __tablename__ = "changeset_batches"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    batch_id: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    status: Mapped[BatchStatus] = mapped_column(
        Enum(BatchStatus, name="batch_status", values_callable=_enum_values),
        nullable=False,
        default=BatchStatus.DRAFT,
        index=True,
    )
    total_proposals: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    affected_files: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)

    pr_title: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    pr_body: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    pr_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    pr_number: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    branch_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    target_repo: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    source_repo: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    base_branch: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    submitted_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    submitted_by: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    batch_proposals: Mapped[list["BatchProposal"]] = relationship(
        back_populates="batch",
        cascade="all, delete-orphan",
        order_by="BatchProposal.order_index",
    )
    failures: Mapped[list["ProposalFailure"]] = relationship(
        back_populates="batch", cascade="all, delete-orphan"
    )

    @property
    def proposal_ids(self) -> list[int]:
        return [bp.proposal_id for bp in self.batch_proposals]

    def __repr__(self) -> str:
        return f"<ChangesetBatch(id={self.id}, batch_id={self.batch_id!r}, status={self.status})>"


class BatchProposal(Base):
    """Ordered link between a changeset batch and a proposal."""

    __tablename__ = "batch_proposals"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    batch_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("changeset_batches.id", ondelete="CASCADE"), nullable=False
    )
    proposal_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("doc_proposals.id", ondelete="CASCADE"), nullable=False
    )
    order_index: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    batch: Mapped["ChangesetBatch"] = relationship(back_populates="batch_proposals")
    proposal: Mapped["DocProposal"] = relationship()

    __table_args__ = (
        UniqueConstraint("batch_id", "proposal_id", name="uq_batch_proposal"),
    )


class ProposalFailure(Base):
    """A proposal that could not be applied while materializing a PR."""

    __tablename__ = "proposal_failures"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    batch_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("changeset_batches.id", ondelete="CASCADE"), nullable=False
    )
    proposal_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("doc_proposals.id", ondelete="CASCADE"), nullable=False
    )
    failure_type: Mapped[str] = mapped_column(
        String(50), nullable=False
    )  # file_not_found, section_not_found, git_error, parse_error
    error_message: Mapped[str] = mapped_column(Text, nullable=False)
    file_path: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    batch: Mapped["ChangesetBatch"] = relationship(back_populates="failures")


class ProcessingWatermark(Base):
    """Per-stream cursor: newest message time consumed by a completed run."""

    __tablename__ = "processing_watermarks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    stream_id: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    watermark_time: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    last_processed_batch_id: Mapped[Optional[str]] = mapped_column(
        String(100), nullable=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )


class TenantRuleset(Base):
    """Tenant-authored markdown rule document."""

    __tablename__ = "tenant_rulesets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )
