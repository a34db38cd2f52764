"""Initial schema

Revision ID: 001_initial
Revises:
Create Date: 2026-10-18

Messages, classifications, conversation RAG contexts, documentation
proposals, changeset batches with their link and failure rows, processing
watermarks and tenant rulesets.
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

processing_status = postgresql.ENUM(
    "PENDING", "COMPLETED", "FAILED", name="processing_status", create_type=False
)
update_type = postgresql.ENUM(
    "INSERT", "UPDATE", "DELETE", "NONE", name="update_type", create_type=False
)
proposal_status = postgresql.ENUM(
    "pending", "approved", "ignored", name="proposal_status", create_type=False
)
batch_status = postgresql.ENUM(
    "draft", "submitted", "merged", "closed", name="batch_status", create_type=False
)


def _created_at() -> sa.Column:
    return sa.Column(
        "created_at",
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=sa.text("NOW()"),
    )


def _updated_at() -> sa.Column:
    return sa.Column(
        "updated_at",
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=sa.text("NOW()"),
    )


def upgrade() -> None:
    for enum in (processing_status, update_type, proposal_status, batch_status):
        enum.create(op.get_bind(), checkfirst=True)

    op.create_table(
        "messages",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("stream_id", sa.String(100), nullable=False, index=True),
        sa.Column("message_id", sa.String(255), nullable=False),
        sa.Column("author", sa.String(255), nullable=False),
        sa.Column("channel", sa.String(255), nullable=True),
        sa.Column("content", sa.Text, nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False, index=True),
        sa.Column(
            "processing_status",
            processing_status,
            nullable=False,
            server_default="PENDING",
            index=True,
        ),
        _created_at(),
        sa.UniqueConstraint("stream_id", "message_id", name="uq_stream_message"),
    )
    op.create_index(
        "ix_messages_stream_status_ts",
        "messages",
        ["stream_id", "processing_status", "timestamp"],
    )

    op.create_table(
        "message_classifications",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "message_id",
            sa.Integer,
            sa.ForeignKey("messages.id", ondelete="CASCADE"),
            nullable=False,
            unique=True,
        ),
        sa.Column("batch_id", sa.String(100), nullable=True, index=True),
        sa.Column("category", sa.String(100), nullable=False),
        sa.Column("conversation_id", sa.String(150), nullable=True, index=True),
        sa.Column("doc_value_reason", sa.Text, nullable=True),
        sa.Column("rag_search_criteria", postgresql.JSONB, nullable=True),
        sa.Column("model_used", sa.String(100), nullable=True),
        _created_at(),
    )

    op.create_table(
        "conversation_rag_contexts",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("conversation_id", sa.String(150), nullable=False, unique=True),
        sa.Column("batch_id", sa.String(100), nullable=True),
        sa.Column("retrieved_docs", postgresql.JSONB, nullable=False, server_default="[]"),
        sa.Column("total_tokens", sa.Integer, nullable=False, server_default="0"),
        sa.Column("summary", sa.String(200), nullable=True),
        sa.Column("proposals_rejected", sa.Boolean, nullable=True),
        sa.Column("rejection_reason", sa.Text, nullable=True),
        _created_at(),
    )

    op.create_table(
        "changeset_batches",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("batch_id", sa.String(100), nullable=False, unique=True),
        sa.Column("status", batch_status, nullable=False, server_default="draft", index=True),
        sa.Column("total_proposals", sa.Integer, nullable=False, server_default="0"),
        sa.Column("affected_files", postgresql.JSONB, nullable=False, server_default="[]"),
        sa.Column("pr_title", sa.Text, nullable=True),
        sa.Column("pr_body", sa.Text, nullable=True),
        sa.Column("pr_url", sa.String(500), nullable=True),
        sa.Column("pr_number", sa.Integer, nullable=True),
        sa.Column("branch_name", sa.String(255), nullable=True),
        sa.Column("target_repo", sa.String(255), nullable=True),
        sa.Column("source_repo", sa.String(255), nullable=True),
        sa.Column("base_branch", sa.String(255), nullable=True),
        sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("submitted_by", sa.String(255), nullable=True),
        _created_at(),
    )

    op.create_table(
        "doc_proposals",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("conversation_id", sa.String(150), nullable=False, index=True),
        sa.Column("batch_id", sa.String(100), nullable=True),
        sa.Column("page", sa.String(500), nullable=False),
        sa.Column("section", sa.String(500), nullable=True),
        sa.Column("location", postgresql.JSONB, nullable=True),
        sa.Column("update_type", update_type, nullable=False),
        sa.Column("raw_suggested_text", sa.Text, nullable=True),
        sa.Column("suggested_text", sa.Text, nullable=True),
        sa.Column("edited_text", sa.Text, nullable=True),
        sa.Column("edited_by", sa.String(255), nullable=True),
        sa.Column("edited_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("reasoning", sa.Text, nullable=True),
        sa.Column("source_messages", postgresql.JSONB, nullable=True),
        sa.Column("warnings", postgresql.JSONB, nullable=False, server_default="[]"),
        sa.Column(
            "status", proposal_status, nullable=False, server_default="pending", index=True
        ),
        sa.Column("admin_approved", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("reviewed_by", sa.String(255), nullable=True),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("discard_reason", sa.Text, nullable=True),
        sa.Column("model_used", sa.String(100), nullable=True),
        sa.Column(
            "pr_batch_id",
            sa.Integer,
            sa.ForeignKey("changeset_batches.id", ondelete="SET NULL"),
            nullable=True,
            index=True,
        ),
        sa.Column("pr_application_status", sa.String(20), nullable=True),
        sa.Column("pr_application_error", sa.Text, nullable=True),
        _created_at(),
        _updated_at(),
    )

    op.create_table(
        "batch_proposals",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "batch_id",
            sa.Integer,
            sa.ForeignKey("changeset_batches.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "proposal_id",
            sa.Integer,
            sa.ForeignKey("doc_proposals.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("order_index", sa.Integer, nullable=False, server_default="0"),
        sa.UniqueConstraint("batch_id", "proposal_id", name="uq_batch_proposal"),
    )

    op.create_table(
        "proposal_failures",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "batch_id",
            sa.Integer,
            sa.ForeignKey("changeset_batches.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "proposal_id",
            sa.Integer,
            sa.ForeignKey("doc_proposals.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("failure_type", sa.String(50), nullable=False),
        sa.Column("error_message", sa.Text, nullable=False),
        sa.Column("file_path", sa.String(500), nullable=True),
        _created_at(),
    )

    op.create_table(
        "processing_watermarks",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("stream_id", sa.String(100), nullable=False, unique=True),
        sa.Column("watermark_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_processed_batch_id", sa.String(100), nullable=True),
        _updated_at(),
    )

    op.create_table(
        "tenant_rulesets",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("tenant_id", sa.String(100), nullable=False, unique=True),
        sa.Column("content", sa.Text, nullable=False),
        _updated_at(),
    )


def downgrade() -> None:
    op.drop_table("tenant_rulesets")
    op.drop_table("processing_watermarks")
    op.drop_table("proposal_failures")
    op.drop_table("batch_proposals")
    op.drop_table("doc_proposals")
    op.drop_table("changeset_batches")
    op.drop_table("conversation_rag_contexts")
    op.drop_table("message_classifications")
    op.drop_index("ix_messages_stream_status_ts", table_name="messages")
    op.drop_table("messages")

    for enum in (batch_status, proposal_status, update_type, processing_status):
        enum.drop(op.get_bind(), checkfirst=True)
