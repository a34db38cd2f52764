"""Tests for administrative operations on processed data."""

from datetime import timedelta

import pytest

from docflow.db.repositories import (
    ChangesetBatchRepository,
    ClassificationRepository,
    MessageRepository,
    RagContextRepository,
    WatermarkRepository,
)
from docflow.llm.cache import CachePurpose, LLMCache
from docflow.models.db import (
    BatchStatus,
    ChangesetBatch,
    DocProposal,
    ProcessingStatus,
    ProposalStatus,
)
from docflow.processing.admin import clear_processed, purge_cache, reprocess_proposals
from docflow.processing.watermark import WatermarkService
from docflow.utils.time import as_utc


def _batch(db_session, status: BatchStatus = BatchStatus.DRAFT, batch_id: str = "batch-1"):
    batch = ChangesetBatch(batch_id=batch_id, status=status, affected_files=[])
    db_session.add(batch)
    db_session.flush()
    return batch


@pytest.fixture
def processed(db_session, make_message, make_proposal):
    """Ten COMPLETED messages in two conversations plus five PENDING ones."""
    completed = [make_message(status=ProcessingStatus.COMPLETED) for _ in range(10)]
    pending = [make_message() for _ in range(5)]

    classifications = ClassificationRepository(db_session)
    rag_contexts = RagContextRepository(db_session)
    for i, message in enumerate(completed):
        conversation = None if i == 9 else f"community_1-thread-{i % 2}"
        classifications.upsert(
            message.id,
            batch_id="community_1",
            category="troubleshooting" if conversation else "no-doc-value",
            conversation_id=conversation,
        )
    for thread in range(3):
        rag_contexts.upsert(
            f"community_1-thread-{thread}",
            batch_id="community_1",
            retrieved_docs=[],
            total_tokens=0,
        )

    loose = make_proposal(conversation_id="community_1-thread-0")
    drafted = make_proposal(
        conversation_id="community_1-thread-0", status=ProposalStatus.APPROVED
    )
    draft = _batch(db_session)
    ChangesetBatchRepository(db_session).add_proposals(draft, [drafted.id])
    draft.total_proposals = 1
    submitted = make_proposal(
        conversation_id="community_1-thread-1", status=ProposalStatus.APPROVED
    )
    submitted.pr_batch_id = _batch(db_session, BatchStatus.SUBMITTED, "batch-2").id
    unrelated = make_proposal(conversation_id="other_1-thread-0")
    WatermarkService(db_session).advance("community", as_utc(completed[-1].timestamp))
    db_session.flush()

    return {
        "completed": completed,
        "pending": pending,
        "loose": loose,
        "drafted": drafted,
        "submitted": submitted,
        "unrelated": unrelated,
    }


class TestClearProcessed:
    """Tests for clear_processed."""

    def test_messages_reset_to_pending(self, db_session, processed):
        result = clear_processed(db_session, stream_id="community")

        db_session.expire_all()
        assert result.messages_reset == 10
        counts = MessageRepository(db_session).count_by_status("community")
        assert counts == {"PENDING": 15, "COMPLETED": 0, "FAILED": 0}

    def test_classifications_and_contexts_deleted(self, db_session, processed):
        result = clear_processed(db_session)

        assert result.classifications_deleted == 10
        assert result.rag_contexts_deleted == 3
        for message in processed["completed"]:
            assert ClassificationRepository(db_session).get_by_message(message.id) is None
        assert RagContextRepository(db_session).get_by_conversation("community_1-thread-2") is None

    def test_batched_proposals_kept(self, db_session, processed):
        """Test that proposals attached to a changeset batch survive."""
        result = clear_processed(db_session)

        db_session.expire_all()
        assert result.proposals_deleted == 1
        assert db_session.get(DocProposal, processed["loose"].id) is None
        assert db_session.get(DocProposal, processed["drafted"].id) is not None
        assert db_session.get(DocProposal, processed["submitted"].id) is not None
        assert db_session.get(DocProposal, processed["unrelated"].id) is not None

    def test_draft_batch_links_intact(self, db_session, processed):
        """Test that a draft batch still resolves its proposals after clearing."""
        clear_processed(db_session, stream_id="community")

        db_session.expire_all()
        draft = ChangesetBatchRepository(db_session).get_by_batch_id("batch-1")
        assert [link.proposal.id for link in draft.batch_proposals] == [
            processed["drafted"].id
        ]
        assert draft.total_proposals == len(draft.batch_proposals)

    def test_watermark_reset(self, db_session, processed):
        result = clear_processed(db_session, stream_id="community")

        assert result.watermarks_reset == 1
        watermark = WatermarkRepository(db_session).get_by_stream("community")
        first = processed["completed"][0]
        assert as_utc(watermark.watermark_time) == as_utc(first.timestamp) - timedelta(
            milliseconds=1
        )

    def test_cache_purged(self, db_session, processed, memory_cache: LLMCache):
        memory_cache.set("prompt", "response", CachePurpose.CLASSIFICATION)
        memory_cache.set("prompt", "response", CachePurpose.GENERATION)

        result = clear_processed(db_session, cache=memory_cache)

        assert result.cache_entries_purged == 2
        assert memory_cache.get("prompt", CachePurpose.CLASSIFICATION) is None

    def test_other_stream_untouched(self, db_session, processed, make_message):
        other = make_message(stream_id="other", status=ProcessingStatus.COMPLETED)

        clear_processed(db_session, stream_id="community")

        db_session.expire_all()
        assert other.processing_status == ProcessingStatus.COMPLETED

    def test_nothing_processed(self, db_session, make_message):
        make_message()

        result = clear_processed(db_session)

        assert result.messages_reset == 0
        assert result.proposals_deleted == 0


class TestPurgeCache:
    """Tests for purge_cache."""

    def test_purge_one_purpose(self, memory_cache: LLMCache):
        memory_cache.set("a", "1", CachePurpose.REVIEW)
        memory_cache.set("b", "2", CachePurpose.GENERATION)

        assert purge_cache(memory_cache, purpose="review") == 1
        assert memory_cache.stats()["generation"].count == 1

    def test_purge_everything(self, memory_cache: LLMCache):
        memory_cache.set("a", "1", CachePurpose.REVIEW)
        memory_cache.set("b", "2", CachePurpose.GENERATION)

        assert purge_cache(memory_cache) == 2

    def test_purge_older_than(self, memory_cache: LLMCache):
        memory_cache.set("a", "1", CachePurpose.REVIEW)

        assert purge_cache(memory_cache, older_than_days=1) == 0


class TestReprocessProposals:
    """Tests for reprocess_proposals."""

    def test_rewrites_from_raw_text(self, db_session, make_proposal):
        proposal = make_proposal(
            suggested_text="Use <em>this</em> flag",
            raw_suggested_text="Use <em>this</em> flag",
        )

        result = reprocess_proposals(db_session)

        assert result.processed == 1
        assert result.modified == 1
        assert proposal.suggested_text == "Use *this* flag"

    def test_second_run_changes_nothing(self, db_session, make_proposal):
        make_proposal(suggested_text="<b>x</b> y", raw_suggested_text="<b>x</b> y")

        reprocess_proposals(db_session)
        result = reprocess_proposals(db_session)

        assert result.modified == 0

    def test_graduated_proposals_skipped(self, db_session, make_proposal):
        proposal = make_proposal(
            status=ProposalStatus.APPROVED,
            suggested_text="<b>x</b>",
            raw_suggested_text="<b>x</b>",
        )
        proposal.pr_batch = _batch(db_session, status=BatchStatus.SUBMITTED)
        db_session.flush()

        result = reprocess_proposals(db_session)

        assert result.processed == 0
        assert proposal.suggested_text == "<b>x</b>"

    def test_proposals_without_raw_text_ignored(self, db_session, make_proposal):
        make_proposal(suggested_text="<b>x</b>", raw_suggested_text=None)

        assert reprocess_proposals(db_session).processed == 0
