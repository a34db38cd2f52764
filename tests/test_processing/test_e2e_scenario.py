"""End-to-end batch processing against the database with a mocked model."""

from datetime import datetime, timedelta, timezone
from unittest.mock import Mock

import pytest

from docflow.config import settings
from docflow.db.repositories import (
    ClassificationRepository,
    ProposalRepository,
    RagContextRepository,
    WatermarkRepository,
)
from docflow.llm.handler import LLMHandler
from docflow.models.db import ProcessingStatus, UpdateType
from docflow.models.pipeline import RagDocument
from docflow.pipeline.config import DEFAULT_DOMAIN_CONFIG, KeywordFilter
from docflow.processing.lock import ProcessingLock
from docflow.processing.processor import FILTERED_REASON, BatchMessageProcessor
from docflow.retrieval import DocumentSearch
from docflow.utils.time import as_utc

BASE_TIME = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)
BASE_MS = 1740830400000
BATCH_ID = f"community_{BASE_MS}"

CLASSIFICATION = {
    "threads": [
        {
            "category": "troubleshooting",
            "messages": [0, 1],
            "summary": "Node stops syncing when the disk is full",
            "docValueReason": "Recurring failure with no documentation",
            "ragSearchCriteria": {"keywords": ["sync"], "semanticQuery": "node sync disk full"},
        },
        {"category": "no-doc-value", "messages": [2], "summary": "Thanks"},
    ]
}

GENERATION = {
    "proposals": [
        {
            "updateType": "UPDATE",
            "page": "docs/troubleshooting.md",
            "section": "Sync issues",
            "suggestedText": "Free up disk space before restarting the sync.",
            "reasoning": "Users hit this repeatedly",
            "sourceMessages": [0, 1],
        }
    ]
}


@pytest.fixture
def rag() -> Mock:
    search = Mock(spec=DocumentSearch)
    search.search.return_value = [
        RagDocument(
            file_path="docs/troubleshooting.md",
            title="Troubleshooting",
            content="# Troubleshooting\n\nRestart the node when it stalls.",
            similarity=0.9,
        )
    ]
    return search


@pytest.fixture
def processor_factory(llm_handler: LLMHandler, rag: Mock, session_factory):
    def factory(**kwargs) -> BatchMessageProcessor:
        kwargs.setdefault("llm", llm_handler)
        kwargs.setdefault("rag", rag)
        return BatchMessageProcessor(
            session_factory=session_factory,
            instance_id="test",
            lock=ProcessingLock("test"),
            max_workers=1,
            **kwargs,
        )

    return factory


@pytest.fixture
def messages(make_message):
    return [
        make_message("My node stopped syncing at block 1200"),
        make_message("Check free disk space, a full disk stops the sync"),
        make_message("thanks, that fixed it"),
    ]


class TestBatchProcessing:
    """A three-message batch run through every stage."""

    def test_messages_completed(self, db_session, messages, processor_factory, llm_dispatch):
        llm_dispatch(classification=CLASSIFICATION, generation=GENERATION)

        result = processor_factory().process_batch("community")

        db_session.expire_all()
        assert [m.processing_status for m in messages] == [ProcessingStatus.COMPLETED] * 3
        assert result.messages_processed == 3
        assert result.proposals_created == 1
        assert result.errors == []
        assert [b.batch_id for b in result.batches] == [BATCH_ID]

    def test_classifications_stored(self, db_session, messages, processor_factory, llm_dispatch):
        llm_dispatch(classification=CLASSIFICATION, generation=GENERATION)

        processor_factory().process_batch("community")

        repo = ClassificationRepository(db_session)
        first, second, third = (repo.get_by_message(m.id) for m in messages)
        assert first.conversation_id == f"{BATCH_ID}-thread-0"
        assert second.conversation_id == f"{BATCH_ID}-thread-0"
        assert first.category == "troubleshooting"
        assert first.batch_id == BATCH_ID
        assert first.model_used == "test-model"
        assert third.category == "no-doc-value"
        assert third.conversation_id is None

    def test_rag_contexts_stored(self, db_session, messages, processor_factory, llm_dispatch):
        llm_dispatch(classification=CLASSIFICATION, generation=GENERATION)

        processor_factory().process_batch("community")

        repo = RagContextRepository(db_session)
        valuable = repo.get_by_conversation(f"{BATCH_ID}-thread-0")
        assert [d["file_path"] for d in valuable.retrieved_docs] == ["docs/troubleshooting.md"]
        assert valuable.proposals_rejected is False
        assert valuable.total_tokens > 0

        no_value = repo.get_by_conversation(f"{BATCH_ID}-thread-1")
        assert no_value.proposals_rejected is True
        assert no_value.rejection_reason == "Classified as no documentation value"

    def test_proposal_stored(self, db_session, messages, processor_factory, llm_dispatch):
        llm_dispatch(classification=CLASSIFICATION, generation=GENERATION)

        processor_factory().process_batch("community")

        proposals = ProposalRepository(db_session).get_by_conversation(f"{BATCH_ID}-thread-0")
        assert len(proposals) == 1
        proposal = proposals[0]
        assert proposal.page == "docs/troubleshooting.md"
        assert proposal.section == "Sync issues"
        assert proposal.batch_id == BATCH_ID
        assert proposal.raw_suggested_text == "Free up disk space before restarting the sync."
        assert proposal.suggested_text == "Free up disk space before restarting the sync."
        assert proposal.source_messages == [messages[0].id, messages[1].id]

    def test_insert_without_new_section_stored_as_update(
        self, db_session, messages, processor_factory, llm_dispatch
    ):
        """Test that a troubleshooting thread only yields UPDATE or NONE proposals."""
        insert = {"proposals": [dict(GENERATION["proposals"][0], updateType="INSERT")]}
        delete = {"updateType": "DELETE", "page": "docs/troubleshooting.md", "section": "Sync"}
        insert["proposals"].append(delete)
        llm_dispatch(classification=CLASSIFICATION, generation=insert)

        result = processor_factory().process_batch("community")

        proposals = ProposalRepository(db_session).get_by_conversation(f"{BATCH_ID}-thread-0")
        assert result.proposals_created == 1
        assert [p.update_type for p in proposals] == [UpdateType.UPDATE]

    def test_watermark_at_last_message(
        self, db_session, messages, processor_factory, llm_dispatch
    ):
        llm_dispatch(classification=CLASSIFICATION, generation=GENERATION)

        processor_factory().process_batch("community")

        watermark = WatermarkRepository(db_session).get_by_stream("community")
        assert as_utc(watermark.watermark_time) == as_utc(messages[2].timestamp)
        assert watermark.last_processed_batch_id == BATCH_ID

    def test_second_run_finds_nothing(
        self, db_session, messages, processor_factory, llm_dispatch
    ):
        provider = llm_dispatch(classification=CLASSIFICATION, generation=GENERATION)
        processor = processor_factory()

        processor.process_batch("community")
        result = processor.process_batch("community")

        assert result.batches == []
        assert provider.complete.call_count == 2

    def test_test_stream_excluded_without_filter(
        self, db_session, make_message, processor_factory, llm_dispatch
    ):
        """Test that an unfiltered run leaves the pipeline test stream alone."""
        make_message("hello", stream_id="pipeline-test")
        llm_dispatch()

        result = processor_factory().process_batch()

        assert result.batches == []

    def test_tied_timestamps_across_capped_batches(
        self, db_session, make_message, processor_factory, llm_dispatch, monkeypatch
    ):
        monkeypatch.setattr(settings, "batch_max_size", 2)
        tied = [make_message(f"question {i}", timestamp=BASE_TIME) for i in range(3)]
        llm_dispatch()

        result = processor_factory().process_batch("community")

        db_session.expire_all()
        assert [m.processing_status for m in tied] == [ProcessingStatus.COMPLETED] * 3
        assert [b.messages_selected for b in result.batches] == [2, 1]
        watermark = WatermarkRepository(db_session).get_by_stream("community")
        assert as_utc(watermark.watermark_time) == BASE_TIME


class TestProcessingFailures:
    """Failures leave messages pending for the next run."""

    def test_stage_failure_stores_nothing(
        self, db_session, messages, processor_factory, mock_provider
    ):
        mock_provider.complete.side_effect = RuntimeError("provider unavailable")

        result = processor_factory().process_batch("community")

        db_session.expire_all()
        assert [m.processing_status for m in messages] == [ProcessingStatus.PENDING] * 3
        assert result.errors == ["batch-classify: provider unavailable"]
        assert ClassificationRepository(db_session).get_by_message(messages[0].id) is None
        watermark = WatermarkRepository(db_session).get_by_stream("community")
        assert as_utc(watermark.watermark_time) == as_utc(messages[0].timestamp) - timedelta(
            milliseconds=1
        )

    def test_thread_storage_failure_keeps_thread_pending(
        self, db_session, messages, processor_factory, llm_dispatch, monkeypatch
    ):
        """Test that one failed thread does not block the others."""
        llm_dispatch(classification=CLASSIFICATION, generation=GENERATION)
        store_thread = BatchMessageProcessor._store_thread

        def flaky(self, session, context, thread, message_ids, model_used):
            if thread.id.endswith("thread-0"):
                raise RuntimeError("disk full")
            return store_thread(self, session, context, thread, message_ids, model_used)

        monkeypatch.setattr(BatchMessageProcessor, "_store_thread", flaky)

        result = processor_factory().process_batch("community")

        db_session.expire_all()
        assert [m.processing_status for m in messages] == [
            ProcessingStatus.PENDING,
            ProcessingStatus.PENDING,
            ProcessingStatus.COMPLETED,
        ]
        assert result.messages_processed == 1
        assert result.proposals_created == 0
        # The stored message is newer than the failed ones, so the watermark holds
        watermark = WatermarkRepository(db_session).get_by_stream("community")
        assert as_utc(watermark.watermark_time) < as_utc(messages[0].timestamp)

    def test_keyword_filtered_messages_completed(
        self, db_session, make_message, processor_factory, llm_dispatch
    ):
        kept = make_message("My node stopped syncing")
        dropped = make_message("free airdrop, click here")
        llm_dispatch(
            classification={"threads": [{"category": "no-doc-value", "messages": [0]}]}
        )
        domain = DEFAULT_DOMAIN_CONFIG.model_copy(
            update={"keywords": KeywordFilter(exclude=["airdrop"])}
        )

        processor_factory(domain_config=domain).process_batch("community")

        db_session.expire_all()
        assert dropped.processing_status == ProcessingStatus.COMPLETED
        assert kept.processing_status == ProcessingStatus.COMPLETED
        classification = ClassificationRepository(db_session).get_by_message(dropped.id)
        assert classification.category == "no-doc-value"
        assert classification.conversation_id is None
        assert classification.doc_value_reason == FILTERED_REASON
