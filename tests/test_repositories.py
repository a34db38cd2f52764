"""
Tests for repository classes.
"""

from datetime import timedelta

import pytest

from docflow.config import settings
from docflow.db.repositories import (
    ChangesetBatchRepository,
    MessageRepository,
    ProposalRepository,
    RulesetRepository,
    WatermarkRepository,
)
from docflow.models.db import BatchStatus, ChangesetBatch, ProcessingStatus, ProposalStatus
from docflow.processing.lock import ProcessingLock
from docflow.processing.processor import BatchMessageProcessor
from docflow.utils.time import as_utc


def _submitted_batch(db_session) -> ChangesetBatch:
    batch = ChangesetBatch(batch_id="batch-1", status=BatchStatus.SUBMITTED, affected_files=[])
    db_session.add(batch)
    db_session.flush()
    return batch


class TestMessageRepository:
    """Tests for MessageRepository."""

    def test_streams_with_pending(self, db_session, make_message):
        make_message(stream_id="b")
        make_message(stream_id="a")
        make_message(stream_id="c", status=ProcessingStatus.COMPLETED)
        make_message(stream_id="pipeline-test")
        repo = MessageRepository(db_session)

        assert repo.get_streams_with_pending() == ["a", "b", "pipeline-test"]
        assert repo.get_streams_with_pending(exclude_stream_id="pipeline-test") == ["a", "b"]
        assert repo.get_streams_with_pending(stream_id="pipeline-test") == ["pipeline-test"]

    def test_context_window_is_half_open(self, db_session, make_message):
        first = make_message(status=ProcessingStatus.COMPLETED)
        second = make_message(status=ProcessingStatus.COMPLETED)
        repo = MessageRepository(db_session)

        context = repo.get_context(
            "community", as_utc(first.timestamp), as_utc(second.timestamp), limit=10
        )

        assert [m.id for m in context] == [first.id]

    def test_set_and_count_status(self, db_session, make_message):
        messages = [make_message() for _ in range(3)]
        repo = MessageRepository(db_session)

        updated = repo.set_status([messages[0].id, messages[1].id], ProcessingStatus.COMPLETED)

        assert updated == 2
        assert repo.count_by_status() == {"PENDING": 1, "COMPLETED": 2, "FAILED": 0}
        assert repo.set_status([], ProcessingStatus.FAILED) == 0

    def test_earliest_timestamp(self, db_session, make_message):
        first = make_message()
        make_message()

        earliest = MessageRepository(db_session).get_earliest_timestamp("community")

        assert as_utc(earliest) == as_utc(first.timestamp)
        assert MessageRepository(db_session).get_earliest_timestamp("empty") is None


class TestProposalRepository:
    """Tests for ProposalRepository visibility rules."""

    def test_graduated_hidden_from_review_lists(self, db_session, make_proposal):
        visible = make_proposal(status=ProposalStatus.APPROVED)
        graduated = make_proposal(status=ProposalStatus.APPROVED)
        graduated.pr_batch_id = _submitted_batch(db_session).id
        db_session.flush()
        repo = ProposalRepository(db_session)

        assert [p.id for p in repo.list_by_status(ProposalStatus.APPROVED)] == [visible.id]
        assert [p.id for p in repo.get_by_conversation("community_1-thread-0")] == [visible.id]
        assert len(repo.get_by_conversation("community_1-thread-0", include_graduated=True)) == 2

    def test_pending_for_page_excludes_conversation(self, db_session, make_proposal):
        make_proposal(page="docs/a.md", conversation_id="c-1")
        other = make_proposal(page="docs/a.md", conversation_id="c-2")
        make_proposal(page="docs/b.md", conversation_id="c-3")
        repo = ProposalRepository(db_session)

        pending = repo.get_pending_for_page("docs/a.md", exclude_conversation_id="c-1")

        assert [p.id for p in pending] == [other.id]

    def test_draft_batch_keeps_proposal_visible(self, db_session, make_proposal):
        proposal = make_proposal(status=ProposalStatus.APPROVED)
        batch = ChangesetBatchRepository(db_session).create(
            batch_id="batch-draft", status=BatchStatus.DRAFT, affected_files=[]
        )
        proposal.pr_batch_id = batch.id
        db_session.flush()

        assert ProposalRepository(db_session).list_by_status(ProposalStatus.APPROVED) == [
            proposal
        ]


class TestWatermarkRepository:
    def test_upsert_keeps_batch_id_when_omitted(self, db_session, make_message):
        message = make_message()
        repo = WatermarkRepository(db_session)
        repo.upsert("community", as_utc(message.timestamp), "batch-1")

        row = repo.upsert("community", as_utc(message.timestamp) + timedelta(minutes=1))

        assert row.last_processed_batch_id == "batch-1"
        assert repo.count() == 1


class TestRulesetRepository:
    """Tests for stored tenant rulesets."""

    def test_save_creates_then_updates(self, db_session):
        repo = RulesetRepository(db_session)

        created = repo.save("default", "## Rejection Rules\n1. Reject duplicates")
        updated = repo.save("default", "## Modification Rules\n1. Remove emoji")

        assert created.id == updated.id
        assert repo.get_for_tenant("default").content.startswith("## Modification Rules")
        assert repo.get_for_tenant("other") is None

    def test_processor_prefers_stored_ruleset(
        self, db_session, session_factory, tmp_path, monkeypatch
    ):
        ruleset_file = tmp_path / "ruleset.md"
        ruleset_file.write_text("## Rejection Rules\n1. From file")
        monkeypatch.setattr(settings, "ruleset_path", str(ruleset_file))
        processor = BatchMessageProcessor(
            session_factory=session_factory,
            instance_id="tenant-a",
            lock=ProcessingLock("tenant-a"),
        )

        from_file = processor.load_ruleset(db_session)
        RulesetRepository(db_session).save("tenant-a", "## Rejection Rules\n1. Stored")
        stored = processor.load_ruleset(db_session)

        assert [r.text for r in from_file.rejection_rules] == ["From file"]
        assert [r.text for r in stored.rejection_rules] == ["Stored"]

    def test_missing_ruleset_file(self, db_session, session_factory, tmp_path, monkeypatch):
        monkeypatch.setattr(settings, "ruleset_path", str(tmp_path / "missing.md"))
        processor = BatchMessageProcessor(
            session_factory=session_factory,
            instance_id="tenant-b",
            lock=ProcessingLock("tenant-b"),
        )

        assert processor.load_ruleset(db_session) is None


@pytest.mark.parametrize("status", [BatchStatus.MERGED, BatchStatus.CLOSED])
def test_list_batches_by_status(db_session, status):
    repo = ChangesetBatchRepository(db_session)
    repo.create(batch_id=f"batch-{status.value}", status=status, affected_files=[])
    repo.create(batch_id="batch-draft", status=BatchStatus.DRAFT, affected_files=[])

    assert [b.batch_id for b in repo.list_batches(status)] == [f"batch-{status.value}"]
