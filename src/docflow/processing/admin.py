"""
Administrative operations on processed data.

Clearing processed messages, purging the LLM cache and re-running the
deterministic post-processing over stored proposals.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from sqlalchemy.orm import Session

from docflow.db.repositories import (
    ClassificationRepository,
    MessageRepository,
    ProposalRepository,
    RagContextRepository,
    WatermarkRepository,
)
from docflow.llm.cache import CachePurpose, LLMCache
from docflow.models.db import ProcessingStatus
from docflow.postprocessing import post_process
from docflow.processing.watermark import WatermarkService

logger = logging.getLogger(__name__)


@dataclass
class ClearProcessedResult:
    messages_reset: int = 0
    classifications_deleted: int = 0
    rag_contexts_deleted: int = 0
    proposals_deleted: int = 0
    watermarks_reset: int = 0
    cache_entries_purged: int = 0


@dataclass
class ReprocessResult:
    processed: int = 0
    modified: int = 0
    errors: list[tuple[int, str]] = field(default_factory=list)


def clear_processed(
    session: Session,
    cache: Optional[LLMCache] = None,
    stream_id: Optional[str] = None,
) -> ClearProcessedResult:
    """
    Revert COMPLETED messages to PENDING so they are processed again.

    Deletes the messages' classifications, the RAG contexts and proposals of
    their conversations, resets the affected watermarks and purges the cache.
    Proposals already attached to a changeset batch are kept.

    Args:
        session: Database session
        cache: LLM cache to purge, skipped when None
        stream_id: Restrict to one stream

    Returns:
        Counts of what was reset and removed
    """
    messages = MessageRepository(session)
    classifications = ClassificationRepository(session)
    rag_contexts = RagContextRepository(session)
    result = ClearProcessedResult()

    message_ids = messages.get_ids_by_status(ProcessingStatus.COMPLETED, stream_id)
    logger.info(
        f"Clearing {len(message_ids)} processed messages"
        + (f" in stream {stream_id}" if stream_id else "")
    )

    conversation_ids = classifications.get_conversation_ids(message_ids)
    batch_ids = classifications.get_batch_ids(message_ids)

    result.proposals_deleted = ProposalRepository(session).delete_for_conversations(
        conversation_ids
    )
    result.rag_contexts_deleted = rag_contexts.delete_for_conversations(conversation_ids)
    # no-value threads have contexts but no conversation id on their messages
    result.rag_contexts_deleted += rag_contexts.delete_for_batches(batch_ids)
    result.classifications_deleted = classifications.delete_for_messages(message_ids)
    result.messages_reset = messages.set_status(message_ids, ProcessingStatus.PENDING)

    if stream_id:
        streams = [stream_id]
    else:
        known = {row.stream_id for row in WatermarkRepository(session).get_all()}
        streams = sorted(known | set(messages.get_stream_ids()))
    watermarks = WatermarkService(session)
    for stream in streams:
        watermarks.reset(stream)
    result.watermarks_reset = len(streams)

    if cache is not None:
        result.cache_entries_purged = cache.clear_all()

    logger.info(
        f"Cleared processed data: {result.messages_reset} messages reset, "
        f"{result.classifications_deleted} classifications, "
        f"{result.rag_contexts_deleted} RAG contexts, {result.proposals_deleted} proposals, "
        f"{result.cache_entries_purged} cache entries"
    )
    return result


def purge_cache(
    cache: LLMCache,
    purpose: Optional[CachePurpose | str] = None,
    older_than_days: Optional[int] = None,
) -> int:
    """
    Remove cache entries.

    With ``older_than_days`` only stale entries go; otherwise one purpose, or
    everything when no purpose is given.

    Returns:
        Number of entries removed
    """
    if older_than_days is not None:
        return cache.clear_older_than(older_than_days)
    if purpose is not None:
        return cache.clear_purpose(CachePurpose(purpose))
    return cache.clear_all()


def reprocess_proposals(session: Session) -> ReprocessResult:
    """
    Re-run post-processing over every proposal that kept its raw text.

    ``suggested_text`` is rewritten only where the output differs, so running
    this twice changes nothing the second time. Proposals in a submitted batch
    are left alone.
    """
    result = ReprocessResult()
    for proposal in ProposalRepository(session).get_with_raw_text():
        if proposal.is_graduated:
            continue
        result.processed += 1
        try:
            text, _ = post_process(
                proposal.raw_suggested_text, proposal.page, proposal.update_type
            )
        except Exception as e:
            logger.error(f"Failed to reprocess proposal {proposal.id}: {e}")
            result.errors.append((proposal.id, str(e)))
            continue
        if text != proposal.suggested_text:
            proposal.suggested_text = text
            result.modified += 1
            logger.debug(f"Proposal {proposal.id} updated by reprocessing")

    session.flush()
    logger.info(
        f"Reprocessed {result.processed} proposals: {result.modified} modified, "
        f"{len(result.errors)} errors"
    )
    return result
