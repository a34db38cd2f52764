"""
Batch message processor.

Drives one processing run: for every stream with pending messages it selects
watermark-bounded batches, runs the pipeline, stores classifications, RAG
contexts and proposals, marks consumed messages COMPLETED and advances the
stream watermark. Messages whose results could not be stored stay PENDING and
the watermark does not move past them.
"""

import logging
import math
from contextlib import AbstractContextManager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.orm import Session

from docflow.config import settings
from docflow.db.repositories import (
    ClassificationRepository,
    MessageRepository,
    ProposalRepository,
    RagContextRepository,
    RulesetRepository,
)
from docflow.llm.handler import LLMHandler
from docflow.models.db import Message, ProcessingStatus
from docflow.models.pipeline import (
    NO_DOC_VALUE,
    ConversationThread,
    PipelineMessage,
    ProposalDraft,
    StepLog,
)
from docflow.pipeline.config import (
    DEFAULT_DOMAIN_CONFIG,
    DEFAULT_PIPELINE_CONFIG,
    DomainConfig,
    PipelineConfig,
)
from docflow.pipeline.context import PipelineContext
from docflow.pipeline.orchestrator import PipelineOrchestrator
from docflow.pipeline.prompts import PromptRegistry
from docflow.postprocessing import post_process
from docflow.processing.lock import ProcessingLock, get_processing_lock
from docflow.processing.selector import BatchSelector, MessageBatch
from docflow.processing.watermark import WatermarkService
from docflow.retrieval import DocumentSearch
from docflow.ruleset import Ruleset, load_ruleset_file, parse_ruleset
from docflow.utils.time import as_utc

logger = logging.getLogger(__name__)

SUMMARY_MAX_LENGTH = 200
FILTERED_REASON = "Excluded by keyword filter"
NO_VALUE_REASON = "Classified as no documentation value"

SessionFactory = Callable[[], AbstractContextManager[Session]]


def truncate_summary(summary: str, limit: int = SUMMARY_MAX_LENGTH) -> str:
    if len(summary) <= limit:
        return summary
    return summary[: limit - 3] + "..."


def estimate_tokens(docs) -> int:
    """Rough token count of retrieved documents, four characters per token."""
    return math.ceil(sum(len(doc.content) for doc in docs) / 4)


def to_pipeline_message(message: Message) -> PipelineMessage:
    return PipelineMessage(
        id=message.id,
        author=message.author,
        content=message.content,
        timestamp=as_utc(message.timestamp),
        channel=message.channel,
    )


@dataclass
class BatchOutcome:
    """What one pipeline run over one batch produced."""

    batch_id: str
    stream_id: str
    messages_selected: int
    messages_completed: int = 0
    threads: int = 0
    proposals_created: int = 0
    watermark: Optional[datetime] = None
    errors: list[str] = field(default_factory=list)
    step_logs: list[StepLog] = field(default_factory=list)

    @property
    def failed(self) -> bool:
        return bool(self.errors) or self.messages_completed < self.messages_selected


@dataclass
class ProcessingResult:
    """Totals of one processing run across all streams."""

    batches: list[BatchOutcome] = field(default_factory=list)

    @property
    def messages_processed(self) -> int:
        return sum(b.messages_completed for b in self.batches)

    @property
    def proposals_created(self) -> int:
        return sum(b.proposals_created for b in self.batches)

    @property
    def errors(self) -> list[str]:
        return [error for b in self.batches for error in b.errors]


def _default_session_factory() -> AbstractContextManager[Session]:
    from docflow.db.connection import db_session

    return db_session()


class BatchMessageProcessor:
    """
    Runs the pipeline over pending messages, one stream and batch at a time.

    Only one run per tenant may be active; a concurrent trigger raises
    ``AlreadyProcessingError`` from the processing lock.
    """

    def __init__(
        self,
        llm: Optional[LLMHandler] = None,
        rag: Optional[DocumentSearch] = None,
        domain_config: DomainConfig = DEFAULT_DOMAIN_CONFIG,
        pipeline_config: PipelineConfig = DEFAULT_PIPELINE_CONFIG,
        prompts: Optional[PromptRegistry] = None,
        session_factory: SessionFactory = _default_session_factory,
        instance_id: Optional[str] = None,
        lock: Optional[ProcessingLock] = None,
        max_workers: Optional[int] = None,
    ):
        self.llm = llm
        self.rag = rag
        self.domain_config = domain_config
        self.session_factory = session_factory
        self.instance_id = instance_id or settings.instance_id
        self.lock = lock or get_processing_lock(self.instance_id)
        self.orchestrator = PipelineOrchestrator(
            pipeline_config,
            prompts=prompts,
            max_workers=max_workers or settings.pipeline_max_workers,
        )

    @classmethod
    def from_settings(cls) -> "BatchMessageProcessor":
        """Build a processor with the provider, retrieval and configs from settings."""
        from docflow.llm.cache import create_cache_from_settings
        from docflow.llm.handler import create_handler_from_settings
        from docflow.pipeline.config import load_domain_config, load_pipeline_config
        from docflow.retrieval import create_search_from_settings

        cache = create_cache_from_settings() if settings.llm_cache_enabled else None
        try:
            llm = create_handler_from_settings(cache)
        except ValueError as e:
            logger.warning(f"LLM provider unavailable, LLM stages will fail: {e}")
            llm = None

        return cls(
            llm=llm,
            rag=create_search_from_settings(cache),
            domain_config=load_domain_config(settings.domain_config_path),
            pipeline_config=load_pipeline_config(settings.pipeline_config_path),
            prompts=PromptRegistry(settings.prompts_dir or None),
        )

    def process_batch(self, stream_id: Optional[str] = None) -> ProcessingResult:
        """
        Process every pending batch, optionally for one stream only.

        Without a stream filter the test stream is excluded.

        Raises:
            AlreadyProcessingError: If a run is already in progress
        """
        result = ProcessingResult()
        with self.lock.hold():
            with self.session_factory() as session:
                streams = MessageRepository(session).get_streams_with_pending(
                    stream_id=stream_id,
                    exclude_stream_id=None if stream_id else settings.test_stream_id,
                )

            if not streams:
                logger.debug("No pending messages in any stream")
                return result
            logger.info(f"Found {len(streams)} streams with pending messages")

            for stream in streams:
                self._process_stream(stream, result)

        logger.info(
            f"Processing run complete: {result.messages_processed} messages, "
            f"{result.proposals_created} proposals, {len(result.errors)} errors"
        )
        return result

    def _process_stream(self, stream_id: str, result: ProcessingResult) -> None:
        while True:
            with self.session_factory() as session:
                outcome = self._process_next(session, stream_id)
            if outcome is None:
                break
            result.batches.append(outcome)
            if outcome.failed:
                logger.warning(
                    f"Batch {outcome.batch_id} left {outcome.messages_selected - outcome.messages_completed} "
                    f"messages pending; {stream_id} will retry on the next run"
                )
                break

    def _process_next(self, session: Session, stream_id: str) -> Optional[BatchOutcome]:
        batch = BatchSelector(session).next_batch(stream_id)
        if batch is None:
            return None

        context = self._build_context(session, batch)
        self.orchestrator.run(context)

        outcome = BatchOutcome(
            batch_id=batch.batch_id,
            stream_id=stream_id,
            messages_selected=len(batch),
            threads=len(context.threads),
            step_logs=list(context.step_logs),
        )
        if context.errors:
            outcome.errors = [f"{e.step_id}: {e.message}" for e in context.errors]
            logger.error(
                f"Pipeline failed for batch {batch.batch_id}, "
                f"{len(batch)} messages stay pending: {outcome.errors[0]}"
            )
            return outcome

        stored_ids, outcome.proposals_created = self._store_results(session, context)

        messages = MessageRepository(session)
        messages.set_status(sorted(stored_ids), ProcessingStatus.COMPLETED)
        failed = [m for m in batch.messages if m.id not in stored_ids]
        if failed:
            ClassificationRepository(session).delete_for_messages([m.id for m in failed])
            logger.warning(
                f"{len(failed)} messages of batch {batch.batch_id} were not stored "
                f"and will be retried"
            )
        outcome.messages_completed = len(stored_ids)

        consumed = [as_utc(m.timestamp) for m in batch.messages if m.id in stored_ids]
        if failed:
            first_failure = min(as_utc(m.timestamp) for m in failed)
            consumed = [ts for ts in consumed if ts < first_failure]
        if consumed:
            outcome.watermark = WatermarkService(session).advance(
                stream_id, max(consumed), batch.batch_id
            )

        logger.info(
            f"Batch {batch.batch_id}: {outcome.messages_completed}/{len(batch)} messages, "
            f"{outcome.threads} threads, {outcome.proposals_created} proposals"
        )
        return outcome

    def _build_context(self, session: Session, batch: MessageBatch) -> PipelineContext:
        proposals = ProposalRepository(session)
        return PipelineContext(
            batch_id=batch.batch_id,
            stream_id=batch.stream_id,
            messages=[to_pipeline_message(m) for m in batch.messages],
            context_messages=[to_pipeline_message(m) for m in batch.context_messages],
            llm=self.llm,
            rag=self.rag,
            instance_id=self.instance_id,
            domain_config=self.domain_config,
            ruleset=self.load_ruleset(session),
            pending_counter=lambda page: len(proposals.get_pending_for_page(page)),
        )

    def load_ruleset(self, session: Session) -> Optional[Ruleset]:
        """The tenant's stored ruleset, else the ruleset file from settings."""
        stored = RulesetRepository(session).get_for_tenant(self.instance_id)
        if stored is not None:
            return parse_ruleset(stored.content)
        if settings.ruleset_path:
            try:
                return load_ruleset_file(settings.ruleset_path)
            except FileNotFoundError:
                logger.warning(f"Ruleset file not found: {settings.ruleset_path}")
        return None

    def _store_results(self, session: Session, context: PipelineContext) -> tuple[set[int], int]:
        """
        Persist one run's results thread by thread.

        Each thread is stored in its own savepoint so a failure only leaves that
        thread's messages pending.

        Returns:
            Ids of messages whose results were stored, and the proposal count
        """
        stored_ids: set[int] = set()
        proposal_count = 0

        classifications = ClassificationRepository(session)
        model_used = context.models_used.get("classify")

        # Messages dropped by the keyword filter never reach the classifier
        kept = {m.id for m in context.filtered_messages}
        for message in context.messages:
            if message.id in kept:
                continue
            classifications.upsert(
                message.id,
                batch_id=context.batch_id,
                category=NO_DOC_VALUE,
                conversation_id=None,
                doc_value_reason=FILTERED_REASON,
                rag_search_criteria=None,
                model_used=None,
            )
            stored_ids.add(message.id)

        for thread in context.threads:
            message_ids = [
                context.filtered_messages[i].id
                for i in thread.message_indices
                if i < len(context.filtered_messages)
            ]
            try:
                with session.begin_nested():
                    proposal_count += self._store_thread(
                        session, context, thread, message_ids, model_used
                    )
            except Exception as e:
                logger.error(f"Failed to store results for thread {thread.id}: {e}", exc_info=True)
                continue
            stored_ids.update(message_ids)

        return stored_ids, proposal_count

    def _store_thread(
        self,
        session: Session,
        context: PipelineContext,
        thread: ConversationThread,
        message_ids: list[int],
        model_used: Optional[str],
    ) -> int:
        classifications = ClassificationRepository(session)
        for message_id in message_ids:
            classifications.upsert(
                message_id,
                batch_id=context.batch_id,
                category=thread.category,
                conversation_id=thread.id if thread.has_doc_value else None,
                doc_value_reason=thread.doc_value_reason,
                rag_search_criteria=(
                    thread.rag_search_criteria.to_dict() if thread.has_doc_value else None
                ),
                model_used=model_used,
            )

        rag_contexts = RagContextRepository(session)
        if not thread.has_doc_value:
            rag_contexts.upsert(
                thread.id,
                batch_id=context.batch_id,
                retrieved_docs=[],
                total_tokens=0,
                summary=truncate_summary(thread.summary),
                proposals_rejected=True,
                rejection_reason=thread.doc_value_reason or NO_VALUE_REASON,
            )
            return 0

        docs = context.rag_results.get(thread.id, [])
        rejection = context.rejections.get(thread.id)
        rag_contexts.upsert(
            thread.id,
            batch_id=context.batch_id,
            retrieved_docs=[doc.to_metadata() for doc in docs],
            total_tokens=estimate_tokens(docs),
            summary=truncate_summary(thread.summary),
            proposals_rejected=rejection is not None,
            rejection_reason=rejection,
        )

        drafts = context.proposals.get(thread.id, [])
        for draft in drafts:
            self._store_proposal(session, context.batch_id, thread.id, draft)
        return len(drafts)

    def _store_proposal(
        self, session: Session, batch_id: str, conversation_id: str, draft: ProposalDraft
    ) -> None:
        text, format_warnings = post_process(draft.suggested_text, draft.page, draft.update_type)
        warnings = list(draft.warnings)
        for warning in format_warnings:
            if warning not in warnings:
                warnings.append(warning)

        ProposalRepository(session).create(
            conversation_id=conversation_id,
            batch_id=batch_id,
            page=draft.page,
            section=draft.section,
            location=draft.location,
            update_type=draft.update_type,
            raw_suggested_text=draft.raw_suggested_text or None,
            suggested_text=text or draft.suggested_text or None,
            reasoning=draft.reasoning or None,
            source_messages=draft.source_messages or None,
            warnings=warnings,
            model_used=draft.model_used,
        )
