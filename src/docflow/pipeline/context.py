"""Shared mutable state threaded through one pipeline run."""

from dataclasses import dataclass, field
from typing import Callable, Optional

from docflow.llm.handler import LLMHandler
from docflow.models.pipeline import (
    ConversationThread,
    PipelineError,
    PipelineMessage,
    PipelineMetrics,
    ProposalDraft,
    RagDocument,
    StepLog,
)
from docflow.pipeline.config import DEFAULT_DOMAIN_CONFIG, DomainConfig
from docflow.retrieval import DocumentSearch
from docflow.ruleset.models import Ruleset


@dataclass
class PipelineContext:
    """Everything a stage may read or write during a run.

    Stages consume and produce the typed fields in order:
    ``messages`` → ``filtered_messages`` → ``threads`` → ``rag_results``
    → ``proposals``.
    """

    batch_id: str
    stream_id: str
    messages: list[PipelineMessage]
    llm: Optional[LLMHandler] = None
    rag: Optional[DocumentSearch] = None
    instance_id: str = "default"
    context_messages: list[PipelineMessage] = field(default_factory=list)
    domain_config: DomainConfig = field(default_factory=lambda: DEFAULT_DOMAIN_CONFIG)
    ruleset: Optional[Ruleset] = None
    # page -> number of visible pending proposals already stored for it
    pending_counter: Optional[Callable[[str], int]] = None

    filtered_messages: list[PipelineMessage] = field(default_factory=list)
    threads: list[ConversationThread] = field(default_factory=list)
    rag_results: dict[str, list[RagDocument]] = field(default_factory=dict)
    proposals: dict[str, list[ProposalDraft]] = field(default_factory=dict)
    rejections: dict[str, str] = field(default_factory=dict)  # thread id -> reason
    models_used: dict[str, str] = field(default_factory=dict)  # step type -> model

    metrics: PipelineMetrics = field(default_factory=PipelineMetrics)
    errors: list[PipelineError] = field(default_factory=list)
    step_logs: list[StepLog] = field(default_factory=list)

    @property
    def valuable_threads(self) -> list[ConversationThread]:
        return [t for t in self.threads if t.has_doc_value]

    def proposal_count(self) -> int:
        return sum(len(items) for items in self.proposals.values())

    def thread_by_id(self, thread_id: str) -> Optional[ConversationThread]:
        for thread in self.threads:
            if thread.id == thread_id:
                return thread
        return None
