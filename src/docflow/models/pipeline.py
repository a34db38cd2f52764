"""
Pipeline data models.

Run-scoped dataclasses passed between pipeline stages. Only their outcomes are
persisted (see ``docflow.models.db``).
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from docflow.models.db import UpdateType

NO_DOC_VALUE = "no-doc-value"


@dataclass
class PipelineMessage:
    """A message as seen by the pipeline."""

    id: int
    author: str
    content: str
    timestamp: datetime
    channel: Optional[str] = None

    def render(self, index: int | str) -> str:
        """Render as ``[idx] [iso] author: content`` for prompts."""
        return f"[{index}] [{self.timestamp.isoformat()}] {self.author}: {self.content}"


@dataclass
class RagSearchCriteria:
    """What to search for when enriching a thread."""

    keywords: list[str] = field(default_factory=list)
    semantic_query: str = ""

    def to_dict(self) -> dict:
        return {"keywords": self.keywords, "semantic_query": self.semantic_query}


@dataclass
class ConversationThread:
    """A classifier-discovered group of messages about one topic."""

    id: str
    category: str
    message_indices: list[int]
    summary: str = ""
    doc_value_reason: str = ""
    rag_search_criteria: RagSearchCriteria = field(default_factory=RagSearchCriteria)

    @property
    def has_doc_value(self) -> bool:
        return self.category != NO_DOC_VALUE


@dataclass
class RagDocument:
    """A documentation page returned by semantic search."""

    file_path: str
    title: str
    content: str
    similarity: float
    doc_id: Optional[str] = None

    def to_metadata(self) -> dict:
        """Metadata stored with the conversation's RAG context."""
        return {
            "doc_id": self.doc_id,
            "file_path": self.file_path,
            "title": self.title,
            "similarity": self.similarity,
        }


@dataclass
class ProposalDraft:
    """A generated, not yet persisted, documentation change."""

    update_type: UpdateType
    page: str
    suggested_text: str
    raw_suggested_text: str
    section: Optional[str] = None
    reasoning: str = ""
    source_messages: list[int] = field(default_factory=list)
    location: Optional[dict] = None
    warnings: list[str] = field(default_factory=list)
    quality_flags: list[str] = field(default_factory=list)
    model_used: Optional[str] = None


@dataclass
class PromptLogEntry:
    """Rendered prompt and model response kept for debugging."""

    label: str
    system_prompt: str
    user_prompt: str
    response: Optional[str] = None
    cached: bool = False


@dataclass
class StepLog:
    """Execution record of one pipeline stage."""

    step_id: str
    step_type: str
    status: str  # completed, failed, skipped
    duration_ms: float = 0.0
    input_count: int = 0
    output_count: int = 0
    error: Optional[str] = None
    prompts: list[PromptLogEntry] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "step_id": self.step_id,
            "step_type": self.step_type,
            "status": self.status,
            "duration_ms": round(self.duration_ms, 1),
            "input_count": self.input_count,
            "output_count": self.output_count,
            "error": self.error,
            "prompt_count": len(self.prompts),
        }


@dataclass
class PipelineMetrics:
    """Aggregate metrics for one pipeline run."""

    total_duration_ms: float = 0.0
    step_durations: dict[str, float] = field(default_factory=dict)
    llm_calls: int = 0
    llm_tokens_used: int = 0
    cache_hits: int = 0
    cache_misses: int = 0

    def to_dict(self) -> dict:
        return {
            "total_duration_ms": round(self.total_duration_ms, 1),
            "step_durations": {k: round(v, 1) for k, v in self.step_durations.items()},
            "llm_calls": self.llm_calls,
            "llm_tokens_used": self.llm_tokens_used,
            "cache_hits": self.cache_hits,
            "cache_misses": self.cache_misses,
        }


@dataclass
class PipelineError:
    """A stage failure recorded on the context."""

    step_id: str
    message: str
    timestamp: datetime
