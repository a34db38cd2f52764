"""Proposal generation: one LLM call per documentation-worthy thread."""

import logging
import re
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from docflow.exceptions import LLMResponseError
from docflow.llm.cache import CachePurpose
from docflow.models.db import UpdateType
from docflow.models.pipeline import ConversationThread, ProposalDraft, RagDocument
from docflow.pipeline.config import StepType
from docflow.pipeline.context import PipelineContext
from docflow.pipeline.steps.base import PipelineStep

logger = logging.getLogger(__name__)

GENERATION_SCHEMA = {
    "type": "object",
    "properties": {
        "proposals": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "updateType": {"type": "string", "enum": [t.value for t in UpdateType]},
                    "page": {"type": "string"},
                    "section": {"type": "string"},
                    "suggestedText": {"type": "string"},
                    "reasoning": {"type": "string"},
                    "sourceMessages": {"type": "array", "items": {"type": "integer"}},
                },
                "required": ["updateType", "page"],
            },
        },
        "proposalsRejected": {"type": "boolean"},
        "rejectionReason": {"type": "string"},
    },
    "required": ["proposals"],
}


class GeneratedProposal(BaseModel):
    """One proposal as returned by the model."""

    model_config = ConfigDict(populate_by_name=True)

    update_type: UpdateType = Field(alias="updateType")
    page: str = Field(min_length=1)
    section: Optional[str] = None
    suggested_text: Optional[str] = Field(default=None, alias="suggestedText")
    reasoning: str = ""
    source_messages: Optional[list[int]] = Field(default=None, alias="sourceMessages")


def format_rag_docs(docs: list[RagDocument]) -> str:
    if not docs:
        return "(No relevant documentation found)"
    return "\n\n---\n\n".join(
        f"[DOC {i}] {doc.title}\nPath: {doc.file_path}\nSimilarity: {doc.similarity:.3f}\n\n{doc.content}"
        for i, doc in enumerate(docs, start=1)
    )


# Structural edits need the thread itself to ask for them.
STRUCTURAL_TRIGGER = re.compile(
    r"\b(?:new|add(?:ing)?|create|missing|remov(?:e|ing)|delet(?:e|ing)|obsolete)\s+"
    r"(?:(?:a|an|the)\s+)?(?:new\s+)?(?:section|page)s?\b",
    re.IGNORECASE,
)


def requests_structural_change(summary: str) -> bool:
    """True when a thread summary explicitly asks to add or remove a section."""
    return bool(STRUCTURAL_TRIGGER.search(summary or ""))


def constrain_update_type(
    item: GeneratedProposal, summary: str
) -> tuple[Optional[UpdateType], Optional[str]]:
    """
    Update type a proposal may keep for its thread.

    Without a structural trigger in the summary an INSERT becomes an UPDATE
    and a DELETE is dropped.

    Returns:
        The allowed update type (None to drop the proposal) and a warning
    """
    if item.update_type not in (UpdateType.INSERT, UpdateType.DELETE):
        return item.update_type, None
    if requests_structural_change(summary):
        return item.update_type, None
    if item.update_type == UpdateType.DELETE:
        return None, None
    return UpdateType.UPDATE, "INSERT changed to UPDATE: thread does not ask for a new section"


def parse_proposals(data: dict) -> list[GeneratedProposal]:
    """Validate the model's proposal list, dropping malformed entries.

    Raises:
        LLMResponseError: If the response has no proposal list at all
    """
    raw = data.get("proposals")
    if not isinstance(raw, list):
        raise LLMResponseError("Generation response has no proposals list")

    proposals = []
    for item in raw:
        try:
            proposals.append(GeneratedProposal.model_validate(item))
        except ValidationError as e:
            logger.warning(f"Dropping malformed proposal: {e.errors()[0]['msg']}")
    return proposals


class ProposalGenerateStep(PipelineStep):
    step_type = StepType.GENERATE

    def input_count(self, context: PipelineContext) -> int:
        return len(context.valuable_threads)

    def execute(self, context: PipelineContext) -> int:
        llm = self.require_llm(context)
        per_thread_limit = int(self.option("max_proposals_per_thread", 5))
        batch_limit = context.domain_config.security.max_proposals_per_batch
        block_patterns = [
            re.compile(p, re.IGNORECASE) for p in context.domain_config.security.block_patterns
        ]
        guidelines = context.ruleset.prompt_guidelines() if context.ruleset else ""
        domain = context.domain_config.context

        def generate(thread: ConversationThread) -> list[ProposalDraft]:
            thread_messages = [
                (i, context.filtered_messages[i])
                for i in thread.message_indices
                if i < len(context.filtered_messages)
            ]
            prompt = self.prompts.render(
                self.option("prompt_id", "changeset-generation"),
                {
                    "project_name": domain.project_name,
                    "domain": domain.domain,
                    "target_audience": domain.target_audience,
                    "documentation_purpose": domain.documentation_purpose,
                    "max_proposals": per_thread_limit,
                    "tenant_guidelines": guidelines,
                    "category": thread.category,
                    "thread_summary": thread.summary,
                    "messages": "\n\n".join(m.render(i) for i, m in thread_messages)
                    or "(No messages)",
                    "rag_docs": format_rag_docs(context.rag_results.get(thread.id, [])),
                },
            )

            try:
                data, result = llm.request_json(
                    prompt.system,
                    prompt.user,
                    purpose=CachePurpose.GENERATION,
                    json_schema=GENERATION_SCHEMA,
                    model=self.option("model", None),
                    temperature=self.option("temperature", 0.4),
                    max_tokens=self.option("max_tokens", 8192),
                    metrics=context.metrics,
                )
                self.record_prompt(
                    f"Generate: {thread.summary[:60] or thread.id}",
                    prompt.system,
                    prompt.user,
                    result.content,
                    result.cached,
                )
                generated = parse_proposals(data)
            except Exception as e:
                logger.error(f"Proposal generation failed for thread {thread.id}: {e}")
                self.record_prompt(
                    f"Generate: {thread.summary[:60] or thread.id}",
                    prompt.system,
                    prompt.user,
                    f"ERROR: {e}",
                )
                return []

            if data.get("proposalsRejected"):
                context.rejections[thread.id] = str(
                    data.get("rejectionReason") or "No documentation change warranted"
                )
                return []

            message_ids = {i: m.id for i, m in thread_messages}
            drafts = []
            for item in generated:
                if item.update_type == UpdateType.NONE:
                    continue
                update_type, type_warning = constrain_update_type(item, thread.summary)
                if update_type is None:
                    logger.info(
                        f"Dropped {item.update_type.value} for {item.page}: "
                        f"thread {thread.id} does not ask to remove a section"
                    )
                    continue
                text = item.suggested_text or ""
                sources = [
                    message_ids[i] for i in (item.source_messages or []) if i in message_ids
                ] or list(message_ids.values())
                warnings = [
                    f"Blocked pattern detected: {p.pattern}" for p in block_patterns if p.search(text)
                ]
                if type_warning:
                    warnings.append(type_warning)
                drafts.append(
                    ProposalDraft(
                        update_type=update_type,
                        page=item.page,
                        section=item.section,
                        suggested_text=text,
                        raw_suggested_text=text,
                        reasoning=item.reasoning,
                        source_messages=sources,
                        warnings=warnings,
                        model_used=result.model,
                    )
                )
            return drafts[:per_thread_limit]

        threads = context.valuable_threads
        total = 0
        for thread, drafts in zip(threads, self.run_concurrently(threads, generate)):
            remaining = batch_limit - total
            if remaining <= 0:
                logger.warning(f"Reached max proposals per batch ({batch_limit})")
                break
            kept = drafts[:remaining]
            context.proposals[thread.id] = kept
            total += len(kept)

        models = {d.model_used for drafts in context.proposals.values() for d in drafts}
        if models - {None}:
            context.models_used[self.step_type.value] = sorted(models - {None})[0]

        logger.info(f"Generated {total} proposals for {len(threads)} threads")
        return total
