"""Batch conversation classification: one LLM call groups messages into threads."""

import logging
from typing import Any

from docflow.llm.cache import CachePurpose
from docflow.models.pipeline import (
    NO_DOC_VALUE,
    ConversationThread,
    PipelineMessage,
    RagSearchCriteria,
)
from docflow.pipeline.config import CategoryDefinition, StepType
from docflow.pipeline.context import PipelineContext
from docflow.pipeline.steps.base import PipelineStep

logger = logging.getLogger(__name__)

CLASSIFICATION_SCHEMA = {
    "type": "object",
    "properties": {
        "threads": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "category": {"type": "string"},
                    "messages": {"type": "array", "items": {"type": "integer"}},
                    "summary": {"type": "string"},
                    "docValueReason": {"type": "string"},
                    "ragSearchCriteria": {
                        "type": "object",
                        "properties": {
                            "keywords": {"type": "array", "items": {"type": "string"}},
                            "semanticQuery": {"type": "string"},
                        },
                    },
                },
                "required": ["category", "messages"],
            },
        }
    },
    "required": ["threads"],
}


def format_categories(categories: list[CategoryDefinition]) -> str:
    lines = []
    for category in categories:
        entry = f"- **{category.label}** ({category.id}): {category.description}"
        if category.examples:
            entry += f"\n  Examples: {', '.join(category.examples)}"
        lines.append(entry)
    return "\n".join(lines)


def format_messages(messages: list[PipelineMessage], prefix: str = "") -> str:
    if not messages:
        return "(No messages)"
    return "\n\n".join(m.render(f"{prefix}{i}") for i, m in enumerate(messages))


def _criteria(raw: Any) -> RagSearchCriteria:
    if not isinstance(raw, dict):
        return RagSearchCriteria()
    keywords = raw.get("keywords") or []
    return RagSearchCriteria(
        keywords=[str(k) for k in keywords if isinstance(k, (str, int))],
        semantic_query=str(raw.get("semanticQuery") or ""),
    )


def build_threads(
    batch_id: str, raw_threads: Any, message_count: int
) -> list[ConversationThread]:
    """Turn the model's thread list into validated threads.

    Out-of-range and repeated indices are dropped. Messages left unassigned
    are gathered into a final no-doc-value thread.
    """
    threads: list[ConversationThread] = []
    assigned: set[int] = set()

    for raw in raw_threads if isinstance(raw_threads, list) else []:
        if not isinstance(raw, dict):
            continue
        indices = []
        for index in raw.get("messages") or []:
            if isinstance(index, bool) or not isinstance(index, int):
                continue
            if 0 <= index < message_count and index not in assigned:
                assigned.add(index)
                indices.append(index)
        if not indices:
            continue

        threads.append(
            ConversationThread(
                id=f"{batch_id}-thread-{len(threads)}",
                category=str(raw.get("category") or NO_DOC_VALUE),
                message_indices=indices,
                summary=str(raw.get("summary") or ""),
                doc_value_reason=str(raw.get("docValueReason") or ""),
                rag_search_criteria=_criteria(raw.get("ragSearchCriteria")),
            )
        )

    leftover = [i for i in range(message_count) if i not in assigned]
    if leftover:
        threads.append(
            ConversationThread(
                id=f"{batch_id}-thread-{len(threads)}",
                category=NO_DOC_VALUE,
                message_indices=leftover,
                summary="Messages not assigned to any conversation",
            )
        )
    return threads


class BatchClassifyStep(PipelineStep):
    step_type = StepType.CLASSIFY

    def input_count(self, context: PipelineContext) -> int:
        return len(context.filtered_messages)

    def execute(self, context: PipelineContext) -> int:
        llm = self.require_llm(context)
        domain = context.domain_config

        prompt = self.prompts.render(
            self.option("prompt_id", "thread-classification"),
            {
                "project_name": domain.context.project_name,
                "domain": domain.context.domain,
                "categories": format_categories(domain.categories),
                "messages_to_analyze": format_messages(context.filtered_messages),
                "context_text": format_messages(context.context_messages, prefix="ctx-"),
            },
        )

        data, result = llm.request_json(
            prompt.system,
            prompt.user,
            purpose=CachePurpose.CLASSIFICATION,
            json_schema=CLASSIFICATION_SCHEMA,
            model=self.option("model", None),
            temperature=self.option("temperature", 0.2),
            max_tokens=self.option("max_tokens", 8192),
            metrics=context.metrics,
        )
        self.record_prompt(
            "Classify batch", prompt.system, prompt.user, result.content, result.cached
        )
        if result.model:
            context.models_used[self.step_type.value] = result.model

        context.threads = build_threads(
            context.batch_id, data.get("threads"), len(context.filtered_messages)
        )

        categories = sorted({t.category for t in context.threads})
        logger.info(
            f"Classified {len(context.filtered_messages)} messages into "
            f"{len(context.threads)} threads ({', '.join(categories)})"
        )
        return len(context.threads)
