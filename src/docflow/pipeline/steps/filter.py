"""Keyword pre-filter. Pure, no LLM."""

import logging
from typing import Optional

from docflow.models.pipeline import PipelineMessage
from docflow.pipeline.config import KeywordFilter, StepType
from docflow.pipeline.context import PipelineContext
from docflow.pipeline.steps.base import PipelineStep

logger = logging.getLogger(__name__)


def keep_message(message: PipelineMessage, keywords: Optional[KeywordFilter]) -> bool:
    """Exclude keywords win over include keywords; no keywords keeps everything."""
    if keywords is None:
        return True

    if keywords.case_sensitive:
        content = message.content
        exclude, include = keywords.exclude, keywords.include
    else:
        content = message.content.lower()
        exclude = [k.lower() for k in keywords.exclude]
        include = [k.lower() for k in keywords.include]

    if any(k in content for k in exclude):
        return False
    if include:
        return any(k in content for k in include)
    return True


class KeywordFilterStep(PipelineStep):
    step_type = StepType.FILTER

    def input_count(self, context: PipelineContext) -> int:
        return len(context.messages)

    def execute(self, context: PipelineContext) -> int:
        keywords = context.domain_config.keywords
        context.filtered_messages = [m for m in context.messages if keep_message(m, keywords)]

        dropped = len(context.messages) - len(context.filtered_messages)
        if dropped:
            logger.info(f"Keyword filter dropped {dropped} of {len(context.messages)} messages")
        return len(context.filtered_messages)
