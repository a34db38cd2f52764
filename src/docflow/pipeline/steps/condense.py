"""Length reduction: condense proposals longer than their priority tier allows."""

import logging
from dataclasses import dataclass

from docflow.llm.cache import CachePurpose
from docflow.models.db import UpdateType
from docflow.models.pipeline import ProposalDraft
from docflow.pipeline.config import StepType
from docflow.pipeline.context import PipelineContext
from docflow.pipeline.steps.base import PipelineStep

logger = logging.getLogger(__name__)

CONDENSE_SCHEMA = {
    "type": "object",
    "properties": {"condensedContent": {"type": "string"}},
    "required": ["condensedContent"],
}


@dataclass(frozen=True)
class LengthTier:
    min_priority: int
    max_length: int
    target_length: int


DEFAULT_TIERS = [
    LengthTier(min_priority=70, max_length=5000, target_length=3500),
    LengthTier(min_priority=40, max_length=3500, target_length=2500),
    LengthTier(min_priority=0, max_length=2000, target_length=1500),
]
DEFAULT_MAX_LENGTH = 3000
DEFAULT_TARGET_LENGTH = 2000
UNKNOWN_CATEGORY_PRIORITY = 50


def length_limits(priority: int, tiers: list[LengthTier] = DEFAULT_TIERS) -> tuple[int, int]:
    """(max, target) characters for a category priority."""
    for tier in tiers:
        if priority >= tier.min_priority:
            return tier.max_length, tier.target_length
    return DEFAULT_MAX_LENGTH, DEFAULT_TARGET_LENGTH


class LengthReduceStep(PipelineStep):
    step_type = StepType.CONDENSE

    def input_count(self, context: PipelineContext) -> int:
        return context.proposal_count()

    def execute(self, context: PipelineContext) -> int:
        tiers = [LengthTier(**tier) for tier in self.option("priority_tiers", [])] or DEFAULT_TIERS

        work: list[tuple[ProposalDraft, int, int]] = []
        for thread_id, proposals in context.proposals.items():
            thread = context.thread_by_id(thread_id)
            priority = context.domain_config.category_priority(
                thread.category if thread else "", default=UNKNOWN_CATEGORY_PRIORITY
            )
            max_length, target_length = length_limits(priority, tiers)
            for proposal in proposals:
                if proposal.update_type in (UpdateType.DELETE, UpdateType.NONE):
                    continue
                if len(proposal.suggested_text or "") > max_length:
                    work.append((proposal, max_length, target_length))

        if not work:
            return context.proposal_count()
        llm = self.require_llm(context)

        def condense(item: tuple[ProposalDraft, int, int]) -> bool:
            proposal, max_length, target_length = item
            original = proposal.suggested_text
            prompt = self.prompts.render(
                self.option("prompt_id", "content-condense"),
                {
                    "page": proposal.page,
                    "current_length": len(original),
                    "max_length": max_length,
                    "target_length": target_length,
                    "content": original,
                },
            )
            try:
                data, result = llm.request_json(
                    prompt.system,
                    prompt.user,
                    purpose=CachePurpose.CONDENSE,
                    json_schema=CONDENSE_SCHEMA,
                    model=self.option("model", None),
                    temperature=self.option("temperature", 0.3),
                    max_tokens=self.option("max_tokens", 8192),
                    metrics=context.metrics,
                )
                self.record_prompt(
                    f"Condense: {proposal.page}", prompt.system, prompt.user, result.content, result.cached
                )
                condensed = data.get("condensedContent")
                if not isinstance(condensed, str) or not condensed.strip():
                    raise ValueError("empty condensedContent")
            except Exception as e:
                logger.error(f"Failed to condense proposal for {proposal.page}: {e}")
                proposal.warnings.append(f"Length reduction failed: {e}")
                return False

            if len(condensed) >= len(original):
                proposal.warnings.append("Length reduction did not shorten the text")
                return False

            proposal.suggested_text = condensed
            logger.info(f"Condensed {proposal.page}: {len(original)} -> {len(condensed)} chars")
            return True

        condensed_count = sum(self.run_concurrently(work, condense))
        logger.info(
            f"Length reduction: {len(work)} over limit, {condensed_count} condensed"
        )
        return context.proposal_count()
