"""Ruleset review: reject, rewrite or flag proposals using the tenant ruleset."""

import logging

from docflow.pipeline.config import StepType
from docflow.pipeline.context import PipelineContext
from docflow.pipeline.steps.base import PipelineStep
from docflow.ruleset import build_enrichment, evaluate

logger = logging.getLogger(__name__)


class RulesetReviewStep(PipelineStep):
    step_type = StepType.REVIEW

    def input_count(self, context: PipelineContext) -> int:
        if context.ruleset is None or context.ruleset.is_empty:
            return 0
        return context.proposal_count()

    def execute(self, context: PipelineContext) -> int:
        ruleset = context.ruleset
        rejected = modified = flagged = 0

        for thread_id, proposals in context.proposals.items():
            thread = context.thread_by_id(thread_id)
            docs = context.rag_results.get(thread_id, [])
            kept = []
            reasons = []

            for proposal in proposals:
                other_pending = (
                    context.pending_counter(proposal.page) if context.pending_counter else 0
                )
                message_count = len(proposal.source_messages) or (
                    len(thread.message_indices) if thread else 0
                )
                enrichment = build_enrichment(
                    proposal,
                    docs,
                    other_pending=other_pending,
                    message_count=message_count,
                )
                result = evaluate(ruleset, proposal, enrichment)

                if result.rejected:
                    rejected += 1
                    reasons.append(result.reason)
                    logger.debug(f"Rejected proposal for {proposal.page}: {result.reason}")
                    continue

                if result.modified_text is not None:
                    modified += 1
                    proposal.suggested_text = result.modified_text
                if result.flags:
                    flagged += 1
                    proposal.quality_flags.extend(result.flags)
                for warning in [*result.flags, *result.warnings]:
                    if warning not in proposal.warnings:
                        proposal.warnings.append(warning)
                kept.append(proposal)

            context.proposals[thread_id] = kept
            if reasons:
                context.rejections[thread_id] = "; ".join(reasons)

        logger.info(
            f"Ruleset review: {rejected} rejected, {modified} modified, {flagged} flagged"
        )
        return context.proposal_count()
