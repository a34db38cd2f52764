"""Content validation: deterministic reformatting of suggested text."""

import logging

from docflow.pipeline.config import StepType
from docflow.pipeline.context import PipelineContext
from docflow.pipeline.steps.base import PipelineStep
from docflow.postprocessing import post_process

logger = logging.getLogger(__name__)


class ContentValidateStep(PipelineStep):
    step_type = StepType.VALIDATE

    def input_count(self, context: PipelineContext) -> int:
        return context.proposal_count()

    def execute(self, context: PipelineContext) -> int:
        changed = 0
        for proposals in context.proposals.values():
            for proposal in proposals:
                text, warnings = post_process(
                    proposal.suggested_text, proposal.page, proposal.update_type
                )
                if text != proposal.suggested_text:
                    changed += 1
                    proposal.suggested_text = text or ""
                for warning in warnings:
                    if warning not in proposal.warnings:
                        proposal.warnings.append(warning)

        logger.info(f"Reformatted {changed} of {context.proposal_count()} proposals")
        return context.proposal_count()
