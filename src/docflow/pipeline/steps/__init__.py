"""Pipeline stages and the factory that builds them from step configs."""

from typing import Optional

from docflow.exceptions import ConfigurationError
from docflow.pipeline.config import StepConfig, StepType
from docflow.pipeline.prompts import PromptRegistry
from docflow.pipeline.steps.base import PipelineStep
from docflow.pipeline.steps.classify import BatchClassifyStep
from docflow.pipeline.steps.condense import LengthReduceStep
from docflow.pipeline.steps.enrich import RagEnrichStep
from docflow.pipeline.steps.filter import KeywordFilterStep
from docflow.pipeline.steps.generate import ProposalGenerateStep
from docflow.pipeline.steps.review import RulesetReviewStep
from docflow.pipeline.steps.validate import ContentValidateStep

STEP_CLASSES: dict[StepType, type[PipelineStep]] = {
    StepType.FILTER: KeywordFilterStep,
    StepType.CLASSIFY: BatchClassifyStep,
    StepType.ENRICH: RagEnrichStep,
    StepType.GENERATE: ProposalGenerateStep,
    StepType.REVIEW: RulesetReviewStep,
    StepType.VALIDATE: ContentValidateStep,
    StepType.CONDENSE: LengthReduceStep,
}


def create_step(
    config: StepConfig,
    prompts: Optional[PromptRegistry] = None,
    max_workers: int = 4,
) -> PipelineStep:
    """Instantiate the stage class registered for ``config.step_type``."""
    step_class = STEP_CLASSES.get(config.step_type)
    if step_class is None:
        raise ConfigurationError(f"No stage registered for step type {config.step_type}")
    return step_class(config, prompts=prompts, max_workers=max_workers)


__all__ = [
    "BatchClassifyStep",
    "ContentValidateStep",
    "KeywordFilterStep",
    "LengthReduceStep",
    "PipelineStep",
    "ProposalGenerateStep",
    "RagEnrichStep",
    "RulesetReviewStep",
    "STEP_CLASSES",
    "create_step",
]
