"""
Pipeline orchestrator.

Runs the enabled stages of a pipeline config strictly in order against one
``PipelineContext``. Stages with no input are skipped, every stage leaves a
``StepLog``, and a failing stage aborts the rest of the run unless the config
says otherwise. Partial results stay on the context.
"""

import logging
import time
from typing import Optional

from docflow.models.pipeline import PipelineError, StepLog
from docflow.pipeline.config import DEFAULT_PIPELINE_CONFIG, PipelineConfig
from docflow.pipeline.context import PipelineContext
from docflow.pipeline.prompts import PromptRegistry
from docflow.pipeline.steps import PipelineStep, create_step
from docflow.utils.time import utc_now

logger = logging.getLogger(__name__)


class PipelineOrchestrator:
    """Builds the stages once and executes them per batch."""

    def __init__(
        self,
        config: PipelineConfig = DEFAULT_PIPELINE_CONFIG,
        prompts: Optional[PromptRegistry] = None,
        max_workers: int = 4,
    ):
        self.config = config
        self.prompts = prompts or PromptRegistry()
        self.steps: list[PipelineStep] = [
            create_step(step_config, self.prompts, max_workers)
            for step_config in config.enabled_steps()
        ]

    def run(self, context: PipelineContext) -> PipelineContext:
        """Execute every enabled stage against ``context`` and return it."""
        if not context.filtered_messages:
            context.filtered_messages = list(context.messages)

        run_start = time.perf_counter()
        logger.info(
            f"Running pipeline {self.config.pipeline_id} on batch {context.batch_id} "
            f"({len(context.messages)} messages, {len(self.steps)} steps)"
        )

        for step in self.steps:
            step_type = step.step_type.value
            input_count = step.input_count(context)
            if input_count == 0:
                logger.info(f"Skipping {step.step_id}: no input")
                context.step_logs.append(
                    StepLog(step_id=step.step_id, step_type=step_type, status="skipped")
                )
                continue

            log = StepLog(
                step_id=step.step_id,
                step_type=step_type,
                status="completed",
                input_count=input_count,
            )
            step_start = time.perf_counter()
            try:
                log.output_count = step.execute(context)
            except Exception as e:
                logger.error(f"Step {step.step_id} failed: {e}", exc_info=True)
                log.status = "failed"
                log.error = str(e)
                context.errors.append(
                    PipelineError(step_id=step.step_id, message=str(e), timestamp=utc_now())
                )
            finally:
                duration_ms = (time.perf_counter() - step_start) * 1000
                log.duration_ms = duration_ms
                log.prompts = step.take_prompt_log()
                context.metrics.step_durations[step.step_id] = duration_ms
                context.step_logs.append(log)

            logger.debug(
                f"{step.step_id}: {log.status}, {log.input_count} in, "
                f"{log.output_count} out, {log.duration_ms:.0f}ms"
            )
            if log.status == "failed" and self.config.stop_on_error:
                logger.warning(f"Aborting pipeline after failed step {step.step_id}")
                break

        context.metrics.total_duration_ms = (time.perf_counter() - run_start) * 1000
        logger.info(
            f"Pipeline finished for batch {context.batch_id}: "
            f"{len(context.threads)} threads, {context.proposal_count()} proposals, "
            f"{len(context.errors)} errors in {context.metrics.total_duration_ms:.0f}ms"
        )
        return context
