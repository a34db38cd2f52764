"""Base class for pipeline stages."""

import logging
import threading
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Iterable, Optional, TypeVar

from docflow.exceptions import ConfigurationError
from docflow.llm.handler import LLMHandler
from docflow.models.pipeline import PromptLogEntry
from docflow.pipeline.config import StepConfig, StepType
from docflow.pipeline.context import PipelineContext
from docflow.pipeline.prompts import PromptRegistry

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


class PipelineStep(ABC):
    """
    One stage of the pipeline.

    Subclasses report how many items they would consume (``input_count``) so
    the orchestrator can skip them, and return how many items they produced
    from ``execute``.
    """

    step_type: StepType

    def __init__(
        self,
        config: StepConfig,
        prompts: Optional[PromptRegistry] = None,
        max_workers: int = 4,
    ):
        self.step_id = config.step_id
        self.config = config.config
        self.prompts = prompts or PromptRegistry()
        self.max_workers = max(1, max_workers)
        self._prompt_log: list[PromptLogEntry] = []
        self._prompt_lock = threading.Lock()

    def option(self, key: str, default: Any) -> Any:
        value = self.config.get(key)
        return default if value is None else value

    @abstractmethod
    def input_count(self, context: PipelineContext) -> int:
        ...

    @abstractmethod
    def execute(self, context: PipelineContext) -> int:
        """Run the stage against the context and return the output count."""
        ...

    def require_llm(self, context: PipelineContext) -> LLMHandler:
        if context.llm is None:
            raise ConfigurationError(f"Step {self.step_id} requires an LLM handler")
        return context.llm

    def record_prompt(
        self,
        label: str,
        system_prompt: str,
        user_prompt: str,
        response: Optional[str] = None,
        cached: bool = False,
    ) -> None:
        with self._prompt_lock:
            self._prompt_log.append(
                PromptLogEntry(label, system_prompt, user_prompt, response, cached)
            )

    def take_prompt_log(self) -> list[PromptLogEntry]:
        with self._prompt_lock:
            entries, self._prompt_log = self._prompt_log, []
        return entries

    def run_concurrently(self, items: Iterable[T], fn: Callable[[T], R]) -> list[R]:
        """Apply ``fn`` to every item on a bounded pool, results in input order."""
        items = list(items)
        if len(items) <= 1 or self.max_workers == 1:
            return [fn(item) for item in items]
        with ThreadPoolExecutor(
            max_workers=min(self.max_workers, len(items)),
            thread_name_prefix=self.step_id,
        ) as executor:
            return list(executor.map(fn, items))
