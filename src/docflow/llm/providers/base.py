"""Provider interface for the generative calls made by pipeline stages."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

# finish reasons reported when output hit the token limit (OpenAI, Anthropic)
TRUNCATED_FINISH_REASONS = frozenset({"length", "max_tokens"})


@dataclass
class LLMResponse:
    """One provider completion with its token accounting.

    ``model`` is the model that actually answered, which is what the cache
    and the stored proposals record. ``raw_response`` keeps the SDK object
    for debugging and is never persisted.
    """

    content: str
    prompt_tokens: int
    completion_tokens: int
    total_tokens: int
    finish_reason: str
    model: str
    duration_ms: float
    raw_response: Any = None

    @property
    def truncated(self) -> bool:
        """True when the output was cut off at ``max_tokens``."""
        return self.finish_reason in TRUNCATED_FINISH_REASONS


class LLMProvider(ABC):
    """A generative model behind the cache-first :class:`LLMHandler`.

    Providers make exactly one attempt per call with a bounded timeout; retry
    is an explicit re-trigger by the operator. Structured output is requested
    through ``json_schema`` in whatever way the SDK supports.
    """

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Settings identifier, ``openai`` or ``anthropic``."""
        ...

    @property
    @abstractmethod
    def model_name(self) -> str:
        """Model used when a call does not override it."""
        ...

    @abstractmethod
    def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        max_tokens: int = 4096,
        temperature: float = 0.3,
        json_schema: dict[str, Any] | None = None,
        model: str | None = None,
    ) -> LLMResponse:
        """Run one completion.

        Args:
            system_prompt: Stage instructions, including tenant guidelines
            user_prompt: Rendered messages, threads or documents
            max_tokens: Output token limit
            temperature: Sampling temperature
            json_schema: Shape the stage will validate the output against
            model: Per-step model override from the pipeline config

        Returns:
            The completion with its token usage
        """
        ...
