"""Cache-first LLM request handler shared by every pipeline stage."""

import json
import logging
import re
import threading
from dataclasses import dataclass
from typing import Any, Callable, Optional

from docflow.exceptions import LLMResponseError
from docflow.llm.cache import CachePurpose, LLMCache, create_cache_from_settings
from docflow.llm.llm_logger import llm_logger
from docflow.llm.providers.base import LLMProvider
from docflow.models.pipeline import PipelineMetrics

logger = logging.getLogger(__name__)

_CODE_FENCE = re.compile(r"^```(?:json)?\s*\n?(.*?)\n?```\s*$", re.DOTALL)


@dataclass
class LLMResult:
    """Text returned for one request and where it came from."""

    content: str
    cached: bool
    model: Optional[str] = None
    tokens_used: int = 0
    data: Any = None  # what ``validate`` returned, when one was given


def parse_json_response(content: str) -> dict[str, Any]:
    """Parse a model response into a JSON object.

    Tolerates markdown code fences and leading/trailing prose around the
    object.

    Raises:
        LLMResponseError: If no JSON object can be recovered
    """
    text = content.strip()
    fenced = _CODE_FENCE.match(text)
    if fenced:
        text = fenced.group(1).strip()

    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        start, end = text.find("{"), text.rfind("}")
        if start == -1 or end <= start:
            raise LLMResponseError(f"Response is not JSON: {text[:120]!r}")
        try:
            data = json.loads(text[start : end + 1])
        except json.JSONDecodeError as e:
            raise LLMResponseError(f"Response is not valid JSON: {e}") from e

    if not isinstance(data, dict):
        raise LLMResponseError(f"Expected a JSON object, got {type(data).__name__}")
    return data


class LLMHandler:
    """Routes model requests through the LLM cache.

    A cache hit returns the stored response without contacting the provider.
    On a miss the provider is called and the response stored under the
    request's purpose.
    """

    def __init__(self, provider: LLMProvider, cache: Optional[LLMCache] = None):
        self.provider = provider
        self.cache = cache
        self._metrics_lock = threading.Lock()

    @staticmethod
    def cache_prompt(system_prompt: str, user_prompt: str, model: Optional[str]) -> str:
        """The text hashed for caching: model and both prompts."""
        return f"model:{model or ''}\n---system---\n{system_prompt}\n---user---\n{user_prompt}"

    def request_text(
        self,
        system_prompt: str,
        user_prompt: str,
        purpose: CachePurpose = CachePurpose.GENERAL,
        model: Optional[str] = None,
        temperature: float = 0.3,
        max_tokens: int = 4096,
        json_schema: Optional[dict[str, Any]] = None,
        metrics: Optional[PipelineMetrics] = None,
        message_id: Optional[int] = None,
        validate: Optional[Callable[[str], Any]] = None,
    ) -> LLMResult:
        """Return the model's text for a prompt, from cache when possible.

        Only responses that pass ``validate`` (when given) and were not cut
        off at the token limit are cached, so re-triggering a failed request
        asks the model again.

        Raises:
            Whatever ``validate`` raises for an unusable response
        """
        model_name = model or self.provider.model_name
        cache_prompt = self.cache_prompt(system_prompt, user_prompt, model_name)

        if self.cache is not None:
            entry = self.cache.get(cache_prompt, purpose)
            if entry is not None:
                llm_logger.log_cache_hit(CachePurpose(purpose).value, entry.hash)
                self._record(metrics, cache_hit=True)
                return LLMResult(
                    content=entry.response,
                    cached=True,
                    model=entry.model,
                    tokens_used=0,
                    data=validate(entry.response) if validate else None,
                )

        request_id = llm_logger.log_request(
            CachePurpose(purpose).value, model_name, user_prompt
        )
        try:
            response = self.provider.complete(
                system_prompt=system_prompt,
                user_prompt=user_prompt,
                max_tokens=max_tokens,
                temperature=temperature,
                json_schema=json_schema,
                model=model,
            )
        except Exception as e:
            llm_logger.log_error(request_id, e)
            raise
        llm_logger.log_response(request_id, response)

        self._record(metrics, cache_hit=False, tokens=response.total_tokens)
        logger.debug(
            f"LLM {CachePurpose(purpose).value} call: {response.total_tokens} tokens "
            f"in {response.duration_ms:.0f}ms"
        )

        data = validate(response.content) if validate else None

        if response.truncated:
            logger.warning(
                f"LLM {CachePurpose(purpose).value} response hit the token limit "
                f"({max_tokens}), not caching it"
            )
        elif self.cache is not None:
            self.cache.set(
                cache_prompt,
                response.content,
                purpose,
                model=response.model,
                tokens_used=response.total_tokens,
                message_id=message_id,
            )

        return LLMResult(
            content=response.content,
            cached=False,
            model=response.model,
            tokens_used=response.total_tokens,
            data=data,
        )

    def request_json(
        self,
        system_prompt: str,
        user_prompt: str,
        purpose: CachePurpose = CachePurpose.GENERAL,
        json_schema: Optional[dict[str, Any]] = None,
        **kwargs: Any,
    ) -> tuple[dict[str, Any], LLMResult]:
        """Return the parsed JSON object for a prompt.

        Raises:
            LLMResponseError: If the response is not a JSON object
        """
        result = self.request_text(
            system_prompt,
            user_prompt,
            purpose=purpose,
            json_schema=json_schema or {"type": "object"},
            validate=parse_json_response,
            **kwargs,
        )
        return result.data, result

    def _record(
        self,
        metrics: Optional[PipelineMetrics],
        cache_hit: bool,
        tokens: int = 0,
    ) -> None:
        if metrics is None:
            return
        with self._metrics_lock:
            if cache_hit:
                metrics.cache_hits += 1
            else:
                metrics.cache_misses += 1
                metrics.llm_calls += 1
                metrics.llm_tokens_used += tokens


def create_handler_from_settings(cache: Optional[LLMCache] = None) -> LLMHandler:
    """Provider and cache selected in settings; the cache is skipped when disabled."""
    from docflow.config import settings
    from docflow.llm.providers import create_provider_from_settings

    if not settings.llm_cache_enabled:
        cache = None
    elif cache is None:
        cache = create_cache_from_settings()
    return LLMHandler(create_provider_from_settings(), cache)
