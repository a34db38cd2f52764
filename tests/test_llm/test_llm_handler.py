"""Tests for the cache-first LLM handler."""

from unittest.mock import Mock

import pytest

from docflow.exceptions import LLMResponseError
from docflow.llm.cache import CachePurpose, LLMCache
from docflow.llm.handler import LLMHandler, parse_json_response
from docflow.models.pipeline import PipelineMetrics


class TestParseJsonResponse:
    """Tests for parse_json_response."""

    def test_plain_json(self):
        assert parse_json_response('{"a": 1}') == {"a": 1}

    def test_code_fenced_json(self):
        assert parse_json_response('```json\n{"a": 1}\n```') == {"a": 1}

    def test_json_surrounded_by_prose(self):
        assert parse_json_response('Here you go: {"a": [1, 2]} hope it helps') == {"a": [1, 2]}

    def test_not_json_raises(self):
        with pytest.raises(LLMResponseError):
            parse_json_response("no json here")

    def test_array_raises(self):
        """Test that a top-level array is rejected."""
        with pytest.raises(LLMResponseError):
            parse_json_response("[1, 2, 3]")


class TestLLMHandler:
    """Tests for LLMHandler."""

    def test_miss_calls_provider_and_caches(
        self, llm_handler: LLMHandler, mock_provider: Mock, memory_cache: LLMCache, make_response
    ):
        """Test that a cache miss calls the model and stores the response."""
        mock_provider.complete.return_value = make_response({"ok": True})

        data, result = llm_handler.request_json("system", "user", purpose=CachePurpose.REVIEW)

        assert data == {"ok": True}
        assert result.cached is False
        assert result.tokens_used == 30
        assert mock_provider.complete.call_count == 1
        assert memory_cache.stats()["review"].count == 1

    def test_hit_skips_provider(
        self, llm_handler: LLMHandler, mock_provider: Mock, make_response
    ):
        """Test that a repeated request is answered from the cache."""
        mock_provider.complete.return_value = make_response({"ok": True})

        llm_handler.request_json("system", "user", purpose=CachePurpose.GENERATION)
        data, result = llm_handler.request_json("system", "user", purpose=CachePurpose.GENERATION)

        assert data == {"ok": True}
        assert result.cached is True
        assert mock_provider.complete.call_count == 1

    def test_different_model_is_a_different_key(
        self, llm_handler: LLMHandler, mock_provider: Mock
    ):
        llm_handler.request_text("system", "user", model="model-a")
        llm_handler.request_text("system", "user", model="model-b")

        assert mock_provider.complete.call_count == 2

    def test_without_cache_always_calls_provider(self, mock_provider: Mock):
        handler = LLMHandler(mock_provider, cache=None)

        handler.request_text("system", "user")
        handler.request_text("system", "user")

        assert mock_provider.complete.call_count == 2

    def test_metrics_recorded(self, llm_handler: LLMHandler):
        """Test that calls, tokens and cache hits are counted."""
        metrics = PipelineMetrics()

        llm_handler.request_text("system", "user", metrics=metrics)
        llm_handler.request_text("system", "user", metrics=metrics)

        assert metrics.llm_calls == 1
        assert metrics.llm_tokens_used == 30
        assert metrics.cache_misses == 1
        assert metrics.cache_hits == 1

    def test_provider_error_propagates_and_is_not_cached(
        self, llm_handler: LLMHandler, mock_provider: Mock, memory_cache: LLMCache
    ):
        mock_provider.complete.side_effect = RuntimeError("rate limited")

        with pytest.raises(RuntimeError):
            llm_handler.request_text("system", "user")
        assert memory_cache.stats()["general"].count == 0

    def test_json_schema_passed_to_provider(self, llm_handler: LLMHandler, mock_provider: Mock):
        schema = {"type": "object", "properties": {"x": {"type": "string"}}}

        llm_handler.request_json("system", "user", json_schema=schema)

        assert mock_provider.complete.call_args.kwargs["json_schema"] == schema

    def test_unparseable_response_not_cached(
        self, llm_handler: LLMHandler, mock_provider: Mock, memory_cache: LLMCache, make_response
    ):
        """Test that re-running a request after bad JSON asks the model again."""
        mock_provider.complete.side_effect = [
            make_response("sorry, I cannot help"),
            make_response({"ok": True}),
        ]

        with pytest.raises(LLMResponseError):
            llm_handler.request_json("system", "user", purpose=CachePurpose.GENERATION)
        assert memory_cache.stats()["generation"].count == 0

        data, result = llm_handler.request_json("system", "user", purpose=CachePurpose.GENERATION)

        assert data == {"ok": True}
        assert result.cached is False
        assert mock_provider.complete.call_count == 2
        assert memory_cache.stats()["generation"].count == 1

    def test_truncated_response_not_cached(
        self, llm_handler: LLMHandler, mock_provider: Mock, memory_cache: LLMCache, make_response
    ):
        response = make_response({"ok": True})
        response.finish_reason = "length"
        mock_provider.complete.return_value = response

        data, result = llm_handler.request_json("system", "user")

        assert data == {"ok": True}
        assert response.truncated
        assert memory_cache.stats()["general"].count == 0


class TestLLMResponse:
    @pytest.mark.parametrize(
        "finish_reason,truncated",
        [("stop", False), ("end_turn", False), ("length", True), ("max_tokens", True)],
    )
    def test_truncated(self, make_response, finish_reason, truncated):
        response = make_response("text")
        response.finish_reason = finish_reason

        assert response.truncated is truncated
