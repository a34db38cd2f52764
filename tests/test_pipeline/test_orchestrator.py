"""Tests for the pipeline orchestrator running the real stages."""

from datetime import datetime, timedelta, timezone
from unittest.mock import Mock

import pytest

from docflow.llm.handler import LLMHandler
from docflow.models.pipeline import PipelineMessage, RagDocument
from docflow.pipeline.config import (
    DEFAULT_DOMAIN_CONFIG,
    DEFAULT_PIPELINE_CONFIG,
    KeywordFilter,
    PipelineConfig,
    StepConfig,
    StepType,
)
from docflow.pipeline.context import PipelineContext
from docflow.pipeline.orchestrator import PipelineOrchestrator
from docflow.retrieval import DocumentSearch
from docflow.ruleset import parse_ruleset

NOW = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)

CLASSIFICATION = {
    "threads": [
        {
            "category": "troubleshooting",
            "messages": [0, 1],
            "summary": "Node stops syncing when the disk is full",
            "docValueReason": "Common failure without documentation",
            "ragSearchCriteria": {
                "keywords": ["sync", "disk"],
                "semanticQuery": "node sync fails disk full",
            },
        },
        {"category": "no-doc-value", "messages": [2], "summary": "Thanks"},
    ]
}

GENERATION = {
    "proposals": [
        {
            "updateType": "UPDATE",
            "page": "docs/troubleshooting.md",
            "section": "Sync issues",
            "suggestedText": "Free up disk space before restarting the sync.",
            "reasoning": "Users hit this repeatedly",
            "sourceMessages": [0, 1],
        }
    ]
}


def _messages() -> list[PipelineMessage]:
    contents = [
        "My node stopped syncing at block 1200",
        "Check free disk space, a full disk stops the sync",
        "thanks, that fixed it",
    ]
    return [
        PipelineMessage(
            id=101 + i, author="alice", content=c, timestamp=NOW + timedelta(minutes=i)
        )
        for i, c in enumerate(contents)
    ]


@pytest.fixture
def dispatch(llm_dispatch):
    def configure(classification=CLASSIFICATION, generation=GENERATION):
        return llm_dispatch(classification=classification, generation=generation)

    return configure


@pytest.fixture
def rag() -> Mock:
    search = Mock(spec=DocumentSearch)
    search.search.return_value = [
        RagDocument(
            file_path="docs/troubleshooting.md",
            title="Troubleshooting",
            content="# Troubleshooting\n\nRestart the node when it stalls.",
            similarity=0.9,
        ),
        RagDocument(file_path="docs/intro.md", title="Intro", content="Hello", similarity=0.4),
    ]
    return search


def _context(llm: LLMHandler, rag=None, **kwargs) -> PipelineContext:
    return PipelineContext(
        batch_id="community_1",
        stream_id="community",
        messages=_messages(),
        llm=llm,
        rag=rag,
        **kwargs,
    )


def _statuses(context: PipelineContext) -> dict[str, str]:
    return {log.step_id: log.status for log in context.step_logs}


class TestPipelineOrchestrator:
    """Tests for PipelineOrchestrator."""

    def test_full_run(self, llm_handler: LLMHandler, dispatch, rag: Mock):
        """Test that a batch flows from messages to proposals."""
        dispatch()
        context = PipelineOrchestrator(max_workers=1).run(_context(llm_handler, rag))

        assert [t.id for t in context.threads] == [
            "community_1-thread-0",
            "community_1-thread-1",
        ]
        assert [d.file_path for d in context.rag_results["community_1-thread-0"]] == [
            "docs/troubleshooting.md"
        ]
        assert "community_1-thread-1" not in context.rag_results

        drafts = context.proposals["community_1-thread-0"]
        assert len(drafts) == 1
        assert drafts[0].page == "docs/troubleshooting.md"
        assert drafts[0].source_messages == [101, 102]
        assert drafts[0].model_used == "test-model"
        assert context.errors == []

        assert _statuses(context) == {
            "keyword-filter": "completed",
            "batch-classify": "completed",
            "rag-enrich": "completed",
            "proposal-generate": "completed",
            "ruleset-review": "skipped",
            "content-validate": "completed",
            "length-reduce": "completed",
        }
        rag.search.assert_called_once_with("node sync fails disk full", 10)

    def test_metrics_and_logs(self, llm_handler: LLMHandler, dispatch, rag: Mock):
        dispatch()
        context = PipelineOrchestrator(max_workers=1).run(_context(llm_handler, rag))

        assert context.metrics.llm_calls == 2
        assert context.metrics.llm_tokens_used == 60
        assert context.models_used == {"classify": "test-model", "generate": "test-model"}
        classify_log = next(log for log in context.step_logs if log.step_id == "batch-classify")
        assert classify_log.input_count == 3
        assert classify_log.output_count == 2
        assert len(classify_log.prompts) == 1
        assert "[1] " in classify_log.prompts[0].user_prompt

    def test_second_run_served_from_cache(self, llm_handler: LLMHandler, dispatch, rag: Mock):
        provider = dispatch()
        orchestrator = PipelineOrchestrator(max_workers=1)

        orchestrator.run(_context(llm_handler, rag))
        context = orchestrator.run(_context(llm_handler, rag))

        assert provider.complete.call_count == 2
        assert context.metrics.cache_hits == 2
        assert context.proposal_count() == 1

    def test_no_valuable_threads_skips_later_stages(
        self, llm_handler: LLMHandler, dispatch, rag: Mock
    ):
        """Test that stages with no input are skipped and logged."""
        dispatch(classification={"threads": [{"category": "no-doc-value", "messages": [0, 1, 2]}]})

        context = PipelineOrchestrator(max_workers=1).run(_context(llm_handler, rag))

        statuses = _statuses(context)
        assert statuses["batch-classify"] == "completed"
        for step_id in ("rag-enrich", "proposal-generate", "content-validate", "length-reduce"):
            assert statuses[step_id] == "skipped"
        assert context.proposals == {}
        rag.search.assert_not_called()

    def test_keyword_filter_drops_all_messages(
        self, llm_handler: LLMHandler, mock_provider: Mock
    ):
        domain = DEFAULT_DOMAIN_CONFIG.model_copy(
            update={"keywords": KeywordFilter(include=["kubernetes"])}
        )

        context = PipelineOrchestrator().run(_context(llm_handler, domain_config=domain))

        assert context.filtered_messages == []
        assert _statuses(context)["batch-classify"] == "skipped"
        mock_provider.complete.assert_not_called()

    def test_failed_step_stops_pipeline(self, llm_handler: LLMHandler, mock_provider: Mock):
        """Test that a failing stage aborts the remaining stages."""
        mock_provider.complete.side_effect = RuntimeError("provider unavailable")

        context = PipelineOrchestrator().run(_context(llm_handler))

        assert [log.step_id for log in context.step_logs] == ["keyword-filter", "batch-classify"]
        assert context.step_logs[-1].status == "failed"
        assert context.step_logs[-1].error == "provider unavailable"
        assert len(context.errors) == 1
        assert context.errors[0].step_id == "batch-classify"

    def test_failed_step_continues_when_configured(
        self, llm_handler: LLMHandler, mock_provider: Mock
    ):
        mock_provider.complete.side_effect = RuntimeError("provider unavailable")
        config = DEFAULT_PIPELINE_CONFIG.model_copy(update={"stop_on_error": False})

        context = PipelineOrchestrator(config).run(_context(llm_handler))

        assert len(context.step_logs) == len(config.steps)
        assert _statuses(context)["rag-enrich"] == "skipped"

    def test_disabled_steps_not_built(self):
        config = PipelineConfig(
            steps=[
                StepConfig(step_id="keyword-filter", step_type=StepType.FILTER),
                StepConfig(step_id="batch-classify", step_type=StepType.CLASSIFY, enabled=False),
            ]
        )

        assert [s.step_id for s in PipelineOrchestrator(config).steps] == ["keyword-filter"]

    def test_generation_rejection_recorded(self, llm_handler: LLMHandler, dispatch, rag: Mock):
        dispatch(
            generation={
                "proposals": [],
                "proposalsRejected": True,
                "rejectionReason": "Already documented",
            }
        )

        context = PipelineOrchestrator(max_workers=1).run(_context(llm_handler, rag))

        assert context.proposals["community_1-thread-0"] == []
        assert context.rejections == {"community_1-thread-0": "Already documented"}

    def test_ruleset_rejects_proposal(self, llm_handler: LLMHandler, dispatch, rag: Mock):
        dispatch()
        ruleset = parse_ruleset('## REJECTION_RULES\n- Proposals mentioning "disk space"\n')

        context = PipelineOrchestrator(max_workers=1).run(
            _context(llm_handler, rag, ruleset=ruleset)
        )

        assert context.proposals["community_1-thread-0"] == []
        assert context.rejections["community_1-thread-0"] == (
            'Content matches rejection pattern: "disk space"'
        )
        assert _statuses(context)["ruleset-review"] == "completed"
        assert _statuses(context)["content-validate"] == "skipped"

    def test_ruleset_prompt_context_in_generation_prompt(
        self, llm_handler: LLMHandler, dispatch, rag: Mock
    ):
        provider = dispatch()
        ruleset = parse_ruleset("## PROMPT_CONTEXT\n- Always mention the minimum disk size\n")

        PipelineOrchestrator(max_workers=1).run(_context(llm_handler, rag, ruleset=ruleset))

        generation_call = provider.complete.call_args_list[1]
        assert "Always mention the minimum disk size" in generation_call.kwargs["system_prompt"]
