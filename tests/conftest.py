"""
Pytest configuration and fixtures for docflow tests.

This module provides shared fixtures for testing database models, repositories,
the pipeline and the services built on them.
"""

import json
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Callable, Generator, Optional
from unittest.mock import Mock

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from docflow.llm.cache import LLMCache
from docflow.llm.handler import LLMHandler
from docflow.llm.providers.base import LLMProvider, LLMResponse
from docflow.llm.storage import InMemoryStorage
from docflow.models.db import (
    Base,
    DocProposal,
    Message,
    ProcessingStatus,
    ProposalStatus,
    UpdateType,
)

BASE_TIME = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture(scope="session")
def test_engine():
    """Create a test database engine using SQLite in-memory."""
    from sqlalchemy import JSON, event
    from sqlalchemy.dialects import postgresql

    # Replace JSONB with JSON for SQLite
    @event.listens_for(Base.metadata, "before_create")
    def _set_json_type(target, connection, **kw):
        for table in target.tables.values():
            for column in table.columns:
                if isinstance(column.type, postgresql.JSONB):
                    column.type = JSON()

    engine = create_engine(
        "sqlite:///:memory:",
        echo=False,
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture(scope="function")
def db_session(test_engine) -> Generator[Session, None, None]:
    """
    Create a new database session for a test.

    Each test gets a fresh session with a transaction that is rolled back
    after the test completes, ensuring test isolation.
    """
    connection = test_engine.connect()
    transaction = connection.begin()
    session = sessionmaker(bind=connection)()

    yield session

    session.close()
    transaction.rollback()
    connection.close()


@pytest.fixture
def session_factory(db_session: Session) -> Callable:
    """Session factory for the processor that reuses the test session."""

    @contextmanager
    def factory():
        yield db_session
        db_session.flush()

    return factory


@pytest.fixture
def make_message(db_session: Session) -> Callable[..., Message]:
    """Factory for stored messages, one minute apart by default."""
    counter = {"n": 0}

    def factory(
        content: str = "How do I configure the node?",
        stream_id: str = "community",
        timestamp: datetime | None = None,
        status: ProcessingStatus = ProcessingStatus.PENDING,
        author: str = "alice",
    ) -> Message:
        n = counter["n"]
        counter["n"] += 1
        message = Message(
            stream_id=stream_id,
            message_id=f"msg-{n}",
            author=author,
            channel="general",
            content=content,
            timestamp=timestamp or BASE_TIME + timedelta(minutes=n),
            processing_status=status,
        )
        db_session.add(message)
        db_session.flush()
        return message

    return factory


@pytest.fixture
def make_proposal(db_session: Session) -> Callable[..., DocProposal]:
    """Factory for stored proposals."""

    def factory(
        page: str = "docs/guide.md",
        status: ProposalStatus = ProposalStatus.PENDING,
        conversation_id: str = "community_1-thread-0",
        update_type: UpdateType = UpdateType.UPDATE,
        suggested_text: str = "Updated text.",
        **fields,
    ) -> DocProposal:
        proposal = DocProposal(
            conversation_id=conversation_id,
            page=page,
            update_type=update_type,
            suggested_text=suggested_text,
            raw_suggested_text=fields.pop("raw_suggested_text", suggested_text),
            status=status,
            warnings=[],
            **fields,
        )
        db_session.add(proposal)
        db_session.flush()
        return proposal

    return factory


def llm_response(content: str | dict, model: str = "test-model") -> LLMResponse:
    """Build a provider response; dicts are serialized as JSON."""
    if isinstance(content, dict):
        content = json.dumps(content)
    return LLMResponse(
        content=content,
        prompt_tokens=10,
        completion_tokens=20,
        total_tokens=30,
        finish_reason="stop",
        model=model,
        duration_ms=5.0,
    )


@pytest.fixture
def mock_provider() -> Mock:
    """Mock LLM provider returning an empty JSON object unless configured."""
    provider = Mock(spec=LLMProvider)
    provider.provider_name = "openai"
    provider.model_name = "test-model"
    provider.complete.return_value = llm_response({})
    return provider


@pytest.fixture
def memory_cache() -> LLMCache:
    return LLMCache(InMemoryStorage())


@pytest.fixture
def llm_handler(mock_provider: Mock, memory_cache: LLMCache) -> LLMHandler:
    return LLMHandler(mock_provider, memory_cache)


@pytest.fixture
def make_response() -> Callable[..., LLMResponse]:
    return llm_response


@pytest.fixture
def llm_dispatch(mock_provider: Mock) -> Callable[..., Mock]:
    """Answer each pipeline stage from the properties of the requested JSON schema."""

    def configure(
        classification: Optional[dict] = None,
        generation: Optional[dict] = None,
        condensed: Optional[str] = None,
    ) -> Mock:
        def complete(**kwargs):
            properties = (kwargs.get("json_schema") or {}).get("properties", {})
            if "threads" in properties:
                return llm_response(classification or {"threads": []})
            if "proposals" in properties:
                return llm_response(generation or {"proposals": []})
            if "condensedContent" in properties:
                return llm_response({"condensedContent": condensed or ""})
            raise AssertionError(f"Unexpected LLM request: {kwargs}")

        mock_provider.complete.side_effect = complete
        return mock_provider

    return configure
