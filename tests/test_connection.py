"""
Tests for database connection management.
"""

from unittest.mock import MagicMock, patch

import pytest
from sqlalchemy import inspect
from sqlalchemy.orm import Session

from docflow.db.connection import check_connection, db_session, init_db
from docflow.models.db import Base


class TestDbSessionContextManager:
    """Tests for the db_session context manager."""

    def test_commits_on_success(self):
        """Test that db_session commits and closes on normal exit."""
        mock_session = MagicMock(spec=Session)

        with patch("docflow.db.connection.SessionLocal", return_value=mock_session):
            with db_session() as session:
                assert session is mock_session

        mock_session.commit.assert_called_once()
        mock_session.rollback.assert_not_called()
        mock_session.close.assert_called_once()

    def test_rollback_on_exception(self):
        """Test that db_session rolls back and re-raises on error."""
        mock_session = MagicMock(spec=Session)

        with patch("docflow.db.connection.SessionLocal", return_value=mock_session):
            with pytest.raises(ValueError):
                with db_session():
                    raise ValueError("Test error")

        mock_session.rollback.assert_called_once()
        mock_session.commit.assert_not_called()
        mock_session.close.assert_called_once()


class TestInitDb:
    """Tests for init_db function."""

    def test_init_db_creates_tables(self, test_engine):
        """Test that init_db creates all tables."""
        Base.metadata.drop_all(bind=test_engine)

        with patch("docflow.db.connection.engine", test_engine):
            init_db()

        tables = set(inspect(test_engine).get_table_names())
        assert {
            "messages",
            "message_classifications",
            "conversation_rag_contexts",
            "doc_proposals",
            "changeset_batches",
            "processing_watermarks",
        }.issubset(tables)


class TestCheckConnection:
    """Tests for check_connection function."""

    def test_returns_true_on_success(self):
        with patch("docflow.db.connection.db_session") as mock_db_session:
            mock_session = MagicMock()
            mock_db_session.return_value.__enter__.return_value = mock_session

            assert check_connection() is True
            mock_session.execute.assert_called_once()

    def test_returns_false_on_failure(self):
        with patch("docflow.db.connection.db_session") as mock_db_session:
            mock_db_session.return_value.__enter__.side_effect = Exception("Connection failed")

            assert check_connection() is False
