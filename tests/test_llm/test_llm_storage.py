"""Tests for LLM cache storage backends."""

import typing
from pathlib import Path

import pytest

from docflow.llm.storage import InMemoryStorage, LocalFileStorage, StorageBackend


@pytest.fixture
def file_storage(tmp_path: Path) -> LocalFileStorage:
    return LocalFileStorage(tmp_path / "llm-cache")


class TestLocalFileStorage:
    """Tests for LocalFileStorage."""

    def test_creates_base_directory(self, tmp_path: Path):
        """Test that the base directory is created on init."""
        base = tmp_path / "nested" / "cache"
        LocalFileStorage(base)

        assert base.is_dir()

    def test_set_then_get(self, file_storage: LocalFileStorage):
        """Test that a stored payload is read back."""
        file_storage.set("classification", "abc123", '{"x": 1}')

        assert file_storage.get("classification", "abc123") == '{"x": 1}'

    def test_get_missing_returns_none(self, file_storage: LocalFileStorage):
        """Test that an absent key returns None."""
        assert file_storage.get("classification", "missing") is None

    def test_files_laid_out_by_category(self, file_storage: LocalFileStorage):
        """Test that payloads are stored as {category}/{key}.json."""
        file_storage.set("generation", "key1", "{}")

        assert (file_storage.base_dir / "generation" / "key1.json").exists()

    def test_list_and_delete(self, file_storage: LocalFileStorage):
        """Test listing and deleting keys."""
        file_storage.set("review", "b", "{}")
        file_storage.set("review", "a", "{}")

        assert file_storage.list("review") == ["a", "b"]
        assert file_storage.delete("review", "a") is True
        assert file_storage.delete("review", "a") is False
        assert file_storage.list("review") == ["b"]

    def test_list_unknown_category_is_empty(self, file_storage: LocalFileStorage):
        assert file_storage.list("condense") == []

    def test_categories(self, file_storage: LocalFileStorage):
        file_storage.set("review", "a", "{}")
        file_storage.set("generation", "a", "{}")

        assert file_storage.categories() == ["generation", "review"]

    def test_size_in_bytes(self, file_storage: LocalFileStorage):
        file_storage.set("review", "a", "12345")

        assert file_storage.size("review", "a") == 5
        assert file_storage.size("review", "missing") == 0

    def test_rejects_path_traversal(self, file_storage: LocalFileStorage):
        """Test that category and key names cannot escape the base directory."""
        with pytest.raises(ValueError):
            file_storage.set("../outside", "key", "{}")
        with pytest.raises(ValueError):
            file_storage.get("review", "../../etc/passwd")

    def test_overwrite_replaces_payload(self, file_storage: LocalFileStorage):
        file_storage.set("review", "a", "old")
        file_storage.set("review", "a", "new")

        assert file_storage.get("review", "a") == "new"
        assert not list((file_storage.base_dir / "review").glob("*.tmp"))


class TestInMemoryStorage:
    """Tests for InMemoryStorage."""

    def test_round_trip_and_delete(self):
        storage = InMemoryStorage()
        storage.set("general", "k", "v")

        assert storage.get("general", "k") == "v"
        assert storage.list("general") == ["k"]
        assert storage.delete("general", "k") is True
        assert storage.get("general", "k") is None

    def test_categories_skip_empty(self):
        """Test that categories emptied by deletes are not reported."""
        storage = InMemoryStorage()
        storage.set("general", "k", "v")
        storage.set("review", "k", "v")
        storage.delete("review", "k")

        assert storage.categories() == ["general"]

    def test_default_size_uses_payload(self):
        storage = InMemoryStorage()
        storage.set("general", "k", "héllo")

        assert storage.size("general", "k") == len("héllo".encode("utf-8"))


@pytest.mark.parametrize("backend", [StorageBackend, LocalFileStorage, InMemoryStorage])
def test_list_annotations_resolve_to_builtin(backend):
    """Test that the list method does not shadow the builtin in its own signature."""
    assert typing.get_type_hints(backend.list)["return"] == list[str]
    assert typing.get_type_hints(backend.categories)["return"] == list[str]
