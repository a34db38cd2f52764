"""Content-addressed cache for LLM requests.

Entries are keyed by a SHA-256 hash of the prompt and its purpose, so repeated
pipeline runs over the same input are answered without calling the model.
Entries never expire on their own; clearing is an explicit admin action.
"""

import json
import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from enum import Enum
from pathlib import Path
from typing import Optional

from docflow.llm.storage import LocalFileStorage, StorageBackend
from docflow.utils.hashing import calculate_content_hash
from docflow.utils.time import as_utc, utc_now

logger = logging.getLogger(__name__)


class CachePurpose(str, Enum):
    """Kind of generative call that produced a cache entry."""

    CLASSIFICATION = "classification"
    GENERATION = "generation"
    EMBEDDINGS = "embeddings"
    REVIEW = "review"
    CONDENSE = "condense"
    GENERAL = "general"


@dataclass
class CacheEntry:
    """A stored LLM request/response pair."""

    hash: str
    purpose: CachePurpose
    prompt: str
    response: str
    timestamp: datetime
    model: Optional[str] = None
    tokens_used: Optional[int] = None
    message_id: Optional[int] = None

    def to_dict(self) -> dict:
        data = asdict(self)
        data["purpose"] = self.purpose.value
        data["timestamp"] = self.timestamp.isoformat()
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "CacheEntry":
        return cls(
            hash=data["hash"],
            purpose=CachePurpose(data["purpose"]),
            prompt=data["prompt"],
            response=data["response"],
            timestamp=as_utc(datetime.fromisoformat(data["timestamp"])),
            model=data.get("model"),
            tokens_used=data.get("tokens_used"),
            message_id=data.get("message_id"),
        )


@dataclass
class PurposeStats:
    count: int = 0
    size_bytes: int = 0


class LLMCache:
    """Purpose-partitioned LLM response cache over a storage backend."""

    def __init__(self, storage: StorageBackend):
        """Initialize the cache.

        Args:
            storage: Backend holding one payload per (purpose, hash)
        """
        self.storage = storage

    @staticmethod
    def compute_key(prompt: str, purpose: CachePurpose) -> str:
        """SHA-256 of purpose and prompt."""
        return calculate_content_hash(f"{CachePurpose(purpose).value}\n{prompt}")

    def get(self, prompt: str, purpose: CachePurpose) -> Optional[CacheEntry]:
        """Get a cached response.

        Args:
            prompt: Full prompt text sent to the model
            purpose: Purpose partition

        Returns:
            CacheEntry if found, None otherwise
        """
        purpose = CachePurpose(purpose)
        key = self.compute_key(prompt, purpose)
        try:
            payload = self.storage.get(purpose.value, key)
        except Exception as e:
            logger.warning(f"Failed to read cache for {purpose.value}/{key}: {e}")
            return None

        if payload is None:
            logger.debug(f"Cache miss: {purpose.value}/{key[:12]}")
            return None

        try:
            entry = CacheEntry.from_dict(json.loads(payload))
        except (ValueError, KeyError) as e:
            logger.warning(f"Corrupt cache entry {purpose.value}/{key}: {e}")
            return None

        logger.debug(f"Cache hit: {purpose.value}/{key[:12]}")
        return entry

    def has(self, prompt: str, purpose: CachePurpose) -> bool:
        return self.get(prompt, purpose) is not None

    def set(
        self,
        prompt: str,
        response: str,
        purpose: CachePurpose,
        model: Optional[str] = None,
        tokens_used: Optional[int] = None,
        message_id: Optional[int] = None,
    ) -> CacheEntry:
        """Store a response. Last writer wins for the same key."""
        purpose = CachePurpose(purpose)
        entry = CacheEntry(
            hash=self.compute_key(prompt, purpose),
            purpose=purpose,
            prompt=prompt,
            response=response,
            timestamp=utc_now(),
            model=model,
            tokens_used=tokens_used,
            message_id=message_id,
        )
        try:
            self.storage.set(purpose.value, entry.hash, json.dumps(entry.to_dict()))
            logger.debug(f"Cached response: {purpose.value}/{entry.hash[:12]}")
        except Exception as e:
            logger.warning(f"Failed to write cache for {purpose.value}/{entry.hash}: {e}")
        return entry

    def list_by_purpose(self, purpose: CachePurpose) -> list[CacheEntry]:
        """Load every entry of one purpose, newest first."""
        purpose = CachePurpose(purpose)
        entries = []
        for key in self.storage.list(purpose.value):
            payload = self.storage.get(purpose.value, key)
            if payload is None:
                continue
            try:
                entries.append(CacheEntry.from_dict(json.loads(payload)))
            except (ValueError, KeyError) as e:
                logger.warning(f"Skipping corrupt cache entry {purpose.value}/{key}: {e}")
        entries.sort(key=lambda e: e.timestamp, reverse=True)
        return entries

    def stats(self) -> dict[str, PurposeStats]:
        """Entry count and stored bytes per purpose."""
        result = {}
        for purpose in CachePurpose:
            keys = self.storage.list(purpose.value)
            result[purpose.value] = PurposeStats(
                count=len(keys),
                size_bytes=sum(self.storage.size(purpose.value, k) for k in keys),
            )
        return result

    def clear_purpose(self, purpose: CachePurpose) -> int:
        """Delete every entry of one purpose.

        Returns:
            Number of entries removed
        """
        purpose = CachePurpose(purpose)
        removed = 0
        for key in self.storage.list(purpose.value):
            if self.storage.delete(purpose.value, key):
                removed += 1
        if removed:
            logger.info(f"Cleared {removed} cache entries for purpose {purpose.value}")
        return removed

    def clear_all(self) -> int:
        """Delete every entry of every purpose."""
        return sum(self.clear_purpose(purpose) for purpose in CachePurpose)

    def clear_older_than(self, days: int) -> int:
        """Delete entries whose timestamp is older than ``days``."""
        cutoff = utc_now() - timedelta(days=days)
        removed = 0
        for purpose in CachePurpose:
            for entry in self.list_by_purpose(purpose):
                if entry.timestamp < cutoff and self.storage.delete(
                    purpose.value, entry.hash
                ):
                    removed += 1
        if removed:
            logger.info(f"Cleared {removed} cache entries older than {days} days")
        return removed

    def search(
        self, text: str, purpose: Optional[CachePurpose] = None
    ) -> list[CacheEntry]:
        """Case-insensitive substring search over prompts and responses."""
        needle = text.lower()
        purposes = [CachePurpose(purpose)] if purpose else list(CachePurpose)
        return [
            entry
            for p in purposes
            for entry in self.list_by_purpose(p)
            if needle in entry.prompt.lower() or needle in entry.response.lower()
        ]

    def find_by_message_id(self, message_id: int) -> list[CacheEntry]:
        """Entries recorded against a specific source message."""
        return [
            entry
            for purpose in CachePurpose
            for entry in self.list_by_purpose(purpose)
            if entry.message_id == message_id
        ]


def create_cache_from_settings() -> LLMCache:
    """File-backed cache under ``settings.llm_cache_dir``."""
    from docflow.config import settings

    return LLMCache(LocalFileStorage(Path(settings.llm_cache_dir).expanduser()))
