"""Semantic document search used by the enrichment stage.

The pipeline depends only on :class:`DocumentSearch`. The bundled
:class:`InMemoryDocumentIndex` embeds a documentation tree with OpenAI
embeddings (cached under the ``embeddings`` purpose) and ranks pages by
cosine similarity; production deployments can plug in a vector database.
"""

import json
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence

import numpy as np
from openai import OpenAI

from docflow.llm.cache import CachePurpose, LLMCache
from docflow.models.pipeline import RagDocument

logger = logging.getLogger(__name__)

DOC_EXTENSIONS = {".md", ".mdx", ".markdown"}


class DocumentSearch(ABC):
    """Semantic search capability over the documentation corpus."""

    @abstractmethod
    def search(self, query: str, top_k: int) -> list[RagDocument]:
        """Return up to ``top_k`` documents, most similar first."""
        ...


class OpenAIEmbedder:
    """Text embeddings through the OpenAI API, cached by input text."""

    def __init__(
        self,
        api_key: str,
        model: str = "text-embedding-3-small",
        cache: Optional[LLMCache] = None,
        timeout: float = 60.0,
    ):
        if not api_key:
            raise ValueError("OpenAI API key is required")
        self.client = OpenAI(api_key=api_key, timeout=timeout, max_retries=0)
        self.model = model
        self.cache = cache

    def embed(self, text: str) -> list[float]:
        prompt = f"model:{self.model}\n{text}"
        if self.cache is not None:
            entry = self.cache.get(prompt, CachePurpose.EMBEDDINGS)
            if entry is not None:
                return json.loads(entry.response)

        response = self.client.embeddings.create(model=self.model, input=text)
        vector = list(response.data[0].embedding)

        if self.cache is not None:
            self.cache.set(
                prompt,
                json.dumps(vector),
                CachePurpose.EMBEDDINGS,
                model=self.model,
                tokens_used=response.usage.total_tokens if response.usage else None,
            )
        return vector


def _normalize(vectors: np.ndarray) -> np.ndarray:
    norms = np.linalg.norm(vectors, axis=-1, keepdims=True)
    return vectors / np.maximum(norms, 1e-10)


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    pair = _normalize(np.array([a, b], dtype=np.float32))
    return float(pair[0] @ pair[1])


@dataclass
class _IndexedDoc:
    file_path: str
    title: str
    content: str


class InMemoryDocumentIndex(DocumentSearch):
    """Brute-force cosine search over embedded documentation pages.

    Page vectors are kept L2-normalized in one matrix so a search is a single
    matrix-vector product.
    """

    def __init__(self, embedder: OpenAIEmbedder, max_chars: int = 8000):
        self.embedder = embedder
        self.max_chars = max_chars
        self._docs: list[_IndexedDoc] = []
        self._matrix: Optional[np.ndarray] = None
        self._lock = threading.Lock()

    def add(self, file_path: str, content: str, title: Optional[str] = None) -> None:
        title = title or _extract_title(content) or Path(file_path).stem
        vector = np.asarray(self.embedder.embed(content[: self.max_chars]), dtype=np.float32)
        row = _normalize(vector)[np.newaxis, :]
        with self._lock:
            self._docs.append(_IndexedDoc(file_path, title, content))
            self._matrix = row if self._matrix is None else np.vstack([self._matrix, row])

    def add_directory(self, root: Path) -> int:
        """Index every markdown page under a directory.

        Returns:
            Number of pages indexed
        """
        root = Path(root)
        count = 0
        for path in sorted(root.rglob("*")):
            if path.suffix.lower() not in DOC_EXTENSIONS or not path.is_file():
                continue
            self.add(path.relative_to(root).as_posix(), path.read_text(encoding="utf-8"))
            count += 1
        logger.info(f"Indexed {count} documentation pages from {root}")
        return count

    def search(self, query: str, top_k: int) -> list[RagDocument]:
        query_vector = _normalize(np.asarray(self.embedder.embed(query), dtype=np.float32))
        with self._lock:
            if self._matrix is None:
                return []
            docs = list(self._docs)
            scores = self._matrix @ query_vector

        # stable sort keeps insertion order among equal scores
        order = np.argsort(-scores, kind="stable")[:top_k]
        return [
            RagDocument(
                file_path=docs[i].file_path,
                title=docs[i].title,
                content=docs[i].content,
                similarity=float(scores[i]),
                doc_id=docs[i].file_path,
            )
            for i in order
        ]


def _extract_title(content: str) -> Optional[str]:
    for line in content.splitlines():
        if line.startswith("# "):
            return line[2:].strip()
    return None


def create_search_from_settings(cache: Optional[LLMCache] = None) -> Optional[DocumentSearch]:
    """Index ``settings.docs_dir`` when configured; None disables enrichment."""
    from docflow.config import settings

    if not settings.docs_dir or not settings.openai_api_key:
        logger.info("No documentation directory or OpenAI key configured, retrieval disabled")
        return None
    embedder = OpenAIEmbedder(
        settings.openai_api_key,
        model=settings.embedding_model,
        cache=cache,
        timeout=settings.llm_timeout_seconds,
    )
    index = InMemoryDocumentIndex(embedder)
    index.add_directory(Path(settings.docs_dir).expanduser())
    return index
