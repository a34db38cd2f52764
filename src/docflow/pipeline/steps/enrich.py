"""Retrieval enrichment: attach relevant documentation pages to each thread."""

import logging
import re

from docflow.models.pipeline import ConversationThread, RagDocument
from docflow.pipeline.config import PathFilter, StepType
from docflow.pipeline.context import PipelineContext
from docflow.pipeline.steps.base import PipelineStep

logger = logging.getLogger(__name__)

_LOCALE_PREFIX = re.compile(r"^(?:i18n/)?[a-z]{2}(?:-[A-Z]{2})?/")


def glob_to_regex(pattern: str) -> re.Pattern:
    """``**`` matches across directories, ``*`` within one path segment."""
    parts = []
    for token in re.split(r"(\*\*|\*)", pattern):
        if token == "**":
            parts.append(".*")
        elif token == "*":
            parts.append("[^/]*")
        else:
            parts.append(re.escape(token))
    return re.compile("^" + "".join(parts) + "$", re.IGNORECASE)


def matches_paths(file_path: str, paths: PathFilter) -> bool:
    if any(glob_to_regex(p).match(file_path) for p in paths.exclude):
        return False
    if paths.include:
        return any(glob_to_regex(p).match(file_path) for p in paths.include)
    return True


def translation_key(file_path: str) -> str:
    if file_path.startswith("i18n/"):
        return _LOCALE_PREFIX.sub("", file_path, count=1)
    return file_path


def deduplicate_translations(docs: list[RagDocument]) -> list[RagDocument]:
    """Keep one document per page across locales, preferring the untranslated copy."""
    best: dict[str, RagDocument] = {}
    for doc in docs:
        key = translation_key(doc.file_path)
        current = best.get(key)
        if current is None:
            best[key] = doc
        elif current.file_path.startswith("i18n/") and not doc.file_path.startswith("i18n/"):
            best[key] = doc
        elif doc.similarity > current.similarity and (
            doc.file_path.startswith("i18n/") == current.file_path.startswith("i18n/")
        ):
            best[key] = doc
    return sorted(best.values(), key=lambda d: d.similarity, reverse=True)


def search_query(thread: ConversationThread) -> str:
    criteria = thread.rag_search_criteria
    return (criteria.semantic_query or " ".join(criteria.keywords) or thread.summary).strip()


class RagEnrichStep(PipelineStep):
    step_type = StepType.ENRICH

    def input_count(self, context: PipelineContext) -> int:
        return len(context.valuable_threads)

    def execute(self, context: PipelineContext) -> int:
        if context.rag is None:
            logger.warning("No document search configured, threads get no documentation context")
            for thread in context.valuable_threads:
                context.rag_results[thread.id] = []
            return 0

        top_k = int(self.option("top_k", 5))
        min_similarity = float(self.option("min_similarity", 0.7))
        dedupe = bool(self.option("deduplicate_translations", True))
        paths = context.domain_config.rag_paths

        def enrich(thread: ConversationThread) -> list[RagDocument]:
            query = search_query(thread)
            if not query:
                logger.debug(f"Thread {thread.id} has no search query")
                return []
            try:
                results = context.rag.search(query, top_k * 2)
            except Exception as e:
                logger.warning(f"Document search failed for thread {thread.id}: {e}")
                return []

            docs = [d for d in results if d.similarity >= min_similarity]
            docs = [d for d in docs if matches_paths(d.file_path, paths)]
            if dedupe:
                docs = deduplicate_translations(docs)
            docs = docs[:top_k]

            self.record_prompt(
                f"RAG: {thread.summary[:60] or thread.id}",
                "",
                query,
                "\n".join(f"{d.file_path} ({d.similarity:.3f})" for d in docs),
            )
            return docs

        threads = context.valuable_threads
        for thread, docs in zip(threads, self.run_concurrently(threads, enrich)):
            context.rag_results[thread.id] = docs

        total = sum(len(docs) for docs in context.rag_results.values())
        logger.info(f"Retrieved {total} documents for {len(threads)} threads")
        return total
