"""
Text analysis used to enrich proposals before rule evaluation.

All functions are pure and operate on plain strings.
"""

import re
from typing import Optional

from docflow.models.db import UpdateType
from docflow.models.pipeline import ProposalDraft, RagDocument
from docflow.ruleset.models import Enrichment, StyleProfile

NGRAM_SIZE = 3

ADVANCED_TERMS = [
    "algorithm",
    "complexity",
    "optimization",
    "architecture",
    "implementation details",
    "low-level",
    "internals",
    "bytecode",
    "assembly",
    "kernel",
    "syscall",
]
BEGINNER_TERMS = [
    "getting started",
    "introduction",
    "basic",
    "simple",
    "beginner",
    "first steps",
    "tutorial",
    "learn",
]

_SENTENCE_SPLIT = re.compile(r"[.!?]+")
_FENCED_CODE = re.compile(r"```")
_INLINE_CODE = re.compile(r"`[^`\n]+`")
_CODE_KEYWORDS = re.compile(
    r"\b(function|const|let|var|import|export|class|def|return)\b"
)
_BULLET_LINE = re.compile(r"^\s*[-*•]\s", re.MULTILINE)
_NUMBERED_LINE = re.compile(r"^\s*\d+\.\s", re.MULTILINE)


def avg_sentence_length(text: str) -> int:
    """Average number of words per sentence, rounded."""
    sentences = [s for s in _SENTENCE_SPLIT.split(text) if s.strip()]
    if not sentences:
        return 0
    words = sum(len(s.split()) for s in sentences)
    return round(words / len(sentences))


def has_code_examples(text: str) -> bool:
    return bool(
        _FENCED_CODE.search(text) or _INLINE_CODE.search(text) or _CODE_KEYWORDS.search(text)
    )


def detect_format_pattern(text: str) -> str:
    """Classify text as ``bullets``, ``mixed`` (lists and paragraphs) or ``prose``."""
    has_lists = bool(_BULLET_LINE.search(text) or _NUMBERED_LINE.search(text))
    if has_lists and "\n\n" in text:
        return "mixed"
    if has_lists:
        return "bullets"
    return "prose"


def estimate_technical_depth(text: str) -> str:
    lower = text.lower()
    advanced = sum(1 for term in ADVANCED_TERMS if term in lower)
    beginner = sum(1 for term in BEGINNER_TERMS if term in lower)
    if advanced > 2:
        return "advanced"
    if beginner > 2:
        return "beginner"
    return "intermediate"


def analyze_style(text: str) -> StyleProfile:
    return StyleProfile(
        avg_sentence_length=avg_sentence_length(text),
        uses_code_examples=has_code_examples(text),
        format_pattern=detect_format_pattern(text),
        technical_depth=estimate_technical_depth(text),
    )


def _ngrams(text: str, n: int) -> set[str]:
    words = text.lower().split()
    return {" ".join(words[i : i + n]) for i in range(len(words) - n + 1)}


def ngram_overlap(a: str, b: str, n: int = NGRAM_SIZE) -> int:
    """Percentage of shared word n-grams, relative to the smaller text."""
    grams_a = _ngrams(a, n)
    grams_b = _ngrams(b, n)
    if not grams_a or not grams_b:
        return 0
    shared = len(grams_a & grams_b)
    return round(shared / min(len(grams_a), len(grams_b)) * 100)


def change_percentage(
    update_type: UpdateType, proposal_text: str, target_text: Optional[str]
) -> int:
    """How much of the target page a proposal changes, 0-100."""
    if update_type in (UpdateType.INSERT, UpdateType.DELETE):
        return 100
    if not target_text:
        return 100
    diff = abs(len(target_text) - len(proposal_text))
    return min(100, round(diff / len(target_text) * 100))


def consistency_notes(target: StyleProfile, proposal: StyleProfile) -> list[str]:
    notes = []
    if target.format_pattern != proposal.format_pattern:
        notes.append(
            f"Format mismatch: target page uses {target.format_pattern}, "
            f"proposal uses {proposal.format_pattern}"
        )
    if target.technical_depth != proposal.technical_depth:
        notes.append(
            f"Depth mismatch: target page is {target.technical_depth}, "
            f"proposal is {proposal.technical_depth}"
        )
    if target.uses_code_examples and not proposal.uses_code_examples:
        notes.append("Target page uses code examples but proposal does not")
    if target.avg_sentence_length and proposal.avg_sentence_length:
        ratio = abs(target.avg_sentence_length - proposal.avg_sentence_length) / (
            target.avg_sentence_length
        )
        if ratio > 0.5:
            notes.append(
                f"Sentence length differs: target averages {target.avg_sentence_length} "
                f"words, proposal {proposal.avg_sentence_length}"
            )
    return notes


def _normalize_page(path: str) -> str:
    return path.strip().lstrip("./").lower()


def build_enrichment(
    proposal: ProposalDraft,
    docs: list[RagDocument],
    other_pending: int = 0,
    message_count: int = 0,
    target_content: Optional[str] = None,
) -> Enrichment:
    """Collect the facts rule evaluation needs about one proposal.

    Args:
        proposal: The generated proposal
        docs: Documents retrieved for the proposal's thread
        other_pending: Pending proposals from other conversations for the same page
        message_count: Number of source messages behind the proposal
        target_content: Current page text when it was not among ``docs``
    """
    text = proposal.suggested_text or ""
    enrichment = Enrichment(
        related_docs=[(doc.file_path, doc.similarity) for doc in docs],
        other_pending_proposals=other_pending,
        message_count=message_count,
    )

    for doc in docs:
        overlap = ngram_overlap(text, doc.content)
        if overlap > enrichment.overlap_percentage:
            enrichment.overlap_percentage = overlap
            enrichment.overlap_page = doc.file_path

    page = _normalize_page(proposal.page)
    for doc in docs:
        if _normalize_page(doc.file_path) == page:
            target_content = doc.content
            break

    enrichment.change_percentage = change_percentage(
        proposal.update_type, text, target_content
    )
    enrichment.proposal_style = analyze_style(text)
    if target_content:
        enrichment.target_found = True
        enrichment.target_style = analyze_style(target_content)
        enrichment.consistency_notes = consistency_notes(
            enrichment.target_style, enrichment.proposal_style
        )
    return enrichment
