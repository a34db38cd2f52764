"""
Ruleset evaluation.

:func:`evaluate` is pure: it reads a parsed :class:`Ruleset`, a proposal and
its :class:`Enrichment` and returns a :class:`ReviewResult` without touching
the proposal. Rejection rules run first and the first match wins; otherwise
modifications are applied in order and quality gates add flags.
"""

import logging
import re
from typing import Optional

from docflow.models.pipeline import ProposalDraft
from docflow.ruleset.analysis import detect_format_pattern
from docflow.ruleset.models import (
    ChangePercentAbove,
    ConsistencyNotesPresent,
    DuplicationOverlap,
    Enrichment,
    MatchBulletFormat,
    MessageCountBelow,
    OtherPendingProposals,
    RemovePhrase,
    ReplacePhrase,
    ReviewResult,
    Rule,
    Ruleset,
    SimilarityAbove,
    TechnicalDepthMismatch,
    TextMentions,
)

logger = logging.getLogger(__name__)

_SENTENCE = re.compile(r"[^.!?]+[.!?]*")


def rejection_reason(rule: Rule, text: str, enrichment: Enrichment) -> Optional[str]:
    """Reason the rule rejects the proposal, or None when it does not match."""
    condition = rule.condition

    if isinstance(condition, DuplicationOverlap):
        if enrichment.overlap_percentage > condition.threshold:
            return (
                f"Duplicate content detected: {round(enrichment.overlap_percentage)}% "
                f"overlap with {enrichment.overlap_page}"
            )

    elif isinstance(condition, SimilarityAbove):
        if enrichment.related_docs:
            page, similarity = max(enrichment.related_docs, key=lambda item: item[1])
            if similarity > condition.threshold:
                return (
                    f"High similarity with existing doc: {round(similarity * 100)}% "
                    f"match with {page}"
                )

    elif isinstance(condition, TextMentions):
        if condition.phrase.lower() in text.lower():
            return f'Content matches rejection pattern: "{condition.phrase}"'

    return None


def _as_bullets(text: str) -> str:
    sentences = [s.strip() for s in _SENTENCE.findall(text) if s.strip()]
    return "\n".join(f"- {sentence}" for sentence in sentences)


def apply_modification(rule: Rule, text: str, enrichment: Enrichment) -> str:
    condition = rule.condition

    if isinstance(condition, RemovePhrase):
        text = re.sub(re.escape(condition.phrase), "", text, flags=re.IGNORECASE)
        return re.sub(r"[ \t]{2,}", " ", text).strip()

    if isinstance(condition, ReplacePhrase):
        return re.sub(
            re.escape(condition.old),
            lambda _: condition.new,
            text,
            flags=re.IGNORECASE,
        )

    if isinstance(condition, MatchBulletFormat):
        if (
            enrichment.target_found
            and enrichment.target_style.format_pattern == "bullets"
            and detect_format_pattern(text) == "prose"
        ):
            return _as_bullets(text)

    return text


def quality_flag(rule: Rule, enrichment: Enrichment) -> Optional[str]:
    condition = rule.condition

    if isinstance(condition, ConsistencyNotesPresent):
        if enrichment.consistency_notes:
            return f"Style review: {'; '.join(enrichment.consistency_notes)}"

    elif isinstance(condition, ChangePercentAbove):
        if enrichment.change_percentage > condition.threshold:
            return f"Significant change: {round(enrichment.change_percentage)}% modification"

    elif isinstance(condition, OtherPendingProposals):
        if enrichment.other_pending_proposals > 0:
            return (
                f"Coordination needed: {enrichment.other_pending_proposals} "
                f"other pending proposals"
            )

    elif isinstance(condition, MessageCountBelow):
        if enrichment.message_count < condition.threshold:
            return f"Limited evidence: only {enrichment.message_count} messages"

    elif isinstance(condition, TechnicalDepthMismatch):
        target = enrichment.target_style.technical_depth
        proposed = enrichment.proposal_style.technical_depth
        if enrichment.target_found and target != proposed:
            return f"Technical depth mismatch: target is {target}, proposal is {proposed}"

    return None


def _evaluate(ruleset: Ruleset, text: str, enrichment: Enrichment) -> ReviewResult:
    result = ReviewResult()

    for rule in ruleset.rejection_rules:
        reason = rejection_reason(rule, text, enrichment)
        if reason:
            result.rejected = True
            result.reason = reason
            result.rejected_by = rule.text
            return result

    modified = text
    for rule in ruleset.review_modifications:
        updated = apply_modification(rule, modified, enrichment)
        if updated != modified:
            result.modifications_applied.append(rule.text)
            modified = updated
    if modified != text:
        result.modified_text = modified

    for rule in ruleset.quality_gates:
        flag = quality_flag(rule, enrichment)
        if flag:
            result.flags.append(flag)

    return result


def evaluate(
    ruleset: Ruleset, proposal: ProposalDraft, enrichment: Enrichment
) -> ReviewResult:
    """Evaluate a ruleset against one proposal.

    An error while evaluating passes the proposal through unchanged with a
    warning.
    """
    try:
        return _evaluate(ruleset, proposal.suggested_text or "", enrichment)
    except Exception as e:
        logger.warning(f"Rule evaluation failed for {proposal.page}: {e}", exc_info=True)
        return ReviewResult(warnings=[f"Rule evaluation failed: {e}"])
