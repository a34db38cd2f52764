"""
Tenant ruleset parser.

A ruleset is a markdown document with up to four ``## `` sections::

    ## PROMPT_CONTEXT
    - Prefer short, task-oriented examples

    ## REJECTION_RULES
    - Reject if duplicationWarning.overlapPercentage > 80%
    - Proposals mentioning "beta feature"

    ## REVIEW_MODIFICATIONS
    - Remove "Note:" prefixes

    ## QUALITY_GATES
    - Flag if changeContext.changePercentage > 50

Rules are bullet (``-``, ``*``, ``•``) or numbered items. HTML comments are
ignored. Each rule is turned into a condition variant at parse time.
"""

import logging
import re
from pathlib import Path
from typing import Callable, Optional

from docflow.ruleset.models import (
    ChangePercentAbove,
    ConsistencyNotesPresent,
    DuplicationOverlap,
    MatchBulletFormat,
    MessageCountBelow,
    OtherPendingProposals,
    RemovePhrase,
    ReplacePhrase,
    Rule,
    Ruleset,
    SimilarityAbove,
    TechnicalDepthMismatch,
    TextMentions,
    UnparsedRule,
)

logger = logging.getLogger(__name__)

HTML_COMMENT = re.compile(r"<!--.*?-->", re.DOTALL)
RULE_ITEM = re.compile(r"^\s*(?:[-*•]|\d+[.)])\s+(.+?)\s*$")
GREATER_THAN = re.compile(r">\s*(\d*\.?\d+)")
LESS_THAN = re.compile(r"<\s*(\d+)")
MENTIONS = re.compile(r"(?:mentioning|containing)\s+[\"']?([^\"']+?)[\"']?\s*$", re.IGNORECASE)
QUOTED = re.compile(r"[\"“]([^\"”]+)[\"”]|'([^']+)'")

SECTION_NAMES = {
    "PROMPT_CONTEXT": "prompt_context",
    "REVIEW_MODIFICATIONS": "review_modifications",
    "REJECTION_RULES": "rejection_rules",
    "QUALITY_GATES": "quality_gates",
}


def _threshold(pattern: re.Pattern, text: str, default: float) -> float:
    match = pattern.search(text)
    return float(match.group(1)) if match else default


def _quoted_phrases(text: str) -> list[str]:
    return [a or b for a, b in QUOTED.findall(text)]


def parse_rejection_condition(rule: str):
    lower = rule.lower()
    if "overlappercentage" in lower or "duplication" in lower:
        return DuplicationOverlap(threshold=_threshold(GREATER_THAN, rule, 80.0))
    if "similarityscore" in lower or "similarity" in lower:
        return SimilarityAbove(threshold=_threshold(GREATER_THAN, rule, 0.85))
    match = MENTIONS.search(rule)
    if match:
        return TextMentions(phrase=match.group(1).strip())
    return UnparsedRule()


def parse_modification_condition(rule: str):
    lower = rule.lower()
    quoted = _quoted_phrases(rule)
    if lower.startswith("replace") and len(quoted) >= 2:
        return ReplacePhrase(old=quoted[0], new=quoted[1])
    if (lower.startswith("remove") or lower.startswith("strip")) and quoted:
        return RemovePhrase(phrase=quoted[0])
    if "bullet" in lower and ("format" in lower or "match" in lower):
        return MatchBulletFormat()
    return UnparsedRule()


def parse_quality_gate_condition(rule: str):
    lower = rule.lower()
    if "consistencynotes" in lower:
        return ConsistencyNotesPresent()
    if "changepercentage" in lower:
        return ChangePercentAbove(threshold=_threshold(GREATER_THAN, rule, 50.0))
    if "otherpendingproposals" in lower:
        return OtherPendingProposals()
    if "messagecount" in lower:
        match = LESS_THAN.search(rule)
        if match:
            return MessageCountBelow(threshold=int(match.group(1)))
        return UnparsedRule()
    if "technicaldepth" in lower and "mismatch" in lower:
        return TechnicalDepthMismatch()
    return UnparsedRule()


CONDITION_PARSERS: dict[str, Callable[[str], object]] = {
    "review_modifications": parse_modification_condition,
    "rejection_rules": parse_rejection_condition,
    "quality_gates": parse_quality_gate_condition,
}


def _section_key(header: str) -> Optional[str]:
    normalized = re.sub(r"[\s-]+", "_", header.strip().upper())
    for name, key in SECTION_NAMES.items():
        if name in normalized:
            return key
    return None


def _rule_items(body: str) -> list[str]:
    items = []
    for line in body.splitlines():
        match = RULE_ITEM.match(line)
        if match:
            items.append(match.group(1))
    return items


def parse_ruleset(content: str) -> Ruleset:
    """Parse a markdown rule document into a :class:`Ruleset`."""
    ruleset = Ruleset()
    if not content or not content.strip():
        return ruleset

    text = HTML_COMMENT.sub("", content)
    # Leading text before the first "## " header belongs to no section
    sections = re.split(r"^##\s+", text, flags=re.MULTILINE)[1:]

    for section in sections:
        header, _, body = section.partition("\n")
        key = _section_key(header)
        if key is None:
            logger.debug(f"Ignoring unknown ruleset section: {header.strip()}")
            continue

        items = _rule_items(body)
        if key == "prompt_context":
            ruleset.prompt_context.extend(items)
            continue

        parse_condition = CONDITION_PARSERS[key]
        for item in items:
            condition = parse_condition(item)
            if isinstance(condition, UnparsedRule):
                logger.warning(f"Unrecognized {key} rule, it will never match: {item}")
            getattr(ruleset, key).append(Rule(text=item, condition=condition))

    logger.debug(
        f"Parsed ruleset: {len(ruleset.prompt_context)} prompt, "
        f"{len(ruleset.rejection_rules)} rejection, "
        f"{len(ruleset.review_modifications)} modification, "
        f"{len(ruleset.quality_gates)} quality rules"
    )
    return ruleset


def load_ruleset_file(path: str | Path) -> Ruleset:
    return parse_ruleset(Path(path).read_text(encoding="utf-8"))
