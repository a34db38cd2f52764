"""
Ruleset value objects.

Each rule line of a tenant document is parsed once into a condition variant.
The evaluator matches on the variant type, so an unrecognized rule is an
explicit :class:`UnparsedRule` rather than a string re-inspected at review
time.
"""

from dataclasses import dataclass, field
from typing import Optional, Union


# Rejection conditions


@dataclass(frozen=True)
class DuplicationOverlap:
    """Reject when n-gram overlap with an existing doc exceeds a percentage."""

    threshold: float = 80.0


@dataclass(frozen=True)
class SimilarityAbove:
    """Reject when any retrieved doc is more similar than a threshold (0-1)."""

    threshold: float = 0.85


@dataclass(frozen=True)
class TextMentions:
    """Reject when the proposal text mentions a phrase (case-insensitive)."""

    phrase: str


# Modification conditions


@dataclass(frozen=True)
class RemovePhrase:
    """Remove every occurrence of a phrase from the proposal text."""

    phrase: str


@dataclass(frozen=True)
class ReplacePhrase:
    """Replace a phrase with another in the proposal text."""

    old: str
    new: str


@dataclass(frozen=True)
class MatchBulletFormat:
    """Rewrite prose as a bullet list when the target page uses bullets."""


# Quality gates


@dataclass(frozen=True)
class ConsistencyNotesPresent:
    """Flag when style analysis produced consistency notes."""


@dataclass(frozen=True)
class ChangePercentAbove:
    """Flag a significant change when the change percentage exceeds a threshold."""

    threshold: float = 50.0


@dataclass(frozen=True)
class OtherPendingProposals:
    """Flag when other pending proposals target the same page."""


@dataclass(frozen=True)
class MessageCountBelow:
    """Flag thin evidence when fewer source messages than the threshold."""

    threshold: int


@dataclass(frozen=True)
class TechnicalDepthMismatch:
    """Flag when proposal and target page differ in technical depth."""


@dataclass(frozen=True)
class UnparsedRule:
    """A rule line with no recognized condition. Never matches."""


RejectionCondition = Union[DuplicationOverlap, SimilarityAbove, TextMentions, UnparsedRule]
ModificationCondition = Union[RemovePhrase, ReplacePhrase, MatchBulletFormat, UnparsedRule]
QualityGateCondition = Union[
    ConsistencyNotesPresent,
    ChangePercentAbove,
    OtherPendingProposals,
    MessageCountBelow,
    TechnicalDepthMismatch,
    UnparsedRule,
]


@dataclass(frozen=True)
class Rule:
    """A rule line and the condition parsed from it."""

    text: str
    condition: "RejectionCondition | ModificationCondition | QualityGateCondition"


@dataclass
class Ruleset:
    """Parsed tenant ruleset: four ordered rule lists."""

    prompt_context: list[str] = field(default_factory=list)
    review_modifications: list[Rule] = field(default_factory=list)
    rejection_rules: list[Rule] = field(default_factory=list)
    quality_gates: list[Rule] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (
            self.prompt_context
            or self.review_modifications
            or self.rejection_rules
            or self.quality_gates
        )

    def prompt_guidelines(self) -> str:
        """Prompt-context rules rendered for injection into a system prompt."""
        if not self.prompt_context:
            return ""
        lines = "\n".join(f"- {rule}" for rule in self.prompt_context)
        return f"## Tenant-Specific Guidelines\n\n{lines}"


@dataclass
class StyleProfile:
    avg_sentence_length: int = 0
    uses_code_examples: bool = False
    format_pattern: str = "prose"  # prose, bullets, mixed
    technical_depth: str = "intermediate"  # beginner, intermediate, advanced


@dataclass
class Enrichment:
    """Facts about a proposal used by rule evaluation."""

    related_docs: list[tuple[str, float]] = field(default_factory=list)  # (page, similarity)
    overlap_percentage: float = 0.0
    overlap_page: Optional[str] = None
    target_found: bool = False
    target_style: StyleProfile = field(default_factory=StyleProfile)
    proposal_style: StyleProfile = field(default_factory=StyleProfile)
    consistency_notes: list[str] = field(default_factory=list)
    change_percentage: float = 0.0
    other_pending_proposals: int = 0
    message_count: int = 0


@dataclass
class ReviewResult:
    """Outcome of evaluating a ruleset against one proposal."""

    rejected: bool = False
    reason: Optional[str] = None
    rejected_by: Optional[str] = None
    modified_text: Optional[str] = None
    modifications_applied: list[str] = field(default_factory=list)
    flags: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
