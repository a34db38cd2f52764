"""Tests for the tenant ruleset parser."""

from pathlib import Path

from docflow.ruleset import load_ruleset_file, parse_ruleset
from docflow.ruleset.models import (
    ChangePercentAbove,
    ConsistencyNotesPresent,
    DuplicationOverlap,
    MatchBulletFormat,
    MessageCountBelow,
    OtherPendingProposals,
    RemovePhrase,
    ReplacePhrase,
    SimilarityAbove,
    TechnicalDepthMismatch,
    TextMentions,
    UnparsedRule,
)

RULESET = """# Community docs rules

Some intro text that belongs to no section.

## PROMPT_CONTEXT
- Prefer short, task-oriented examples
- Link to the CLI reference when relevant

## REJECTION_RULES
<!-- duplicates are handled first -->
- Reject if duplicationWarning.overlapPercentage > 75%
- Reject if similarityScore > 0.9
- Proposals mentioning "beta feature"

## REVIEW_MODIFICATIONS
1. Remove "Note:" prefixes
2. Replace "utilize" with "use"
3. Match bullet format of the target page

## QUALITY_GATES
* Flag if consistencyNotes present
* Flag if changeContext.changePercentage > 40
* Flag if otherPendingProposals exist
* Flag if messageCount < 3
* Flag technicalDepth mismatch
"""


class TestParseRuleset:
    """Tests for parse_ruleset."""

    def test_empty_content(self):
        """Test that empty or blank input gives an empty ruleset."""
        assert parse_ruleset("").is_empty
        assert parse_ruleset("   \n").is_empty

    def test_prompt_context_kept_as_text(self):
        ruleset = parse_ruleset(RULESET)

        assert ruleset.prompt_context == [
            "Prefer short, task-oriented examples",
            "Link to the CLI reference when relevant",
        ]

    def test_rejection_conditions(self):
        """Test that rejection rules parse into thresholds and phrases."""
        conditions = [r.condition for r in parse_ruleset(RULESET).rejection_rules]

        assert conditions == [
            DuplicationOverlap(threshold=75.0),
            SimilarityAbove(threshold=0.9),
            TextMentions(phrase="beta feature"),
        ]

    def test_html_comments_ignored(self):
        texts = [r.text for r in parse_ruleset(RULESET).rejection_rules]

        assert not any("duplicates are handled" in t for t in texts)

    def test_modification_conditions_from_numbered_items(self):
        conditions = [r.condition for r in parse_ruleset(RULESET).review_modifications]

        assert conditions == [
            RemovePhrase(phrase="Note:"),
            ReplacePhrase(old="utilize", new="use"),
            MatchBulletFormat(),
        ]

    def test_quality_gate_conditions(self):
        conditions = [r.condition for r in parse_ruleset(RULESET).quality_gates]

        assert conditions == [
            ConsistencyNotesPresent(),
            ChangePercentAbove(threshold=40.0),
            OtherPendingProposals(),
            MessageCountBelow(threshold=3),
            TechnicalDepthMismatch(),
        ]

    def test_rule_text_preserved(self):
        rule = parse_ruleset(RULESET).rejection_rules[2]

        assert rule.text == 'Proposals mentioning "beta feature"'

    def test_unrecognized_rule_is_unparsed(self):
        """Test that an unknown rule is kept but never matches."""
        ruleset = parse_ruleset("## REJECTION_RULES\n- Reject anything that feels off\n")

        assert len(ruleset.rejection_rules) == 1
        assert isinstance(ruleset.rejection_rules[0].condition, UnparsedRule)

    def test_default_thresholds(self):
        ruleset = parse_ruleset(
            "## REJECTION_RULES\n- Reject on duplication\n\n"
            "## QUALITY_GATES\n- Flag large changePercentage\n"
        )

        assert ruleset.rejection_rules[0].condition == DuplicationOverlap(threshold=80.0)
        assert ruleset.quality_gates[0].condition == ChangePercentAbove(threshold=50.0)

    def test_message_count_without_threshold_is_unparsed(self):
        ruleset = parse_ruleset("## QUALITY_GATES\n- Flag low messageCount\n")

        assert isinstance(ruleset.quality_gates[0].condition, UnparsedRule)

    def test_section_headers_are_normalized(self):
        """Test that spaced or lowercase headers map to their sections."""
        ruleset = parse_ruleset("## Rejection Rules\n- Proposals containing 'TODO'\n")

        assert ruleset.rejection_rules[0].condition == TextMentions(phrase="TODO")

    def test_unknown_section_ignored(self):
        ruleset = parse_ruleset("## STYLE\n- Use oxford commas\n")

        assert ruleset.is_empty

    def test_prompt_guidelines(self):
        guidelines = parse_ruleset(RULESET).prompt_guidelines()

        assert guidelines.startswith("## Tenant-Specific Guidelines")
        assert "- Prefer short, task-oriented examples" in guidelines
        assert parse_ruleset("").prompt_guidelines() == ""

    def test_load_ruleset_file(self, tmp_path: Path):
        path = tmp_path / "rules.md"
        path.write_text(RULESET, encoding="utf-8")

        assert len(load_ruleset_file(path).quality_gates) == 5
