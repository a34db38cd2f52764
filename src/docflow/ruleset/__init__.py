"""Tenant rulesets: parsing, proposal enrichment and evaluation."""

from docflow.ruleset.analysis import build_enrichment
from docflow.ruleset.evaluator import evaluate
from docflow.ruleset.models import Enrichment, ReviewResult, Rule, Ruleset
from docflow.ruleset.parser import load_ruleset_file, parse_ruleset

__all__ = [
    "Enrichment",
    "ReviewResult",
    "Rule",
    "Ruleset",
    "build_enrichment",
    "evaluate",
    "load_ruleset_file",
    "parse_ruleset",
]
