"""Posting rule engine: event payload -> ledger lines."""

from bookkeeping_engine.posting.formula import Formula, evaluate, parse_formula
from bookkeeping_engine.posting.rule_engine import PostingRuleEngine, PostingRuleService

__all__ = [
    "Formula",
    "PostingRuleEngine",
    "PostingRuleService",
    "evaluate",
    "parse_formula",
]
