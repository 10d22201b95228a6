"""
AppliesWhen DSL
===============

Typed predicate language with strict parsing and a non-raising evaluator.
"""

from services.fact_pipeline.dsl.applies_when import (
    MAX_DEPTH,
    Predicate,
    evaluate,
    parse_applies_when,
    specificity,
    to_dict,
    validate_applies_when,
)

__all__ = [
    "MAX_DEPTH",
    "Predicate",
    "evaluate",
    "parse_applies_when",
    "specificity",
    "to_dict",
    "validate_applies_when",
]
