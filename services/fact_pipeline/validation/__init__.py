"""
Deterministic Validation
========================

Quote/value verification, locale normalization and the quote locator.
"""

from services.fact_pipeline.validation.quotes import MatchType, QuoteMatch, find_quote_in_evidence
from services.fact_pipeline.validation.validators import (
    DOMAIN_RANGES,
    VALID_DOMAINS,
    ValidationOutcome,
    validate_date,
    validate_extraction,
    validate_value_in_quote,
    validate_value_range,
)

__all__ = [
    "DOMAIN_RANGES",
    "VALID_DOMAINS",
    "MatchType",
    "QuoteMatch",
    "ValidationOutcome",
    "find_quote_in_evidence",
    "validate_date",
    "validate_extraction",
    "validate_value_in_quote",
    "validate_value_range",
]
