"""
Quote Locator
=============

Finds an extracted quote inside its evidence text.

Exact substring match first, then a match after deterministic
normalization (see `normalize_for_match`). No fuzzy matching.

Version: 0.1.0
"""

from dataclasses import dataclass
from enum import Enum

from services.fact_pipeline.validation.normalization import (
    normalize_for_match,
    normalize_with_offsets,
)


class MatchType(str, Enum):
    """How a quote was located."""

    EXACT = "exact"
    NORMALIZED = "normalized"
    NOT_FOUND = "not_found"


@dataclass(frozen=True)
class QuoteMatch:
    """Result of locating a quote."""

    match_type: MatchType
    start: int | None = None  # offset in the original text
    end: int | None = None

    @property
    def found(self) -> bool:
        return self.match_type != MatchType.NOT_FOUND


def find_quote_in_evidence(text: str, quote: str) -> QuoteMatch:
    """
    Locate `quote` in `text`.

    Args:
        text: Evidence text (primary artifact or raw content)
        quote: Verbatim quote claimed by the extractor

    Returns:
        QuoteMatch with offsets into the original text when they can be mapped
    """
    if not text or not quote or not quote.strip():
        return QuoteMatch(MatchType.NOT_FOUND)

    index = text.find(quote)
    if index != -1:
        return QuoteMatch(MatchType.EXACT, index, index + len(quote))

    normalized_quote = normalize_for_match(quote)
    if not normalized_quote or normalized_quote not in normalize_for_match(text):
        return QuoteMatch(MatchType.NOT_FOUND)

    # Character-wise normalization keeps an origin map; it agrees with the
    # whole-string form unless NFKC composes across characters.
    mapped_text, origin = normalize_with_offsets(text)
    mapped_quote, _ = normalize_with_offsets(quote)
    position = mapped_text.find(mapped_quote)
    if position == -1 or not mapped_quote:
        return QuoteMatch(MatchType.NORMALIZED)

    start = origin[position]
    end = origin[position + len(mapped_quote) - 1] + 1
    return QuoteMatch(MatchType.NORMALIZED, start, end)
