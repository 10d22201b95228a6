"""
Deterministic Validators
========================

Verifies an extracted value against its quote and against domain ranges.

The validator never raises for bad input. Every failure is returned as a
`RejectionReason` so the extraction stage can dead-letter it with a typed
code.

Version: 0.1.0
"""

import calendar
import json
import re
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

from services.fact_pipeline.models.enums import ValueType
from services.fact_pipeline.schemas import RejectionCode, RejectionReason, Severity
from services.fact_pipeline.validation.normalization import (
    ISO_DATE_RE,
    NUMERIC_RE,
    candidate_patterns,
    normalize_for_match,
    numeric_boundary_regex,
    parse_number,
)
from services.fact_pipeline.validation.safe_regex import bounded_search
from shared.config import settings


VALID_DOMAINS = frozenset(
    {
        "pausalni",
        "pdv",
        "porez_dohodak",
        "doprinosi",
        "fiskalizacija",
        "rokovi",
        "obrasci",
        "interest_rates",
        "exchange_rates",
    }
)


@dataclass(frozen=True)
class DomainRange:
    """Per-domain numeric limits. None falls back to the value-type default."""

    percentage_max: Decimal | None = None
    currency_max: Decimal | None = None
    interest_rate_max: Decimal | None = None
    exchange_rate_min: Decimal | None = None
    exchange_rate_max: Decimal | None = None


DOMAIN_RANGES: dict[str, DomainRange] = {
    "pdv": DomainRange(percentage_max=Decimal(30)),
    "doprinosi": DomainRange(percentage_max=Decimal(50)),
    "porez_dohodak": DomainRange(percentage_max=Decimal(60)),
    "pausalni": DomainRange(currency_max=Decimal(1_000_000)),
    "interest_rates": DomainRange(percentage_max=Decimal(20)),
    "exchange_rates": DomainRange(
        exchange_rate_min=Decimal("0.0001"),
        exchange_rate_max=Decimal(10000),
    ),
}

DEFAULT_PERCENTAGE_MAX = Decimal(100)
DEFAULT_INTEREST_RATE_MAX = Decimal(20)
DEFAULT_EXCHANGE_RATE_MIN = Decimal("0.0001")
DEFAULT_EXCHANGE_RATE_MAX = Decimal(10000)
CURRENCY_MAX_EUR = Decimal(100_000_000_000)
CURRENCY_MAX_HRK = Decimal(750_000_000_000)
COUNT_MAX = Decimal(1_000_000_000)
MIN_YEAR, MAX_YEAR = 1990, 2050

_JSON_QUOTE_RE = re.compile(r'^"[^"]+"\s*:\s*.+$', re.DOTALL)
_JSON_VALUE_RE = re.compile(r":\s*(.+)$", re.DOTALL)
_SEPARATORS_RE = re.compile(r"[.,\s]")


@dataclass
class ValidationOutcome:
    """Result of validating one extraction."""

    valid: bool
    reasons: list[RejectionReason] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def primary_reason(self) -> RejectionReason | None:
        return self.reasons[0] if self.reasons else None

    @property
    def message(self) -> str:
        return "; ".join(r.description for r in self.reasons)


def _reject(
    code: RejectionCode,
    description: str,
    recommendation: str | None = None,
) -> RejectionReason:
    return RejectionReason(
        code=code,
        description=description,
        severity=Severity.MAJOR,
        recommendation=recommendation,
    )


# =============================================================================
# Range checks
# =============================================================================


def validate_date(value: str) -> RejectionReason | None:
    """ISO YYYY-MM-DD with a real calendar day between 1990 and 2050."""
    if not ISO_DATE_RE.match(value):
        return _reject(RejectionCode.INVALID_DATE, "Date must be ISO format YYYY-MM-DD")

    year, month, day = (int(part) for part in value.split("-"))
    if not 1 <= month <= 12:
        return _reject(RejectionCode.INVALID_DATE, f"Invalid month in {value}")
    if not 1 <= day <= calendar.monthrange(year, month)[1]:
        return _reject(RejectionCode.INVALID_DATE, f"Invalid day for month in {value}")
    if year < MIN_YEAR:
        return _reject(RejectionCode.INVALID_DATE, f"Date too far in the past (before {MIN_YEAR})")
    if year > MAX_YEAR:
        return _reject(RejectionCode.INVALID_DATE, f"Date too far in the future (after {MAX_YEAR})")
    return None


def _check_bounds(
    number: Decimal,
    label: str,
    minimum: Decimal,
    maximum: Decimal,
    exclusive_min: bool = False,
) -> RejectionReason | None:
    below = number <= minimum if exclusive_min else number < minimum
    if below:
        return _reject(RejectionCode.OUT_OF_RANGE, f"{label} {number} below minimum {minimum}")
    if number > maximum:
        return _reject(RejectionCode.OUT_OF_RANGE, f"{label} {number} exceeds maximum {maximum}")
    return None


def validate_value_range(
    domain: str,
    value_type: ValueType,
    value: str,
) -> RejectionReason | None:
    """
    Apply the domain-aware range for `value_type`.

    Args:
        domain: Regulatory domain slug
        value_type: Type of the extracted value
        value: Extracted value as text

    Returns:
        RejectionReason on failure, None when in range
    """
    if value_type == ValueType.DATE:
        return validate_date(value)
    if value_type in (ValueType.TEXT, ValueType.THRESHOLD):
        return None

    number = parse_number(value)
    if number is None:
        return _reject(RejectionCode.INVALID_VALUE, f"Value {value!r} is not a number")

    limits = DOMAIN_RANGES.get(domain, DomainRange())
    zero = Decimal(0)

    if value_type == ValueType.PERCENTAGE:
        return _check_bounds(number, "Percentage", zero, limits.percentage_max or DEFAULT_PERCENTAGE_MAX)
    if value_type in (ValueType.CURRENCY, ValueType.CURRENCY_EUR):
        return _check_bounds(number, "Currency amount", zero, limits.currency_max or CURRENCY_MAX_EUR)
    if value_type == ValueType.CURRENCY_HRK:
        return _check_bounds(number, "Currency amount", zero, limits.currency_max or CURRENCY_MAX_HRK)
    if value_type == ValueType.COUNT:
        return _check_bounds(number, "Count", zero, COUNT_MAX)
    if value_type == ValueType.INTEREST_RATE:
        return _check_bounds(
            number, "Interest rate", zero, limits.interest_rate_max or DEFAULT_INTEREST_RATE_MAX
        )
    if value_type == ValueType.EXCHANGE_RATE:
        return _check_bounds(
            number,
            "Exchange rate",
            limits.exchange_rate_min or DEFAULT_EXCHANGE_RATE_MIN,
            limits.exchange_rate_max or DEFAULT_EXCHANGE_RATE_MAX,
            exclusive_min=limits.exchange_rate_min is None,
        )
    return None


# =============================================================================
# Value-in-quote check
# =============================================================================


def _matches_json_quote(value: str, quote: str) -> bool:
    """`"key": value` fragments (API payloads) compare the parsed value."""
    if not _JSON_QUOTE_RE.match(quote.strip()):
        return False
    match = _JSON_VALUE_RE.search(quote.strip())
    if not match:
        return False

    raw = match.group(1).strip().rstrip(",")
    try:
        parsed: Any = json.loads(raw)
    except json.JSONDecodeError:
        parsed = raw
    parsed_str = str(parsed)

    if value == parsed_str:
        return True
    return _SEPARATORS_RE.sub("", value) == _SEPARATORS_RE.sub("", parsed_str)


def _contains_free_text(value: str, quote: str) -> bool:
    max_length = settings.pipeline.max_free_text_value_length
    needle = normalize_for_match(value).lower()
    if not needle or len(needle) > max_length:
        return False
    compiled = re.compile(re.escape(needle))
    return bounded_search(compiled, normalize_for_match(quote).lower()) is not None


def validate_value_in_quote(value: str, quote: str) -> RejectionReason | None:
    """
    Check that `value` is literally present in `quote`.

    Numeric patterns use boundary protection; everything else is a
    case-insensitive containment check.
    """
    value = value.strip()
    if not value:
        return _reject(RejectionCode.VALUE_NOT_IN_QUOTE, "Extracted value is empty")

    if _matches_json_quote(value, quote):
        return None

    quote_lower = quote.lower()
    for pattern in candidate_patterns(value):
        pattern_lower = pattern.lower()
        if NUMERIC_RE.match(pattern_lower):
            if bounded_search(numeric_boundary_regex(pattern_lower), quote_lower):
                return None
        elif pattern_lower in quote_lower:
            return None
        elif _contains_free_text(pattern, quote):
            return None

    return _reject(
        RejectionCode.VALUE_NOT_IN_QUOTE,
        f'Value "{value}" not found in quote. Possible inference detected.',
        recommendation="Re-extract with a quote that states the value verbatim",
    )


# =============================================================================
# Full extraction check
# =============================================================================


def validate_extraction(
    extracted_value: str,
    exact_quote: str,
    domain: str,
    value_type: ValueType | str,
    confidence: float,
) -> ValidationOutcome:
    """
    Validate one extraction before it becomes a source pointer.

    Args:
        extracted_value: Value claimed by the extractor
        exact_quote: Verbatim quote claimed by the extractor
        domain: Regulatory domain slug
        value_type: Declared value type
        confidence: Extractor confidence

    Returns:
        ValidationOutcome listing every failure, not just the first
    """
    reasons: list[RejectionReason] = []
    warnings: list[str] = []

    if domain not in VALID_DOMAINS:
        reasons.append(_reject(RejectionCode.UNKNOWN_DOMAIN, f"Unknown domain: {domain}"))

    resolved_type: ValueType | None
    try:
        resolved_type = ValueType(value_type)
    except ValueError:
        resolved_type = None
        reasons.append(
            _reject(RejectionCode.UNKNOWN_VALUE_TYPE, f"Unknown value_type: {value_type}")
        )

    if resolved_type is not None:
        if resolved_type == ValueType.TEXT and len(extracted_value) > settings.pipeline.max_free_text_value_length:
            reasons.append(
                _reject(
                    RejectionCode.VALUE_TOO_LONG,
                    f"Text value longer than {settings.pipeline.max_free_text_value_length} characters",
                )
            )
        else:
            range_error = validate_value_range(domain, resolved_type, extracted_value)
            if range_error:
                reasons.append(range_error)

    # No-inference check
    if exact_quote:
        quote_error = validate_value_in_quote(extracted_value, exact_quote)
        if quote_error:
            reasons.append(quote_error)

    if not 0 <= confidence <= 1:
        reasons.append(
            _reject(RejectionCode.INVALID_CONFIDENCE, f"Confidence {confidence} must be between 0 and 1")
        )

    if not exact_quote or len(exact_quote.strip()) < settings.pipeline.min_quote_length:
        reasons.append(
            _reject(
                RejectionCode.QUOTE_TOO_SHORT,
                f"Exact quote is required and must be at least "
                f"{settings.pipeline.min_quote_length} characters",
            )
        )

    if 0 <= confidence < settings.pipeline.low_confidence_warning:
        warnings.append(f"Low confidence extraction: {confidence}")

    return ValidationOutcome(valid=not reasons, reasons=reasons, warnings=warnings)
