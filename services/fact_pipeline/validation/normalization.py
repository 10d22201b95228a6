"""
Locale Normalization
====================

Expands extracted values into the spellings they can take in Croatian
regulatory text, and normalizes text for quote matching.

Numbers:
    "40000"  -> "40000", "40.000", "40 000", "40,000" (via separator-tolerant regex)
    "0,5"    -> "0,5", "0.5"
Dates (ISO input):
    "2025-01-01" -> "1. siječnja 2025", "1.01.2025", "1.1.2025", "01.01.2025", "1/01/2025"

Version: 0.1.0
"""

import re
import unicodedata
from decimal import Decimal, InvalidOperation


CROATIAN_MONTHS_GENITIVE = (
    "siječnja",
    "veljače",
    "ožujka",
    "travnja",
    "svibnja",
    "lipnja",
    "srpnja",
    "kolovoza",
    "rujna",
    "listopada",
    "studenoga",
    "prosinca",
)

ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
DECIMAL_RE = re.compile(r"^\d+[.,]\d+$")
NUMERIC_RE = re.compile(r"^[\d.,]+$")
DIGITS_RE = re.compile(r"^\d+$")

_THOUSANDS_DOT_RE = re.compile(r"^[1-9]\d{0,2}(\.\d{3})+$")
_THOUSANDS_COMMA_RE = re.compile(r"^[1-9]\d{0,2}(,\d{3})+$")

_DOUBLE_QUOTES_RE = re.compile(
    "[\u201c\u201d\u201e\u201f\u00ab\u00bb\u2039\u203a\u275d\u275e\u276e\u276f\uff02]"
)
_SINGLE_QUOTES_RE = re.compile("[\u2018\u2019\u201a\u201b\u2032\uff07]")
_WHITESPACE_RE = re.compile(r"\s+")


def _dedupe(values: list[str]) -> list[str]:
    return list(dict.fromkeys(values))


def number_variants(value: str) -> list[str]:
    """
    Spellings of a numeric value.

    Decimals get both comma and period forms; integers lose their
    thousand separators.
    """
    if DECIMAL_RE.match(value):
        return _dedupe([value, value.replace(".", ",", 1), value.replace(",", ".", 1)])
    return _dedupe([value, re.sub(r"[.,\s]", "", value)])


def date_variants(iso_date: str) -> list[str]:
    """Croatian spellings of an ISO date."""
    year, month, day = iso_date.split("-")
    month_num, day_num = int(month), int(day)
    if not 1 <= month_num <= 12:
        return [iso_date]

    return _dedupe(
        [
            iso_date,
            f"{day_num}. {CROATIAN_MONTHS_GENITIVE[month_num - 1]} {year}",
            f"{day_num}.{month}.{year}",
            f"{day_num}.{month_num}.{year}",
            f"{day}.{month}.{year}",
            f"{day_num}/{month}/{year}",
        ]
    )


def candidate_patterns(value: str) -> list[str]:
    """All spellings under which `value` may legitimately appear in a quote."""
    if ISO_DATE_RE.match(value):
        return date_variants(value)
    if NUMERIC_RE.match(value):
        return number_variants(value)
    return [value]


def numeric_boundary_regex(pattern: str) -> re.Pattern[str]:
    """
    Regex matching a numeric pattern as a whole number.

    Digit-only patterns of four or more digits may carry a thousand
    separator between any two digits; formatted patterns match literally.
    The match must not be preceded by a digit and must not be followed by
    an optional separator plus a digit, so "25" never matches inside
    "2025" or "25.000".
    """
    if DIGITS_RE.match(pattern):
        body = r"[.,\s]?".join(pattern) if len(pattern) >= 4 else pattern
    else:
        body = re.escape(pattern)
    return re.compile(rf"(?:^|[^\d]){body}(?![.,\s]?\d)", re.IGNORECASE)


def parse_number(value: str) -> Decimal | None:
    """
    Parse a locale-formatted number.

    "40.000" and "40 000" read as forty thousand; "0,5" and "0.5" as one
    half. When both separators are present the last one is the decimal mark.
    """
    cleaned = value.strip().replace("\u00a0", "").replace(" ", "")
    if not cleaned:
        return None

    has_dot, has_comma = "." in cleaned, "," in cleaned
    if has_dot and has_comma:
        decimal_mark = "." if cleaned.rfind(".") > cleaned.rfind(",") else ","
        thousands = "," if decimal_mark == "." else "."
        cleaned = cleaned.replace(thousands, "").replace(decimal_mark, ".")
    elif has_dot:
        if _THOUSANDS_DOT_RE.match(cleaned):
            cleaned = cleaned.replace(".", "")
    elif has_comma:
        if _THOUSANDS_COMMA_RE.match(cleaned):
            cleaned = cleaned.replace(",", "")
        else:
            cleaned = cleaned.replace(",", ".")

    try:
        number = Decimal(cleaned)
    except InvalidOperation:
        return None
    if not number.is_finite():
        return None
    return number


def canonical_value(value: str, numeric: bool) -> str:
    """
    Canonical text of a value for identity comparison and hashing.

    Numeric values become plain decimal strings ("40.000" -> "40000",
    "25,00" -> "25"); everything else is trimmed.
    """
    value = value.strip()
    if numeric:
        number = parse_number(value)
        if number is not None:
            text = format(number.normalize(), "f")
            return text if text != "-0" else "0"
    return value


def normalize_for_match(text: str) -> str:
    """
    Normalize text for quote matching.

    Applied in order: NFKC, NBSP to space, soft hyphens removed, quote and
    apostrophe variants unified, whitespace runs collapsed, trimmed. No
    fuzzy matching.
    """
    if not text:
        return ""
    normalized = unicodedata.normalize("NFKC", text)
    normalized = normalized.replace("\u00a0", " ").replace("\u00ad", "")
    normalized = _DOUBLE_QUOTES_RE.sub('"', normalized)
    normalized = _SINGLE_QUOTES_RE.sub("'", normalized)
    normalized = _WHITESPACE_RE.sub(" ", normalized)
    return normalized.strip()


def normalize_with_offsets(text: str) -> tuple[str, list[int]]:
    """
    Normalize `text` like `normalize_for_match`, character by character,
    keeping the original index of every output character.

    Returns:
        (normalized text, origin index per normalized character)
    """
    out: list[str] = []
    origin: list[int] = []
    pending_space: int | None = None

    for index, char in enumerate(text):
        piece = unicodedata.normalize("NFKC", char)
        piece = piece.replace("\u00a0", " ").replace("\u00ad", "")
        piece = _DOUBLE_QUOTES_RE.sub('"', piece)
        piece = _SINGLE_QUOTES_RE.sub("'", piece)
        for sub in piece:
            if sub.isspace():
                if pending_space is None:
                    pending_space = index
                continue
            if pending_space is not None and out:
                out.append(" ")
                origin.append(pending_space)
            pending_space = None
            out.append(sub)
            origin.append(index)

    return "".join(out), origin
