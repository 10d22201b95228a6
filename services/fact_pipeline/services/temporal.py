"""
Temporal Filtering
==================

Effective windows are half-open: [effective_from, effective_until).
A rule is in effect on `as_of` when

    effective_from <= as_of < effective_until

with a missing `effective_until` meaning open ended. Every temporal check in
the pipeline goes through these helpers, in Python or in SQL.

Version: 0.1.0
"""

from datetime import date, datetime
from typing import Any

from sqlalchemy import and_, or_, true
from sqlalchemy.sql.elements import ColumnElement


def to_date(value: date | datetime | str) -> date:
    """
    Coerce a date, datetime or ISO string to a date.

    Raises:
        ValueError: If a string is not an ISO date/datetime
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def is_effective(
    effective_from: date,
    effective_until: date | None,
    as_of: date | datetime | str,
) -> bool:
    """Whether the window [effective_from, effective_until) contains `as_of`."""
    day = to_date(as_of)
    if day < effective_from:
        return False
    return effective_until is None or day < effective_until


def windows_overlap(
    from_a: date,
    until_a: date | None,
    from_b: date,
    until_b: date | None,
) -> bool:
    """Whether two half-open windows share at least one day."""
    a_starts_before_b_ends = until_b is None or from_a < until_b
    b_starts_before_a_ends = until_a is None or from_b < until_a
    return a_starts_before_b_ends and b_starts_before_a_ends


def effective_at_clause(model: Any, as_of: date | datetime | str) -> ColumnElement[bool]:
    """SQL form of `is_effective` for a model with effective_from/effective_until."""
    day = to_date(as_of)
    return and_(
        model.effective_from <= day,
        or_(model.effective_until.is_(None), model.effective_until > day),
    )


def overlapping_clause(
    model: Any,
    effective_from: date,
    effective_until: date | None,
) -> ColumnElement[bool]:
    """SQL form of `windows_overlap` against a fixed window."""
    starts_before_end = (
        model.effective_from < effective_until if effective_until is not None else true()
    )
    return and_(
        starts_before_end,
        or_(model.effective_until.is_(None), model.effective_until > effective_from),
    )
