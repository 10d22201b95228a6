"""
Model Helpers
=============

Column defaults shared by the fact pipeline models.

Timestamps are stored as naive UTC so that comparisons behave the same on
PostgreSQL and SQLite.

Version: 0.1.0
"""

import uuid
from datetime import UTC, date, datetime


def utcnow() -> datetime:
    """Current time as naive UTC."""
    return datetime.now(UTC).replace(tzinfo=None)


def utctoday() -> date:
    return utcnow().date()


def new_id() -> str:
    return str(uuid.uuid4())
