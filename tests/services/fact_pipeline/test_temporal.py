"""
Temporal Filtering Tests
========================

Tests for half-open effective windows in Python and in SQL.

Version: 0.1.0
"""

from datetime import date, datetime

from sqlalchemy import select

from services.fact_pipeline.models import RegulatoryRuleModel, RuleStatus
from services.fact_pipeline.services.query import applicable_rules, find_published_rules
from services.fact_pipeline.services.temporal import (
    effective_at_clause,
    is_effective,
    to_date,
    windows_overlap,
)
from shared.database.postgres import postgres_session


class TestWindows:
    """Tests for the pure window helpers."""

    def test_until_is_exclusive(self) -> None:
        """Test a rule is not in effect on its until date."""
        assert is_effective(date(2025, 1, 1), date(2025, 7, 1), date(2025, 6, 30))
        assert not is_effective(date(2025, 1, 1), date(2025, 7, 1), date(2025, 7, 1))

    def test_from_is_inclusive(self) -> None:
        """Test a rule is in effect on its from date."""
        assert is_effective(date(2025, 1, 1), None, "2025-01-01")
        assert not is_effective(date(2025, 1, 1), None, "2024-12-31")

    def test_datetime_as_of(self) -> None:
        """Test datetimes compare by day."""
        assert to_date(datetime(2025, 3, 1, 23, 59)) == date(2025, 3, 1)
        assert to_date("2025-03-01T10:00:00") == date(2025, 3, 1)

    def test_overlap(self) -> None:
        """Test half-open overlap, including open ends."""
        assert windows_overlap(date(2025, 1, 1), None, date(2030, 1, 1), None)
        assert windows_overlap(date(2025, 1, 1), date(2025, 7, 1), date(2025, 6, 30), None)
        assert not windows_overlap(date(2025, 1, 1), date(2025, 7, 1), date(2025, 7, 1), None)
        assert not windows_overlap(date(2026, 1, 1), None, date(2025, 1, 1), date(2026, 1, 1))


class TestPublishedQuery:
    """Tests for the consumer read path."""

    async def test_until_excluded_in_sql(self, factory) -> None:
        """Test the SQL clause agrees with is_effective on the boundary."""
        rule_id = await factory.rule(
            status=RuleStatus.PUBLISHED,
            effective_until=date(2025, 7, 1),
        )
        async with postgres_session() as session:
            on_boundary = await session.execute(
                select(RegulatoryRuleModel.id).where(
                    effective_at_clause(RegulatoryRuleModel, date(2025, 7, 1))
                )
            )
            before_boundary = await session.execute(
                select(RegulatoryRuleModel.id).where(
                    effective_at_clause(RegulatoryRuleModel, date(2025, 6, 30))
                )
            )
        assert on_boundary.scalars().all() == []
        assert before_boundary.scalars().all() == [rule_id]

    async def test_successor_takes_over_on_until_date(self, factory) -> None:
        """Test exactly one rule answers on the handover day."""
        old_id = await factory.rule(
            value="25",
            status=RuleStatus.PUBLISHED,
            effective_from=date(2024, 1, 1),
            effective_until=date(2025, 1, 1),
        )
        new_id = await factory.rule(
            value="24",
            status=RuleStatus.PUBLISHED,
            effective_from=date(2025, 1, 1),
        )
        async with postgres_session() as session:
            on_handover = await find_published_rules(session, "pdv-standardna-stopa", date(2025, 1, 1))
            day_before = await find_published_rules(session, "vat-standard-rate", "2024-12-31")
        assert [r.id for r in on_handover] == [new_id]
        assert [r.id for r in day_before] == [old_id]

    async def test_only_published_rules_are_returned(self, factory) -> None:
        """Test drafts and approved rules stay invisible to consumers."""
        await factory.rule(status=RuleStatus.APPROVED)
        async with postgres_session() as session:
            assert await find_published_rules(session, "pdv-standardna-stopa", date(2025, 3, 1)) == []

    async def test_applicable_rules_evaluate_predicate(self, factory) -> None:
        """Test applicability combines window and appliesWhen."""
        rule_id = await factory.rule(
            status=RuleStatus.PUBLISHED,
            applies_when={"op": "cmp", "field": "entity.type", "cmp": "eq", "value": "OBRT"},
        )
        async with postgres_session() as session:
            obrt = await applicable_rules(
                session, "pdv-standardna-stopa", date(2025, 3, 1), {"entity": {"type": "OBRT"}}
            )
            doo = await applicable_rules(
                session, "pdv-standardna-stopa", date(2025, 3, 1), {"entity": {"type": "DOO"}}
            )
        assert [r.id for r in obrt] == [rule_id]
        assert doo == []
