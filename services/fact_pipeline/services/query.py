"""
Rule Query
==========

Read side for consumers: published rules in effect on a date, and
applicability of a rule to a context.

Version: 0.1.0
"""

from collections.abc import Mapping
from datetime import date, datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from services.fact_pipeline.dsl import evaluate
from services.fact_pipeline.models import RegulatoryRuleModel, RuleStatus
from services.fact_pipeline.services.concepts import resolve_canonical_slug
from services.fact_pipeline.services.temporal import effective_at_clause, is_effective


async def find_published_rules(
    session: AsyncSession,
    concept_slug: str,
    as_of: date | datetime | str,
    domain: str | None = None,
) -> list[RegulatoryRuleModel]:
    """
    PUBLISHED rules for a concept in effect on `as_of`.

    The slug is resolved through the alias table, so callers may pass any
    known alias.
    """
    query = select(RegulatoryRuleModel).where(
        RegulatoryRuleModel.concept_slug == resolve_canonical_slug(concept_slug),
        RegulatoryRuleModel.status == RuleStatus.PUBLISHED,
        effective_at_clause(RegulatoryRuleModel, as_of),
    )
    if domain:
        query = query.where(RegulatoryRuleModel.domain == domain)
    result = await session.execute(
        query.order_by(RegulatoryRuleModel.effective_from.desc(), RegulatoryRuleModel.id)
    )
    return list(result.scalars().all())


async def applicable_rules(
    session: AsyncSession,
    concept_slug: str,
    as_of: date | datetime | str,
    context: Mapping[str, Any],
) -> list[RegulatoryRuleModel]:
    """Published rules in effect on `as_of` whose appliesWhen holds for `context`."""
    rules = await find_published_rules(session, concept_slug, as_of)
    return [
        rule
        for rule in rules
        if is_effective(rule.effective_from, rule.effective_until, as_of)
        and evaluate(rule.applies_when, context)
    ]
