"""
Rule Query Routes
=================

Read-only API for published rules, releases and predicate evaluation.

Version: 0.1.0
"""

from datetime import date
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from services.fact_pipeline.dsl import evaluate, validate_applies_when
from services.fact_pipeline.models import RegulatoryRuleModel, RuleReleaseModel, utctoday
from services.fact_pipeline.schemas import ReleaseOut, RuleOut
from services.fact_pipeline.services.query import applicable_rules, find_published_rules
from services.fact_pipeline.services.releaser import parse_version
from shared.database.postgres import get_postgres_session
from shared.logging import get_logger


logger = get_logger(__name__)

router = APIRouter()


class EvaluateRequest(BaseModel):
    """Evaluate a predicate against a context."""

    applies_when: dict[str, Any]
    context: dict[str, Any] = Field(default_factory=dict)


class ApplicableRequest(BaseModel):
    """Find published rules that apply to a context."""

    concept_slug: str = Field(..., min_length=1)
    as_of: date | None = None
    context: dict[str, Any] = Field(default_factory=dict)


@router.get("/published", response_model=list[RuleOut])
async def published_rules(
    concept_slug: str = Query(..., min_length=1, description="Concept slug or alias"),
    as_of: date | None = Query(default=None, description="Defaults to today (UTC)"),
    domain: str | None = Query(default=None),
    db: AsyncSession = Depends(get_postgres_session),
) -> list[RuleOut]:
    """
    Published rules in effect on `as_of`.

    Args:
        concept_slug: Canonical slug or a known alias
        as_of: Effective date; a rule whose effective_until equals it is excluded
        domain: Optional domain filter
        db: Database session
    """
    rules = await find_published_rules(db, concept_slug, as_of or utctoday(), domain=domain)
    return [RuleOut.from_rule(r) for r in rules]


@router.post("/applicable", response_model=list[RuleOut])
async def applicable(
    request: ApplicableRequest,
    db: AsyncSession = Depends(get_postgres_session),
) -> list[RuleOut]:
    """Published rules in effect whose appliesWhen holds for the context."""
    rules = await applicable_rules(
        db, request.concept_slug, request.as_of or utctoday(), request.context
    )
    return [RuleOut.from_rule(r) for r in rules]


@router.post("/evaluate")
async def evaluate_predicate(request: EvaluateRequest) -> dict[str, Any]:
    """Evaluate an appliesWhen predicate. Invalid predicates are reported, not evaluated."""
    valid, error = validate_applies_when(request.applies_when)
    if not valid:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"Invalid appliesWhen: {error}",
        )
    return {"applies": evaluate(request.applies_when, request.context)}


@router.get("/releases/latest", response_model=ReleaseOut)
async def latest_release(db: AsyncSession = Depends(get_postgres_session)) -> ReleaseOut:
    """Most recent release by semantic version."""
    result = await db.execute(select(RuleReleaseModel))
    releases = list(result.scalars().all())
    if not releases:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No releases yet")
    return ReleaseOut.model_validate(max(releases, key=lambda r: parse_version(r.version)))


@router.get("/releases/{version}", response_model=ReleaseOut)
async def get_release(version: str, db: AsyncSession = Depends(get_postgres_session)) -> ReleaseOut:
    """Release by version."""
    result = await db.execute(select(RuleReleaseModel).where(RuleReleaseModel.version == version))
    release = result.scalars().first()
    if release is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Release not found: {version}",
        )
    return ReleaseOut.model_validate(release)


@router.get("/{rule_id}", response_model=RuleOut)
async def get_rule(rule_id: str, db: AsyncSession = Depends(get_postgres_session)) -> RuleOut:
    """Rule by id, in any status."""
    rule = await db.get(RegulatoryRuleModel, rule_id)
    if rule is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Rule not found: {rule_id}",
        )
    return RuleOut.from_rule(rule)
