"""
Pipeline Admin Routes
=====================

Admin entry points for each pipeline stage plus human approval and
conflict resolution.

Version: 0.1.0
"""

from datetime import datetime, timedelta
from typing import Any

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from services.fact_pipeline.models import (
    ConflictStatus,
    DeadLetterModel,
    RegulatoryConflictModel,
)
from services.fact_pipeline.schemas import (
    ConflictOut,
    RejectionCode,
    RejectionReason,
    Severity,
    StageResult,
)
from services.fact_pipeline.services.arbiter import resolve_escalated_conflict, run_arbiter
from services.fact_pipeline.services.composer import compose_pending_pointers, run_composer
from services.fact_pipeline.services.extraction import enqueue_evidence
from services.fact_pipeline.services.releaser import run_releaser
from services.fact_pipeline.services.reviewer import approve_rule, reject_rule, run_reviewer
from services.fact_pipeline.workers.drainer import PipelineDrainer
from shared.database.postgres import get_postgres_session
from shared.logging import get_logger


logger = get_logger(__name__)

router = APIRouter()


class ComposeRequest(BaseModel):
    """Pointers to compose into one rule."""

    pointer_ids: list[str] = Field(..., min_length=1)


class ReviewRequest(BaseModel):
    """Reviewer run options. An override needs a human actor and a reason."""

    now: datetime | None = None
    grace_period_override_hours: float | None = Field(default=None, ge=0)
    override_actor: str | None = None
    override_reason: str | None = None
    limit: int | None = Field(default=None, ge=1, le=1000)


class ArbitrateRequest(BaseModel):
    """Arbiter run options."""

    conflict_ids: list[str] | None = None
    scan: bool = False


class ReleaseRequest(BaseModel):
    """Rules to publish as one release."""

    rule_ids: list[str] = Field(..., min_length=1)
    released_by: str = Field(..., min_length=1, max_length=200)


class ApproveRequest(BaseModel):
    """Human approval."""

    approved_by: str = Field(..., min_length=1, max_length=200)
    note: str | None = None


class RejectRequest(BaseModel):
    """Human rejection with a structured reason."""

    rejected_by: str = Field(..., min_length=1, max_length=200)
    code: RejectionCode = RejectionCode.APPROVAL_DENIED
    description: str = Field(..., min_length=1)
    severity: Severity = Severity.MAJOR
    recommendation: str | None = None


class ResolveConflictRequest(BaseModel):
    """Human conflict resolution."""

    actor: str = Field(..., min_length=1, max_length=200)
    winning_rule_id: str | None = None
    winning_value: str | None = None
    reason: str | None = None


class EnqueueRequest(BaseModel):
    """Evidence to queue for extraction."""

    evidence_ids: list[str] = Field(..., min_length=1)


# ============================================================================
# Stage entry points
# ============================================================================


@router.post("/compose", response_model=StageResult)
async def compose(request: ComposeRequest) -> StageResult:
    """Compose the given pointers into a rule (or merge onto an existing one)."""
    return await run_composer(request.pointer_ids)


@router.post("/compose/pending", response_model=list[StageResult])
async def compose_pending(
    limit: int | None = Query(default=None, ge=1, le=1000),
) -> list[StageResult]:
    """Compose every VALIDATED pointer, grouped by concept and window."""
    return await compose_pending_pointers(limit)


@router.post("/review", response_model=StageResult)
async def review(request: ReviewRequest) -> StageResult:
    """Run the quality gate and automated approval."""
    override = (
        timedelta(hours=request.grace_period_override_hours)
        if request.grace_period_override_hours is not None
        else None
    )
    return await run_reviewer(
        now=request.now,
        grace_period_override=override,
        override_actor=request.override_actor,
        override_reason=request.override_reason,
        limit=request.limit,
    )


@router.post("/arbitrate", response_model=StageResult)
async def arbitrate(request: ArbitrateRequest) -> StageResult:
    """Resolve or escalate OPEN conflicts."""
    return await run_arbiter(request.conflict_ids, scan=request.scan)


@router.post("/release", response_model=StageResult)
async def release(request: ReleaseRequest) -> StageResult:
    """Publish rules as one release, or report every gate failure."""
    return await run_releaser(request.rule_ids, request.released_by)


@router.post("/evidence/enqueue")
async def enqueue(
    request: EnqueueRequest,
    db: AsyncSession = Depends(get_postgres_session),
) -> dict[str, Any]:
    """Queue evidence for extraction."""
    created = await enqueue_evidence(db, request.evidence_ids)
    logger.info("evidence_enqueued", count=len(created))
    return {"enqueued": created}


@router.post("/drainer/run-once")
async def drainer_run_once() -> dict[str, int]:
    """Run one drainer tick over every stage."""
    return await PipelineDrainer().run_once()


# ============================================================================
# Human decisions
# ============================================================================


@router.post("/rules/{rule_id}/approve", response_model=StageResult)
async def approve(rule_id: str, request: ApproveRequest) -> StageResult:
    """Approve a PENDING_REVIEW rule. Required for T0/T1."""
    return await approve_rule(rule_id, request.approved_by, note=request.note)


@router.post("/rules/{rule_id}/reject", response_model=StageResult)
async def reject(rule_id: str, request: RejectRequest) -> StageResult:
    """Reject a DRAFT or PENDING_REVIEW rule."""
    reason = RejectionReason(
        code=request.code,
        description=request.description,
        severity=request.severity,
        recommendation=request.recommendation,
    )
    return await reject_rule(rule_id, reason, request.rejected_by)


@router.post("/conflicts/{conflict_id}/resolve", response_model=StageResult)
async def resolve_conflict(conflict_id: str, request: ResolveConflictRequest) -> StageResult:
    """Resolve an escalated conflict by hand."""
    return await resolve_escalated_conflict(
        conflict_id,
        request.winning_rule_id,
        request.actor,
        reason=request.reason,
        winning_value=request.winning_value,
    )


# ============================================================================
# Inspection
# ============================================================================


@router.get("/conflicts", response_model=list[ConflictOut])
async def list_conflicts(
    conflict_status: ConflictStatus | None = Query(default=None, alias="status"),
    limit: int = Query(default=100, ge=1, le=1000),
    db: AsyncSession = Depends(get_postgres_session),
) -> list[ConflictOut]:
    """List conflicts, newest first."""
    query = select(RegulatoryConflictModel)
    if conflict_status is not None:
        query = query.where(RegulatoryConflictModel.status == conflict_status)
    result = await db.execute(
        query.order_by(RegulatoryConflictModel.created_at.desc()).limit(limit)
    )
    return [ConflictOut.model_validate(c) for c in result.scalars().all()]


@router.get("/dead-letters")
async def list_dead_letters(
    stage: str | None = Query(default=None),
    limit: int = Query(default=100, ge=1, le=1000),
    db: AsyncSession = Depends(get_postgres_session),
) -> list[dict[str, Any]]:
    """List dead-lettered items, newest first."""
    query = select(DeadLetterModel)
    if stage:
        query = query.where(DeadLetterModel.stage == stage)
    result = await db.execute(query.order_by(DeadLetterModel.created_at.desc()).limit(limit))
    return [
        {
            "id": d.id,
            "stage": d.stage,
            "item_type": d.item_type,
            "item_id": d.item_id,
            "reason_code": d.reason_code,
            "reason": d.reason,
            "attempts": d.attempts,
            "created_at": d.created_at.isoformat(),
        }
        for d in result.scalars().all()
    ]
