"""
Rule Reviewer
=============

Quality gate and approval for composed rules.

DRAFT -> PENDING_REVIEW once the rule has at least one pointer, every
pointer quote is found in its evidence, and appliesWhen parses.

PENDING_REVIEW -> APPROVED automatically only for T2/T3 rules with no
unresolved conflicts and either high confidence or an elapsed grace
period. T0/T1 rules are approved by a person through `approve_rule`.

Version: 0.1.0
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from services.fact_pipeline.dsl import validate_applies_when
from services.fact_pipeline.exceptions import ApprovalError
from services.fact_pipeline.models import RegulatoryRuleModel, RuleStatus, utcnow
from services.fact_pipeline.schemas import RejectionCode, RejectionReason, Severity, StageResult
from services.fact_pipeline.services.arbiter import unresolved_conflict_count
from services.fact_pipeline.services.audit import SYSTEM_ACTOR, AuditAction, record_audit
from services.fact_pipeline.services.lifecycle import is_automated_actor, lifecycle
from services.fact_pipeline.validation import find_quote_in_evidence
from shared.config import settings
from shared.database.postgres import postgres_session
from shared.logging import get_logger, stage_context


logger = get_logger(__name__)

STAGE = "review"


@dataclass
class ApprovalDecision:
    """Whether a PENDING_REVIEW rule may be approved without a person."""

    approve: bool
    reason: str


def quality_gate(rule: RegulatoryRuleModel) -> list[RejectionReason]:
    """
    Check a DRAFT rule before it enters review.

    Returns:
        Every failure found; empty when the rule may proceed
    """
    failures: list[RejectionReason] = []

    if not rule.source_pointers:
        failures.append(
            RejectionReason(
                code=RejectionCode.NO_POINTERS,
                description="Rule has no source pointers",
                severity=Severity.CRITICAL,
                recommendation="Re-extract evidence for this concept",
            )
        )

    for pointer in rule.source_pointers:
        evidence_text = pointer.evidence.text if pointer.evidence is not None else ""
        if not find_quote_in_evidence(evidence_text, pointer.exact_quote).found:
            failures.append(
                RejectionReason(
                    code=RejectionCode.QUOTE_UNVERIFIED,
                    description=f"Quote of pointer {pointer.id} not found in evidence {pointer.evidence_id}",
                    severity=Severity.CRITICAL,
                    recommendation="Check the evidence capture and re-run extraction",
                )
            )

    valid, error = validate_applies_when(rule.applies_when)
    if not valid:
        failures.append(
            RejectionReason(
                code=RejectionCode.DSL_INVALID,
                description=f"appliesWhen is invalid: {error}",
                severity=Severity.MAJOR,
                recommendation="Correct the predicate and recompose",
            )
        )

    return failures


def auto_approval_decision(
    rule: RegulatoryRuleModel,
    unresolved_conflicts: int,
    now: datetime,
    grace_period: timedelta,
) -> ApprovalDecision:
    """Decide whether `rule` may be approved by the automated reviewer."""
    if rule.risk_tier.requires_human_approval:
        return ApprovalDecision(False, f"{rule.risk_tier.value} requires human approval")
    if unresolved_conflicts:
        return ApprovalDecision(False, f"{unresolved_conflicts} unresolved conflict(s)")
    if not rule.source_pointers:
        return ApprovalDecision(False, "no source pointers")

    pipeline = settings.pipeline
    if rule.confidence >= pipeline.auto_approve_confidence:
        return ApprovalDecision(True, "high_confidence")

    pending_since = rule.pending_since or rule.updated_at
    if (
        pending_since is not None
        and now - pending_since >= grace_period
        and rule.confidence >= pipeline.grace_approve_confidence
    ):
        return ApprovalDecision(True, "grace_period_elapsed")

    return ApprovalDecision(False, "awaiting grace period")


def _reject(
    session: AsyncSession,
    rule: RegulatoryRuleModel,
    reasons: list[RejectionReason],
    actor: str,
) -> None:
    lifecycle.apply(rule, RuleStatus.REJECTED)
    rule.rejection_reason = {
        "rejected_by": actor,
        "reasons": [r.model_dump(mode="json") for r in reasons],
    }
    record_audit(
        session,
        AuditAction.RULE_REJECTED,
        "rule",
        rule.id,
        actor=actor,
        reasons=[r.code.value for r in reasons],
        description="; ".join(r.description for r in reasons),
    )
    logger.info(
        "rule_rejected",
        rule_id=rule.id,
        reasons=[r.code.value for r in reasons],
        actor=actor,
    )


class ReviewerService:
    """Runs the quality gate and automated approval inside one unit of work."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def _rules_in(self, status: RuleStatus, limit: int) -> list[RegulatoryRuleModel]:
        result = await self.session.execute(
            select(RegulatoryRuleModel)
            .where(RegulatoryRuleModel.status == status)
            .order_by(RegulatoryRuleModel.created_at, RegulatoryRuleModel.id)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def submit_drafts(self, limit: int) -> dict[str, list[str]]:
        """Move passing DRAFT rules to PENDING_REVIEW and reject the rest."""
        submitted, rejected = [], []
        for rule in await self._rules_in(RuleStatus.DRAFT, limit):
            failures = quality_gate(rule)
            if failures:
                _reject(self.session, rule, failures, SYSTEM_ACTOR)
                rejected.append(rule.id)
                continue
            lifecycle.apply(rule, RuleStatus.PENDING_REVIEW)
            record_audit(self.session, AuditAction.RULE_SUBMITTED, "rule", rule.id)
            submitted.append(rule.id)
        return {"submitted": submitted, "rejected": rejected}

    async def auto_approve(
        self,
        now: datetime,
        grace_period: timedelta,
        limit: int,
    ) -> dict[str, list[str]]:
        """Approve eligible T2/T3 PENDING_REVIEW rules."""
        approved, waiting = [], []
        actor = settings.pipeline.automated_actor
        for rule in await self._rules_in(RuleStatus.PENDING_REVIEW, limit):
            decision = auto_approval_decision(
                rule,
                await unresolved_conflict_count(self.session, rule.id),
                now,
                grace_period,
            )
            if not decision.approve:
                waiting.append(rule.id)
                continue

            rule.approved_by = actor
            rule.approved_at = now
            lifecycle.apply(rule, RuleStatus.APPROVED)
            record_audit(
                self.session,
                AuditAction.RULE_AUTO_APPROVED,
                "rule",
                rule.id,
                actor=actor,
                reason=decision.reason,
                confidence=rule.confidence,
            )
            logger.info(
                "rule_auto_approved",
                rule_id=rule.id,
                reason=decision.reason,
                confidence=rule.confidence,
            )
            approved.append(rule.id)
        return {"approved": approved, "waiting": waiting}


async def run_reviewer(
    now: datetime | None = None,
    grace_period_override: timedelta | None = None,
    override_actor: str | None = None,
    override_reason: str | None = None,
    limit: int | None = None,
) -> StageResult:
    """
    Admin entry point: gate DRAFT rules and auto-approve eligible ones.

    Args:
        now: Clock for grace-period checks (naive UTC)
        grace_period_override: Replace the configured grace period for this run
        override_actor: Human requesting the override
        override_reason: Why the override is needed
        limit: Max rules per phase

    Raises:
        ApprovalError: If an override lacks a human actor or a reason
    """
    now = now or utcnow()
    limit = limit or settings.pipeline.review.batch_size
    grace_period = timedelta(hours=settings.pipeline.review_grace_hours)

    if grace_period_override is not None:
        if is_automated_actor(override_actor):
            raise ApprovalError(
                f"Grace period override requires a human actor, got {override_actor!r}"
            )
        if not override_reason or not override_reason.strip():
            raise ApprovalError("Grace period override requires a reason")

    with stage_context(STAGE):
        async with postgres_session() as session:
            if grace_period_override is not None:
                record_audit(
                    session,
                    AuditAction.GRACE_PERIOD_OVERRIDE,
                    "pipeline",
                    STAGE,
                    actor=override_actor,
                    configured_hours=settings.pipeline.review_grace_hours,
                    override_hours=grace_period_override.total_seconds() / 3600,
                    reason=override_reason,
                )
                await session.flush()
                logger.warning(
                    "grace_period_overridden",
                    actor=override_actor,
                    override_hours=grace_period_override.total_seconds() / 3600,
                    reason=override_reason,
                )
                grace_period = grace_period_override

            service = ReviewerService(session)
            gated = await service.submit_drafts(limit)
            approvals = await service.auto_approve(now, grace_period, limit)

    details: dict[str, Any] = {**gated, **approvals}
    logger.info(
        "reviewer_run_complete",
        submitted=len(gated["submitted"]),
        rejected=len(gated["rejected"]),
        approved=len(approvals["approved"]),
    )
    return StageResult.ok(
        STAGE,
        f"{len(gated['submitted'])} submitted, {len(gated['rejected'])} rejected, "
        f"{len(approvals['approved'])} approved",
        processed=len(gated["submitted"]) + len(gated["rejected"]) + len(approvals["approved"]),
        rule_ids=approvals["approved"],
        details=details,
    )


async def approve_rule(rule_id: str, approved_by: str, note: str | None = None) -> StageResult:
    """
    Human approval of a PENDING_REVIEW rule. The only path for T0/T1.

    Raises:
        ApprovalError: Automated identity, unknown rule or unresolved conflicts
        InvalidTransitionError: Rule is not PENDING_REVIEW
    """
    if is_automated_actor(approved_by):
        raise ApprovalError(f"Approval requires a human identity, got {approved_by!r}")

    with stage_context(STAGE, rule_id=rule_id, actor=approved_by):
        async with postgres_session() as session:
            rule = await session.get(RegulatoryRuleModel, rule_id)
            if rule is None:
                raise ApprovalError(f"Rule {rule_id} not found")
            conflicts = await unresolved_conflict_count(session, rule.id)
            if conflicts:
                raise ApprovalError(f"Rule {rule_id} has {conflicts} unresolved conflict(s)")

            rule.approved_by = approved_by.strip()
            rule.approved_at = utcnow()
            lifecycle.apply(rule, RuleStatus.APPROVED)
            record_audit(
                session,
                AuditAction.RULE_APPROVED,
                "rule",
                rule.id,
                actor=rule.approved_by,
                risk_tier=rule.risk_tier.value,
                note=note,
            )
            logger.info("rule_approved", rule_id=rule.id, approved_by=rule.approved_by)

    return StageResult.ok(STAGE, "Rule approved", rule_id=rule_id)


async def reject_rule(rule_id: str, reason: RejectionReason, rejected_by: str) -> StageResult:
    """
    Human rejection of a DRAFT or PENDING_REVIEW rule.

    Raises:
        ApprovalError: Automated identity or unknown rule
        InvalidTransitionError: Rule is not rejectable in its status
    """
    if is_automated_actor(rejected_by):
        raise ApprovalError(f"Rejection requires a human identity, got {rejected_by!r}")

    with stage_context(STAGE, rule_id=rule_id, actor=rejected_by):
        async with postgres_session() as session:
            rule = await session.get(RegulatoryRuleModel, rule_id)
            if rule is None:
                raise ApprovalError(f"Rule {rule_id} not found")
            _reject(session, rule, [reason], rejected_by.strip())

    return StageResult.ok(STAGE, "Rule rejected", rule_id=rule_id, reason_code=reason.code.value)
