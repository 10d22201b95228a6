"""
Rule Releaser
=============

All-or-nothing publication of APPROVED rules as an immutable, versioned
release.

Gates (every gate is evaluated for every rule; any failure aborts the batch):
1. status is APPROVED
2. T0/T1 rules carry a human approved_by
3. no unresolved conflict references the rule
4. at least one source pointer
5. evidence strength: a single distinct source may only back a LAW rule

Version: 0.1.0
"""

import hashlib
import json
from datetime import date, datetime
from enum import Enum
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from services.fact_pipeline.models import (
    AuthorityLevel,
    RegulatoryRuleModel,
    RiskTier,
    RuleReleaseModel,
    RuleStatus,
    new_id,
    utcnow,
)
from services.fact_pipeline.schemas import RejectionCode, StageResult
from services.fact_pipeline.services.arbiter import unresolved_conflict_count
from services.fact_pipeline.services.audit import AuditAction, count_events, record_audit
from services.fact_pipeline.services.lifecycle import is_automated_actor, lifecycle
from services.fact_pipeline.services.temporal import to_date
from shared.config import settings
from shared.database.postgres import postgres_session
from shared.logging import get_logger, stage_context


logger = get_logger(__name__)

STAGE = "release"

DATE_FIELDS = ("effective_from", "effective_until")


class Bump(str, Enum):
    """Semantic version component to increment."""

    MAJOR = "major"
    MINOR = "minor"
    PATCH = "patch"


class EvidenceStrength(str, Enum):
    """How many independent sources back a rule."""

    MULTI_SOURCE = "MULTI_SOURCE"
    SINGLE_SOURCE = "SINGLE_SOURCE"


# =============================================================================
# Versioning
# =============================================================================


def parse_version(version: str) -> tuple[int, int, int]:
    major, minor, patch = (int(part) for part in version.split("."))
    return major, minor, patch


def bump_for(risk_tiers: list[RiskTier]) -> Bump:
    """Highest-risk rule in the batch drives the bump."""
    if RiskTier.T0 in risk_tiers:
        return Bump.MAJOR
    if RiskTier.T1 in risk_tiers:
        return Bump.MINOR
    return Bump.PATCH


def next_version(previous: str | None, bump: Bump) -> str:
    """
    Bump `previous` (None means no release yet, i.e. 0.0.0).

    >>> next_version("1.4.2", Bump.MINOR)
    '1.5.0'
    """
    major, minor, patch = parse_version(previous) if previous else (0, 0, 0)
    if bump == Bump.MAJOR:
        return f"{major + 1}.0.0"
    if bump == Bump.MINOR:
        return f"{major}.{minor + 1}.0"
    return f"{major}.{minor}.{patch + 1}"


async def latest_version(session: AsyncSession) -> str | None:
    result = await session.execute(select(RuleReleaseModel.version))
    versions = [row[0] for row in result.all()]
    return max(versions, key=parse_version) if versions else None


# =============================================================================
# Snapshots & hashing
# =============================================================================


def rule_snapshot(rule: RegulatoryRuleModel) -> dict[str, Any]:
    """Release snapshot of one rule."""
    return {
        "id": rule.id,
        "concept_slug": rule.concept_slug,
        "domain": rule.domain,
        "value": rule.value,
        "value_type": rule.value_type.value,
        "authority_level": rule.authority_level.value,
        "risk_tier": rule.risk_tier.value,
        "applies_when": rule.applies_when,
        "effective_from": rule.effective_from,
        "effective_until": rule.effective_until,
        "meaning_signature": rule.meaning_signature,
        "confidence": rule.confidence,
        "approved_by": rule.approved_by,
        "source_pointer_ids": sorted(p.id for p in rule.source_pointers),
    }


def _normalize(value: Any, key: str | None = None) -> Any:
    if isinstance(value, dict):
        return {k: _normalize(v, k) for k, v in value.items()}
    if isinstance(value, list):
        return [_normalize(v) for v in value]
    if isinstance(value, datetime | date):
        return to_date(value).isoformat()
    if key in DATE_FIELDS and isinstance(value, str) and value:
        return to_date(value).isoformat()
    if isinstance(value, Enum):
        return value.value
    return value


def normalize_snapshots(snapshots: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Dates as YYYY-MM-DD, sorted by (concept_slug, meaning_signature, id)."""
    normalized = [_normalize(s) for s in snapshots]
    return sorted(
        normalized,
        key=lambda s: (s.get("concept_slug", ""), s.get("meaning_signature", ""), s.get("id", "")),
    )


def compute_content_hash(snapshots: list[dict[str, Any]]) -> str:
    """
    Deterministic SHA-256 over a batch of rule snapshots.

    Input order, key order and equivalent date formats do not change the
    hash; any value change does.
    """
    canonical = json.dumps(
        normalize_snapshots(snapshots),
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


# =============================================================================
# Gates
# =============================================================================


def evidence_strength(rule: RegulatoryRuleModel) -> tuple[EvidenceStrength, int]:
    """Strength and number of distinct evidence sources backing `rule`."""
    sources = {p.evidence.source for p in rule.source_pointers if p.evidence is not None}
    strength = EvidenceStrength.MULTI_SOURCE if len(sources) >= 2 else EvidenceStrength.SINGLE_SOURCE
    return strength, len(sources)


def check_rule_gates(rule: RegulatoryRuleModel, unresolved_conflicts: int) -> list[dict[str, Any]]:
    """
    Evaluate all five gates for one rule.

    Returns:
        Itemized failures: {"rule_id", "gate", "reason"}
    """
    failures = []

    def fail(gate: str, reason: str) -> None:
        failures.append({"rule_id": rule.id, "gate": gate, "reason": reason})

    if rule.status != RuleStatus.APPROVED:
        fail("status", f"Rule is {rule.status.value}, expected APPROVED")
    if rule.risk_tier.requires_human_approval and is_automated_actor(rule.approved_by):
        fail(
            "human_approval",
            f"{rule.risk_tier.value} rule approved by {rule.approved_by!r}, a human approver is required",
        )
    if unresolved_conflicts:
        fail("conflicts", f"{unresolved_conflicts} unresolved conflict(s)")
    if not rule.source_pointers:
        fail("source_pointers", "Rule has no source pointers")

    strength, sources = evidence_strength(rule)
    if strength == EvidenceStrength.SINGLE_SOURCE and rule.authority_level != AuthorityLevel.LAW:
        fail(
            "evidence_strength",
            f"{sources} distinct source(s) for a {rule.authority_level.value} rule; "
            f"single-source rules must be LAW",
        )
    return failures


async def _load_rules(session: AsyncSession, rule_ids: list[str]) -> list[RegulatoryRuleModel]:
    result = await session.execute(
        select(RegulatoryRuleModel).where(RegulatoryRuleModel.id.in_(rule_ids))
    )
    return list(result.scalars().all())


async def eligible_rule_ids(session: AsyncSession, limit: int) -> list[str]:
    """APPROVED rules that pass every gate on their own."""
    result = await session.execute(
        select(RegulatoryRuleModel)
        .where(RegulatoryRuleModel.status == RuleStatus.APPROVED)
        .order_by(RegulatoryRuleModel.approved_at, RegulatoryRuleModel.id)
        .limit(limit)
    )
    eligible = []
    for rule in result.scalars().all():
        if not check_rule_gates(rule, await unresolved_conflict_count(session, rule.id)):
            eligible.append(rule.id)
    return eligible


async def _audit_trail(session: AsyncSession, rules: list[RegulatoryRuleModel]) -> dict[str, int]:
    rule_ids = [r.id for r in rules]
    pointers = {p.id for r in rules for p in r.source_pointers}
    evidence = {p.evidence_id for r in rules for p in r.source_pointers}
    return {
        "evidence_count": len(evidence),
        "pointer_count": len(pointers),
        "review_count": await count_events(
            session,
            rule_ids,
            [
                AuditAction.RULE_SUBMITTED,
                AuditAction.RULE_AUTO_APPROVED,
                AuditAction.RULE_APPROVED,
                AuditAction.RULE_REJECTED,
            ],
        ),
        "human_approval_count": await count_events(session, rule_ids, [AuditAction.RULE_APPROVED]),
    }


# =============================================================================
# Release
# =============================================================================


async def run_releaser(
    rule_ids: list[str],
    released_by: str,
    effective_from: date | None = None,
) -> StageResult:
    """
    Admin entry point: publish `rule_ids` as one release, or nothing.

    Args:
        rule_ids: Candidate rules
        released_by: Identity triggering the release
        effective_from: Release effective date (default: earliest rule effective date)

    Returns:
        StageResult with the new version and hash, or every gate failure
    """
    rule_ids = sorted(set(rule_ids))
    with stage_context(STAGE, rule_count=len(rule_ids)):
        async with postgres_session() as session:
            if not rule_ids:
                return StageResult.fail(STAGE, RejectionCode.GATE_FAILED.value, "No rules to release")

            rules = await _load_rules(session, rule_ids)
            found = {r.id for r in rules}
            failures: list[dict[str, Any]] = [
                {"rule_id": rid, "gate": "exists", "reason": "Rule not found"}
                for rid in rule_ids
                if rid not in found
            ]
            for rule in rules:
                failures.extend(
                    check_rule_gates(rule, await unresolved_conflict_count(session, rule.id))
                )

            if failures:
                attempt_id = new_id()
                record_audit(
                    session,
                    AuditAction.RELEASE_BLOCKED,
                    "release",
                    attempt_id,
                    actor=released_by,
                    rule_ids=rule_ids,
                    failures=failures,
                )
                logger.warning(
                    "release_blocked",
                    rule_count=len(rule_ids),
                    failure_count=len(failures),
                    gates=sorted({f["gate"] for f in failures}),
                )
                return StageResult.fail(
                    STAGE,
                    RejectionCode.GATE_FAILED.value,
                    f"{len(failures)} gate failure(s) across {len({f['rule_id'] for f in failures})} rule(s)",
                    rule_ids=rule_ids,
                    failures=failures,
                )

            bump = bump_for([r.risk_tier for r in rules])
            version = next_version(await latest_version(session), bump)
            snapshots = normalize_snapshots([rule_snapshot(r) for r in rules])
            content_hash = compute_content_hash(snapshots)
            audit_trail = await _audit_trail(session, rules)

            release = RuleReleaseModel(
                version=version,
                bump=bump.value,
                content_hash=content_hash,
                effective_from=effective_from or min(r.effective_from for r in rules),
                rule_ids=rule_ids,
                snapshots=snapshots,
                audit_trail=audit_trail,
                released_by=released_by,
                released_at=utcnow(),
            )
            session.add(release)

            for rule in rules:
                lifecycle.apply(rule, RuleStatus.PUBLISHED)
                record_audit(
                    session,
                    AuditAction.RULE_PUBLISHED,
                    "rule",
                    rule.id,
                    actor=released_by,
                    version=version,
                )

            await session.flush()
            record_audit(
                session,
                AuditAction.RELEASE_CREATED,
                "release",
                release.id,
                actor=released_by,
                version=version,
                content_hash=content_hash,
                **audit_trail,
            )
            release_id = release.id

    logger.info(
        "release_published",
        version=version,
        bump=bump.value,
        content_hash=content_hash,
        rule_count=len(rule_ids),
    )
    return StageResult.ok(
        STAGE,
        f"Released {version}",
        rule_ids=rule_ids,
        processed=len(rule_ids),
        details={
            "release_id": release_id,
            "version": version,
            "bump": bump.value,
            "content_hash": content_hash,
            "audit_trail": audit_trail,
        },
    )


async def release_eligible(limit: int | None = None) -> StageResult | None:
    """Drainer stage: release every currently eligible APPROVED rule."""
    limit = limit or settings.pipeline.release.batch_size
    async with postgres_session() as session:
        rule_ids = await eligible_rule_ids(session, limit)
    if not rule_ids:
        return None
    return await run_releaser(rule_ids, released_by=settings.pipeline.automated_actor)
