"""
Rule Composer
=============

Turns a set of validated source pointers that share a concept into a
single DRAFT rule.

Steps:
0. Blocked-domain guard (test/synthetic data never reaches rule state)
1. Resolve the canonical concept slug
2. Pointers must agree on value; disagreement seeds a SOURCE_CONFLICT
3. Merge onto an existing active rule for the same fact (idempotent)
4. Detect structural conflicts; any hit seeds OPEN conflicts and aborts
5. Validate appliesWhen; invalid predicates reject the composition
6. Create the rule in DRAFT with every pointer linked

Creation is serialized by the partial unique index on meaning_signature.
A losing racer gets an IntegrityError, re-reads, and merges.

Version: 0.1.0
"""

from collections import defaultdict
from typing import Any

from sqlalchemy import and_, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from services.fact_pipeline.dsl import parse_applies_when, to_dict
from services.fact_pipeline.exceptions import DSLValidationError
from services.fact_pipeline.models import (
    ACTIVE_RULE_STATUSES,
    ConflictStatus,
    ConflictType,
    PointerStatus,
    RegulatoryConflictModel,
    RegulatoryRuleModel,
    RuleStatus,
    SourcePointerModel,
)
from services.fact_pipeline.schemas import RejectionCode, StageResult
from services.fact_pipeline.services.audit import AuditAction, dead_letter, record_audit
from services.fact_pipeline.services.concepts import is_blocked_domain, resolve_canonical_slug
from services.fact_pipeline.services.conflicts import (
    ConflictCandidate,
    RuleCandidate,
    detect_conflicts,
)
from services.fact_pipeline.services.temporal import overlapping_clause
from services.fact_pipeline.validation.normalization import canonical_value
from shared.config import settings
from shared.database.postgres import postgres_session
from shared.logging import get_logger, stage_context


logger = get_logger(__name__)

STAGE = "compose"

UNCONDITIONAL = {"op": "true"}


def pointer_value(pointer: SourcePointerModel) -> str:
    """Canonical value of a pointer for identity comparison."""
    return canonical_value(pointer.extracted_value, pointer.value_type.is_numeric)


def build_candidate(canonical_slug: str, pointers: list[SourcePointerModel]) -> RuleCandidate:
    """
    Derive the proposed rule from agreeing pointers.

    Authority is the highest among the pointers, risk tier the most
    critical, confidence the lowest. The effective window and appliesWhen
    come from the highest-authority pointer (ties: higher confidence, then
    older pointer).
    """
    primary = sorted(
        pointers,
        key=lambda p: (-p.authority_level.rank, -p.confidence, p.created_at, p.id),
    )[0]
    return RuleCandidate(
        concept_slug=canonical_slug,
        domain=primary.domain,
        value=pointer_value(primary),
        value_type=primary.value_type,
        authority_level=max((p.authority_level for p in pointers), key=lambda a: a.rank),
        risk_tier=max((p.risk_tier for p in pointers), key=lambda t: t.criticality),
        applies_when=primary.applies_when if primary.applies_when is not None else dict(UNCONDITIONAL),
        effective_from=primary.effective_from,
        effective_until=primary.effective_until,
        confidence=min(p.confidence for p in pointers),
        pointer_ids=sorted(p.id for p in pointers),
    )


def link_pointers(rule: RegulatoryRuleModel, pointers: list[SourcePointerModel]) -> int:
    """Link pointers to `rule`, skipping ones already linked. Returns the number added."""
    linked = {p.id for p in rule.source_pointers}
    added = 0
    for pointer in pointers:
        if pointer.id not in linked:
            rule.source_pointers.append(pointer)
            added += 1
        pointer.status = PointerStatus.COMPOSED
    return added


class ComposerService:
    """Composes rules from source pointers inside one unit of work."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    # =========================================================================
    # Queries
    # =========================================================================

    async def _load_pointers(self, pointer_ids: list[str]) -> list[SourcePointerModel]:
        result = await self.session.execute(
            select(SourcePointerModel)
            .where(SourcePointerModel.id.in_(pointer_ids))
            .order_by(SourcePointerModel.created_at, SourcePointerModel.id)
        )
        return list(result.scalars().all())

    async def find_matching_rule(self, candidate: RuleCandidate) -> RegulatoryRuleModel | None:
        """Active rule for the same slug, value and type with an overlapping window."""
        result = await self.session.execute(
            select(RegulatoryRuleModel)
            .where(
                RegulatoryRuleModel.concept_slug == candidate.concept_slug,
                RegulatoryRuleModel.value == candidate.value,
                RegulatoryRuleModel.value_type == candidate.value_type,
                RegulatoryRuleModel.status.in_(ACTIVE_RULE_STATUSES),
                overlapping_clause(
                    RegulatoryRuleModel, candidate.effective_from, candidate.effective_until
                ),
            )
            .order_by(RegulatoryRuleModel.created_at)
            .limit(1)
        )
        return result.scalars().first()

    async def _conflict_scope(self, candidate: RuleCandidate) -> list[RegulatoryRuleModel]:
        """Active rules that could conflict with the candidate."""
        result = await self.session.execute(
            select(RegulatoryRuleModel).where(
                RegulatoryRuleModel.status.in_(ACTIVE_RULE_STATUSES),
                overlapping_clause(
                    RegulatoryRuleModel, candidate.effective_from, candidate.effective_until
                ),
                or_(
                    RegulatoryRuleModel.concept_slug == candidate.concept_slug,
                    and_(
                        RegulatoryRuleModel.domain == candidate.domain,
                        RegulatoryRuleModel.value == candidate.value,
                        RegulatoryRuleModel.value_type == candidate.value_type,
                    ),
                ),
            )
        )
        return list(result.scalars().all())

    async def _open_conflicts_for(self, rule_ids: list[str]) -> list[RegulatoryConflictModel]:
        result = await self.session.execute(
            select(RegulatoryConflictModel).where(
                RegulatoryConflictModel.status.in_([ConflictStatus.OPEN, ConflictStatus.ESCALATED]),
                RegulatoryConflictModel.item_a_id.in_(rule_ids),
            )
        )
        return list(result.scalars().all())

    async def _open_source_conflicts(self) -> list[RegulatoryConflictModel]:
        result = await self.session.execute(
            select(RegulatoryConflictModel).where(
                RegulatoryConflictModel.status.in_([ConflictStatus.OPEN, ConflictStatus.ESCALATED]),
                RegulatoryConflictModel.conflict_type == ConflictType.SOURCE_CONFLICT,
            )
        )
        return list(result.scalars().all())

    # =========================================================================
    # Rejection paths
    # =========================================================================

    def reject_pointers(
        self,
        pointers: list[SourcePointerModel],
        code: RejectionCode,
        reason: str,
    ) -> None:
        for pointer in pointers:
            pointer.status = PointerStatus.REJECTED
            dead_letter(
                self.session,
                stage=STAGE,
                item_type="source_pointer",
                item_id=pointer.id,
                reason_code=code.value,
                reason=reason,
                payload={"concept_slug": pointer.concept_slug, "domain": pointer.domain},
            )

    async def _seed_source_conflict(
        self,
        canonical_slug: str,
        pointers: list[SourcePointerModel],
    ) -> RegulatoryConflictModel:
        pointer_ids = sorted(p.id for p in pointers)
        for existing in await self._open_source_conflicts():
            if sorted(existing.source_pointer_ids or []) == pointer_ids:
                return existing

        values = sorted({f"{pointer_value(p)} ({p.value_type.value})" for p in pointers})
        conflict = RegulatoryConflictModel(
            conflict_type=ConflictType.SOURCE_CONFLICT,
            status=ConflictStatus.OPEN,
            source_pointer_ids=pointer_ids,
            description=(
                f"Sources disagree on '{canonical_slug}': {', '.join(values)}"
            ),
        )
        self.session.add(conflict)
        for pointer in pointers:
            pointer.status = PointerStatus.HELD
        await self.session.flush()
        record_audit(
            self.session,
            AuditAction.CONFLICT_CREATED,
            "conflict",
            conflict.id,
            conflict_type=ConflictType.SOURCE_CONFLICT.value,
            pointer_ids=pointer_ids,
        )
        return conflict

    async def _seed_structural_conflicts(
        self,
        candidate: RuleCandidate,
        detected: list[ConflictCandidate],
        pointers: list[SourcePointerModel],
    ) -> list[RegulatoryConflictModel]:
        signature = candidate.meaning_signature
        existing_by_rule: dict[str, RegulatoryConflictModel] = {}
        for existing in await self._open_conflicts_for([d.rule_id for d in detected]):
            snapshot = existing.candidate or {}
            if snapshot.get("meaning_signature") == signature and existing.item_a_id:
                existing_by_rule[existing.item_a_id] = existing

        conflicts = []
        snapshot = {**candidate.to_snapshot(), "meaning_signature": signature}
        for found in detected:
            conflict = existing_by_rule.get(found.rule_id)
            if conflict is None:
                conflict = RegulatoryConflictModel(
                    conflict_type=found.conflict_type,
                    status=ConflictStatus.OPEN,
                    item_a_id=found.rule_id,
                    item_b_id=None,
                    candidate=snapshot,
                    source_pointer_ids=list(candidate.pointer_ids),
                    description=found.description,
                )
                self.session.add(conflict)
            conflicts.append(conflict)

        for pointer in pointers:
            pointer.status = PointerStatus.HELD
        await self.session.flush()

        for conflict in conflicts:
            if conflict.id not in {c.id for c in existing_by_rule.values()}:
                record_audit(
                    self.session,
                    AuditAction.CONFLICT_CREATED,
                    "conflict",
                    conflict.id,
                    conflict_type=conflict.conflict_type.value,
                    rule_id=conflict.item_a_id,
                    candidate_signature=signature,
                )
        return conflicts

    # =========================================================================
    # Compose
    # =========================================================================

    async def create_rule(
        self,
        candidate: RuleCandidate,
        pointers: list[SourcePointerModel],
        applies_when: dict[str, Any],
    ) -> RegulatoryRuleModel:
        """Insert a DRAFT rule for `candidate` with every pointer linked."""
        rule = RegulatoryRuleModel(
            concept_slug=candidate.concept_slug,
            domain=candidate.domain,
            value=candidate.value,
            value_type=candidate.value_type,
            authority_level=candidate.authority_level,
            risk_tier=candidate.risk_tier,
            applies_when=applies_when,
            confidence=candidate.confidence,
            effective_from=candidate.effective_from,
            effective_until=candidate.effective_until,
            status=RuleStatus.DRAFT,
            meaning_signature=candidate.meaning_signature,
            source_pointers=list(pointers),
        )
        self.session.add(rule)
        for pointer in pointers:
            pointer.status = PointerStatus.COMPOSED
        await self.session.flush()

        record_audit(
            self.session,
            AuditAction.RULE_CREATED,
            "rule",
            rule.id,
            concept_slug=rule.concept_slug,
            value=rule.value,
            pointer_ids=candidate.pointer_ids,
        )
        logger.info(
            "rule_created",
            rule_id=rule.id,
            concept_slug=rule.concept_slug,
            value=rule.value,
            risk_tier=rule.risk_tier.value,
            pointers=len(pointers),
        )
        return rule

    async def compose(self, pointer_ids: list[str]) -> StageResult:
        """
        Compose pointers into a rule.

        Args:
            pointer_ids: Pointers proposed for one concept

        Returns:
            StageResult with the created or merged rule id, or the reason
            composition stopped
        """
        pointers = [
            p for p in await self._load_pointers(pointer_ids) if p.status != PointerStatus.REJECTED
        ]
        if not pointers:
            return StageResult.fail(
                STAGE, RejectionCode.NO_POINTERS.value, "No composable pointers found"
            )

        # 0. Blocked-domain guard
        blocked = sorted({p.domain for p in pointers if is_blocked_domain(p.domain)})
        if blocked:
            reason = f"Blocked domain(s): {', '.join(blocked)}"
            self.reject_pointers(pointers, RejectionCode.BLOCKED_DOMAIN, reason)
            for pointer in pointers:
                record_audit(
                    self.session,
                    AuditAction.COMPOSITION_BLOCKED,
                    "pointer",
                    pointer.id,
                    domain=pointer.domain,
                )
            logger.warning("composition_blocked_domain", domains=blocked)
            return StageResult.fail(STAGE, RejectionCode.BLOCKED_DOMAIN.value, reason)

        # 1. Canonical slug
        slugs = {resolve_canonical_slug(p.concept_slug) for p in pointers}
        if len(slugs) > 1:
            return StageResult.fail(
                STAGE,
                RejectionCode.MIXED_CONCEPTS.value,
                f"Pointers resolve to different concepts: {sorted(slugs)}",
            )
        canonical_slug = slugs.pop()

        # 2. Source agreement
        facts = {(pointer_value(p), p.value_type) for p in pointers}
        if len(facts) > 1:
            conflict = await self._seed_source_conflict(canonical_slug, pointers)
            logger.warning(
                "source_conflict_detected",
                concept_slug=canonical_slug,
                conflict_id=conflict.id,
                values=sorted(v for v, _ in facts),
            )
            return StageResult.fail(
                STAGE,
                RejectionCode.SOURCE_CONFLICT.value,
                conflict.description,
                conflict_ids=[conflict.id],
            )

        candidate = build_candidate(canonical_slug, pointers)

        # 3. Merge onto an existing rule
        existing = await self.find_matching_rule(candidate)
        if existing is not None:
            added = link_pointers(existing, pointers)
            if added:
                record_audit(
                    self.session,
                    AuditAction.RULE_MERGED,
                    "rule",
                    existing.id,
                    pointer_ids=candidate.pointer_ids,
                )
            logger.info("rule_merged", rule_id=existing.id, pointers_added=added)
            return StageResult.ok(
                STAGE,
                f"Merged {added} pointer(s) onto existing rule",
                rule_id=existing.id,
                merged=True,
            )

        # 4. Structural conflicts
        detected = detect_conflicts(candidate, await self._conflict_scope(candidate))
        if detected:
            conflicts = await self._seed_structural_conflicts(candidate, detected, pointers)
            logger.warning(
                "composition_conflicted",
                concept_slug=canonical_slug,
                conflicts=[c.conflict_type.value for c in conflicts],
            )
            return StageResult.fail(
                STAGE,
                RejectionCode.STRUCTURAL_CONFLICT.value,
                "; ".join(d.description for d in detected),
                conflict_ids=[c.id for c in conflicts],
            )

        # 5. appliesWhen
        try:
            predicate = parse_applies_when(candidate.applies_when)
        except DSLValidationError as e:
            self.reject_pointers(pointers, RejectionCode.DSL_INVALID, e.message)
            logger.warning("composition_dsl_invalid", concept_slug=canonical_slug, error=e.message)
            return StageResult.fail(STAGE, RejectionCode.DSL_INVALID.value, e.message)

        # 6. Create
        rule = await self.create_rule(candidate, pointers, to_dict(predicate))
        return StageResult.ok(STAGE, "Rule created", rule_id=rule.id)


async def run_composer(pointer_ids: list[str]) -> StageResult:
    """
    Admin entry point: compose the given pointers in one transaction.

    A concurrent composer that wins the insert race causes an
    IntegrityError here; the retry then finds its rule and merges.
    """
    with stage_context(STAGE, pointer_ids=pointer_ids):
        try:
            async with postgres_session() as session:
                return await ComposerService(session).compose(pointer_ids)
        except IntegrityError as e:
            logger.info("composer_insert_race", error=str(e.orig) if e.orig else str(e))
            async with postgres_session() as session:
                return await ComposerService(session).compose(pointer_ids)


async def pending_pointer_groups(session: AsyncSession, limit: int) -> list[list[str]]:
    """
    Group VALIDATED pointers into composition units.

    Pointers for the same domain, canonical concept and effective window
    compose together; different windows are different facts.
    """
    result = await session.execute(
        select(SourcePointerModel)
        .where(SourcePointerModel.status == PointerStatus.VALIDATED)
        .order_by(SourcePointerModel.created_at, SourcePointerModel.id)
        .limit(limit)
    )
    groups: dict[tuple[Any, ...], list[str]] = defaultdict(list)
    for pointer in result.scalars().all():
        key = (
            pointer.domain,
            resolve_canonical_slug(pointer.concept_slug),
            pointer.effective_from,
            pointer.effective_until,
        )
        groups[key].append(pointer.id)
    return list(groups.values())


async def compose_pending_pointers(limit: int | None = None) -> list[StageResult]:
    """
    Compose up to `limit` VALIDATED pointers, one transaction per group.

    Returns:
        One StageResult per composition unit
    """
    limit = limit or settings.pipeline.compose.batch_size
    async with postgres_session() as session:
        groups = await pending_pointer_groups(session, limit)

    results = []
    for pointer_ids in groups:
        results.append(await run_composer(pointer_ids))
    return results
