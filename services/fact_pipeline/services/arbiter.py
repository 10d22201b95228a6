"""
Conflict Arbiter
================

Resolves OPEN conflicts using the legal-source hierarchy.

Strategies, in order:
1. hierarchy   (lex superior): strictly higher authority wins
2. temporal    (lex posterior): later effective_from wins, equal authority only
3. specificity (lex specialis): narrower appliesWhen wins, equal authority and date only
4. escalate:   a human decides

Escalation is mandatory when the resolution confidence is low, when both
rules are T0, when nothing discriminates the rules, or when either rule's
extraction confidence is low. Ties are never broken by preferring a value.

The losing rule is DEPRECATED and points at its winner; an OVERRIDES edge
winner -> loser is inserted after a cycle check. Every write for a run
happens in one transaction.

Version: 0.1.0
"""

from collections import defaultdict
from dataclasses import dataclass
from typing import Any

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from services.fact_pipeline.dsl import parse_applies_when, specificity, to_dict
from services.fact_pipeline.exceptions import (
    ApprovalError,
    CycleDetectedError,
    DSLValidationError,
)
from services.fact_pipeline.models import (
    ACTIVE_RULE_STATUSES,
    ConflictStatus,
    ConflictType,
    PointerStatus,
    RegulatoryConflictModel,
    RegulatoryRuleModel,
    ResolutionStrategy,
    RiskTier,
    RuleStatus,
    SourcePointerModel,
    utcnow,
)
from services.fact_pipeline.schemas import RejectionCode, StageResult
from services.fact_pipeline.services.audit import SYSTEM_ACTOR, AuditAction, record_audit
from services.fact_pipeline.services.composer import (
    ComposerService,
    link_pointers,
    pointer_value,
)
from services.fact_pipeline.services.conflicts import RuleCandidate, detect_pairwise_conflicts
from services.fact_pipeline.services.graph import SupersessionGraph, add_override_edge
from services.fact_pipeline.services.lifecycle import is_automated_actor, lifecycle
from shared.config import settings
from shared.database.postgres import postgres_session
from shared.logging import get_logger, stage_context


logger = get_logger(__name__)

STAGE = "arbitrate"

# `winning_rule_id` value that picks the proposed rule of a composer-seeded conflict
CANDIDATE_WINNER = "candidate"

STRATEGY_CONFIDENCE = {
    ResolutionStrategy.HIERARCHY: 0.95,
    ResolutionStrategy.TEMPORAL: 0.90,
    ResolutionStrategy.SPECIFICITY: 0.80,
}

ALWAYS_ESCALATE = {
    ConflictType.SOURCE_CONFLICT: "Sources disagree before composition; a human must pick the value",
    ConflictType.CROSS_SLUG_DUPLICATE: "Same value under different concepts; a human must merge or split",
}


@dataclass
class ArbitrationDecision:
    """Outcome of comparing two facts."""

    strategy: ResolutionStrategy
    confidence: float
    rationale: str
    winner: Any = None
    loser: Any = None

    @property
    def escalated(self) -> bool:
        return self.strategy == ResolutionStrategy.ESCALATE


def _escalate(reason: str, confidence: float = 0.0) -> ArbitrationDecision:
    return ArbitrationDecision(ResolutionStrategy.ESCALATE, confidence, reason)


def _label(item: Any) -> str:
    return getattr(item, "id", None) or "candidate"


def arbitrate(a: Any, b: Any) -> ArbitrationDecision:
    """
    Decide between two conflicting facts (rules or a rule and a candidate).

    Returns:
        ArbitrationDecision; `winner`/`loser` are the given objects unless
        the decision escalates
    """
    if a.risk_tier == RiskTier.T0 and b.risk_tier == RiskTier.T0:
        return _escalate("Both rules are T0")

    min_rule_confidence = settings.pipeline.arbiter_min_rule_confidence
    low = [_label(item) for item in (a, b) if item.confidence < min_rule_confidence]
    if low:
        return _escalate(
            f"Extraction confidence below {min_rule_confidence} for {', '.join(low)}"
        )

    if a.authority_level.rank != b.authority_level.rank:
        winner, loser = (a, b) if a.authority_level.rank > b.authority_level.rank else (b, a)
        strategy = ResolutionStrategy.HIERARCHY
        rationale = (
            f"{winner.authority_level.value} outranks {loser.authority_level.value}"
        )
    elif a.effective_from != b.effective_from:
        winner, loser = (a, b) if a.effective_from > b.effective_from else (b, a)
        strategy = ResolutionStrategy.TEMPORAL
        rationale = (
            f"Later effective date {winner.effective_from} supersedes {loser.effective_from}"
        )
    else:
        try:
            score_a, score_b = specificity(a.applies_when), specificity(b.applies_when)
        except DSLValidationError as e:
            return _escalate(f"Cannot compare applicability: {e.message}")
        if score_a == score_b:
            return _escalate(
                "Equal authority, effective date and specificity; no discriminator"
            )
        winner, loser = (a, b) if score_a > score_b else (b, a)
        strategy = ResolutionStrategy.SPECIFICITY
        rationale = "Narrower applicability condition prevails"

    confidence = STRATEGY_CONFIDENCE[strategy]
    if confidence < settings.pipeline.arbiter_min_confidence:
        return _escalate(
            f"{strategy.value} resolution confidence {confidence} below threshold", confidence
        )
    return ArbitrationDecision(strategy, confidence, rationale, winner, loser)


class ArbiterService:
    """Applies arbitration decisions inside one unit of work."""

    def __init__(self, session: AsyncSession, graph: SupersessionGraph | None = None) -> None:
        self.session = session
        self.graph = graph or SupersessionGraph()
        self.counts: dict[str, int] = defaultdict(int)

    # =========================================================================
    # Loading
    # =========================================================================

    async def load_rules(self, rule_ids: list[str]) -> dict[str, RegulatoryRuleModel]:
        if not rule_ids:
            return {}
        result = await self.session.execute(
            select(RegulatoryRuleModel).where(RegulatoryRuleModel.id.in_(rule_ids))
        )
        return {rule.id: rule for rule in result.scalars().all()}

    async def load_pointers(self, pointer_ids: list[str]) -> list[SourcePointerModel]:
        if not pointer_ids:
            return []
        result = await self.session.execute(
            select(SourcePointerModel).where(SourcePointerModel.id.in_(pointer_ids))
        )
        return list(result.scalars().all())

    async def _rule_with_signature(self, signature: str) -> RegulatoryRuleModel | None:
        result = await self.session.execute(
            select(RegulatoryRuleModel).where(
                RegulatoryRuleModel.meaning_signature == signature,
                RegulatoryRuleModel.status.in_(ACTIVE_RULE_STATUSES),
            )
        )
        return result.scalars().first()

    async def _other_pending_for_candidate(self, signature: str, exclude: set[str]) -> bool:
        result = await self.session.execute(
            select(RegulatoryConflictModel).where(
                RegulatoryConflictModel.status.in_([ConflictStatus.OPEN, ConflictStatus.ESCALATED]),
                RegulatoryConflictModel.candidate.is_not(None),
            )
        )
        return any(
            (c.candidate or {}).get("meaning_signature") == signature and c.id not in exclude
            for c in result.scalars().all()
        )

    # =========================================================================
    # Conflict bookkeeping
    # =========================================================================

    def mark_resolved(
        self,
        conflict: RegulatoryConflictModel,
        strategy: ResolutionStrategy,
        confidence: float | None,
        winning_rule_id: str | None,
        actor: str = SYSTEM_ACTOR,
        **details: Any,
    ) -> None:
        conflict.status = ConflictStatus.RESOLVED
        conflict.resolution_strategy = strategy
        conflict.resolution_confidence = confidence
        conflict.winning_rule_id = winning_rule_id
        conflict.resolved_by = actor
        conflict.resolved_at = utcnow()
        record_audit(
            self.session,
            AuditAction.CONFLICT_RESOLVED,
            "conflict",
            conflict.id,
            actor=actor,
            strategy=strategy.value,
            winning_rule_id=winning_rule_id,
            **details,
        )
        self.counts["moot" if strategy == ResolutionStrategy.MOOT else "resolved"] += 1
        logger.info(
            "conflict_resolved",
            conflict_id=conflict.id,
            strategy=strategy.value,
            winning_rule_id=winning_rule_id,
            actor=actor,
        )

    def mark_escalated(self, conflict: RegulatoryConflictModel, reason: str, confidence: float = 0.0) -> None:
        conflict.status = ConflictStatus.ESCALATED
        conflict.resolution_strategy = ResolutionStrategy.ESCALATE
        conflict.resolution_confidence = confidence
        conflict.escalation_reason = reason
        record_audit(
            self.session,
            AuditAction.CONFLICT_ESCALATED,
            "conflict",
            conflict.id,
            reason=reason,
        )
        self.counts["escalated"] += 1
        logger.warning(
            "conflict_escalated",
            conflict_id=conflict.id,
            conflict_type=conflict.conflict_type.value,
            reason=reason,
        )

    # =========================================================================
    # Effects
    # =========================================================================

    async def supersede(
        self,
        winner: RegulatoryRuleModel,
        loser: RegulatoryRuleModel,
        actor: str = SYSTEM_ACTOR,
    ) -> None:
        """
        Deprecate `loser` in favor of `winner` and record the edge.

        A winner that replaces several rules keeps the first in
        `supersedes_id`; the full set is in `rule_edges`.

        Raises:
            CycleDetectedError: Before anything is written
        """
        self.graph.check_edge(winner.id, loser.id)
        lifecycle.apply(loser, RuleStatus.DEPRECATED)
        loser.superseded_by_id = winner.id
        if winner.supersedes_id is None:
            winner.supersedes_id = loser.id
        await add_override_edge(self.session, self.graph, winner.id, loser.id)
        record_audit(
            self.session,
            AuditAction.RULE_DEPRECATED,
            "rule",
            loser.id,
            actor=actor,
            superseded_by=winner.id,
        )

    async def materialize(
        self,
        candidate: RuleCandidate,
        pointers: list[SourcePointerModel],
    ) -> RegulatoryRuleModel | None:
        """
        Create (or merge onto) the rule a winning candidate describes.

        Returns:
            The rule, or None when the candidate's predicate is invalid and
            its pointers were rejected
        """
        composer = ComposerService(self.session)
        existing = await composer.find_matching_rule(candidate)
        if existing is not None:
            link_pointers(existing, pointers)
            return existing
        try:
            predicate = parse_applies_when(candidate.applies_when)
        except DSLValidationError as e:
            composer.reject_pointers(pointers, RejectionCode.DSL_INVALID, e.message)
            return None
        return await composer.create_rule(candidate, pointers, to_dict(predicate))

    def reject_candidate(self, pointers: list[SourcePointerModel], reason: str) -> None:
        ComposerService(self.session).reject_pointers(
            [p for p in pointers if p.status != PointerStatus.REJECTED],
            RejectionCode.CONFLICT_LOST,
            reason,
        )

    # =========================================================================
    # Processing
    # =========================================================================

    async def process_rule_pair(self, conflict: RegulatoryConflictModel) -> None:
        rules = await self.load_rules(conflict.rule_ids)
        participants = [rules.get(rid) for rid in conflict.rule_ids]
        if len(participants) < 2 or any(r is None or not r.is_active for r in participants):
            self.mark_resolved(conflict, ResolutionStrategy.MOOT, None, None, reason="participant_inactive")
            return

        rule_a, rule_b = participants
        decision = arbitrate(rule_a, rule_b)
        if decision.escalated:
            self.mark_escalated(conflict, decision.rationale, decision.confidence)
            return
        try:
            await self.supersede(decision.winner, decision.loser)
        except CycleDetectedError as e:
            self.mark_escalated(conflict, e.message, decision.confidence)
            return
        decision.winner.explanation = decision.rationale
        self.mark_resolved(
            conflict,
            decision.strategy,
            decision.confidence,
            decision.winner.id,
            rationale=decision.rationale,
        )

    async def process_candidate_group(self, conflicts: list[RegulatoryConflictModel]) -> None:
        """
        Arbitrate every conflict raised by one proposed rule.

        The candidate is materialized only if it beats every active rule it
        conflicts with; one loss rejects it.
        """
        snapshot = conflicts[0].candidate
        candidate = RuleCandidate.from_snapshot(snapshot)
        signature = snapshot.get("meaning_signature") or candidate.meaning_signature

        materialized = await self._rule_with_signature(signature)
        if materialized is not None:
            for conflict in conflicts:
                conflict.item_b_id = materialized.id
                await self.process_rule_pair(conflict)
            return

        pointers = await self.load_pointers(candidate.pointer_ids)
        live_pointers = [p for p in pointers if p.status != PointerStatus.REJECTED]
        rules = await self.load_rules([c.item_a_id for c in conflicts if c.item_a_id])

        pending: list[tuple[RegulatoryConflictModel, RegulatoryRuleModel]] = []
        for conflict in conflicts:
            rule = rules.get(conflict.item_a_id)
            if not live_pointers or rule is None or not rule.is_active:
                self.mark_resolved(conflict, ResolutionStrategy.MOOT, None, None, reason="participant_inactive")
            else:
                pending.append((conflict, rule))

        if not pending:
            if live_pointers and not await self._other_pending_for_candidate(
                signature, {c.id for c in conflicts}
            ):
                # Nothing blocks the proposal any more; hand it back to the composer
                for pointer in live_pointers:
                    if pointer.status == PointerStatus.HELD:
                        pointer.status = PointerStatus.VALIDATED
            return

        for conflict, _ in pending:
            if conflict.conflict_type in ALWAYS_ESCALATE:
                self.mark_escalated(conflict, ALWAYS_ESCALATE[conflict.conflict_type])
        pending = [(c, r) for c, r in pending if c.status == ConflictStatus.OPEN]
        if not pending:
            return

        decisions = [(conflict, rule, arbitrate(rule, candidate)) for conflict, rule in pending]
        lost = [(c, r, d) for c, r, d in decisions if not d.escalated and d.winner is r]

        if lost:
            conflict, rule, decision = lost[0]
            reason = f"Lost to rule {rule.id}: {decision.rationale}"
            self.reject_candidate(live_pointers, reason)
            for c, r, d in decisions:
                if not d.escalated and d.winner is r:
                    self.mark_resolved(c, d.strategy, d.confidence, r.id, rationale=d.rationale)
                else:
                    self.mark_resolved(c, ResolutionStrategy.MOOT, None, None, reason="candidate_rejected")
            return

        escalations = [(c, d) for c, _, d in decisions if d.escalated]
        if escalations:
            for c, d in escalations:
                self.mark_escalated(c, d.rationale, d.confidence)
            return

        new_rule = await self.materialize(candidate, live_pointers)
        if new_rule is None:
            for c, r, _ in decisions:
                self.mark_resolved(c, ResolutionStrategy.MOOT, None, r.id, reason="candidate_predicate_invalid")
            return

        for c, r, d in decisions:
            await self.supersede(new_rule, r)
            c.item_b_id = new_rule.id
            self.mark_resolved(c, d.strategy, d.confidence, new_rule.id, rationale=d.rationale)
        new_rule.explanation = decisions[0][2].rationale

    async def process(self, conflicts: list[RegulatoryConflictModel]) -> None:
        """Process OPEN conflicts; composer-seeded ones are grouped by candidate."""
        groups: dict[str, list[RegulatoryConflictModel]] = defaultdict(list)
        for conflict in conflicts:
            if conflict.status != ConflictStatus.OPEN:
                continue
            if conflict.conflict_type == ConflictType.SOURCE_CONFLICT:
                self.mark_escalated(conflict, ALWAYS_ESCALATE[ConflictType.SOURCE_CONFLICT])
            elif conflict.candidate is not None and not conflict.item_b_id:
                signature = conflict.candidate.get("meaning_signature", conflict.id)
                groups[signature].append(conflict)
            elif conflict.conflict_type == ConflictType.CROSS_SLUG_DUPLICATE:
                rules = await self.load_rules(conflict.rule_ids)
                if any(r is None or not r.is_active for r in (rules.get(i) for i in conflict.rule_ids)):
                    self.mark_resolved(conflict, ResolutionStrategy.MOOT, None, None, reason="participant_inactive")
                else:
                    self.mark_escalated(conflict, ALWAYS_ESCALATE[ConflictType.CROSS_SLUG_DUPLICATE])
            else:
                await self.process_rule_pair(conflict)

        for group in groups.values():
            await self.process_candidate_group(group)

    # =========================================================================
    # Scan
    # =========================================================================

    async def scan(self) -> list[RegulatoryConflictModel]:
        """
        Seed OPEN conflicts for conflicting active rule pairs that have none.

        Catches pairs the composer could not see, such as rules created by
        concurrent composers.
        """
        result = await self.session.execute(
            select(RegulatoryRuleModel)
            .where(RegulatoryRuleModel.status.in_(ACTIVE_RULE_STATUSES))
            .order_by(RegulatoryRuleModel.created_at, RegulatoryRuleModel.id)
        )
        rules = list(result.scalars().all())

        buckets: dict[Any, list[RegulatoryRuleModel]] = defaultdict(list)
        for rule in rules:
            buckets[("slug", rule.concept_slug)].append(rule)
            buckets[("value", rule.domain, rule.value, rule.value_type)].append(rule)

        known = await self.session.execute(
            select(RegulatoryConflictModel.item_a_id, RegulatoryConflictModel.item_b_id).where(
                RegulatoryConflictModel.status.in_([ConflictStatus.OPEN, ConflictStatus.ESCALATED]),
                RegulatoryConflictModel.item_b_id.is_not(None),
            )
        )
        seen = {frozenset(pair) for pair in known.all()}

        created = []
        for bucket in buckets.values():
            if len(bucket) < 2:
                continue
            for rule_a, rule_b, conflict_type in detect_pairwise_conflicts(bucket):
                pair = frozenset((rule_a.id, rule_b.id))
                if pair in seen:
                    continue
                seen.add(pair)
                conflict = RegulatoryConflictModel(
                    conflict_type=conflict_type,
                    status=ConflictStatus.OPEN,
                    item_a_id=rule_a.id,
                    item_b_id=rule_b.id,
                    source_pointer_ids=[],
                    description=(
                        f"{conflict_type.value}: rule {rule_a.id} ({rule_a.concept_slug}={rule_a.value}) "
                        f"vs rule {rule_b.id} ({rule_b.concept_slug}={rule_b.value})"
                    ),
                )
                self.session.add(conflict)
                created.append(conflict)

        if created:
            await self.session.flush()
            for conflict in created:
                record_audit(
                    self.session,
                    AuditAction.CONFLICT_CREATED,
                    "conflict",
                    conflict.id,
                    conflict_type=conflict.conflict_type.value,
                    rule_ids=conflict.rule_ids,
                )
            logger.info("conflicts_seeded_by_scan", count=len(created))
        return created


async def run_arbiter(conflict_ids: list[str] | None = None, scan: bool = False) -> StageResult:
    """
    Admin entry point: arbitrate OPEN conflicts in one transaction.

    Args:
        conflict_ids: Restrict to these conflicts (default: every OPEN one)
        scan: Seed conflicts for conflicting active rule pairs first

    Returns:
        StageResult with resolved/escalated/moot counts in `details`
    """
    with stage_context(STAGE):
        async with postgres_session() as session:
            service = ArbiterService(session, await SupersessionGraph.load(session))
            seeded = await service.scan() if scan else []

            query = select(RegulatoryConflictModel).where(
                RegulatoryConflictModel.status == ConflictStatus.OPEN
            )
            if conflict_ids is not None:
                query = query.where(RegulatoryConflictModel.id.in_(conflict_ids))
            result = await session.execute(
                query.order_by(RegulatoryConflictModel.created_at, RegulatoryConflictModel.id)
            )
            conflicts = list(result.scalars().all())
            await service.process(conflicts)

            processed_ids = [c.id for c in conflicts]
            details = {
                "resolved": service.counts["resolved"],
                "escalated": service.counts["escalated"],
                "moot": service.counts["moot"],
                "seeded": len(seeded),
            }
    logger.info("arbiter_run_complete", processed=len(processed_ids), **details)
    return StageResult.ok(
        STAGE,
        f"Processed {len(processed_ids)} conflict(s)",
        processed=len(processed_ids),
        conflict_ids=processed_ids,
        details=details,
    )


async def resolve_escalated_conflict(
    conflict_id: str,
    winning_rule_id: str | None,
    actor: str,
    reason: str | None = None,
    winning_value: str | None = None,
) -> StageResult:
    """
    Human resolution of an OPEN or ESCALATED conflict.

    Args:
        conflict_id: Conflict to resolve
        winning_rule_id: One of the conflicting rules, or "candidate" for the
            proposed rule of a composer-seeded conflict
        actor: Human identity
        reason: Free-text justification recorded in the audit trail
        winning_value: For SOURCE_CONFLICT, the value the sources should compose to

    Raises:
        ApprovalError: On an automated actor or an unknown/already resolved conflict
        CycleDetectedError: If the chosen winner would close a supersession cycle
    """
    if is_automated_actor(actor):
        raise ApprovalError(f"Conflict resolution requires a human actor, got {actor!r}")

    with stage_context(STAGE, conflict_id=conflict_id, actor=actor):
        async with postgres_session() as session:
            conflict = await session.get(RegulatoryConflictModel, conflict_id)
            if conflict is None:
                raise ApprovalError(f"Conflict {conflict_id} not found")
            if conflict.status == ConflictStatus.RESOLVED:
                raise ApprovalError(f"Conflict {conflict_id} is already resolved")

            service = ArbiterService(session, await SupersessionGraph.load(session))

            if conflict.conflict_type == ConflictType.SOURCE_CONFLICT:
                if winning_value is None:
                    raise ApprovalError("SOURCE_CONFLICT resolution requires winning_value")
                pointers = await service.load_pointers(list(conflict.source_pointer_ids or []))
                keep = [p for p in pointers if pointer_value(p) == winning_value.strip()]
                if not keep:
                    raise ApprovalError(f"No pointer in conflict {conflict_id} states {winning_value!r}")
                for pointer in keep:
                    pointer.status = PointerStatus.VALIDATED
                service.reject_candidate(
                    [p for p in pointers if p not in keep],
                    f"Human resolution chose value {winning_value}",
                )
                service.mark_resolved(
                    conflict, ResolutionStrategy.HUMAN, 1.0, None, actor=actor,
                    winning_value=winning_value, reason=reason,
                )
                return StageResult.ok(STAGE, "Source conflict resolved", conflict_ids=[conflict.id])

            rules = await service.load_rules(conflict.rule_ids)
            is_candidate = conflict.candidate is not None and not conflict.item_b_id

            if is_candidate and winning_rule_id == CANDIDATE_WINNER:
                candidate = RuleCandidate.from_snapshot(conflict.candidate)
                pointers = [
                    p for p in await service.load_pointers(candidate.pointer_ids)
                    if p.status != PointerStatus.REJECTED
                ]
                if not pointers:
                    raise ApprovalError(f"Conflict {conflict_id} candidate has no live pointers")
                new_rule = await service.materialize(candidate, pointers)
                if new_rule is None:
                    service.mark_resolved(
                        conflict, ResolutionStrategy.HUMAN, 1.0, None, actor=actor,
                        reason=reason, outcome="candidate_predicate_invalid",
                    )
                    return StageResult.fail(
                        STAGE,
                        RejectionCode.DSL_INVALID.value,
                        "Candidate predicate is invalid; pointers rejected",
                        conflict_ids=[conflict.id],
                    )
                loser = rules.get(conflict.item_a_id)
                if loser is not None and loser.is_active:
                    await service.supersede(new_rule, loser, actor=actor)
                conflict.item_b_id = new_rule.id
                service.mark_resolved(
                    conflict, ResolutionStrategy.HUMAN, 1.0, new_rule.id, actor=actor, reason=reason
                )
                return StageResult.ok(
                    STAGE, "Candidate chosen", rule_id=new_rule.id, conflict_ids=[conflict.id]
                )

            if winning_rule_id not in conflict.rule_ids:
                raise ApprovalError(
                    f"winning_rule_id must be one of {conflict.rule_ids}"
                    + (f" or {CANDIDATE_WINNER!r}" if is_candidate else "")
                )

            winner = rules[winning_rule_id]
            if not winner.is_active:
                raise ApprovalError(f"Rule {winner.id} is {winner.status.value} and cannot win")

            if is_candidate:
                pointers = await service.load_pointers(list(conflict.candidate.get("pointer_ids", [])))
                service.reject_candidate(pointers, f"Human resolution chose rule {winner.id}")
            else:
                loser_id = next(rid for rid in conflict.rule_ids if rid != winning_rule_id)
                loser = rules.get(loser_id)
                if loser is not None and loser.is_active:
                    await service.supersede(winner, loser, actor=actor)

            service.mark_resolved(
                conflict, ResolutionStrategy.HUMAN, 1.0, winner.id, actor=actor, reason=reason
            )
            return StageResult.ok(STAGE, "Conflict resolved", rule_id=winner.id, conflict_ids=[conflict.id])


async def unresolved_conflict_count(session: AsyncSession, rule_id: str) -> int:
    """Number of OPEN or ESCALATED conflicts involving `rule_id`."""
    result = await session.execute(
        select(RegulatoryConflictModel.id).where(
            RegulatoryConflictModel.status.in_([ConflictStatus.OPEN, ConflictStatus.ESCALATED]),
            or_(
                RegulatoryConflictModel.item_a_id == rule_id,
                RegulatoryConflictModel.item_b_id == rule_id,
            ),
        )
    )
    return len(result.all())

