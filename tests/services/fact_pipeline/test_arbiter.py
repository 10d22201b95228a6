"""
Arbiter Tests
=============

Tests for hierarchy/temporal/specificity arbitration, escalation and the
supersession graph.

Version: 0.1.0
"""

from datetime import date

import pytest
from sqlalchemy import select

from services.fact_pipeline.exceptions import ApprovalError, CycleDetectedError
from services.fact_pipeline.models import (
    AuthorityLevel,
    ConflictStatus,
    PointerStatus,
    RegulatoryConflictModel,
    RegulatoryRuleModel,
    ResolutionStrategy,
    RiskTier,
    RuleEdgeModel,
    RuleStatus,
    SourcePointerModel,
    ValueType,
)
from services.fact_pipeline.services.arbiter import (
    CANDIDATE_WINNER,
    ArbiterService,
    arbitrate,
    resolve_escalated_conflict,
    run_arbiter,
    unresolved_conflict_count,
)
from services.fact_pipeline.services.composer import run_composer
from services.fact_pipeline.services.conflicts import RuleCandidate
from services.fact_pipeline.services.graph import SupersessionGraph
from shared.database.postgres import postgres_session


def fact(**overrides) -> RuleCandidate:
    defaults = dict(
        concept_slug="pdv-standardna-stopa",
        domain="pdv",
        value="25",
        value_type=ValueType.PERCENTAGE,
        authority_level=AuthorityLevel.LAW,
        risk_tier=RiskTier.T2,
        applies_when={"op": "true"},
        effective_from=date(2025, 1, 1),
        effective_until=None,
        confidence=0.95,
    )
    defaults.update(overrides)
    return RuleCandidate(**defaults)


async def load(model, item_id):
    async with postgres_session() as session:
        return await session.get(model, item_id)


class TestArbitrate:
    """Tests for the pure decision function."""

    def test_law_beats_guidance(self) -> None:
        """Test lex superior."""
        law, guidance = fact(), fact(value="13", authority_level=AuthorityLevel.GUIDANCE)
        decision = arbitrate(guidance, law)
        assert decision.strategy == ResolutionStrategy.HIERARCHY
        assert decision.confidence == 0.95
        assert decision.winner is law
        assert decision.loser is guidance

    def test_later_date_wins(self) -> None:
        """Test lex posterior at equal authority."""
        old, new = fact(), fact(value="24", effective_from=date(2026, 1, 1))
        decision = arbitrate(old, new)
        assert decision.strategy == ResolutionStrategy.TEMPORAL
        assert decision.winner is new

    def test_narrower_predicate_wins(self) -> None:
        """Test lex specialis at equal authority and date."""
        general = fact()
        special = fact(
            value="13",
            applies_when={"op": "cmp", "field": "txn.category", "cmp": "eq", "value": "HOTEL"},
        )
        decision = arbitrate(general, special)
        assert decision.strategy == ResolutionStrategy.SPECIFICITY
        assert decision.winner is special

    def test_tie_escalates(self) -> None:
        """Test no discriminator means a human decides."""
        decision = arbitrate(fact(), fact(value="13"))
        assert decision.escalated
        assert decision.winner is None

    def test_both_t0_escalate(self) -> None:
        """Test two T0 rules always escalate."""
        a = fact(risk_tier=RiskTier.T0)
        b = fact(value="13", risk_tier=RiskTier.T0, authority_level=AuthorityLevel.GUIDANCE)
        assert arbitrate(a, b).escalated

    def test_low_rule_confidence_escalates(self) -> None:
        """Test weak extractions never win automatically."""
        a = fact(confidence=0.8)
        b = fact(value="13", authority_level=AuthorityLevel.GUIDANCE)
        decision = arbitrate(a, b)
        assert decision.escalated
        assert "candidate" in decision.rationale


class TestSupersessionGraph:
    """Tests for the acyclic edge store."""

    def test_cycle_rejected(self) -> None:
        """Test an edge closing a cycle raises."""
        graph = SupersessionGraph()
        assert graph.add_edge("a", "b")
        assert graph.add_edge("b", "c")
        with pytest.raises(CycleDetectedError):
            graph.add_edge("c", "a")
        assert not graph.has_edge("c", "a")

    def test_duplicate_edge(self) -> None:
        """Test re-adding an edge is a no-op."""
        graph = SupersessionGraph()
        graph.add_edge("a", "b")
        assert not graph.add_edge("a", "b")
        assert len(graph.edges) == 1

    def test_self_edge_rejected(self) -> None:
        """Test a rule cannot override itself."""
        with pytest.raises(CycleDetectedError):
            SupersessionGraph().add_edge("a", "a")


class TestSupersede:
    """Tests for deprecating a rule in favor of another."""

    async def test_winner_keeps_first_replaced_rule(self, factory) -> None:
        """Test a second supersede adds an edge without moving supersedes_id."""
        winner_id = await factory.rule()
        first_id = await factory.rule(
            value="13", authority_level=AuthorityLevel.GUIDANCE, status=RuleStatus.PUBLISHED
        )
        second_id = await factory.rule(
            value="5", authority_level=AuthorityLevel.GUIDANCE, status=RuleStatus.PUBLISHED
        )

        async with postgres_session() as session:
            service = ArbiterService(session)
            rules = await service.load_rules([winner_id, first_id, second_id])
            await service.supersede(rules[winner_id], rules[first_id])
            await service.supersede(rules[winner_id], rules[second_id])

        assert (await load(RegulatoryRuleModel, winner_id)).supersedes_id == first_id
        for loser_id in (first_id, second_id):
            loser = await load(RegulatoryRuleModel, loser_id)
            assert loser.status == RuleStatus.DEPRECATED
            assert loser.superseded_by_id == winner_id
        async with postgres_session() as session:
            edges = (await session.execute(select(RuleEdgeModel))).scalars().all()
            assert sorted((e.from_rule_id, e.to_rule_id) for e in edges) == sorted(
                [(winner_id, first_id), (winner_id, second_id)]
            )


class TestRunArbiter:
    """Tests for the arbiter entry point."""

    async def test_scan_and_resolve_by_hierarchy(self, factory) -> None:
        """Test the loser is deprecated and an edge recorded."""
        law_id = await factory.rule()
        guidance_id = await factory.rule(value="13", authority_level=AuthorityLevel.GUIDANCE)

        result = await run_arbiter(scan=True)

        assert result.details == {"resolved": 1, "escalated": 0, "moot": 0, "seeded": 1}
        loser = await load(RegulatoryRuleModel, guidance_id)
        assert loser.status == RuleStatus.DEPRECATED
        assert loser.superseded_by_id == law_id
        conflict = await load(RegulatoryConflictModel, result.conflict_ids[0])
        assert conflict.status == ConflictStatus.RESOLVED
        assert conflict.winning_rule_id == law_id
        async with postgres_session() as session:
            edges = (await session.execute(select(RuleEdgeModel))).scalars().all()
            assert [(e.from_rule_id, e.to_rule_id) for e in edges] == [(law_id, guidance_id)]

    async def test_tie_escalates_and_blocks(self, factory) -> None:
        """Test an escalated conflict leaves both rules active but blocked."""
        a = await factory.rule()
        b = await factory.rule(value="13")

        result = await run_arbiter(scan=True)

        assert result.details["escalated"] == 1
        assert (await load(RegulatoryRuleModel, a)).status == RuleStatus.DRAFT
        assert (await load(RegulatoryRuleModel, b)).status == RuleStatus.DRAFT
        conflict = await load(RegulatoryConflictModel, result.conflict_ids[0])
        assert conflict.status == ConflictStatus.ESCALATED
        assert conflict.escalation_reason
        async with postgres_session() as session:
            assert await unresolved_conflict_count(session, a) == 1

    async def test_candidate_wins_and_supersedes(self, factory) -> None:
        """Test a higher-authority proposal materializes and deprecates the rule."""
        old_id = await factory.rule(authority_level=AuthorityLevel.GUIDANCE, status=RuleStatus.PUBLISHED)
        pointer_id = await factory.pointer(
            extracted_value="13",
            exact_quote="Opća stopa PDV-a iznosi 13% od porezne osnovice",
        )
        composed = await run_composer([pointer_id])

        result = await run_arbiter()

        assert result.details["resolved"] == 1
        conflict = await load(RegulatoryConflictModel, composed.conflict_ids[0])
        new_rule = await load(RegulatoryRuleModel, conflict.winning_rule_id)
        assert new_rule.value == "13"
        assert new_rule.status == RuleStatus.DRAFT
        assert new_rule.supersedes_id == old_id
        assert (await load(RegulatoryRuleModel, old_id)).status == RuleStatus.DEPRECATED
        assert (await load(SourcePointerModel, pointer_id)).status == PointerStatus.COMPOSED

    async def test_candidate_loses(self, factory) -> None:
        """Test a lower-authority proposal is rejected."""
        rule_id = await factory.rule(status=RuleStatus.PUBLISHED)
        pointer_id = await factory.pointer(
            extracted_value="13",
            exact_quote="Opća stopa PDV-a iznosi 13% od porezne osnovice",
            authority_level=AuthorityLevel.GUIDANCE,
        )
        composed = await run_composer([pointer_id])

        await run_arbiter()

        conflict = await load(RegulatoryConflictModel, composed.conflict_ids[0])
        assert conflict.status == ConflictStatus.RESOLVED
        assert conflict.winning_rule_id == rule_id
        assert (await load(SourcePointerModel, pointer_id)).status == PointerStatus.REJECTED
        assert (await load(RegulatoryRuleModel, rule_id)).status == RuleStatus.PUBLISHED

    async def test_moot_when_participant_inactive(self, factory) -> None:
        """Test conflicts whose rule left the active set are closed as moot."""
        a = await factory.rule()
        await factory.rule(value="13")
        await run_arbiter(scan=True)
        async with postgres_session() as session:
            rule = await session.get(RegulatoryRuleModel, a)
            rule.status = RuleStatus.REJECTED
            conflict = (await session.execute(select(RegulatoryConflictModel))).scalars().one()
            conflict.status = ConflictStatus.OPEN

        result = await run_arbiter()

        assert result.details["moot"] == 1


class TestHumanResolution:
    """Tests for resolve_escalated_conflict."""

    async def test_human_picks_winner(self, factory) -> None:
        """Test a human resolution deprecates the other rule."""
        a = await factory.rule()
        b = await factory.rule(value="13")
        escalated = await run_arbiter(scan=True)
        conflict_id = escalated.conflict_ids[0]

        result = await resolve_escalated_conflict(
            conflict_id, b, actor="ana.horvat", reason="NN 2025 izmjena"
        )

        assert result.rule_id == b
        assert (await load(RegulatoryRuleModel, a)).status == RuleStatus.DEPRECATED
        conflict = await load(RegulatoryConflictModel, conflict_id)
        assert conflict.resolution_strategy == ResolutionStrategy.HUMAN
        assert conflict.resolved_by == "ana.horvat"

    async def test_automated_actor_refused(self, factory) -> None:
        """Test automation cannot resolve escalations."""
        await factory.rule()
        await factory.rule(value="13")
        escalated = await run_arbiter(scan=True)
        with pytest.raises(ApprovalError):
            await resolve_escalated_conflict(escalated.conflict_ids[0], None, actor="system:auto-approver")

    async def test_winner_must_be_participant(self, factory) -> None:
        """Test arbitrary rule ids cannot win."""
        await factory.rule()
        await factory.rule(value="13")
        escalated = await run_arbiter(scan=True)
        with pytest.raises(ApprovalError):
            await resolve_escalated_conflict(escalated.conflict_ids[0], "other", actor="ana.horvat")

    async def test_human_picks_candidate(self, factory) -> None:
        """Test a human can choose the proposed rule of a composer conflict."""
        old_id = await factory.rule()
        pointer_id = await factory.pointer(
            extracted_value="13",
            exact_quote="Opća stopa PDV-a iznosi 13% od porezne osnovice",
        )
        composed = await run_composer([pointer_id])
        await run_arbiter()

        result = await resolve_escalated_conflict(
            composed.conflict_ids[0], CANDIDATE_WINNER, actor="ana.horvat"
        )

        assert result.success
        assert (await load(RegulatoryRuleModel, result.rule_id)).value == "13"
        assert (await load(RegulatoryRuleModel, old_id)).status == RuleStatus.DEPRECATED

    async def test_source_conflict_by_value(self, factory) -> None:
        """Test a human picks the value disagreeing sources compose to."""
        a = await factory.pointer()
        b = await factory.pointer(
            extracted_value="13",
            exact_quote="Snižena stopa PDV-a iznosi 13% od porezne osnovice",
            source="porezna-uprava",
        )
        composed = await run_composer([a, b])
        escalated = await run_arbiter()
        assert escalated.details["escalated"] == 1

        await resolve_escalated_conflict(
            composed.conflict_ids[0], None, actor="ana.horvat", winning_value="25"
        )

        assert (await load(SourcePointerModel, a)).status == PointerStatus.VALIDATED
        assert (await load(SourcePointerModel, b)).status == PointerStatus.REJECTED
