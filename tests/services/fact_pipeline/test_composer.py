"""
Composer Tests
==============

Tests for composing validated pointers into DRAFT rules.

Version: 0.1.0
"""

from datetime import date

from sqlalchemy import func, select

from services.fact_pipeline.models import (
    AuditEventModel,
    AuthorityLevel,
    ConflictStatus,
    ConflictType,
    DeadLetterModel,
    PointerStatus,
    RegulatoryConflictModel,
    RegulatoryRuleModel,
    RiskTier,
    RuleStatus,
    SourcePointerModel,
)
from services.fact_pipeline.schemas import RejectionCode
from services.fact_pipeline.services.composer import (
    ComposerService,
    compose_pending_pointers,
    run_composer,
)
from shared.database.postgres import postgres_session


async def count(model, *criteria) -> int:
    async with postgres_session() as session:
        result = await session.execute(select(func.count()).select_from(model).where(*criteria))
        return int(result.scalar_one())


async def pointer_status(pointer_id: str) -> PointerStatus:
    async with postgres_session() as session:
        return (await session.get(SourcePointerModel, pointer_id)).status


class TestCompose:
    """Tests for run_composer."""

    async def test_creates_draft_rule(self, factory) -> None:
        """Test agreeing pointers become one DRAFT rule."""
        first = await factory.pointer(authority_level=AuthorityLevel.GUIDANCE, confidence=0.99)
        second = await factory.pointer(
            source="porezna-uprava", risk_tier=RiskTier.T1, confidence=0.91
        )

        result = await run_composer([first, second])

        assert result.success
        async with postgres_session() as session:
            rule = await session.get(RegulatoryRuleModel, result.rule_id)
            assert rule.status == RuleStatus.DRAFT
            assert rule.authority_level == AuthorityLevel.LAW
            assert rule.risk_tier == RiskTier.T1
            assert rule.confidence == 0.91
            assert rule.applies_when == {"op": "true"}
            assert sorted(p.id for p in rule.source_pointers) == sorted([first, second])
        assert await pointer_status(first) == PointerStatus.COMPOSED
        assert await count(AuditEventModel, AuditEventModel.action == "rule_created") == 1

    async def test_recompose_is_idempotent(self, factory) -> None:
        """Test composing the same pointers twice links once."""
        pointer_id = await factory.pointer()

        first = await run_composer([pointer_id])
        second = await run_composer([pointer_id])

        assert second.success
        assert second.merged
        assert second.rule_id == first.rule_id
        assert await count(RegulatoryRuleModel) == 1
        assert await count(AuditEventModel, AuditEventModel.action == "rule_merged") == 0

    async def test_insert_race_merges_onto_winner(self, factory, monkeypatch) -> None:
        """Test the active-meaning unique index turns a lost insert race into a merge."""
        winner_id = await factory.rule()
        pointer_id = await factory.pointer(source="porezna-uprava")
        find_matching_rule = ComposerService.find_matching_rule
        lookups = []

        async def stale_lookup(self, candidate):
            lookups.append(candidate.meaning_signature)
            if len(lookups) == 1:
                return None
            return await find_matching_rule(self, candidate)

        monkeypatch.setattr(ComposerService, "find_matching_rule", stale_lookup)

        result = await run_composer([pointer_id])

        assert result.success
        assert result.merged
        assert result.rule_id == winner_id
        assert len(lookups) == 2
        assert await count(RegulatoryRuleModel) == 1
        assert await count(AuditEventModel, AuditEventModel.action == "rule_created") == 0
        assert await pointer_status(pointer_id) == PointerStatus.COMPOSED

    async def test_alias_merges_onto_existing_rule(self, factory) -> None:
        """Test a pointer under an alias slug joins the canonical rule."""
        first = await run_composer([await factory.pointer()])
        alias_pointer = await factory.pointer(concept_slug="vat-standard-rate", source="hzzo")

        merged = await run_composer([alias_pointer])

        assert merged.merged
        assert merged.rule_id == first.rule_id
        async with postgres_session() as session:
            rule = await session.get(RegulatoryRuleModel, first.rule_id)
            assert len(rule.source_pointers) == 2
        assert await count(AuditEventModel, AuditEventModel.action == "rule_merged") == 1

    async def test_invalid_applies_when_rejects(self, factory) -> None:
        """Test an invalid predicate never falls back to unconditional."""
        pointer_id = await factory.pointer(
            applies_when={"op": "between", "field": "counters.revenueYtd"}
        )

        result = await run_composer([pointer_id])

        assert not result.success
        assert result.reason_code == RejectionCode.DSL_INVALID.value
        assert await count(RegulatoryRuleModel) == 0
        assert await pointer_status(pointer_id) == PointerStatus.REJECTED
        assert await count(DeadLetterModel, DeadLetterModel.item_id == pointer_id) == 1

    async def test_blocked_domain(self, factory) -> None:
        """Test synthetic domains are rejected and audited."""
        pointer_id = await factory.pointer(domain="heartbeat-check")

        result = await run_composer([pointer_id])

        assert result.reason_code == RejectionCode.BLOCKED_DOMAIN.value
        assert await count(RegulatoryRuleModel) == 0
        assert await pointer_status(pointer_id) == PointerStatus.REJECTED
        assert await count(AuditEventModel, AuditEventModel.action == "composition_blocked") == 1

    async def test_no_pointers(self, database) -> None:
        """Test unknown pointer ids."""
        result = await run_composer(["missing"])
        assert result.reason_code == RejectionCode.NO_POINTERS.value

    async def test_mixed_concepts(self, factory) -> None:
        """Test pointers for different concepts do not compose together."""
        a = await factory.pointer()
        b = await factory.pointer(concept_slug="pdv-snizena-stopa")
        result = await run_composer([a, b])
        assert result.reason_code == RejectionCode.MIXED_CONCEPTS.value

    async def test_source_disagreement_seeds_conflict(self, factory) -> None:
        """Test disagreeing sources hold their pointers behind a conflict."""
        a = await factory.pointer()
        b = await factory.pointer(
            extracted_value="13",
            exact_quote="Snižena stopa PDV-a iznosi 13% od porezne osnovice",
            source="porezna-uprava",
        )

        result = await run_composer([a, b])
        again = await run_composer([a, b])

        assert result.reason_code == RejectionCode.SOURCE_CONFLICT.value
        assert again.conflict_ids == result.conflict_ids
        assert await count(RegulatoryRuleModel) == 0
        assert await pointer_status(a) == PointerStatus.HELD
        async with postgres_session() as session:
            conflict = await session.get(RegulatoryConflictModel, result.conflict_ids[0])
            assert conflict.conflict_type == ConflictType.SOURCE_CONFLICT
            assert conflict.status == ConflictStatus.OPEN
            assert sorted(conflict.source_pointer_ids) == sorted([a, b])

    async def test_structural_conflict_holds_pointers(self, factory) -> None:
        """Test a different value against an active rule seeds a conflict."""
        rule_id = await factory.rule(status=RuleStatus.PUBLISHED)
        pointer_id = await factory.pointer(
            extracted_value="13",
            exact_quote="Opća stopa PDV-a iznosi 13% od porezne osnovice",
            authority_level=AuthorityLevel.GUIDANCE,
        )

        result = await run_composer([pointer_id])

        assert result.reason_code == RejectionCode.STRUCTURAL_CONFLICT.value
        assert await count(RegulatoryRuleModel) == 1
        assert await pointer_status(pointer_id) == PointerStatus.HELD
        async with postgres_session() as session:
            conflict = await session.get(RegulatoryConflictModel, result.conflict_ids[0])
            assert conflict.conflict_type == ConflictType.AUTHORITY_SUPERSEDE
            assert conflict.item_a_id == rule_id
            assert conflict.item_b_id is None
            assert conflict.candidate["value"] == "13"
            assert conflict.candidate["meaning_signature"]

    async def test_cross_slug_duplicate(self, factory) -> None:
        """Test the same value under a second slug is flagged."""
        await factory.rule()
        pointer_id = await factory.pointer(concept_slug="pdv-opca-stopa")

        result = await run_composer([pointer_id])

        assert result.reason_code == RejectionCode.STRUCTURAL_CONFLICT.value
        async with postgres_session() as session:
            conflict = await session.get(RegulatoryConflictModel, result.conflict_ids[0])
            assert conflict.conflict_type == ConflictType.CROSS_SLUG_DUPLICATE


class TestComposePending:
    """Tests for batch composition of VALIDATED pointers."""

    async def test_groups_by_concept_and_window(self, factory) -> None:
        """Test different windows compose into different rules."""
        await factory.pointer()
        await factory.pointer(concept_slug="vat-standard-rate", source="hzzo")
        await factory.pointer(
            extracted_value="24",
            exact_quote="Opća stopa PDV-a iznosi 24% od porezne osnovice",
            effective_from=date(2020, 1, 1),
            effective_until=date(2025, 1, 1),
        )

        results = await compose_pending_pointers(limit=10)

        assert len(results) == 2
        assert all(r.success for r in results)
        assert await count(RegulatoryRuleModel) == 2
        assert await count(SourcePointerModel, SourcePointerModel.status == PointerStatus.VALIDATED) == 0
