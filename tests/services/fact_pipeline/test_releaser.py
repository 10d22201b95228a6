"""
Releaser Tests
==============

Tests for gating, semantic versioning and content hashing of releases.

Version: 0.1.0
"""

from datetime import date, datetime

import pytest
from sqlalchemy import select

from services.fact_pipeline.models import (
    AuditEventModel,
    AuthorityLevel,
    RegulatoryRuleModel,
    RiskTier,
    RuleReleaseModel,
    RuleStatus,
)
from services.fact_pipeline.services.releaser import (
    Bump,
    bump_for,
    compute_content_hash,
    next_version,
    release_eligible,
    run_releaser,
)
from shared.database.postgres import postgres_session


SNAPSHOT = {
    "id": "r1",
    "concept_slug": "pdv-standardna-stopa",
    "value": "25",
    "meaning_signature": "abc",
    "effective_from": date(2025, 1, 1),
    "effective_until": None,
}
OTHER = {**SNAPSHOT, "id": "r2", "concept_slug": "pdv-snizena-stopa", "value": "13"}


async def status_of(rule_id: str) -> RuleStatus:
    async with postgres_session() as session:
        return (await session.get(RegulatoryRuleModel, rule_id)).status


class TestVersioning:
    """Tests for semantic version bumps."""

    @pytest.mark.parametrize(
        "previous,bump,expected",
        [
            (None, Bump.PATCH, "0.0.1"),
            ("1.4.2", Bump.PATCH, "1.4.3"),
            ("1.4.2", Bump.MINOR, "1.5.0"),
            ("1.4.2", Bump.MAJOR, "2.0.0"),
        ],
    )
    def test_next_version(self, previous, bump, expected) -> None:
        """Test each component resets the ones below it."""
        assert next_version(previous, bump) == expected

    def test_highest_risk_drives_bump(self) -> None:
        """Test T0 is major, T1 minor, T2/T3 patch."""
        assert bump_for([RiskTier.T3, RiskTier.T0]) == Bump.MAJOR
        assert bump_for([RiskTier.T2, RiskTier.T1]) == Bump.MINOR
        assert bump_for([RiskTier.T3, RiskTier.T2]) == Bump.PATCH


class TestContentHash:
    """Tests for the deterministic release hash."""

    def test_order_and_date_format_invariant(self) -> None:
        """Test input order, key order and date spelling do not matter."""
        reordered_keys = dict(reversed(list(SNAPSHOT.items())))
        as_datetime = {**OTHER, "effective_from": datetime(2025, 1, 1, 0, 0)}
        as_string = {**SNAPSHOT, "effective_from": "2025-01-01T00:00:00"}
        expected = compute_content_hash([SNAPSHOT, OTHER])
        assert compute_content_hash([OTHER, SNAPSHOT]) == expected
        assert compute_content_hash([reordered_keys, as_datetime]) == expected
        assert compute_content_hash([as_string, OTHER]) == expected

    def test_any_value_change_changes_hash(self) -> None:
        """Test the hash is sensitive to content."""
        changed = {**SNAPSHOT, "value": "24"}
        assert compute_content_hash([changed, OTHER]) != compute_content_hash([SNAPSHOT, OTHER])


class TestRunReleaser:
    """Tests for all-or-nothing publication."""

    async def test_publishes_batch(self, factory) -> None:
        """Test approved rules are published under one version."""
        a = await factory.rule(status=RuleStatus.APPROVED, approved_by="system:auto-approver")
        b = await factory.rule(
            concept_slug="pdv-snizena-stopa",
            value="13",
            status=RuleStatus.APPROVED,
            approved_by="system:auto-approver",
            effective_from=date(2024, 6, 1),
        )

        result = await run_releaser([a, b], released_by="ana.horvat")

        assert result.success
        assert result.details["version"] == "0.0.1"
        assert result.details["bump"] == "patch"
        assert result.details["audit_trail"]["pointer_count"] == 2
        assert await status_of(a) == RuleStatus.PUBLISHED
        async with postgres_session() as session:
            release = await session.get(RuleReleaseModel, result.details["release_id"])
            assert release.effective_from == date(2024, 6, 1)
            assert release.rule_ids == sorted([a, b])
            assert release.content_hash == compute_content_hash(release.snapshots)

    async def test_versions_increase(self, factory) -> None:
        """Test a T1 release after a patch bumps the minor version."""
        first = await factory.rule(status=RuleStatus.APPROVED, approved_by="system:auto-approver")
        await run_releaser([first], released_by="ana.horvat")
        second = await factory.rule(
            concept_slug="pdv-snizena-stopa",
            value="13",
            risk_tier=RiskTier.T1,
            status=RuleStatus.APPROVED,
            approved_by="ana.horvat",
        )

        result = await run_releaser([second], released_by="ana.horvat")

        assert result.details["version"] == "0.1.0"

    async def test_one_failure_blocks_everything(self, factory) -> None:
        """Test nothing is published when any rule fails a gate."""
        good = await factory.rule(status=RuleStatus.APPROVED, approved_by="system:auto-approver")
        draft = await factory.rule(concept_slug="pdv-snizena-stopa", value="13")

        result = await run_releaser([good, draft], released_by="ana.horvat")

        assert not result.success
        assert result.failures == [
            {"rule_id": draft, "gate": "status", "reason": "Rule is DRAFT, expected APPROVED"}
        ]
        assert await status_of(good) == RuleStatus.APPROVED
        async with postgres_session() as session:
            assert (await session.execute(select(RuleReleaseModel))).scalars().all() == []
            blocked = (
                await session.execute(
                    select(AuditEventModel).where(AuditEventModel.action == "release_blocked")
                )
            ).scalars().all()
            assert len(blocked) == 1

    async def test_critical_rule_needs_human_approver(self, factory) -> None:
        """Test automated approval of a T1 rule fails the gate."""
        rule_id = await factory.rule(
            risk_tier=RiskTier.T1,
            status=RuleStatus.APPROVED,
            approved_by="system:auto-approver",
        )
        result = await run_releaser([rule_id], released_by="ana.horvat")
        assert [f["gate"] for f in result.failures] == ["human_approval"]

    async def test_single_source_must_be_law(self, factory) -> None:
        """Test single-source guidance is too weak to publish."""
        single = await factory.rule(
            authority_level=AuthorityLevel.GUIDANCE,
            status=RuleStatus.APPROVED,
            approved_by="system:auto-approver",
        )
        result = await run_releaser([single], released_by="ana.horvat")
        assert [f["gate"] for f in result.failures] == ["evidence_strength"]

    async def test_two_sources_back_guidance(self, factory) -> None:
        """Test independent corroboration satisfies the evidence gate."""
        rule_id = await factory.rule(
            authority_level=AuthorityLevel.GUIDANCE,
            status=RuleStatus.APPROVED,
            approved_by="system:auto-approver",
            sources=("porezna-uprava", "narodne-novine"),
        )
        result = await run_releaser([rule_id], released_by="ana.horvat")
        assert result.success

    async def test_unknown_rule(self, database) -> None:
        """Test missing rule ids are gate failures."""
        result = await run_releaser(["missing"], released_by="ana.horvat")
        assert result.failures[0]["gate"] == "exists"

    async def test_release_eligible(self, factory) -> None:
        """Test the drainer stage releases only rules passing every gate."""
        good = await factory.rule(status=RuleStatus.APPROVED, approved_by="system:auto-approver")
        await factory.rule(
            concept_slug="pdv-snizena-stopa",
            value="13",
            authority_level=AuthorityLevel.GUIDANCE,
            status=RuleStatus.APPROVED,
            approved_by="system:auto-approver",
        )

        result = await release_eligible()

        assert result.rule_ids == [good]
        assert await release_eligible() is None
