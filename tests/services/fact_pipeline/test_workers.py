"""
Worker Tests
============

Tests for the rate limiter, bounded retry and the pipeline drainer.

Version: 0.1.0
"""

import asyncio
import json

import pytest
from sqlalchemy import select

from services.fact_pipeline.exceptions import TransientCollaboratorError
from services.fact_pipeline.models import (
    DeadLetterModel,
    ExtractionRunModel,
    ExtractionStatus,
    RegulatoryRuleModel,
    RuleReleaseModel,
    RuleStatus,
)
from services.fact_pipeline.services.extraction import enqueue_evidence
from services.fact_pipeline.workers import PipelineDrainer, SlidingWindowRateLimiter, call_with_retry
from shared.config import PipelineSettings
from shared.database.postgres import postgres_session
from shared.llm import TransientLLMError
from tests.conftest import VAT_QUOTE


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class TestSlidingWindowRateLimiter:
    """Tests for the sliding-window limiter."""

    def test_limits_within_window(self) -> None:
        """Test the limit holds until the oldest call leaves the window."""
        clock = FakeClock()
        limiter = SlidingWindowRateLimiter(2, 10.0, name="extract", clock=clock)

        assert limiter.try_acquire() == 0.0
        clock.now = 4.0
        assert limiter.try_acquire() == 0.0
        clock.now = 6.0
        assert limiter.try_acquire() == pytest.approx(4.0)
        clock.now = 10.0
        assert limiter.try_acquire() == 0.0
        assert limiter.in_window == 2

    @pytest.mark.parametrize("max_requests,window", [(0, 1.0), (1, 0.0)])
    def test_invalid_configuration(self, max_requests: int, window: float) -> None:
        """Test nonsensical limits are refused."""
        with pytest.raises(ValueError):
            SlidingWindowRateLimiter(max_requests, window)

    async def test_acquire_free_slot(self) -> None:
        """Test acquire returns at once while slots are free."""
        limiter = SlidingWindowRateLimiter(1, 60.0)
        await asyncio.wait_for(limiter.acquire(), timeout=1)
        assert limiter.in_window == 1


class TestCallWithRetry:
    """Tests for bounded retry with dead-lettering."""

    async def test_recovers_from_transient_error(self, database) -> None:
        """Test a transient failure followed by success returns the value."""
        calls = []

        async def flaky() -> str:
            calls.append(1)
            if len(calls) < 2:
                raise TransientLLMError("429 rate limited")
            return "ok"

        result = await call_with_retry(
            flaky, stage="extract", item_type="evidence", max_attempts=3, min_wait=0, max_wait=0
        )

        assert result == "ok"
        assert len(calls) == 2

    async def test_exhausted_dead_letters(self, database) -> None:
        """Test exhausted retries record a dead letter and return None."""
        calls = []

        async def down() -> None:
            calls.append(1)
            raise TransientCollaboratorError("connection reset")

        result = await call_with_retry(
            down,
            stage="compose",
            item_type="pointer_group",
            item_id="p1",
            max_attempts=3,
            min_wait=0,
            max_wait=0,
        )

        assert result is None
        assert len(calls) == 3
        async with postgres_session() as session:
            letter = (await session.execute(select(DeadLetterModel))).scalars().one()
        assert letter.reason_code == "RETRIES_EXHAUSTED"
        assert letter.attempts == 3
        assert letter.item_id == "p1"

    async def test_timeout_is_transient(self, database) -> None:
        """Test slow calls are cut off and retried."""

        async def slow() -> None:
            await asyncio.sleep(5)

        result = await call_with_retry(
            slow, stage="extract", item_type="evidence", max_attempts=2, timeout=0.01,
            min_wait=0, max_wait=0,
        )
        assert result is None

    async def test_non_transient_error_propagates(self, database) -> None:
        """Test programming errors are not retried."""
        calls = []

        async def broken() -> None:
            calls.append(1)
            raise KeyError("value_type")

        with pytest.raises(KeyError):
            await call_with_retry(broken, stage="extract", item_type="evidence", min_wait=0, max_wait=0)
        assert len(calls) == 1


class TestPipelineDrainer:
    """Tests for the polling loop."""

    def test_idle_backoff(self) -> None:
        """Test idle ticks back off exponentially and work resets the delay."""
        config = PipelineSettings(
            idle_backoff_initial_seconds=1.0,
            idle_backoff_max_seconds=5.0,
            idle_backoff_multiplier=2.0,
        )
        drainer = PipelineDrainer(pipeline_settings=config)

        assert [drainer.next_delay(False) for _ in range(5)] == [1.0, 2.0, 4.0, 5.0, 5.0]
        assert drainer.next_delay(True) == 0.0
        assert drainer.next_delay(False) == 1.0

    async def test_run_once_drives_evidence_to_release(self, factory, fake_llm) -> None:
        """Test one tick extracts, composes, reviews and releases a fact."""
        evidence_id = await factory.evidence()
        async with postgres_session() as session:
            await enqueue_evidence(session, [evidence_id])
        fake_llm.responses.append(
            json.dumps(
                [
                    {
                        "extracted_value": "25",
                        "value_type": "percentage",
                        "domain": "pdv",
                        "exact_quote": VAT_QUOTE,
                        "confidence": 0.97,
                        "concept_slug": "pdv-standardna-stopa",
                        "risk_tier": "T2",
                        "authority_level": "LAW",
                        "effective_from": "2025-01-01",
                    }
                ]
            )
        )

        counts = await PipelineDrainer(provider=fake_llm).run_once()

        assert counts["extract"] == 1
        assert counts["compose"] == 1
        assert counts["release"] == 1
        async with postgres_session() as session:
            rule = (await session.execute(select(RegulatoryRuleModel))).scalars().one()
            release = (await session.execute(select(RuleReleaseModel))).scalars().one()
            run = (await session.execute(select(ExtractionRunModel))).scalars().one()
        assert rule.status == RuleStatus.PUBLISHED
        assert release.version == "0.0.1"
        assert run.status == ExtractionStatus.COMPLETED

    async def test_idle_tick(self, database, fake_llm) -> None:
        """Test an empty store reports no work."""
        counts = await PipelineDrainer(provider=fake_llm).run_once()
        assert not any(counts.values())

    async def test_run_stops(self, database, fake_llm) -> None:
        """Test the loop exits promptly after stop()."""
        drainer = PipelineDrainer(provider=fake_llm)
        task = asyncio.create_task(drainer.run())
        await asyncio.sleep(0.05)
        drainer.stop()
        await asyncio.wait_for(task, timeout=2)
        assert drainer.ticks >= 1
