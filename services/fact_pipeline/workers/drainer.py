"""
Pipeline Drainer
================

Polling loop over the five pipeline stages. The database is the only
coordination point: every stage picks rows by status and hands off by
changing status, so an abandoned tick leaves work resumable.

Per stage and tick:
- pull up to `batch_size` items
- acquire the stage rate limiter for each call
- run calls under the stage concurrency semaphore
- wrap calls in bounded retry, dead-lettering exhausted items

Idle ticks back off exponentially and reset as soon as work appears.

Version: 0.1.0
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from functools import partial
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from services.fact_pipeline.schemas import RejectionCode, StageResult
from services.fact_pipeline.services.arbiter import run_arbiter
from services.fact_pipeline.services.composer import pending_pointer_groups, run_composer
from services.fact_pipeline.services.extraction import (
    mark_run_dead_lettered,
    pending_evidence_ids,
    run_extraction,
)
from services.fact_pipeline.services.releaser import release_eligible
from services.fact_pipeline.services.reviewer import run_reviewer
from services.fact_pipeline.workers.rate_limit import SlidingWindowRateLimiter
from services.fact_pipeline.workers.retry import call_with_retry
from shared.config import PipelineSettings, StageLimits, settings
from shared.database.postgres import postgres_session
from shared.llm import LLMProvider
from shared.logging import get_logger, stage_context


logger = get_logger(__name__)

STAGES = ("extract", "compose", "review", "arbitrate", "release")


@dataclass
class StageRunner:
    """Rate limiter and concurrency bound for one stage."""

    name: str
    limits: StageLimits
    limiter: SlidingWindowRateLimiter = field(init=False)
    semaphore: asyncio.Semaphore = field(init=False)

    def __post_init__(self) -> None:
        self.limiter = SlidingWindowRateLimiter(
            self.limits.requests_per_window,
            self.limits.window_seconds,
            name=self.name,
        )
        self.semaphore = asyncio.Semaphore(self.limits.concurrency)

    async def call(
        self,
        fn: Callable[[], Awaitable[Any]],
        item_type: str,
        item_id: str | None = None,
        on_exhausted: Callable[[AsyncSession, BaseException, int], Awaitable[None]] | None = None,
    ) -> Any:
        async with self.semaphore:
            await self.limiter.acquire()
            return await call_with_retry(
                fn,
                stage=self.name,
                item_type=item_type,
                item_id=item_id,
                on_exhausted=on_exhausted,
            )


class PipelineDrainer:
    """
    Drives extract -> compose -> review -> arbitrate -> release.

    Example:
        drainer = PipelineDrainer()
        task = asyncio.create_task(drainer.run())
        ...
        drainer.stop()
        await task
    """

    def __init__(
        self,
        provider: LLMProvider | None = None,
        pipeline_settings: PipelineSettings | None = None,
    ) -> None:
        self.provider = provider
        self.config = pipeline_settings or settings.pipeline
        self.stages = {
            name: StageRunner(name, getattr(self.config, name)) for name in STAGES
        }
        self.backoff = self.config.idle_backoff_initial_seconds
        self.ticks = 0
        self._running = False
        self._stop_event = asyncio.Event()

    # =========================================================================
    # Stages
    # =========================================================================

    def _log_failures(self, stage: str, item_ids: list[str], results: list[Any]) -> None:
        for item_id, result in zip(item_ids, results):
            if isinstance(result, BaseException):
                logger.error(
                    "stage_item_failed",
                    stage=stage,
                    item_id=item_id,
                    error=str(result),
                    error_type=type(result).__name__,
                )

    async def drain_extract(self) -> int:
        runner = self.stages["extract"]
        async with postgres_session() as session:
            evidence_ids = await pending_evidence_ids(session, runner.limits.batch_size)

        async def exhausted(evidence_id: str, session: AsyncSession, error: BaseException, attempts: int) -> None:
            await mark_run_dead_lettered(
                session,
                evidence_id,
                RejectionCode.RETRIES_EXHAUSTED,
                f"{type(error).__name__}: {error}",
                attempts=attempts,
            )

        results = await asyncio.gather(
            *(
                runner.call(
                    partial(run_extraction, evidence_id, self.provider),
                    "evidence",
                    evidence_id,
                    on_exhausted=partial(exhausted, evidence_id),
                )
                for evidence_id in evidence_ids
            ),
            return_exceptions=True,
        )
        self._log_failures("extract", evidence_ids, results)
        return len(evidence_ids)

    async def drain_compose(self) -> int:
        runner = self.stages["compose"]
        async with postgres_session() as session:
            groups = await pending_pointer_groups(session, runner.limits.batch_size)

        results = await asyncio.gather(
            *(
                runner.call(partial(run_composer, pointer_ids), "pointer_group", pointer_ids[0])
                for pointer_ids in groups
            ),
            return_exceptions=True,
        )
        self._log_failures("compose", [g[0] for g in groups], results)
        return sum(len(group) for group in groups)

    async def drain_review(self) -> int:
        runner = self.stages["review"]
        result: StageResult | None = await runner.call(
            partial(run_reviewer, limit=runner.limits.batch_size), "review_batch"
        )
        return result.processed if result else 0

    async def drain_arbitrate(self) -> int:
        runner = self.stages["arbitrate"]
        result: StageResult | None = await runner.call(
            partial(run_arbiter, scan=True), "conflict_batch"
        )
        if result is None:
            return 0
        return result.processed + result.details.get("seeded", 0)

    async def drain_release(self) -> int:
        runner = self.stages["release"]
        result: StageResult | None = await runner.call(
            partial(release_eligible, runner.limits.batch_size), "release_batch"
        )
        if result is None:
            return 0
        if not result.success:
            logger.warning("drainer_release_blocked", failures=len(result.failures))
            return 0
        return result.processed

    # =========================================================================
    # Loop
    # =========================================================================

    async def run_once(self) -> dict[str, int]:
        """
        One tick over every stage.

        Returns:
            Items processed per stage
        """
        self.ticks += 1
        counts: dict[str, int] = {}
        for name in STAGES:
            drain = getattr(self, f"drain_{name}")
            with stage_context(name, tick=self.ticks):
                counts[name] = await drain()
        logger.debug("drainer_tick", tick=self.ticks, **counts)
        return counts

    def next_delay(self, found_work: bool) -> float:
        """Idle backoff: reset on work, otherwise grow up to the maximum."""
        if found_work:
            self.backoff = self.config.idle_backoff_initial_seconds
            return 0.0
        delay = self.backoff
        self.backoff = min(
            self.backoff * self.config.idle_backoff_multiplier,
            self.config.idle_backoff_max_seconds,
        )
        return delay

    async def run(self) -> None:
        """Drain until `stop()` is called."""
        self._running = True
        self._stop_event.clear()
        logger.info("drainer_started", stages=list(STAGES))

        while self._running:
            try:
                counts = await self.run_once()
                found_work = any(counts.values())
            except Exception as e:
                logger.error("drainer_tick_error", error=str(e), error_type=type(e).__name__)
                found_work = False

            delay = self.next_delay(found_work)
            if delay:
                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
                except asyncio.TimeoutError:
                    pass
            else:
                await asyncio.sleep(0)

        logger.info("drainer_stopped", ticks=self.ticks)

    def stop(self) -> None:
        self._running = False
        self._stop_event.set()
