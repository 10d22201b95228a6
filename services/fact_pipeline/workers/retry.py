"""
Bounded Retry
=============

Retry wrapper for every suspend point that talks to an external
collaborator: capped attempts, exponential backoff, a per-attempt timeout,
and a dead-letter record once attempts are exhausted.

Version: 0.1.0
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession
from tenacity import (
    AsyncRetrying,
    RetryError,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from services.fact_pipeline.exceptions import TransientCollaboratorError
from services.fact_pipeline.schemas import RejectionCode
from services.fact_pipeline.services.audit import dead_letter
from shared.config import settings
from shared.database.postgres import postgres_session
from shared.llm import TransientLLMError
from shared.logging import get_logger


logger = get_logger(__name__)

T = TypeVar("T")

TRANSIENT_ERRORS: tuple[type[BaseException], ...] = (
    TransientLLMError,
    TransientCollaboratorError,
    asyncio.TimeoutError,
    OperationalError,
)

ExhaustedHandler = Callable[[AsyncSession, BaseException, int], Awaitable[None]]


async def call_with_retry(
    fn: Callable[[], Awaitable[T]],
    *,
    stage: str,
    item_type: str,
    item_id: str | None = None,
    on_exhausted: ExhaustedHandler | None = None,
    max_attempts: int | None = None,
    timeout: float | None = None,
    min_wait: float | None = None,
    max_wait: float | None = None,
) -> T | None:
    """
    Run `fn` with bounded retries on transient errors.

    Args:
        fn: Zero-argument coroutine factory, called once per attempt
        stage: Pipeline stage for logs and dead letters
        item_type: Kind of item being processed
        item_id: Item id, if any
        on_exhausted: Records the terminal failure instead of the default
            dead letter (receives session, last error, attempts)
        max_attempts: Override of settings.pipeline.max_attempts
        timeout: Per-attempt timeout in seconds
        min_wait: Minimum backoff in seconds
        max_wait: Maximum backoff in seconds

    Returns:
        The result of `fn`, or None once retries are exhausted. Non-transient
        errors propagate unchanged.
    """
    pipeline = settings.pipeline
    attempts = max_attempts or pipeline.max_attempts
    per_call_timeout = timeout or pipeline.call_timeout_seconds

    retrying = AsyncRetrying(
        retry=retry_if_exception_type(TRANSIENT_ERRORS),
        stop=stop_after_attempt(attempts),
        wait=wait_exponential(
            multiplier=1,
            min=pipeline.retry_min_wait_seconds if min_wait is None else min_wait,
            max=pipeline.retry_max_wait_seconds if max_wait is None else max_wait,
        ),
        reraise=False,
        before_sleep=lambda retry_state: logger.warning(
            "stage_retry",
            stage=stage,
            item_type=item_type,
            item_id=item_id,
            attempt=retry_state.attempt_number,
            error=str(retry_state.outcome.exception()) if retry_state.outcome else None,
        ),
    )

    try:
        async for attempt in retrying:
            with attempt:
                return await asyncio.wait_for(fn(), per_call_timeout)
    except RetryError as e:
        error = e.last_attempt.exception() or e
        await _record_exhausted(error, attempts, stage, item_type, item_id, on_exhausted)
        return None
    return None


async def _record_exhausted(
    error: BaseException,
    attempts: int,
    stage: str,
    item_type: str,
    item_id: str | None,
    on_exhausted: ExhaustedHandler | None,
) -> None:
    reason = f"{type(error).__name__}: {error}" if str(error) else type(error).__name__
    logger.error(
        "retries_exhausted",
        stage=stage,
        item_type=item_type,
        item_id=item_id,
        attempts=attempts,
        error=reason,
    )
    async with postgres_session() as session:
        if on_exhausted is not None:
            await on_exhausted(session, error, attempts)
        else:
            dead_letter(
                session,
                stage=stage,
                item_type=item_type,
                item_id=item_id,
                reason_code=RejectionCode.RETRIES_EXHAUSTED.value,
                reason=reason,
                attempts=attempts,
            )
