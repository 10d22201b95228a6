"""
Extraction Stage
================

Asks the LLM for candidate facts in an evidence document and turns the
ones that survive deterministic checks into source pointers.

LLM output is untrusted: each item must parse as an ExtractionCandidate,
pass `validate_extraction`, and have its quote located in the evidence
text. Anything else is dead-lettered with a typed reason.

Version: 0.1.0
"""

from dataclasses import dataclass, field
from typing import Any

from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from services.fact_pipeline.models import (
    EvidenceModel,
    ExtractionRunModel,
    ExtractionStatus,
    PointerStatus,
    SourcePointerModel,
    utcnow,
    utctoday,
)
from services.fact_pipeline.schemas import ExtractionCandidate, RejectionCode, StageResult
from services.fact_pipeline.services.audit import dead_letter
from services.fact_pipeline.validation import find_quote_in_evidence, validate_extraction
from services.fact_pipeline.validation.validators import VALID_DOMAINS
from shared.database.postgres import postgres_session
from shared.llm import LLMOutputError, LLMProvider, get_llm_provider
from shared.logging import get_logger, stage_context


logger = get_logger(__name__)

STAGE = "extract"

EXTRACTION_SYSTEM_PROMPT = """You extract regulatory facts from Croatian legal and tax documents.

For every concrete fact (rate, threshold, amount, deadline, date) return an object:
{
  "extracted_value": "exact value as written, numbers without thousands separators",
  "value_type": "currency|currency_eur|currency_hrk|percentage|date|threshold|text|count|interest_rate|exchange_rate",
  "domain": "one of: %(domains)s",
  "exact_quote": "verbatim sentence fragment containing the value",
  "confidence": 0.0-1.0,
  "concept_slug": "kebab-case concept identifier",
  "applies_when": {"op": "true"} or a predicate,
  "risk_tier": "T0|T1|T2|T3",
  "authority_level": "LAW|REGULATION|GUIDANCE|PROCEDURE|PRACTICE",
  "effective_from": "YYYY-MM-DD or null",
  "effective_until": "YYYY-MM-DD or null"
}

Return a JSON array. Never infer values that are not written in the text."""

MAX_EVIDENCE_CHARS = 60_000


@dataclass
class ExtractionSummary:
    """Outcome of extracting one evidence record."""

    evidence_id: str
    candidates: int = 0
    pointer_ids: list[str] = field(default_factory=list)
    rejected: list[dict[str, Any]] = field(default_factory=list)
    duplicates: int = 0


def build_prompt(text: str) -> str:
    return f"Extract regulatory facts from this document:\n\n{text[:MAX_EVIDENCE_CHARS]}"


def _items(raw: Any) -> list[Any]:
    """Accept a bare array or an object wrapping one."""
    if isinstance(raw, list):
        return raw
    if isinstance(raw, dict):
        for key in ("extractions", "facts", "items"):
            if isinstance(raw.get(key), list):
                return raw[key]
    raise LLMOutputError("Extraction response is not a JSON array", raw=str(raw)[:500])


async def request_candidates(text: str, provider: LLMProvider) -> list[Any]:
    """
    Call the LLM for one evidence text.

    Raises:
        TransientLLMError: Retryable provider failure
        LLMOutputError: Response is not JSON or not an array
    """
    raw = await provider.generate_json(
        build_prompt(text),
        system_prompt=EXTRACTION_SYSTEM_PROMPT % {"domains": ", ".join(sorted(VALID_DOMAINS))},
    )
    return _items(raw)


async def _get_or_create_run(session: AsyncSession, evidence_id: str) -> ExtractionRunModel:
    result = await session.execute(
        select(ExtractionRunModel).where(ExtractionRunModel.evidence_id == evidence_id)
    )
    run = result.scalars().first()
    if run is None:
        run = ExtractionRunModel(evidence_id=evidence_id)
        session.add(run)
    return run


def _reject_item(
    session: AsyncSession,
    summary: ExtractionSummary,
    code: RejectionCode,
    reason: str,
    item: Any,
) -> None:
    summary.rejected.append({"reason_code": code.value, "reason": reason})
    dead_letter(
        session,
        stage=STAGE,
        item_type="extraction",
        item_id=summary.evidence_id,
        reason_code=code.value,
        reason=reason,
        payload={"item": item if isinstance(item, dict) else str(item)[:1000]},
    )


async def record_candidates(
    session: AsyncSession,
    evidence: EvidenceModel,
    items: list[Any],
) -> ExtractionSummary:
    """Validate raw LLM items and persist the survivors as VALIDATED pointers."""
    summary = ExtractionSummary(evidence_id=evidence.id, candidates=len(items))
    text = evidence.text

    result = await session.execute(
        select(SourcePointerModel).where(SourcePointerModel.evidence_id == evidence.id)
    )
    existing = {
        (p.concept_slug, p.extracted_value, p.exact_quote) for p in result.scalars().all()
    }

    for item in items:
        try:
            candidate = ExtractionCandidate.model_validate(item)
        except ValidationError as e:
            _reject_item(session, summary, RejectionCode.SCHEMA_VIOLATION, str(e), item)
            continue

        outcome = validate_extraction(
            candidate.extracted_value,
            candidate.exact_quote,
            candidate.domain,
            candidate.value_type,
            candidate.confidence,
        )
        if not outcome.valid:
            primary = outcome.primary_reason
            _reject_item(session, summary, primary.code, outcome.message, item)
            continue

        match = find_quote_in_evidence(text, candidate.exact_quote)
        if not match.found:
            _reject_item(
                session,
                summary,
                RejectionCode.QUOTE_NOT_IN_EVIDENCE,
                "Quote not found in evidence text",
                item,
            )
            continue

        effective_from = candidate.effective_from or utctoday()
        if candidate.effective_until is not None and candidate.effective_until <= effective_from:
            _reject_item(
                session,
                summary,
                RejectionCode.INVALID_DATE,
                f"effective_until {candidate.effective_until} is not after {effective_from}",
                item,
            )
            continue

        key = (candidate.concept_slug, candidate.extracted_value, candidate.exact_quote)
        if key in existing:
            summary.duplicates += 1
            continue
        existing.add(key)

        pointer = SourcePointerModel(
            evidence_id=evidence.id,
            exact_quote=candidate.exact_quote,
            extracted_value=candidate.extracted_value,
            value_type=candidate.value_type,
            domain=candidate.domain,
            confidence=candidate.confidence,
            concept_slug=candidate.concept_slug,
            applies_when=candidate.applies_when,
            risk_tier=candidate.risk_tier,
            authority_level=candidate.authority_level,
            effective_from=effective_from,
            effective_until=candidate.effective_until,
            quote_start=match.start,
            quote_end=match.end,
            match_type=match.match_type.value,
            status=PointerStatus.VALIDATED,
        )
        session.add(pointer)
        await session.flush()
        summary.pointer_ids.append(pointer.id)
        for warning in outcome.warnings:
            logger.info("extraction_warning", pointer_id=pointer.id, warning=warning)

    run = await _get_or_create_run(session, evidence.id)
    run.attempts = (run.attempts or 0) + 1
    run.status = ExtractionStatus.COMPLETED
    run.candidates_found = summary.candidates
    run.pointers_created = (run.pointers_created or 0) + len(summary.pointer_ids)
    run.last_error = None
    run.completed_at = utcnow()

    logger.info(
        "evidence_extracted",
        evidence_id=evidence.id,
        candidates=summary.candidates,
        pointers=len(summary.pointer_ids),
        rejected=len(summary.rejected),
        duplicates=summary.duplicates,
    )
    return summary


async def mark_run_dead_lettered(
    session: AsyncSession,
    evidence_id: str,
    code: RejectionCode,
    reason: str,
    attempts: int = 1,
) -> None:
    run = await _get_or_create_run(session, evidence_id)
    run.attempts = (run.attempts or 0) + attempts
    run.status = ExtractionStatus.DEAD_LETTERED
    run.last_error = reason
    run.completed_at = utcnow()
    dead_letter(
        session,
        stage=STAGE,
        item_type="evidence",
        item_id=evidence_id,
        reason_code=code.value,
        reason=reason,
        attempts=attempts,
    )


async def enqueue_evidence(session: AsyncSession, evidence_ids: list[str]) -> list[str]:
    """Create PENDING extraction runs for evidence that has none."""
    result = await session.execute(
        select(ExtractionRunModel.evidence_id).where(ExtractionRunModel.evidence_id.in_(evidence_ids))
    )
    known = {row[0] for row in result.all()}
    created = []
    for evidence_id in dict.fromkeys(evidence_ids):
        if evidence_id not in known:
            session.add(ExtractionRunModel(evidence_id=evidence_id))
            created.append(evidence_id)
    return created


async def pending_evidence_ids(session: AsyncSession, limit: int) -> list[str]:
    result = await session.execute(
        select(ExtractionRunModel.evidence_id)
        .where(ExtractionRunModel.status == ExtractionStatus.PENDING)
        .order_by(ExtractionRunModel.created_at)
        .limit(limit)
    )
    return [row[0] for row in result.all()]


async def run_extraction(evidence_id: str, provider: LLMProvider | None = None) -> StageResult:
    """
    Extract one evidence record.

    The LLM call happens outside any database transaction; only the
    evidence read and the pointer writes hold a session.
    """
    provider = provider or get_llm_provider()
    with stage_context(STAGE, evidence_id=evidence_id):
        async with postgres_session() as session:
            evidence = await session.get(EvidenceModel, evidence_id)
            if evidence is None:
                return StageResult.fail(STAGE, "NOT_FOUND", f"Evidence {evidence_id} not found")
            text = evidence.text

        try:
            items = await request_candidates(text, provider)
        except LLMOutputError as e:
            async with postgres_session() as session:
                await mark_run_dead_lettered(
                    session, evidence_id, RejectionCode.SCHEMA_VIOLATION, str(e)
                )
            return StageResult.fail(STAGE, RejectionCode.SCHEMA_VIOLATION.value, str(e))

        async with postgres_session() as session:
            evidence = await session.get(EvidenceModel, evidence_id)
            summary = await record_candidates(session, evidence, items)

    return StageResult.ok(
        STAGE,
        f"{len(summary.pointer_ids)} pointer(s) from {summary.candidates} candidate(s)",
        processed=summary.candidates,
        details={
            "evidence_id": evidence_id,
            "pointer_ids": summary.pointer_ids,
            "rejected": summary.rejected,
            "duplicates": summary.duplicates,
        },
    )
