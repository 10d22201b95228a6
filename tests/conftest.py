"""
Test Configuration
==================

Pytest fixtures for fact pipeline tests.

Store-backed tests run against an in-memory SQLite database through
aiosqlite. Every factory commits in its own session so that stage entry
points, which open their own sessions, see the data.
"""

import os
from collections.abc import AsyncGenerator, Generator
from datetime import date, datetime
from typing import Any

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# Set test environment
os.environ["ENVIRONMENT"] = "testing"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"

from services.fact_pipeline.models import (  # noqa: E402
    AuthorityLevel,
    EvidenceModel,
    PointerStatus,
    RegulatoryRuleModel,
    RiskTier,
    RuleStatus,
    SourcePointerModel,
    ValueType,
    new_id,
)
from services.fact_pipeline.services.conflicts import compute_meaning_signature  # noqa: E402
from shared.database.postgres import PostgresClient, postgres_session  # noqa: E402
from shared.llm import LLMMessage, LLMProvider, LLMResponse, set_llm_provider  # noqa: E402


VAT_TEXT = (
    "Članak 38. Opća stopa PDV-a iznosi 25% od porezne osnovice. "
    "Odredba se primjenjuje za 2025. godinu i nadalje."
)
VAT_QUOTE = "Opća stopa PDV-a iznosi 25% od porezne osnovice"


@pytest.fixture(scope="session")
def anyio_backend() -> str:
    """Use asyncio backend for async tests."""
    return "asyncio"


# =============================================================================
# Database
# =============================================================================


@pytest_asyncio.fixture
async def database() -> AsyncGenerator[None, None]:
    """Fresh in-memory schema per test."""
    PostgresClient.configure("sqlite+aiosqlite://")
    await PostgresClient.create_all()
    yield
    await PostgresClient.close()


class PipelineFactory:
    """Creates committed evidence, pointers and rules."""

    async def evidence(self, text: str = VAT_TEXT, source: str = "narodne-novine") -> str:
        async with postgres_session() as session:
            evidence = EvidenceModel(
                id=new_id(),
                source=source,
                url=f"https://{source}.example/doc",
                content_hash=new_id().replace("-", "") * 2,
                raw_content=text,
            )
            session.add(evidence)
        return evidence.id

    async def pointer(
        self,
        evidence_id: str | None = None,
        *,
        extracted_value: str = "25",
        exact_quote: str = VAT_QUOTE,
        value_type: ValueType = ValueType.PERCENTAGE,
        domain: str = "pdv",
        confidence: float = 0.97,
        concept_slug: str = "pdv-standardna-stopa",
        applies_when: dict[str, Any] | None = None,
        risk_tier: RiskTier = RiskTier.T2,
        authority_level: AuthorityLevel = AuthorityLevel.LAW,
        effective_from: date = date(2025, 1, 1),
        effective_until: date | None = None,
        status: PointerStatus = PointerStatus.VALIDATED,
        source: str = "narodne-novine",
    ) -> str:
        if evidence_id is None:
            evidence_id = await self.evidence(source=source)
        async with postgres_session() as session:
            pointer = SourcePointerModel(
                id=new_id(),
                evidence_id=evidence_id,
                exact_quote=exact_quote,
                extracted_value=extracted_value,
                value_type=value_type,
                domain=domain,
                confidence=confidence,
                concept_slug=concept_slug,
                applies_when=applies_when,
                risk_tier=risk_tier,
                authority_level=authority_level,
                effective_from=effective_from,
                effective_until=effective_until,
                status=status,
            )
            session.add(pointer)
        return pointer.id

    async def rule(
        self,
        *,
        value: str = "25",
        concept_slug: str = "pdv-standardna-stopa",
        domain: str = "pdv",
        value_type: ValueType = ValueType.PERCENTAGE,
        authority_level: AuthorityLevel = AuthorityLevel.LAW,
        risk_tier: RiskTier = RiskTier.T2,
        applies_when: dict[str, Any] | None = None,
        confidence: float = 0.97,
        effective_from: date = date(2025, 1, 1),
        effective_until: date | None = None,
        status: RuleStatus = RuleStatus.DRAFT,
        approved_by: str | None = None,
        pending_since: datetime | None = None,
        sources: tuple[str, ...] = ("narodne-novine",),
    ) -> str:
        """Rule backed by one pointer per source, each quoting `value`."""
        quote = f"Opća stopa PDV-a iznosi {value}% od porezne osnovice"
        pointer_ids = [
            await self.pointer(
                await self.evidence(text=f"Članak 38. {quote}.", source=source),
                extracted_value=value,
                exact_quote=quote,
                value_type=value_type,
                domain=domain,
                confidence=confidence,
                concept_slug=concept_slug,
                risk_tier=risk_tier,
                authority_level=authority_level,
                effective_from=effective_from,
                effective_until=effective_until,
                status=PointerStatus.COMPOSED,
            )
            for source in sources
        ]
        async with postgres_session() as session:
            pointers = [await session.get(SourcePointerModel, pid) for pid in pointer_ids]
            rule = RegulatoryRuleModel(
                id=new_id(),
                concept_slug=concept_slug,
                domain=domain,
                value=value,
                value_type=value_type,
                authority_level=authority_level,
                risk_tier=risk_tier,
                applies_when=applies_when or {"op": "true"},
                confidence=confidence,
                effective_from=effective_from,
                effective_until=effective_until,
                status=status,
                meaning_signature=compute_meaning_signature(
                    concept_slug, value, value_type, effective_from, effective_until
                ),
                approved_by=approved_by,
                pending_since=pending_since,
                source_pointers=pointers,
            )
            session.add(rule)
        return rule.id


@pytest.fixture
def factory(database: None) -> PipelineFactory:
    """Factory bound to the test database."""
    return PipelineFactory()


# =============================================================================
# LLM
# =============================================================================


class FakeLLMProvider(LLMProvider):
    """Returns queued responses; raises queued exceptions."""

    def __init__(self, *responses: Any) -> None:
        self.responses = list(responses)
        self.calls: list[list[LLMMessage]] = []

    @property
    def name(self) -> str:
        return "fake"

    @property
    def model(self) -> str:
        return "fake-extractor"

    async def complete(
        self,
        messages: list[LLMMessage],
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        self.calls.append(messages)
        response = self.responses.pop(0) if self.responses else "[]"
        if isinstance(response, BaseException):
            raise response
        return LLMResponse(content=response, model=self.model, provider=self.name)


@pytest.fixture
def fake_llm() -> Generator[FakeLLMProvider, None, None]:
    """Fake provider installed as the global provider."""
    provider = FakeLLMProvider()
    set_llm_provider(provider)
    yield provider
    set_llm_provider(None)


# =============================================================================
# HTTP
# =============================================================================


@pytest_asyncio.fixture
async def fact_pipeline_client(database: None) -> AsyncGenerator[AsyncClient, None]:
    """Create test client for the Fact Pipeline Service."""
    from services.fact_pipeline.main import app

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as client:
        yield client
