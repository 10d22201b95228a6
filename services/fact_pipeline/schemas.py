"""
Fact Pipeline Schemas
=====================

Pydantic models for the pipeline's boundaries: the untrusted extraction
contract, structured rejection reasons and stage results returned by the
admin entry points.

Version: 0.1.0
"""

from datetime import date
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from services.fact_pipeline.models.enums import AuthorityLevel, RiskTier, ValueType


class RejectionCode(str, Enum):
    """Machine-readable rejection reasons."""

    # Validation
    VALUE_NOT_IN_QUOTE = "VALUE_NOT_IN_QUOTE"
    OUT_OF_RANGE = "OUT_OF_RANGE"
    INVALID_VALUE = "INVALID_VALUE"
    INVALID_DATE = "INVALID_DATE"
    UNKNOWN_DOMAIN = "UNKNOWN_DOMAIN"
    UNKNOWN_VALUE_TYPE = "UNKNOWN_VALUE_TYPE"
    INVALID_CONFIDENCE = "INVALID_CONFIDENCE"
    QUOTE_TOO_SHORT = "QUOTE_TOO_SHORT"
    QUOTE_NOT_IN_EVIDENCE = "QUOTE_NOT_IN_EVIDENCE"
    SCHEMA_VIOLATION = "SCHEMA_VIOLATION"
    VALUE_TOO_LONG = "VALUE_TOO_LONG"

    # Composition
    BLOCKED_DOMAIN = "BLOCKED_DOMAIN"
    DSL_INVALID = "DSL_INVALID"
    SOURCE_CONFLICT = "SOURCE_CONFLICT"
    STRUCTURAL_CONFLICT = "STRUCTURAL_CONFLICT"
    NO_POINTERS = "NO_POINTERS"
    MIXED_CONCEPTS = "MIXED_CONCEPTS"
    CONFLICT_LOST = "CONFLICT_LOST"

    # Review / release
    QUOTE_UNVERIFIED = "QUOTE_UNVERIFIED"
    GATE_FAILED = "GATE_FAILED"
    APPROVAL_DENIED = "APPROVAL_DENIED"

    # Transient
    TRANSIENT_FAILURE = "TRANSIENT_FAILURE"
    RETRIES_EXHAUSTED = "RETRIES_EXHAUSTED"


class Severity(str, Enum):
    """Severity of a rejection."""

    CRITICAL = "critical"
    MAJOR = "major"
    MINOR = "minor"


class RejectionReason(BaseModel):
    """Structured reason attached to every rejection."""

    code: RejectionCode
    description: str
    severity: Severity = Severity.MAJOR
    recommendation: str | None = None

    def __str__(self) -> str:
        return f"{self.code.value}: {self.description}"


class ExtractionCandidate(BaseModel):
    """
    One candidate fact returned by the extraction collaborator.

    Untrusted: parsing only checks shape. Values are re-verified by the
    deterministic validator and the quote locator before a pointer exists.
    """

    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    extracted_value: str = Field(..., max_length=500)
    value_type: ValueType
    domain: str = Field(..., min_length=1, max_length=100)
    exact_quote: str = Field(..., min_length=1)
    confidence: float
    concept_slug: str = Field(..., min_length=1, max_length=200)
    applies_when: dict[str, Any] | None = None
    risk_tier: RiskTier = RiskTier.T2
    authority_level: AuthorityLevel = AuthorityLevel.GUIDANCE
    effective_from: date | None = None
    effective_until: date | None = None

    @field_validator("extracted_value", mode="before")
    @classmethod
    def coerce_value(cls, v: Any) -> Any:
        """Models often return numbers for numeric facts."""
        if isinstance(v, bool):
            return str(v).lower()
        if isinstance(v, int | float):
            return str(v)
        return v


class StageResult(BaseModel):
    """Outcome of an admin entry point or drainer stage call."""

    success: bool
    stage: str
    reason_code: str | None = None
    message: str = ""

    rule_id: str | None = None
    rule_ids: list[str] = Field(default_factory=list)
    conflict_ids: list[str] = Field(default_factory=list)
    merged: bool = False
    processed: int = 0

    # Itemized failures for batch operations
    failures: list[dict[str, Any]] = Field(default_factory=list)
    details: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def ok(cls, stage: str, message: str = "", **kwargs: Any) -> "StageResult":
        return cls(success=True, stage=stage, message=message, **kwargs)

    @classmethod
    def fail(cls, stage: str, reason_code: str, message: str, **kwargs: Any) -> "StageResult":
        return cls(success=False, stage=stage, reason_code=reason_code, message=message, **kwargs)


# =============================================================================
# API models
# =============================================================================


class HealthResponse(BaseModel):
    """Service health check response."""

    status: str = "healthy"
    service: str
    version: str
    components: dict[str, dict[str, Any]] = Field(default_factory=dict)


class RuleOut(BaseModel):
    """Rule as returned by the query API."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    concept_slug: str
    domain: str
    value: str
    value_type: ValueType
    authority_level: AuthorityLevel
    risk_tier: RiskTier
    applies_when: dict[str, Any]
    confidence: float
    effective_from: date
    effective_until: date | None = None
    status: str
    meaning_signature: str
    approved_by: str | None = None
    supersedes_id: str | None = None
    superseded_by_id: str | None = None
    explanation: str | None = None
    source_pointer_ids: list[str] = Field(default_factory=list)

    @field_validator("status", mode="before")
    @classmethod
    def enum_value(cls, v: Any) -> Any:
        return v.value if isinstance(v, Enum) else v

    @classmethod
    def from_rule(cls, rule: Any) -> "RuleOut":
        return cls.model_validate(rule).model_copy(
            update={"source_pointer_ids": sorted(p.id for p in rule.source_pointers)}
        )


class ConflictOut(BaseModel):
    """Conflict as returned by the admin API."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    conflict_type: str
    status: str
    item_a_id: str | None = None
    item_b_id: str | None = None
    source_pointer_ids: list[str] = Field(default_factory=list)
    description: str
    resolution_strategy: str | None = None
    resolution_confidence: float | None = None
    winning_rule_id: str | None = None
    escalation_reason: str | None = None
    resolved_by: str | None = None

    @field_validator("conflict_type", "status", "resolution_strategy", mode="before")
    @classmethod
    def enum_value(cls, v: Any) -> Any:
        return v.value if isinstance(v, Enum) else v


class ReleaseOut(BaseModel):
    """Release as returned by the query API."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    version: str
    bump: str
    content_hash: str
    effective_from: date
    rule_ids: list[str]
    audit_trail: dict[str, int]
    released_by: str
