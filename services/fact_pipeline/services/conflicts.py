"""
Conflict Detector
=================

Pure structural conflict detection over the active rule set.

For every active rule whose window overlaps the candidate's:
- same canonical slug, different value:
    AUTHORITY_SUPERSEDE  when authority levels differ
    DATE_OVERLAP         when effective_from differs
    VALUE_MISMATCH       otherwise
- different slug, same domain/value/value type:
    CROSS_SLUG_DUPLICATE

No side effects. The composer persists what this module returns.

Version: 0.1.0
"""

import hashlib
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Protocol

from services.fact_pipeline.models.enums import (
    AuthorityLevel,
    ConflictType,
    RiskTier,
    ValueType,
)
from services.fact_pipeline.services.temporal import windows_overlap


class RuleLike(Protocol):
    """Attributes shared by rules and rule candidates."""

    concept_slug: str
    domain: str
    value: str
    value_type: ValueType
    authority_level: AuthorityLevel
    effective_from: date
    effective_until: date | None


@dataclass
class RuleCandidate:
    """A rule the composer wants to create, before it exists."""

    concept_slug: str
    domain: str
    value: str
    value_type: ValueType
    authority_level: AuthorityLevel
    risk_tier: RiskTier
    applies_when: dict[str, Any]
    effective_from: date
    effective_until: date | None
    confidence: float
    pointer_ids: list[str] = field(default_factory=list)

    @property
    def meaning_signature(self) -> str:
        return compute_meaning_signature(
            self.concept_slug,
            self.value,
            self.value_type,
            self.effective_from,
            self.effective_until,
        )

    def to_snapshot(self) -> dict[str, Any]:
        """JSON form stored on composer-seeded conflicts."""
        return {
            "concept_slug": self.concept_slug,
            "domain": self.domain,
            "value": self.value,
            "value_type": self.value_type.value,
            "authority_level": self.authority_level.value,
            "risk_tier": self.risk_tier.value,
            "applies_when": self.applies_when,
            "effective_from": self.effective_from.isoformat(),
            "effective_until": self.effective_until.isoformat() if self.effective_until else None,
            "confidence": self.confidence,
            "pointer_ids": list(self.pointer_ids),
        }

    @classmethod
    def from_snapshot(cls, data: dict[str, Any]) -> "RuleCandidate":
        return cls(
            concept_slug=data["concept_slug"],
            domain=data["domain"],
            value=data["value"],
            value_type=ValueType(data["value_type"]),
            authority_level=AuthorityLevel(data["authority_level"]),
            risk_tier=RiskTier(data["risk_tier"]),
            applies_when=data["applies_when"],
            effective_from=date.fromisoformat(data["effective_from"]),
            effective_until=(
                date.fromisoformat(data["effective_until"]) if data.get("effective_until") else None
            ),
            confidence=float(data["confidence"]),
            pointer_ids=list(data.get("pointer_ids", [])),
        )


@dataclass(frozen=True)
class ConflictCandidate:
    """A detected conflict between the candidate and one active rule."""

    conflict_type: ConflictType
    rule_id: str
    description: str


def compute_meaning_signature(
    concept_slug: str,
    value: str,
    value_type: ValueType | str,
    effective_from: date,
    effective_until: date | None,
) -> str:
    """SHA-256 over slug|value|valueType|from|until (ISO dates, empty when open)."""
    value_type_str = value_type.value if isinstance(value_type, ValueType) else str(value_type)
    parts = [
        concept_slug,
        value,
        value_type_str,
        effective_from.isoformat(),
        effective_until.isoformat() if effective_until else "",
    ]
    return hashlib.sha256("|".join(parts).encode("utf-8")).hexdigest()


def overlaps(a: RuleLike, b: RuleLike) -> bool:
    return windows_overlap(a.effective_from, a.effective_until, b.effective_from, b.effective_until)


def same_fact(a: RuleLike, b: RuleLike) -> bool:
    """Same canonical slug, value and value type with overlapping windows."""
    return (
        a.concept_slug == b.concept_slug
        and a.value == b.value
        and a.value_type == b.value_type
        and overlaps(a, b)
    )


def classify(a: RuleLike, b: RuleLike) -> ConflictType | None:
    """
    Classify the structural relation between two facts.

    Returns:
        The conflict type, or None when the two do not conflict
    """
    if not overlaps(a, b) or same_fact(a, b):
        return None

    if a.concept_slug == b.concept_slug:
        if a.authority_level != b.authority_level:
            return ConflictType.AUTHORITY_SUPERSEDE
        if a.effective_from != b.effective_from:
            return ConflictType.DATE_OVERLAP
        return ConflictType.VALUE_MISMATCH

    if a.domain == b.domain and a.value == b.value and a.value_type == b.value_type:
        return ConflictType.CROSS_SLUG_DUPLICATE

    return None


def _describe(conflict_type: ConflictType, candidate: RuleLike, rule: Any) -> str:
    if conflict_type == ConflictType.CROSS_SLUG_DUPLICATE:
        return (
            f"'{candidate.concept_slug}' and '{rule.concept_slug}' state the same "
            f"{candidate.value_type.value} value {candidate.value} in domain {candidate.domain}"
        )
    return (
        f"'{candidate.concept_slug}': value {candidate.value} "
        f"({candidate.authority_level.value}, from {candidate.effective_from}) conflicts with "
        f"rule {rule.id} value {rule.value} "
        f"({rule.authority_level.value}, from {rule.effective_from})"
    )


def detect_conflicts(candidate: RuleLike, active_rules: list[Any]) -> list[ConflictCandidate]:
    """
    Detect structural conflicts between a candidate and the active rules.

    Args:
        candidate: Proposed rule (or an existing rule being re-checked)
        active_rules: Rules in DRAFT..PUBLISHED

    Returns:
        One ConflictCandidate per conflicting rule
    """
    conflicts = []
    for rule in active_rules:
        if getattr(candidate, "id", None) is not None and rule.id == candidate.id:  # type: ignore[attr-defined]
            continue
        conflict_type = classify(candidate, rule)
        if conflict_type is None:
            continue
        conflicts.append(
            ConflictCandidate(
                conflict_type=conflict_type,
                rule_id=rule.id,
                description=_describe(conflict_type, candidate, rule),
            )
        )
    return conflicts


def detect_pairwise_conflicts(active_rules: list[Any]) -> list[tuple[Any, Any, ConflictType]]:
    """
    All conflicting pairs within a rule set, each pair reported once.

    Returns:
        (rule_a, rule_b, conflict_type) tuples
    """
    pairs = []
    for i, rule_a in enumerate(active_rules):
        for rule_b in active_rules[i + 1 :]:
            conflict_type = classify(rule_a, rule_b)
            if conflict_type is not None:
                pairs.append((rule_a, rule_b, conflict_type))
    return pairs
