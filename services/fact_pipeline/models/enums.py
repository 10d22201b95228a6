"""
Fact Pipeline Enums
===================

Shared enumerations for evidence, pointers, rules, conflicts and releases.

Version: 0.1.0
"""

from enum import Enum


class ContentClass(str, Enum):
    """Format of a captured evidence document."""

    HTML = "HTML"
    PDF_TEXT = "PDF_TEXT"
    PDF_SCANNED = "PDF_SCANNED"
    JSON = "JSON"
    XML = "XML"
    DOC = "DOC"
    TEXT = "TEXT"


class ValueType(str, Enum):
    """Type of an extracted value."""

    CURRENCY = "currency"
    CURRENCY_EUR = "currency_eur"
    CURRENCY_HRK = "currency_hrk"
    PERCENTAGE = "percentage"
    DATE = "date"
    THRESHOLD = "threshold"
    TEXT = "text"
    COUNT = "count"
    INTEREST_RATE = "interest_rate"
    EXCHANGE_RATE = "exchange_rate"

    @property
    def is_numeric(self) -> bool:
        return self not in (ValueType.DATE, ValueType.TEXT)


class RiskTier(str, Enum):
    """Criticality of a rule. T0 is the most critical."""

    T0 = "T0"
    T1 = "T1"
    T2 = "T2"
    T3 = "T3"

    @property
    def criticality(self) -> int:
        """Higher is more critical."""
        return 3 - int(self.value[1])

    @property
    def requires_human_approval(self) -> bool:
        return self in (RiskTier.T0, RiskTier.T1)


class AuthorityLevel(str, Enum):
    """Legal-source hierarchy."""

    LAW = "LAW"
    REGULATION = "REGULATION"
    GUIDANCE = "GUIDANCE"
    PROCEDURE = "PROCEDURE"
    PRACTICE = "PRACTICE"

    @property
    def rank(self) -> int:
        """Higher rank wins in hierarchy arbitration."""
        return _AUTHORITY_RANK[self]


_AUTHORITY_RANK = {
    AuthorityLevel.LAW: 5,
    AuthorityLevel.REGULATION: 4,
    AuthorityLevel.GUIDANCE: 3,
    AuthorityLevel.PROCEDURE: 2,
    AuthorityLevel.PRACTICE: 1,
}


class RuleStatus(str, Enum):
    """Rule lifecycle status."""

    DRAFT = "DRAFT"
    PENDING_REVIEW = "PENDING_REVIEW"
    APPROVED = "APPROVED"
    PUBLISHED = "PUBLISHED"
    REJECTED = "REJECTED"
    DEPRECATED = "DEPRECATED"


ACTIVE_RULE_STATUSES: tuple[RuleStatus, ...] = (
    RuleStatus.DRAFT,
    RuleStatus.PENDING_REVIEW,
    RuleStatus.APPROVED,
    RuleStatus.PUBLISHED,
)


class PointerStatus(str, Enum):
    """Workflow status of a source pointer. Fact fields never change."""

    VALIDATED = "VALIDATED"  # waiting for composition
    COMPOSED = "COMPOSED"  # linked to a rule
    HELD = "HELD"  # blocked by an open conflict
    REJECTED = "REJECTED"


class ExtractionStatus(str, Enum):
    """Status of an extraction run over one evidence record."""

    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    DEAD_LETTERED = "DEAD_LETTERED"


class ConflictType(str, Enum):
    """Kinds of structural conflicts."""

    VALUE_MISMATCH = "VALUE_MISMATCH"
    DATE_OVERLAP = "DATE_OVERLAP"
    AUTHORITY_SUPERSEDE = "AUTHORITY_SUPERSEDE"
    CROSS_SLUG_DUPLICATE = "CROSS_SLUG_DUPLICATE"
    SOURCE_CONFLICT = "SOURCE_CONFLICT"


class ConflictStatus(str, Enum):
    """Conflict lifecycle status."""

    OPEN = "OPEN"
    RESOLVED = "RESOLVED"
    ESCALATED = "ESCALATED"


class ResolutionStrategy(str, Enum):
    """How a conflict was (or must be) resolved."""

    HIERARCHY = "hierarchy"  # lex superior
    TEMPORAL = "temporal"  # lex posterior
    SPECIFICITY = "specificity"  # lex specialis
    ESCALATE = "escalate"
    MOOT = "moot"  # a participant left the active set
    HUMAN = "human"


class EdgeRelation(str, Enum):
    """Directed relation between two rules."""

    OVERRIDES = "OVERRIDES"
