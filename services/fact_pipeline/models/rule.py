"""
Rule Database Model
===================

SQLAlchemy ORM model for composed regulatory rules.

A partial unique index on `meaning_signature` over the active statuses
serializes rule creation: two composer workers racing on the same
(concept, value, window) cannot both insert.

Version: 0.1.0
"""

from sqlalchemy import (
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Enum as SQLEnum,
    Float,
    ForeignKey,
    Index,
    JSON,
    String,
    Text,
    text,
)
from sqlalchemy.orm import relationship

from services.fact_pipeline.models.base import new_id, utcnow
from services.fact_pipeline.models.enums import (
    ACTIVE_RULE_STATUSES,
    AuthorityLevel,
    RiskTier,
    RuleStatus,
    ValueType,
)
from services.fact_pipeline.models.evidence import rule_source_pointers
from shared.database.postgres import Base


_ACTIVE_STATUS_SQL = "status IN ({})".format(
    ", ".join(f"'{s.name}'" for s in ACTIVE_RULE_STATUSES)
)


class RegulatoryRuleModel(Base):
    """
    A composed, applicable compliance fact.

    Lifecycle: DRAFT -> PENDING_REVIEW -> APPROVED -> PUBLISHED, with
    REJECTED and DEPRECATED as terminal states.
    """

    __tablename__ = "regulatory_rules"
    __table_args__ = (
        Index("ix_rules_concept", "concept_slug"),
        Index("ix_rules_status", "status"),
        Index("ix_rules_domain_value", "domain", "value"),
        Index(
            "uq_rules_active_meaning",
            "meaning_signature",
            unique=True,
            postgresql_where=text(_ACTIVE_STATUS_SQL),
            sqlite_where=text(_ACTIVE_STATUS_SQL),
        ),
        CheckConstraint("confidence >= 0 AND confidence <= 1", name="ck_rules_confidence"),
    )

    id = Column(String(36), primary_key=True, default=new_id)

    # Identity
    concept_slug = Column(String(200), nullable=False)  # canonical
    domain = Column(String(100), nullable=False)
    value = Column(String(500), nullable=False)
    value_type = Column(SQLEnum(ValueType), nullable=False)

    # Classification
    authority_level = Column(SQLEnum(AuthorityLevel), nullable=False)
    risk_tier = Column(SQLEnum(RiskTier), nullable=False)
    applies_when = Column(JSON, nullable=False)
    confidence = Column(Float, nullable=False)

    # Effective window [effective_from, effective_until)
    effective_from = Column(Date, nullable=False)
    effective_until = Column(Date)

    # Lifecycle
    status = Column(SQLEnum(RuleStatus), nullable=False, default=RuleStatus.DRAFT)
    meaning_signature = Column(String(64), nullable=False)
    pending_since = Column(DateTime)
    approved_by = Column(String(200))
    approved_at = Column(DateTime)
    published_at = Column(DateTime)
    rejection_reason = Column(JSON)

    # Supersession: the winner points at the first rule it replaced (all of them are
    # in rule_edges), the loser at its winner
    supersedes_id = Column(String(36), ForeignKey("regulatory_rules.id"))
    superseded_by_id = Column(String(36), ForeignKey("regulatory_rules.id"))

    explanation = Column(Text)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    source_pointers = relationship(
        "SourcePointerModel",
        secondary=rule_source_pointers,
        back_populates="rules",
        lazy="selectin",
    )

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_RULE_STATUSES

    def __repr__(self) -> str:
        return f"<Rule {self.id} {self.concept_slug}={self.value} [{self.status}]>"
