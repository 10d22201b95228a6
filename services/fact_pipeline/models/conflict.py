"""
Conflict Database Models
========================

SQLAlchemy ORM models for regulatory conflicts and rule graph edges.

Composer-seeded conflicts refer to the not-yet-created rule through a
`candidate` snapshot, and pre-composition source disagreements through
`source_pointer_ids`, so neither needs a dangling rule foreign key.

Version: 0.1.0
"""

from sqlalchemy import (
    Column,
    DateTime,
    Enum as SQLEnum,
    Float,
    ForeignKey,
    Index,
    JSON,
    String,
    Text,
    UniqueConstraint,
)

from services.fact_pipeline.models.base import new_id, utcnow
from services.fact_pipeline.models.enums import (
    ConflictStatus,
    ConflictType,
    EdgeRelation,
    ResolutionStrategy,
)
from shared.database.postgres import Base


class RegulatoryConflictModel(Base):
    """Detected disagreement between rules, a rule and a candidate, or pointers."""

    __tablename__ = "regulatory_conflicts"
    __table_args__ = (
        Index("ix_conflicts_status", "status"),
        Index("ix_conflicts_item_a", "item_a_id"),
        Index("ix_conflicts_item_b", "item_b_id"),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    conflict_type = Column(SQLEnum(ConflictType), nullable=False)
    status = Column(SQLEnum(ConflictStatus), nullable=False, default=ConflictStatus.OPEN)

    # Participants
    item_a_id = Column(String(36), ForeignKey("regulatory_rules.id"))
    item_b_id = Column(String(36), ForeignKey("regulatory_rules.id"))
    candidate = Column(JSON)  # proposed rule snapshot + pointer ids
    source_pointer_ids = Column(JSON, nullable=False, default=list)

    description = Column(Text, nullable=False)

    # Resolution
    resolution_strategy = Column(SQLEnum(ResolutionStrategy))
    resolution_confidence = Column(Float)
    winning_rule_id = Column(String(36), ForeignKey("regulatory_rules.id"))
    escalation_reason = Column(Text)
    resolved_by = Column(String(200))
    resolved_at = Column(DateTime)

    created_at = Column(DateTime, nullable=False, default=utcnow)

    @property
    def rule_ids(self) -> list[str]:
        return [rid for rid in (self.item_a_id, self.item_b_id) if rid]

    def __repr__(self) -> str:
        return f"<Conflict {self.id} {self.conflict_type} [{self.status}]>"


class RuleEdgeModel(Base):
    """Directed edge in the rule supersession graph."""

    __tablename__ = "rule_edges"
    __table_args__ = (
        UniqueConstraint("from_rule_id", "to_rule_id", "relation", name="uq_rule_edges"),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    from_rule_id = Column(String(36), ForeignKey("regulatory_rules.id"), nullable=False)
    to_rule_id = Column(String(36), ForeignKey("regulatory_rules.id"), nullable=False)
    relation = Column(SQLEnum(EdgeRelation), nullable=False, default=EdgeRelation.OVERRIDES)
    created_at = Column(DateTime, nullable=False, default=utcnow)
