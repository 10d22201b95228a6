"""
Evidence Database Models
========================

SQLAlchemy ORM models for captured evidence and extracted source pointers.

Evidence rows are immutable once written. Source pointer fact fields are
immutable as well; only the workflow `status` column may change.

Version: 0.1.0
"""

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Enum as SQLEnum,
    Float,
    ForeignKey,
    Index,
    Integer,
    JSON,
    String,
    Table,
    Text,
    event,
    inspect,
)
from sqlalchemy.orm import relationship

from services.fact_pipeline.exceptions import PipelineError
from services.fact_pipeline.models.base import new_id, utcnow
from services.fact_pipeline.models.enums import (
    AuthorityLevel,
    ContentClass,
    ExtractionStatus,
    PointerStatus,
    RiskTier,
    ValueType,
)
from shared.database.postgres import Base


# Many-to-many link between rules and the pointers that back them
rule_source_pointers = Table(
    "rule_source_pointers",
    Base.metadata,
    Column("rule_id", String(36), ForeignKey("regulatory_rules.id", ondelete="CASCADE"), primary_key=True),
    Column("pointer_id", String(36), ForeignKey("source_pointers.id", ondelete="CASCADE"), primary_key=True),
    Column("linked_at", DateTime, nullable=False, default=utcnow),
)


class EvidenceModel(Base):
    """
    Immutable captured source document.

    Owned by the discovery subsystem; the pipeline only reads it.
    """

    __tablename__ = "evidence"
    __table_args__ = (
        Index("ix_evidence_content_hash", "content_hash"),
        Index("ix_evidence_source", "source"),
    )

    id = Column(String(36), primary_key=True, default=new_id)

    # Publisher slug (e.g. "narodne-novine", "porezna-uprava"); drives evidence strength
    source = Column(String(100), nullable=False)
    url = Column(String(1000))

    content_hash = Column(String(64), nullable=False)  # SHA-256 of raw bytes
    raw_content = Column(Text, nullable=False)
    content_class = Column(SQLEnum(ContentClass), nullable=False, default=ContentClass.HTML)

    fetched_at = Column(DateTime, nullable=False, default=utcnow)

    artifacts = relationship(
        "EvidenceArtifactModel",
        back_populates="evidence",
        lazy="selectin",
        order_by="EvidenceArtifactModel.created_at",
    )

    @property
    def text(self) -> str:
        """Primary derived text artifact, falling back to raw content."""
        for artifact in self.artifacts:
            if artifact.is_primary:
                return artifact.content
        return self.raw_content

    def __repr__(self) -> str:
        return f"<Evidence {self.id} source={self.source}>"


class EvidenceArtifactModel(Base):
    """Derived text (OCR output, cleaned HTML) attached to an evidence record."""

    __tablename__ = "evidence_artifacts"

    id = Column(String(36), primary_key=True, default=new_id)
    evidence_id = Column(String(36), ForeignKey("evidence.id", ondelete="CASCADE"), nullable=False)
    kind = Column(String(50), nullable=False)  # e.g. OCR_TEXT, CLEAN_TEXT
    content = Column(Text, nullable=False)
    content_hash = Column(String(64), nullable=False)
    is_primary = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    evidence = relationship("EvidenceModel", back_populates="artifacts")


class SourcePointerModel(Base):
    """
    One extracted, quote-verified fact.

    Linked to zero or more rules through `rule_source_pointers`.
    """

    __tablename__ = "source_pointers"
    __table_args__ = (
        Index("ix_pointers_evidence", "evidence_id"),
        Index("ix_pointers_status", "status"),
        Index("ix_pointers_concept", "concept_slug"),
        CheckConstraint("confidence >= 0 AND confidence <= 1", name="ck_pointers_confidence"),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    evidence_id = Column(String(36), ForeignKey("evidence.id"), nullable=False)

    # Extracted fact
    exact_quote = Column(Text, nullable=False)
    extracted_value = Column(String(500), nullable=False)
    value_type = Column(SQLEnum(ValueType), nullable=False)
    domain = Column(String(100), nullable=False)
    confidence = Column(Float, nullable=False)

    # Proposed rule shape
    concept_slug = Column(String(200), nullable=False)
    applies_when = Column(JSON)
    risk_tier = Column(SQLEnum(RiskTier), nullable=False, default=RiskTier.T2)
    authority_level = Column(SQLEnum(AuthorityLevel), nullable=False, default=AuthorityLevel.GUIDANCE)
    effective_from = Column(Date, nullable=False)
    effective_until = Column(Date)  # exclusive, None = open ended

    # Where the quote was located in the evidence text
    quote_start = Column(Integer)
    quote_end = Column(Integer)
    match_type = Column(String(20))  # exact | normalized

    # Workflow (the only mutable column)
    status = Column(SQLEnum(PointerStatus), nullable=False, default=PointerStatus.VALIDATED)

    created_at = Column(DateTime, nullable=False, default=utcnow)

    evidence = relationship("EvidenceModel", lazy="selectin")
    rules = relationship(
        "RegulatoryRuleModel",
        secondary=rule_source_pointers,
        back_populates="source_pointers",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<SourcePointer {self.id} {self.concept_slug}={self.extracted_value}>"


class ExtractionRunModel(Base):
    """Extraction backlog entry for one evidence record."""

    __tablename__ = "extraction_runs"
    __table_args__ = (Index("ix_extraction_runs_status", "status"),)

    id = Column(String(36), primary_key=True, default=new_id)
    evidence_id = Column(String(36), ForeignKey("evidence.id"), nullable=False, unique=True)
    status = Column(SQLEnum(ExtractionStatus), nullable=False, default=ExtractionStatus.PENDING)
    attempts = Column(Integer, nullable=False, default=0)
    last_error = Column(Text)
    candidates_found = Column(Integer, nullable=False, default=0)
    pointers_created = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    completed_at = Column(DateTime)

    evidence = relationship("EvidenceModel", lazy="selectin")


# =============================================================================
# Immutability guards
# =============================================================================

_POINTER_MUTABLE_COLUMNS = frozenset({"status"})


def _changed_columns(mapper, target) -> set[str]:  # type: ignore[no-untyped-def]
    state = inspect(target)
    return {
        attr.key
        for attr in mapper.column_attrs
        if state.attrs[attr.key].history.has_changes()
    }


@event.listens_for(EvidenceModel, "before_update")
def _block_evidence_update(mapper, connection, target) -> None:  # type: ignore[no-untyped-def]
    # Relationship-only changes (new artifacts) also mark the row dirty
    if not _changed_columns(mapper, target):
        return
    raise PipelineError(f"Evidence {target.id} is immutable", code="IMMUTABLE_EVIDENCE")


@event.listens_for(SourcePointerModel, "before_update")
def _block_pointer_fact_update(mapper, connection, target) -> None:  # type: ignore[no-untyped-def]
    illegal = _changed_columns(mapper, target) - _POINTER_MUTABLE_COLUMNS
    if illegal:
        raise PipelineError(
            f"Source pointer {target.id} fact fields are immutable: {sorted(illegal)}",
            code="IMMUTABLE_POINTER",
        )
