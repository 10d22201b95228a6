"""
Fact Pipeline Database Models
=============================

SQLAlchemy ORM models for the regulatory fact pipeline.

Tables:
- evidence / evidence_artifacts: immutable captured documents
- source_pointers: extracted, quote-verified facts
- extraction_runs: per-evidence extraction backlog
- regulatory_rules / rule_source_pointers: composed rules and their backing
- regulatory_conflicts / rule_edges: conflicts and the supersession graph
- rule_releases: immutable published bundles
- audit_events / dead_letters: append-only audit and terminal failures

Version: 0.1.0
"""

from services.fact_pipeline.models.base import new_id, utcnow, utctoday
from services.fact_pipeline.models.enums import (
    ACTIVE_RULE_STATUSES,
    AuthorityLevel,
    ConflictStatus,
    ConflictType,
    ContentClass,
    EdgeRelation,
    ExtractionStatus,
    PointerStatus,
    ResolutionStrategy,
    RiskTier,
    RuleStatus,
    ValueType,
)
from services.fact_pipeline.models.evidence import (
    EvidenceArtifactModel,
    EvidenceModel,
    ExtractionRunModel,
    SourcePointerModel,
    rule_source_pointers,
)
from services.fact_pipeline.models.rule import RegulatoryRuleModel
from services.fact_pipeline.models.conflict import RegulatoryConflictModel, RuleEdgeModel
from services.fact_pipeline.models.release import RuleReleaseModel
from services.fact_pipeline.models.audit import AuditEventModel, DeadLetterModel

__all__ = [
    # Helpers
    "new_id",
    "utcnow",
    "utctoday",
    # Enums
    "ACTIVE_RULE_STATUSES",
    "AuthorityLevel",
    "ConflictStatus",
    "ConflictType",
    "ContentClass",
    "EdgeRelation",
    "ExtractionStatus",
    "PointerStatus",
    "ResolutionStrategy",
    "RiskTier",
    "RuleStatus",
    "ValueType",
    # Models
    "EvidenceModel",
    "EvidenceArtifactModel",
    "SourcePointerModel",
    "ExtractionRunModel",
    "rule_source_pointers",
    "RegulatoryRuleModel",
    "RegulatoryConflictModel",
    "RuleEdgeModel",
    "RuleReleaseModel",
    "AuditEventModel",
    "DeadLetterModel",
]
