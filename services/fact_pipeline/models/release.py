"""
Release Database Model
======================

SQLAlchemy ORM model for immutable rule releases.

Version: 0.1.0
"""

from sqlalchemy import Column, Date, DateTime, JSON, String, event

from services.fact_pipeline.exceptions import PipelineError
from services.fact_pipeline.models.base import new_id, utcnow
from shared.database.postgres import Base


class RuleReleaseModel(Base):
    """Versioned bundle of published rule snapshots. Never mutated."""

    __tablename__ = "rule_releases"

    id = Column(String(36), primary_key=True, default=new_id)
    version = Column(String(32), nullable=False, unique=True)
    bump = Column(String(10), nullable=False)  # major | minor | patch
    content_hash = Column(String(64), nullable=False)
    effective_from = Column(Date, nullable=False)
    rule_ids = Column(JSON, nullable=False)
    snapshots = Column(JSON, nullable=False)
    audit_trail = Column(JSON, nullable=False)
    released_by = Column(String(200), nullable=False)
    released_at = Column(DateTime, nullable=False, default=utcnow)

    def __repr__(self) -> str:
        return f"<Release {self.version} {self.content_hash[:12]}>"


@event.listens_for(RuleReleaseModel, "before_update")
def _block_release_update(mapper, connection, target) -> None:  # type: ignore[no-untyped-def]
    raise PipelineError(f"Release {target.version} is immutable", code="IMMUTABLE_RELEASE")
