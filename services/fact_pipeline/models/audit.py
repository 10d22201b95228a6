"""
Audit Database Models
=====================

Append-only audit events and dead-letter records.

Version: 0.1.0
"""

from sqlalchemy import Column, DateTime, Index, Integer, JSON, String, Text, event

from services.fact_pipeline.exceptions import PipelineError
from services.fact_pipeline.models.base import new_id, utcnow
from shared.database.postgres import Base


class AuditEventModel(Base):
    """Append-only record of a pipeline decision."""

    __tablename__ = "audit_events"
    __table_args__ = (
        Index("ix_audit_entity", "entity_type", "entity_id"),
        Index("ix_audit_action", "action"),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    action = Column(String(64), nullable=False)
    entity_type = Column(String(32), nullable=False)
    entity_id = Column(String(36), nullable=False)
    actor = Column(String(200), nullable=False)
    details = Column("metadata", JSON, nullable=False, default=dict)
    created_at = Column(DateTime, nullable=False, default=utcnow)


class DeadLetterModel(Base):
    """Terminal record for an item that failed validation or exhausted retries."""

    __tablename__ = "dead_letters"
    __table_args__ = (
        Index("ix_dead_letters_stage", "stage"),
        Index("ix_dead_letters_item", "item_type", "item_id"),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    stage = Column(String(32), nullable=False)
    item_type = Column(String(32), nullable=False)
    item_id = Column(String(36))
    reason_code = Column(String(64), nullable=False)
    reason = Column(Text, nullable=False)
    payload = Column(JSON, nullable=False, default=dict)
    attempts = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime, nullable=False, default=utcnow)


@event.listens_for(AuditEventModel, "before_update")
def _block_audit_update(mapper, connection, target) -> None:  # type: ignore[no-untyped-def]
    raise PipelineError("Audit events are append-only", code="IMMUTABLE_AUDIT")
