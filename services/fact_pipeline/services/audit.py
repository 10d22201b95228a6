"""
Audit Trail
===========

Append-only audit events and dead-letter records.

Version: 0.1.0
"""

from enum import Enum
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from services.fact_pipeline.models import AuditEventModel, DeadLetterModel
from shared.logging import get_logger


logger = get_logger(__name__)

SYSTEM_ACTOR = "system:pipeline"


class AuditAction(str, Enum):
    """Audited pipeline decisions."""

    RULE_CREATED = "rule_created"
    RULE_MERGED = "rule_merged"
    RULE_SUBMITTED = "rule_submitted"
    RULE_AUTO_APPROVED = "rule_auto_approved"
    RULE_APPROVED = "rule_approved"
    RULE_REJECTED = "rule_rejected"
    RULE_DEPRECATED = "rule_deprecated"
    RULE_PUBLISHED = "rule_published"
    COMPOSITION_BLOCKED = "composition_blocked"
    CONFLICT_CREATED = "conflict_created"
    CONFLICT_RESOLVED = "conflict_resolved"
    CONFLICT_ESCALATED = "conflict_escalated"
    GRACE_PERIOD_OVERRIDE = "grace_period_override"
    RELEASE_CREATED = "release_created"
    RELEASE_BLOCKED = "release_blocked"


def record_audit(
    session: AsyncSession,
    action: AuditAction,
    entity_type: str,
    entity_id: str,
    actor: str = SYSTEM_ACTOR,
    **details: Any,
) -> AuditEventModel:
    """
    Append an audit event to the current unit of work.

    Args:
        session: Open session; the event commits with the caller's writes
        action: What happened
        entity_type: rule | conflict | release | pointer
        entity_id: Id of the affected entity
        actor: Human identity or automated marker
        **details: JSON-serializable context

    Returns:
        The pending AuditEventModel
    """
    event = AuditEventModel(
        action=action.value,
        entity_type=entity_type,
        entity_id=entity_id,
        actor=actor,
        details=details,
    )
    session.add(event)
    return event


def dead_letter(
    session: AsyncSession,
    stage: str,
    item_type: str,
    item_id: str | None,
    reason_code: str,
    reason: str,
    payload: dict[str, Any] | None = None,
    attempts: int = 1,
) -> DeadLetterModel:
    """Record an item that reached a terminal failure."""
    record = DeadLetterModel(
        stage=stage,
        item_type=item_type,
        item_id=item_id,
        reason_code=reason_code,
        reason=reason,
        payload=payload or {},
        attempts=attempts,
    )
    session.add(record)
    logger.warning(
        "stage_dead_lettered",
        stage=stage,
        item_type=item_type,
        item_id=item_id,
        reason_code=reason_code,
        attempts=attempts,
    )
    return record


async def count_events(
    session: AsyncSession,
    entity_ids: list[str],
    actions: list[AuditAction],
) -> int:
    """Count audit events of the given actions across entities."""
    if not entity_ids:
        return 0
    result = await session.execute(
        select(func.count(AuditEventModel.id)).where(
            AuditEventModel.entity_id.in_(entity_ids),
            AuditEventModel.action.in_([a.value for a in actions]),
        )
    )
    return int(result.scalar_one())
