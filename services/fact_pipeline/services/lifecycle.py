"""
Rule Lifecycle
==============

Explicit transition table for rule status changes, plus the approval
invariants every transition into APPROVED or PUBLISHED must satisfy:

- the rule has at least one linked source pointer
- T0/T1 rules carry a human `approved_by`, never an automated marker

Version: 0.1.0
"""

from dataclasses import dataclass, field

from services.fact_pipeline.exceptions import InvalidTransitionError
from services.fact_pipeline.models import RegulatoryRuleModel, RuleStatus, utcnow
from shared.config import settings


AUTOMATED_ACTOR_PREFIXES = ("system:", "auto:", "bot:", "worker:")
AUTOMATED_ACTOR_NAMES = frozenset({"system", "auto", "automation", "bot", "pipeline", "llm"})


def is_automated_actor(actor: str | None) -> bool:
    """Whether `actor` identifies an automated component rather than a person."""
    if not actor or not actor.strip():
        return True
    normalized = actor.strip().lower()
    if normalized == settings.pipeline.automated_actor.lower():
        return True
    return normalized in AUTOMATED_ACTOR_NAMES or normalized.startswith(AUTOMATED_ACTOR_PREFIXES)


@dataclass
class RuleLifecycle:
    """Rule status state machine."""

    transitions: dict[RuleStatus, frozenset[RuleStatus]] = field(
        default_factory=lambda: {
            RuleStatus.DRAFT: frozenset(
                {RuleStatus.PENDING_REVIEW, RuleStatus.REJECTED, RuleStatus.DEPRECATED}
            ),
            RuleStatus.PENDING_REVIEW: frozenset(
                {RuleStatus.APPROVED, RuleStatus.REJECTED, RuleStatus.DEPRECATED}
            ),
            RuleStatus.APPROVED: frozenset({RuleStatus.PUBLISHED, RuleStatus.DEPRECATED}),
            RuleStatus.PUBLISHED: frozenset({RuleStatus.DEPRECATED}),
            RuleStatus.REJECTED: frozenset(),
            RuleStatus.DEPRECATED: frozenset(),
        }
    )

    def can_transition(self, current: RuleStatus, target: RuleStatus) -> bool:
        return target in self.transitions.get(current, frozenset())

    def check_approval_invariants(self, rule: RegulatoryRuleModel, target: RuleStatus) -> None:
        """
        Raises:
            InvalidTransitionError: If `rule` may not enter `target`
        """
        if target not in (RuleStatus.APPROVED, RuleStatus.PUBLISHED):
            return
        if not rule.source_pointers:
            raise InvalidTransitionError(
                f"Rule {rule.id} has no source pointers and cannot be {target.value}"
            )
        if rule.risk_tier.requires_human_approval and is_automated_actor(rule.approved_by):
            raise InvalidTransitionError(
                f"Rule {rule.id} is {rule.risk_tier.value} and requires a human approver "
                f"(approved_by={rule.approved_by!r})"
            )

    def apply(self, rule: RegulatoryRuleModel, target: RuleStatus) -> RuleStatus:
        """
        Move `rule` to `target`.

        Returns:
            The previous status

        Raises:
            InvalidTransitionError: On an illegal transition or a violated invariant
        """
        current = RuleStatus(rule.status)
        if not self.can_transition(current, target):
            raise InvalidTransitionError(
                f"Rule {rule.id}: {current.value} -> {target.value} is not allowed"
            )
        self.check_approval_invariants(rule, target)

        rule.status = target
        now = utcnow()
        if target == RuleStatus.PENDING_REVIEW:
            rule.pending_since = now
        elif target == RuleStatus.PUBLISHED:
            rule.published_at = now
        return current


lifecycle = RuleLifecycle()
