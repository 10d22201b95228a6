"""
Fact Pipeline Errors
====================

Exception hierarchy for the fact pipeline.

Validation, DSL and gate failures are reported as results rather than
raised across stage boundaries; these exceptions cover programming errors
(illegal transitions), graph violations and transient collaborator failures.

Version: 0.1.0
"""


class PipelineError(Exception):
    """Base class for fact pipeline errors."""

    code: str = "PIPELINE_ERROR"

    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class DSLValidationError(PipelineError):
    """An appliesWhen predicate failed parse-time validation."""

    code = "DSL_INVALID"


class InvalidTransitionError(PipelineError):
    """A rule status transition is not allowed by the lifecycle."""

    code = "INVALID_TRANSITION"


class CycleDetectedError(PipelineError):
    """Inserting an edge would make the supersession graph cyclic."""

    code = "CYCLE_DETECTED"

    def __init__(self, source_id: str, target_id: str) -> None:
        super().__init__(
            f"Edge {source_id} -> {target_id} would create a cycle "
            f"({source_id} is reachable from {target_id})"
        )
        self.source_id = source_id
        self.target_id = target_id


class ApprovalError(PipelineError):
    """An approval or rejection request violates review invariants."""

    code = "APPROVAL_DENIED"


class TransientCollaboratorError(PipelineError):
    """Retryable failure of an external collaborator or store call."""

    code = "TRANSIENT_FAILURE"
