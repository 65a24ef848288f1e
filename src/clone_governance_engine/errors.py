"""Error taxonomy for the clone governance engine.

Only policy-authoring operations (and purge input validation) surface these
to callers. Evaluation and recording isolate their own failures:
- EvaluationSkip is caught per policy by the evaluator.
- Recording failures never leave AuditRecorder; they become a
  RecordingResult with recorded=False.
"""


class GovernanceError(Exception):
    """Base class for all engine errors."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(GovernanceError):
    """Malformed policy definition, unknown kind/severity/action, or bad input.

    Args:
        message: Human-readable explanation.
        field: Name of the offending field, when one applies.
    """

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field


class NotFoundError(GovernanceError):
    """A policy, violation, or audit record id is absent."""

    def __init__(self, resource: str, resource_id: str) -> None:
        super().__init__(f"{resource} not found")
        self.resource = resource
        self.resource_id = resource_id


class EvaluationSkip(GovernanceError):
    """A single policy could not be evaluated and must be skipped."""

    def __init__(self, policy_name: str, reason: str) -> None:
        super().__init__(f"Policy '{policy_name}' skipped: {reason}")
        self.policy_name = policy_name
        self.reason = reason
