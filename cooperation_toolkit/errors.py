"""
Error taxonomy for the Cooperation Toolkit.

Every rejection raised by a core operation derives from CooperationError and
carries a stable ``code`` plus structured ``details`` (current state, required
state/count/role) so a caller can render an actionable message.

Categories:
- ValidationError: malformed input, rejected with no side effect
- PermissionDeniedError: role or membership insufficient
- InvalidTransition: state-machine violation, reports allowed alternatives
- AlreadyIssued / AlreadyApproved / DuplicateObjection / AlreadyVoted:
  idempotency violations, never silently succeed
- BlockedByPolicy: rejected until a steward clears the blocking flag
- ExternalServiceError: transient, retried by the sync queue
- NotFoundError: missing entity
"""

from typing import Any, Dict, List, Optional


class CooperationError(Exception):
    """
    Base class for all core rejections.

    Attributes:
        code: Stable error code for programmatic handling
        message: Human-readable error description
        details: Structured context for the caller
    """

    error = "cooperation_error"
    status_code = 400

    def __init__(self, code: str, message: str, **details: Any):
        self.code = code
        self.message = message
        self.details = details
        super().__init__(f"{code}: {message}")

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for JSON serialization."""
        return {
            "error": self.error,
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(CooperationError):
    """Malformed input or a precondition on entity state not met."""

    error = "validation_error"
    status_code = 422


class PermissionDeniedError(CooperationError):
    """Caller's role or membership is insufficient."""

    error = "permission_error"
    status_code = 403


class NotFoundError(CooperationError):
    """Referenced entity does not exist in the given team."""

    error = "not_found"
    status_code = 404

    def __init__(self, entity_kind: str, entity_id: str, team_id: Optional[str] = None):
        super().__init__(
            code=f"{entity_kind.upper()}_NOT_FOUND",
            message=f"{entity_kind} '{entity_id}' not found",
            entity_kind=entity_kind,
            entity_id=entity_id,
            team_id=team_id,
        )


class InvalidTransition(CooperationError):
    """A state machine rejected the requested move."""

    error = "invalid_transition"
    status_code = 409

    def __init__(
        self,
        from_state: str,
        to_state: str,
        allowed_next_states: List[str],
        code: str = "INVALID_TRANSITION",
        message: Optional[str] = None,
    ):
        if message is None:
            allowed = (
                ", ".join(allowed_next_states)
                if allowed_next_states
                else "none (terminal state)"
            )
            message = (
                f'Cannot move from "{from_state}" to "{to_state}". '
                f"Allowed next states: {allowed}"
            )
        super().__init__(
            code=code,
            message=message,
            from_state=from_state,
            to_state=to_state,
            allowed_next_states=list(allowed_next_states),
        )
        self.from_state = from_state
        self.to_state = to_state
        self.allowed_next_states = list(allowed_next_states)


class InsufficientReviewers(CooperationError):
    """Not enough reviewers assigned to enter Review."""

    error = "insufficient_reviewers"
    status_code = 409

    def __init__(self, required: int, assigned: int, cook_value: Optional[float] = None):
        super().__init__(
            code="INSUFFICIENT_REVIEWERS",
            message=(
                f"Task requires {required} reviewer(s) for "
                f"{cook_value if cook_value is not None else 'no'} COOK, "
                f"{assigned} assigned"
            ),
            required=required,
            assigned=assigned,
            cook_value=cook_value,
        )
        self.required = required
        self.assigned = assigned


class AlreadyIssued(CooperationError):
    """COOK was already issued for this (task, contributor) pair."""

    error = "already_issued"
    status_code = 409

    def __init__(self, task_id: str, contributor_id: str):
        super().__init__(
            code="ALREADY_ISSUED",
            message=f"COOK already issued for task '{task_id}' to '{contributor_id}'",
            task_id=task_id,
            contributor_id=contributor_id,
        )


class AlreadyApproved(CooperationError):
    """Reviewer already approved, or the review is already approved."""

    error = "already_approved"
    status_code = 409


class ReviewObjected(CooperationError):
    """Approval attempted while objections are unresolved."""

    error = "review_objected"
    status_code = 409


class DuplicateObjection(CooperationError):
    """Objector already raised an objection."""

    error = "duplicate_objection"
    status_code = 409


class ReviewAlreadyApproved(CooperationError):
    """Objection attempted on an approved review."""

    error = "review_already_approved"
    status_code = 409


class AlreadyVoted(CooperationError):
    """Voter already has a vote in this voting."""

    error = "already_voted"
    status_code = 409

    def __init__(self, voting_id: str, voter_id: str):
        super().__init__(
            code="ALREADY_VOTED",
            message=f"'{voter_id}' has already voted in voting '{voting_id}'",
            voting_id=voting_id,
            voter_id=voter_id,
        )


class BlockedByPolicy(CooperationError):
    """Operation blocked by a policy flag until a steward clears it."""

    error = "blocked_by_policy"
    status_code = 423


class ExternalServiceError(CooperationError):
    """Transient failure talking to an external collaborator."""

    error = "external_service_error"
    status_code = 503


class LedgerImmutableError(CooperationError):
    """Attempted to modify an append-only ledger record."""

    error = "immutability_violation"
    status_code = 409

    def __init__(self, object_type: str, object_id: str):
        super().__init__(
            code="IMMUTABILITY_VIOLATION",
            message=f"{object_type} objects are immutable. Cannot modify {object_id}.",
            object_type=object_type,
            object_id=object_id,
        )
