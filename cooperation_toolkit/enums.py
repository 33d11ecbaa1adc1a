"""
Canonical enums for the Cooperation Toolkit.

Persisted columns store the ``.value`` of these enums.
"""

from enum import Enum


class TaskState(str, Enum):
    """Task lifecycle states."""

    BACKLOG = "Backlog"
    READY = "Ready"
    IN_PROGRESS = "In Progress"
    REVIEW = "Review"
    DONE = "Done"


class CookState(str, Enum):
    """COOK lifecycle, advances monotonically."""

    DRAFT = "Draft"
    PROVISIONAL = "Provisional"
    LOCKED = "Locked"
    FINAL = "Final"


class Attribution(str, Enum):
    """Whether COOK was earned (self) or allocated (spend)."""

    SELF = "self"
    SPEND = "spend"


class Role(str, Enum):
    """Team roles, lowest to highest."""

    CONTRIBUTOR = "Contributor"
    REVIEWER = "Reviewer"
    STEWARD = "Steward"
    ADMIN = "Admin"


class ReviewStatus(str, Enum):
    """Review gate status."""

    PENDING = "pending"
    APPROVED = "approved"
    OBJECTED = "objected"
    ESCALATED = "escalated"


class ProposalType(str, Enum):
    """Governance proposal types."""

    POLICY_CHANGE = "policy_change"
    CONSTITUTIONAL_CHALLENGE = "constitutional_challenge"
    BINDING_DECISION = "binding_decision"
    COMMITTEE_SELECTION = "committee_selection"
    OTHER = "other"


class ProposalStatus(str, Enum):
    """Governance proposal status."""

    DRAFT = "draft"
    OBJECTION_WINDOW_OPEN = "objection_window_open"
    OBJECTION_WINDOW_CLOSED = "objection_window_closed"
    VOTING_TRIGGERED = "voting_triggered"
    APPROVED = "approved"
    REJECTED = "rejected"
    WITHDRAWN = "withdrawn"


class VotingStatus(str, Enum):
    """Voting status."""

    OPEN = "open"
    CLOSED = "closed"
    COMPLETED = "completed"


class EquityModel(str, Enum):
    """Equity calculation models."""

    SLICING = "slicing"
    PROPORTIONAL = "proportional"


class OutboxStatus(str, Enum):
    """Outbox event processing status."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class SyncOperation(str, Enum):
    """Operations that can be queued for the external board."""

    SYNC_STATE = "sync_state"


class ServiceTermStatus(str, Enum):
    """Committee service term status."""

    ACTIVE = "active"
    COMPLETED = "completed"
    TERMINATED = "terminated"
