"""
SQLAlchemy models for the Cooperation Toolkit.

Ledger entries are append-only: the mapper listeners at the bottom of this
module reject any ORM update or delete of a LedgerEntryModel.
"""

from typing import Any, Dict

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    event,
)
from sqlalchemy.sql import func

from ..errors import LedgerImmutableError
from ..primitives import isoformat_utc
from .base import Base

task_state_enum = Enum(
    "Backlog", "Ready", "In Progress", "Review", "Done", name="task_state"
)
cook_state_enum = Enum("Draft", "Provisional", "Locked", "Final", name="cook_state")
attribution_enum = Enum("self", "spend", name="cook_attribution")
role_enum = Enum("Contributor", "Reviewer", "Steward", "Admin", name="team_role")


# =============================================================================
# Teams
# =============================================================================


class TeamModel(Base):
    """A team and its COOK/governance configuration."""

    __tablename__ = "teams"

    id = Column(String(36), primary_key=True)
    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)

    cook_cap = Column(Float, nullable=True)
    cook_decay_rate = Column(Float, nullable=True)

    default_objection_window_days = Column(Integer, nullable=False, default=7)
    default_objection_threshold = Column(Float, nullable=False, default=0.0)
    default_voting_period_days = Column(Integer, nullable=False, default=7)
    constitutional_voting_period_days = Column(Integer, nullable=False, default=14)
    constitutional_approval_threshold = Column(Float, nullable=False, default=50.0)
    committee_eligibility_window_months = Column(Integer, nullable=False, default=6)
    committee_minimum_active_cook = Column(Float, nullable=False, default=0.0)
    committee_cooling_off_period_days = Column(Integer, nullable=False, default=0)
    equity_model = Column(
        Enum("slicing", "proportional", name="equity_model"),
        nullable=False,
        default="slicing",
    )

    created_by = Column(String(128), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, default=func.now())

    def to_dict(self) -> Dict[str, Any]:
        """Convert model to dictionary."""
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "cook_cap": self.cook_cap,
            "cook_decay_rate": self.cook_decay_rate,
            "default_objection_window_days": self.default_objection_window_days,
            "default_objection_threshold": self.default_objection_threshold,
            "default_voting_period_days": self.default_voting_period_days,
            "constitutional_voting_period_days": self.constitutional_voting_period_days,
            "constitutional_approval_threshold": self.constitutional_approval_threshold,
            "committee_eligibility_window_months": self.committee_eligibility_window_months,
            "committee_minimum_active_cook": self.committee_minimum_active_cook,
            "committee_cooling_off_period_days": self.committee_cooling_off_period_days,
            "equity_model": self.equity_model,
            "created_by": self.created_by,
            "created_at": isoformat_utc(self.created_at),
            "updated_at": isoformat_utc(self.updated_at),
        }


class MembershipModel(Base):
    """A user's role within a team."""

    __tablename__ = "team_memberships"

    id = Column(String(36), primary_key=True)
    team_id = Column(String(36), ForeignKey("teams.id"), nullable=False, index=True)
    user_id = Column(String(128), nullable=False, index=True)
    role = Column(role_enum, nullable=False, default="Contributor")
    joined_at = Column(DateTime(timezone=True), nullable=False, default=func.now())

    __table_args__ = (
        UniqueConstraint("team_id", "user_id", name="uq_membership_team_user"),
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "team_id": self.team_id,
            "user_id": self.user_id,
            "role": self.role,
            "joined_at": isoformat_utc(self.joined_at),
        }


# =============================================================================
# Tasks & Reviews
# =============================================================================


class TaskModel(Base):
    """A unit of work carrying a COOK value through the lifecycle."""

    __tablename__ = "tasks"

    id = Column(String(36), primary_key=True)
    team_id = Column(String(36), ForeignKey("teams.id"), nullable=False, index=True)
    title = Column(String(500), nullable=False)
    description = Column(Text, nullable=True)

    state = Column(task_state_enum, nullable=False, default="Backlog", index=True)
    contributors = Column(JSON, nullable=False, default=list)
    reviewers = Column(JSON, nullable=False, default=list)

    cook_value = Column(Float, nullable=True)
    cook_state = Column(cook_state_enum, nullable=False, default="Draft")
    cook_attribution = Column(attribution_enum, nullable=False, default="self")

    archived = Column(Boolean, nullable=False, default=False, index=True)
    created_by = Column(String(128), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, default=func.now())

    # External board sync metadata
    external_project_id = Column(String(128), nullable=True)
    external_item_id = Column(String(128), nullable=True, index=True)
    external_column_id = Column(String(128), nullable=True)
    external_synced_at = Column(DateTime(timezone=True), nullable=True)
    # {detected_at, from_state, attempted_state, external_column_id, reason, blocked}
    unauthorized_movement = Column(JSON, nullable=True)

    __table_args__ = (
        Index("ix_tasks_team_state", "team_id", "state"),
    )

    @property
    def is_blocked(self) -> bool:
        """True when an unauthorized external move is still blocking issuance."""
        return bool(self.unauthorized_movement and self.unauthorized_movement.get("blocked"))

    def to_dict(self) -> Dict[str, Any]:
        """Convert model to dictionary."""
        return {
            "id": self.id,
            "team_id": self.team_id,
            "title": self.title,
            "description": self.description,
            "state": self.state,
            "contributors": list(self.contributors or []),
            "reviewers": list(self.reviewers or []),
            "cook_value": self.cook_value,
            "cook_state": self.cook_state,
            "cook_attribution": self.cook_attribution,
            "archived": self.archived,
            "created_by": self.created_by,
            "created_at": isoformat_utc(self.created_at),
            "updated_at": isoformat_utc(self.updated_at),
            "external_project_id": self.external_project_id,
            "external_item_id": self.external_item_id,
            "external_column_id": self.external_column_id,
            "external_synced_at": isoformat_utc(self.external_synced_at),
            "unauthorized_movement": self.unauthorized_movement,
        }


class ReviewModel(Base):
    """Peer review gate for a task. At most one per task."""

    __tablename__ = "reviews"

    id = Column(String(36), primary_key=True)
    team_id = Column(String(36), ForeignKey("teams.id"), nullable=False, index=True)
    task_id = Column(String(36), ForeignKey("tasks.id"), nullable=False, unique=True)

    status = Column(
        Enum("pending", "approved", "objected", "escalated", name="review_status"),
        nullable=False,
        default="pending",
        index=True,
    )
    approvals = Column(JSON, nullable=False, default=list)
    # [{reviewer_id, reason, timestamp}]
    objections = Column(JSON, nullable=False, default=list)
    # [{author_id, content, timestamp}]
    comments = Column(JSON, nullable=False, default=list)
    required_reviewers = Column(Integer, nullable=False, default=1)

    objection_window_opened_at = Column(DateTime(timezone=True), nullable=True)
    objection_window_closes_at = Column(DateTime(timezone=True), nullable=True)

    escalated = Column(Boolean, nullable=False, default=False)
    escalated_by = Column(String(128), nullable=True)
    escalated_to = Column(String(128), nullable=True)
    escalated_at = Column(DateTime(timezone=True), nullable=True)
    escalation_reason = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, default=func.now())

    def to_dict(self) -> Dict[str, Any]:
        """Convert model to dictionary."""
        return {
            "id": self.id,
            "team_id": self.team_id,
            "task_id": self.task_id,
            "status": self.status,
            "approvals": list(self.approvals or []),
            "objections": list(self.objections or []),
            "comments": list(self.comments or []),
            "required_reviewers": self.required_reviewers,
            "objection_window_opened_at": isoformat_utc(self.objection_window_opened_at),
            "objection_window_closes_at": isoformat_utc(self.objection_window_closes_at),
            "escalated": self.escalated,
            "escalated_by": self.escalated_by,
            "escalated_to": self.escalated_to,
            "escalated_at": isoformat_utc(self.escalated_at),
            "escalation_reason": self.escalation_reason,
            "created_at": isoformat_utc(self.created_at),
            "updated_at": isoformat_utc(self.updated_at),
        }


# =============================================================================
# Ledger & Attestations
# =============================================================================


class LedgerEntryModel(Base):
    """Immutable COOK issuance record.

    The (task_id, contributor_id) unique constraint is the idempotency
    contract: a second issuance for the same pair fails at insert time.
    """

    __tablename__ = "ledger_entries"

    id = Column(String(36), primary_key=True)
    team_id = Column(String(36), ForeignKey("teams.id"), nullable=False, index=True)
    task_id = Column(String(36), ForeignKey("tasks.id"), nullable=False, index=True)
    contributor_id = Column(String(128), nullable=False, index=True)
    cook_value = Column(Float, nullable=False)
    attribution = Column(attribution_enum, nullable=False)
    issued_at = Column(DateTime(timezone=True), nullable=False, default=func.now())

    __table_args__ = (
        UniqueConstraint("task_id", "contributor_id", name="uq_ledger_task_contributor"),
        Index("ix_ledger_team_contributor", "team_id", "contributor_id"),
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "team_id": self.team_id,
            "task_id": self.task_id,
            "contributor_id": self.contributor_id,
            "cook_value": self.cook_value,
            "attribution": self.attribution,
            "issued_at": isoformat_utc(self.issued_at),
        }


class AttestationModel(Base):
    """Portable issuance record, hash-chained per contributor."""

    __tablename__ = "attestations"

    id = Column(String(36), primary_key=True)
    ledger_entry_id = Column(
        String(36), ForeignKey("ledger_entries.id"), nullable=False, unique=True
    )
    team_id = Column(String(36), nullable=False, index=True)
    team_name = Column(String(200), nullable=True)
    task_id = Column(String(36), nullable=False)
    task_title = Column(String(500), nullable=True)
    contributor_id = Column(String(128), nullable=False, index=True)
    cook_value = Column(Float, nullable=False)
    attribution = Column(attribution_enum, nullable=False)
    reviewers = Column(JSON, nullable=False, default=list)
    issued_at = Column(DateTime(timezone=True), nullable=False)

    # NULL until computed; chain_seq is the position in the contributor's chain
    merkle_root = Column(String(64), nullable=True)
    parent_hash = Column(String(64), nullable=True)
    chain_seq = Column(Integer, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=func.now())

    __table_args__ = (
        Index("ix_attestations_contributor_issued", "contributor_id", "issued_at"),
        UniqueConstraint("contributor_id", "chain_seq", name="uq_attestation_chain_seq"),
    )

    def to_dict(self) -> Dict[str, Any]:
        """Convert model to dictionary."""
        return {
            "id": self.id,
            "ledger_entry_id": self.ledger_entry_id,
            "team_id": self.team_id,
            "team_name": self.team_name,
            "task_id": self.task_id,
            "task_title": self.task_title,
            "contributor_id": self.contributor_id,
            "cook_value": self.cook_value,
            "attribution": self.attribution,
            "reviewers": list(self.reviewers or []),
            "issued_at": isoformat_utc(self.issued_at),
            "merkle_root": self.merkle_root,
            "parent_hash": self.parent_hash,
            "chain_seq": self.chain_seq,
            "created_at": isoformat_utc(self.created_at),
        }


# =============================================================================
# Governance
# =============================================================================


class GovernanceWeightModel(Base):
    """Cached governance weight per (team, contributor)."""

    __tablename__ = "governance_weights"

    id = Column(String(36), primary_key=True)
    team_id = Column(String(36), ForeignKey("teams.id"), nullable=False, index=True)
    contributor_id = Column(String(128), nullable=False)
    raw_cook = Column(Float, nullable=False, default=0.0)
    weight = Column(Float, nullable=False, default=0.0)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=func.now())

    __table_args__ = (
        UniqueConstraint("team_id", "contributor_id", name="uq_weight_team_contributor"),
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "team_id": self.team_id,
            "contributor_id": self.contributor_id,
            "raw_cook": self.raw_cook,
            "weight": self.weight,
            "updated_at": isoformat_utc(self.updated_at),
        }


class GovernanceProposalModel(Base):
    """Governance proposal with a COOK-weighted objection window."""

    __tablename__ = "governance_proposals"

    id = Column(String(36), primary_key=True)
    team_id = Column(String(36), ForeignKey("teams.id"), nullable=False, index=True)
    type = Column(
        Enum(
            "policy_change",
            "constitutional_challenge",
            "binding_decision",
            "committee_selection",
            "other",
            name="proposal_type",
        ),
        nullable=False,
    )
    title = Column(String(500), nullable=False)
    description = Column(Text, nullable=True)
    proposed_by = Column(String(128), nullable=False)

    status = Column(
        Enum(
            "draft",
            "objection_window_open",
            "objection_window_closed",
            "voting_triggered",
            "approved",
            "rejected",
            "withdrawn",
            name="proposal_status",
        ),
        nullable=False,
        default="draft",
        index=True,
    )

    objection_window_days = Column(Integer, nullable=True)
    objection_window_closes_at = Column(DateTime(timezone=True), nullable=True)
    objection_threshold = Column(Float, nullable=False, default=0.0)
    objection_weight = Column(Float, nullable=False, default=0.0)
    objection_count = Column(Integer, nullable=False, default=0)

    voting_id = Column(String(36), nullable=True)
    related_review_id = Column(String(36), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, default=func.now())

    def to_dict(self) -> Dict[str, Any]:
        """Convert model to dictionary."""
        return {
            "id": self.id,
            "team_id": self.team_id,
            "type": self.type,
            "title": self.title,
            "description": self.description,
            "proposed_by": self.proposed_by,
            "status": self.status,
            "objection_window_days": self.objection_window_days,
            "objection_window_closes_at": isoformat_utc(self.objection_window_closes_at),
            "objection_threshold": self.objection_threshold,
            "objection_weight": self.objection_weight,
            "objection_count": self.objection_count,
            "voting_id": self.voting_id,
            "related_review_id": self.related_review_id,
            "created_at": isoformat_utc(self.created_at),
            "updated_at": isoformat_utc(self.updated_at),
        }


class ProposalObjectionModel(Base):
    """One objection per (proposal, objector), weight-stamped at creation."""

    __tablename__ = "proposal_objections"

    id = Column(String(36), primary_key=True)
    proposal_id = Column(
        String(36), ForeignKey("governance_proposals.id"), nullable=False, index=True
    )
    objector_id = Column(String(128), nullable=False)
    reason = Column(Text, nullable=True)
    weight = Column(Float, nullable=False, default=0.0)
    created_at = Column(DateTime(timezone=True), nullable=False, default=func.now())

    __table_args__ = (
        UniqueConstraint("proposal_id", "objector_id", name="uq_objection_proposal_objector"),
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "proposal_id": self.proposal_id,
            "objector_id": self.objector_id,
            "reason": self.reason,
            "weight": self.weight,
            "created_at": isoformat_utc(self.created_at),
        }


class VotingModel(Base):
    """A COOK-weighted vote over a fixed option set."""

    __tablename__ = "votings"

    id = Column(String(36), primary_key=True)
    team_id = Column(String(36), ForeignKey("teams.id"), nullable=False, index=True)
    proposal_id = Column(String(36), nullable=True, index=True)
    title = Column(String(500), nullable=False)
    description = Column(Text, nullable=True)
    options = Column(JSON, nullable=False, default=list)

    status = Column(
        Enum("open", "closed", "completed", name="voting_status"),
        nullable=False,
        default="open",
        index=True,
    )
    voting_period_days = Column(Integer, nullable=False, default=7)
    closes_at = Column(DateTime(timezone=True), nullable=False)

    # {option: {vote_count, weighted_vote_count, percentage}}
    results = Column(JSON, nullable=True)
    total_weight = Column(Float, nullable=True)
    winning_option = Column(String(200), nullable=True)

    created_by = Column(String(128), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=func.now())
    closed_at = Column(DateTime(timezone=True), nullable=True)

    def to_dict(self) -> Dict[str, Any]:
        """Convert model to dictionary."""
        return {
            "id": self.id,
            "team_id": self.team_id,
            "proposal_id": self.proposal_id,
            "title": self.title,
            "description": self.description,
            "options": list(self.options or []),
            "status": self.status,
            "voting_period_days": self.voting_period_days,
            "closes_at": isoformat_utc(self.closes_at),
            "results": self.results,
            "total_weight": self.total_weight,
            "winning_option": self.winning_option,
            "created_by": self.created_by,
            "created_at": isoformat_utc(self.created_at),
            "closed_at": isoformat_utc(self.closed_at),
        }


class VoteModel(Base):
    """A single cast vote. Weight is the voter's weight at cast time."""

    __tablename__ = "votes"

    id = Column(String(36), primary_key=True)
    voting_id = Column(String(36), ForeignKey("votings.id"), nullable=False, index=True)
    voter_id = Column(String(128), nullable=False)
    option = Column(String(200), nullable=False)
    weight = Column(Float, nullable=False, default=0.0)
    cast_at = Column(DateTime(timezone=True), nullable=False, default=func.now())

    __table_args__ = (
        UniqueConstraint("voting_id", "voter_id", name="uq_vote_voting_voter"),
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "voting_id": self.voting_id,
            "voter_id": self.voter_id,
            "option": self.option,
            "weight": self.weight,
            "cast_at": isoformat_utc(self.cast_at),
        }


class _ChangeRecordMixin:
    """Columns shared by versioned policy and constitutional change records."""

    id = Column(String(36), primary_key=True)
    team_id = Column(String(36), nullable=False, index=True)
    proposal_id = Column(String(36), nullable=False)
    voting_id = Column(String(36), nullable=True)
    title = Column(String(500), nullable=False)
    description = Column(Text, nullable=True)
    version = Column(Integer, nullable=False)
    previous_version = Column(Integer, nullable=True)
    approval_percentage = Column(Float, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=func.now())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "team_id": self.team_id,
            "proposal_id": self.proposal_id,
            "voting_id": self.voting_id,
            "title": self.title,
            "description": self.description,
            "version": self.version,
            "previous_version": self.previous_version,
            "approval_percentage": self.approval_percentage,
            "created_at": isoformat_utc(self.created_at),
        }


class PolicyChangeModel(_ChangeRecordMixin, Base):
    """An adopted policy change."""

    __tablename__ = "policy_changes"
    __table_args__ = (
        UniqueConstraint("team_id", "version", name="uq_policy_change_version"),
    )


class ConstitutionalChangeModel(_ChangeRecordMixin, Base):
    """An adopted constitutional change."""

    __tablename__ = "constitutional_changes"
    __table_args__ = (
        UniqueConstraint("team_id", "version", name="uq_constitutional_change_version"),
    )


# =============================================================================
# Committees
# =============================================================================


class CommitteeModel(Base):
    """A committee seated by COOK-weighted lottery, with its audit trail."""

    __tablename__ = "committees"

    id = Column(String(36), primary_key=True)
    team_id = Column(String(36), ForeignKey("teams.id"), nullable=False, index=True)
    committee_name = Column(String(200), nullable=False)
    number_of_seats = Column(Integer, nullable=False)

    selected_members = Column(JSON, nullable=False, default=list)
    # eligibility results at selection time, in lottery order
    eligible_members = Column(JSON, nullable=False, default=list)
    lottery_seed = Column(String(200), nullable=False)
    total_weight = Column(Float, nullable=False)
    selection_details = Column(JSON, nullable=False, default=list)

    created_by = Column(String(128), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=func.now())

    def to_dict(self) -> Dict[str, Any]:
        """Convert model to dictionary."""
        return {
            "id": self.id,
            "team_id": self.team_id,
            "committee_name": self.committee_name,
            "number_of_seats": self.number_of_seats,
            "selected_members": list(self.selected_members or []),
            "eligible_members": list(self.eligible_members or []),
            "lottery_seed": self.lottery_seed,
            "total_weight": self.total_weight,
            "selection_details": list(self.selection_details or []),
            "created_by": self.created_by,
            "created_at": isoformat_utc(self.created_at),
        }


class ServiceTermModel(Base):
    """A member's term of service on a committee."""

    __tablename__ = "service_terms"

    id = Column(String(36), primary_key=True)
    team_id = Column(String(36), ForeignKey("teams.id"), nullable=False, index=True)
    committee_id = Column(String(36), ForeignKey("committees.id"), nullable=False, index=True)
    committee_name = Column(String(200), nullable=False)
    contributor_id = Column(String(128), nullable=False, index=True)

    start_date = Column(DateTime(timezone=True), nullable=False)
    end_date = Column(DateTime(timezone=True), nullable=True)
    duration_days = Column(Integer, nullable=True)
    status = Column(
        Enum("active", "completed", "terminated", name="service_term_status"),
        nullable=False,
        default="active",
        index=True,
    )

    created_at = Column(DateTime(timezone=True), nullable=False, default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, default=func.now())

    def to_dict(self) -> Dict[str, Any]:
        """Convert model to dictionary."""
        return {
            "id": self.id,
            "team_id": self.team_id,
            "committee_id": self.committee_id,
            "committee_name": self.committee_name,
            "contributor_id": self.contributor_id,
            "start_date": isoformat_utc(self.start_date),
            "end_date": isoformat_utc(self.end_date),
            "duration_days": self.duration_days,
            "status": self.status,
            "created_at": isoformat_utc(self.created_at),
            "updated_at": isoformat_utc(self.updated_at),
        }


# =============================================================================
# Outbox & Sync Queue
# =============================================================================


class OutboxEventModel(Base):
    """Durable event written in the same transaction as the core change."""

    __tablename__ = "outbox_events"

    id = Column(String(36), primary_key=True)
    team_id = Column(String(36), nullable=True, index=True)
    type = Column(String(100), nullable=False, index=True)
    payload = Column(JSON, nullable=False, default=dict)

    status = Column(
        Enum("pending", "processing", "completed", "failed", name="outbox_status"),
        nullable=False,
        default="pending",
        index=True,
    )
    attempts = Column(Integer, nullable=False, default=0)
    error = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=func.now())
    processed_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_outbox_status_created", "status", "created_at"),
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "team_id": self.team_id,
            "type": self.type,
            "payload": self.payload,
            "status": self.status,
            "attempts": self.attempts,
            "error": self.error,
            "created_at": isoformat_utc(self.created_at),
            "processed_at": isoformat_utc(self.processed_at),
        }


class SyncQueueItemModel(Base):
    """A board operation waiting for retry with exponential backoff."""

    __tablename__ = "sync_queue"

    id = Column(String(36), primary_key=True)
    team_id = Column(String(36), nullable=False, index=True)
    task_id = Column(String(36), nullable=False, index=True)
    operation = Column(String(50), nullable=False)
    data = Column(JSON, nullable=False, default=dict)
    retry_count = Column(Integer, nullable=False, default=0)
    max_retries = Column(Integer, nullable=False, default=10)
    next_retry_at = Column(DateTime(timezone=True), nullable=False, index=True)
    last_error = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, default=func.now())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "team_id": self.team_id,
            "task_id": self.task_id,
            "operation": self.operation,
            "data": self.data,
            "retry_count": self.retry_count,
            "max_retries": self.max_retries,
            "next_retry_at": isoformat_utc(self.next_retry_at),
            "last_error": self.last_error,
            "created_at": isoformat_utc(self.created_at),
            "updated_at": isoformat_utc(self.updated_at),
        }


@event.listens_for(LedgerEntryModel, "before_update")
def _reject_ledger_update(mapper, connection, target) -> None:
    raise LedgerImmutableError("LedgerEntry", target.id)


@event.listens_for(LedgerEntryModel, "before_delete")
def _reject_ledger_delete(mapper, connection, target) -> None:
    raise LedgerImmutableError("LedgerEntry", target.id)
