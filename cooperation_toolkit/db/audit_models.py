"""
Audit Log Database Models.

Every governance-relevant state change (task moves, COOK assignment, review
decisions, ledger issuance, objections, votes) is recorded with a before/after
snapshot, the acting user and the team it happened in.
"""

from typing import Any, Dict

from sqlalchemy import JSON, Column, DateTime, Enum, Index, String, Text
from sqlalchemy.sql import func

from ..primitives import isoformat_utc
from .base import Base

audit_actor_kind_enum = Enum(
    "human",
    "system",
    name="audit_actor_kind",
)

audit_action_enum = Enum(
    "created",
    "updated",
    "status_changed",
    "deleted",
    "linked",
    "unlinked",
    name="audit_action",
)


class AuditLogModel(Base):
    """Audit log entry.

    Entries are written by AuditService after the primary change commits, so a
    failed write never leaves an audit row behind.
    """

    __tablename__ = "audit_log"

    id = Column(String(36), primary_key=True)
    ts = Column(DateTime(timezone=True), nullable=False, default=func.now(), index=True)

    team_id = Column(String(36), nullable=True, index=True)

    actor_kind = Column(audit_actor_kind_enum, nullable=False)
    actor_id = Column(String(128), nullable=False, index=True)

    action = Column(audit_action_enum, nullable=False, index=True)

    # "Task", "Review", "LedgerEntry", "GovernanceProposal", ...
    entity_kind = Column(String(50), nullable=False, index=True)
    entity_id = Column(String(128), nullable=False, index=True)

    before = Column(JSON, nullable=True)
    after = Column(JSON, nullable=True)
    note = Column(Text, nullable=True)

    trace_id = Column(String(36), nullable=True, index=True)

    __table_args__ = (
        Index("ix_audit_log_entity", "entity_kind", "entity_id"),
        Index("ix_audit_log_team_ts", "team_id", "ts"),
        Index("ix_audit_log_entity_ts", "entity_kind", "entity_id", "ts"),
    )

    def to_dict(self) -> Dict[str, Any]:
        """Convert model to dictionary."""
        return {
            "id": self.id,
            "ts": isoformat_utc(self.ts),
            "team_id": self.team_id,
            "actor_kind": self.actor_kind,
            "actor_id": self.actor_id,
            "action": self.action,
            "entity_kind": self.entity_kind,
            "entity_id": self.entity_id,
            "before": self.before,
            "after": self.after,
            "note": self.note,
            "trace_id": self.trace_id,
        }
