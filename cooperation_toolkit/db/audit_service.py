"""
Audit Log Service.

Records who changed what in a team: task moves, COOK assignment, review
decisions, issuance, objections and votes. Service classes call this after
their primary write commits.
"""

from typing import Any, Dict, List, Optional

from sqlalchemy import desc
from sqlalchemy.orm import Session

from ..primitives import generate_ulid, utc_now
from .audit_models import AuditLogModel


class AuditService:
    """Service for managing audit log entries.

    Usage:
        audit = AuditService(db_session)
        audit.log_create("Task", task.id, task.to_dict(), actor_id="user-1", team_id=team.id)
    """

    def __init__(self, db: Session):
        self.db = db

    def _record(
        self,
        action: str,
        entity_kind: str,
        entity_id: str,
        before: Optional[Dict[str, Any]],
        after: Optional[Dict[str, Any]],
        actor_kind: str,
        actor_id: str,
        team_id: Optional[str],
        note: Optional[str],
        trace_id: Optional[str],
    ) -> AuditLogModel:
        entry = AuditLogModel(
            id=generate_ulid(),
            ts=utc_now(),
            team_id=team_id,
            actor_kind=actor_kind,
            actor_id=actor_id,
            action=action,
            entity_kind=entity_kind,
            entity_id=entity_id,
            before=before,
            after=after,
            note=note,
            trace_id=trace_id,
        )

        self.db.add(entry)
        self.db.commit()
        self.db.refresh(entry)
        return entry

    def log_create(
        self,
        entity_kind: str,
        entity_id: str,
        after: Dict[str, Any],
        actor_kind: str = "human",
        actor_id: str = "unknown",
        team_id: Optional[str] = None,
        note: Optional[str] = None,
        trace_id: Optional[str] = None,
    ) -> AuditLogModel:
        """Log the creation of an entity.

        Args:
            entity_kind: Type of entity (e.g., "Task", "LedgerEntry", "Voting")
            entity_id: ID of the entity
            after: State of the entity after creation
            actor_kind: Type of actor ("human", "system")
            actor_id: ID of the actor
            team_id: Team the entity belongs to
            note: Optional human-readable note
            trace_id: Optional trace ID for correlation

        Returns:
            The created AuditLogModel
        """
        return self._record(
            "created", entity_kind, entity_id, None, after,
            actor_kind, actor_id, team_id, note, trace_id,
        )

    def log_update(
        self,
        entity_kind: str,
        entity_id: str,
        before: Dict[str, Any],
        after: Dict[str, Any],
        actor_kind: str = "human",
        actor_id: str = "unknown",
        team_id: Optional[str] = None,
        note: Optional[str] = None,
        trace_id: Optional[str] = None,
    ) -> AuditLogModel:
        """Log an update to an entity with before/after snapshots."""
        return self._record(
            "updated", entity_kind, entity_id, before, after,
            actor_kind, actor_id, team_id, note, trace_id,
        )

    def log_status_change(
        self,
        entity_kind: str,
        entity_id: str,
        old_status: str,
        new_status: str,
        actor_kind: str = "human",
        actor_id: str = "unknown",
        team_id: Optional[str] = None,
        note: Optional[str] = None,
        trace_id: Optional[str] = None,
    ) -> AuditLogModel:
        """Log a status change on an entity.

        Task state moves, COOK state advances, review decisions and proposal
        outcomes all land here.
        """
        return self._record(
            "status_changed",
            entity_kind,
            entity_id,
            {"status": old_status},
            {"status": new_status},
            actor_kind,
            actor_id,
            team_id,
            note or f"Status changed: {old_status} -> {new_status}",
            trace_id,
        )

    def log_link(
        self,
        entity_kind: str,
        entity_id: str,
        linked_kind: str,
        linked_id: str,
        actor_kind: str = "human",
        actor_id: str = "unknown",
        team_id: Optional[str] = None,
        note: Optional[str] = None,
    ) -> AuditLogModel:
        """Log linking an entity to another (e.g. a task to an external card)."""
        return self._record(
            "linked",
            entity_kind,
            entity_id,
            None,
            {"linked_kind": linked_kind, "linked_id": linked_id},
            actor_kind,
            actor_id,
            team_id,
            note or f"Linked to {linked_kind}:{linked_id}",
            None,
        )

    # Query methods

    def query_by_entity(
        self,
        entity_kind: str,
        entity_id: str,
        limit: int = 100,
        offset: int = 0,
    ) -> List[AuditLogModel]:
        """Get audit history for a specific entity, newest first."""
        return (
            self.db.query(AuditLogModel)
            .filter(
                AuditLogModel.entity_kind == entity_kind,
                AuditLogModel.entity_id == entity_id,
            )
            .order_by(desc(AuditLogModel.ts))
            .offset(offset)
            .limit(limit)
            .all()
        )

    def query_by_team(
        self,
        team_id: str,
        entity_kind: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[AuditLogModel]:
        """Get audit entries for a team, newest first.

        Args:
            team_id: Team to query
            entity_kind: Optional filter by entity type
            limit: Maximum number of entries to return
            offset: Number of entries to skip
        """
        query = self.db.query(AuditLogModel).filter(AuditLogModel.team_id == team_id)

        if entity_kind:
            query = query.filter(AuditLogModel.entity_kind == entity_kind)

        return (
            query.order_by(desc(AuditLogModel.ts))
            .offset(offset)
            .limit(limit)
            .all()
        )

    def query_by_actor(
        self,
        actor_id: str,
        limit: int = 100,
    ) -> List[AuditLogModel]:
        """Get all audit entries by a specific actor, newest first."""
        return (
            self.db.query(AuditLogModel)
            .filter(AuditLogModel.actor_id == actor_id)
            .order_by(desc(AuditLogModel.ts))
            .limit(limit)
            .all()
        )
