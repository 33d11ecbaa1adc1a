"""
Durable event outbox.

``emit_event`` adds an event to the caller's open transaction so the event
commits or rolls back together with the core change that produced it.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import desc
from sqlalchemy.orm import Session

from ..db.models import OutboxEventModel
from ..enums import OutboxStatus
from ..primitives import generate_ulid, utc_now

logger = logging.getLogger(__name__)


def emit_event(
    db: Session,
    team_id: Optional[str],
    event_type: str,
    payload: Dict[str, Any],
) -> OutboxEventModel:
    """Stage an outbox event. The caller commits."""
    event = OutboxEventModel(
        id=generate_ulid(),
        team_id=team_id,
        type=event_type,
        payload=payload,
        status=OutboxStatus.PENDING.value,
        attempts=0,
        created_at=utc_now(),
    )
    db.add(event)
    logger.debug(f"Staged outbox event {event.type} ({event.id})")
    return event


class OutboxService:
    """Queries and maintenance over the outbox table."""

    def __init__(self, db: Session):
        self.db = db

    def list(
        self,
        status: Optional[str] = None,
        event_type: Optional[str] = None,
        team_id: Optional[str] = None,
        limit: int = 100,
    ) -> List[OutboxEventModel]:
        query = self.db.query(OutboxEventModel)
        if status:
            query = query.filter(OutboxEventModel.status == status)
        if event_type:
            query = query.filter(OutboxEventModel.type == event_type)
        if team_id:
            query = query.filter(OutboxEventModel.team_id == team_id)
        return query.order_by(desc(OutboxEventModel.created_at)).limit(limit).all()

    def pending_count(self) -> int:
        return (
            self.db.query(OutboxEventModel)
            .filter(OutboxEventModel.status == OutboxStatus.PENDING.value)
            .count()
        )

    def requeue_failed(self) -> int:
        """Reset failed events to pending so the dispatcher retries them."""
        count = (
            self.db.query(OutboxEventModel)
            .filter(OutboxEventModel.status == OutboxStatus.FAILED.value)
            .update(
                {
                    OutboxEventModel.status: OutboxStatus.PENDING.value,
                    OutboxEventModel.error: None,
                },
                synchronize_session=False,
            )
        )
        self.db.commit()
        if count:
            logger.info(f"Requeued {count} failed outbox events")
        return count
