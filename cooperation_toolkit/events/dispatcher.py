"""
Outbox dispatcher.

Pending events are claimed one at a time with a conditional UPDATE so that
concurrent dispatchers never run the same event twice. Handler failures mark
the event failed; they are never raised to the caller.
"""

from typing import Dict, List, Optional

import structlog
from sqlalchemy import update
from sqlalchemy.orm import Session

from ..config import get_settings
from ..db.models import OutboxEventModel
from ..enums import OutboxStatus
from ..primitives import utc_now
from ..sync.board import get_board
from ..sync.circuit_breaker import get_circuit_breaker
from .handlers import HandlerContext, HandlerRegistry, registry
from .notifications import get_notification_sink

logger = structlog.get_logger()


def build_context(db: Session) -> HandlerContext:
    """Handler context from settings. No board is used without a token."""
    settings = get_settings()
    board = get_board() if settings.github_api_token else None
    return HandlerContext(
        db=db,
        sink=get_notification_sink(),
        board=board,
        breaker=get_circuit_breaker(),
    )


class OutboxDispatcher:
    """Claims and dispatches outbox events.

    Use as ``async with OutboxDispatcher(db) as dispatcher``; a context built
    by the dispatcher is closed on exit, one passed in is left to its owner.
    """

    def __init__(
        self,
        db: Session,
        context: Optional[HandlerContext] = None,
        handlers: Optional[HandlerRegistry] = None,
    ):
        self.db = db
        self._owns_context = context is None
        self.context = context or build_context(db)
        self.handlers = handlers or registry

    async def __aenter__(self) -> "OutboxDispatcher":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def close(self) -> None:
        if self._owns_context:
            await self.context.close()

    def _pending(self, limit: int) -> List[OutboxEventModel]:
        return (
            self.db.query(OutboxEventModel)
            .filter(OutboxEventModel.status == OutboxStatus.PENDING.value)
            .order_by(OutboxEventModel.created_at, OutboxEventModel.id)
            .limit(limit)
            .all()
        )

    def _claim(self, event: OutboxEventModel) -> bool:
        result = self.db.execute(
            update(OutboxEventModel)
            .where(
                OutboxEventModel.id == event.id,
                OutboxEventModel.status == OutboxStatus.PENDING.value,
            )
            .values(
                status=OutboxStatus.PROCESSING.value,
                attempts=OutboxEventModel.attempts + 1,
            )
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        if result.rowcount == 0:
            logger.debug("outbox_event_claimed_elsewhere", event_id=event.id)
            return False
        self.db.refresh(event)
        return True

    async def dispatch(self, event: OutboxEventModel) -> Optional[str]:
        """Run every handler for the event. Returns the error text, if any."""
        event_logger = logger.bind(event_id=event.id, event_type=event.type, team_id=event.team_id)
        errors = []
        for handler in self.handlers.handlers_for(event.type):
            try:
                await handler(self.context, event)
            except Exception as e:
                self.db.rollback()
                event_logger.exception("outbox_handler_failed", handler=handler.__name__, error=str(e))
                errors.append(f"{handler.__name__}: {e}")
        return "; ".join(errors) or None

    async def process_pending(self, limit: Optional[int] = None) -> Dict[str, int]:
        """Claim and dispatch up to ``limit`` pending events."""
        limit = limit or get_settings().outbox_batch_size
        stats = {"claimed": 0, "completed": 0, "failed": 0}

        for event in self._pending(limit):
            if not self._claim(event):
                continue
            stats["claimed"] += 1

            error = await self.dispatch(event)
            event.status = OutboxStatus.FAILED.value if error else OutboxStatus.COMPLETED.value
            event.error = error
            event.processed_at = utc_now()
            self.db.commit()
            stats["failed" if error else "completed"] += 1

        if stats["claimed"]:
            logger.info("outbox_processed", **stats)
        return stats
