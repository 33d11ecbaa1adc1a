"""
Durable retry queue for board operations that failed or were skipped while
the circuit was open.
"""

from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional

import structlog
from sqlalchemy import func
from sqlalchemy.orm import Session

from ..db.models import SyncQueueItemModel
from ..errors import CooperationError, ExternalServiceError
from ..primitives import ensure_utc, generate_ulid, isoformat_utc, utc_now
from .circuit_breaker import CircuitBreaker, get_circuit_breaker

logger = structlog.get_logger()

MAX_BACKOFF_MINUTES = 60

QueueExecutor = Callable[[SyncQueueItemModel], Awaitable[Any]]


def backoff_delay(retry_count: int) -> timedelta:
    """2**n minutes, capped at an hour."""
    return timedelta(minutes=min(2 ** retry_count, MAX_BACKOFF_MINUTES))


class SyncRetryQueue:
    def __init__(self, db: Session, breaker: Optional[CircuitBreaker] = None):
        self.db = db
        self.breaker = breaker or get_circuit_breaker()

    def enqueue(
        self,
        team_id: str,
        task_id: str,
        operation: str,
        data: Optional[Dict[str, Any]] = None,
        max_retries: int = 10,
        error: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> SyncQueueItemModel:
        now = now or utc_now()
        item = SyncQueueItemModel(
            id=generate_ulid(),
            team_id=team_id,
            task_id=task_id,
            operation=operation,
            data=data or {},
            retry_count=0,
            max_retries=max_retries,
            next_retry_at=now + backoff_delay(0),
            last_error=error,
            created_at=now,
            updated_at=now,
        )
        self.db.add(item)
        self.db.commit()
        self.db.refresh(item)
        logger.info(
            "sync_queued",
            item_id=item.id,
            team_id=team_id,
            task_id=task_id,
            operation=operation,
        )
        return item

    def ready(self, limit: int = 10, now: Optional[datetime] = None) -> List[SyncQueueItemModel]:
        now = now or utc_now()
        return (
            self.db.query(SyncQueueItemModel)
            .filter(SyncQueueItemModel.next_retry_at <= now)
            .order_by(SyncQueueItemModel.next_retry_at, SyncQueueItemModel.id)
            .limit(limit)
            .all()
        )

    async def process(
        self,
        executor: QueueExecutor,
        limit: int = 10,
        now: Optional[datetime] = None,
    ) -> Dict[str, int]:
        """Run ready items through ``executor``.

        Successful items are deleted. ``ExternalServiceError`` reschedules
        with backoff until ``max_retries``; any other rejection is permanent
        and the item is dropped.
        """
        stats = {"processed": 0, "succeeded": 0, "retried": 0, "dropped": 0}
        if not self.breaker.can_execute():
            logger.info("sync_queue_skipped", reason="circuit_open")
            return stats

        now = now or utc_now()
        for item in self.ready(limit, now):
            if not self.breaker.can_execute():
                break
            stats["processed"] += 1
            item_logger = logger.bind(item_id=item.id, task_id=item.task_id, operation=item.operation)

            try:
                await executor(item)
            except ExternalServiceError as e:
                self.breaker.record_failure()
                item.retry_count += 1
                item.last_error = e.message
                item.updated_at = now
                if item.retry_count >= item.max_retries:
                    item_logger.warning(
                        "sync_item_dropped",
                        retry_count=item.retry_count,
                        error=e.message,
                    )
                    self.db.delete(item)
                    stats["dropped"] += 1
                else:
                    item.next_retry_at = now + backoff_delay(item.retry_count)
                    item_logger.info(
                        "sync_item_rescheduled",
                        retry_count=item.retry_count,
                        next_retry_at=isoformat_utc(item.next_retry_at),
                    )
                    stats["retried"] += 1
                self.db.commit()
                continue
            except CooperationError as e:
                item_logger.warning("sync_item_rejected", code=e.code, error=e.message)
                self.db.delete(item)
                self.db.commit()
                stats["dropped"] += 1
                continue

            self.breaker.record_success()
            self.db.delete(item)
            self.db.commit()
            stats["succeeded"] += 1
            item_logger.info("sync_item_succeeded")

        return stats

    def status(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        now = now or utc_now()
        total = self.db.query(func.count(SyncQueueItemModel.id)).scalar() or 0
        ready = (
            self.db.query(func.count(SyncQueueItemModel.id))
            .filter(SyncQueueItemModel.next_retry_at <= now)
            .scalar()
            or 0
        )
        oldest = self.db.query(func.min(SyncQueueItemModel.created_at)).scalar()
        return {
            "total": total,
            "ready": ready,
            "oldest": isoformat_utc(ensure_utc(oldest)) if oldest else None,
        }
