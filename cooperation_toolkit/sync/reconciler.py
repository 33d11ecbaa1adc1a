"""
Board reconciliation. Toolkit state is canonical.

Outbound: task state changes are pushed to the board, or queued for retry
when the board is unavailable. Inbound: card moves are validated against the
transition table. Allowed moves are applied; moves into Review without enough
reviewers are reverted on the board; any other disallowed move is left
visible on the board but blocks issuance until a Steward clears it.
"""

from typing import Any, Dict, Optional

import structlog
from sqlalchemy.orm import Session

from ..db.audit_service import AuditService
from ..db.models import SyncQueueItemModel, TaskModel
from ..enums import SyncOperation
from ..errors import CooperationError, ExternalServiceError, ValidationError
from ..events.outbox import emit_event
from ..events.types import EventTypes
from ..policy.transitions import is_transition_allowed
from ..primitives import utc_now
from ..tasks.services import TaskService
from ..teams.services import TeamService
from .board import BoardAdapter
from .circuit_breaker import CircuitBreaker, get_circuit_breaker
from .column_mapper import column_to_state, possible_column_names
from .retry_queue import SyncRetryQueue

logger = structlog.get_logger()

BOARD_ACTOR = "board-sync"


class SyncReconciler:
    def __init__(
        self,
        db: Session,
        board: BoardAdapter,
        breaker: Optional[CircuitBreaker] = None,
        audit: Optional[AuditService] = None,
        teams: Optional[TeamService] = None,
    ):
        self.db = db
        self.board = board
        self.breaker = breaker or get_circuit_breaker()
        self.audit = audit or AuditService(db)
        self.teams = teams or TeamService(db, self.audit)
        self.tasks = TaskService(db, self.audit, self.teams)
        self.queue = SyncRetryQueue(db, self.breaker)

    @staticmethod
    def _is_linked(task: TaskModel) -> bool:
        return bool(task.external_project_id and task.external_item_id)

    async def _find_column(self, task: TaskModel, state: str) -> Optional[Dict[str, Any]]:
        columns = await self.board.get_columns(task.external_project_id)
        by_name = {(c.get("name") or "").strip().lower(): c for c in columns}
        for name in possible_column_names(state):
            column = by_name.get(name.lower())
            if column is not None:
                return column
        return None

    async def _push(self, task: TaskModel) -> Optional[Dict[str, Any]]:
        """Move the task's card to the column for its current state.

        Returns the column, or None when the board has no matching column.
        """
        column = await self._find_column(task, task.state)
        if column is None:
            logger.warning(
                "board_column_missing",
                task_id=task.id,
                state=task.state,
                project_id=task.external_project_id,
            )
            return None

        column_id = str(column["id"])
        if task.external_column_id != column_id:
            await self.board.move_card(task.external_item_id, column_id)

        task.external_column_id = column_id
        task.external_synced_at = utc_now()
        self.db.commit()
        return column

    async def sync_task_state(self, team_id: str, task_id: str) -> Dict[str, Any]:
        """Push the task's state to the board. Never raises."""
        log = logger.bind(team_id=team_id, task_id=task_id)
        try:
            task = self.tasks.require(team_id, task_id)
            if not self._is_linked(task):
                return {"status": "skipped", "reason": "not_linked"}

            if not self.breaker.can_execute():
                self.queue.enqueue(
                    team_id,
                    task_id,
                    SyncOperation.SYNC_STATE.value,
                    {"state": task.state},
                    error="circuit open",
                )
                log.info("board_sync_queued", reason="circuit_open")
                return {"status": "queued", "reason": "circuit_open"}

            try:
                column = await self._push(task)
            except ExternalServiceError as e:
                self.breaker.record_failure()
                self.queue.enqueue(
                    team_id,
                    task_id,
                    SyncOperation.SYNC_STATE.value,
                    {"state": task.state},
                    error=e.message,
                )
                log.warning("board_sync_failed", error=e.message)
                return {"status": "queued", "reason": e.code}

            self.breaker.record_success()
            if column is None:
                return {"status": "skipped", "reason": "no_matching_column"}
            log.info("board_synced", state=task.state, column_id=str(column["id"]))
            return {"status": "synced", "column_id": str(column["id"])}
        except CooperationError as e:
            log.warning("board_sync_rejected", code=e.code, error=e.message)
            return {"status": "failed", "error": e.to_dict()}

    async def execute_queued(self, item: SyncQueueItemModel) -> None:
        """Retry-queue executor: re-push the task's current state."""
        task = self.tasks.require(item.team_id, item.task_id)
        if item.operation != SyncOperation.SYNC_STATE.value:
            raise ValidationError(
                code="UNKNOWN_SYNC_OPERATION",
                message=f"Unknown sync operation: {item.operation}",
                operation=item.operation,
            )
        if self._is_linked(task):
            await self._push(task)

    async def process_queue(self, limit: int = 10) -> Dict[str, int]:
        return await self.queue.process(self.execute_queued, limit)

    async def handle_external_move(
        self, team_id: str, task_id: str, column_id: str
    ) -> Dict[str, Any]:
        """Validate a card move made on the board."""
        task = self.tasks.require(team_id, task_id)
        column_id = str(column_id)
        log = logger.bind(team_id=team_id, task_id=task_id, column_id=column_id)

        column = await self.board.get_column(column_id)
        target = column_to_state(column.get("name"))
        if target is None:
            log.info("board_move_ignored", column_name=column.get("name"))
            return {"action": "ignored", "state": task.state}

        if target == task.state:
            task.external_column_id = column_id
            task.external_synced_at = utc_now()
            self.db.commit()
            return {"action": "refreshed", "state": task.state}

        from_state = task.state
        if is_transition_allowed(from_state, target):
            try:
                task = self.tasks.move(
                    team_id, task.id, target, actor_id=BOARD_ACTOR, actor_kind="system"
                )
            except CooperationError as e:
                self.db.rollback()
                task = self.tasks.require(team_id, task_id)
                log.warning("board_move_reverted", target=target, code=e.code)
                task.external_column_id = column_id
                try:
                    await self._push(task)
                except ExternalServiceError as push_error:
                    self.breaker.record_failure()
                    self.queue.enqueue(
                        team_id,
                        task_id,
                        SyncOperation.SYNC_STATE.value,
                        {"state": task.state},
                        error=push_error.message,
                    )
                return {"action": "reverted", "state": task.state, "reason": e.to_dict()}

            task.external_column_id = column_id
            task.external_synced_at = utc_now()
            self.db.commit()
            log.info("board_move_applied", from_state=from_state, to_state=target)
            return {"action": "applied", "state": task.state}

        return self._block_unauthorized(task, from_state, target, column_id)

    def _block_unauthorized(
        self, task: TaskModel, from_state: str, target: str, column_id: str
    ) -> Dict[str, Any]:
        before = task.to_dict()
        movement = {
            "detected_at": utc_now().isoformat(),
            "from_state": from_state,
            "attempted_state": target,
            "external_column_id": column_id,
            "reason": f"Transition {from_state} -> {target} is not allowed",
            "blocked": True,
        }
        task.unauthorized_movement = movement
        task.external_column_id = column_id
        task.updated_at = utc_now()
        emit_event(
            self.db,
            task.team_id,
            EventTypes.TASK_UNAUTHORIZED_MOVEMENT,
            {
                "task_id": task.id,
                "from_state": from_state,
                "attempted_state": target,
                "external_column_id": column_id,
                "reviewers": list(task.reviewers or []),
            },
        )
        self.db.commit()
        self.db.refresh(task)

        logger.warning(
            "board_move_blocked",
            team_id=task.team_id,
            task_id=task.id,
            from_state=from_state,
            attempted_state=target,
        )
        self.audit.log_update(
            entity_kind="Task",
            entity_id=task.id,
            before=before,
            after=task.to_dict(),
            actor_kind="system",
            actor_id=BOARD_ACTOR,
            team_id=task.team_id,
            note="Unauthorized board movement",
        )
        return {"action": "blocked", "state": task.state, "unauthorized_movement": movement}

    async def detect_desync(self, team_id: str, task_id: str) -> Dict[str, Any]:
        task = self.tasks.require(team_id, task_id)
        report: Dict[str, Any] = {
            "task_id": task.id,
            "toolkit_state": task.state,
            "external_column_id": task.external_column_id,
            "external_column_name": None,
            "external_state": None,
            "is_desynced": False,
            "differences": [],
        }
        if not self._is_linked(task):
            return report

        if task.external_column_id:
            column = await self.board.get_column(task.external_column_id)
            report["external_column_name"] = column.get("name")
            report["external_state"] = column_to_state(column.get("name"))

        if report["external_state"] != task.state:
            report["differences"].append(
                {
                    "field": "state",
                    "toolkit": task.state,
                    "external": report["external_state"],
                }
            )
        report["is_desynced"] = bool(report["differences"])
        return report

    async def reconcile_desync(self, team_id: str, task_id: str) -> Dict[str, Any]:
        """Push canonical state to the board if it disagrees."""
        report = await self.detect_desync(team_id, task_id)
        if not report["is_desynced"]:
            return {"reconciled": False, "report": report}

        task = self.tasks.require(team_id, task_id)
        try:
            column = await self._push(task)
        except ExternalServiceError:
            self.breaker.record_failure()
            raise
        self.breaker.record_success()

        logger.info(
            "board_desync_reconciled",
            team_id=team_id,
            task_id=task_id,
            state=task.state,
            previous_external_state=report["external_state"],
        )
        return {
            "reconciled": column is not None,
            "report": report,
            "column_id": str(column["id"]) if column else None,
        }

