"""
Board sync endpoints: /teams/{team_id}/sync.
"""

from typing import Any, AsyncGenerator, Dict

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..db.base import get_db
from ..enums import Role
from ..identity import get_actor_id
from ..policy.permissions import require_role
from ..schemas import ExternalMove
from ..teams.services import TeamService
from .board import BoardAdapter, get_board
from .circuit_breaker import get_circuit_breaker
from .reconciler import SyncReconciler
from .retry_queue import SyncRetryQueue

router = APIRouter(prefix="/teams/{team_id}/sync", tags=["sync"])


async def get_board_adapter() -> AsyncGenerator[BoardAdapter, None]:
    board = get_board()
    try:
        yield board
    finally:
        await board.close()


@router.get("/tasks/{task_id}/desync")
async def detect_desync(
    team_id: str,
    task_id: str,
    actor_id: str = Depends(get_actor_id),
    db: Session = Depends(get_db),
    board: BoardAdapter = Depends(get_board_adapter),
) -> Dict[str, Any]:
    TeamService(db).require_member(team_id, actor_id)
    return await SyncReconciler(db, board).detect_desync(team_id, task_id)


@router.post("/tasks/{task_id}/reconcile")
async def reconcile_desync(
    team_id: str,
    task_id: str,
    actor_id: str = Depends(get_actor_id),
    db: Session = Depends(get_db),
    board: BoardAdapter = Depends(get_board_adapter),
) -> Dict[str, Any]:
    """Push canonical task state to the board (Steward)."""
    member = TeamService(db).require_member(team_id, actor_id)
    require_role(member.role, Role.STEWARD, "reconcile board state", actor_id)
    result = await SyncReconciler(db, board).reconcile_desync(team_id, task_id)
    return {"status": "success", **result}


@router.post("/tasks/{task_id}/external-move")
async def external_move(
    team_id: str,
    task_id: str,
    move: ExternalMove,
    db: Session = Depends(get_db),
    board: BoardAdapter = Depends(get_board_adapter),
) -> Dict[str, Any]:
    """Inbound card move reported by the board integration."""
    result = await SyncReconciler(db, board).handle_external_move(team_id, task_id, move.column_id)
    return {"status": "success", **result}


@router.get("/queue")
async def queue_status(
    team_id: str,
    actor_id: str = Depends(get_actor_id),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    TeamService(db).require_member(team_id, actor_id)
    return SyncRetryQueue(db).status()


@router.get("/breaker")
async def breaker_status(
    team_id: str,
    actor_id: str = Depends(get_actor_id),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    TeamService(db).require_member(team_id, actor_id)
    return get_circuit_breaker().get_status()
