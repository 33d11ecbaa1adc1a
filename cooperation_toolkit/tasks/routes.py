"""
Task endpoints. All are scoped to a team: /teams/{team_id}/tasks.
"""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..db.base import get_db
from ..identity import get_actor_id
from ..schemas import CookAssign, ExternalLink, FlagClear, TaskCreate, TaskMove, TaskUpdate
from .services import TaskService

router = APIRouter(prefix="/teams/{team_id}/tasks", tags=["tasks"])


@router.post("", status_code=201)
async def create_task(
    team_id: str,
    task: TaskCreate,
    actor_id: str = Depends(get_actor_id),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    db_task = TaskService(db).create(team_id, task, actor_id)
    return {"status": "success", "task": db_task.to_dict()}


@router.get("")
async def list_tasks(
    team_id: str,
    state: Optional[str] = None,
    contributor_id: Optional[str] = None,
    include_archived: bool = False,
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    actor_id: str = Depends(get_actor_id),
    db: Session = Depends(get_db),
) -> List[Dict[str, Any]]:
    service = TaskService(db)
    service.teams.require_member(team_id, actor_id)
    tasks = service.list(
        team_id,
        state=state,
        contributor_id=contributor_id,
        include_archived=include_archived,
        limit=limit,
        offset=offset,
    )
    return [t.to_dict() for t in tasks]


@router.get("/{task_id}")
async def get_task(
    team_id: str,
    task_id: str,
    actor_id: str = Depends(get_actor_id),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    service = TaskService(db)
    service.teams.require_member(team_id, actor_id)
    return service.require(team_id, task_id).to_dict()


@router.patch("/{task_id}")
async def update_task(
    team_id: str,
    task_id: str,
    changes: TaskUpdate,
    actor_id: str = Depends(get_actor_id),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    task = TaskService(db).update(team_id, task_id, changes, actor_id)
    return {"status": "success", "task": task.to_dict()}


@router.post("/{task_id}/move")
async def move_task(
    team_id: str,
    task_id: str,
    move: TaskMove,
    actor_id: str = Depends(get_actor_id),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """Move a task to another lifecycle state."""
    task = TaskService(db).move(
        team_id, task_id, move.to_state, actor_id, allow_zero_cook=move.allow_zero_cook
    )
    return {"status": "success", "task": task.to_dict()}


@router.post("/{task_id}/cook")
async def assign_cook(
    team_id: str,
    task_id: str,
    assignment: CookAssign,
    actor_id: str = Depends(get_actor_id),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    task = TaskService(db).assign_cook_value(
        team_id, task_id, assignment.cook_value, assignment.attribution, actor_id
    )
    return {"status": "success", "task": task.to_dict()}


@router.post("/{task_id}/archive")
async def archive_task(
    team_id: str,
    task_id: str,
    actor_id: str = Depends(get_actor_id),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    task = TaskService(db).archive(team_id, task_id, actor_id)
    return {"status": "success", "task": task.to_dict()}


@router.post("/{task_id}/clear-flag")
async def clear_unauthorized_movement(
    team_id: str,
    task_id: str,
    body: FlagClear,
    actor_id: str = Depends(get_actor_id),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """Steward clears an unauthorized board movement flag."""
    task = TaskService(db).clear_unauthorized_movement(team_id, task_id, actor_id, note=body.note)
    return {"status": "success", "task": task.to_dict()}


@router.post("/{task_id}/external")
async def link_external_item(
    team_id: str,
    task_id: str,
    link: ExternalLink,
    actor_id: str = Depends(get_actor_id),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    task = TaskService(db).link_external_item(
        team_id, task_id, link.external_project_id, link.external_item_id, actor_id
    )
    return {"status": "success", "task": task.to_dict()}
