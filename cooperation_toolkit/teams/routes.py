"""
Team and membership endpoints.
"""

from typing import Any, Dict, List

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..db.base import get_db
from ..identity import get_actor_id
from ..schemas import MemberAdd, MemberRoleUpdate, TeamCreate, TeamUpdate
from .services import TeamService

router = APIRouter(prefix="/teams", tags=["teams"])


# =============================================================================
# Team Endpoints
# =============================================================================


@router.post("", status_code=201)
async def create_team(
    team: TeamCreate,
    actor_id: str = Depends(get_actor_id),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """Create a team; the caller becomes its Admin."""
    db_team = TeamService(db).create(team, created_by=actor_id)
    return {"status": "success", "team": db_team.to_dict()}


@router.get("")
async def list_my_teams(
    actor_id: str = Depends(get_actor_id),
    db: Session = Depends(get_db),
) -> List[Dict[str, Any]]:
    return [t.to_dict() for t in TeamService(db).list_for_user(actor_id)]


@router.get("/{team_id}")
async def get_team(
    team_id: str,
    actor_id: str = Depends(get_actor_id),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    service = TeamService(db)
    team = service.require(team_id)
    service.require_member(team_id, actor_id)
    return team.to_dict()


@router.patch("/{team_id}")
async def update_team(
    team_id: str,
    changes: TeamUpdate,
    actor_id: str = Depends(get_actor_id),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """Update team settings (Admin)."""
    team = TeamService(db).update(team_id, changes, actor_id)
    return {"status": "success", "team": team.to_dict()}


# =============================================================================
# Membership Endpoints
# =============================================================================


@router.get("/{team_id}/members")
async def list_members(
    team_id: str,
    actor_id: str = Depends(get_actor_id),
    db: Session = Depends(get_db),
) -> List[Dict[str, Any]]:
    service = TeamService(db)
    service.require_member(team_id, actor_id)
    return [m.to_dict() for m in service.list_members(team_id)]


@router.post("/{team_id}/members", status_code=201)
async def add_member(
    team_id: str,
    member: MemberAdd,
    actor_id: str = Depends(get_actor_id),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    membership = TeamService(db).add_member(team_id, member.user_id, member.role, actor_id)
    return {"status": "success", "member": membership.to_dict()}


@router.put("/{team_id}/members/{user_id}/role")
async def set_member_role(
    team_id: str,
    user_id: str,
    update: MemberRoleUpdate,
    actor_id: str = Depends(get_actor_id),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    membership = TeamService(db).set_role(team_id, user_id, update.role, actor_id)
    return {"status": "success", "member": membership.to_dict()}
