"""
Ledger and attestation endpoints.
"""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..db.base import get_db
from ..enums import Role
from ..errors import NotFoundError
from ..identity import get_actor_id
from ..policy.permissions import require_role
from ..teams.services import TeamService
from .attestations import AttestationService
from .services import LedgerService

router = APIRouter(prefix="/teams/{team_id}", tags=["ledger"])


# =============================================================================
# Ledger Endpoints
# =============================================================================


@router.get("/ledger/entries")
async def list_entries(
    team_id: str,
    contributor_id: Optional[str] = None,
    task_id: Optional[str] = None,
    limit: Optional[int] = Query(None, ge=1, le=10000),
    actor_id: str = Depends(get_actor_id),
    db: Session = Depends(get_db),
) -> List[Dict[str, Any]]:
    service = LedgerService(db)
    service.teams.require_member(team_id, actor_id)
    entries = service.list_entries(team_id, contributor_id=contributor_id, task_id=task_id, limit=limit)
    return [e.to_dict() for e in entries]


@router.get("/ledger/contributors/{contributor_id}")
async def contributor_summary(
    team_id: str,
    contributor_id: str,
    actor_id: str = Depends(get_actor_id),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """Raw, capped, decayed and effective COOK for one contributor."""
    service = LedgerService(db)
    service.teams.require_member(team_id, actor_id)
    return service.contributor_summary(team_id, contributor_id)


@router.get("/ledger/aggregation")
async def aggregation(
    team_id: str,
    contributor_id: Optional[str] = None,
    actor_id: str = Depends(get_actor_id),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    service = LedgerService(db)
    service.teams.require_member(team_id, actor_id)
    return service.aggregation(team_id, contributor_id=contributor_id)


@router.get("/ledger/equity")
async def equity(
    team_id: str,
    actor_id: str = Depends(get_actor_id),
    db: Session = Depends(get_db),
) -> List[Dict[str, Any]]:
    service = LedgerService(db)
    service.teams.require_member(team_id, actor_id)
    return service.equity(team_id)


@router.post("/ledger/tasks/{task_id}/issue")
async def issue_for_task(
    team_id: str,
    task_id: str,
    actor_id: str = Depends(get_actor_id),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """Retry issuance for a Final task (Steward). Already-issued entries are reported as failed."""
    member = TeamService(db).require_member(team_id, actor_id)
    require_role(member.role, Role.STEWARD, "issue COOK", actor_id)
    result = LedgerService(db).issue_for_task(team_id, task_id)
    return {"status": "success", **result}


# =============================================================================
# Attestation Endpoints
# =============================================================================


@router.get("/attestations")
async def list_attestations(
    team_id: str,
    contributor_id: Optional[str] = None,
    actor_id: str = Depends(get_actor_id),
    db: Session = Depends(get_db),
) -> List[Dict[str, Any]]:
    TeamService(db).require_member(team_id, actor_id)
    attestations = AttestationService(db).list(contributor_id=contributor_id, team_id=team_id)
    return [a.to_dict() for a in attestations]


@router.get("/attestations/{attestation_id}/verify")
async def verify_attestation(
    team_id: str,
    attestation_id: str,
    actor_id: str = Depends(get_actor_id),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    TeamService(db).require_member(team_id, actor_id)
    service = AttestationService(db)
    attestation = service.get(attestation_id)
    if attestation is None or attestation.team_id != team_id:
        raise NotFoundError("Attestation", attestation_id, team_id)
    return service.verify(attestation_id)


@router.get("/attestations/chains/{contributor_id}/verify")
async def verify_chain(
    team_id: str,
    contributor_id: str,
    actor_id: str = Depends(get_actor_id),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    TeamService(db).require_member(team_id, actor_id)
    return AttestationService(db).verify_chain(contributor_id)
