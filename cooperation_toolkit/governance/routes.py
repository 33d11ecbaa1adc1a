"""
Governance endpoints: weights, proposals, objections, votings, committees
and change history under /teams/{team_id}/governance.
"""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..db.base import get_db
from ..identity import get_actor_id
from ..schemas import (
    CommitteeSelect,
    ProposalCreate,
    ProposalObjectionCreate,
    ServiceTermEnd,
    VoteCast,
    VotingCreate,
)
from ..teams.services import TeamService
from .changes import ChangeService
from .committees import CommitteeService
from .proposals import ProposalService
from .voting import VotingService
from .weight import GovernanceWeightService

router = APIRouter(prefix="/teams/{team_id}/governance", tags=["governance"])


# =============================================================================
# Weight Endpoints
# =============================================================================


@router.get("/weights")
async def list_weights(
    team_id: str,
    actor_id: str = Depends(get_actor_id),
    db: Session = Depends(get_db),
) -> List[Dict[str, Any]]:
    TeamService(db).require_member(team_id, actor_id)
    return [w.to_dict() for w in GovernanceWeightService(db).list_weights(team_id)]


@router.get("/weights/{contributor_id}")
async def get_weight(
    team_id: str,
    contributor_id: str,
    actor_id: str = Depends(get_actor_id),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    TeamService(db).require_member(team_id, actor_id)
    weight = GovernanceWeightService(db).get_weight(team_id, contributor_id)
    return {"team_id": team_id, "contributor_id": contributor_id, "weight": weight}


# =============================================================================
# Proposal Endpoints
# =============================================================================


@router.post("/proposals", status_code=201)
async def create_proposal(
    team_id: str,
    proposal: ProposalCreate,
    actor_id: str = Depends(get_actor_id),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    db_proposal = ProposalService(db).create(
        team_id,
        proposal.type,
        proposal.title,
        proposal.description,
        proposed_by=actor_id,
        window_days=proposal.objection_window_days,
        threshold=proposal.objection_threshold,
    )
    return {"status": "success", "proposal": db_proposal.to_dict()}


@router.get("/proposals")
async def list_proposals(
    team_id: str,
    status: Optional[str] = None,
    type: Optional[str] = None,
    actor_id: str = Depends(get_actor_id),
    db: Session = Depends(get_db),
) -> List[Dict[str, Any]]:
    service = ProposalService(db)
    service.teams.require_member(team_id, actor_id)
    return [p.to_dict() for p in service.list(team_id, status=status, proposal_type=type)]


@router.get("/proposals/{proposal_id}")
async def get_proposal(
    team_id: str,
    proposal_id: str,
    actor_id: str = Depends(get_actor_id),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    service = ProposalService(db)
    service.teams.require_member(team_id, actor_id)
    proposal = service.require(team_id, proposal_id)
    result = proposal.to_dict()
    result["objections"] = [o.to_dict() for o in service.list_objections(proposal.id)]
    return result


@router.post("/proposals/{proposal_id}/objections", status_code=201)
async def object_to_proposal(
    team_id: str,
    proposal_id: str,
    objection: ProposalObjectionCreate,
    actor_id: str = Depends(get_actor_id),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """Raise a COOK-weighted objection; may trigger a voting."""
    proposal = ProposalService(db).add_objection(team_id, proposal_id, actor_id, objection.reason)
    return {"status": "success", "proposal": proposal.to_dict()}


@router.post("/proposals/{proposal_id}/close")
async def close_objection_window(
    team_id: str,
    proposal_id: str,
    force: bool = False,
    actor_id: str = Depends(get_actor_id),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    proposal = ProposalService(db).close_objection_window(
        team_id, proposal_id, force=force, actor_id=actor_id
    )
    return {"status": "success", "proposal": proposal.to_dict()}


@router.post("/proposals/{proposal_id}/withdraw")
async def withdraw_proposal(
    team_id: str,
    proposal_id: str,
    actor_id: str = Depends(get_actor_id),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    proposal = ProposalService(db).withdraw(team_id, proposal_id, actor_id)
    return {"status": "success", "proposal": proposal.to_dict()}


# =============================================================================
# Voting Endpoints
# =============================================================================


@router.post("/votings", status_code=201)
async def create_voting(
    team_id: str,
    voting: VotingCreate,
    actor_id: str = Depends(get_actor_id),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    db_voting = VotingService(db).open_voting(
        team_id,
        voting.title,
        voting.options,
        actor_id,
        period_days=voting.voting_period_days,
        description=voting.description,
    )
    return {"status": "success", "voting": db_voting.to_dict()}


@router.get("/votings")
async def list_votings(
    team_id: str,
    status: Optional[str] = None,
    actor_id: str = Depends(get_actor_id),
    db: Session = Depends(get_db),
) -> List[Dict[str, Any]]:
    service = VotingService(db)
    service.teams.require_member(team_id, actor_id)
    return [v.to_dict() for v in service.list(team_id, status=status)]


@router.get("/votings/{voting_id}")
async def get_voting(
    team_id: str,
    voting_id: str,
    actor_id: str = Depends(get_actor_id),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    service = VotingService(db)
    service.teams.require_member(team_id, actor_id)
    voting = service.require(team_id, voting_id)
    result = voting.to_dict()
    result["votes"] = [v.to_dict() for v in service.list_votes(voting.id)]
    return result


@router.post("/votings/{voting_id}/votes", status_code=201)
async def cast_vote(
    team_id: str,
    voting_id: str,
    vote: VoteCast,
    actor_id: str = Depends(get_actor_id),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    db_vote = VotingService(db).cast_vote(team_id, voting_id, actor_id, vote.option)
    return {"status": "success", "vote": db_vote.to_dict()}


@router.post("/votings/{voting_id}/close")
async def close_voting(
    team_id: str,
    voting_id: str,
    actor_id: str = Depends(get_actor_id),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """Close and tally. Before the period ends this needs a Steward."""
    service = VotingService(db)
    service.teams.require_member(team_id, actor_id)
    voting = service.close_voting(team_id, voting_id, actor_id=actor_id)
    return {"status": "success", "voting": voting.to_dict()}

# =============================================================================
# Committee Endpoints
# =============================================================================


@router.post("/committees", status_code=201)
async def select_committee(
    team_id: str,
    selection: CommitteeSelect,
    actor_id: str = Depends(get_actor_id),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """Seat a committee by COOK-weighted lottery. Steward only."""
    committee = CommitteeService(db).select(
        team_id,
        selection.committee_name,
        selection.number_of_seats,
        actor_id,
        seed=selection.seed,
    )
    return {"status": "success", "committee": committee.to_dict()}


@router.get("/committees")
async def list_committees(
    team_id: str,
    actor_id: str = Depends(get_actor_id),
    db: Session = Depends(get_db),
) -> List[Dict[str, Any]]:
    service = CommitteeService(db)
    service.teams.require_member(team_id, actor_id)
    return [c.to_dict() for c in service.list(team_id)]


@router.get("/committees/eligibility")
async def committee_eligibility(
    team_id: str,
    eligible_only: bool = False,
    actor_id: str = Depends(get_actor_id),
    db: Session = Depends(get_db),
) -> List[Dict[str, Any]]:
    service = CommitteeService(db)
    service.teams.require_member(team_id, actor_id)
    results = service.eligibility(team_id)
    return [r.to_dict() for r in results if r.is_eligible or not eligible_only]


@router.get("/committees/{committee_id}")
async def get_committee(
    team_id: str,
    committee_id: str,
    actor_id: str = Depends(get_actor_id),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    service = CommitteeService(db)
    service.teams.require_member(team_id, actor_id)
    committee = service.require(team_id, committee_id)
    result = committee.to_dict()
    result["service_terms"] = [
        t.to_dict() for t in service.list_service_terms(team_id, committee_id=committee.id)
    ]
    return result


@router.get("/committees/{committee_id}/verify")
async def verify_committee(
    team_id: str,
    committee_id: str,
    actor_id: str = Depends(get_actor_id),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """Replay the stored lottery and check it against its eligibility snapshot."""
    service = CommitteeService(db)
    service.teams.require_member(team_id, actor_id)
    return service.verify(team_id, committee_id)


@router.get("/service-terms")
async def list_service_terms(
    team_id: str,
    contributor_id: Optional[str] = None,
    committee_id: Optional[str] = None,
    status: Optional[str] = None,
    actor_id: str = Depends(get_actor_id),
    db: Session = Depends(get_db),
) -> List[Dict[str, Any]]:
    service = CommitteeService(db)
    service.teams.require_member(team_id, actor_id)
    terms = service.list_service_terms(
        team_id, contributor_id=contributor_id, committee_id=committee_id, status=status
    )
    return [t.to_dict() for t in terms]


@router.post("/service-terms/{term_id}/end")
async def end_service_term(
    team_id: str,
    term_id: str,
    body: ServiceTermEnd,
    actor_id: str = Depends(get_actor_id),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    term = CommitteeService(db).end_service_term(team_id, term_id, actor_id, status=body.status)
    return {"status": "success", "service_term": term.to_dict()}



# =============================================================================
# Change History Endpoints
# =============================================================================


@router.get("/changes")
async def list_changes(
    team_id: str,
    actor_id: str = Depends(get_actor_id),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    TeamService(db).require_member(team_id, actor_id)
    service = ChangeService(db)
    return {
        "policy": [c.to_dict() for c in service.list_policy_changes(team_id)],
        "constitutional": [c.to_dict() for c in service.list_constitutional_changes(team_id)],
        "latest_policy_version": service.latest_version(team_id, "policy"),
        "latest_constitutional_version": service.latest_version(team_id, "constitutional"),
    }
