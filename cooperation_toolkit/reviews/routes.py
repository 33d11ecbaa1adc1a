"""
Review gate endpoints: /teams/{team_id}/reviews.
"""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..db.base import get_db
from ..identity import get_actor_id
from ..schemas import CommentCreate, EscalationCreate, ObjectionCreate, ObjectionsClear
from .services import ReviewService

router = APIRouter(prefix="/teams/{team_id}/reviews", tags=["reviews"])


@router.get("")
async def list_reviews(
    team_id: str,
    status: Optional[str] = None,
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    actor_id: str = Depends(get_actor_id),
    db: Session = Depends(get_db),
) -> List[Dict[str, Any]]:
    service = ReviewService(db)
    service.teams.require_member(team_id, actor_id)
    return [r.to_dict() for r in service.list(team_id, status=status, limit=limit, offset=offset)]


@router.get("/{review_id}")
async def get_review(
    team_id: str,
    review_id: str,
    actor_id: str = Depends(get_actor_id),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    service = ReviewService(db)
    service.teams.require_member(team_id, actor_id)
    return service.require(team_id, review_id).to_dict()


@router.post("/{review_id}/approve")
async def approve_review(
    team_id: str,
    review_id: str,
    actor_id: str = Depends(get_actor_id),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    review = ReviewService(db).approve(team_id, review_id, actor_id)
    return {"status": "success", "review": review.to_dict()}


@router.post("/{review_id}/objections")
async def object_to_review(
    team_id: str,
    review_id: str,
    objection: ObjectionCreate,
    actor_id: str = Depends(get_actor_id),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    review = ReviewService(db).raise_objection(team_id, review_id, actor_id, objection.reason)
    return {"status": "success", "review": review.to_dict()}


@router.post("/{review_id}/comments", status_code=201)
async def comment_on_review(
    team_id: str,
    review_id: str,
    comment: CommentCreate,
    actor_id: str = Depends(get_actor_id),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    review = ReviewService(db).add_comment(team_id, review_id, actor_id, comment.content)
    return {"status": "success", "review": review.to_dict()}


@router.post("/{review_id}/escalate")
async def escalate_review(
    team_id: str,
    review_id: str,
    escalation: EscalationCreate,
    actor_id: str = Depends(get_actor_id),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """Escalate to a Steward; may open a binding-decision proposal."""
    result = ReviewService(db).escalate(
        team_id,
        review_id,
        actor_id,
        steward_id=escalation.steward_id,
        reason=escalation.reason,
    )
    return {"status": "success", **result}


@router.post("/{review_id}/clear")
async def clear_objections(
    team_id: str,
    review_id: str,
    body: ObjectionsClear,
    actor_id: str = Depends(get_actor_id),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    review = ReviewService(db).clear_objections(team_id, review_id, actor_id, note=body.note)
    return {"status": "success", "review": review.to_dict()}
