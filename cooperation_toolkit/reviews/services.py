"""
Review gate.

A review is created when its task enters Review. ``required_reviewers`` is
frozen at that point from the task's COOK value. The review reaches
``approved`` once enough assigned reviewers approve with no unresolved
objection, and that emits the single ``review.approved`` event that unlocks
ledger issuance.

    pending --(approvals >= required, no objections)--> approved
    pending --(first objection)--> objected
    pending|objected --(escalate)--> escalated
    objected|escalated --(steward clears)--> pending | approved
"""

import logging
from datetime import timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from ..db.audit_service import AuditService
from ..db.models import ReviewModel, TaskModel
from ..enums import ProposalType, ReviewStatus, Role
from ..errors import (
    AlreadyApproved,
    CooperationError,
    DuplicateObjection,
    NotFoundError,
    PermissionDeniedError,
    ReviewAlreadyApproved,
    ReviewObjected,
    ValidationError,
)
from ..events.outbox import emit_event
from ..events.types import EventTypes
from ..policy.permissions import has_role_at_least, require_role
from ..primitives import generate_ulid, isoformat_utc, utc_now
from ..teams.services import TeamService

logger = logging.getLogger(__name__)

MAX_REASON_LENGTH = 5000


def required_reviewers(cook_value: Optional[float]) -> int:
    """Reviewers needed for a task worth ``cook_value`` COOK.

    <10 -> 1, 10..50 -> 2, >50 -> 3. Unset or zero COOK needs one reviewer.
    """
    if not cook_value or cook_value < 10:
        return 1
    if cook_value <= 50:
        return 2
    return 3


class ReviewService:
    """Service for the review gate."""

    def __init__(
        self,
        db: Session,
        audit: Optional[AuditService] = None,
        teams: Optional[TeamService] = None,
    ):
        self.db = db
        self.audit = audit or AuditService(db)
        self.teams = teams or TeamService(db, self.audit)

    # Lookup

    def get(self, team_id: str, review_id: str) -> Optional[ReviewModel]:
        return (
            self.db.query(ReviewModel)
            .filter(ReviewModel.id == review_id, ReviewModel.team_id == team_id)
            .first()
        )

    def get_for_task(self, team_id: str, task_id: str) -> Optional[ReviewModel]:
        return (
            self.db.query(ReviewModel)
            .filter(ReviewModel.task_id == task_id, ReviewModel.team_id == team_id)
            .first()
        )

    def require(self, team_id: str, review_id: str) -> ReviewModel:
        review = self.get(team_id, review_id)
        if review is None:
            raise NotFoundError("Review", review_id, team_id)
        return review

    def list(
        self,
        team_id: str,
        status: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[ReviewModel]:
        query = self.db.query(ReviewModel).filter(ReviewModel.team_id == team_id)
        if status:
            query = query.filter(ReviewModel.status == status)
        return (
            query.order_by(ReviewModel.created_at.desc())
            .offset(offset)
            .limit(limit)
            .all()
        )

    def _lock(self, team_id: str, review_id: str) -> ReviewModel:
        """Load a review for mutation (row lock where the backend supports it)."""
        review = (
            self.db.query(ReviewModel)
            .filter(ReviewModel.id == review_id, ReviewModel.team_id == team_id)
            .with_for_update()
            .first()
        )
        if review is None:
            raise NotFoundError("Review", review_id, team_id)
        return review

    def _task(self, review: ReviewModel) -> TaskModel:
        task = self.db.query(TaskModel).filter(TaskModel.id == review.task_id).first()
        if task is None:
            raise NotFoundError("Task", review.task_id, review.team_id)
        return task

    def _require_reviewer(self, team_id: str, task: TaskModel, actor_id: str) -> str:
        """Assigned reviewers and Stewards/Admins may decide; returns the role."""
        member = self.teams.require_member(team_id, actor_id)
        if actor_id in (task.reviewers or []) or has_role_at_least(member.role, Role.STEWARD):
            return member.role
        raise PermissionDeniedError(
            code="NOT_ASSIGNED_REVIEWER",
            message="Only assigned reviewers or Stewards can review this task",
            role=member.role,
            required_role=Role.STEWARD.value,
            action="review task",
            task_id=task.id,
        )

    def _require_involved(self, team_id: str, task: TaskModel, actor_id: str, action: str) -> str:
        member = self.teams.require_member(team_id, actor_id)
        involved = actor_id in (task.contributors or []) or actor_id in (task.reviewers or [])
        if involved or has_role_at_least(member.role, Role.STEWARD):
            return member.role
        raise PermissionDeniedError(
            code="NOT_INVOLVED",
            message=f"Only contributors, reviewers or Stewards can {action}",
            role=member.role,
            required_role=Role.STEWARD.value,
            action=action,
            task_id=task.id,
        )

    # Lifecycle

    def build_for_task(self, task: TaskModel) -> ReviewModel:
        """Stage a review for ``task`` in the current transaction.

        Returns the existing review when one is already present.
        """
        existing = self.get_for_task(task.team_id, task.id)
        if existing is not None:
            return existing

        now = utc_now()
        review = ReviewModel(
            id=generate_ulid(),
            team_id=task.team_id,
            task_id=task.id,
            status=ReviewStatus.PENDING.value,
            approvals=[],
            objections=[],
            comments=[],
            required_reviewers=required_reviewers(task.cook_value),
            escalated=False,
            created_at=now,
            updated_at=now,
        )
        self.db.add(review)
        logger.info(
            f"Initialized review {review.id} for task {task.id} "
            f"(required_reviewers={review.required_reviewers})"
        )
        return review

    def initiate(self, team_id: str, task_id: str) -> ReviewModel:
        """Create the review for a task, or return the existing one."""
        task = (
            self.db.query(TaskModel)
            .filter(TaskModel.id == task_id, TaskModel.team_id == team_id)
            .first()
        )
        if task is None:
            raise NotFoundError("Task", task_id, team_id)

        existing = self.get_for_task(team_id, task_id)
        if existing is not None:
            return existing

        review = self.build_for_task(task)
        self.db.commit()
        self.db.refresh(review)
        self.audit.log_create(
            entity_kind="Review",
            entity_id=review.id,
            after=review.to_dict(),
            actor_kind="system",
            actor_id="review-gate",
            team_id=team_id,
        )
        return review

    def approve(self, team_id: str, review_id: str, reviewer_id: str) -> ReviewModel:
        """Record an approval; reaching the required count approves the review."""
        review = self._lock(team_id, review_id)
        task = self._task(review)
        self._require_reviewer(team_id, task, reviewer_id)

        if review.status == ReviewStatus.APPROVED.value:
            raise AlreadyApproved(
                code="REVIEW_ALREADY_APPROVED",
                message="This review has already been approved",
                review_id=review.id,
                status=review.status,
            )
        if reviewer_id in (review.approvals or []):
            raise AlreadyApproved(
                code="REVIEWER_ALREADY_APPROVED",
                message=f"'{reviewer_id}' has already approved this review",
                review_id=review.id,
                reviewer_id=reviewer_id,
            )
        if review.status in (ReviewStatus.OBJECTED.value, ReviewStatus.ESCALATED.value):
            raise ReviewObjected(
                code="REVIEW_OBJECTED",
                message="Review has unresolved objections; a Steward must clear them first",
                review_id=review.id,
                status=review.status,
                objections=len(review.objections or []),
            )

        old_status = review.status
        review.approvals = list(review.approvals or []) + [reviewer_id]
        review.updated_at = utc_now()

        approved = self._maybe_approve(review)
        self.db.commit()
        self.db.refresh(review)

        self.audit.log_update(
            entity_kind="Review",
            entity_id=review.id,
            before={"approvals": review.approvals[:-1]},
            after={"approvals": review.approvals},
            actor_id=reviewer_id,
            team_id=team_id,
            note="Approval recorded",
        )
        if approved:
            logger.info(f"Review {review.id} approved for task {review.task_id}")
            self.audit.log_status_change(
                entity_kind="Review",
                entity_id=review.id,
                old_status=old_status,
                new_status=review.status,
                actor_id=reviewer_id,
                team_id=team_id,
            )
        return review

    def _maybe_approve(self, review: ReviewModel) -> bool:
        """Move to approved and emit the signal when the gate is satisfied."""
        if review.objections:
            return False
        if len(review.approvals or []) < review.required_reviewers:
            return False
        review.status = ReviewStatus.APPROVED.value
        emit_event(
            self.db,
            review.team_id,
            EventTypes.REVIEW_APPROVED,
            {"review_id": review.id, "task_id": review.task_id},
        )
        return True

    def raise_objection(
        self,
        team_id: str,
        review_id: str,
        reviewer_id: str,
        reason: str,
    ) -> ReviewModel:
        """Object to a review. The first objection opens the objection window."""
        reason = (reason or "").strip()
        if not reason:
            raise ValidationError(
                code="REASON_REQUIRED",
                message="An objection must include a reason",
            )
        if len(reason) > MAX_REASON_LENGTH:
            raise ValidationError(
                code="REASON_TOO_LONG",
                message=f"Objection reason must be at most {MAX_REASON_LENGTH} characters",
                length=len(reason),
                max_length=MAX_REASON_LENGTH,
            )

        review = self._lock(team_id, review_id)
        task = self._task(review)
        self._require_reviewer(team_id, task, reviewer_id)

        if review.status == ReviewStatus.APPROVED.value:
            raise ReviewAlreadyApproved(
                code="REVIEW_ALREADY_APPROVED",
                message="Cannot object to an approved review",
                review_id=review.id,
                status=review.status,
            )
        if any(o.get("reviewer_id") == reviewer_id for o in review.objections or []):
            raise DuplicateObjection(
                code="DUPLICATE_OBJECTION",
                message=f"'{reviewer_id}' has already objected to this review",
                review_id=review.id,
                reviewer_id=reviewer_id,
            )

        now = utc_now()
        old_status = review.status
        review.objections = list(review.objections or []) + [
            {"reviewer_id": reviewer_id, "reason": reason, "timestamp": isoformat_utc(now)}
        ]
        if review.objection_window_opened_at is None:
            team = self.teams.require(team_id)
            review.objection_window_opened_at = now
            review.objection_window_closes_at = now + timedelta(
                days=team.default_objection_window_days
            )
        if review.status == ReviewStatus.PENDING.value:
            review.status = ReviewStatus.OBJECTED.value
        review.updated_at = now

        emit_event(
            self.db,
            team_id,
            EventTypes.REVIEW_OBJECTED,
            {"review_id": review.id, "task_id": review.task_id, "reviewer_id": reviewer_id},
        )
        self.db.commit()
        self.db.refresh(review)

        logger.info(f"Objection on review {review.id} by {reviewer_id}")
        self.audit.log_status_change(
            entity_kind="Review",
            entity_id=review.id,
            old_status=old_status,
            new_status=review.status,
            actor_id=reviewer_id,
            team_id=team_id,
            note=f"Objection: {reason[:200]}",
        )
        return review

    def add_comment(
        self,
        team_id: str,
        review_id: str,
        author_id: str,
        content: str,
    ) -> ReviewModel:
        content = (content or "").strip()
        if not content:
            raise ValidationError(code="CONTENT_REQUIRED", message="Comment cannot be empty")

        review = self._lock(team_id, review_id)
        task = self._task(review)
        self._require_involved(team_id, task, author_id, "comment on this review")

        review.comments = list(review.comments or []) + [
            {"author_id": author_id, "content": content, "timestamp": isoformat_utc(utc_now())}
        ]
        review.updated_at = utc_now()
        self.db.commit()
        self.db.refresh(review)
        return review

    def escalate(
        self,
        team_id: str,
        review_id: str,
        actor_id: str,
        steward_id: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Escalate a contested review to a Steward.

        When the team has an objection threshold and the review's objection
        count meets it, a binding_decision proposal is opened as well. A proposal
        that cannot be created is logged and reported as ``None``; the
        escalation still stands.
        """
        review = self._lock(team_id, review_id)
        task = self._task(review)
        self._require_involved(team_id, task, actor_id, "escalate this review")

        if review.escalated:
            raise ValidationError(
                code="ALREADY_ESCALATED",
                message="Review has already been escalated",
                review_id=review.id,
                escalated_to=review.escalated_to,
            )
        if review.status == ReviewStatus.APPROVED.value:
            raise ValidationError(
                code="REVIEW_ALREADY_APPROVED",
                message="Cannot escalate an approved review",
                review_id=review.id,
            )
        if steward_id is not None:
            steward = self.teams.get_membership(team_id, steward_id)
            if steward is None or not has_role_at_least(steward.role, Role.STEWARD):
                raise ValidationError(
                    code="INVALID_STEWARD",
                    message=f"'{steward_id}' is not a Steward of this team",
                    steward_id=steward_id,
                )

        old_status = review.status
        now = utc_now()
        review.status = ReviewStatus.ESCALATED.value
        review.escalated = True
        review.escalated_by = actor_id
        review.escalated_to = steward_id
        review.escalated_at = now
        review.escalation_reason = reason
        review.updated_at = now
        self.db.commit()
        self.db.refresh(review)

        logger.info(f"Review {review.id} escalated by {actor_id}")
        self.audit.log_status_change(
            entity_kind="Review",
            entity_id=review.id,
            old_status=old_status,
            new_status=review.status,
            actor_id=actor_id,
            team_id=team_id,
            note=reason,
        )

        proposal = None
        team = self.teams.require(team_id)
        threshold = team.default_objection_threshold or 0
        if threshold > 0 and len(review.objections or []) >= threshold:
            from ..governance.proposals import ProposalService

            try:
                proposal = ProposalService(self.db, self.audit, self.teams).create(
                    team_id=team_id,
                    proposal_type=ProposalType.BINDING_DECISION.value,
                    title=f"Binding decision: review of '{task.title}'",
                    description=reason or "Escalated review requires a binding decision",
                    proposed_by=actor_id,
                    related_review_id=review.id,
                )
            except CooperationError as e:
                # the escalation is already committed
                self.db.rollback()
                logger.error(
                    f"Binding decision proposal for review {review.id} not created: "
                    f"{e.code}: {e.message}"
                )

        return {
            "review": review.to_dict(),
            "proposal": proposal.to_dict() if proposal else None,
        }

    def clear_objections(
        self,
        team_id: str,
        review_id: str,
        steward_id: str,
        note: Optional[str] = None,
    ) -> ReviewModel:
        """Steward resolution of objections.

        Returns the review to pending, or straight to approved when the
        approvals already satisfy the requirement.
        """
        member = self.teams.require_member(team_id, steward_id)
        require_role(member.role, Role.STEWARD, "clear review objections", steward_id)

        review = self._lock(team_id, review_id)
        if review.status not in (ReviewStatus.OBJECTED.value, ReviewStatus.ESCALATED.value):
            raise ValidationError(
                code="REVIEW_NOT_OBJECTED",
                message="Only objected or escalated reviews can be cleared",
                review_id=review.id,
                status=review.status,
            )

        old_status = review.status
        cleared = len(review.objections or [])
        review.objections = []
        review.objection_window_opened_at = None
        review.objection_window_closes_at = None
        review.status = ReviewStatus.PENDING.value
        review.updated_at = utc_now()
        self._maybe_approve(review)

        self.db.commit()
        self.db.refresh(review)

        logger.info(
            f"Steward {steward_id} cleared {cleared} objection(s) on review {review.id}"
        )
        self.audit.log_status_change(
            entity_kind="Review",
            entity_id=review.id,
            old_status=old_status,
            new_status=review.status,
            actor_id=steward_id,
            team_id=team_id,
            note=note or f"Cleared {cleared} objection(s)",
        )
        return review

