"""
COOK ledger: append-only, idempotent issuance.

Issuance is at-most-once per (task, contributor). The unique constraint on
``ledger_entries`` is the enforcement point; the existence check before the
insert only gives a friendlier error in the common case. Downstream work
(weight recompute, attestation, notification) is driven by the
``cook.issued`` outbox event and never rolls back an entry.
"""

import logging
from collections import defaultdict
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..cook import apply_cap, apply_decay, calculate_equity, effective_cook, summarize
from ..db.audit_service import AuditService
from ..db.models import LedgerEntryModel, ReviewModel, TaskModel
from ..enums import Attribution, CookState, ReviewStatus
from ..errors import (
    AlreadyIssued,
    BlockedByPolicy,
    CooperationError,
    NotFoundError,
    ValidationError,
)
from ..events.outbox import emit_event
from ..events.types import EventTypes
from ..primitives import generate_ulid, utc_now
from ..teams.services import TeamService

logger = logging.getLogger(__name__)


class LedgerService:
    """Service for issuing and querying COOK ledger entries."""

    def __init__(
        self,
        db: Session,
        audit: Optional[AuditService] = None,
        teams: Optional[TeamService] = None,
    ):
        self.db = db
        self.audit = audit or AuditService(db)
        self.teams = teams or TeamService(db, self.audit)

    def issue(
        self,
        team_id: str,
        task_id: str,
        contributor_id: str,
        cook_value: float,
        attribution: str,
    ) -> LedgerEntryModel:
        """Issue COOK to one contributor for one task.

        Raises:
            ValidationError: non-positive value, bad attribution, or COOK not Final
            NotFoundError: task not in this team
            BlockedByPolicy: task flagged with an unauthorized board move
            AlreadyIssued: an entry for (task, contributor) already exists
        """
        if cook_value is None or cook_value <= 0:
            raise ValidationError(
                code="INVALID_COOK_VALUE",
                message="COOK value must be greater than 0",
                cook_value=cook_value,
            )
        if attribution not in (Attribution.SELF.value, Attribution.SPEND.value):
            raise ValidationError(
                code="INVALID_ATTRIBUTION",
                message='Attribution must be "self" or "spend"',
                attribution=attribution,
            )

        task = (
            self.db.query(TaskModel)
            .filter(TaskModel.id == task_id, TaskModel.team_id == team_id)
            .first()
        )
        if task is None:
            raise NotFoundError("Task", task_id, team_id)
        if task.cook_state != CookState.FINAL.value:
            raise ValidationError(
                code="COOK_NOT_FINAL",
                message=f"COOK can only be issued once Final (currently {task.cook_state})",
                task_id=task_id,
                cook_state=task.cook_state,
                required_state=CookState.FINAL.value,
            )
        if task.is_blocked:
            raise BlockedByPolicy(
                code="UNAUTHORIZED_MOVEMENT",
                message="Task is blocked by an unauthorized board move until a Steward clears it",
                task_id=task_id,
                unauthorized_movement=task.unauthorized_movement,
            )

        existing = (
            self.db.query(LedgerEntryModel.id)
            .filter(
                LedgerEntryModel.task_id == task_id,
                LedgerEntryModel.contributor_id == contributor_id,
            )
            .first()
        )
        if existing is not None:
            raise AlreadyIssued(task_id, contributor_id)

        entry = LedgerEntryModel(
            id=generate_ulid(),
            team_id=team_id,
            task_id=task_id,
            contributor_id=contributor_id,
            cook_value=float(cook_value),
            attribution=attribution,
            issued_at=utc_now(),
        )
        self.db.add(entry)
        emit_event(
            self.db,
            team_id,
            EventTypes.COOK_ISSUED,
            {
                "ledger_entry_id": entry.id,
                "task_id": task_id,
                "contributor_id": contributor_id,
                "cook_value": entry.cook_value,
                "attribution": attribution,
            },
        )
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            logger.warning(
                f"Concurrent issuance lost for task {task_id} / {contributor_id}"
            )
            raise AlreadyIssued(task_id, contributor_id)
        self.db.refresh(entry)

        logger.info(
            f"Issued {entry.cook_value} COOK ({attribution}) to {contributor_id} "
            f"for task {task_id}"
        )
        self.audit.log_create(
            entity_kind="LedgerEntry",
            entity_id=entry.id,
            after=entry.to_dict(),
            actor_kind="system",
            actor_id="ledger",
            team_id=team_id,
        )
        return entry

    def issue_for_task(self, team_id: str, task_id: str) -> Dict[str, Any]:
        """Split the task's COOK equally and issue to each contributor.

        Each contributor is attempted independently; one failure does not
        block the others.
        """
        task = (
            self.db.query(TaskModel)
            .filter(TaskModel.id == task_id, TaskModel.team_id == team_id)
            .first()
        )
        if task is None:
            raise NotFoundError("Task", task_id, team_id)
        contributors = list(task.contributors or [])
        if not contributors:
            raise ValidationError(
                code="NO_CONTRIBUTORS",
                message="Task has no contributors to issue COOK to",
                task_id=task_id,
            )

        per_contributor = (task.cook_value or 0) / len(contributors)
        attribution = task.cook_attribution
        issued: List[Dict[str, Any]] = []
        failed: Dict[str, Dict[str, Any]] = {}

        for contributor_id in contributors:
            try:
                entry = self.issue(team_id, task_id, contributor_id, per_contributor, attribution)
                issued.append(entry.to_dict())
            except CooperationError as e:
                logger.warning(
                    f"Issuance failed for {contributor_id} on task {task_id}: {e.code}"
                )
                failed[contributor_id] = e.to_dict()

        return {
            "task_id": task_id,
            "per_contributor": per_contributor,
            "issued": issued,
            "failed": failed,
        }

    def finalize_and_issue(self, team_id: str, review_id: str) -> Optional[Dict[str, Any]]:
        """Consume an approved review: Locked -> Final, then issue.

        Returns None (and logs) when the task is not in an issuable state.
        A task already Final is treated as a redelivered event and issuance
        resumes for any contributor still missing an entry.
        """
        review = (
            self.db.query(ReviewModel)
            .filter(ReviewModel.id == review_id, ReviewModel.team_id == team_id)
            .first()
        )
        if review is None:
            raise NotFoundError("Review", review_id, team_id)
        if review.status != ReviewStatus.APPROVED.value:
            logger.warning(f"Review {review_id} is {review.status}; skipping issuance")
            return None

        task = self.db.query(TaskModel).filter(TaskModel.id == review.task_id).first()
        if task is None:
            raise NotFoundError("Task", review.task_id, team_id)

        if task.cook_state not in (CookState.LOCKED.value, CookState.FINAL.value):
            logger.warning(f"Task {task.id} COOK is {task.cook_state}, not Locked; skipping")
            return None
        if not task.cook_value:
            logger.info(f"Task {task.id} has no COOK value; nothing to issue")
            return None
        if not task.contributors:
            logger.warning(f"Task {task.id} has no contributors; skipping issuance")
            return None
        if task.is_blocked:
            logger.warning(f"Task {task.id} blocked by unauthorized movement; skipping")
            return None

        if task.cook_state == CookState.LOCKED.value:
            from ..tasks.services import TaskService

            TaskService(self.db, self.audit, self.teams).advance_cook_state(
                team_id, task.id, CookState.FINAL.value, actor_id="review-gate"
            )

        return self.issue_for_task(team_id, task.id)

    # Queries

    def list_entries(
        self,
        team_id: str,
        contributor_id: Optional[str] = None,
        task_id: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[LedgerEntryModel]:
        """Ledger entries in issuance order."""
        query = self.db.query(LedgerEntryModel).filter(LedgerEntryModel.team_id == team_id)
        if contributor_id:
            query = query.filter(LedgerEntryModel.contributor_id == contributor_id)
        if task_id:
            query = query.filter(LedgerEntryModel.task_id == task_id)
        query = query.order_by(LedgerEntryModel.issued_at, LedgerEntryModel.id)
        if limit:
            query = query.limit(limit)
        return query.all()

    def contributor_summary(
        self,
        team_id: str,
        contributor_id: str,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """Raw, capped, decayed and effective COOK for one contributor."""
        team = self.teams.require(team_id)
        entries = self.list_entries(team_id, contributor_id=contributor_id)
        now = now or utc_now()

        raw_total = sum(e.cook_value for e in entries)
        return {
            "team_id": team_id,
            "contributor_id": contributor_id,
            "entry_count": len(entries),
            "self_cook": sum(e.cook_value for e in entries if e.attribution == Attribution.SELF.value),
            "spend_cook": sum(e.cook_value for e in entries if e.attribution == Attribution.SPEND.value),
            "cap": apply_cap(raw_total, team.cook_cap).to_dict(),
            "decay": apply_decay(entries, team.cook_decay_rate, now).to_dict(),
            "effective": effective_cook(entries, team.cook_cap, team.cook_decay_rate, now).to_dict(),
        }

    def aggregation(self, team_id: str, contributor_id: Optional[str] = None) -> Dict[str, Any]:
        """Monthly/yearly totals and velocity, for a contributor or the team."""
        entries = self.list_entries(team_id, contributor_id=contributor_id)
        result = summarize(entries)
        result["team_id"] = team_id
        result["contributor_id"] = contributor_id
        return result

    def equity(self, team_id: str, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
        """Each contributor's share of the team's effective COOK."""
        team = self.teams.require(team_id)
        by_contributor: Dict[str, List[LedgerEntryModel]] = defaultdict(list)
        for entry in self.list_entries(team_id):
            by_contributor[entry.contributor_id].append(entry)
        return calculate_equity(
            by_contributor,
            cap=team.cook_cap,
            decay_rate=team.cook_decay_rate,
            model=team.equity_model,
            now=now,
        )
