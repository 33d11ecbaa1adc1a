"""
Task service: lifecycle moves, COOK assignment and external-board metadata.

A move writes the task, the COOK state change, the review (when entering
Review) and the ``task.state_changed`` outbox event in one transaction.
"""

import logging
from typing import List, Optional

from sqlalchemy import desc
from sqlalchemy.orm import Session

from ..db.audit_service import AuditService
from ..db.models import TaskModel
from ..enums import Attribution, CookState, Role, TaskState
from ..errors import (
    InsufficientReviewers,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from ..events.outbox import emit_event
from ..events.types import EventTypes
from ..policy.permissions import check_transition_permission, has_role_at_least, require_role
from ..policy.transitions import assert_cook_advance, assert_transition
from ..primitives import generate_ulid, isoformat_utc, utc_now
from ..reviews.services import ReviewService, required_reviewers
from ..schemas.tasks import TaskCreate, TaskUpdate
from ..teams.services import TeamService

logger = logging.getLogger(__name__)

EDITABLE_COOK_STATES = (CookState.DRAFT.value, CookState.PROVISIONAL.value)


class TaskService:
    """Service for managing tasks."""

    def __init__(
        self,
        db: Session,
        audit: Optional[AuditService] = None,
        teams: Optional[TeamService] = None,
    ):
        self.db = db
        self.audit = audit or AuditService(db)
        self.teams = teams or TeamService(db, self.audit)

    def create(self, team_id: str, task: TaskCreate, actor_id: str) -> TaskModel:
        """Create a task in Backlog with Draft COOK."""
        self.teams.require(team_id)
        self.teams.require_member(team_id, actor_id)

        now = utc_now()
        db_task = TaskModel(
            id=generate_ulid(),
            team_id=team_id,
            title=task.title,
            description=task.description,
            state=TaskState.BACKLOG.value,
            contributors=list(task.contributors),
            reviewers=list(task.reviewers),
            cook_value=task.cook_value,
            cook_state=CookState.DRAFT.value,
            cook_attribution=Attribution(task.cook_attribution).value,
            archived=False,
            created_by=actor_id,
            created_at=now,
            updated_at=now,
        )
        self.db.add(db_task)
        self.db.commit()
        self.db.refresh(db_task)

        self.audit.log_create(
            entity_kind="Task",
            entity_id=db_task.id,
            after=db_task.to_dict(),
            actor_id=actor_id,
            team_id=team_id,
        )
        return db_task

    def get(self, team_id: str, task_id: str) -> Optional[TaskModel]:
        """Get a task by ID within a team."""
        return (
            self.db.query(TaskModel)
            .filter(TaskModel.id == task_id, TaskModel.team_id == team_id)
            .first()
        )

    def require(self, team_id: str, task_id: str) -> TaskModel:
        task = self.get(team_id, task_id)
        if task is None:
            raise NotFoundError("Task", task_id, team_id)
        return task

    def list(
        self,
        team_id: str,
        state: Optional[str] = None,
        contributor_id: Optional[str] = None,
        include_archived: bool = False,
        limit: int = 100,
        offset: int = 0,
    ) -> List[TaskModel]:
        """List tasks in a team with optional filtering."""
        query = self.db.query(TaskModel).filter(TaskModel.team_id == team_id)

        if state:
            query = query.filter(TaskModel.state == state)
        if not include_archived:
            query = query.filter(TaskModel.archived.is_(False))

        tasks = query.order_by(desc(TaskModel.created_at)).all()
        # contributors is a JSON list; filter in Python for portability
        if contributor_id:
            tasks = [t for t in tasks if contributor_id in (t.contributors or [])]
        return tasks[offset:offset + limit]

    def find_by_external_item(self, external_item_id: str) -> Optional[TaskModel]:
        return (
            self.db.query(TaskModel)
            .filter(TaskModel.external_item_id == external_item_id)
            .first()
        )

    def _require_editor(self, task: TaskModel, actor_id: str, action: str) -> str:
        member = self.teams.require_member(task.team_id, actor_id)
        if (
            actor_id in (task.contributors or [])
            or actor_id == task.created_by
            or has_role_at_least(member.role, Role.STEWARD)
        ):
            return member.role
        raise PermissionDeniedError(
            code="NOT_TASK_EDITOR",
            message=f"Only assigned contributors, the creator or Stewards can {action}",
            role=member.role,
            required_role=Role.STEWARD.value,
            action=action,
            task_id=task.id,
        )

    def update(
        self,
        team_id: str,
        task_id: str,
        changes: TaskUpdate,
        actor_id: str,
    ) -> TaskModel:
        """Update title, description, contributors or reviewers."""
        task = self.require(team_id, task_id)
        self._require_editor(task, actor_id, "edit this task")
        if task.archived:
            raise ValidationError(
                code="TASK_ARCHIVED", message="Archived tasks cannot be edited", task_id=task.id
            )

        data = changes.model_dump(exclude_unset=True)
        if "contributors" in data and task.cook_state not in EDITABLE_COOK_STATES:
            raise ValidationError(
                code="COOK_LOCKED",
                message="Contributors cannot change once COOK is locked for review",
                task_id=task.id,
                cook_state=task.cook_state,
            )

        before = task.to_dict()
        for field, value in data.items():
            if field in ("contributors", "reviewers"):
                value = list(value or [])
            setattr(task, field, value)
        task.updated_at = utc_now()
        self.db.commit()
        self.db.refresh(task)

        self.audit.log_update(
            entity_kind="Task",
            entity_id=task.id,
            before=before,
            after=task.to_dict(),
            actor_id=actor_id,
            team_id=team_id,
        )
        return task

    def move(
        self,
        team_id: str,
        task_id: str,
        to_state: str,
        actor_id: str,
        allow_zero_cook: bool = False,
        actor_kind: str = "human",
    ) -> TaskModel:
        """Move a task through its lifecycle.

        System moves (``actor_kind="system"``, e.g. an accepted board move)
        skip membership and role checks but not the transition table or the
        Review entry requirements.
        """
        task = self.require(team_id, task_id)
        try:
            target = TaskState(to_state)
        except ValueError:
            raise ValidationError(
                code="INVALID_STATE",
                message=f'Unknown task state "{to_state}"',
                allowed_states=[s.value for s in TaskState],
            )
        source = TaskState(task.state)

        if task.archived:
            raise ValidationError(
                code="TASK_ARCHIVED", message="Archived tasks cannot be moved", task_id=task.id
            )

        role = None
        if actor_kind != "system":
            role = self.teams.require_member(team_id, actor_id).role

        if source == target:
            return task

        assert_transition(source, target)
        if role is not None:
            check_transition_permission(
                role,
                actor_id,
                source,
                target,
                task.contributors or [],
                task.reviewers or [],
            )

        if target == TaskState.REVIEW:
            self.check_review_entry(task, allow_zero_cook)

        old_cook_state = task.cook_state
        task.state = target.value
        task.updated_at = utc_now()

        if target == TaskState.IN_PROGRESS and task.cook_state == CookState.DRAFT.value:
            task.cook_state = CookState.PROVISIONAL.value
        elif target == TaskState.REVIEW and task.cook_state in EDITABLE_COOK_STATES:
            task.cook_state = CookState.LOCKED.value

        review = None
        if target == TaskState.REVIEW:
            review = ReviewService(self.db, self.audit, self.teams).build_for_task(task)

        emit_event(
            self.db,
            team_id,
            EventTypes.TASK_STATE_CHANGED,
            {
                "task_id": task.id,
                "from_state": source.value,
                "to_state": target.value,
                "actor_id": actor_id,
                "review_id": review.id if review else None,
            },
        )
        self.db.commit()
        self.db.refresh(task)

        logger.info(f"Task {task.id} moved {source.value} -> {target.value} by {actor_id}")
        self.audit.log_status_change(
            entity_kind="Task",
            entity_id=task.id,
            old_status=source.value,
            new_status=target.value,
            actor_kind=actor_kind,
            actor_id=actor_id,
            team_id=team_id,
        )
        if task.cook_state != old_cook_state:
            self.audit.log_status_change(
                entity_kind="TaskCook",
                entity_id=task.id,
                old_status=old_cook_state,
                new_status=task.cook_state,
                actor_kind=actor_kind,
                actor_id=actor_id,
                team_id=team_id,
            )
        return task

    def check_review_entry(self, task: TaskModel, allow_zero_cook: bool = False) -> None:
        """Raise unless ``task`` may enter Review with its current assignment."""
        if not task.contributors:
            raise ValidationError(
                code="NO_CONTRIBUTORS",
                message="A task needs at least one contributor before Review",
                task_id=task.id,
            )
        if task.cook_value is None and not allow_zero_cook:
            raise ValidationError(
                code="COOK_VALUE_REQUIRED",
                message="Assign a COOK value (or explicitly accept 0 COOK) before Review",
                task_id=task.id,
            )
        required = required_reviewers(task.cook_value)
        assigned = len(task.reviewers or [])
        if assigned < required:
            raise InsufficientReviewers(
                required=required, assigned=assigned, cook_value=task.cook_value
            )

    def assign_cook_value(
        self,
        team_id: str,
        task_id: str,
        cook_value: float,
        attribution: str,
        actor_id: str,
    ) -> TaskModel:
        """Set the task's COOK value while it is still Draft or Provisional."""
        if cook_value is None or cook_value < 0:
            raise ValidationError(
                code="INVALID_COOK_VALUE",
                message="COOK value must be a non-negative number",
                cook_value=cook_value,
            )
        if attribution not in (Attribution.SELF.value, Attribution.SPEND.value):
            raise ValidationError(
                code="INVALID_ATTRIBUTION",
                message='Attribution must be "self" or "spend"',
                attribution=attribution,
            )

        task = self.require(team_id, task_id)
        self._require_editor(task, actor_id, "assign COOK")
        if task.cook_state not in EDITABLE_COOK_STATES:
            raise ValidationError(
                code="COOK_LOCKED",
                message=f"COOK is {task.cook_state} and can no longer be changed",
                task_id=task.id,
                cook_state=task.cook_state,
            )

        before = {
            "cook_value": task.cook_value,
            "cook_attribution": task.cook_attribution,
            "cook_state": task.cook_state,
        }
        task.cook_value = float(cook_value)
        task.cook_attribution = attribution
        if task.state == TaskState.IN_PROGRESS.value and task.cook_state == CookState.DRAFT.value:
            task.cook_state = CookState.PROVISIONAL.value
        task.updated_at = utc_now()
        self.db.commit()
        self.db.refresh(task)

        self.audit.log_update(
            entity_kind="Task",
            entity_id=task.id,
            before=before,
            after={
                "cook_value": task.cook_value,
                "cook_attribution": task.cook_attribution,
                "cook_state": task.cook_state,
            },
            actor_id=actor_id,
            team_id=team_id,
            note="COOK assigned",
        )
        return task

    def advance_cook_state(
        self,
        team_id: str,
        task_id: str,
        target: str,
        actor_id: str = "ledger",
        commit: bool = True,
    ) -> TaskModel:
        """Advance COOK exactly one step; backward or skipped moves raise."""
        task = self.require(team_id, task_id)
        old = task.cook_state
        assert_cook_advance(old, target)

        task.cook_state = CookState(target).value
        task.updated_at = utc_now()
        if not commit:
            return task

        self.db.commit()
        self.db.refresh(task)
        self.audit.log_status_change(
            entity_kind="TaskCook",
            entity_id=task.id,
            old_status=old,
            new_status=task.cook_state,
            actor_kind="system",
            actor_id=actor_id,
            team_id=team_id,
        )
        return task

    def archive(self, team_id: str, task_id: str, actor_id: str) -> TaskModel:
        """Archive a task. Tasks are never deleted."""
        task = self.require(team_id, task_id)
        member = self.teams.require_member(team_id, actor_id)
        if actor_id != task.created_by:
            require_role(member.role, Role.STEWARD, "archive tasks", actor_id)
        if task.archived:
            return task

        task.archived = True
        task.updated_at = utc_now()
        self.db.commit()
        self.db.refresh(task)

        self.audit.log_update(
            entity_kind="Task",
            entity_id=task.id,
            before={"archived": False},
            after={"archived": True},
            actor_id=actor_id,
            team_id=team_id,
            note="Archived",
        )
        return task

    def clear_unauthorized_movement(
        self,
        team_id: str,
        task_id: str,
        actor_id: str,
        note: Optional[str] = None,
    ) -> TaskModel:
        """Lift the block left by an unauthorized board move. Stewards only."""
        task = self.require(team_id, task_id)
        member = self.teams.require_member(team_id, actor_id)
        require_role(member.role, Role.STEWARD, "clear unauthorized movement flags", actor_id)

        if not task.is_blocked:
            raise ValidationError(
                code="NO_UNAUTHORIZED_MOVEMENT",
                message="Task has no blocking unauthorized movement",
                task_id=task.id,
            )

        before = dict(task.unauthorized_movement)
        task.unauthorized_movement = {
            **before,
            "blocked": False,
            "cleared_by": actor_id,
            "cleared_at": isoformat_utc(utc_now()),
            "clear_note": note,
        }
        task.updated_at = utc_now()
        self.db.commit()
        self.db.refresh(task)

        logger.info(f"Unauthorized movement flag cleared on task {task.id} by {actor_id}")
        self.audit.log_update(
            entity_kind="Task",
            entity_id=task.id,
            before={"unauthorized_movement": before},
            after={"unauthorized_movement": task.unauthorized_movement},
            actor_id=actor_id,
            team_id=team_id,
            note=note or "Unauthorized movement cleared",
        )
        return task

    def link_external_item(
        self,
        team_id: str,
        task_id: str,
        external_project_id: str,
        external_item_id: str,
        actor_id: str,
    ) -> TaskModel:
        """Attach the task to a card on the external board."""
        task = self.require(team_id, task_id)
        self._require_editor(task, actor_id, "link this task to the board")

        task.external_project_id = external_project_id
        task.external_item_id = external_item_id
        task.updated_at = utc_now()
        self.db.commit()
        self.db.refresh(task)

        self.audit.log_link(
            entity_kind="Task",
            entity_id=task.id,
            linked_kind="BoardCard",
            linked_id=external_item_id,
            actor_id=actor_id,
            team_id=team_id,
        )
        return task
