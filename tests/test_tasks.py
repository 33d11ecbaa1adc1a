"""Tests for the task lifecycle and COOK assignment."""

import pytest

from cooperation_toolkit.errors import (
    InsufficientReviewers,
    InvalidTransition,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from cooperation_toolkit.events import EventTypes, OutboxService
from cooperation_toolkit.reviews import ReviewService
from cooperation_toolkit.schemas.tasks import TaskCreate, TaskUpdate
from cooperation_toolkit.tasks import TaskService

from .conftest import ADMIN, ALICE, BOB, OUTSIDER, REX, RITA, STEWARD


class TestTaskCreate:
    def test_starts_in_backlog_with_draft_cook(self, make_task):
        task = make_task()
        assert task.state == "Backlog"
        assert task.cook_state == "Draft"
        assert task.cook_attribution == "self"
        assert task.archived is False

    def test_outsider_cannot_create(self, db_session, team):
        with pytest.raises(PermissionDeniedError):
            TaskService(db_session).create(team.id, TaskCreate(title="Nope"), actor_id=OUTSIDER)

    def test_duplicate_user_ids_collapsed(self, make_task):
        task = make_task(contributors=[ALICE, ALICE, " bob "])
        assert task.contributors == [ALICE, BOB]

    def test_unknown_task(self, db_session, team):
        with pytest.raises(NotFoundError) as exc:
            TaskService(db_session).require(team.id, "missing")
        assert exc.value.code == "TASK_NOT_FOUND"


class TestTaskMove:
    """Lifecycle moves and their COOK side effects."""

    def test_walk_to_review(self, db_session, team, make_task, move_to):
        task = move_to(make_task(), "In Progress")
        assert task.cook_state == "Provisional"

        task = move_to(task, "Review")
        assert task.state == "Review"
        assert task.cook_state == "Locked"

        review = ReviewService(db_session).get_for_task(team.id, task.id)
        assert review is not None
        assert review.status == "pending"
        assert review.required_reviewers == 1

    def test_each_move_emits_event(self, db_session, team, make_task, move_to):
        task = move_to(make_task(), "Ready")
        events = OutboxService(db_session).list(event_type=EventTypes.TASK_STATE_CHANGED)

        assert len(events) == 1
        assert events[0].payload["task_id"] == task.id
        assert events[0].payload["from_state"] == "Backlog"
        assert events[0].payload["to_state"] == "Ready"
        assert events[0].status == "pending"

    def test_skipping_state_rejected(self, db_session, team, make_task):
        task = make_task()
        with pytest.raises(InvalidTransition) as exc:
            TaskService(db_session).move(team.id, task.id, "Review", actor_id=STEWARD)

        assert exc.value.allowed_next_states == ["Ready"]
        assert TaskService(db_session).require(team.id, task.id).state == "Backlog"

    def test_same_state_is_noop(self, db_session, team, make_task):
        task = make_task()
        TaskService(db_session).move(team.id, task.id, "Backlog", actor_id=STEWARD)
        assert OutboxService(db_session).list(event_type=EventTypes.TASK_STATE_CHANGED) == []

    def test_unknown_state(self, db_session, team, make_task):
        with pytest.raises(ValidationError) as exc:
            TaskService(db_session).move(team.id, make_task().id, "Shipped", actor_id=STEWARD)
        assert exc.value.code == "INVALID_STATE"

    def test_contributor_moves_own_task(self, db_session, team, make_task):
        task = TaskService(db_session).move(team.id, make_task().id, "Ready", actor_id=ALICE)
        assert task.state == "Ready"

    def test_contributor_cannot_move_into_review(self, db_session, team, make_task, move_to):
        task = move_to(make_task(), "In Progress")
        with pytest.raises(PermissionDeniedError) as exc:
            TaskService(db_session).move(team.id, task.id, "Review", actor_id=ALICE)
        assert exc.value.code == "TRANSITION_NOT_PERMITTED"

    def test_reviewer_moves_into_review(self, db_session, team, make_task, move_to):
        task = move_to(make_task(), "In Progress")
        task = TaskService(db_session).move(team.id, task.id, "Review", actor_id=RITA)
        assert task.state == "Review"

    def test_outsider_cannot_move(self, db_session, team, make_task):
        with pytest.raises(PermissionDeniedError) as exc:
            TaskService(db_session).move(team.id, make_task().id, "Ready", actor_id=OUTSIDER)
        assert exc.value.code == "NOT_TEAM_MEMBER"

    def test_system_move_skips_membership(self, db_session, team, make_task):
        task = TaskService(db_session).move(
            team.id, make_task().id, "Ready", actor_id="board-sync", actor_kind="system"
        )
        assert task.state == "Ready"


class TestReviewEntry:
    """Requirements checked when a task enters Review."""

    def test_requires_contributors(self, db_session, team, make_task, move_to):
        task = move_to(make_task(contributors=[]), "In Progress")
        with pytest.raises(ValidationError) as exc:
            TaskService(db_session).move(team.id, task.id, "Review", actor_id=STEWARD)
        assert exc.value.code == "NO_CONTRIBUTORS"

    def test_requires_cook_value(self, db_session, team, make_task, move_to):
        task = move_to(make_task(cook_value=None), "In Progress")
        with pytest.raises(ValidationError) as exc:
            TaskService(db_session).move(team.id, task.id, "Review", actor_id=STEWARD)
        assert exc.value.code == "COOK_VALUE_REQUIRED"

    def test_zero_cook_accepted_explicitly(self, db_session, team, make_task, move_to):
        task = move_to(make_task(cook_value=None), "In Progress")
        task = TaskService(db_session).move(
            team.id, task.id, "Review", actor_id=STEWARD, allow_zero_cook=True
        )
        assert task.state == "Review"

    @pytest.mark.parametrize(
        "cook_value,required",
        [(9.99, 1), (10, 2), (50, 2), (50.01, 3)],
    )
    def test_reviewer_count_scales_with_cook(
        self, db_session, team, make_task, move_to, cook_value, required
    ):
        task = move_to(make_task(cook_value=cook_value, reviewers=[]), "In Progress")
        with pytest.raises(InsufficientReviewers) as exc:
            TaskService(db_session).move(team.id, task.id, "Review", actor_id=STEWARD)

        assert exc.value.required == required
        assert exc.value.assigned == 0
        assert TaskService(db_session).require(team.id, task.id).state == "In Progress"

    def test_enough_reviewers_enter_review(self, db_session, team, make_task, move_to):
        task = move_to(make_task(cook_value=30, reviewers=[RITA, REX]), "Review")
        review = ReviewService(db_session).get_for_task(team.id, task.id)
        assert review.required_reviewers == 2


class TestCookAssignment:
    def test_assign_in_backlog_keeps_draft(self, db_session, team, make_task):
        task = TaskService(db_session).assign_cook_value(
            team.id, make_task().id, 12.5, "spend", actor_id=ALICE
        )
        assert task.cook_value == 12.5
        assert task.cook_attribution == "spend"
        assert task.cook_state == "Draft"

    def test_assign_while_provisional(self, db_session, team, make_task, move_to):
        task = move_to(make_task(), "In Progress")
        task = TaskService(db_session).assign_cook_value(team.id, task.id, 5, "self", actor_id=ALICE)
        assert task.cook_state == "Provisional"
        assert task.cook_value == 5

    def test_locked_cook_cannot_change(self, db_session, team, make_task, move_to):
        task = move_to(make_task(), "Review")
        with pytest.raises(ValidationError) as exc:
            TaskService(db_session).assign_cook_value(team.id, task.id, 99, "self", actor_id=STEWARD)
        assert exc.value.code == "COOK_LOCKED"

    def test_negative_value_rejected(self, db_session, team, make_task):
        with pytest.raises(ValidationError) as exc:
            TaskService(db_session).assign_cook_value(team.id, make_task().id, -1, "self", ALICE)
        assert exc.value.code == "INVALID_COOK_VALUE"

    def test_bad_attribution_rejected(self, db_session, team, make_task):
        with pytest.raises(ValidationError) as exc:
            TaskService(db_session).assign_cook_value(team.id, make_task().id, 1, "gift", ALICE)
        assert exc.value.code == "INVALID_ATTRIBUTION"

    def test_unrelated_member_cannot_assign(self, db_session, team, make_task):
        with pytest.raises(PermissionDeniedError) as exc:
            TaskService(db_session).assign_cook_value(team.id, make_task().id, 3, "self", BOB)
        assert exc.value.code == "NOT_TASK_EDITOR"

    def test_advance_is_one_step(self, db_session, team, make_task):
        task = make_task()
        with pytest.raises(InvalidTransition):
            TaskService(db_session).advance_cook_state(team.id, task.id, "Final")


class TestTaskUpdate:
    def test_update_title(self, db_session, team, make_task):
        task = TaskService(db_session).update(
            team.id, make_task().id, TaskUpdate(title="Renamed"), actor_id=ALICE
        )
        assert task.title == "Renamed"

    def test_contributors_frozen_once_locked(self, db_session, team, make_task, move_to):
        task = move_to(make_task(), "Review")
        with pytest.raises(ValidationError) as exc:
            TaskService(db_session).update(
                team.id, task.id, TaskUpdate(contributors=[ALICE, BOB]), actor_id=STEWARD
            )
        assert exc.value.code == "COOK_LOCKED"


class TestArchive:
    def test_contributor_cannot_archive_others_task(self, db_session, team, make_task):
        with pytest.raises(PermissionDeniedError):
            TaskService(db_session).archive(team.id, make_task().id, actor_id=ALICE)

    def test_archived_task_hidden_and_frozen(self, db_session, team, make_task):
        service = TaskService(db_session)
        task = service.archive(team.id, make_task().id, actor_id=STEWARD)

        assert task.archived is True
        assert service.list(team.id) == []
        assert [t.id for t in service.list(team.id, include_archived=True)] == [task.id]
        with pytest.raises(ValidationError) as exc:
            service.move(team.id, task.id, "Ready", actor_id=STEWARD)
        assert exc.value.code == "TASK_ARCHIVED"


class TestListAndLink:
    def test_filter_by_contributor_and_state(self, db_session, team, make_task, move_to):
        mine = make_task(contributors=[ALICE])
        make_task(contributors=[BOB])
        move_to(mine, "Ready")

        service = TaskService(db_session)
        assert [t.id for t in service.list(team.id, contributor_id=ALICE)] == [mine.id]
        assert [t.id for t in service.list(team.id, state="Ready")] == [mine.id]

    def test_link_external_item(self, db_session, team, make_task):
        service = TaskService(db_session)
        task = service.link_external_item(team.id, make_task().id, "proj-1", "card-9", actor_id=ALICE)

        assert task.external_project_id == "proj-1"
        assert service.find_by_external_item("card-9").id == task.id


class TestUnauthorizedMovementFlag:
    @pytest.fixture
    def blocked_task(self, db_session, make_task):
        task = make_task()
        task.unauthorized_movement = {
            "from_state": "Backlog",
            "attempted_state": "Done",
            "blocked": True,
        }
        db_session.commit()
        return task

    def test_steward_clears_flag(self, db_session, team, blocked_task):
        task = TaskService(db_session).clear_unauthorized_movement(
            team.id, blocked_task.id, actor_id=STEWARD, note="checked with the team"
        )
        assert task.is_blocked is False
        assert task.unauthorized_movement["cleared_by"] == STEWARD
        assert task.unauthorized_movement["attempted_state"] == "Done"

    def test_reviewer_cannot_clear(self, db_session, team, blocked_task):
        with pytest.raises(PermissionDeniedError):
            TaskService(db_session).clear_unauthorized_movement(team.id, blocked_task.id, RITA)

    def test_nothing_to_clear(self, db_session, team, make_task):
        with pytest.raises(ValidationError) as exc:
            TaskService(db_session).clear_unauthorized_movement(team.id, make_task().id, ADMIN)
        assert exc.value.code == "NO_UNAUTHORIZED_MOVEMENT"
