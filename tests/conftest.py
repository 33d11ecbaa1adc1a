"""Test configuration and fixtures."""

from typing import Any, Callable, Dict, List, Optional, Tuple

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from cooperation_toolkit.db import audit_models, models  # noqa: F401
from cooperation_toolkit.db.base import Base
from cooperation_toolkit.db.models import TaskModel, TeamModel
from cooperation_toolkit.errors import ExternalServiceError, ValidationError
from cooperation_toolkit.events.notifications import NotificationSink
from cooperation_toolkit.ledger import LedgerService
from cooperation_toolkit.reviews import ReviewService
from cooperation_toolkit.schemas.tasks import TaskCreate
from cooperation_toolkit.schemas.teams import TeamCreate
from cooperation_toolkit.sync.board import BoardAdapter
from cooperation_toolkit.tasks import TaskService
from cooperation_toolkit.teams import TeamService

ADMIN = "admin"
STEWARD = "steward"
ALICE = "alice"
BOB = "bob"
RITA = "rita"
REX = "rex"
RUTH = "ruth"
OUTSIDER = "outsider"


@pytest.fixture
def engine():
    """A fresh in-memory database shared across threads for each test."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db_session(engine):
    Session = sessionmaker(bind=engine)
    session = Session()
    yield session
    session.close()


@pytest.fixture
def make_team(db_session) -> Callable[..., TeamModel]:
    """Create a team owned by ``admin`` with a standard roster."""

    def _make(**overrides: Any) -> TeamModel:
        fields = {"name": "Test Team"}
        fields.update(overrides)
        teams = TeamService(db_session)
        team = teams.create(TeamCreate(**fields), created_by=ADMIN)
        teams.add_member(team.id, STEWARD, "Steward", actor_id=ADMIN)
        for user_id in (ALICE, BOB):
            teams.add_member(team.id, user_id, "Contributor", actor_id=ADMIN)
        for user_id in (RITA, REX, RUTH):
            teams.add_member(team.id, user_id, "Reviewer", actor_id=ADMIN)
        return team

    return _make


@pytest.fixture
def team(make_team) -> TeamModel:
    return make_team()


@pytest.fixture
def make_task(db_session, team) -> Callable[..., TaskModel]:
    def _make(**overrides: Any) -> TaskModel:
        fields: Dict[str, Any] = {
            "title": "Write the onboarding guide",
            "contributors": [ALICE],
            "reviewers": [RITA],
            "cook_value": 8.0,
        }
        fields.update(overrides)
        return TaskService(db_session).create(team.id, TaskCreate(**fields), actor_id=ADMIN)

    return _make


@pytest.fixture
def move_to(db_session, team) -> Callable[[TaskModel, str], TaskModel]:
    """Walk a task forward to ``target`` as a Steward."""
    order = ["Backlog", "Ready", "In Progress", "Review", "Done"]

    def _move(task: TaskModel, target: str) -> TaskModel:
        service = TaskService(db_session)
        current = order.index(task.state)
        for state in order[current + 1:order.index(target) + 1]:
            task = service.move(team.id, task.id, state, actor_id=STEWARD)
        return task

    return _move


@pytest.fixture
def approve_task(db_session, team, move_to) -> Callable[[TaskModel], Any]:
    """Take a task to Review and collect every required approval."""

    def _approve(task: TaskModel, reviewers: Optional[List[str]] = None):
        task = move_to(task, "Review")
        reviews = ReviewService(db_session)
        review = reviews.get_for_task(team.id, task.id)
        for reviewer_id in reviewers or list(task.reviewers):
            review = reviews.approve(team.id, review.id, reviewer_id)
        return review

    return _approve


@pytest.fixture
def issue_task(db_session, team, approve_task) -> Callable[[TaskModel], Dict[str, Any]]:
    """Approve a task and run issuance directly."""

    def _issue(task: TaskModel) -> Dict[str, Any]:
        review = approve_task(task)
        return LedgerService(db_session).finalize_and_issue(team.id, review.id)

    return _issue


class RecordingSink(NotificationSink):
    """Notification sink that keeps everything it was asked to deliver."""

    def __init__(self) -> None:
        self.sent: List[Dict[str, Any]] = []
        self.closed = False

    async def notify(
        self,
        user_id,
        team_id,
        event_type,
        title,
        message,
        action_url=None,
        metadata=None,
    ) -> bool:
        self.sent.append(
            {
                "user_id": user_id,
                "team_id": team_id,
                "event_type": event_type,
                "title": title,
                "message": message,
                "action_url": action_url,
                "metadata": metadata,
            }
        )
        return True

    def recipients(self, event_type: str) -> List[str]:
        return [n["user_id"] for n in self.sent if n["event_type"] == event_type]

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


class FakeBoard(BoardAdapter):
    """In-memory board with one project of five standard columns."""

    COLUMNS = [
        {"id": 1, "name": "Backlog"},
        {"id": 2, "name": "Ready"},
        {"id": 3, "name": "In Progress"},
        {"id": 4, "name": "Review"},
        {"id": 5, "name": "Done"},
        {"id": 9, "name": "Icebox"},
    ]

    def __init__(self) -> None:
        self.moves: List[Tuple[str, str]] = []
        self.fail = False
        self.closed = False

    def _check(self) -> None:
        if self.fail:
            raise ExternalServiceError(code="BOARD_SERVER_ERROR", message="Board returned HTTP 502")

    async def get_columns(self, project_id):
        self._check()
        return list(self.COLUMNS)

    async def get_column(self, column_id):
        self._check()
        for column in self.COLUMNS:
            if str(column["id"]) == str(column_id):
                return column
        raise ValidationError(code="BOARD_REQUEST_REJECTED", message="No such column")

    async def move_card(self, card_id, column_id, position="bottom"):
        self._check()
        self.moves.append((card_id, column_id))

    async def close(self):
        self.closed = True
