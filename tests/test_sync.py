"""Tests for external board synchronization."""

import json
from datetime import timedelta

import httpx
import pytest

from cooperation_toolkit.db.models import SyncQueueItemModel
from cooperation_toolkit.errors import ExternalServiceError, NotFoundError, ValidationError
from cooperation_toolkit.events import EventTypes, OutboxService
from cooperation_toolkit.ledger import LedgerService
from cooperation_toolkit.primitives import utc_now
from cooperation_toolkit.sync import (
    CircuitBreaker,
    CircuitState,
    GitHubProjectsBoard,
    SyncReconciler,
    SyncRetryQueue,
    backoff_delay,
    column_to_state,
    state_to_column,
)
from cooperation_toolkit.tasks import TaskService

from .conftest import ALICE, RITA, FakeBoard


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def breaker(clock):
    return CircuitBreaker(failure_threshold=2, success_threshold=2, reset_timeout=300, clock=clock)


@pytest.fixture
def board():
    return FakeBoard()


@pytest.fixture
def reconciler(db_session, board, breaker):
    return SyncReconciler(db_session, board, breaker)


@pytest.fixture
def linked_task(db_session, team, make_task):
    """Create a task linked to card ``card-9`` on project ``proj-1``."""

    def _make(**overrides):
        task = make_task(**overrides)
        return TaskService(db_session).link_external_item(
            team.id, task.id, "proj-1", "card-9", actor_id=ALICE
        )

    return _make


class TestCircuitBreaker:
    def test_opens_at_failure_threshold(self, breaker):
        breaker.record_failure()
        assert breaker.state == CircuitState.CLOSED
        breaker.record_failure()
        assert breaker.state == CircuitState.OPEN
        assert breaker.can_execute() is False

    def test_success_resets_failure_count(self, breaker):
        breaker.record_failure()
        breaker.record_success()
        breaker.record_failure()
        assert breaker.state == CircuitState.CLOSED

    def test_half_open_after_timeout(self, breaker, clock):
        breaker.record_failure()
        breaker.record_failure()
        clock.now += 299
        assert breaker.state == CircuitState.OPEN
        clock.now += 1
        assert breaker.state == CircuitState.HALF_OPEN
        assert breaker.can_execute() is True

    def test_half_open_closes_after_successes(self, breaker, clock):
        breaker.record_failure()
        breaker.record_failure()
        clock.now += 300

        breaker.record_success()
        assert breaker.state == CircuitState.HALF_OPEN
        breaker.record_success()
        assert breaker.state == CircuitState.CLOSED

    def test_half_open_failure_reopens(self, breaker, clock):
        breaker.record_failure()
        breaker.record_failure()
        clock.now += 300

        breaker.record_failure()
        assert breaker.state == CircuitState.OPEN

    def test_status_and_reset(self, breaker):
        breaker.record_failure()
        breaker.record_failure()
        status = breaker.get_status()
        assert status["state"] == "open"
        assert status["failure_threshold"] == 2

        breaker.reset()
        assert breaker.state == CircuitState.CLOSED
        assert breaker.failure_count == 0


class TestColumnMapper:
    @pytest.mark.parametrize(
        "name,state",
        [
            ("Backlog", "Backlog"),
            ("  ready ", "Ready"),
            ("In-Progress", "In Progress"),
            ("Working on it", "In Progress"),
            ("QA", "Review"),
            ("In Review", "Review"),
            ("Completed", "Done"),
            ("Closed", "Done"),
            ("Icebox", None),
            ("", None),
            (None, None),
        ],
    )
    def test_column_to_state(self, name, state):
        assert column_to_state(name) == state

    def test_state_to_column(self):
        assert state_to_column("In Progress") == "In Progress"
        assert state_to_column("Done") == "Done"


class TestGitHubProjectsBoard:
    def _board(self, handler):
        return GitHubProjectsBoard(
            base_url="https://board.test",
            token="secret",
            transport=httpx.MockTransport(handler),
        )

    async def test_get_columns(self):
        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            seen["auth"] = request.headers.get("Authorization")
            return httpx.Response(200, json=[{"id": 1, "name": "Backlog"}])

        board = self._board(handler)
        columns = await board.get_columns("77")
        await board.close()

        assert columns == [{"id": 1, "name": "Backlog"}]
        assert seen == {"path": "/projects/77/columns", "auth": "Bearer secret"}

    async def test_move_card_payload(self):
        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            seen["body"] = json.loads(request.content)
            return httpx.Response(201, json={})

        board = self._board(handler)
        await board.move_card("card-9", "42")
        await board.close()

        assert seen["path"] == "/projects/columns/cards/card-9/moves"
        assert seen["body"] == {"position": "bottom", "column_id": 42}

    async def test_server_error_is_transient(self):
        board = self._board(lambda request: httpx.Response(503))
        with pytest.raises(ExternalServiceError) as exc:
            await board.get_column("1")
        await board.close()
        assert exc.value.code == "BOARD_SERVER_ERROR"
        assert exc.value.details["status_code"] == 503

    async def test_client_error_is_permanent(self):
        board = self._board(lambda request: httpx.Response(404))
        with pytest.raises(ValidationError) as exc:
            await board.get_column("1")
        await board.close()
        assert exc.value.code == "BOARD_REQUEST_REJECTED"

    async def test_connection_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        board = self._board(handler)
        with pytest.raises(ExternalServiceError) as exc:
            await board.get_columns("1")
        await board.close()
        assert exc.value.code == "BOARD_UNAVAILABLE"


class TestRetryQueue:
    def test_backoff_is_capped(self):
        assert backoff_delay(0) == timedelta(minutes=1)
        assert backoff_delay(3) == timedelta(minutes=8)
        assert backoff_delay(10) == timedelta(minutes=60)

    @pytest.fixture
    def queue(self, db_session, breaker):
        return SyncRetryQueue(db_session, breaker)

    @pytest.fixture
    def item(self, queue, team):
        return queue.enqueue(team.id, "task-1", "sync_state", {"state": "Ready"}, max_retries=2)

    def test_enqueued_item_waits(self, queue, item):
        assert queue.ready(now=utc_now()) == []
        later = utc_now() + timedelta(minutes=3)
        assert [i.id for i in queue.ready(now=later)] == [item.id]
        assert queue.status(now=later)["ready"] == 1

    async def test_success_removes_item(self, db_session, queue, item):
        calls = []

        async def executor(queued):
            calls.append(queued.id)

        stats = await queue.process(executor, now=utc_now() + timedelta(minutes=3))

        assert calls == [item.id]
        assert stats == {"processed": 1, "succeeded": 1, "retried": 0, "dropped": 0}
        assert db_session.query(SyncQueueItemModel).count() == 0

    async def test_transient_failure_reschedules(self, db_session, queue, item):
        async def executor(queued):
            raise ExternalServiceError(code="BOARD_UNAVAILABLE", message="down")

        later = utc_now() + timedelta(minutes=3)
        stats = await queue.process(executor, now=later)

        assert stats["retried"] == 1
        row = db_session.query(SyncQueueItemModel).one()
        assert row.retry_count == 1
        assert row.last_error == "down"
        assert queue.ready(now=later + timedelta(minutes=1)) == []

    async def test_dropped_after_max_retries(self, db_session, queue, item, breaker):
        async def executor(queued):
            raise ExternalServiceError(code="BOARD_UNAVAILABLE", message="down")

        now = utc_now() + timedelta(minutes=3)
        await queue.process(executor, now=now)
        breaker.reset()
        stats = await queue.process(executor, now=now + timedelta(hours=1))

        assert stats["dropped"] == 1
        assert db_session.query(SyncQueueItemModel).count() == 0

    async def test_permanent_rejection_dropped(self, db_session, queue, item):
        async def executor(queued):
            raise NotFoundError("Task", queued.task_id)

        stats = await queue.process(executor, now=utc_now() + timedelta(minutes=3))
        assert stats["dropped"] == 1
        assert stats["retried"] == 0

    async def test_open_circuit_skips_processing(self, queue, item, breaker):
        breaker.record_failure()
        breaker.record_failure()

        async def executor(queued):
            raise AssertionError("should not run")

        stats = await queue.process(executor, now=utc_now() + timedelta(minutes=3))
        assert stats["processed"] == 0


class TestOutboundSync:
    async def test_pushes_state_to_board(self, db_session, team, linked_task, reconciler, board):
        task = linked_task()
        result = await reconciler.sync_task_state(team.id, task.id)

        assert result == {"status": "synced", "column_id": "1"}
        assert board.moves == [("card-9", "1")]
        task = TaskService(db_session).require(team.id, task.id)
        assert task.external_column_id == "1"
        assert task.external_synced_at is not None

    async def test_already_in_column_not_moved(self, team, linked_task, reconciler, board):
        task = linked_task()
        await reconciler.sync_task_state(team.id, task.id)
        await reconciler.sync_task_state(team.id, task.id)
        assert len(board.moves) == 1

    async def test_unlinked_task_skipped(self, team, make_task, reconciler):
        result = await reconciler.sync_task_state(team.id, make_task().id)
        assert result == {"status": "skipped", "reason": "not_linked"}

    async def test_board_failure_queues(self, db_session, team, linked_task, reconciler, board, breaker):
        board.fail = True
        task = linked_task()

        result = await reconciler.sync_task_state(team.id, task.id)

        assert result == {"status": "queued", "reason": "BOARD_SERVER_ERROR"}
        assert breaker.failure_count == 1
        row = db_session.query(SyncQueueItemModel).one()
        assert row.task_id == task.id
        assert row.data == {"state": "Backlog"}

    async def test_open_circuit_queues_without_calling(
        self, db_session, team, linked_task, reconciler, board, breaker
    ):
        breaker.record_failure()
        breaker.record_failure()
        task = linked_task()

        result = await reconciler.sync_task_state(team.id, task.id)

        assert result["status"] == "queued"
        assert board.moves == []
        assert db_session.query(SyncQueueItemModel).count() == 1

    async def test_unknown_task_reported(self, team, reconciler):
        result = await reconciler.sync_task_state(team.id, "missing")
        assert result["status"] == "failed"
        assert result["error"]["code"] == "TASK_NOT_FOUND"

    async def test_queued_item_replayed(self, db_session, team, linked_task, reconciler, board):
        board.fail = True
        task = linked_task()
        await reconciler.sync_task_state(team.id, task.id)
        board.fail = False

        stats = await reconciler.queue.process(
            reconciler.execute_queued, now=utc_now() + timedelta(minutes=3)
        )

        assert stats["succeeded"] == 1
        assert board.moves == [("card-9", "1")]


class TestInboundMove:
    async def test_allowed_move_applied(self, db_session, team, linked_task, reconciler):
        task = linked_task()
        result = await reconciler.handle_external_move(team.id, task.id, "2")

        assert result == {"action": "applied", "state": "Ready"}
        task = TaskService(db_session).require(team.id, task.id)
        assert task.state == "Ready"
        assert task.external_column_id == "2"

        events = OutboxService(db_session).list(event_type=EventTypes.TASK_STATE_CHANGED)
        assert events[0].payload["actor_id"] == "board-sync"

    async def test_same_state_refreshes(self, team, linked_task, reconciler):
        task = linked_task()
        result = await reconciler.handle_external_move(team.id, task.id, "1")
        assert result == {"action": "refreshed", "state": "Backlog"}

    async def test_unmapped_column_ignored(self, team, linked_task, reconciler):
        task = linked_task()
        result = await reconciler.handle_external_move(team.id, task.id, 9)
        assert result == {"action": "ignored", "state": "Backlog"}

    async def test_review_without_reviewers_reverted(
        self, db_session, team, linked_task, move_to, reconciler, board
    ):
        task = move_to(linked_task(cook_value=30, reviewers=[RITA]), "In Progress")

        result = await reconciler.handle_external_move(team.id, task.id, "4")

        assert result["action"] == "reverted"
        assert result["state"] == "In Progress"
        assert result["reason"]["code"] == "INSUFFICIENT_REVIEWERS"
        assert board.moves == [("card-9", "3")]
        assert TaskService(db_session).require(team.id, task.id).state == "In Progress"

    async def test_skipped_state_blocked(self, db_session, team, linked_task, reconciler, board):
        task = linked_task()

        result = await reconciler.handle_external_move(team.id, task.id, "5")

        assert result["action"] == "blocked"
        assert result["state"] == "Backlog"
        task = TaskService(db_session).require(team.id, task.id)
        assert task.is_blocked is True
        assert task.unauthorized_movement["attempted_state"] == "Done"
        assert board.moves == []

        events = OutboxService(db_session).list(event_type=EventTypes.TASK_UNAUTHORIZED_MOVEMENT)
        assert events[0].payload["reviewers"] == [RITA]

    async def test_blocked_task_not_issued(
        self, db_session, team, linked_task, approve_task, reconciler
    ):
        task = linked_task()
        review = approve_task(task)

        result = await reconciler.handle_external_move(team.id, task.id, "1")
        assert result["action"] == "blocked"

        assert LedgerService(db_session).finalize_and_issue(team.id, review.id) is None
        assert LedgerService(db_session).list_entries(team.id) == []


class TestDesync:
    @pytest.fixture
    def drifted(self, db_session, linked_task, move_to):
        """A Ready task whose card still sits in Backlog."""
        task = move_to(linked_task(), "Ready")
        task.external_column_id = "1"
        db_session.commit()
        return task

    async def test_detects_difference(self, team, drifted, reconciler):
        report = await reconciler.detect_desync(team.id, drifted.id)

        assert report["is_desynced"] is True
        assert report["external_state"] == "Backlog"
        assert report["differences"] == [
            {"field": "state", "toolkit": "Ready", "external": "Backlog"}
        ]

    async def test_reconcile_pushes_canonical_state(self, team, drifted, reconciler, board):
        result = await reconciler.reconcile_desync(team.id, drifted.id)

        assert result["reconciled"] is True
        assert result["column_id"] == "2"
        assert board.moves == [("card-9", "2")]
        assert (await reconciler.detect_desync(team.id, drifted.id))["is_desynced"] is False

    async def test_in_sync_task_untouched(self, team, linked_task, reconciler, board):
        task = linked_task()
        await reconciler.sync_task_state(team.id, task.id)
        board.moves.clear()

        result = await reconciler.reconcile_desync(team.id, task.id)
        assert result["reconciled"] is False
        assert board.moves == []

    async def test_reconcile_failure_propagates(self, team, drifted, reconciler, board, breaker):
        board.fail = True
        with pytest.raises(ExternalServiceError):
            await reconciler.reconcile_desync(team.id, drifted.id)
