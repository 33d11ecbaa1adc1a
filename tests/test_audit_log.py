"""
Tests for the AuditLog model and service.

Verifies:
- AuditLogModel structure and to_dict()
- AuditService logging methods (create, update, status_change, link)
- AuditService query methods (by entity, team, actor)
- Core services leave an audit trail of their writes
"""

from datetime import datetime, timezone

from cooperation_toolkit.db.audit_models import AuditLogModel
from cooperation_toolkit.db.audit_service import AuditService
from cooperation_toolkit.tasks import TaskService

from .conftest import ADMIN, ALICE, STEWARD


class TestAuditLogModel:
    """Tests for AuditLogModel structure."""

    def test_model_has_required_columns(self):
        columns = {c.name for c in AuditLogModel.__table__.columns}
        required = {
            "id", "ts", "team_id", "actor_kind", "actor_id", "action",
            "entity_kind", "entity_id", "before", "after", "note", "trace_id",
        }
        assert required.issubset(columns)

    def test_to_dict_output(self):
        entry = AuditLogModel(
            id="audit-1",
            ts=datetime(2026, 1, 26, 12, 0, 0, tzinfo=timezone.utc),
            team_id="team-1",
            actor_kind="human",
            actor_id="user-1",
            action="created",
            entity_kind="Task",
            entity_id="task-1",
            before=None,
            after={"title": "Write docs"},
            note="Created via API",
            trace_id="trace-1",
        )

        result = entry.to_dict()

        assert result["ts"] == "2026-01-26T12:00:00+00:00"
        assert result["team_id"] == "team-1"
        assert result["action"] == "created"
        assert result["before"] is None
        assert result["after"] == {"title": "Write docs"}
        assert result["trace_id"] == "trace-1"


class TestAuditServiceLogging:
    """Tests for the AuditService log_* methods."""

    def test_log_create(self, db_session):
        entry = AuditService(db_session).log_create(
            entity_kind="Task",
            entity_id="task-1",
            after={"title": "Write docs"},
            actor_id="user-1",
            team_id="team-1",
        )

        assert entry.id is not None
        assert entry.ts is not None
        assert entry.action == "created"
        assert entry.actor_kind == "human"
        assert entry.before is None

    def test_log_update_keeps_snapshots(self, db_session):
        entry = AuditService(db_session).log_update(
            entity_kind="Task",
            entity_id="task-1",
            before={"title": "Old"},
            after={"title": "New"},
            actor_kind="system",
            actor_id="board-sync",
        )

        assert entry.action == "updated"
        assert entry.before == {"title": "Old"}
        assert entry.after == {"title": "New"}
        assert entry.actor_kind == "system"

    def test_log_status_change_default_note(self, db_session):
        entry = AuditService(db_session).log_status_change(
            entity_kind="Review",
            entity_id="review-1",
            old_status="pending",
            new_status="approved",
            actor_id="rita",
        )

        assert entry.action == "status_changed"
        assert entry.before == {"status": "pending"}
        assert entry.after == {"status": "approved"}
        assert entry.note == "Status changed: pending -> approved"

    def test_log_link(self, db_session):
        entry = AuditService(db_session).log_link(
            entity_kind="Task",
            entity_id="task-1",
            linked_kind="BoardCard",
            linked_id="card-9",
            actor_id="user-1",
        )

        assert entry.action == "linked"
        assert entry.after == {"linked_kind": "BoardCard", "linked_id": "card-9"}
        assert entry.note == "Linked to BoardCard:card-9"


class TestAuditServiceQueries:
    """Tests for the AuditService query methods."""

    def _seed(self, db_session):
        audit = AuditService(db_session)
        audit.log_create("Task", "task-1", {}, actor_id="user-1", team_id="team-1")
        audit.log_create("Task", "task-2", {}, actor_id="user-2", team_id="team-1")
        audit.log_create("Voting", "voting-1", {}, actor_id="user-1", team_id="team-2")
        return audit

    def test_query_by_entity(self, db_session):
        entries = self._seed(db_session).query_by_entity("Task", "task-1")
        assert [e.entity_id for e in entries] == ["task-1"]

    def test_query_by_team_with_kind(self, db_session):
        audit = self._seed(db_session)
        assert {e.entity_id for e in audit.query_by_team("team-1")} == {"task-1", "task-2"}
        assert audit.query_by_team("team-2", entity_kind="Task") == []

    def test_query_by_actor(self, db_session):
        entries = self._seed(db_session).query_by_actor("user-1")
        assert {e.entity_id for e in entries} == {"task-1", "voting-1"}

    def test_limit(self, db_session):
        assert len(self._seed(db_session).query_by_team("team-1", limit=1)) == 1


class TestServiceAuditTrail:
    """Core services record their writes."""

    def test_task_lifecycle_is_audited(self, db_session, team, make_task):
        task = make_task()
        TaskService(db_session).move(team.id, task.id, "Ready", actor_id=ALICE)

        entries = AuditService(db_session).query_by_entity("Task", task.id)
        actions = sorted((e.action, e.actor_id) for e in entries)
        assert actions == [("created", ADMIN), ("status_changed", ALICE)]

        moved = [e for e in entries if e.action == "status_changed"][0]
        assert moved.before == {"status": "Backlog"}
        assert moved.after == {"status": "Ready"}
        assert moved.team_id == team.id

    def test_cook_advance_is_audited(self, db_session, team, make_task, move_to):
        task = move_to(make_task(), "In Progress")

        entries = AuditService(db_session).query_by_entity("TaskCook", task.id)
        assert [(e.before, e.after) for e in entries] == [
            ({"status": "Draft"}, {"status": "Provisional"})
        ]
        assert entries[0].actor_id == STEWARD
