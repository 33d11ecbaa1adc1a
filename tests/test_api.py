"""API-level tests for the team, task, review, ledger and governance endpoints."""

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from cooperation_toolkit.api import app
from cooperation_toolkit.db.base import get_db
from cooperation_toolkit.sync.routes import get_board_adapter

from .conftest import ADMIN, ALICE, OUTSIDER, RITA, STEWARD, FakeBoard


def as_user(user_id: str) -> dict:
    return {"X-Actor-Id": user_id}


@pytest.fixture
def board():
    return FakeBoard()


@pytest.fixture
def client(engine, board):
    """Test client bound to the per-test in-memory database."""
    TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    def override_get_db():
        db = TestSessionLocal()
        try:
            yield db
        finally:
            db.close()

    async def override_board():
        yield board

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_board_adapter] = override_board
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def team_id(client):
    response = client.post("/teams", json={"name": "API Team"}, headers=as_user(ADMIN))
    assert response.status_code == 201
    team_id = response.json()["team"]["id"]

    for user_id, role in [(STEWARD, "Steward"), (ALICE, "Contributor"), (RITA, "Reviewer")]:
        response = client.post(
            f"/teams/{team_id}/members",
            json={"user_id": user_id, "role": role},
            headers=as_user(ADMIN),
        )
        assert response.status_code == 201
    return team_id


@pytest.fixture
def task_id(client, team_id):
    response = client.post(
        f"/teams/{team_id}/tasks",
        json={
            "title": "Document the release process",
            "contributors": [ALICE],
            "reviewers": [RITA],
            "cook_value": 8,
        },
        headers=as_user(ALICE),
    )
    assert response.status_code == 201
    return response.json()["task"]["id"]


def move(client, team_id, task_id, state, user_id=STEWARD):
    return client.post(
        f"/teams/{team_id}/tasks/{task_id}/move",
        json={"to_state": state},
        headers=as_user(user_id),
    )


class TestSystemEndpoints:
    def test_health(self, client):
        assert client.get("/health").json() == {"status": "ok"}
        assert client.get("/healthz").json() == {"status": "ok"}

    def test_version(self, client):
        assert "version" in client.get("/version").json()


class TestTeamEndpoints:
    def test_creator_is_admin(self, client, team_id):
        members = client.get(f"/teams/{team_id}/members", headers=as_user(ADMIN)).json()
        roles = {m["user_id"]: m["role"] for m in members}
        assert roles[ADMIN] == "Admin"
        assert roles[ALICE] == "Contributor"

    def test_missing_actor_header(self, client):
        response = client.post("/teams", json={"name": "Anonymous"})
        assert response.status_code == 403
        assert response.json()["code"] == "UNAUTHENTICATED"

    @pytest.mark.parametrize(
        "method, path",
        [("get", "/events"), ("post", "/events/process"), ("post", "/events/requeue")],
    )
    def test_outbox_endpoints_require_actor(self, client, method, path):
        response = getattr(client, method)(path)
        assert response.status_code == 403
        assert response.json()["code"] == "UNAUTHENTICATED"

    def test_requeue_with_actor(self, client):
        response = client.post("/events/requeue", headers=as_user(STEWARD))
        assert response.status_code == 200
        assert response.json() == {"status": "success", "requeued": 0}

    def test_outsider_cannot_read_team(self, client, team_id):
        response = client.get(f"/teams/{team_id}", headers=as_user(OUTSIDER))
        assert response.status_code == 403
        assert response.json()["code"] == "NOT_TEAM_MEMBER"

    def test_unknown_team(self, client):
        response = client.get("/teams/missing", headers=as_user(ADMIN))
        assert response.status_code == 404
        assert response.json()["error"] == "not_found"

    def test_schema_validation(self, client):
        response = client.post("/teams", json={"name": ""}, headers=as_user(ADMIN))
        assert response.status_code == 422

    def test_list_my_teams(self, client, team_id):
        teams = client.get("/teams", headers=as_user(ALICE)).json()
        assert [t["id"] for t in teams] == [team_id]


class TestTaskEndpoints:
    def test_move_through_lifecycle(self, client, team_id, task_id):
        for state in ("Ready", "In Progress"):
            assert move(client, team_id, task_id, state).status_code == 200

        task = client.get(f"/teams/{team_id}/tasks/{task_id}", headers=as_user(ALICE)).json()
        assert task["state"] == "In Progress"
        assert task["cook_state"] == "Provisional"

    def test_invalid_transition_error_body(self, client, team_id, task_id):
        response = move(client, team_id, task_id, "Done")

        assert response.status_code == 409
        body = response.json()
        assert set(body) == {"error", "code", "message", "details"}
        assert body["error"] == "invalid_transition"
        assert body["details"]["allowed_next_states"] == ["Ready"]

    def test_unknown_state_rejected_by_schema(self, client, team_id, task_id):
        assert move(client, team_id, task_id, "Shipped").status_code == 422

    def test_assign_cook(self, client, team_id, task_id):
        response = client.post(
            f"/teams/{team_id}/tasks/{task_id}/cook",
            json={"cook_value": 12, "attribution": "spend"},
            headers=as_user(ALICE),
        )
        assert response.status_code == 200
        assert response.json()["task"]["cook_value"] == 12

    def test_list_filters_by_state(self, client, team_id, task_id):
        move(client, team_id, task_id, "Ready")
        ready = client.get(
            f"/teams/{team_id}/tasks", params={"state": "Ready"}, headers=as_user(ALICE)
        ).json()
        assert [t["id"] for t in ready] == [task_id]


class TestReviewAndIssuance:
    def _to_review(self, client, team_id, task_id):
        for state in ("Ready", "In Progress", "Review"):
            assert move(client, team_id, task_id, state).status_code == 200
        reviews = client.get(f"/teams/{team_id}/reviews", headers=as_user(RITA)).json()
        return reviews[0]["id"]

    def test_approval_issues_cook_after_dispatch(self, client, team_id, task_id):
        review_id = self._to_review(client, team_id, task_id)

        response = client.post(
            f"/teams/{team_id}/reviews/{review_id}/approve", headers=as_user(RITA)
        )
        assert response.status_code == 200
        assert response.json()["review"]["status"] == "approved"

        for _ in range(3):
            response = client.post("/events/process", headers=as_user(STEWARD))
            assert response.json()["status"] == "success"

        entries = client.get(f"/teams/{team_id}/ledger/entries", headers=as_user(ALICE)).json()
        assert [(e["contributor_id"], e["cook_value"]) for e in entries] == [(ALICE, 8.0)]

        weight = client.get(
            f"/teams/{team_id}/governance/weights/{ALICE}", headers=as_user(ALICE)
        ).json()
        assert weight["weight"] == 8.0

        chain = client.get(
            f"/teams/{team_id}/attestations/chains/{ALICE}/verify", headers=as_user(ALICE)
        ).json()
        assert chain["valid"] is True
        assert chain["length"] == 1

        pending = client.get("/events", params={"status": "pending"}, headers=as_user(STEWARD))
        assert pending.json() == []

    def test_unassigned_reviewer_rejected(self, client, team_id, task_id):
        review_id = self._to_review(client, team_id, task_id)
        response = client.post(
            f"/teams/{team_id}/reviews/{review_id}/approve", headers=as_user(ALICE)
        )
        assert response.status_code == 403

    def test_objection(self, client, team_id, task_id):
        review_id = self._to_review(client, team_id, task_id)
        response = client.post(
            f"/teams/{team_id}/reviews/{review_id}/objections",
            json={"reason": "Missing the rollback section"},
            headers=as_user(RITA),
        )
        assert response.status_code == 200
        assert response.json()["review"]["status"] == "objected"


class TestGovernanceEndpoints:
    def test_policy_proposal_opens_voting(self, client, team_id):
        response = client.post(
            f"/teams/{team_id}/governance/proposals",
            json={"type": "policy_change", "title": "Cap COOK at 500"},
            headers=as_user(ALICE),
        )
        assert response.status_code == 201
        proposal = response.json()["proposal"]
        assert proposal["status"] == "voting_triggered"

        voting_id = proposal["voting_id"]
        response = client.post(
            f"/teams/{team_id}/governance/votings/{voting_id}/votes",
            json={"option": "approve"},
            headers=as_user(ALICE),
        )
        assert response.status_code == 201

        response = client.post(
            f"/teams/{team_id}/governance/votings/{voting_id}/votes",
            json={"option": "approve"},
            headers=as_user(ALICE),
        )
        assert response.status_code == 409

    def test_early_close_requires_steward(self, client, team_id):
        response = client.post(
            f"/teams/{team_id}/governance/votings",
            json={"title": "Retro format", "options": ["async", "live"]},
            headers=as_user(ALICE),
        )
        voting_id = response.json()["voting"]["id"]

        denied = client.post(
            f"/teams/{team_id}/governance/votings/{voting_id}/close", headers=as_user(ALICE)
        )
        assert denied.status_code == 403

        closed = client.post(
            f"/teams/{team_id}/governance/votings/{voting_id}/close", headers=as_user(STEWARD)
        )
        assert closed.json()["voting"]["status"] == "completed"

    def test_change_history_empty(self, client, team_id):
        changes = client.get(f"/teams/{team_id}/governance/changes", headers=as_user(ALICE)).json()
        assert changes["policy"] == []
        assert changes["latest_policy_version"] is None


class TestCommitteeEndpoints:
    @pytest.fixture
    def seated(self, team, make_task, issue_task):
        issue_task(make_task(contributors=[ALICE], cook_value=6))
        return team

    def test_select_and_verify(self, client, seated):
        base = f"/teams/{seated.id}/governance"
        eligibility = client.get(f"{base}/committees/eligibility", headers=as_user(ALICE)).json()
        assert [(e["contributor_id"], e["is_eligible"]) for e in eligibility] == [(ALICE, True)]

        response = client.post(
            f"{base}/committees",
            json={"committee_name": "Audit", "number_of_seats": 1, "seed": "retro"},
            headers=as_user(STEWARD),
        )
        assert response.status_code == 201
        committee = response.json()["committee"]
        assert committee["selected_members"] == [ALICE]
        assert committee["lottery_seed"] == "retro"

        detail = client.get(f"{base}/committees/{committee['id']}", headers=as_user(ALICE)).json()
        assert [t["contributor_id"] for t in detail["service_terms"]] == [ALICE]

        verified = client.get(
            f"{base}/committees/{committee['id']}/verify", headers=as_user(ALICE)
        ).json()
        assert verified["valid"] is True

        listed = client.get(f"{base}/committees", headers=as_user(ALICE)).json()
        assert [c["id"] for c in listed] == [committee["id"]]

    def test_contributor_cannot_select(self, client, seated):
        response = client.post(
            f"/teams/{seated.id}/governance/committees",
            json={"committee_name": "Audit", "number_of_seats": 1},
            headers=as_user(ALICE),
        )
        assert response.status_code == 403

    def test_seat_count_validated(self, client, seated):
        response = client.post(
            f"/teams/{seated.id}/governance/committees",
            json={"committee_name": "Audit", "number_of_seats": 0},
            headers=as_user(STEWARD),
        )
        assert response.status_code == 422

    def test_end_service_term(self, client, seated):
        base = f"/teams/{seated.id}/governance"
        client.post(
            f"{base}/committees",
            json={"committee_name": "Audit", "number_of_seats": 1},
            headers=as_user(STEWARD),
        )
        terms = client.get(
            f"{base}/service-terms", params={"status": "active"}, headers=as_user(ALICE)
        ).json()
        assert len(terms) == 1

        response = client.post(
            f"{base}/service-terms/{terms[0]['id']}/end",
            json={"status": "completed"},
            headers=as_user(ALICE),
        )
        assert response.status_code == 200
        assert response.json()["service_term"]["status"] == "completed"

        again = client.post(
            f"{base}/service-terms/{terms[0]['id']}/end", json={}, headers=as_user(ALICE)
        )
        assert again.status_code == 422
        assert again.json()["code"] == "SERVICE_TERM_NOT_ACTIVE"


class TestSyncEndpoints:
    def test_external_move_blocks_skipped_state(self, client, team_id, task_id):
        client.post(
            f"/teams/{team_id}/tasks/{task_id}/external",
            json={"external_project_id": "proj-1", "external_item_id": "card-9"},
            headers=as_user(ALICE),
        )

        response = client.post(
            f"/teams/{team_id}/sync/tasks/{task_id}/external-move", json={"column_id": "5"}
        )

        assert response.status_code == 200
        assert response.json()["action"] == "blocked"
        task = client.get(f"/teams/{team_id}/tasks/{task_id}", headers=as_user(ALICE)).json()
        assert task["unauthorized_movement"]["attempted_state"] == "Done"

        cleared = client.post(
            f"/teams/{team_id}/tasks/{task_id}/clear-flag",
            json={"note": "confirmed with the team"},
            headers=as_user(STEWARD),
        )
        assert cleared.json()["task"]["unauthorized_movement"]["blocked"] is False

    def test_queue_status(self, client, team_id):
        status = client.get(f"/teams/{team_id}/sync/queue", headers=as_user(ALICE)).json()
        assert status["total"] == 0
