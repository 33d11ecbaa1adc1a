"""Tests for committee eligibility, the weighted lottery and service terms."""

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest

from cooperation_toolkit.errors import NotFoundError, PermissionDeniedError, ValidationError
from cooperation_toolkit.events import EventTypes, OutboxService
from cooperation_toolkit.governance import (
    CommitteeService,
    EligibilityResult,
    LotteryResult,
    ProposalService,
    check_eligibility,
    select_members,
    verify_selection,
)
from cooperation_toolkit.governance.committees import months_before, seeded_random
from cooperation_toolkit.primitives import utc_now
from cooperation_toolkit.schemas.teams import TeamUpdate
from cooperation_toolkit.teams import TeamService

from .conftest import ADMIN, ALICE, BOB, STEWARD


def candidate(contributor_id, cook):
    return EligibilityResult(contributor_id, True, cook, cook, 6)


def entry(cook, issued_at):
    return SimpleNamespace(cook_value=cook, issued_at=issued_at)


@pytest.fixture
def earn(make_task, issue_task):
    def _earn(contributor_id, cook):
        issue_task(make_task(contributors=[contributor_id], cook_value=cook))

    return _earn


@pytest.fixture
def contributors(earn):
    """alice holds 6 active COOK, bob 4."""
    earn(ALICE, 6)
    earn(BOB, 4)


def update_team(db_session, team, **changes):
    TeamService(db_session).update(team.id, TeamUpdate(**changes), actor_id=ADMIN)


class TestActiveCook:
    NOW = datetime(2026, 10, 19, tzinfo=timezone.utc)

    @pytest.mark.parametrize(
        "moment, months, expected",
        [
            (datetime(2026, 10, 19), 6, datetime(2026, 4, 19)),
            (datetime(2026, 3, 15), 6, datetime(2025, 9, 15)),
            (datetime(2026, 8, 31), 6, datetime(2026, 2, 28)),
        ],
    )
    def test_months_before(self, moment, months, expected):
        assert months_before(moment, months) == expected

    def test_only_recent_cook_counts(self):
        entries = [
            entry(5, self.NOW - timedelta(days=10)),
            entry(20, datetime(2026, 1, 1, tzinfo=timezone.utc)),
        ]
        result = check_eligibility(ALICE, entries, 6, now=self.NOW)
        assert result.active_cook == 5
        assert result.total_cook == 25
        assert result.is_eligible is True

    def test_zero_window_counts_everything(self):
        entries = [entry(20, datetime(2020, 1, 1, tzinfo=timezone.utc))]
        assert check_eligibility(ALICE, entries, 0, now=self.NOW).active_cook == 20

    def test_no_recent_cook_is_ineligible(self):
        entries = [entry(20, datetime(2025, 1, 1, tzinfo=timezone.utc))]
        result = check_eligibility(ALICE, entries, 6, now=self.NOW)
        assert result.is_eligible is False
        assert result.exclusion_reasons == [
            "Insufficient active COOK in recent 6 months (0.00 COOK)"
        ]

    def test_exclusions_follow_cook_reason(self):
        result = check_eligibility(
            ALICE, [entry(5, self.NOW)], 6, exclusions=["Currently serving on: Audit"],
            now=self.NOW,
        )
        assert result.is_eligible is False
        assert result.exclusion_reasons == ["Currently serving on: Audit"]


class TestLottery:
    def test_seeded_random_is_reproducible(self):
        assert seeded_random("", 0) == 1013904223 / 2 ** 32
        assert seeded_random("retro", 3) == seeded_random("retro", 3)
        assert 0 <= seeded_random("retro", 7) < 1

    def test_string_seed_hash(self):
        # "ab" hashes to (97 * 31) + 98
        assert seeded_random("ab", 0) == seeded_random("", 3105)
        assert seeded_random("ab", 2) == seeded_random("", 3107)

    def test_draw_lands_in_cumulative_range(self):
        # seeded_random("ab", 0) is about 0.4394
        heavy_alice = [candidate(ALICE, 3), candidate(BOB, 1)]
        heavy_bob = [candidate(ALICE, 1), candidate(BOB, 3)]
        assert select_members(heavy_alice, 1, "ab").selected_members == [ALICE]
        assert select_members(heavy_bob, 1, "ab").selected_members == [BOB]

    def test_selection_details(self):
        result = select_members([candidate(ALICE, 3), candidate(BOB, 1)], 1, "ab")

        assert result.lottery_seed == "ab"
        assert result.total_weight == 4
        alice, bob = result.selection_details
        assert alice["cumulative_weight"] == 3
        assert bob["cumulative_weight"] == 4
        assert alice["selected"] is True
        assert alice["random_value"] == pytest.approx(4 * seeded_random("ab", 0))
        assert bob["selected"] is False
        assert bob["random_value"] == 0.0

    def test_members_drawn_without_replacement(self):
        eligible = [candidate(c, w) for c, w in [("a", 1), ("b", 2), ("c", 3), ("d", 4)]]
        result = select_members(eligible, 4, "retro")
        assert sorted(result.selected_members) == ["a", "b", "c", "d"]

    def test_same_seed_same_committee(self):
        eligible = [candidate(c, w) for c, w in [("a", 1), ("b", 2), ("c", 3), ("d", 4)]]
        assert (
            select_members(eligible, 2, "retro").selected_members
            == select_members(eligible, 2, "retro").selected_members
        )

    def test_seed_defaults_to_timestamp(self):
        now = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)
        result = select_members([candidate(ALICE, 1)], 1, now=now)
        assert result.lottery_seed == result.selection_timestamp
        assert result.lottery_seed.startswith("2026-10-19T12:00:00")

    @pytest.mark.parametrize(
        "eligible, seats, code",
        [
            ([], 1, "NO_ELIGIBLE_MEMBERS"),
            ([candidate(ALICE, 1)], 0, "INVALID_SEAT_COUNT"),
            ([candidate(ALICE, 1)], 2, "NOT_ENOUGH_ELIGIBLE_MEMBERS"),
            ([candidate(ALICE, 0)], 1, "ZERO_TOTAL_WEIGHT"),
        ],
    )
    def test_rejected_draws(self, eligible, seats, code):
        with pytest.raises(ValidationError) as exc:
            select_members(eligible, seats, "retro")
        assert exc.value.code == code


class TestVerifySelection:
    @pytest.fixture
    def eligible(self):
        return [candidate(ALICE, 3), candidate(BOB, 1)]

    def test_honest_result_verifies(self, eligible):
        assert verify_selection(select_members(eligible, 1, "ab"), eligible) == []

    def test_swapped_member_fails_replay(self, eligible):
        result = select_members(eligible, 1, "ab")
        result.selected_members = [BOB]
        assert verify_selection(result, eligible) == ["replay_mismatch"]

    def test_problems_reported(self, eligible):
        result = LotteryResult(
            selected_members=["mallory", "mallory"],
            selection_details=[],
            lottery_seed="ab",
            total_weight=10,
            selection_timestamp="2026-10-19T00:00:00Z",
        )
        problems = verify_selection(result, eligible)
        assert "not_eligible" in problems
        assert "duplicate_member" in problems
        assert "weight_mismatch" in problems
        assert "replay_mismatch" in problems


class TestEligibility:
    def test_contributors_with_ledger_history(self, db_session, team, contributors):
        results = CommitteeService(db_session).eligibility(team.id)

        assert [(r.contributor_id, r.active_cook, r.is_eligible) for r in results] == [
            (ALICE, 6.0, True),
            (BOB, 4.0, True),
        ]
        assert all(r.window_months == 6 for r in results)

    def test_minimum_active_cook(self, db_session, team, contributors):
        update_team(db_session, team, committee_minimum_active_cook=5)

        service = CommitteeService(db_session)
        assert [r.contributor_id for r in service.eligible_members(team.id)] == [ALICE]
        bob = service.eligibility(team.id)[1]
        assert bob.exclusion_reasons == ["Insufficient active COOK in recent 6 months (4.00 COOK)"]

    def test_proposal_parties_excluded(self, db_session, team, contributors):
        proposals = ProposalService(db_session)
        proposal = proposals.create(
            team.id, "binding_decision", "Move standup", None, proposed_by=BOB, threshold=100
        )
        proposals.add_objection(team.id, proposal.id, ALICE)

        exclusions = CommitteeService(db_session).exclusions(team.id)
        assert exclusions == {
            ALICE: ["Under proposal review: Move standup"],
            BOB: ["Under proposal review: Move standup"],
        }
        assert CommitteeService(db_session).eligible_members(team.id) == []

    def test_closed_proposal_no_longer_excludes(self, db_session, team, contributors):
        proposals = ProposalService(db_session)
        proposal = proposals.create(
            team.id, "binding_decision", "Move standup", None, proposed_by=BOB
        )
        proposals.withdraw(team.id, proposal.id, BOB)
        assert CommitteeService(db_session).exclusions(team.id) == {}

    def test_unknown_team(self, db_session):
        with pytest.raises(NotFoundError):
            CommitteeService(db_session).eligibility("missing")


class TestSelectCommittee:
    def test_steward_seats_committee(self, db_session, team, contributors):
        committee = CommitteeService(db_session).select(team.id, "Audit", 1, STEWARD, seed="ab")

        # 0.4394 * 10 falls in alice's range [0, 6]
        assert committee.selected_members == [ALICE]
        assert committee.committee_name == "Audit"
        assert committee.number_of_seats == 1
        assert committee.lottery_seed == "ab"
        assert committee.total_weight == 10.0
        assert [m["contributor_id"] for m in committee.eligible_members] == [ALICE, BOB]
        assert committee.created_by == STEWARD

        terms = CommitteeService(db_session).list_service_terms(team.id, committee_id=committee.id)
        assert [(t.contributor_id, t.status, t.end_date) for t in terms] == [
            (ALICE, "active", None)
        ]

        events = OutboxService(db_session).list(event_type=EventTypes.COMMITTEE_SELECTED)
        assert events[0].payload["committee_id"] == committee.id
        assert events[0].payload["selected_members"] == [ALICE]

    def test_contributor_cannot_select(self, db_session, team, contributors):
        with pytest.raises(PermissionDeniedError) as exc:
            CommitteeService(db_session).select(team.id, "Audit", 1, ALICE)
        assert exc.value.code == "INSUFFICIENT_ROLE"

    def test_blank_name(self, db_session, team, contributors):
        with pytest.raises(ValidationError) as exc:
            CommitteeService(db_session).select(team.id, "  ", 1, STEWARD)
        assert exc.value.code == "COMMITTEE_NAME_REQUIRED"

    def test_no_ledger_history(self, db_session, team):
        with pytest.raises(ValidationError) as exc:
            CommitteeService(db_session).select(team.id, "Audit", 1, STEWARD)
        assert exc.value.code == "NO_ELIGIBLE_MEMBERS"

    def test_serving_members_excluded(self, db_session, team, contributors):
        service = CommitteeService(db_session)
        service.select(team.id, "Audit", 1, STEWARD, seed="ab")

        alice = service.eligibility(team.id)[0]
        assert alice.exclusion_reasons == ["Currently serving on: Audit"]
        with pytest.raises(ValidationError) as exc:
            service.select(team.id, "Budget", 2, STEWARD)
        assert exc.value.code == "NOT_ENOUGH_ELIGIBLE_MEMBERS"

        budget = service.select(team.id, "Budget", 1, STEWARD)
        assert budget.selected_members == [BOB]

    def test_stored_committee_verifies(self, db_session, team, contributors):
        service = CommitteeService(db_session)
        committee = service.select(team.id, "Audit", 2, STEWARD, seed="retro")
        assert service.verify(team.id, committee.id) == {
            "committee_id": committee.id,
            "valid": True,
            "problems": [],
        }

    def test_tampered_committee_fails_verification(self, db_session, team, contributors):
        service = CommitteeService(db_session)
        committee = service.select(team.id, "Audit", 1, STEWARD, seed="ab")
        committee.selected_members = [BOB]
        db_session.commit()

        result = service.verify(team.id, committee.id)
        assert result["valid"] is False
        assert result["problems"] == ["replay_mismatch"]

    def test_list_and_get(self, db_session, team, contributors):
        service = CommitteeService(db_session)
        committee = service.select(team.id, "Audit", 1, STEWARD, seed="ab")
        assert [c.id for c in service.list(team.id)] == [committee.id]
        with pytest.raises(NotFoundError):
            service.require(team.id, "missing")


class TestServiceTerms:
    @pytest.fixture
    def term(self, db_session, team, contributors):
        service = CommitteeService(db_session)
        committee = service.select(team.id, "Audit", 1, STEWARD, seed="ab")
        return service.list_service_terms(team.id, committee_id=committee.id)[0]

    def test_member_steps_down(self, db_session, team, term):
        end = utc_now() + timedelta(days=1, hours=1)
        ended = CommitteeService(db_session).end_service_term(
            team.id, term.id, ALICE, end_date=end
        )
        assert ended.status == "completed"
        assert ended.duration_days == 2
        assert ended.end_date is not None

    def test_steward_terminates(self, db_session, team, term):
        ended = CommitteeService(db_session).end_service_term(
            team.id, term.id, STEWARD, status="terminated"
        )
        assert ended.status == "terminated"
        assert ended.duration_days in (0, 1)

    def test_other_member_cannot_end(self, db_session, team, term):
        with pytest.raises(PermissionDeniedError):
            CommitteeService(db_session).end_service_term(team.id, term.id, BOB)

    def test_end_once(self, db_session, team, term):
        service = CommitteeService(db_session)
        service.end_service_term(team.id, term.id, ALICE)
        with pytest.raises(ValidationError) as exc:
            service.end_service_term(team.id, term.id, ALICE)
        assert exc.value.code == "SERVICE_TERM_NOT_ACTIVE"

    def test_invalid_status(self, db_session, team, term):
        with pytest.raises(ValidationError) as exc:
            CommitteeService(db_session).end_service_term(team.id, term.id, ALICE, status="active")
        assert exc.value.code == "INVALID_SERVICE_TERM_STATUS"

    def test_ended_term_frees_member(self, db_session, team, term):
        service = CommitteeService(db_session)
        service.end_service_term(team.id, term.id, ALICE)
        assert ALICE not in service.exclusions(team.id)

    def test_cooling_off_period(self, db_session, team, term):
        update_team(db_session, team, committee_cooling_off_period_days=30)
        service = CommitteeService(db_session)
        service.end_service_term(team.id, term.id, ALICE)

        assert service.exclusions(team.id) == {
            ALICE: ["In cooling-off period (30 days) after serving on: Audit"]
        }
        later = utc_now() + timedelta(days=31)
        assert service.exclusions(team.id, now=later) == {}
