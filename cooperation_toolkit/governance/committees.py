"""
Committee selection by COOK-weighted lottery.

Eligibility counts only COOK issued within the team's recent window. Members
already serving on a committee, still cooling off after a term, or party to a
proposal whose objection window is open are excluded. Seats are drawn without
replacement with probability proportional to active COOK; the draw is seeded,
so anyone holding the stored eligibility list and seed can replay it.

Selection is governance by workflow: no vote is held.
"""

import calendar
import logging
import math
from collections import defaultdict
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence

from sqlalchemy import update
from sqlalchemy.orm import Session

from ..db.audit_service import AuditService
from ..db.models import (
    CommitteeModel,
    GovernanceProposalModel,
    LedgerEntryModel,
    ProposalObjectionModel,
    ServiceTermModel,
)
from ..enums import ProposalStatus, Role, ServiceTermStatus
from ..errors import NotFoundError, PermissionDeniedError, ValidationError
from ..events.outbox import emit_event
from ..events.types import EventTypes
from ..policy.permissions import has_role_at_least, require_role
from ..primitives import ensure_utc, generate_ulid, isoformat_utc, utc_now
from ..teams.services import TeamService

logger = logging.getLogger(__name__)

# Numerical Recipes LCG
LCG_MULTIPLIER = 1664525
LCG_INCREMENT = 1013904223
LCG_MODULUS = 2 ** 32

WEIGHT_TOLERANCE = 0.0001
SECONDS_PER_DAY = 86400


def months_before(moment: datetime, months: int) -> datetime:
    """The same day ``months`` earlier, clamped to the end of shorter months."""
    index = moment.year * 12 + (moment.month - 1) - months
    year, month = divmod(index, 12)
    month += 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def active_cook(entries: Iterable, window_months: int, now: Optional[datetime] = None) -> float:
    """COOK issued within the last ``window_months``; a window of 0 counts everything."""
    entries = list(entries)
    if window_months <= 0:
        return sum(e.cook_value for e in entries)
    start = months_before(ensure_utc(now) or utc_now(), window_months)
    return sum(e.cook_value for e in entries if ensure_utc(e.issued_at) >= start)


@dataclass
class EligibilityResult:
    contributor_id: str
    is_eligible: bool
    active_cook: float
    total_cook: float
    window_months: int
    exclusion_reasons: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def check_eligibility(
    contributor_id: str,
    entries: Iterable,
    window_months: int,
    exclusions: Sequence[str] = (),
    minimum_active_cook: float = 0.0,
    now: Optional[datetime] = None,
) -> EligibilityResult:
    """Eligible when active COOK exceeds the minimum and nothing excludes them."""
    entries = list(entries)
    active = active_cook(entries, window_months, now)
    reasons = []
    if active <= minimum_active_cook:
        reasons.append(
            f"Insufficient active COOK in recent {window_months} months ({active:.2f} COOK)"
        )
    reasons.extend(exclusions)
    return EligibilityResult(
        contributor_id=contributor_id,
        is_eligible=not reasons,
        active_cook=active,
        total_cook=sum(e.cook_value for e in entries),
        window_months=window_months,
        exclusion_reasons=reasons,
    )


def seeded_random(seed: str, index: int = 0) -> float:
    """Deterministic value in [0, 1) for the ``index``-th draw of ``seed``."""
    value = 0
    for char in seed:
        value = ((value << 5) - value + ord(char)) & 0xFFFFFFFF
    if value >= 0x80000000:
        value -= 0x100000000
    seed_num = abs(value) + index
    return ((LCG_MULTIPLIER * seed_num + LCG_INCREMENT) % LCG_MODULUS) / LCG_MODULUS


@dataclass
class LotteryResult:
    selected_members: List[str]
    selection_details: List[Dict[str, Any]]
    lottery_seed: str
    total_weight: float
    selection_timestamp: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def select_members(
    eligible: Sequence[EligibilityResult],
    seats: int,
    seed: Optional[str] = None,
    now: Optional[datetime] = None,
) -> LotteryResult:
    """Draw ``seats`` members without replacement, weighted by active COOK.

    Each seat draws ``seeded_random(seed, seat) * remaining_weight`` and takes
    the first remaining member whose running weight reaches it. The seed
    defaults to the selection timestamp.

    Raises:
        ValidationError: no eligible members, bad seat count, or zero weight
    """
    if not eligible:
        raise ValidationError(
            code="NO_ELIGIBLE_MEMBERS",
            message="No eligible members for committee selection",
        )
    if seats <= 0:
        raise ValidationError(
            code="INVALID_SEAT_COUNT",
            message="Number of seats must be positive",
            number_of_seats=seats,
        )
    if seats > len(eligible):
        raise ValidationError(
            code="NOT_ENOUGH_ELIGIBLE_MEMBERS",
            message=f"Cannot select {seats} members from {len(eligible)} eligible members",
            number_of_seats=seats,
            eligible=len(eligible),
        )

    timestamp = isoformat_utc(ensure_utc(now) or utc_now())
    lottery_seed = seed or timestamp
    total_weight = sum(m.active_cook for m in eligible)
    if total_weight <= 0:
        raise ValidationError(
            code="ZERO_TOTAL_WEIGHT",
            message="Total active COOK is zero; cannot perform weighted selection",
        )

    details = []
    cumulative = 0.0
    for member in eligible:
        cumulative += member.active_cook
        details.append(
            {
                "contributor_id": member.contributor_id,
                "active_cook": member.active_cook,
                "weight": member.active_cook,
                "cumulative_weight": cumulative,
                "random_value": 0.0,
                "selected": False,
            }
        )
    by_id = {d["contributor_id"]: d for d in details}

    available = list(eligible)
    selected = []
    for seat in range(seats):
        draw = seeded_random(lottery_seed, seat)
        remaining = sum(m.active_cook for m in available)
        if remaining <= 0:
            random_value = draw
            index = int(draw * len(available))
        else:
            random_value = draw * remaining
            index = len(available) - 1
            running = 0.0
            for i, member in enumerate(available):
                running += member.active_cook
                if random_value <= running:
                    index = i
                    break

        chosen = available.pop(index)
        selected.append(chosen.contributor_id)
        by_id[chosen.contributor_id]["random_value"] = random_value
        by_id[chosen.contributor_id]["selected"] = True

    return LotteryResult(
        selected_members=selected,
        selection_details=details,
        lottery_seed=lottery_seed,
        total_weight=total_weight,
        selection_timestamp=timestamp,
    )


def verify_selection(result: LotteryResult, eligible: Sequence[EligibilityResult]) -> List[str]:
    """Problems with a lottery result; an empty list means it checks out.

    Besides eligibility, uniqueness and total weight, the draw is replayed
    from the stored seed and must pick the same members in the same order.
    """
    problems = []
    eligible_ids = {m.contributor_id for m in eligible}
    if any(member_id not in eligible_ids for member_id in result.selected_members):
        problems.append("not_eligible")
    if len(set(result.selected_members)) != len(result.selected_members):
        problems.append("duplicate_member")
    expected_weight = sum(m.active_cook for m in eligible)
    if abs(expected_weight - result.total_weight) > WEIGHT_TOLERANCE:
        problems.append("weight_mismatch")

    try:
        replay = select_members(eligible, len(result.selected_members), result.lottery_seed)
    except ValidationError:
        problems.append("replay_failed")
    else:
        if replay.selected_members != list(result.selected_members):
            problems.append("replay_mismatch")
    return problems


class CommitteeService:
    """Service for committee eligibility, selection and service terms."""

    def __init__(
        self,
        db: Session,
        audit: Optional[AuditService] = None,
        teams: Optional[TeamService] = None,
    ):
        self.db = db
        self.audit = audit or AuditService(db)
        self.teams = teams or TeamService(db, self.audit)

    # Eligibility

    def exclusions(self, team_id: str, now: Optional[datetime] = None) -> Dict[str, List[str]]:
        """Exclusion reasons per contributor, in a stable order."""
        team = self.teams.require(team_id)
        now = ensure_utc(now) or utc_now()
        cooling_off_days = team.committee_cooling_off_period_days or 0

        serving: Dict[str, List[str]] = defaultdict(list)
        cooling: Dict[str, List[str]] = defaultdict(list)
        for term in self.list_service_terms(team_id):
            if term.status == ServiceTermStatus.ACTIVE.value:
                serving[term.contributor_id].append(term.committee_name)
            elif cooling_off_days > 0 and term.end_date is not None:
                days_since_end = (now - ensure_utc(term.end_date)).days
                if 0 <= days_since_end < cooling_off_days:
                    cooling[term.contributor_id].append(term.committee_name)

        reasons: Dict[str, List[str]] = defaultdict(list)
        for contributor_id in sorted(set(serving) | set(cooling)):
            if contributor_id in serving:
                reasons[contributor_id].append(
                    f"Currently serving on: {', '.join(serving[contributor_id])}"
                )
            if contributor_id in cooling:
                reasons[contributor_id].append(
                    f"In cooling-off period ({cooling_off_days} days) after serving on: "
                    f"{', '.join(cooling[contributor_id])}"
                )

        open_proposals = (
            self.db.query(GovernanceProposalModel)
            .filter(
                GovernanceProposalModel.team_id == team_id,
                GovernanceProposalModel.status == ProposalStatus.OBJECTION_WINDOW_OPEN.value,
            )
            .order_by(GovernanceProposalModel.created_at, GovernanceProposalModel.id)
            .all()
        )
        for proposal in open_proposals:
            objectors = (
                self.db.query(ProposalObjectionModel.objector_id)
                .filter(ProposalObjectionModel.proposal_id == proposal.id)
                .all()
            )
            parties = {proposal.proposed_by} | {row[0] for row in objectors}
            for contributor_id in sorted(parties):
                reasons[contributor_id].append(f"Under proposal review: {proposal.title}")
        return dict(reasons)

    def eligibility(self, team_id: str, now: Optional[datetime] = None) -> List[EligibilityResult]:
        """Eligibility of every contributor with ledger history, by contributor id."""
        team = self.teams.require(team_id)
        now = ensure_utc(now) or utc_now()
        exclusions = self.exclusions(team_id, now)
        members = {m.user_id for m in self.teams.list_members(team_id)}

        entries: Dict[str, List[LedgerEntryModel]] = defaultdict(list)
        for entry in self.db.query(LedgerEntryModel).filter(LedgerEntryModel.team_id == team_id):
            entries[entry.contributor_id].append(entry)

        results = []
        for contributor_id in sorted(entries):
            reasons = list(exclusions.get(contributor_id, []))
            if contributor_id not in members:
                reasons.append("No longer a team member")
            results.append(
                check_eligibility(
                    contributor_id,
                    entries[contributor_id],
                    team.committee_eligibility_window_months,
                    reasons,
                    team.committee_minimum_active_cook or 0.0,
                    now,
                )
            )

        eligible = sum(1 for r in results if r.is_eligible)
        logger.info(
            f"Committee eligibility for {team_id}: {eligible} of {len(results)} eligible "
            f"(window={team.committee_eligibility_window_months} months)"
        )
        return results

    def eligible_members(
        self, team_id: str, now: Optional[datetime] = None
    ) -> List[EligibilityResult]:
        return [r for r in self.eligibility(team_id, now) if r.is_eligible]

    # Committees

    def select(
        self,
        team_id: str,
        committee_name: str,
        number_of_seats: int,
        actor_id: str,
        seed: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> CommitteeModel:
        """Seat a committee by weighted lottery and start its service terms.

        Raises:
            PermissionDeniedError: caller is not a Steward
            ValidationError: blank name, too few eligible members, or a
                lottery result that fails verification
        """
        member = self.teams.require_member(team_id, actor_id)
        require_role(member.role, Role.STEWARD, "select a committee", actor_id)
        if not (committee_name or "").strip():
            raise ValidationError(
                code="COMMITTEE_NAME_REQUIRED", message="Committee name is required"
            )

        now = ensure_utc(now) or utc_now()
        eligible = self.eligible_members(team_id, now)
        result = select_members(eligible, number_of_seats, seed, now)
        problems = verify_selection(result, eligible)
        if problems:
            raise ValidationError(
                code="LOTTERY_VERIFICATION_FAILED",
                message="Lottery result verification failed",
                problems=problems,
            )

        committee = CommitteeModel(
            id=generate_ulid(),
            team_id=team_id,
            committee_name=committee_name.strip(),
            number_of_seats=number_of_seats,
            selected_members=result.selected_members,
            eligible_members=[m.to_dict() for m in eligible],
            lottery_seed=result.lottery_seed,
            total_weight=result.total_weight,
            selection_details=result.selection_details,
            created_by=actor_id,
            created_at=now,
        )
        self.db.add(committee)
        for contributor_id in result.selected_members:
            self.db.add(
                ServiceTermModel(
                    id=generate_ulid(),
                    team_id=team_id,
                    committee_id=committee.id,
                    committee_name=committee.committee_name,
                    contributor_id=contributor_id,
                    start_date=now,
                    status=ServiceTermStatus.ACTIVE.value,
                    created_at=now,
                    updated_at=now,
                )
            )
        emit_event(
            self.db,
            team_id,
            EventTypes.COMMITTEE_SELECTED,
            {
                "committee_id": committee.id,
                "committee_name": committee.committee_name,
                "number_of_seats": number_of_seats,
                "selected_members": result.selected_members,
                "lottery_seed": result.lottery_seed,
            },
        )
        self.db.commit()
        self.db.refresh(committee)

        logger.info(
            f"Committee {committee.id} ({committee.committee_name}) selected by {actor_id}: "
            f"{len(result.selected_members)} of {len(eligible)} eligible, "
            f"seed={result.lottery_seed!r}, total_weight={result.total_weight}"
        )
        self.audit.log_create(
            entity_kind="Committee",
            entity_id=committee.id,
            after=committee.to_dict(),
            actor_id=actor_id,
            team_id=team_id,
            note="Seated by COOK-weighted lottery",
        )
        return committee

    def get(self, team_id: str, committee_id: str) -> Optional[CommitteeModel]:
        return (
            self.db.query(CommitteeModel)
            .filter(CommitteeModel.id == committee_id, CommitteeModel.team_id == team_id)
            .first()
        )

    def require(self, team_id: str, committee_id: str) -> CommitteeModel:
        committee = self.get(team_id, committee_id)
        if committee is None:
            raise NotFoundError("Committee", committee_id, team_id)
        return committee

    def list(self, team_id: str) -> List[CommitteeModel]:
        return (
            self.db.query(CommitteeModel)
            .filter(CommitteeModel.team_id == team_id)
            .order_by(CommitteeModel.created_at.desc(), CommitteeModel.id.desc())
            .all()
        )

    def verify(self, team_id: str, committee_id: str) -> Dict[str, Any]:
        """Re-check a stored selection against its own eligibility snapshot."""
        committee = self.require(team_id, committee_id)
        eligible = [EligibilityResult(**m) for m in committee.eligible_members or []]
        result = LotteryResult(
            selected_members=list(committee.selected_members or []),
            selection_details=list(committee.selection_details or []),
            lottery_seed=committee.lottery_seed,
            total_weight=committee.total_weight,
            selection_timestamp=isoformat_utc(committee.created_at),
        )
        problems = verify_selection(result, eligible)
        return {"committee_id": committee.id, "valid": not problems, "problems": problems}

    # Service terms

    def list_service_terms(
        self,
        team_id: str,
        contributor_id: Optional[str] = None,
        committee_id: Optional[str] = None,
        status: Optional[str] = None,
    ) -> List[ServiceTermModel]:
        query = self.db.query(ServiceTermModel).filter(ServiceTermModel.team_id == team_id)
        if contributor_id:
            query = query.filter(ServiceTermModel.contributor_id == contributor_id)
        if committee_id:
            query = query.filter(ServiceTermModel.committee_id == committee_id)
        if status:
            query = query.filter(ServiceTermModel.status == status)
        return query.order_by(ServiceTermModel.start_date, ServiceTermModel.id).all()

    def require_service_term(self, team_id: str, term_id: str) -> ServiceTermModel:
        term = (
            self.db.query(ServiceTermModel)
            .filter(ServiceTermModel.id == term_id, ServiceTermModel.team_id == team_id)
            .first()
        )
        if term is None:
            raise NotFoundError("ServiceTerm", term_id, team_id)
        return term

    def end_service_term(
        self,
        team_id: str,
        term_id: str,
        actor_id: str,
        status: str = ServiceTermStatus.COMPLETED.value,
        end_date: Optional[datetime] = None,
    ) -> ServiceTermModel:
        """End an active term. The member may step down; a Steward may end any term.

        ``duration_days`` is the elapsed time rounded up to whole days.
        """
        term = self.require_service_term(team_id, term_id)
        member = self.teams.require_member(team_id, actor_id)
        if actor_id != term.contributor_id and not has_role_at_least(member.role, Role.STEWARD):
            raise PermissionDeniedError(
                code="INSUFFICIENT_ROLE",
                message="Only the member serving or a Steward can end a service term",
                actor_id=actor_id,
                service_term_id=term.id,
            )
        if status not in (ServiceTermStatus.COMPLETED.value, ServiceTermStatus.TERMINATED.value):
            raise ValidationError(
                code="INVALID_SERVICE_TERM_STATUS",
                message=f"A service term ends as completed or terminated, not {status}",
                status=status,
            )
        if term.status != ServiceTermStatus.ACTIVE.value:
            raise ValidationError(
                code="SERVICE_TERM_NOT_ACTIVE",
                message=f"Service term is already {term.status}",
                service_term_id=term.id,
                status=term.status,
            )

        now = utc_now()
        end = ensure_utc(end_date) or now
        elapsed = abs((end - ensure_utc(term.start_date)).total_seconds())
        duration_days = math.ceil(elapsed / SECONDS_PER_DAY)

        result = self.db.execute(
            update(ServiceTermModel)
            .where(
                ServiceTermModel.id == term.id,
                ServiceTermModel.status == ServiceTermStatus.ACTIVE.value,
            )
            .values(end_date=end, duration_days=duration_days, status=status, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        if result.rowcount == 0:
            self.db.refresh(term)
            raise ValidationError(
                code="SERVICE_TERM_NOT_ACTIVE",
                message=f"Service term is already {term.status}",
                service_term_id=term.id,
                status=term.status,
            )
        self.db.refresh(term)

        logger.info(
            f"Service term {term.id} of {term.contributor_id} on {term.committee_name} "
            f"{status} after {duration_days} day(s)"
        )
        self.audit.log_status_change(
            entity_kind="ServiceTerm",
            entity_id=term.id,
            old_status=ServiceTermStatus.ACTIVE.value,
            new_status=status,
            actor_id=actor_id,
            team_id=team_id,
        )
        return term
