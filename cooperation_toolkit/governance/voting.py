"""
COOK-weighted voting.

A vote carries the voter's weight at cast time; tallies only ever sum those
snapshots. The winner is the option with the largest weighted sum, ties go to
the lexically smallest option, and a voting with no weighted support has no
winner.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..db.audit_service import AuditService
from ..db.models import GovernanceProposalModel, VoteModel, VotingModel
from ..enums import ProposalStatus, ProposalType, Role, VotingStatus
from ..errors import AlreadyVoted, NotFoundError, ValidationError
from ..events.outbox import emit_event
from ..events.types import EventTypes
from ..policy.permissions import require_role
from ..primitives import ensure_utc, generate_ulid, utc_now
from ..teams.services import TeamService
from .changes import ChangeService
from .weight import GovernanceWeightService

logger = logging.getLogger(__name__)

APPROVE_OPTIONS = ("approve", "yes")


def tally(options: Iterable[str], votes: Iterable[Any]) -> Dict[str, Any]:
    """Sum snapshot weights per option.

    Returns ``{"results": {option: {vote_count, weighted_vote_count,
    percentage}}, "total_weight": float, "winning_option": Optional[str]}``.
    """
    options = list(options)
    results = {
        option: {"vote_count": 0, "weighted_vote_count": 0.0, "percentage": 0.0}
        for option in options
    }
    for vote in votes:
        bucket = results.get(vote.option)
        if bucket is None:
            continue
        bucket["vote_count"] += 1
        bucket["weighted_vote_count"] += vote.weight or 0.0

    total_weight = sum(r["weighted_vote_count"] for r in results.values())
    if total_weight > 0:
        for r in results.values():
            r["percentage"] = r["weighted_vote_count"] / total_weight * 100

    winner = None
    if total_weight > 0:
        best = max(r["weighted_vote_count"] for r in results.values())
        winner = min(o for o, r in results.items() if r["weighted_vote_count"] == best)

    return {"results": results, "total_weight": total_weight, "winning_option": winner}


def _normalize_options(options: List[str]) -> List[str]:
    cleaned = [(o or "").strip() for o in options or []]
    if any(not o for o in cleaned):
        raise ValidationError(code="INVALID_OPTIONS", message="Voting options cannot be blank")
    if len(cleaned) < 2:
        raise ValidationError(
            code="INVALID_OPTIONS",
            message="A voting needs at least two options",
            options=cleaned,
        )
    if len(set(cleaned)) != len(cleaned):
        raise ValidationError(
            code="INVALID_OPTIONS",
            message="Voting options must be distinct",
            options=cleaned,
        )
    return cleaned


class VotingService:
    """Service for votings, votes and proposal resolution on close."""

    def __init__(
        self,
        db: Session,
        audit: Optional[AuditService] = None,
        teams: Optional[TeamService] = None,
    ):
        self.db = db
        self.audit = audit or AuditService(db)
        self.teams = teams or TeamService(db, self.audit)
        self.weights = GovernanceWeightService(db)

    def get(self, team_id: str, voting_id: str) -> Optional[VotingModel]:
        return (
            self.db.query(VotingModel)
            .filter(VotingModel.id == voting_id, VotingModel.team_id == team_id)
            .first()
        )

    def require(self, team_id: str, voting_id: str) -> VotingModel:
        voting = self.get(team_id, voting_id)
        if voting is None:
            raise NotFoundError("Voting", voting_id, team_id)
        return voting

    def list(self, team_id: str, status: Optional[str] = None) -> List[VotingModel]:
        query = self.db.query(VotingModel).filter(VotingModel.team_id == team_id)
        if status:
            query = query.filter(VotingModel.status == status)
        return query.order_by(VotingModel.created_at.desc()).all()

    def list_votes(self, voting_id: str) -> List[VoteModel]:
        return (
            self.db.query(VoteModel)
            .filter(VoteModel.voting_id == voting_id)
            .order_by(VoteModel.cast_at, VoteModel.id)
            .all()
        )

    def create_voting(
        self,
        team_id: str,
        title: str,
        options: List[str],
        created_by: str,
        proposal_id: Optional[str] = None,
        period_days: Optional[int] = None,
        description: Optional[str] = None,
        constitutional: bool = False,
        commit: bool = True,
    ) -> VotingModel:
        """Open a voting.

        The period defaults to the team's voting period, or its
        constitutional voting period for constitutional challenges.
        """
        team = self.teams.require(team_id)
        options = _normalize_options(options)
        if period_days is not None and period_days < 1:
            raise ValidationError(
                code="INVALID_VOTING_PERIOD",
                message="Voting period must be at least one day",
                period_days=period_days,
            )
        if period_days is None:
            period_days = (
                team.constitutional_voting_period_days
                if constitutional
                else team.default_voting_period_days
            )

        now = utc_now()
        voting = VotingModel(
            id=generate_ulid(),
            team_id=team_id,
            proposal_id=proposal_id,
            title=title,
            description=description,
            options=options,
            status=VotingStatus.OPEN.value,
            voting_period_days=period_days,
            closes_at=now + timedelta(days=period_days),
            created_by=created_by,
            created_at=now,
        )
        self.db.add(voting)
        emit_event(
            self.db,
            team_id,
            EventTypes.VOTING_STARTED,
            {"voting_id": voting.id, "proposal_id": proposal_id, "title": title},
        )
        if not commit:
            return voting

        self.db.commit()
        self.db.refresh(voting)
        self.audit.log_create(
            entity_kind="Voting",
            entity_id=voting.id,
            after=voting.to_dict(),
            actor_id=created_by,
            team_id=team_id,
        )
        return voting

    def open_voting(
        self,
        team_id: str,
        title: str,
        options: List[str],
        created_by: str,
        period_days: Optional[int] = None,
        description: Optional[str] = None,
    ) -> VotingModel:
        """Member-initiated standalone voting."""
        self.teams.require_member(team_id, created_by)
        return self.create_voting(
            team_id,
            title,
            options,
            created_by,
            period_days=period_days,
            description=description,
        )

    def cast_vote(
        self,
        team_id: str,
        voting_id: str,
        voter_id: str,
        option: str,
        now: Optional[datetime] = None,
    ) -> VoteModel:
        """Cast one weight-stamped vote."""
        voting = self.require(team_id, voting_id)
        now = now or utc_now()

        if voting.status != VotingStatus.OPEN.value:
            raise ValidationError(
                code="VOTING_NOT_OPEN",
                message=f"Voting is {voting.status}",
                voting_id=voting.id,
                status=voting.status,
            )
        if now >= ensure_utc(voting.closes_at):
            raise ValidationError(
                code="VOTING_CLOSED",
                message="The voting period has ended",
                voting_id=voting.id,
                closes_at=voting.to_dict()["closes_at"],
            )
        if option not in (voting.options or []):
            raise ValidationError(
                code="INVALID_OPTION",
                message=f'"{option}" is not an option of this voting',
                option=option,
                options=list(voting.options or []),
            )
        self.teams.require_member(team_id, voter_id)

        existing = (
            self.db.query(VoteModel.id)
            .filter(VoteModel.voting_id == voting.id, VoteModel.voter_id == voter_id)
            .first()
        )
        if existing is not None:
            raise AlreadyVoted(voting.id, voter_id)

        weight = self.weights.recompute(team_id, voter_id, now).weight
        vote = VoteModel(
            id=generate_ulid(),
            voting_id=voting.id,
            voter_id=voter_id,
            option=option,
            weight=weight,
            cast_at=now,
        )
        self.db.add(vote)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise AlreadyVoted(voting.id, voter_id)
        self.db.refresh(vote)

        logger.info(f"Vote by {voter_id} on {voting.id}: {option} (weight={weight})")
        self.audit.log_create(
            entity_kind="Vote",
            entity_id=vote.id,
            after=vote.to_dict(),
            actor_id=voter_id,
            team_id=team_id,
        )
        return vote

    def close_voting(
        self,
        team_id: str,
        voting_id: str,
        now: Optional[datetime] = None,
        actor_id: Optional[str] = None,
    ) -> VotingModel:
        """Close, tally and complete a voting; resolve its proposal if any.

        Closing before ``closes_at`` needs a Steward.
        """
        voting = self.require(team_id, voting_id)
        now = now or utc_now()

        if voting.status != VotingStatus.OPEN.value:
            raise ValidationError(
                code="VOTING_NOT_OPEN",
                message=f"Voting is already {voting.status}",
                voting_id=voting.id,
                status=voting.status,
            )
        if now < ensure_utc(voting.closes_at):
            if actor_id is None:
                raise ValidationError(
                    code="VOTING_STILL_OPEN",
                    message="The voting period has not ended",
                    voting_id=voting.id,
                )
            member = self.teams.require_member(team_id, actor_id)
            require_role(member.role, Role.STEWARD, "close a voting early", actor_id)

        claimed = self.db.execute(
            update(VotingModel)
            .where(
                VotingModel.id == voting.id,
                VotingModel.status == VotingStatus.OPEN.value,
            )
            .values(status=VotingStatus.CLOSED.value, closed_at=now)
            .execution_options(synchronize_session=False)
        )
        if claimed.rowcount != 1:
            self.db.rollback()
            raise ValidationError(
                code="VOTING_NOT_OPEN",
                message="Voting was closed concurrently",
                voting_id=voting_id,
            )
        self.db.refresh(voting)

        result = tally(voting.options or [], self.list_votes(voting.id))
        voting.results = result["results"]
        voting.total_weight = result["total_weight"]
        voting.winning_option = result["winning_option"]
        voting.status = VotingStatus.COMPLETED.value

        proposal = None
        if voting.proposal_id:
            proposal = self._resolve_proposal(voting)

        self.db.commit()
        self.db.refresh(voting)

        logger.info(
            f"Voting {voting.id} completed: winner={voting.winning_option} "
            f"total_weight={voting.total_weight}"
        )
        self.audit.log_status_change(
            entity_kind="Voting",
            entity_id=voting.id,
            old_status=VotingStatus.OPEN.value,
            new_status=voting.status,
            actor_kind="human" if actor_id else "system",
            actor_id=actor_id or "governance",
            team_id=team_id,
            note=f"Winner: {voting.winning_option}",
        )
        if proposal is not None:
            self.audit.log_status_change(
                entity_kind="GovernanceProposal",
                entity_id=proposal.id,
                old_status=ProposalStatus.VOTING_TRIGGERED.value,
                new_status=proposal.status,
                actor_kind="system",
                actor_id="governance",
                team_id=team_id,
            )
        return voting

    def _resolve_proposal(self, voting: VotingModel) -> Optional[GovernanceProposalModel]:
        proposal = (
            self.db.query(GovernanceProposalModel)
            .filter(GovernanceProposalModel.id == voting.proposal_id)
            .first()
        )
        if proposal is None or proposal.status != ProposalStatus.VOTING_TRIGGERED.value:
            return None

        winner = voting.winning_option
        approved = winner is not None and winner.lower() in APPROVE_OPTIONS
        percentage = (
            voting.results.get(winner, {}).get("percentage") if winner is not None else None
        )

        if approved and proposal.type == ProposalType.CONSTITUTIONAL_CHALLENGE.value:
            team = self.teams.require(proposal.team_id)
            approved = (percentage or 0.0) >= team.constitutional_approval_threshold

        proposal.status = (
            ProposalStatus.APPROVED.value if approved else ProposalStatus.REJECTED.value
        )
        proposal.updated_at = utc_now()

        if approved and proposal.type == ProposalType.POLICY_CHANGE.value:
            ChangeService(self.db).record("policy", proposal, voting.id, percentage)
        elif approved and proposal.type == ProposalType.CONSTITUTIONAL_CHALLENGE.value:
            ChangeService(self.db).record("constitutional", proposal, voting.id, percentage)

        logger.info(f"Proposal {proposal.id} {proposal.status} by voting {voting.id}")
        return proposal

    def close_expired_votings(
        self, team_id: str, now: Optional[datetime] = None
    ) -> List[VotingModel]:
        """Close every open voting in the team whose period has ended."""
        now = now or utc_now()
        closed = []
        for voting in self.list(team_id, status=VotingStatus.OPEN.value):
            if now >= ensure_utc(voting.closes_at):
                closed.append(self.close_voting(team_id, voting.id, now))
        return closed

