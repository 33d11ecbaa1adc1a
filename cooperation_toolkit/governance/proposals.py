"""
Governance proposals and COOK-weighted objection windows.

Policy changes and constitutional challenges always go to a vote. Every other
proposal opens an objection window: if the weighted sum of objections reaches
the threshold before the window closes, a voting is opened; otherwise the
proposal is adopted when the window closes.
"""

import logging
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..db.audit_service import AuditService
from ..db.models import GovernanceProposalModel, ProposalObjectionModel
from ..enums import ProposalStatus, ProposalType, Role
from ..errors import DuplicateObjection, NotFoundError, PermissionDeniedError, ValidationError
from ..events.outbox import emit_event
from ..events.types import EventTypes
from ..policy.permissions import has_role_at_least, require_role
from ..primitives import ensure_utc, generate_ulid, utc_now
from ..teams.services import TeamService
from .voting import VotingService
from .weight import GovernanceWeightService

logger = logging.getLogger(__name__)

VOTE_FIRST_TYPES = (
    ProposalType.POLICY_CHANGE.value,
    ProposalType.CONSTITUTIONAL_CHALLENGE.value,
)

PROPOSAL_OPTIONS = ["approve", "reject"]


class ProposalService:
    """Service for proposals, their objection windows and objections."""

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
        self.votings = VotingService(db, self.audit, self.teams)

    def get(self, team_id: str, proposal_id: str) -> Optional[GovernanceProposalModel]:
        return (
            self.db.query(GovernanceProposalModel)
            .filter(
                GovernanceProposalModel.id == proposal_id,
                GovernanceProposalModel.team_id == team_id,
            )
            .first()
        )

    def require(self, team_id: str, proposal_id: str) -> GovernanceProposalModel:
        proposal = self.get(team_id, proposal_id)
        if proposal is None:
            raise NotFoundError("GovernanceProposal", proposal_id, team_id)
        return proposal

    def list(
        self,
        team_id: str,
        status: Optional[str] = None,
        proposal_type: Optional[str] = None,
    ) -> List[GovernanceProposalModel]:
        query = self.db.query(GovernanceProposalModel).filter(
            GovernanceProposalModel.team_id == team_id
        )
        if status:
            query = query.filter(GovernanceProposalModel.status == status)
        if proposal_type:
            query = query.filter(GovernanceProposalModel.type == proposal_type)
        return query.order_by(GovernanceProposalModel.created_at.desc()).all()

    def list_objections(self, proposal_id: str) -> List[ProposalObjectionModel]:
        return (
            self.db.query(ProposalObjectionModel)
            .filter(ProposalObjectionModel.proposal_id == proposal_id)
            .order_by(ProposalObjectionModel.created_at, ProposalObjectionModel.id)
            .all()
        )

    def create(
        self,
        team_id: str,
        proposal_type: str,
        title: str,
        description: Optional[str],
        proposed_by: str,
        window_days: Optional[int] = None,
        threshold: Optional[float] = None,
        related_review_id: Optional[str] = None,
    ) -> GovernanceProposalModel:
        """Create a proposal and open its objection window or voting.

        Raises:
            ValidationError: unknown type, blank title, bad window or threshold
            PermissionDeniedError: proposer is not a team member
        """
        team = self.teams.require(team_id)
        self.teams.require_member(team_id, proposed_by)

        if proposal_type not in [t.value for t in ProposalType]:
            raise ValidationError(
                code="INVALID_PROPOSAL_TYPE",
                message=f"Unknown proposal type: {proposal_type}",
                proposal_type=proposal_type,
                allowed=[t.value for t in ProposalType],
            )
        if not (title or "").strip():
            raise ValidationError(code="TITLE_REQUIRED", message="Proposal title is required")
        if window_days is not None and window_days < 1:
            raise ValidationError(
                code="INVALID_OBJECTION_WINDOW",
                message="Objection window must be at least one day",
                window_days=window_days,
            )
        if threshold is not None and threshold < 0:
            raise ValidationError(
                code="INVALID_OBJECTION_THRESHOLD",
                message="Objection threshold cannot be negative",
                threshold=threshold,
            )

        now = utc_now()
        proposal = GovernanceProposalModel(
            id=generate_ulid(),
            team_id=team_id,
            type=proposal_type,
            title=title.strip(),
            description=description,
            proposed_by=proposed_by,
            objection_threshold=(
                threshold if threshold is not None else team.default_objection_threshold
            ),
            objection_weight=0.0,
            objection_count=0,
            related_review_id=related_review_id,
            created_at=now,
            updated_at=now,
        )

        if proposal_type in VOTE_FIRST_TYPES:
            proposal.status = ProposalStatus.VOTING_TRIGGERED.value
            self.db.add(proposal)
            voting = self.votings.create_voting(
                team_id,
                title=f"Vote: {proposal.title}",
                options=PROPOSAL_OPTIONS,
                created_by=proposed_by,
                proposal_id=proposal.id,
                description=description,
                constitutional=proposal_type == ProposalType.CONSTITUTIONAL_CHALLENGE.value,
                commit=False,
            )
            proposal.voting_id = voting.id
        else:
            days = window_days or team.default_objection_window_days
            proposal.status = ProposalStatus.OBJECTION_WINDOW_OPEN.value
            proposal.objection_window_days = days
            proposal.objection_window_closes_at = now + timedelta(days=days)
            self.db.add(proposal)

        emit_event(
            self.db,
            team_id,
            EventTypes.PROPOSAL_CREATED,
            {
                "proposal_id": proposal.id,
                "type": proposal_type,
                "title": proposal.title,
                "proposed_by": proposed_by,
                "status": proposal.status,
                "voting_id": proposal.voting_id,
            },
        )
        self.db.commit()
        self.db.refresh(proposal)

        logger.info(f"Created {proposal_type} proposal {proposal.id} ({proposal.status})")
        self.audit.log_create(
            entity_kind="GovernanceProposal",
            entity_id=proposal.id,
            after=proposal.to_dict(),
            actor_id=proposed_by,
            team_id=team_id,
        )
        return proposal

    def add_objection(
        self,
        team_id: str,
        proposal_id: str,
        objector_id: str,
        reason: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> GovernanceProposalModel:
        """Record a weight-stamped objection; may trigger a voting.

        The cumulative weight is incremented in the database and the
        threshold compare-and-set is a single conditional UPDATE, so
        concurrent objectors trigger at most one voting.
        """
        proposal = self.require(team_id, proposal_id)
        now = now or utc_now()

        if proposal.status != ProposalStatus.OBJECTION_WINDOW_OPEN.value:
            raise ValidationError(
                code="OBJECTION_WINDOW_NOT_OPEN",
                message=f"Proposal is {proposal.status}",
                proposal_id=proposal.id,
                status=proposal.status,
            )
        if proposal.objection_window_closes_at and now >= ensure_utc(
            proposal.objection_window_closes_at
        ):
            raise ValidationError(
                code="OBJECTION_WINDOW_EXPIRED",
                message="The objection window has closed",
                proposal_id=proposal.id,
                closes_at=proposal.to_dict()["objection_window_closes_at"],
            )
        self.teams.require_member(team_id, objector_id)

        already = (
            self.db.query(ProposalObjectionModel.id)
            .filter(
                ProposalObjectionModel.proposal_id == proposal.id,
                ProposalObjectionModel.objector_id == objector_id,
            )
            .first()
        )
        if already is not None:
            raise self._duplicate(proposal.id, objector_id)

        weight = self.weights.recompute(team_id, objector_id, now).weight

        objection = ProposalObjectionModel(
            id=generate_ulid(),
            proposal_id=proposal.id,
            objector_id=objector_id,
            reason=reason,
            weight=weight,
            created_at=now,
        )
        self.db.add(objection)
        try:
            self.db.flush()
        except IntegrityError:
            self.db.rollback()
            raise self._duplicate(proposal.id, objector_id)

        self.db.execute(
            update(GovernanceProposalModel)
            .where(GovernanceProposalModel.id == proposal.id)
            .values(
                objection_weight=GovernanceProposalModel.objection_weight + weight,
                objection_count=GovernanceProposalModel.objection_count + 1,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        result = self.db.execute(
            update(GovernanceProposalModel)
            .where(
                GovernanceProposalModel.id == proposal.id,
                GovernanceProposalModel.status == ProposalStatus.OBJECTION_WINDOW_OPEN.value,
                GovernanceProposalModel.objection_weight
                >= GovernanceProposalModel.objection_threshold,
            )
            .values(status=ProposalStatus.VOTING_TRIGGERED.value)
            .execution_options(synchronize_session=False)
        )
        triggered = result.rowcount == 1

        if triggered:
            voting = self.votings.create_voting(
                team_id,
                title=f"Vote: {proposal.title}",
                options=PROPOSAL_OPTIONS,
                created_by=objector_id,
                proposal_id=proposal.id,
                description=proposal.description,
                commit=False,
            )
            self.db.execute(
                update(GovernanceProposalModel)
                .where(GovernanceProposalModel.id == proposal.id)
                .values(voting_id=voting.id)
                .execution_options(synchronize_session=False)
            )

        self.db.commit()
        self.db.refresh(proposal)

        logger.info(
            f"Objection by {objector_id} on proposal {proposal.id} "
            f"(weight={weight}, total={proposal.objection_weight}, "
            f"threshold={proposal.objection_threshold})"
        )
        self.audit.log_create(
            entity_kind="ProposalObjection",
            entity_id=objection.id,
            after=objection.to_dict(),
            actor_id=objector_id,
            team_id=team_id,
        )
        if triggered:
            logger.info(f"Proposal {proposal.id} reached its objection threshold; voting opened")
            self.audit.log_status_change(
                entity_kind="GovernanceProposal",
                entity_id=proposal.id,
                old_status=ProposalStatus.OBJECTION_WINDOW_OPEN.value,
                new_status=ProposalStatus.VOTING_TRIGGERED.value,
                actor_kind="system",
                actor_id="governance",
                team_id=team_id,
                note=f"Objection weight {proposal.objection_weight} >= {proposal.objection_threshold}",
            )
        return proposal

    @staticmethod
    def _duplicate(proposal_id: str, objector_id: str) -> DuplicateObjection:
        return DuplicateObjection(
            code="DUPLICATE_OBJECTION",
            message=f"'{objector_id}' has already objected to this proposal",
            proposal_id=proposal_id,
            objector_id=objector_id,
        )

    def close_objection_window(
        self,
        team_id: str,
        proposal_id: str,
        now: Optional[datetime] = None,
        force: bool = False,
        actor_id: Optional[str] = None,
    ) -> GovernanceProposalModel:
        """Adopt a proposal whose objection window ended without a vote.

        ``force`` closes the window early and needs a Steward when an actor
        is given.
        """
        proposal = self.require(team_id, proposal_id)
        now = now or utc_now()

        if proposal.status != ProposalStatus.OBJECTION_WINDOW_OPEN.value:
            raise ValidationError(
                code="OBJECTION_WINDOW_NOT_OPEN",
                message=f"Proposal is {proposal.status}",
                proposal_id=proposal.id,
                status=proposal.status,
            )
        expired = proposal.objection_window_closes_at is not None and now >= ensure_utc(
            proposal.objection_window_closes_at
        )
        if not expired:
            if not force:
                raise ValidationError(
                    code="OBJECTION_WINDOW_STILL_OPEN",
                    message="The objection window has not ended",
                    proposal_id=proposal.id,
                )
            if actor_id is not None:
                member = self.teams.require_member(team_id, actor_id)
                require_role(member.role, Role.STEWARD, "close an objection window early", actor_id)

        # Loses to a concurrent objection that triggered a voting.
        result = self.db.execute(
            update(GovernanceProposalModel)
            .where(
                GovernanceProposalModel.id == proposal.id,
                GovernanceProposalModel.status == ProposalStatus.OBJECTION_WINDOW_OPEN.value,
            )
            .values(status=ProposalStatus.APPROVED.value, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        self.db.refresh(proposal)
        if result.rowcount != 1:
            raise ValidationError(
                code="OBJECTION_WINDOW_NOT_OPEN",
                message=f"Proposal is {proposal.status}",
                proposal_id=proposal.id,
                status=proposal.status,
            )

        logger.info(f"Proposal {proposal.id} adopted after its objection window")
        self.audit.log_status_change(
            entity_kind="GovernanceProposal",
            entity_id=proposal.id,
            old_status=ProposalStatus.OBJECTION_WINDOW_OPEN.value,
            new_status=ProposalStatus.APPROVED.value,
            actor_kind="human" if actor_id else "system",
            actor_id=actor_id or "governance",
            team_id=team_id,
            note="Forced close" if force and not expired else "Objection window expired",
        )
        return proposal

    def close_expired_windows(
        self, team_id: str, now: Optional[datetime] = None
    ) -> List[GovernanceProposalModel]:
        now = now or utc_now()
        closed = []
        for proposal in self.list(team_id, status=ProposalStatus.OBJECTION_WINDOW_OPEN.value):
            closes_at = proposal.objection_window_closes_at
            if closes_at is not None and now >= ensure_utc(closes_at):
                try:
                    closed.append(self.close_objection_window(team_id, proposal.id, now))
                except ValidationError as e:
                    logger.info(f"Skipped closing proposal {proposal.id}: {e.code}")
        return closed

    def withdraw(self, team_id: str, proposal_id: str, actor_id: str) -> GovernanceProposalModel:
        """Withdraw a draft or open proposal. Proposer or Steward only."""
        proposal = self.require(team_id, proposal_id)
        member = self.teams.require_member(team_id, actor_id)

        if actor_id != proposal.proposed_by and not has_role_at_least(member.role, Role.STEWARD):
            raise PermissionDeniedError(
                code="NOT_PROPOSER",
                message="Only the proposer or a Steward can withdraw a proposal",
                proposal_id=proposal.id,
                actor_id=actor_id,
            )
        if proposal.status not in (
            ProposalStatus.DRAFT.value,
            ProposalStatus.OBJECTION_WINDOW_OPEN.value,
        ):
            raise ValidationError(
                code="PROPOSAL_NOT_WITHDRAWABLE",
                message=f"A {proposal.status} proposal cannot be withdrawn",
                proposal_id=proposal.id,
                status=proposal.status,
            )

        old_status = proposal.status
        proposal.status = ProposalStatus.WITHDRAWN.value
        proposal.updated_at = utc_now()
        self.db.commit()
        self.db.refresh(proposal)

        logger.info(f"Proposal {proposal.id} withdrawn by {actor_id}")
        self.audit.log_status_change(
            entity_kind="GovernanceProposal",
            entity_id=proposal.id,
            old_status=old_status,
            new_status=proposal.status,
            actor_id=actor_id,
            team_id=team_id,
        )
        return proposal
