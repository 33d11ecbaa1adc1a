"""
Team and membership service.

Every other service resolves the caller's role through ``require_member``;
there is no ambient "current team".
"""

import logging
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..config import get_settings
from ..db.audit_service import AuditService
from ..db.models import MembershipModel, TeamModel
from ..enums import Role
from ..errors import NotFoundError, PermissionDeniedError, ValidationError
from ..policy.permissions import has_role_at_least, require_role
from ..primitives import generate_ulid, utc_now
from ..schemas.teams import TeamCreate, TeamUpdate

logger = logging.getLogger(__name__)


class TeamService:
    """Service for managing teams and their members."""

    def __init__(self, db: Session, audit: Optional[AuditService] = None):
        self.db = db
        self.audit = audit or AuditService(db)

    def create(self, team: TeamCreate, created_by: str) -> TeamModel:
        """Create a team and make ``created_by`` its Admin."""
        settings = get_settings()
        now = utc_now()

        def pick(value, default):
            return default if value is None else value

        db_team = TeamModel(
            id=generate_ulid(),
            name=team.name,
            description=team.description,
            cook_cap=team.cook_cap,
            cook_decay_rate=team.cook_decay_rate,
            default_objection_window_days=pick(
                team.default_objection_window_days, settings.default_objection_window_days
            ),
            default_objection_threshold=pick(
                team.default_objection_threshold, settings.default_objection_threshold
            ),
            default_voting_period_days=pick(
                team.default_voting_period_days, settings.default_voting_period_days
            ),
            constitutional_voting_period_days=pick(
                team.constitutional_voting_period_days,
                settings.constitutional_voting_period_days,
            ),
            constitutional_approval_threshold=pick(
                team.constitutional_approval_threshold,
                settings.constitutional_approval_threshold,
            ),
            committee_eligibility_window_months=pick(
                team.committee_eligibility_window_months,
                settings.committee_eligibility_window_months,
            ),
            committee_minimum_active_cook=pick(
                team.committee_minimum_active_cook, settings.committee_minimum_active_cook
            ),
            committee_cooling_off_period_days=pick(
                team.committee_cooling_off_period_days,
                settings.committee_cooling_off_period_days,
            ),
            equity_model=team.equity_model,
            created_by=created_by,
            created_at=now,
            updated_at=now,
        )
        self.db.add(db_team)
        self.db.add(
            MembershipModel(
                id=generate_ulid(),
                team_id=db_team.id,
                user_id=created_by,
                role=Role.ADMIN.value,
                joined_at=now,
            )
        )
        self.db.commit()
        self.db.refresh(db_team)

        logger.info(f"Created team {db_team.id} ({db_team.name}) by {created_by}")
        self.audit.log_create(
            entity_kind="Team",
            entity_id=db_team.id,
            after=db_team.to_dict(),
            actor_id=created_by,
            team_id=db_team.id,
        )
        return db_team

    def get(self, team_id: str) -> Optional[TeamModel]:
        return self.db.query(TeamModel).filter(TeamModel.id == team_id).first()

    def require(self, team_id: str) -> TeamModel:
        """Get a team or raise NotFoundError."""
        team = self.get(team_id)
        if team is None:
            raise NotFoundError("Team", team_id)
        return team

    def list_for_user(self, user_id: str) -> List[TeamModel]:
        return (
            self.db.query(TeamModel)
            .join(MembershipModel, MembershipModel.team_id == TeamModel.id)
            .filter(MembershipModel.user_id == user_id)
            .order_by(TeamModel.created_at)
            .all()
        )

    def update(self, team_id: str, changes: TeamUpdate, actor_id: str) -> TeamModel:
        """Update team configuration. Admin only."""
        team = self.require(team_id)
        member = self.require_member(team_id, actor_id)
        require_role(member.role, Role.ADMIN, "change team settings", actor_id)

        before = team.to_dict()
        for field, value in changes.model_dump(exclude_unset=True).items():
            setattr(team, field, value)
        team.updated_at = utc_now()
        self.db.commit()
        self.db.refresh(team)

        self.audit.log_update(
            entity_kind="Team",
            entity_id=team.id,
            before=before,
            after=team.to_dict(),
            actor_id=actor_id,
            team_id=team.id,
        )
        return team

    # Membership

    def get_membership(self, team_id: str, user_id: str) -> Optional[MembershipModel]:
        return (
            self.db.query(MembershipModel)
            .filter(MembershipModel.team_id == team_id, MembershipModel.user_id == user_id)
            .first()
        )

    def require_member(self, team_id: str, user_id: str) -> MembershipModel:
        """Return the caller's membership or raise NOT_TEAM_MEMBER."""
        member = self.get_membership(team_id, user_id)
        if member is None:
            raise PermissionDeniedError(
                code="NOT_TEAM_MEMBER",
                message=f"'{user_id}' is not a member of this team",
                team_id=team_id,
                actor_id=user_id,
            )
        return member

    def get_role(self, team_id: str, user_id: str) -> Optional[str]:
        member = self.get_membership(team_id, user_id)
        return member.role if member else None

    def list_members(self, team_id: str) -> List[MembershipModel]:
        return (
            self.db.query(MembershipModel)
            .filter(MembershipModel.team_id == team_id)
            .order_by(MembershipModel.joined_at, MembershipModel.user_id)
            .all()
        )

    def members_with_role(self, team_id: str, minimum: Role) -> List[str]:
        """User ids whose role is at least ``minimum``."""
        return [
            m.user_id
            for m in self.list_members(team_id)
            if has_role_at_least(m.role, minimum)
        ]

    def add_member(
        self,
        team_id: str,
        user_id: str,
        role: str,
        actor_id: str,
    ) -> MembershipModel:
        """Add a member. Stewards may add members; only Admins grant Admin."""
        self.require(team_id)
        actor = self.require_member(team_id, actor_id)
        require_role(actor.role, Role.STEWARD, "add team members", actor_id)
        if Role(role) == Role.ADMIN:
            require_role(actor.role, Role.ADMIN, "grant the Admin role", actor_id)

        member = MembershipModel(
            id=generate_ulid(),
            team_id=team_id,
            user_id=user_id,
            role=Role(role).value,
            joined_at=utc_now(),
        )
        self.db.add(member)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise ValidationError(
                code="ALREADY_MEMBER",
                message=f"'{user_id}' is already a member of this team",
                team_id=team_id,
                user_id=user_id,
            )
        self.db.refresh(member)

        self.audit.log_create(
            entity_kind="Membership",
            entity_id=member.id,
            after=member.to_dict(),
            actor_id=actor_id,
            team_id=team_id,
        )
        return member

    def set_role(
        self,
        team_id: str,
        user_id: str,
        role: str,
        actor_id: str,
    ) -> MembershipModel:
        """Change a member's role. Admin only."""
        actor = self.require_member(team_id, actor_id)
        require_role(actor.role, Role.ADMIN, "change member roles", actor_id)
        member = self.get_membership(team_id, user_id)
        if member is None:
            raise NotFoundError("Membership", user_id, team_id)

        old_role = member.role
        member.role = Role(role).value
        self.db.commit()
        self.db.refresh(member)

        self.audit.log_status_change(
            entity_kind="Membership",
            entity_id=member.id,
            old_status=old_role,
            new_status=member.role,
            actor_id=actor_id,
            team_id=team_id,
        )
        return member
