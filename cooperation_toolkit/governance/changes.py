"""
Versioned history of adopted policy and constitutional changes.
"""

import logging
from typing import List, Optional, Type, Union

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..db.models import (
    ConstitutionalChangeModel,
    GovernanceProposalModel,
    PolicyChangeModel,
)
from ..primitives import generate_ulid, utc_now

logger = logging.getLogger(__name__)

ChangeModel = Union[PolicyChangeModel, ConstitutionalChangeModel]

_KINDS = {
    "policy": PolicyChangeModel,
    "constitutional": ConstitutionalChangeModel,
}


class ChangeService:
    """Records adopted changes with a per-team version counter."""

    def __init__(self, db: Session):
        self.db = db

    @staticmethod
    def _model(kind: str) -> Type[ChangeModel]:
        try:
            return _KINDS[kind]
        except KeyError:
            raise ValueError(f"Unknown change kind: {kind}")

    def latest_version(self, team_id: str, kind: str = "policy") -> Optional[int]:
        model = self._model(kind)
        return (
            self.db.query(func.max(model.version))
            .filter(model.team_id == team_id)
            .scalar()
        )

    def record(
        self,
        kind: str,
        proposal: GovernanceProposalModel,
        voting_id: Optional[str],
        approval_percentage: Optional[float],
    ) -> ChangeModel:
        """Stage a change record for an approved proposal. The caller commits."""
        model = self._model(kind)
        previous = self.latest_version(proposal.team_id, kind)
        change = model(
            id=generate_ulid(),
            team_id=proposal.team_id,
            proposal_id=proposal.id,
            voting_id=voting_id,
            title=proposal.title,
            description=proposal.description,
            version=(previous or 0) + 1,
            previous_version=previous,
            approval_percentage=approval_percentage,
            created_at=utc_now(),
        )
        self.db.add(change)
        logger.info(
            f"Recorded {kind} change v{change.version} for team {proposal.team_id} "
            f"from proposal {proposal.id}"
        )
        return change

    def list_policy_changes(self, team_id: str) -> List[PolicyChangeModel]:
        return (
            self.db.query(PolicyChangeModel)
            .filter(PolicyChangeModel.team_id == team_id)
            .order_by(PolicyChangeModel.version)
            .all()
        )

    def list_constitutional_changes(self, team_id: str) -> List[ConstitutionalChangeModel]:
        return (
            self.db.query(ConstitutionalChangeModel)
            .filter(ConstitutionalChangeModel.team_id == team_id)
            .order_by(ConstitutionalChangeModel.version)
            .all()
        )
