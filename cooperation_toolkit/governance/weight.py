"""
Governance weight: a contributor's effective COOK (decay, then team cap).

The stored weight is refreshed on every new ledger entry and whenever a vote
or objection snapshots it.
"""

import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..cook import effective_cook
from ..db.models import GovernanceWeightModel, LedgerEntryModel, TeamModel
from ..errors import NotFoundError
from ..primitives import generate_ulid, utc_now

logger = logging.getLogger(__name__)


class GovernanceWeightService:
    """Computes and caches per-contributor governance weight."""

    def __init__(self, db: Session):
        self.db = db

    def _team(self, team_id: str) -> TeamModel:
        team = self.db.query(TeamModel).filter(TeamModel.id == team_id).first()
        if team is None:
            raise NotFoundError("Team", team_id)
        return team

    def _row(self, team_id: str, contributor_id: str) -> Optional[GovernanceWeightModel]:
        return (
            self.db.query(GovernanceWeightModel)
            .filter(
                GovernanceWeightModel.team_id == team_id,
                GovernanceWeightModel.contributor_id == contributor_id,
            )
            .first()
        )

    def recompute(
        self,
        team_id: str,
        contributor_id: str,
        now: Optional[datetime] = None,
    ) -> GovernanceWeightModel:
        """Recompute from the ledger and upsert the cached row."""
        team = self._team(team_id)
        entries = (
            self.db.query(LedgerEntryModel)
            .filter(
                LedgerEntryModel.team_id == team_id,
                LedgerEntryModel.contributor_id == contributor_id,
            )
            .all()
        )
        result = effective_cook(entries, team.cook_cap, team.cook_decay_rate, now)

        row = self._row(team_id, contributor_id)
        if row is None:
            row = GovernanceWeightModel(
                id=generate_ulid(),
                team_id=team_id,
                contributor_id=contributor_id,
            )
            self.db.add(row)
        row.raw_cook = result.raw_cook
        row.weight = result.effective_cook
        row.updated_at = utc_now()

        try:
            self.db.commit()
        except IntegrityError:
            # Another writer inserted the row first; update theirs instead.
            self.db.rollback()
            row = self._row(team_id, contributor_id)
            row.raw_cook = result.raw_cook
            row.weight = result.effective_cook
            row.updated_at = utc_now()
            self.db.commit()
        self.db.refresh(row)

        logger.debug(
            f"Weight for {contributor_id} in {team_id}: raw={row.raw_cook} weight={row.weight}"
        )
        return row

    def get_weight(self, team_id: str, contributor_id: str) -> float:
        """Stored weight, 0 when never computed."""
        row = self._row(team_id, contributor_id)
        return row.weight if row else 0.0

    def list_weights(self, team_id: str) -> List[GovernanceWeightModel]:
        return (
            self.db.query(GovernanceWeightModel)
            .filter(GovernanceWeightModel.team_id == team_id)
            .order_by(GovernanceWeightModel.weight.desc(), GovernanceWeightModel.contributor_id)
            .all()
        )

    def recompute_team(
        self, team_id: str, now: Optional[datetime] = None
    ) -> List[GovernanceWeightModel]:
        """Recompute everyone with ledger history in the team."""
        contributor_ids = [
            row[0]
            for row in self.db.query(LedgerEntryModel.contributor_id)
            .filter(LedgerEntryModel.team_id == team_id)
            .distinct()
            .all()
        ]
        rows = [self.recompute(team_id, cid, now) for cid in sorted(contributor_ids)]
        logger.info(f"Recomputed governance weight for {len(rows)} contributor(s) in {team_id}")
        return rows
