"""
Attestations: portable, verifiable issuance records.

Each ledger entry gets one attestation. Its ``merkle_root`` is the SHA-256 of
the canonical JSON of the issuance fields (reviewers sorted, keys sorted,
compact separators). ``parent_hash`` is the merkle root of the attestation
before it in the same contributor's chain and ``chain_seq`` is its position.
Roots are filled in asynchronously, appending to the chain in the order
hashing happens; until then they are NULL.
"""

import hashlib
import json
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..db.audit_service import AuditService
from ..db.models import (
    AttestationModel,
    LedgerEntryModel,
    ReviewModel,
    TaskModel,
    TeamModel,
)
from ..errors import NotFoundError
from ..events.outbox import emit_event
from ..events.types import EventTypes
from ..primitives import generate_ulid, isoformat_utc, utc_now

logger = logging.getLogger(__name__)


def canonical_payload(attestation: AttestationModel) -> Dict[str, Any]:
    """The fields covered by the merkle root."""
    return {
        "taskId": attestation.task_id,
        "teamId": attestation.team_id,
        "contributorId": attestation.contributor_id,
        "cookValue": attestation.cook_value,
        "attribution": attestation.attribution,
        "reviewers": sorted(attestation.reviewers or []),
        "issuedAt": isoformat_utc(attestation.issued_at),
    }


def compute_merkle_root(attestation: AttestationModel) -> str:
    canonical = json.dumps(
        canonical_payload(attestation), sort_keys=True, separators=(",", ":")
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


class AttestationService:
    """Creates attestations and maintains their hash chains."""

    def __init__(self, db: Session, audit: Optional[AuditService] = None):
        self.db = db
        self.audit = audit or AuditService(db)

    def get(self, attestation_id: str) -> Optional[AttestationModel]:
        return (
            self.db.query(AttestationModel)
            .filter(AttestationModel.id == attestation_id)
            .first()
        )

    def get_for_entry(self, ledger_entry_id: str) -> Optional[AttestationModel]:
        return (
            self.db.query(AttestationModel)
            .filter(AttestationModel.ledger_entry_id == ledger_entry_id)
            .first()
        )

    def list(
        self,
        contributor_id: Optional[str] = None,
        team_id: Optional[str] = None,
    ) -> List[AttestationModel]:
        """Attestations in chain order; pending ones last, by creation."""
        query = self.db.query(AttestationModel)
        if contributor_id:
            query = query.filter(AttestationModel.contributor_id == contributor_id)
        if team_id:
            query = query.filter(AttestationModel.team_id == team_id)
        return query.order_by(
            AttestationModel.chain_seq.is_(None),
            AttestationModel.chain_seq,
            AttestationModel.id,
        ).all()

    def chain_tail(self, contributor_id: str) -> Optional[AttestationModel]:
        """The contributor's most recently hashed attestation."""
        return (
            self.db.query(AttestationModel)
            .filter(
                AttestationModel.contributor_id == contributor_id,
                AttestationModel.chain_seq.isnot(None),
            )
            .order_by(AttestationModel.chain_seq.desc())
            .first()
        )

    def _reviewers(self, task: Optional[TaskModel]) -> List[str]:
        """Reviewers who acted on the task's review, else those assigned."""
        if task is None:
            return []
        review = self.db.query(ReviewModel).filter(ReviewModel.task_id == task.id).first()
        reviewers = set()
        if review is not None:
            reviewers.update(review.approvals or [])
            reviewers.update(
                o.get("reviewer_id") for o in review.objections or [] if o.get("reviewer_id")
            )
        if not reviewers:
            reviewers.update(task.reviewers or [])
        return sorted(reviewers)

    def create_for_entry(self, ledger_entry_id: str) -> AttestationModel:
        """Create the attestation for a ledger entry. Idempotent."""
        existing = self.get_for_entry(ledger_entry_id)
        if existing is not None:
            return existing

        entry = (
            self.db.query(LedgerEntryModel)
            .filter(LedgerEntryModel.id == ledger_entry_id)
            .first()
        )
        if entry is None:
            raise NotFoundError("LedgerEntry", ledger_entry_id)

        task = self.db.query(TaskModel).filter(TaskModel.id == entry.task_id).first()
        team = self.db.query(TeamModel).filter(TeamModel.id == entry.team_id).first()

        attestation = AttestationModel(
            id=generate_ulid(),
            ledger_entry_id=entry.id,
            team_id=entry.team_id,
            team_name=team.name if team else None,
            task_id=entry.task_id,
            task_title=task.title if task else None,
            contributor_id=entry.contributor_id,
            cook_value=entry.cook_value,
            attribution=entry.attribution,
            reviewers=self._reviewers(task),
            issued_at=entry.issued_at,
            merkle_root=None,
            parent_hash=None,
            created_at=utc_now(),
        )
        self.db.add(attestation)
        emit_event(
            self.db,
            entry.team_id,
            EventTypes.ATTESTATION_CREATED,
            {"attestation_id": attestation.id, "contributor_id": entry.contributor_id},
        )
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            return self.get_for_entry(ledger_entry_id)
        self.db.refresh(attestation)

        logger.info(f"Created attestation {attestation.id} for ledger entry {entry.id}")
        self.audit.log_create(
            entity_kind="Attestation",
            entity_id=attestation.id,
            after=attestation.to_dict(),
            actor_kind="system",
            actor_id="attestation",
            team_id=entry.team_id,
        )
        return attestation

    def compute_pending_hashes(self, contributor_id: str) -> int:
        """Append pending attestations to the contributor's chain.

        Pending attestations are hashed in creation order and linked after
        the current tail. Hashed attestations are never rewritten, so the
        chain only grows. Returns the number of attestations updated.
        """
        tail = self.chain_tail(contributor_id)
        previous_root = tail.merkle_root if tail is not None else None
        seq = tail.chain_seq if tail is not None else 0

        pending = (
            self.db.query(AttestationModel)
            .filter(
                AttestationModel.contributor_id == contributor_id,
                AttestationModel.chain_seq.is_(None),
            )
            .order_by(AttestationModel.id)
            .all()
        )
        for attestation in pending:
            seq += 1
            attestation.merkle_root = compute_merkle_root(attestation)
            attestation.parent_hash = previous_root
            attestation.chain_seq = seq
            previous_root = attestation.merkle_root

        if pending:
            try:
                self.db.commit()
            except IntegrityError:
                # another worker extended the chain first
                self.db.rollback()
                raise
            logger.info(f"Computed {len(pending)} attestation hash(es) for {contributor_id}")
        return len(pending)

    def verify(self, attestation_id: str) -> Dict[str, Any]:
        """Recompute the root from stored fields and compare."""
        attestation = self.get(attestation_id)
        if attestation is None:
            raise NotFoundError("Attestation", attestation_id)

        expected = compute_merkle_root(attestation)
        return {
            "attestation_id": attestation.id,
            "stored_root": attestation.merkle_root,
            "computed_root": expected,
            "computed": attestation.merkle_root is not None,
            "valid": attestation.merkle_root == expected,
        }

    def verify_chain(self, contributor_id: str) -> Dict[str, Any]:
        """Check every root and every parent link of a contributor's chain."""
        chain = self.list(contributor_id=contributor_id)
        problems: List[Dict[str, Any]] = []
        previous_root: Optional[str] = None

        for position, attestation in enumerate(chain):
            if attestation.merkle_root is None:
                problems.append(
                    {"position": position, "attestation_id": attestation.id, "problem": "pending"}
                )
                continue
            if attestation.merkle_root != compute_merkle_root(attestation):
                problems.append(
                    {"position": position, "attestation_id": attestation.id, "problem": "root_mismatch"}
                )
            if attestation.parent_hash != previous_root:
                problems.append(
                    {
                        "position": position,
                        "attestation_id": attestation.id,
                        "problem": "parent_mismatch",
                        "expected_parent": previous_root,
                        "stored_parent": attestation.parent_hash,
                    }
                )
            previous_root = attestation.merkle_root

        return {
            "contributor_id": contributor_id,
            "length": len(chain),
            "valid": not problems,
            "problems": problems,
        }
