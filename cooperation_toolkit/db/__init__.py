"""
Database package for the Cooperation Toolkit.
"""

from .audit_models import AuditLogModel
from .audit_service import AuditService
from .base import Base, get_db, get_engine, get_session_local, init_database
from .models import (
    AttestationModel,
    ConstitutionalChangeModel,
    GovernanceProposalModel,
    GovernanceWeightModel,
    LedgerEntryModel,
    MembershipModel,
    OutboxEventModel,
    PolicyChangeModel,
    ProposalObjectionModel,
    ReviewModel,
    SyncQueueItemModel,
    TaskModel,
    TeamModel,
    VoteModel,
    VotingModel,
)

__all__ = [
    "Base",
    "get_db",
    "get_engine",
    "get_session_local",
    "init_database",
    "AuditLogModel",
    "AuditService",
    "AttestationModel",
    "ConstitutionalChangeModel",
    "GovernanceProposalModel",
    "GovernanceWeightModel",
    "LedgerEntryModel",
    "MembershipModel",
    "OutboxEventModel",
    "PolicyChangeModel",
    "ProposalObjectionModel",
    "ReviewModel",
    "SyncQueueItemModel",
    "TaskModel",
    "TeamModel",
    "VoteModel",
    "VotingModel",
]
