"""
Cooperation Toolkit

Contribution-credit (COOK) issuance with review gating, an append-only
ledger, hash-chained attestations and COOK-weighted governance.
"""

import importlib.metadata

__version__ = importlib.metadata.version("cooperation-toolkit")

from .errors import CooperationError
from .governance import GovernanceWeightService, ProposalService, VotingService
from .ledger import AttestationService, LedgerService
from .reviews import ReviewService
from .tasks import TaskService
from .teams import TeamService

__all__ = [
    "AttestationService",
    "CooperationError",
    "GovernanceWeightService",
    "LedgerService",
    "ProposalService",
    "ReviewService",
    "TaskService",
    "TeamService",
    "VotingService",
]
