"""
Governance: COOK-weighted objection windows, votings, committee lotteries and
change history.
"""

from .changes import ChangeService
from .committees import (
    CommitteeService,
    EligibilityResult,
    LotteryResult,
    check_eligibility,
    select_members,
    verify_selection,
)
from .proposals import ProposalService
from .voting import VotingService, tally
from .weight import GovernanceWeightService

__all__ = [
    "ChangeService",
    "CommitteeService",
    "EligibilityResult",
    "GovernanceWeightService",
    "LotteryResult",
    "ProposalService",
    "VotingService",
    "check_eligibility",
    "select_members",
    "tally",
    "verify_selection",
]
