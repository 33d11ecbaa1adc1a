"""
Request schemas validated at the HTTP boundary.
"""

from .governance import (
    CommitteeSelect,
    ProposalCreate,
    ProposalObjectionCreate,
    ServiceTermEnd,
    VoteCast,
    VotingCreate,
)
from .reviews import CommentCreate, EscalationCreate, ObjectionCreate, ObjectionsClear
from .sync import ExternalMove
from .tasks import CookAssign, ExternalLink, FlagClear, TaskCreate, TaskMove, TaskUpdate
from .teams import MemberAdd, MemberRoleUpdate, TeamCreate, TeamUpdate

__all__ = [
    "CommentCreate",
    "CommitteeSelect",
    "CookAssign",
    "EscalationCreate",
    "ExternalLink",
    "ExternalMove",
    "FlagClear",
    "MemberAdd",
    "MemberRoleUpdate",
    "ObjectionCreate",
    "ObjectionsClear",
    "ProposalCreate",
    "ProposalObjectionCreate",
    "ServiceTermEnd",
    "TaskCreate",
    "TaskMove",
    "TaskUpdate",
    "TeamCreate",
    "TeamUpdate",
    "VoteCast",
    "VotingCreate",
]
