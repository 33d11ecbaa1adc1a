from __future__ import annotations

from typing import List, Literal, Optional

from pydantic import BaseModel, Field, confloat, conint, constr

ProposalTypeName = Literal[
    "policy_change",
    "constitutional_challenge",
    "binding_decision",
    "committee_selection",
    "other",
]


class ProposalCreate(BaseModel):
    type: ProposalTypeName
    title: constr(min_length=1, max_length=500)
    description: Optional[str] = None
    objection_window_days: Optional[conint(ge=1, le=365)] = None
    objection_threshold: Optional[confloat(ge=0)] = None


class ProposalObjectionCreate(BaseModel):
    reason: Optional[constr(max_length=5000)] = None


class VotingCreate(BaseModel):
    title: constr(min_length=1, max_length=500)
    description: Optional[str] = None
    options: List[str] = Field(..., min_length=2)
    voting_period_days: Optional[conint(ge=1, le=365)] = None


class VoteCast(BaseModel):
    option: constr(min_length=1, max_length=200)


class CommitteeSelect(BaseModel):
    committee_name: constr(min_length=1, max_length=200)
    number_of_seats: conint(ge=1)
    seed: Optional[constr(min_length=1, max_length=200)] = Field(
        None, description="Lottery seed; defaults to the selection timestamp"
    )


class ServiceTermEnd(BaseModel):
    status: Literal["completed", "terminated"] = "completed"
