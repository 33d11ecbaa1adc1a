from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, Field, confloat, conint, constr

RoleName = Literal["Contributor", "Reviewer", "Steward", "Admin"]


class TeamCreate(BaseModel):
    """Create a team. The creator becomes its Admin."""

    name: constr(min_length=1, max_length=200)
    description: Optional[str] = None
    cook_cap: Optional[confloat(gt=0)] = None
    cook_decay_rate: Optional[confloat(ge=0, le=1)] = None
    default_objection_window_days: Optional[conint(ge=1, le=365)] = None
    default_objection_threshold: Optional[confloat(ge=0)] = None
    default_voting_period_days: Optional[conint(ge=1, le=365)] = None
    constitutional_voting_period_days: Optional[conint(ge=1, le=365)] = None
    constitutional_approval_threshold: Optional[confloat(ge=0, le=100)] = None
    committee_eligibility_window_months: Optional[conint(ge=0, le=120)] = None
    committee_minimum_active_cook: Optional[confloat(ge=0)] = None
    committee_cooling_off_period_days: Optional[conint(ge=0, le=3650)] = None
    equity_model: Literal["slicing", "proportional"] = "slicing"


class TeamUpdate(BaseModel):
    """Partial update of team configuration. Unset fields are left alone."""

    name: Optional[constr(min_length=1, max_length=200)] = None
    description: Optional[str] = None
    cook_cap: Optional[confloat(gt=0)] = None
    cook_decay_rate: Optional[confloat(ge=0, le=1)] = None
    default_objection_window_days: Optional[conint(ge=1, le=365)] = None
    default_objection_threshold: Optional[confloat(ge=0)] = None
    default_voting_period_days: Optional[conint(ge=1, le=365)] = None
    constitutional_voting_period_days: Optional[conint(ge=1, le=365)] = None
    constitutional_approval_threshold: Optional[confloat(ge=0, le=100)] = None
    committee_eligibility_window_months: Optional[conint(ge=0, le=120)] = None
    committee_minimum_active_cook: Optional[confloat(ge=0)] = None
    committee_cooling_off_period_days: Optional[conint(ge=0, le=3650)] = None
    equity_model: Optional[Literal["slicing", "proportional"]] = None


class MemberAdd(BaseModel):
    user_id: constr(min_length=1, max_length=128)
    role: RoleName = "Contributor"


class MemberRoleUpdate(BaseModel):
    role: RoleName = Field(..., description="New role for the member")
