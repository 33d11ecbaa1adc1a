from __future__ import annotations

from typing import List, Literal, Optional

from pydantic import BaseModel, Field, confloat, constr, field_validator

TaskStateName = Literal["Backlog", "Ready", "In Progress", "Review", "Done"]
AttributionName = Literal["self", "spend"]


def _dedupe(values: List[str]) -> List[str]:
    seen: List[str] = []
    for value in values:
        value = value.strip()
        if value and value not in seen:
            seen.append(value)
    return seen


class TaskCreate(BaseModel):
    title: constr(min_length=1, max_length=500)
    description: Optional[str] = None
    contributors: List[str] = Field(default_factory=list)
    reviewers: List[str] = Field(default_factory=list)
    cook_value: Optional[confloat(ge=0)] = None
    cook_attribution: AttributionName = "self"

    @field_validator("contributors", "reviewers")
    @classmethod
    def dedupe_user_ids(cls, value: List[str]) -> List[str]:
        return _dedupe(value)


class TaskUpdate(BaseModel):
    """Partial task update. COOK is changed through the assign-cook route."""

    title: Optional[constr(min_length=1, max_length=500)] = None
    description: Optional[str] = None
    contributors: Optional[List[str]] = None
    reviewers: Optional[List[str]] = None

    @field_validator("contributors", "reviewers")
    @classmethod
    def dedupe_user_ids(cls, value: Optional[List[str]]) -> Optional[List[str]]:
        return _dedupe(value) if value is not None else None


class TaskMove(BaseModel):
    to_state: TaskStateName
    allow_zero_cook: bool = False


class CookAssign(BaseModel):
    cook_value: confloat(ge=0)
    attribution: AttributionName = "self"


class ExternalLink(BaseModel):
    external_project_id: constr(min_length=1, max_length=128)
    external_item_id: constr(min_length=1, max_length=128)


class FlagClear(BaseModel):
    note: Optional[constr(max_length=5000)] = None
