from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, constr


class ObjectionCreate(BaseModel):
    reason: constr(strip_whitespace=True, min_length=1, max_length=5000)


class CommentCreate(BaseModel):
    content: constr(strip_whitespace=True, min_length=1, max_length=10000)


class EscalationCreate(BaseModel):
    steward_id: Optional[str] = None
    reason: Optional[constr(max_length=5000)] = None


class ObjectionsClear(BaseModel):
    note: Optional[constr(max_length=5000)] = None
