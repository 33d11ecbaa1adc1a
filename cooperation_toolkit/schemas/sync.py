from __future__ import annotations

from pydantic import BaseModel, constr


class ExternalMove(BaseModel):
    """Inbound card move reported by the external board."""

    column_id: constr(min_length=1, max_length=128)
