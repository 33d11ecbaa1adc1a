"""
Caller identity for HTTP requests.

Authentication happens upstream; the caller's user id arrives in the
``X-Actor-Id`` header and roles are resolved from team membership.
"""

from fastapi import Header

from .errors import PermissionDeniedError


def get_actor_id(x_actor_id: str = Header(default="")) -> str:
    actor_id = x_actor_id.strip()
    if not actor_id:
        raise PermissionDeniedError(
            code="UNAUTHENTICATED",
            message="X-Actor-Id header is required",
        )
    return actor_id
