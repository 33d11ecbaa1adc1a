"""
Role-based permission checks for task moves and steward-only actions.

Roles are ordered Contributor < Reviewer < Steward < Admin. The caller's role
comes from team membership; these helpers never look it up themselves.
"""

from __future__ import annotations

from typing import Any, Dict, Optional, Sequence, Union

from ..enums import Role, TaskState
from ..errors import PermissionDeniedError

ROLE_HIERARCHY: Dict[Role, int] = {
    Role.CONTRIBUTOR: 1,
    Role.REVIEWER: 2,
    Role.STEWARD: 3,
    Role.ADMIN: 4,
}


def has_role_at_least(role: Union[str, Role], minimum: Union[str, Role]) -> bool:
    return ROLE_HIERARCHY[Role(role)] >= ROLE_HIERARCHY[Role(minimum)]


def require_role(
    role: Union[str, Role],
    minimum: Union[str, Role],
    action: str,
    actor_id: Optional[str] = None,
) -> None:
    """Raise PermissionDeniedError unless ``role`` is at least ``minimum``."""
    if not has_role_at_least(role, minimum):
        raise PermissionDeniedError(
            code="INSUFFICIENT_ROLE",
            message=f"Only {Role(minimum).value}s or higher can {action}",
            role=Role(role).value,
            required_role=Role(minimum).value,
            action=action,
            actor_id=actor_id,
        )


def check_transition_permission(
    role: Union[str, Role],
    actor_id: str,
    from_state: Union[str, TaskState],
    to_state: Union[str, TaskState],
    contributors: Sequence[str],
    reviewers: Sequence[str],
) -> None:
    """Decide whether ``actor_id`` with ``role`` may move a task.

    - Stewards and Admins may make any allowed move.
    - Reviewers may move into or out of Review, and tasks they review.
    - Contributors may move tasks they are assigned to, except into Review.
    """
    role = Role(role)
    src, dst = TaskState(from_state), TaskState(to_state)

    if has_role_at_least(role, Role.STEWARD):
        return

    if role == Role.REVIEWER:
        if dst == TaskState.REVIEW or src == TaskState.REVIEW or actor_id in reviewers:
            return

    if actor_id in contributors and dst != TaskState.REVIEW:
        return

    details: Dict[str, Any] = {
        "role": role.value,
        "action": f"move task from {src.value} to {dst.value}",
    }
    if dst == TaskState.REVIEW:
        details["required_role"] = Role.REVIEWER.value
        message = "Only Reviewers or Stewards can move tasks to Review"
    elif actor_id not in contributors:
        details["required_role"] = Role.STEWARD.value
        message = "You can only move tasks you are assigned to"
    else:
        details["required_role"] = Role.STEWARD.value
        message = "You do not have permission to move this task"

    raise PermissionDeniedError(code="TRANSITION_NOT_PERMITTED", message=message, **details)
