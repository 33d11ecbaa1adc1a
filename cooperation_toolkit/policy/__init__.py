"""
Task lifecycle policy: the transition table and role-based move permissions.
"""

from .permissions import (
    ROLE_HIERARCHY,
    check_transition_permission,
    has_role_at_least,
    require_role,
)
from .transitions import (
    COOK_STATE_ORDER,
    TASK_TRANSITIONS,
    allowed_next_states,
    assert_cook_advance,
    assert_transition,
    is_transition_allowed,
)

__all__ = [
    "COOK_STATE_ORDER",
    "ROLE_HIERARCHY",
    "TASK_TRANSITIONS",
    "allowed_next_states",
    "assert_cook_advance",
    "assert_transition",
    "check_transition_permission",
    "has_role_at_least",
    "is_transition_allowed",
    "require_role",
]
