"""
Task and COOK state transition tables.

Task lifecycle (linear):
    Backlog -> Ready -> In Progress -> Review -> Done

COOK lifecycle (monotonic):
    Draft -> Provisional -> Locked -> Final

Both are pure functions over the enums; nothing here touches the database.
"""

from __future__ import annotations

from typing import Dict, List, Union

from ..enums import CookState, TaskState
from ..errors import InvalidTransition

TASK_TRANSITIONS: Dict[TaskState, List[TaskState]] = {
    TaskState.BACKLOG: [TaskState.READY],
    TaskState.READY: [TaskState.IN_PROGRESS],
    TaskState.IN_PROGRESS: [TaskState.REVIEW],
    TaskState.REVIEW: [TaskState.DONE],
    TaskState.DONE: [],
}

COOK_STATE_ORDER: List[CookState] = [
    CookState.DRAFT,
    CookState.PROVISIONAL,
    CookState.LOCKED,
    CookState.FINAL,
]


def _task_state(value: Union[str, TaskState]) -> TaskState:
    try:
        return TaskState(value)
    except ValueError:
        raise InvalidTransition(
            from_state=str(value),
            to_state=str(value),
            allowed_next_states=[],
            code="UNKNOWN_STATE",
            message=f'Unknown task state "{value}"',
        )


def allowed_next_states(state: Union[str, TaskState]) -> List[str]:
    """Return the states a task may move to from ``state``."""
    return [s.value for s in TASK_TRANSITIONS[_task_state(state)]]


def is_transition_allowed(
    from_state: Union[str, TaskState], to_state: Union[str, TaskState]
) -> bool:
    """Same-state moves are always allowed (no-op)."""
    src, dst = _task_state(from_state), _task_state(to_state)
    if src == dst:
        return True
    return dst in TASK_TRANSITIONS[src]


def assert_transition(
    from_state: Union[str, TaskState], to_state: Union[str, TaskState]
) -> None:
    """Raise InvalidTransition with the allowed alternatives when disallowed."""
    if not is_transition_allowed(from_state, to_state):
        raise InvalidTransition(
            from_state=_task_state(from_state).value,
            to_state=_task_state(to_state).value,
            allowed_next_states=allowed_next_states(from_state),
        )


def assert_cook_advance(
    current: Union[str, CookState], target: Union[str, CookState]
) -> None:
    """COOK state may only advance one step at a time, never backward."""
    src, dst = CookState(current), CookState(target)
    src_idx = COOK_STATE_ORDER.index(src)
    dst_idx = COOK_STATE_ORDER.index(dst)
    if dst_idx != src_idx + 1:
        allowed = (
            [COOK_STATE_ORDER[src_idx + 1].value]
            if src_idx + 1 < len(COOK_STATE_ORDER)
            else []
        )
        raise InvalidTransition(
            from_state=src.value,
            to_state=dst.value,
            allowed_next_states=allowed,
            code="INVALID_COOK_TRANSITION",
            message=(
                f'COOK state cannot move from "{src.value}" to "{dst.value}"; '
                "it only advances Draft -> Provisional -> Locked -> Final"
            ),
        )
