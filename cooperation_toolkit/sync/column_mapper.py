"""
Board column name <-> task state mapping.
"""

import logging
from typing import List, Optional

from ..enums import TaskState

logger = logging.getLogger(__name__)

COLUMN_STATE_MAP = {
    "backlog": TaskState.BACKLOG.value,
    "ready": TaskState.READY.value,
    "in progress": TaskState.IN_PROGRESS.value,
    "in-progress": TaskState.IN_PROGRESS.value,
    "review": TaskState.REVIEW.value,
    "done": TaskState.DONE.value,
    "completed": TaskState.DONE.value,
    "complete": TaskState.DONE.value,
}

# Checked in order; first match wins.
COLUMN_KEYWORDS = [
    (("backlog",), TaskState.BACKLOG.value),
    (("ready", "todo"), TaskState.READY.value),
    (("progress", "working", "active"), TaskState.IN_PROGRESS.value),
    (("review", "testing", "qa"), TaskState.REVIEW.value),
    (("done", "complete", "closed"), TaskState.DONE.value),
]

COLUMN_NAME_VARIANTS = {
    TaskState.BACKLOG.value: ["Backlog", "To Do"],
    TaskState.READY.value: ["Ready", "To Do", "Todo"],
    TaskState.IN_PROGRESS.value: ["In Progress", "In-Progress", "Working", "Active"],
    TaskState.REVIEW.value: ["Review", "In Review", "Testing", "QA"],
    TaskState.DONE.value: ["Done", "Completed", "Complete", "Closed"],
}


def column_to_state(column_name: Optional[str]) -> Optional[str]:
    """Map a board column name to a task state, or None if unmapped."""
    if not column_name:
        return None
    normalized = column_name.strip().lower()

    if normalized in COLUMN_STATE_MAP:
        return COLUMN_STATE_MAP[normalized]

    for keywords, state in COLUMN_KEYWORDS:
        if any(keyword in normalized for keyword in keywords):
            return state

    logger.warning(f"No task state mapping for board column '{column_name}'")
    return None


def state_to_column(state: str) -> str:
    """Canonical column name for a task state."""
    return COLUMN_NAME_VARIANTS.get(state, [state])[0]


def possible_column_names(state: str) -> List[str]:
    return list(COLUMN_NAME_VARIANTS.get(state, [state]))
