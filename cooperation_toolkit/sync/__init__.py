"""
External board synchronization: breaker, retry queue and reconciler.
"""

from .board import BoardAdapter, GitHubProjectsBoard, get_board
from .circuit_breaker import CircuitBreaker, CircuitState, get_circuit_breaker
from .column_mapper import column_to_state, possible_column_names, state_to_column
from .reconciler import SyncReconciler
from .retry_queue import SyncRetryQueue, backoff_delay

__all__ = [
    "BoardAdapter",
    "CircuitBreaker",
    "CircuitState",
    "GitHubProjectsBoard",
    "SyncReconciler",
    "SyncRetryQueue",
    "backoff_delay",
    "column_to_state",
    "get_board",
    "get_circuit_breaker",
    "possible_column_names",
    "state_to_column",
]
