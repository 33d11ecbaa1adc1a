"""
Task lifecycle and COOK assignment.
"""

from .services import TaskService

__all__ = ["TaskService"]
