"""
Teams and membership roles.
"""

from .services import TeamService

__all__ = ["TeamService"]
