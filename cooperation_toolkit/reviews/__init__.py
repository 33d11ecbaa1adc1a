"""
Review gate: reviewer requirements, approvals, objections and escalation.
"""

from .services import ReviewService, required_reviewers

__all__ = ["ReviewService", "required_reviewers"]
