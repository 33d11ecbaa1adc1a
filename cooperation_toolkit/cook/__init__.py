"""
COOK value engine: read-only projections over ledger entries.
"""

from .aggregation import (
    PeriodSummary,
    VelocityPoint,
    aggregate_by_month,
    aggregate_by_year,
    overall_velocity,
    summarize,
    velocity_trends,
)
from .caps import CapResult, apply_cap
from .decay import DAYS_PER_MONTH, DecayResult, apply_decay, decayed_value, months_elapsed
from .equity import EffectiveCook, calculate_equity, effective_cook

__all__ = [
    "DAYS_PER_MONTH",
    "CapResult",
    "DecayResult",
    "EffectiveCook",
    "PeriodSummary",
    "VelocityPoint",
    "aggregate_by_month",
    "aggregate_by_year",
    "apply_cap",
    "apply_decay",
    "calculate_equity",
    "decayed_value",
    "effective_cook",
    "months_elapsed",
    "overall_velocity",
    "summarize",
    "velocity_trends",
]
