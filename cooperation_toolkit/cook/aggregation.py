"""
Period aggregation and velocity over ledger entries.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Callable, Dict, Iterable, List

from ..enums import Attribution
from ..primitives import ensure_utc


@dataclass
class PeriodSummary:
    period: str
    total: float = 0.0
    self_cook: float = 0.0
    spend_cook: float = 0.0
    count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class VelocityPoint:
    period: str
    velocity: float
    trend: str  # new | increasing | decreasing | stable

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _month_key(entry: Any) -> str:
    return ensure_utc(entry.issued_at).strftime("%Y-%m")


def _year_key(entry: Any) -> str:
    return ensure_utc(entry.issued_at).strftime("%Y")


def _aggregate(entries: Iterable[Any], key: Callable[[Any], str]) -> List[PeriodSummary]:
    buckets: Dict[str, PeriodSummary] = {}
    for entry in entries:
        period = key(entry)
        bucket = buckets.setdefault(period, PeriodSummary(period=period))
        bucket.total += entry.cook_value
        bucket.count += 1
        if entry.attribution == Attribution.SPEND.value:
            bucket.spend_cook += entry.cook_value
        else:
            bucket.self_cook += entry.cook_value
    # "YYYY-MM" and "YYYY" sort chronologically as strings
    return [buckets[p] for p in sorted(buckets)]


def aggregate_by_month(entries: Iterable[Any]) -> List[PeriodSummary]:
    """Group entries by calendar month of ``issued_at`` ("YYYY-MM")."""
    return _aggregate(entries, _month_key)


def aggregate_by_year(entries: Iterable[Any]) -> List[PeriodSummary]:
    """Group entries by calendar year of ``issued_at`` ("YYYY")."""
    return _aggregate(entries, _year_key)


def overall_velocity(entries: Iterable[Any]) -> float:
    """Total COOK divided by the number of distinct months with activity."""
    months = aggregate_by_month(entries)
    if not months:
        return 0.0
    return sum(m.total for m in months) / len(months)


def velocity_trends(entries: Iterable[Any]) -> List[VelocityPoint]:
    """Per-month velocity, each compared to the immediately preceding period."""
    points: List[VelocityPoint] = []
    previous = None
    for month in aggregate_by_month(entries):
        if previous is None:
            trend = "new"
        elif month.total > previous:
            trend = "increasing"
        elif month.total < previous:
            trend = "decreasing"
        else:
            trend = "stable"
        points.append(VelocityPoint(period=month.period, velocity=month.total, trend=trend))
        previous = month.total
    return points


def summarize(entries: List[Any]) -> Dict[str, Any]:
    """Monthly and yearly aggregation plus velocity in one payload."""
    return {
        "by_month": [p.to_dict() for p in aggregate_by_month(entries)],
        "by_year": [p.to_dict() for p in aggregate_by_year(entries)],
        "overall_velocity": overall_velocity(entries),
        "velocity_trends": [p.to_dict() for p in velocity_trends(entries)],
    }
