"""
Exponential time decay of COOK.

Each entry decays by ``(1 - rate) ** months_elapsed`` where a month is
30.44 days. Stored entries are never modified.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Dict, Iterable, Optional

from ..primitives import ensure_utc, utc_now

DAYS_PER_MONTH = 30.44


@dataclass
class DecayResult:
    raw_cook: float
    decayed_cook: float
    decay_amount: float
    decay_rate: Optional[float]

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def months_elapsed(issued_at: datetime, now: Optional[datetime] = None) -> float:
    """Fractional months between ``issued_at`` and ``now``; never negative."""
    now = ensure_utc(now or utc_now())
    delta = now - ensure_utc(issued_at)
    days = delta.total_seconds() / 86400
    return max(days, 0.0) / DAYS_PER_MONTH


def decayed_value(
    value: float,
    issued_at: datetime,
    rate: Optional[float],
    now: Optional[datetime] = None,
) -> float:
    if not rate:
        return value
    return value * (1 - rate) ** months_elapsed(issued_at, now)


def apply_decay(
    entries: Iterable[Any],
    rate: Optional[float],
    now: Optional[datetime] = None,
) -> DecayResult:
    """Sum raw and decayed COOK over ledger entries.

    Entries need ``cook_value`` and ``issued_at`` attributes.
    """
    now = now or utc_now()
    raw = 0.0
    decayed = 0.0
    for entry in entries:
        raw += entry.cook_value
        decayed += decayed_value(entry.cook_value, entry.issued_at, rate, now)

    return DecayResult(
        raw_cook=raw,
        decayed_cook=decayed,
        decay_amount=raw - decayed,
        decay_rate=rate or None,
    )
