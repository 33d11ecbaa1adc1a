"""
Effective COOK and team equity split.

Effective COOK is decay first, then the team cap. It is also the governance
weight of a contributor.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional

from .caps import apply_cap
from .decay import apply_decay


@dataclass
class EffectiveCook:
    raw_cook: float
    decayed_cook: float
    decay_amount: float
    effective_cook: float
    uncapped_cook: float
    cap_percentage: Optional[float]
    is_capped: bool

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def effective_cook(
    entries: Iterable[Any],
    cap: Optional[float] = None,
    decay_rate: Optional[float] = None,
    now: Optional[datetime] = None,
) -> EffectiveCook:
    decay = apply_decay(entries, decay_rate, now)
    capped = apply_cap(decay.decayed_cook, cap)
    return EffectiveCook(
        raw_cook=decay.raw_cook,
        decayed_cook=decay.decayed_cook,
        decay_amount=decay.decay_amount,
        effective_cook=capped.capped_cook,
        uncapped_cook=capped.uncapped_cook,
        cap_percentage=capped.cap_percentage,
        is_capped=capped.is_capped,
    )


def calculate_equity(
    entries_by_contributor: Mapping[str, List[Any]],
    cap: Optional[float] = None,
    decay_rate: Optional[float] = None,
    model: str = "slicing",
    now: Optional[datetime] = None,
) -> List[Dict[str, Any]]:
    """Each contributor's share of the team's effective COOK, in percent.

    Both supported models (slicing, proportional) split by effective COOK.
    Results are sorted by share, largest first.
    """
    effective = {
        contributor_id: effective_cook(entries, cap, decay_rate, now).effective_cook
        for contributor_id, entries in entries_by_contributor.items()
    }
    total = sum(effective.values())

    rows = [
        {
            "contributor_id": contributor_id,
            "effective_cook": value,
            "equity_percentage": (value / total * 100) if total > 0 else 0.0,
            "model": model,
        }
        for contributor_id, value in effective.items()
    ]
    rows.sort(key=lambda r: (-r["effective_cook"], r["contributor_id"]))
    return rows
