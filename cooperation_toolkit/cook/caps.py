"""
COOK cap projection.

A team cap limits how much COOK counts toward governance weight. The ledger
keeps the full amount; the cap only changes what is reported.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional


@dataclass
class CapResult:
    """Capped view of a contributor's COOK total."""

    total_cook: float
    capped_cook: float
    uncapped_cook: float
    cap: Optional[float]
    cap_percentage: Optional[float]
    is_capped: bool

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def apply_cap(total: float, cap: Optional[float]) -> CapResult:
    """Apply ``cap`` to ``total``.

    ``cap_percentage`` is how much of the cap is used (capped / cap * 100).
    Without a cap the total passes through and the percentage is None.
    """
    if cap is None or cap <= 0:
        return CapResult(
            total_cook=total,
            capped_cook=total,
            uncapped_cook=0.0,
            cap=None,
            cap_percentage=None,
            is_capped=False,
        )

    capped = min(total, cap)
    return CapResult(
        total_cook=total,
        capped_cook=capped,
        uncapped_cook=total - capped,
        cap=cap,
        cap_percentage=capped / cap * 100,
        is_capped=total > cap,
    )
