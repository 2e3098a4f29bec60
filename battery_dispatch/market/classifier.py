"""Price-tier classification of an hour horizon.

Three disjoint tiers are derived from one horizon:

- **cheap**     – the lowest-buy-price share; eligible for grid charging.
- **top**       – the highest-sell-price share; export permitted.
- **next**      – the following sell-price share; load-shave only.

Hours in none of them are *mid*.  Both orderings use a stable sort so ties are
broken by chronological position.  Cheap hours are claimed first; the two
expensive tiers skip hours that are already cheap, which keeps the tiers
disjoint and ``cheap + top + next <= N`` by construction.
"""

from __future__ import annotations

import enum
import logging
import math
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING

import numpy as np

if TYPE_CHECKING:
    from battery_dispatch.market.prices import HourlyPriceRecord

logger = logging.getLogger(__name__)


class PriceTier(enum.Enum):
    CHEAP = "cheap"
    TOP = "top"
    NEXT = "next"
    MID = "mid"


@dataclass(frozen=True)
class PriceClassification:
    """Disjoint sets of hour keys for one horizon."""

    cheap: frozenset[datetime] = field(default_factory=frozenset)
    top_tier: frozenset[datetime] = field(default_factory=frozenset)
    next_tier: frozenset[datetime] = field(default_factory=frozenset)

    @property
    def expensive(self) -> frozenset[datetime]:
        """Union of the top and next tiers."""
        return self.top_tier | self.next_tier

    def tier_of(self, key: datetime) -> PriceTier:
        if key in self.cheap:
            return PriceTier.CHEAP
        if key in self.top_tier:
            return PriceTier.TOP
        if key in self.next_tier:
            return PriceTier.NEXT
        return PriceTier.MID


def _round_half_up(x: float) -> int:
    return int(math.floor(x + 0.5))


def tier_counts(
    n_hours: int,
    cheap_fraction: float,
    top_fraction: float,
    next_fraction: float,
) -> tuple[int, int, int]:
    """Return ``(cheap, top, next)`` hour counts for a horizon of *n_hours*.

    ``cheap`` and ``top`` are at least one hour each (``top`` only when a
    second hour exists), ``next`` may be zero, and the three never sum to more
    than *n_hours*.

    Examples
    --------
    >>> tier_counts(24, 0.30, 0.10, 0.30)
    (7, 2, 7)
    """
    if n_hours <= 0:
        return 0, 0, 0
    cheap = min(n_hours, max(1, _round_half_up(n_hours * cheap_fraction)))
    remaining = n_hours - cheap
    top = min(remaining, max(1, _round_half_up(n_hours * top_fraction)))
    remaining -= top
    nxt = min(remaining, max(0, _round_half_up(n_hours * next_fraction)))
    return cheap, top, nxt


def classify_prices(
    hours: Sequence[HourlyPriceRecord],
    cheap_fraction: float,
    top_fraction: float,
    next_fraction: float,
) -> PriceClassification:
    """Partition *hours* into cheap, top-tier and next-tier hour keys.

    Parameters
    ----------
    hours:
        Chronologically ordered horizon.  May be empty.
    cheap_fraction, top_fraction, next_fraction:
        Shares of the horizon assigned to each tier.

    Returns
    -------
    PriceClassification
        Empty sets for an empty horizon.
    """
    if not hours:
        return PriceClassification()

    keys = [h.key for h in hours]
    n_cheap, n_top, n_next = tier_counts(
        len(hours), cheap_fraction, top_fraction, next_fraction
    )

    buy = np.array([h.buy for h in hours], dtype=float)
    sell = np.array([h.effective_sell for h in hours], dtype=float)

    by_buy_asc = np.argsort(buy, kind="stable")
    by_sell_desc = np.argsort(-sell, kind="stable")

    cheap_idx = {int(i) for i in by_buy_asc[:n_cheap]}
    expensive_order = [int(i) for i in by_sell_desc if int(i) not in cheap_idx]
    top_idx = expensive_order[:n_top]
    next_idx = expensive_order[n_top : n_top + n_next]

    classification = PriceClassification(
        cheap=frozenset(keys[i] for i in cheap_idx),
        top_tier=frozenset(keys[i] for i in top_idx),
        next_tier=frozenset(keys[i] for i in next_idx),
    )
    logger.debug(
        "Classified %d hours: cheap=%d, top=%d, next=%d",
        len(hours),
        len(classification.cheap),
        len(classification.top_tier),
        len(classification.next_tier),
    )
    return classification
