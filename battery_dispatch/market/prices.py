"""Hourly price records and horizon helpers.

A *horizon* is an ordered list of :class:`HourlyPriceRecord` – one per hour,
unique and chronologically ordered (typically one calendar day).  Hours are
identified by their *hour key*: the tz-aware start instant truncated to the
full hour, so keys of identical instants compare and hash equal regardless of
the UTC offset they were written with.

Public API
----------
HourlyPriceRecord     – Immutable spot/buy/sell price for one hour.
hour_key              – Truncate an instant to its hour key.
records_from_spot     – Build a horizon from raw (start, end, spot) triples.
average_buy           – Mean buy price of a horizon (NaN when empty).
PriceStateNow         – Tier flags and price of the slot containing "now".
price_state_now       – Locate the current slot in a horizon.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import datetime

from battery_dispatch.market.classifier import PriceClassification, PriceTier

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class HourlyPriceRecord:
    """Price of electricity for one hour.

    Attributes
    ----------
    start:
        Interval start (tz-aware).
    end:
        Interval end (tz-aware, exclusive).
    spot:
        Day-ahead spot price per kWh.
    buy:
        Import price per kWh (spot + import markup).
    sell:
        Export price per kWh (spot + export markup), ``None`` when unknown.
    """

    start: datetime
    end: datetime
    spot: float
    buy: float
    sell: float | None

    @classmethod
    def from_spot(
        cls,
        start: datetime,
        end: datetime,
        spot: float,
        import_markup: float,
        export_markup: float,
    ) -> HourlyPriceRecord:
        """Derive buy and sell prices by adding the fixed markups to *spot*."""
        return cls(
            start=start,
            end=end,
            spot=spot,
            buy=spot + import_markup,
            sell=spot + export_markup,
        )

    @property
    def key(self) -> datetime:
        return hour_key(self.start)

    @property
    def effective_sell(self) -> float:
        """Sell price, falling back to the buy price when sell is unknown."""
        if self.sell is None or not math.isfinite(self.sell):
            return self.buy
        return self.sell

    def contains(self, instant: datetime) -> bool:
        return self.start <= instant < self.end


def hour_key(instant: datetime) -> datetime:
    """Truncate *instant* to the start of its hour."""
    return instant.replace(minute=0, second=0, microsecond=0)


def records_from_spot(
    rows: Iterable[tuple[datetime, datetime, float]],
    import_markup: float,
    export_markup: float,
) -> list[HourlyPriceRecord]:
    """Build a chronologically ordered horizon from ``(start, end, spot)`` rows."""
    records = [
        HourlyPriceRecord.from_spot(start, end, spot, import_markup, export_markup)
        for start, end, spot in rows
    ]
    records.sort(key=lambda r: r.start)
    return records


def average_buy(hours: Sequence[HourlyPriceRecord]) -> float:
    """Mean buy price of *hours*, or NaN for an empty horizon."""
    if not hours:
        return math.nan
    return sum(h.buy for h in hours) / len(hours)


# ---------------------------------------------------------------------------
# Current slot
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PriceStateNow:
    """Classification and price of the slot containing the current instant.

    ``slot`` is ``None`` when no record covers "now"; the tier is then
    :attr:`PriceTier.MID` and the prices are NaN.
    """

    tier: PriceTier
    buy: float
    sell: float
    slot: HourlyPriceRecord | None

    @property
    def in_cheap(self) -> bool:
        return self.tier is PriceTier.CHEAP

    @property
    def in_top_tier(self) -> bool:
        return self.tier is PriceTier.TOP

    @property
    def in_next_tier(self) -> bool:
        return self.tier is PriceTier.NEXT


def price_state_now(
    hours: Sequence[HourlyPriceRecord],
    classification: PriceClassification,
    now: datetime,
) -> PriceStateNow:
    """Return the tier and prices of the record whose interval contains *now*."""
    slot = next((h for h in hours if h.contains(now)), None)
    if slot is None:
        logger.warning("No price slot covers %s; treating the hour as mid.", now)
        return PriceStateNow(tier=PriceTier.MID, buy=math.nan, sell=math.nan, slot=None)
    return PriceStateNow(
        tier=classification.tier_of(slot.key),
        buy=slot.buy,
        sell=slot.effective_sell,
        slot=slot,
    )
