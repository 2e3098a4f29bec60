"""End-of-day SoC target driven by tomorrow's profitability.

When tomorrow's prices are known, the battery may be worth filling from
today's remaining cheap hours so that it can discharge through tomorrow's
expensive (top + next tier) hours.  That is only worthwhile when the energy,
bought today and degraded by the round trip, still beats tomorrow's sell price
by the required margin:

    required_sell_after_margin = avg_sell_tomorrow - min_margin
    max_profitable_buy         = required_sell_after_margin * rte
    profitable                 = avg_cheap_buy_remaining_today <= max_profitable_buy

The target is sized to cover one full-power discharge slot per expensive hour
tomorrow, limited to the usable window between the hard SoC bounds.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime

from battery_dispatch.bess.battery import clamp01
from battery_dispatch.config.defaults import (
    DIAGNOSTIC_PRICE_PRECISION,
    HARD_MAX_SOC,
    HARD_MIN_SOC,
    HOURS_PER_SLOT,
)
from battery_dispatch.market.classifier import PriceClassification
from battery_dispatch.market.prices import HourlyPriceRecord

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProfitCheck:
    """Diagnostic of the midnight profitability test (values rounded)."""

    avg_cheap_buy_remaining_today: float
    avg_sell_tomorrow: float
    required_sell_after_margin: float
    max_profitable_buy: float
    profitable: bool

    def to_dict(self) -> dict:
        return {
            "avg_cheap_buy_remaining_today": self.avg_cheap_buy_remaining_today,
            "avg_sell_tomorrow": self.avg_sell_tomorrow,
            "required_sell_after_margin": self.required_sell_after_margin,
            "max_profitable_buy": self.max_profitable_buy,
            "profitable": self.profitable,
        }


@dataclass(frozen=True)
class MidnightTarget:
    """Result of :func:`compute_midnight_target`.

    ``target_soc`` is ``None`` unless charging for tomorrow is profitable;
    ``profit_check`` is ``None`` only when tomorrow offers nothing to evaluate.
    """

    target_soc: float | None
    profit_check: ProfitCheck | None


def _mean(values: Sequence[float], empty: float) -> float:
    return sum(values) / len(values) if values else empty


def compute_midnight_target(
    today_hours: Sequence[HourlyPriceRecord],
    tomorrow_hours: Sequence[HourlyPriceRecord],
    classification: PriceClassification,
    now: datetime,
    capacity_kwh: float,
    max_discharge_kw: float,
    round_trip_efficiency: float,
    min_sell_margin: float,
) -> MidnightTarget:
    """Compute the optional SoC target for the end of today.

    Parameters
    ----------
    today_hours, tomorrow_hours:
        Ordered horizons; *tomorrow_hours* is empty when not yet published.
    classification:
        Tiers over the combined today + tomorrow horizon.
    now:
        Current instant; only cheap hours starting after it count.
    capacity_kwh, max_discharge_kw, round_trip_efficiency:
        Battery ratings.
    min_sell_margin:
        Required spread between sell price and efficiency-adjusted buy cost.

    Returns
    -------
    MidnightTarget
    """
    expensive_tomorrow = [h for h in tomorrow_hours if h.key in classification.expensive]
    if not tomorrow_hours or not expensive_tomorrow:
        return MidnightTarget(target_soc=None, profit_check=None)

    cheap_remaining = [
        h.buy for h in today_hours if h.start > now and h.key in classification.cheap
    ]
    avg_cheap = _mean(cheap_remaining, math.inf)
    avg_sell = _mean([h.effective_sell for h in expensive_tomorrow], -math.inf)

    required_sell = avg_sell - min_sell_margin
    max_profitable_buy = required_sell * round_trip_efficiency
    profitable = (
        math.isfinite(avg_cheap)
        and math.isfinite(max_profitable_buy)
        and avg_cheap <= max_profitable_buy
    )

    energy_needed_kwh = len(expensive_tomorrow) * max_discharge_kw * HOURS_PER_SLOT
    usable_kwh = capacity_kwh * (HARD_MAX_SOC - HARD_MIN_SOC)
    target = clamp01(HARD_MIN_SOC + min(energy_needed_kwh, usable_kwh) / capacity_kwh)

    check = ProfitCheck(
        avg_cheap_buy_remaining_today=round(avg_cheap, DIAGNOSTIC_PRICE_PRECISION),
        avg_sell_tomorrow=round(avg_sell, DIAGNOSTIC_PRICE_PRECISION),
        required_sell_after_margin=round(required_sell, DIAGNOSTIC_PRICE_PRECISION),
        max_profitable_buy=round(max_profitable_buy, DIAGNOSTIC_PRICE_PRECISION),
        profitable=profitable,
    )
    logger.info("Profitability check for tomorrow: %s", check.to_dict())
    if profitable:
        logger.info("SoC target at midnight: %d%%", round(target * 100))

    return MidnightTarget(target_soc=target if profitable else None, profit_check=check)
