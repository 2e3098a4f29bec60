"""Per-hour SoC ceilings that keep room in the battery for solar production.

During a configurable morning window (and only in the sunny months) the
battery is held below a *reserve cap* so that later PV surplus can be stored
instead of exported.  The result is a sparse table ``hour key -> max SoC``;
hours without an entry are capped at :data:`HARD_MAX_SOC`.

The table is a plain value: it is built from nothing once per cycle by
:func:`build_soc_cap_table` and passed explicitly to the planner and the
realtime engine.
"""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import TYPE_CHECKING

from battery_dispatch.bess.battery import clamp_soc
from battery_dispatch.config.defaults import (
    DEFAULT_SOLAR_RESERVE_CAP,
    DEFAULT_SOLAR_RESERVE_ENABLED,
    DEFAULT_SOLAR_RESERVE_END_HOUR,
    DEFAULT_SOLAR_RESERVE_MONTHS,
    DEFAULT_SOLAR_RESERVE_SKIP_EXPENSIVE,
    DEFAULT_SOLAR_RESERVE_START_HOUR,
    HARD_MAX_SOC,
    SOC_EPSILON,
)
from battery_dispatch.market.classifier import PriceClassification

if TYPE_CHECKING:
    from battery_dispatch.market.prices import HourlyPriceRecord

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Policy
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SolarReservePolicy:
    """Configuration of the morning solar reservation.

    Attributes
    ----------
    enabled:
        Master switch.
    reserve_cap_fraction:
        SoC ceiling inside the window (clamped to the hard bounds).
    active_months:
        Calendar months (1 = January) in which the policy applies.  Empty means
        every month.
    window_start_hour:
        First local hour of the window (inclusive).
    window_end_hour:
        Local hour at which the window ends (exclusive).  A start after the end
        wraps the window past midnight.
    skip_expensive_hours:
        Leave top/next-tier hours uncapped so they remain free to discharge.
    """

    enabled: bool = DEFAULT_SOLAR_RESERVE_ENABLED
    reserve_cap_fraction: float = DEFAULT_SOLAR_RESERVE_CAP
    active_months: frozenset[int] = field(
        default_factory=lambda: frozenset(DEFAULT_SOLAR_RESERVE_MONTHS)
    )
    window_start_hour: int = DEFAULT_SOLAR_RESERVE_START_HOUR
    window_end_hour: int = DEFAULT_SOLAR_RESERVE_END_HOUR
    skip_expensive_hours: bool = DEFAULT_SOLAR_RESERVE_SKIP_EXPENSIVE

    @property
    def wraps_midnight(self) -> bool:
        return self.window_start_hour > self.window_end_hour

    def month_matches(self, month: int) -> bool:
        return not self.active_months or month in self.active_months

    def in_window(self, hour: int) -> bool:
        """Whether local *hour* falls inside the end-exclusive window."""
        if self.wraps_midnight:
            return hour >= self.window_start_hour or hour < self.window_end_hour
        return self.window_start_hour <= hour < self.window_end_hour


def solar_reserve_policy_from_dict(config_dict: dict) -> SolarReservePolicy:
    """Build a :class:`SolarReservePolicy` from the ``solar_reserve`` JSON block.

    Missing keys take their defaults; hours are clamped to 0–23 (start) and
    0–24 (end).
    """
    start = int(config_dict.get("window_start_hour", DEFAULT_SOLAR_RESERVE_START_HOUR))
    end = int(config_dict.get("window_end_hour", DEFAULT_SOLAR_RESERVE_END_HOUR))
    return SolarReservePolicy(
        enabled=bool(config_dict.get("enabled", DEFAULT_SOLAR_RESERVE_ENABLED)),
        reserve_cap_fraction=float(
            config_dict.get("reserve_cap_fraction", DEFAULT_SOLAR_RESERVE_CAP)
        ),
        active_months=frozenset(
            int(m) for m in config_dict.get("active_months", DEFAULT_SOLAR_RESERVE_MONTHS)
        ),
        window_start_hour=max(0, min(23, start)),
        window_end_hour=max(0, min(24, end)),
        skip_expensive_hours=bool(
            config_dict.get("skip_expensive_hours", DEFAULT_SOLAR_RESERVE_SKIP_EXPENSIVE)
        ),
    )


# ---------------------------------------------------------------------------
# Table
# ---------------------------------------------------------------------------


def _hour_key(instant: datetime) -> datetime:
    return instant.replace(minute=0, second=0, microsecond=0)


class SocCapTable:
    """Sparse mapping of hour key to maximum SoC fraction.

    Registrations are clamped to ``[HARD_MIN_SOC, HARD_MAX_SOC]`` and the most
    restrictive value wins when the same hour is registered more than once.
    """

    def __init__(self) -> None:
        self._overrides: dict[datetime, float] = {}

    def register(self, instant: datetime, cap: float) -> None:
        key = _hour_key(instant)
        limited = clamp_soc(cap)
        previous = self._overrides.get(key)
        self._overrides[key] = limited if previous is None else min(previous, limited)

    def cap_for_hour(self, instant: datetime) -> float:
        """SoC ceiling for the hour containing *instant*."""
        return self._overrides.get(_hour_key(instant), HARD_MAX_SOC)

    def is_capped(self, instant: datetime) -> bool:
        return self.cap_for_hour(instant) < HARD_MAX_SOC - SOC_EPSILON

    def clear(self) -> None:
        self._overrides.clear()

    def items(self) -> list[tuple[datetime, float]]:
        return sorted(self._overrides.items())

    def __len__(self) -> int:
        return len(self._overrides)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SocCapTable):
            return NotImplemented
        return self._overrides == other._overrides

    def __repr__(self) -> str:
        return f"SocCapTable({len(self)} capped hours)"


def build_soc_cap_table(
    horizons: Iterable[Sequence[HourlyPriceRecord]],
    classification: PriceClassification,
    policy: SolarReservePolicy,
) -> SocCapTable:
    """Build a fresh cap table for all hours of *horizons*.

    Parameters
    ----------
    horizons:
        One or more ordered horizons (typically today and tomorrow).
    classification:
        Tiers over the combined horizon; used to skip expensive hours.
    policy:
        Solar reservation policy.

    Returns
    -------
    SocCapTable
        Empty when the policy is disabled, the reserve cap does not restrict
        anything, or the window is empty.
    """
    table = SocCapTable()

    if not policy.enabled:
        logger.info("Solar reserve: disabled.")
        return table

    reserve_cap = clamp_soc(policy.reserve_cap_fraction)
    if reserve_cap >= HARD_MAX_SOC - SOC_EPSILON:
        logger.info("Solar reserve: cap reaches the hard maximum, nothing to restrict.")
        return table

    if policy.window_start_hour == policy.window_end_hour:
        logger.info("Solar reserve: window start equals end, nothing to restrict.")
        return table

    expensive = classification.expensive
    per_day: Counter[date] = Counter()

    for hours in horizons:
        for h in hours:
            start = h.start
            if not policy.month_matches(start.month):
                continue
            if not policy.in_window(start.hour):
                continue
            if policy.skip_expensive_hours and h.key in expensive:
                continue
            table.register(start, reserve_cap)
            per_day[start.date()] += 1

    if per_day:
        logger.info(
            "Solar reserve: max SoC %d%% on %s",
            round(reserve_cap * 100),
            {d.isoformat(): n for d, n in sorted(per_day.items())},
        )
    else:
        logger.info("Solar reserve: no active restriction.")
    return table
