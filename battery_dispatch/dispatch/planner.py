"""Forward dispatch simulation: turn an hour horizon into a visible schedule.

The planner folds over an ordered horizon.  Each hour starts at the SoC the
previous hour ended with, so the fold is strictly sequential.  Per hour it
resolves the SoC cap, the price tier and the margin baseline, picks a decision
by tier, merges any forced bleed toward the cap, and integrates the SoC.

Tier branches
-------------
=========  ===============================================================
Tier       Decision
=========  ===============================================================
cheap      charge toward the hour's cap (charge power × charge efficiency)
top        margin OK: sell up to the energy above the hard floor;
           otherwise shave-only discharge with the same bound
next       shave-only discharge above the floor SoC (no live load is known
           while planning, so the setpoint is indicative)
mid        shave-only when buy >= day average × bias and SoC above
           floor + hysteresis
=========  ===============================================================

Forced bleed: when the SoC sits above the hour's cap a discharge toward the
cap is merged into the chosen decision.  It upgrades idle/charge to a shave
discharge and may raise, never lower, an existing discharge.

Allocation policies
-------------------
``greedy``  each discharge hour takes what the battery can deliver.
``ranked``  the deliverable energy above the hard floor at the start of the
            horizon is handed out to discharge-eligible hours in descending
            sell-price order; each hour's discharge is capped by its share.

Public API
----------
PlanSettings          – Policy inputs of one plan run.
DispatchPlanEntry     – One row of the forecast document.
build_plan            – Simulate one horizon.
plan_to_document      – Serialise a plan as a list of plain dicts.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime

from battery_dispatch.bess.battery import BatteryState, clamp_soc
from battery_dispatch.config.defaults import (
    DEFAULT_MID_DISCHARGE_FLOOR_SOC,
    DEFAULT_MIN_SELL_MARGIN,
    DEFAULT_PLAN_ALLOCATION,
    DEFAULT_PRICE_MID_BIAS,
    HARD_MIN_SOC,
    MID_SOC_HYSTERESIS,
    PLAN_ALLOCATION_GREEDY,
    PLAN_ALLOCATION_RANKED,
    POWER_EPSILON_KW,
    PRICE_PRECISION,
    SOC_EPSILON,
    SOC_PRECISION,
)
from battery_dispatch.dispatch.decisions import (
    DecisionKind,
    margin_ok,
    round_power,
)
from battery_dispatch.dispatch.soc_caps import SocCapTable
from battery_dispatch.market.classifier import PriceClassification, PriceTier
from battery_dispatch.market.prices import HourlyPriceRecord

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Inputs / outputs
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PlanSettings:
    """Policy inputs of one plan run.

    Attributes
    ----------
    day_average_buy:
        Average buy price of the planned day; the mid-tier threshold is this
        times ``price_mid_bias``.
    baseline_buy:
        Day-relative cheap-hour average buy price used for the sell margin.
    fallback_baseline_buy:
        Overall cheap average used when *baseline_buy* is not finite.
    min_sell_margin:
        Required spread before an hour may export.
    mid_discharge_floor_soc:
        Lowest SoC that shave-only branches may reach.
    price_mid_bias:
        Multiplier on the day average for the mid-tier threshold.
    allocation:
        ``"greedy"`` or ``"ranked"``.
    """

    day_average_buy: float
    baseline_buy: float = math.nan
    fallback_baseline_buy: float = math.nan
    min_sell_margin: float = DEFAULT_MIN_SELL_MARGIN
    mid_discharge_floor_soc: float = DEFAULT_MID_DISCHARGE_FLOOR_SOC
    price_mid_bias: float = DEFAULT_PRICE_MID_BIAS
    allocation: str = DEFAULT_PLAN_ALLOCATION

    @property
    def effective_baseline_buy(self) -> float:
        if math.isfinite(self.baseline_buy):
            return self.baseline_buy
        return self.fallback_baseline_buy

    @property
    def mid_threshold(self) -> float:
        avg = self.day_average_buy if math.isfinite(self.day_average_buy) else 0.0
        return avg * self.price_mid_bias


@dataclass(frozen=True)
class DispatchPlanEntry:
    """One hour of a forecast document."""

    hour_start: datetime
    decision: DecisionKind
    power_kw: float
    soc_end: float
    buy_price: float

    @property
    def export_allowed(self) -> bool:
        return self.decision.export_allowed

    def to_dict(self) -> dict:
        return {
            "hour_start": self.hour_start.isoformat(),
            "decision": self.decision.value,
            "power_setpoint_kw": self.power_kw,
            "resulting_soc": self.soc_end,
            "buy_price": self.buy_price,
            "export_allowed": self.export_allowed,
        }


def plan_to_document(plan: Sequence[DispatchPlanEntry]) -> list[dict]:
    """Serialise *plan* to the ordered forecast-document structure."""
    return [entry.to_dict() for entry in plan]


# ---------------------------------------------------------------------------
# Ranked allocation
# ---------------------------------------------------------------------------


def _discharge_candidates(
    hours: Sequence[HourlyPriceRecord],
    classification: PriceClassification,
    settings: PlanSettings,
) -> list[HourlyPriceRecord]:
    candidates = []
    for h in hours:
        tier = classification.tier_of(h.key)
        if tier in (PriceTier.TOP, PriceTier.NEXT):
            candidates.append(h)
        elif tier is PriceTier.MID and h.buy >= settings.mid_threshold:
            candidates.append(h)
    # stable: equal sell prices keep chronological order
    candidates.sort(key=lambda h: -h.effective_sell)
    return candidates


def _ranked_allocation(
    hours: Sequence[HourlyPriceRecord],
    classification: PriceClassification,
    settings: PlanSettings,
    battery: BatteryState,
) -> dict[datetime, float]:
    """Hand the deliverable energy out to the best-paid discharge hours."""
    remaining_kwh = battery.discharge_headroom_kw(HARD_MIN_SOC)
    allocation: dict[datetime, float] = {}
    for h in _discharge_candidates(hours, classification, settings):
        if remaining_kwh <= SOC_EPSILON:
            break
        share = min(remaining_kwh, battery.max_discharge_kw)
        if share > SOC_EPSILON:
            allocation[h.key] = share
            remaining_kwh -= share
    return allocation


# ---------------------------------------------------------------------------
# Per-hour decision
# ---------------------------------------------------------------------------


def _choose(
    h: HourlyPriceRecord,
    tier: PriceTier,
    cap: float,
    battery: BatteryState,
    settings: PlanSettings,
    round_trip_efficiency: float,
) -> tuple[DecisionKind, float]:
    """Tier branch for one hour, before forced bleed and allocation limits."""
    floor = settings.mid_discharge_floor_soc

    if tier is PriceTier.CHEAP:
        power = min(battery.charge_headroom_kw(cap), battery.max_charge_kw)
        return DecisionKind.CHARGE, power

    if tier is PriceTier.TOP:
        power = min(battery.discharge_headroom_kw(HARD_MIN_SOC), battery.max_discharge_kw)
        if margin_ok(
            h.effective_sell,
            settings.effective_baseline_buy,
            round_trip_efficiency,
            settings.min_sell_margin,
        ):
            return DecisionKind.DISCHARGE_SELL, power
        return DecisionKind.DISCHARGE_SHAVE, power

    if tier is PriceTier.NEXT:
        power = min(battery.discharge_headroom_kw(floor), battery.max_discharge_kw)
        return DecisionKind.DISCHARGE_SHAVE, power

    if h.buy >= settings.mid_threshold and battery.soc > floor + MID_SOC_HYSTERESIS:
        power = min(battery.discharge_headroom_kw(floor), battery.max_discharge_kw)
        return DecisionKind.DISCHARGE_MID, power

    return DecisionKind.IDLE, 0.0


def _forced_bleed_kw(battery: BatteryState, cap: float) -> float:
    """Discharge power that brings the SoC down to *cap* within one slot."""
    if battery.soc <= cap + SOC_EPSILON:
        return 0.0
    to_cap_kw = (battery.soc - cap) * battery.capacity_kwh * battery.discharge_efficiency
    return min(to_cap_kw, battery.max_discharge_kw)


def _merge_bleed(
    kind: DecisionKind, power: float, bleed: float
) -> tuple[DecisionKind, float]:
    if bleed <= 0.0:
        return kind, power
    if kind.is_discharge:
        return kind, max(power, bleed)
    return DecisionKind.DISCHARGE_SHAVE, bleed


# ---------------------------------------------------------------------------
# Public entry point
# ---------------------------------------------------------------------------


def build_plan(
    hours: Sequence[HourlyPriceRecord],
    classification: PriceClassification,
    start_soc: float,
    battery: BatteryState,
    caps: SocCapTable,
    settings: PlanSettings,
) -> list[DispatchPlanEntry]:
    """Simulate *hours* from *start_soc* and return one entry per hour.

    Parameters
    ----------
    hours:
        Ordered future hours to plan.
    classification:
        Tiers of the planned day.
    start_soc:
        SoC fraction at the start of the first hour.
    battery:
        Ratings template; it is copied, never mutated.
    caps:
        Cap table of the current cycle.
    settings:
        Policy inputs for this run.

    Returns
    -------
    list[DispatchPlanEntry]
        Empty for an empty horizon.  Every ``soc_end`` lies within the hard
        SoC bounds.
    """
    if not hours:
        return []
    if settings.allocation not in (PLAN_ALLOCATION_GREEDY, PLAN_ALLOCATION_RANKED):
        raise ValueError(
            f"Unknown plan allocation '{settings.allocation}'. Must be "
            f"'{PLAN_ALLOCATION_GREEDY}' or '{PLAN_ALLOCATION_RANKED}'."
        )

    sim = battery.copy(soc=start_soc)
    rte = battery.round_trip_efficiency

    allocation: dict[datetime, float] | None = None
    if settings.allocation == PLAN_ALLOCATION_RANKED:
        allocation = _ranked_allocation(hours, classification, settings, sim)

    plan: list[DispatchPlanEntry] = []
    for h in hours:
        cap = caps.cap_for_hour(h.start)
        tier = classification.tier_of(h.key)

        kind, power = _choose(h, tier, cap, sim, settings, rte)
        if allocation is not None and kind.is_discharge:
            power = min(power, allocation.get(h.key, 0.0))
        kind, power = _merge_bleed(kind, power, _forced_bleed_kw(sim, cap))

        power = round_power(power)
        if power <= POWER_EPSILON_KW:
            kind, power = DecisionKind.IDLE, 0.0

        if kind.is_charge:
            sim.charge(power)
        elif kind.is_discharge:
            sim.discharge(power)
        sim.soc = clamp_soc(sim.soc)

        entry = DispatchPlanEntry(
            hour_start=h.start,
            decision=kind,
            power_kw=power,
            soc_end=round(sim.soc, SOC_PRECISION),
            buy_price=round(h.buy, PRICE_PRECISION),
        )
        logger.debug(
            "%s -> %s @ %.2f kW (SoC end %.1f%%) [%.2f/kWh]",
            h.start.isoformat(),
            kind.value.upper(),
            power,
            entry.soc_end * 100.0,
            entry.buy_price,
        )
        plan.append(entry)

    return plan
