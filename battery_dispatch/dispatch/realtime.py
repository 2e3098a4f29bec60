"""Realtime decision ladder: the one command applied to the battery right now.

The ladder is stateless.  Everything it needs arrives as arguments, and the
first rung that produces a non-zero setpoint wins:

1. reserve bleed      – SoC above an active solar-reserve cap without surplus
2. solar first        – store PV surplus
3. top tier           – sell when the margin allows, else shave load
4. next tier          – shave load, never export
5. cheap              – grid charge
6. mid                – shave load when the price beats the day average
7. midnight target    – grid charge toward tomorrow's target
8. idle

The sell-margin baseline is the first finite cheap-hour average of the
candidates passed in (today, tomorrow, overall).
"""

from __future__ import annotations

import logging
import math
from collections.abc import Sequence
from datetime import datetime

from battery_dispatch.bess.battery import BatteryState
from battery_dispatch.bess.telemetry import TelemetrySample
from battery_dispatch.config.defaults import (
    HARD_MAX_SOC,
    HARD_MIN_SOC,
    MID_SOC_HYSTERESIS,
    SOC_EPSILON,
)
from battery_dispatch.config.loader import BehaviourConfig
from battery_dispatch.dispatch.decisions import (
    DecisionKind,
    DecisionResult,
    first_finite,
    margin_ok,
    round_power,
)
from battery_dispatch.dispatch.soc_caps import SocCapTable
from battery_dispatch.market.classifier import PriceTier
from battery_dispatch.market.prices import PriceStateNow

logger = logging.getLogger(__name__)


def _pct(fraction: float) -> int:
    return round(fraction * 100)


def _command(kind: DecisionKind, power_kw: float, reason: str) -> DecisionResult | None:
    """A result for a positive rounded setpoint, else ``None`` (rung does not fire)."""
    power = round_power(power_kw)
    if power <= 0.0:
        return None
    return DecisionResult(kind=kind, power_kw=power, reason=reason)


def decide_realtime(
    sample: TelemetrySample,
    battery: BatteryState,
    price_now: PriceStateNow,
    caps: SocCapTable,
    now: datetime,
    behaviour: BehaviourConfig,
    avg_buy_today: float,
    cheap_averages: Sequence[float] = (),
    target_soc: float | None = None,
) -> DecisionResult:
    """Return the command for *now*.

    Parameters
    ----------
    sample:
        Normalised flows of this instant.
    battery:
        Ratings and live SoC.
    price_now:
        Tier and prices of the current slot.
    caps:
        Cap table of this cycle.
    now:
        Current instant.
    behaviour:
        Policy switches and thresholds.
    avg_buy_today:
        Mean buy price of today, for the mid-tier threshold.
    cheap_averages:
        Candidate sell-margin baselines, most relevant first.
    target_soc:
        Midnight target, ``None`` when charging for tomorrow does not pay.

    Returns
    -------
    DecisionResult
    """
    soc = battery.soc
    surplus = sample.pv_surplus_kw
    load_gap = sample.load_gap_kw
    has_surplus = surplus > behaviour.pv_noise_floor_kw

    base_cap = caps.cap_for_hour(now)
    reservation_active = caps.is_capped(now)
    cap = HARD_MAX_SOC if reservation_active and has_surplus else base_cap

    charge_room_kw = battery.charge_headroom_kw(cap)
    available_kw = battery.discharge_headroom_kw(HARD_MIN_SOC)
    max_in = battery.max_charge_kw
    max_out = battery.max_discharge_kw

    baseline = first_finite(cheap_averages)
    sell_ok = price_now.in_top_tier and margin_ok(
        price_now.sell,
        baseline,
        battery.round_trip_efficiency,
        behaviour.min_sell_margin,
    )

    # 1) reserve bleed
    if (
        reservation_active
        and not has_surplus
        and soc > base_cap + behaviour.reserve_bleed_hysteresis
        and available_kw > 0.0
    ):
        to_cap_kw = (soc - base_cap) * battery.capacity_kwh * battery.discharge_efficiency
        limit = min(max_out, available_kw, to_cap_kw)
        result = None
        if load_gap > 0.0:
            result = _command(
                DecisionKind.DISCHARGE_SHAVE,
                min(load_gap, limit),
                f"Reserve bleed: shaving load toward cap {_pct(base_cap)}%",
            )
        elif sell_ok:
            result = _command(
                DecisionKind.DISCHARGE_SELL,
                limit,
                f"Reserve bleed: selling toward cap {_pct(base_cap)}% (top tier, margin OK)",
            )
        if result is not None:
            return result

    # 2) solar first
    if has_surplus and soc < cap - SOC_EPSILON:
        power = min(surplus, charge_room_kw, max_in)
        if power > behaviour.pv_noise_floor_kw:
            result = _command(
                DecisionKind.CHARGE,
                power,
                f"Solar first: PV surplus {round_power(surplus)} kW (cap {_pct(cap)}%)",
            )
            if result is not None:
                return result

    # 3) top tier
    if price_now.in_top_tier:
        if sell_ok:
            result = _command(
                DecisionKind.DISCHARGE_SELL,
                min(max_out, available_kw),
                "Top tier: margin OK, export allowed",
            )
            return result or DecisionResult.idle("Top tier: SoC at minimum")
        result = _command(
            DecisionKind.DISCHARGE_SHAVE,
            min(load_gap, available_kw, max_out),
            "Top tier: margin too low, shaving load only",
        )
        return result or DecisionResult.idle("Top tier: margin too low and no load to shave")

    # 4) next tier
    if price_now.in_next_tier:
        result = _command(
            DecisionKind.DISCHARGE_SHAVE,
            min(load_gap, available_kw, max_out),
            "Next tier: shaving load, no export",
        )
        return result or DecisionResult.idle("Next tier: no load to shave")

    # 5) cheap
    if (
        price_now.in_cheap
        and behaviour.allow_grid_charge_when_cheap
        and soc < cap - SOC_EPSILON
    ):
        result = _command(
            DecisionKind.CHARGE,
            min(charge_room_kw, max_in),
            f"Cheap: charging (cap {_pct(base_cap)}%)",
        )
        if result is not None:
            return result

    # 6) mid
    if price_now.tier is PriceTier.MID:
        floor = max(behaviour.mid_discharge_floor_soc, HARD_MIN_SOC)
        avg = avg_buy_today if math.isfinite(avg_buy_today) else 0.0
        threshold = avg * behaviour.price_mid_bias
        if price_now.buy >= threshold and soc > floor + MID_SOC_HYSTERESIS:
            allow_kw = min(battery.discharge_headroom_kw(floor), max_out)
            result = _command(
                DecisionKind.DISCHARGE_MID,
                min(load_gap, allow_kw),
                f"Mid: shaving import (buffer >= {_pct(floor)}%)",
            )
            if result is not None:
                return result

    # 7) midnight target
    if (
        target_soc is not None
        and soc < target_soc
        and behaviour.allow_grid_charge_to_meet_target
    ):
        result = _command(
            DecisionKind.CHARGE,
            min(charge_room_kw, max_in),
            f"Charging toward midnight target {_pct(target_soc)}% (cap {_pct(cap)}%)",
        )
        if result is not None:
            return result

    return DecisionResult.idle("Neutral: no PV surplus or price trigger")
