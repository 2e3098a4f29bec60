"""Decision cycle: one pass from telemetry and prices to command and forecasts.

The cycle is pure over its explicit inputs – telemetry, today's and
tomorrow's horizons and the current instant – so the host decides how prices
are retrieved and where results go.  Steps:

1. Normalise telemetry and check the power balance.
2. Classify today, tomorrow and the combined horizon.
3. Locate the current slot and its tier.
4. Compute the midnight target from tomorrow's profitability.
5. Build the SoC cap table for both days.
6. Decide the realtime command.
7. Simulate the remaining hours of today and, when known, all of tomorrow.

Failures inside the decision core never abort the cycle: a ``ValueError`` or
arithmetic error while deciding yields an idle command, and a failing plan
run yields an empty forecast.

Public API
----------
CycleResult          - Everything one cycle produced.
battery_from_config  - BatteryState from static ratings and a live SoC.
cheap_average        - Mean buy price of the cheap hours of a horizon.
run_cycle            - Execute one decision cycle.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime

from battery_dispatch.bess.battery import BatteryState
from battery_dispatch.bess.telemetry import (
    BalanceCheck,
    TelemetrySample,
    balance_check,
    read_telemetry,
)
from battery_dispatch.config.defaults import HARD_MAX_SOC
from battery_dispatch.config.loader import BatteryConfig, ControllerConfig
from battery_dispatch.dispatch.decisions import DecisionResult
from battery_dispatch.dispatch.midnight_target import MidnightTarget, compute_midnight_target
from battery_dispatch.dispatch.planner import DispatchPlanEntry, PlanSettings, build_plan
from battery_dispatch.dispatch.realtime import decide_realtime
from battery_dispatch.dispatch.soc_caps import SocCapTable, build_soc_cap_table
from battery_dispatch.market.classifier import PriceClassification, classify_prices
from battery_dispatch.market.prices import (
    HourlyPriceRecord,
    PriceStateNow,
    average_buy,
    price_state_now,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Result container
# ---------------------------------------------------------------------------


@dataclass
class CycleResult:
    """Output of :func:`run_cycle`.

    Attributes
    ----------
    now:
        Instant the cycle was evaluated for.
    sample:
        Normalised telemetry.
    balance:
        Power balance of *sample*.
    decision:
        Command for the battery.
    price_now:
        Tier and prices of the current slot.
    avg_buy_today:
        Mean buy price of today (NaN without prices).
    classification_today, classification_tomorrow, classification_all:
        Tiers per horizon.
    target:
        Midnight target and its profitability diagnostic.
    caps:
        Cap table of this cycle.
    cap_now:
        SoC ceiling of the current hour.
    plan_today, plan_tomorrow:
        Forecast runs (tomorrow is empty until its prices are known).
    """

    now: datetime
    sample: TelemetrySample
    balance: BalanceCheck
    decision: DecisionResult
    price_now: PriceStateNow
    avg_buy_today: float
    classification_today: PriceClassification
    classification_tomorrow: PriceClassification
    classification_all: PriceClassification
    target: MidnightTarget
    caps: SocCapTable
    cap_now: float = HARD_MAX_SOC
    plan_today: list[DispatchPlanEntry] = field(default_factory=list)
    plan_tomorrow: list[DispatchPlanEntry] = field(default_factory=list)

    @property
    def soc(self) -> float:
        return self.sample.soc

    @property
    def target_soc(self) -> float | None:
        return self.target.target_soc

    @property
    def reservation_active(self) -> bool:
        return self.caps.is_capped(self.now)

    @property
    def soc_at_midnight(self) -> float:
        """Simulated SoC at the end of today (live SoC without a plan)."""
        return self.plan_today[-1].soc_end if self.plan_today else self.sample.soc


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def battery_from_config(config: BatteryConfig, soc: float) -> BatteryState:
    return BatteryState(
        soc=soc,
        capacity_kwh=config.capacity_kwh,
        max_charge_kw=config.max_charge_kw,
        max_discharge_kw=config.max_discharge_kw,
        round_trip_efficiency=config.round_trip_efficiency,
    )


def cheap_average(
    hours: Sequence[HourlyPriceRecord], classification: PriceClassification
) -> float:
    """Mean buy price of the cheap hours in *hours*; NaN when there are none."""
    return average_buy([h for h in hours if h.key in classification.cheap])


def _plan_settings(
    config: ControllerConfig, day_avg: float, baseline: float, fallback: float
) -> PlanSettings:
    behaviour = config.behaviour
    return PlanSettings(
        day_average_buy=day_avg,
        baseline_buy=baseline,
        fallback_baseline_buy=fallback,
        min_sell_margin=behaviour.min_sell_margin,
        mid_discharge_floor_soc=behaviour.mid_discharge_floor_soc,
        price_mid_bias=behaviour.price_mid_bias,
        allocation=behaviour.plan_allocation,
    )


def _safe_plan(label: str, *args) -> list[DispatchPlanEntry]:
    try:
        return build_plan(*args)
    except (ValueError, ArithmeticError):
        logger.exception("Plan for %s failed; publishing an empty forecast.", label)
        return []


# ---------------------------------------------------------------------------
# Public entry point
# ---------------------------------------------------------------------------


def run_cycle(
    config: ControllerConfig,
    telemetry: TelemetrySample | str,
    today: Sequence[HourlyPriceRecord],
    tomorrow: Sequence[HourlyPriceRecord],
    now: datetime,
) -> CycleResult:
    """Run one decision cycle.

    Parameters
    ----------
    config:
        Controller configuration.
    telemetry:
        Normalised sample or a raw ``A;B;C;D;E`` telemetry string.
    today:
        Today's ordered horizon.
    tomorrow:
        Tomorrow's ordered horizon, empty when not yet published.
    now:
        Current tz-aware instant.

    Returns
    -------
    CycleResult
    """
    sample = read_telemetry(telemetry) if isinstance(telemetry, str) else telemetry
    balance = balance_check(sample)
    logger.info(
        "Telemetry: prod %.3f kW, load %.3f kW, SoC %d%%",
        sample.prod_kw,
        sample.load_kw,
        round(sample.soc * 100),
    )

    today = list(today)
    tomorrow = list(tomorrow)
    combined = today + tomorrow
    tiers = config.tiers

    def classify(hours: Sequence[HourlyPriceRecord]) -> PriceClassification:
        return classify_prices(
            hours, tiers.cheap_fraction, tiers.top_fraction, tiers.next_fraction
        )

    cls_today = classify(today)
    cls_tomorrow = classify(tomorrow)
    cls_all = classify(combined)

    price_now = price_state_now(combined, cls_all, now)
    avg_buy_today = average_buy(today)
    logger.info(
        "Price now: %s at %.2f/kWh (today's average %.2f)",
        price_now.tier.value,
        price_now.buy,
        avg_buy_today,
    )

    cheap_today = cheap_average(today, cls_today)
    cheap_tomorrow = cheap_average(tomorrow, cls_tomorrow)
    cheap_all = cheap_average(combined, cls_all)

    battery_cfg = config.battery
    behaviour = config.behaviour
    target = compute_midnight_target(
        today,
        tomorrow,
        cls_all,
        now,
        capacity_kwh=battery_cfg.capacity_kwh,
        max_discharge_kw=battery_cfg.max_discharge_kw,
        round_trip_efficiency=battery_cfg.round_trip_efficiency,
        min_sell_margin=behaviour.min_sell_margin,
    )

    caps = build_soc_cap_table([today, tomorrow], cls_all, config.solar_reserve)
    cap_now = caps.cap_for_hour(now)
    logger.info("SoC cap now: %d%%", round(cap_now * 100))

    battery = battery_from_config(battery_cfg, sample.soc)
    try:
        decision = decide_realtime(
            sample,
            battery,
            price_now,
            caps,
            now,
            behaviour,
            avg_buy_today=avg_buy_today,
            cheap_averages=(cheap_today, cheap_tomorrow, cheap_all),
            target_soc=target.target_soc,
        )
    except (ValueError, ArithmeticError):
        logger.exception("Realtime decision failed; falling back to idle.")
        decision = DecisionResult.idle("Fallback: decision error")

    future_today = [h for h in today if h.start > now]
    plan_today = _safe_plan(
        "today",
        future_today,
        cls_today,
        sample.soc,
        battery,
        caps,
        _plan_settings(config, avg_buy_today, cheap_today, cheap_all),
    )

    plan_tomorrow: list[DispatchPlanEntry] = []
    if tomorrow:
        soc_at_midnight = plan_today[-1].soc_end if plan_today else sample.soc
        start_soc = target.target_soc if target.target_soc is not None else soc_at_midnight
        plan_tomorrow = _safe_plan(
            "tomorrow",
            tomorrow,
            cls_tomorrow,
            start_soc,
            battery,
            caps,
            _plan_settings(config, average_buy(tomorrow), cheap_tomorrow, cheap_all),
        )
    else:
        logger.info("Tomorrow's plan not available yet.")

    logger.info(
        "Decision now: %s %.2f kW (%s)",
        decision.mode,
        decision.power_kw,
        decision.reason,
    )

    return CycleResult(
        now=now,
        sample=sample,
        balance=balance,
        decision=decision,
        price_now=price_now,
        avg_buy_today=avg_buy_today,
        classification_today=cls_today,
        classification_tomorrow=cls_tomorrow,
        classification_all=cls_all,
        target=target,
        caps=caps,
        cap_now=cap_now,
        plan_today=plan_today,
        plan_tomorrow=plan_tomorrow,
    )
