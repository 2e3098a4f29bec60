"""Integration tests for the decision cycle (engine.py).

Tests use the synthetic reference day from conftest for today and, where
needed, the same prices for tomorrow (48 hours).  Each test runs one full
cycle: telemetry → classification → target → caps → command → plans.
"""

from __future__ import annotations

import math
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from battery_dispatch.config.loader import BatteryConfig, default_config, load_config_dict
from battery_dispatch.dispatch.decisions import DecisionKind
from battery_dispatch.dispatch.engine import battery_from_config, cheap_average, run_cycle
from battery_dispatch.market.classifier import PriceTier, classify_prices

CEST = timezone(timedelta(hours=2))
EVENING = datetime(2025, 6, 1, 18, 30, tzinfo=CEST)
EFF = math.sqrt(0.92)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class TestHelpers:
    def test_battery_from_config(self) -> None:
        battery = battery_from_config(BatteryConfig(capacity_kwh=10.0), 0.42)
        assert battery.soc == pytest.approx(0.42)
        assert battery.capacity_kwh == 10.0
        assert battery.max_discharge_kw == 4.0

    def test_cheap_average(self, summer_today) -> None:
        classes = classify_prices(summer_today, 0.30, 0.10, 0.30)
        assert cheap_average(summer_today, classes) == pytest.approx(0.64 / 7 + 0.86)

    def test_cheap_average_empty(self) -> None:
        assert math.isnan(cheap_average([], classify_prices([], 0.3, 0.1, 0.3)))


# ---------------------------------------------------------------------------
# Full cycles
# ---------------------------------------------------------------------------


class TestEveningCycle:
    def test_sells_in_top_tier(self, summer_today, summer_tomorrow, make_sample) -> None:
        result = run_cycle(
            default_config(), make_sample(load_kw=1.0, soc=0.6), summer_today, summer_tomorrow, EVENING
        )
        assert result.price_now.tier is PriceTier.TOP
        assert result.decision.kind is DecisionKind.DISCHARGE_SELL
        assert result.decision.power_kw == pytest.approx(4.0)
        assert not result.reservation_active
        assert result.cap_now == pytest.approx(0.90)

    def test_target_and_plans(self, summer_today, summer_tomorrow, make_sample) -> None:
        result = run_cycle(
            default_config(), make_sample(soc=0.6), summer_today, summer_tomorrow, EVENING
        )
        assert result.target_soc == pytest.approx(0.90)
        assert result.target.profit_check.profitable
        assert [e.hour_start.hour for e in result.plan_today] == [19, 20, 21, 22, 23]
        assert len(result.plan_tomorrow) == 24
        assert result.soc_at_midnight == result.plan_today[-1].soc_end

    def test_tomorrow_starts_from_target(self, summer_today, summer_tomorrow, make_sample) -> None:
        result = run_cycle(
            default_config(), make_sample(soc=0.3), summer_today, summer_tomorrow, EVENING
        )
        # 90 % start above tomorrow's 75 % morning cap → forced bleed in hour 0
        first = result.plan_tomorrow[0]
        assert first.decision is DecisionKind.DISCHARGE_SHAVE
        assert first.power_kw == pytest.approx(round(0.15 * 15 * EFF, 2))
        assert first.soc_end == pytest.approx(0.75, abs=1e-3)

    def test_strict_margin_shaves_instead(self, summer_today, summer_tomorrow, make_sample) -> None:
        config = load_config_dict({"behaviour": {"min_sell_margin": 5.0}})
        result = run_cycle(
            config, make_sample(load_kw=1.0, soc=0.6), summer_today, summer_tomorrow, EVENING
        )
        assert result.decision.kind is DecisionKind.DISCHARGE_SHAVE
        assert result.decision.power_kw == pytest.approx(1.0)
        assert result.target_soc is None
        assert all(e.decision is not DecisionKind.DISCHARGE_SELL for e in result.plan_today)


class TestMorningCycle:
    def test_raw_telemetry_string(self, summer_today) -> None:
        now = datetime(2025, 6, 1, 10, 30, tzinfo=CEST)
        result = run_cycle(default_config(), "1300;60;261;-970;16", summer_today, [], now)
        assert result.soc == pytest.approx(0.16)
        assert result.balance.ok
        assert result.reservation_active
        assert result.decision.kind is DecisionKind.CHARGE
        assert result.decision.power_kw == pytest.approx(1.04)
        assert result.decision.reason.startswith("Solar first")

    def test_cheap_hour_charges_to_cap(self, summer_today, make_sample) -> None:
        now = datetime(2025, 6, 1, 2, 30, tzinfo=CEST)
        result = run_cycle(default_config(), make_sample(soc=0.6), summer_today, [], now)
        assert result.cap_now == pytest.approx(0.75)
        assert result.decision.kind is DecisionKind.CHARGE
        assert result.decision.power_kw == pytest.approx(round(0.15 * 15 / EFF, 2))
        assert result.plan_tomorrow == []
        assert result.target_soc is None
        assert result.target.profit_check is None

    def test_planned_soc_within_bounds(self, summer_today, make_sample) -> None:
        now = datetime(2025, 6, 1, 0, 30, tzinfo=CEST)
        result = run_cycle(default_config(), make_sample(soc=0.9), summer_today, [], now)
        assert len(result.plan_today) == 23
        for entry in result.plan_today:
            assert 0.10 - 1e-9 <= entry.soc_end <= 0.90 + 1e-9


# ---------------------------------------------------------------------------
# Degraded inputs
# ---------------------------------------------------------------------------


class TestDegradedCycle:
    def test_no_prices_idles(self, make_sample) -> None:
        now = datetime(2025, 6, 1, 12, tzinfo=CEST)
        result = run_cycle(default_config(), make_sample(load_kw=1.0), [], [], now)
        assert result.price_now.slot is None
        assert math.isnan(result.avg_buy_today)
        assert result.decision.kind is DecisionKind.IDLE
        assert result.plan_today == []
        assert result.plan_tomorrow == []
        assert result.soc_at_midnight == pytest.approx(0.5)

    def test_decision_error_falls_back_to_idle(self, summer_today, make_sample) -> None:
        with patch(
            "battery_dispatch.dispatch.engine.decide_realtime",
            side_effect=ArithmeticError("boom"),
        ):
            result = run_cycle(default_config(), make_sample(), summer_today, [], EVENING)
        assert result.decision.kind is DecisionKind.IDLE
        assert result.decision.reason == "Fallback: decision error"
        assert len(result.plan_today) == 5

    def test_plan_error_gives_empty_forecast(
        self, summer_today, summer_tomorrow, make_sample
    ) -> None:
        with patch(
            "battery_dispatch.dispatch.engine.build_plan",
            side_effect=ValueError("bad horizon"),
        ):
            result = run_cycle(
                default_config(), make_sample(soc=0.6), summer_today, summer_tomorrow, EVENING
            )
        assert result.plan_today == []
        assert result.plan_tomorrow == []
        assert result.decision.kind is DecisionKind.DISCHARGE_SELL

    def test_rerun_is_deterministic(self, summer_today, summer_tomorrow, make_sample) -> None:
        args = (default_config(), make_sample(soc=0.6), summer_today, summer_tomorrow, EVENING)
        first = run_cycle(*args)
        second = run_cycle(*args)
        assert first.decision == second.decision
        assert first.plan_today == second.plan_today
        assert first.plan_tomorrow == second.plan_tomorrow
        assert first.caps == second.caps
