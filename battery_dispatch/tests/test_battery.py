"""Unit tests for battery_dispatch.bess.battery."""

from __future__ import annotations

import math

import pytest

from battery_dispatch.bess.battery import BatteryState, clamp01, clamp_soc
from battery_dispatch.config.defaults import HARD_MAX_SOC, HARD_MIN_SOC

EFF = math.sqrt(0.92)


# ---------------------------------------------------------------------------
# Helpers / factory
# ---------------------------------------------------------------------------


def make_battery(
    soc: float = 0.5,
    capacity_kwh: float = 15.0,
    charge_kw: float = 4.0,
    discharge_kw: float = 4.0,
    rte: float = 0.92,
) -> BatteryState:
    """Create a BatteryState with the reference home battery as defaults."""
    return BatteryState(
        soc=soc,
        capacity_kwh=capacity_kwh,
        max_charge_kw=charge_kw,
        max_discharge_kw=discharge_kw,
        round_trip_efficiency=rte,
    )


# ---------------------------------------------------------------------------
# Initialisation
# ---------------------------------------------------------------------------


class TestBatteryStateInit:
    """Tests for BatteryState construction."""

    def test_split_efficiency(self) -> None:
        bat = make_battery()
        assert bat.charge_efficiency == pytest.approx(EFF)
        assert bat.discharge_efficiency == pytest.approx(EFF)
        assert bat.charge_efficiency * bat.discharge_efficiency == pytest.approx(0.92)

    def test_soc_clamped_to_unit_interval(self) -> None:
        assert make_battery(soc=1.7).soc == 1.0
        assert make_battery(soc=-0.2).soc == 0.0

    def test_usable_capacity(self) -> None:
        assert make_battery().usable_capacity_kwh == pytest.approx(12.0)

    def test_invalid_capacity_raises(self) -> None:
        with pytest.raises(ValueError, match="capacity_kwh"):
            make_battery(capacity_kwh=0.0)

    @pytest.mark.parametrize("rte", [0.0, -0.5, 1.01])
    def test_invalid_efficiency_raises(self, rte: float) -> None:
        with pytest.raises(ValueError, match="round_trip_efficiency"):
            make_battery(rte=rte)

    def test_negative_power_limit_raises(self) -> None:
        with pytest.raises(ValueError, match="Power limits"):
            make_battery(charge_kw=-1.0)

    def test_copy_is_independent(self) -> None:
        bat = make_battery(soc=0.5)
        clone = bat.copy(soc=0.8)
        clone.discharge(1.0)
        assert bat.soc == 0.5
        assert clone.capacity_kwh == bat.capacity_kwh
        assert bat.copy().soc == 0.5


# ---------------------------------------------------------------------------
# Headroom
# ---------------------------------------------------------------------------


class TestHeadroom:
    def test_charge_headroom_to_cap(self) -> None:
        # (0.75 − 0.50) × 15 / 0.95917
        assert make_battery().charge_headroom_kw(0.75) == pytest.approx(0.25 * 15 / EFF)

    def test_charge_headroom_never_negative(self) -> None:
        assert make_battery(soc=0.8).charge_headroom_kw(0.6) == 0.0

    def test_soc_above_hard_max_is_clamped_first(self) -> None:
        assert make_battery(soc=0.97).charge_headroom_kw(HARD_MAX_SOC) == 0.0

    def test_discharge_headroom_to_hard_min(self) -> None:
        assert make_battery().discharge_headroom_kw() == pytest.approx(0.4 * 15 * EFF)

    def test_discharge_headroom_to_floor(self) -> None:
        assert make_battery().discharge_headroom_kw(0.45) == pytest.approx(0.05 * 15 * EFF)

    def test_floor_below_hard_min_uses_hard_min(self) -> None:
        bat = make_battery()
        assert bat.discharge_headroom_kw(0.0) == pytest.approx(bat.discharge_headroom_kw())

    def test_discharge_headroom_empty_battery(self) -> None:
        assert make_battery(soc=0.05).discharge_headroom_kw() == 0.0


# ---------------------------------------------------------------------------
# Integration
# ---------------------------------------------------------------------------


class TestCharge:
    def test_stored_energy_after_losses(self) -> None:
        bat = make_battery()
        soc = bat.charge(4.0)
        assert soc == pytest.approx(0.5 + 4.0 * EFF / 15)
        assert bat.soc == soc

    def test_charge_clamped_at_hard_max(self) -> None:
        bat = make_battery(soc=0.85)
        assert bat.charge(4.0) == pytest.approx(HARD_MAX_SOC)

    def test_zero_charge_keeps_soc(self) -> None:
        assert make_battery().charge(0.0) == pytest.approx(0.5)

    def test_negative_charge_raises(self) -> None:
        with pytest.raises(ValueError):
            make_battery().charge(-1.0)


class TestDischarge:
    def test_removed_energy_after_losses(self) -> None:
        bat = make_battery()
        assert bat.discharge(4.0) == pytest.approx(0.5 - 4.0 / EFF / 15)

    def test_discharge_clamped_at_hard_min(self) -> None:
        bat = make_battery(soc=0.15)
        assert bat.discharge(4.0) == pytest.approx(HARD_MIN_SOC)

    def test_negative_discharge_raises(self) -> None:
        with pytest.raises(ValueError):
            make_battery().discharge(-0.1)

    def test_headroom_discharge_lands_on_floor(self) -> None:
        bat = make_battery()
        bat.discharge(bat.discharge_headroom_kw(0.3))
        assert bat.soc == pytest.approx(0.3)

    def test_round_trip_loses_energy(self) -> None:
        bat = make_battery()
        bat.charge(2.0)
        bat.discharge(2.0)
        assert bat.soc < 0.5
        # lost: 2 × (1/eff − eff) kWh
        assert bat.soc == pytest.approx(0.5 - 2.0 * (1 / EFF - EFF) / 15)


class TestClamp:
    @pytest.mark.parametrize("x, expected", [(-1.0, 0.0), (0.3, 0.3), (2.0, 1.0)])
    def test_clamp01(self, x: float, expected: float) -> None:
        assert clamp01(x) == expected

    @pytest.mark.parametrize("x, expected", [(0.0, 0.10), (0.5, 0.5), (0.99, 0.90)])
    def test_clamp_soc(self, x: float, expected: float) -> None:
        assert clamp_soc(x) == pytest.approx(expected)
