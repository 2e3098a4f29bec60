"""Shared pytest fixtures for the battery_dispatch test suite.

All fixtures provide synthetic, deterministic data so tests run without real
price-feed calls.  Instants are tz-aware in CEST (UTC+02:00).

Reference day (``summer_spot``, SEK/kWh spot, markups 0.86 import / 0.60 export)
--------------------------------------------------------------------------------
hour  00   01   02   03   04   05   06   07   08   09   10   11
spot 0.10 0.08 0.05 0.05 0.06 0.10 0.30 0.60 0.80 0.70 0.50 0.40
hour  12   13   14   15   16   17   18   19   20   21   22   23
spot 0.30 0.25 0.30 0.50 0.90 1.60 2.00 1.80 1.00 0.60 0.40 0.20

With fractions 0.30 / 0.10 / 0.30 (counts 7 / 2 / 7):
  cheap     = hours 0, 1, 2, 3, 4, 5, 23
  top tier  = hours 18, 19
  next tier = hours 17, 20, 16, 8, 9, 7, 21
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from datetime import date, datetime, timedelta, timezone

import pytest

from battery_dispatch.bess.battery import BatteryState
from battery_dispatch.bess.telemetry import TelemetrySample
from battery_dispatch.config.loader import BehaviourConfig
from battery_dispatch.market.prices import HourlyPriceRecord, records_from_spot

CEST = timezone(timedelta(hours=2))

SUMMER_SPOT = [
    0.10, 0.08, 0.05, 0.05, 0.06, 0.10, 0.30, 0.60, 0.80, 0.70, 0.50, 0.40,
    0.30, 0.25, 0.30, 0.50, 0.90, 1.60, 2.00, 1.80, 1.00, 0.60, 0.40, 0.20,
]


def at(day: date, hour: int, minute: int = 0) -> datetime:
    return datetime(day.year, day.month, day.day, hour, minute, tzinfo=CEST)


# ---------------------------------------------------------------------------
# Price horizons
# ---------------------------------------------------------------------------


@pytest.fixture
def tz() -> timezone:
    return CEST


@pytest.fixture
def make_horizon() -> Callable[..., list[HourlyPriceRecord]]:
    """Factory: ``make_horizon(day, spots, import_markup=0.86, export_markup=0.60)``."""

    def _make(
        day: date,
        spots: Sequence[float],
        import_markup: float = 0.86,
        export_markup: float = 0.60,
    ) -> list[HourlyPriceRecord]:
        rows = [
            (at(day, 0) + timedelta(hours=i), at(day, 0) + timedelta(hours=i + 1), s)
            for i, s in enumerate(spots)
        ]
        return records_from_spot(rows, import_markup, export_markup)

    return _make


@pytest.fixture
def summer_day() -> date:
    return date(2025, 6, 1)


@pytest.fixture
def winter_day() -> date:
    return date(2025, 1, 15)


@pytest.fixture
def summer_today(make_horizon, summer_day) -> list[HourlyPriceRecord]:
    return make_horizon(summer_day, SUMMER_SPOT)


@pytest.fixture
def summer_tomorrow(make_horizon, summer_day) -> list[HourlyPriceRecord]:
    return make_horizon(summer_day + timedelta(days=1), SUMMER_SPOT)


@pytest.fixture
def winter_today(make_horizon, winter_day) -> list[HourlyPriceRecord]:
    return make_horizon(winter_day, SUMMER_SPOT)


@pytest.fixture
def flat_day(make_horizon, summer_day) -> list[HourlyPriceRecord]:
    """24 hours at one identical price."""
    return make_horizon(summer_day, [0.50] * 24)


# ---------------------------------------------------------------------------
# Battery / behaviour / telemetry
# ---------------------------------------------------------------------------


@pytest.fixture
def battery() -> BatteryState:
    """15 kWh, 4 kW both ways, 92 % round trip, 50 % SoC."""
    return BatteryState(
        soc=0.50,
        capacity_kwh=15.0,
        max_charge_kw=4.0,
        max_discharge_kw=4.0,
        round_trip_efficiency=0.92,
    )


@pytest.fixture
def behaviour() -> BehaviourConfig:
    return BehaviourConfig()


@pytest.fixture
def make_sample() -> Callable[..., TelemetrySample]:
    """Factory for a :class:`TelemetrySample` with only production and load set."""

    def _make(prod_kw: float = 0.0, load_kw: float = 0.0, soc: float = 0.5) -> TelemetrySample:
        return TelemetrySample(
            prod_kw=prod_kw,
            load_kw=load_kw,
            grid_import_kw=max(0.0, load_kw - prod_kw),
            grid_export_kw=max(0.0, prod_kw - load_kw),
            batt_charge_kw=0.0,
            batt_discharge_kw=0.0,
            soc=soc,
        )

    return _make
