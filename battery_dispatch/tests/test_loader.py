"""Unit tests for battery_dispatch.config.loader.

Covers:
- default_config(): every block at its default
- load_config_dict(): partial blocks fall back to defaults, typed conversion
- load_config(): valid file, missing file, invalid JSON, schema violation
- Solar reserve block parsed into a SolarReservePolicy
"""

from __future__ import annotations

import json

import jsonschema
import pytest

from battery_dispatch.config.defaults import (
    DEFAULT_CAPACITY_KWH,
    DEFAULT_MIN_SELL_MARGIN,
    DEFAULT_SINK_PATH,
    PLAN_ALLOCATION_GREEDY,
    PRICE_API_BASE_URL,
)
from battery_dispatch.config.loader import (
    ControllerConfig,
    default_config,
    load_config,
    load_config_dict,
)
from battery_dispatch.dispatch.soc_caps import SolarReservePolicy

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _write_config_json(path, data: dict) -> None:
    path.write_text(json.dumps(data), encoding="utf-8")


# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------


class TestDefaultConfig:
    def test_defaults(self) -> None:
        cfg = default_config()
        assert cfg.site.region == "SE3"
        assert cfg.battery.capacity_kwh == DEFAULT_CAPACITY_KWH
        assert cfg.battery.round_trip_efficiency == pytest.approx(0.92)
        assert cfg.tiers.cheap_fraction == pytest.approx(0.30)
        assert cfg.behaviour.min_sell_margin == DEFAULT_MIN_SELL_MARGIN
        assert cfg.behaviour.plan_allocation == PLAN_ALLOCATION_GREEDY
        assert cfg.solar_reserve == SolarReservePolicy()
        assert cfg.price_feed.base_url == PRICE_API_BASE_URL
        assert cfg.output.sink_path == DEFAULT_SINK_PATH
        assert cfg.output.plan_dir is None
        assert cfg.path is None

    def test_empty_dict_equals_defaults(self) -> None:
        assert load_config_dict({}) == default_config()


# ---------------------------------------------------------------------------
# load_config_dict
# ---------------------------------------------------------------------------


class TestLoadConfigDict:
    def test_partial_block_keeps_other_defaults(self) -> None:
        cfg = load_config_dict({"battery": {"capacity_kwh": 10}})
        assert cfg.battery.capacity_kwh == 10.0
        assert isinstance(cfg.battery.capacity_kwh, float)
        assert cfg.battery.max_charge_kw == pytest.approx(4.0)

    def test_behaviour_block(self) -> None:
        cfg = load_config_dict(
            {
                "behaviour": {
                    "allow_grid_charge_when_cheap": False,
                    "min_sell_margin": 0.25,
                    "plan_allocation": "ranked",
                    "price_mid_bias": 1.2,
                }
            }
        )
        assert cfg.behaviour.allow_grid_charge_when_cheap is False
        assert cfg.behaviour.allow_grid_charge_to_meet_target is True
        assert cfg.behaviour.min_sell_margin == pytest.approx(0.25)
        assert cfg.behaviour.plan_allocation == "ranked"
        assert cfg.behaviour.price_mid_bias == pytest.approx(1.2)

    def test_solar_reserve_block(self) -> None:
        cfg = load_config_dict(
            {
                "solar_reserve": {
                    "reserve_cap_fraction": 0.6,
                    "active_months": [5, 6],
                    "window_start_hour": 22,
                    "window_end_hour": 8,
                }
            }
        )
        policy = cfg.solar_reserve
        assert policy.reserve_cap_fraction == pytest.approx(0.6)
        assert policy.active_months == frozenset({5, 6})
        assert policy.wraps_midnight
        assert policy.skip_expensive_hours is True

    def test_price_feed_and_output(self) -> None:
        cfg = load_config_dict(
            {
                "site": {"region": "SE4", "import_markup": 0.9},
                "price_feed": {"cache_dir": None, "max_retries": 5},
                "output": {"sink_path": "state.json", "plan_dir": "plans"},
            }
        )
        assert cfg.site.region == "SE4"
        assert cfg.site.export_markup == pytest.approx(0.60)
        assert cfg.price_feed.cache_dir is None
        assert cfg.price_feed.max_retries == 5
        assert cfg.output.plan_dir == "plans"

    def test_raw_kept_but_not_compared(self) -> None:
        data = {"site": {"region": "SE3"}}
        cfg = load_config_dict(data)
        assert cfg.raw == data
        assert cfg == default_config()

    def test_schema_violation_raises(self) -> None:
        with pytest.raises(jsonschema.ValidationError):
            load_config_dict({"battery": {"capacity_kwh": "big"}})

    def test_cross_field_violation_raises(self) -> None:
        with pytest.raises(ValueError):
            load_config_dict({"price_tiers": {"top_fraction": 0.8, "next_fraction": 0.3}})


# ---------------------------------------------------------------------------
# load_config
# ---------------------------------------------------------------------------


class TestLoadConfig:
    def test_valid_file(self, tmp_path) -> None:
        p = tmp_path / "config.json"
        _write_config_json(p, {"battery": {"capacity_kwh": 12.5}})
        cfg = load_config(p)
        assert isinstance(cfg, ControllerConfig)
        assert cfg.battery.capacity_kwh == pytest.approx(12.5)
        assert cfg.path == p.resolve()

    def test_accepts_str_path(self, tmp_path) -> None:
        p = tmp_path / "config.json"
        _write_config_json(p, {})
        assert load_config(str(p)) == default_config()

    def test_missing_file_raises(self, tmp_path) -> None:
        with pytest.raises(FileNotFoundError, match="not found"):
            load_config(tmp_path / "nope.json")

    def test_invalid_json_raises(self, tmp_path) -> None:
        p = tmp_path / "broken.json"
        p.write_text("{not json", encoding="utf-8")
        with pytest.raises(json.JSONDecodeError, match="broken.json"):
            load_config(p)

    def test_invalid_json_is_a_value_error(self, tmp_path) -> None:
        p = tmp_path / "broken.json"
        p.write_text("[1,", encoding="utf-8")
        with pytest.raises(ValueError):
            load_config(p)

    def test_schema_violation_in_file(self, tmp_path) -> None:
        p = tmp_path / "config.json"
        _write_config_json(p, {"behaviour": {"plan_allocation": "random"}})
        with pytest.raises(jsonschema.ValidationError):
            load_config(p)
