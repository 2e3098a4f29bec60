"""Load and validate controller configuration files.

Public API
----------
load_config(path)       – Parse + validate a configuration JSON file.
load_config_dict(data)  – Validate an already-parsed configuration dictionary.
default_config()        – Configuration with every value at its default.

All error messages name the specific field that caused the problem so the user
can fix the JSON without guessing.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from battery_dispatch.config.defaults import (
    DEFAULT_ALLOW_GRID_CHARGE_TO_MEET_TARGET,
    DEFAULT_ALLOW_GRID_CHARGE_WHEN_CHEAP,
    DEFAULT_CAPACITY_KWH,
    DEFAULT_CHEAP_FRACTION,
    DEFAULT_EXPORT_MARKUP,
    DEFAULT_IMPORT_MARKUP,
    DEFAULT_MAX_CHARGE_KW,
    DEFAULT_MAX_DISCHARGE_KW,
    DEFAULT_MID_DISCHARGE_FLOOR_SOC,
    DEFAULT_MIN_SELL_MARGIN,
    DEFAULT_NEXT_FRACTION,
    DEFAULT_PLAN_ALLOCATION,
    DEFAULT_PRICE_MID_BIAS,
    DEFAULT_REGION,
    DEFAULT_RESERVE_BLEED_HYSTERESIS,
    DEFAULT_ROUND_TRIP_EFFICIENCY,
    DEFAULT_SINK_PATH,
    DEFAULT_TOP_FRACTION,
    PRICE_API_BASE_URL,
    PRICE_CACHE_DIR,
    PRICE_REQUEST_TIMEOUT_S,
    PRICE_RETRY_BACKOFF_FACTOR,
    PRICE_RETRY_MAX,
    PV_NOISE_FLOOR_KW,
    TOMORROW_PRICES_PUBLISH_HOUR,
)
from battery_dispatch.config.schema import validate_config
from battery_dispatch.dispatch.soc_caps import (
    SolarReservePolicy,
    solar_reserve_policy_from_dict,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Typed configuration blocks
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SiteConfig:
    """Bidding zone and tariff markups."""

    region: str = DEFAULT_REGION
    import_markup: float = DEFAULT_IMPORT_MARKUP
    export_markup: float = DEFAULT_EXPORT_MARKUP


@dataclass(frozen=True)
class BatteryConfig:
    """Static battery ratings (the live SoC arrives with telemetry)."""

    capacity_kwh: float = DEFAULT_CAPACITY_KWH
    max_charge_kw: float = DEFAULT_MAX_CHARGE_KW
    max_discharge_kw: float = DEFAULT_MAX_DISCHARGE_KW
    round_trip_efficiency: float = DEFAULT_ROUND_TRIP_EFFICIENCY


@dataclass(frozen=True)
class PriceTierConfig:
    """Horizon fractions used by the price classifier."""

    cheap_fraction: float = DEFAULT_CHEAP_FRACTION
    top_fraction: float = DEFAULT_TOP_FRACTION
    next_fraction: float = DEFAULT_NEXT_FRACTION


@dataclass(frozen=True)
class BehaviourConfig:
    """Policy knobs shared by the plan builder and the realtime ladder.

    Attributes
    ----------
    allow_grid_charge_when_cheap:
        Permit grid import into the battery during cheap hours.
    allow_grid_charge_to_meet_target:
        Permit grid import to reach the midnight target SoC.
    pv_noise_floor_kw:
        Solar surplus at or below this is ignored.
    min_sell_margin:
        Minimum spread between sell price and efficiency-adjusted buy cost
        before exporting is allowed.
    mid_discharge_floor_soc:
        Lowest SoC mid/next-tier shaving may discharge to.
    price_mid_bias:
        Mid-tier shave threshold as a multiple of the day's average buy price.
    reserve_bleed_hysteresis:
        SoC margin above the reservation cap before bleeding starts.
    plan_allocation:
        ``"greedy"`` (per hour) or ``"ranked"`` (global sell-ranked budget).
    """

    allow_grid_charge_when_cheap: bool = DEFAULT_ALLOW_GRID_CHARGE_WHEN_CHEAP
    allow_grid_charge_to_meet_target: bool = DEFAULT_ALLOW_GRID_CHARGE_TO_MEET_TARGET
    pv_noise_floor_kw: float = PV_NOISE_FLOOR_KW
    min_sell_margin: float = DEFAULT_MIN_SELL_MARGIN
    mid_discharge_floor_soc: float = DEFAULT_MID_DISCHARGE_FLOOR_SOC
    price_mid_bias: float = DEFAULT_PRICE_MID_BIAS
    reserve_bleed_hysteresis: float = DEFAULT_RESERVE_BLEED_HYSTERESIS
    plan_allocation: str = DEFAULT_PLAN_ALLOCATION


@dataclass(frozen=True)
class PriceFeedConfig:
    """HTTP settings for the day-ahead price feed."""

    base_url: str = PRICE_API_BASE_URL
    timeout_s: float = PRICE_REQUEST_TIMEOUT_S
    max_retries: int = PRICE_RETRY_MAX
    backoff_factor: float = PRICE_RETRY_BACKOFF_FACTOR
    tomorrow_publish_hour: int = TOMORROW_PRICES_PUBLISH_HOUR
    cache_dir: str | None = PRICE_CACHE_DIR


@dataclass(frozen=True)
class OutputConfig:
    """Where cycle results and plan exports are written."""

    sink_path: str = DEFAULT_SINK_PATH
    plan_dir: str | None = None


@dataclass(frozen=True)
class ControllerConfig:
    """Fully validated, parsed controller configuration.

    Attributes
    ----------
    raw:
        The validated dictionary as loaded from JSON (empty for defaults).
    path:
        Absolute path to the source JSON file (``None`` if built from a dict).
    """

    site: SiteConfig = field(default_factory=SiteConfig)
    battery: BatteryConfig = field(default_factory=BatteryConfig)
    tiers: PriceTierConfig = field(default_factory=PriceTierConfig)
    behaviour: BehaviourConfig = field(default_factory=BehaviourConfig)
    solar_reserve: SolarReservePolicy = field(default_factory=SolarReservePolicy)
    price_feed: PriceFeedConfig = field(default_factory=PriceFeedConfig)
    output: OutputConfig = field(default_factory=OutputConfig)
    raw: dict[str, Any] = field(default_factory=dict, repr=False, compare=False)
    path: Path | None = field(default=None, repr=False, compare=False)


# ---------------------------------------------------------------------------
# Public functions
# ---------------------------------------------------------------------------


def default_config() -> ControllerConfig:
    """Return a configuration with every value at its default."""
    return ControllerConfig()


def load_config(path: str | Path) -> ControllerConfig:
    """Load and validate a controller configuration JSON file.

    Parameters
    ----------
    path:
        Path to the configuration ``.json`` file.

    Returns
    -------
    ControllerConfig
        Validated and parsed configuration.

    Raises
    ------
    FileNotFoundError
        When *path* does not exist.
    json.JSONDecodeError
        When the file contains invalid JSON.
    jsonschema.ValidationError
        When the JSON does not conform to the configuration schema.
    ValueError
        When cross-field constraints are violated.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: '{path}'. "
            "Check that the path is correct and the file exists."
        )

    logger.debug("Loading configuration from '%s'", path)

    try:
        with path.open("r", encoding="utf-8") as fh:
            data = json.load(fh)
    except json.JSONDecodeError as exc:
        raise json.JSONDecodeError(
            f"Invalid JSON in configuration file '{path}': {exc.msg}",
            exc.doc,
            exc.pos,
        ) from exc

    config = _build_config(data, path.resolve())
    logger.info(
        "Loaded configuration from '%s' (region=%s, capacity=%.1f kWh)",
        path,
        config.site.region,
        config.battery.capacity_kwh,
    )
    return config


def load_config_dict(data: dict) -> ControllerConfig:
    """Validate and wrap an already-parsed configuration dictionary.

    Raises
    ------
    jsonschema.ValidationError
        When *data* does not conform to the configuration schema.
    ValueError
        When cross-field constraints are violated.
    """
    return _build_config(data, None)


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _build_config(data: dict, path: Path | None) -> ControllerConfig:
    validate_config(data)  # raises ValidationError on schema violations

    site = data.get("site", {})
    battery = data.get("battery", {})
    tiers = data.get("price_tiers", {})
    behaviour = data.get("behaviour", {})
    feed = data.get("price_feed", {})
    output = data.get("output", {})

    return ControllerConfig(
        site=SiteConfig(
            region=str(site.get("region", DEFAULT_REGION)),
            import_markup=float(site.get("import_markup", DEFAULT_IMPORT_MARKUP)),
            export_markup=float(site.get("export_markup", DEFAULT_EXPORT_MARKUP)),
        ),
        battery=BatteryConfig(
            capacity_kwh=float(battery.get("capacity_kwh", DEFAULT_CAPACITY_KWH)),
            max_charge_kw=float(battery.get("max_charge_kw", DEFAULT_MAX_CHARGE_KW)),
            max_discharge_kw=float(
                battery.get("max_discharge_kw", DEFAULT_MAX_DISCHARGE_KW)
            ),
            round_trip_efficiency=float(
                battery.get("round_trip_efficiency", DEFAULT_ROUND_TRIP_EFFICIENCY)
            ),
        ),
        tiers=PriceTierConfig(
            cheap_fraction=float(tiers.get("cheap_fraction", DEFAULT_CHEAP_FRACTION)),
            top_fraction=float(tiers.get("top_fraction", DEFAULT_TOP_FRACTION)),
            next_fraction=float(tiers.get("next_fraction", DEFAULT_NEXT_FRACTION)),
        ),
        behaviour=BehaviourConfig(
            allow_grid_charge_when_cheap=bool(
                behaviour.get(
                    "allow_grid_charge_when_cheap", DEFAULT_ALLOW_GRID_CHARGE_WHEN_CHEAP
                )
            ),
            allow_grid_charge_to_meet_target=bool(
                behaviour.get(
                    "allow_grid_charge_to_meet_target",
                    DEFAULT_ALLOW_GRID_CHARGE_TO_MEET_TARGET,
                )
            ),
            pv_noise_floor_kw=float(
                behaviour.get("pv_noise_floor_kw", PV_NOISE_FLOOR_KW)
            ),
            min_sell_margin=float(
                behaviour.get("min_sell_margin", DEFAULT_MIN_SELL_MARGIN)
            ),
            mid_discharge_floor_soc=float(
                behaviour.get(
                    "mid_discharge_floor_soc", DEFAULT_MID_DISCHARGE_FLOOR_SOC
                )
            ),
            price_mid_bias=float(behaviour.get("price_mid_bias", DEFAULT_PRICE_MID_BIAS)),
            reserve_bleed_hysteresis=float(
                behaviour.get(
                    "reserve_bleed_hysteresis", DEFAULT_RESERVE_BLEED_HYSTERESIS
                )
            ),
            plan_allocation=str(
                behaviour.get("plan_allocation", DEFAULT_PLAN_ALLOCATION)
            ),
        ),
        solar_reserve=solar_reserve_policy_from_dict(data.get("solar_reserve", {})),
        price_feed=PriceFeedConfig(
            base_url=str(feed.get("base_url", PRICE_API_BASE_URL)),
            timeout_s=float(feed.get("timeout_s", PRICE_REQUEST_TIMEOUT_S)),
            max_retries=int(feed.get("max_retries", PRICE_RETRY_MAX)),
            backoff_factor=float(
                feed.get("backoff_factor", PRICE_RETRY_BACKOFF_FACTOR)
            ),
            tomorrow_publish_hour=int(
                feed.get("tomorrow_publish_hour", TOMORROW_PRICES_PUBLISH_HOUR)
            ),
            cache_dir=feed.get("cache_dir", PRICE_CACHE_DIR),
        ),
        output=OutputConfig(
            sink_path=str(output.get("sink_path", DEFAULT_SINK_PATH)),
            plan_dir=output.get("plan_dir"),
        ),
        raw=data,
        path=path,
    )
