"""Global default values and constants.

All numeric constants used throughout the battery_dispatch package must be
defined here rather than as inline literals. Import from this module wherever a
constant is needed to ensure a single source of truth and full traceability.
"""

# ---------------------------------------------------------------------------
# Hard SoC bounds
# ---------------------------------------------------------------------------

HARD_MIN_SOC: float = 0.10
"""Absolute lower SoC bound (fraction).  No decision may plan below it."""

HARD_MAX_SOC: float = 0.90
"""Absolute upper SoC bound (fraction).  Also the cap when no override applies."""

SOC_EPSILON: float = 1e-6
"""Tolerance when comparing SoC fractions against caps and bounds."""

SOC_FALLBACK: float = 0.50
"""SoC assumed when the telemetry SoC field is missing or non-finite."""

SOC_PERCENT_THRESHOLD: float = 1.5
"""Raw SoC values above this are read as percent (0–100), else as a fraction."""

# ---------------------------------------------------------------------------
# Battery defaults
# ---------------------------------------------------------------------------

DEFAULT_CAPACITY_KWH: float = 15.0
"""Usable nameplate capacity of the home battery in kWh."""

DEFAULT_MAX_CHARGE_KW: float = 4.0
"""Maximum charging power in kW."""

DEFAULT_MAX_DISCHARGE_KW: float = 4.0
"""Maximum discharging power in kW."""

DEFAULT_ROUND_TRIP_EFFICIENCY: float = 0.92
"""Round-trip efficiency as a fraction; split evenly (sqrt) over charge/discharge."""

# ---------------------------------------------------------------------------
# Site / tariff defaults
# ---------------------------------------------------------------------------

DEFAULT_REGION: str = "SE3"
"""Bidding zone passed to the price feed."""

DEFAULT_IMPORT_MARKUP: float = 0.86
"""Fixed markup added to the spot price to obtain the buy price (per kWh)."""

DEFAULT_EXPORT_MARKUP: float = 0.60
"""Fixed markup added to the spot price to obtain the sell price (per kWh)."""

# ---------------------------------------------------------------------------
# Price classification
# ---------------------------------------------------------------------------

DEFAULT_CHEAP_FRACTION: float = 0.30
"""Share of the horizon (lowest buy price) classified as cheap."""

DEFAULT_TOP_FRACTION: float = 0.10
"""Share of the horizon (highest sell price) where export is permitted."""

DEFAULT_NEXT_FRACTION: float = 0.30
"""Share of the horizon following the top tier; load-shave only."""

# ---------------------------------------------------------------------------
# Dispatch behaviour
# ---------------------------------------------------------------------------

DEFAULT_ALLOW_GRID_CHARGE_WHEN_CHEAP: bool = True
"""Allow grid import into the battery during cheap hours."""

DEFAULT_ALLOW_GRID_CHARGE_TO_MEET_TARGET: bool = True
"""Allow grid import to reach the midnight target SoC."""

PV_NOISE_FLOOR_KW: float = 0.01
"""Solar surplus at or below this is treated as measurement noise."""

DEFAULT_MIN_SELL_MARGIN: float = 0.50
"""Minimum spread between sell price and efficiency-adjusted buy cost (per kWh)."""

DEFAULT_MID_DISCHARGE_FLOOR_SOC: float = HARD_MIN_SOC
"""Lowest SoC that mid/next-tier shaving may discharge to."""

DEFAULT_PRICE_MID_BIAS: float = 1.0
"""Mid-tier shaving threshold as a multiple of the day's average buy price."""

MID_SOC_HYSTERESIS: float = 1e-3
"""SoC margin above the floor required before mid-tier shaving starts."""

DEFAULT_RESERVE_BLEED_HYSTERESIS: float = 0.02
"""SoC margin above the reservation cap required before bleeding starts."""

POWER_EPSILON_KW: float = 0.01
"""Planned setpoints at or below this are emitted as idle."""

PLAN_ALLOCATION_GREEDY: str = "greedy"
"""Per-hour discharge allocation in the plan builder."""

PLAN_ALLOCATION_RANKED: str = "ranked"
"""Global, sell-price-ranked discharge budget in the plan builder."""

DEFAULT_PLAN_ALLOCATION: str = PLAN_ALLOCATION_GREEDY
"""Allocation policy used when the configuration does not name one."""

HOURS_PER_SLOT: float = 1.0
"""Duration of one price slot in hours (power kW == energy kWh per slot)."""

# ---------------------------------------------------------------------------
# Solar reserve (SoC cap) defaults
# ---------------------------------------------------------------------------

DEFAULT_SOLAR_RESERVE_ENABLED: bool = True
"""Whether morning SoC caps are applied to keep room for solar production."""

DEFAULT_SOLAR_RESERVE_CAP: float = 0.75
"""SoC ceiling applied inside the reservation window."""

DEFAULT_SOLAR_RESERVE_START_HOUR: int = 0
"""First local hour (inclusive) of the reservation window."""

DEFAULT_SOLAR_RESERVE_END_HOUR: int = 11
"""Local hour (exclusive) at which the reservation window ends."""

DEFAULT_SOLAR_RESERVE_MONTHS: tuple[int, ...] = (3, 4, 5, 6, 7, 8, 9)
"""Calendar months (1 = January) in which the reservation is active."""

DEFAULT_SOLAR_RESERVE_SKIP_EXPENSIVE: bool = True
"""Skip hours classified top/next tier when registering reservation caps."""

# ---------------------------------------------------------------------------
# Price feed
# ---------------------------------------------------------------------------

PRICE_API_BASE_URL: str = "https://www.elprisetjustnu.se/api/v1/prices/"
"""Base URL of the public day-ahead price API."""

PRICE_CACHE_DIR: str = "~/.battery_dispatch_cache"
"""Local directory for caching raw price feed responses."""

PRICE_RETRY_MAX: int = 3
"""Maximum number of HTTP attempts for one price-feed request."""

PRICE_RETRY_BACKOFF_FACTOR: float = 1.0
"""Exponential backoff factor (seconds) between price-feed retries."""

PRICE_REQUEST_TIMEOUT_S: int = 20
"""HTTP request timeout in seconds for price-feed calls."""

TOMORROW_PRICES_PUBLISH_HOUR: int = 13
"""Local hour from which tomorrow's day-ahead prices are requested."""

# ---------------------------------------------------------------------------
# Telemetry
# ---------------------------------------------------------------------------

WATTS_PER_KW: float = 1000.0
"""Conversion factor between W and kW."""

BALANCE_TOLERANCE_KW: float = 0.2
"""Maximum source/sink imbalance accepted by the telemetry balance check."""

TELEMETRY_FIELD_SEPARATOR: str = ";"
"""Separator of the compact telemetry argument string."""

FALLBACK_TELEMETRY: str = "1300;60;261;-970;16"
"""Telemetry sample used when no arguments are supplied."""

# ---------------------------------------------------------------------------
# Output / result sink
# ---------------------------------------------------------------------------

SINK_ACTION: str = "battery_action"
SINK_POWER_W: str = "battery_power_W"
SINK_REASON: str = "battery_reason"
SINK_SOC_PERCENT: str = "battery_soc_percent"
SINK_PRICE_NOW: str = "price_now"
SINK_TARGET_SOC_PERCENT: str = "target_soc_end_today_percent"
SINK_CAP_PERCENT: str = "battery_soc_cap_percent"
SINK_RESERVE_ACTIVE: str = "solar_reserve_active"
SINK_PLAN_TODAY: str = "plan_today_json"
SINK_PLAN_TOMORROW: str = "plan_tomorrow_json"

DEFAULT_SINK_PATH: str = "output/battery_state.json"
"""Default JSON file receiving the per-cycle result values."""

CSV_DELIMITER: str = ","
"""Delimiter used in plan CSV exports."""

POWER_PRECISION: int = 2
"""Decimal places for power setpoints (kW)."""

PRICE_PRECISION: int = 2
"""Decimal places for published prices (plan entries, sink)."""

DIAGNOSTIC_PRICE_PRECISION: int = 3
"""Decimal places for the prices reported by the midnight profitability check."""

SOC_PRECISION: int = 3
"""Decimal places for SoC fractions in forecast documents."""
