"""JSON schema definition and validation for controller configuration files.

Every block is optional; omitted keys fall back to the values in
:mod:`battery_dispatch.config.defaults`.  Validation uses the ``jsonschema``
library (Draft 7).

Usage::

    from battery_dispatch.config.schema import validate_config
    validate_config(data)   # raises jsonschema.ValidationError on failure
"""

from __future__ import annotations

import jsonschema

from battery_dispatch.config.defaults import (
    HARD_MAX_SOC,
    HARD_MIN_SOC,
    PLAN_ALLOCATION_GREEDY,
    PLAN_ALLOCATION_RANKED,
)

# ---------------------------------------------------------------------------
# Re-usable sub-schemas
# ---------------------------------------------------------------------------

_NON_NEGATIVE_NUMBER = {"type": "number", "minimum": 0}
_POSITIVE_NUMBER = {"type": "number", "exclusiveMinimum": 0}
_FRACTION = {"type": "number", "minimum": 0, "maximum": 1}

# ---------------------------------------------------------------------------
# Blocks
# ---------------------------------------------------------------------------

_SITE = {
    "type": "object",
    "properties": {
        "region": {"type": "string", "minLength": 1},
        "import_markup": {"type": "number"},
        "export_markup": {"type": "number"},
    },
    "additionalProperties": False,
}

_BATTERY = {
    "type": "object",
    "properties": {
        "capacity_kwh": _POSITIVE_NUMBER,
        "max_charge_kw": _NON_NEGATIVE_NUMBER,
        "max_discharge_kw": _NON_NEGATIVE_NUMBER,
        "round_trip_efficiency": {
            "type": "number",
            "exclusiveMinimum": 0,
            "maximum": 1,
        },
    },
    "additionalProperties": False,
}

_PRICE_TIERS = {
    "type": "object",
    "properties": {
        "cheap_fraction": _FRACTION,
        "top_fraction": _FRACTION,
        "next_fraction": _FRACTION,
    },
    "additionalProperties": False,
}

_BEHAVIOUR = {
    "type": "object",
    "properties": {
        "allow_grid_charge_when_cheap": {"type": "boolean"},
        "allow_grid_charge_to_meet_target": {"type": "boolean"},
        "pv_noise_floor_kw": _NON_NEGATIVE_NUMBER,
        "min_sell_margin": {"type": "number"},
        "mid_discharge_floor_soc": _FRACTION,
        "price_mid_bias": _NON_NEGATIVE_NUMBER,
        "reserve_bleed_hysteresis": _FRACTION,
        "plan_allocation": {
            "type": "string",
            "enum": [PLAN_ALLOCATION_GREEDY, PLAN_ALLOCATION_RANKED],
        },
    },
    "additionalProperties": False,
}

_SOLAR_RESERVE = {
    "type": "object",
    "properties": {
        "enabled": {"type": "boolean"},
        "reserve_cap_fraction": _FRACTION,
        "active_months": {
            "type": "array",
            "items": {"type": "integer", "minimum": 1, "maximum": 12},
            "uniqueItems": True,
        },
        "window_start_hour": {"type": "integer", "minimum": 0, "maximum": 23},
        "window_end_hour": {"type": "integer", "minimum": 0, "maximum": 24},
        "skip_expensive_hours": {"type": "boolean"},
    },
    "additionalProperties": False,
}

_PRICE_FEED = {
    "type": "object",
    "properties": {
        "base_url": {"type": "string", "minLength": 1},
        "timeout_s": _POSITIVE_NUMBER,
        "max_retries": {"type": "integer", "minimum": 1},
        "backoff_factor": _NON_NEGATIVE_NUMBER,
        "tomorrow_publish_hour": {"type": "integer", "minimum": 0, "maximum": 23},
        "cache_dir": {"type": ["string", "null"]},
    },
    "additionalProperties": False,
}

_OUTPUT = {
    "type": "object",
    "properties": {
        "sink_path": {"type": "string", "minLength": 1},
        "plan_dir": {"type": ["string", "null"]},
    },
    "additionalProperties": False,
}

# ---------------------------------------------------------------------------
# Top-level schema
# ---------------------------------------------------------------------------

CONFIG_SCHEMA: dict = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "title": "Battery Dispatch Controller Configuration",
    "type": "object",
    "properties": {
        "site": _SITE,
        "battery": _BATTERY,
        "price_tiers": _PRICE_TIERS,
        "behaviour": _BEHAVIOUR,
        "solar_reserve": _SOLAR_RESERVE,
        "price_feed": _PRICE_FEED,
        "output": _OUTPUT,
    },
    "additionalProperties": False,
}


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def validate_config(data: dict) -> None:
    """Validate a controller configuration dictionary against the JSON schema.

    Raises a ``jsonschema.ValidationError`` with a descriptive message
    (including the JSON path to the failing field) if validation fails.

    Parameters
    ----------
    data:
        Parsed configuration dictionary (e.g. from ``json.load``).

    Raises
    ------
    jsonschema.ValidationError
        When *data* does not conform to the configuration schema.
    ValueError
        When cross-field semantic constraints are violated (e.g. the top and
        next price tiers together claim more than the whole horizon).
    """
    validator = jsonschema.Draft7Validator(CONFIG_SCHEMA)
    errors = sorted(validator.iter_errors(data), key=lambda e: list(e.absolute_path))

    if errors:
        first = errors[0]
        path_str = " → ".join(str(p) for p in first.absolute_path) or "(root)"
        raise jsonschema.ValidationError(
            f"Configuration validation failed at '{path_str}': {first.message}",
            path=first.absolute_path,
            schema_path=first.absolute_schema_path,
            validator=first.validator,
            validator_value=first.validator_value,
            instance=first.instance,
            schema=first.schema,
            cause=first.cause,
        )

    # ------------------------------------------------------------------
    # Cross-field semantic validation
    # ------------------------------------------------------------------
    _validate_tier_fractions(data)
    _validate_discharge_floor(data)


def _validate_tier_fractions(data: dict) -> None:
    """Check that the two expensive tiers do not claim more than the horizon."""
    tiers = data.get("price_tiers", {})
    top = tiers.get("top_fraction")
    nxt = tiers.get("next_fraction")
    if top is not None and nxt is not None and top + nxt > 1.0:
        raise ValueError(
            f"price_tiers.top_fraction ({top}) + next_fraction ({nxt}) "
            "must not exceed 1.0."
        )


def _validate_discharge_floor(data: dict) -> None:
    """Check that the mid-tier discharge floor lies within the hard SoC bounds."""
    floor = data.get("behaviour", {}).get("mid_discharge_floor_soc")
    if floor is not None and not (HARD_MIN_SOC <= floor <= HARD_MAX_SOC):
        raise ValueError(
            f"behaviour.mid_discharge_floor_soc ({floor}) must lie within "
            f"[{HARD_MIN_SOC}, {HARD_MAX_SOC}]."
        )


def get_schema() -> dict:
    """Return a copy of the configuration JSON schema dictionary."""
    return CONFIG_SCHEMA.copy()
