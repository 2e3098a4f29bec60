"""Number formatting helpers for plan exports and stdout.

All functions return strings.  ``None`` and non-finite values are represented
as an empty string so a missing price never prints as ``nan``.

Public API
----------
fmt_float    – Format a float with configurable decimal places.
fmt_power    – Format a power setpoint in kW.
fmt_price    – Format a price per kWh.
fmt_pct      – Format a fraction as a whole-number percentage string.
"""

from __future__ import annotations

import math

from battery_dispatch.config.defaults import POWER_PRECISION, PRICE_PRECISION, SOC_PRECISION


def _missing(value: float | None) -> bool:
    return value is None or not math.isfinite(value)


def fmt_float(
    value: float | None,
    precision: int = SOC_PRECISION,
) -> str:
    """Format a float to a fixed number of decimal places.

    Parameters
    ----------
    value:
        The value to format.  None or NaN is returned as an empty string.
    precision:
        Number of decimal places.

    Returns
    -------
    str
        Formatted string, e.g. ``"0.725"``.
    """
    if _missing(value):
        return ""
    return f"{value:.{precision}f}"


def fmt_power(value: float | None) -> str:
    return fmt_float(value, precision=POWER_PRECISION)


def fmt_price(value: float | None) -> str:
    return fmt_float(value, precision=PRICE_PRECISION)


def fmt_pct(value: float | None, precision: int = 0) -> str:
    """Format a fraction as a percentage string without the % sign.

    >>> fmt_pct(0.755, precision=1)
    '75.5'
    """
    if _missing(value):
        return ""
    return f"{value * 100.0:.{precision}f}"
