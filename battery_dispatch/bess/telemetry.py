"""Instantaneous telemetry: parsing, normalisation and the power balance check.

The host passes five numbers, in W except the last one:

    production ; grid_flow ; local_load ; battery_flow ; soc

``grid_flow`` is positive when importing, ``battery_flow`` is negative while
charging, and ``soc`` is either a percentage (0–100) or a fraction (0–1).  The
normalised :class:`TelemetrySample` splits the signed flows into non-negative
directional components in kW.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Sequence
from dataclasses import dataclass

from battery_dispatch.bess.battery import clamp01
from battery_dispatch.config.defaults import (
    BALANCE_TOLERANCE_KW,
    FALLBACK_TELEMETRY,
    SOC_FALLBACK,
    SOC_PERCENT_THRESHOLD,
    TELEMETRY_FIELD_SEPARATOR,
    WATTS_PER_KW,
)

logger = logging.getLogger(__name__)

FIELD_NAMES = (
    "production_w",
    "grid_flow_w",
    "local_flow_w",
    "battery_flow_w",
    "battery_soc",
)


class InvalidTelemetry(ValueError):
    """Raised when telemetry fields are missing or not finite numbers."""

    def __init__(self, fields: Sequence[str], text: str) -> None:
        self.fields = tuple(fields)
        self.text = text
        super().__init__(f"Invalid telemetry field(s) {', '.join(self.fields)} in {text!r}")


# ---------------------------------------------------------------------------
# Raw parsing
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RawTelemetry:
    """Telemetry as received; unparseable fields are NaN."""

    production_w: float
    grid_flow_w: float
    local_flow_w: float
    battery_flow_w: float
    battery_soc: float

    @property
    def invalid_fields(self) -> list[str]:
        return [name for name in FIELD_NAMES if not math.isfinite(getattr(self, name))]


def _to_number(token: str | None) -> float:
    if token is None:
        return math.nan
    try:
        value = float(token.strip().replace(",", "."))
    except ValueError:
        return math.nan
    return value if math.isfinite(value) else math.nan


def join_arguments(args: Sequence[str]) -> str:
    """Join command-line arguments into one ``A;B;C;D;E`` telemetry string.

    A single argument is taken as the full string; no arguments yield the
    built-in fallback sample.
    """
    parts = [str(a) for a in args if a is not None and str(a).strip()]
    if not parts:
        logger.info("No telemetry given, using fallback sample %s", FALLBACK_TELEMETRY)
        return FALLBACK_TELEMETRY
    if len(parts) == 1:
        return parts[0]
    return TELEMETRY_FIELD_SEPARATOR.join(parts)


def parse_telemetry(text: str, strict: bool = False) -> RawTelemetry:
    """Parse a ``;``-separated telemetry string.

    Decimal commas are accepted.  Empty tokens are skipped, so ``"1;;2"``
    reads as two fields.

    Parameters
    ----------
    text:
        Raw telemetry string.
    strict:
        Raise :class:`InvalidTelemetry` instead of returning NaN fields.

    Returns
    -------
    RawTelemetry
    """
    tokens = [t for t in (text or "").split(TELEMETRY_FIELD_SEPARATOR) if t.strip()]
    values = [_to_number(tokens[i] if i < len(tokens) else None) for i in range(len(FIELD_NAMES))]
    raw = RawTelemetry(*values)
    if strict and raw.invalid_fields:
        raise InvalidTelemetry(raw.invalid_fields, text)
    return raw


# ---------------------------------------------------------------------------
# Normalisation
# ---------------------------------------------------------------------------


def normalize_soc(raw_soc: float) -> float:
    """Return a SoC fraction from a percentage or fraction reading.

    Values above 1.5 are read as percent; non-finite values give 50 %.

    Examples
    --------
    >>> normalize_soc(16)
    0.16
    >>> normalize_soc(0.8)
    0.8
    """
    if raw_soc is None or not math.isfinite(raw_soc):
        return SOC_FALLBACK
    if raw_soc > SOC_PERCENT_THRESHOLD:
        return clamp01(raw_soc / 100.0)
    return clamp01(raw_soc)


@dataclass(frozen=True)
class TelemetrySample:
    """Directional power flows in kW (all >= 0) and the SoC fraction."""

    prod_kw: float
    load_kw: float
    grid_import_kw: float
    grid_export_kw: float
    batt_charge_kw: float
    batt_discharge_kw: float
    soc: float

    @property
    def pv_surplus_kw(self) -> float:
        return max(0.0, self.prod_kw - self.load_kw)

    @property
    def load_gap_kw(self) -> float:
        return max(0.0, self.load_kw - self.prod_kw)

    def to_dict(self) -> dict:
        return {
            "prod_kw": self.prod_kw,
            "load_kw": self.load_kw,
            "grid_import_kw": self.grid_import_kw,
            "grid_export_kw": self.grid_export_kw,
            "batt_charge_kw": self.batt_charge_kw,
            "batt_discharge_kw": self.batt_discharge_kw,
            "soc": self.soc,
        }


def normalize_telemetry(raw: RawTelemetry) -> TelemetrySample:
    """Convert *raw* W readings into a :class:`TelemetrySample`.

    Invalid flow fields count as zero and an invalid SoC as 50 %; the
    substitution is logged as a warning.
    """
    invalid = raw.invalid_fields
    if invalid:
        logger.warning(
            "Invalid telemetry field(s) %s; using zero flow / %d%% SoC instead.",
            ", ".join(invalid),
            round(SOC_FALLBACK * 100),
        )

    def kw(watts: float) -> float:
        return watts / WATTS_PER_KW if math.isfinite(watts) else 0.0

    grid = kw(raw.grid_flow_w)
    batt = kw(raw.battery_flow_w)
    return TelemetrySample(
        prod_kw=max(0.0, kw(raw.production_w)),
        load_kw=max(0.0, kw(raw.local_flow_w)),
        grid_import_kw=grid if grid > 0 else 0.0,
        grid_export_kw=-grid if grid < 0 else 0.0,
        batt_charge_kw=-batt if batt < 0 else 0.0,
        batt_discharge_kw=batt if batt > 0 else 0.0,
        soc=normalize_soc(raw.battery_soc),
    )


def read_telemetry(text: str) -> TelemetrySample:
    """Parse and normalise *text* in one step; never raises."""
    return normalize_telemetry(parse_telemetry(text))


# ---------------------------------------------------------------------------
# Balance
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class BalanceCheck:
    """Sources (left) against sinks (right) of one sample, rounded to W."""

    left: float
    right: float
    diff: float
    ok: bool


def balance_check(
    sample: TelemetrySample, tolerance_kw: float = BALANCE_TOLERANCE_KW
) -> BalanceCheck:
    """Compare ``prod + import + discharge`` with ``load + export + charge``."""
    left = sample.prod_kw + sample.grid_import_kw + sample.batt_discharge_kw
    right = sample.load_kw + sample.grid_export_kw + sample.batt_charge_kw
    diff = left - right
    result = BalanceCheck(
        left=round(left, 3),
        right=round(right, 3),
        diff=round(diff, 3),
        ok=abs(diff) < tolerance_kw,
    )
    if not result.ok:
        logger.warning(
            "Power balance mismatch: sources %.3f kW vs sinks %.3f kW (diff %.3f)",
            result.left,
            result.right,
            result.diff,
        )
    return result
