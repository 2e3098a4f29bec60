"""Forecast documents: serialise, tabulate and export dispatch plans.

A forecast document is the ordered list of plan entries of one run, one
object per hour::

    {"hour_start": "2025-06-01T14:00:00+02:00", "decision": "discharge_sell",
     "power_setpoint_kw": 4.0, "resulting_soc": 0.628, "buy_price": 2.41,
     "export_allowed": true}

Public API
----------
plan_to_json     – Serialise a plan for the result sink (``"[]"`` on failure).
plan_to_frame    – Plan as a :class:`pandas.DataFrame` indexed by hour start.
write_plan_csv   – Export a plan as CSV.
format_plan_lines – Human-readable one-line-per-hour rendering.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Sequence
from pathlib import Path

import pandas as pd

from battery_dispatch.config.defaults import CSV_DELIMITER
from battery_dispatch.dispatch.planner import DispatchPlanEntry, plan_to_document
from battery_dispatch.output.formatting import fmt_pct, fmt_power, fmt_price

logger = logging.getLogger(__name__)

PLAN_COLUMNS = [
    "hour_start",
    "decision",
    "power_setpoint_kw",
    "resulting_soc",
    "buy_price",
    "export_allowed",
]


def plan_to_json(plan: Sequence[DispatchPlanEntry]) -> str:
    """Serialise *plan* as a compact JSON array.

    Non-finite numbers cannot be represented in JSON; such a plan is logged
    and published as an empty document.
    """
    try:
        return json.dumps(plan_to_document(plan), allow_nan=False, separators=(",", ":"))
    except (TypeError, ValueError) as exc:
        logger.warning("Could not serialise plan (%s); publishing an empty one.", exc)
        return "[]"


def plan_to_frame(plan: Sequence[DispatchPlanEntry]) -> pd.DataFrame:
    """Return *plan* as a DataFrame with a tz-aware ``hour_start`` index."""
    frame = pd.DataFrame(plan_to_document(plan), columns=PLAN_COLUMNS)
    frame["hour_start"] = pd.to_datetime(frame["hour_start"], utc=True)
    return frame.set_index("hour_start")


def write_plan_csv(path: Path | str, plan: Sequence[DispatchPlanEntry]) -> Path:
    """Write *plan* to *path*, creating parent directories.

    Hour starts are written in UTC (see :func:`plan_to_frame`).  An empty
    plan produces a header-only file.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    frame = plan_to_frame(plan)
    frame.to_csv(path, sep=CSV_DELIMITER)
    logger.info("Wrote plan CSV (%d rows): %s", len(frame), path)
    return path


def format_plan_lines(plan: Sequence[DispatchPlanEntry]) -> list[str]:
    return [
        f"{e.hour_start.isoformat()} -> {e.decision.value.upper()} @ "
        f"{fmt_power(e.power_kw)} kW (SoC end {fmt_pct(e.soc_end, precision=1)}%) "
        f"[{fmt_price(e.buy_price)}/kWh]"
        for e in plan
    ]
