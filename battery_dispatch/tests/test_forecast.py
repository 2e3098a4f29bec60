"""Unit tests for battery_dispatch.output.forecast and output.formatting."""

from __future__ import annotations

import json
import math
from datetime import datetime, timedelta, timezone

import pandas as pd
import pytest

from battery_dispatch.dispatch.decisions import DecisionKind
from battery_dispatch.dispatch.planner import DispatchPlanEntry
from battery_dispatch.output.forecast import (
    PLAN_COLUMNS,
    format_plan_lines,
    plan_to_frame,
    plan_to_json,
    write_plan_csv,
)
from battery_dispatch.output.formatting import fmt_float, fmt_pct, fmt_power, fmt_price

CEST = timezone(timedelta(hours=2))
START = datetime(2025, 6, 1, 17, tzinfo=CEST)


@pytest.fixture
def plan() -> list[DispatchPlanEntry]:
    return [
        DispatchPlanEntry(START, DecisionKind.DISCHARGE_SHAVE, 1.5, 0.7, 2.46),
        DispatchPlanEntry(START + timedelta(hours=1), DecisionKind.DISCHARGE_SELL, 4.0, 0.421, 2.86),
        DispatchPlanEntry(START + timedelta(hours=2), DecisionKind.IDLE, 0.0, 0.421, 2.66),
    ]


class TestPlanToJson:
    def test_document_fields(self, plan) -> None:
        doc = json.loads(plan_to_json(plan))
        assert len(doc) == 3
        assert list(doc[0]) == PLAN_COLUMNS
        assert doc[1] == {
            "hour_start": "2025-06-01T18:00:00+02:00",
            "decision": "discharge_sell",
            "power_setpoint_kw": 4.0,
            "resulting_soc": 0.421,
            "buy_price": 2.86,
            "export_allowed": True,
        }
        assert doc[0]["export_allowed"] is False

    def test_compact_separators(self, plan) -> None:
        assert ", " not in plan_to_json(plan)

    def test_empty_plan(self) -> None:
        assert plan_to_json([]) == "[]"

    def test_non_finite_price_publishes_empty(self, caplog) -> None:
        bad = [DispatchPlanEntry(START, DecisionKind.IDLE, 0.0, 0.5, math.nan)]
        assert plan_to_json(bad) == "[]"
        assert "empty" in caplog.text


class TestPlanToFrame:
    def test_index_and_columns(self, plan) -> None:
        frame = plan_to_frame(plan)
        assert list(frame.columns) == PLAN_COLUMNS[1:]
        assert frame.index.name == "hour_start"
        assert frame.index[0] == pd.Timestamp("2025-06-01T15:00:00Z")
        assert frame["power_setpoint_kw"].sum() == pytest.approx(5.5)

    def test_empty_plan_gives_empty_frame(self) -> None:
        assert plan_to_frame([]).empty


class TestWritePlanCsv:
    def test_round_trip_via_pandas(self, plan, tmp_path) -> None:
        path = write_plan_csv(tmp_path / "nested" / "plan.csv", plan)
        assert path.exists()
        frame = pd.read_csv(path)
        assert list(frame.columns) == PLAN_COLUMNS
        assert frame["decision"].tolist() == ["discharge_shave", "discharge_sell", "idle"]
        assert pd.Timestamp(frame["hour_start"][0]) == pd.Timestamp("2025-06-01T15:00:00Z")

    def test_matches_frame(self, plan, tmp_path) -> None:
        path = write_plan_csv(tmp_path / "plan.csv", plan)
        frame = pd.read_csv(path, index_col="hour_start", parse_dates=["hour_start"])
        expected = plan_to_frame(plan)
        assert list(frame.index) == list(expected.index)
        assert frame["power_setpoint_kw"].tolist() == expected["power_setpoint_kw"].tolist()

    def test_empty_plan_header_only(self, tmp_path) -> None:
        path = write_plan_csv(tmp_path / "empty.csv", [])
        lines = path.read_text().strip().splitlines()
        assert lines == [",".join(PLAN_COLUMNS)]


class TestFormatting:
    def test_plan_lines(self, plan) -> None:
        lines = format_plan_lines(plan)
        assert lines[1] == (
            "2025-06-01T18:00:00+02:00 -> DISCHARGE_SELL @ 4.00 kW "
            "(SoC end 42.1%) [2.86/kWh]"
        )

    @pytest.mark.parametrize("value", [None, math.nan, math.inf])
    def test_missing_values_blank(self, value) -> None:
        assert fmt_float(value) == ""
        assert fmt_pct(value) == ""

    def test_precisions(self) -> None:
        assert fmt_float(0.72549) == "0.725"
        assert fmt_power(3.999) == "4.00"
        assert fmt_price(1.2) == "1.20"
        assert fmt_pct(0.9) == "90"
