"""Decision kinds, decision results and the sell-margin rule.

Shared by the plan builder and the realtime ladder.
"""

from __future__ import annotations

import enum
import math
from collections.abc import Sequence
from dataclasses import dataclass

from battery_dispatch.config.defaults import POWER_PRECISION


class DecisionKind(enum.Enum):
    """Closed set of battery decisions.

    Only :attr:`DISCHARGE_SELL` may push energy into the grid; the other
    discharge kinds are bounded by local consumption.
    """

    CHARGE = "charge"
    DISCHARGE_SELL = "discharge_sell"
    DISCHARGE_SHAVE = "discharge_shave"
    DISCHARGE_MID = "discharge_mid"
    IDLE = "idle"

    @property
    def is_charge(self) -> bool:
        return self is DecisionKind.CHARGE

    @property
    def is_discharge(self) -> bool:
        return self in (
            DecisionKind.DISCHARGE_SELL,
            DecisionKind.DISCHARGE_SHAVE,
            DecisionKind.DISCHARGE_MID,
        )

    @property
    def export_allowed(self) -> bool:
        return self is DecisionKind.DISCHARGE_SELL

    @property
    def mode(self) -> str:
        """Hardware-facing mode: ``"charge"``, ``"discharge"`` or ``"idle"``."""
        if self.is_charge:
            return "charge"
        if self.is_discharge:
            return "discharge"
        return "idle"


@dataclass(frozen=True)
class DecisionResult:
    """The single command issued for the current instant."""

    kind: DecisionKind
    power_kw: float
    reason: str

    @property
    def mode(self) -> str:
        return self.kind.mode

    @property
    def export_allowed(self) -> bool:
        return self.kind.export_allowed

    @property
    def power_w(self) -> int:
        """Non-negative setpoint in W; the direction is carried by :attr:`mode`."""
        return max(0, round(self.power_kw * 1000))

    @classmethod
    def idle(cls, reason: str) -> DecisionResult:
        return cls(kind=DecisionKind.IDLE, power_kw=0.0, reason=reason)


def round_power(power_kw: float) -> float:
    return round(power_kw, POWER_PRECISION)


def sell_margin(sell: float, baseline_buy: float, round_trip_efficiency: float) -> float:
    """Spread between *sell* and the efficiency-adjusted cost of *baseline_buy*.

    Examples
    --------
    >>> round(sell_margin(1.50, 0.80, 0.92), 4)
    0.6304
    """
    return sell - baseline_buy / round_trip_efficiency


def margin_ok(
    sell: float,
    baseline_buy: float,
    round_trip_efficiency: float,
    min_margin: float,
) -> bool:
    """Whether selling at *sell* clears *min_margin*.  Unknown prices never do."""
    margin = sell_margin(sell, baseline_buy, round_trip_efficiency)
    return math.isfinite(margin) and margin >= min_margin


def first_finite(values: Sequence[float]) -> float:
    """First finite value of *values*, or NaN when there is none."""
    return next((v for v in values if v is not None and math.isfinite(v)), math.nan)
