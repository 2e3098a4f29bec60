"""Battery state model: SoC fraction, power limits, split efficiency.

The efficiency model splits the round-trip loss evenly over both directions:
  - Charging at P kW for one hour stores P × charge_efficiency kWh.
  - Discharging at P kW for one hour removes P / discharge_efficiency kWh.
  - charge_efficiency = discharge_efficiency = sqrt(round_trip_efficiency).

All power values are in kW (= kWh per hour for 1-hour slots).
All SoC values are fractions of capacity.
"""

from __future__ import annotations

import logging
import math

from battery_dispatch.config.defaults import HARD_MAX_SOC, HARD_MIN_SOC, HOURS_PER_SLOT

logger = logging.getLogger(__name__)


def clamp01(x: float) -> float:
    """Clamp *x* to the closed interval [0, 1]."""
    return min(1.0, max(0.0, x))


def clamp_soc(soc: float) -> float:
    """Clamp a SoC fraction to the hard operating window."""
    return min(HARD_MAX_SOC, max(HARD_MIN_SOC, clamp01(soc)))


class BatteryState:
    """Models the instantaneous state of a home battery.

    Tracks the current SoC as a fraction of capacity and derives the power
    that can be charged or discharged before a SoC limit is hit.  Used both
    read-only (realtime decision) and as the integrator of the plan builder.
    """

    def __init__(
        self,
        soc: float,
        capacity_kwh: float,
        max_charge_kw: float,
        max_discharge_kw: float,
        round_trip_efficiency: float,
    ) -> None:
        """Initialise a BatteryState.

        Args:
            soc: Current state of charge as a fraction.  Clamped to [0, 1].
            capacity_kwh: Usable battery capacity in kWh.
            max_charge_kw: Maximum charging power in kW.
            max_discharge_kw: Maximum discharging power in kW.
            round_trip_efficiency: Round-trip efficiency as a fraction in (0, 1].

        Raises:
            ValueError: If any parameter is outside its valid range.
        """
        if capacity_kwh <= 0.0:
            raise ValueError(f"capacity_kwh must be > 0, got {capacity_kwh}")
        if not (0.0 < round_trip_efficiency <= 1.0):
            raise ValueError(
                f"round_trip_efficiency must be in (0, 1], got {round_trip_efficiency}"
            )
        if max_charge_kw < 0.0 or max_discharge_kw < 0.0:
            raise ValueError(
                f"Power limits must be >= 0, got charge={max_charge_kw}, "
                f"discharge={max_discharge_kw}"
            )

        self.soc: float = clamp01(float(soc))
        self.capacity_kwh: float = capacity_kwh
        self.max_charge_kw: float = max_charge_kw
        self.max_discharge_kw: float = max_discharge_kw
        self.round_trip_efficiency: float = round_trip_efficiency

    # ------------------------------------------------------------------
    # Derived properties
    # ------------------------------------------------------------------

    @property
    def charge_efficiency(self) -> float:
        return math.sqrt(self.round_trip_efficiency)

    @property
    def discharge_efficiency(self) -> float:
        return math.sqrt(self.round_trip_efficiency)

    @property
    def usable_capacity_kwh(self) -> float:
        """Energy between the hard SoC bounds in kWh."""
        return self.capacity_kwh * (HARD_MAX_SOC - HARD_MIN_SOC)

    def copy(self, soc: float | None = None) -> BatteryState:
        """Return an independent copy, optionally starting at another SoC."""
        return BatteryState(
            soc=self.soc if soc is None else soc,
            capacity_kwh=self.capacity_kwh,
            max_charge_kw=self.max_charge_kw,
            max_discharge_kw=self.max_discharge_kw,
            round_trip_efficiency=self.round_trip_efficiency,
        )

    # ------------------------------------------------------------------
    # Power limits
    # ------------------------------------------------------------------

    def charge_headroom_kw(self, cap: float) -> float:
        """Grid-side power that fills the battery up to *cap* in one slot.

        The current SoC is clamped to the hard maximum first, so a battery
        reported above it never yields negative headroom.
        """
        room_kwh = max(0.0, (cap - min(self.soc, HARD_MAX_SOC)) * self.capacity_kwh)
        return room_kwh / self.charge_efficiency / HOURS_PER_SLOT

    def discharge_headroom_kw(self, floor: float = HARD_MIN_SOC) -> float:
        """Deliverable power that empties the battery down to *floor* in one slot."""
        floor = max(floor, HARD_MIN_SOC)
        avail_kwh = max(0.0, (max(self.soc, HARD_MIN_SOC) - floor) * self.capacity_kwh)
        return avail_kwh * self.discharge_efficiency / HOURS_PER_SLOT

    # ------------------------------------------------------------------
    # Charge / discharge integration
    # ------------------------------------------------------------------

    def charge(self, power_kw: float) -> float:
        """Charge at *power_kw* for one slot and return the new SoC.

        Stored energy is ``power_kw × charge_efficiency``; the result is
        clamped to the hard maximum.

        Raises:
            ValueError: If *power_kw* is negative.
        """
        if power_kw < 0.0:
            raise ValueError(f"Charge power must be >= 0, got {power_kw}")
        stored_kwh = power_kw * HOURS_PER_SLOT * self.charge_efficiency
        self.soc = clamp01(min(HARD_MAX_SOC, self.soc + stored_kwh / self.capacity_kwh))
        return self.soc

    def discharge(self, power_kw: float) -> float:
        """Discharge at *power_kw* for one slot and return the new SoC.

        Removed energy is ``power_kw / discharge_efficiency``; the result is
        clamped to the hard minimum.

        Raises:
            ValueError: If *power_kw* is negative.
        """
        if power_kw < 0.0:
            raise ValueError(f"Discharge power must be >= 0, got {power_kw}")
        taken_kwh = power_kw * HOURS_PER_SLOT / self.discharge_efficiency
        self.soc = clamp01(max(HARD_MIN_SOC, self.soc - taken_kwh / self.capacity_kwh))
        return self.soc
