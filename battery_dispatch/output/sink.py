"""Result sink: publish named scalar values of a cycle.

The host reads the battery command and the forecasts from a key/value store.
Stores differ in the value types they accept, so every write walks an ordered
list of candidate encodings until one is accepted:

- numbers: ``float`` → ``int`` → ``str``
- text:    ``str``

A rejected candidate leaves the sink unchanged.  When every candidate is
rejected the failure is logged and the cycle carries on.

Public API
----------
SinkWriteFailure     – Raised by a sink that rejects a value.
KeyValueSink         – Abstract sink interface.
MemorySink           – In-memory sink (dry runs and tests).
JsonFileSink         – Sink persisted atomically to a JSON file.
write_with_fallback  – Try candidate encodings in order.
publish_cycle_result – Write all values of a :class:`CycleResult`.
"""

from __future__ import annotations

import abc
import json
import logging
import math
import os
import tempfile
from collections.abc import Iterable
from pathlib import Path
from typing import Any

from battery_dispatch.config.defaults import (
    HARD_MAX_SOC,
    PRICE_PRECISION,
    SINK_ACTION,
    SINK_CAP_PERCENT,
    SINK_PLAN_TODAY,
    SINK_PLAN_TOMORROW,
    SINK_POWER_W,
    SINK_PRICE_NOW,
    SINK_REASON,
    SINK_RESERVE_ACTIVE,
    SINK_SOC_PERCENT,
    SINK_TARGET_SOC_PERCENT,
)
from battery_dispatch.dispatch.engine import CycleResult
from battery_dispatch.output.forecast import plan_to_json

logger = logging.getLogger(__name__)


class SinkWriteFailure(RuntimeError):
    """Raised when a sink rejects a value."""


# ---------------------------------------------------------------------------
# Sinks
# ---------------------------------------------------------------------------


class KeyValueSink(abc.ABC):
    """Store of named scalar values."""

    @abc.abstractmethod
    def write(self, name: str, value: Any) -> None:
        """Store *value* under *name*.

        Raises
        ------
        SinkWriteFailure
            When the value is rejected; the sink is then unchanged.
        """

    @abc.abstractmethod
    def read(self, name: str) -> Any:
        """Return the value stored under *name* (``KeyError`` when absent)."""


def _check_scalar(name: str, value: Any) -> None:
    if isinstance(value, bool) or isinstance(value, (int, str)):
        return
    if isinstance(value, float):
        if math.isfinite(value):
            return
        raise SinkWriteFailure(f"Non-finite value for '{name}': {value!r}")
    raise SinkWriteFailure(
        f"Unsupported value type for '{name}': {type(value).__name__}"
    )


class MemorySink(KeyValueSink):
    """Keeps values in a dict; accepts finite numbers and strings."""

    def __init__(self) -> None:
        self.values: dict[str, Any] = {}

    def write(self, name: str, value: Any) -> None:
        _check_scalar(name, value)
        self.values[name] = value

    def read(self, name: str) -> Any:
        return self.values[name]


class JsonFileSink(KeyValueSink):
    """Values persisted to one JSON object file.

    Every accepted write rewrites the file through a temporary file and an
    atomic rename, so readers never see a half-written document.  Existing
    values in *path* are loaded on construction.

    Parameters
    ----------
    path:
        Destination ``.json`` file; parent directories are created.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._values: dict[str, Any] = {}
        if self.path.exists():
            with self.path.open("r", encoding="utf-8") as fh:
                loaded = json.load(fh)
            if isinstance(loaded, dict):
                self._values = loaded
            else:
                logger.warning("Ignoring non-object sink file '%s'", self.path)

    def write(self, name: str, value: Any) -> None:
        _check_scalar(name, value)
        updated = {**self._values, name: value}
        try:
            payload = json.dumps(updated, indent=2, sort_keys=True, allow_nan=False)
        except (TypeError, ValueError) as exc:
            raise SinkWriteFailure(f"Cannot serialise '{name}': {exc}") from exc
        try:
            self._replace_file(payload)
        except OSError as exc:
            raise SinkWriteFailure(f"Cannot write '{self.path}': {exc}") from exc
        self._values = updated

    def read(self, name: str) -> Any:
        return self._values[name]

    def _replace_file(self, payload: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{self.path.name}.", suffix=".tmp", dir=self.path.parent
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(payload)
            os.replace(tmp_name, self.path)
        except OSError:
            Path(tmp_name).unlink(missing_ok=True)
            raise


# ---------------------------------------------------------------------------
# Candidate encodings
# ---------------------------------------------------------------------------


def number_candidates(value: float) -> list[Any]:
    """Encodings tried for a numeric value, in order.

    >>> number_candidates(42)
    [42.0, 42, '42']
    """
    candidates: list[Any] = [float(value)]
    if math.isfinite(value):
        candidates.append(int(round(value)))
    candidates.append(str(value))
    return candidates


def write_with_fallback(sink: KeyValueSink, name: str, candidates: Iterable[Any]) -> bool:
    """Write the first candidate *sink* accepts.

    Returns
    -------
    bool
        ``False`` when every candidate was rejected (logged, not raised).
    """
    errors = []
    for candidate in candidates:
        try:
            sink.write(name, candidate)
            return True
        except SinkWriteFailure as exc:
            logger.debug("Sink rejected %s=%r: %s", name, candidate, exc)
            errors.append(str(exc))
    logger.error("Could not write '%s' to the sink: %s", name, "; ".join(errors))
    return False


def write_number(sink: KeyValueSink, name: str, value: float) -> bool:
    return write_with_fallback(sink, name, number_candidates(value))


def write_text(sink: KeyValueSink, name: str, value: str) -> bool:
    return write_with_fallback(sink, name, [str(value)])


# ---------------------------------------------------------------------------
# Cycle publication
# ---------------------------------------------------------------------------


def _percent(fraction: float | None) -> int:
    if fraction is None or not math.isfinite(fraction):
        return 0
    return round(fraction * 100)


def publish_cycle_result(sink: KeyValueSink, result: CycleResult) -> dict[str, bool]:
    """Write every published value of *result* to *sink*.

    Returns
    -------
    dict[str, bool]
        Per value name, whether the write succeeded.
    """
    decision = result.decision
    price = result.price_now.buy
    cap = result.cap_now if math.isfinite(result.cap_now) else HARD_MAX_SOC

    outcome = {
        SINK_ACTION: write_text(sink, SINK_ACTION, decision.mode),
        SINK_POWER_W: write_number(sink, SINK_POWER_W, decision.power_w),
        SINK_REASON: write_text(sink, SINK_REASON, decision.reason),
        SINK_SOC_PERCENT: write_number(sink, SINK_SOC_PERCENT, _percent(result.soc)),
        SINK_PRICE_NOW: write_number(
            sink,
            SINK_PRICE_NOW,
            round(price, PRICE_PRECISION) if math.isfinite(price) else 0,
        ),
        SINK_TARGET_SOC_PERCENT: write_number(
            sink, SINK_TARGET_SOC_PERCENT, _percent(result.target_soc)
        ),
        SINK_CAP_PERCENT: write_number(sink, SINK_CAP_PERCENT, _percent(cap)),
        SINK_RESERVE_ACTIVE: write_number(
            sink, SINK_RESERVE_ACTIVE, 1 if result.reservation_active else 0
        ),
        SINK_PLAN_TODAY: write_text(sink, SINK_PLAN_TODAY, plan_to_json(result.plan_today)),
        SINK_PLAN_TOMORROW: write_text(
            sink, SINK_PLAN_TOMORROW, plan_to_json(result.plan_tomorrow)
        ),
    }
    failed = [name for name, ok in outcome.items() if not ok]
    if failed:
        logger.warning("Sink values not written: %s", ", ".join(failed))
    return outcome
