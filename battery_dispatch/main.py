"""CLI entrypoint: run one battery dispatch cycle.

Execution flow
--------------
1.  Load & validate the controller configuration (defaults without one).
2.  Read telemetry from the arguments (fallback sample without any).
3.  Fetch today's prices and, after publication, tomorrow's.
4.  Run the decision cycle.
5.  Export plans as CSV (optional) and publish results to the sink.
6.  Print summary to stdout.

Exactly one cycle runs per invocation; the host scheduler must not start a
new invocation while one is still running.

Usage
-----
    python -m battery_dispatch.main "1300;60;261;-970;16"
    python -m battery_dispatch.main 1300 60 261 -970 16 --config controller.json
    python -m battery_dispatch.main --plan-dir output/plans -v
    python -m battery_dispatch.main --now 2025-06-01T14:30:00+02:00 --dry-run
    python -m battery_dispatch.main --print-schema > controller.schema.json
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from datetime import datetime

import jsonschema

from battery_dispatch.bess.telemetry import join_arguments
from battery_dispatch.config.loader import ControllerConfig, default_config, load_config
from battery_dispatch.config.schema import get_schema
from battery_dispatch.dispatch.engine import CycleResult, run_cycle
from battery_dispatch.market.price_feed import FeedUnavailable, PriceFeedClient
from battery_dispatch.output.forecast import format_plan_lines, write_plan_csv
from battery_dispatch.output.sink import (
    JsonFileSink,
    KeyValueSink,
    MemorySink,
    publish_cycle_result,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Argument parsing
# ---------------------------------------------------------------------------


def _build_parser() -> argparse.ArgumentParser:
    """Build the CLI argument parser."""
    p = argparse.ArgumentParser(
        prog="python -m battery_dispatch.main",
        description="Home battery price-dispatch controller",
    )
    p.add_argument(
        "telemetry",
        nargs="*",
        metavar="TELEMETRY",
        help=(
            "Telemetry as one 'production;grid;load;battery;soc' string or as "
            "five separate values (W, SoC in %% or fraction)."
        ),
    )
    p.add_argument(
        "--config",
        metavar="PATH",
        default=None,
        help="Path to controller configuration JSON (defaults when omitted).",
    )
    p.add_argument(
        "--sink",
        metavar="PATH",
        default=None,
        help="Result JSON file (overrides the configuration setting).",
    )
    p.add_argument(
        "--plan-dir",
        metavar="DIR",
        default=None,
        help="Directory for plan CSV exports (overrides the configuration setting).",
    )
    p.add_argument(
        "--now",
        metavar="ISO",
        default=None,
        help="Evaluate the cycle at this instant instead of the current time.",
    )
    p.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        default=False,
        help="Enable DEBUG logging.",
    )
    p.add_argument(
        "--dry-run",
        action="store_true",
        default=False,
        help="Run the cycle but keep results in memory instead of writing the sink.",
    )
    p.add_argument(
        "--print-schema",
        action="store_true",
        default=False,
        help="Print the configuration JSON schema and exit.",
    )
    return p


def _parse_now(value: str | None) -> datetime:
    if value is None:
        return datetime.now().astimezone()
    now = datetime.fromisoformat(value)
    # naive instants are taken as local time
    return now if now.tzinfo is not None else now.astimezone()


# ---------------------------------------------------------------------------
# Orchestration
# ---------------------------------------------------------------------------


def _fetch_prices(config: ControllerConfig, now: datetime) -> tuple[list, list]:
    client = PriceFeedClient.from_config(config)
    try:
        return client.fetch_today_and_tomorrow(now)
    except FeedUnavailable as exc:
        logger.warning("Today's prices unavailable (%s); continuing without prices.", exc)
        return [], []


def _export_plans(plan_dir: str, result: CycleResult) -> None:
    """Write the plan CSVs; a failed export never blocks publishing."""
    stamp = result.now.strftime("%Y%m%d")
    try:
        write_plan_csv(f"{plan_dir}/plan_today_{stamp}.csv", result.plan_today)
        if result.plan_tomorrow:
            write_plan_csv(f"{plan_dir}/plan_tomorrow_{stamp}.csv", result.plan_tomorrow)
    except OSError as exc:
        logger.error("Plan CSV export to '%s' failed: %s", plan_dir, exc)


def run(args: argparse.Namespace) -> int:
    """Execute one decision cycle.

    Parameters
    ----------
    args:
        Parsed CLI arguments.

    Returns
    -------
    int
        Exit code (0 = success, 1 = error).
    """
    if args.print_schema:
        print(json.dumps(get_schema(), indent=2))
        return 0

    try:
        config = load_config(args.config) if args.config else default_config()
    except (OSError, ValueError, jsonschema.ValidationError) as exc:
        logger.error("Failed to load configuration: %s", exc)
        return 1

    try:
        now = _parse_now(args.now)
    except ValueError as exc:
        logger.error("Invalid --now value '%s': %s", args.now, exc)
        return 1

    telemetry = join_arguments(args.telemetry)
    today, tomorrow = _fetch_prices(config, now)

    result = run_cycle(config, telemetry, today, tomorrow, now)

    plan_dir = args.plan_dir or config.output.plan_dir
    if plan_dir:
        _export_plans(plan_dir, result)

    sink: KeyValueSink
    if args.dry_run:
        sink = MemorySink()
    else:
        sink_path = args.sink or config.output.sink_path
        try:
            sink = JsonFileSink(sink_path)
        except (OSError, ValueError) as exc:
            logger.error("Cannot open sink '%s' (%s); results kept in memory.", sink_path, exc)
            sink = MemorySink()
    publish_cycle_result(sink, result)

    _print_summary(result)
    return 0


def _print_summary(result: CycleResult) -> None:
    """Print the cycle outcome to stdout."""
    decision = result.decision
    target = result.target_soc

    print()
    print("=" * 60)
    print(f"  Cycle at {result.now.isoformat(timespec='minutes')}")
    print("=" * 60)
    print(f"  SoC:                   {result.soc * 100:.0f} %")
    print(f"  SoC cap now:           {result.cap_now * 100:.0f} %")
    print(f"  Price now:             {result.price_now.buy:.2f} /kWh ({result.price_now.tier.value})")
    if target is not None:
        print(f"  Midnight target:       {target * 100:.0f} %")
    print()
    print(f"  Action:                {decision.mode} {decision.power_w} W")
    print(f"  Reason:                {decision.reason}")
    print()
    print("  Plan (rest of today):")
    for line in format_plan_lines(result.plan_today) or ["  - no hours left today"]:
        print(f"    {line}")
    print("  Plan (tomorrow):")
    for line in format_plan_lines(result.plan_tomorrow) or ["  - not published yet"]:
        print(f"    {line}")
    print("=" * 60)
    print()


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main() -> None:
    """Parse CLI arguments and run one cycle."""
    parser = _build_parser()
    args = parser.parse_args()

    # Configure logging
    log_level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )

    sys.exit(run(args))


if __name__ == "__main__":
    main()
