"""Command-line interface: schedule a tournament file and print the result."""

import argparse
import logging
import sys
from datetime import date
from pathlib import Path

from stationplan.config import apply_settings, get_settings
from stationplan.engine import SchedulingEngine
from stationplan.errors import SchedulingError
from stationplan.log import init_logging
from stationplan.models import ScheduleResultModel
from stationplan.schedule import Algorithm, ScheduleResult, Slot, load_tournament

logger = logging.getLogger("stationplan.cli")


def _parse_delay(value: str) -> tuple[str, float]:
    slot_id, sep, amount = value.rpartition(":")
    if not sep or not slot_id:
        raise argparse.ArgumentTypeError(f"expected SLOT_ID:MINUTES, got {value!r}")
    try:
        return slot_id, float(amount)
    except ValueError:
        raise argparse.ArgumentTypeError(f"delay minutes must be a number, got {amount!r}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="stationplan", description="Schedule tournament matches onto stations.")
    parser.add_argument("config", type=Path, help="tournament YAML file")
    parser.add_argument("--algorithm", choices=[a.value for a in Algorithm],
                        help="override the algorithm from the file")
    parser.add_argument("--delay", type=_parse_delay, action="append", default=[], metavar="SLOT_ID:MINUTES",
                        help="apply a delay after generation (repeatable)")
    parser.add_argument("--json", action="store_true", help="print the result as JSON")
    parser.add_argument("--verbose", action="store_true", help="log search internals")
    return parser


def main(argv: list[str] | None = None) -> int:
    """Command-line interface for schedule generation."""
    args = build_parser().parse_args(argv)

    # JSON output goes to stdout, so keep the log quiet
    level = logging.DEBUG if args.verbose else (logging.WARNING if args.json else logging.INFO)
    init_logging("cli", level=level)

    if not args.config.exists():
        print(f"Error: Config file not found: {args.config}", file=sys.stderr)
        return 1

    try:
        plan = load_tournament(args.config)
        plan.config = apply_settings(plan.config, get_settings())
        engine = SchedulingEngine.from_plan(plan, algorithm=args.algorithm)

        logger.info(f"Generating schedule for {plan.tournament_id or args.config.stem}")
        result = engine.generate_schedule(plan.matches, plan.constraints)
        for slot_id, delay in args.delay:
            result = engine.reschedule_for_delay(slot_id, delay, reason="Delay from command line")
    except SchedulingError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if args.json:
        print(ScheduleResultModel.from_result(result).model_dump_json(indent=2))
    else:
        print(f"\n{result.summary()}")
        _print_full_schedule(result)

    return 0 if result.success else 2


def _print_full_schedule(result: ScheduleResult):
    """Print the schedule grouped by day, one line per slot in time then station order."""
    by_date: dict[date, list[Slot]] = {}
    for slot in result.schedule:
        by_date.setdefault(slot.start.date(), []).append(slot)

    print("\n" + "=" * 100)
    print("FULL SCHEDULE")
    print("=" * 100)

    if not by_date:
        print("\nNO MATCHES SCHEDULED")

    for game_date in sorted(by_date):
        print(f"\n{game_date.strftime('%Y-%m-%d (%A)')}:")
        for slot in sorted(by_date[game_date], key=lambda s: (s.start, s.station_id)):
            span = f"{slot.start:%H:%M}-{slot.end:%H:%M}"
            players = ", ".join(slot.player_ids) or "-"
            print(f"  {span} | {slot.station_id:8} | [R{slot.round or 0}] {slot.match_id:10} | {players}")

    delays = [u for u in result.updates if u.update_type == "delay"]
    for update in delays:
        print(f"\nDelay: {', '.join(update.slot_ids)} +{update.delay_minutes:g} min ({update.reason})")
        for cascade in update.cascading_updates:
            print(f"  cascaded: {', '.join(cascade.slot_ids)} -> {cascade.new_starts[0]:%H:%M}")

    print("\n" + "=" * 100)


if __name__ == "__main__":
    sys.exit(main())
