from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

import yaml

from .allocation_models import Project, RecurringPattern
from .budget import display_budget
from .display_rows import format_row, to_display_rows
from .errors import (
    AllocationError,
    ConfirmationRequired,
    ExclusivityError,
    PatternValidationError,
    PersistenceError,
    RecordValidationError,
    SettingsError,
)
from .orchestrator import AllocationOrchestrator, OperationResult
from .settings import load_settings
from .store import YamlAllocationStore

DAY_NAMES = {"sun": 0, "mon": 1, "tue": 2, "wed": 3, "thu": 4, "fri": 5, "sat": 6}


def _parse_date(value: str):
    import datetime as dt

    try:
        return dt.date.fromisoformat(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"invalid date '{value}', expected YYYY-MM-DD") from exc


def _parse_day(value: str) -> int:
    key = value.strip().lower()[:3]
    if key in DAY_NAMES:
        return DAY_NAMES[key]
    try:
        return int(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"invalid day '{value}', expected 0-6 or a day name") from exc


def _add_pattern_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--weekly", type=_parse_day, metavar="DAY", help="Repeat weekly on DAY (0=Sunday or name)")
    parser.add_argument("--monthly-date", type=int, metavar="N", help="Repeat monthly on day N of the month")
    parser.add_argument(
        "--monthly-weekday",
        nargs=2,
        metavar=("WEEK", "DAY"),
        help="Repeat monthly on the WEEK-th (1-4) DAY of the month",
    )
    parser.add_argument("--interval", type=int, default=1, help="Repeat every N weeks/months")
    parser.add_argument("--horizon", type=_parse_date, help="Generate instances before this date (YYYY-MM-DD)")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Phase and recurring allocation planner",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument("workspace", help="Path to workspace YAML (project + allocations)")
    parser.add_argument("--config", help="Engine settings YAML")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    commands = parser.add_subparsers(dest="command", required=True)
    commands.add_parser("show", help="List phases, recurring summary, instances and milestones")
    commands.add_parser("validate", help="Check phase continuity and mode exclusivity")
    commands.add_parser("budget", help="Compare allocated hours with the estimate")
    split = commands.add_parser("split", help="Split the estimate into two phases")
    split.add_argument("--yes", action="store_true", help="Confirm deleting existing milestones")
    commands.add_parser("add-phase", help="Append a phase after the last one")
    commands.add_parser("repair", help="Fix overlapping phase boundaries")
    commands.add_parser("reset", help="Delete all phases and recurring records")

    recurring = commands.add_parser("recurring", help="Manage the recurring template")
    actions = recurring.add_subparsers(dest="action", required=True)
    create = actions.add_parser("create", help="Create the recurring template")
    create.add_argument("name")
    create.add_argument("hours", type=float)
    create.add_argument("--yes", action="store_true", help="Confirm deleting existing phases")
    _add_pattern_args(create)
    extend = actions.add_parser("extend", help="Generate missing instances up to a horizon")
    extend.add_argument("--horizon", type=_parse_date, help="Generate instances before this date (YYYY-MM-DD)")
    load = actions.add_parser("load", help="Change hours per occurrence")
    load.add_argument("hours", type=float)
    pattern = actions.add_parser("pattern", help="Change the recurrence and regenerate")
    _add_pattern_args(pattern)
    actions.add_parser("delete", help="Delete the template and its instances")
    return parser


def _pattern_from_args(args: argparse.Namespace) -> RecurringPattern:
    chosen = [opt for opt in (args.weekly, args.monthly_date, args.monthly_weekday) if opt is not None]
    if len(chosen) != 1:
        raise PatternValidationError(["Choose exactly one of --weekly, --monthly-date, --monthly-weekday"])
    if args.weekly is not None:
        return RecurringPattern.weekly(args.weekly, interval=args.interval)
    if args.monthly_date is not None:
        return RecurringPattern.monthly_on_date(args.monthly_date, interval=args.interval)
    week, day = args.monthly_weekday
    try:
        week_number = int(week)
    except ValueError as exc:
        raise PatternValidationError([f"Invalid week of month '{week}'"]) from exc
    try:
        day_number = _parse_day(day)
    except argparse.ArgumentTypeError as exc:
        raise PatternValidationError([str(exc)]) from exc
    return RecurringPattern.monthly_on_weekday(week_number, day_number, interval=args.interval)


def _print_result(result: OperationResult) -> None:
    print(result.message)


async def _run(args: argparse.Namespace, orchestrator: AllocationOrchestrator, project: Project) -> None:
    command = args.command
    if command == "show":
        plan = await orchestrator.load_plan(project)
        print(f"{project.name} ({plan.mode})")
        for row in to_display_rows(plan):
            print(f"  {format_row(row)}")
    elif command == "validate":
        health = await orchestrator.validate(project)
        for issue in health.continuity.errors:
            print(f"error: {issue.message}")
        for issue in health.continuity.warnings:
            print(f"warning: {issue.message}")
        if not health.exclusivity.allowed:
            print(f"error: {health.exclusivity.reason}")
        if health.remedy:
            print(f"remedy: {health.remedy}")
        if health.is_healthy:
            print("OK")
    elif command == "budget":
        print(display_budget(await orchestrator.analyze(project)))
    elif command == "split":
        _print_result(await orchestrator.split_estimate(project, confirm=args.yes))
    elif command == "add-phase":
        _print_result(await orchestrator.add_phase(project))
    elif command == "repair":
        _print_result(await orchestrator.repair_phases(project))
    elif command == "reset":
        _print_result(await orchestrator.delete_all_and_reset(project))
    elif args.action == "create":
        pattern = _pattern_from_args(args)
        _print_result(
            await orchestrator.create_recurring(
                project, args.name, args.hours, pattern, confirm=args.yes, horizon=args.horizon
            )
        )
    elif args.action == "extend":
        _print_result(await orchestrator.ensure_recurring_coverage(project, args.horizon))
    elif args.action == "load":
        _print_result(await orchestrator.change_recurring_load(project, args.hours))
    elif args.action == "pattern":
        _print_result(await orchestrator.change_recurring_pattern(project, _pattern_from_args(args), args.horizon))
    else:
        _print_result(await orchestrator.delete_recurring(project))


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    workspace = Path(args.workspace)

    try:
        settings = load_settings(args.config)
        store = YamlAllocationStore(workspace)
        project = store.load_project()
    except (yaml.YAMLError, RecordValidationError, SettingsError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 2
    except FileNotFoundError as exc:
        print(f"Error: file not found: {exc.filename}", file=sys.stderr)
        return 1

    orchestrator = AllocationOrchestrator(store, settings)
    try:
        asyncio.run(_run(args, orchestrator, project))
    except (ExclusivityError, ConfirmationRequired) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        if exc.decision.remedy:
            print(f"Remedy: {exc.decision.remedy}", file=sys.stderr)
        return 2
    except (PatternValidationError, RecordValidationError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 2
    except PersistenceError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    except AllocationError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 2
    except Exception as exc:  # Unexpected
        print(f"Unexpected error: {exc}", file=sys.stderr)
        return 1

    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
