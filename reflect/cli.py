"""Command-line interface for reflect."""

import argparse
import dataclasses
import logging
import sys
from datetime import date
from pathlib import Path

from .collector import available_session_dates, collect_for_date
from .config import (
    ReflectPaths,
    append_history,
    default_target,
    find_target,
    load_config,
    load_history,
    save_config,
)
from .reflection import ReflectionOptions, Reflector
from .renderer import render_dates, render_history, render_recidivism, render_targets


def main(argv=None) -> int:
    """Main entry point for the CLI."""
    parser = argparse.ArgumentParser(
        prog="reflect",
        description="Improve an agent's behavioral file from its recent sessions",
        epilog="""
Examples:
  reflect run                    Reflect on the configured target
  reflect run ~/AGENTS.md        Reflect on a specific file
  reflect run --dry-run          Analyze without editing
  reflect run --date 2026-02-11  Use sessions from one day
  reflect history                Show recent runs
  reflect help                   Show detailed help

Requires ANTHROPIC_API_KEY environment variable.
""",
        formatter_class=argparse.RawDescriptionHelpFormatter
    )
    parser.add_argument(
        "--config-dir",
        metavar="DIR",
        help="Directory holding reflect.json, history, sessions and backups (default: ~/.pi/agent)"
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Show debug logging"
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # run command
    run_parser = subparsers.add_parser(
        "run",
        help="Reflect on recent sessions and edit a file"
    )
    run_parser.add_argument(
        "path",
        nargs="?",
        help="File to reflect on (defaults to the configured target)"
    )
    run_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Analyze and record proposed edits without writing"
    )
    run_parser.add_argument(
        "--date",
        metavar="YYYY-MM-DD",
        type=date.fromisoformat,
        help="Use sessions from this date instead of the lookback window"
    )
    run_parser.add_argument(
        "--model",
        metavar="PROVIDER/MODEL",
        help="Model for analysis (e.g. anthropic/claude-sonnet-4-5)"
    )
    run_parser.add_argument(
        "--lookback",
        metavar="DAYS",
        type=int,
        help="Days of sessions to analyze"
    )
    run_parser.add_argument(
        "--save",
        action="store_true",
        help="Save the path as a configured target"
    )

    subparsers.add_parser("config", help="Show configured targets")

    history_parser = subparsers.add_parser("history", help="Show recent reflection runs")
    history_parser.add_argument(
        "-n", "--limit",
        type=int,
        default=10,
        help="Number of runs to show"
    )

    subparsers.add_parser("recidivism", help="Show sections edited in more than one run")
    subparsers.add_parser("dates", help="List dates that have session logs")
    subparsers.add_parser("help", help="Show detailed help")

    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING)
    paths = ReflectPaths.from_root(Path(args.config_dir)) if args.config_dir else ReflectPaths.default()

    # Handle subcommands
    if args.command == "run":
        return cmd_run(args, paths)
    elif args.command == "config":
        return cmd_config(paths)
    elif args.command == "history":
        return cmd_history(args, paths)
    elif args.command == "recidivism":
        return cmd_recidivism(paths)
    elif args.command == "dates":
        return cmd_dates(paths)
    elif args.command == "help":
        return cmd_help()
    else:
        parser.print_help()
        return 0


def notify_stderr(message: str, level: str) -> None:
    print(f"[reflect] [{level}] {message}", file=sys.stderr)


def cmd_run(args, paths: ReflectPaths) -> int:
    """Run one reflection pass."""
    targets = load_config(paths)

    if args.path:
        target = find_target(targets, args.path) or default_target(args.path, paths)
        if args.save and not find_target(targets, args.path):
            targets.append(target)
            save_config(paths, targets)
            print(f"Saved to {paths.config_file}", file=sys.stderr)
    elif targets:
        target = targets[0]
    else:
        print("Error: No targets configured. Use: reflect run <path>", file=sys.stderr)
        return 1

    overrides = {}
    if args.model:
        overrides["model"] = args.model
    if args.lookback:
        overrides["lookback_days"] = args.lookback
    target = dataclasses.replace(target, **overrides)

    options = ReflectionOptions(dry_run=args.dry_run)
    if args.date:
        print(f"Collecting sessions from {args.date.isoformat()}", file=sys.stderr)
        options.evidence = collect_for_date(args.date, target.max_session_bytes, paths.sessions_dir)
        options.source_date = args.date.isoformat()

    reflector = Reflector(paths, notify_stderr)
    run = reflector.run(target, options)
    if not run:
        return 1

    append_history(paths, run)
    return 0


def cmd_config(paths: ReflectPaths) -> int:
    print(render_targets(load_config(paths), paths.config_file))
    return 0


def cmd_history(args, paths: ReflectPaths) -> int:
    print(render_history(load_history(paths), limit=args.limit))
    return 0


def cmd_recidivism(paths: ReflectPaths) -> int:
    print(render_recidivism(load_history(paths)))
    return 0


def cmd_dates(paths: ReflectPaths) -> int:
    print(render_dates(available_session_dates(paths.sessions_dir)))
    return 0


def cmd_help() -> int:
    """Show detailed help."""
    help_text = """
REFLECT - Turn session friction into better agent rules

COMMANDS
  reflect run [PATH] [options]   Analyze recent sessions and edit PATH
  reflect config                 Show configured targets
  reflect history [-n N]         Show recent reflection runs
  reflect recidivism             Sections edited in more than one run
  reflect dates                  Dates that have session logs
  reflect help                   Show this help

RUN OPTIONS
  --dry-run            Analyze and record proposed edits, do not write
  --date YYYY-MM-DD    Use sessions from this date
  --model MODEL        provider/model (default: anthropic/claude-sonnet-4-5)
  --lookback DAYS      Days of sessions to analyze (default: 1)
  --save               Save PATH as a configured target

GLOBAL OPTIONS
  --config-dir DIR     Where reflect.json, history, sessions and backups live
  -v, --verbose        Debug logging

SAFETY
  Edits must match their anchor text exactly once in the file.
  A backup is written before the first change of each run.
  Results that shrink the file below half its size are never written.

ENVIRONMENT
  ANTHROPIC_API_KEY    Required. Your Anthropic API key.
"""
    print(help_text)
    return 0


if __name__ == "__main__":
    sys.exit(main())
