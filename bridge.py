#!/usr/bin/env python3
"""
AI Live Terminal Bridge - Recorded command sessions for AI agents

Runs a command with its output going to the terminal as usual while a
sanitized copy is kept per session, then lets an agent read it back.

Usage:
    # Wrap a command (both forms are equivalent)
    ai run npm test
    ai npm test

    # Read back what happened
    ai logs -n 50
    ai crash
    ai fix

License: MIT
"""

import argparse
import logging
import sys

from terminal_bridge import (
    BridgeConfig,
    CommandLaunchError,
    CommandRunner,
    ErrorTriage,
    LogStore,
    RetentionPolicy,
    SessionRegistry,
    StoragePaths,
    auto_fix_errors,
    crash_context,
    sweep,
    view_logs,
)
from terminal_bridge.config import DEFAULT_CONFIG_YAML


SUBCOMMANDS = {"run", "logs", "crash", "fix", "sessions", "sweep", "init"}


def _store(config: BridgeConfig) -> LogStore:
    return LogStore(StoragePaths(config.log_dir))


def run_command(args, config: BridgeConfig):
    """CLI: Run a command as a recorded session."""
    runner = CommandRunner(config, quiet=args.quiet)
    try:
        result = runner.run(args.command, args.args)
    except CommandLaunchError as e:
        print(f"❌ {e}", file=sys.stderr)
        sys.exit(e.exit_code)
    sys.exit(result.exit_code)


def run_logs(args, config: BridgeConfig):
    """CLI: Show the last N lines across recent sessions."""
    lines = args.lines if args.lines is not None else config.view_lines
    print(view_logs(_store(config), lines, config.max_files).text)


def run_crash(args, config: BridgeConfig):
    """CLI: Show only error-flagged lines."""
    lines = args.lines if args.lines is not None else config.crash_lines
    triage = ErrorTriage(max_issues=config.max_issues)
    print(crash_context(_store(config), lines, config.max_files, triage).text)


def run_fix(args, config: BridgeConfig):
    """CLI: Show the classified error report."""
    lines = args.lines if args.lines is not None else config.fix_lines
    triage = ErrorTriage(max_issues=config.max_issues)
    print(auto_fix_errors(_store(config), lines, config.max_files, triage).text)


def run_sessions(args, config: BridgeConfig):
    """CLI: List recent sessions and which are still running."""
    registry = SessionRegistry(StoragePaths(config.log_dir))
    entries = registry.ledger_entries()
    if not entries:
        print("No sessions recorded yet.")
        return

    active = registry.active_sessions()
    recent = entries[-args.count:][::-1] if args.count > 0 else []
    for entry in recent:
        marker = "●" if entry.session_id in active else " "
        print(f"{marker} {entry.session_id}  {entry.timestamp}  {entry.cwd}")
        print(f"    {entry.command}")

    print(f"\nRunning: {len(active)}  Total recorded: {len(entries)}")


def run_sweep(args, config: BridgeConfig):
    """CLI: Apply the retention policy now."""
    paths = StoragePaths(config.log_dir)
    result = sweep(RetentionPolicy.from_config(config), SessionRegistry(paths), LogStore(paths))
    print(f"Orphaned: {len(result.orphaned)}")
    print(f"Deleted:  {len(result.deleted)}")


def run_init(args, config: BridgeConfig):
    """CLI: Write a default configuration file."""
    config_path = config.config_path

    if config_path.exists() and not args.force:
        print(f"Config already exists: {config_path}")
        print("Use --force to overwrite")
        sys.exit(1)

    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(DEFAULT_CONFIG_YAML)

    print(f"Created: {config_path}")
    print(f"Logs:    {config.log_dir}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ai",
        description="AI Live Terminal Bridge - recorded command sessions for AI agents",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  ai npm run dev                 Run a command and record it
  ai logs -n 50                  Last 50 lines across recent sessions
  ai crash                       Only error lines
  ai fix                         Classified error report
  ai sessions                    Recent session history

Environment:
  AI_KEEP_LOGS   days to keep finished logs (default 1, 0 = delete on exit)
  AI_LOG_DIR     storage directory (default ~/.mcp-logs)
        """,
    )

    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Show debug logging"
    )

    subparsers = parser.add_subparsers(dest="subcommand", help="Command to run")

    # run command
    run_parser = subparsers.add_parser("run", help="Run a command as a recorded session")
    run_parser.add_argument("--quiet", "-q", action="store_true", help="Hide session banner and exit notice")
    run_parser.add_argument("command", help="Executable to run")
    run_parser.add_argument("args", nargs=argparse.REMAINDER, help="Arguments for the executable")
    run_parser.set_defaults(func=run_command)

    # read commands
    for name, func, help_text in (
        ("logs", run_logs, "Show recent output across sessions"),
        ("crash", run_crash, "Show only error-flagged lines"),
        ("fix", run_fix, "Analyze and classify recent errors"),
    ):
        read_parser = subparsers.add_parser(name, help=help_text)
        read_parser.add_argument("--lines", "-n", type=int, help="Number of recent lines to read")
        read_parser.set_defaults(func=func)

    # sessions command
    sessions_parser = subparsers.add_parser("sessions", help="List recent sessions")
    sessions_parser.add_argument("--count", "-n", type=int, default=10, help="Number of sessions to show")
    sessions_parser.set_defaults(func=run_sessions)

    # sweep command
    sweep_parser = subparsers.add_parser("sweep", help="Delete expired logs and reap orphaned sessions")
    sweep_parser.set_defaults(func=run_sweep)

    # init command
    init_parser = subparsers.add_parser("init", help="Write a default config file")
    init_parser.add_argument("--force", "-f", action="store_true", help="Overwrite existing config")
    init_parser.set_defaults(func=run_init)

    return parser


def main(argv=None):
    """Main CLI entry point."""
    argv = list(sys.argv[1:] if argv is None else argv)

    # `ai npm test` is shorthand for `ai run npm test`
    first = 0
    while first < len(argv) and argv[first] in ("-v", "--verbose"):
        first += 1
    command_at = first
    while command_at < len(argv) and argv[command_at] in ("-q", "--quiet"):
        command_at += 1
    if (
        command_at < len(argv)
        and not argv[command_at].startswith("-")
        and argv[command_at] not in SUBCOMMANDS
    ):
        argv = argv[:first] + ["run"] + argv[first:]

    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    if args.subcommand is None:
        parser.print_help()
        sys.exit(1)

    config = BridgeConfig.load()
    args.func(args, config)


if __name__ == "__main__":
    main()
