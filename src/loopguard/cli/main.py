#!/usr/bin/env python3
"""Main CLI entry point for loopguard."""

import argparse
import sys
from typing import List, Optional

from loopguard.cli.commands import (
    cmd_classify,
    cmd_compact,
    cmd_config_show,
    cmd_version,
    get_version,
)


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser with subcommands."""
    parser = argparse.ArgumentParser(
        prog="loopguard",
        description="loopguard - execution guards for LLM tool-calling loops",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  loopguard classify "429 Too Many Requests"
  loopguard compact history.json --model claude-sonnet-4-5 --json
  loopguard config show --env-file .env
  loopguard version
""",
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {get_version()}",
    )

    subparsers = parser.add_subparsers(
        dest="command",
        title="commands",
        description="Available commands",
        metavar="COMMAND",
    )

    classify_parser = subparsers.add_parser(
        "classify",
        help="Classify a tool error message",
        description="Show whether an error is non-retryable, input-dependent or systemic",
    )
    classify_parser.add_argument("message", help="Error message to classify")

    compact_parser = subparsers.add_parser(
        "compact",
        help="Dry-run context compaction on a message history",
        description="Read a JSON array of messages and report how it would be compacted",
    )
    compact_parser.add_argument("file", metavar="FILE", help="JSON message file")
    compact_parser.add_argument(
        "--model",
        "-m",
        help="Model identifier used to resolve the context limit",
    )
    compact_parser.add_argument(
        "--system-tokens",
        type=int,
        default=0,
        help="Estimated system prompt size in tokens (default: 0)",
    )
    compact_parser.add_argument(
        "--config-file",
        "-c",
        metavar="FILE",
        help="YAML file with setting overrides",
    )
    compact_parser.add_argument(
        "--json",
        action="store_true",
        help="Print the compaction summary as JSON",
    )

    # 'config' subcommand with 'show' subsubcommand
    config_parser = subparsers.add_parser(
        "config",
        help="Configuration management",
        description="View the effective guard configuration",
    )
    config_subparsers = config_parser.add_subparsers(
        dest="config_command",
        title="config commands",
        metavar="SUBCOMMAND",
    )

    config_show_parser = config_subparsers.add_parser(
        "show",
        help="Show current configuration",
        description="Display the effective guard thresholds",
    )
    config_show_parser.add_argument(
        "--env-file",
        "-e",
        metavar="FILE",
        help="Load environment from a .env file",
    )
    config_show_parser.add_argument(
        "--config-file",
        "-c",
        metavar="FILE",
        help="YAML file with setting overrides",
    )

    subparsers.add_parser(
        "version",
        help="Show version information",
        description="Display the loopguard version",
    )

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)

    # No command specified - show help
    if args.command is None:
        parser.print_help()
        return 0

    if args.command == "classify":
        return cmd_classify(args)
    elif args.command == "compact":
        return cmd_compact(args)
    elif args.command == "config":
        if args.config_command == "show":
            return cmd_config_show(args)
        else:
            parser.parse_args(["config", "--help"])
            return 0
    elif args.command == "version":
        return cmd_version(args)

    return 0


if __name__ == "__main__":
    sys.exit(main())
