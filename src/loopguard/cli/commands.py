"""CLI command implementations."""

import json
import sys
from argparse import Namespace
from typing import Any, Dict, List

from pydantic import ValidationError

from loopguard.cli.env_loader import get_effective_config, load_env_file
from loopguard.config.settings import GuardSettings, load_config_file, load_settings
from loopguard.execution.context_manager import (
    CompactionResult,
    ContextBudgetManager,
    estimate_total_tokens,
)
from loopguard.execution.error_classifier import classify_error, matching_rules
from loopguard.execution.messages import Message
from loopguard.utils.logger import setup_logging


def get_version() -> str:
    """Get the package version."""
    from importlib.metadata import PackageNotFoundError, version

    try:
        return version("loopguard")
    except PackageNotFoundError:
        return "unknown"


def cmd_version(args: Namespace) -> int:
    """Handle the 'version' command."""
    print(f"loopguard version {get_version()}")
    return 0


def cmd_classify(args: Namespace) -> int:
    """Handle the 'classify' command."""
    error_class = classify_error(args.message)
    print(error_class.value)

    rules = matching_rules(args.message)
    if rules:
        print(f"  matched: {rules[0].description} ({rules[0].pattern.pattern})")
    else:
        print("  matched: (no rule, treated as systemic)")
    return 0


def cmd_compact(args: Namespace) -> int:
    """Handle the 'compact' command."""
    try:
        with open(args.file, "r", encoding="utf-8") as f:
            raw = json.load(f)
    except FileNotFoundError:
        print(f"Error: Message file not found: {args.file}", file=sys.stderr)
        return 1
    except json.JSONDecodeError as e:
        print(f"Error: {args.file} is not valid JSON: {e}", file=sys.stderr)
        return 1

    if not isinstance(raw, list):
        print("Error: Message file must contain a JSON array", file=sys.stderr)
        return 1

    try:
        messages = [Message.from_dict(item) for item in raw]
    except (KeyError, TypeError, ValueError, AttributeError) as e:
        print(f"Error: Invalid message in {args.file}: {e}", file=sys.stderr)
        return 1

    settings = _load_settings_or_none(args)
    if settings is None:
        return 1
    # Keep stdout parseable in --json mode
    setup_logging(
        level="ERROR" if args.json else settings.log_level,
        json_logs=settings.json_logs,
    )

    manager_kwargs = settings.to_context_manager_kwargs()
    if args.model:
        manager_kwargs["model"] = args.model
    manager = ContextBudgetManager(**manager_kwargs)
    result = manager.compact(messages, system_prompt_tokens=args.system_tokens)

    summary = _compaction_summary(manager, result)
    if args.json:
        print(json.dumps(summary, indent=2))
    else:
        _print_compaction_summary(summary)
    return 0


def cmd_config_show(args: Namespace) -> int:
    """Handle the 'config show' command."""
    if args.env_file:
        try:
            load_env_file(args.env_file)
            print(f"Loaded environment from: {args.env_file}\n")
        except FileNotFoundError as e:
            print(f"Error: {e}", file=sys.stderr)
            return 1

    settings = _load_settings_or_none(args)
    if settings is None:
        return 1

    raw_env = get_effective_config()
    file_keys = set(load_config_file(args.config_file)) if args.config_file else set()

    print("Current Configuration:")
    print("=" * 50)
    for field_name, info in GuardSettings.model_fields.items():
        value = getattr(settings, field_name)
        env_var = info.validation_alias
        if field_name in file_keys or env_var in file_keys:
            source = "file"
        elif raw_env.get(env_var) is not None:
            source = "env"
        else:
            source = "default"
        print(f"  {env_var}: {value} ({source})")

    if args.config_file:
        print(f"\nOverrides applied from: {args.config_file}")
    return 0


def _load_settings_or_none(args: Namespace) -> Any:
    config_file = getattr(args, "config_file", None)
    try:
        return load_settings(config_file)
    except FileNotFoundError:
        print(f"Error: Config file not found: {config_file}", file=sys.stderr)
    except (ValueError, ValidationError) as e:
        print(f"Error: Invalid configuration: {e}", file=sys.stderr)
    return None


def _compaction_summary(
    manager: ContextBudgetManager, result: CompactionResult
) -> Dict[str, Any]:
    meta = result.meta
    return {
        "model": manager.model,
        "model_limit": manager.model_limit,
        "kind": meta.kind.value,
        "available_tokens": meta.available_tokens,
        "original_tokens": meta.original_tokens,
        "final_tokens": meta.final_tokens,
        "over_budget": meta.over_budget,
        "truncated_tool_results": meta.truncated_tool_results.count,
        "removed_messages": meta.removed_messages.count,
        "messages_kept": len(result.messages),
        "estimated_tokens_kept": estimate_total_tokens(result.messages),
    }


def _print_compaction_summary(summary: Dict[str, Any]) -> None:
    lines: List[str] = [
        "Compaction Result:",
        "=" * 50,
        f"  Model: {summary['model']} (limit {summary['model_limit']})",
        f"  Strategy: {summary['kind']}",
        f"  Tokens: {summary['original_tokens']} -> {summary['final_tokens']} "
        f"(available {summary['available_tokens']})",
        f"  Truncated tool results: {summary['truncated_tool_results']}",
        f"  Removed messages: {summary['removed_messages']}",
        f"  Messages kept: {summary['messages_kept']}",
    ]
    if summary["over_budget"]:
        lines.append("  WARNING: result is still over budget")
    print("\n".join(lines))

