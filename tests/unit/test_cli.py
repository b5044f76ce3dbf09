"""Unit tests for CLI module."""

import json
import os

import pytest

from loopguard.cli.commands import get_version
from loopguard.cli.env_loader import (
    get_effective_config,
    get_guard_env_vars,
    load_env_file,
)
from loopguard.cli.main import create_parser, main


def _write_messages(path, messages):
    path.write_text(json.dumps(messages))
    return str(path)


class TestEnvLoader:
    """Tests for env_loader module."""

    def test_load_env_file_not_found(self):
        """load_env_file should raise FileNotFoundError for missing file."""
        with pytest.raises(FileNotFoundError):
            load_env_file("/nonexistent/.env.test")

    def test_load_env_file_success(self, tmp_path):
        """load_env_file should load variables from file."""
        env_path = tmp_path / ".env"
        env_path.write_text("LOOPGUARD_MODEL=gpt-4o\nLOOPGUARD_MAX_DUPLICATES=3\n")

        try:
            loaded = load_env_file(str(env_path))
            assert loaded == {"LOOPGUARD_MODEL": "gpt-4o", "LOOPGUARD_MAX_DUPLICATES": "3"}
            assert os.environ.get("LOOPGUARD_MODEL") == "gpt-4o"
        finally:
            os.environ.pop("LOOPGUARD_MODEL", None)
            os.environ.pop("LOOPGUARD_MAX_DUPLICATES", None)

    def test_get_guard_env_vars(self):
        """Every settings field is exposed through an environment variable."""
        env_vars = get_guard_env_vars()
        assert env_vars[0] == "LOOPGUARD_MODEL"
        assert "LOOPGUARD_RATE_LIMIT_PER_MINUTE" in env_vars
        assert "LOG_LEVEL" in env_vars

    def test_get_effective_config(self, monkeypatch):
        monkeypatch.setenv("LOOPGUARD_MAX_TOOL_FAILURES", "4")
        config = get_effective_config()
        assert config["LOOPGUARD_MAX_TOOL_FAILURES"] == "4"
        assert config["LOOPGUARD_MODEL"] is None


class TestParser:
    """Tests for argument parser."""

    def test_create_parser(self):
        parser = create_parser()
        assert parser.prog == "loopguard"

    def test_parse_compact_args(self):
        args = create_parser().parse_args(
            ["compact", "history.json", "-m", "gpt-4o", "--system-tokens", "500", "--json"]
        )
        assert args.command == "compact"
        assert args.file == "history.json"
        assert args.model == "gpt-4o"
        assert args.system_tokens == 500
        assert args.json is True
        assert args.config_file is None

    def test_parse_config_show_args(self):
        args = create_parser().parse_args(["config", "show", "-e", ".env"])
        assert args.command == "config"
        assert args.config_command == "show"
        assert args.env_file == ".env"

    def test_version_flag(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            create_parser().parse_args(["--version"])
        assert exc_info.value.code == 0
        assert "loopguard" in capsys.readouterr().out


class TestMain:
    """Tests for main entry point."""

    def test_no_command_prints_help(self, capsys):
        assert main([]) == 0
        assert "usage: loopguard" in capsys.readouterr().out

    def test_config_without_subcommand(self):
        with pytest.raises(SystemExit):
            main(["config"])

    def test_version_command(self, capsys):
        assert main(["version"]) == 0
        assert capsys.readouterr().out.strip() == f"loopguard version {get_version()}"


class TestClassifyCommand:
    """Tests for the classify command."""

    def test_non_retryable(self, capsys):
        assert main(["classify", "429 Too Many Requests"]) == 0
        out = capsys.readouterr().out.splitlines()
        assert out[0] == "non_retryable"
        assert out[1] == "  matched: HTTP 429 text (too many requests)"

    def test_input_dependent(self, capsys):
        main(["classify", "ENOENT: no such file or directory"])
        assert capsys.readouterr().out.splitlines()[0] == "input_dependent"

    def test_systemic(self, capsys):
        main(["classify", "segmentation fault"])
        out = capsys.readouterr().out.splitlines()
        assert out == ["systemic", "  matched: (no rule, treated as systemic)"]


class TestCompactCommand:
    """Tests for the compact command."""

    def test_within_budget_json(self, tmp_path, capsys):
        path = _write_messages(
            tmp_path / "history.json",
            [
                {"role": "user", "content": "hello"},
                {"role": "assistant", "content": "hi there"},
            ],
        )

        assert main(["compact", path, "--model", "llama-32k", "--json"]) == 0

        summary = json.loads(capsys.readouterr().out)
        assert summary["model"] == "llama-32k"
        assert summary["model_limit"] == 32000
        assert summary["available_tokens"] == 24000
        assert summary["kind"] == "none"
        assert summary["original_tokens"] == 24
        assert summary["final_tokens"] == 24
        assert summary["over_budget"] is False
        assert summary["messages_kept"] == 2

    def test_system_tokens_reduce_budget(self, tmp_path, capsys):
        path = _write_messages(tmp_path / "history.json", [{"role": "user", "content": "hi"}])

        main(["compact", path, "-m", "llama-32k", "--system-tokens", "1000", "--json"])

        assert json.loads(capsys.readouterr().out)["available_tokens"] == 23000

    def test_tight_budget_from_config_file(self, tmp_path, capsys):
        """A tight budget from YAML leaves a two-message history over budget."""
        config_path = tmp_path / "guards.yaml"
        config_path.write_text("reserved_tokens: 31990\n")
        path = _write_messages(
            tmp_path / "history.json",
            [
                {"role": "user", "content": "summarize the report"},
                {
                    "role": "user",
                    "content": [
                        {"type": "tool_result", "tool_use_id": "t1", "content": "ok"}
                    ],
                },
            ],
        )

        code = main(
            ["compact", path, "-m", "llama-32k", "-c", str(config_path), "--json"]
        )

        assert code == 0
        summary = json.loads(capsys.readouterr().out)
        assert summary["available_tokens"] == 10
        assert summary["kind"] == "tool_truncation_only"
        assert summary["over_budget"] is True
        assert summary["messages_kept"] == 2

    def test_text_output(self, tmp_path, capsys):
        path = _write_messages(tmp_path / "history.json", [{"role": "user", "content": "hi"}])

        assert main(["compact", path, "-m", "llama-32k"]) == 0

        out = capsys.readouterr().out
        assert "Compaction Result:" in out
        assert "Model: llama-32k (limit 32000)" in out
        assert "Strategy: none" in out

    def test_missing_file(self, tmp_path, capsys):
        assert main(["compact", str(tmp_path / "missing.json")]) == 1
        assert "Message file not found" in capsys.readouterr().err

    def test_invalid_json(self, tmp_path, capsys):
        path = tmp_path / "history.json"
        path.write_text("{not json")
        assert main(["compact", str(path)]) == 1
        assert "not valid JSON" in capsys.readouterr().err

    def test_not_a_list(self, tmp_path, capsys):
        path = _write_messages(tmp_path / "history.json", {"role": "user"})
        assert main(["compact", path]) == 1
        assert "JSON array" in capsys.readouterr().err

    def test_invalid_message(self, tmp_path, capsys):
        path = _write_messages(
            tmp_path / "history.json", [{"role": "narrator", "content": "x"}]
        )
        assert main(["compact", path]) == 1
        assert "Invalid message" in capsys.readouterr().err


class TestConfigShowCommand:
    """Tests for the config show command."""

    def test_sources(self, monkeypatch, capsys):
        monkeypatch.setenv("LOOPGUARD_MAX_DUPLICATES", "5")

        assert main(["config", "show"]) == 0

        out = capsys.readouterr().out
        assert "Current Configuration:" in out
        assert "  LOOPGUARD_MAX_DUPLICATES: 5 (env)" in out
        assert "  LOOPGUARD_RATE_LIMIT_PER_MINUTE: 20 (default)" in out
        assert "  LOG_LEVEL: DEBUG (env)" in out

    def test_env_file(self, tmp_path, capsys):
        env_path = tmp_path / ".env"
        env_path.write_text("LOOPGUARD_MAX_TOOL_FAILURES=3\n")

        try:
            assert main(["config", "show", "--env-file", str(env_path)]) == 0
        finally:
            os.environ.pop("LOOPGUARD_MAX_TOOL_FAILURES", None)

        out = capsys.readouterr().out
        assert f"Loaded environment from: {env_path}" in out
        assert "  LOOPGUARD_MAX_TOOL_FAILURES: 3 (env)" in out

    def test_missing_env_file(self, capsys):
        assert main(["config", "show", "-e", "/nonexistent/.env"]) == 1
        assert "Environment file not found" in capsys.readouterr().err

    def test_config_file_overrides(self, tmp_path, capsys):
        config_path = tmp_path / "guards.yaml"
        config_path.write_text("max_reads_per_file: 6\n")

        assert main(["config", "show", "-c", str(config_path)]) == 0

        out = capsys.readouterr().out
        assert "  LOOPGUARD_MAX_READS_PER_FILE: 6 (file)" in out
        assert f"Overrides applied from: {config_path}" in out

    def test_invalid_config(self, tmp_path, capsys):
        config_path = tmp_path / "guards.yaml"
        config_path.write_text("- not a mapping\n")

        assert main(["config", "show", "-c", str(config_path)]) == 1
        assert "Invalid configuration" in capsys.readouterr().err
