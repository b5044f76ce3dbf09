"""Configuration management for loopguard."""

import logging
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from loopguard.execution.context_manager import MAX_TOOL_RESULT_CHARS, RESERVED_TOKENS
from loopguard.execution.deduplicator import DeduplicatorConfig
from loopguard.execution.failure_tracker import (
    DEFAULT_INPUT_DEPENDENT_OVERRIDES,
    FailureTrackerConfig,
)
from loopguard.execution.file_tracker import FileTrackerConfig

# Use standard logging for settings module to avoid circular imports
# This logger will be reconfigured by setup_logging() in CLI commands
logger = logging.getLogger(__name__)


class GuardSettings(BaseSettings):
    """Thresholds for every execution guard, read from the environment.

    Field names double as YAML keys for ``load_settings(config_file=...)``;
    environment variable names are the validation aliases.
    """

    model_config = SettingsConfigDict(extra="ignore", populate_by_name=True)

    # Context budget
    model: str = Field(default="default", validation_alias="LOOPGUARD_MODEL")
    reserved_tokens: int = Field(
        default=RESERVED_TOKENS, ge=0, validation_alias="LOOPGUARD_RESERVED_TOKENS"
    )
    max_tool_result_chars: int = Field(
        default=MAX_TOOL_RESULT_CHARS,
        ge=1,
        validation_alias="LOOPGUARD_MAX_TOOL_RESULT_CHARS",
    )

    # Deduplication
    max_duplicates: int = Field(
        default=2, ge=1, validation_alias="LOOPGUARD_MAX_DUPLICATES"
    )
    duplicate_window_seconds: float = Field(
        default=60.0, gt=0, validation_alias="LOOPGUARD_DUPLICATE_WINDOW_SECONDS"
    )
    max_semantic_similar: int = Field(
        default=4, ge=1, validation_alias="LOOPGUARD_MAX_SEMANTIC_SIMILAR"
    )
    rate_limit_per_minute: int = Field(
        default=20, ge=1, validation_alias="LOOPGUARD_RATE_LIMIT_PER_MINUTE"
    )

    # Circuit breaker
    max_tool_failures: int = Field(
        default=2, ge=1, validation_alias="LOOPGUARD_MAX_TOOL_FAILURES"
    )
    max_input_dependent_failures: int = Field(
        default=4, ge=1, validation_alias="LOOPGUARD_MAX_INPUT_DEPENDENT_FAILURES"
    )
    tool_cooldown_seconds: float = Field(
        default=300.0, ge=0, validation_alias="LOOPGUARD_TOOL_COOLDOWN_SECONDS"
    )
    input_dependent_overrides: Dict[str, int] = Field(
        default_factory=lambda: dict(DEFAULT_INPUT_DEPENDENT_OVERRIDES),
        validation_alias="LOOPGUARD_INPUT_DEPENDENT_OVERRIDES",
    )

    # File operations
    max_reads_per_file: int = Field(
        default=2, ge=1, validation_alias="LOOPGUARD_MAX_READS_PER_FILE"
    )
    read_cooldown_seconds: float = Field(
        default=30.0, ge=0, validation_alias="LOOPGUARD_READ_COOLDOWN_SECONDS"
    )
    max_listings_per_dir: int = Field(
        default=2, ge=1, validation_alias="LOOPGUARD_MAX_LISTINGS_PER_DIR"
    )
    listing_cooldown_seconds: float = Field(
        default=60.0, ge=0, validation_alias="LOOPGUARD_LISTING_COOLDOWN_SECONDS"
    )

    # Logging
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")
    json_logs: bool = Field(default=False, validation_alias="JSON_LOGS")

    def __repr__(self) -> str:
        field_strs = [
            f"{field_name}={getattr(self, field_name, None)!r}"
            for field_name in type(self).model_fields
        ]
        return f"{self.__class__.__name__}({', '.join(field_strs)})"

    def __str__(self) -> str:
        return self.__repr__()

    @field_validator("json_logs", mode="before")
    @classmethod
    def parse_bool_from_env(cls, v: Any) -> bool:
        """Handle empty strings and various boolean representations from env vars."""
        if v is None or v == "":
            return False
        if isinstance(v, bool):
            return v
        if isinstance(v, str):
            return v.lower().strip() in ("true", "1", "yes")
        return bool(v)

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, value: Any) -> str:
        if value is None or str(value).strip() == "":
            return "INFO"
        normalized = str(value).strip().upper()
        if normalized not in logging.getLevelNamesMapping():
            logger.warning(f"Invalid LOG_LEVEL '{value}'. Falling back to 'INFO'.")
            return "INFO"
        return normalized

    def to_context_manager_kwargs(self) -> Dict[str, Any]:
        return {
            "model": self.model,
            "reserved_tokens": self.reserved_tokens,
            "max_tool_result_chars": self.max_tool_result_chars,
        }

    def to_deduplicator_config(self) -> DeduplicatorConfig:
        return DeduplicatorConfig(
            max_duplicates=self.max_duplicates,
            window_seconds=self.duplicate_window_seconds,
            max_semantic_similar=self.max_semantic_similar,
            rate_limit=self.rate_limit_per_minute,
        )

    def to_failure_tracker_config(self) -> FailureTrackerConfig:
        return FailureTrackerConfig(
            max_tool_failures=self.max_tool_failures,
            max_input_dependent_failures=self.max_input_dependent_failures,
            cooldown_seconds=self.tool_cooldown_seconds,
            input_dependent_overrides=dict(self.input_dependent_overrides),
        )

    def to_file_tracker_config(self) -> FileTrackerConfig:
        return FileTrackerConfig(
            max_reads_per_file=self.max_reads_per_file,
            read_cooldown_seconds=self.read_cooldown_seconds,
            max_listings_per_dir=self.max_listings_per_dir,
            listing_cooldown_seconds=self.listing_cooldown_seconds,
        )


def load_config_file(config_file: Union[str, Path]) -> Dict[str, Any]:
    """Read a YAML mapping of settings overrides.

    Raises:
        ValueError: If the document is not a mapping
    """
    path = Path(config_file)
    with path.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f)

    if data is None:
        logger.warning(f"Config file {path} is empty")
        return {}
    if not isinstance(data, dict):
        raise ValueError(
            f"Config file {path} must contain a YAML mapping, got {type(data).__name__}"
        )

    known = set(GuardSettings.model_fields) | {
        info.validation_alias
        for info in GuardSettings.model_fields.values()
        if isinstance(info.validation_alias, str)
    }
    unknown = sorted(str(key) for key in data if key not in known)
    if unknown:
        logger.warning(f"Ignoring unknown config keys in {path}: {', '.join(unknown)}")
    return {key: value for key, value in data.items() if key in known}


def load_settings(config_file: Optional[Union[str, Path]] = None) -> GuardSettings:
    """Load settings from environment variables, overlaid with an optional YAML file.

    Values from the YAML file take precedence over the environment.
    """
    if not config_file:
        return GuardSettings()

    overrides = load_config_file(config_file)
    logger.info(f"Loaded {len(overrides)} setting override(s) from {config_file}")
    return GuardSettings(**overrides)
