"""Environment file loader using python-dotenv."""

import os
from pathlib import Path
from typing import Dict, List, Optional

from dotenv import dotenv_values, load_dotenv

from loopguard.config.settings import GuardSettings


def load_env_file(env_file: str, override: bool = False) -> Dict[str, str]:
    """
    Load environment variables from a .env file.

    Args:
        env_file: Path to the .env file
        override: If True, override existing environment variables

    Returns:
        Dictionary of loaded environment variables

    Raises:
        FileNotFoundError: If the env file doesn't exist
    """
    env_path = Path(env_file)
    if not env_path.exists():
        raise FileNotFoundError(f"Environment file not found: {env_file}")

    load_dotenv(env_path, override=override)

    return {k: v for k, v in dotenv_values(env_path).items() if v is not None}


def get_guard_env_vars() -> List[str]:
    """Environment variable names read by GuardSettings, in declaration order."""
    return [
        info.validation_alias
        for info in GuardSettings.model_fields.values()
        if isinstance(info.validation_alias, str)
    ]


def get_effective_config() -> Dict[str, Optional[str]]:
    """
    Get the raw values of every guard environment variable.

    Returns:
        Dictionary mapping environment variable names to their current values
    """
    return {var: os.environ.get(var) for var in get_guard_env_vars()}
