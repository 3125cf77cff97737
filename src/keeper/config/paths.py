"""Centralized path management for Keeper.

All local state (config, logs, prompt overrides) is stored under a single
base directory, overridable with the KEEPER_HOME environment variable.

Default location: ~/.keeper
"""

import os
from functools import lru_cache
from pathlib import Path

ENV_VAR = "KEEPER_HOME"


@lru_cache(maxsize=1)
def get_keeper_home() -> Path:
    """Get the base directory for all Keeper data.

    Resolution order:
    1. KEEPER_HOME environment variable (if set)
    2. ~/.keeper
    """
    if env_home := os.environ.get(ENV_VAR):
        return Path(env_home).expanduser().resolve()
    return Path.home() / ".keeper"


def get_config_path() -> Path:
    """Get the default config file path."""
    return get_keeper_home() / "config.toml"


def get_logs_path() -> Path:
    """Get the default logs directory path."""
    return get_keeper_home() / "logs"


def get_prompts_path() -> Path:
    """Get the prompt override store path."""
    return get_keeper_home() / "prompts.json"
