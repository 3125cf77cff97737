"""Configuration module."""

from keeper.config.loader import get_default_config, load_config
from keeper.config.models import (
    AgentSettings,
    ConfigError,
    ContextSettings,
    KeeperConfig,
    ModelConfig,
    ProviderConfig,
    ToolSettings,
    WorkerConfig,
)
from keeper.config.paths import (
    get_config_path,
    get_keeper_home,
    get_logs_path,
    get_prompts_path,
)

__all__ = [
    "AgentSettings",
    "ConfigError",
    "ContextSettings",
    "KeeperConfig",
    "ModelConfig",
    "ProviderConfig",
    "ToolSettings",
    "WorkerConfig",
    "get_config_path",
    "get_default_config",
    "get_keeper_home",
    "get_logs_path",
    "get_prompts_path",
    "load_config",
]
