from seller_session.core.config.manager import ConfigError, ConfigManager, default_config_dict
from seller_session.core.config.models import LoggingConfig, SessionConfig, StorageConfig
from seller_session.core.config.paths import ConfigFsPaths

__all__ = [
    "ConfigError",
    "ConfigManager",
    "default_config_dict",
    "LoggingConfig",
    "SessionConfig",
    "StorageConfig",
    "ConfigFsPaths",
]
