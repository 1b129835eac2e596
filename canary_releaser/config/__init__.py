"""Configuration models and loading."""

from canary_releaser.config.settings import (
    DEFAULT_CONFIG_PATH,
    AlertConfig,
    AssetConfig,
    CommandConfig,
    FleetRegistryConfig,
    GitHubConfig,
    HealthCheckConfig,
    LoggingConfig,
    RedisConfig,
    ReleaserConfig,
    generate_default_config,
    parse_duration,
)

__all__ = [
    "DEFAULT_CONFIG_PATH",
    "AlertConfig",
    "AssetConfig",
    "CommandConfig",
    "FleetRegistryConfig",
    "GitHubConfig",
    "HealthCheckConfig",
    "LoggingConfig",
    "RedisConfig",
    "ReleaserConfig",
    "generate_default_config",
    "parse_duration",
]
