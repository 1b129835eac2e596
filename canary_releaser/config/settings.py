"""
Configuration for canary-releaser.

The configuration is built once at startup and handed to every component
constructor. Sources, lowest precedence first:

1. YAML config file (missing file is allowed)
2. ``CANARY_RELEASER_*`` environment variables, ``__`` separating sections
3. Command-line overrides
"""

import logging
import os
import re
from datetime import timedelta
from pathlib import Path
from typing import Annotated, Any, Dict, Mapping, Optional, Union

import yaml
from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, ValidationError, field_validator

from canary_releaser.errors import ConfigError

logger = logging.getLogger(__name__)

ENV_PREFIX = "CANARY_RELEASER_"
DEFAULT_CONFIG_PATH = "/etc/canary-releaser/config.yml"

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|s|m|h|d)")
_DURATION_UNITS = {"ms": 0.001, "s": 1, "m": 60, "h": 3600, "d": 86400}
_LOG_LEVELS = ("debug", "info", "warning", "error")


def parse_duration(value: Any) -> Any:
    """
    Parse human-friendly durations such as ``"90s"``, ``"15m"`` or ``"1h30m"``.

    Numbers are taken as seconds. Anything else is passed through for
    pydantic's own timedelta parsing (ISO 8601, ``timedelta`` objects).
    """
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return timedelta(seconds=value)
    if not isinstance(value, str):
        return value

    text = value.strip().lower().replace(" ", "")
    if re.fullmatch(r"\d+(\.\d+)?", text):
        return timedelta(seconds=float(text))

    parts = _DURATION_PART.findall(text)
    if not parts or "".join(n + u for n, u in parts) != text:
        return value
    return timedelta(seconds=sum(float(n) * _DURATION_UNITS[u] for n, u in parts))


def format_duration(value: timedelta) -> str:
    """Render a timedelta the way ``parse_duration`` reads it back."""
    seconds = value.total_seconds()
    if seconds and seconds % 3600 == 0:
        return f"{int(seconds // 3600)}h"
    if seconds and seconds % 60 == 0:
        return f"{int(seconds // 60)}m"
    if seconds == int(seconds):
        return f"{int(seconds)}s"
    return f"{int(seconds * 1000)}ms"


Duration = Annotated[timedelta, BeforeValidator(parse_duration)]


class _Section(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class GitHubConfig(_Section):
    """Release host access."""

    token: str = Field("", description="GitHub API token")
    api_url: str = Field("https://api.github.com", description="GitHub API endpoint")
    include_prereleases: bool = Field(
        False, description="Consider pre-releases when resolving the latest tag"
    )
    request_timeout: Duration = Field(timedelta(seconds=30), description="HTTP timeout")


class AssetConfig(_Section):
    """Where release assets land and which one is picked."""

    download_path: str = Field("/usr/local/src", description="Asset download directory")
    name_pattern: str = Field(..., description="Regex matched against asset file names")

    @field_validator("name_pattern")
    @classmethod
    def _compiles(cls, value: str) -> str:
        if not value:
            raise ValueError("name_pattern must not be empty")
        try:
            re.compile(value)
        except re.error as e:
            raise ValueError(f"invalid name_pattern: {e}")
        return value


class CommandConfig(_Section):
    """Operator-supplied scripts."""

    deploy: str = Field(..., description="Deploy command path")
    rollback: str = Field(..., description="Rollback command path")
    healthcheck: str = Field(..., description="Health-check command path")
    current_version: Optional[str] = Field(
        None, description="Command printing the running version (replaces the state file)"
    )

    @field_validator("deploy", "rollback", "healthcheck")
    @classmethod
    def _required(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("command path must not be empty")
        return value


class HealthCheckConfig(_Section):
    """Health-check retry policy."""

    retries: int = Field(3, ge=1, description="Attempts per health-check invocation")
    interval: Duration = Field(timedelta(minutes=1), description="Delay between checks")
    timeout: Duration = Field(timedelta(seconds=30), description="Per-attempt timeout")


class RedisConfig(_Section):
    """Distributed store connection."""

    host: str = "127.0.0.1"
    port: int = Field(6379, gt=0, lt=65536)
    password: str = ""
    db: int = Field(1, ge=0)
    key_prefix: Optional[str] = Field(None, description="Key namespace, defaults to the repo")


class FleetRegistryConfig(_Section):
    """Optional per-host registry used for rollout progress reporting."""

    enabled: bool = False
    stale_after: Duration = Field(timedelta(days=1), description="Ignore members older than this")


class AlertConfig(_Section):
    """Optional failure alerting."""

    webhook_url: Optional[str] = None
    channel: Optional[str] = None
    flush_delay: Duration = Field(
        timedelta(seconds=3), description="Wait before exiting so alerts can be delivered"
    )


class LoggingConfig(_Section):
    """Log output."""

    level: str = "info"
    log_dir: Optional[str] = Field(None, description="Directory for rotating log files")
    use_json: bool = True

    @field_validator("level")
    @classmethod
    def _known_level(cls, value: str) -> str:
        value = value.lower()
        if value == "warn":
            value = "warning"
        if value not in _LOG_LEVELS:
            raise ValueError(f"invalid log level: {value}")
        return value


class ReleaserConfig(_Section):
    """Complete, immutable daemon configuration."""

    repo: str = Field(..., description="GitHub repository as owner/name")
    github: GitHubConfig = GitHubConfig()
    assets: AssetConfig
    commands: CommandConfig
    healthcheck: HealthCheckConfig = HealthCheckConfig()
    canary_window: Duration = Field(
        timedelta(minutes=15), description="Required continuous-health observation time"
    )
    rollout_window: Duration = Field(
        timedelta(minutes=1), description="Stable-rollout period and rollout lock TTL"
    )
    polling_interval: Duration = Field(
        timedelta(minutes=1), description="Release polling period"
    )
    redis: RedisConfig = RedisConfig()
    state_file_path: str = "/var/lib/canary-releaser/state.json"
    fleet_registry: FleetRegistryConfig = FleetRegistryConfig()
    alert: AlertConfig = AlertConfig()
    logging: LoggingConfig = LoggingConfig()
    once: bool = Field(False, description="Run each loop once and exit")

    @field_validator("repo")
    @classmethod
    def _owner_and_name(cls, value: str) -> str:
        parts = value.split("/")
        if len(parts) != 2 or not all(parts):
            raise ValueError(f"invalid repo: {value!r}, expected owner/name")
        return value

    @field_validator("canary_window", "rollout_window", "polling_interval")
    @classmethod
    def _positive(cls, value: timedelta) -> timedelta:
        if value.total_seconds() <= 0:
            raise ValueError("must be a positive duration")
        return value

    @property
    def key_prefix(self) -> str:
        """Namespace for all distributed-store keys."""
        return self.redis.key_prefix or self.repo

    @property
    def canary_lock_ttl(self) -> timedelta:
        return self.canary_window * 2

    @property
    def rollout_lock_ttl(self) -> timedelta:
        return self.rollout_window

    @classmethod
    def from_file(
        cls,
        path: Union[str, Path],
        environ: Optional[Mapping[str, str]] = None,
        overrides: Optional[Mapping[str, Any]] = None,
    ) -> "ReleaserConfig":
        """
        Load configuration from a YAML file, environment and overrides.

        Args:
            path: YAML config file; a missing file only logs a warning
            environ: Environment mapping (defaults to ``os.environ``)
            overrides: Dotted-key overrides, e.g. ``{"redis.host": "db"}``

        Raises:
            ConfigError: the file is unreadable or the result is invalid
        """
        config_path = Path(path).expanduser().absolute()
        data: Dict[str, Any] = {}

        if config_path.exists():
            try:
                with open(config_path, "r") as f:
                    loaded = yaml.safe_load(f) or {}
            except (OSError, yaml.YAMLError) as e:
                raise ConfigError(f"failed to read config {config_path}: {e}") from e
            if not isinstance(loaded, dict):
                raise ConfigError(f"config {config_path} must contain a mapping")
            data = loaded
        else:
            logger.warning(f"Config file not found: {config_path}")

        _merge(data, env_overrides(os.environ if environ is None else environ))
        _merge(data, _expand_dotted(overrides or {}))

        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise ConfigError(f"failed to validate config: {e}") from e

    def save(self, path: Union[str, Path]) -> None:
        """Write this configuration as YAML."""
        config_path = Path(path)
        config_path.parent.mkdir(parents=True, exist_ok=True)
        data = _durations_to_text(self.model_dump())
        with open(config_path, "w") as f:
            yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)


def env_overrides(environ: Mapping[str, str]) -> Dict[str, Any]:
    """
    Collect ``CANARY_RELEASER_*`` variables into a nested dict.

    ``CANARY_RELEASER_REDIS__HOST=db`` becomes ``{"redis": {"host": "db"}}``.
    """
    result: Dict[str, Any] = {}
    for key, value in environ.items():
        if not key.startswith(ENV_PREFIX):
            continue
        path = [part.lower() for part in key[len(ENV_PREFIX) :].split("__") if part]
        if not path:
            continue
        node = result
        for part in path[:-1]:
            node = node.setdefault(part, {})
        node[path[-1]] = value
    return result


def generate_default_config(path: Union[str, Path]) -> ReleaserConfig:
    """Write a sample configuration with placeholder values."""
    config = ReleaserConfig(
        repo="owner/name",
        assets=AssetConfig(name_pattern=r".*\.tar\.gz$"),
        commands=CommandConfig(
            deploy="/usr/local/bin/deploy.sh",
            rollback="/usr/local/bin/rollback.sh",
            healthcheck="/usr/local/bin/healthcheck.sh",
        ),
    )
    config.save(path)
    return config


def _expand_dotted(flat: Mapping[str, Any]) -> Dict[str, Any]:
    result: Dict[str, Any] = {}
    for key, value in flat.items():
        if value is None:
            continue
        parts = key.split(".")
        node = result
        for part in parts[:-1]:
            node = node.setdefault(part, {})
        node[parts[-1]] = value
    return result


def _merge(base: Dict[str, Any], extra: Mapping[str, Any]) -> None:
    for key, value in extra.items():
        if isinstance(value, Mapping) and isinstance(base.get(key), dict):
            _merge(base[key], value)
        else:
            base[key] = dict(value) if isinstance(value, Mapping) else value


def _durations_to_text(data: Any) -> Any:
    if isinstance(data, dict):
        return {k: _durations_to_text(v) for k, v in data.items()}
    if isinstance(data, timedelta):
        return format_duration(data)
    return data
