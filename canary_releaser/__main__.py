"""
canary-releaser CLI entry point.
"""

import argparse
import asyncio
import logging
import sys
import time
from typing import Any, Dict, List, Optional

from canary_releaser.alerts import install_alert_handler
from canary_releaser.config import DEFAULT_CONFIG_PATH, ReleaserConfig, generate_default_config
from canary_releaser.daemon import ReleaserDaemon
from canary_releaser.errors import ConfigError, ReleaserError
from canary_releaser.logging_config import setup_logging

# CLI flag -> dotted config key
_OVERRIDES = {
    "repo": "repo",
    "github_token": "github.token",
    "github_api": "github.api_url",
    "include_prereleases": "github.include_prereleases",
    "download_path": "assets.download_path",
    "name_pattern": "assets.name_pattern",
    "deploy_command": "commands.deploy",
    "rollback_command": "commands.rollback",
    "healthcheck_command": "commands.healthcheck",
    "current_version_command": "commands.current_version",
    "healthcheck_retries": "healthcheck.retries",
    "healthcheck_interval": "healthcheck.interval",
    "healthcheck_timeout": "healthcheck.timeout",
    "canary_window": "canary_window",
    "rollout_window": "rollout_window",
    "polling_interval": "polling_interval",
    "redis_host": "redis.host",
    "redis_port": "redis.port",
    "redis_password": "redis.password",
    "redis_db": "redis.db",
    "key_prefix": "redis.key_prefix",
    "state_file_path": "state_file_path",
    "fleet_registry": "fleet_registry.enabled",
    "alert_webhook_url": "alert.webhook_url",
    "alert_channel": "alert.channel",
    "log_level": "logging.level",
    "log_dir": "logging.log_dir",
    "once": "once",
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="canary-releaser",
        description="Canary-deploy GitHub release assets across a fleet of hosts",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run the daemon with a config file
  canary-releaser --config /etc/canary-releaser/config.yml

  # Run each loop once, e.g. from cron
  canary-releaser --config /etc/canary-releaser/config.yml --once

  # Generate a sample configuration
  canary-releaser --generate-config --config ./config.yml
        """,
    )

    parser.add_argument(
        "--config",
        "-c",
        type=str,
        default=DEFAULT_CONFIG_PATH,
        help=f"Path to configuration file (default: {DEFAULT_CONFIG_PATH})",
    )
    parser.add_argument(
        "--generate-config",
        action="store_true",
        help="Generate a sample configuration file and exit",
    )
    parser.add_argument(
        "--validate-config", action="store_true", help="Validate configuration and exit"
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Shortcut for --log-level debug")

    release = parser.add_argument_group("releases")
    release.add_argument("--repo", help="GitHub repository as owner/name")
    release.add_argument("--github-token", help="GitHub token")
    release.add_argument("--github-api", help="GitHub API endpoint")
    release.add_argument(
        "--include-prereleases", action="store_true", default=None, help="Canary pre-releases too"
    )
    release.add_argument("--download-path", help="Asset download directory")
    release.add_argument("--name-pattern", help="Regex selecting the release asset")

    commands = parser.add_argument_group("commands")
    commands.add_argument("--deploy-command", help="Deploy command")
    commands.add_argument("--rollback-command", help="Rollback command")
    commands.add_argument("--healthcheck-command", help="Health-check command")
    commands.add_argument(
        "--current-version-command", help="Command printing the running version"
    )

    timing = parser.add_argument_group("timing (durations like 30s, 15m, 1h)")
    timing.add_argument("--healthcheck-retries", type=int, help="Health-check attempts")
    timing.add_argument("--healthcheck-interval", help="Delay between health checks")
    timing.add_argument("--healthcheck-timeout", help="Per-attempt health-check timeout")
    timing.add_argument("--canary-window", help="Canary observation window")
    timing.add_argument("--rollout-window", help="Stable rollout period")
    timing.add_argument("--polling-interval", help="Release polling period")

    store = parser.add_argument_group("distributed store")
    store.add_argument("--redis-host", help="Redis host")
    store.add_argument("--redis-port", type=int, help="Redis port")
    store.add_argument("--redis-password", help="Redis password")
    store.add_argument("--redis-db", type=int, help="Redis DB")
    store.add_argument("--key-prefix", help="Key namespace (defaults to the repo)")

    runtime = parser.add_argument_group("runtime")
    runtime.add_argument("--state-file-path", help="Local install-state file")
    runtime.add_argument(
        "--fleet-registry", action="store_true", default=None, help="Report per-host versions"
    )
    runtime.add_argument("--alert-webhook-url", help="Webhook notified on fatal errors")
    runtime.add_argument("--alert-channel", help="Channel for webhook alerts")
    runtime.add_argument("--log-level", help="debug, info, warning or error")
    runtime.add_argument("--log-dir", help="Directory for rotating log files")
    runtime.add_argument("--once", action="store_true", default=None, help="One-shot mode")

    return parser


def collect_overrides(args: argparse.Namespace) -> Dict[str, Any]:
    """Translate parsed flags into dotted config overrides."""
    overrides = {}
    for attr, key in _OVERRIDES.items():
        value = getattr(args, attr, None)
        if value is not None:
            overrides[key] = value
    if args.verbose:
        overrides["logging.level"] = "debug"
    return overrides


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point."""
    args = build_parser().parse_args(argv)

    if args.generate_config:
        try:
            generate_default_config(args.config)
        except OSError as e:
            print(f"Error generating config: {e}", file=sys.stderr)
            return 1
        print(f"Generated sample configuration at: {args.config}")
        return 0

    try:
        config = ReleaserConfig.from_file(args.config, overrides=collect_overrides(args))
    except ConfigError as e:
        print(f"Failed to load config: {e}", file=sys.stderr)
        return 1

    if args.validate_config:
        print(f"Configuration valid: {args.config}")
        return 0

    try:
        setup_logging(
            level=config.logging.level,
            log_dir=config.logging.log_dir,
            use_json=config.logging.use_json,
        )
    except (ConfigError, OSError) as e:
        print(f"Failed to init logger: {e}", file=sys.stderr)
        return 1

    alert_handler = install_alert_handler(config.alert.webhook_url, config.alert.channel)
    logger = logging.getLogger(__name__)

    try:
        asyncio.run(ReleaserDaemon(config).run())
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 0
    except ReleaserError as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        _wait_for_alerts(alert_handler, config)
        return 1
    except Exception as e:
        logger.error(f"Unexpected fatal error: {e}", exc_info=True)
        _wait_for_alerts(alert_handler, config)
        return 1

    return 0


def _wait_for_alerts(alert_handler: Any, config: ReleaserConfig) -> None:
    # Alerts are delivered from background threads
    if alert_handler is not None:
        time.sleep(config.alert.flush_delay.total_seconds())


if __name__ == "__main__":
    sys.exit(main())
