"""
Tests for the command-line entry point.
"""

from unittest.mock import AsyncMock, Mock, patch

import pytest
import yaml

from canary_releaser.__main__ import build_parser, collect_overrides, main
from canary_releaser.errors import RollbackError, StoreUnavailableError


@pytest.fixture
def config_file(tmp_path, clean_env):
    path = tmp_path / "config.yml"
    path.write_text(
        yaml.safe_dump(
            {
                "repo": "acme/widget",
                "assets": {"name_pattern": r"\.tar\.gz$", "download_path": str(tmp_path)},
                "commands": {
                    "deploy": "/opt/deploy.sh",
                    "rollback": "/opt/rollback.sh",
                    "healthcheck": "/opt/healthcheck.sh",
                },
                "state_file_path": str(tmp_path / "state.json"),
            }
        )
    )
    return path


@pytest.fixture
def daemon_cls():
    with patch("canary_releaser.__main__.ReleaserDaemon") as cls:
        cls.return_value.run = AsyncMock()
        yield cls


@pytest.fixture(autouse=True)
def quiet_logging():
    with patch("canary_releaser.__main__.setup_logging") as setup, patch(
        "canary_releaser.__main__.install_alert_handler", return_value=None
    ) as alerts:
        yield setup, alerts


class TestOverrides:
    def test_flags_map_to_dotted_keys(self):
        args = build_parser().parse_args(
            ["--redis-host", "redis.internal", "--canary-window", "20m", "--once", "--healthcheck-retries", "5"]
        )
        assert collect_overrides(args) == {
            "redis.host": "redis.internal",
            "canary_window": "20m",
            "once": True,
            "healthcheck.retries": 5,
        }

    def test_unset_flags_are_omitted(self):
        assert collect_overrides(build_parser().parse_args([])) == {}

    def test_verbose(self):
        args = build_parser().parse_args(["-v"])
        assert collect_overrides(args) == {"logging.level": "debug"}


class TestMain:
    def test_generate_config(self, tmp_path, capsys):
        path = tmp_path / "generated.yml"

        assert main(["--generate-config", "--config", str(path)]) == 0

        assert path.exists()
        assert "Generated sample configuration" in capsys.readouterr().out

    def test_validate_config(self, config_file, daemon_cls, capsys):
        assert main(["--config", str(config_file), "--validate-config"]) == 0
        daemon_cls.assert_not_called()

    def test_invalid_config(self, tmp_path, clean_env, daemon_cls, capsys):
        assert main(["--config", str(tmp_path / "missing.yml")]) == 1
        assert "Failed to load config" in capsys.readouterr().err
        daemon_cls.assert_not_called()

    def test_invalid_flag_value(self, config_file, daemon_cls):
        assert main(["--config", str(config_file), "--log-level", "loud"]) == 1
        daemon_cls.assert_not_called()

    def test_runs_daemon_with_overrides(self, config_file, daemon_cls, quiet_logging):
        code = main(["--config", str(config_file), "--once", "--redis-host", "redis.internal"])

        assert code == 0
        config = daemon_cls.call_args.args[0]
        assert config.once is True
        assert config.redis.host == "redis.internal"
        daemon_cls.return_value.run.assert_awaited_once()
        setup, _ = quiet_logging
        setup.assert_called_once_with(level="info", log_dir=None, use_json=True)

    def test_logging_failure(self, config_file, daemon_cls, quiet_logging):
        setup, _ = quiet_logging
        setup.side_effect = OSError("read-only file system")

        assert main(["--config", str(config_file)]) == 1
        daemon_cls.assert_not_called()

    @pytest.mark.parametrize(
        "error", [StoreUnavailableError("refused"), RollbackError("v1", RuntimeError("exit 2"))]
    )
    def test_fatal_error_exits_nonzero(self, config_file, daemon_cls, error):
        daemon_cls.return_value.run.side_effect = error

        with patch("canary_releaser.__main__.time.sleep") as sleep:
            assert main(["--config", str(config_file)]) == 1

        sleep.assert_not_called()

    def test_fatal_error_waits_for_alerts(self, config_file, daemon_cls, quiet_logging):
        _, alerts = quiet_logging
        alerts.return_value = Mock()
        daemon_cls.return_value.run.side_effect = StoreUnavailableError("refused")

        with patch("canary_releaser.__main__.time.sleep") as sleep:
            code = main(
                ["--config", str(config_file), "--alert-webhook-url", "https://hooks.example.test/x"]
            )

        assert code == 1
        alerts.assert_called_once_with("https://hooks.example.test/x", None)
        sleep.assert_called_once_with(3.0)

    def test_unexpected_error_exits_nonzero(self, config_file, daemon_cls):
        daemon_cls.return_value.run.side_effect = RuntimeError("bug")
        assert main(["--config", str(config_file)]) == 1
