"""
Tests for local install tracking.
"""

import json
import stat
from unittest.mock import AsyncMock, Mock

import pytest

from canary_releaser.commands import CommandRunner
from canary_releaser.errors import InstallStateError, InvalidTagError
from canary_releaser.install_tracker import (
    CommandInstallTracker,
    FileInstallTracker,
    build_install_tracker,
)
from canary_releaser.models import InstallDecision

from conftest import make_config


@pytest.fixture
def state_file(tmp_path):
    return tmp_path / "state" / "state.json"


@pytest.fixture
def tracker(state, state_file):
    return FileInstallTracker(state, str(state_file))


class TestFileInstallTracker:
    """State-file strategy."""

    @pytest.mark.asyncio
    async def test_fresh_host_has_nothing_installed(self, tracker):
        assert await tracker.last_installed() == ""
        assert await tracker.can_install("v1") == InstallDecision.INSTALLABLE

    @pytest.mark.asyncio
    async def test_record_then_check(self, tracker):
        await tracker.record_installed("v2")

        assert await tracker.last_installed() == "v2"
        assert await tracker.can_install("v2") == InstallDecision.ALREADY_INSTALLED
        assert await tracker.can_install("v3") == InstallDecision.INSTALLABLE

    @pytest.mark.asyncio
    async def test_file_format_and_permissions(self, tracker, state_file):
        await tracker.record_installed("v2")

        assert json.loads(state_file.read_text()) == {"last_installed_tag": "v2"}
        assert stat.S_IMODE(state_file.stat().st_mode) == 0o600
        assert not state_file.with_suffix(".tmp").exists()

    @pytest.mark.asyncio
    async def test_survives_new_instance(self, state, tracker, state_file):
        await tracker.record_installed("v5")
        reopened = FileInstallTracker(state, str(state_file))
        assert await reopened.last_installed() == "v5"

    @pytest.mark.asyncio
    async def test_avoided_wins_over_installed(self, tracker, state):
        await tracker.record_installed("v3")
        await state.add_to_avoid_set("v3")

        assert await tracker.can_install("v3") == InstallDecision.AVOIDED

    @pytest.mark.asyncio
    async def test_avoided_tag_not_installable(self, tracker, state):
        await state.add_to_avoid_set("v4")
        assert await tracker.can_install("v4") == InstallDecision.AVOIDED

    @pytest.mark.asyncio
    async def test_empty_tag_rejected(self, tracker):
        with pytest.raises(InvalidTagError):
            await tracker.can_install("")
        with pytest.raises(InvalidTagError):
            await tracker.record_installed("")

    @pytest.mark.asyncio
    async def test_corrupt_file(self, tracker, state_file):
        state_file.parent.mkdir(parents=True)
        state_file.write_text("{not json")

        with pytest.raises(InstallStateError):
            await tracker.last_installed()

    @pytest.mark.asyncio
    async def test_unwritable_location(self, state, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("")
        tracker = FileInstallTracker(state, str(blocker / "state.json"))

        with pytest.raises(InstallStateError):
            await tracker.record_installed("v1")


class TestCommandInstallTracker:
    """Version-command strategy."""

    @pytest.mark.asyncio
    async def test_queries_every_time(self, state):
        runner = Mock(spec=CommandRunner)
        runner.query = AsyncMock(side_effect=["v1", "v2"])
        tracker = CommandInstallTracker(state, "/opt/version.sh", runner)

        assert await tracker.can_install("v1") == InstallDecision.ALREADY_INSTALLED
        assert await tracker.can_install("v1") == InstallDecision.INSTALLABLE
        assert runner.query.await_count == 2

    @pytest.mark.asyncio
    async def test_record_is_noop(self, state):
        runner = Mock(spec=CommandRunner)
        runner.query = AsyncMock(return_value="v1")
        tracker = CommandInstallTracker(state, "/opt/version.sh", runner)

        await tracker.record_installed("v9")

        assert await tracker.last_installed() == "v1"

    @pytest.mark.asyncio
    async def test_supplied_last_installed_skips_query(self, state):
        runner = Mock(spec=CommandRunner)
        runner.query = AsyncMock(return_value="v2")
        tracker = CommandInstallTracker(state, "/opt/version.sh", runner)

        assert await tracker.can_install("v2", last_installed="v1") == InstallDecision.INSTALLABLE
        runner.query.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_avoid_checked_before_query(self, state):
        runner = Mock(spec=CommandRunner)
        runner.query = AsyncMock(return_value="v1")
        tracker = CommandInstallTracker(state, "/opt/version.sh", runner)
        await state.add_to_avoid_set("v7")

        assert await tracker.can_install("v7") == InstallDecision.AVOIDED
        runner.query.assert_not_awaited()


class TestBuildInstallTracker:
    def test_defaults_to_state_file(self, tmp_path, state):
        config = make_config(tmp_path)
        tracker = build_install_tracker(config, state)
        assert isinstance(tracker, FileInstallTracker)
        assert str(tracker.state_file) == config.state_file_path

    def test_version_command_selected(self, tmp_path, state):
        config = make_config(tmp_path, commands={"current_version": "/opt/version.sh"})
        tracker = build_install_tracker(config, state)
        assert isinstance(tracker, CommandInstallTracker)
        assert tracker.command == "/opt/version.sh"
