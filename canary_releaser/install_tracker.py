"""
Local install tracking.

A host decides whether it may install a tag from two facts: the fleet's
avoid set, and what this host installed last. The "last installed" fact
comes from one of two interchangeable strategies:

- ``FileInstallTracker`` persists ``{"last_installed_tag": ...}`` to a small
  JSON file after every successful deploy.
- ``CommandInstallTracker`` asks an operator command for the running
  version every time and never caches; recording is a no-op because the
  running system is the source of truth.
"""

import json
import logging
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

import aiofiles  # type: ignore
from pydantic import ValidationError

from canary_releaser.commands import CommandRunner
from canary_releaser.config import ReleaserConfig
from canary_releaser.errors import InstallStateError, InvalidTagError
from canary_releaser.models import InstallDecision, LocalInstallState
from canary_releaser.state import DistributedState

logger = logging.getLogger(__name__)


class InstallTracker(ABC):
    """Per-host idempotency check shared by both strategies."""

    def __init__(self, state: DistributedState):
        self.state = state

    @abstractmethod
    async def last_installed(self) -> str:
        """Return the last tag installed on this host, or an empty string."""
        ...

    @abstractmethod
    async def record_installed(self, tag: str) -> None:
        """Remember a tag after it was deployed successfully."""
        ...

    async def can_install(self, tag: str, last_installed: Optional[str] = None) -> InstallDecision:
        """
        Decide whether this host may install ``tag``.

        Avoid-set membership wins over everything else.

        Args:
            tag: Candidate release tag
            last_installed: Already-read last installed tag, None to look it up

        Raises:
            InvalidTagError: the tag is empty
        """
        if not tag:
            raise InvalidTagError("tag is empty")

        if await self.state.is_avoided(tag):
            return InstallDecision.AVOIDED

        last = await self.last_installed() if last_installed is None else last_installed
        logger.debug(f"Install check for {tag}, last installed {last or '<none>'}")
        if last == tag:
            return InstallDecision.ALREADY_INSTALLED

        return InstallDecision.INSTALLABLE


class FileInstallTracker(InstallTracker):
    """Tracks the last installed tag in a local JSON file."""

    def __init__(self, state: DistributedState, state_file: str):
        super().__init__(state)
        self.state_file = Path(state_file)

    async def last_installed(self) -> str:
        local = await self.load()
        return local.last_installed_tag

    async def load(self) -> LocalInstallState:
        """Read the state file; a missing file is an empty state."""
        if not self.state_file.exists():
            return LocalInstallState()

        try:
            async with aiofiles.open(self.state_file, "r") as f:
                data = json.loads(await f.read())
            return LocalInstallState(**data)
        except (OSError, ValueError, TypeError, ValidationError) as e:
            raise InstallStateError(f"failed to read install state {self.state_file}: {e}") from e

    async def record_installed(self, tag: str) -> None:
        if not tag:
            raise InvalidTagError("tag is empty")
        await self.save(LocalInstallState(last_installed_tag=tag))
        logger.info(f"Recorded {tag} as last installed", extra={"tag": tag})

    async def save(self, local: LocalInstallState) -> None:
        """Write the state file atomically, readable by the owner only."""
        try:
            self.state_file.parent.mkdir(mode=0o700, parents=True, exist_ok=True)

            temp_file = self.state_file.with_suffix(".tmp")
            temp_file.touch(mode=0o600, exist_ok=True)
            os.chmod(temp_file, 0o600)
            async with aiofiles.open(temp_file, "w") as f:
                await f.write(local.model_dump_json())

            # Atomic rename
            temp_file.replace(self.state_file)
        except OSError as e:
            raise InstallStateError(f"failed to write install state {self.state_file}: {e}") from e


class CommandInstallTracker(InstallTracker):
    """Asks the running system for its version on every call."""

    def __init__(self, state: DistributedState, command: str, runner: CommandRunner):
        super().__init__(state)
        self.command = command
        self.runner = runner

    async def last_installed(self) -> str:
        return await self.runner.query(self.command)

    async def record_installed(self, tag: str) -> None:
        logger.debug(f"Not recording {tag}: version comes from {self.command}")


def build_install_tracker(
    config: ReleaserConfig,
    state: DistributedState,
    runner: Optional[CommandRunner] = None,
) -> InstallTracker:
    """Pick the strategy: version command when configured, else the state file."""
    if config.commands.current_version:
        return CommandInstallTracker(state, config.commands.current_version, runner or CommandRunner())
    return FileInstallTracker(state, config.state_file_path)
