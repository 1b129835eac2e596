"""
External command execution.

Deploy, rollback and health-check scripts are operator supplied. Each is
run with ``RELEASE_TAG`` and ``ASSET_FILE`` added to the environment and
its stdout and stderr captured together.
"""

import asyncio
import contextlib
import logging
import os
import shlex
from pathlib import Path
from typing import Dict, Optional

from canary_releaser.errors import CommandError

logger = logging.getLogger(__name__)


class CommandRunner:
    """Runs operator commands for a release tag and asset."""

    def __init__(self, base_env: Optional[Dict[str, str]] = None):
        """
        Args:
            base_env: Environment the commands inherit (defaults to ``os.environ``)
        """
        self.base_env = dict(os.environ if base_env is None else base_env)

    def build_env(self, tag: str, asset_file: str) -> Dict[str, str]:
        env = dict(self.base_env)
        env["RELEASE_TAG"] = tag
        env["ASSET_FILE"] = asset_file
        return env

    async def execute(
        self,
        command: str,
        tag: str,
        asset_file: str,
        timeout: Optional[float] = None,
    ) -> str:
        """
        Run a command and return its combined output.

        Args:
            command: Path of the script to run (made absolute)
            tag: Release tag exposed as ``RELEASE_TAG``
            asset_file: Local asset path exposed as ``ASSET_FILE``
            timeout: Seconds before the process is killed, None to wait forever

        Raises:
            CommandError: spawn failure, non-zero exit, or timeout
        """
        path = str(Path(command).absolute())

        try:
            process = await asyncio.create_subprocess_exec(
                path,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                env=self.build_env(tag, asset_file),
            )
        except OSError as e:
            raise CommandError(command, f"failed to start: {e}") from e

        try:
            stdout, _ = await asyncio.wait_for(process.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            # The process may exit on its own just as the timeout fires
            with contextlib.suppress(ProcessLookupError):
                process.kill()
            await process.wait()
            raise CommandError(command, f"timed out after {timeout}s")

        output = stdout.decode(errors="replace") if stdout else ""

        if process.returncode != 0:
            raise CommandError(
                command,
                f"exited with status {process.returncode}",
                output=output,
                returncode=process.returncode,
            )

        logger.debug(
            f"Command {command} succeeded",
            extra={"command": command, "tag": tag, "details": {"output": output}},
        )
        return output

    async def query(self, command: str) -> str:
        """
        Run a command without release variables and return stripped stdout.

        Used for version queries, so stderr is not mixed into the result.
        The command line is split shell-style, so arguments are allowed.

        Raises:
            CommandError: spawn failure or non-zero exit
        """
        try:
            process = await asyncio.create_subprocess_exec(
                *shlex.split(command),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=dict(self.base_env),
            )
        except OSError as e:
            raise CommandError(command, f"failed to start: {e}") from e

        stdout, stderr = await process.communicate()
        if process.returncode != 0:
            raise CommandError(
                command,
                f"exited with status {process.returncode}",
                output=stderr.decode(errors="replace"),
                returncode=process.returncode,
            )
        return stdout.decode(errors="replace").strip()
