"""
Canary health checking.

A canary must stay healthy for the whole observation window:

1. The first check may be retried: up to ``retries`` attempts, ``interval``
   apart, each bounded by ``timeout``. If none passes the canary fails at
   once; the rest of the window is not waited out.
2. After a pass, the check is re-run every ``interval`` until the window,
   measured from the start of checking, has elapsed. A failure in this
   phase is final; there are no retries.
3. The canary is healthy only once the full window elapsed cleanly.
"""

import asyncio
import logging
import time
from datetime import timedelta
from typing import Awaitable, Callable, Optional, Tuple

from canary_releaser.commands import CommandRunner
from canary_releaser.errors import CommandError
from canary_releaser.models import HealthResult

logger = logging.getLogger(__name__)


class HealthChecker:
    """Runs a health-check command over an observation window."""

    def __init__(
        self,
        runner: CommandRunner,
        command: str,
        retries: int,
        interval: timedelta,
        timeout: timedelta,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Args:
            runner: Command runner used for each check
            command: Health-check command path
            retries: Attempts allowed for the first check
            interval: Delay between attempts and between re-checks
            timeout: Per-attempt time limit
            clock: Monotonic clock, injectable for tests
            sleep: Async sleep, injectable for tests
        """
        self.runner = runner
        self.command = command
        self.retries = max(1, retries)
        self.interval = interval.total_seconds()
        self.timeout = timeout.total_seconds()
        self._clock = clock
        self._sleep = sleep

    async def check(self, tag: str, asset_file: str, window: timedelta) -> HealthResult:
        """
        Observe ``tag`` for ``window``.

        Returns:
            HealthResult, healthy only if the full window elapsed without an
            unrecovered failure
        """
        started = self._clock()
        deadline = started + window.total_seconds()
        attempts = 0

        logger.info(
            f"Starting health check for {tag}, window {window}",
            extra={"tag": tag, "command": self.command},
        )

        # Attempt phase: retry until one check passes
        for attempt in range(1, self.retries + 1):
            attempts += 1
            ok, output, cause = await self._run_once(tag, asset_file)
            if ok:
                break
            logger.warning(
                f"Health check attempt {attempt}/{self.retries} failed for {tag}: {cause}",
                extra={"tag": tag, "command": self.command, "details": {"output": output}},
            )
            if attempt == self.retries:
                return HealthResult.failed(output, cause or "health check failed", attempts)
            await self._sleep(self.interval)

        # Observation phase: any failure is final
        while True:
            remaining = deadline - self._clock()
            if remaining <= 0:
                break
            await self._sleep(min(self.interval, remaining))
            if self._clock() >= deadline:
                break

            attempts += 1
            ok, output, cause = await self._run_once(tag, asset_file)
            if not ok:
                logger.error(
                    f"Health check failed for {tag} during observation: {cause}",
                    extra={"tag": tag, "command": self.command, "details": {"output": output}},
                )
                return HealthResult.failed(output, cause or "health check failed", attempts)

        logger.info(
            f"Health check passed for {tag} after {attempts} checks",
            extra={"tag": tag, "command": self.command},
        )
        return HealthResult.passed(attempts)

    async def _run_once(self, tag: str, asset_file: str) -> Tuple[bool, str, Optional[str]]:
        try:
            output = await self.runner.execute(
                self.command, tag, asset_file, timeout=self.timeout
            )
        except CommandError as e:
            return False, e.output, str(e)
        return True, output, None
