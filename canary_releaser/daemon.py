"""
Daemon wiring.

Builds every component from one configuration value and runs the
dispatcher until a shutdown signal, the end of a one-shot run, or a fatal
error.
"""

import asyncio
import logging
import signal
import socket
from typing import Optional

from canary_releaser.commands import CommandRunner
from canary_releaser.config import ReleaserConfig
from canary_releaser.coordinator import RolloutCoordinator
from canary_releaser.github import GitHubReleaseFetcher, ReleaseFetcher
from canary_releaser.health import HealthChecker
from canary_releaser.install_tracker import build_install_tracker
from canary_releaser.scheduler import Dispatcher
from canary_releaser.state import FleetRegistry, RedisState

logger = logging.getLogger(__name__)

CANARY_TIMER = "canary"
ROLLOUT_TIMER = "rollout"


class ReleaserDaemon:
    """Owns the components of one host's rollout daemon."""

    def __init__(
        self,
        config: ReleaserConfig,
        state: Optional[RedisState] = None,
        fetcher: Optional[ReleaseFetcher] = None,
        runner: Optional[CommandRunner] = None,
        host: Optional[str] = None,
    ):
        self.config = config
        self.host = host or socket.gethostname()
        self.state = state or RedisState(config)
        self.fetcher = fetcher or GitHubReleaseFetcher(config)
        self.runner = runner or CommandRunner()

        self.tracker = build_install_tracker(config, self.state, self.runner)
        self.health_checker = HealthChecker(
            self.runner,
            config.commands.healthcheck,
            retries=config.healthcheck.retries,
            interval=config.healthcheck.interval,
            timeout=config.healthcheck.timeout,
        )

        self.fleet: Optional[FleetRegistry] = None
        if config.fleet_registry.enabled:
            self.fleet = FleetRegistry(self.state, self.host, config.fleet_registry.stale_after)

        self.coordinator = RolloutCoordinator(
            config,
            self.state,
            self.tracker,
            self.fetcher,
            self.runner,
            self.health_checker,
            fleet=self.fleet,
        )

        self._shutdown_requested = False
        self._forced = False
        self._run_task: Optional[asyncio.Task] = None

        # Canary registered first: in one-shot mode it runs before the rollout
        self.dispatcher = Dispatcher()
        self.dispatcher.add_timer(
            CANARY_TIMER, config.polling_interval, self.coordinator.run_canary_cycle
        )
        self.dispatcher.add_timer(
            ROLLOUT_TIMER, config.rollout_window, self.coordinator.run_rollout_cycle
        )

    async def start(self) -> None:
        """Verify connectivity before the first tick."""
        logger.info(f"Starting canary-releaser for {self.config.repo} on {self.host}")
        await self.state.connect()

    async def stop(self) -> None:
        """Release network resources."""
        try:
            await self.fetcher.close()
        finally:
            await self.state.close()
        logger.info("canary-releaser stopped")

    def request_shutdown(self) -> None:
        """
        Handle SIGTERM/SIGINT.

        The first signal stops the dispatcher once the running cycle ends.
        A second one cancels the running cycle, which may leave a canary
        deployed with its lock held until the TTL expires.
        """
        if self._shutdown_requested:
            if self._run_task is not None and not self._forced:
                logger.warning("Second shutdown signal, cancelling the running cycle")
                self._forced = True
                self._run_task.cancel()
            return

        self._shutdown_requested = True
        logger.info("Shutdown signal received, stopping after the running cycle")
        self.dispatcher.stop()

    async def run(self) -> None:
        """Run until shutdown signal, one-shot completion, or a fatal error."""
        try:
            await self.start()

            if self.config.once:
                await self.dispatcher.run_once()
                return

            loop = asyncio.get_running_loop()
            self._run_task = asyncio.current_task()
            for sig in (signal.SIGTERM, signal.SIGINT):
                loop.add_signal_handler(sig, self.request_shutdown)

            try:
                await self.dispatcher.run()
            except asyncio.CancelledError:
                if not self._forced:
                    raise
                logger.warning("Running cycle cancelled by shutdown signal")
            finally:
                for sig in (signal.SIGTERM, signal.SIGINT):
                    loop.remove_signal_handler(sig)
                self._run_task = None
        finally:
            await self.stop()
