"""
Rollout coordination.

Two cycles drive a host:

Canary cycle (every polling interval)
    resolve latest -> eligibility -> canary lock -> deploy -> observe
    -> promote to stable, or avoid the tag and roll back.

Rollout cycle (every rollout window)
    read stable -> eligibility -> rollout lock -> deploy -> record.

Skips come back as ``CycleResult`` outcomes. Fatal conditions raise
``FatalError`` subclasses and are not handled here.
"""

import logging
from typing import Optional

from canary_releaser.commands import CommandRunner
from canary_releaser.config import ReleaserConfig
from canary_releaser.errors import (
    AssetNotFoundError,
    CommandError,
    DeployError,
    NoRollbackTargetError,
    RollbackError,
)
from canary_releaser.github import ReleaseFetcher
from canary_releaser.health import HealthChecker
from canary_releaser.install_tracker import InstallTracker
from canary_releaser.logging_config import log_decision
from canary_releaser.models import (
    LATEST_TAG,
    CycleOutcome,
    CycleResult,
    InstallDecision,
    LockName,
    RolloutPhase,
)
from canary_releaser.state import DistributedState, FleetRegistry

logger = logging.getLogger(__name__)


class RolloutCoordinator:
    """State machine for canary promotion and stable rollout."""

    def __init__(
        self,
        config: ReleaserConfig,
        state: DistributedState,
        tracker: InstallTracker,
        fetcher: ReleaseFetcher,
        runner: CommandRunner,
        health_checker: HealthChecker,
        fleet: Optional[FleetRegistry] = None,
    ):
        self.config = config
        self.state = state
        self.tracker = tracker
        self.fetcher = fetcher
        self.runner = runner
        self.health_checker = health_checker
        self.fleet = fleet
        self.phase = RolloutPhase.IDLE

    def _transition(self, phase: RolloutPhase, tag: str) -> None:
        previous = self.phase
        self.phase = phase
        log_decision("phase", tag=tag, phase=phase, previous=previous)

    def _skip(self, outcome: CycleOutcome, tag: Optional[str], loop: str, **details) -> CycleResult:
        log_decision("skip", tag=tag, outcome=outcome, loop=loop, level="DEBUG", **details)
        return CycleResult(outcome=outcome, tag=tag)

    async def run_canary_cycle(self) -> CycleResult:
        """
        Try to canary the newest release on this host.

        Raises:
            DeployError: the deploy command failed (lock left to expire)
            NoRollbackTargetError: the canary failed and nothing to roll back to
            RollbackError: the rollback command failed
            FatalError: store, fetch or install-state failures
        """
        try:
            tag, asset_file = await self.fetcher.download_release_asset(LATEST_TAG)
        except AssetNotFoundError as e:
            return self._skip(CycleOutcome.ASSET_NOT_FOUND, e.tag, "canary", reason=str(e))

        stable_tag = await self.state.get_stable_tag()
        if tag == stable_tag:
            return self._skip(CycleOutcome.ALREADY_STABLE, tag, "canary")

        # Read before deploying: a version query reports the canary afterwards
        previous_tag = await self.tracker.last_installed()
        decision = await self.tracker.can_install(tag, last_installed=previous_tag)
        if decision is not InstallDecision.INSTALLABLE:
            return self._skip(CycleOutcome.from_decision(decision), tag, "canary")

        acquired = await self.state.try_acquire_lock(
            LockName.CANARY, tag, self.config.canary_lock_ttl
        )
        if not acquired:
            return self._skip(
                CycleOutcome.LOCK_NOT_ACQUIRED, tag, "canary", lock=LockName.CANARY
            )

        try:
            self._transition(RolloutPhase.LOCK_ACQUIRED, tag)
            await self._deploy(tag, asset_file)
            self._transition(RolloutPhase.DEPLOYED, tag)

            self._transition(RolloutPhase.OBSERVING, tag)
            health = await self.health_checker.check(tag, asset_file, self.config.canary_window)

            if health.healthy:
                await self.state.set_stable_tag(tag)
                await self.tracker.record_installed(tag)
                await self.state.release_lock(LockName.CANARY)
                await self._report(tag)
                self._transition(RolloutPhase.PROMOTED, tag)
                log_decision("promoted", tag=tag, outcome=CycleOutcome.PROMOTED)
                return CycleResult(outcome=CycleOutcome.PROMOTED, tag=tag, health=health)

            log_decision(
                "canary_unhealthy",
                tag=tag,
                level="WARNING",
                command=self.config.commands.healthcheck,
                cause=health.cause,
                output=health.output,
            )
            await self.state.add_to_avoid_set(tag)
            rollback_tag = await self._rollback(tag, previous_tag)
            self._transition(RolloutPhase.ROLLED_BACK, tag)
            return CycleResult(
                outcome=CycleOutcome.ROLLED_BACK,
                tag=tag,
                rollback_tag=rollback_tag,
                health=health,
            )
        finally:
            self.phase = RolloutPhase.IDLE

    async def run_rollout_cycle(self) -> CycleResult:
        """
        Bring this host up to the fleet's stable tag.

        Raises:
            DeployError: the deploy command failed
            FatalError: store, fetch or install-state failures
        """
        stable_tag = await self.state.get_stable_tag()
        if not stable_tag:
            return self._skip(CycleOutcome.NO_STABLE_TAG, None, "rollout")

        decision = await self.tracker.can_install(stable_tag)
        if decision is not InstallDecision.INSTALLABLE:
            await self._report_current()
            return self._skip(CycleOutcome.from_decision(decision), stable_tag, "rollout")

        acquired = await self.state.try_acquire_lock(
            LockName.ROLLOUT, stable_tag, self.config.rollout_lock_ttl
        )
        if not acquired:
            return self._skip(
                CycleOutcome.LOCK_NOT_ACQUIRED, stable_tag, "rollout", lock=LockName.ROLLOUT
            )

        try:
            self._transition(RolloutPhase.LOCK_ACQUIRED, stable_tag)
            try:
                tag, asset_file = await self.fetcher.download_release_asset(stable_tag)
            except AssetNotFoundError as e:
                return self._skip(
                    CycleOutcome.ASSET_NOT_FOUND, stable_tag, "rollout", reason=str(e)
                )

            await self._deploy(tag, asset_file)
            await self.tracker.record_installed(stable_tag)
            self._transition(RolloutPhase.DEPLOYED, stable_tag)
            log_decision("rolled_out", tag=stable_tag, outcome=CycleOutcome.DEPLOYED)

            await self._report(stable_tag)
            await self._log_progress(stable_tag)
            return CycleResult(outcome=CycleOutcome.DEPLOYED, tag=stable_tag)
        finally:
            self.phase = RolloutPhase.IDLE

    async def rollback_target(self, last_installed: Optional[str] = None) -> str:
        """
        Stable tag if set, else this host's last installed tag.

        Args:
            last_installed: Tag this host ran before the canary, None to look it up
        """
        stable_tag = await self.state.get_stable_tag()
        if stable_tag:
            return stable_tag
        if last_installed is None:
            return await self.tracker.last_installed()
        return last_installed

    async def _deploy(self, tag: str, asset_file: str) -> None:
        command = self.config.commands.deploy
        log_decision("deploy", tag=tag, command=command, asset=asset_file)
        try:
            output = await self.runner.execute(command, tag, asset_file)
        except CommandError as e:
            log_decision(
                "deploy_failed", tag=tag, level="ERROR", command=command, output=e.output
            )
            raise DeployError(tag, e) from e
        log_decision("deployed", tag=tag, command=command, output=output)

    async def _rollback(self, failed_tag: str, previous_tag: str) -> str:
        target = await self.rollback_target(previous_tag)
        if not target:
            raise NoRollbackTargetError(failed_tag)

        command = self.config.commands.rollback
        log_decision("rollback", tag=target, command=command, failed_tag=failed_tag)
        try:
            tag, asset_file = await self.fetcher.download_release_asset(target)
            output = await self.runner.execute(command, tag, asset_file)
        except (AssetNotFoundError, CommandError) as e:
            log_decision(
                "rollback_failed",
                tag=target,
                level="ERROR",
                command=command,
                output=getattr(e, "output", ""),
            )
            raise RollbackError(target, e) from e

        await self.tracker.record_installed(target)
        await self._report(target)
        log_decision(
            "rolled_back",
            tag=target,
            outcome=CycleOutcome.ROLLED_BACK,
            command=command,
            failed_tag=failed_tag,
            output=output,
        )
        return target

    async def _report(self, tag: str) -> None:
        if self.fleet is not None:
            await self.fleet.report(tag)

    async def _report_current(self) -> None:
        if self.fleet is not None:
            await self.fleet.report(await self.tracker.last_installed())

    async def _log_progress(self, tag: str) -> None:
        if self.fleet is None:
            return
        progress = await self.fleet.progress(tag)
        log_decision(
            "rollout_progress",
            tag=tag,
            installed=progress.installed,
            total=progress.total,
            complete=progress.complete,
        )
