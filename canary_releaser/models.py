"""
Data models for canary-releaser.

Keep it simple. Keep it typed.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

# Sentinel tag meaning "resolve the newest available release"
LATEST_TAG = "latest"


class InstallDecision(str, Enum):
    """Whether this host may install a given tag."""

    INSTALLABLE = "installable"
    ALREADY_INSTALLED = "already_installed"
    AVOIDED = "avoided"


class CycleOutcome(str, Enum):
    """Result of one canary or rollout cycle."""

    PROMOTED = "promoted"
    ROLLED_BACK = "rolled_back"
    DEPLOYED = "deployed"
    ALREADY_INSTALLED = "already_installed"
    AVOIDED = "avoided"
    ASSET_NOT_FOUND = "asset_not_found"
    ALREADY_STABLE = "already_stable"
    NO_STABLE_TAG = "no_stable_tag"
    LOCK_NOT_ACQUIRED = "lock_not_acquired"

    @property
    def is_skip(self) -> bool:
        """Did the cycle end without deploying anything?"""
        return self not in (
            CycleOutcome.PROMOTED,
            CycleOutcome.ROLLED_BACK,
            CycleOutcome.DEPLOYED,
        )

    @classmethod
    def from_decision(cls, decision: InstallDecision) -> "CycleOutcome":
        """Map a non-installable decision to the matching skip outcome."""
        if decision is InstallDecision.ALREADY_INSTALLED:
            return cls.ALREADY_INSTALLED
        if decision is InstallDecision.AVOIDED:
            return cls.AVOIDED
        raise ValueError(f"{decision} is not a skip decision")


class RolloutPhase(str, Enum):
    """Per-attempt state of the rollout state machine."""

    IDLE = "idle"
    LOCK_ACQUIRED = "lock_acquired"
    DEPLOYED = "deployed"
    OBSERVING = "observing"
    PROMOTED = "promoted"
    ROLLED_BACK = "rolled_back"


class LockName(str, Enum):
    """Named distributed locks."""

    CANARY = "canary_release_tag"
    ROLLOUT = "rollout"


@dataclass
class HealthResult:
    """Outcome of a health-check observation window."""

    healthy: bool
    output: str = ""
    cause: Optional[str] = None
    attempts: int = 0

    @classmethod
    def passed(cls, attempts: int) -> "HealthResult":
        return cls(healthy=True, attempts=attempts)

    @classmethod
    def failed(cls, output: str, cause: str, attempts: int) -> "HealthResult":
        return cls(healthy=False, output=output, cause=cause, attempts=attempts)


@dataclass
class CycleResult:
    """What a coordinator cycle did, and for which tag."""

    outcome: CycleOutcome
    tag: Optional[str] = None
    rollback_tag: Optional[str] = None
    health: Optional[HealthResult] = None


class LocalInstallState(BaseModel):
    """Host-local record persisted by the file install tracker."""

    last_installed_tag: str = Field("", description="Last tag deployed successfully on this host")


class MemberState(BaseModel):
    """Per-host record kept in the optional fleet registry."""

    host: str = Field(..., description="Hostname of the fleet member")
    current_version: str = Field("", description="Tag currently installed on the host")
    updated_at: float = Field(..., description="Unix timestamp of the last report")


@dataclass
class RolloutProgress:
    """How many live fleet members run a tag."""

    tag: str
    installed: int
    total: int

    @property
    def complete(self) -> bool:
        return self.total > 0 and self.installed == self.total
