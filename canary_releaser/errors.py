"""
Exception taxonomy for canary-releaser.

Callers branch on the exception class, never on the message text.

- ``AssetNotFoundError`` is skippable: the loop logs it and waits for the
  next tick.
- ``InvalidTagError`` signals bad input (an empty tag).
- Everything derived from ``FatalError`` aborts the process.
"""

from typing import Optional


class ReleaserError(Exception):
    """Base class for all canary-releaser errors."""


class AssetNotFoundError(ReleaserError):
    """No release asset matched the configured name pattern."""

    def __init__(self, tag: str, pattern: str):
        self.tag = tag
        self.pattern = pattern
        super().__init__(f"no asset matching {pattern!r} in release {tag!r}")


class InvalidTagError(ReleaserError, ValueError):
    """A release tag was empty or otherwise unusable."""


class FatalError(ReleaserError):
    """An unrecovered failure that must terminate the process."""


class ConfigError(FatalError):
    """Configuration could not be loaded or failed validation."""


class StoreUnavailableError(FatalError):
    """The distributed store could not be reached."""


class ReleaseFetchError(FatalError):
    """The release host returned an error or could not be reached."""


class InstallStateError(FatalError):
    """The local install-state file is unreadable or corrupt."""


class CommandError(FatalError):
    """An external command failed to spawn, exited non-zero, or timed out."""

    def __init__(
        self,
        command: str,
        message: str,
        output: str = "",
        returncode: Optional[int] = None,
    ):
        self.command = command
        self.output = output
        self.returncode = returncode
        super().__init__(f"{command}: {message}")


class DeployError(FatalError):
    """The deploy command failed for a tag."""

    def __init__(self, tag: str, cause: Exception):
        self.tag = tag
        self.cause = cause
        super().__init__(f"deploy of {tag} failed: {cause}")


class RollbackError(FatalError):
    """The rollback command failed for the rollback target."""

    def __init__(self, tag: str, cause: Exception):
        self.tag = tag
        self.cause = cause
        super().__init__(f"rollback to {tag} failed: {cause}")


class NoRollbackTargetError(FatalError):
    """Neither a stable tag nor a last-installed tag exists to roll back to."""

    def __init__(self, failed_tag: str):
        self.failed_tag = failed_tag
        super().__init__(f"no rollback target after failed canary of {failed_tag}")
