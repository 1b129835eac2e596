"""Shared fleet state."""

from canary_releaser.state.distributed import DistributedState, RedisState
from canary_releaser.state.fleet import FleetRegistry

__all__ = ["DistributedState", "FleetRegistry", "RedisState"]
