"""
Optional per-host fleet registry.

Each host records the tag it currently runs in the hash
``<prefix>_members`` (field = host name). The registry is only used to
report rollout progress; install decisions never depend on it.
"""

import json
import logging
import time
from datetime import timedelta
from typing import Callable, List

from pydantic import ValidationError

from canary_releaser.models import MemberState, RolloutProgress
from canary_releaser.state.distributed import RedisState, store_call

logger = logging.getLogger(__name__)


class FleetRegistry:
    """Per-host membership records in the shared store."""

    def __init__(
        self,
        state: RedisState,
        host: str,
        stale_after: timedelta,
        clock: Callable[[], float] = time.time,
    ):
        self.client = state.client
        self.members_key = state.key("members")
        self.host = host
        self.stale_after = stale_after
        self._clock = clock

    @store_call
    async def report(self, current_version: str) -> None:
        """Record the tag this host currently runs."""
        member = MemberState(host=self.host, current_version=current_version, updated_at=self._clock())
        await self.client.hset(self.members_key, self.host, member.model_dump_json())

    @store_call
    async def members(self) -> List[MemberState]:
        """Return members reported within ``stale_after``."""
        cutoff = self._clock() - self.stale_after.total_seconds()
        raw = await self.client.hgetall(self.members_key)

        members = []
        for host, value in raw.items():
            try:
                member = MemberState(**json.loads(value))
            except (ValueError, ValidationError) as e:
                logger.warning(f"Ignoring unreadable fleet record for {host}: {e}")
                continue
            if member.updated_at >= cutoff:
                members.append(member)
        return members

    async def progress(self, tag: str) -> RolloutProgress:
        """Count live members running ``tag``."""
        members = await self.members()
        installed = sum(1 for m in members if m.current_version == tag)
        return RolloutProgress(tag=tag, installed=installed, total=len(members))
