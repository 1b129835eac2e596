"""
Fleet-wide shared state.

All hosts coordinating the same repository share one key-value store:

- ``<prefix>_stable_release_tag``  last canary-validated tag
- ``<prefix>_avoid_release_tag``   set of tags that failed validation
- ``<prefix>_canary_release_tag``  canary lock, value = holder tag, TTL-bound
- ``<prefix>_rollout``             rollout lock, value = holder tag, TTL-bound

Connectivity failures are never retried here; they surface as
``StoreUnavailableError`` and end the process.
"""

import logging
from abc import ABC, abstractmethod
from datetime import timedelta
from functools import wraps
from typing import Any, Awaitable, Callable, Optional, TypeVar

import redis.asyncio as aioredis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError
from redis.exceptions import TimeoutError as RedisTimeoutError

from canary_releaser.config import ReleaserConfig
from canary_releaser.errors import StoreUnavailableError
from canary_releaser.models import LockName

logger = logging.getLogger(__name__)

T = TypeVar("T")


class DistributedState(ABC):
    """Shared lock and tag bookkeeping contract."""

    @abstractmethod
    async def try_acquire_lock(self, lock: LockName, holder_tag: str, ttl: timedelta) -> bool:
        """
        Create the lock only if absent, with an expiry.

        Returns True only to the caller that created it. Concurrent callers
        across hosts get at most one True.
        """
        ...

    @abstractmethod
    async def release_lock(self, lock: LockName) -> None:
        """Delete the lock early. Deleting an absent lock is not an error."""
        ...

    @abstractmethod
    async def get_stable_tag(self) -> str:
        """Return the stable tag, or an empty string when none is set."""
        ...

    @abstractmethod
    async def set_stable_tag(self, tag: str) -> None:
        ...

    @abstractmethod
    async def is_avoided(self, tag: str) -> bool:
        ...

    @abstractmethod
    async def add_to_avoid_set(self, tag: str) -> None:
        ...

    async def close(self) -> None:
        """Release connections."""


def store_call(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
    """Translate redis connectivity errors into StoreUnavailableError."""

    @wraps(func)
    async def wrapper(*args: Any, **kwargs: Any) -> T:
        try:
            return await func(*args, **kwargs)
        except (RedisConnectionError, RedisTimeoutError) as e:
            raise StoreUnavailableError(f"redis unavailable during {func.__name__}: {e}") from e
        except RedisError as e:
            raise StoreUnavailableError(f"redis error during {func.__name__}: {e}") from e

    return wrapper


class RedisState(DistributedState):
    """DistributedState backed by Redis."""

    def __init__(self, config: ReleaserConfig, client: Optional[aioredis.Redis] = None):
        """
        Args:
            config: Daemon configuration (redis section and key prefix)
            client: Existing redis client, mainly for tests
        """
        self.prefix = config.key_prefix
        self.stable_key = self.key("stable_release_tag")
        self.avoid_key = self.key("avoid_release_tag")

        self._client = client or aioredis.Redis(
            host=config.redis.host,
            port=config.redis.port,
            password=config.redis.password or None,
            db=config.redis.db,
            decode_responses=True,
        )

    def key(self, name: str) -> str:
        """Namespace a key under the configured prefix."""
        return f"{self.prefix}_{name}"

    def lock_key(self, lock: LockName) -> str:
        return self.key(lock.value)

    @property
    def client(self) -> aioredis.Redis:
        return self._client

    @store_call
    async def connect(self) -> None:
        """Verify the store is reachable."""
        await self._client.ping()
        logger.info(f"Connected to distributed store, key prefix {self.prefix}")

    @store_call
    async def try_acquire_lock(self, lock: LockName, holder_tag: str, ttl: timedelta) -> bool:
        # SET NX PX creates the key and its expiry in one step
        acquired = await self._client.set(
            self.lock_key(lock),
            holder_tag,
            nx=True,
            px=max(1, int(ttl.total_seconds() * 1000)),
        )
        return bool(acquired)

    @store_call
    async def release_lock(self, lock: LockName) -> None:
        await self._client.delete(self.lock_key(lock))

    @store_call
    async def lock_holder(self, lock: LockName) -> Optional[str]:
        """Return the tag holding a lock, or None when the lock is free."""
        return await self._client.get(self.lock_key(lock))

    @store_call
    async def get_stable_tag(self) -> str:
        value = await self._client.get(self.stable_key)
        return value or ""

    @store_call
    async def set_stable_tag(self, tag: str) -> None:
        await self._client.set(self.stable_key, tag)

    @store_call
    async def is_avoided(self, tag: str) -> bool:
        return bool(await self._client.sismember(self.avoid_key, tag))

    @store_call
    async def add_to_avoid_set(self, tag: str) -> None:
        await self._client.sadd(self.avoid_key, tag)

    async def close(self) -> None:
        await self._client.aclose()
