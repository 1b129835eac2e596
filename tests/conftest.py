"""
Pytest configuration and fixtures for canary-releaser tests.
"""

import os
import stat
import time
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import pytest

from canary_releaser.config import ReleaserConfig
from canary_releaser.errors import AssetNotFoundError
from canary_releaser.github import ReleaseFetcher
from canary_releaser.state import RedisState


class FakeRedis:
    """
    In-memory stand-in for the redis.asyncio client.

    Implements only the commands the daemon issues, with real NX and
    expiry semantics driven by an adjustable clock.
    """

    def __init__(self) -> None:
        self.data: Dict[str, Any] = {}
        self.expiry: Dict[str, float] = {}
        self.now = time.time()
        self.closed = False
        self.calls: List[Tuple[str, tuple, dict]] = []

    def advance(self, seconds: float) -> None:
        self.now += seconds

    def _expire(self, key: str) -> None:
        deadline = self.expiry.get(key)
        if deadline is not None and self.now >= deadline:
            self.data.pop(key, None)
            self.expiry.pop(key, None)

    def ttl_ms(self, key: str) -> Optional[float]:
        self._expire(key)
        deadline = self.expiry.get(key)
        return None if deadline is None else (deadline - self.now) * 1000

    async def ping(self) -> bool:
        return True

    async def set(self, key: str, value: str, nx: bool = False, px: Optional[int] = None):
        self.calls.append(("set", (key, value), {"nx": nx, "px": px}))
        self._expire(key)
        if nx and key in self.data:
            return None
        self.data[key] = value
        if px is not None:
            self.expiry[key] = self.now + px / 1000
        else:
            self.expiry.pop(key, None)
        return True

    async def get(self, key: str) -> Optional[str]:
        self._expire(key)
        value = self.data.get(key)
        return value if isinstance(value, str) else None

    async def delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            self._expire(key)
            if self.data.pop(key, None) is not None:
                removed += 1
            self.expiry.pop(key, None)
        return removed

    async def sadd(self, key: str, *members: str) -> int:
        bucket = self.data.setdefault(key, set())
        before = len(bucket)
        bucket.update(members)
        return len(bucket) - before

    async def sismember(self, key: str, member: str) -> int:
        return int(member in self.data.get(key, set()))

    async def hset(self, key: str, field: str, value: str) -> int:
        bucket = self.data.setdefault(key, {})
        created = field not in bucket
        bucket[field] = value
        return int(created)

    async def hgetall(self, key: str) -> Dict[str, str]:
        return dict(self.data.get(key, {}))

    async def aclose(self) -> None:
        self.closed = True


class FakeFetcher(ReleaseFetcher):
    """Release fetcher serving a fixed set of releases."""

    def __init__(self, latest: Optional[str] = None, assets_dir: str = "/tmp/assets"):
        self.latest = latest
        self.assets_dir = assets_dir
        self.missing: set = set()
        self.calls: List[str] = []
        self.closed = False

    async def download_release_asset(self, tag: str) -> Tuple[str, str]:
        self.calls.append(tag)
        resolved = self.latest if tag == "latest" else tag
        if resolved is None or resolved in self.missing:
            raise AssetNotFoundError(resolved or tag, r"\.tar\.gz$")
        return resolved, f"{self.assets_dir}/app-{resolved}.tar.gz"

    async def close(self) -> None:
        self.closed = True


def make_config(tmp_path: Path, **overrides: Any) -> ReleaserConfig:
    """Build a valid config rooted in ``tmp_path``."""
    data: Dict[str, Any] = {
        "repo": "acme/widget",
        "assets": {"download_path": str(tmp_path / "assets"), "name_pattern": r"\.tar\.gz$"},
        "commands": {
            "deploy": "/opt/deploy.sh",
            "rollback": "/opt/rollback.sh",
            "healthcheck": "/opt/healthcheck.sh",
        },
        "healthcheck": {"retries": 3, "interval": "1s", "timeout": "1s"},
        "canary_window": "10s",
        "rollout_window": "1m",
        "polling_interval": "1m",
        "state_file_path": str(tmp_path / "state" / "state.json"),
    }
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(data.get(key), dict):
            data[key] = {**data[key], **value}
        else:
            data[key] = value
    return ReleaserConfig.model_validate(data)


def write_script(path: Path, body: str) -> Path:
    """Write an executable shell script."""
    path.write_text("#!/bin/sh\n" + body + "\n")
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


@pytest.fixture
def config(tmp_path):
    """Default test configuration."""
    return make_config(tmp_path)


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def state(config, fake_redis):
    """RedisState over the in-memory client."""
    return RedisState(config, client=fake_redis)


@pytest.fixture
def fetcher(tmp_path):
    return FakeFetcher(assets_dir=str(tmp_path / "assets"))


@pytest.fixture
def ttl():
    return timedelta(minutes=1)


@pytest.fixture
def clean_env(monkeypatch):
    """Remove CANARY_RELEASER_* variables from the environment."""
    for key in list(os.environ):
        if key.startswith("CANARY_RELEASER_"):
            monkeypatch.delenv(key)
