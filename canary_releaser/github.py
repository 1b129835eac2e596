"""
GitHub release asset fetcher.

Resolves a release tag (or the ``latest`` sentinel) against the GitHub REST
API, picks the asset matching the configured name pattern and downloads it
into the asset directory. A file already present at the target path is
reused as is.
"""

import logging
import re
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import aiofiles  # type: ignore
import httpx

from canary_releaser.config import ReleaserConfig
from canary_releaser.errors import AssetNotFoundError, ReleaseFetchError
from canary_releaser.models import LATEST_TAG

logger = logging.getLogger(__name__)


class ReleaseFetcher(ABC):
    """Contract the coordinator uses to obtain release assets."""

    @abstractmethod
    async def download_release_asset(self, tag: str) -> Tuple[str, str]:
        """
        Make the asset of a release available locally.

        Args:
            tag: Release tag, or ``LATEST_TAG`` for the newest release

        Returns:
            Tuple of (resolved_tag, local_path)

        Raises:
            AssetNotFoundError: no release or no asset matching the pattern
            ReleaseFetchError: the release host failed
        """
        ...

    async def close(self) -> None:
        """Release network resources."""


class GitHubReleaseFetcher(ReleaseFetcher):
    """Release fetcher backed by the GitHub REST API."""

    def __init__(self, config: ReleaserConfig, client: Optional[httpx.AsyncClient] = None):
        """
        Args:
            config: Daemon configuration
            client: Preconfigured HTTP client (tests inject a mock transport)
        """
        self.owner, self.repo = config.repo.split("/")
        self.include_prereleases = config.github.include_prereleases
        self.download_path = Path(config.assets.download_path)
        self.name_pattern = config.assets.name_pattern
        self._pattern = re.compile(config.assets.name_pattern)

        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }
        if config.github.token:
            headers["Authorization"] = f"Bearer {config.github.token}"

        self._client = client or httpx.AsyncClient(
            base_url=config.github.api_url.rstrip("/"),
            headers=headers,
            timeout=config.github.request_timeout.total_seconds(),
            follow_redirects=True,
        )

    @property
    def _repo_path(self) -> str:
        return f"/repos/{self.owner}/{self.repo}"

    async def download_release_asset(self, tag: str) -> Tuple[str, str]:
        release = await self._get_release(tag)
        release_tag = str(release["tag_name"])
        logger.info(f"Resolved release {tag} to {release_tag}", extra={"tag": release_tag})

        for asset in release.get("assets", []):
            name = asset.get("name", "")
            logger.debug(f"Release {release_tag} asset {name}")
            if not self._pattern.search(name):
                continue

            file_path = self.download_path / name
            if file_path.exists():
                logger.debug(f"Reusing downloaded asset {file_path}")
                return release_tag, str(file_path)

            await self._download(asset["id"], file_path)
            return release_tag, str(file_path)

        raise AssetNotFoundError(release_tag, self.name_pattern)

    async def _get_release(self, tag: str) -> Dict[str, Any]:
        if tag != LATEST_TAG:
            release = await self._get_json(f"{self._repo_path}/releases/tags/{tag}")
            if release is None:
                raise AssetNotFoundError(tag, self.name_pattern)
            return release

        latest = await self._get_json(f"{self._repo_path}/releases/latest")
        if self.include_prereleases:
            prerelease = await self._newest_prerelease()
            if prerelease and (
                latest is None
                or prerelease.get("published_at", "") > latest.get("published_at", "")
            ):
                latest = prerelease

        if latest is None:
            raise AssetNotFoundError(tag, self.name_pattern)
        return latest

    async def _newest_prerelease(self) -> Optional[Dict[str, Any]]:
        releases: Optional[List[Dict[str, Any]]] = await self._get_json(
            f"{self._repo_path}/releases", params={"per_page": 30}
        )
        candidates = [
            r
            for r in releases or []
            if r.get("prerelease") and not r.get("draft") and r.get("published_at")
        ]
        if not candidates:
            return None
        # ISO 8601 timestamps in UTC sort lexically
        return max(candidates, key=lambda r: r["published_at"])

    async def _get_json(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """GET a JSON document; None on 404."""
        try:
            response = await self._client.get(path, params=params)
        except httpx.HTTPError as e:
            raise ReleaseFetchError(f"GET {path} failed: {e}") from e

        if response.status_code == 404:
            return None
        if response.status_code != 200:
            raise ReleaseFetchError(f"GET {path} returned {response.status_code}")
        return response.json()

    async def _download(self, asset_id: int, file_path: Path) -> None:
        """Stream an asset to disk, renaming into place when complete."""
        url = f"{self._repo_path}/releases/assets/{asset_id}"
        temp_file = file_path.with_name(file_path.name + ".part")
        file_path.parent.mkdir(parents=True, exist_ok=True)

        logger.info(f"Downloading asset {asset_id} to {file_path}")
        try:
            async with self._client.stream(
                "GET", url, headers={"Accept": "application/octet-stream"}
            ) as response:
                if response.status_code != 200:
                    raise ReleaseFetchError(f"GET {url} returned {response.status_code}")
                async with aiofiles.open(temp_file, "wb") as f:
                    async for chunk in response.aiter_bytes():
                        await f.write(chunk)
        except httpx.HTTPError as e:
            temp_file.unlink(missing_ok=True)
            raise ReleaseFetchError(f"download of asset {asset_id} failed: {e}") from e
        except ReleaseFetchError:
            temp_file.unlink(missing_ok=True)
            raise

        temp_file.replace(file_path)

    async def close(self) -> None:
        await self._client.aclose()
