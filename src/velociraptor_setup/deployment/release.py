"""
Release discovery for Velociraptor binaries.

Queries the GitHub releases API and selects the asset built for the target
operating system and architecture.
"""

import logging
import platform
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

import httpx

from ..config import DEFAULT_RELEASE_API_URL
from ..error_handling import NetworkError, NotFoundError

logger = logging.getLogger(__name__)

USER_AGENT = "velociraptor-setup"

# Asset name fragments that mark builds we never install as the service binary
EXCLUDED_VARIANTS = ("debug", "collector")


class Platform(Enum):
    """Platforms Velociraptor publishes standalone binaries for."""
    WINDOWS_AMD64 = "windows-amd64"
    LINUX_AMD64 = "linux-amd64"
    LINUX_ARM64 = "linux-arm64"
    DARWIN_AMD64 = "darwin-amd64"
    DARWIN_ARM64 = "darwin-arm64"

    @property
    def os_name(self) -> str:
        return self.value.split("-")[0]

    @property
    def asset_suffix(self) -> str:
        """Suffix an asset name must end with to match this platform."""
        if self.os_name == "windows":
            return f"-{self.value}.exe"
        return f"-{self.value}"

    @classmethod
    def parse(cls, value: str) -> "Platform":
        text = value.strip().lower().replace("_", "-")
        for member in cls:
            if member.value == text:
                return member
        valid = ", ".join(m.value for m in cls)
        raise NotFoundError(
            f"Unsupported platform: '{value}'",
            hint=f"Supported platforms: {valid}",
        )


_ARCH_MAP = {
    "x86_64": "amd64",
    "amd64": "amd64",
    "aarch64": "arm64",
    "arm64": "arm64",
}


def detect_platform() -> Platform:
    """Detect the platform of the running host.

    Raises:
        NotFoundError: If no Velociraptor build exists for this host
    """
    os_name = platform.system().lower()
    machine = platform.machine().lower()
    arch = _ARCH_MAP.get(machine)
    if arch is None:
        raise NotFoundError(
            f"Unsupported architecture: {machine}",
            hint="Pass an explicit platform such as linux-amd64",
        )
    return Platform.parse(f"{os_name}-{arch}")


@dataclass(frozen=True)
class ReleaseAsset:
    """A downloadable Velociraptor binary.

    Attributes:
        version: Release version without the leading 'v'
        download_url: Direct download URL for the asset
        size_bytes: Size advertised by the release index
        platform: Platform the binary was built for
        name: Asset file name
    """
    version: str
    download_url: str
    size_bytes: int
    platform: Platform
    name: str = ""

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "version": self.version,
            "download_url": self.download_url,
            "size_bytes": self.size_bytes,
            "platform": self.platform.value,
            "name": self.name,
        }


def select_asset(assets: list[dict[str, Any]], target: Platform) -> Optional[dict[str, Any]]:
    """Pick the asset matching the platform suffix, skipping debug/collector builds.

    Args:
        assets: The `assets` list of a GitHub release document
        target: Platform to match

    Returns:
        The matching asset entry, or None
    """
    for asset in assets:
        name = str(asset.get("name", ""))
        lowered = name.lower()
        if any(variant in lowered for variant in EXCLUDED_VARIANTS):
            continue
        if lowered.endswith(target.asset_suffix):
            return asset
    return None


class ReleaseResolver:
    """Resolve the Velociraptor release asset for a platform.

    The resolver performs a single HTTP request per call and never retries;
    retry policy belongs to the caller.
    """

    def __init__(
        self,
        api_url: str = DEFAULT_RELEASE_API_URL,
        timeout: float = 30.0,
        http_client: Optional[httpx.Client] = None,
    ):
        """Initialize the resolver.

        Args:
            api_url: Base URL of the releases API
            timeout: Request timeout in seconds
            http_client: Pre-configured client (tests inject a mock transport)
        """
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self._client = http_client

    def _release_url(self, version: Optional[str]) -> str:
        if not version or version == "latest":
            return f"{self.api_url}/latest"
        tag = version if version.startswith("v") else f"v{version}"
        return f"{self.api_url}/tags/{tag}"

    def _fetch(self, url: str, pinned: bool) -> dict[str, Any]:
        headers = {
            "Accept": "application/vnd.github+json",
            "User-Agent": USER_AGENT,
        }
        client = self._client or httpx.Client(timeout=self.timeout, follow_redirects=True)
        try:
            response = client.get(url, headers=headers)
        except httpx.HTTPError as e:
            raise NetworkError(f"Release index unreachable at {url}: {e}") from e
        finally:
            if self._client is None:
                client.close()

        if response.status_code == 404 and pinned:
            raise NotFoundError(
                f"Release not found: {url}",
                hint="Check the version number against the published Velociraptor releases",
            )
        if not response.is_success:
            raise NetworkError(
                f"Release index returned HTTP {response.status_code} for {url}"
            )

        try:
            document = response.json()
        except ValueError as e:
            raise NetworkError(f"Release index returned invalid JSON: {e}") from e

        if not isinstance(document, dict):
            raise NetworkError("Release index returned an unexpected document")
        return document

    def resolve(
        self,
        platform_hint: Optional[str] = None,
        version: Optional[str] = None,
    ) -> ReleaseAsset:
        """Resolve the release asset for a platform.

        Args:
            platform_hint: Platform override (e.g. 'windows-amd64'); defaults
                to the running host
            version: Release version to pin; defaults to the latest release

        Returns:
            The matching ReleaseAsset

        Raises:
            NetworkError: If the index is unreachable or returns an error status
            NotFoundError: If no asset matches the platform
        """
        target = Platform.parse(platform_hint) if platform_hint else detect_platform()
        url = self._release_url(version)
        logger.info("Querying %s for %s release", url, target.value)

        document = self._fetch(url, pinned=bool(version and version != "latest"))
        tag = str(document.get("tag_name", "")).strip()
        assets = document.get("assets") or []

        asset = select_asset(assets, target)
        if asset is None:
            raise NotFoundError(
                f"No {target.value} binary in release {tag or 'latest'}"
            )

        resolved = ReleaseAsset(
            version=tag[1:] if tag.startswith("v") else tag,
            download_url=asset["browser_download_url"],
            size_bytes=int(asset.get("size") or 0),
            platform=target,
            name=asset.get("name", ""),
        )
        logger.info("Resolved %s (%d bytes)", resolved.name, resolved.size_bytes)
        return resolved
