"""
Binary installation for Velociraptor.

Downloads a resolved release asset to a sibling temporary file, verifies it,
and atomically moves it into place. A previously working binary is never
overwritten by a partial download.
"""

import json
import logging
import os
import stat
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Optional

import httpx

from ..error_handling import DownloadError, FilesystemError, VerificationError
from ..system import CommandRunner, run_command
from .release import ReleaseAsset, USER_AGENT

logger = logging.getLogger(__name__)

DOWNLOAD_SUFFIX = ".download"
MANIFEST_SUFFIX = ".install.json"
CHUNK_SIZE = 64 * 1024
SMOKE_TEST_TIMEOUT = 30


@dataclass
class InstalledArtifact:
    """An installed Velociraptor binary.

    Attributes:
        binary_path: Absolute path of the installed binary
        version: Release version
        installed_at: ISO-8601 installation timestamp
        verified: Whether size verification passed without warnings
    """
    binary_path: str
    version: str
    installed_at: str
    verified: bool

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return asdict(self)


class ArtifactInstaller:
    """Download, verify and install Velociraptor binaries."""

    def __init__(
        self,
        size_tolerance: float = 0.05,
        timeout: float = 30.0,
        smoke_test: bool = True,
        http_client: Optional[httpx.Client] = None,
        runner: CommandRunner = run_command,
        progress: Optional[Callable[[int, int], None]] = None,
    ):
        """Initialize the installer.

        Args:
            size_tolerance: Relative size difference tolerated without a warning
            timeout: Download timeout in seconds
            smoke_test: Run `<binary> version` after installation
            http_client: Pre-configured HTTP client (tests inject a mock transport)
            runner: Command runner used for the smoke test
            progress: Callback receiving (bytes_received, bytes_expected)
        """
        self.size_tolerance = size_tolerance
        self.timeout = timeout
        self.smoke_test = smoke_test
        self._client = http_client
        self._runner = runner
        self._progress = progress

    @staticmethod
    def manifest_path(binary_path: Path) -> Path:
        return binary_path.with_name(binary_path.name + MANIFEST_SUFFIX)

    def load_installed(self, destination_path: Path) -> Optional[InstalledArtifact]:
        """Return the artifact already present at destination_path, if any."""
        destination_path = Path(destination_path)
        if not destination_path.is_file() or destination_path.stat().st_size == 0:
            return None

        manifest = self.manifest_path(destination_path)
        if manifest.exists():
            try:
                data = json.loads(manifest.read_text())
                return InstalledArtifact(**data)
            except (ValueError, TypeError) as e:
                logger.warning("Ignoring unreadable install manifest %s: %s", manifest, e)

        mtime = datetime.fromtimestamp(destination_path.stat().st_mtime, timezone.utc)
        return InstalledArtifact(
            binary_path=str(destination_path),
            version="unknown",
            installed_at=mtime.isoformat(),
            verified=False,
        )

    def install(
        self,
        asset: ReleaseAsset,
        destination_path: Path,
        force: bool = False,
    ) -> InstalledArtifact:
        """Install a release asset at destination_path.

        Args:
            asset: The resolved release asset
            destination_path: Final path of the binary
            force: Replace an existing binary

        Returns:
            The installed (or already present) artifact

        Raises:
            DownloadError: If the transfer fails or is truncated
            VerificationError: If the downloaded file is empty
            FilesystemError: If the destination cannot be written
        """
        destination_path = Path(destination_path)

        if not force:
            existing = self.load_installed(destination_path)
            if existing is not None:
                logger.info("Using existing Velociraptor binary at %s", destination_path)
                return existing

        try:
            destination_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise FilesystemError(
                f"Cannot create install directory {destination_path.parent}: {e}"
            ) from e

        temp_path = destination_path.with_name(destination_path.name + DOWNLOAD_SUFFIX)
        try:
            self._download(asset, temp_path)
            verified = self._verify(asset, temp_path)
            self._make_executable(temp_path)
            try:
                os.replace(temp_path, destination_path)
            except OSError as e:
                raise FilesystemError(
                    f"Cannot move binary into place at {destination_path}: {e}",
                    hint="Stop any running Velociraptor service holding the file, "
                         "and check write permissions",
                ) from e
        finally:
            # os.replace consumed the temp file on success
            if temp_path.exists():
                temp_path.unlink()

        artifact = InstalledArtifact(
            binary_path=str(destination_path),
            version=asset.version,
            installed_at=datetime.now(timezone.utc).isoformat(),
            verified=verified,
        )
        self.manifest_path(destination_path).write_text(json.dumps(artifact.to_dict(), indent=2))
        logger.info("Velociraptor %s installed to %s", asset.version, destination_path)

        if self.smoke_test:
            self._smoke_test(destination_path)

        return artifact

    def _download(self, asset: ReleaseAsset, temp_path: Path) -> None:
        logger.info("Downloading %s", asset.download_url)
        client = self._client or httpx.Client(timeout=self.timeout, follow_redirects=True)
        received = 0
        try:
            with client.stream("GET", asset.download_url, headers={"User-Agent": USER_AGENT}) as response:
                if not response.is_success:
                    raise DownloadError(
                        f"Download of {asset.download_url} returned HTTP {response.status_code}"
                    )
                expected = int(response.headers.get("Content-Length") or 0)
                with open(temp_path, "wb") as f:
                    for chunk in response.iter_bytes(CHUNK_SIZE):
                        f.write(chunk)
                        received += len(chunk)
                        if self._progress:
                            self._progress(received, expected or asset.size_bytes)
        except httpx.HTTPError as e:
            raise DownloadError(
                f"Download of {asset.download_url} interrupted after {received} bytes: {e}"
            ) from e
        except OSError as e:
            raise FilesystemError(f"Cannot write download to {temp_path}: {e}") from e
        finally:
            if self._client is None:
                client.close()

        if expected and received < expected:
            raise DownloadError(
                f"Download truncated: received {received} of {expected} bytes"
            )

    def _verify(self, asset: ReleaseAsset, temp_path: Path) -> bool:
        """Verify the downloaded file; returns False when only a warning applies."""
        if not temp_path.is_file():
            raise VerificationError(f"Downloaded file missing: {temp_path}")

        size = temp_path.stat().st_size
        if size == 0:
            raise VerificationError(f"Downloaded file {temp_path.name} is empty")

        if asset.size_bytes:
            deviation = abs(size - asset.size_bytes) / asset.size_bytes
            if deviation > self.size_tolerance:
                logger.warning(
                    "Downloaded size %d differs from advertised %d by %.1f%%; continuing",
                    size,
                    asset.size_bytes,
                    deviation * 100,
                )
                return False
        return True

    @staticmethod
    def _make_executable(path: Path) -> None:
        if os.name == "nt":
            return
        mode = path.stat().st_mode
        path.chmod(mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)

    def _smoke_test(self, binary_path: Path) -> bool:
        result = self._runner([str(binary_path), "version"], timeout=SMOKE_TEST_TIMEOUT)
        if result.returncode != 0:
            logger.warning(
                "Smoke test `%s version` failed (exit %d): %s",
                binary_path,
                result.returncode,
                (result.stderr or "").strip()[:200],
            )
            return False
        logger.info("Smoke test passed: %s", (result.stdout or "").strip().splitlines()[:1])
        return True

    def uninstall(self, destination_path: Path) -> bool:
        """Remove an installed binary and its manifest.

        Returns:
            True if a binary was removed, False if none was present
        """
        destination_path = Path(destination_path)
        self.manifest_path(destination_path).unlink(missing_ok=True)
        temp_path = destination_path.with_name(destination_path.name + DOWNLOAD_SUFFIX)
        temp_path.unlink(missing_ok=True)
        if not destination_path.exists():
            return False
        try:
            destination_path.unlink()
        except OSError as e:
            raise FilesystemError(f"Cannot remove {destination_path}: {e}") from e
        return True
