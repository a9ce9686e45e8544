"""Tests for binary download and installation."""

import json
import logging
import os

import httpx
import pytest

from velociraptor_setup.deployment import ArtifactInstaller, Platform, ReleaseAsset
from velociraptor_setup.deployment.installer import DOWNLOAD_SUFFIX
from velociraptor_setup.error_handling import DownloadError, VerificationError

from tests.mocks import BINARY_CONTENT, RELEASE_VERSION, ReleaseServer

ASSET_NAME = "velociraptor-v0.7.1-linux-amd64"


def make_asset(size_bytes=len(BINARY_CONTENT)):
    return ReleaseAsset(
        version=RELEASE_VERSION,
        download_url=f"https://downloads.example.test/{ASSET_NAME}",
        size_bytes=size_bytes,
        platform=Platform.LINUX_AMD64,
        name=ASSET_NAME,
    )


@pytest.fixture
def installer(release_server, fake_runner):
    return ArtifactInstaller(
        smoke_test=False,
        http_client=release_server.client(),
        runner=fake_runner,
    )


@pytest.fixture
def destination(tmp_path):
    return tmp_path / "opt" / "velociraptor" / "velociraptor"


@pytest.mark.unit
class TestInstall:
    """Tests for ArtifactInstaller.install."""

    def test_install_writes_binary(self, installer, destination):
        artifact = installer.install(make_asset(), destination)

        assert destination.read_bytes() == BINARY_CONTENT
        assert artifact.binary_path == str(destination)
        assert artifact.version == RELEASE_VERSION
        assert artifact.verified is True
        assert not destination.with_name(destination.name + DOWNLOAD_SUFFIX).exists()

    @pytest.mark.skipif(os.name == "nt", reason="POSIX permissions")
    def test_install_marks_executable(self, installer, destination):
        installer.install(make_asset(), destination)

        assert os.access(destination, os.X_OK)

    def test_install_writes_manifest(self, installer, destination):
        artifact = installer.install(make_asset(), destination)

        manifest = json.loads(installer.manifest_path(destination).read_text())
        assert manifest == artifact.to_dict()

    def test_install_is_idempotent(self, installer, destination, release_server):
        """A second install reuses the binary without network traffic."""
        first = installer.install(make_asset(), destination)
        requests_after_first = len(release_server.requests)

        second = installer.install(make_asset(), destination)

        assert second == first
        assert len(release_server.requests) == requests_after_first
        assert release_server.download_count == 1

    def test_force_reinstalls(self, installer, destination, release_server):
        installer.install(make_asset(), destination)

        installer.install(make_asset(), destination, force=True)

        assert release_server.download_count == 2

    def test_existing_binary_without_manifest(self, installer, destination, release_server):
        destination.parent.mkdir(parents=True)
        destination.write_bytes(b"previous build")

        artifact = installer.install(make_asset(), destination)

        assert artifact.version == "unknown"
        assert artifact.verified is False
        assert release_server.download_count == 0

    def test_progress_callback(self, release_server, destination):
        progress = []
        installer = ArtifactInstaller(
            smoke_test=False,
            http_client=release_server.client(),
            progress=lambda received, expected: progress.append((received, expected)),
        )

        installer.install(make_asset(), destination)

        assert progress[-1] == (len(BINARY_CONTENT), len(BINARY_CONTENT))


@pytest.mark.unit
class TestAtomicity:
    """A failed download never leaves a partial binary in place."""

    def test_interrupted_download(self, installer, destination, release_server):
        release_server.interrupt_downloads = True

        with pytest.raises(DownloadError, match="interrupted"):
            installer.install(make_asset(), destination)

        assert not destination.exists()
        assert not destination.with_name(destination.name + DOWNLOAD_SUFFIX).exists()

    def test_interrupted_download_keeps_previous_binary(self, installer, destination, release_server):
        destination.parent.mkdir(parents=True)
        destination.write_bytes(b"working build")
        release_server.interrupt_downloads = True

        with pytest.raises(DownloadError):
            installer.install(make_asset(), destination, force=True)

        assert destination.read_bytes() == b"working build"

    def test_http_error_status(self, destination):
        client = httpx.Client(transport=httpx.MockTransport(lambda request: httpx.Response(404)))
        installer = ArtifactInstaller(smoke_test=False, http_client=client)

        with pytest.raises(DownloadError, match="HTTP 404"):
            installer.install(make_asset(), destination)

        assert not destination.exists()


@pytest.mark.unit
class TestVerification:
    """Tests for post-download verification."""

    def test_zero_byte_download_rejected(self, destination):
        server = ReleaseServer(binary=b"")
        installer = ArtifactInstaller(smoke_test=False, http_client=server.client())

        with pytest.raises(VerificationError, match="empty"):
            installer.install(make_asset(), destination)

        assert not destination.exists()

    def test_size_within_tolerance(self, installer, destination):
        artifact = installer.install(make_asset(len(BINARY_CONTENT) + 10), destination)

        assert artifact.verified is True

    def test_size_mismatch_warns(self, installer, destination, caplog):
        """A size beyond tolerance is a warning, not a failure."""
        with caplog.at_level(logging.WARNING):
            artifact = installer.install(make_asset(len(BINARY_CONTENT) * 2), destination)

        assert artifact.verified is False
        assert destination.exists()
        assert "differs from advertised" in caplog.text

    def test_smoke_test_runs_binary(self, release_server, fake_runner, destination):
        installer = ArtifactInstaller(
            smoke_test=True,
            http_client=release_server.client(),
            runner=fake_runner,
        )

        installer.install(make_asset(), destination)

        assert fake_runner.called(str(destination), "version")

    def test_smoke_test_failure_is_not_fatal(self, release_server, fake_runner, destination, caplog):
        fake_runner.add([str(destination), "version"], returncode=1, stderr="exec format error")
        installer = ArtifactInstaller(
            smoke_test=True,
            http_client=release_server.client(),
            runner=fake_runner,
        )

        with caplog.at_level(logging.WARNING):
            artifact = installer.install(make_asset(), destination)

        assert artifact.verified is True
        assert "exec format error" in caplog.text

    def test_unexecutable_binary_is_not_fatal(self, release_server, destination, caplog):
        """The real runner hits an OS error launching a foreign binary; install still succeeds."""
        installer = ArtifactInstaller(smoke_test=True, http_client=release_server.client())

        with caplog.at_level(logging.WARNING):
            artifact = installer.install(make_asset(), destination)

        assert destination.read_bytes() == BINARY_CONTENT
        assert artifact.verified is True
        assert "exit 126" in caplog.text


@pytest.mark.unit
class TestUninstall:
    """Tests for ArtifactInstaller.uninstall."""

    def test_uninstall(self, installer, destination):
        installer.install(make_asset(), destination)

        assert installer.uninstall(destination) is True
        assert not destination.exists()
        assert not installer.manifest_path(destination).exists()

    def test_uninstall_missing(self, installer, destination):
        assert installer.uninstall(destination) is False
