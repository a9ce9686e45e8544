"""Tests for runtime settings."""

import pytest
import yaml

from velociraptor_setup.config import (
    DEFAULT_RELEASE_API_URL,
    SetupSettings,
    load_settings,
)


@pytest.mark.unit
class TestSetupSettings:
    """Tests for SetupSettings class."""

    def test_defaults(self):
        """Defaults point at GitHub and disable retries."""
        settings = SetupSettings()

        assert settings.release_api_url == DEFAULT_RELEASE_API_URL
        assert settings.size_tolerance == 0.05
        assert settings.network_attempts == 1
        assert settings.smoke_test is True

    def test_from_config_file(self, tmp_path):
        """Test loading settings from a YAML file."""
        config_file = tmp_path / "settings.yaml"
        with open(config_file, "w") as f:
            yaml.dump({
                "release_api_url": "https://mirror.example.com/releases",
                "network_attempts": 3,
                "smoke_test": False,
            }, f)

        settings = SetupSettings.from_config_file(str(config_file))

        assert settings.release_api_url == "https://mirror.example.com/releases"
        assert settings.network_attempts == 3
        assert settings.smoke_test is False

    def test_from_config_file_not_found(self):
        """Test error when settings file doesn't exist."""
        with pytest.raises(FileNotFoundError):
            SetupSettings.from_config_file("/nonexistent/settings.yaml")

    def test_from_config_file_not_a_mapping(self, tmp_path):
        config_file = tmp_path / "settings.yaml"
        config_file.write_text("- a\n- b\n")

        with pytest.raises(ValueError, match="mapping"):
            SetupSettings.from_config_file(str(config_file))

    def test_unknown_setting_rejected(self):
        """Unknown keys are reported with the valid alternatives."""
        with pytest.raises(ValueError) as exc_info:
            SetupSettings.from_dict({"retries": 3})

        assert "retries" in str(exc_info.value)
        assert "network_attempts" in str(exc_info.value)

    def test_from_env(self, monkeypatch):
        """Test loading settings from environment variables."""
        monkeypatch.setenv("VELOCIRAPTOR_SETUP_RELEASE_API_URL", "https://mirror.example.com/releases")
        monkeypatch.setenv("VELOCIRAPTOR_SETUP_NETWORK_ATTEMPTS", "4")
        monkeypatch.setenv("VELOCIRAPTOR_SETUP_SIZE_TOLERANCE", "0.1")
        monkeypatch.setenv("VELOCIRAPTOR_SETUP_SMOKE_TEST", "false")

        settings = SetupSettings.from_env()

        assert settings.release_api_url == "https://mirror.example.com/releases"
        assert settings.network_attempts == 4
        assert settings.size_tolerance == 0.1
        assert settings.smoke_test is False

    @pytest.mark.parametrize("field,value,message", [
        ("release_api_url", "", "Release API URL is required"),
        ("http_timeout", 0, "http_timeout"),
        ("size_tolerance", 1.5, "size_tolerance"),
        ("readiness_attempts", 0, "readiness_attempts"),
        ("readiness_interval", -1, "readiness_interval"),
        ("network_attempts", 0, "network_attempts"),
    ])
    def test_validate_rejects_out_of_range(self, field, value, message):
        settings = SetupSettings(**{field: value})

        with pytest.raises(ValueError, match=message):
            settings.validate()

    def test_validate_success(self):
        """Test validation passes with defaults."""
        # Should not raise
        SetupSettings().validate()


@pytest.mark.unit
class TestLoadSettings:
    """Tests for load_settings function."""

    def test_load_from_explicit_path(self, tmp_path):
        config_file = tmp_path / "settings.yaml"
        config_file.write_text("readiness_attempts: 5\n")

        settings = load_settings(str(config_file))

        assert settings.readiness_attempts == 5

    def test_load_from_config_env_var(self, tmp_path, monkeypatch):
        """VELOCIRAPTOR_SETUP_CONFIG takes priority over individual variables."""
        config_file = tmp_path / "settings.yaml"
        config_file.write_text("readiness_attempts: 7\n")
        monkeypatch.setenv("VELOCIRAPTOR_SETUP_CONFIG", str(config_file))
        monkeypatch.setenv("VELOCIRAPTOR_SETUP_READINESS_ATTEMPTS", "2")

        settings = load_settings()

        assert settings.readiness_attempts == 7

    def test_load_from_env(self, monkeypatch):
        monkeypatch.setenv("VELOCIRAPTOR_SETUP_HTTP_TIMEOUT", "12.5")

        settings = load_settings()

        assert settings.http_timeout == 12.5

    def test_load_validates(self, monkeypatch):
        monkeypatch.setenv("VELOCIRAPTOR_SETUP_NETWORK_ATTEMPTS", "0")

        with pytest.raises(ValueError, match="network_attempts"):
            load_settings()
