"""
Unit tests for error handling utilities.

Tests validators, the exception taxonomy, and secret redaction.
"""

from pathlib import Path

import pytest

from velociraptor_setup.error_handling import (
    DownloadError,
    FirewallWarning,
    NetworkError,
    PrivilegeError,
    SetupError,
    ValidationError,
    REDACTED,
    is_absolute_path,
    is_valid_hostname,
    redact,
    validate_absolute_path,
    validate_bind_address,
    validate_distinct_ports,
    validate_non_empty,
    validate_port,
    validate_service_name,
)


# ==================== Validator Tests ====================


@pytest.mark.unit
@pytest.mark.parametrize("port", [1, 8000, 65535])
def test_validate_port_valid(port):
    """Ports inside 1-65535 pass validation."""
    assert validate_port("bind_port", port) == port


@pytest.mark.unit
@pytest.mark.parametrize("port", [0, 65536, -1])
def test_validate_port_out_of_range(port):
    """Ports outside 1-65535 raise ValidationError naming the field."""
    with pytest.raises(ValidationError) as exc_info:
        validate_port("gui_bind_port", port)
    assert exc_info.value.field == "gui_bind_port"
    assert "between 1 and 65535" in str(exc_info.value)


@pytest.mark.unit
@pytest.mark.parametrize("port", ["8000", 8000.0, True])
def test_validate_port_not_an_integer(port):
    with pytest.raises(ValidationError) as exc_info:
        validate_port("bind_port", port)
    assert "must be an integer" in str(exc_info.value)


@pytest.mark.unit
def test_validate_distinct_ports():
    """Equal frontend and GUI ports are rejected with a hint."""
    validate_distinct_ports(8000, 8889)

    with pytest.raises(ValidationError) as exc_info:
        validate_distinct_ports(8000, 8000)
    assert exc_info.value.field == "gui_bind_port"
    assert "8889" in exc_info.value.hint


@pytest.mark.unit
@pytest.mark.parametrize("address", ["0.0.0.0", "127.0.0.1", "::", "fe80::1", "vr.example.com"])
def test_validate_bind_address_valid(address):
    assert validate_bind_address("bind_address", address) == address


@pytest.mark.unit
@pytest.mark.parametrize("address", ["", "   ", "bad address", "-leading.example.com"])
def test_validate_bind_address_invalid(address):
    with pytest.raises(ValidationError):
        validate_bind_address("bind_address", address)


@pytest.mark.unit
def test_is_valid_hostname():
    assert is_valid_hostname("vr.example.com")
    assert is_valid_hostname("localhost")
    assert not is_valid_hostname("")
    assert not is_valid_hostname("under_score.example.com")
    assert not is_valid_hostname("a" * 64 + ".example.com")


@pytest.mark.unit
@pytest.mark.parametrize("path,expected", [
    ("/opt/velociraptor", True),
    ("C:\\Program Files\\Velociraptor", True),
    ("relative/dir", False),
    ("velociraptor", False),
])
def test_is_absolute_path(path, expected):
    """Both POSIX and Windows absolute forms are accepted on any host."""
    assert is_absolute_path(path) is expected


@pytest.mark.unit
def test_validate_absolute_path():
    assert validate_absolute_path("install_directory", "/opt/vr") == Path("/opt/vr")

    with pytest.raises(ValidationError) as exc_info:
        validate_absolute_path("install_directory", "opt/vr")
    assert "absolute path" in str(exc_info.value)

    with pytest.raises(ValidationError) as exc_info:
        validate_absolute_path("data_directory", None)
    assert exc_info.value.field == "data_directory"


@pytest.mark.unit
def test_validate_non_empty():
    assert validate_non_empty("organization_name", "Acme") == "Acme"
    with pytest.raises(ValidationError):
        validate_non_empty("organization_name", "  ")


@pytest.mark.unit
@pytest.mark.parametrize("name", ["Velociraptor", "velociraptor-server", "vr_2.test"])
def test_validate_service_name_valid(name):
    assert validate_service_name(name) == name


@pytest.mark.unit
@pytest.mark.parametrize("name", ["", "Velo Raptor", "-leading", "a/b"])
def test_validate_service_name_invalid(name):
    with pytest.raises(ValidationError) as exc_info:
        validate_service_name(name)
    assert exc_info.value.field == "service_name"


# ==================== Error Taxonomy Tests ====================


@pytest.mark.unit
def test_setup_error_describe_includes_hint():
    error = SetupError("Something broke", hint="Try again")
    assert error.describe() == "Something broke. Hint: Try again"
    assert str(error) == "Something broke"


@pytest.mark.unit
@pytest.mark.parametrize("error_class,step", [
    (NetworkError, "resolve"),
    (DownloadError, "install"),
    (PrivilegeError, "register_start"),
    (FirewallWarning, "open_ports"),
])
def test_errors_default_to_their_pipeline_step(error_class, step):
    """Each error carries the step it belongs to and a default hint."""
    error = error_class("failure")
    assert error.step == step
    assert error.hint


@pytest.mark.unit
def test_error_step_override():
    error = SetupError("failure", step="generate")
    assert error.to_dict()["step"] == "generate"


@pytest.mark.unit
def test_validation_error_to_dict():
    error = ValidationError("bind_port", "bad port", hint="use 8000")
    info = error.to_dict()

    assert info == {
        "type": "ValidationError",
        "step": "generate",
        "error": "bad port",
        "hint": "use 8000",
        "field": "bind_port",
    }


# ==================== Redaction Tests ====================


@pytest.mark.unit
def test_redact_replaces_every_occurrence():
    text = "user admin password hunter2; retry with hunter2"
    assert redact(text, ["hunter2"]) == f"user admin password {REDACTED}; retry with {REDACTED}"


@pytest.mark.unit
def test_redact_ignores_empty_secrets():
    assert redact("nothing secret", [None, ""]) == "nothing secret"
    assert redact(None, ["hunter2"]) is None
