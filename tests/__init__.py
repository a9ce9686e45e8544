"""Tests for velociraptor-setup.

Test Structure:
    tests/
    ├── conftest.py          # Shared pytest fixtures
    ├── unit/                # Unit tests (no host services, no network)
    │   ├── test_release.py
    │   ├── test_installer.py
    │   ├── test_config_generator.py
    │   ├── test_service_manager.py
    │   ├── test_firewall.py
    │   ├── test_driver.py
    │   └── ...
    └── mocks/               # Fakes for the host-facing seams
        ├── fakes.py         # Command runner, service backend, firewall
        └── release_index.py # GitHub releases API via httpx.MockTransport

Usage:
    # Run all tests
    pytest

    # Run only unit tests
    pytest -m unit

    # Run with verbose output
    pytest -v
"""
