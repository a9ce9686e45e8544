"""Mock implementations for velociraptor-setup tests.

Provides mock objects for:
- The GitHub releases API and binary downloads (httpx.MockTransport)
- OS service managers (in-memory backend)
- Firewall mechanisms
- Command execution (recording runner)
"""

from .fakes import (
    ADMIN_PASSWORD,
    FakeFirewallMechanism,
    FakeRunner,
    FakeServiceBackend,
    make_service_manager,
)
from .release_index import (
    API_URL,
    BINARY_CONTENT,
    RELEASE_TAG,
    RELEASE_VERSION,
    InterruptedStream,
    ReleaseServer,
    asset_entry,
    release_document,
)

__all__ = [
    "ADMIN_PASSWORD",
    "FakeFirewallMechanism",
    "FakeRunner",
    "FakeServiceBackend",
    "make_service_manager",
    "API_URL",
    "BINARY_CONTENT",
    "RELEASE_TAG",
    "RELEASE_VERSION",
    "InterruptedStream",
    "ReleaseServer",
    "asset_entry",
    "release_document",
]
