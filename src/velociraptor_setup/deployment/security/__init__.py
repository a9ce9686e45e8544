"""
Security components for deployment infrastructure.

Provides certificate issuance and administrator password handling.
"""

from .certificate_manager import CertificateManager, CertificateBundle
from .passwords import hash_password

__all__ = [
    "CertificateManager",
    "CertificateBundle",
    "hash_password",
]
