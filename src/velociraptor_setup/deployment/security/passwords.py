"""
Password hashing for the initial GUI administrator.
"""

import hashlib
import secrets


def hash_password(password: str, salt: bytes = None) -> tuple[str, str]:
    """Hash a password the way Velociraptor stores GUI users.

    Velociraptor verifies sha256(salt + password) for basic-auth users.

    Args:
        password: Plaintext password
        salt: Salt bytes; a fresh 32-byte salt is drawn when omitted

    Returns:
        Tuple of (hex hash, hex salt)
    """
    salt = salt if salt is not None else secrets.token_bytes(32)
    digest = hashlib.sha256(salt + password.encode()).hexdigest()
    return digest, salt.hex()
