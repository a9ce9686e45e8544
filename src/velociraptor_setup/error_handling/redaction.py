"""
Secret redaction for messages that leave the pipeline.
"""

from typing import Iterable, Optional

REDACTED = "***"


def redact(text: Optional[str], secrets: Iterable[Optional[str]]) -> Optional[str]:
    """Replace every occurrence of each secret in text.

    Args:
        text: Message that may contain secret material
        secrets: Literal secret values; empty values are ignored

    Returns:
        The text with secrets replaced by ***
    """
    if not text:
        return text

    for secret in secrets:
        if secret:
            text = text.replace(secret, REDACTED)
    return text
