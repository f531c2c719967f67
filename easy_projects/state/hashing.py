"""Content addressing for blobs and drift detection."""
from __future__ import annotations

import hashlib
from typing import Sequence

KEY_LENGTH = 12


def fingerprint(content: bytes) -> str:
    """
    Digest arbitrary bytes for drift detection.

    Args:
        content: Raw file content

    Returns:
        64-character lowercase SHA-256 hexadecimal string
    """
    return hashlib.sha256(content).hexdigest()


def path_key(relative_path: str) -> str:
    """
    Hash a project-relative path to a 12-character blob name.

    The key depends only on the path, so every save of the same file reuses
    (and overwrites) the same diff blob.

    Args:
        relative_path: Path relative to the project root

    Returns:
        12-character lowercase hexadecimal string
    """
    return hashlib.sha256(relative_path.encode("utf-8")).hexdigest()[:KEY_LENGTH]


def content_key(lines: Sequence[str]) -> str:
    """Return the 12-character key of a scratch document's joined lines."""
    joined = "\n".join(lines).encode("utf-8", errors="surrogateescape")
    return fingerprint(joined)[:KEY_LENGTH]
