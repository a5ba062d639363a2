"""Checksum-addressed storage for uploaded files."""

import hashlib
import re
from pathlib import Path

from docintake.core.logging import get_logger

logger = get_logger(__name__)

_UNSAFE_CHARS_RE = re.compile(r"[^A-Za-z0-9._-]+")


def compute_checksum(file_bytes: bytes) -> str:
    """Compute SHA256 checksum for deduplication.

    Args:
        file_bytes: Raw file content

    Returns:
        Hex-encoded SHA256 hash
    """
    return hashlib.sha256(file_bytes).hexdigest()


def _safe_suffix(file_name: str) -> str:
    suffix = Path(file_name).suffix.lower()
    return _UNSAFE_CHARS_RE.sub("", suffix)[:10]


class FileStore:
    """Stores each upload once, under its checksum.

    The checksum is the file reference recorded on documents, so storing
    identical bytes twice returns the same reference.
    """

    def __init__(self, root: str | Path):
        self.root = Path(root)

    def _path(self, file_ref: str, file_name: str = "") -> Path:
        return self.root / file_ref[:2] / f"{file_ref}{_safe_suffix(file_name)}"

    def save(self, file_name: str, file_bytes: bytes) -> str:
        """Write the file if new and return its reference."""
        file_ref = compute_checksum(file_bytes)
        path = self._path(file_ref, file_name)
        if not path.exists():
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(file_bytes)
            logger.info(f"Stored upload {file_name} as {file_ref[:12]} ({len(file_bytes)} bytes)")
        return file_ref
