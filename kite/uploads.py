"""UploadSpace — local file storage behind the UPL upload handshake."""

from __future__ import annotations

import logging
import re
from datetime import UTC, datetime
from typing import TYPE_CHECKING
from urllib.parse import quote

from kite.config import settings

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)

MAX_FILE_SIZE = 50 * 1024 * 1024  # 50 MB per file
MAX_TOTAL_SIZE = 2 * 1024 * 1024 * 1024  # 2 GB total
DEFAULT_CLEANUP_HOURS = 24 * 30

_SAFE_FILENAME_RE = re.compile(r"[^a-zA-Z0-9._\-]")


class UploadSpace:
    """Sandboxed directory holding files uploaded by WebSocket clients.

    Singleton accessed via ``UploadSpace.get()``.  Pass an explicit *root*
    and *base_url* for test isolation.
    """

    _instance: UploadSpace | None = None

    def __init__(self, root: Path | None = None, base_url: str | None = None) -> None:
        self._root = (root or settings.upload_dir).resolve()
        self._root.mkdir(parents=True, exist_ok=True)
        self._base_url = (base_url if base_url is not None else settings.public_base_url).rstrip("/")

    @classmethod
    def get(cls) -> UploadSpace:
        """Return the shared UploadSpace instance."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @classmethod
    def _reset(cls) -> None:
        """Clear the singleton (for tests)."""
        cls._instance = None

    @property
    def enabled(self) -> bool:
        return bool(self._base_url)

    # -- Path helpers ----------------------------------------------------------

    @staticmethod
    def sanitize_filename(name: str) -> str:
        """Replace unsafe characters, strip leading dots, truncate to 255 chars.

        Raises ``ValueError`` if the result is empty.
        """
        sanitized = _SAFE_FILENAME_RE.sub("_", name)
        sanitized = sanitized.lstrip(".")
        sanitized = sanitized[:255]
        if not sanitized:
            msg = f"Filename is empty after sanitization: {name!r}"
            raise ValueError(msg)
        return sanitized

    def key_for(self, channel_name: str, member_id: str, message_id: str, file_name: str) -> str:
        """Storage key of a file uploaded by a member for a message."""
        parts = (channel_name, member_id, message_id, file_name)
        return "/".join(self.sanitize_filename(p) for p in parts)

    def uri_for(self, key: str) -> str:
        """Public uri where *key* is served (and accepted via PUT)."""
        return f"{self._base_url}/files/{quote(key)}"

    def resolve(self, name: str) -> Path:
        """Resolve a relative key to an absolute path inside the upload root.

        Verifies the resolved path is inside the root (prevents directory
        traversal).
        """
        parts = [self.sanitize_filename(p) for p in name.split("/") if p]
        if not parts:
            msg = f"Path resolves to empty after sanitization: {name!r}"
            raise ValueError(msg)
        target = self._root.joinpath(*parts).resolve()
        if not target.is_relative_to(self._root):
            msg = f"Path traversal detected: {name!r}"
            raise ValueError(msg)
        return target

    # -- File operations -------------------------------------------------------

    def write(self, name: str, data: bytes) -> Path:
        """Store *data* under *name*, enforcing per-file and total size limits."""
        if len(data) > MAX_FILE_SIZE:
            msg = f"File too large: {len(data)} bytes (max {MAX_FILE_SIZE})"
            raise ValueError(msg)
        target = self.resolve(name)
        existing_size = target.stat().st_size if target.exists() else 0
        new_total = self.total_size() - existing_size + len(data)
        if new_total > MAX_TOTAL_SIZE:
            msg = f"Upload quota exceeded: {new_total} bytes (max {MAX_TOTAL_SIZE})"
            raise ValueError(msg)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)
        logger.info("Stored upload %s (%d bytes)", name, len(data))
        return target

    def total_size(self) -> int:
        """Sum of all stored file sizes."""
        return sum(p.stat().st_size for p in self._root.rglob("*") if p.is_file())

    def cleanup(self, max_age_hours: float = DEFAULT_CLEANUP_HOURS) -> int:
        """Remove files older than *max_age_hours* and empty subdirectories.

        Returns the number of files removed.
        """
        now = datetime.now(UTC)
        removed = 0
        for path in list(self._root.rglob("*")):
            if not path.is_file():
                continue
            mtime = datetime.fromtimestamp(path.stat().st_mtime, tz=UTC)
            age_hours = (now - mtime).total_seconds() / 3600
            if age_hours > max_age_hours:
                path.unlink()
                removed += 1
                logger.debug("Upload cleanup: removed %s (%.1fh old)", path.name, age_hours)

        for path in sorted(self._root.rglob("*"), reverse=True):
            if path.is_dir() and not any(path.iterdir()):
                path.rmdir()

        return removed
