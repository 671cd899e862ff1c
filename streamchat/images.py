"""
File-backed image store for chat attachments.

Images live under ``<base_dir>/originals/<id><suffix>`` where *id* is a
uuid4 hex string.  The store never trusts caller-supplied names: ids are
validated before they touch the file system and every resolved path must stay
under the base directory.

Security measures:
- Base directory created with mode 0o700 (owner-only).
- Individual files written with mode 0o600.
- Writes are atomic (temp file, then rename).
"""

from __future__ import annotations

import asyncio
import base64
import logging
import os
import re
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Protocol

from streamchat.types import ImageAttachment

logger = logging.getLogger(__name__)

_ID_RE = re.compile(r"^[0-9a-f]{32}$")
_ALLOWED_SUFFIXES = (".jpg", ".jpeg", ".png")


class AttachmentSource(Protocol):
    """What the request builder needs from an image store."""

    def get(self, attachment_id: str) -> ImageAttachment | None: ...

    async def read_base64(self, attachment_id: str) -> str: ...


class ImageStore:
    """
    Store, read and delete image attachments.

    Parameters
    ----------
    base_dir:
        Root directory for image storage.  Created with ``0o700``
        permissions if it does not exist.
    """

    def __init__(self, base_dir: str | Path) -> None:
        self.base_dir = Path(base_dir).expanduser().resolve()
        self.originals_dir = self.base_dir / "originals"
        self.originals_dir.mkdir(parents=True, exist_ok=True)
        os.chmod(self.base_dir, 0o700)
        os.chmod(self.originals_dir, 0o700)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _validate_under_base(self, path: Path) -> None:
        resolved = path.resolve()
        base_resolved = self.base_dir.resolve()
        if not str(resolved).startswith(str(base_resolved) + os.sep):
            raise ValueError(
                f"Path traversal detected: {path} resolves outside "
                f"base directory {self.base_dir}"
            )

    def _find(self, attachment_id: str) -> Path | None:
        if not _ID_RE.match(attachment_id):
            raise ValueError(f"Malformed attachment id: {attachment_id!r}")
        for suffix in _ALLOWED_SUFFIXES:
            path = self.originals_dir / f"{attachment_id}{suffix}"
            self._validate_under_base(path)
            if path.is_file():
                return path
        return None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def save(self, content: bytes, suffix: str = ".jpg") -> ImageAttachment:
        """Write *content* under a fresh id and return its attachment."""
        suffix = suffix.lower()
        if suffix not in _ALLOWED_SUFFIXES:
            raise ValueError(f"Unsupported image suffix: {suffix!r}")

        attachment_id = uuid.uuid4().hex
        file_path = self.originals_dir / f"{attachment_id}{suffix}"
        self._validate_under_base(file_path)

        tmp_path = file_path.with_suffix(".tmp")
        try:
            tmp_path.write_bytes(content)
            os.chmod(tmp_path, 0o600)
            tmp_path.rename(file_path)
        except BaseException:
            if tmp_path.exists():
                tmp_path.unlink()
            raise

        logger.debug("Stored image %s (%d bytes)", file_path.name, len(content))
        return ImageAttachment(
            id=attachment_id,
            filename=file_path.name,
            created_at=datetime.now(timezone.utc),
        )

    def import_file(self, source: str | Path) -> ImageAttachment:
        """Copy an image from disk into the store."""
        src = Path(source).expanduser()
        suffix = src.suffix.lower() or ".jpg"
        return self.save(src.read_bytes(), suffix=suffix)

    def get(self, attachment_id: str) -> ImageAttachment | None:
        path = self._find(attachment_id)
        if path is None:
            return None
        created = datetime.fromtimestamp(path.stat().st_mtime, tz=timezone.utc)
        return ImageAttachment(id=attachment_id, filename=path.name, created_at=created)

    def read_original(self, attachment_id: str) -> bytes:
        """
        Return the stored bytes for *attachment_id*.

        Raises
        ------
        FileNotFoundError
            If no image with that id is stored.
        ValueError
            If the id is malformed.
        """
        path = self._find(attachment_id)
        if path is None:
            raise FileNotFoundError(f"Image not found: {attachment_id}")
        return path.read_bytes()

    async def read_base64(self, attachment_id: str) -> str:
        """Read and base64-encode an image without blocking the event loop."""
        data = await asyncio.to_thread(self.read_original, attachment_id)
        return base64.b64encode(data).decode("ascii")

    def exists(self, attachment_id: str) -> bool:
        return self._find(attachment_id) is not None

    def delete(self, attachment_id: str) -> bool:
        """Remove a stored image.  Returns ``True`` if the file existed."""
        path = self._find(attachment_id)
        if path is None:
            return False
        path.unlink()
        return True

    async def delete_many(self, attachment_ids: Iterable[str]) -> int:
        results = await asyncio.gather(
            *(asyncio.to_thread(self.delete, i) for i in attachment_ids)
        )
        return sum(1 for r in results if r)
