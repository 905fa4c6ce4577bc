"""
Local-disk storage for uploaded files.

Files are written under ``Config.UPLOAD_DIR`` with a generated name and
served back from ``Config.UPLOAD_URL_PREFIX``. The generated name is the
file id used for deletion.
"""

import logging
import os
import re
import uuid
from dataclasses import dataclass
from typing import Dict, FrozenSet, Optional

import aiofiles
import aiofiles.os

from DuoChat.config import config
from DuoChat.core.errors import ValidationError
from DuoChat.core.server.interfaces import StoredFile

logger = logging.getLogger(__name__)

_FILE_ID_RE = re.compile(r"^(image|video|document)-[0-9a-f]{32}(\.[A-Za-z0-9]{1,10})?$")


@dataclass(frozen=True)
class UploadPolicy:
    """Size limit and accepted content types for one upload category."""
    max_bytes: int
    type_prefixes: FrozenSet[str] = frozenset()
    exact_types: FrozenSet[str] = frozenset()

    def accepts(self, content_type: Optional[str]) -> bool:
        content_type = (content_type or "").lower()
        if content_type in self.exact_types:
            return True
        return content_type.split("/", 1)[0] in self.type_prefixes


UPLOAD_POLICIES: Dict[str, UploadPolicy] = {
    "image": UploadPolicy(config.MAX_IMAGE_BYTES, type_prefixes=frozenset({"image"})),
    "video": UploadPolicy(config.MAX_VIDEO_BYTES, type_prefixes=frozenset({"video"})),
    "document": UploadPolicy(config.MAX_DOCUMENT_BYTES, exact_types=frozenset({
        "application/pdf",
        "application/msword",
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
        "text/plain",
        "application/rtf",
    })),
}


def check_upload(category: str, content_type: Optional[str], size: int) -> None:
    """
    Validate an upload against its category policy.

    Raises:
        ValidationError: Unknown category, rejected type or oversize file
    """
    policy = UPLOAD_POLICIES.get(category)
    if policy is None:
        raise ValidationError(f"Unknown upload category: {category}")
    if not policy.accepts(content_type):
        raise ValidationError(f"Invalid file type. Only {category} files are allowed.")
    if size <= 0:
        raise ValidationError(f"No {category} file provided")
    if size > policy.max_bytes:
        raise ValidationError(
            f"File size too large. Maximum size for {category} is {policy.max_bytes // (1024 * 1024)}MB."
        )


class LocalFileStorage:
    """Writes uploads to a directory on the local filesystem."""

    def __init__(self, root_dir: str = None, url_prefix: str = None):
        self.root_dir = os.path.abspath(root_dir or config.UPLOAD_DIR)
        self.url_prefix = (url_prefix or config.UPLOAD_URL_PREFIX).rstrip("/")
        self._ready = False

    async def _ensure_dir(self) -> None:
        if not self._ready:
            await aiofiles.os.makedirs(self.root_dir, exist_ok=True)
            self._ready = True

    def path_for(self, file_id: str) -> str:
        if not _FILE_ID_RE.match(file_id or ""):
            raise ValidationError("Invalid file id")
        return os.path.join(self.root_dir, file_id)

    async def store(self, data: bytes, filename: str, category: str) -> StoredFile:
        """Persist ``data`` and return its public reference."""
        await self._ensure_dir()
        ext = os.path.splitext(filename or "")[1].lower()
        if not re.match(r"^\.[a-z0-9]{1,10}$", ext):
            ext = ""
        file_id = f"{category}-{uuid.uuid4().hex}{ext}"
        async with aiofiles.open(self.path_for(file_id), "wb") as f:
            await f.write(data)
        logger.info("Stored %s upload %s (%d bytes)", category, file_id, len(data))
        return StoredFile(
            id=file_id,
            url=f"{self.url_prefix}/{file_id}",
            name=os.path.basename(filename or file_id),
            size=len(data),
        )

    async def delete(self, file_id: str) -> bool:
        """Remove a stored file. Returns False if it did not exist."""
        path = self.path_for(file_id)
        try:
            await aiofiles.os.remove(path)
        except FileNotFoundError:
            return False
        logger.info("Deleted upload %s", file_id)
        return True


__all__ = ['UploadPolicy', 'UPLOAD_POLICIES', 'check_upload', 'LocalFileStorage']
