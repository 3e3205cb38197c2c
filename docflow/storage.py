"""Blob storage contract and the local filesystem implementation."""

from __future__ import annotations

import logging
import re
import time
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Optional

from docflow.config import Settings
from docflow.errors import NotFoundError, StorageError, ValidationError

logger = logging.getLogger(__name__)

_UNSAFE = re.compile(r"[^A-Za-z0-9._-]+")


@dataclass(frozen=True)
class FileRef:
    """Opaque handle to stored content plus the metadata the store records."""

    path: str
    size: int
    content_type: str
    filename: str


def safe_filename(filename: str) -> str:
    name = _UNSAFE.sub("_", Path(filename or "").name).strip("._")
    return name or "document.bin"


class BlobStorage(ABC):
    max_bytes: Optional[int] = None

    def put(
        self, owner_id: str, data: bytes, filename: str, content_type: Optional[str] = None
    ) -> FileRef:
        if not data:
            raise ValidationError("Uploaded file is empty")
        if self.max_bytes is not None and len(data) > self.max_bytes:
            raise ValidationError(
                f"Uploaded file exceeds the {self.max_bytes} byte limit",
                meta={"size": len(data), "limit": self.max_bytes},
            )
        stamp = int(time.time() * 1000)
        key = f"{safe_filename(owner_id)}/{stamp}_{uuid.uuid4().hex[:12]}_{safe_filename(filename)}"
        self._write(key, data)
        return FileRef(
            path=key,
            size=len(data),
            content_type=content_type or "application/octet-stream",
            filename=filename,
        )

    @abstractmethod
    def _write(self, key: str, data: bytes) -> None:
        """Store new content under a key that has never been used."""

    @abstractmethod
    def open(self, path: str) -> BinaryIO:
        """Open stored content for reading."""


class LocalBlobStorage(BlobStorage):
    def __init__(self, root: Path, max_bytes: Optional[int] = None):
        self.root = Path(root)
        self.max_bytes = max_bytes

    def _path(self, key: str) -> Path:
        return self.root / key.lstrip("/").replace("\\", "/")

    def _write(self, key: str, data: bytes) -> None:
        p = self._path(key)
        try:
            p.parent.mkdir(parents=True, exist_ok=True)
            with p.open("xb") as fh:
                fh.write(data)
        except OSError as exc:
            logger.error("Failed to write blob %s: %s", key, exc)
            raise StorageError("Blob storage is unavailable") from exc

    def open(self, path: str) -> BinaryIO:
        p = self._path(path)
        if not p.exists():
            raise NotFoundError(f"Stored file '{path}' not found")
        return p.open("rb")


def storage_from_settings(settings: Settings) -> BlobStorage:
    return LocalBlobStorage(Path(settings.storage_root), max_bytes=settings.max_upload_bytes)
