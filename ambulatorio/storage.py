from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from pathlib import Path

from .errors import NotFoundError, ValidationError

logger = logging.getLogger(__name__)

ALLOWED_CONTENT_TYPES = frozenset({"application/pdf", "image/jpeg", "image/jpg", "image/png"})
MAX_FILE_SIZE = 10 * 1024 * 1024  # 10MB


@dataclass(frozen=True)
class StoredFile:
    path: str
    file_name: str
    content_type: str
    size: int


class FileStorage:
    """Allegati su disco (referti): un file per upload, nome uuid + estensione originale."""

    def __init__(self, upload_dir: str | Path) -> None:
        self.root = Path(upload_dir)

    def validate(self, data: bytes, content_type: str | None) -> None:
        if not data:
            raise ValidationError("File cannot be empty")
        if len(data) > MAX_FILE_SIZE:
            raise ValidationError("File size exceeds maximum limit of 10MB")
        if content_type not in ALLOWED_CONTENT_TYPES:
            raise ValidationError("File type not supported. Allowed types: PDF, JPEG, JPG, PNG")

    def store(self, data: bytes, file_name: str | None, content_type: str | None) -> StoredFile:
        self.validate(data, content_type)
        self.root.mkdir(parents=True, exist_ok=True)

        suffix = Path(file_name or "").suffix
        target = self.root / f"{uuid.uuid4()}{suffix}"
        target.write_bytes(data)
        logger.info("stored %s (%d bytes)", target.name, len(data))
        return StoredFile(
            path=str(target),
            file_name=file_name or target.name,
            content_type=content_type,
            size=len(data),
        )

    def read(self, path: str) -> bytes:
        p = Path(path)
        if not p.is_file():
            raise NotFoundError("File not found")
        return p.read_bytes()

    def delete(self, path: str | None) -> None:
        if not path:
            return
        Path(path).unlink(missing_ok=True)
