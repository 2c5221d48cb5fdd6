"""Upload and file format models."""

import hashlib
from dataclasses import dataclass
from enum import Enum
from pathlib import PurePath
from typing import Optional


class FileFormat(Enum):
    """Statement file format, derived from the file extension."""

    CSV = "csv"
    OFX = "ofx"
    QIF = "qif"


@dataclass
class RawUpload:
    """An uploaded statement file as received from the caller.

    Attributes:
        filename: Original file name, used for extension checks and logging.
        content: Raw file bytes.
        declared_mime: MIME type claimed by the uploader, if any. Never trusted.
    """

    filename: str
    content: bytes
    declared_mime: Optional[str] = None

    @property
    def byte_length(self) -> int:
        """Size of the upload in bytes."""
        return len(self.content)

    @property
    def extension(self) -> str:
        """Lowercased file extension without the dot."""
        return PurePath(self.filename).suffix.lower().lstrip(".")

    @property
    def content_hash(self) -> str:
        """Short SHA-256 digest of the content, stable across re-uploads."""
        return hashlib.sha256(self.content).hexdigest()[:16]

    def text(self) -> str:
        """Decode the content as text.

        UTF-8 is tried first (with or without BOM); statements exported by
        older banking software fall back to Latin-1, which never fails.

        Returns:
            The decoded file content.
        """
        try:
            return self.content.decode("utf-8-sig")
        except UnicodeDecodeError:
            return self.content.decode("latin-1")

    @classmethod
    def from_path(cls, path: PurePath, declared_mime: Optional[str] = None) -> "RawUpload":
        """Read an upload from a local file.

        Args:
            path: Path to the statement file.
            declared_mime: Optional MIME type to attach.

        Returns:
            A new RawUpload instance.
        """
        with open(path, "rb") as f:
            content = f.read()
        return cls(filename=PurePath(path).name, content=content, declared_mime=declared_mime)

    def __repr__(self) -> str:
        return f"RawUpload(filename={self.filename!r}, bytes={self.byte_length})"
