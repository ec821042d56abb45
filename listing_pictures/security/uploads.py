"""Cheap upload checks: declared metadata and file signatures."""

from __future__ import annotations

import enum
import logging
import os
from dataclasses import dataclass
from typing import Final

from listing_pictures.domain.errors import (
    EmptyFile,
    ExtensionNotAllowed,
    FileTooLarge,
    MimeTypeNotAllowed,
)

logger = logging.getLogger(__name__)

MAX_BYTES: Final = 5 * 1024 * 1024  # 5 MiB hard limit
SNIFF_LENGTH: Final = 8

ALLOWED_EXTENSIONS: Final = frozenset({".jpg", ".jpeg", ".png", ".gif", ".webp"})
ALLOWED_MIME_TYPES: Final = frozenset({"image/jpeg", "image/png", "image/gif", "image/webp"})


class ImageFormat(str, enum.Enum):
    """Raster formats accepted by the upload pipeline."""

    JPEG = "JPEG"
    PNG = "PNG"
    GIF = "GIF"
    WEBP = "WEBP"


# RIFF is shared with WAV/AVI, so a WEBP match is only a pre-filter.
SIGNATURES: Final[dict[ImageFormat, tuple[bytes, ...]]] = {
    ImageFormat.JPEG: (b"\xff\xd8\xff",),
    ImageFormat.PNG: (b"\x89PNG\r\n\x1a\n",),
    ImageFormat.GIF: (b"GIF87a", b"GIF89a"),
    ImageFormat.WEBP: (b"RIFF",),
}


@dataclass(frozen=True, slots=True)
class UploadCandidate:
    """An uploaded blob with client-declared (untrusted) metadata."""

    data: bytes
    filename: str
    content_type: str

    @property
    def extension(self) -> str:
        return declared_extension(self.filename)

    @property
    def size(self) -> int:
        return len(self.data)


def declared_extension(filename: str | None) -> str:
    """Return the lower-cased extension of a client-supplied filename."""
    if not filename:
        return ""
    return os.path.splitext(filename)[1].lower()


def sniff_format(data: bytes) -> ImageFormat | None:
    """Return the format whose magic bytes prefix `data`, or None."""
    head = data[:SNIFF_LENGTH]
    for image_format, signatures in SIGNATURES.items():
        if any(head.startswith(signature) for signature in signatures):
            return image_format
    return None


def validate_basics(candidate: UploadCandidate) -> None:
    """
    Reject a candidate on size, extension or declared content-type.

    Checks run cheapest first and stop at the first failure. The declared
    content-type is client input and is never enough on its own.
    """
    if candidate.size == 0:
        raise EmptyFile(f"File {candidate.filename or '<unnamed>'} is empty")
    if candidate.size > MAX_BYTES:
        raise FileTooLarge(f"File {candidate.filename} exceeds maximum size of 5MB")

    ext = candidate.extension
    if ext not in ALLOWED_EXTENSIONS:
        raise ExtensionNotAllowed(
            f"File type {ext or '<none>'} is not allowed. "
            "Only JPG, PNG, GIF, and WEBP images are permitted."
        )

    content_type = (candidate.content_type or "").strip().lower()
    if content_type not in ALLOWED_MIME_TYPES:
        raise MimeTypeNotAllowed(
            f"Invalid MIME type {candidate.content_type or '<none>'}. "
            "Only image files are permitted."
        )
