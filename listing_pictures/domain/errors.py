"""Typed errors raised by the picture pipeline and storage layer."""

from __future__ import annotations


class PictureError(Exception):
    """Base domain exception carrying a stable code and an HTTP status."""

    code = "picture_error"
    status = 400

    def __init__(self, message: str, *, code: str | None = None, status: int | None = None):
        self.message = message
        if code is not None:
            self.code = code
        if status is not None:
            self.status = status
        super().__init__(message)


class UploadError(PictureError):
    """Candidate rejected by validation or sanitization."""


class FileTooLarge(UploadError):
    code = "file_too_large"
    status = 413


class EmptyFile(FileTooLarge):
    code = "empty_file"
    status = 400


class ExtensionNotAllowed(UploadError):
    code = "extension_not_allowed"
    status = 415


class MimeTypeNotAllowed(UploadError):
    code = "mime_type_not_allowed"
    status = 415


class InvalidSignature(UploadError):
    code = "invalid_signature"
    status = 415


class NotAValidImage(UploadError):
    code = "not_a_valid_image"
    status = 422


class EntityNotFound(PictureError):
    code = "entity_not_found"
    status = 404


class PictureNotFound(PictureError):
    code = "picture_not_found"
    status = 404


class InvalidFilename(PictureError):
    code = "invalid_filename"
    status = 400


class InvalidPath(PictureError):
    code = "invalid_path"
    status = 400


class PictureLimitReached(PictureError):
    code = "picture_limit_reached"
    status = 409


class StorageFailure(PictureError):
    code = "storage_failure"
    status = 500


class AccessDenied(PictureError):
    code = "access_denied"
    status = 403
