"""Exception taxonomy for the upload pipeline.

Every error carries the HTTP status the API layer should answer with.
Client-fixable problems are 4xx and keep their message; server-side
failures are 5xx and are rendered with a generic message only.
"""
from __future__ import annotations


class UploadError(Exception):
    """Base class for pipeline errors."""

    status_code: int = 500

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    @property
    def is_client_error(self) -> bool:
        return self.status_code < 500


class ValidationError(UploadError):
    """Malformed or unsupported input; the client can fix it."""

    status_code = 400


class AuthorizationError(UploadError):
    """Caller is not allowed to touch the requested object."""

    status_code = 403


class ProcessingError(UploadError):
    """The codec could not produce output."""


class StorageError(UploadError):
    """Object store upload/delete (or visibility) failure."""


class ConfigurationError(UploadError):
    """Programming error from the caller, e.g. missing parent ids for a path."""


class UploadLimitError(Exception):
    """Raised by request intake when a multipart limit is hit.

    ``code`` is one of ``LIMIT_FILE_SIZE``, ``LIMIT_FILE_COUNT``,
    ``LIMIT_UNEXPECTED_FILE`` or ``LIMIT_FILE_TYPE``.
    """

    LIMIT_FILE_SIZE = "LIMIT_FILE_SIZE"
    LIMIT_FILE_COUNT = "LIMIT_FILE_COUNT"
    LIMIT_UNEXPECTED_FILE = "LIMIT_UNEXPECTED_FILE"
    LIMIT_FILE_TYPE = "LIMIT_FILE_TYPE"

    def __init__(self, code: str, field: str | None = None):
        super().__init__(f"Upload limit error {code}" + (f" (field={field})" if field else ""))
        self.code = code
        self.field = field
