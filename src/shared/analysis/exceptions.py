"""Errors raised while handling a video upload.

Each client-facing error carries the HTTP status it maps to and a short
machine-readable code used in the response ``detail``.
"""


class UploadError(Exception):
    """Base class for errors that terminate an upload request."""
    status_code = 500
    error = "upload_failed"


class MalformedRequest(UploadError):
    """The multipart body does not have the expected shape."""
    status_code = 400
    error = "malformed_request"


class PayloadTooLarge(MalformedRequest):
    """The request body exceeds the configured upload limit."""
    status_code = 413
    error = "payload_too_large"


class InvalidMetadata(UploadError):
    """The metadata part is not ``{"mode": 0|1}``."""
    status_code = 400
    error = "invalid_metadata"


class UnsupportedMode(UploadError):
    """The requested analysis mode is recognised but not implemented."""
    status_code = 422
    error = "unsupported_mode"


class ResourceError(UploadError):
    """Temporary storage for the engine could not be acquired or written."""
    error = "resource_error"


class EngineCrash(Exception):
    """
    The inference engine terminated abnormally or produced unusable output.

    Never surfaced to clients; the invoker turns it into a crash outcome.
    """
