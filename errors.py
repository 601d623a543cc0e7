"""
Error taxonomy for the FitMirror Try-On API.

Every error carries the HTTP status it maps to; the handlers in main.py turn
them into the uniform ``{"error": ..., "type": ...}`` envelope.
"""
from typing import Optional


class ServiceError(Exception):
    """Base class for errors that surface to the API caller."""

    status_code: int = 500

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class MissingInputError(ServiceError):
    """A required image slot had no upload, URL or base64 source."""

    status_code = 400


class InvalidCategoryError(ServiceError):
    """The ``type`` parameter is absent or not a known garment category."""

    # Kept at 500 to match the existing client contract
    status_code = 500


class DecodeError(ServiceError):
    """Malformed base64 payload."""

    status_code = 400


class ImageDecodeError(ServiceError):
    """Bytes are not a decodable image."""

    status_code = 400


class FetchError(ServiceError):
    """Downloading an image URL failed (bad status, connection error)."""

    status_code = 502


class FetchTimeoutError(FetchError):
    status_code = 504


class RemoteModelError(ServiceError):
    """The hosted inference endpoint returned an error or was unreachable."""

    status_code = 502


class RemoteModelTimeoutError(RemoteModelError):
    status_code = 504


class PayloadTooLargeError(ServiceError):
    status_code = 413


class UnsupportedMediaError(ServiceError):
    status_code = 415


class RateLimitExceededError(ServiceError):
    status_code = 429

    def __init__(self, message: str, retry_after: int):
        super().__init__(message)
        self.retry_after = retry_after
