"""
Error taxonomy for streaming uploads.

Every failure surfaced by the client is a TransferError. The ``retryable``
flag tells UploadClient whether another attempt is allowed.
"""
from typing import Any, Optional


class TransferError(Exception):
    """Base class for all upload/authentication failures."""

    retryable = False

    def __init__(self, message: str, *, retryable: Optional[bool] = None):
        super().__init__(message)
        self.message = message
        if retryable is not None:
            self.retryable = retryable


class AuthFailure(TransferError):
    """Credential issuance failed (identity endpoint error or malformed body)."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class TransportFailure(TransferError):
    """Connection or timeout error talking to the upload endpoint."""

    retryable = True


class UploadTimeout(TransportFailure):
    """The per-call deadline was exceeded."""


class AuthRejected(TransferError):
    """The upload endpoint rejected the bearer credential (401/403)."""

    def __init__(self, message: str, status_code: int):
        super().__init__(message)
        self.status_code = status_code


class ServerError(TransferError):
    """Backend answered with a 5xx (or an unusable success body)."""

    retryable = True

    def __init__(self, message: str, status_code: int, *, retryable: Optional[bool] = None):
        super().__init__(message, retryable=retryable)
        self.status_code = status_code


class ValidationFailure(TransferError):
    """Backend refused the request (4xx other than auth). Never retried."""

    def __init__(self, message: str, status_code: int, payload: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.payload = payload


class EncodingFailure(TransferError):
    """The local content stream could not be read."""


class TransferCancelled(TransferError):
    """The unit was cancelled before it produced a result."""
