"""
Models for the streaming upload client.

Immutable dataclasses: credentials, requests, results and per-request outcomes.
"""
from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, BinaryIO, Dict, Optional, Union

from .errors import ServerError, TransferError

Content = Union[BinaryIO, bytes, bytearray, memoryview]


class UploadStatus(Enum):
    """Status reported by the backend for a stored file."""
    UPLOADED = "uploaded"
    PENDING = "pending"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: Any) -> "UploadStatus":
        if value is None:
            return cls.UPLOADED
        try:
            return cls(str(value).lower())
        except ValueError:
            return cls.UNKNOWN


class CompletionPolicy(Enum):
    """How a batch reports completion."""
    ALL = "all"    # wait for every unit
    RACE = "race"  # yield units as they finish


@dataclass(frozen=True)
class Credential:
    """Bearer token issued by the identity endpoint."""
    access_token: str = field(repr=False)
    issued_at: float
    expires_in: float
    token_type: str = "Bearer"

    @property
    def expires_at(self) -> float:
        return self.issued_at + self.expires_in

    def is_fresh(self, now: float, safety_margin: float = 0.0) -> bool:
        """True while the token can still be used for a new call."""
        return now < self.expires_at - safety_margin

    @property
    def authorization(self) -> str:
        return f"Bearer {self.access_token}"


@dataclass(frozen=True)
class UploadRequest:
    """
    Immutable upload request.

    ``content`` is a single-pass binary stream (or raw bytes). It is read
    once by the encoder; retries reuse the encoded body.
    """
    name: str
    business_type_id: int = 0
    content: Optional[Content] = field(default=None, repr=False, compare=False)
    tenant_id: Optional[str] = None
    idempotency_key: Optional[str] = None

    def __post_init__(self):
        if not isinstance(self.name, str) or not self.name.strip():
            raise ValueError("UploadRequest.name must be a non-empty string")
        if isinstance(self.business_type_id, bool) or not isinstance(self.business_type_id, int):
            raise ValueError(
                f"UploadRequest.business_type_id must be an int, got {self.business_type_id!r}"
            )

    def with_content(self, content: Content) -> "UploadRequest":
        """Copy of this request bound to ``content``."""
        return dataclasses.replace(self, content=content)


@dataclass(frozen=True)
class UploadResult:
    """Immutable result of a successful upload."""
    name: str
    size: int
    identifier: str
    status: UploadStatus = UploadStatus.UPLOADED

    @classmethod
    def from_response(cls, payload: Any, status_code: int = 200) -> "UploadResult":
        """
        Decode the upload endpoint's JSON body.

        Fails closed: a missing or mistyped field raises a non-retryable
        ServerError instead of a KeyError.
        """
        if not isinstance(payload, dict):
            raise ServerError(
                f"Upload response is not a JSON object: {payload!r}",
                status_code,
                retryable=False,
            )

        name = payload.get("name")
        size = payload.get("size")
        identifier = payload.get("identifier", payload.get("id"))

        if not isinstance(name, str) or not name:
            raise ServerError("Upload response has no 'name'", status_code, retryable=False)
        if isinstance(size, bool) or not isinstance(size, int):
            raise ServerError(f"Upload response has invalid 'size': {size!r}", status_code, retryable=False)
        if identifier is None or identifier == "":
            raise ServerError("Upload response has no 'identifier'", status_code, retryable=False)

        return cls(
            name=name,
            size=size,
            identifier=str(identifier),
            status=UploadStatus.parse(payload.get("status")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "size": self.size,
            "identifier": self.identifier,
            "status": self.status.value,
        }


@dataclass(frozen=True)
class TransferOutcome:
    """A request paired with either its result or its error."""
    request: UploadRequest
    result: Optional[UploadResult] = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.result is not None

    def unwrap(self) -> UploadResult:
        """Return the result or raise the stored error."""
        if self.error is not None:
            raise self.error
        assert self.result is not None
        return self.result

    @property
    def error_message(self) -> Optional[str]:
        if self.error is None:
            return None
        if isinstance(self.error, TransferError):
            return self.error.message
        return str(self.error) or type(self.error).__name__

    @classmethod
    def succeeded(cls, request: UploadRequest, result: UploadResult) -> "TransferOutcome":
        return cls(request=request, result=result)

    @classmethod
    def failed(cls, request: UploadRequest, error: BaseException) -> "TransferOutcome":
        return cls(request=request, error=error)
