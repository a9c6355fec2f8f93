"""
Transfer Encoder - Single Responsibility: turn an UploadRequest into a wire body.

The upload endpoint needs the content length up front, so the stream is read
fully here, once. A BLAKE3 digest of the content is computed on the way.
"""
from __future__ import annotations

import mimetypes
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

from blake3 import blake3

from ..errors import EncodingFailure
from ..models import UploadRequest

DEFAULT_CHUNK_SIZE = 65536  # 64KB
DEFAULT_CONTENT_TYPE = "application/octet-stream"


@dataclass(frozen=True)
class WireBody:
    """Encoded multipart body ready to be sent."""
    fields: Dict[str, str]
    filename: str
    content: bytes = field(repr=False)
    content_type: str
    size: int
    digest: str

    def files(self) -> Dict[str, Tuple[str, bytes, str]]:
        """``files=`` argument for httpx."""
        return {"file": (self.filename, self.content, self.content_type)}


def decoded_length(body: WireBody) -> int:
    """Byte length of the content part of ``body``."""
    return len(body.content)


def guess_content_type(name: str) -> str:
    content_type, _ = mimetypes.guess_type(name)
    return content_type or DEFAULT_CONTENT_TYPE


class TransferEncoder:
    """Encodes upload requests. Stateless apart from the read chunk size."""

    def __init__(self, chunk_size: int = DEFAULT_CHUNK_SIZE):
        if chunk_size < 1:
            raise ValueError("chunk_size must be positive")
        self._chunk_size = chunk_size

    def encode(self, request: UploadRequest, tenant_id: Optional[str] = None) -> WireBody:
        """
        Read the request's content and build the wire body.

        Args:
            request: Request with bound content
            tenant_id: Tenant used when the request carries none

        Raises:
            EncodingFailure: content missing, unreadable, or not bytes
        """
        content = self._read_content(request)

        fields = {
            "name": request.name,
            "businessTypeId": str(request.business_type_id),
        }
        tenant = request.tenant_id or tenant_id
        if tenant:
            fields["tenantId"] = tenant

        return WireBody(
            fields=fields,
            filename=request.name,
            content=content,
            content_type=guess_content_type(request.name),
            size=len(content),
            digest=blake3(content).hexdigest(),
        )

    def _read_content(self, request: UploadRequest) -> bytes:
        source = request.content
        if source is None:
            raise EncodingFailure(f"No content bound to upload request '{request.name}'")

        if isinstance(source, (bytes, bytearray, memoryview)):
            return bytes(source)

        read = getattr(source, "read", None)
        if not callable(read):
            raise EncodingFailure(
                f"Content for '{request.name}' is not a binary stream: {type(source).__name__}"
            )

        buffer = bytearray()
        try:
            while True:
                chunk = read(self._chunk_size)
                if not chunk:
                    break
                if not isinstance(chunk, (bytes, bytearray, memoryview)):
                    raise EncodingFailure(
                        f"Stream for '{request.name}' yielded {type(chunk).__name__}, expected bytes"
                    )
                buffer.extend(chunk)
        except (OSError, ValueError) as exc:
            # ValueError: read on a closed file
            raise EncodingFailure(f"Could not read content for '{request.name}': {exc}") from exc

        return bytes(buffer)
