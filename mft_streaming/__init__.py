"""
mft_streaming - streaming uploads to a managed file-transfer backend.

Components:
- TokenProvider: OAuth2 client-credentials token, cached, single-flight refresh
- TransferEncoder: request + byte stream -> multipart wire body
- UploadClient: one upload with retries and typed errors
- TransferOrchestrator: concurrent uploads, "all" and "race" completion

Usage:
    from mft_streaming import StreamingClient, UploadConfig, UploadRequest

    async with StreamingClient(UploadConfig.from_env()) as client:
        request = UploadRequest(name="testStreamFile.txt", business_type_id=0)
        result = await client.upload_one(request, io.BytesIO(data), tenant_id="MyTenantId")

        # Several files in parallel, consuming the first finished one
        batch = await client.upload_many([(req1, ms1), (req2, ms2)], policy="race")
        async for outcome in batch:
            print(outcome.unwrap().name)
"""
from .config import ConfigError, UploadConfig, load_env_file
from .errors import (
    AuthFailure,
    AuthRejected,
    EncodingFailure,
    ServerError,
    TransferCancelled,
    TransferError,
    TransportFailure,
    UploadTimeout,
    ValidationFailure,
)
from .models import (
    CompletionPolicy,
    Credential,
    TransferOutcome,
    UploadRequest,
    UploadResult,
    UploadStatus,
)
from .orchestrator import BatchSummary, StreamingClient, TransferBatch, TransferOrchestrator
from .services import TokenProvider, TransferEncoder, UploadClient, get_token

__version__ = "0.1.0"
__all__ = [
    # Main
    "StreamingClient",
    "TransferOrchestrator",
    "TransferBatch",
    "BatchSummary",
    # Services
    "TokenProvider",
    "TransferEncoder",
    "UploadClient",
    "get_token",
    # Models
    "CompletionPolicy",
    "Credential",
    "TransferOutcome",
    "UploadRequest",
    "UploadResult",
    "UploadStatus",
    # Config
    "UploadConfig",
    "ConfigError",
    "load_env_file",
    # Errors
    "TransferError",
    "AuthFailure",
    "AuthRejected",
    "EncodingFailure",
    "ServerError",
    "TransferCancelled",
    "TransportFailure",
    "UploadTimeout",
    "ValidationFailure",
]
