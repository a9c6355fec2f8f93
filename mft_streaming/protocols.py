"""
Protocols (Interfaces) for Dependency Inversion.

Small, focused interfaces so the orchestrator can be driven by fakes in tests.
"""
from typing import Optional, Protocol, runtime_checkable

from .models import Credential, UploadRequest, UploadResult


@runtime_checkable
class ITokenSource(Protocol):
    """Interface for bearer credential providers."""

    @property
    def credential(self) -> Optional[Credential]:
        """Currently cached credential, if any."""
        ...

    async def get_token(self, force_refresh: bool = False) -> Credential:
        """Return a fresh credential, issuing one if needed."""
        ...

    async def refresh(self, stale: Optional[Credential] = None) -> Credential:
        """Replace ``stale`` with a newly issued credential."""
        ...

    def is_fresh(self, credential: Credential) -> bool:
        """Whether ``credential`` may still be used for a new call."""
        ...


@runtime_checkable
class IUploadClient(Protocol):
    """Interface for single-file upload operations."""

    token_provider: Optional[ITokenSource]

    async def upload(
        self,
        request: UploadRequest,
        credential: Optional[Credential] = None,
        tenant_id: Optional[str] = None,
    ) -> UploadResult:
        """Upload one request and return the backend's result."""
        ...
