"""Core client - wires token provider, upload client and orchestrator."""
from typing import List, Optional, Sequence, Tuple, Union

import httpx

from ..config import UploadConfig
from ..models import CompletionPolicy, Content, Credential, TransferOutcome, UploadRequest, UploadResult
from ..services.api_client import UploadClient
from ..services.encoder import TransferEncoder
from ..services.token_provider import TokenProvider
from .transfer import TransferBatch, TransferOrchestrator

UploadItem = Union[UploadRequest, Tuple[UploadRequest, Content]]


class StreamingClient:
    """
    Public entry point for streaming uploads.

    Follows:
    - Dependency Injection (token provider and HTTP client can be injected)
    - Single Responsibility (delegates to UploadClient / TransferOrchestrator)

    Usage:
        config = UploadConfig.from_env()
        async with StreamingClient(config) as client:
            token = await client.get_token()

            request = UploadRequest(name="report.txt", business_type_id=0)
            result = await client.upload_one(request, io.BytesIO(b"..."), tenant_id="MyTenantId")

            outcomes = await client.upload_many([(req1, stream1), (req2, stream2)])

            batch = await client.upload_many(items, policy="race")
            async for outcome in batch:
                ...
    """

    def __init__(
        self,
        config: Optional[UploadConfig] = None,
        *,
        token_provider: Optional[TokenProvider] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        encoder: Optional[TransferEncoder] = None,
    ):
        """
        Initialize client with dependencies.

        Args:
            config: Upload configuration (base URL, credentials, retry policy)
            token_provider: Pre-built token provider (default: built from config credentials)
            http_client: httpx client for the upload endpoint (default: owned client)
            encoder: Transfer encoder
        """
        self._config = config or UploadConfig()
        self._external_provider = token_provider
        self._http_client = http_client
        self._encoder = encoder

        # Initialized in __aenter__
        self._token_provider: Optional[TokenProvider] = None
        self._upload_client: Optional[UploadClient] = None
        self._orchestrator: Optional[TransferOrchestrator] = None

    async def __aenter__(self):
        """Initialize services."""
        if self._external_provider is not None:
            self._token_provider = self._external_provider
        elif self._config.has_credentials:
            self._token_provider = TokenProvider.from_config(self._config)

        self._upload_client = UploadClient(
            self._config.base_url,
            token_provider=self._token_provider,
            encoder=self._encoder,
            config=self._config,
            http_client=self._http_client,
        )
        await self._upload_client.__aenter__()

        self._orchestrator = TransferOrchestrator.from_config(self._upload_client, self._config)
        return self

    async def __aexit__(self, exc_type, *args):
        """Account for running batches, then release resources."""
        try:
            if self._orchestrator is not None:
                if exc_type is None:
                    await self._orchestrator.wait_idle()
                else:
                    await self._orchestrator.cancel()
        finally:
            if self._upload_client is not None:
                await self._upload_client.__aexit__(exc_type, *args)
            # Only close what we built ourselves
            if self._token_provider is not None and self._external_provider is None:
                await self._token_provider.aclose()

    @property
    def orchestrator(self) -> TransferOrchestrator:
        assert self._orchestrator is not None, "StreamingClient not initialized. Use 'async with' context."
        return self._orchestrator

    async def get_token(self, force_refresh: bool = False) -> Credential:
        """Return a cached or newly issued bearer credential."""
        if self._token_provider is None:
            raise RuntimeError("No client credentials configured (MFT_CLIENT_ID / MFT_CLIENT_SECRET)")
        return await self._token_provider.get_token(force_refresh=force_refresh)

    async def upload_one(
        self,
        request: UploadRequest,
        stream: Optional[Content] = None,
        tenant_id: Optional[str] = None,
    ) -> UploadResult:
        """
        Upload a single stream. Errors are raised as TransferError subclasses.

        Args:
            request: Upload request (name, business type)
            stream: Content; overrides content already bound to the request
            tenant_id: Tenant for multi-tenant tokens
        """
        assert self._upload_client is not None, "StreamingClient not initialized. Use 'async with' context."
        if stream is not None:
            request = request.with_content(stream)
        if request.content is None:
            raise ValueError(f"No content given for '{request.name}'")
        return await self._upload_client.upload(request, tenant_id=tenant_id)

    async def upload_many(
        self,
        items: Sequence[UploadItem],
        tenant_id: Optional[str] = None,
        policy: Union[CompletionPolicy, str] = CompletionPolicy.ALL,
    ) -> Union[List[TransferOutcome], TransferBatch]:
        """
        Upload several streams concurrently.

        Returns:
            ALL: list of TransferOutcome in submission order
            RACE: the running TransferBatch (iterate for completion order,
                  ``drain()`` for the full accounting)
        """
        policy = CompletionPolicy(policy)
        requests = [self._bind(item) for item in items]

        if policy is CompletionPolicy.RACE:
            return self.orchestrator.first_completed(requests, tenant_id=tenant_id)
        return await self.orchestrator.upload_all(requests, tenant_id=tenant_id)

    async def cancel(self) -> None:
        """Cancel all running batches."""
        await self.orchestrator.cancel()

    @staticmethod
    def _bind(item: UploadItem) -> UploadRequest:
        if isinstance(item, UploadRequest):
            return item
        request, stream = item
        return request.with_content(stream)
