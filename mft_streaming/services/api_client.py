"""HTTP adapter for single-file upload operations."""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Dict, Optional

import httpx

from ..config import UploadConfig
from ..errors import (
    AuthFailure,
    AuthRejected,
    ServerError,
    TransferError,
    TransportFailure,
    UploadTimeout,
    ValidationFailure,
)
from ..models import Credential, UploadRequest, UploadResult
from ..protocols import ITokenSource
from .encoder import TransferEncoder, WireBody

logger = logging.getLogger(__name__)

AUTH_STATUSES = (401, 403)


def _error_detail(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text


class UploadClient:
    """
    HTTP client adapter for the upload endpoint.

    Implements IUploadClient protocol. Each ``upload`` call is one logical
    upload; transport errors and 5xx are retried, which can create duplicate
    entries on backends without idempotency-key support.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        *,
        token_provider: Optional[ITokenSource] = None,
        encoder: Optional[TransferEncoder] = None,
        config: Optional[UploadConfig] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self._config = config or UploadConfig()
        self._base_url = base_url or self._config.base_url
        self.token_provider = token_provider
        self._encoder = encoder or TransferEncoder()
        self._client = http_client
        self._owns_client = http_client is None

    async def __aenter__(self):
        if self._client is None:
            self._client = httpx.AsyncClient(base_url=self._base_url, timeout=self._config.timeout)
            self._owns_client = True
        return self

    async def __aexit__(self, *args):
        if self._owns_client and self._client:
            await self._client.aclose()
            self._client = None

    @property
    def config(self) -> UploadConfig:
        return self._config

    async def upload(
        self,
        request: UploadRequest,
        credential: Optional[Credential] = None,
        tenant_id: Optional[str] = None,
    ) -> UploadResult:
        """
        Upload one request.

        Args:
            request: Request with bound content stream
            credential: Bearer credential (fetched from the token provider if None)
            tenant_id: Tenant used when the request carries none

        Raises:
            EncodingFailure, AuthFailure, AuthRejected, TransportFailure,
            UploadTimeout, ServerError, ValidationFailure
        """
        if not self._client:
            raise RuntimeError("UploadClient not initialized. Use 'async with' context.")

        tenant = request.tenant_id or tenant_id or self._config.tenant_id
        body = await asyncio.to_thread(self._encoder.encode, request, tenant)

        headers: Dict[str, str] = {}
        if tenant:
            headers["X-Tenant-Id"] = tenant
        idempotency_key = request.idempotency_key
        if idempotency_key is None and self._config.derive_idempotency_key:
            idempotency_key = body.digest
        if idempotency_key:
            headers["Idempotency-Key"] = idempotency_key

        deadline = self._config.upload_deadline
        try:
            return await asyncio.wait_for(
                self._send_with_retries(request, body, headers, credential),
                timeout=deadline,
            )
        except asyncio.TimeoutError as exc:
            logger.error(f"[upload] {request.name}: deadline of {deadline:.0f}s exceeded")
            raise UploadTimeout(f"Upload of '{request.name}' exceeded its {deadline:.0f}s deadline") from exc

    async def _ensure_credential(self, credential: Optional[Credential]) -> Credential:
        """Return a credential that is valid for a call scheduled now."""
        provider = self.token_provider
        if credential is None:
            if provider is None:
                raise AuthFailure("No credential given and no token provider configured")
            return await provider.get_token()

        if provider is not None:
            if not provider.is_fresh(credential):
                logger.debug("[upload] Credential expired, fetching a fresh one")
                return await provider.get_token()
            return credential

        if not credential.is_fresh(time.monotonic()):
            raise AuthFailure("Credential expired and no token provider configured")
        return credential

    async def _send_with_retries(
        self,
        request: UploadRequest,
        body: WireBody,
        headers: Dict[str, str],
        credential: Optional[Credential],
    ) -> UploadResult:
        max_attempts = self._config.max_attempts
        name = request.name
        auth_retried = False
        last_error: Optional[TransferError] = None

        attempt = 0
        while attempt < max_attempts:
            attempt += 1
            credential = await self._ensure_credential(credential)

            logger.info(f"[upload] Uploading {name} ({body.size} bytes), attempt {attempt}/{max_attempts}")
            try:
                response = await self._client.post(
                    self._config.upload_path,
                    data=body.fields,
                    files=body.files(),
                    headers={**headers, "Authorization": credential.authorization},
                )
            except httpx.TimeoutException as exc:
                last_error = UploadTimeout(f"Timed out uploading '{name}': {type(exc).__name__}")
                last_error.__cause__ = exc
            except httpx.RequestError as exc:
                last_error = TransportFailure(f"Transport error uploading '{name}': {exc!r}")
                last_error.__cause__ = exc
            else:
                status = response.status_code

                if status in AUTH_STATUSES:
                    if auth_retried or self.token_provider is None:
                        raise AuthRejected(f"Upload of '{name}' rejected with HTTP {status}", status)
                    auth_retried = True
                    logger.warning(f"[upload] {name}: credential rejected (HTTP {status}), refreshing token")
                    credential = await self.token_provider.refresh(stale=credential)
                    # The auth retry does not consume the retry budget.
                    attempt -= 1
                    continue

                if status >= 500:
                    last_error = ServerError(
                        f"Server error {status} uploading '{name}': {_error_detail(response)}",
                        status,
                    )
                elif status >= 400:
                    detail = _error_detail(response)
                    raise ValidationFailure(
                        f"Upload of '{name}' rejected with HTTP {status}: {detail}",
                        status,
                        payload=detail,
                    )
                else:
                    return self._parse_result(response, request, body)

            if attempt < max_attempts:
                delay = self._config.get_backoff(attempt)
                logger.warning(
                    f"[upload] {name}: {last_error.message} "
                    f"(attempt {attempt}/{max_attempts}), retrying in {delay:.1f}s"
                )
                await asyncio.sleep(delay)

        assert last_error is not None
        logger.error(f"[upload] {name}: giving up after {max_attempts} attempts: {last_error.message}")
        raise last_error

    def _parse_result(self, response: httpx.Response, request: UploadRequest, body: WireBody) -> UploadResult:
        status = response.status_code
        try:
            payload = response.json()
        except ValueError as exc:
            raise ServerError(
                f"Upload of '{request.name}' returned a non-JSON body (HTTP {status})",
                status,
                retryable=False,
            ) from exc

        result = UploadResult.from_response(payload, status)
        if result.size != body.size:
            logger.warning(f"[upload] {request.name}: backend reports {result.size} bytes, sent {body.size}")
        logger.info(f"[upload] Uploaded {result.name} as {result.identifier} ({result.size} bytes)")
        return result
