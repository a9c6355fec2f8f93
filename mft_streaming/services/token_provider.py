"""
Token Provider - Single Responsibility: issue and cache bearer credentials.

OAuth2 client-credentials grant against the identity endpoint. The cached
credential is replaced, never mutated. Issuance is single-flight: callers
that find the cache stale at the same time share one in-flight request.
"""
from __future__ import annotations

import asyncio
import logging
import math
import time
from enum import Enum
from typing import Callable, Optional

import httpx

from ..config import DEFAULT_AUTHORITY_URL, UploadConfig
from ..errors import AuthFailure
from ..models import Credential

logger = logging.getLogger(__name__)


class TokenState(Enum):
    """State of the credential cache."""
    ABSENT = "absent"
    VALID = "valid"
    REFRESHING = "refreshing"


def parse_token_response(
    response: httpx.Response,
    issued_at: float,
    default_lifetime: float = 3600.0,
) -> Credential:
    """Decode the identity endpoint response into a Credential or raise AuthFailure."""
    status = response.status_code
    if not response.is_success:
        raise AuthFailure(f"Identity endpoint returned HTTP {status}", status_code=status)

    try:
        payload = response.json()
    except ValueError as exc:
        raise AuthFailure("Identity endpoint returned a non-JSON body", status_code=status) from exc

    if not isinstance(payload, dict):
        raise AuthFailure("Identity endpoint returned a non-object JSON body", status_code=status)

    token = payload.get("access_token")
    if not isinstance(token, str) or not token:
        raise AuthFailure("Identity response has no 'access_token'", status_code=status)

    try:
        lifetime = float(payload.get("expires_in"))
    except (TypeError, ValueError):
        lifetime = default_lifetime
    if not math.isfinite(lifetime) or lifetime <= 0:
        lifetime = default_lifetime

    token_type = payload.get("token_type")
    return Credential(
        access_token=token,
        issued_at=issued_at,
        expires_in=lifetime,
        token_type=token_type if isinstance(token_type, str) and token_type else "Bearer",
    )


async def request_token(
    http_client: httpx.AsyncClient,
    client_id: str,
    client_secret: str,
    authority_url: str = DEFAULT_AUTHORITY_URL,
    *,
    clock: Callable[[], float] = time.monotonic,
    default_lifetime: float = 3600.0,
) -> Credential:
    """Perform one client-credentials round trip."""
    form = {
        "grant_type": "client_credentials",
        "client_id": client_id,
        "client_secret": client_secret,
    }
    issued_at = clock()
    try:
        response = await http_client.post(
            authority_url,
            data=form,
            headers={"Cache-Control": "no-cache"},
        )
    except httpx.HTTPError as exc:
        raise AuthFailure(f"Identity endpoint unreachable: {type(exc).__name__}") from exc

    return parse_token_response(response, issued_at, default_lifetime)


async def get_token(
    client_id: str,
    client_secret: str,
    authority_url: str = DEFAULT_AUTHORITY_URL,
    timeout: float = 30.0,
    *,
    http_client: Optional[httpx.AsyncClient] = None,
) -> Credential:
    """Retrieve a token once, without caching."""
    if http_client is not None:
        return await request_token(http_client, client_id, client_secret, authority_url)
    async with httpx.AsyncClient(timeout=timeout) as client:
        return await request_token(client, client_id, client_secret, authority_url)


class TokenProvider:
    """
    Caching bearer token source.

    Usage:
        async with TokenProvider(client_id, client_secret, authority_url) as tokens:
            credential = await tokens.get_token()
    """

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        authority_url: str = DEFAULT_AUTHORITY_URL,
        *,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
        safety_margin: float = 30.0,
        default_lifetime: float = 3600.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        if not client_id or not client_secret:
            raise ValueError("client_id and client_secret are required")

        self._client_id = client_id
        self._client_secret = client_secret
        self._authority_url = authority_url
        self._timeout = timeout
        self._safety_margin = safety_margin
        self._default_lifetime = default_lifetime
        self._clock = clock

        self._http_client = http_client
        self._owns_client = http_client is None

        self._credential: Optional[Credential] = None
        self._inflight: Optional[asyncio.Task] = None

    @classmethod
    def from_config(
        cls,
        config: UploadConfig,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> "TokenProvider":
        return cls(
            config.client_id,
            config.client_secret,
            config.authority_url,
            http_client=http_client,
            timeout=config.timeout,
            safety_margin=config.token_safety_margin,
            default_lifetime=config.default_token_lifetime,
        )

    def __repr__(self) -> str:
        return f"TokenProvider(client_id={self._client_id!r}, authority_url={self._authority_url!r})"

    async def __aenter__(self):
        return self

    async def __aexit__(self, *args):
        await self.aclose()

    async def aclose(self) -> None:
        if self._inflight and not self._inflight.done():
            self._inflight.cancel()
        if self._owns_client and self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    @property
    def state(self) -> TokenState:
        if self._inflight is not None and not self._inflight.done():
            return TokenState.REFRESHING
        if self._credential is not None and self._credential.is_fresh(self._clock(), self._safety_margin):
            return TokenState.VALID
        return TokenState.ABSENT

    @property
    def credential(self) -> Optional[Credential]:
        """Currently cached credential (may be stale)."""
        return self._credential

    def is_fresh(self, credential: Credential) -> bool:
        return credential.is_fresh(self._clock(), self._safety_margin)

    async def get_token(self, force_refresh: bool = False) -> Credential:
        """Return the cached credential while fresh, otherwise issue a new one."""
        credential = self._credential
        if not force_refresh and credential is not None and self.is_fresh(credential):
            return credential
        return await self._issue_once()

    async def refresh(self, stale: Optional[Credential] = None) -> Credential:
        """
        Force a new credential.

        If the cache already holds a fresh credential different from ``stale``
        (another caller refreshed first), it is returned without a round trip.
        """
        current = self._credential
        if (
            stale is not None
            and current is not None
            and current.access_token != stale.access_token
            and self.is_fresh(current)
        ):
            logger.debug("[token] Credential already replaced by a concurrent refresh")
            return current
        return await self._issue_once()

    def invalidate(self) -> None:
        """Drop the cached credential."""
        self._credential = None

    async def _issue_once(self) -> Credential:
        if self._inflight is None or self._inflight.done():
            self._inflight = asyncio.create_task(self._issue())
            self._inflight.add_done_callback(self._on_issue_done)
        # Shielded: one waiter being cancelled must not abort the shared refresh.
        return await asyncio.shield(self._inflight)

    def _on_issue_done(self, task: asyncio.Task) -> None:
        if self._inflight is task:
            self._inflight = None
        if not task.cancelled():
            task.exception()

    def _get_http_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._timeout)
            self._owns_client = True
        return self._http_client

    async def _issue(self) -> Credential:
        logger.info(f"[token] Requesting token for client {self._client_id}")
        try:
            credential = await request_token(
                self._get_http_client(),
                self._client_id,
                self._client_secret,
                self._authority_url,
                clock=self._clock,
                default_lifetime=self._default_lifetime,
            )
        except AuthFailure as exc:
            logger.error(f"[token] Token request failed for client {self._client_id}: {exc.message}")
            raise

        self._credential = credential
        logger.info(f"[token] Token issued for client {self._client_id} (valid {credential.expires_in:.0f}s)")
        return credential
