"""Shared fixtures: an in-memory identity + upload backend behind httpx.MockTransport."""
import asyncio
import re
from typing import Dict, List, Optional

import httpx
import pytest

BASE_URL = "https://mft.test"
AUTHORITY_URL = "https://identity.test/authentication/token"
UPLOAD_PATH = "/files/upload"


def parse_multipart(request: httpx.Request) -> Dict[str, bytes]:
    """Split a multipart/form-data body into {part name: raw bytes}."""
    content_type = request.headers["content-type"]
    boundary = content_type.split("boundary=", 1)[1].encode()
    parts = {}
    for chunk in request.content.split(b"--" + boundary)[1:-1]:
        chunk = chunk[2:-2]  # leading and trailing CRLF
        head, _, data = chunk.partition(b"\r\n\r\n")
        name = re.search(rb'name="([^"]+)"', head).group(1).decode()
        parts[name] = data
    return parts


class FakeBackend:
    """
    Identity and upload endpoints.

    ``token_responses`` / ``upload_responses`` are consumed one per call;
    an entry can be a status code, an httpx.Response, or an httpx exception
    class to raise. When empty, calls succeed.
    """

    def __init__(self):
        self.token_calls: List[Dict[str, str]] = []
        self.token_headers: List[httpx.Headers] = []
        self.token_responses: list = []
        self.token_delay = 0.0
        self.expires_in: Optional[int] = 3600

        self.uploads: List[dict] = []
        self.upload_responses: list = []
        self.delays: Dict[str, float] = {}
        self.accepted_tokens: Optional[set] = None

    async def handle(self, request: httpx.Request) -> httpx.Response:
        if request.url.host == "identity.test":
            return await self._token(request)
        if request.url.path == UPLOAD_PATH:
            return await self._upload(request)
        return httpx.Response(404, json={"error": "not found"})

    async def _token(self, request: httpx.Request) -> httpx.Response:
        form = dict(httpx.QueryParams(request.content.decode()))
        self.token_calls.append(form)
        self.token_headers.append(request.headers)
        if self.token_delay:
            await asyncio.sleep(self.token_delay)

        scripted = self._next(self.token_responses, request)
        if scripted is not None:
            return scripted

        payload = {"access_token": f"token-{len(self.token_calls)}", "token_type": "Bearer"}
        if self.expires_in is not None:
            payload["expires_in"] = self.expires_in
        return httpx.Response(200, json=payload)

    async def _upload(self, request: httpx.Request) -> httpx.Response:
        parts = parse_multipart(request)
        name = parts["name"].decode()
        record = {
            "name": name,
            "fields": {k: v.decode() for k, v in parts.items() if k != "file"},
            "content": parts["file"],
            "headers": request.headers,
        }
        self.uploads.append(record)

        delay = self.delays.get(name, 0)
        if delay:
            await asyncio.sleep(delay)

        scripted = self._next(self.upload_responses, request)
        if scripted is not None:
            return scripted

        token = request.headers.get("authorization", "").removeprefix("Bearer ")
        if self.accepted_tokens is not None and token not in self.accepted_tokens:
            return httpx.Response(401, json={"error": "invalid token"})

        return httpx.Response(
            200,
            json={
                "name": name,
                "size": len(parts["file"]),
                "identifier": f"file-{len(self.uploads)}",
                "status": "uploaded",
            },
        )

    @staticmethod
    def _next(script: list, request: httpx.Request) -> Optional[httpx.Response]:
        if not script:
            return None
        entry = script.pop(0)
        if isinstance(entry, int):
            return httpx.Response(entry, json={"error": f"scripted {entry}"})
        if isinstance(entry, type) and issubclass(entry, Exception):
            raise entry("scripted failure", request=request)
        return entry


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_http(backend):
    """Factory for httpx.AsyncClient instances wired to the fake backend."""
    def _make(**kwargs):
        return httpx.AsyncClient(
            transport=httpx.MockTransport(backend.handle),
            base_url=BASE_URL,
            **kwargs,
        )
    return _make
