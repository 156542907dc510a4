"""Pytest configuration and fixtures for pulsarview testing.

The admin surface is exercised against a real aiohttp server that replays
canned responses. Streaming sessions run against in-memory connections from
``tests.fakes``.
"""

import asyncio
import json
from collections.abc import AsyncGenerator
from dataclasses import dataclass, field
from typing import Any

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer

from pulsarview.core.cluster_registry import ClusterRegistry
from pulsarview.core.stores import InMemoryConfigurationStore, InMemorySecretStore
from tests.fakes import FakeAdminGateway, FakeConnector


@dataclass(slots=True)
class CannedResponse:
    status: int = 200
    body: Any = None
    content_type: str = "application/json"
    headers: dict[str, str] = field(default_factory=dict)
    delay: float = 0.0


@dataclass(slots=True)
class RecordedRequest:
    method: str
    raw_path: str
    query: dict[str, str]
    headers: dict[str, str]
    body: str


class AdminStub:
    """Replays canned responses keyed by method and raw (still encoded) path."""

    def __init__(self) -> None:
        self.base_url = ""
        self.responses: dict[tuple[str, str], CannedResponse] = {}
        self.requests: list[RecordedRequest] = []

    def reply(
        self,
        method: str,
        path: str,
        body: Any = None,
        status: int = 200,
        content_type: str = "application/json",
        headers: dict[str, str] | None = None,
        delay: float = 0.0,
    ) -> None:
        self.responses[(method, path)] = CannedResponse(
            status, body, content_type, headers or {}, delay
        )

    def paths(self, method: str | None = None) -> list[str]:
        return [r.raw_path for r in self.requests if method is None or r.method == method]

    async def handle(self, request: web.Request) -> web.StreamResponse:
        self.requests.append(
            RecordedRequest(
                method=request.method,
                raw_path=request.rel_url.raw_path,
                query=dict(request.query),
                headers=dict(request.headers),
                body=await request.text(),
            )
        )
        canned = self.responses.get((request.method, request.rel_url.raw_path))
        if canned is None:
            return web.Response(status=404, text="Not found")
        if canned.delay:
            await asyncio.sleep(canned.delay)

        if canned.body is None:
            text = None
        elif isinstance(canned.body, str | bytes):
            text = canned.body
        else:
            text = json.dumps(canned.body)

        response = web.Response(
            status=canned.status,
            body=text.encode() if isinstance(text, str) else text,
            headers=canned.headers,
        )
        if text is not None:
            response.content_type = canned.content_type
        return response


@pytest_asyncio.fixture
async def admin_stub() -> AsyncGenerator[AdminStub, None]:
    """An admin REST server on a free local port."""
    stub = AdminStub()
    app = web.Application()
    app.router.add_route("*", "/{tail:.*}", stub.handle)
    async with TestServer(app) as server:
        stub.base_url = f"http://{server.host}:{server.port}"
        yield stub


@pytest.fixture
def gateways() -> dict[str, FakeAdminGateway]:
    """Fake gateways by cluster name; tests preconfigure them before adding."""
    return {}


@pytest.fixture
def registry(gateways: dict[str, FakeAdminGateway]) -> ClusterRegistry:
    def _factory(connection, settings):
        gateway = gateways.setdefault(connection.name, FakeAdminGateway())
        gateway.name = connection.name
        gateway.auth_token = connection.auth_token
        return gateway

    return ClusterRegistry(
        config_store=InMemoryConfigurationStore(),
        secret_store=InMemorySecretStore(),
        gateway_factory=_factory,
    )


@pytest.fixture
def connector() -> FakeConnector:
    return FakeConnector()
