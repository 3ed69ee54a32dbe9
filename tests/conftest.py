"""
Shared Test Fixtures for arcrepo
==================================

Reusable pytest fixtures, organized by layer:

    1. Configuration fixtures
    2. Model factories (Artifact, ArtifactData)
    3. Cache and pub/sub fixtures
    4. FakeRepository: an in-process repository service served through
       ``httpx.MockTransport``
    5. Client fixtures wired to the FakeRepository

All async fixtures run under pytest-asyncio (asyncio_mode=auto).
"""

from __future__ import annotations

import asyncio
import hashlib
import json
from collections.abc import Awaitable, Callable
from typing import Any, Optional

import httpx
import pytest

from arcrepo.cache.artifact_cache import ArtifactCache
from arcrepo.client.repository import RestRepositoryClient
from arcrepo.core.config import IteratorConfig, RepositoryClientConfig
from arcrepo.core.models import Artifact, ArtifactData, ArtifactIdentifier, HttpStatusLine
from arcrepo.pubsub.message_bus import InMemoryMessageBus
from arcrepo.transport.codec import MultipartReader


BASE_URL = "http://repo.test:24610"
STORE_DATE = "2024-01-02T03:04:05Z"


# =============================================================================
# Helpers
# =============================================================================

async def wait_until(
    predicate: Callable[[], bool],
    timeout: float = 2.0,
    interval: float = 0.01,
) -> bool:
    """Poll ``predicate`` until it is true or ``timeout`` elapses."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while loop.time() < deadline:
        if predicate():
            return True
        await asyncio.sleep(interval)
    return predicate()


def echo_responder(bus: InMemoryMessageBus, topic: str = "ArtifactCacheTopic") -> Callable[[dict], Awaitable[None]]:
    """Callback answering every Echo on ``topic`` with the matching EchoResp."""

    async def respond(message: dict) -> None:
        if message.get("action") == "Echo":
            await bus.publish(topic, {"action": "EchoResp", "key": message.get("key")})

    return respond


# =============================================================================
# Configuration
# =============================================================================

@pytest.fixture
def config() -> RepositoryClientConfig:
    """Client configuration pointing at the fake repository."""
    return RepositoryClientConfig(
        base_url=BASE_URL,
        iterator=IteratorConfig(queue_get_timeout_seconds=5.0),
    )


# =============================================================================
# Model Factories
# =============================================================================

@pytest.fixture
def make_artifact() -> Callable[..., Artifact]:
    """Factory for Artifact values with sensible defaults."""

    def _make(
        uuid: str = "uuid-1",
        namespace: str = "ns1",
        auid: str = "au1",
        uri: str = "http://example.org/a",
        version: int = 1,
        committed: bool = True,
        content_length: int = 5,
    ) -> Artifact:
        return Artifact(
            uuid=uuid,
            namespace=namespace,
            auid=auid,
            uri=uri,
            version=version,
            committed=committed,
            content_length=content_length,
            content_digest="SHA-256:abc",
        )

    return _make


@pytest.fixture
def make_artifact_data() -> Callable[..., ArtifactData]:
    """Factory for ArtifactData with an archived HTTP 200 response."""

    def _make(
        uri: str = "http://example.org/a",
        content: bytes = b"hello",
        namespace: str = "ns1",
        auid: str = "au1",
        http_status: Optional[HttpStatusLine] = HttpStatusLine.parse("HTTP/1.1 200 OK"),
        content_type: str = "text/plain",
    ) -> ArtifactData:
        return ArtifactData(
            ArtifactIdentifier(namespace=namespace, auid=auid, uri=uri, version=0),
            content=content,
            headers={"Content-Type": content_type},
            http_status=http_status,
            collection_date=1700000000000,
        )

    return _make


# =============================================================================
# Cache and Pub/Sub
# =============================================================================

@pytest.fixture
def cache() -> ArtifactCache:
    """Small, enabled ArtifactCache."""
    artifact_cache = ArtifactCache(max_artifacts=10, max_artifact_data=3, max_content_bytes=1024)
    artifact_cache.enable(True)
    return artifact_cache


@pytest.fixture
def message_bus() -> InMemoryMessageBus:
    """Fresh, unconnected InMemoryMessageBus."""
    return InMemoryMessageBus()


# =============================================================================
# Fake Repository Service
# =============================================================================

class FakeRepository:
    """Minimal in-process repository service for client tests.

    Implements the subset of the REST API the client uses, keeping
    artifacts in memory. Every request is recorded in ``requests``.
    """

    def __init__(self) -> None:
        self.artifacts: dict[str, dict[str, Any]] = {}
        self.header_blocks: dict[str, bytes] = {}
        self.resource: dict[str, bool] = {}
        self.payloads: dict[str, bytes] = {}
        self.payload_part_headers: dict[str, httpx.Headers] = {}
        self.namespaces: list[str] = ["ns1"]
        self.requests: list[httpx.Request] = []

    def count(self, method: str, path: str) -> int:
        return sum(1 for r in self.requests if r.method == method and r.url.path == path)

    def seed(
        self,
        uuid: str,
        uri: str,
        version: int = 1,
        committed: bool = True,
        auid: str = "au1",
        namespace: str = "ns1",
        payload: bytes = b"body",
    ) -> dict[str, Any]:
        """Store an artifact directly, bypassing the add endpoint."""
        self.artifacts[uuid] = {
            "uuid": uuid,
            "namespace": namespace,
            "auid": auid,
            "uri": uri,
            "version": version,
            "committed": committed,
            "contentLength": len(payload),
            "contentDigest": "SHA-256:" + hashlib.sha256(payload).hexdigest(),
        }
        self.header_blocks[uuid] = b"HTTP/1.1 200 OK\r\nContent-Type: text/plain\r\n\r\n"
        self.resource[uuid] = False
        self.payloads[uuid] = payload
        return self.artifacts[uuid]

    # -------------------------------------------------------------------------
    # Dispatch
    # -------------------------------------------------------------------------

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        parts = request.url.path.strip("/").split("/")
        method = request.method

        if parts == ["namespaces"] and method == "GET":
            return httpx.Response(200, json=self.namespaces)
        if parts == ["artifacts"] and method == "POST":
            return self._add(request)
        if parts[0] == "artifacts" and len(parts) == 2:
            if method == "PUT":
                return self._commit(request, parts[1])
            if method == "DELETE":
                return self._delete(parts[1])
        if parts[0] == "artifacts" and len(parts) == 3 and parts[2] == "response":
            return self._response(request, parts[1])
        if parts[0] == "aus" and len(parts) == 3 and parts[2] == "artifacts":
            return self._list(request, parts[1])
        return _not_found(f"No route for {method} {request.url.path}")

    # -------------------------------------------------------------------------
    # Handlers
    # -------------------------------------------------------------------------

    def _add(self, request: httpx.Request) -> httpx.Response:
        reader = MultipartReader.for_content_type(request.headers["content-type"])
        reader.write(request.content)
        parts = reader.finalize()

        props = json.loads(parts["artifactProps"].read())
        payload = parts["payload"].read()
        versions = [
            a["version"] for a in self.artifacts.values()
            if (a["namespace"], a["auid"], a["uri"]) == (props["namespace"], props["auid"], props["uri"])
        ]
        uuid = f"uuid-{len(self.artifacts) + 1}"
        self.artifacts[uuid] = {
            "uuid": uuid,
            "namespace": props["namespace"],
            "auid": props["auid"],
            "uri": props["uri"],
            "version": max(versions, default=0) + 1,
            "committed": False,
            "contentLength": len(payload),
            "contentDigest": "SHA-256:" + hashlib.sha256(payload).hexdigest(),
            "collectionDate": props.get("collectionDate"),
        }
        if "httpResponseHeader" in parts:
            self.header_blocks[uuid] = parts["httpResponseHeader"].read()
            self.resource[uuid] = False
        else:
            content_type = parts["payload"].headers.get("x-lockss-content-type", "application/octet-stream")
            self.header_blocks[uuid] = f"Content-Type: {content_type}\r\n\r\n".encode()
            self.resource[uuid] = True
        self.payloads[uuid] = payload
        self.payload_part_headers[uuid] = parts["payload"].headers
        reader.close()
        return httpx.Response(200, json=self.artifacts[uuid])

    def _commit(self, request: httpx.Request, uuid: str) -> httpx.Response:
        if uuid not in self.artifacts:
            return _not_found(f"Artifact not found: {uuid}")
        if request.url.params.get("committed") == "true":
            self.artifacts[uuid]["committed"] = True
        return httpx.Response(200, json=self.artifacts[uuid])

    def _delete(self, uuid: str) -> httpx.Response:
        if self.artifacts.pop(uuid, None) is None:
            return _not_found(f"Artifact not found: {uuid}")
        return httpx.Response(200)

    def _response(self, request: httpx.Request, uuid: str) -> httpx.Response:
        if uuid not in self.artifacts:
            return _not_found(f"Artifact not found: {uuid}")
        headers = {"storeDate": STORE_DATE, "content-type": "application/http;msgtype=response"}
        if self.resource[uuid]:
            headers["X-Lockss-Artifact-Data-Type"] = "resource"
        body = self.header_blocks[uuid]
        if request.url.params.get("includeContent") == "NEVER":
            headers["X-Lockss-Includes-Content"] = "false"
        else:
            body += self.payloads[uuid]
        return httpx.Response(200, content=body, headers=headers)

    def _list(self, request: httpx.Request, auid: str) -> httpx.Response:
        params = request.url.params
        namespace = params.get("namespace")
        url = params.get("url")
        prefix = params.get("urlPrefix")
        version = params.get("version", "latest")
        include_uncommitted = params.get("includeUncommitted") == "true"

        matches = [
            a for a in self.artifacts.values()
            if a["namespace"] == namespace
            and a["auid"] == auid
            and (url is None or a["uri"] == url)
            and (prefix is None or a["uri"].startswith(prefix))
            and (a["committed"] or include_uncommitted)
        ]
        if not matches and not any(a["auid"] == auid for a in self.artifacts.values()):
            return _not_found(f"No such AU: {auid}")

        if version == "latest":
            latest: dict[str, dict[str, Any]] = {}
            for a in matches:
                if a["uri"] not in latest or a["version"] > latest[a["uri"]]["version"]:
                    latest[a["uri"]] = a
            matches = list(latest.values())
        elif version != "all":
            matches = [a for a in matches if a["version"] == int(version)]
        matches.sort(key=lambda a: (a["uri"], -a["version"]))

        offset = int(params.get("continuationToken") or 0)
        limit = int(params.get("limit") or 1000)
        page = matches[offset:offset + limit]
        token = str(offset + limit) if offset + limit < len(matches) else None
        return httpx.Response(
            200,
            json={"artifacts": page, "pageInfo": {"continuationToken": token, "resultsPerPage": limit}},
        )


def _not_found(message: str) -> httpx.Response:
    return httpx.Response(404, json={"message": message})


@pytest.fixture
def fake_repository() -> FakeRepository:
    """Fresh FakeRepository with no artifacts."""
    return FakeRepository()


# =============================================================================
# Client
# =============================================================================

@pytest.fixture
async def client(config, fake_repository):
    """RestRepositoryClient served by the FakeRepository, cache enabled."""
    repo = RestRepositoryClient(config, transport=httpx.MockTransport(fake_repository.handle))
    repo.artifact_cache.enable(True)
    yield repo
    await repo.aclose()
