"""
Store and Fetch Example: One Artifact Through Its Lifecycle
=============================================================

This example walks one artifact through the repository:

    add (uncommitted) → commit → look up by URL → fetch content

The archived HTTP response (status line, headers, payload) is uploaded as
an ArtifactData and read back the same way.

Requires a repository service; point the client at it with
ARCREPO_BASE_URL (default http://localhost:24610).

Usage:
    python examples/store_and_fetch.py
"""

from __future__ import annotations

import asyncio

from arcrepo import RestRepositoryClient
from arcrepo.core.config import RepositoryClientConfig
from arcrepo.core.models import ArtifactData, ArtifactIdentifier, HttpStatusLine


async def main() -> None:
    """Add, commit and read back one artifact."""
    config = RepositoryClientConfig()

    data = ArtifactData(
        ArtifactIdentifier(namespace="demo", auid="demo-au", uri="http://example.org/index.html", version=0),
        content=b"<html><body>Hello, archive</body></html>",
        headers={"Content-Type": "text/html"},
        http_status=HttpStatusLine.parse("HTTP/1.1 200 OK"),
    )

    async with RestRepositoryClient(config) as repo:
        artifact = await repo.add_artifact(data)
        artifact = await repo.commit_artifact(artifact.namespace, artifact.uuid)

        latest = await repo.get_artifact("demo", "demo-au", "http://example.org/index.html")
        fetched = await repo.get_artifact_data(latest)

        print("Stored Artifact")
        print("-" * 40)
        print(f"UUID      : {artifact.uuid}")
        print(f"Version   : {artifact.version}")
        print(f"Committed : {artifact.committed}")
        print(f"Status    : {fetched.http_status}")
        print(f"Type      : {fetched.headers.get('content-type')}")
        print()
        print(fetched.read_content().decode("utf-8"))


if __name__ == "__main__":
    asyncio.run(main())
