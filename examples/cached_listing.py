"""
Cached Listing Example: Walk an AU With the Artifact Cache On
===============================================================

This example enables the artifact cache and lists every URL of an
Archival Unit (AU), fetching each payload's size.

Cache enablement runs in the background:

    connect to Redis → subscribe to ArtifactCacheTopic → Echo → EchoResp

Until the repository answers the Echo the cache stays off, and every call
goes to the repository. Listing results are cached as each URL's latest
version, so the follow-up get_artifact() calls are local.

Requires a repository service (ARCREPO_BASE_URL) and the Redis instance it
publishes invalidations to (ARCREPO_REDIS__URL).

Usage:
    python examples/cached_listing.py <namespace> <auid>
"""

from __future__ import annotations

import asyncio
import sys

from arcrepo import RestRepositoryClient
from arcrepo.core.enums import IncludeContent


async def main(namespace: str, auid: str) -> None:
    """List an AU and print each URL with its payload length."""
    async with RestRepositoryClient() as repo:
        await repo.enable_artifact_cache()

        total = 0
        async with repo.get_artifacts(namespace, auid) as artifacts:
            async for artifact in artifacts:
                data = await repo.get_artifact_data(artifact, IncludeContent.NEVER)
                print(f"{artifact.version:>4}  {data.content_length or 0:>10}  {artifact.uri}")
                total += 1

        # Served from the cache once enablement has completed
        for uri in ("http://example.org/", "http://example.org/index.html"):
            artifact = await repo.get_artifact(namespace, auid, uri)
            print(f"{uri}: {'v' + str(artifact.version) if artifact else 'not stored'}")

        stats = repo.artifact_cache.stats
        print("-" * 40)
        print(f"Artifacts : {total}")
        print(f"Hits      : {stats.artifact_hits}")
        print(f"Misses    : {stats.artifact_misses}")


if __name__ == "__main__":
    if len(sys.argv) != 3:
        sys.exit("usage: cached_listing.py <namespace> <auid>")
    asyncio.run(main(sys.argv[1], sys.argv[2]))
