"""
arcrepo - Artifact Repository Client
======================================

Async client for a remote, write-once artifact repository: versioned,
namespaced, URL-keyed byte streams with archived HTTP headers.

    RestRepositoryClient
        ├── HttpTransport + codec   → REST calls, framed HTTP, multipart
        ├── ArtifactCache           → local LRU of Artifacts and ArtifactData
        │     └── CacheEnabler      → pub/sub invalidations, Echo handshake
        └── PagingIterator          → lazy listings fetched ahead in pages

Quick Start:
    >>> from arcrepo import RestRepositoryClient
    >>> async with RestRepositoryClient(base_url="http://localhost:24610") as repo:
    ...     async for namespace in repo.get_namespaces():
    ...         print(namespace)
"""

# =============================================================================
# Package Version
# =============================================================================
# Single source of truth for the package version, read by pyproject.toml.
# =============================================================================
__version__ = "0.1.0"

# =============================================================================
# Package-Level Exports
# =============================================================================
# For specific components, import from subpackages directly:
#   from arcrepo.core.config import RepositoryClientConfig
#   from arcrepo.core.models import ArtifactData
# =============================================================================
from arcrepo.client.repository import RestRepositoryClient

__all__ = ["RestRepositoryClient", "__version__"]
