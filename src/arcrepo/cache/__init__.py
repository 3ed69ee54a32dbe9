"""
arcrepo.cache - Artifact Cache
================================

    - artifact_cache:  bounded LRU of Artifacts and ArtifactData
    - invalidation:    CacheEnabler, the enablement handshake and listener
"""

from arcrepo.cache.artifact_cache import ArtifactCache, CacheStats
from arcrepo.cache.invalidation import CacheEnabler

__all__ = ["ArtifactCache", "CacheStats", "CacheEnabler"]
