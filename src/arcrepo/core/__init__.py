"""
arcrepo.core - Foundation Layer
=================================

Building blocks every other arcrepo package depends on:

    - config:      RepositoryClientConfig and its nested sections
    - enums:       IncludeContent, ArchiveType, CacheAction, InvalidateOp...
    - models:      Artifact, ArtifactData, page and info models
    - exceptions:  RepositoryError hierarchy

Dependency Rule:
    core/ depends on nothing else in the arcrepo package.
"""

from arcrepo.core.config import (
    CacheConfig,
    IteratorConfig,
    RedisConfig,
    RepositoryClientConfig,
    load_config,
)
from arcrepo.core.enums import (
    ArchiveType,
    ArtifactVersions,
    CacheAction,
    CacheState,
    ImportStatusCode,
    IncludeContent,
    InvalidateOp,
    IteratorState,
)
from arcrepo.core.exceptions import (
    ArtifactStateError,
    ConfigurationError,
    InvalidArgumentError,
    IteratorStateError,
    IteratorTimeoutError,
    MessageBusError,
    NoSuchArtifactError,
    RepositoryError,
    RepositoryHttpError,
    RepositoryProtocolError,
    RepositoryTransportError,
)
from arcrepo.core.models import (
    Artifact,
    ArtifactData,
    ArtifactIdentifier,
    ArtifactPageInfo,
    AuidPageInfo,
    AuSize,
    HttpStatusLine,
    ImportStatus,
    NamespacedAuid,
    PageInfo,
    RepositoryInfo,
    StorageInfo,
)

__all__ = [
    # Config
    "RepositoryClientConfig",
    "CacheConfig",
    "IteratorConfig",
    "RedisConfig",
    "load_config",
    # Enums
    "IncludeContent",
    "ArchiveType",
    "ArtifactVersions",
    "ImportStatusCode",
    "CacheAction",
    "InvalidateOp",
    "CacheState",
    "IteratorState",
    # Models
    "Artifact",
    "ArtifactData",
    "ArtifactIdentifier",
    "NamespacedAuid",
    "HttpStatusLine",
    "PageInfo",
    "ArtifactPageInfo",
    "AuidPageInfo",
    "AuSize",
    "StorageInfo",
    "RepositoryInfo",
    "ImportStatus",
    # Exceptions
    "RepositoryError",
    "InvalidArgumentError",
    "NoSuchArtifactError",
    "RepositoryProtocolError",
    "RepositoryTransportError",
    "RepositoryHttpError",
    "IteratorTimeoutError",
    "IteratorStateError",
    "ArtifactStateError",
    "ConfigurationError",
    "MessageBusError",
]
