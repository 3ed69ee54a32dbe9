"""
arcrepo.core.enums - Type-Safe Enumerations
=============================================

Every enumerated value that crosses a module boundary in arcrepo lives here.
All enums inherit from both `str` and `Enum`, so they serialize to their wire
strings in JSON and compare equal to plain strings:

    >>> InvalidateOp.COMMIT == "Commit"
    True

Where they are used:

    ┌─────────────────────────────────────────────────────────────────┐
    │  REPOSITORY CLIENT                                              │
    │    IncludeContent:   payload inclusion policy for fetches       │
    │    ArchiveType:      container formats accepted by bulk import  │
    │    ArtifactVersions: ALL / LATEST selector for listings         │
    │    ImportStatusCode: per-record outcome of a bulk import        │
    ├─────────────────────────────────────────────────────────────────┤
    │  ARTIFACT CACHE                                                 │
    │    CacheAction:  action field of an invalidation message        │
    │    InvalidateOp: op field of an invalidation message            │
    │    CacheState:   enablement state machine                       │
    ├─────────────────────────────────────────────────────────────────┤
    │  PAGING ITERATOR                                                │
    │    IteratorState: producer/consumer lifecycle                   │
    └─────────────────────────────────────────────────────────────────┘
"""

from enum import Enum


# =============================================================================
# Repository Client Enumerations
# =============================================================================
class IncludeContent(str, Enum):
    """Whether artifact payload bytes are requested with an ArtifactData.

    IF_SMALL lets the server decide: content is sent only when it is no larger
    than the server's small-content threshold.
    """

    ALWAYS = "ALWAYS"
    IF_SMALL = "IF_SMALL"
    NEVER = "NEVER"


class ArchiveType(str, Enum):
    """Container formats for bulk artifact import. Only WARC is supported."""

    WARC = "WARC"
    ARC = "ARC"


class ArtifactVersions(str, Enum):
    """Version selector used by the cross-AU listing endpoints."""

    ALL = "ALL"
    LATEST = "LATEST"


class ImportStatusCode(str, Enum):
    """Outcome of importing a single archive record."""

    OK = "OK"
    ERROR = "ERROR"
    DUPLICATE = "DUPLICATE"
    EXCLUDED = "EXCLUDED"


# =============================================================================
# Artifact Cache Enumerations
# =============================================================================
# CacheAction and InvalidateOp values are wire strings. Other clients and the
# repository service publish them on the cache topic, so they must not change.
# =============================================================================
class CacheAction(str, Enum):
    """Value of the ``action`` field of a cache topic message."""

    INVALIDATE_ARTIFACT = "InvalidateArtifact"
    INVALIDATE_AU = "InvalidateAu"
    FLUSH = "Flush"
    ECHO = "Echo"
    ECHO_RESP = "EchoResp"


class InvalidateOp(str, Enum):
    """Value of the ``op`` field of an invalidation message.

    COMMIT means the version changed state and may now be the latest one.
    DELETE means the version no longer exists.
    """

    COMMIT = "Commit"
    DELETE = "Delete"


class CacheState(str, Enum):
    """Enablement state machine of the artifact cache.

    Transitions::

        DISABLED ──enable()──> CONNECTING ──subscribed──> PROBE_SENT
            ^                       │  (retry with backoff)     │
            │                       └───────<───────┘           │
            └────────stop()───────── ENABLED <──EchoResp────────┘
    """

    DISABLED = "disabled"
    CONNECTING = "connecting"
    PROBE_SENT = "probe_sent"
    ENABLED = "enabled"


# =============================================================================
# Paging Iterator Enumerations
# =============================================================================
class IteratorState(str, Enum):
    """Lifecycle of a paging iterator.

    FETCHING -> DRAINING -> DONE, with TERMINATED reachable from any state
    when the consumer closes the iterator or it is garbage collected.
    """

    FETCHING = "fetching"
    DRAINING = "draining"
    DONE = "done"
    TERMINATED = "terminated"
