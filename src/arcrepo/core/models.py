"""
arcrepo.core.models - Core Data Models
========================================

Data models shared by the repository client, the artifact cache and the
paging iterator. Metadata returned by the repository service is modelled with
Pydantic and parsed straight from its camelCase JSON; ArtifactData, which owns
a single-use payload stream, is a plain class.

Model Overview:
    ArtifactIdentifier → (namespace, auid, uri, version, uuid)
    Artifact           → one version of one URL, as indexed by the repository
    ArtifactData       → an Artifact plus HTTP status, headers and payload
    PageInfo / *Page   → one page of a paged listing
    ImportStatus       → outcome of one record of a bulk archive import
    AuSize             → per-AU size breakdown
    RepositoryInfo     → storage/index capacity information

Cache Keys:
    Artifact.make_key(...)         → "ns:auid:uri:version"
    Artifact.make_latest_key(...)  → "ns:auid:uri:-1"
    NamespacedAuid(...).key        → "ns|auid"

    Invalidation messages carry these strings, so their format is shared
    with every other client subscribed to the cache topic.
"""

from __future__ import annotations

import io
import re
import shutil
from datetime import datetime
from typing import IO, Any, Optional

import httpx
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from arcrepo.core.enums import ImportStatusCode
from arcrepo.core.exceptions import ArtifactStateError, InvalidArgumentError


# =============================================================================
# Shared Model Configuration
# =============================================================================
# The repository speaks camelCase JSON. Fields are declared in snake_case and
# aliased; unknown fields are ignored so that newer servers stay compatible.
# =============================================================================
_WIRE_CONFIG = ConfigDict(
    alias_generator=to_camel,
    populate_by_name=True,
    extra="ignore",
)

_LATEST_VERSION_RE = re.compile(r":[^:]+$")

LATEST_VERSION = -1


# =============================================================================
# Artifact Identity
# =============================================================================
class ArtifactIdentifier(BaseModel):
    """Identity of one artifact version.

    Two identifiers are equal when they name the same (namespace, auid, uri,
    version); the uuid is the repository's handle for that version and does
    not take part in equality.
    """

    model_config = ConfigDict(**_WIRE_CONFIG, frozen=True)

    namespace: str
    auid: str
    uri: str
    version: int
    uuid: Optional[str] = None

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ArtifactIdentifier):
            return NotImplemented
        return self._identity() == other._identity()

    def __hash__(self) -> int:
        return hash(self._identity())

    def _identity(self) -> tuple[str, str, str, int]:
        return (self.namespace, self.auid, self.uri, self.version)

    def make_key(self) -> str:
        """Return the versioned cache key of this identity."""
        return Artifact.make_key(self.namespace, self.auid, self.uri, self.version)


class Artifact(BaseModel):
    """One version of one URL in one namespace, as indexed by the repository.

    Artifacts are immutable value objects: a given (namespace, uuid) names
    exactly one version for its whole lifetime. Committing produces a new
    Artifact value with ``committed=True``.

    Attributes:
        uuid: Repository-assigned handle of this version.
        namespace: Top-level partition of the repository.
        auid: Archival Unit the artifact belongs to.
        uri: URL of the archived resource.
        version: Version number within (namespace, auid, uri).
        committed: Whether the version is permanently stored.
        content_length: Payload length in bytes.
        content_digest: Payload digest (e.g. "SHA-256:ab12...").
        storage_url: Server-side storage location, when disclosed.
        collection_date: Collection time in epoch milliseconds.
    """

    model_config = ConfigDict(**_WIRE_CONFIG, frozen=True)

    uuid: str
    namespace: str
    auid: str
    uri: str
    version: int
    committed: bool = False
    content_length: int = 0
    content_digest: Optional[str] = None
    storage_url: Optional[str] = None
    collection_date: Optional[int] = None

    @property
    def identifier(self) -> ArtifactIdentifier:
        return ArtifactIdentifier(
            namespace=self.namespace,
            auid=self.auid,
            uri=self.uri,
            version=self.version,
            uuid=self.uuid,
        )

    # =========================================================================
    # Cache Keys
    # =========================================================================

    @staticmethod
    def make_key(namespace: str, auid: str, uri: str, version: int) -> str:
        """Build the versioned cache key ``"ns:auid:uri:version"``."""
        return f"{namespace}:{auid}:{uri}:{version}"

    @staticmethod
    def make_latest_key(namespace: str, auid: str, uri: str) -> str:
        """Build the latest-version cache key ``"ns:auid:uri:-1"``."""
        return Artifact.make_key(namespace, auid, uri, LATEST_VERSION)

    @staticmethod
    def latest_key_for(key: str) -> str:
        """Rewrite a versioned key into the latest key of the same URL.

        URIs contain colons, so only the trailing ``:<version>`` segment is
        replaced.
        """
        return _LATEST_VERSION_RE.sub(f":{LATEST_VERSION}", key)

    def key(self) -> str:
        return self.make_key(self.namespace, self.auid, self.uri, self.version)

    def latest_key(self) -> str:
        return self.make_latest_key(self.namespace, self.auid, self.uri)


class ArtifactProperties(BaseModel):
    """The ``artifactProps`` part of a multipart artifact response."""

    model_config = _WIRE_CONFIG

    namespace: Optional[str] = None
    uuid: Optional[str] = None
    auid: Optional[str] = None
    uri: Optional[str] = None
    version: Optional[int] = None
    content_length: Optional[int] = None
    content_digest: Optional[str] = None
    collection_date: Optional[int] = None
    store_date: Optional[int] = None
    state: Optional[str] = None

    @property
    def committed(self) -> bool:
        return (self.state or "").upper() == "COMMITTED"

    def identifier(self) -> ArtifactIdentifier:
        if not self.namespace or not self.auid or not self.uri or self.version is None:
            raise ValueError("artifactProps lacks namespace, auid, uri or version")
        return ArtifactIdentifier(
            namespace=self.namespace,
            auid=self.auid,
            uri=self.uri,
            version=self.version,
            uuid=self.uuid,
        )


class NamespacedAuid(BaseModel):
    """An Archival Unit qualified by namespace.

    The string form ``"namespace|auid"`` is the key carried by InvalidateAu
    messages. AUIDs themselves contain ``|``, so parsing splits on the first
    one only.
    """

    model_config = ConfigDict(frozen=True)

    namespace: str
    auid: str

    @property
    def key(self) -> str:
        return f"{self.namespace}|{self.auid}"

    @classmethod
    def from_key(cls, key: str) -> NamespacedAuid:
        namespace, sep, auid = key.partition("|")
        if not sep or not namespace or not auid:
            raise ValueError(f"Malformed AU key: {key!r}")
        return cls(namespace=namespace, auid=auid)


# =============================================================================
# HTTP Status Line
# =============================================================================
class HttpStatusLine(BaseModel):
    """Status line of an archived HTTP response, e.g. ``HTTP/1.1 200 OK``."""

    model_config = ConfigDict(frozen=True)

    protocol: str = "HTTP/1.1"
    status_code: int = 200
    reason: str = ""

    @classmethod
    def parse(cls, line: str) -> HttpStatusLine:
        parts = line.strip().split(" ", 2)
        if len(parts) < 2 or not parts[0].startswith("HTTP/"):
            raise ValueError(f"Malformed HTTP status line: {line!r}")
        try:
            status_code = int(parts[1])
        except ValueError as exc:
            raise ValueError(f"Malformed HTTP status code: {line!r}") from exc
        reason = parts[2] if len(parts) == 3 else ""
        return cls(protocol=parts[0], status_code=status_code, reason=reason)

    def __str__(self) -> str:
        return f"{self.protocol} {self.status_code} {self.reason}".rstrip()


# =============================================================================
# ArtifactData
# =============================================================================
# ArtifactData owns a payload stream that can be read exactly once. The cache
# stores materialized instances (payload buffered in memory) and hands out
# copies, each with a fresh stream over the shared buffer.
# =============================================================================
class ArtifactData:
    """An artifact together with its archived HTTP status, headers and payload.

    The content stream is single use: ``get_content_stream()`` hands it out
    once and raises ``ArtifactStateError`` afterwards. Call ``materialize()``
    to buffer the payload so that ``copy()`` can produce independent,
    replayable instances.

    Example:
        >>> data = ArtifactData(
        ...     identifier=ArtifactIdentifier(
        ...         namespace="ns1", auid="au1", uri="http://x/", version=1,
        ...     ),
        ...     http_status=HttpStatusLine.parse("HTTP/1.1 200 OK"),
        ...     headers={"Content-Type": "text/html"},
        ...     content=b"<html/>",
        ... )
        >>> data.read_content()
        b'<html/>'
    """

    def __init__(
        self,
        identifier: Optional[ArtifactIdentifier] = None,
        *,
        content: Optional[bytes | IO[bytes]] = None,
        headers: Optional[httpx.Headers | dict[str, str] | list[tuple[str, str]]] = None,
        http_status: Optional[HttpStatusLine] = None,
        committed: bool = False,
        content_length: Optional[int] = None,
        content_digest: Optional[str] = None,
        storage_url: Optional[str] = None,
        collection_date: Optional[int] = None,
        store_date: Optional[int] = None,
    ) -> None:
        self.identifier = identifier
        self.headers = httpx.Headers(headers)
        self.http_status = http_status
        self.committed = committed
        self.content_length = content_length
        self.content_digest = content_digest
        self.storage_url = storage_url
        self.collection_date = collection_date
        self.store_date = store_date

        self._buffer: Optional[bytes] = None
        self._stream: Optional[IO[bytes]] = None
        if isinstance(content, (bytes, bytearray)):
            self._buffer = bytes(content)
            self._stream = io.BytesIO(self._buffer)
            if self.content_length is None:
                self.content_length = len(self._buffer)
        elif content is not None:
            self._stream = content
        self._had_stream = self._stream is not None
        self._stream_handed_out = False

    # =========================================================================
    # Convenience Accessors
    # =========================================================================

    @property
    def namespace(self) -> Optional[str]:
        return self.identifier.namespace if self.identifier else None

    @property
    def uuid(self) -> Optional[str]:
        return self.identifier.uuid if self.identifier else None

    @property
    def is_http_response(self) -> bool:
        """True when the artifact is an archived HTTP response (has a status)."""
        return self.http_status is not None

    @property
    def is_materialized(self) -> bool:
        return self._buffer is not None or not self._had_stream

    def apply_artifact(self, artifact: Artifact) -> ArtifactData:
        """Copy identity and index properties from ``artifact`` onto this data."""
        self.identifier = artifact.identifier
        self.committed = artifact.committed
        self.content_length = artifact.content_length
        self.content_digest = artifact.content_digest
        if artifact.storage_url is not None:
            self.storage_url = artifact.storage_url
        if artifact.collection_date is not None:
            self.collection_date = artifact.collection_date
        return self

    # =========================================================================
    # Content Stream
    # =========================================================================

    def has_content_stream(self) -> bool:
        """True if the content stream is present and not yet handed out."""
        return self._stream is not None and not self._stream_handed_out

    def had_content_stream(self) -> bool:
        """True if this instance was created with a content stream."""
        return self._had_stream

    def get_content_stream(self) -> IO[bytes]:
        """Hand out the content stream. May only be called once.

        Raises:
            ArtifactStateError: If there is no content, or it was already
                handed out.
        """
        if not self._had_stream:
            raise ArtifactStateError(
                message="ArtifactData has no content stream",
                error_code="NO_CONTENT",
                details={"uuid": self.uuid},
            )
        if self._stream_handed_out or self._stream is None:
            raise ArtifactStateError(
                message="Content stream has already been consumed",
                error_code="CONTENT_CONSUMED",
                details={"uuid": self.uuid},
            )
        self._stream_handed_out = True
        return self._stream

    def read_content(self) -> bytes:
        """Consume the content stream and return its bytes."""
        stream = self.get_content_stream()
        try:
            return stream.read()
        finally:
            stream.close()

    def materialize(self) -> ArtifactData:
        """Buffer the remaining payload in memory so that it can be replayed.

        Raises:
            ArtifactStateError: If the stream was already handed out.
        """
        if self._buffer is not None or not self._had_stream:
            return self
        if self._stream_handed_out or self._stream is None:
            raise ArtifactStateError(
                message="Cannot materialize a consumed content stream",
                error_code="CONTENT_CONSUMED",
                details={"uuid": self.uuid},
            )
        sink = io.BytesIO()
        shutil.copyfileobj(self._stream, sink)
        self._stream.close()
        self._buffer = sink.getvalue()
        self._stream = io.BytesIO(self._buffer)
        return self

    def copy(self, include_content: bool = True) -> ArtifactData:
        """Return an independent copy with its own fresh content stream.

        Only materialized instances can be copied with content.
        """
        if include_content and self._had_stream and self._buffer is None:
            raise ArtifactStateError(
                message="Only materialized ArtifactData can be copied with content",
                error_code="NOT_MATERIALIZED",
                details={"uuid": self.uuid},
            )
        return ArtifactData(
            self.identifier,
            content=self._buffer if include_content else None,
            headers=self.headers.copy(),
            http_status=self.http_status,
            committed=self.committed,
            content_length=self.content_length,
            content_digest=self.content_digest,
            storage_url=self.storage_url,
            collection_date=self.collection_date,
            store_date=self.store_date,
        )

    def release(self) -> None:
        """Close the content stream if it is still held. Idempotent."""
        if self._stream is not None and not self._stream_handed_out:
            self._stream.close()
        self._stream = None

    # =========================================================================
    # Serialization
    # =========================================================================

    def artifact_properties(self) -> dict[str, Any]:
        """Properties sent in the ``artifactProps`` part when adding."""
        if self.identifier is None:
            raise InvalidArgumentError(
                message="ArtifactData has no identifier",
                argument="identifier",
            )
        props: dict[str, Any] = {
            "namespace": self.identifier.namespace,
            "auid": self.identifier.auid,
            "uri": self.identifier.uri,
        }
        if self.identifier.uuid:
            props["uuid"] = self.identifier.uuid
        if self.collection_date is not None:
            props["collectionDate"] = self.collection_date
        return props

    def __repr__(self) -> str:
        return (
            f"ArtifactData(identifier={self.identifier!r}, "
            f"http_status={str(self.http_status) if self.http_status else None!r}, "
            f"content_length={self.content_length!r}, "
            f"committed={self.committed!r})"
        )


# =============================================================================
# Paging
# =============================================================================
class PageInfo(BaseModel):
    """Paging metadata of one page. No continuation token means last page."""

    model_config = _WIRE_CONFIG

    total_count: Optional[int] = None
    results_per_page: Optional[int] = None
    continuation_token: Optional[str] = None
    cur_link: Optional[str] = None
    next_link: Optional[str] = None


class ArtifactPageInfo(BaseModel):
    """One page of an artifact listing."""

    model_config = _WIRE_CONFIG

    artifacts: list[Artifact] = Field(default_factory=list)
    page_info: PageInfo = Field(default_factory=PageInfo)


class AuidPageInfo(BaseModel):
    """One page of an AUID listing."""

    model_config = _WIRE_CONFIG

    auids: list[str] = Field(default_factory=list)
    page_info: PageInfo = Field(default_factory=PageInfo)


# =============================================================================
# Informational Responses
# =============================================================================
class AuSize(BaseModel):
    """Size breakdown of an Archival Unit."""

    model_config = _WIRE_CONFIG

    total_latest_versions: Optional[int] = None
    total_all_versions: Optional[int] = None
    total_warc_size: Optional[int] = None


class StorageInfo(BaseModel):
    """Capacity information of one storage area (store or index)."""

    model_config = _WIRE_CONFIG

    type: Optional[str] = None
    name: Optional[str] = None
    path: Optional[str] = None
    size: int = 0
    used: int = 0
    avail: int = 0
    percent_used_string: Optional[str] = None
    percent_used: float = 0.0
    components: list[str] = Field(default_factory=list)


class RepositoryInfo(BaseModel):
    """Storage and index capacity of the repository service."""

    model_config = _WIRE_CONFIG

    store_info: Optional[StorageInfo] = None
    index_info: Optional[StorageInfo] = None


class ImportStatus(BaseModel):
    """Outcome of importing one record of an archive."""

    model_config = _WIRE_CONFIG

    warc_id: Optional[str] = None
    offset: Optional[int] = None
    url: Optional[str] = None
    artifact_uuid: Optional[str] = None
    digest: Optional[str] = None
    version: Optional[int] = None
    status: ImportStatusCode
    status_message: Optional[str] = None


def parse_iso_instant(value: Optional[str]) -> Optional[int]:
    """Parse an ISO-8601 instant (``2024-01-02T03:04:05Z``) to epoch millis."""
    if not value:
        return None
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    return int(parsed.timestamp() * 1000)
