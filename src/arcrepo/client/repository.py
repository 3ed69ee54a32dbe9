"""
arcrepo.client.repository - REST Repository Client
====================================================

``RestRepositoryClient`` is the single entry point applications use to talk
to a remote artifact repository. It ties the transport, the wire codecs, the
artifact cache and the paging iterator together:

    ┌──────────────────────────────────────────────────────────────┐
    │                    RestRepositoryClient                      │
    │                                                              │
    │   add / commit / delete      get_artifact_data / get_*       │
    │          │                          │                        │
    │          │               ┌──────────▼──────────┐             │
    │          │               │    ArtifactCache    │<── CacheEnabler <── MessageBus
    │          │               └──────────┬──────────┘   (invalidations)   (Redis)
    │          │                      miss│                        │
    │   ┌──────▼──────────────────────────▼──────┐                 │
    │   │   HttpTransport (httpx) + codec        │                 │
    │   └──────┬─────────────────────────────────┘                 │
    │          │  listings                                         │
    │   ┌──────▼──────────┐                                        │
    │   │ PagingIterator  │──> cache: put / put_latest             │
    │   └─────────────────┘                                        │
    └──────────────────────────────────────────────────────────────┘

ArtifactData Endpoints:
    GET /artifacts/{uuid}/response   framed HTTP response (default)
    GET /artifacts/{uuid}/payload    raw payload, headers from the response
    GET /artifacts/{uuid}            multipart: artifactProps,
                                     httpResponseHeader, payload

    The framed endpoint answers in one of three shapes, chosen by response
    headers:

    X-Lockss-Includes-Content  X-Lockss-Artifact-Data-Type   body
    ─────────────────────────  ────────────────────────────  ───────────────────────────
    (absent / true)            (absent)                      status + headers + payload
    (absent / true)            resource                      headers + payload, no status
    false                      any                           status + headers only
                                                             (status dropped if resource)

Error Mapping:
    404 on a call addressed to one artifact (namespace, uuid) raises
    NoSuchArtifactError. 404 on a listing page ends the listing. 404 on a
    single-artifact lookup by URL returns None. Everything else propagates
    as RepositoryHttpError / RepositoryTransportError unchanged.

Usage:
    >>> async with RestRepositoryClient(base_url="http://localhost:24610") as repo:
    ...     await repo.enable_artifact_cache()
    ...     async with repo.get_artifacts("ns1", "auid1") as artifacts:
    ...         async for artifact in artifacts:
    ...             data = await repo.get_artifact_data(artifact)
    ...             body = data.read_content()
"""

from __future__ import annotations

import contextlib
import json
from collections.abc import Callable, Iterator
from typing import IO, Any, Optional, TypeVar
from urllib.parse import quote

import httpx
import structlog
from pydantic import TypeAdapter, ValidationError

from arcrepo.cache.artifact_cache import ArtifactCache
from arcrepo.cache.invalidation import CacheEnabler
from arcrepo.core.config import RepositoryClientConfig, configure_logging
from arcrepo.core.enums import ArchiveType, ArtifactVersions, IncludeContent, InvalidateOp
from arcrepo.core.exceptions import (
    InvalidArgumentError,
    NoSuchArtifactError,
    RepositoryError,
    RepositoryHttpError,
    RepositoryProtocolError,
)
from arcrepo.core.models import (
    Artifact,
    ArtifactData,
    ArtifactPageInfo,
    ArtifactProperties,
    AuidPageInfo,
    AuSize,
    RepositoryInfo,
    StorageInfo,
    parse_iso_instant,
)
from arcrepo.iteration.import_status import ImportStatusIterator
from arcrepo.iteration.paging import Page, PagingIterator
from arcrepo.pubsub.message_bus import MessageBus, RedisMessageBus
from arcrepo.transport.codec import (
    MULTIPART_ARTIFACT_HTTP_RESPONSE_HEADER,
    MULTIPART_ARTIFACT_PAYLOAD,
    MULTIPART_ARTIFACT_PROPS,
    MultipartReader,
    empty_multipart_body,
    new_spool,
    read_http_response_header,
    serialize_http_response_header,
)
from arcrepo.transport.http import HttpTransport, translate_transport_errors


logger = structlog.get_logger()

T = TypeVar("T")


# =============================================================================
# Wire Constants
# =============================================================================
HEADER_INCLUDES_CONTENT = "X-Lockss-Includes-Content"
HEADER_ARTIFACT_DATA_TYPE = "X-Lockss-Artifact-Data-Type"
HEADER_LOCKSS_CONTENT_TYPE = "X-Lockss-Content-Type"
HEADER_STORE_DATE = "storeDate"
HEADER_CONTENT_DIGEST = "contentDigest"

APPLICATION_HTTP_RESPONSE = "application/http;msgtype=response"
APPLICATION_WARC = "application/warc"


def _require(value: Any, argument: str) -> None:
    """Raise InvalidArgumentError for a missing or empty required argument."""
    if value is None or (isinstance(value, str) and not value):
        raise InvalidArgumentError(message=f"{argument} is required", argument=argument)


def _segment(value: str) -> str:
    """Percent-encode one path segment; AUIDs contain '/', '&' and '|'."""
    return quote(value, safe="")


def _decode(target: type[T], response: httpx.Response) -> T:
    """Validate a JSON response body against ``target``."""
    try:
        return TypeAdapter(target).validate_json(response.content)
    except ValidationError as exc:
        raise RepositoryProtocolError(
            message=f"Unexpected response body from {response.request.url.path}",
            error_code="MALFORMED_RESPONSE",
            details={"url": str(response.request.url), "errors": exc.error_count()},
        ) from exc


@contextlib.contextmanager
def _artifact_not_found(namespace: Optional[str], uuid: str) -> Iterator[None]:
    """Translate a 404 on an identity-addressed call into NoSuchArtifactError."""
    try:
        yield
    except RepositoryHttpError as exc:
        if exc.status_code == 404:
            raise NoSuchArtifactError(
                message=f"Artifact not found: {uuid}",
                namespace=namespace,
                uuid=uuid,
                details={"reason": exc.reason},
            ) from exc
        raise


class RestRepositoryClient:
    """Client for a remote artifact repository, with an optional local cache.

    Args:
        config: Client configuration. Defaults to ``RepositoryClientConfig()``
            (environment variables, then defaults).
        transport: Optional ``httpx`` transport, e.g. ``httpx.MockTransport``
            in tests.
        message_bus: Pub/sub channel for cache invalidations. When None and
            the cache is enabled, a RedisMessageBus is built from
            ``config.redis``.
        **overrides: Top-level config fields overriding ``config``.

    Lifecycle:
        1. ``RestRepositoryClient(config)``: no network activity yet
        2. ``await enable_artifact_cache()``: optional, enables in the
           background
        3. repository operations
        4. ``await aclose()``: stops the cache listener and closes
           connections

    Example:
        >>> repo = RestRepositoryClient(base_url="http://repo:24610")
        >>> artifact = await repo.add_artifact(data)
        >>> artifact = await repo.commit_artifact("ns1", artifact.uuid)
        >>> await repo.aclose()
    """

    def __init__(
        self,
        config: Optional[RepositoryClientConfig] = None,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        message_bus: Optional[MessageBus] = None,
        **overrides: Any,
    ) -> None:
        if config is None:
            config = RepositoryClientConfig(**overrides)
        elif overrides:
            config = RepositoryClientConfig(**{**config.model_dump(), **overrides})
        self._config = config

        if config.configure_logging:
            configure_logging(config.log_level)

        self._http = HttpTransport(
            config.base_url,
            username=config.username,
            password=config.password,
            timeout=config.timeout_seconds,
            transport=transport,
        )
        self._cache = ArtifactCache(
            max_artifacts=config.cache.max_artifacts,
            max_artifact_data=config.cache.max_artifact_data,
            max_content_bytes=config.cache.max_content_bytes,
        )
        self._bus = message_bus
        self._owns_bus = False
        self._enabler: Optional[CacheEnabler] = None
        self._logger = logger.bind(component="repository_client", base_url=config.base_url)

    # =========================================================================
    # Properties and Lifecycle
    # =========================================================================

    @property
    def config(self) -> RepositoryClientConfig:
        return self._config

    @property
    def base_url(self) -> str:
        return self._config.base_url

    @property
    def artifact_cache(self) -> ArtifactCache:
        return self._cache

    async def is_ready(self) -> bool:
        """Return True if the repository service answers ``/repoinfo``."""
        try:
            await self.get_repository_info()
        except RepositoryError as exc:
            self._logger.debug("repository_not_ready", error=str(exc))
            return False
        return True

    async def aclose(self) -> None:
        """Stop the cache listener and close every connection."""
        if self._enabler is not None:
            await self._enabler.stop()
            self._enabler = None
        if self._owns_bus and self._bus is not None:
            await self._bus.disconnect()
        await self._http.aclose()
        self._logger.debug("repository_client_closed")

    async def __aenter__(self) -> RestRepositoryClient:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    # =========================================================================
    # Artifact Cache
    # =========================================================================

    async def enable_artifact_cache(
        self,
        enable: bool = True,
        bus: Optional[MessageBus] = None,
    ) -> RestRepositoryClient:
        """Enable (in the background) or disable the artifact cache.

        Enabling returns immediately; the cache starts serving hits once the
        invalidation channel is connected and the repository has answered
        the Echo probe. Disabling stops the listener and drops every entry.
        """
        if not enable:
            if self._enabler is not None:
                await self._enabler.stop()
                self._enabler = None
            self._cache.enable(False)
            return self

        if self.is_artifact_cache_enabled():
            return self

        if bus is not None:
            self._bus, self._owns_bus = bus, False
        elif self._bus is None:
            self._bus = RedisMessageBus(
                self._config.redis.url,
                socket_timeout=self._config.redis.socket_timeout,
            )
            self._owns_bus = True

        cache_config = self._config.cache
        self._enabler = CacheEnabler(
            self._cache,
            self._bus,
            identity=self.base_url,
            topic=cache_config.topic,
            echo_interval=cache_config.echo_interval_seconds,
            retry_initial=cache_config.connect_retry_initial_seconds,
            retry_max=cache_config.connect_retry_max_seconds,
        )
        self._enabler.start()
        self._logger.info("artifact_cache_enabling", topic=cache_config.topic)
        return self

    def is_artifact_cache_enabled(self) -> bool:
        """True once enabling has been requested, even before it completes."""
        if self._cache.is_enabled:
            return True
        return self._enabler is not None and self._enabler.is_running

    # =========================================================================
    # Adding, Committing and Deleting Artifacts
    # =========================================================================

    async def add_artifact(self, data: ArtifactData) -> Artifact:
        """Upload an artifact. The new version is uncommitted.

        ``data`` is updated with the repository-assigned uuid and version.

        Raises:
            InvalidArgumentError: If ``data`` or its identifier is missing.
        """
        _require(data, "data")
        _require(data.identifier, "data.identifier")
        identifier = data.identifier

        # Buffer the payload so the cached copy can be replayed.
        if self._cache.is_enabled and data.has_content_stream():
            content_length = data.content_length
            if content_length is None or content_length <= self._cache.max_content_bytes:
                data.materialize()

        if data.is_materialized and data.has_content_stream():
            payload: Any = data.copy().get_content_stream()
        elif data.has_content_stream():
            payload = data.get_content_stream()
        else:
            payload = b""

        content_type = data.headers.get("content-type")
        payload_headers = {"Content-Type": content_type or "application/octet-stream"}
        if content_type:
            payload_headers[HEADER_LOCKSS_CONTENT_TYPE] = content_type
        files: list[tuple[str, Any]] = [
            (
                MULTIPART_ARTIFACT_PROPS,
                (None, json.dumps(data.artifact_properties()).encode("utf-8"), "application/json"),
            ),
        ]
        if data.http_status is not None:
            files.append((
                MULTIPART_ARTIFACT_HTTP_RESPONSE_HEADER,
                (
                    None,
                    serialize_http_response_header(data.http_status, data.headers),
                    APPLICATION_HTTP_RESPONSE,
                ),
            ))
        files.append((
            MULTIPART_ARTIFACT_PAYLOAD,
            (
                MULTIPART_ARTIFACT_PAYLOAD,
                payload,
                content_type or "application/octet-stream",
                payload_headers,
            ),
        ))

        self._logger.debug(
            "artifact_adding",
            namespace=identifier.namespace,
            auid=identifier.auid,
            uri=identifier.uri,
        )
        generation = self._cache.generation
        try:
            response = await self._http.request("POST", "/artifacts", files=files)
        finally:
            if hasattr(payload, "close"):
                payload.close()
        artifact = _decode(Artifact, response)

        self._cache.put(artifact, generation)
        self._cache.put_artifact_data(
            artifact.namespace, artifact.uuid, data.apply_artifact(artifact), generation
        )
        self._logger.info(
            "artifact_added",
            namespace=artifact.namespace,
            uuid=artifact.uuid,
            version=artifact.version,
        )
        return artifact

    async def add_artifacts(
        self,
        namespace: str,
        auid: str,
        archive: IO[bytes] | bytes,
        archive_type: ArchiveType = ArchiveType.WARC,
        store_duplicate: bool = False,
        exclude_status_pattern: Optional[str] = None,
    ) -> ImportStatusIterator:
        """Import every record of an archive into an AU.

        Returns a lazy iterator over per-record ImportStatus values, decoded
        as the server streams them. Close it (or use ``async with``) if not
        read to the end.

        Raises:
            NotImplementedError: For archive types other than WARC.
        """
        _require(namespace, "namespace")
        _require(auid, "auid")
        _require(archive, "archive")
        if archive_type != ArchiveType.WARC:
            raise NotImplementedError(f"Archive type not supported: {archive_type.value}")

        response = await self._http.send_stream(
            "POST",
            "/archives",
            params={
                "namespace": namespace,
                "storeDuplicate": True if store_duplicate else None,
                "excludeStatusPattern": exclude_status_pattern or None,
            },
            data={"auid": auid},
            files=[("archive", ("archive", archive, APPLICATION_WARC))],
        )
        self._logger.info("archive_import_started", namespace=namespace, auid=auid)
        return ImportStatusIterator(response)

    async def commit_artifact(self, namespace: str, uuid: str) -> Artifact:
        """Commit an uncommitted artifact for permanent storage.

        Entries of the uncommitted version, and the latest entry of its URL,
        are dropped. The result is cached as a version only: commits may
        complete out of order, so it is not assumed to be the latest.
        """
        _require(namespace, "namespace")
        _require(uuid, "uuid")

        body, content_type = empty_multipart_body()
        generation = self._cache.generation
        with _artifact_not_found(namespace, uuid):
            response = await self._http.request(
                "PUT",
                f"/artifacts/{_segment(uuid)}",
                params={"namespace": namespace, "committed": True},
                headers={"Content-Type": content_type},
                content=body,
            )
        artifact = _decode(Artifact, response)
        fresh = self._cache.generation == generation
        self._cache.invalidate_uuid(InvalidateOp.COMMIT, namespace, uuid)
        if fresh:
            self._cache.put(artifact)
        self._logger.info("artifact_committed", namespace=namespace, uuid=uuid, version=artifact.version)
        return artifact

    async def delete_artifact(self, namespace: str, uuid: str) -> None:
        """Delete an artifact. Its cache entries are dropped first."""
        _require(namespace, "namespace")
        _require(uuid, "uuid")

        self._cache.invalidate_uuid(InvalidateOp.DELETE, namespace, uuid)
        with _artifact_not_found(namespace, uuid):
            await self._http.request(
                "DELETE",
                f"/artifacts/{_segment(uuid)}",
                params={"namespace": namespace},
            )
        self._logger.info("artifact_deleted", namespace=namespace, uuid=uuid)

    # =========================================================================
    # Fetching ArtifactData
    # =========================================================================

    async def get_artifact_data(
        self,
        artifact: Artifact,
        include_content: IncludeContent = IncludeContent.ALWAYS,
    ) -> ArtifactData:
        """Return the ArtifactData of ``artifact``, from the cache if possible.

        Raises:
            NoSuchArtifactError: If the repository does not know the artifact.
            RepositoryProtocolError: If the framed response is malformed.
        """
        _require(artifact, "artifact")
        if self._config.use_multipart_endpoint:
            return await self.get_artifact_data_by_multipart(
                artifact.namespace, artifact.uuid, include_content
            )

        cached = self._cached_data(
            artifact.namespace, artifact.uuid, include_content, artifact.content_length
        )
        if cached is not None:
            return cached

        generation = self._cache.generation
        with _artifact_not_found(artifact.namespace, artifact.uuid):
            response = await self._http.send_stream(
                "GET",
                f"/artifacts/{_segment(artifact.uuid)}/response",
                params={"namespace": artifact.namespace, "includeContent": include_content},
                headers={"Accept": f"{APPLICATION_HTTP_RESPONSE}, application/json"},
            )
        headers_only = response.headers.get(HEADER_INCLUDES_CONTENT) == "false"
        resource = response.headers.get(HEADER_ARTIFACT_DATA_TYPE) == "resource"

        body = await self._spool_body(response)
        try:
            store_date = _store_date(response.headers)
            status, headers = read_http_response_header(body, expect_status=not resource)
        except RepositoryError:
            body.close()
            raise
        if resource:
            status = None
        if headers_only:
            body.close()

        data = ArtifactData(
            headers=headers,
            http_status=status,
            content=None if headers_only else body,
            store_date=store_date,
        ).apply_artifact(artifact)
        shape = "resource" if resource else "response"
        return self._remember(data, generation, shape=shape, headers_only=headers_only)

    async def get_artifact_data_by_payload(
        self,
        artifact: Artifact,
        include_content: IncludeContent = IncludeContent.ALWAYS,
    ) -> ArtifactData:
        """Fetch ArtifactData from the raw payload endpoint.

        There is no archived status line; headers are assembled from the
        response's Content-Type, Content-Length and digest header.
        """
        _require(artifact, "artifact")
        cached = self._cached_data(
            artifact.namespace, artifact.uuid, include_content, artifact.content_length
        )
        if cached is not None:
            return cached

        generation = self._cache.generation
        with _artifact_not_found(artifact.namespace, artifact.uuid):
            response = await self._http.send_stream(
                "GET",
                f"/artifacts/{_segment(artifact.uuid)}/payload",
                params={"namespace": artifact.namespace, "includeContent": include_content},
                headers={"Accept": "*/*, application/json"},
            )
        headers_only = response.headers.get(HEADER_INCLUDES_CONTENT) == "false"
        try:
            store_date = _store_date(response.headers)
        except RepositoryProtocolError:
            await response.aclose()
            raise

        headers = httpx.Headers()
        for name in ("content-type", "content-length", HEADER_CONTENT_DIGEST):
            value = response.headers.get(name)
            if value is not None:
                headers[name] = value

        if headers_only:
            await response.aclose()
            body = None
        else:
            body = await self._spool_body(response)

        data = ArtifactData(headers=headers, content=body, store_date=store_date)
        data.apply_artifact(artifact)
        return self._remember(data, generation, shape="payload", headers_only=headers_only)

    async def get_artifact_data_by_multipart(
        self,
        namespace: str,
        uuid: str,
        include_content: IncludeContent = IncludeContent.ALWAYS,
    ) -> ArtifactData:
        """Fetch ArtifactData from the multipart artifact endpoint."""
        _require(namespace, "namespace")
        _require(uuid, "uuid")
        cached = self._cached_data(namespace, uuid, include_content)
        if cached is not None:
            return cached

        generation = self._cache.generation
        with _artifact_not_found(namespace, uuid):
            response = await self._http.send_stream(
                "GET",
                f"/artifacts/{_segment(uuid)}",
                params={"namespace": namespace, "includeContent": include_content},
                headers={"Accept": "multipart/form-data, application/json"},
            )

        reader: Optional[MultipartReader] = None
        try:
            reader = MultipartReader.for_content_type(
                response.headers.get("content-type"),
                spool_max_bytes=self._config.spool_max_bytes,
            )
            with translate_transport_errors("GET", str(response.request.url)):
                async for chunk in response.aiter_bytes():
                    reader.write(chunk)
        except BaseException:
            if reader is not None:
                reader.close()
            raise
        finally:
            await response.aclose()
        parts = reader.finalize()

        try:
            data = self._data_from_parts(parts)
        except Exception:
            reader.close()
            raise
        return self._remember(
            data, generation, shape="multipart", headers_only=not data.had_content_stream()
        )

    def _data_from_parts(self, parts: dict[str, Any]) -> ArtifactData:
        props_part = parts.pop(MULTIPART_ARTIFACT_PROPS, None)
        if props_part is None:
            raise RepositoryProtocolError(
                message=f"Multipart response lacks the {MULTIPART_ARTIFACT_PROPS} part",
                error_code="MALFORMED_MULTIPART",
            )
        try:
            props = ArtifactProperties.model_validate_json(props_part.read())
            identifier = props.identifier()
        except ValueError as exc:
            raise RepositoryProtocolError(
                message=f"Malformed {MULTIPART_ARTIFACT_PROPS} part: {exc}",
                error_code="MALFORMED_MULTIPART",
            ) from exc
        finally:
            props_part.close()

        status = None
        headers = httpx.Headers()
        header_part = parts.pop(MULTIPART_ARTIFACT_HTTP_RESPONSE_HEADER, None)
        if header_part is not None:
            try:
                status, headers = read_http_response_header(header_part.body)
            finally:
                header_part.close()

        content = None
        payload_part = parts.pop(MULTIPART_ARTIFACT_PAYLOAD, None)
        if payload_part is not None:
            content = payload_part.body
            lockss_type = payload_part.headers.get(HEADER_LOCKSS_CONTENT_TYPE)
            if lockss_type:
                headers["Content-Type"] = lockss_type

        # Parts this client does not know about.
        for part in parts.values():
            part.close()

        return ArtifactData(
            identifier,
            content=content,
            headers=headers,
            http_status=status,
            committed=props.committed,
            content_length=props.content_length,
            content_digest=props.content_digest,
            collection_date=props.collection_date,
            store_date=props.store_date,
        )

    def _cached_data(
        self,
        namespace: str,
        uuid: str,
        include_content: IncludeContent,
        content_length: Optional[int] = None,
    ) -> Optional[ArtifactData]:
        need_content = include_content == IncludeContent.ALWAYS
        if include_content == IncludeContent.IF_SMALL:
            # Large payloads would come back headers-only anyway.
            need_content = content_length is None or content_length <= self._config.small_content_threshold
        cached = self._cache.get_artifact_data(namespace, uuid, need_content=need_content)
        if cached is not None:
            self._logger.debug("artifact_data_cache_hit", namespace=namespace, uuid=uuid)
        return cached

    def _remember(
        self, data: ArtifactData, generation: int, *, shape: str, headers_only: bool
    ) -> ArtifactData:
        self._cache.put_artifact_data(data.namespace, data.uuid, data, generation)
        self._logger.debug(
            "artifact_data_fetched",
            namespace=data.namespace,
            uuid=data.uuid,
            shape=shape,
            headers_only=headers_only,
        )
        return data

    async def _spool_body(self, response: httpx.Response) -> IO[bytes]:
        """Copy a streamed body into a spool and close the response."""
        spool = new_spool(self._config.spool_max_bytes)
        try:
            with translate_transport_errors(response.request.method, str(response.request.url)):
                async for chunk in response.aiter_bytes():
                    spool.write(chunk)
        except BaseException:
            spool.close()
            raise
        finally:
            await response.aclose()
        spool.seek(0)
        return spool

    # =========================================================================
    # Single Artifact Lookups
    # =========================================================================

    async def get_artifact(self, namespace: str, auid: str, url: str) -> Optional[Artifact]:
        """Return the latest committed version of ``url`` in an AU, or None."""
        _require(namespace, "namespace")
        _require(auid, "auid")
        _require(url, "url")

        cached = self._cache.get_latest(namespace, auid, url)
        if cached is not None:
            return cached

        generation = self._cache.generation
        artifact = await self._lookup_one(
            namespace,
            auid,
            {"url": url, "version": "latest"},
        )
        if artifact is not None:
            self._cache.put_latest(artifact, generation)
        return artifact

    async def get_artifact_version(
        self,
        namespace: str,
        auid: str,
        url: str,
        version: int,
        include_uncommitted: bool = False,
    ) -> Optional[Artifact]:
        """Return one version of ``url`` in an AU, or None."""
        _require(namespace, "namespace")
        _require(auid, "auid")
        _require(url, "url")
        _require(version, "version")

        cached = self._cache.get(namespace, auid, url, version)
        if cached is not None:
            return cached

        generation = self._cache.generation
        artifact = await self._lookup_one(
            namespace,
            auid,
            {
                "url": url,
                "version": version,
                "includeUncommitted": True if include_uncommitted else None,
            },
        )
        if artifact is not None:
            self._cache.put(artifact, generation)
        return artifact

    async def _lookup_one(
        self,
        namespace: str,
        auid: str,
        params: dict[str, Any],
    ) -> Optional[Artifact]:
        try:
            response = await self._http.request(
                "GET",
                f"/aus/{_segment(auid)}/artifacts",
                params={"namespace": namespace, **params},
            )
        except RepositoryHttpError as exc:
            if exc.status_code == 404:
                return None
            raise
        artifacts = _decode(ArtifactPageInfo, response).artifacts
        if not artifacts:
            return None
        if len(artifacts) > 1:
            self._logger.warning(
                "artifact_lookup_multiple_results",
                count=len(artifacts),
                namespace=namespace,
                auid=auid,
                url=params.get("url"),
                version=params.get("version"),
            )
        return artifacts[0]

    # =========================================================================
    # Listings
    # =========================================================================

    def get_namespaces(self) -> PagingIterator[str]:
        """Iterate over the repository's namespaces."""

        def parse(response: httpx.Response) -> Page:
            return Page(items=_decode(list[str], response))

        return self._paged("/namespaces", {}, parse, paged=False)

    def get_au_ids(self, namespace: str) -> PagingIterator[str]:
        """Iterate over the AUIDs of a namespace."""
        _require(namespace, "namespace")

        def parse(response: httpx.Response) -> Page:
            info = _decode(AuidPageInfo, response)
            return Page(items=info.auids, continuation_token=info.page_info.continuation_token)

        return self._paged("/aus", {"namespace": namespace}, parse)

    def get_artifacts(self, namespace: str, auid: str) -> PagingIterator[Artifact]:
        """Iterate over the latest committed version of every URL in an AU."""
        _require(namespace, "namespace")
        _require(auid, "auid")
        return self._artifact_listing(
            f"/aus/{_segment(auid)}/artifacts",
            {"namespace": namespace, "version": "latest"},
            latest=True,
        )

    def get_artifacts_all_versions(
        self,
        namespace: str,
        auid: str,
        url: Optional[str] = None,
    ) -> PagingIterator[Artifact]:
        """Iterate over every committed version in an AU, or of one URL."""
        _require(namespace, "namespace")
        _require(auid, "auid")
        return self._artifact_listing(
            f"/aus/{_segment(auid)}/artifacts",
            {"namespace": namespace, "version": "all", "url": url},
        )

    def get_artifacts_with_prefix(
        self,
        namespace: str,
        auid: str,
        prefix: str,
    ) -> PagingIterator[Artifact]:
        """Iterate over the latest version of every URL in an AU matching ``prefix``."""
        _require(namespace, "namespace")
        _require(auid, "auid")
        _require(prefix, "prefix")
        return self._artifact_listing(
            f"/aus/{_segment(auid)}/artifacts",
            {"namespace": namespace, "urlPrefix": prefix},
            latest=True,
        )

    def get_artifacts_with_prefix_all_versions(
        self,
        namespace: str,
        auid: str,
        prefix: str,
    ) -> PagingIterator[Artifact]:
        """Iterate over every version of every URL in an AU matching ``prefix``."""
        _require(namespace, "namespace")
        _require(auid, "auid")
        _require(prefix, "prefix")
        return self._artifact_listing(
            f"/aus/{_segment(auid)}/artifacts",
            {"namespace": namespace, "version": "all", "urlPrefix": prefix},
        )

    def get_artifacts_with_url_from_all_aus(
        self,
        namespace: str,
        url: str,
        versions: ArtifactVersions = ArtifactVersions.ALL,
    ) -> PagingIterator[Artifact]:
        """Iterate over the versions of ``url`` across every AU of a namespace."""
        _require(namespace, "namespace")
        _require(url, "url")
        return self._artifact_listing(
            "/artifacts",
            {"namespace": namespace, "url": url, "versions": versions},
            latest=versions == ArtifactVersions.LATEST,
            cache_versions=True,
        )

    def get_artifacts_with_url_prefix_from_all_aus(
        self,
        namespace: str,
        prefix: str,
        versions: ArtifactVersions = ArtifactVersions.ALL,
    ) -> PagingIterator[Artifact]:
        """Iterate over artifacts matching ``prefix`` across every AU of a namespace."""
        _require(namespace, "namespace")
        _require(prefix, "prefix")
        return self._artifact_listing(
            "/artifacts",
            {"namespace": namespace, "urlPrefix": prefix, "versions": versions},
            latest=versions == ArtifactVersions.LATEST,
            cache_versions=True,
        )

    def _artifact_listing(
        self,
        path: str,
        params: dict[str, Any],
        *,
        latest: bool = False,
        cache_versions: bool = False,
    ) -> PagingIterator[Artifact]:
        def parse(response: httpx.Response) -> Page:
            info = _decode(ArtifactPageInfo, response)
            return Page(items=info.artifacts, continuation_token=info.page_info.continuation_token)

        store: Optional[Callable[[Artifact, int], None]] = None
        if latest:
            store = self._cache.put_latest
        elif cache_versions:
            store = self._cache.put
        return self._paged(path, params, parse, store=store)

    def _paged(
        self,
        path: str,
        params: dict[str, Any],
        parse: Callable[[httpx.Response], Page],
        *,
        store: Optional[Callable[[Any, int], None]] = None,
        paged: bool = True,
    ) -> PagingIterator[Any]:
        http = self._http
        cache = self._cache

        async def fetch(limit: Optional[int], token: Optional[str]) -> Page:
            query = dict(params)
            if paged:
                query["limit"] = limit
                query["continuationToken"] = token
            generation = cache.generation
            try:
                response = await http.request("GET", path, params=query)
            except RepositoryHttpError as exc:
                if exc.status_code == 404:
                    return Page(items=[])
                raise
            page = parse(response)
            if store is not None:
                for item in page.items:
                    store(item, generation)
            return page

        iterator_config = self._config.iterator
        return PagingIterator(
            fetch,
            page_sizes=iterator_config.page_sizes if paged else None,
            queue_len=iterator_config.queue_len,
            queue_get_timeout=iterator_config.queue_get_timeout_seconds,
            description=path,
        )

    # =========================================================================
    # AU and Repository Information
    # =========================================================================

    async def au_size(self, namespace: str, auid: str) -> AuSize:
        """Return the size breakdown of an AU."""
        _require(namespace, "namespace")
        _require(auid, "auid")
        response = await self._http.request(
            "GET",
            f"/aus/{_segment(auid)}/size",
            params={"namespace": namespace, "version": "all"},
        )
        return _decode(AuSize, response)

    async def get_repository_info(self) -> RepositoryInfo:
        response = await self._http.request("GET", "/repoinfo")
        return _decode(RepositoryInfo, response)

    async def get_storage_info(self) -> StorageInfo:
        response = await self._http.request("GET", "/repoinfo/storage")
        return _decode(StorageInfo, response)

    # =========================================================================
    # Bulk Store
    # =========================================================================

    async def start_bulk_store(self, namespace: str, auid: str) -> None:
        """Start a bulk store for an AU; adds are indexed in a temporary index."""
        await self._bulk_op(namespace, auid, "start")

    async def finish_bulk_store(self, namespace: str, auid: str) -> None:
        """Finish a bulk store. Blocks until the AU's index has been moved.

        Uses ``bulk_timeout_seconds`` as the read timeout (None = unbounded).
        """
        await self._bulk_op(
            namespace,
            auid,
            "finish",
            timeout=httpx.Timeout(self._config.timeout_seconds, read=self._config.bulk_timeout_seconds),
        )

    async def _bulk_op(
        self,
        namespace: str,
        auid: str,
        op: str,
        timeout: Any = httpx.USE_CLIENT_DEFAULT,
    ) -> None:
        _require(namespace, "namespace")
        _require(auid, "auid")
        body, content_type = empty_multipart_body()
        await self._http.request(
            "PUT",
            f"/aus/{_segment(auid)}/bulk",
            params={"namespace": namespace, "op": op},
            headers={"Content-Type": content_type},
            content=body,
            timeout=timeout,
        )
        self._logger.info("bulk_store_op", op=op, namespace=namespace, auid=auid)


def _store_date(headers: httpx.Headers) -> Optional[int]:
    """Parse the ISO-8601 store date header into epoch milliseconds."""
    value = headers.get(HEADER_STORE_DATE)
    try:
        return parse_iso_instant(value)
    except ValueError as exc:
        raise RepositoryProtocolError(
            message=f"Malformed {HEADER_STORE_DATE} header: {value!r}",
            error_code="MALFORMED_RESPONSE",
        ) from exc
