"""
arcrepo.cache.artifact_cache - Bounded Artifact Cache
=======================================================

In-memory cache of Artifact metadata and ArtifactData, owned by one
repository client instance and kept consistent with the repository by the
invalidation messages delivered through ``arcrepo.cache.invalidation``.

Layout:

    ┌──────────────────────────── ArtifactCache ─────────────────────────────┐
    │  _artifacts  LRU(max_artifacts)                                        │
    │     "ns:auid:uri:3"   → Artifact   (versioned entry)                   │
    │     "ns:auid:uri:-1"  → Artifact   (latest entry)                      │
    │  _uuid_index                                                           │
    │     (ns, uuid)        → "ns:auid:uri:3"                                │
    │  _data       LRU(max_artifact_data)                                    │
    │     (ns, uuid)        → ArtifactData (payload buffered)                │
    └────────────────────────────────────────────────────────────────────────┘

Rules:
    - Starts disabled. While disabled every get misses and every put is
      ignored; disabling flushes.
    - Every operation runs under one re-entrant lock, so the invalidation
      listener and client calls never observe a half-updated entry.
    - ArtifactData is stored materialized and served as independent copies,
      so a cached payload can be read any number of times.
    - Nothing here raises. An internal failure is logged and treated as a
      miss (get) or a no-op (put).
    - Every invalidation, flush and change of enabled state bumps
      ``generation``. A put carrying the generation read before its network
      fetch is dropped once the generation has moved, so a response that
      raced an invalidation is never cached.
"""

from __future__ import annotations

import threading
from collections import OrderedDict
from typing import Optional

import structlog
from pydantic import BaseModel

from arcrepo.core.enums import InvalidateOp
from arcrepo.core.models import Artifact, ArtifactData, NamespacedAuid


logger = structlog.get_logger()


class CacheStats(BaseModel):
    """Counters exposed for monitoring and tests."""

    artifact_hits: int = 0
    artifact_misses: int = 0
    data_hits: int = 0
    data_misses: int = 0
    artifact_evictions: int = 0
    data_evictions: int = 0
    invalidations: int = 0
    flushes: int = 0


class ArtifactCache:
    """Two-part LRU cache of Artifacts and ArtifactData.

    Args:
        max_artifacts: Capacity of the metadata part. Versioned and latest
            entries share this bound.
        max_artifact_data: Capacity of the ArtifactData part.
        max_content_bytes: Payloads larger than this are cached without
            content; a later request that needs content will miss.

    Example:
        >>> cache = ArtifactCache()
        >>> cache.enable(True)
        >>> cache.put_latest(artifact)
        >>> cache.get_latest(artifact.namespace, artifact.auid, artifact.uri)
        Artifact(...)
    """

    def __init__(
        self,
        max_artifacts: int = 500,
        max_artifact_data: int = 20,
        max_content_bytes: int = 1024 * 1024,
    ) -> None:
        self.max_artifacts = max_artifacts
        self.max_artifact_data = max_artifact_data
        self.max_content_bytes = max_content_bytes

        self._artifacts: OrderedDict[str, Artifact] = OrderedDict()
        self._uuid_index: dict[tuple[str, str], str] = {}
        self._data: OrderedDict[tuple[str, str], ArtifactData] = OrderedDict()

        self._lock = threading.RLock()
        self._enabled = False
        self._generation = 0
        self.stats = CacheStats()
        self._logger = logger.bind(component="artifact_cache")

    # =========================================================================
    # Enablement
    # =========================================================================

    @property
    def is_enabled(self) -> bool:
        return self._enabled

    @property
    def generation(self) -> int:
        """Invalidation counter; read it before a fetch whose result is cached."""
        return self._generation

    def enable(self, flag: bool) -> None:
        """Enable or disable the cache. Disabling drops every entry."""
        with self._lock:
            if flag == self._enabled:
                return
            self._enabled = flag
            self._generation += 1
            if not flag:
                self._clear()
        self._logger.info("artifact_cache_enabled" if flag else "artifact_cache_disabled")

    # =========================================================================
    # Artifact Metadata
    # =========================================================================

    def get(self, namespace: str, auid: str, url: str, version: int) -> Optional[Artifact]:
        """Return the cached Artifact for an exact version, or None."""
        return self._get_artifact(Artifact.make_key(namespace, auid, url, version))

    def get_latest(self, namespace: str, auid: str, url: str) -> Optional[Artifact]:
        """Return the cached latest version of a URL, or None."""
        return self._get_artifact(Artifact.make_latest_key(namespace, auid, url))

    def get_by_uuid(self, namespace: str, uuid: str) -> Optional[Artifact]:
        """Return the cached Artifact with this (namespace, uuid), or None."""
        with self._lock:
            if not self._enabled:
                return None
            key = self._uuid_index.get((namespace, uuid))
            return self._get_artifact(key) if key else None

    def put(self, artifact: Artifact, generation: Optional[int] = None) -> None:
        """Cache ``artifact`` as a specific version.

        With ``generation``, nothing is stored if an invalidation happened
        since that generation was read.
        """
        with self._lock:
            if not self._enabled or artifact is None or self._is_stale(generation):
                return
            try:
                key = artifact.key()
                self._store_artifact(key, artifact)
                self._uuid_index[(artifact.namespace, artifact.uuid)] = key
            except Exception as exc:
                self._logger.error("artifact_cache_put_error", error=str(exc))

    def put_latest(self, artifact: Artifact, generation: Optional[int] = None) -> None:
        """Cache ``artifact`` as the latest version of its URL, and as itself."""
        with self._lock:
            if not self._enabled or artifact is None or self._is_stale(generation):
                return
            self.put(artifact)
            try:
                self._store_artifact(artifact.latest_key(), artifact)
            except Exception as exc:
                self._logger.error("artifact_cache_put_error", error=str(exc))

    # =========================================================================
    # ArtifactData
    # =========================================================================

    def get_artifact_data(
        self,
        namespace: str,
        uuid: str,
        need_content: bool,
    ) -> Optional[ArtifactData]:
        """Return an independent copy of the cached ArtifactData, or None.

        An entry cached without content is a miss when ``need_content``.
        """
        with self._lock:
            if not self._enabled:
                return None
            entry = self._data.get((namespace, uuid))
            if entry is None or (need_content and not entry.had_content_stream()):
                self.stats.data_misses += 1
                return None
            try:
                result = entry.copy(include_content=need_content)
            except Exception as exc:
                self._logger.error("artifact_data_copy_error", uuid=uuid, error=str(exc))
                self.stats.data_misses += 1
                return None
            self._data.move_to_end((namespace, uuid))
            self.stats.data_hits += 1
            return result

    def put_artifact_data(
        self,
        namespace: str,
        uuid: str,
        data: ArtifactData,
        generation: Optional[int] = None,
    ) -> None:
        """Cache ``data``.

        The payload is buffered first (``data`` keeps a fresh stream over the
        buffer, so the caller can still read it). Payloads larger than
        ``max_content_bytes``, or whose stream was already handed out, are
        cached without content. A stale ``generation`` stores nothing.
        """
        with self._lock:
            if not self._enabled or data is None or self._is_stale(generation):
                return
            try:
                stored = self._storable_copy(data)
            except Exception as exc:
                self._logger.error("artifact_data_put_error", uuid=uuid, error=str(exc))
                return
            key = (namespace, uuid)
            self._data[key] = stored
            self._data.move_to_end(key)
            while len(self._data) > self.max_artifact_data:
                evicted_key, evicted = self._data.popitem(last=False)
                evicted.release()
                self.stats.data_evictions += 1
                self._logger.debug("artifact_data_evicted", namespace=evicted_key[0], uuid=evicted_key[1])

    def _storable_copy(self, data: ArtifactData) -> ArtifactData:
        if data.has_content_stream():
            length = data.content_length
            if length is not None and length > self.max_content_bytes:
                return data.copy(include_content=False)
            data.materialize()
            return data.copy()
        if data.had_content_stream():
            # Stream already handed out to a consumer; keep headers only.
            return data.copy(include_content=False)
        return data.copy()

    # =========================================================================
    # Invalidation
    # =========================================================================

    def invalidate_artifact(self, op: InvalidateOp, key: str) -> None:
        """Drop the entries for one artifact version.

        Args:
            op: COMMIT evicts the version and the latest entry of the same
                URL, since the commit may have changed which version is
                latest. DELETE evicts the version, and the latest entry only
                if it points at that version.
            key: Versioned artifact key ``"ns:auid:uri:version"``.
        """
        with self._lock:
            self._generation += 1
            try:
                self.stats.invalidations += 1
                self._evict_version(key)
                latest_key = Artifact.latest_key_for(key)
                latest = self._artifacts.get(latest_key)
                if latest is not None and (op == InvalidateOp.COMMIT or latest.key() == key):
                    del self._artifacts[latest_key]
                self._logger.debug("artifact_invalidated", op=op.value, key=key)
            except Exception as exc:
                self._logger.error("artifact_invalidate_error", key=key, error=str(exc))

    def invalidate_uuid(self, op: InvalidateOp, namespace: str, uuid: str) -> None:
        """Invalidate by (namespace, uuid), e.g. just before a delete."""
        with self._lock:
            key = self._uuid_index.get((namespace, uuid))
            if key is None:
                data = self._data.get((namespace, uuid))
                if data is not None and data.identifier is not None:
                    key = data.identifier.make_key()
            self._generation += 1
            data = self._data.pop((namespace, uuid), None)
            if data is not None:
                data.release()
            if key is not None:
                self.invalidate_artifact(op, key)

    def invalidate_au(self, op: InvalidateOp, key: str) -> None:
        """Drop every entry of one Archival Unit.

        Args:
            op: Carried for symmetry with ``invalidate_artifact``; every op
                drops the whole AU.
            key: AU key ``"namespace|auid"``.
        """
        with self._lock:
            try:
                au = NamespacedAuid.from_key(key)
            except ValueError as exc:
                self._logger.warning("au_key_malformed", key=key, error=str(exc))
                return
            self._generation += 1
            self.stats.invalidations += 1

            stale_keys = [
                k for k, art in self._artifacts.items()
                if art.namespace == au.namespace and art.auid == au.auid
            ]
            for k in stale_keys:
                del self._artifacts[k]

            stale_uuids = [
                k for k, v in self._uuid_index.items()
                if k[0] == au.namespace and v not in self._artifacts
            ]
            for k in stale_uuids:
                del self._uuid_index[k]

            stale_data = [
                k for k, data in self._data.items()
                if data.identifier is not None
                and data.identifier.namespace == au.namespace
                and data.identifier.auid == au.auid
            ]
            for k in stale_data:
                self._data.pop(k).release()

            self._logger.debug(
                "au_invalidated",
                op=op.value,
                namespace=au.namespace,
                auid=au.auid,
                artifacts=len(stale_keys),
                artifact_data=len(stale_data),
            )

    def flush(self) -> None:
        """Drop every entry. The enabled state is unchanged."""
        with self._lock:
            self._generation += 1
            self._clear()
            self.stats.flushes += 1
        self._logger.debug("artifact_cache_flushed")

    # =========================================================================
    # Introspection
    # =========================================================================

    def __len__(self) -> int:
        with self._lock:
            return len(self._artifacts)

    @property
    def artifact_data_count(self) -> int:
        with self._lock:
            return len(self._data)

    # =========================================================================
    # Internal Helpers (caller holds the lock)
    # =========================================================================

    def _is_stale(self, generation: Optional[int]) -> bool:
        if generation is None or generation == self._generation:
            return False
        self._logger.debug(
            "artifact_cache_put_skipped",
            generation=generation,
            current=self._generation,
        )
        return True

    def _get_artifact(self, key: str) -> Optional[Artifact]:
        with self._lock:
            if not self._enabled:
                return None
            artifact = self._artifacts.get(key)
            if artifact is None:
                self.stats.artifact_misses += 1
                return None
            self._artifacts.move_to_end(key)
            self.stats.artifact_hits += 1
            return artifact

    def _store_artifact(self, key: str, artifact: Artifact) -> None:
        self._artifacts[key] = artifact
        self._artifacts.move_to_end(key)
        while len(self._artifacts) > self.max_artifacts:
            evicted_key, evicted = self._artifacts.popitem(last=False)
            index_key = (evicted.namespace, evicted.uuid)
            if self._uuid_index.get(index_key) == evicted_key:
                del self._uuid_index[index_key]
            self.stats.artifact_evictions += 1

    def _evict_version(self, key: str) -> None:
        artifact = self._artifacts.pop(key, None)
        if artifact is not None:
            index_key = (artifact.namespace, artifact.uuid)
            if self._uuid_index.get(index_key) == key:
                del self._uuid_index[index_key]
            data = self._data.pop(index_key, None)
            if data is not None:
                data.release()
            return
        # Metadata not cached; ArtifactData may still be.
        for data_key, data in list(self._data.items()):
            if data.identifier is not None and data.identifier.make_key() == key:
                self._data.pop(data_key).release()

    def _clear(self) -> None:
        for data in self._data.values():
            data.release()
        self._artifacts.clear()
        self._uuid_index.clear()
        self._data.clear()
