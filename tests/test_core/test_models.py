"""
Tests for arcrepo.core.models
===============================

These tests verify the data models shared across arcrepo:
    - Artifact parsing from camelCase JSON and cache key construction
    - ArtifactIdentifier equality (uuid does not take part)
    - NamespacedAuid keys, including AUIDs that contain '|'
    - HttpStatusLine parsing and rendering
    - ArtifactData single-use content stream, materialize() and copy()
"""

import io

import pytest

from arcrepo.core.enums import ImportStatusCode
from arcrepo.core.exceptions import ArtifactStateError, InvalidArgumentError
from arcrepo.core.models import (
    Artifact,
    ArtifactData,
    ArtifactIdentifier,
    ArtifactPageInfo,
    ArtifactProperties,
    HttpStatusLine,
    ImportStatus,
    NamespacedAuid,
    parse_iso_instant,
)


# =============================================================================
# Test: Artifact
# =============================================================================
class TestArtifact:
    """Tests for Artifact parsing and keys."""

    def test_parse_camel_case_json(self) -> None:
        """Artifacts are parsed straight from the repository's JSON."""
        artifact = Artifact.model_validate({
            "uuid": "u1",
            "namespace": "ns1",
            "auid": "au1",
            "uri": "http://example.org/a",
            "version": 3,
            "committed": True,
            "contentLength": 12,
            "contentDigest": "SHA-256:ff",
            "collectionDate": 1700000000000,
            "someFutureField": "ignored",
        })

        assert artifact.content_length == 12
        assert artifact.content_digest == "SHA-256:ff"
        assert artifact.collection_date == 1700000000000
        assert artifact.committed is True

    def test_artifact_is_immutable(self, make_artifact) -> None:
        artifact = make_artifact()
        with pytest.raises(Exception):
            artifact.version = 2

    def test_keys(self, make_artifact) -> None:
        artifact = make_artifact(uri="http://example.org/a", version=3)
        assert artifact.key() == "ns1:au1:http://example.org/a:3"
        assert artifact.latest_key() == "ns1:au1:http://example.org/a:-1"

    def test_latest_key_for_uri_with_colons(self) -> None:
        """Only the trailing version segment is rewritten."""
        key = "ns1:au1:http://example.org:8080/x:7"
        assert Artifact.latest_key_for(key) == "ns1:au1:http://example.org:8080/x:-1"

    def test_identifier(self, make_artifact) -> None:
        artifact = make_artifact(uuid="u9", version=2)
        identifier = artifact.identifier
        assert identifier.uuid == "u9"
        assert identifier.make_key() == artifact.key()


# =============================================================================
# Test: ArtifactIdentifier and NamespacedAuid
# =============================================================================
class TestIdentity:
    """Tests for identity value objects."""

    def test_identifier_equality_ignores_uuid(self) -> None:
        a = ArtifactIdentifier(namespace="ns", auid="au", uri="u", version=1, uuid="x")
        b = ArtifactIdentifier(namespace="ns", auid="au", uri="u", version=1, uuid="y")
        c = ArtifactIdentifier(namespace="ns", auid="au", uri="u", version=2, uuid="x")

        assert a == b, "Same (namespace, auid, uri, version) must be equal"
        assert hash(a) == hash(b)
        assert a != c

    def test_namespaced_auid_round_trip_with_pipes(self) -> None:
        """AUIDs contain '|'; only the first one separates the namespace."""
        key = "ns1|org|lockss|plugin|Foo&base_url~http%3A%2F%2Fx%2F"
        au = NamespacedAuid.from_key(key)

        assert au.namespace == "ns1"
        assert au.auid == "org|lockss|plugin|Foo&base_url~http%3A%2F%2Fx%2F"
        assert au.key == key

    @pytest.mark.parametrize("key", ["no-separator", "|auid", "ns|"])
    def test_malformed_au_key(self, key) -> None:
        with pytest.raises(ValueError):
            NamespacedAuid.from_key(key)


# =============================================================================
# Test: HttpStatusLine
# =============================================================================
class TestHttpStatusLine:
    """Tests for status line parsing."""

    def test_parse(self) -> None:
        status = HttpStatusLine.parse("HTTP/1.1 404 Not Found\r\n")
        assert status.protocol == "HTTP/1.1"
        assert status.status_code == 404
        assert status.reason == "Not Found"
        assert str(status) == "HTTP/1.1 404 Not Found"

    def test_parse_without_reason(self) -> None:
        status = HttpStatusLine.parse("HTTP/1.0 204")
        assert status.reason == ""
        assert str(status) == "HTTP/1.0 204"

    @pytest.mark.parametrize("line", ["", "Content-Type: text/html", "HTTP/1.1 abc OK"])
    def test_parse_malformed(self, line) -> None:
        with pytest.raises(ValueError):
            HttpStatusLine.parse(line)


# =============================================================================
# Test: ArtifactData
# =============================================================================
class TestArtifactData:
    """Tests for the single-use content stream and its buffering."""

    def test_content_stream_is_single_use(self, make_artifact_data) -> None:
        """Scenario:
            1. Read the content once
            2. Ask for the stream again
            3. ArtifactStateError with CONTENT_CONSUMED
        """
        data = make_artifact_data(content=b"hello")
        assert data.read_content() == b"hello"

        with pytest.raises(ArtifactStateError) as exc_info:
            data.get_content_stream()
        assert exc_info.value.error_code == "CONTENT_CONSUMED"

    def test_no_content(self) -> None:
        data = ArtifactData(headers={"Content-Type": "text/plain"})
        assert not data.had_content_stream()
        with pytest.raises(ArtifactStateError) as exc_info:
            data.get_content_stream()
        assert exc_info.value.error_code == "NO_CONTENT"

    def test_headers_are_case_insensitive(self, make_artifact_data) -> None:
        data = make_artifact_data(content_type="text/html")
        assert data.headers["content-type"] == "text/html"

    def test_materialize_then_copy(self) -> None:
        """Copies of materialized data each get an independent stream."""
        data = ArtifactData(content=io.BytesIO(b"payload"))
        assert not data.is_materialized

        data.materialize()
        first = data.copy()
        second = data.copy()

        assert first.read_content() == b"payload"
        assert second.read_content() == b"payload"
        assert data.read_content() == b"payload", "Original must stay readable"

    def test_copy_requires_materialized_stream(self) -> None:
        data = ArtifactData(content=io.BytesIO(b"payload"))
        with pytest.raises(ArtifactStateError):
            data.copy()
        headers_only = data.copy(include_content=False)
        assert not headers_only.had_content_stream()

    def test_materialize_after_consumption_fails(self) -> None:
        data = ArtifactData(content=io.BytesIO(b"payload"))
        data.get_content_stream()
        with pytest.raises(ArtifactStateError):
            data.materialize()

    def test_apply_artifact(self, make_artifact, make_artifact_data) -> None:
        data = make_artifact_data()
        artifact = make_artifact(uuid="u5", version=4, committed=True, content_length=5)

        data.apply_artifact(artifact)

        assert data.uuid == "u5"
        assert data.identifier.version == 4
        assert data.committed is True
        assert data.content_digest == "SHA-256:abc"

    def test_artifact_properties(self, make_artifact_data) -> None:
        props = make_artifact_data(uri="http://example.org/b").artifact_properties()
        assert props == {
            "namespace": "ns1",
            "auid": "au1",
            "uri": "http://example.org/b",
            "collectionDate": 1700000000000,
        }

    def test_artifact_properties_require_identifier(self) -> None:
        with pytest.raises(InvalidArgumentError):
            ArtifactData(content=b"x").artifact_properties()


# =============================================================================
# Test: Wire Models
# =============================================================================
class TestWireModels:
    """Tests for page, properties and import status models."""

    def test_artifact_page_info(self) -> None:
        page = ArtifactPageInfo.model_validate({
            "artifacts": [
                {"uuid": "u1", "namespace": "ns", "auid": "au", "uri": "x", "version": 1},
            ],
            "pageInfo": {"continuationToken": "tok", "resultsPerPage": 1},
        })
        assert len(page.artifacts) == 1
        assert page.page_info.continuation_token == "tok"

    def test_page_info_defaults_mean_last_page(self) -> None:
        page = ArtifactPageInfo.model_validate({"artifacts": []})
        assert page.page_info.continuation_token is None

    def test_artifact_properties_state(self) -> None:
        props = ArtifactProperties.model_validate({
            "namespace": "ns", "auid": "au", "uri": "x", "version": 2,
            "uuid": "u2", "state": "COMMITTED",
        })
        assert props.committed is True
        assert props.identifier().uuid == "u2"

    def test_artifact_properties_incomplete_identity(self) -> None:
        props = ArtifactProperties.model_validate({"namespace": "ns", "uuid": "u2"})
        assert props.committed is False
        with pytest.raises(ValueError):
            props.identifier()

    def test_import_status(self) -> None:
        status = ImportStatus.model_validate({
            "warcId": "w1",
            "offset": 0,
            "url": "http://example.org/a",
            "artifactUuid": "u1",
            "status": "OK",
        })
        assert status.status == ImportStatusCode.OK
        assert status.artifact_uuid == "u1"

    def test_parse_iso_instant(self) -> None:
        assert parse_iso_instant("1970-01-01T00:00:01Z") == 1000
        assert parse_iso_instant(None) is None
        with pytest.raises(ValueError):
            parse_iso_instant("yesterday")
