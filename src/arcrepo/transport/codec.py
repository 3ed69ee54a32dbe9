"""
arcrepo.transport.codec - Wire Codecs
=======================================

Encoders and decoders for the two binary framings the repository uses:

1. **Framed HTTP response** (``application/http;msgtype=response``)::

       HTTP/1.1 200 OK\\r\\n
       Content-Type: text/html\\r\\n
       \\r\\n
       <payload bytes...>

   Used for the ``httpResponseHeader`` part on upload, and for the body of
   ``GET /artifacts/{uuid}/response``. Headers-only variants stop after the
   blank line.

2. **multipart/form-data** responses from ``GET /artifacts/{uuid}``, with
   parts ``artifactProps`` (JSON), ``httpResponseHeader`` (framed header)
   and ``payload``. Decoding is incremental via ``python-multipart``; each
   part body is spooled so large payloads do not sit in memory.
"""

from __future__ import annotations

import tempfile
import uuid
from typing import IO, Optional

import httpx
from python_multipart import MultipartParser
from python_multipart.multipart import MultipartState, parse_options_header

from arcrepo.core.exceptions import RepositoryProtocolError
from arcrepo.core.models import HttpStatusLine


# =============================================================================
# Constants
# =============================================================================
HEADER_ENCODING = "iso-8859-1"

MULTIPART_ARTIFACT_PROPS = "artifactProps"
MULTIPART_ARTIFACT_HTTP_RESPONSE_HEADER = "httpResponseHeader"
MULTIPART_ARTIFACT_PAYLOAD = "payload"

DEFAULT_SPOOL_MAX_BYTES = 1024 * 1024


def new_spool(max_size: int = DEFAULT_SPOOL_MAX_BYTES) -> IO[bytes]:
    """Buffer that keeps small payloads in memory and spills large ones to disk."""
    return tempfile.SpooledTemporaryFile(max_size=max_size, mode="w+b")


# =============================================================================
# Framed HTTP Response
# =============================================================================
def serialize_http_response_header(
    status: Optional[HttpStatusLine],
    headers: httpx.Headers,
) -> bytes:
    """Render a status line and headers, terminated by a blank line.

    Header names are written as they were set, not lowercased.
    """
    lines: list[str] = []
    if status is not None:
        lines.append(str(status))
    for name, value in headers.raw:
        lines.append(f"{name.decode(HEADER_ENCODING)}: {value.decode(HEADER_ENCODING)}")
    return ("\r\n".join(lines) + "\r\n\r\n").encode(HEADER_ENCODING)


def read_http_response_header(
    stream: IO[bytes],
    expect_status: bool = True,
) -> tuple[Optional[HttpStatusLine], httpx.Headers]:
    """Read a status line and headers from ``stream`` up to the blank line.

    On return the stream is positioned at the first payload byte.

    Args:
        stream: Binary stream supporting ``readline``.
        expect_status: Whether the first line must be an HTTP status line.
            When False, a first line that is not a status line is treated as
            a header.

    Raises:
        RepositoryProtocolError: On a malformed status or header line, or
            when the stream ends before the blank line.
    """
    status: Optional[HttpStatusLine] = None
    header_items: list[tuple[str, str]] = []
    first = True

    while True:
        raw = stream.readline()
        if not raw:
            raise RepositoryProtocolError(
                message="Framed HTTP response ended before the header terminator",
                error_code="MALFORMED_HTTP_RESPONSE",
            )
        line = raw.decode(HEADER_ENCODING).rstrip("\r\n")
        if not line:
            if first and expect_status:
                # Tolerate a leading blank line before the status line.
                continue
            break

        if first:
            first = False
            if line.startswith("HTTP/"):
                try:
                    status = HttpStatusLine.parse(line)
                except ValueError as exc:
                    raise RepositoryProtocolError(
                        message=str(exc),
                        error_code="MALFORMED_HTTP_RESPONSE",
                    ) from exc
                continue
            if expect_status:
                raise RepositoryProtocolError(
                    message=f"Expected an HTTP status line, got {line[:80]!r}",
                    error_code="MALFORMED_HTTP_RESPONSE",
                )

        if line[0] in " \t" and header_items:
            # Obsolete line folding: continuation of the previous value.
            name, value = header_items[-1]
            header_items[-1] = (name, f"{value} {line.strip()}")
            continue

        name, sep, value = line.partition(":")
        if not sep or not name.strip():
            raise RepositoryProtocolError(
                message=f"Malformed header line: {line[:80]!r}",
                error_code="MALFORMED_HTTP_RESPONSE",
            )
        header_items.append((name.strip(), value.strip()))

    return status, httpx.Headers(header_items, encoding=HEADER_ENCODING)


# =============================================================================
# Multipart Encoding
# =============================================================================
def empty_multipart_body(boundary: Optional[str] = None) -> tuple[bytes, str]:
    """Return an empty multipart/form-data body and its Content-Type.

    The commit endpoint requires a multipart Content-Type with a boundary;
    a literally empty body is rejected, so only the close delimiter is sent.
    """
    boundary = boundary or uuid.uuid4().hex
    return (
        f"--{boundary}--\r\n".encode("ascii"),
        f"multipart/form-data; boundary={boundary}",
    )


# =============================================================================
# Multipart Decoding
# =============================================================================
class MultipartPart:
    """One decoded part: its name, headers and spooled body."""

    def __init__(self, headers: httpx.Headers, body: IO[bytes]) -> None:
        self.headers = headers
        self.body = body
        self.name: Optional[str] = None

        disposition = headers.get("content-disposition")
        if disposition:
            _, options = parse_options_header(disposition)
            name = options.get(b"name")
            self.name = name.decode("utf-8") if name else None

    def read(self) -> bytes:
        self.body.seek(0)
        return self.body.read()

    def close(self) -> None:
        self.body.close()


class MultipartReader:
    """Incremental multipart decoder.

    Feed raw body chunks with ``write()`` and call ``finalize()`` at the end;
    parts are then available by name.

    Example:
        >>> reader = MultipartReader.for_content_type(response.headers["content-type"])
        >>> async for chunk in response.aiter_bytes():
        ...     reader.write(chunk)
        >>> parts = reader.finalize()
        >>> props = parts["artifactProps"].read()
    """

    def __init__(self, boundary: bytes, spool_max_bytes: int = DEFAULT_SPOOL_MAX_BYTES) -> None:
        self._spool_max_bytes = spool_max_bytes
        self._parts: dict[str, MultipartPart] = {}
        self._header_field = bytearray()
        self._header_value = bytearray()
        self._header_items: list[tuple[str, str]] = []
        self._body: Optional[IO[bytes]] = None

        callbacks = {
            "on_part_begin": self._on_part_begin,
            "on_part_data": self._on_part_data,
            "on_part_end": self._on_part_end,
            "on_header_field": self._on_header_field,
            "on_header_value": self._on_header_value,
            "on_header_end": self._on_header_end,
        }
        self._parser = MultipartParser(boundary, callbacks)

    @classmethod
    def for_content_type(
        cls,
        content_type: Optional[str],
        spool_max_bytes: int = DEFAULT_SPOOL_MAX_BYTES,
    ) -> MultipartReader:
        """Build a reader from a response Content-Type header.

        Raises:
            RepositoryProtocolError: If the type is not multipart or has no
                boundary parameter.
        """
        if not content_type:
            raise RepositoryProtocolError(
                message="Multipart response has no Content-Type",
                error_code="MALFORMED_MULTIPART",
            )
        media_type, options = parse_options_header(content_type)
        boundary = options.get(b"boundary")
        if not media_type.startswith(b"multipart/") or not boundary:
            raise RepositoryProtocolError(
                message=f"Not a multipart response: {content_type!r}",
                error_code="MALFORMED_MULTIPART",
                details={"content_type": content_type},
            )
        return cls(boundary, spool_max_bytes=spool_max_bytes)

    def write(self, chunk: bytes) -> None:
        try:
            self._parser.write(chunk)
        except Exception as exc:
            self.close()
            raise RepositoryProtocolError(
                message=f"Malformed multipart body: {exc}",
                error_code="MALFORMED_MULTIPART",
            ) from exc

    def finalize(self) -> dict[str, MultipartPart]:
        """Finish parsing and return the parts keyed by form name."""
        try:
            self._parser.finalize()
        except Exception as exc:
            self.close()
            raise RepositoryProtocolError(
                message=f"Malformed multipart body: {exc}",
                error_code="MALFORMED_MULTIPART",
            ) from exc
        if self._parser.state != MultipartState.END:
            self.close()
            raise RepositoryProtocolError(
                message="Multipart body ended without a close delimiter",
                error_code="MALFORMED_MULTIPART",
            )
        for part in self._parts.values():
            part.body.seek(0)
        return self._parts

    def close(self) -> None:
        for part in self._parts.values():
            part.close()
        if self._body is not None:
            self._body.close()
            self._body = None

    # =========================================================================
    # Parser Callbacks
    # =========================================================================

    def _on_part_begin(self) -> None:
        self._header_items = []
        self._body = new_spool(self._spool_max_bytes)

    def _on_header_field(self, data: bytes, start: int, end: int) -> None:
        self._header_field.extend(data[start:end])

    def _on_header_value(self, data: bytes, start: int, end: int) -> None:
        self._header_value.extend(data[start:end])

    def _on_header_end(self) -> None:
        if self._header_field:
            self._header_items.append((
                self._header_field.decode(HEADER_ENCODING),
                self._header_value.decode(HEADER_ENCODING),
            ))
        self._header_field = bytearray()
        self._header_value = bytearray()

    def _on_part_data(self, data: bytes, start: int, end: int) -> None:
        if self._body is not None:
            self._body.write(data[start:end])

    def _on_part_end(self) -> None:
        if self._body is None:
            return
        part = MultipartPart(httpx.Headers(self._header_items), self._body)
        self._body = None
        if part.name is None:
            part.close()
            return
        previous = self._parts.pop(part.name, None)
        if previous is not None:
            previous.close()
        self._parts[part.name] = part
