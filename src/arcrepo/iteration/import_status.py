"""
arcrepo.iteration.import_status - Archive Import Status Stream
================================================================

``POST /archives`` answers with one JSON object per archive record, written
as the server imports them. ``ImportStatusIterator`` decodes that body
incrementally so callers see each record's outcome as soon as it arrives:

    async with await client.add_artifacts("ns1", "auid1", warc) as statuses:
        async for status in statuses:
            if status.status != ImportStatusCode.OK:
                print(status.url, status.status_message)

The body is a sequence of JSON values separated by optional whitespace
(newline-delimited in practice). Text is held until a chunk ends a line
or an object, then decoded from where the last complete value ended, so
each record is scanned a bounded number of times. The iterator is single
pass; once exhausted or closed it yields nothing more.
"""

from __future__ import annotations

import collections
import json
import re
from typing import Any, Optional

import httpx
import structlog
from pydantic import ValidationError

from arcrepo.core.exceptions import RepositoryProtocolError
from arcrepo.core.models import ImportStatus
from arcrepo.transport.http import translate_transport_errors


logger = structlog.get_logger()

_DECODER = json.JSONDecoder()
_WHITESPACE = re.compile(r"[ \t\n\r]*")


class ImportStatusIterator:
    """Lazy async iterator of ImportStatus records from a streamed response.

    Args:
        response: Streamed response whose body has not been read. The
            iterator owns it and closes it when exhausted or closed.

    Raises (from ``__anext__``):
        RepositoryProtocolError: If a record is not valid JSON or not an
            ImportStatus. Records decoded before a malformed one are
            yielded first.
        RepositoryTransportError: If the connection fails mid-stream.
    """

    def __init__(self, response: httpx.Response) -> None:
        self._response = response
        self._url = str(response.request.url) if response.request else ""
        self._chunks = response.aiter_text()
        self._partial: list[str] = []
        self._pending: collections.deque[Any] = collections.deque()
        self._decode_error: Optional[json.JSONDecodeError] = None
        self._eof = False
        self._closed = False
        self._count = 0
        self._logger = logger.bind(component="import_status_iterator")

    @property
    def count(self) -> int:
        """Number of statuses yielded so far."""
        return self._count

    def __aiter__(self) -> ImportStatusIterator:
        return self

    async def __anext__(self) -> ImportStatus:
        if self._closed:
            raise StopAsyncIteration

        try:
            while not self._pending and not self._eof:
                await self._fill()
        except Exception:
            await self.aclose()
            raise

        if not self._pending:
            await self.aclose()
            if self._decode_error is not None:
                raise RepositoryProtocolError(
                    message=f"Malformed import status record: {self._decode_error}",
                    error_code="MALFORMED_IMPORT_STATUS",
                    details={"url": self._url},
                ) from self._decode_error
            raise StopAsyncIteration

        value = self._pending.popleft()
        try:
            status = ImportStatus.model_validate(value)
        except ValidationError as exc:
            await self.aclose()
            raise RepositoryProtocolError(
                message=f"Invalid import status record: {exc}",
                error_code="MALFORMED_IMPORT_STATUS",
                details={"url": self._url},
            ) from exc
        self._count += 1
        return status

    async def _fill(self) -> None:
        with translate_transport_errors("POST", self._url):
            try:
                chunk = await self._chunks.__anext__()
            except StopAsyncIteration:
                self._eof = True
                chunk = ""
        self._partial.append(chunk)
        if self._eof or "\n" in chunk or chunk.rstrip().endswith("}"):
            self._decode_partial()

    def _decode_partial(self) -> None:
        """Decode every complete value in the held text and keep the rest."""
        text = "".join(self._partial)
        self._partial = []
        pos = 0
        while True:
            pos = _WHITESPACE.match(text, pos).end()
            if pos == len(text):
                return
            try:
                value, pos = _DECODER.raw_decode(text, pos)
            except json.JSONDecodeError as exc:
                if self._eof:
                    self._decode_error = exc
                else:
                    # Incomplete record; wait for more text.
                    self._partial.append(text[pos:])
                return
            self._pending.append(value)

    async def aclose(self) -> None:
        """Close the underlying response. Idempotent."""
        if self._closed:
            return
        self._closed = True
        await self._response.aclose()
        self._logger.debug("import_status_stream_closed", records=self._count)

    async def __aenter__(self) -> ImportStatusIterator:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()
