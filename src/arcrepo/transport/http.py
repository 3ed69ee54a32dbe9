"""
arcrepo.transport.http - HTTP Transport Adapter
=================================================

Thin wrapper around ``httpx.AsyncClient`` used by every repository call.

Responsibilities:
    - Base URL, basic auth and default timeout for all requests
    - Translation of ``httpx`` transport failures into RepositoryTransportError
    - Translation of non-2xx responses into RepositoryHttpError, keeping the
      status code so callers can map 404 to NoSuchArtifactError
    - Streaming sends for payload downloads and import-status streams

There is no retry logic here. Retries, when wanted, belong to the injected
``httpx`` transport.

Testing:
    Pass ``transport=httpx.MockTransport(handler)`` to serve canned
    responses without a network.
"""

from __future__ import annotations

import contextlib
from collections.abc import AsyncIterator, Iterator, Mapping
from typing import Any, Optional

import httpx
import structlog

from arcrepo.core.exceptions import RepositoryHttpError, RepositoryTransportError


logger = structlog.get_logger()


def _is_json_response(response: httpx.Response) -> bool:
    ctype = response.headers.get("content-type", "")
    return "application/json" in ctype or "+json" in ctype


def _error_reason(response: httpx.Response) -> Optional[str]:
    """Extract the server's error message from an already-read error body."""
    if _is_json_response(response):
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict):
            message = body.get("message") or body.get("error")
            if message:
                return str(message)
    return response.reason_phrase or None


@contextlib.contextmanager
def translate_transport_errors(method: str, url: str) -> Iterator[None]:
    """Re-raise ``httpx`` transport failures as RepositoryTransportError.

    Also used around body reads of streamed responses, which fail lazily.
    """
    try:
        yield
    except httpx.TransportError as exc:
        raise RepositoryTransportError(
            message=f"{method} {url} failed: {exc}",
            error_code=(
                "TRANSPORT_TIMEOUT"
                if isinstance(exc, httpx.TimeoutException)
                else "TRANSPORT_ERROR"
            ),
            details={"method": method, "url": url, "error_type": type(exc).__name__},
        ) from exc


class HttpTransport:
    """Async HTTP adapter bound to one repository service.

    Args:
        base_url: Repository REST root, e.g. ``http://localhost:24610``.
        username: Basic auth user. None disables auth.
        password: Basic auth password.
        timeout: Default per-request timeout in seconds.
        transport: Optional custom ``httpx`` transport (tests).

    Example:
        >>> http = HttpTransport("http://localhost:24610")
        >>> response = await http.request("GET", "/namespaces")
        >>> await http.aclose()
    """

    def __init__(
        self,
        base_url: str,
        *,
        username: Optional[str] = None,
        password: Optional[str] = None,
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        auth = httpx.BasicAuth(username, password or "") if username else None
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            auth=auth,
            timeout=timeout,
            transport=transport,
        )
        self._logger = logger.bind(component="http_transport", base_url=self.base_url)

    @property
    def is_closed(self) -> bool:
        return self._client.is_closed

    async def aclose(self) -> None:
        """Close the underlying HTTP client and release connections."""
        await self._client.aclose()

    async def __aenter__(self) -> HttpTransport:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    # =========================================================================
    # Requests
    # =========================================================================

    def build_request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Mapping[str, Any]] = None,
        headers: Optional[Mapping[str, str]] = None,
        content: Any = None,
        files: Any = None,
        data: Any = None,
        timeout: Any = httpx.USE_CLIENT_DEFAULT,
    ) -> httpx.Request:
        return self._client.build_request(
            method,
            path,
            params=_clean_params(params),
            headers=headers,
            content=content,
            files=files,
            data=data,
            timeout=timeout,
        )

    async def request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        """Send a request, read the full body and return the response.

        Raises:
            RepositoryTransportError: On connection or timeout failures.
            RepositoryHttpError: On any non-2xx status.
        """
        request = self.build_request(method, path, **kwargs)
        with translate_transport_errors(method, str(request.url)):
            response = await self._client.send(request)
        self._log_response(request, response)
        if response.is_error:
            raise self._http_error(request, response)
        return response

    async def send_stream(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        """Send a request and return the response with its body unread.

        The caller owns the response and must ``aclose()`` it. Error
        responses are read, closed and raised before returning.
        """
        request = self.build_request(method, path, **kwargs)
        with translate_transport_errors(method, str(request.url)):
            response = await self._client.send(request, stream=True)
        self._log_response(request, response)
        if response.is_error:
            try:
                with translate_transport_errors(method, str(request.url)):
                    await response.aread()
            finally:
                await response.aclose()
            raise self._http_error(request, response)
        return response

    @contextlib.asynccontextmanager
    async def stream(self, method: str, path: str, **kwargs: Any) -> AsyncIterator[httpx.Response]:
        """Context-managed variant of ``send_stream``."""
        response = await self.send_stream(method, path, **kwargs)
        try:
            yield response
        finally:
            await response.aclose()

    # =========================================================================
    # Internal Helpers
    # =========================================================================

    def _log_response(self, request: httpx.Request, response: httpx.Response) -> None:
        self._logger.debug(
            "http_response",
            method=request.method,
            url=str(request.url),
            status_code=response.status_code,
        )

    def _http_error(self, request: httpx.Request, response: httpx.Response) -> RepositoryHttpError:
        reason = _error_reason(response)
        return RepositoryHttpError(
            message=(
                f"{request.method} {request.url.path} returned "
                f"{response.status_code}: {reason or 'no reason given'}"
            ),
            status_code=response.status_code,
            reason=reason,
            details={"method": request.method, "url": str(request.url)},
        )


def _clean_params(params: Optional[Mapping[str, Any]]) -> Optional[dict[str, str]]:
    """Drop None values and render booleans the way the server expects."""
    if params is None:
        return None
    cleaned: dict[str, str] = {}
    for key, value in params.items():
        if value is None:
            continue
        if isinstance(value, bool):
            cleaned[key] = "true" if value else "false"
        elif hasattr(value, "value"):
            cleaned[key] = str(value.value)
        else:
            cleaned[key] = str(value)
    return cleaned
