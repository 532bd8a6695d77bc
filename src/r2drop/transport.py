"""Single-request HTTP transport with upload progress, built on httpx.

The transport issues exactly one request per call; retry and signing live
above it. Upload progress is derived from the request body being streamed
to the connection in fixed-size chunks.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass, field

import httpx

from r2drop import metrics
from r2drop.errors import TransportError
from r2drop.progress import ProgressSink
from r2drop.xml_utils import parse_error

logger = logging.getLogger(__name__)

# Streaming chunk size: 64 KB
_CHUNK_SIZE = 64 * 1024

DEFAULT_TIMEOUT = httpx.Timeout(300.0, connect=10.0)


@dataclass
class TransportResponse:
    """The parts of a response the storage client consumes.

    Attributes:
        status_code: HTTP status.
        etag: The ETag response header, quotes preserved, or None.
        text: Decoded response body.
        headers: All response headers.
    """

    status_code: int
    etag: str | None = None
    text: str = ""
    headers: dict[str, str] = field(default_factory=dict)


async def _stream_with_progress(body: bytes, on_progress: ProgressSink) -> AsyncIterator[bytes]:
    """Yield ``body`` in chunks, reporting the percentage already handed off."""
    total = len(body)
    view = memoryview(body)
    sent = 0
    for offset in range(0, total, _CHUNK_SIZE):
        chunk = bytes(view[offset:offset + _CHUNK_SIZE])
        yield chunk
        sent += len(chunk)
        on_progress(sent / total * 100)


class Transport:
    """Issues single HTTP requests against the object store.

    Attributes:
        timeout: Timeout applied to a client created by the transport itself.
    """

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        timeout: httpx.Timeout = DEFAULT_TIMEOUT,
    ) -> None:
        self.timeout = timeout
        self._client = client
        self._owns_client = client is None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def aclose(self) -> None:
        """Close the underlying client if this transport created it."""
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> Transport:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def send(
        self,
        method: str,
        url: str,
        headers: dict[str, str],
        body: bytes = b"",
        on_progress: ProgressSink | None = None,
        tolerate_404: bool = False,
        operation: str = "request",
    ) -> TransportResponse:
        """Send one request.

        Args:
            method: HTTP method.
            url: Absolute URL, query string included.
            headers: Headers to send verbatim (signed headers included).
            body: Request body.
            on_progress: Receives 0..100 as the body is transferred.
            tolerate_404: Treat 404 as success (e.g. deleting a gone object).
            operation: Label used in logs, metrics and error messages.

        Returns:
            The response summary.

        Raises:
            TransportError: On network failure or a non-2xx status.
        """
        request_headers = dict(headers)
        content: bytes | AsyncIterator[bytes] = body
        if on_progress is not None and body:
            request_headers["Content-Length"] = str(len(body))
            content = _stream_with_progress(body, on_progress)

        try:
            response = await self.client.request(
                method, url, headers=request_headers, content=content
            )
        except httpx.HTTPError as e:
            metrics.record_request(operation, 0)
            raise TransportError(0, f"Network error during {operation}: {e}") from e

        status = response.status_code
        metrics.record_request(operation, status)
        logger.debug(
            "%s %s -> %d",
            method,
            url.split("?", 1)[0],
            status,
            extra={"operation": operation, "status": status},
        )

        if status == 404 and tolerate_404:
            return TransportResponse(status_code=status, text=response.text)

        if not response.is_success:
            error_code, error_message = parse_error(response.text)
            message = f"{operation} failed: {status} {response.reason_phrase}"
            if error_code:
                message += f" ({error_code}: {error_message})"
            raise TransportError(status, message, error_code=error_code)

        metrics.record_bytes(len(body))
        return TransportResponse(
            status_code=status,
            etag=response.headers.get("etag"),
            text=response.text,
            headers=dict(response.headers),
        )
