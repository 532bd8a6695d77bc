"""Shared signed-request plumbing for the object store handlers."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Mapping

from r2drop.auth import Clock, SigningContext, build_signed_headers
from r2drop.config import StorageCredentials
from r2drop.hashing import sha256_hex_async
from r2drop.progress import ProgressSink
from r2drop.retry import RetryPolicy, Sleep, retry
from r2drop.transport import Transport, TransportResponse

logger = logging.getLogger(__name__)


class SignedRequestHandler:
    """Base class for handlers that issue signed, retried requests.

    Attributes:
        transport: The HTTP transport.
        retry_policy: Retry policy applied to every individual request.
        clock: Source of signing timestamps (UTC now by default).
        sleep: Sleep used between retries.
    """

    def __init__(
        self,
        transport: Transport,
        retry_policy: RetryPolicy | None = None,
        clock: Clock | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.transport = transport
        self.retry_policy = retry_policy or RetryPolicy()
        self.clock = clock
        self.sleep = sleep

    async def _send_signed(
        self,
        credentials: StorageCredentials,
        method: str,
        key: str,
        operation: str,
        query: Mapping[str, str] | None = None,
        body: bytes = b"",
        extra_headers: Mapping[str, str] | None = None,
        on_progress: ProgressSink | None = None,
        tolerate_404: bool = False,
        validate: Callable[[TransportResponse], None] | None = None,
    ) -> TransportResponse:
        """Sign and send one request under the retry policy.

        Each attempt is signed afresh: one SigningContext supplies the
        X-Amz-Date header and the credential scope of that attempt, so a
        retry after a long backoff does not carry a stale timestamp.

        Args:
            credentials: Credentials resolved for the current operation.
            method: HTTP method.
            key: Object key, or "" for bucket-level requests.
            operation: Label for logs, metrics and errors.
            query: Query parameters (signed and sent).
            body: Request body.
            extra_headers: Additional headers to sign and send.
            on_progress: Transfer progress sink.
            tolerate_404: Treat 404 as success.
            validate: Called with each successful response; raising from it
                fails that attempt and makes it eligible for retry.

        Returns:
            The response of the successful attempt.
        """
        payload_hash = await sha256_hex_async(body)
        path = credentials.object_path(key)
        url = credentials.request_url(path, query)

        async def attempt() -> TransportResponse:
            context = SigningContext.now(region=credentials.region, clock=self.clock)
            headers = build_signed_headers(
                method,
                path,
                credentials,
                payload_hash,
                query=query,
                extra_headers=extra_headers,
                context=context,
            )
            response = await self.transport.send(
                method,
                url,
                headers,
                body,
                on_progress=on_progress,
                tolerate_404=tolerate_404,
                operation=operation,
            )
            if validate is not None:
                validate(response)
            return response

        return await retry(attempt, self.retry_policy, operation, sleep=self.sleep)
