"""Multipart upload handlers for r2drop.

Implements:
    - CreateMultipartUpload (POST /{bucket}/{key}?uploads)
    - UploadPart (PUT /{bucket}/{key}?partNumber=N&uploadId=ID)
    - CompleteMultipartUpload (POST /{bucket}/{key}?uploadId=ID)
    - AbortMultipartUpload (DELETE /{bucket}/{key}?uploadId=ID)

plus the orchestration that splits a file into parts, uploads them through a
bounded sliding window and either completes or aborts the session.
"""

from __future__ import annotations

import asyncio
import logging
import os
from pathlib import Path

from r2drop import metrics
from r2drop.auth import Clock
from r2drop.config import StorageCredentials, UploadPolicy
from r2drop.errors import (
    CompletionError,
    InitiationError,
    PartUploadError,
    R2DropError,
    TransportError,
)
from r2drop.handlers.base import SignedRequestHandler
from r2drop.handlers.object import DEFAULT_CONTENT_TYPE
from r2drop.models import MultipartSession, SessionState, UploadPart, plan_parts
from r2drop.pool import bounded_map
from r2drop.progress import ProgressSink, WeightedProgress
from r2drop.retry import RetryPolicy, Sleep
from r2drop.transport import Transport, TransportResponse
from r2drop.xml_utils import parse_error, parse_upload_id, render_complete_multipart_upload

logger = logging.getLogger(__name__)

PartSource = bytes | str | os.PathLike


def _read_range(path: Path, offset: int, length: int) -> bytes:
    with open(path, "rb") as fh:
        fh.seek(offset)
        return fh.read(length)


class MultipartHandler(SignedRequestHandler):
    """Drives the multipart upload lifecycle for one object at a time.

    Attributes:
        policy: Part size and concurrency settings.
    """

    def __init__(
        self,
        transport: Transport,
        retry_policy: RetryPolicy | None = None,
        policy: UploadPolicy | None = None,
        clock: Clock | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        super().__init__(transport, retry_policy, clock=clock, sleep=sleep)
        self.policy = policy or UploadPolicy()

    # -- Individual requests --------------------------------------------------

    async def initiate(
        self,
        credentials: StorageCredentials,
        key: str,
        content_type: str = DEFAULT_CONTENT_TYPE,
    ) -> MultipartSession:
        """Start a multipart upload and return its session.

        Args:
            credentials: Credentials for this upload.
            key: The object key.
            content_type: MIME type stored with the assembled object.

        Returns:
            A session in the INITIATED state.

        Raises:
            InitiationError: If the store fails the request or returns no
                UploadId after all attempts.
        """
        upload_id: list[str] = []

        def _require_upload_id(response: TransportResponse) -> None:
            parsed = parse_upload_id(response.text)
            if not parsed:
                raise InitiationError()
            upload_id.append(parsed)

        try:
            await self._send_signed(
                credentials,
                "POST",
                key,
                operation="create_multipart_upload",
                query={"uploads": ""},
                extra_headers={"Content-Type": content_type or DEFAULT_CONTENT_TYPE},
                validate=_require_upload_id,
            )
        except TransportError as e:
            raise InitiationError(f"Failed to initiate multipart upload: {e.message}") from e

        session = MultipartSession(upload_id=upload_id[-1], key=key)
        logger.info(
            "Initiated multipart upload for %s",
            key,
            extra={"key": key, "upload_id": session.upload_id},
        )
        return session

    async def upload_part(
        self,
        credentials: StorageCredentials,
        session: MultipartSession,
        part: UploadPart,
        data: bytes,
        on_progress: ProgressSink | None = None,
    ) -> UploadPart:
        """Upload one part and record its ETag on the session.

        Raises:
            TransportError: If the part cannot be uploaded after all attempts,
                including when the store answers without an ETag.
        """

        def _require_etag(response: TransportResponse) -> None:
            if not response.etag:
                raise TransportError(
                    response.status_code, f"No ETag returned for part {part.part_number}"
                )

        response = await self._send_signed(
            credentials,
            "PUT",
            session.key,
            operation="upload_part",
            query={"partNumber": str(part.part_number), "uploadId": session.upload_id},
            body=data,
            on_progress=on_progress,
            validate=_require_etag,
        )
        uploaded = UploadPart(part_number=part.part_number, size=len(data), etag=response.etag)
        session.record_part(uploaded)
        logger.debug(
            "Uploaded part %d of %s",
            part.part_number,
            session.key,
            extra={"upload_id": session.upload_id, "part_number": part.part_number},
        )
        return uploaded

    async def complete(self, credentials: StorageCredentials, session: MultipartSession) -> None:
        """Assemble the uploaded parts into the final object.

        Parts are listed ascending by part number, whatever order they
        finished in.

        Raises:
            CompletionError: If the store rejects the request, including a 200
                response that carries an ``<Error>`` document.
        """
        session.transition(SessionState.COMPLETING)
        body = render_complete_multipart_upload(session.sorted_parts()).encode("utf-8")

        def _reject_error_body(response: TransportResponse) -> None:
            code, message = parse_error(response.text)
            if code:
                raise CompletionError(f"Failed to complete multipart upload: {code}: {message}")

        try:
            await self._send_signed(
                credentials,
                "POST",
                session.key,
                operation="complete_multipart_upload",
                query={"uploadId": session.upload_id},
                body=body,
                extra_headers={"Content-Type": "application/xml"},
                validate=_reject_error_body,
            )
        except TransportError as e:
            raise CompletionError(f"Failed to complete multipart upload: {e.message}") from e

        session.transition(SessionState.COMPLETED)
        logger.info(
            "Completed multipart upload of %s (%d parts)",
            session.key,
            len(session.parts),
            extra={"key": session.key, "upload_id": session.upload_id},
        )

    async def abort(self, credentials: StorageCredentials, session: MultipartSession) -> None:
        """Release the server-side parts of a failed session.

        Best-effort: a failing abort is logged and swallowed so the error
        that caused it is the one the caller sees. An upload id the store no
        longer knows counts as aborted.
        """
        session.transition(SessionState.ABORTING)
        metrics.record_abort()
        try:
            await self._send_signed(
                credentials,
                "DELETE",
                session.key,
                operation="abort_multipart_upload",
                query={"uploadId": session.upload_id},
                tolerate_404=True,
            )
        except Exception as e:
            logger.exception(
                "Failed to abort multipart upload %s: %s",
                session.upload_id,
                e,
                extra={"key": session.key, "upload_id": session.upload_id},
            )
        else:
            logger.info(
                "Aborted multipart upload of %s",
                session.key,
                extra={"key": session.key, "upload_id": session.upload_id},
            )
        session.transition(SessionState.ABORTED)

    # -- Orchestration --------------------------------------------------------

    async def _read_part(self, source: PartSource, offset: int, length: int) -> bytes:
        if isinstance(source, (bytes, bytearray, memoryview)):
            return bytes(memoryview(source)[offset:offset + length])
        return await asyncio.to_thread(_read_range, Path(source), offset, length)

    async def upload(
        self,
        credentials: StorageCredentials,
        key: str,
        source: PartSource,
        size: int,
        content_type: str = DEFAULT_CONTENT_TYPE,
        on_progress: ProgressSink | None = None,
    ) -> MultipartSession:
        """Upload ``size`` bytes from ``source`` as a multipart object.

        At most ``policy.concurrency`` parts are in flight (and in memory) at
        once. Each part is retried on its own. If any part fails after its
        retries, or completion fails, the session is aborted exactly once and
        the original error is raised.

        Args:
            credentials: Credentials resolved for this upload.
            key: The object key.
            source: The file contents, or a path to the file.
            size: Total size in bytes.
            content_type: MIME type of the object.
            on_progress: Receives the size-weighted total, 0..100.

        Returns:
            The COMPLETED session.

        Raises:
            InitiationError: If the upload could not be started.
            PartUploadError: If a part failed; chained to its cause.
            CompletionError: If the store refused to assemble the parts.
        """
        parts = plan_parts(size, self.policy.part_size)
        progress = WeightedProgress([p.size for p in parts], on_progress)

        session = await self.initiate(credentials, key, content_type)
        session.transition(SessionState.PARTS_IN_FLIGHT)

        async def _upload_one(part: UploadPart, index: int) -> UploadPart:
            offset = (part.part_number - 1) * self.policy.part_size
            data = await self._read_part(source, offset, part.size)
            try:
                return await self.upload_part(
                    credentials, session, part, data, on_progress=progress.part_sink(index)
                )
            except R2DropError as e:
                raise PartUploadError(
                    part.part_number, f"Part {part.part_number} failed: {e.message}"
                ) from e

        try:
            await bounded_map(self.policy.concurrency, parts, _upload_one)
            await self.complete(credentials, session)
        except Exception:
            await self.abort(credentials, session)
            raise

        return session
