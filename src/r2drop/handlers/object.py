"""Single-object request handlers for r2drop.

Implements:
    - PutObject (PUT /{bucket}/{key}) for files below the multipart threshold
    - DeleteObject (DELETE /{bucket}/{key})
"""

import logging

from r2drop.config import StorageCredentials
from r2drop.handlers.base import SignedRequestHandler
from r2drop.progress import MonotonicProgress, ProgressSink

logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE = "application/octet-stream"


class ObjectHandler(SignedRequestHandler):
    """Uploads and deletes whole objects."""

    async def put_object(
        self,
        credentials: StorageCredentials,
        key: str,
        body: bytes,
        content_type: str = DEFAULT_CONTENT_TYPE,
        on_progress: ProgressSink | None = None,
    ) -> str | None:
        """Upload ``body`` as one object with a single PUT.

        The whole body is hashed for X-Amz-Content-Sha256 and progress comes
        straight from the transport, clamped so a retry does not move it
        backwards.

        Args:
            credentials: Credentials for this upload.
            key: The object key.
            body: The object contents.
            content_type: MIME type stored with the object.
            on_progress: Receives 0..100.

        Returns:
            The object's ETag, if the store returned one.
        """
        sink = MonotonicProgress(on_progress) if on_progress is not None else None
        response = await self._send_signed(
            credentials,
            "PUT",
            key,
            operation="put_object",
            body=body,
            extra_headers={"Content-Type": content_type or DEFAULT_CONTENT_TYPE},
            on_progress=sink,
        )
        # An empty body is never streamed, so nothing has reported progress yet.
        if sink is not None and sink.value < 100.0:
            sink(100.0)
        logger.info(
            "Uploaded %s (%d bytes)", key, len(body), extra={"operation": "put_object", "key": key}
        )
        return response.etag

    async def delete_object(self, credentials: StorageCredentials, key: str) -> None:
        """Delete an object. Deleting an object that is already gone succeeds."""
        response = await self._send_signed(
            credentials, "DELETE", key, operation="delete_object", tolerate_404=True
        )
        if response.status_code == 404:
            logger.info("Delete of %s: object already gone", key, extra={"key": key})
        else:
            logger.info("Deleted %s", key, extra={"operation": "delete_object", "key": key})
