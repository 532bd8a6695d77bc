"""Bucket policy handlers for r2drop.

Implements:
    - PutBucketCors (PUT /{bucket}?cors)
    - GetBucketCors (GET /{bucket}?cors)
    - PutBucketLifecycleConfiguration (PUT /{bucket}?lifecycle)
    - DeleteBucketLifecycle (DELETE /{bucket}?lifecycle)
"""

import logging
from collections.abc import Sequence

from r2drop.config import StorageCredentials
from r2drop.handlers.base import SignedRequestHandler
from r2drop.xml_utils import (
    DEFAULT_CORS_METHODS,
    LifecycleRule,
    render_cors_configuration,
    render_lifecycle_configuration,
)

logger = logging.getLogger(__name__)

_XML_HEADERS = {"Content-Type": "application/xml"}


class BucketHandler(SignedRequestHandler):
    """Reads and writes bucket-level CORS and lifecycle configuration."""

    async def put_cors(
        self,
        credentials: StorageCredentials,
        allowed_origins: Sequence[str],
        allowed_methods: Sequence[str] = DEFAULT_CORS_METHODS,
        allowed_headers: Sequence[str] = ("*",),
        expose_headers: Sequence[str] = ("ETag",),
        max_age_seconds: int = 3000,
    ) -> None:
        """Replace the bucket's CORS configuration with a single rule.

        Browsers need ``ETag`` exposed to read part ETags during multipart
        uploads, hence the default.
        """
        body = render_cors_configuration(
            allowed_origins,
            allowed_methods=allowed_methods,
            allowed_headers=allowed_headers,
            expose_headers=expose_headers,
            max_age_seconds=max_age_seconds,
        ).encode("utf-8")
        await self._send_signed(
            credentials,
            "PUT",
            "",
            operation="put_bucket_cors",
            query={"cors": ""},
            body=body,
            extra_headers=_XML_HEADERS,
        )
        logger.info("Updated CORS configuration of %s", credentials.bucket_name)

    async def get_cors(self, credentials: StorageCredentials) -> bool:
        """Report whether the bucket has a CORS configuration.

        Returns:
            True if one exists, False if the store answers 404.

        Raises:
            TransportError: For any other failure.
        """
        response = await self._send_signed(
            credentials,
            "GET",
            "",
            operation="get_bucket_cors",
            query={"cors": ""},
            tolerate_404=True,
        )
        return response.status_code != 404

    async def put_lifecycle(
        self, credentials: StorageCredentials, rules: Sequence[LifecycleRule]
    ) -> None:
        """Replace the bucket's lifecycle configuration with ``rules``."""
        body = render_lifecycle_configuration(rules).encode("utf-8")
        await self._send_signed(
            credentials,
            "PUT",
            "",
            operation="put_bucket_lifecycle",
            query={"lifecycle": ""},
            body=body,
            extra_headers=_XML_HEADERS,
        )
        logger.info(
            "Updated lifecycle configuration of %s (%d rules)",
            credentials.bucket_name,
            len(rules),
        )

    async def delete_lifecycle(self, credentials: StorageCredentials) -> None:
        """Remove the bucket's lifecycle configuration, if any."""
        await self._send_signed(
            credentials,
            "DELETE",
            "",
            operation="delete_bucket_lifecycle",
            query={"lifecycle": ""},
            tolerate_404=True,
        )
        logger.info("Deleted lifecycle configuration of %s", credentials.bucket_name)
