"""High-level storage client: credentials and policy in, uploaded files out."""

from __future__ import annotations

import asyncio
import logging
import mimetypes
import os
from collections.abc import Sequence
from pathlib import Path

from r2drop.auth import Clock, check_presign_expires
from r2drop.config import (
    CredentialsSource,
    FileCredentialsStore,
    R2DropConfig,
    StorageCredentials,
    UploadPolicy,
    resolve_credentials,
)
from r2drop.handlers.bucket import BucketHandler
from r2drop.handlers.multipart import MultipartHandler
from r2drop.handlers.object import DEFAULT_CONTENT_TYPE, ObjectHandler
from r2drop.hashing import file_fingerprint_async
from r2drop.models import UploadResult
from r2drop.naming import hashed_file_name, sanitize_file_name
from r2drop.presign import generate_url
from r2drop.progress import ProgressSink
from r2drop.retry import RetryPolicy, Sleep
from r2drop.transport import Transport
from r2drop.xml_utils import DEFAULT_CORS_METHODS, LifecycleRule

logger = logging.getLogger(__name__)

UploadSource = bytes | str | os.PathLike


class R2Client:
    """Uploads files to an R2 bucket and hands back download links.

    Use as an async context manager so the HTTP connection pool is closed::

        async with R2Client(credentials) as client:
            result = await client.upload_file("report.pdf")

    Attributes:
        credentials_source: Where credentials come from; resolved once per
            operation.
        policy: Upload thresholds and concurrency.
        retry_policy: Retry policy for every individual request.
        transport: The HTTP transport shared by all handlers.
    """

    def __init__(
        self,
        credentials_source: CredentialsSource | None,
        policy: UploadPolicy | None = None,
        retry_policy: RetryPolicy | None = None,
        transport: Transport | None = None,
        clock: Clock | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.credentials_source = credentials_source
        self.policy = policy or UploadPolicy()
        self.retry_policy = retry_policy or RetryPolicy()
        self.transport = transport or Transport()
        self.objects = ObjectHandler(self.transport, self.retry_policy, clock=clock, sleep=sleep)
        self.multipart = MultipartHandler(
            self.transport, self.retry_policy, self.policy, clock=clock, sleep=sleep
        )
        self.buckets = BucketHandler(self.transport, self.retry_policy, clock=clock, sleep=sleep)

    @classmethod
    def from_config(
        cls,
        config: R2DropConfig,
        config_path: Path | None = None,
        transport: Transport | None = None,
    ) -> R2Client:
        """Build a client from a loaded configuration.

        With ``config_path`` the credentials are re-read from that file on
        every operation; otherwise the ``storage`` section is used as loaded.
        """
        source: CredentialsSource | None
        if config_path is not None:
            source = FileCredentialsStore(config_path)
        else:
            source = config.storage
        return cls(
            source,
            policy=config.upload,
            retry_policy=config.retry,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self.transport.aclose()

    async def __aenter__(self) -> R2Client:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def _credentials(self) -> StorageCredentials:
        return await resolve_credentials(self.credentials_source)

    def _expires(self, expires: int | None) -> int:
        if expires is None:
            expires = self.policy.presign_expires
        check_presign_expires(expires)
        return expires

    # -- Uploads --------------------------------------------------------------

    def object_key(self, name: str, hash_file_names: bool = True) -> str:
        """Derive the object key for a file called ``name``."""
        safe = sanitize_file_name(name)
        return hashed_file_name(safe) if hash_file_names else safe

    async def upload_file(
        self,
        source: UploadSource,
        name: str | None = None,
        content_type: str | None = None,
        hash_file_names: bool = True,
        on_progress: ProgressSink | None = None,
        expires: int | None = None,
    ) -> UploadResult:
        """Upload a file and return its key and download URL.

        Credentials are resolved once at the start, so a configuration change
        made while this upload runs applies only to the next one. Files above
        ``policy.multipart_threshold`` go through the multipart path.

        Args:
            source: File contents, or a path to the file.
            name: File name used for the key; required for bytes sources,
                defaults to the path's name otherwise.
            content_type: MIME type; guessed from the name when omitted.
            hash_file_names: Replace the name with a timestamped random one,
                keeping the extension.
            on_progress: Receives overall progress, 0..100, non-decreasing.
            expires: Lifetime of the presigned URL in seconds.

        Returns:
            The upload result.

        Raises:
            ConfigMissing: If no credentials are configured.
            InvalidPresignRequest: If ``expires`` is out of range; nothing
                is uploaded.
            ValueError: If ``name`` is missing for a bytes source.
        """
        expires = self._expires(expires)
        credentials = await self._credentials()

        if isinstance(source, (bytes, bytearray, memoryview)):
            if not name:
                raise ValueError("name is required when uploading bytes")
            size = len(source)
        else:
            path = Path(source)
            name = name or path.name
            size = (await asyncio.to_thread(path.stat)).st_size

        content_type = content_type or mimetypes.guess_type(name)[0] or DEFAULT_CONTENT_TYPE
        key = self.object_key(name, hash_file_names)
        fingerprint = await file_fingerprint_async(
            source,
            name,
            threshold=self.policy.fingerprint_threshold,
            chunk=self.policy.fingerprint_chunk,
        )

        multipart = size > self.policy.multipart_threshold
        logger.info(
            "Uploading %s as %s (%d bytes, %s)",
            name,
            key,
            size,
            "multipart" if multipart else "single request",
            extra={"operation": "upload_file", "key": key},
        )

        if multipart:
            await self.multipart.upload(
                credentials, key, source, size, content_type, on_progress=on_progress
            )
        else:
            if isinstance(source, (bytes, bytearray, memoryview)):
                body = bytes(source)
            else:
                body = await asyncio.to_thread(Path(source).read_bytes)
            await self.objects.put_object(
                credentials, key, body, content_type, on_progress=on_progress
            )

        url = generate_url(key, credentials, expires)
        return UploadResult(
            file_id=key, url=url, size=size, multipart=multipart, fingerprint=fingerprint
        )

    async def delete_file(self, key: str) -> None:
        """Delete an uploaded object; an already-deleted key is not an error."""
        credentials = await self._credentials()
        await self.objects.delete_object(credentials, key)

    async def generate_url(self, key: str, expires: int | None = None) -> str:
        """Return a download URL for ``key``, presigned unless a public URL is set."""
        expires = self._expires(expires)
        credentials = await self._credentials()
        return generate_url(key, credentials, expires)

    # -- Bucket policy --------------------------------------------------------

    async def put_cors(
        self,
        allowed_origins: Sequence[str],
        allowed_methods: Sequence[str] = DEFAULT_CORS_METHODS,
        allowed_headers: Sequence[str] = ("*",),
        expose_headers: Sequence[str] = ("ETag",),
        max_age_seconds: int = 3000,
    ) -> None:
        credentials = await self._credentials()
        await self.buckets.put_cors(
            credentials,
            allowed_origins,
            allowed_methods=allowed_methods,
            allowed_headers=allowed_headers,
            expose_headers=expose_headers,
            max_age_seconds=max_age_seconds,
        )

    async def get_cors(self) -> bool:
        credentials = await self._credentials()
        return await self.buckets.get_cors(credentials)

    async def put_lifecycle(self, rules: Sequence[LifecycleRule]) -> None:
        credentials = await self._credentials()
        await self.buckets.put_lifecycle(credentials, rules)

    async def delete_lifecycle(self) -> None:
        credentials = await self._credentials()
        await self.buckets.delete_lifecycle(credentials)
