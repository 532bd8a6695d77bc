"""Download URL generation: presigned GET URLs or static public URLs."""

from __future__ import annotations

import logging
from datetime import datetime

from r2drop.auth import SigningContext, presign_query, uri_encode
from r2drop.config import StorageCredentials

logger = logging.getLogger(__name__)

DEFAULT_EXPIRES = 600  # 10 minutes


def public_object_url(public_url: str, key: str) -> str:
    """Join a public (custom domain) base URL and an object key."""
    return f"{public_url.rstrip('/')}/{uri_encode(key, encode_slash=False)}"


def generate_url(
    key: str,
    credentials: StorageCredentials,
    expires: int = DEFAULT_EXPIRES,
    now: datetime | None = None,
) -> str:
    """Return a download URL for ``key``.

    With ``public_url`` configured the URL is unsigned: access is whatever
    the bucket owner's custom domain allows, and nothing is verified here.
    Otherwise a presigned GET URL is produced whose validity window starts
    now, at construction time, not at first use.

    Args:
        key: The object key.
        credentials: The storage credentials.
        expires: Validity in seconds (1..604800).
        now: Signing time; defaults to the current time.

    Returns:
        The absolute download URL.
    """
    if credentials.public_url:
        return public_object_url(credentials.public_url, key)

    if now is None:
        context = SigningContext.now(region=credentials.region)
    else:
        context = SigningContext.now(region=credentials.region, clock=lambda: now)
    path = credentials.object_path(key)
    params = presign_query("GET", path, credentials, expires, context=context)
    logger.debug("Presigned %s for %ds", path, expires, extra={"key": key})
    return credentials.request_url(path, params)
